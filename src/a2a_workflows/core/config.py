"""Configuration for the A2A workflow server.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Constructor arguments passed to :class:`a2a_workflows.server.server.A2AServer`
always win over values loaded here, so tests and embedding applications never
need to touch the environment.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """Settings for the protocol server.

    Notes:
        - An empty ``auth_token`` disables bearer authentication.
        - TLS is enabled only when both ``ssl_cert_path`` and ``ssl_key_path``
          are set. Setting only one of them is a startup error.
    """

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8080, ge=0, le=65535, description="Bind port")

    auth_token: str = Field(
        default="",
        description="Bearer token required on invoke endpoints (empty = auth disabled)",
    )

    ssl_cert_path: Path | None = Field(default=None, description="TLS certificate (PEM)")
    ssl_key_path: Path | None = Field(default=None, description="TLS private key (PEM)")

    # Comma-separated, "*" allows any origin.
    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins.",
    )

    request_timeout_seconds: float | None = Field(
        default=300.0,
        gt=0,
        description="Upper bound for one workflow run when the workflow sets no timeout",
    )
    drain_timeout_seconds: float = Field(
        default=10.0,
        ge=0,
        description="Grace period for in-flight requests on shutdown",
    )
    parallel_max_workers: int = Field(
        default=8,
        ge=1,
        description="Thread pool size used for parallel task groups",
    )

    agent_name: str = Field(default="A2A Workflow Agent")
    agent_description: str = Field(
        default="Multi-workflow agent exposed over the A2A protocol",
    )
    base_url: str = Field(
        default="",
        description="Public base URL advertised in the agent card (derived from host/port if empty)",
    )

    required_task_types: str = Field(
        default="",
        description=(
            "Comma-separated task types that must be registered before the server starts. "
            "Types used by mounted workflows are always required."
        ),
    )

    log_level: str = Field(default="INFO", description="Root logging level")
    log_json: bool = Field(default=True, description="Emit JSON log lines")

    model_config = SettingsConfigDict(
        env_prefix="A2A_",
        env_file=".env",
        extra="ignore",
    )

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def parsed_required_task_types(self) -> list[str]:
        return [t.strip() for t in self.required_task_types.split(",") if t.strip()]

    @property
    def ssl_enabled(self) -> bool:
        return self.ssl_cert_path is not None or self.ssl_key_path is not None

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        from a2a_workflows.core.logging import configure_logging

        configure_logging(self.log_level, json_output=self.log_json)


class LLMConfig(BaseSettings):
    """Configuration for LLM providers used by ``llm`` tasks."""

    provider: Literal["openai", "llama"] = Field(
        default="openai",
        description="LLM provider to use",
    )

    # OpenAI settings
    openai_api_key: str | None = Field(
        default=None,
        description="OpenAI API key",
    )
    openai_model: str = Field(
        default="gpt-4",
        description="OpenAI model to use",
    )
    openai_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Temperature for OpenAI model",
    )

    # LLaMA settings
    llama_model_path: Path | None = Field(
        default=None,
        description="Path to LLaMA model file",
    )
    llama_n_ctx: int = Field(
        default=4096,
        gt=0,
        description="Context window size for LLaMA",
    )
    llama_n_threads: int | None = Field(
        default=None,
        description="Number of threads for LLaMA (None = auto)",
    )

    model_config = SettingsConfigDict(
        env_prefix="A2A_LLM_",
        env_file=".env",
        extra="ignore",
    )


class A2AClientConfig(BaseSettings):
    """Configuration for outbound calls to remote A2A agents."""

    timeout_seconds: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=0, le=10)
    base_delay_seconds: float = Field(default=1.0, ge=0)
    max_delay_seconds: float = Field(default=32.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1.0)
    cache_ttl_seconds: float = Field(
        default=300.0,
        ge=0,
        description="How long a fetched agent card is reused",
    )
    user_agent: str = Field(default="a2a-workflows")

    model_config = SettingsConfigDict(
        env_prefix="A2A_CLIENT_",
        env_file=".env",
        extra="ignore",
    )
