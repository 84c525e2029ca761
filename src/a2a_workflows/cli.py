"""Command-line entrypoint.

``--app`` names what to serve, as ``module`` or ``module:attribute``:

- ``module:attribute`` pointing at an :class:`A2AServer` uses that server
- ``module:attribute`` pointing at a ``Workflow`` subclass mounts only it
- a bare ``module`` is imported and every ``Workflow`` subclass is mounted
"""

from __future__ import annotations

import argparse
import importlib
import json
import logging
import sys
from typing import Any

from pydantic import ValidationError

from a2a_workflows import __version__
from a2a_workflows.core.config import ServerSettings
from a2a_workflows.errors import A2AError, ServerConfigurationError
from a2a_workflows.server.server import A2AServer
from a2a_workflows.workflow.definition import Workflow

logger = logging.getLogger(__name__)


def load_target(spec: str) -> Any:
    module_name, _, attribute = spec.partition(":")
    if not module_name:
        raise ServerConfigurationError(f"Invalid --app value: '{spec}'")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ServerConfigurationError(f"Cannot import '{module_name}': {e}") from e
    if not attribute:
        return module
    try:
        return getattr(module, attribute)
    except AttributeError:
        raise ServerConfigurationError(
            f"Module '{module_name}' has no attribute '{attribute}'"
        ) from None


def build_server(args: argparse.Namespace, settings: ServerSettings) -> A2AServer:
    target = load_target(args.app) if args.app else None
    overrides = {
        "host": args.host,
        "port": args.port,
        "auth_token": args.auth_token,
        "ssl_cert_path": args.ssl_cert,
        "ssl_key_path": args.ssl_key,
    }

    if isinstance(target, A2AServer):
        updates = {k: v for k, v in overrides.items() if v is not None}
        if updates:
            target.settings = target.settings.model_copy(update=updates)
        return target

    server = A2AServer(settings=settings, **overrides)
    if isinstance(target, type) and issubclass(target, Workflow):
        server.register_workflow(target)
    elif target is not None:
        server.register_all_workflows()
    return server


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="a2a-workflows",
        description="Serve declarative workflows as an A2A agent",
    )
    parser.add_argument("--version", action="version", version=f"a2a-workflows {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "--app",
            default=None,
            help="Workflows to serve: 'module' or 'module:attribute'",
        )
        sub.add_argument("--host", default=None, help="Bind host (overrides A2A_HOST)")
        sub.add_argument("--port", type=int, default=None, help="Bind port (overrides A2A_PORT)")
        sub.add_argument(
            "--auth-token",
            "--token",
            dest="auth_token",
            default=None,
            help="Bearer token for invoke endpoints (overrides A2A_AUTH_TOKEN)",
        )
        sub.add_argument("--ssl-cert", default=None, help="TLS certificate (PEM)")
        sub.add_argument("--ssl-key", default=None, help="TLS private key (PEM)")

    serve = subparsers.add_parser("serve", help="Start the A2A server")
    add_common(serve)

    card = subparsers.add_parser("card", help="Print the agent card as JSON")
    add_common(card)

    check = subparsers.add_parser(
        "check", help="Validate bind address, TLS files and task types, then exit"
    )
    add_common(check)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = ServerSettings()
    except ValidationError as e:
        # Logging isn't configured yet.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    settings.setup_logging()

    try:
        server = build_server(args, settings)

        if args.command == "serve":
            server.start()
            return 0

        if args.command == "card":
            print(json.dumps(server.agent_card().to_dict(), indent=2, default=str))
            return 0

        if args.command == "check":
            server.validate()
            print(
                f"OK: {len(server.workflow_registry)} workflow(s), "
                f"task types: {', '.join(sorted(server.required_task_types())) or 'none'}"
            )
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except ServerConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    except A2AError as e:
        logger.error(str(e))
        print(str(e), file=sys.stderr)
        return 1

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
