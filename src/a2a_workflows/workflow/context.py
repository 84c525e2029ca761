"""Per-invocation execution context.

One :class:`ExecutionContext` is created for every workflow run and threaded
through all of its tasks. It is a plain mutable mapping: tasks read inputs from
it and the engine merges task outputs back into it. Contexts are never shared
between concurrent runs, so no locking is needed.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator, Mapping, MutableMapping
from typing import Any

_MASK = "[FILTERED]"


class ExecutionContext(MutableMapping[str, Any]):
    """Mutable key/value state for one workflow run.

    ``private_keys`` are masked by :meth:`filtered_for_logging` and
    :meth:`summary` so secrets passed as inputs never reach the logs.
    """

    def __init__(
        self,
        data: Mapping[str, Any] | None = None,
        *,
        private_keys: Iterable[str] = (),
        **kwargs: Any,
    ) -> None:
        self._data: dict[str, Any] = {}
        if data:
            self._data.update({str(k): v for k, v in data.items()})
        if kwargs:
            self._data.update(kwargs)
        self.private_keys: frozenset[str] = frozenset(str(k) for k in private_keys)

    # MutableMapping protocol

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._data[str(key)] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ExecutionContext):
            return self._data == other._data
        if isinstance(other, Mapping):
            return self._data == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"ExecutionContext(keys={sorted(self._data)})"

    # Accessors

    def set(self, key: str, value: Any) -> ExecutionContext:
        """Set one value and return ``self`` for chaining."""
        self[key] = value
        return self

    def merge(self, values: Mapping[str, Any]) -> ExecutionContext:
        """Merge a mapping into the context (later values win)."""
        for key, value in values.items():
            self[key] = value
        return self

    def merge_safe(self, values: Mapping[str, Any]) -> ExecutionContext:
        """Like :meth:`merge` but ignores ``None`` values."""
        return self.merge({k: v for k, v in values.items() if v is not None})

    def fetch(self, key: str, default: Any = None) -> Any:
        """Return the value for ``key`` or ``default`` when missing or ``None``."""
        value = self._data.get(key)
        return default if value is None else value

    def dig(self, *path: str | int) -> Any:
        """Safe nested access: ``ctx.dig("user", "address", "city")``."""
        current: Any = self._data
        for part in path:
            if isinstance(current, Mapping):
                current = current.get(part)
            elif isinstance(current, (list, tuple)) and isinstance(part, int):
                current = current[part] if -len(current) <= part < len(current) else None
            else:
                current = getattr(current, str(part), None)
            if current is None:
                return None
        return current

    def has_all(self, *keys: str) -> bool:
        return all(k in self._data for k in keys)

    def has_any(self, *keys: str) -> bool:
        return any(k in self._data for k in keys)

    def require(self, *keys: str) -> None:
        """Raise ``KeyError`` listing every key that is missing or empty."""
        missing = [k for k in keys if self._data.get(k) in (None, "", [], {})]
        if missing:
            raise KeyError(f"Missing required context keys: {', '.join(missing)}")

    # Derived contexts

    def slice(self, *keys: str) -> ExecutionContext:
        """Return a new context holding only ``keys`` (missing keys are skipped)."""
        return ExecutionContext(
            {k: self._data[k] for k in keys if k in self._data},
            private_keys=self.private_keys,
        )

    def without(self, *keys: str) -> ExecutionContext:
        """Return a new context without ``keys``."""
        return ExecutionContext(
            {k: v for k, v in self._data.items() if k not in keys},
            private_keys=self.private_keys,
        )

    def copy(self) -> ExecutionContext:
        return ExecutionContext(dict(self._data), private_keys=self.private_keys)

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)

    # Logging helpers

    def filtered_for_logging(self) -> dict[str, Any]:
        return {k: (_MASK if k in self.private_keys else v) for k, v in self._data.items()}

    def summary(self, max_length: int = 50) -> dict[str, Any]:
        """Short, log-friendly view of the context."""
        out: dict[str, Any] = {}
        for key, value in self._data.items():
            if key in self.private_keys:
                out[key] = _MASK
            elif isinstance(value, str) and len(value) > max_length:
                out[key] = value[:max_length] + "..."
            elif isinstance(value, (list, tuple)) and len(value) > 3:
                out[key] = f"[{type(value).__name__} with {len(value)} items]"
            elif isinstance(value, Mapping) and len(value) > 3:
                out[key] = f"[mapping with {len(value)} keys]"
            else:
                out[key] = value
        return out

    def pretty(self, *, include_private: bool = False) -> str:
        data = self.to_dict() if include_private else self.filtered_for_logging()
        return json.dumps(data, indent=2, ensure_ascii=False, default=repr)
