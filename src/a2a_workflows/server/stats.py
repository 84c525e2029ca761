"""Request and invocation counters."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ServerStats:
    requests_total: int = 0
    requests_failed: int = 0
    invocations_total: int = 0
    invocations_succeeded: int = 0
    invocations_failed: int = 0
    active_invocations: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_request(self, status_code: int) -> None:
        with self._lock:
            self.requests_total += 1
            if status_code >= 500:
                self.requests_failed += 1

    def invocation_started(self) -> None:
        with self._lock:
            self.invocations_total += 1
            self.active_invocations += 1

    def invocation_finished(self, succeeded: bool) -> None:
        with self._lock:
            self.active_invocations -= 1
            if succeeded:
                self.invocations_succeeded += 1
            else:
                self.invocations_failed += 1

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "requests_total": self.requests_total,
                "requests_failed": self.requests_failed,
                "invocations_total": self.invocations_total,
                "invocations_succeeded": self.invocations_succeeded,
                "invocations_failed": self.invocations_failed,
                "active_invocations": self.active_invocations,
            }
