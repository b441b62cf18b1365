"""Call recording and error injection shared by the mocks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from botocore.exceptions import ClientError


def client_error(code: str, operation: str = "Operation", message: str = "") -> ClientError:
    """Build a botocore ClientError carrying ``code``."""
    return ClientError({"Error": {"Code": code, "Message": message or code}}, operation)


@dataclass
class _Failure:
    error: Exception
    # None fails every call
    remaining: int | None


class FailureInjector:
    """Records calls by method name and raises injected errors."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self._failures: dict[str, _Failure] = {}

    def fail_on(self, method: str, error: Exception, times: int | None = 1) -> None:
        """Make the next ``times`` calls to ``method`` raise ``error``."""
        self._failures[method] = _Failure(error=error, remaining=times)

    def clear_failures(self) -> None:
        self._failures.clear()

    def calls_to(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        failure = self._failures.get(method)
        if failure is None:
            return
        if failure.remaining is not None:
            failure.remaining -= 1
            if failure.remaining <= 0:
                del self._failures[method]
        raise failure.error
