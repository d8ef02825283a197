from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Protocol


@dataclass(frozen=True)
class LogBatch:
    signature: str | None
    logs: list[str] = field(default_factory=list)
    err: Any = None
    slot: int | None = None


class LogStream(Protocol):
    def subscribe(
        self,
        program_id: str,
        commitment: str,
        on_logs: Callable[[LogBatch], None],
        on_error: Callable[[Exception], None],
    ) -> Any: ...

    def unsubscribe(self, handle: Any) -> None: ...


class TransactionSource(Protocol):
    async def fetch_transaction(self, signature: str, commitment: str) -> dict | None:
        """RPC-shaped confirmed transaction, or None when not (yet) visible."""
        ...
