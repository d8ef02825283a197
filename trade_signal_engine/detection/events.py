from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Generic, TypeVar

from loguru import logger

T = TypeVar("T")


@dataclass(frozen=True)
class TradeEvent:
    asset_id: str
    native_amount: float
    asset_amount: float
    is_buy: bool
    user_id: str
    signature: str
    timestamp: float
    price: float = 0.0

    @classmethod
    def build(
        cls,
        asset_id: str,
        native_amount: float,
        asset_amount: float,
        is_buy: bool,
        user_id: str,
        signature: str,
        timestamp: float,
    ) -> TradeEvent:
        price = native_amount / asset_amount if asset_amount > 0 else 0.0
        return cls(
            asset_id=asset_id,
            native_amount=native_amount,
            asset_amount=asset_amount,
            is_buy=is_buy,
            user_id=user_id,
            signature=signature,
            timestamp=timestamp,
            price=price,
        )


@dataclass(frozen=True)
class Heartbeat:
    reason: str
    processed: bool = True
    matched: bool = False
    expected: list[str] | None = None
    found: list[str] | None = None


@dataclass(frozen=True)
class ConnectionStale:
    seconds_since_activity: int
    monitored_assets: list[str]


class EventChannel(Generic[T]):
    """Broadcast channel for a single event kind."""

    def __init__(self, name: str):
        self.name = name
        self._callbacks: list[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def publish(self, payload: T) -> None:
        for cb in list(self._callbacks):
            try:
                cb(payload)
            except Exception as e:
                logger.exception("Listener on '{}' channel failed: {}", self.name, e)

    def __len__(self) -> int:
        return len(self._callbacks)


@dataclass
class DetectorEvents:
    connected: EventChannel[None] = field(default_factory=lambda: EventChannel("connected"))
    disconnected: EventChannel[None] = field(default_factory=lambda: EventChannel("disconnected"))
    trade: EventChannel[TradeEvent] = field(default_factory=lambda: EventChannel("trade"))
    heartbeat: EventChannel[Heartbeat] = field(default_factory=lambda: EventChannel("heartbeat"))
    connection_stale: EventChannel[ConnectionStale] = field(
        default_factory=lambda: EventChannel("connection_stale")
    )
    error: EventChannel[Exception] = field(default_factory=lambda: EventChannel("error"))
