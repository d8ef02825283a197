from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from loguru import logger
from sqlalchemy import select

from trade_signal_engine.db import DetectedSwap, session_scope
from trade_signal_engine.detection.events import DetectorEvents, TradeEvent


class TradeConsumer(Protocol):
    """What a paper-trading or execution engine implements to receive swaps.

    Events may arrive out of ledger order and after the detector stopped.
    on_trade is called synchronously on the event loop thread, so blocking or
    heavy work belongs on an executor or a queue the consumer drains itself.
    """

    def on_trade(self, trade: TradeEvent) -> None: ...


def attach(events: DetectorEvents, consumer: TradeConsumer):
    """Route the detector's trade channel into a consumer; returns the unsubscribe callable."""
    return events.trade.subscribe(consumer.on_trade)


@dataclass
class ObservedTradeRecorder:
    SessionFactory: object
    chain: str = "solana"

    def on_trade(self, trade: TradeEvent) -> None:
        with session_scope(self.SessionFactory) as s:
            exists = s.execute(
                select(DetectedSwap.id).where(
                    DetectedSwap.signature == trade.signature,
                    DetectedSwap.asset_id == trade.asset_id,
                )
            ).first()
            if exists:
                logger.debug("Swap {} already recorded", trade.signature)
                return
            s.add(
                DetectedSwap(
                    chain=self.chain,
                    signature=trade.signature,
                    asset_id=trade.asset_id,
                    user_id=trade.user_id,
                    is_buy=trade.is_buy,
                    native_amount=trade.native_amount,
                    asset_amount=trade.asset_amount,
                    price=trade.price,
                    detected_at=datetime.fromtimestamp(trade.timestamp, tz=timezone.utc).replace(
                        tzinfo=None
                    ),
                )
            )
        logger.info("Recorded swap {} for {}", trade.signature[:12], trade.asset_id[:8])
