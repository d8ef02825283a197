from __future__ import annotations

import asyncio
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine

from loguru import logger

from trade_signal_engine.chains.base import LogBatch, LogStream, TransactionSource
from trade_signal_engine.config import AppSettings, normalize_asset
from trade_signal_engine.detection.balances import is_failed
from trade_signal_engine.detection.classifier import SwapClassifier
from trade_signal_engine.detection.dedup import ProcessedSignatures
from trade_signal_engine.detection.events import (
    ConnectionStale,
    DetectorEvents,
    Heartbeat,
    TradeEvent,
)
from trade_signal_engine.detection.filter import is_candidate
from trade_signal_engine.detection.health import HealthMonitor
from trade_signal_engine.errors import SubscriptionError, TransactionParseError


@dataclass
class SwapDetector:
    """Watches the aggregator's log stream and publishes trades for watched mints.

    Commands must be issued from the thread running the event loop. Fetches
    already in flight are not cancelled by stop(); their trades may arrive late.
    """

    settings: AppSettings
    stream: LogStream
    source: TransactionSource
    classifier: SwapClassifier
    events: DetectorEvents = field(default_factory=DetectorEvents)
    clock: Callable[[], float] = time.time

    def __post_init__(self):
        self._watched: dict[str, None] = {}
        self._handle: Any = None
        self._processed = ProcessedSignatures(self.settings.processed_signatures_cap)
        self._in_flight: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self._reconnecting = False
        # Assets to restore once a forced reconnect finishes its backoff
        self._pending_restore: dict[str, None] | None = None
        self._counters: Counter[str] = Counter()
        self._heartbeats: Counter[str] = Counter()
        self.health = HealthMonitor(
            on_stale=self._on_stale,
            interval_sec=self.settings.health_check_interval_sec,
            max_inactivity_sec=self.settings.max_inactivity_sec,
            clock=self.clock,
        )

    @classmethod
    def create(cls, settings: AppSettings) -> SwapDetector:
        from trade_signal_engine.chains.solana import SolanaLogStream, SolanaTransactionSource

        return cls(
            settings=settings,
            stream=SolanaLogStream(ws_url=settings.ws_url()),
            source=SolanaTransactionSource.create(settings.sol_rpc_url),
            classifier=SwapClassifier.from_settings(settings),
        )

    # --- Commands ---

    def start(self, asset_id: str) -> None:
        asset = normalize_asset(asset_id)
        if not asset:
            raise ValueError("asset_id must be a non-empty mint address")
        if asset not in self._watched:
            self._watched[asset] = None
            logger.info("Watching {}... ({} asset(s))", asset[:8], len(self._watched))
        if not self.is_active():
            self._open_subscription()

    def stop_asset(self, asset_id: str) -> None:
        asset = normalize_asset(asset_id)
        was_watched = asset in self._watched
        self._watched.pop(asset, None)
        if self._pending_restore is not None:
            self._pending_restore.pop(asset, None)
        if not was_watched and not self.is_active():
            return
        logger.info("Stopped watching {}... ({} remaining)", asset[:8], len(self._watched))
        if not self._watched:
            self.stop()

    def stop(self) -> None:
        self._pending_restore = None
        self._teardown()

    def _teardown(self) -> None:
        logger.info("Stopping swap detector")
        self.health.stop()
        self._close_handle()
        self._watched.clear()
        self.events.disconnected.publish(None)

    def is_active(self) -> bool:
        return self._handle is not None

    def get_watched_assets(self) -> list[str]:
        return list(self._watched)

    def is_watching(self, asset_id: str) -> bool:
        return normalize_asset(asset_id) in self._watched

    def stats(self) -> dict:
        return {
            "active": self.is_active(),
            "watched_assets": self.get_watched_assets(),
            "batches": self._counters["batches"],
            "candidates": self._counters["candidates"],
            "trades": self._counters["trades"],
            "reconnects": self._counters["reconnects"],
            "heartbeats": dict(self._heartbeats),
            "in_flight": len(self._in_flight),
            "processed_signatures": len(self._processed),
            "seconds_since_activity": self.health.seconds_since_activity(),
        }

    # --- Subscription ---

    def _open_subscription(self) -> None:
        if self.is_active():
            return
        program_id = self.settings.aggregator_program_id
        try:
            handle = self.stream.subscribe(
                program_id,
                self.settings.stream_commitment,
                self._on_logs,
                self._on_stream_error,
            )
        except Exception as e:
            logger.error("Subscription to {} failed: {}", program_id, e)
            err = e if isinstance(e, SubscriptionError) else SubscriptionError(str(e))
            self.events.error.publish(err)
            return
        self._handle = handle
        self.health.start()
        logger.info(
            "Subscribed to {} logs ({}) for {} asset(s)",
            program_id,
            self.settings.stream_commitment,
            len(self._watched),
        )
        self.events.connected.publish(None)

    def _close_handle(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            self.stream.unsubscribe(handle)
        except Exception as e:
            logger.error("Error unsubscribing: {}", e)

    def _on_stream_error(self, exc: Exception) -> None:
        logger.error("Log stream failed: {}", exc)
        self.health.stop()
        self._close_handle()
        self.events.error.publish(exc)
        if self._watched:
            self._spawn(self.force_reconnect())

    # --- Pipeline ---

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _heartbeat(self, reason: str, **kw) -> None:
        self._heartbeats[reason] += 1
        self.events.heartbeat.publish(Heartbeat(reason=reason, **kw))

    def _on_logs(self, batch: LogBatch) -> None:
        self.health.touch()
        self._counters["batches"] += 1
        if not batch.signature:
            self._heartbeat("no_signature")
            return
        if not is_candidate(batch.logs, self.settings.aggregator_program_id):
            self._heartbeat("not_program")
            return
        self._counters["candidates"] += 1
        logger.debug("Swap candidate {}..., fetching transaction", batch.signature[:12])
        self._spawn(self.process_signature(batch.signature, self.get_watched_assets()))

    async def process_signature(
        self, signature: str, watched: list[str] | None = None
    ) -> TradeEvent | None:
        """Fetch, classify and publish one candidate; exactly one trade or heartbeat results.

        `watched` is the watch set as of the log batch, so fetches that finish
        after stop() still classify against the assets that were live.
        """
        if signature in self._processed or signature in self._in_flight:
            self._heartbeat("duplicate")
            return None
        self._in_flight.add(signature)
        try:
            try:
                tx = await self.source.fetch_transaction(signature, self.settings.fetch_commitment)
            except Exception as e:
                self._processed.add(signature)
                logger.error("Fetch failed for {}...: {}", signature[:12], e)
                self._heartbeat("fetch_error")
                return None
            if tx is None:
                logger.debug("Transaction not available yet: {}...", signature[:12])
                self._heartbeat("transaction_unavailable")
                return None
            self._processed.add(signature)
            if is_failed(tx):
                self._heartbeat("transaction_failed")
                return None
            return self._classify(tx, signature, watched)
        finally:
            self._in_flight.discard(signature)

    def _classify(self, tx: dict, signature: str, watched: list[str] | None) -> TradeEvent | None:
        if watched is None:
            watched = self.get_watched_assets()
        try:
            outcome = self.classifier.classify(tx, watched, signature)
        except TransactionParseError as e:
            logger.error("Could not parse {}...: {}", signature[:12], e)
            self._heartbeat("parse_error")
            self.events.error.publish(e)
            return None
        except Exception as e:
            logger.exception("Classification of {}... failed: {}", signature[:12], e)
            self._heartbeat("parse_error")
            self.events.error.publish(TransactionParseError(signature, str(e)))
            return None

        c = outcome.classification
        if c is None:
            self._heartbeat(outcome.reason or "no_match", expected=watched, found=outcome.found)
            return None

        trade = TradeEvent.build(
            asset_id=c.asset_id,
            native_amount=c.native_amount,
            asset_amount=c.asset_amount,
            is_buy=c.is_buy,
            user_id=c.user_id,
            signature=signature,
            timestamp=self.clock(),
        )
        self._counters["trades"] += 1
        logger.info(
            "Swap detected: {} {}... sol={:.4f} tokens={:.2f} price={:.9f} user={}...",
            "BUY" if trade.is_buy else "SELL",
            trade.asset_id[:8],
            trade.native_amount,
            trade.asset_amount,
            trade.price,
            trade.user_id[:8],
        )
        self.events.trade.publish(trade)
        return trade

    # --- Health / reconnection ---

    def _on_stale(self, idle: float) -> None:
        self.events.connection_stale.publish(
            ConnectionStale(
                seconds_since_activity=int(idle),
                monitored_assets=self.get_watched_assets(),
            )
        )
        self._spawn(self.force_reconnect())

    async def force_reconnect(self) -> None:
        if self._reconnecting:
            return
        self._reconnecting = True
        try:
            self._counters["reconnects"] += 1
            snapshot = self.get_watched_assets()
            logger.info("Force reconnecting ({} asset(s))", len(snapshot))
            self._teardown()
            self._pending_restore = dict.fromkeys(snapshot)
            await asyncio.sleep(self.settings.reconnect_backoff_sec)
            pending, self._pending_restore = self._pending_restore, None
            if pending is None:
                logger.info("Reconnect abandoned: detector was stopped during backoff")
                return
            # Assets started during the backoff are kept alongside the snapshot
            for asset in pending:
                self._watched.setdefault(asset, None)
            if self._watched:
                logger.info("Restoring {} watched asset(s)", len(self._watched))
                self._open_subscription()
        finally:
            self._reconnecting = False
