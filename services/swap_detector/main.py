import asyncio

from loguru import logger

from trade_signal_engine.config import AppSettings
from trade_signal_engine.consumers import ObservedTradeRecorder, attach
from trade_signal_engine.db import make_session_factory
from trade_signal_engine.detection.detector import SwapDetector


async def run(settings: AppSettings, detector: SwapDetector, stop_event: asyncio.Event | None = None):
    assets = settings.assets_to_watch()
    if not assets:
        logger.warning("No assets configured to watch. Update {}", settings.assets_config)
        return
    if settings.record_trades:
        SessionFactory = make_session_factory(settings.database_url, create_tables=True)
        attach(detector.events, ObservedTradeRecorder(SessionFactory))

    detector.events.heartbeat.subscribe(lambda hb: logger.trace("heartbeat: {}", hb.reason))
    detector.events.connection_stale.subscribe(
        lambda ev: logger.warning("Stale after {}s on {}", ev.seconds_since_activity, ev.monitored_assets)
    )
    for a in assets:
        detector.start(a)

    stop_event = stop_event or asyncio.Event()
    try:
        await stop_event.wait()
    finally:
        detector.stop()


def main():
    settings = AppSettings()
    logger.remove()
    logger.add(lambda m: print(m, end=""), level=settings.log_level)

    detector = SwapDetector.create(settings)
    logger.info("Swap detector: watching {} via {}", settings.aggregator_program_id, settings.ws_url())
    try:
        asyncio.run(run(settings, detector))
    except KeyboardInterrupt:
        logger.info("Swap detector interrupted; shutting down.")


if __name__ == "__main__":
    main()
