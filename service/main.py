"""Entry point: wire collaborators, run until SIGINT/SIGTERM."""

import asyncio
import signal
import structlog
from config.logging_config import setup_logging
from config.settings import settings
from data.market import BinanceMarketData
from notifications.config import DispatchConfig
from notifications.events import BaseObserver, TerminalFailure
from notifications.gateway import LineMessagingGateway
from service.control import NotificationService
from storage.database import check_connection, close_pool, get_pool
from storage.repositories.alert_repo import AlertRuleRepository
from storage.repositories.profile_repo import ProfileRepository

log = structlog.get_logger(__name__)


class TerminalFailureLogger(BaseObserver):
    """Surfaces abandoned deliveries in the logs."""

    def on_terminal_failure(self, failure: TerminalFailure) -> None:
        log.error(
            "delivery_abandoned",
            task_id=failure.task_id,
            recipients=len(failure.recipient_ids),
            attempts=failure.attempts,
            error=failure.last_error,
        )


async def run_service() -> None:
    """Initialize all services and run until a shutdown signal arrives."""
    setup_logging(settings.log_level, settings.log_json)
    log.info("starting_market_notifier")

    pool = await get_pool()
    if not await check_connection():
        log.warning("starting_without_database")
    gateway = LineMessagingGateway()
    market_data = BinanceMarketData()

    service = NotificationService(
        gateway=gateway,
        profile_store=ProfileRepository(pool),
        rule_store=AlertRuleRepository(pool),
        market_data=market_data,
        config=DispatchConfig.from_settings(settings),
        check_interval_ms=settings.alert_check_interval_ms,
    )
    service.subscribe(TerminalFailureLogger())

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    service.start()
    try:
        await stop_event.wait()
    finally:
        log.info("shutting_down")
        service.stop()
        await gateway.close()
        await market_data.close()
        await close_pool()


def main() -> None:
    """Run the service."""
    asyncio.run(run_service())


if __name__ == "__main__":
    main()
