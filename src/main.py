"""
BSG Helpdesk SLA Engine - Main Application
==========================================

Wires the SLA engine together and runs the escalation sweeper.

Clean Architecture Layers:
- Application: Services, reference data cache and DTOs
- Domain: Calendars, calculator, policy resolution, lifecycle
- Infrastructure: Database, YAML reference data, Slack, scheduler
"""

import asyncio
import signal
from typing import Optional

from src.config import Settings, settings as default_settings
from src.infrastructure.database import close_database, create_tables, get_session_maker, init_database
from src.shared.infrastructure.logging import get_logger, setup_logging
from src.sla.application import (
    IReferenceDataRepository, ITicketRepository, ReferenceDataCache,
    SLAService, TicketLifecycleService,
)
from src.sla.infrastructure import (
    SQLAlchemyReferenceDataRepository, SQLAlchemyTicketRepository, YAMLReferenceDataRepository,
)
from src.sla.infrastructure.external import EscalationScheduler, ReferenceDataWatcher, SlackClient
from src.sla.services import EscalationSweeper

logger = get_logger(__name__)


class SLAEngine:
    """
    Application container for the SLA engine.

    STARTUP:
    1. Setup structured logging
    2. Initialize database (tickets, and reference data when configured)
    3. Load reference data (YAML file is validated in full)
    4. Start reference file watcher
    5. Start escalation scheduler

    SHUTDOWN:
    1. Stop escalation scheduler
    2. Stop file watcher
    3. Close Slack client
    4. Close database connections
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        ticket_repository: Optional[ITicketRepository] = None,
        reference_repository: Optional[IReferenceDataRepository] = None,
        slack_client: Optional[SlackClient] = None
    ):
        self.config = config or default_settings
        self._ticket_repository = ticket_repository
        self._reference_repository = reference_repository
        self._slack_client = slack_client
        self._owns_database = False

        self.cache: Optional[ReferenceDataCache] = None
        self.sla_service: Optional[SLAService] = None
        self.lifecycle_service: Optional[TicketLifecycleService] = None
        self.sweeper: Optional[EscalationSweeper] = None
        self.watcher: Optional[ReferenceDataWatcher] = None
        self.scheduler: Optional[EscalationScheduler] = None

    async def start(self, run_scheduler: bool = True) -> None:
        config = self.config

        # === STARTUP ===
        setup_logging(config.log_level, config.environment)
        logger.info("Starting SLA engine", extra={
            "version": config.app_version,
            "environment": config.environment,
            "reference_source": config.reference_source,
        })

        if self._ticket_repository is None or (
            self._reference_repository is None and config.reference_source == "database"
        ):
            logger.info("Initializing database")
            init_database(config.database_url)
            self._owns_database = True
            if config.environment in ("development", "test"):
                # Use Alembic in production
                await create_tables()

        if self._ticket_repository is None:
            self._ticket_repository = SQLAlchemyTicketRepository(get_session_maker())

        if self._reference_repository is None:
            if config.reference_source == "database":
                self._reference_repository = SQLAlchemyReferenceDataRepository(get_session_maker())
            else:
                logger.info("Loading reference data", extra={"path": str(config.reference_data_path)})
                self._reference_repository = YAMLReferenceDataRepository(config.reference_data_path)

        self.cache = ReferenceDataCache(
            self._reference_repository,
            ttl_seconds=config.reference_cache_ttl_seconds,
            max_lookahead_days=config.max_lookahead_days,
        )
        self.sla_service = SLAService(
            self.cache, self._ticket_repository, config.at_risk_threshold_percent
        )
        self.lifecycle_service = TicketLifecycleService(
            self._ticket_repository, self.cache, config.transition_max_retries
        )

        if isinstance(self._reference_repository, YAMLReferenceDataRepository):
            self.watcher = ReferenceDataWatcher(self._reference_repository, self.cache)
            self.watcher.start()

        if self._slack_client is None:
            self._slack_client = SlackClient(config.slack_webhook_url, config.slack_timeout_seconds)

        self.sweeper = EscalationSweeper(
            self._ticket_repository,
            self.lifecycle_service,
            self.cache,
            self._slack_client,
            interval_seconds=config.escalation_sweep_interval,
        )

        if run_scheduler and config.escalation_sweep_interval > 0:
            self.scheduler = EscalationScheduler(config.escalation_sweep_interval)
            await self.scheduler.start(self.sweeper.run)
        else:
            logger.info("Escalation scheduler disabled")

        logger.info("SLA engine started successfully")

    async def stop(self) -> None:
        # === SHUTDOWN ===
        logger.info("Shutting down SLA engine")

        if self.scheduler:
            await self.scheduler.stop()
            self.scheduler = None

        if self.watcher:
            self.watcher.stop()
            self.watcher = None

        if self._slack_client:
            await self._slack_client.close()

        if self._owns_database:
            await close_database()
            self._owns_database = False

        logger.info("SLA engine shutdown complete")


async def run() -> None:
    """Run the engine until SIGINT/SIGTERM."""
    engine = SLAEngine()
    await engine.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops
            pass

    try:
        await stop.wait()
    finally:
        await engine.stop()


def main() -> None:
    asyncio.run(run())


# === Development Entry Point ===

if __name__ == "__main__":
    main()
