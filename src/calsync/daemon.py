"""SyncDaemon: host process wiring for the reconciliation core.

Startup sequence:
1. Load config from calsync.toml (or accept an already-parsed config)
2. Configure structured logging
3. Initialize OpenTelemetry tracing and metrics
4. Build RetryExecutor, ReconciliationEngine and SchedulerSupervisor
5. Start one scheduler per enabled binding

Persistence and provider adapters are injected; the daemon owns no storage.
Shutdown stops the schedulers and drains in-flight runs within
``scheduler.shutdown_timeout_s``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from calsync.config import CalsyncConfig, load_config
from calsync.core.logging import configure_logging
from calsync.core.metrics import SyncMetrics, init_metrics
from calsync.core.telemetry import init_telemetry
from calsync.sync.engine import ReconciliationEngine
from calsync.sync.repositories import (
    CalendarBindingRepository,
    CalendarEventRepositoryFactory,
    CredentialRepository,
    UnitOfWork,
)
from calsync.sync.retry import RetryExecutor
from calsync.sync.status import StatusFeed
from calsync.sync.supervisor import SchedulerSupervisor

logger = logging.getLogger(__name__)


class SyncDaemon:
    """Runs binding schedulers for the lifetime of the host process."""

    def __init__(
        self,
        config: CalsyncConfig | Path,
        *,
        bindings: CalendarBindingRepository,
        credentials: CredentialRepository,
        event_repositories: CalendarEventRepositoryFactory,
        unit_of_work: UnitOfWork,
        clock: Callable[[], datetime] | None = None,
        configure_process: bool = True,
    ) -> None:
        self.config = config if isinstance(config, CalsyncConfig) else load_config(config)
        self._bindings = bindings
        self._credentials = credentials
        self._event_repositories = event_repositories
        self._unit_of_work = unit_of_work
        self._clock = clock
        self._configure_process = configure_process
        self.engine: ReconciliationEngine | None = None
        self.supervisor: SchedulerSupervisor | None = None

    @property
    def is_running(self) -> bool:
        return self.supervisor is not None and self.supervisor.is_started

    async def start(self) -> None:
        if self.is_running:
            logger.warning("SyncDaemon already running")
            return

        config = self.config
        if self._configure_process:
            log_root = Path(config.logging.log_root) if config.logging.log_root else None
            configure_logging(
                level=config.logging.level,
                fmt=config.logging.format,
                log_root=log_root,
            )
            init_telemetry(config.service_name)
            init_metrics(config.service_name)

        metrics = SyncMetrics()
        retry = RetryExecutor(config.retry.to_policy(), metrics=metrics)
        self.engine = ReconciliationEngine(
            bindings=self._bindings,
            credentials=self._credentials,
            event_repositories=self._event_repositories,
            unit_of_work=self._unit_of_work,
            retry=retry,
            clock=self._clock,
            past_days=config.scheduler.past_days,
            metrics=metrics,
        )
        self.supervisor = SchedulerSupervisor(
            self.engine,
            self._bindings,
            status_feed=StatusFeed(config.scheduler.status_queue_size),
            clock=self._clock,
            failure_cooldown_s=config.scheduler.failure_cooldown_s,
            metrics=metrics,
        )
        await self.supervisor.start()
        logger.info("SyncDaemon started (service=%s)", config.service_name)

    async def shutdown(self) -> None:
        if self.supervisor is None:
            return
        logger.info("SyncDaemon shutting down")
        await self.supervisor.stop(timeout=self.config.scheduler.shutdown_timeout_s)
        logger.info("SyncDaemon stopped")
