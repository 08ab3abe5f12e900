"""Calendar-binding reconciliation core."""

from calsync.sync.engine import ReconciliationEngine
from calsync.sync.errors import (
    AuthenticationError,
    CalendarSyncError,
    ConfigurationError,
    PermanentRemoteError,
    PersistenceError,
    RetryExhaustedError,
    TransientRemoteError,
)
from calsync.sync.retry import RetryExecutor, RetryPolicy
from calsync.sync.supervisor import SchedulerSupervisor, TriggerOutcome, TriggerResult

__all__ = [
    "AuthenticationError",
    "CalendarSyncError",
    "ConfigurationError",
    "PermanentRemoteError",
    "PersistenceError",
    "ReconciliationEngine",
    "RetryExecutor",
    "RetryExhaustedError",
    "RetryPolicy",
    "SchedulerSupervisor",
    "TransientRemoteError",
    "TriggerOutcome",
    "TriggerResult",
]
