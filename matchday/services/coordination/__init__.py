"""Cross-process job coordination."""

from matchday.services.coordination.coordinator import JobCoordinator, JobOutcome
from matchday.services.coordination.locks import LockStore
from matchday.services.coordination.status import CoordinationStatusService

__all__ = [
    "CoordinationStatusService",
    "JobCoordinator",
    "JobOutcome",
    "LockStore",
]
