"""Result ingestion, storage and outcome calculation."""

from matchday.services.results.ingestion import ResultIngestionService
from matchday.services.results.outcomes import OutcomeSet, backfill_outcomes, derive_outcomes
from matchday.services.results.storage import ResultStore

__all__ = [
    "OutcomeSet",
    "ResultIngestionService",
    "ResultStore",
    "backfill_outcomes",
    "derive_outcomes",
]
