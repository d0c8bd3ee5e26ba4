"""Exception types shared across the results pipeline."""


class NonRetryableError(Exception):
    """Failure that a coordinated retry cannot fix."""

    retryable = False


class InvalidCycleData(NonRetryableError):
    """A cycle's stored entity list failed validation."""

    def __init__(self, cycle_id: int, detail: str):
        super().__init__(f"Invalid entity data for cycle {cycle_id}: {detail}")
        self.cycle_id = cycle_id


class ResolutionStateDivergence(NonRetryableError):
    """
    Resolution was confirmed on-chain but the local cycle row was not updated.

    Never self-heals silently; an operator has to look at it.
    """

    def __init__(self, cycle_id: int, tx_hash: str | None, cause: Exception | None = None):
        super().__init__(
            f"Cycle {cycle_id} resolved on-chain (tx={tx_hash}) but local state was not updated"
            + (f": {cause}" if cause else "")
        )
        self.cycle_id = cycle_id
        self.tx_hash = tx_hash


class ChainSubmissionError(Exception):
    """Resolution transaction was rejected, reverted or never confirmed."""

    def __init__(self, message: str, cycle_id: int | None = None, tx_hash: str | None = None, retryable: bool = True):
        super().__init__(message)
        self.cycle_id = cycle_id
        self.tx_hash = tx_hash
        self.retryable = retryable
