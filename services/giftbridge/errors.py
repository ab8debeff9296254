"""
Error taxonomy for the GiftBridge sync.

Per-donation errors (validation, remote dependency failures) are recorded
and the batch continues. Run-level errors (checkpoint, auth) abort the batch.
"""

from typing import Optional


class GiftBridgeError(Exception):
    """Base exception for all GiftBridge errors."""
    pass


# ============================================================================
# Validation (never retried, attributed to a single donation)
# ============================================================================

class ValidationError(GiftBridgeError):
    """Donation data cannot be reconciled as-is."""
    pass


class NoDonorInfoError(ValidationError):
    """Donation carries no supporter reference."""
    pass


class InvalidAmountError(ValidationError):
    """Donation amount is not a parseable decimal."""
    pass


class OriginDecodeError(ValidationError):
    """Gift origin field is not valid origin JSON."""
    pass


# ============================================================================
# Remote dependencies (recorded per donation, batch continues)
# ============================================================================

class DependencyError(GiftBridgeError):
    """A remote API call failed."""
    pass


class RetryableHTTPError(DependencyError):
    """Raised when max retries are exceeded."""
    pass


# ============================================================================
# Run-level (fatal to the whole batch)
# ============================================================================

class CheckpointError(GiftBridgeError):
    """Progress state could not be read or persisted."""
    pass


class AuthError(GiftBridgeError):
    """Access token could not be obtained or refreshed."""
    pass


RUN_LEVEL_ERRORS = (CheckpointError, AuthError)


# ============================================================================
# Reconciliation
# ============================================================================

class OrphanedSeriesError(GiftBridgeError):
    """
    Recurring series has gifts in Blackbaud but no RecurringGift anchor.

    Raised instead of minting a second anchor for the series; the records
    need a manual decision about which gift should head the series.
    """

    def __init__(self, recurring_id: str, gift_ids: list):
        self.recurring_id = recurring_id
        self.gift_ids = list(gift_ids)
        super().__init__(
            f"recurring series {recurring_id} has gifts {self.gift_ids} "
            f"but no RecurringGift anchor"
        )


class ReconciliationError(GiftBridgeError):
    """
    A pipeline stage failed for one donation.

    The original exception is chained as __cause__ and kept on `cause`.
    """

    def __init__(self, stage: str, donation_id: str, cause: Exception):
        self.stage = stage
        self.donation_id = donation_id
        self.cause = cause
        super().__init__(f"{stage}: donation {donation_id}: {cause}")
        self.__cause__ = cause

    @property
    def is_run_level(self) -> bool:
        """True when the underlying failure must abort the batch."""
        return isinstance(self.cause, RUN_LEVEL_ERRORS)


def root_cause(exc: Optional[BaseException]) -> Optional[BaseException]:
    """Unwrap ReconciliationError layers down to the original exception."""
    while isinstance(exc, ReconciliationError):
        exc = exc.cause
    return exc
