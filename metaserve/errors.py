"""
metaserve/errors.py - Error taxonomy for tournament operations

Every core operation either returns a result or raises one of these.
Transient chain/oracle failures never surface here: the verifier and the
ownership oracle degrade them to a negative answer instead.
"""


class TournamentError(Exception):
    """Base class for all rejections raised by the tournament core."""


class ValidationError(TournamentError):
    """Malformed input. Raised before any side effect is attempted."""


class InvalidAddress(ValidationError):
    """An address string is empty or not 0x-prefixed 20-byte hex."""


class NotFoundError(TournamentError):
    """A referenced tournament or match does not exist."""


class StateConflictError(TournamentError):
    """The requested transition is invalid for the current state."""


class VerificationFailure(TournamentError):
    """Signature or ownership check did not pass.

    Never retried by the core; the client resubmits with a fresh
    signature and timestamp.
    """


class QuotaExceededError(TournamentError):
    """The wallet already holds max_entries_per_wallet entries."""


class UniquenessConflict(TournamentError):
    """A store-level uniqueness constraint rejected the write."""
