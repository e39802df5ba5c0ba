"""
MetaServe - NFT-gated tournaments with universal wallet signatures

Wallets register their cards with a signed message; the backend proves the
signature for key-pair and smart-contract wallets alike, runs the bracket,
and snapshots who holds each winning card when the tournament finishes.
"""

__version__ = "0.1.0"

from .addresses import canonicalize, same_address
from .config import MetaserveConfig, build_oracle, build_verifier, load_config
from .errors import (
    InvalidAddress,
    NotFoundError,
    QuotaExceededError,
    StateConflictError,
    TournamentError,
    UniquenessConflict,
    ValidationError,
    VerificationFailure,
)
from .messages import build_registration_message, normalize_line_endings
from .models import (
    DistributionLog,
    Entry,
    FinishResult,
    Match,
    MatchSeed,
    MatchStatus,
    RegistrationRequest,
    Round,
    Tournament,
    TournamentDetail,
    TournamentStatus,
)
from .ownership import OwnershipOracle
from .signatures import SignatureVerifier
from .store import TournamentDB
from .tournaments import TournamentService

__all__ = [
    # Addresses / messages
    "canonicalize",
    "same_address",
    "build_registration_message",
    "normalize_line_endings",
    # Config
    "MetaserveConfig",
    "load_config",
    "build_verifier",
    "build_oracle",
    # Errors
    "TournamentError",
    "ValidationError",
    "InvalidAddress",
    "NotFoundError",
    "StateConflictError",
    "VerificationFailure",
    "QuotaExceededError",
    "UniquenessConflict",
    # Models
    "TournamentStatus",
    "Round",
    "MatchStatus",
    "Tournament",
    "Entry",
    "Match",
    "DistributionLog",
    "RegistrationRequest",
    "MatchSeed",
    "TournamentDetail",
    "FinishResult",
    # Services
    "SignatureVerifier",
    "OwnershipOracle",
    "TournamentDB",
    "TournamentService",
]
