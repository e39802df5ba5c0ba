"""
metaserve/models.py - Tournament records and request types

Records mirror store rows. Requests are what callers hand to the
TournamentService; they are validated there, not here.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Mapping


# ============================================================================
# Enums
# ============================================================================


class TournamentStatus(str, Enum):
    """Forward-only lifecycle: OPEN -> LOCKED -> IN_PROGRESS -> FINISHED."""

    OPEN = "OPEN"
    LOCKED = "LOCKED"
    IN_PROGRESS = "IN_PROGRESS"
    FINISHED = "FINISHED"


class Round(str, Enum):
    """Bracket rounds, earliest first."""

    R64 = "R64"
    R32 = "R32"
    R16 = "R16"
    QF = "QF"
    SF = "SF"
    F = "F"

    @property
    def rank(self) -> int:
        return list(Round).index(self)


class MatchStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


def _plain(record: Any) -> dict[str, Any]:
    return {
        k: (v.value if isinstance(v, Enum) else v)
        for k, v in asdict(record).items()
    }


# ============================================================================
# Records
# ============================================================================


@dataclass
class Wallet:
    id: str
    address: str
    created_at: str


@dataclass
class Tournament:
    id: str
    slug: str
    title: str
    capacity: int
    starts_at: str
    max_entries_per_wallet: int
    status: TournamentStatus
    description: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Tournament":
        return cls(
            id=row["id"],
            slug=row["slug"],
            title=row["title"],
            capacity=row["capacity"],
            starts_at=row["starts_at"],
            max_entries_per_wallet=row["max_entries_per_wallet"],
            status=TournamentStatus(row["status"]),
            description=row["description"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return _plain(self)


@dataclass
class Entry:
    """One registered card. wallet_address is filled on joined reads."""

    id: str
    tournament_id: str
    wallet_id: str
    contract_address: str
    token_id: str
    unique_entry: str
    created_at: str | None = None
    wallet_address: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Entry":
        keys = row.keys()
        return cls(
            id=row["id"],
            tournament_id=row["tournament_id"],
            wallet_id=row["wallet_id"],
            contract_address=row["contract_address"],
            token_id=row["token_id"],
            unique_entry=row["unique_entry"],
            created_at=row["created_at"],
            wallet_address=row["wallet_address"] if "wallet_address" in keys else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return _plain(self)


@dataclass
class Match:
    id: str
    tournament_id: str
    round: Round
    status: MatchStatus = MatchStatus.PENDING
    entry_a_id: str | None = None
    entry_b_id: str | None = None
    next_match_id: str | None = None
    sets_a: int | None = None
    sets_b: int | None = None
    scoreline: str | None = None
    winner_entry_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Match":
        return cls(
            id=row["id"],
            tournament_id=row["tournament_id"],
            round=Round(row["round"]),
            status=MatchStatus(row["status"]),
            entry_a_id=row["entry_a_id"],
            entry_b_id=row["entry_b_id"],
            next_match_id=row["next_match_id"],
            sets_a=row["sets_a"],
            sets_b=row["sets_b"],
            scoreline=row["scoreline"],
            winner_entry_id=row["winner_entry_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return _plain(self)


@dataclass(frozen=True)
class DistributionLog:
    """Final-owner snapshot for a winning entry. Never mutated."""

    id: str
    tournament_id: str
    entry_id: str
    contract_address: str
    token_id: str
    final_owner: str
    created_at: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "DistributionLog":
        return cls(
            id=row["id"],
            tournament_id=row["tournament_id"],
            entry_id=row["entry_id"],
            contract_address=row["contract_address"],
            token_id=row["token_id"],
            final_owner=row["final_owner"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return _plain(self)


# ============================================================================
# Requests / results
# ============================================================================


@dataclass
class RegistrationRequest:
    """A wallet's signed request to enter one card into a tournament.

    signed_message, when non-empty, is verified as-is; otherwise the
    canonical registration message is rebuilt from the other fields.
    """

    wallet_address: str
    contract_address: str
    token_id: str
    signature: str
    timestamp: int
    signed_message: str | None = None
    chain_id: int | None = None


@dataclass
class MatchSeed:
    """One bracket row to insert (id=None) or update (id set)."""

    round: Round
    id: str | None = None
    entry_a_id: str | None = None
    entry_b_id: str | None = None
    next_match_id: str | None = None


@dataclass
class TournamentDetail:
    tournament: Tournament
    entries: list[Entry] = field(default_factory=list)
    matches: list[Match] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = self.tournament.to_dict()
        data["entries"] = [e.to_dict() for e in self.entries]
        data["matches"] = [m.to_dict() for m in self.matches]
        return data


@dataclass
class FinishResult:
    tournament: Tournament
    distributions: list[DistributionLog] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tournament": self.tournament.to_dict(),
            "distributions": [d.to_dict() for d in self.distributions],
        }
