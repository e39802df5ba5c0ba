"""
metaserve/tournaments.py - Tournament lifecycle and registration admission

TournamentService owns every state transition:

    create          -> OPEN
    register        OPEN only (signature, ownership, quota, uniqueness)
    lock            OPEN -> LOCKED
    seed_matches    LOCKED | IN_PROGRESS -> IN_PROGRESS
    record_result   IN_PROGRESS only
    finish          IN_PROGRESS -> FINISHED (appends distribution logs)

Status is re-checked inside the store transaction that performs the write,
so a transition that raced another one is rejected instead of applied twice.
Chain and oracle calls happen before the transaction opens.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Iterable

from .addresses import canonicalize
from .distribution import DistributionRecorder
from .errors import (
    NotFoundError,
    QuotaExceededError,
    StateConflictError,
    ValidationError,
    VerificationFailure,
)
from .messages import build_registration_message
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

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES_PER_WALLET = 3
MIN_NAME_LENGTH = 3
MIN_SIGNATURE_LENGTH = 10


class TournamentService:
    """Tournament state machine over a TournamentDB.

    Args:
        db: Open store handle.
        verifier: Signature verifier used at registration.
        oracle: Optional ownership oracle. When configured, registration
            requires the wallet to own the card and finish records the
            current owner of each winning card.
    """

    def __init__(
        self,
        db: TournamentDB,
        verifier: SignatureVerifier,
        oracle: OwnershipOracle | None = None,
    ):
        self.db = db
        self.verifier = verifier
        self.oracle = oracle
        self.distribution = DistributionRecorder(db, oracle)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, tournament_id: str) -> Tournament:
        tournament = await self.db.get_tournament(tournament_id)
        if tournament is None:
            raise NotFoundError(f"tournament not found: {tournament_id}")
        return tournament

    async def list_tournaments(self) -> list[Tournament]:
        return await self.db.list_tournaments()

    async def detail(self, tournament_id: str) -> TournamentDetail:
        tournament = await self.get(tournament_id)
        return TournamentDetail(
            tournament=tournament,
            entries=await self.db.list_entries(tournament_id),
            matches=await self.db.list_matches(tournament_id),
        )

    async def distributions(self, tournament_id: str) -> list[DistributionLog]:
        await self.get(tournament_id)
        return await self.distribution.history(tournament_id)

    # ------------------------------------------------------------------
    # Create / lock
    # ------------------------------------------------------------------

    async def create(
        self,
        slug: str,
        title: str,
        capacity: int,
        starts_at: datetime | str,
        max_entries_per_wallet: int = DEFAULT_MAX_ENTRIES_PER_WALLET,
        description: str | None = None,
    ) -> Tournament:
        slug = _require_name(slug, "slug")
        title = _require_name(title, "title")
        _require_positive_int(capacity, "capacity")
        _require_positive_int(max_entries_per_wallet, "max_entries_per_wallet")
        starts = _parse_starts_at(starts_at)

        async with self.db.transaction():
            tournament = await self.db.insert_tournament(
                slug=slug,
                title=title,
                capacity=capacity,
                starts_at=starts,
                max_entries_per_wallet=max_entries_per_wallet,
                description=description,
            )
        logger.info(f"Tournament created: {tournament.slug} ({tournament.id})")
        return tournament

    async def lock(self, tournament_id: str) -> Tournament:
        async with self.db.transaction():
            tournament = await self.get(tournament_id)
            _require_status(tournament, "lock", TournamentStatus.OPEN)
            tournament = await self.db.set_tournament_status(
                tournament_id, TournamentStatus.LOCKED
            )
        logger.info(f"Tournament {tournament_id} locked")
        return tournament

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(self, tournament_id: str, request: RegistrationRequest) -> Entry:
        """Admit one card into an OPEN tournament.

        Raises:
            ValidationError: malformed request.
            NotFoundError: unknown tournament.
            StateConflictError: tournament is not OPEN.
            VerificationFailure: signature or ownership check failed.
            QuotaExceededError: wallet already at max_entries_per_wallet.
            UniquenessConflict: card already registered in this tournament.
        """
        wallet, contract, token_id = _validate_registration(request)

        tournament = await self.get(tournament_id)
        _require_status(tournament, "register", TournamentStatus.OPEN)

        message = request.signed_message or build_registration_message(
            tournament.id, contract, token_id, request.timestamp
        )
        if not await self.verifier.verify(
            wallet, message, request.signature, chain_id=request.chain_id
        ):
            raise VerificationFailure("signature verification failed")

        if self.oracle is not None and self.oracle.configured:
            owner = await self.oracle.current_owner(contract, token_id)
            if owner != wallet:
                logger.warning(
                    f"Ownership mismatch for {contract}#{token_id}: "
                    f"wallet={wallet} owner={owner}"
                )
                raise VerificationFailure("ownership check failed")

        async with self.db.transaction():
            current = await self.get(tournament_id)
            _require_status(current, "register", TournamentStatus.OPEN)

            wallet_row = await self.db.upsert_wallet(wallet)
            count = await self.db.count_entries(tournament_id, wallet_row.id)
            if count >= current.max_entries_per_wallet:
                raise QuotaExceededError(
                    f"wallet {wallet} already has {count} of "
                    f"{current.max_entries_per_wallet} entries"
                )
            entry = await self.db.insert_entry(tournament_id, wallet_row.id, contract, token_id)

        logger.info(
            f"Registered {contract}#{token_id} for {wallet} in {tournament_id} "
            f"({count + 1}/{current.max_entries_per_wallet})"
        )
        return entry

    # ------------------------------------------------------------------
    # Bracket
    # ------------------------------------------------------------------

    async def seed_matches(self, tournament_id: str, seeds: Iterable[MatchSeed]) -> list[Match]:
        """Insert or update bracket rows and move the tournament to IN_PROGRESS.

        Seeds with an id update that match; seeds without one insert a new
        PENDING match. The batch and the status change commit together.
        """
        seeds = [_validate_seed(s) for s in seeds]

        async with self.db.transaction():
            tournament = await self.get(tournament_id)
            _require_status(
                tournament, "seed", TournamentStatus.LOCKED, TournamentStatus.IN_PROGRESS
            )

            entry_ids = {e.id for e in await self.db.list_entries(tournament_id)}
            known = {m.id: m for m in await self.db.list_matches(tournament_id)}

            saved = []
            for seed in seeds:
                for entry_id in (seed.entry_a_id, seed.entry_b_id):
                    if entry_id is not None and entry_id not in entry_ids:
                        raise ValidationError(
                            f"entry {entry_id} does not belong to tournament {tournament_id}"
                        )
                if seed.id is not None and seed.id not in known:
                    raise NotFoundError(f"match not found: {seed.id}")
                if seed.next_match_id is not None:
                    _check_forward_pointer(seed, known)

                if seed.id is None:
                    match = await self.db.insert_match(tournament_id, seed)
                else:
                    match = await self.db.update_match_bracket(seed.id, seed)
                known[match.id] = match
                saved.append(match)

            if tournament.status != TournamentStatus.IN_PROGRESS:
                await self.db.set_tournament_status(tournament_id, TournamentStatus.IN_PROGRESS)

        logger.info(f"Seeded {len(saved)} matches in {tournament_id}; status IN_PROGRESS")
        return saved

    async def record_result(
        self,
        match_id: str,
        sets_a: int,
        sets_b: int,
        winner_entry_id: str,
        scoreline: str | None = None,
    ) -> Match:
        """Complete a match with the declared winner.

        The winner is caller-trusted: it must be an entry of the tournament,
        but it is not checked against the set counts.
        """
        _require_non_negative_int(sets_a, "sets_a")
        _require_non_negative_int(sets_b, "sets_b")
        if not isinstance(winner_entry_id, str) or not winner_entry_id.strip():
            raise ValidationError("winner_entry_id is required")

        async with self.db.transaction():
            match = await self.db.get_match(match_id)
            if match is None:
                raise NotFoundError(f"match not found: {match_id}")
            tournament = await self.get(match.tournament_id)
            _require_status(tournament, "record a result", TournamentStatus.IN_PROGRESS)

            winner = await self.db.get_entry(winner_entry_id)
            if winner is None or winner.tournament_id != tournament.id:
                raise ValidationError(
                    f"entry {winner_entry_id} does not belong to tournament {tournament.id}"
                )
            match = await self.db.complete_match(
                match_id, sets_a, sets_b, winner_entry_id, scoreline
            )

        logger.info(
            f"Match {match_id} ({match.round.value}) completed {sets_a}-{sets_b}, "
            f"winner {winner_entry_id}"
        )
        return match

    # ------------------------------------------------------------------
    # Finish
    # ------------------------------------------------------------------

    async def finish(self, tournament_id: str) -> FinishResult:
        """Snapshot final owners of the winners and move to FINISHED.

        No completed finals is not an error: the distribution list is empty.
        """
        tournament = await self.get(tournament_id)
        _require_status(tournament, "finish", TournamentStatus.IN_PROGRESS)

        winner_ids = _final_winners(await self.db.list_matches(tournament_id))
        entries = await self.db.get_entries(winner_ids)
        snapshots = await self.distribution.resolve_owners(entries)

        async with self.db.transaction():
            current = await self.get(tournament_id)
            _require_status(current, "finish", TournamentStatus.IN_PROGRESS)
            if _final_winners(await self.db.list_matches(tournament_id)) != winner_ids:
                raise StateConflictError("final results changed while finishing; retry")

            logs = await self.distribution.append(tournament_id, snapshots)
            finished = await self.db.set_tournament_status(
                tournament_id, TournamentStatus.FINISHED
            )

        logger.info(f"Tournament {tournament_id} finished with {len(logs)} distribution(s)")
        return FinishResult(tournament=finished, distributions=logs)


# ============================================================================
# Validation helpers
# ============================================================================


def _require_status(tournament: Tournament, action: str, *allowed: TournamentStatus) -> None:
    if tournament.status not in allowed:
        names = " or ".join(s.value for s in allowed)
        raise StateConflictError(
            f"cannot {action}: tournament {tournament.id} is "
            f"{tournament.status.value}, expected {names}"
        )


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require_positive_int(value: Any, field: str) -> None:
    if not _is_int(value) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer")


def _require_non_negative_int(value: Any, field: str) -> None:
    if not _is_int(value) or value < 0:
        raise ValidationError(f"{field} must be a non-negative integer")


def _require_name(value: Any, field: str) -> str:
    if not isinstance(value, str) or len(value.strip()) < MIN_NAME_LENGTH:
        raise ValidationError(f"{field} must be at least {MIN_NAME_LENGTH} characters")
    return value.strip()


def _parse_starts_at(value: datetime | str) -> str:
    """UTC ISO string. Naive datetimes are taken as UTC."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip())
        except ValueError as e:
            raise ValidationError(f"starts_at is not an ISO datetime: {value!r}") from e
    if not isinstance(value, datetime):
        raise ValidationError("starts_at must be a datetime")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _validate_registration(request: RegistrationRequest) -> tuple[str, str, str]:
    """Canonical (wallet, contract, token_id) or ValidationError."""
    wallet = canonicalize(request.wallet_address)
    contract = canonicalize(request.contract_address)

    token_id = str(request.token_id).strip() if request.token_id is not None else ""
    if not token_id:
        raise ValidationError("token_id is required")

    if not isinstance(request.signature, str) or len(request.signature) < MIN_SIGNATURE_LENGTH:
        raise ValidationError("signature is missing or too short")

    _require_positive_int(request.timestamp, "timestamp")

    if request.chain_id is not None and not _is_int(request.chain_id):
        raise ValidationError("chain_id must be an integer")
    return wallet, contract, token_id


def _validate_seed(seed: MatchSeed) -> MatchSeed:
    if not isinstance(seed.round, Round):
        try:
            seed = replace(seed, round=Round(seed.round))
        except ValueError as e:
            raise ValidationError(f"unknown round: {seed.round!r}") from e
    if seed.entry_a_id is not None and seed.entry_a_id == seed.entry_b_id:
        raise ValidationError("a match cannot pair an entry with itself")
    if seed.id is not None and seed.next_match_id == seed.id:
        raise ValidationError("a match cannot feed into itself")
    return seed


def _check_forward_pointer(seed: MatchSeed, known: dict[str, Match]) -> None:
    target = known.get(seed.next_match_id)
    if target is None:
        raise ValidationError(f"next match {seed.next_match_id} is not in this tournament")
    if target.round.rank <= seed.round.rank:
        raise ValidationError(
            f"next match must be a later round than {seed.round.value}, "
            f"got {target.round.value}"
        )


def _final_winners(matches: list[Match]) -> list[str]:
    """Distinct winning entry ids of completed finals, in match order."""
    winners = [
        m.winner_entry_id
        for m in matches
        if m.round == Round.F and m.status == MatchStatus.COMPLETED and m.winner_entry_id
    ]
    return list(dict.fromkeys(winners))
