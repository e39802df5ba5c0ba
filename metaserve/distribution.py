"""
metaserve/distribution.py - Final-owner snapshots for tournament winners

At finish, each distinct winning entry of a completed final is resolved to
whoever holds the card right now. Owner lookups run before the finish
transaction opens; the rows are appended inside it. Rows are never updated
or deleted (the store enforces this with triggers).
"""

import logging
from dataclasses import dataclass

from .models import DistributionLog, Entry
from .ownership import OwnershipOracle
from .store import TournamentDB

logger = logging.getLogger(__name__)

UNKNOWN_OWNER = "unknown"


@dataclass
class OwnerSnapshot:
    """A winning entry paired with its resolved owner."""

    entry: Entry
    final_owner: str


class DistributionRecorder:
    def __init__(self, db: TournamentDB, oracle: OwnershipOracle | None = None):
        self.db = db
        self.oracle = oracle

    async def resolve_owners(self, entries: list[Entry]) -> list[OwnerSnapshot]:
        """Look up the current owner of each entry's card.

        Unconfigured oracle or failed lookup gives UNKNOWN_OWNER.
        """
        snapshots = []
        for entry in entries:
            owner = None
            if self.oracle is not None and self.oracle.configured:
                owner = await self.oracle.current_owner(entry.contract_address, entry.token_id)
            snapshots.append(OwnerSnapshot(entry=entry, final_owner=owner or UNKNOWN_OWNER))
        return snapshots

    async def append(
        self, tournament_id: str, snapshots: list[OwnerSnapshot]
    ) -> list[DistributionLog]:
        """Insert one log row per snapshot. Call inside db.transaction()."""
        logs = []
        for snap in snapshots:
            log = await self.db.insert_distribution(tournament_id, snap.entry, snap.final_owner)
            logger.info(
                f"[Distribution] tournament={tournament_id} entry={snap.entry.id} "
                f"card={snap.entry.contract_address}#{snap.entry.token_id} "
                f"owner={snap.final_owner}"
            )
            logs.append(log)
        return logs

    async def history(self, tournament_id: str) -> list[DistributionLog]:
        return await self.db.list_distributions(tournament_id)
