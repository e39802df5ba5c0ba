"""
metaserve/store.py - SQLite storage for tournaments, entries and brackets.

All queries go through TournamentDB. One instance per process, backed by a
single SQLite file (or :memory: for tests) over aiosqlite.

Multi-statement units run inside transaction(): BEGIN IMMEDIATE on the
shared connection, serialized by an asyncio.Lock so two coroutines never
interleave statements of different transactions. Writes are only accepted
from the task that opened the transaction, and reads from any other task
wait on the same lock, so nobody sees rows that may still roll back.
The UNIQUE constraints on entries are the final word on duplicate
registrations, and triggers keep statuses forward-only and distribution
logs append-only.
"""

import asyncio
import logging
import sqlite3
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Iterable, Sequence

import aiosqlite

from .errors import UniquenessConflict
from .models import (
    DistributionLog,
    Entry,
    Match,
    MatchSeed,
    MatchStatus,
    Tournament,
    TournamentStatus,
    Wallet,
)

logger = logging.getLogger(__name__)

_STATUS_RANK = """
    CASE {col}
        WHEN 'OPEN' THEN 0
        WHEN 'LOCKED' THEN 1
        WHEN 'IN_PROGRESS' THEN 2
        WHEN 'FINISHED' THEN 3
    END
"""

SCHEMA = f"""
CREATE TABLE IF NOT EXISTS wallets (
    id TEXT PRIMARY KEY,
    address TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tournaments (
    id TEXT PRIMARY KEY,
    slug TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL,
    description TEXT,
    capacity INTEGER NOT NULL CHECK (capacity > 0),
    starts_at TEXT NOT NULL,
    max_entries_per_wallet INTEGER NOT NULL DEFAULT 3 CHECK (max_entries_per_wallet > 0),
    status TEXT NOT NULL DEFAULT 'OPEN'
        CHECK (status IN ('OPEN', 'LOCKED', 'IN_PROGRESS', 'FINISHED')),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS entries (
    id TEXT PRIMARY KEY,
    tournament_id TEXT NOT NULL REFERENCES tournaments(id) ON DELETE CASCADE,
    wallet_id TEXT NOT NULL REFERENCES wallets(id),
    contract_address TEXT NOT NULL,
    token_id TEXT NOT NULL,
    unique_entry TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL,
    UNIQUE (tournament_id, contract_address, token_id)
);

CREATE INDEX IF NOT EXISTS idx_entries_tournament_wallet
    ON entries (tournament_id, wallet_id);

CREATE TABLE IF NOT EXISTS matches (
    id TEXT PRIMARY KEY,
    tournament_id TEXT NOT NULL REFERENCES tournaments(id) ON DELETE CASCADE,
    round TEXT NOT NULL CHECK (round IN ('R64', 'R32', 'R16', 'QF', 'SF', 'F')),
    entry_a_id TEXT REFERENCES entries(id),
    entry_b_id TEXT REFERENCES entries(id),
    next_match_id TEXT REFERENCES matches(id),
    status TEXT NOT NULL DEFAULT 'PENDING' CHECK (status IN ('PENDING', 'COMPLETED')),
    sets_a INTEGER,
    sets_b INTEGER,
    scoreline TEXT,
    winner_entry_id TEXT REFERENCES entries(id),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_matches_tournament ON matches (tournament_id);

CREATE TABLE IF NOT EXISTS distribution_logs (
    id TEXT PRIMARY KEY,
    tournament_id TEXT NOT NULL REFERENCES tournaments(id),
    entry_id TEXT NOT NULL REFERENCES entries(id),
    contract_address TEXT NOT NULL,
    token_id TEXT NOT NULL,
    final_owner TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TRIGGER IF NOT EXISTS tournaments_status_forward_only
BEFORE UPDATE OF status ON tournaments
WHEN {_STATUS_RANK.format(col='NEW.status')} < {_STATUS_RANK.format(col='OLD.status')}
BEGIN
    SELECT RAISE(ABORT, 'tournament status cannot move backwards');
END;

CREATE TRIGGER IF NOT EXISTS matches_status_forward_only
BEFORE UPDATE OF status ON matches
WHEN OLD.status = 'COMPLETED' AND NEW.status != 'COMPLETED'
BEGIN
    SELECT RAISE(ABORT, 'match status cannot move backwards');
END;

CREATE TRIGGER IF NOT EXISTS distribution_logs_no_update
BEFORE UPDATE ON distribution_logs
BEGIN
    SELECT RAISE(ABORT, 'distribution logs are append-only');
END;

CREATE TRIGGER IF NOT EXISTS distribution_logs_no_delete
BEFORE DELETE ON distribution_logs
BEGIN
    SELECT RAISE(ABORT, 'distribution logs are append-only');
END;
"""


class TournamentDB:
    """Thin wrapper around aiosqlite for tournament storage."""

    def __init__(self, conn: aiosqlite.Connection, path: str = ":memory:"):
        self._conn = conn
        self.path = path
        self._lock = asyncio.Lock()
        self._tx_owner: asyncio.Task | None = None

    @classmethod
    async def open(cls, path: str = "metaserve.db") -> "TournamentDB":
        # isolation_level=None: transactions are opened explicitly below
        conn = await aiosqlite.connect(path, isolation_level=None)
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA foreign_keys=ON")
        if path != ":memory:":
            await conn.execute("PRAGMA journal_mode=WAL")
        db = cls(conn, path)
        await db._create_tables()
        return db

    async def close(self) -> None:
        await self._conn.close()

    async def _create_tables(self) -> None:
        await self._conn.executescript(SCHEMA)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["TournamentDB"]:
        """Run statements atomically. Commits on success, rolls back on exception.

        Usage:
            async with db.transaction():
                await db.upsert_wallet(...)
                await db.insert_entry(...)
        """
        async with self._lock:
            await self._conn.execute("BEGIN IMMEDIATE")
            self._tx_owner = asyncio.current_task()
            try:
                yield self
                await self._conn.execute("COMMIT")
            except BaseException:
                await self._conn.execute("ROLLBACK")
                raise
            finally:
                self._tx_owner = None

    # ------------------------------------------------------------------
    # Low-level helpers
    # ------------------------------------------------------------------

    def _owns_tx(self) -> bool:
        return self._tx_owner is not None and self._tx_owner is asyncio.current_task()

    async def _fetch_one(self, sql: str, params: Sequence[Any] = ()) -> aiosqlite.Row | None:
        if self._owns_tx():
            async with self._conn.execute(sql, params) as cur:
                return await cur.fetchone()
        # Other tasks wait for the open transaction to finish so they never
        # see rows that may still be rolled back.
        async with self._lock:
            async with self._conn.execute(sql, params) as cur:
                return await cur.fetchone()

    async def _fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[aiosqlite.Row]:
        if self._owns_tx():
            async with self._conn.execute(sql, params) as cur:
                return list(await cur.fetchall())
        async with self._lock:
            async with self._conn.execute(sql, params) as cur:
                return list(await cur.fetchall())

    async def _write(self, sql: str, params: Sequence[Any] = ()) -> int:
        if not self._owns_tx():
            raise RuntimeError("writes must run inside TournamentDB.transaction() in the same task")
        async with self._conn.execute(sql, params) as cur:
            return cur.rowcount

    # ------------------------------------------------------------------
    # Tournaments
    # ------------------------------------------------------------------

    async def insert_tournament(
        self,
        slug: str,
        title: str,
        capacity: int,
        starts_at: str,
        max_entries_per_wallet: int,
        description: str | None = None,
    ) -> Tournament:
        tournament_id = _new_id()
        now = _now()
        try:
            await self._write(
                "INSERT INTO tournaments (id, slug, title, description, capacity, starts_at, "
                "max_entries_per_wallet, status, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    tournament_id,
                    slug,
                    title,
                    description,
                    capacity,
                    starts_at,
                    max_entries_per_wallet,
                    TournamentStatus.OPEN.value,
                    now,
                    now,
                ),
            )
        except sqlite3.IntegrityError as e:
            raise UniquenessConflict(f"tournament slug already exists: {slug}") from e
        return await self.get_tournament(tournament_id)

    async def get_tournament(self, tournament_id: str) -> Tournament | None:
        row = await self._fetch_one("SELECT * FROM tournaments WHERE id = ?", (tournament_id,))
        return Tournament.from_row(row) if row else None

    async def list_tournaments(self) -> list[Tournament]:
        rows = await self._fetch_all("SELECT * FROM tournaments ORDER BY starts_at ASC")
        return [Tournament.from_row(r) for r in rows]

    async def set_tournament_status(
        self, tournament_id: str, status: TournamentStatus
    ) -> Tournament:
        await self._write(
            "UPDATE tournaments SET status = ?, updated_at = ? WHERE id = ?",
            (status.value, _now(), tournament_id),
        )
        return await self.get_tournament(tournament_id)

    # ------------------------------------------------------------------
    # Wallets + entries
    # ------------------------------------------------------------------

    async def upsert_wallet(self, address: str) -> Wallet:
        """Create the wallet row on first sight; existing rows are untouched."""
        await self._write(
            "INSERT INTO wallets (id, address, created_at) VALUES (?, ?, ?) "
            "ON CONFLICT(address) DO NOTHING",
            (_new_id(), address, _now()),
        )
        row = await self._fetch_one("SELECT * FROM wallets WHERE address = ?", (address,))
        return Wallet(id=row["id"], address=row["address"], created_at=row["created_at"])

    async def count_entries(self, tournament_id: str, wallet_id: str) -> int:
        row = await self._fetch_one(
            "SELECT COUNT(*) FROM entries WHERE tournament_id = ? AND wallet_id = ?",
            (tournament_id, wallet_id),
        )
        return row[0]

    async def insert_entry(
        self,
        tournament_id: str,
        wallet_id: str,
        contract_address: str,
        token_id: str,
    ) -> Entry:
        """Insert an entry. Duplicate (tournament, contract, token) raises UniquenessConflict."""
        entry_id = _new_id()
        unique_entry = f"{tournament_id}:{wallet_id}:{contract_address}:{token_id}"
        try:
            await self._write(
                "INSERT INTO entries (id, tournament_id, wallet_id, contract_address, "
                "token_id, unique_entry, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    entry_id,
                    tournament_id,
                    wallet_id,
                    contract_address,
                    token_id,
                    unique_entry,
                    _now(),
                ),
            )
        except sqlite3.IntegrityError as e:
            raise UniquenessConflict(
                f"card {contract_address}#{token_id} is already registered"
            ) from e
        return await self.get_entry(entry_id)

    async def get_entry(self, entry_id: str) -> Entry | None:
        row = await self._fetch_one(
            "SELECT e.*, w.address AS wallet_address FROM entries e "
            "JOIN wallets w ON w.id = e.wallet_id WHERE e.id = ?",
            (entry_id,),
        )
        return Entry.from_row(row) if row else None

    async def get_entries(self, entry_ids: Iterable[str]) -> list[Entry]:
        ids = list(dict.fromkeys(entry_ids))
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        rows = await self._fetch_all(
            "SELECT e.*, w.address AS wallet_address FROM entries e "
            f"JOIN wallets w ON w.id = e.wallet_id WHERE e.id IN ({placeholders}) "
            "ORDER BY e.created_at ASC",
            ids,
        )
        return [Entry.from_row(r) for r in rows]

    async def list_entries(self, tournament_id: str) -> list[Entry]:
        rows = await self._fetch_all(
            "SELECT e.*, w.address AS wallet_address FROM entries e "
            "JOIN wallets w ON w.id = e.wallet_id WHERE e.tournament_id = ? "
            "ORDER BY e.created_at ASC",
            (tournament_id,),
        )
        return [Entry.from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Matches
    # ------------------------------------------------------------------

    async def get_match(self, match_id: str) -> Match | None:
        row = await self._fetch_one("SELECT * FROM matches WHERE id = ?", (match_id,))
        return Match.from_row(row) if row else None

    async def list_matches(self, tournament_id: str) -> list[Match]:
        rows = await self._fetch_all(
            "SELECT * FROM matches WHERE tournament_id = ? ORDER BY created_at ASC",
            (tournament_id,),
        )
        return [Match.from_row(r) for r in rows]

    async def insert_match(self, tournament_id: str, seed: MatchSeed) -> Match:
        match_id = _new_id()
        now = _now()
        await self._write(
            "INSERT INTO matches (id, tournament_id, round, entry_a_id, entry_b_id, "
            "next_match_id, status, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                match_id,
                tournament_id,
                seed.round.value,
                seed.entry_a_id,
                seed.entry_b_id,
                seed.next_match_id,
                MatchStatus.PENDING.value,
                now,
                now,
            ),
        )
        return await self.get_match(match_id)

    async def update_match_bracket(self, match_id: str, seed: MatchSeed) -> Match:
        """Overwrite round, entries and forward pointer. Results are untouched."""
        await self._write(
            "UPDATE matches SET round = ?, entry_a_id = ?, entry_b_id = ?, "
            "next_match_id = ?, updated_at = ? WHERE id = ?",
            (
                seed.round.value,
                seed.entry_a_id,
                seed.entry_b_id,
                seed.next_match_id,
                _now(),
                match_id,
            ),
        )
        return await self.get_match(match_id)

    async def complete_match(
        self,
        match_id: str,
        sets_a: int,
        sets_b: int,
        winner_entry_id: str,
        scoreline: str | None = None,
    ) -> Match:
        await self._write(
            "UPDATE matches SET status = ?, sets_a = ?, sets_b = ?, scoreline = ?, "
            "winner_entry_id = ?, updated_at = ? WHERE id = ?",
            (
                MatchStatus.COMPLETED.value,
                sets_a,
                sets_b,
                scoreline,
                winner_entry_id,
                _now(),
                match_id,
            ),
        )
        return await self.get_match(match_id)

    # ------------------------------------------------------------------
    # Distribution logs
    # ------------------------------------------------------------------

    async def insert_distribution(
        self, tournament_id: str, entry: Entry, final_owner: str
    ) -> DistributionLog:
        log_id = _new_id()
        await self._write(
            "INSERT INTO distribution_logs (id, tournament_id, entry_id, contract_address, "
            "token_id, final_owner, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                log_id,
                tournament_id,
                entry.id,
                entry.contract_address,
                entry.token_id,
                final_owner,
                _now(),
            ),
        )
        row = await self._fetch_one("SELECT * FROM distribution_logs WHERE id = ?", (log_id,))
        return DistributionLog.from_row(row)

    async def list_distributions(self, tournament_id: str) -> list[DistributionLog]:
        rows = await self._fetch_all(
            "SELECT * FROM distribution_logs WHERE tournament_id = ? ORDER BY created_at ASC",
            (tournament_id,),
        )
        return [DistributionLog.from_row(r) for r in rows]


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> str:
    """ISO timestamp in UTC."""
    return datetime.now(timezone.utc).isoformat()
