"""
backoffice/db.py - SQLite storage for events, catalog, ledger and previews.

All queries go through BackofficeDB. One instance per process, backed by a
single SQLite file (or :memory: for tests). Every write method runs inside
transaction(); callers may open an outer transaction() to make several
writes atomic together (the commit step does this).
"""

import sqlite3
import threading
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from prizepool.errors import ErrorCode, PrizeError
from prizepool.models import (
    CatalogItem,
    EventInfo,
    EventType,
    LedgerEntry,
    PreviewArtifact,
    RosterEntry,
)


class BackofficeDB:
    """Thin wrapper around SQLite for the prize back office."""

    def __init__(self, path: str = "prizepool.db"):
        # Autocommit mode; transactions are opened explicitly with BEGIN IMMEDIATE
        self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._lock = threading.RLock()
        self._depth = 0
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
                event_id TEXT PRIMARY KEY,
                name TEXT,
                event_type TEXT DEFAULT 'CONSTRUCTED',
                entry_fee REAL,
                kit_cost REAL,
                seed TEXT,
                created_at TEXT
            );

            CREATE TABLE IF NOT EXISTS roster (
                event_id TEXT NOT NULL,
                rank INTEGER NOT NULL,
                player TEXT NOT NULL,
                PRIMARY KEY (event_id, rank)
            );

            CREATE TABLE IF NOT EXISTS catalog (
                code TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                level TEXT DEFAULT 'L0',
                cogs REAL DEFAULT 0,
                expected_value REAL DEFAULT 1,
                stock INTEGER DEFAULT 0 CHECK (stock >= 0),
                eligible_round INTEGER DEFAULT 0,
                eligible_end INTEGER DEFAULT 1,
                min_players INTEGER DEFAULT 0,
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS throttle (
                key TEXT PRIMARY KEY,
                value TEXT
            );

            CREATE TABLE IF NOT EXISTS artifacts (
                artifact_id TEXT PRIMARY KEY,
                scope_id TEXT NOT NULL UNIQUE,
                seed TEXT NOT NULL,
                preview_hash TEXT NOT NULL,
                created_at TEXT NOT NULL,
                expires_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS spent_pool (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                scope_id TEXT NOT NULL,
                event_id TEXT NOT NULL,
                item_code TEXT NOT NULL,
                item_name TEXT,
                level TEXT,
                qty INTEGER NOT NULL,
                cogs REAL NOT NULL,
                total REAL NOT NULL,
                timestamp TEXT NOT NULL,
                batch_id TEXT NOT NULL,
                reverted INTEGER DEFAULT 0,
                scope_type TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_spent_pool_batch ON spent_pool (batch_id);
            CREATE INDEX IF NOT EXISTS idx_spent_pool_event ON spent_pool (event_id);

            CREATE TABLE IF NOT EXISTS assignments (
                event_id TEXT NOT NULL,
                player TEXT NOT NULL,
                slot TEXT NOT NULL,
                value TEXT,
                updated_at TEXT,
                PRIMARY KEY (event_id, player, slot)
            );

            CREATE TABLE IF NOT EXISTS integrity_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                scope_id TEXT,
                action TEXT NOT NULL,
                seed TEXT,
                checksum_before TEXT,
                checksum_after TEXT,
                band TEXT,
                details TEXT,
                status TEXT
            );
            """
        )

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Atomic block. Nested calls join the outermost transaction.

        BEGIN IMMEDIATE takes SQLite's write lock up front, so everything read
        inside the block stays valid until it commits, even against other
        connections to the same file.
        """
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._conn.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._conn.execute("ROLLBACK")
                raise
            else:
                self._depth -= 1
                if outermost:
                    self._conn.execute("COMMIT")

    # ------------------------------------------------------------------
    # Events & roster
    # ------------------------------------------------------------------

    def upsert_event(self, event: EventInfo) -> None:
        with self.transaction():
            self._conn.execute(
                "INSERT INTO events (event_id, name, event_type, entry_fee, kit_cost, seed, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(event_id) DO UPDATE SET name = excluded.name, "
                "event_type = excluded.event_type, entry_fee = excluded.entry_fee, "
                "kit_cost = excluded.kit_cost, seed = excluded.seed",
                (
                    event.event_id,
                    event.name,
                    event.event_type.value,
                    event.entry_fee,
                    event.kit_cost_per_player,
                    event.seed,
                    _now(),
                ),
            )

    def get_event(self, event_id: str) -> EventInfo | None:
        row = self._conn.execute("SELECT * FROM events WHERE event_id = ?", (event_id,)).fetchone()
        if row is None:
            return None
        try:
            event_type = EventType(row["event_type"] or EventType.CONSTRUCTED.value)
        except ValueError:
            event_type = EventType.CONSTRUCTED
        return EventInfo(
            event_id=row["event_id"],
            name=row["name"] or "",
            event_type=event_type,
            entry_fee=row["entry_fee"],
            kit_cost_per_player=row["kit_cost"],
            seed=row["seed"] or None,
        )

    def set_roster(self, event_id: str, entries: Iterable[RosterEntry]) -> int:
        """Replace an event's roster. Returns the number of players stored."""
        entries = list(entries)
        seen: set[int] = set()
        for e in entries:
            if not e.name or not str(e.name).strip():
                raise PrizeError(ErrorCode.SCHEMA_INVALID, f"Roster rank {e.rank} has no player name")
            if e.rank < 1:
                raise PrizeError(ErrorCode.SCHEMA_INVALID, f"Rank must be positive, got {e.rank}")
            if e.rank in seen:
                raise PrizeError(ErrorCode.SCHEMA_INVALID, f"Duplicate rank {e.rank} in roster")
            seen.add(e.rank)

        with self.transaction():
            self._conn.execute("DELETE FROM roster WHERE event_id = ?", (event_id,))
            self._conn.executemany(
                "INSERT INTO roster (event_id, rank, player) VALUES (?, ?, ?)",
                [(event_id, e.rank, e.name.strip()) for e in entries],
            )
        return len(entries)

    def get_roster(self, event_id: str) -> list[RosterEntry]:
        rows = self._conn.execute(
            "SELECT rank, player FROM roster WHERE event_id = ? ORDER BY rank ASC", (event_id,)
        ).fetchall()
        return [RosterEntry(name=r["player"], rank=r["rank"]) for r in rows]

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def upsert_catalog_item(self, item: CatalogItem) -> None:
        if item.stock < 0:
            raise PrizeError(ErrorCode.SCHEMA_INVALID, f"{item.code}: stock must be >= 0")
        with self.transaction():
            self._conn.execute(
                "INSERT INTO catalog (code, name, level, cogs, expected_value, stock, "
                "eligible_round, eligible_end, min_players, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(code) DO UPDATE SET name = excluded.name, level = excluded.level, "
                "cogs = excluded.cogs, expected_value = excluded.expected_value, "
                "stock = excluded.stock, eligible_round = excluded.eligible_round, "
                "eligible_end = excluded.eligible_end, min_players = excluded.min_players, "
                "updated_at = excluded.updated_at",
                (
                    item.code,
                    item.name,
                    item.level,
                    round(item.cogs, 2),
                    item.expected_value,
                    item.stock,
                    int(item.eligible_for_round),
                    int(item.eligible_for_end),
                    item.min_player_threshold,
                    _now(),
                ),
            )

    def get_catalog(self) -> list[CatalogItem]:
        rows = self._conn.execute("SELECT * FROM catalog ORDER BY code ASC").fetchall()
        return [CatalogItem.from_row(dict(r)) for r in rows]

    def get_catalog_item(self, code: str) -> CatalogItem | None:
        row = self._conn.execute("SELECT * FROM catalog WHERE code = ?", (code,)).fetchone()
        return CatalogItem.from_row(dict(row)) if row else None

    def decrement_stock(self, code: str, qty: int) -> bool:
        """Take qty units if (and only if) that many are on hand.

        Check and decrement are one statement. Returns False when stock is
        short, leaving it untouched.
        """
        with self.transaction():
            cursor = self._conn.execute(
                "UPDATE catalog SET stock = stock - ?, updated_at = ? WHERE code = ? AND stock >= ?",
                (qty, _now(), code, qty),
            )
        return cursor.rowcount == 1

    def restock(self, code: str, qty: int) -> bool:
        """Add units back to an item. Outside the prize engine; operator glue."""
        if qty < 0:
            raise ValueError("restock quantity must be >= 0")
        with self.transaction():
            cursor = self._conn.execute(
                "UPDATE catalog SET stock = stock + ?, updated_at = ? WHERE code = ?",
                (qty, _now(), code),
            )
        return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Throttle
    # ------------------------------------------------------------------

    def get_throttle(self) -> dict[str, str]:
        rows = self._conn.execute("SELECT key, value FROM throttle").fetchall()
        return {r["key"]: r["value"] for r in rows}

    def set_throttle(self, updates: dict[str, Any]) -> None:
        with self.transaction():
            self._conn.executemany(
                "INSERT INTO throttle (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                [(k, str(v)) for k, v in updates.items()],
            )

    # ------------------------------------------------------------------
    # Preview artifacts
    # ------------------------------------------------------------------

    def store_artifact(
        self,
        scope_id: str,
        seed: str,
        preview_hash: str,
        created_at: datetime,
        expires_at: datetime,
    ) -> PreviewArtifact:
        """Store the preview artifact for a scope, replacing any earlier one."""
        artifact = PreviewArtifact(
            artifact_id=str(uuid.uuid4()),
            scope_id=scope_id,
            seed=seed,
            preview_hash=preview_hash,
            created_at=created_at,
            expires_at=expires_at,
        )
        with self.transaction():
            self._conn.execute("DELETE FROM artifacts WHERE scope_id = ?", (scope_id,))
            self._conn.execute(
                "INSERT INTO artifacts (artifact_id, scope_id, seed, preview_hash, created_at, expires_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    artifact.artifact_id,
                    scope_id,
                    seed,
                    preview_hash,
                    created_at.isoformat(),
                    expires_at.isoformat(),
                ),
            )
        return artifact

    def get_artifact(self, scope_id: str) -> PreviewArtifact | None:
        """Fetch a scope's artifact, expired or not. Expiry is the caller's call."""
        row = self._conn.execute(
            "SELECT * FROM artifacts WHERE scope_id = ?", (scope_id,)
        ).fetchone()
        return _artifact_from_row(row) if row else None

    def delete_artifact(self, artifact_id: str) -> bool:
        with self.transaction():
            cursor = self._conn.execute(
                "DELETE FROM artifacts WHERE artifact_id = ?", (artifact_id,)
            )
        return cursor.rowcount == 1

    def sweep_artifacts(self, now: datetime) -> int:
        """Delete every artifact past its expiry. Returns count."""
        with self.transaction():
            rows = self._conn.execute("SELECT * FROM artifacts").fetchall()
            stale = [r["artifact_id"] for r in rows if _artifact_from_row(r).is_expired(now)]
            self._conn.executemany(
                "DELETE FROM artifacts WHERE artifact_id = ?", [(a,) for a in stale]
            )
        return len(stale)

    def artifact_count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM artifacts").fetchone()[0]

    # ------------------------------------------------------------------
    # Spent pool (ledger)
    # ------------------------------------------------------------------

    def append_ledger(self, event_id: str, entries: Iterable[LedgerEntry]) -> int:
        rows = [
            (
                e.scope_id,
                event_id,
                e.item_code,
                e.item_name,
                e.level,
                e.qty,
                e.cogs,
                round(e.qty * e.cogs, 2),
                e.timestamp,
                e.batch_id,
                int(e.reverted),
                e.scope_type,
            )
            for e in entries
        ]
        with self.transaction():
            self._conn.executemany(
                "INSERT INTO spent_pool (scope_id, event_id, item_code, item_name, level, qty, cogs, "
                "total, timestamp, batch_id, reverted, scope_type) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                rows,
            )
        return len(rows)

    def ledger_for_batch(self, batch_id: str) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            "SELECT * FROM spent_pool WHERE batch_id = ? ORDER BY id ASC", (batch_id,)
        ).fetchall()
        return [dict(r) for r in rows]

    def ledger_for_event(self, event_id: str) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            "SELECT * FROM spent_pool WHERE event_id = ? ORDER BY id ASC", (event_id,)
        ).fetchall()
        return [dict(r) for r in rows]

    def event_spend(self, event_id: str) -> float:
        """COGS committed for an event, ignoring batches that were reverted."""
        row = self._conn.execute(
            "SELECT COALESCE(SUM(total), 0) FROM spent_pool "
            "WHERE event_id = ? AND reverted = 0 AND batch_id NOT IN "
            "(SELECT batch_id FROM spent_pool WHERE reverted = 1)",
            (event_id,),
        ).fetchone()
        return round(float(row[0]), 2)

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def write_assignment(self, event_id: str, player: str, slot: str, value: str) -> None:
        with self.transaction():
            self._conn.execute(
                "INSERT INTO assignments (event_id, player, slot, value, updated_at) "
                "VALUES (?, ?, ?, ?, ?) "
                "ON CONFLICT(event_id, player, slot) DO UPDATE SET value = excluded.value, "
                "updated_at = excluded.updated_at",
                (event_id, player, slot, value, _now()),
            )

    def get_assignments(self, event_id: str) -> dict[str, dict[str, str]]:
        """{player: {slot: value}} for an event."""
        rows = self._conn.execute(
            "SELECT player, slot, value FROM assignments WHERE event_id = ?", (event_id,)
        ).fetchall()
        out: dict[str, dict[str, str]] = {}
        for r in rows:
            out.setdefault(r["player"], {})[r["slot"]] = r["value"]
        return out

    # ------------------------------------------------------------------
    # Integrity log
    # ------------------------------------------------------------------

    def log_action(
        self,
        action: str,
        scope_id: str | None = None,
        seed: str | None = None,
        checksum_before: str | None = None,
        checksum_after: str | None = None,
        band: str | None = None,
        details: str = "",
        status: str = "SUCCESS",
    ) -> None:
        with self.transaction():
            self._conn.execute(
                "INSERT INTO integrity_log (timestamp, scope_id, action, seed, checksum_before, "
                "checksum_after, band, details, status) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (_now(), scope_id, action, seed, checksum_before, checksum_after, band, details, status),
            )

    def get_log(self, scope_id: str | None = None) -> list[dict[str, Any]]:
        if scope_id is None:
            rows = self._conn.execute("SELECT * FROM integrity_log ORDER BY id ASC").fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM integrity_log WHERE scope_id = ? ORDER BY id ASC", (scope_id,)
            ).fetchall()
        return [dict(r) for r in rows]


def _artifact_from_row(row) -> PreviewArtifact:
    return PreviewArtifact(
        artifact_id=row["artifact_id"],
        scope_id=row["scope_id"],
        seed=row["seed"],
        preview_hash=row["preview_hash"],
        created_at=datetime.fromisoformat(row["created_at"]),
        expires_at=datetime.fromisoformat(row["expires_at"]),
    )


def _now() -> str:
    """ISO timestamp in UTC."""
    return datetime.now(timezone.utc).isoformat()
