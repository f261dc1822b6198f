"""
prizepool/protocol.py - Two-phase preview/commit for prize allocation.

preview() runs the allocator against the current roster/catalog/budget and
stores an artifact binding the scope to (seed, hash). commit() re-runs the
allocator from the stored seed against whatever the store holds *now*, and
only writes if the hash still matches. The hash check is what catches a
roster, catalog or policy edit between the two calls.

Scopes:
    "<event_id>"        end-of-event prizes, whole roster
    "<event_id>:R<n>"   round n prizes, fixed seats or a per-seat template

Commits are serialized per scope, and the verify-and-write phase runs in one
store transaction, so stock, ledger and assignments move together or not at
all.
"""

import logging
import re
import secrets
import threading
from collections import defaultdict
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from .allocator import (
    SCOPE_END,
    SCOPE_ROUND,
    allocate,
    allocate_grants,
    eligible_items,
    total_spend,
)
from .budget import budget_for_event, classify_band, hybrid_cap, to_cents
from .config import PrizepoolConfig
from .errors import ErrorCode, Failure, PrizeError
from .hashing import content_hash, short_hash
from .models import (
    END_SLOT,
    Band,
    CommitReceipt,
    EventInfo,
    LedgerEntry,
    Preview,
    PreviewArtifact,
    RosterEntry,
)
from .rng import generate_seed
from .seats import seats_for_round, select_seated, template_grants
from .throttle import policy_from_kv

logger = logging.getLogger(__name__)

_ROUND_SCOPE_RE = re.compile(r"^(?P<event>.+):R(?P<round>\d+)$")


# ============================================================================
# Scope ids
# ============================================================================


def new_batch_id(now: datetime) -> str:
    """Timestamp-prefixed batch id, e.g. 20261018-143005-3FA9C1."""
    return f"{now:%Y%m%d-%H%M%S}-{secrets.token_hex(3).upper()}"


def round_scope(event_id: str, round_no: int) -> str:
    return f"{event_id}:R{round_no}"


def parse_scope(scope_id: str) -> tuple[str, int | None]:
    """'EVT:R2' -> ('EVT', 2); 'EVT' -> ('EVT', None)."""
    m = _ROUND_SCOPE_RE.match(scope_id)
    if m:
        return m.group("event"), int(m.group("round"))
    return scope_id, None


# ============================================================================
# Per-scope locks
# ============================================================================


class ScopeLocks:
    """One mutex per scope id, created on first use."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, scope_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(scope_id, threading.Lock())
        with lock:
            yield


# ============================================================================
# Draft: one allocator run against the current store state
# ============================================================================


@dataclass
class _Draft:
    preview: Preview
    event: EventInfo
    roster: list[RosterEntry]
    round_no: int | None


class PrizeDesk:
    """Preview/commit front door for one store."""

    def __init__(
        self,
        store,
        config: PrizepoolConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.config = config or PrizepoolConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks = ScopeLocks()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def preview(self, scope_id: str, seed: str | None = None) -> Preview | Failure:
        """Allocate against current state and store a fresh artifact."""
        with self._locks.hold(scope_id):
            try:
                with self.store.transaction():
                    draft = self._draft(scope_id, seed)
                    now = self._clock()
                    self.store.store_artifact(
                        scope_id,
                        draft.preview.seed,
                        draft.preview.hash,
                        created_at=now,
                        expires_at=now + timedelta(hours=self.config.ttl_hours),
                    )
            except PrizeError as e:
                logger.info(f"Preview {scope_id} failed: {e.code.value} ({e.message})")
                self._audit("PREVIEW", scope_id, seed=seed, details=e.message, status=e.code.value)
                return e.failure()

        p = draft.preview
        logger.info(
            f"Preview {scope_id}: {len(p.allocation)} prizes, spend {p.spend:.2f} / "
            f"{p.budget:.2f} ({p.band.value}), hash {short_hash(p.hash)}"
        )
        self._audit(
            "PREVIEW",
            scope_id,
            seed=p.seed,
            checksum_before=p.hash,
            band=p.band.value,
            details=f"{len(p.allocation)} allocations, spend {p.spend:.2f} of {p.budget:.2f}",
        )
        return p

    def commit(self, scope_id: str, preview_hash: str) -> CommitReceipt | Failure:
        """Commit exactly what was previewed, or fail without touching anything."""
        with self._locks.hold(scope_id):
            artifact = None
            try:
                artifact = self._live_artifact(scope_id)
                with self.store.transaction():
                    current = self.store.get_artifact(scope_id)
                    if current is None or current.artifact_id != artifact.artifact_id:
                        raise PrizeError(
                            ErrorCode.NO_PREVIEW, "Preview was replaced", "Generate a preview first"
                        )
                    if preview_hash != artifact.preview_hash:
                        raise PrizeError(
                            ErrorCode.HASH_MISMATCH,
                            "Preview hash mismatch",
                            "Preview has changed. Regenerate preview.",
                        )

                    draft = self._draft(scope_id, artifact.seed)
                    if draft.preview.hash != preview_hash:
                        raise PrizeError(
                            ErrorCode.HASH_MISMATCH,
                            "Preview hash mismatch on regeneration",
                            "Roster, catalog or policy changed since preview. Regenerate preview.",
                        )
                    if draft.preview.band == Band.RED:
                        raise PrizeError(
                            ErrorCode.BUDGET_RED,
                            "Budget exceeded",
                            "Reduce allocations or increase budget, then preview again",
                        )

                    receipt = self._apply(draft, artifact)
            except PrizeError as e:
                logger.info(f"Commit {scope_id} refused: {e.code.value} ({e.message})")
                self._audit(
                    "COMMIT",
                    scope_id,
                    seed=artifact.seed if artifact else None,
                    checksum_before=preview_hash,
                    details=e.message,
                    status=e.code.value,
                )
                return e.failure()

        logger.info(
            f"Committed {scope_id}: {receipt.allocated} prizes, spend {receipt.spend:.2f}, "
            f"batch {receipt.batch_id}"
        )
        self._audit(
            "COMMIT",
            scope_id,
            seed=artifact.seed,
            checksum_before=preview_hash,
            checksum_after=draft.preview.hash,
            band=receipt.band.value,
            details=f"Spent {receipt.spend:.2f} | batch {receipt.batch_id}",
        )
        return receipt

    def preview_round(self, event_id: str, round_no: int, seed: str | None = None) -> Preview | Failure:
        return self.preview(round_scope(event_id, round_no), seed)

    def commit_round(self, event_id: str, round_no: int, preview_hash: str) -> CommitReceipt | Failure:
        return self.commit(round_scope(event_id, round_no), preview_hash)

    def revert_batch(self, batch_id: str) -> int:
        """Append a reversal row for each row of a batch. Returns rows reverted.

        Reversal rows carry the original batch id with reverted=True; the
        original rows are never edited. Reverting twice is a no-op. Stock is
        not returned to the catalog (that's a restock, done by hand).
        """
        now = self._clock()
        with self.store.transaction():
            rows = self.store.ledger_for_batch(batch_id)
            if not rows or any(r["reverted"] for r in rows):
                return 0
            entries = [
                LedgerEntry(
                    scope_id=r["scope_id"],
                    item_code=r["item_code"],
                    item_name=r["item_name"],
                    level=r["level"],
                    qty=r["qty"],
                    cogs=r["cogs"],
                    timestamp=now.isoformat(),
                    batch_id=batch_id,
                    reverted=True,
                    scope_type=r["scope_type"],
                )
                for r in rows
            ]
            self.store.append_ledger(rows[0]["event_id"], entries)

        logger.info(f"Reverted batch {batch_id}: {len(entries)} entries")
        self._audit(
            "REVERT_BATCH",
            rows[0]["scope_id"],
            details=f"Reverted batch {batch_id}: {len(entries)} entries",
        )
        return len(entries)

    def sweep_expired(self) -> int:
        """Drop artifacts whose TTL has elapsed."""
        count = self.store.sweep_artifacts(self._clock())
        if count:
            logger.info(f"Swept {count} expired preview artifact(s)")
        return count

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _live_artifact(self, scope_id: str) -> PreviewArtifact:
        artifact = self.store.get_artifact(scope_id)
        if artifact is not None and artifact.is_expired(self._clock()):
            logger.info(f"Preview for {scope_id} expired at {artifact.expires_at.isoformat()}")
            self.store.delete_artifact(artifact.artifact_id)
            artifact = None
        if artifact is None:
            raise PrizeError(ErrorCode.NO_PREVIEW, "No preview found", "Generate a preview first")
        return artifact

    def _draft(self, scope_id: str, seed: str | None) -> _Draft:
        event_id, round_no = parse_scope(scope_id)
        event = self.store.get_event(event_id)
        if event is None:
            raise PrizeError(ErrorCode.EVENT_NOT_FOUND, f"Event not found: {event_id}")

        roster = self.store.get_roster(event_id)
        if not roster:
            raise PrizeError(ErrorCode.NO_PLAYERS, "No players in roster")

        policy = policy_from_kv(self.store.get_throttle())
        player_count = len(roster)
        template = self.config.rounds.template.get(round_no) if round_no is not None else None

        grants = None
        recipients = roster
        if round_no is None:
            kind, tiers = SCOPE_END, self.config.tiers.rules()
        elif template:
            grants = template_grants(roster, template)
            if not grants:
                raise PrizeError(ErrorCode.NO_PLAYERS, f"No players in template seats for round {round_no}")
            kind, tiers = SCOPE_ROUND, self.config.round_rules()
        else:
            seats = seats_for_round(round_no, self.config.rounds.seats)
            recipients = select_seated(roster, seats)
            if not recipients:
                raise PrizeError(ErrorCode.NO_PLAYERS, f"No players in seats {seats}")
            kind, tiers = SCOPE_ROUND, self.config.round_rules()

        catalog = self.store.get_catalog()
        if not eligible_items(catalog, player_count, kind):
            raise PrizeError(ErrorCode.NO_PRIZES, "No eligible prizes in catalog")

        use_seed = seed or event.seed or generate_seed()
        event_budget = budget_for_event(event, player_count, policy)
        budget = to_cents(max(0.0, event_budget - self.store.event_spend(event_id)))

        if grants is not None:
            lines = allocate_grants(grants, catalog, budget, policy, use_seed, kind, player_count)
        else:
            lines = allocate(
                recipients, catalog, budget, policy, use_seed, tiers,
                scope_kind=kind, player_count=player_count,
            )
        spend = total_spend(lines)
        band = classify_band(spend, budget, player_count)

        preview = Preview(
            scope_id=scope_id,
            seed=use_seed,
            allocation=lines,
            spend=spend,
            budget=budget,
            band=band.band,
            hash=content_hash(scope_id, use_seed, lines),
            players=player_count,
            ratio=band.ratio,
            hybrid_cap=hybrid_cap(event, event_budget, policy.hybrid_cap_enabled),
        )
        return _Draft(preview=preview, event=event, roster=roster, round_no=round_no)

    def _apply(self, draft: _Draft, artifact: PreviewArtifact) -> CommitReceipt:
        """Write phase. Caller holds the scope lock and an open transaction."""
        p = draft.preview
        event_id = draft.event.event_id
        now = self._clock()

        codes: dict[str, list[str]] = defaultdict(list)
        for line in p.allocation:
            codes[line.player].extend([line.item_code] * line.qty)

        if draft.round_no is None:
            slot = END_SLOT
            players = [e.name for e in draft.roster]
        else:
            slot = f"R{draft.round_no}"
            players = list(codes)
        assignments = {player: ", ".join(codes.get(player, [])) for player in players}
        for player, value in assignments.items():
            self.store.write_assignment(event_id, player, slot, value)

        per_item: dict[str, int] = defaultdict(int)
        for line in p.allocation:
            per_item[line.item_code] += line.qty
        for code, qty in per_item.items():
            if not self.store.decrement_stock(code, qty):
                raise PrizeError(
                    ErrorCode.STOCK_CONFLICT,
                    f"Not enough stock left for {code}",
                    "Another commit took it. Regenerate preview.",
                )

        batch_id = new_batch_id(now)
        stamp = now.isoformat()
        self.store.append_ledger(
            event_id,
            [
                LedgerEntry(
                    scope_id=p.scope_id,
                    item_code=line.item_code,
                    item_name=line.item_name,
                    level=line.level,
                    qty=line.qty,
                    cogs=line.cogs,
                    timestamp=stamp,
                    batch_id=batch_id,
                    scope_type=draft.event.event_type.value,
                )
                for line in p.allocation
            ],
        )
        self.store.delete_artifact(artifact.artifact_id)

        return CommitReceipt(
            scope_id=p.scope_id,
            allocated=len(p.allocation),
            spend=p.spend,
            budget=p.budget,
            band=p.band,
            batch_id=batch_id,
            assignments=assignments,
        )

    def _audit(self, action: str, scope_id: str, **fields) -> None:
        """Append to the integrity log. Failures are logged, never raised."""
        try:
            self.store.log_action(action, scope_id=scope_id, **fields)
        except Exception as e:
            logger.warning(f"Failed to log integrity action {action} for {scope_id}: {e}")
