#!/usr/bin/env python3
"""
prizepool/cli.py - Command line interface for the prize back office

Usage:
    prizepool event <event_id> [--name N] [--type T] [--entry-fee F] [--kit-cost K] [--seed S]
    prizepool import-roster <event_id> <roster.csv>
    prizepool import-catalog <catalog.csv>
    prizepool throttle [--set KEY=VALUE ...]
    prizepool preview <event_id> [--round N] [--seed S]
    prizepool commit <event_id> <hash> [--round N]
    prizepool revert <batch_id>
    prizepool sweep
    prizepool serve [--port P]
"""

import argparse
import csv
import logging
import sys
from pathlib import Path

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

ROSTER_COLUMNS = ("rank", "player")
CATALOG_COLUMNS = ("code", "name", "level", "cogs", "expected_value", "stock")

_TRUE = {"1", "true", "yes", "y", "x"}


# ============================================================================
# Helpers
# ============================================================================


def _open_desk(args):
    """Load config and open the store named by --db (or the config)."""
    from backoffice.db import BackofficeDB
    from prizepool.config import load_config
    from prizepool.protocol import PrizeDesk

    config = load_config(Path(args.config) if args.config else None)
    if args.db:
        config.db_path = args.db
    if config.db_path != ":memory:":
        Path(config.db_path).parent.mkdir(parents=True, exist_ok=True)
    return PrizeDesk(BackofficeDB(config.db_path), config)


def _read_csv(path: str, required: tuple[str, ...]) -> list[dict[str, str]]:
    """Read a CSV with normalized (lower-case, stripped) headers."""
    from prizepool.errors import ErrorCode, PrizeError

    with open(path, newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        headers = [(h or "").strip().lower() for h in reader.fieldnames or []]
        missing = [c for c in required if c not in headers]
        if missing:
            raise PrizeError(
                ErrorCode.SCHEMA_INVALID,
                f"{path}: missing column(s) {', '.join(missing)}",
                f"Expected columns: {', '.join(required)}",
            )
        rows = []
        for raw in reader:
            rows.append({(k or "").strip().lower(): (v or "").strip() for k, v in raw.items()})
    return rows


def _report_failure(failure) -> int:
    logger.error(f"{failure.code.value}: {failure.message}")
    if failure.hint:
        logger.error(f"   {failure.hint}")
    return 1


def _flag(row: dict[str, str], key: str, default: bool) -> bool:
    value = row.get(key, "")
    if value == "":
        return default
    return value.lower() in _TRUE


# ============================================================================
# Commands
# ============================================================================


def cmd_event(args):
    """Create or update an event header."""
    from prizepool.models import EventInfo, EventType

    desk = _open_desk(args)
    event = EventInfo(
        event_id=args.event_id,
        name=args.name or "",
        event_type=EventType(args.type.upper()),
        entry_fee=args.entry_fee,
        kit_cost_per_player=args.kit_cost,
        seed=args.seed,
    )
    desk.store.upsert_event(event)
    logger.info(f"Event {event.event_id} saved ({event.event_type.value})")
    return 0


def cmd_import_roster(args):
    """Replace an event's roster from a CSV with rank,player columns."""
    from prizepool.errors import ErrorCode, PrizeError
    from prizepool.models import RosterEntry

    desk = _open_desk(args)
    if desk.store.get_event(args.event_id) is None:
        logger.error(f"Event not found: {args.event_id}")
        return 1

    try:
        rows = _read_csv(args.csv, ROSTER_COLUMNS)
        entries = []
        for i, row in enumerate(rows, start=2):
            try:
                rank = int(row["rank"])
            except ValueError:
                raise PrizeError(ErrorCode.SCHEMA_INVALID, f"Line {i}: rank {row['rank']!r} is not a number")
            entries.append(RosterEntry(name=row["player"], rank=rank))
        count = desk.store.set_roster(args.event_id, entries)
    except PrizeError as e:
        return _report_failure(e.failure())

    logger.info(f"Imported {count} players into {args.event_id}")
    return 0


def cmd_import_catalog(args):
    """Create or update catalog items from a CSV."""
    from prizepool.errors import ErrorCode, PrizeError
    from prizepool.models import CatalogItem

    desk = _open_desk(args)
    try:
        rows = _read_csv(args.csv, CATALOG_COLUMNS)
        items = []
        for i, row in enumerate(rows, start=2):
            try:
                items.append(
                    CatalogItem(
                        code=row["code"],
                        name=row["name"],
                        level=row["level"] or "L0",
                        cogs=float(row["cogs"] or 0),
                        expected_value=float(row["expected_value"] or 1),
                        stock=int(row["stock"] or 0),
                        eligible_for_round=_flag(row, "eligible_round", False),
                        eligible_for_end=_flag(row, "eligible_end", True),
                        min_player_threshold=int(row.get("min_players") or 0),
                    )
                )
            except ValueError as e:
                raise PrizeError(ErrorCode.SCHEMA_INVALID, f"Line {i}: {e}")
        with desk.store.transaction():
            for item in items:
                desk.store.upsert_catalog_item(item)
    except PrizeError as e:
        return _report_failure(e.failure())

    logger.info(f"Imported {len(items)} catalog items")
    return 0


def cmd_throttle(args):
    """Show the throttle policy, optionally updating keys first."""
    from rich.console import Console
    from rich.table import Table

    from prizepool.errors import PrizeError
    from prizepool.throttle import check_throttle, with_defaults

    desk = _open_desk(args)

    if args.set:
        updates = {}
        for pair in args.set:
            key, sep, value = pair.partition("=")
            if not sep:
                logger.error(f"Expected KEY=VALUE, got {pair!r}")
                return 1
            updates[key.strip()] = value.strip()
        try:
            check_throttle(updates)
        except PrizeError as e:
            return _report_failure(e.failure())
        desk.store.set_throttle(updates)
        desk.store.log_action("THROTTLE_CHANGE", details=f"Updated: {', '.join(sorted(updates))}")
        logger.info(f"Throttle updated: {', '.join(sorted(updates))}")

    table = Table(title="Throttle", show_header=True, header_style="bold cyan")
    table.add_column("Key", style="bold")
    table.add_column("Value", justify="right")
    for key, value in with_defaults(desk.store.get_throttle()).items():
        table.add_row(key, value)
    Console().print(table)
    return 0


def cmd_preview(args):
    """Preview a scope's prize allocation."""
    from rich.console import Console
    from rich.table import Table

    from prizepool.protocol import round_scope

    desk = _open_desk(args)
    scope_id = round_scope(args.event_id, args.round) if args.round else args.event_id
    result = desk.preview(scope_id, seed=args.seed)
    if not result.ok:
        return _report_failure(result)

    console = Console()
    table = Table(title=f"Preview {scope_id}", show_header=True, header_style="bold cyan")
    table.add_column("Player", style="bold", min_width=14)
    table.add_column("Item", min_width=10)
    table.add_column("Level")
    table.add_column("Qty", justify="right")
    table.add_column("COGS", justify="right")
    for line in result.allocation:
        table.add_row(line.player, f"{line.item_code} {line.item_name}", line.level, str(line.qty), f"{line.total:.2f}")
    table.add_section()
    table.add_row("Total", "", "", "", f"{result.spend:.2f}")

    style = {"GREEN": "green", "AMBER": "yellow", "RED": "bold red"}[result.band.value]
    console.print()
    console.print(table)
    console.print(
        f"[bold]Budget:[/bold] {result.budget:.2f}   "
        f"[bold]Band:[/bold] [{style}]{result.band.value}[/{style}] ({result.ratio * 100:.1f}%)"
    )
    if result.hybrid_cap:
        console.print(f"[bold]Hybrid cap:[/bold] {result.hybrid_cap:.2f}")
    console.print(f"[bold]Seed:[/bold] {result.seed}")
    console.print(f"[bold]Hash:[/bold] {result.hash}")
    console.print()
    return 0


def cmd_commit(args):
    """Commit a previewed allocation by its hash."""
    from prizepool.protocol import round_scope

    desk = _open_desk(args)
    scope_id = round_scope(args.event_id, args.round) if args.round else args.event_id
    result = desk.commit(scope_id, args.hash)
    if not result.ok:
        return _report_failure(result)

    logger.info(f"Committed {result.allocated} prizes for {scope_id}")
    logger.info(f"   Spend: {result.spend:.2f} of {result.budget:.2f} ({result.band.value})")
    logger.info(f"   Batch: {result.batch_id}")
    return 0


def cmd_revert(args):
    """Revert a committed batch in the ledger."""
    desk = _open_desk(args)
    count = desk.revert_batch(args.batch_id)
    if count == 0:
        logger.error(f"Nothing to revert for batch {args.batch_id} (unknown or already reverted)")
        return 1
    logger.info(f"Reverted {count} ledger entries from {args.batch_id}")
    return 0


def cmd_sweep(args):
    """Drop expired preview artifacts."""
    desk = _open_desk(args)
    count = desk.sweep_expired()
    logger.info(f"Removed {count} expired preview(s)")
    return 0


def cmd_serve(args):
    """Start the back office HTTP server."""
    try:
        import uvicorn
    except ImportError:
        logger.error("Server requires extra dependencies: pip install prizepool[server]")
        return 1

    from backoffice.server import app
    from prizepool.config import load_config

    config = load_config(Path(args.config) if args.config else None)
    if args.db:
        config.db_path = args.db
    port = args.port or config.port

    # Set config on app state so lifespan picks it up
    app.state.config = config
    app.state.db_path = config.db_path
    logger.info(f"Starting back office on port {port} (db: {config.db_path})")
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
    return 0


# ============================================================================
# Main
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prizepool",
        description="Budget-aware prize allocation for tournament events",
    )
    parser.add_argument("--config", default=None, help="Config file (default: ~/.prizepool/config.toml)")
    parser.add_argument("--db", default=None, help="SQLite database path (overrides config)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # event command
    event_parser = subparsers.add_parser("event", help="Create or update an event")
    event_parser.add_argument("event_id", help="Event id")
    event_parser.add_argument("--name", default=None, help="Display name")
    event_parser.add_argument(
        "--type", default="CONSTRUCTED", choices=["CONSTRUCTED", "LIMITED", "HYBRID", "constructed", "limited", "hybrid"],
        help="Event type (default: CONSTRUCTED)",
    )
    event_parser.add_argument("--entry-fee", type=float, default=None, help="Entry fee per player")
    event_parser.add_argument("--kit-cost", type=float, default=None, help="Kit cost per player")
    event_parser.add_argument("--seed", default=None, help="Fixed seed for this event's previews")
    event_parser.set_defaults(func=cmd_event)

    # import-roster command
    roster_parser = subparsers.add_parser("import-roster", help="Load a roster CSV (rank,player)")
    roster_parser.add_argument("event_id", help="Event id")
    roster_parser.add_argument("csv", help="Path to roster CSV")
    roster_parser.set_defaults(func=cmd_import_roster)

    # import-catalog command
    catalog_parser = subparsers.add_parser("import-catalog", help="Load a prize catalog CSV")
    catalog_parser.add_argument("csv", help="Path to catalog CSV")
    catalog_parser.set_defaults(func=cmd_import_catalog)

    # throttle command
    throttle_parser = subparsers.add_parser("throttle", help="Show or update the throttle policy")
    throttle_parser.add_argument("--set", action="append", metavar="KEY=VALUE", help="Update a key (repeatable)")
    throttle_parser.set_defaults(func=cmd_throttle)

    # preview command
    preview_parser = subparsers.add_parser("preview", help="Preview a prize allocation")
    preview_parser.add_argument("event_id", help="Event id")
    preview_parser.add_argument("--round", "-r", type=int, default=None, help="Round number (default: end prizes)")
    preview_parser.add_argument("--seed", default=None, help="Seed override")
    preview_parser.set_defaults(func=cmd_preview)

    # commit command
    commit_parser = subparsers.add_parser("commit", help="Commit a previewed allocation")
    commit_parser.add_argument("event_id", help="Event id")
    commit_parser.add_argument("hash", help="Hash printed by preview")
    commit_parser.add_argument("--round", "-r", type=int, default=None, help="Round number (default: end prizes)")
    commit_parser.set_defaults(func=cmd_commit)

    # revert command
    revert_parser = subparsers.add_parser("revert", help="Revert a committed batch")
    revert_parser.add_argument("batch_id", help="Batch id from a commit")
    revert_parser.set_defaults(func=cmd_revert)

    # sweep command
    sweep_parser = subparsers.add_parser("sweep", help="Remove expired previews")
    sweep_parser.set_defaults(func=cmd_sweep)

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start the HTTP server")
    serve_parser.add_argument("--port", "-p", type=int, default=None, help="Server port (default: from config, 8000)")
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
