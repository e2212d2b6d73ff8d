#!/usr/bin/env python3
"""Compass: biopharma watch-target scanning and digest synthesis.

This CLI runs scans over the configured literature, trial, regulatory,
filing, patent, and news sources, and manages the watch targets and
schedules that drive them.

Commands:
    scan          Run one scan now
    tick          Run one scheduler tick (trigger due schedules once)
    scheduler     Tick continuously at SCHEDULER_INTERVAL_SECONDS
    serve         Serve POST /scan over HTTP
    status        Show configuration and database statistics
    target-add    Add a watch target
    targets       List watch targets
    schedule-set  Create or update a global or per-target schedule
    digest        Print the latest persisted digest
    feedback      Rate a digest item or raw item good/bad

Examples:
    python main.py target-add semaglutide --display-name Ozempic --alias NN9535
    python main.py scan --period daily
    python main.py scan --period weekly --mode comprehensive --sources pubmed,rss
    python main.py schedule-set --timezone Europe/Berlin --daily 09:00 --weekdays-only
    python main.py scheduler
    python main.py serve

Environment:
    See config.py for all configuration options
"""

import argparse
import asyncio
import json
import logging
import sys

from config import Config
from database import Database
from models.digest import Feedback
from models.scan import Period, ScanMode, ScanRequest
from models.schedule import Schedule
from models.target import DEFAULT_USER_ID, TargetType, WatchTarget
from observability.logging import setup_logging

logger = logging.getLogger(__name__)

WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _split(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [part.strip() for part in value.split(",") if part.strip()]


def _parse_hhmm(value: str) -> tuple[int, int]:
    """Parse "HH:MM" into (hour, minute)."""
    try:
        hour, minute = (int(part) for part in value.split(":", 1))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected HH:MM, got '{value}'")
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise argparse.ArgumentTypeError(f"time out of range: '{value}'")
    return hour, minute


def _parse_weekday(value: str) -> int:
    """Weekday name or number (0=Sunday)."""
    key = value.strip().lower()[:3]
    if key in WEEKDAYS:
        return WEEKDAYS.index(key)
    if key.isdigit() and 0 <= int(key) <= 6:
        return int(key)
    raise argparse.ArgumentTypeError(f"unknown weekday '{value}'")


def cmd_scan(args: argparse.Namespace, config: Config) -> int:
    """Run one scan and print its result.

    Args:
        args: Parsed command line arguments
        config: Application configuration

    Returns:
        Exit code (0 for success, 2 if any source failed)
    """
    from pipeline import Orchestrator

    request = ScanRequest(
        period=Period(args.period),
        target_ids=_split(args.targets),
        user_id=args.user,
        mode=ScanMode(args.mode),
        sources=_split(args.sources),
    )

    with Database(config.db_path) as db:
        orchestrator = Orchestrator(config, db)
        try:
            result = asyncio.run(orchestrator.run(request))
        except KeyboardInterrupt:
            logger.info("Interrupted by user")
            return 130

    print(json.dumps(result.model_dump(exclude_none=True), indent=2))
    return 2 if result.failed_sources else 0


def cmd_tick(args: argparse.Namespace, config: Config) -> int:
    """Trigger every schedule that is due right now, once."""
    from pipeline import Orchestrator
    from scheduler import Scheduler

    with Database(config.db_path) as db:
        scheduler = Scheduler(db, config, trigger=Orchestrator(config, db).run)
        triggered = asyncio.run(scheduler.check_and_trigger())

    print(f"Triggered {len(triggered)} scan(s).")
    for request in triggered:
        print(f"  {request.period.value}: {len(request.target_ids or [])} target(s)")
    return 0


def cmd_scheduler(args: argparse.Namespace, config: Config) -> int:
    """Tick forever until interrupted."""
    from pipeline import Orchestrator
    from scheduler import Scheduler

    with Database(config.db_path) as db:
        scheduler = Scheduler(db, config, trigger=Orchestrator(config, db).run)
        try:
            asyncio.run(scheduler.run_continuous())
        except KeyboardInterrupt:
            logger.info("Scheduler stopped by user")
    return 0


def cmd_serve(args: argparse.Namespace, config: Config) -> int:
    """Serve the trigger endpoint with uvicorn."""
    import uvicorn

    from api import create_app

    if not config.scan_secret:
        logger.warning("SCAN_SECRET is not set, POST /scan will refuse every request")

    host = args.host or config.api_host
    port = args.port or config.api_port
    uvicorn.run(create_app(config), host=host, port=port, log_config=None)
    return 0


def cmd_status(args: argparse.Namespace, config: Config) -> int:
    """Display configuration and database statistics."""
    from sources import build_adapters
    from sources.base import Credentials

    with Database(config.db_path) as db:
        db_stats = db.stats()

    credentials = Credentials.from_config(config)
    adapters = build_adapters(config)
    status = {
        "config": {
            "relevance_model": config.relevance_model,
            "enrichment_model": config.enrichment_model,
            "search_model": config.search_model,
            "digest_model": config.digest_model,
            "llm_enabled": config.llm_enabled,
            "feeds": len(config.rss_urls),
            "source_timeout_seconds": config.source_timeout_seconds,
            "schedule_tolerance_minutes": config.schedule_tolerance_minutes,
            "enable_logfire": config.enable_logfire,
        },
        "sources": {
            source: (
                "ready"
                if not adapter.credential or getattr(credentials, adapter.credential, "")
                else "missing credentials"
            )
            for source, adapter in adapters.items()
        },
        "database": {"path": str(config.db_path), **db_stats},
    }

    print(json.dumps(status, indent=2))
    return 0


def cmd_target_add(args: argparse.Namespace, config: Config) -> int:
    """Add a watch target and print its id."""
    target = WatchTarget(
        user_id=args.user or DEFAULT_USER_ID,
        name=args.name,
        display_name=args.display_name or "",
        aliases=args.alias or [],
        type=TargetType(args.type),
        therapeutic_area=args.area,
        indication=args.indication or "",
        company=args.company or "",
        notes=args.notes or "",
    )
    with Database(config.db_path) as db:
        saved = db.add_target(target)

    print(f"Added target {saved.label} ({saved.id})")
    return 0


def cmd_targets(args: argparse.Namespace, config: Config) -> int:
    """List watch targets."""
    with Database(config.db_path) as db:
        targets = db.list_targets(user_id=args.user, active_only=not args.all)

    if not targets:
        print("No watch targets.")
        return 0

    for target in targets:
        marker = "" if target.active else " (inactive)"
        print(f"🎯 {target.label}{marker}")
        print(f"   Id: {target.id}")
        print(f"   Type: {target.type.value}  Area: {target.therapeutic_area}")
        if target.aliases:
            print(f"   Aliases: {', '.join(target.aliases)}")
        if target.notes:
            print(f"   Goal: {target.notes}")
        print()
    return 0


def cmd_schedule_set(args: argparse.Namespace, config: Config) -> int:
    """Create or update a schedule; unspecified slots stay disabled."""
    schedule = Schedule(
        user_id=args.user or DEFAULT_USER_ID,
        watch_target_id=args.target,
        timezone=args.timezone,
        weekdays_only=args.weekdays_only,
    )
    if args.daily:
        schedule.daily_enabled = True
        schedule.daily_hour, schedule.daily_minute = args.daily
    if args.weekly:
        day, slot = args.weekly
        schedule.weekly_enabled = True
        schedule.weekly_day_of_week = _parse_weekday(day)
        schedule.weekly_hour, schedule.weekly_minute = _parse_hhmm(slot)

    with Database(config.db_path) as db:
        if args.target and db.get_target(args.target) is None:
            print(f"Error: unknown target '{args.target}'", file=sys.stderr)
            return 1
        saved = db.upsert_schedule(schedule)

    scope = f"target {saved.watch_target_id}" if saved.watch_target_id else f"user {saved.user_id}"
    print(f"Schedule {saved.id} saved for {scope} ({saved.timezone})")
    return 0


def cmd_digest(args: argparse.Namespace, config: Config) -> int:
    """Print a persisted digest as markdown (the latest by default)."""
    from notifications import render_digest_markdown

    with Database(config.db_path) as db:
        if args.id:
            run = db.get_digest_run(args.id)
        else:
            recent = db.recent_digest_runs(limit=1)
            run = recent[0] if recent else None
        if run is None:
            print("No digest found.")
            return 0
        items = db.digest_items(run.id)
        targets = db.get_targets({item.target_id for item in items})

    print(render_digest_markdown(run, items, targets))
    return 0


def cmd_feedback(args: argparse.Namespace, config: Config) -> int:
    """Rate a digest item (default) or a raw item."""
    rating = None if args.rating == "clear" else Feedback(args.rating)
    with Database(config.db_path) as db:
        if args.raw:
            updated = db.set_raw_item_feedback(args.id, rating)
        else:
            updated = db.set_digest_item_feedback(args.id, rating)

    if not updated:
        kind = "raw item" if args.raw else "digest item"
        print(f"Error: unknown {kind} '{args.id}'", file=sys.stderr)
        return 1
    print(f"Feedback recorded: {args.rating}")
    return 0


def main() -> int:
    """Main entry point.

    Returns:
        Exit code
    """
    parser = argparse.ArgumentParser(
        description="Compass: biopharma watch-target scanning",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # scan command
    scan_parser = subparsers.add_parser("scan", help="Run one scan now")
    scan_parser.add_argument(
        "--period",
        choices=[p.value for p in Period],
        default=Period.DAILY.value,
        help="Digest period (default: daily)",
    )
    scan_parser.add_argument(
        "--mode",
        choices=[m.value for m in ScanMode],
        default=ScanMode.LATEST.value,
        help="Search depth (default: latest)",
    )
    scan_parser.add_argument(
        "--targets",
        help="Comma-separated target ids (default: every active target)",
    )
    scan_parser.add_argument(
        "--user",
        help="Restrict 'every active target' to one user",
    )
    scan_parser.add_argument(
        "--sources",
        help="Comma-separated source ids (default: all registered sources)",
    )

    subparsers.add_parser("tick", help="Trigger due schedules once")
    subparsers.add_parser("scheduler", help="Run the scheduler loop")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Serve the HTTP trigger endpoint")
    serve_parser.add_argument("--host", help="Bind host (default: API_HOST)")
    serve_parser.add_argument("--port", type=int, help="Bind port (default: API_PORT)")

    subparsers.add_parser("status", help="Show configuration and statistics")

    # target-add command
    target_parser = subparsers.add_parser("target-add", help="Add a watch target")
    target_parser.add_argument("name", help="Canonical name used in queries")
    target_parser.add_argument("--display-name", help="Human-facing label")
    target_parser.add_argument(
        "--alias",
        action="append",
        help="Alternative name, code, or ticker (repeatable)",
    )
    target_parser.add_argument(
        "--type",
        choices=[t.value for t in TargetType],
        default=TargetType.DRUG.value,
        help="Target type (default: drug)",
    )
    target_parser.add_argument("--area", default="other", help="Therapeutic area")
    target_parser.add_argument("--indication", help="Indication")
    target_parser.add_argument("--company", help="Sponsor company")
    target_parser.add_argument("--notes", help="Monitoring goal, e.g. 'trial discontinuations only'")
    target_parser.add_argument("--user", help=f"Owner (default: {DEFAULT_USER_ID})")

    # targets command
    targets_parser = subparsers.add_parser("targets", help="List watch targets")
    targets_parser.add_argument("--user", help="Only this user's targets")
    targets_parser.add_argument("--all", action="store_true", help="Include inactive targets")

    # schedule-set command
    schedule_parser = subparsers.add_parser("schedule-set", help="Create or update a schedule")
    schedule_parser.add_argument("--target", help="Target id (default: global schedule for the user)")
    schedule_parser.add_argument("--user", help=f"Owner (default: {DEFAULT_USER_ID})")
    schedule_parser.add_argument("--timezone", default="UTC", help="IANA timezone (default: UTC)")
    schedule_parser.add_argument("--daily", type=_parse_hhmm, metavar="HH:MM", help="Daily scan time")
    schedule_parser.add_argument(
        "--weekly",
        nargs=2,
        metavar=("DAY", "HH:MM"),
        help="Weekly scan day and time, e.g. mon 08:30",
    )
    schedule_parser.add_argument(
        "--weekdays-only",
        action="store_true",
        help="Skip the daily scan on weekends",
    )

    # digest command
    digest_parser = subparsers.add_parser("digest", help="Print a persisted digest")
    digest_parser.add_argument("--id", help="Digest run id (default: latest)")

    # feedback command
    feedback_parser = subparsers.add_parser("feedback", help="Rate a digest item or raw item")
    feedback_parser.add_argument("id", help="Digest item id (or raw item id with --raw)")
    feedback_parser.add_argument("rating", choices=["good", "bad", "clear"])
    feedback_parser.add_argument("--raw", action="store_true", help="The id is a raw item id")

    args = parser.parse_args()

    # Load configuration
    config = Config.load()

    # Setup logging
    setup_logging(config, verbose=args.verbose)

    error = config.validate()
    if error:
        print(f"Configuration error: {error}", file=sys.stderr)
        return 1

    # Route to command handler
    commands = {
        "scan": cmd_scan,
        "tick": cmd_tick,
        "scheduler": cmd_scheduler,
        "serve": cmd_serve,
        "status": cmd_status,
        "target-add": cmd_target_add,
        "targets": cmd_targets,
        "schedule-set": cmd_schedule_set,
        "digest": cmd_digest,
        "feedback": cmd_feedback,
    }

    if args.command in commands:
        try:
            return commands[args.command](args, config)
        except KeyboardInterrupt:
            return 130
        except Exception as e:
            logger.error("Command failed | cmd=%s error=%s", args.command, e, exc_info=True)
            print(f"Error: {e}", file=sys.stderr)
            return 1
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
