"""CLI runner and scheduler for release ingestion and dedup maintenance.

Usage:
    python scripts/run_ingest.py ingest data/feeds/today.jsonl
    python scripts/run_ingest.py check --title "Mickey Ears" --url https://example.com/a
    python scripts/run_ingest.py similar RELEASE_ID --threshold 0.5
    python scripts/run_ingest.py merge SOURCE_ID TARGET_ID
    python scripts/run_ingest.py sweep [--live]
    python scripts/run_ingest.py backfill
    python scripts/run_ingest.py lock-status feed_processing
    python scripts/run_ingest.py release-lock feed_processing
    python scripts/run_ingest.py schedule data/feeds/today.jsonl
"""

from __future__ import annotations

import argparse
import sys

from releasewatch.core.config import get_config
from releasewatch.core.database import init_db
from releasewatch.core.exceptions import ReleaseWatchError
from releasewatch.core.logger import get_logger, setup_logging
from releasewatch.core.models import ReleaseCandidate
from releasewatch.dedup.resolver import DuplicateResolver
from releasewatch.dedup.sweeper import DuplicateSweeper, SweepResult
from releasewatch.ingestion import (
    IngestionLockManager,
    IngestionResult,
    IngestionRun,
    JsonLinesCandidateSource,
    run_with_retry,
)
from releasewatch.storage import ReleaseRepository

logger = get_logger(__name__)


def _print_result(result: IngestionResult) -> None:
    """Print an ingestion result summary to stdout."""
    status = "SUCCESS" if result.success else "FAILED"
    print(f"\n{'=' * 60}")
    print(f"  Lock:       {result.lock_name} (acquired={result.acquired})")
    print(f"  Status:     {status}{' (retryable)' if result.retryable else ''}")
    print(f"  Elapsed:    {result.elapsed_sec}s")
    print(f"  Seen:       {result.candidates_seen}")
    print(f"  Inserted:   {result.inserted}")
    print(f"  Duplicates: {result.duplicates}")
    for reason, count in sorted(result.reasons.items()):
        print(f"    - {reason}: {count}")
    if result.errors:
        print(f"  Errors:     {len(result.errors)}")
        for err in result.errors:
            print(f"    - [{err.get('step', '?')}] {err.get('error', '?')}")
    print(f"{'=' * 60}\n")


def _print_sweep(result: SweepResult) -> None:
    mode = "DRY RUN" if result.dry_run else "LIVE"
    print(f"\n{'=' * 60}")
    print(f"  Sweep ({mode}): {len(result.groups)} groups, {result.duplicate_count} duplicates")
    if not result.acquired:
        print("  Lock busy: nothing merged")
    for group in result.groups:
        print(f"  keep  {group.keep.id}  {group.keep.title}  [{group.reason}]")
        for dup in group.duplicates:
            print(f"   dup  {dup.id}  {dup.title}")
    if not result.dry_run:
        print(f"  Merged: {result.merged}")
    for err in result.errors:
        print(f"    - {err['id']}: {err['error']}")
    print(f"{'=' * 60}\n")


def run_ingest(path: str) -> IngestionResult:
    """Ingest a candidate file, retrying while the run is retryable.

    Args:
        path: ``.jsonl`` or ``.json`` candidate file.

    Returns:
        The final IngestionResult.
    """
    candidates = JsonLinesCandidateSource(path).collect()
    run = IngestionRun()
    return run_with_retry(lambda: run.run(candidates))


def run_check(title: str, url: str | None, image: str | None) -> None:
    """Resolve one candidate without storing it."""
    resolver = DuplicateResolver()
    verdict = resolver.resolve(ReleaseCandidate(title=title, source_url=url, image_url=image))
    print(f"  key:       {verdict.normalized_title}")
    print(f"  hash:      {verdict.fingerprint}")
    print(f"  duplicate: {verdict.is_duplicate}")
    if verdict.is_duplicate:
        print(f"  matched:   {verdict.matched_id} ({verdict.reason}, score={verdict.score:.3f})")


def run_similar(release_id: str, threshold: float | None) -> None:
    """List review suggestions for a stored release."""
    resolver = DuplicateResolver()
    suggestions = resolver.find_potential_duplicates(release_id, threshold=threshold)
    if not suggestions:
        print("No similar releases.")
    for s in suggestions:
        print(f"  {s.score:.3f}  {s.release_id}  {s.title_normalized}")


def run_merge(source_id: str, target_id: str) -> None:
    """Merge one release into another under the ingestion lock."""
    locks = IngestionLockManager()
    with locks.hold() as lease:
        if lease is None:
            print("Ingestion lock is held; try again later.")
            sys.exit(2)
        merged = ReleaseRepository().merge(source_id, target_id)
    print(f"Merged {merged.id} into {merged.merged_into_id}")


def run_backfill() -> None:
    """Recompute normalized titles and fingerprints under the ingestion lock."""
    locks = IngestionLockManager()
    with locks.hold() as lease:
        if lease is None:
            print("Ingestion lock is held; try again later.")
            sys.exit(2)
        updated, merged = ReleaseRepository().backfill_derived_fields()
    print(f"Updated {updated} releases, merged {merged} newly colliding releases.")


def run_lock_status(name: str) -> None:
    lock = IngestionLockManager().status(name)
    if lock is None:
        print(f"{name}: free")
    else:
        print(f"{name}: held by {lock.locked_by} until {lock.expires_at.isoformat()}")


def run_release_lock(name: str) -> None:
    released = IngestionLockManager().release(name)
    print(f"{name}: {'released' if released else 'was not held'}")


def start_scheduler(path: str) -> None:
    """Start the APScheduler daemon that re-ingests ``path`` periodically.

    Runs until interrupted (Ctrl+C). Overlapping runs, from this or any
    other process, are serialized by the ingestion lock.
    """
    from apscheduler.schedulers.blocking import BlockingScheduler
    from apscheduler.triggers.interval import IntervalTrigger

    config = get_config()
    tz = config.schedule.timezone
    interval = config.schedule.ingest_interval_minutes

    def job() -> None:
        try:
            _print_result(run_ingest(path))
        except ReleaseWatchError as e:
            logger.error("scheduled_ingest_failed", path=path, error=str(e))

    scheduler = BlockingScheduler(timezone=tz)
    scheduler.add_job(
        job,
        IntervalTrigger(minutes=interval, timezone=tz),
        id="ingest",
        name="Release ingestion",
        misfire_grace_time=config.schedule.misfire_grace_sec,
        max_instances=1,
        coalesce=True,
    )
    logger.info("job_scheduled", job="ingest", path=path, interval_minutes=interval)

    print(f"\nScheduler started (timezone: {tz})")
    print(f"  Ingest {path} every {interval} min")
    print("\nPress Ctrl+C to stop.\n")

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("scheduler_stopped")
        print("\nScheduler stopped.")


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        description="releasewatch: release ingestion and duplicate maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python scripts/run_ingest.py ingest data/feeds/today.jsonl\n"
            '  python scripts/run_ingest.py check --title "Mickey Ears"\n'
            "  python scripts/run_ingest.py sweep --live\n"
            "  python scripts/run_ingest.py schedule data/feeds/today.jsonl\n"
        ),
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    ingest_parser = subparsers.add_parser("ingest", help="Ingest a candidate file now")
    ingest_parser.add_argument("path", help="Candidate file (.jsonl or .json)")

    check_parser = subparsers.add_parser("check", help="Resolve a candidate without storing it")
    check_parser.add_argument("--title", required=True)
    check_parser.add_argument("--url", default=None, help="Source URL")
    check_parser.add_argument("--image", default=None, help="Image URL")

    similar_parser = subparsers.add_parser("similar", help="Suggest possible duplicates")
    similar_parser.add_argument("release_id")
    similar_parser.add_argument("--threshold", type=float, default=None)

    merge_parser = subparsers.add_parser("merge", help="Merge SOURCE into TARGET")
    merge_parser.add_argument("source_id")
    merge_parser.add_argument("target_id")

    sweep_parser = subparsers.add_parser("sweep", help="Find stored duplicates")
    sweep_parser.add_argument(
        "--live", action="store_true", help="Merge the groups (default: dry run)",
    )

    subparsers.add_parser("backfill", help="Recompute normalized titles and hashes")

    status_parser = subparsers.add_parser("lock-status", help="Show a lock")
    status_parser.add_argument("name", nargs="?", default=None)

    release_parser = subparsers.add_parser("release-lock", help="Force-release a lock")
    release_parser.add_argument("name", nargs="?", default=None)

    schedule_parser = subparsers.add_parser("schedule", help="Start the ingestion scheduler")
    schedule_parser.add_argument("path", help="Candidate file to re-ingest")

    return parser


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Initialize infrastructure
    config = get_config()
    setup_logging(
        level=config.logging.level,
        format=config.logging.format,
        log_file=config.logging.file,
        max_title_length=config.logging.max_title_length,
    )
    init_db()
    lock_name = config.locking.default_lock_name

    try:
        if args.command == "schedule":
            start_scheduler(args.path)
        elif args.command == "ingest":
            result = run_ingest(args.path)
            _print_result(result)
            if not result.success:
                sys.exit(1)
        elif args.command == "check":
            run_check(args.title, args.url, args.image)
        elif args.command == "similar":
            run_similar(args.release_id, args.threshold)
        elif args.command == "merge":
            run_merge(args.source_id, args.target_id)
        elif args.command == "sweep":
            _print_sweep(DuplicateSweeper().sweep(dry_run=not args.live))
        elif args.command == "backfill":
            run_backfill()
        elif args.command == "lock-status":
            run_lock_status(args.name or lock_name)
        elif args.command == "release-lock":
            run_release_lock(args.name or lock_name)
    except ReleaseWatchError as e:
        logger.error("command_failed", command=args.command, error=str(e))
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
