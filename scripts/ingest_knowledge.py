#!/usr/bin/env python3
"""
Run the knowledge-base ingestion pipeline from the command line.

Uses the sync database engine directly, so no Celery worker or Redis is
needed. Steps run in the order scan → process → cleanup → status.

Usage:
    uv run python scripts/ingest_knowledge.py --scan
    uv run python scripts/ingest_knowledge.py --scan --process --limit 3
    uv run python scripts/ingest_knowledge.py --cleanup
    uv run python scripts/ingest_knowledge.py --status
"""

import argparse
import logging
import sys

from app.db.engine import get_sync_session, init_db
from app.services.processor import process_queue
from app.services.queue import cleanup_stuck_entries, knowledge_status, scan_and_enqueue

logger = logging.getLogger("ingest_knowledge")


def print_status() -> None:
    with get_sync_session() as session:
        snapshot = knowledge_status(session)

    print(f"\nKnowledge sources ({len(snapshot.sources)}):")
    for source in snapshot.sources:
        pages = source.total_pages if source.total_pages is not None else "?"
        print(
            f"  [{source.processing_status.value:<9}] {source.title} "
            f"({source.filename}): {source.total_chunks} chunks, {pages} pages"
        )

    print("\nQueue:")
    if not snapshot.queue_counts:
        print("  (empty)")
    for status, count in sorted(snapshot.queue_counts.items()):
        print(f"  {status:<10} {count}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Knowledge base ingestion")
    parser.add_argument("--scan", action="store_true", help="Scan the knowledge folder and queue changes")
    parser.add_argument("--process", action="store_true", help="Run one processing batch")
    parser.add_argument("--limit", type=int, default=None, help="Maximum queue entries per batch")
    parser.add_argument("--directory", default=None, help="Override KNOWLEDGE_DIR for the scan")
    parser.add_argument("--cleanup", action="store_true", help="Repair entries stuck in 'processing'")
    parser.add_argument("--status", action="store_true", help="Print sources and queue counts")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if not any((args.scan, args.process, args.cleanup, args.status)):
        parser.print_help()
        return 1

    init_db()

    if args.scan:
        with get_sync_session() as session:
            scan = scan_and_enqueue(session, directory=args.directory)
        print(
            f"Scan: {scan.new_count} new, {scan.updated_count} updated, "
            f"{scan.skipped_count} unchanged"
        )

    if args.process:
        with get_sync_session() as session:
            batch = process_queue(session, limit=args.limit)
        print(
            f"Batch: {batch.processed} processed, {batch.partial} partial, "
            f"{batch.failed} failed"
        )

    if args.cleanup:
        with get_sync_session() as session:
            cleanup = cleanup_stuck_entries(session)
        for filename, status, reason in cleanup.transitions:
            print(f"  {filename}: processing → {status.value} ({reason})")
        print(f"Cleanup: {cleanup.fixed} fixed, {cleanup.unchanged} unchanged")

    if args.status:
        print_status()

    return 0


if __name__ == "__main__":
    sys.exit(main())
