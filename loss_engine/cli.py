#!/usr/bin/env python3
"""
CLI for running loss-engine batch jobs.

Usage:
    python -m loss_engine.cli init-db
    python -m loss_engine.cli ingest --source nws_alerts --file items.json
    python -m loss_engine.cli cluster
    python -m loss_engine.cli aggregate --zip 75201 --date 2024-05-09
    python -m loss_engine.cli aggregate-day --date 2024-05-09
    python -m loss_engine.cli resolve --zip 75201 --trigger user
    python -m loss_engine.cli runs --source nws_alerts

Every command prints a JSON summary to stdout.
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Optional

from feeds.static import StaticFeed
from loss_engine.clustering import ClusteringEngine
from loss_engine.geo import GeoAggregator, ResolutionGate
from loss_engine.ingestion import IngestionCoordinator, get_feed
from loss_engine.models import RunStatus, TriggerType
from loss_engine.storage import LossRepository
from utils.config import Config


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def _parse_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date (expected YYYY-MM-DD): {value}")


def _repository(args, config: Config) -> LossRepository:
    repository = LossRepository(args.database_url or config.database_url)
    repository.create_schema()
    return repository


# =============================================================================
# Commands
# =============================================================================


def cmd_init_db(args, config: Config):
    """Create the store schema."""
    repository = _repository(args, config)
    _print_json({"database_url": repository.database_url, "status": "ready"})
    return 0


def cmd_ingest(args, config: Config):
    """Ingest a captured batch of raw items for one feed."""
    if get_feed(args.source) is None:
        print(f"Error: Unknown feed: {args.source}", file=sys.stderr)
        return 1

    input_path = Path(args.file)
    if not input_path.exists():
        print(f"Error: File not found: {input_path}", file=sys.stderr)
        return 1

    try:
        feed = StaticFeed.from_json_file(str(input_path), args.source)
    except (json.JSONDecodeError, ValueError) as e:
        print(f"Error: Invalid items file: {e}", file=sys.stderr)
        return 1

    coordinator = IngestionCoordinator(_repository(args, config))
    run = asyncio.run(
        coordinator.run_feed(
            feed,
            timeout_seconds=config.fetch_timeout,
            deadline_seconds=args.deadline,
        )
    )
    _print_json(run.to_dict())
    return 1 if run.status is RunStatus.FAILED else 0


def cmd_cluster(args, config: Config):
    """Run one clustering pass over unclustered signals."""
    engine = ClusteringEngine(_repository(args, config), config.clustering_policy())
    outcome = engine.cluster()
    _print_json(outcome.to_dict())
    return 0


def cmd_aggregate(args, config: Config):
    """Recompute one ZIP's (or county's) daily aggregate."""
    aggregator = GeoAggregator(_repository(args, config))
    if args.county:
        aggregate = aggregator.aggregate_county(args.county, args.date)
    else:
        aggregate = aggregator.aggregate(args.zip, args.date)
    _print_json(aggregate.to_dict())
    return 0


def cmd_aggregate_day(args, config: Config):
    """Recompute every ZIP with evidence on a day."""
    aggregator = GeoAggregator(_repository(args, config))
    aggregates = aggregator.aggregate_day(args.date)
    _print_json([a.to_dict() for a in aggregates])
    return 0


def cmd_resolve(args, config: Config):
    """Evaluate the resolution gate for a ZIP."""
    gate = ResolutionGate(_repository(args, config), config.resolution_settings())
    request = gate.evaluate_resolution(
        args.zip, TriggerType(args.trigger), day=args.date
    )
    _print_json({"emitted": request is not None, "request": request.to_dict() if request else None})
    return 0


def cmd_runs(args, config: Config):
    """List recent ingestion runs."""
    runs = _repository(args, config).list_runs(source_name=args.source, limit=args.limit)
    _print_json([r.to_dict() for r in runs])
    return 0


# =============================================================================
# Entry Point
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Loss Engine - ingestion, clustering and resolution batch jobs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m loss_engine.cli ingest --source nws_alerts --file alerts.json
    python -m loss_engine.cli cluster
    python -m loss_engine.cli resolve --zip 75201 --trigger auto
        """,
    )
    parser.add_argument(
        "--database-url",
        help="SQLAlchemy URL (defaults to DATABASE_URL / DATA_DIR)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init-db", help="Create the store schema")
    init_parser.set_defaults(func=cmd_init_db)

    ingest_parser = subparsers.add_parser("ingest", help="Ingest a JSON file of raw items")
    ingest_parser.add_argument("--source", required=True, help="Registered feed name")
    ingest_parser.add_argument("--file", required=True, help="JSON list of raw items")
    ingest_parser.add_argument(
        "--deadline", type=float, default=None, help="Stop after this many seconds"
    )
    ingest_parser.set_defaults(func=cmd_ingest)

    cluster_parser = subparsers.add_parser("cluster", help="Run a clustering pass")
    cluster_parser.set_defaults(func=cmd_cluster)

    agg_parser = subparsers.add_parser("aggregate", help="Recompute one geography's day")
    target = agg_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--zip", help="ZIP code")
    target.add_argument("--county", help="County FIPS code")
    agg_parser.add_argument("--date", type=_parse_date, required=True, help="YYYY-MM-DD")
    agg_parser.set_defaults(func=cmd_aggregate)

    day_parser = subparsers.add_parser("aggregate-day", help="Recompute every ZIP for a day")
    day_parser.add_argument("--date", type=_parse_date, required=True, help="YYYY-MM-DD")
    day_parser.set_defaults(func=cmd_aggregate_day)

    resolve_parser = subparsers.add_parser("resolve", help="Evaluate the resolution gate")
    resolve_parser.add_argument("--zip", required=True, help="ZIP code")
    resolve_parser.add_argument(
        "--trigger",
        choices=[t.value for t in TriggerType],
        default=TriggerType.AUTO.value,
    )
    resolve_parser.add_argument("--date", type=_parse_date, default=None, help="YYYY-MM-DD")
    resolve_parser.set_defaults(func=cmd_resolve)

    runs_parser = subparsers.add_parser("runs", help="List recent ingestion runs")
    runs_parser.add_argument("--source", default=None, help="Filter by feed name")
    runs_parser.add_argument("--limit", type=int, default=20)
    runs_parser.set_defaults(func=cmd_runs)

    return parser


def main(argv: Optional[list[str]] = None):
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = Config.load()
    except ValueError as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        return args.func(args, config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
