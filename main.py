#!/usr/bin/env python3
"""Media Scanner: feed scanning, deduplication and topic relevance pipeline.

This CLI tool scans RSS sources through durable job queues, stores new
articles once, scores them against configured topics with an AI agent and
drafts social posts for the most relevant ones.

Commands:
    run              Start all queue workers until interrupted
    scan             Enqueue a scan (full, incremental, targeted, cleanup)
    reanalyze        Send a classified article back through classification
    analyze-pending  Enqueue classification for pending articles
    digest           Enqueue the daily digest
    status           Show configuration, store statistics and queue counts
    sources          Add, list, test or deactivate sources
    topics           Add, list or deactivate topics

Examples:
    python main.py sources add --name "Le Monde" --slug lemonde --url https://www.lemonde.fr/rss/une.xml
    python main.py topics add --name Bureaucratie --slug bureaucratie --keywords "cerfa,formulaire"
    python main.py scan --type full --wait
    python main.py run
    python main.py digest --date 2026-01-15 --wait

Environment:
    GEMINI_API_KEY: Required for the AI agents
    See config.py for all configuration options
"""

import argparse
import asyncio
import json
import logging
import sqlite3
import sys
from datetime import date

from config import Config
from database import Database
from errors import ArticleNotFoundError
from jobs.queues import ScanType
from models.source import SourceCategory, SourceUpdate
from observability.logging import setup_logging

logger = logging.getLogger(__name__)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def cmd_run(args: argparse.Namespace, config: Config) -> int:
    """Run every queue worker until Ctrl+C."""
    from pipeline import run_workers

    try:
        asyncio.run(run_workers(config))
    except KeyboardInterrupt:
        logger.info("Stopped by user (Ctrl+C)")
        return 130  # Standard exit code for SIGINT
    return 0


def cmd_scan(args: argparse.Namespace, config: Config) -> int:
    """Enqueue a scan; with --wait, drain all queues in-process."""
    from pipeline import run_scan

    if args.type == ScanType.TARGETED.value and not args.source:
        print("Error: --source is required for a targeted scan", file=sys.stderr)
        return 1
    result = asyncio.run(run_scan(config, args.type, args.source, wait=args.wait))
    _print_json(result)
    return 0


async def _with_pipeline(config: Config, wait: bool, action):
    from pipeline import ScanPipeline

    async with ScanPipeline(config) as pipeline:
        output = action(pipeline)
        if wait:
            output["stats"] = (await pipeline.drain()).to_dict()
        return output


def cmd_reanalyze(args: argparse.Namespace, config: Config) -> int:
    def action(pipeline):
        job = pipeline.trigger_reanalysis(args.article)
        return {"job_id": job.id, "article_id": args.article}

    try:
        _print_json(asyncio.run(_with_pipeline(config, args.wait, action)))
    except (ArticleNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def cmd_analyze_pending(args: argparse.Namespace, config: Config) -> int:
    def action(pipeline):
        jobs = pipeline.trigger_pending_analysis(args.limit)
        return {"queued": len(jobs)}

    _print_json(asyncio.run(_with_pipeline(config, args.wait, action)))
    return 0


def cmd_digest(args: argparse.Namespace, config: Config) -> int:
    day = date.fromisoformat(args.date) if args.date else None

    def action(pipeline):
        job = pipeline.trigger_digest(day)
        return {"job_id": job.id, "job_key": job.job_key, "status": job.status.value}

    _print_json(asyncio.run(_with_pipeline(config, args.wait, action)))
    return 0


def cmd_status(args: argparse.Namespace, config: Config) -> int:
    """Display configuration, store statistics and queue counts."""
    from pipeline import ScanPipeline

    async def collect():
        async with ScanPipeline(config) as pipeline:
            return pipeline.status()

    status = {
        "config": {
            "language": config.language,
            "classifier_model": config.classifier_model,
            "generator_model": config.generator_model,
            "summary_model": config.summary_model,
            "generation_threshold": config.generation_threshold,
            "db_path": str(config.db_path),
            "dedup_cache": "redis" if config.redis_url else "memory",
            "enable_logfire": config.enable_logfire,
        },
        **asyncio.run(collect()),
    }
    _print_json(status)
    return 0


def cmd_sources(args: argparse.Namespace, config: Config) -> int:
    if args.action == "test":
        from feeds import FeedFetcher
        from ratelimit import RateLimiterRegistry
        from retry import CircuitBreakerRegistry

        async def test():
            limiters = RateLimiterRegistry(config.source_rate_capacity, config.source_rate_interval_seconds)
            breakers = CircuitBreakerRegistry(config.circuit_failure_threshold, config.circuit_reset_seconds)
            async with FeedFetcher.from_config(config, limiters, breakers) as fetcher:
                return await fetcher.test_feed(args.url)

        result = asyncio.run(test())
        _print_json(result)
        return 0 if result["valid"] else 1

    with Database(config.db_path) as db:
        if args.action == "add":
            try:
                source = db.add_source(
                    name=args.name,
                    slug=args.slug,
                    url=args.url,
                    category=args.category,
                    fetch_interval_minutes=args.interval,
                    region=args.region,
                )
            except sqlite3.IntegrityError:
                print(f"Error: source slug '{args.slug}' already exists", file=sys.stderr)
                return 1
            _print_json(source.model_dump(mode="json"))
        elif args.action == "list":
            _print_json([s.model_dump(mode="json") for s in db.list_sources()])
        elif args.action == "deactivate":
            if not db.update_source(args.id, SourceUpdate(is_active=False)):
                print(f"Error: source {args.id} not found", file=sys.stderr)
                return 1
            print(f"Source {args.id} deactivated")
    return 0


def cmd_topics(args: argparse.Namespace, config: Config) -> int:
    with Database(config.db_path) as db:
        if args.action == "add":
            keywords = [k for k in args.keywords.split(",") if k.strip()]
            try:
                topic = db.add_topic(
                    name=args.name,
                    slug=args.slug,
                    keywords=keywords,
                    ai_prompt=args.prompt,
                    description=args.description,
                    min_relevance_score=args.min_score,
                )
            except (ValueError, sqlite3.IntegrityError) as e:
                print(f"Error: {e}", file=sys.stderr)
                return 1
            _print_json(topic.model_dump(mode="json"))
        elif args.action == "list":
            _print_json([t.model_dump(mode="json") for t in db.list_topics()])
        elif args.action == "deactivate":
            if not db.deactivate_topic(args.id):
                print(f"Error: topic {args.id} not found", file=sys.stderr)
                return 1
            print(f"Topic {args.id} deactivated")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Media Scanner: feed scanning and topic relevance pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("run", help="Start all queue workers")

    scan_parser = subparsers.add_parser("scan", help="Enqueue a scan")
    scan_parser.add_argument(
        "--type",
        choices=[t.value for t in ScanType],
        default=ScanType.INCREMENTAL.value,
        help="Scan type (default: incremental)",
    )
    scan_parser.add_argument("--source", help="Source id (required for targeted scans)")
    scan_parser.add_argument(
        "--wait",
        action="store_true",
        help="Drain the queues in this process until all work is done",
    )

    reanalyze_parser = subparsers.add_parser("reanalyze", help="Re-run classification for an article")
    reanalyze_parser.add_argument("--article", required=True, help="Article id")
    reanalyze_parser.add_argument("--wait", action="store_true", help="Drain the queues afterwards")

    pending_parser = subparsers.add_parser("analyze-pending", help="Classify pending articles")
    pending_parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Max articles to enqueue (default: 50)",
    )
    pending_parser.add_argument("--wait", action="store_true", help="Drain the queues afterwards")

    digest_parser = subparsers.add_parser("digest", help="Enqueue the daily digest")
    digest_parser.add_argument("--date", help="Day as YYYY-MM-DD (default: today, UTC)")
    digest_parser.add_argument("--wait", action="store_true", help="Drain the queues afterwards")

    subparsers.add_parser("status", help="Show configuration and statistics")

    sources_parser = subparsers.add_parser("sources", help="Manage sources")
    sources_sub = sources_parser.add_subparsers(dest="action", required=True)
    source_add = sources_sub.add_parser("add", help="Add an RSS source")
    source_add.add_argument("--name", required=True)
    source_add.add_argument("--slug", required=True)
    source_add.add_argument("--url", required=True)
    source_add.add_argument(
        "--category",
        choices=[c.value for c in SourceCategory],
        default=SourceCategory.NATIONAL.value,
    )
    source_add.add_argument(
        "--interval",
        type=int,
        default=60,
        help="Fetch interval in minutes (default: 60)",
    )
    source_add.add_argument("--region")
    sources_sub.add_parser("list", help="List sources")
    source_off = sources_sub.add_parser("deactivate", help="Deactivate a source")
    source_off.add_argument("id")
    source_test = sources_sub.add_parser("test", help="Check that a URL serves a readable feed")
    source_test.add_argument("url")

    topics_parser = subparsers.add_parser("topics", help="Manage topics")
    topics_sub = topics_parser.add_subparsers(dest="action", required=True)
    topic_add = topics_sub.add_parser("add", help="Add a topic")
    topic_add.add_argument("--name", required=True)
    topic_add.add_argument("--slug", required=True)
    topic_add.add_argument("--keywords", required=True, help="Comma-separated keywords")
    topic_add.add_argument("--prompt", default="", help="Relevance criteria sent to the model")
    topic_add.add_argument("--description", default="")
    topic_add.add_argument(
        "--min-score",
        type=float,
        default=0.5,
        help="Minimum score for an article to be relevant (default: 0.5)",
    )
    topics_sub.add_parser("list", help="List topics")
    topic_off = topics_sub.add_parser("deactivate", help="Deactivate a topic")
    topic_off.add_argument("id")

    return parser


def _needs_api_key(args: argparse.Namespace) -> bool:
    if args.command == "run":
        return True
    if args.command == "scan":
        return args.wait and args.type != ScanType.CLEANUP.value
    return args.command in ("reanalyze", "analyze-pending", "digest") and args.wait


def main() -> int:
    """Main entry point.

    Returns:
        Exit code
    """
    parser = build_parser()
    args = parser.parse_args()

    config = Config.load()
    setup_logging(config, verbose=args.verbose)

    error = config.validate(require_api_key=_needs_api_key(args))
    if error:
        print(f"Configuration error: {error}", file=sys.stderr)
        return 1

    commands = {
        "run": cmd_run,
        "scan": cmd_scan,
        "reanalyze": cmd_reanalyze,
        "analyze-pending": cmd_analyze_pending,
        "digest": cmd_digest,
        "status": cmd_status,
        "sources": cmd_sources,
        "topics": cmd_topics,
    }

    if args.command in commands:
        try:
            return commands[args.command](args, config)
        except Exception as e:
            logger.error("Command failed | cmd=%s error=%s", args.command, e, exc_info=True)
            print(f"Error: {e}", file=sys.stderr)
            return 1
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
