from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from marketlink.config import AppConfig, build_run_config, load_config, load_topics
from marketlink.storage import init_db

logger = logging.getLogger(__name__)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _run_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides = {
        "min_score": args.min_score,
        "top_k": args.top_k,
        "max_per_left": args.max_per_left,
        "max_per_right": args.max_per_right,
        "lookback_hours": args.lookback_hours,
        "market_limit": args.limit,
        "bracket_strategy": args.bracket_strategy,
    }
    if args.brackets:
        overrides["bracket_mode"] = True
    return {key: value for key, value in overrides.items() if value is not None}


def import_markets(config: AppConfig, venue: str, path: Path, status: str) -> int:
    from marketlink.markets import parse_market
    from marketlink.storage import upsert_markets

    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    entries = data.get("markets", []) if isinstance(data, dict) else data
    if not isinstance(entries, list):
        logger.error("Expected a list of markets in %s", path)
        return 1
    markets = [parse_market(venue, entry) for entry in entries]
    count = upsert_markets(config.db_path, markets, status=status)
    logger.info("Imported %d %s markets from %s", count, venue, path)
    return 0


def suggest(config: AppConfig, args: argparse.Namespace) -> int:
    from marketlink.engine import run_matching
    from marketlink.notify import notify_run

    run_config = build_run_config(config, args.topic, overrides=_run_overrides(args))
    if args.workers:
        run_config = replace(run_config, workers=args.workers)
    result = run_matching(
        run_config,
        left_venue=args.left_venue,
        right_venue=args.right_venue,
        dry_run=args.dry_run,
    )
    payload = result.to_dict(include_suggestions=False)
    if args.show:
        payload["suggestions"] = result.suggestions[: args.show]
    _print_json(payload)
    notify_run(result, config.slack_webhook_url)
    return 0 if result.ok else 1


def explain_pair(config: AppConfig, args: argparse.Namespace) -> int:
    from marketlink.engine import explain_pair as run_explain
    from marketlink.storage import get_market

    left = get_market(config.db_path, args.left_venue, args.left_market)
    right = get_market(config.db_path, args.right_venue, args.right_market)
    if left is None or right is None:
        missing = args.left_market if left is None else args.right_market
        logger.error("Market not found: %s", missing)
        return 1
    run_config = build_run_config(config, args.topic)
    _print_json(run_explain(run_config, left, right))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="marketlink")
    parser.add_argument("--db", help="SQLite DB path override")
    parser.add_argument("--topics", help="Topic overrides YAML path")
    sub = parser.add_subparsers(dest="command", required=True)

    import_cmd = sub.add_parser("import-markets", help="Load eligible markets from JSON")
    import_cmd.add_argument("--venue", required=True, help="Venue name, e.g. kalshi")
    import_cmd.add_argument("--file", required=True, help="JSON list of markets")
    import_cmd.add_argument("--status", default="open", help="Status stored for the markets")

    suggest_cmd = sub.add_parser("suggest", help="Score venue pairs and store suggestions")
    suggest_cmd.add_argument("--topic", default="general", help="Topic configuration name")
    suggest_cmd.add_argument("--left-venue", default="kalshi", help="Source venue")
    suggest_cmd.add_argument("--right-venue", default="polymarket", help="Target venue")
    suggest_cmd.add_argument("--dry-run", action="store_true", help="Score without writing")
    suggest_cmd.add_argument("--min-score", type=float, help="Minimum score override")
    suggest_cmd.add_argument("--top-k", type=int, help="Top K per left market")
    suggest_cmd.add_argument("--max-per-left", type=int, help="Left cap override")
    suggest_cmd.add_argument("--max-per-right", type=int, help="Right cap override")
    suggest_cmd.add_argument("--lookback-hours", type=int, help="Lookback window override")
    suggest_cmd.add_argument("--limit", type=int, help="Max markets fetched per venue")
    suggest_cmd.add_argument("--brackets", action="store_true", help="Enable bracket grouping")
    suggest_cmd.add_argument(
        "--bracket-strategy",
        choices=["best_score", "central_threshold"],
        help="Bracket representative strategy",
    )
    suggest_cmd.add_argument("--workers", type=int, help="Scoring threads")
    suggest_cmd.add_argument("--show", type=int, default=0, help="Print first N suggestions")

    list_cmd = sub.add_parser("list", help="List stored suggestions")
    list_cmd.add_argument("--status", help="Filter by status")
    list_cmd.add_argument("--topic", help="Filter by topic")
    list_cmd.add_argument("--algo-version", help="Filter by algo version")
    list_cmd.add_argument("--min-score", type=float, help="Minimum score")
    list_cmd.add_argument("--limit", type=int, default=50, help="Max rows")
    list_cmd.add_argument("--offset", type=int, default=0, help="Row offset")

    sub.add_parser("stats", help="Counts by status, algo version and topic")

    confirm_cmd = sub.add_parser("confirm", help="Confirm a suggestion")
    confirm_cmd.add_argument("link_id", type=int, nargs="?", help="Link id")
    confirm_cmd.add_argument(
        "--pair",
        nargs=4,
        metavar=("LEFT_VENUE", "LEFT_ID", "RIGHT_VENUE", "RIGHT_ID"),
        help="Confirm by market pair",
    )

    reject_cmd = sub.add_parser("reject", help="Reject a suggestion")
    reject_cmd.add_argument("link_id", type=int, help="Link id")

    auto_confirm_cmd = sub.add_parser("auto-confirm", help="Confirm links passing safe rules")
    auto_confirm_cmd.add_argument("--topic", help="Only this topic")
    auto_confirm_cmd.add_argument("--apply", action="store_true", help="Write confirmations")
    auto_confirm_cmd.add_argument("--explain", action="store_true", help="Per-link rule output")
    auto_confirm_cmd.add_argument("--limit", type=int, help="Max links scanned")
    auto_confirm_cmd.add_argument(
        "--min-score", type=float, help="Score minimum override for every topic"
    )

    auto_reject_cmd = sub.add_parser("auto-reject", help="Reject stale low-confidence links")
    auto_reject_cmd.add_argument("--topic", help="Only this topic")
    auto_reject_cmd.add_argument("--apply", action="store_true", help="Write rejections")
    auto_reject_cmd.add_argument("--explain", action="store_true", help="Per-link rule output")
    auto_reject_cmd.add_argument("--limit", type=int, help="Max links scanned")
    auto_reject_cmd.add_argument("--floor", type=float, help="Low-score floor override")
    auto_reject_cmd.add_argument(
        "--min-age-hours", type=float, default=24, help="Minimum link age before rejecting"
    )

    explain_cmd = sub.add_parser("explain-pair", help="Explain how two stored markets score")
    explain_cmd.add_argument("left_venue", help="Left venue")
    explain_cmd.add_argument("left_market", help="Left market id")
    explain_cmd.add_argument("right_venue", help="Right venue")
    explain_cmd.add_argument("right_market", help="Right market id")
    explain_cmd.add_argument("--topic", default="general", help="Topic configuration name")

    cleanup_cmd = sub.add_parser("cleanup", help="Delete stale suggestions")
    cleanup_cmd.add_argument("--older-than-days", type=int, required=True, help="Age cutoff")
    cleanup_cmd.add_argument("--status", help="Only this status")
    cleanup_cmd.add_argument("--algo-version", help="Only this algo version")
    cleanup_cmd.add_argument("--topic", help="Only this topic")
    cleanup_cmd.add_argument("--apply", action="store_true", help="Delete instead of counting")

    export_cmd = sub.add_parser("export-suggestions", help="Export suggestions to YAML or CSV")
    export_cmd.add_argument("--out", default="suggestions.yml", help="Output path")
    export_cmd.add_argument("--status", default="suggested", help="Status filter")
    export_cmd.add_argument("--topic", help="Topic filter")
    export_cmd.add_argument("--min-score", type=float, help="Minimum score")
    export_cmd.add_argument("--limit", type=int, help="Max rows")

    return parser


def main(argv: Optional[Iterable[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    config = load_config()
    if args.db:
        config = replace(config, db_path=args.db)
    if args.topics:
        config = replace(config, topics_path=args.topics)
    init_db(config.db_path)

    if args.command == "import-markets":
        return import_markets(config, args.venue, Path(args.file), args.status)

    if args.command == "suggest":
        return suggest(config, args)

    if args.command == "list":
        from marketlink.storage import list_suggestions

        links = list_suggestions(
            config.db_path,
            min_score=args.min_score,
            status=args.status,
            topic=args.topic,
            algo_version=args.algo_version,
            limit=args.limit,
            offset=args.offset,
        )
        _print_json([asdict(link) for link in links])
        return 0

    if args.command == "stats":
        from marketlink.storage import get_stats

        _print_json(get_stats(config.db_path))
        return 0

    if args.command == "confirm":
        from marketlink.storage import confirm, confirm_by_pair

        if args.pair:
            link = confirm_by_pair(config.db_path, *args.pair)
        elif args.link_id is not None:
            link = confirm(config.db_path, args.link_id, reason_suffix="manual_confirm")
        else:
            parser.error("confirm requires a link id or --pair")
        if link is None:
            logger.error("Link not found")
            return 1
        logger.info("Confirmed link %d", link.id)
        return 0

    if args.command == "reject":
        from marketlink.storage import reject

        link = reject(config.db_path, args.link_id, reason_suffix="manual_reject")
        if link is None:
            logger.error("Link not found: %s", args.link_id)
            return 1
        logger.info("Rejected link %d", link.id)
        return 0

    if args.command == "auto-confirm":
        from marketlink.policy import auto_confirm

        report = auto_confirm(
            config.db_path,
            topic=args.topic,
            apply=args.apply,
            explain=args.explain,
            limit=args.limit,
            min_score=args.min_score,
            topics=load_topics(config.topics_path),
            engine_version=config.engine_version,
        )
        _print_json(report.to_dict())
        return 0

    if args.command == "auto-reject":
        from marketlink.policy import auto_reject

        report = auto_reject(
            config.db_path,
            topic=args.topic,
            apply=args.apply,
            explain=args.explain,
            min_age_hours=args.min_age_hours,
            limit=args.limit,
            floor=args.floor,
            topics=load_topics(config.topics_path),
            engine_version=config.engine_version,
        )
        _print_json(report.to_dict())
        return 0

    if args.command == "explain-pair":
        return explain_pair(config, args)

    if args.command == "cleanup":
        from marketlink.storage import cleanup_suggestions

        count = cleanup_suggestions(
            config.db_path,
            older_than_days=args.older_than_days,
            status=args.status,
            algo_version=args.algo_version,
            topic=args.topic,
            dry_run=not args.apply,
        )
        logger.info("%s %d suggestions", "Deleted" if args.apply else "Would delete", count)
        return 0

    if args.command == "export-suggestions":
        from marketlink.review import export_suggestions

        export_suggestions(
            config.db_path,
            Path(args.out).resolve(),
            status=args.status,
            topic=args.topic,
            min_score=args.min_score,
            limit=args.limit,
        )
        return 0

    parser.error(f"Unknown command: {args.command}")
    return 2
