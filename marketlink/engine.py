from __future__ import annotations

import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from marketlink import storage
from marketlink.caps import DROP_REASONS, RightCapArena, cap_candidates
from marketlink.config import RunConfig
from marketlink.fingerprint import fingerprint_market
from marketlink.index import CandidateIndex, build_index
from marketlink.markets import filter_markets
from marketlink.models import Candidate, EligibleMarket, Gate, ScoredMarket
from marketlink.scoring import Scorer, build_scorer, score_all

logger = logging.getLogger(__name__)

MarketFetcher = Callable[..., List[EligibleMarket]]


@dataclass
class RunResult:
    topic: str
    algo_version: str
    left_venue: str
    right_venue: str
    dry_run: bool = False
    left_count: int = 0
    right_count: int = 0
    skipped_confirmed: int = 0
    skipped_filtered: Dict[str, int] = field(default_factory=dict)
    candidates_considered: int = 0
    gate_failures: Dict[str, int] = field(default_factory=lambda: {g: 0 for g in Gate.ALL})
    below_min_score: int = 0
    generated_before_cap: int = 0
    saved_after_cap: int = 0
    dropped: Dict[str, int] = field(default_factory=lambda: {r: 0 for r in DROP_REASONS})
    created: int = 0
    updated: int = 0
    kept_confirmed: int = 0
    kept_rejected: int = 0
    entity_coverage: Dict[str, Dict[str, float]] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    suggestions: List[Dict[str, Any]] = field(default_factory=list)
    fatal: bool = False
    interrupted: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self, include_suggestions: bool = True) -> Dict[str, Any]:
        data = asdict(self)
        if not include_suggestions:
            data.pop("suggestions")
        return data


@dataclass
class _LeftScores:
    left: ScoredMarket
    candidates: List[Candidate]
    considered: int = 0
    gate_failures: Dict[str, int] = field(default_factory=dict)
    below_min_score: int = 0


def _sqlite_fetcher(db_path: str) -> MarketFetcher:
    def fetch(venue: str, lookback_hours: int, limit: int, title_keywords: Sequence[str], now):
        return storage.list_eligible_markets(
            db_path,
            venue,
            lookback_hours=lookback_hours,
            limit=limit,
            title_keywords=title_keywords,
            order_by="close_time",
            now=now,
        )

    return fetch


def _score_left(
    scorer: Scorer, index: CandidateIndex, left: ScoredMarket, min_score: float
) -> _LeftScores:
    outcome = _LeftScores(left=left, candidates=[])
    pool = index.candidates(left)
    outcome.considered = len(pool)
    for right, result in score_all(scorer, left, pool):
        if result.gate_failed != Gate.NONE:
            outcome.gate_failures[result.gate_failed] = (
                outcome.gate_failures.get(result.gate_failed, 0) + 1
            )
            continue
        if result.score < min_score:
            outcome.below_min_score += 1
            continue
        outcome.candidates.append(Candidate(left.market_id, right.market_id, result))
    return outcome


def _entity_coverage(
    lefts: Sequence[ScoredMarket], rights: Sequence[ScoredMarket], matched: Set[str]
) -> Dict[str, Dict[str, float]]:
    coverage: Dict[str, Dict[str, float]] = {}
    for item in lefts:
        for entity in item.fingerprint.entities:
            entry = coverage.setdefault(entity, {"left": 0, "right": 0, "matched": 0, "rate": 0.0})
            entry["left"] += 1
            if item.market_id in matched:
                entry["matched"] += 1
    for item in rights:
        for entity in item.fingerprint.entities:
            entry = coverage.setdefault(entity, {"left": 0, "right": 0, "matched": 0, "rate": 0.0})
            entry["right"] += 1
    for entry in coverage.values():
        entry["rate"] = round(entry["matched"] / entry["left"], 4) if entry["left"] else 0.0
    return dict(sorted(coverage.items()))


def run_matching(
    config: RunConfig,
    left_venue: str,
    right_venue: str,
    dry_run: bool = False,
    fetch_markets: Optional[MarketFetcher] = None,
    now: Optional[datetime] = None,
) -> RunResult:
    """Score one venue pair for a topic and persist the capped suggestions."""
    topic = config.topic
    now = now or datetime.now(timezone.utc)
    result = RunResult(
        topic=topic.name,
        algo_version=config.algo_version,
        left_venue=left_venue,
        right_venue=right_venue,
        dry_run=dry_run,
    )
    storage.init_db(config.db_path)
    fetch = fetch_markets or _sqlite_fetcher(config.db_path)

    markets: Dict[str, List[EligibleMarket]] = {}
    for venue in (left_venue, right_venue):
        try:
            markets[venue] = fetch(
                venue,
                lookback_hours=topic.lookback_hours,
                limit=topic.market_limit,
                title_keywords=topic.title_keywords,
                now=now,
            )
        except Exception as exc:
            logger.error("Failed to fetch %s markets for %s: %s", venue, topic.name, exc)
            result.errors.append(f"fetch {venue}: {exc}")
            result.fatal = True
            return result

    tables = topic.entity_tables()
    lefts, left_skipped = filter_markets(
        [fingerprint_market(m, tables) for m in markets[left_venue]], topic, now
    )
    rights, right_skipped = filter_markets(
        [fingerprint_market(m, tables) for m in markets[right_venue]], topic, now
    )
    for reason, count in list(left_skipped.items()) + list(right_skipped.items()):
        result.skipped_filtered[reason] = result.skipped_filtered.get(reason, 0) + count
    lefts.sort(key=lambda item: item.market_id)
    result.left_count = len(lefts)
    result.right_count = len(rights)
    if not lefts or not rights:
        logger.info(
            "Nothing to match for %s: left=%d right=%d", topic.name, len(lefts), len(rights)
        )
        result.entity_coverage = _entity_coverage(lefts, rights, set())
        return result

    confirmed = storage.confirmed_market_ids(config.db_path, left_venue)
    pending = [item for item in lefts if item.market_id not in confirmed]
    result.skipped_confirmed = len(lefts) - len(pending)

    index = build_index(topic, rights)
    scorer = build_scorer(topic)
    logger.info(
        "Matching %s: %d left (%s) vs %d indexed right (%s), %d keys",
        topic.name,
        len(pending),
        left_venue,
        len(index),
        right_venue,
        len(index.keys()),
    )

    def work(item: ScoredMarket) -> _LeftScores:
        return _score_left(scorer, index, item, topic.min_score)

    if config.workers > 1:
        with ThreadPoolExecutor(max_workers=config.workers) as executor:
            scored = list(executor.map(work, pending))
    else:
        scored = [work(item) for item in pending]

    arena = RightCapArena(topic.max_per_right)
    matched: Set[str] = set()
    try:
        for entry in scored:
            result.candidates_considered += entry.considered
            result.below_min_score += entry.below_min_score
            for gate, count in entry.gate_failures.items():
                result.gate_failures[gate] += count
            result.generated_before_cap += len(entry.candidates)
            if not entry.candidates:
                continue

            capped = cap_candidates(entry.candidates, topic, arena)
            for reason, count in capped.dropped.items():
                result.dropped[reason] += count
            if not capped.kept:
                continue
            result.saved_after_cap += len(capped.kept)
            matched.add(entry.left.market_id)
            _persist(config, result, entry.left, capped.kept, index, right_venue, dry_run)
    except KeyboardInterrupt:
        logger.warning("Run %s interrupted; completed markets are saved", topic.name)
        result.interrupted = True
        result.errors.append("interrupted")

    result.entity_coverage = _entity_coverage(lefts, rights, matched)
    logger.info(
        "Run %s %s->%s: left=%d right=%d candidates=%d gates=%s generated=%d saved=%d "
        "created=%d updated=%d errors=%d",
        config.algo_version,
        left_venue,
        right_venue,
        result.left_count,
        result.right_count,
        result.candidates_considered,
        result.gate_failures,
        result.generated_before_cap,
        result.saved_after_cap,
        result.created,
        result.updated,
        len(result.errors),
    )
    return result


def _persist(
    config: RunConfig,
    result: RunResult,
    left: ScoredMarket,
    kept: List[Candidate],
    index: CandidateIndex,
    right_venue: str,
    dry_run: bool,
) -> None:
    rows = []
    for candidate in kept:
        right = index.get(candidate.right_id)
        rows.append(
            {
                "left_venue": left.market.venue,
                "left_market_id": left.market_id,
                "right_venue": right_venue,
                "right_market_id": candidate.right_id,
                "score": candidate.score,
                "reason": candidate.result.reason,
                "algo_version": config.algo_version,
                "topic": config.topic.name,
                "left_title": left.market.title,
                "right_title": right.market.title if right else "",
            }
        )

    if dry_run:
        result.suggestions.extend(rows)
        return

    try:
        outcomes = storage.upsert_suggestions(
            config.db_path, rows, reopen_rejected=config.reopen_rejected
        )
    except sqlite3.Error as exc:
        logger.warning("Failed to save suggestions for %s: %s", left.market_id, exc)
        result.errors.append(f"upsert {left.market_id}: {exc}")
        return

    for _, outcome in outcomes:
        if outcome == storage.CREATED:
            result.created += 1
        elif outcome == storage.UPDATED:
            result.updated += 1
        elif outcome == storage.KEPT_CONFIRMED:
            result.kept_confirmed += 1
        elif outcome == storage.KEPT_REJECTED:
            result.kept_rejected += 1
    result.suggestions.extend(rows)


def explain_pair(config: RunConfig, left: EligibleMarket, right: EligibleMarket) -> Dict[str, Any]:
    tables = config.topic.entity_tables()
    left_item, right_item = fingerprint_market(left, tables), fingerprint_market(right, tables)
    scored = build_scorer(config.topic).score(left_item, right_item)
    return {
        "topic": config.topic.name,
        "algo_version": config.algo_version,
        "left": {
            "venue": left.venue,
            "market_id": left.market_id,
            "fingerprint": asdict(left_item.fingerprint),
        },
        "right": {
            "venue": right.venue,
            "market_id": right.market_id,
            "fingerprint": asdict(right_item.fingerprint),
        },
        "score": scored.score,
        "gate_failed": scored.gate_failed,
        "tier": scored.tier,
        "period_kind": scored.period_kind,
        "reason": scored.reason,
        "components": scored.components,
        "min_score": config.topic.min_score,
        "would_suggest": scored.gate_failed == Gate.NONE and scored.score >= config.topic.min_score,
    }
