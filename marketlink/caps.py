from __future__ import annotations

import statistics
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from marketlink.config import TopicConfig
from marketlink.models import Candidate, PeriodKind

DROP_REASONS = ("leftCap", "crossGranularity", "rightCap", "winnerGap", "bracket")

_COMPARATOR_ALIASES = {
    "GE": "GE",
    "GT": "GE",
    "ABOVE": "GE",
    "OVER": "GE",
    ">": "GE",
    ">=": "GE",
    "LE": "LE",
    "LT": "LE",
    "BELOW": "LE",
    "UNDER": "LE",
    "<": "LE",
    "<=": "LE",
    "BETWEEN": "BETWEEN",
    "RANGE": "BETWEEN",
    "EQ": "EQ",
    "EQUAL": "EQ",
    "=": "EQ",
}


class RightCapArena:
    """Per-key counters shared by every left market in a run."""

    def __init__(self, quota: int) -> None:
        self.quota = quota
        self._counts: Dict[Tuple[str, str, str], int] = {}
        self._lock = threading.Lock()

    def try_acquire(self, key: Tuple[str, str, str]) -> bool:
        with self._lock:
            current = self._counts.get(key, 0)
            if current >= self.quota:
                return False
            self._counts[key] = current + 1
            return True

    def count(self, key: Tuple[str, str, str]) -> int:
        with self._lock:
            return self._counts.get(key, 0)


@dataclass
class CapOutcome:
    kept: List[Candidate]
    dropped: Dict[str, int] = field(default_factory=lambda: {r: 0 for r in DROP_REASONS})


def normalize_comparator(value: Optional[str]) -> str:
    if not value:
        return "NONE"
    return _COMPARATOR_ALIASES.get(value.strip().upper(), value.strip().upper())


def bracket_key(candidate: Candidate) -> str:
    result = candidate.result
    settle = result.settle_key or result.bucket
    return f"{result.entity}|{settle}|{normalize_comparator(result.comparator)}"


def right_cap_key(candidate: Candidate) -> Tuple[str, str, str]:
    return (candidate.right_id, candidate.result.entity, candidate.result.bucket)


def sort_candidates(candidates: List[Candidate]) -> List[Candidate]:
    return sorted(candidates, key=lambda c: (-c.score, c.right_id))


def apply_left_cap(candidates: List[Candidate], limit: int) -> Tuple[List[Candidate], int]:
    kept = candidates[: max(0, limit)]
    return kept, len(candidates) - len(kept)


def apply_cross_granularity(
    candidates: List[Candidate], limit: int, quota: int
) -> Tuple[List[Candidate], int, int]:
    exact = [c for c in candidates if c.result.period_kind == PeriodKind.EXACT]
    cross = [c for c in candidates if c.result.period_kind != PeriodKind.EXACT]
    kept_exact = exact[: max(0, limit)]
    kept_cross = cross[: max(0, quota)]
    kept = sort_candidates(kept_exact + kept_cross)
    return kept, len(exact) - len(kept_exact), len(cross) - len(kept_cross)


def apply_winner_gap(candidates: List[Candidate], min_gap: float) -> Tuple[List[Candidate], int]:
    if len(candidates) < 2:
        return candidates, 0
    if candidates[0].score - candidates[1].score >= min_gap:
        return candidates[:1], len(candidates) - 1
    return candidates, 0


def _central(group: List[Candidate], lines: int) -> List[Candidate]:
    thresholds = [c.result.threshold for c in group if c.result.threshold is not None]
    if not thresholds:
        return group[:lines]
    median = statistics.median(thresholds)

    def distance(candidate: Candidate) -> float:
        if candidate.result.threshold is None:
            return float("inf")
        return abs(candidate.result.threshold - median)

    picked = sorted(group, key=lambda c: (distance(c), -c.score, c.right_id))[:lines]
    return sort_candidates(picked)


def group_brackets(
    candidates: List[Candidate], max_groups: int, max_lines: int, strategy: str = "best_score"
) -> Tuple[List[Candidate], int]:
    """Collapse strike ladders: one representative line per bracket group."""
    groups: Dict[str, List[Candidate]] = {}
    for candidate in candidates:
        groups.setdefault(bracket_key(candidate), []).append(candidate)

    ordered = sorted(groups.values(), key=lambda g: (-g[0].score, g[0].right_id))
    kept: List[Candidate] = []
    for group in ordered[: max(0, max_groups)]:
        if strategy == "central_threshold":
            kept.extend(_central(group, max_lines))
        else:
            kept.extend(group[:max_lines])
    kept = sort_candidates(kept)
    return kept, len(candidates) - len(kept)


def apply_right_cap(
    candidates: List[Candidate], arena: RightCapArena
) -> Tuple[List[Candidate], int]:
    kept = [c for c in candidates if arena.try_acquire(right_cap_key(c))]
    return kept, len(candidates) - len(kept)


def cap_candidates(
    candidates: List[Candidate], topic: TopicConfig, arena: RightCapArena
) -> CapOutcome:
    outcome = CapOutcome(kept=[])
    ordered = sort_candidates(candidates)

    if topic.scorer == "crypto":
        if topic.bracket_mode:
            ordered, dropped = group_brackets(
                ordered,
                topic.max_groups_per_left,
                topic.max_lines_per_group,
                topic.bracket_strategy,
            )
            outcome.dropped["bracket"] += dropped
        else:
            ordered, dropped = apply_winner_gap(ordered, topic.min_winner_gap)
            outcome.dropped["winnerGap"] += dropped

    limit = min(topic.top_k, topic.max_per_left)
    if topic.scorer == "macro":
        ordered, left_dropped, cross_dropped = apply_cross_granularity(
            ordered, limit, topic.max_cross_granularity_per_left
        )
        outcome.dropped["crossGranularity"] += cross_dropped
    else:
        ordered, left_dropped = apply_left_cap(ordered, limit)
    outcome.dropped["leftCap"] += left_dropped

    outcome.kept, right_dropped = apply_right_cap(ordered, arena)
    outcome.dropped["rightCap"] += right_dropped
    return outcome
