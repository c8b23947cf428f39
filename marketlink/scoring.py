"""Pairwise match scoring.

Each scorer variant owns its gates and weights and exposes the same
``score(left, right) -> ScoreResult`` call. A gate failure always yields a
zero score with ``gate_failed`` set so diagnostics can tell it apart from a
genuinely weak match.
"""

from __future__ import annotations

from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from rapidfuzz.distance import Levenshtein

from marketlink.aliases import CRYPTO_ENTITIES
from marketlink.config import TopicConfig
from marketlink.elections import UNKNOWN, offices_compatible, race_signals
from marketlink.markets import (
    crypto_entity,
    date_types_compatible,
    extract_settle,
    intraday_direction,
    is_intraday,
    settle_day_diff,
    time_bucket,
)
from marketlink.models import (
    DateMention,
    Fingerprint,
    Gate,
    Intent,
    PeriodKind,
    Precision,
    ScoredMarket,
    ScoreResult,
    Tier,
)
from marketlink.periods import PERIOD_FACTORS, PERIOD_WEIGHT, period_compatibility, period_key

GENERAL_WEIGHTS = {"entity": 0.35, "date": 0.25, "number": 0.25, "fuzzy": 0.10, "jaccard": 0.05}
CRYPTO_WEIGHTS = {"entity": 0.45, "date": 0.35, "number": 0.15, "text": 0.05}
INTRADAY_WEIGHTS = {"entity": 0.6, "bucket": 0.3, "text": 0.1}
ELECTIONS_WEIGHTS = {"country": 0.20, "office": 0.20, "year": 0.15, "candidates": 0.25, "text": 0.20}


def jaccard(left: Iterable[str], right: Iterable[str]) -> float:
    a, b = set(left), set(right)
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def fuzzy_similarity(left: str, right: str) -> float:
    if not left or not right:
        return 0.0
    return Levenshtein.normalized_similarity(left, right)


def text_scores(left: Fingerprint, right: Fingerprint) -> Tuple[float, float]:
    fuzzy = fuzzy_similarity(" ".join(left.tokens), " ".join(right.tokens))
    return fuzzy, jaccard(left.tokens, right.tokens)


def text_similarity(left: Fingerprint, right: Fingerprint) -> float:
    fuzzy, jacc = text_scores(left, right)
    return (fuzzy + jacc) / 2


def entity_overlap(left: Iterable[str], right: Iterable[str]) -> float:
    a, b = set(left), set(right)
    shared = a & b
    if not shared:
        return 0.0
    bonus = 0.3 if len(shared) >= 2 else 0.1
    return min(1.0, len(shared) / len(a | b) + bonus)


def _as_date(mention: DateMention) -> date:
    return date(mention.year, mention.month, mention.day)


def _date_pair_score(left: DateMention, right: DateMention) -> float:
    if left.precision == Precision.DAY and right.precision == Precision.DAY:
        days = abs((_as_date(left) - _as_date(right)).days)
        if days == 0:
            return 1.0
        if days <= 1:
            return 0.95
        if days <= 7:
            return 0.8
        if days <= 30:
            return 0.5
        if days <= 90:
            return 0.2
        return 0.0
    if left.month is not None and right.month is not None:
        months = abs((left.year * 12 + left.month) - (right.year * 12 + right.month))
        if months == 0:
            return 0.9
        if months == 1:
            return 0.7
        if months <= 3:
            return 0.3
        return 0.0
    if left.year == right.year:
        return 0.7
    return 0.0


def date_compatibility(left: Sequence[DateMention], right: Sequence[DateMention]) -> float:
    if not left and not right:
        return 0.5
    if not left or not right:
        return 0.3
    return max(_date_pair_score(a, b) for a in left for b in right)


def _number_pair_score(left: float, right: float) -> float:
    if left == right:
        return 1.0
    scale = max(abs(left), abs(right))
    if scale == 0:
        return 1.0
    gap = abs(left - right) / scale
    if gap < 0.01:
        return 0.95
    if gap < 0.05:
        return 0.8
    if gap < 0.10:
        return 0.5
    return 0.0


def number_compatibility(left: Sequence[float], right: Sequence[float]) -> float:
    if not left and not right:
        return 0.5
    if not left or not right:
        return 0.3
    return max(_number_pair_score(a, b) for a in left for b in right)


def crypto_number_score(left: Sequence[float], right: Sequence[float]) -> float:
    """Range overlap first, then the relative gap between the nearest ends."""
    if not left and not right:
        return 0.5
    if not left or not right:
        return 0.3
    left_lo, left_hi = min(left), max(left)
    right_lo, right_hi = min(right), max(right)
    if left_lo <= right_hi and right_lo <= left_hi:
        return 1.0
    gap = right_lo - left_hi if left_hi < right_lo else left_lo - right_hi
    scale = max(abs(left_hi), abs(right_hi), abs(left_lo), abs(right_lo))
    ratio = gap / scale if scale else 1.0
    if ratio < 0.01:
        return 0.9
    if ratio < 0.05:
        return 0.7
    if ratio < 0.10:
        return 0.4
    return 0.0


def nearest_threshold(left: Sequence[float], right: Sequence[float]) -> Optional[float]:
    if not right:
        return None
    if not left:
        return right[0]
    return min(right, key=lambda value: (min(abs(value - other) for other in left), value))


def _date_bucket(dates: Sequence[DateMention]) -> str:
    for mention in dates:
        if mention.day is not None:
            return f"{mention.year}-{mention.month:02d}-{mention.day:02d}"
        if mention.month is not None:
            return f"{mention.year}-{mention.month:02d}"
        return f"{mention.year}"
    return ""


def _day_gap(left: Sequence[DateMention], right: Sequence[DateMention]) -> Optional[int]:
    left_days = [_as_date(d) for d in left if d.precision == Precision.DAY]
    right_days = [_as_date(d) for d in right if d.precision == Precision.DAY]
    if not left_days or not right_days:
        return None
    return min(abs((a - b).days) for a in left_days for b in right_days)


def _title_years(dates: Sequence[DateMention]) -> Set[int]:
    return {mention.year for mention in dates if mention.raw != "close_time"}


class Scorer:
    name = "base"

    def __init__(self, topic: TopicConfig) -> None:
        self.topic = topic

    def score(self, left: ScoredMarket, right: ScoredMarket) -> ScoreResult:
        raise NotImplementedError

    @staticmethod
    def gate(gate: str, detail: str, **extra) -> ScoreResult:
        return ScoreResult(score=0.0, reason=f"GATE {gate}: {detail}", gate_failed=gate, **extra)


class GeneralScorer(Scorer):
    name = "general"

    def score(self, left: ScoredMarket, right: ScoredMarket) -> ScoreResult:
        lf, rf = left.fingerprint, right.fingerprint
        shared = sorted(set(lf.entities) & set(rf.entities))
        entity = shared[0] if shared else ""
        bucket = _date_bucket(rf.dates)

        crypto_shared = [e for e in shared if e in CRYPTO_ENTITIES]
        if crypto_shared and is_intraday(left.market) != is_intraday(right.market):
            return self.gate(
                Gate.TYPE,
                f"intraday/daily mismatch for {crypto_shared[0]}",
                entity=entity,
                bucket=bucket,
            )

        price_pair = Intent.PRICE_DATE in (lf.intent, rf.intent)
        if price_pair:
            gap = _day_gap(lf.dates, rf.dates)
            if gap is not None and gap > self.topic.date_gate_days:
                return self.gate(
                    Gate.DATE,
                    f"day gap {gap}d > {self.topic.date_gate_days}d",
                    entity=entity,
                    bucket=bucket,
                )

        left_years, right_years = _title_years(lf.dates), _title_years(rf.dates)
        if (
            left_years
            and right_years
            and not left_years & right_years
            and date_compatibility(lf.dates, rf.dates) == 0.0
        ):
            return self.gate(
                Gate.DATE,
                f"year {','.join(map(str, sorted(left_years)))}"
                f"/{','.join(map(str, sorted(right_years)))}",
                entity=entity,
                bucket=bucket,
            )

        fuzzy, jacc = text_scores(lf, rf)
        sim = (fuzzy + jacc) / 2
        if price_pair:
            min_sim, min_jacc = self.topic.price_text_min_sim, self.topic.price_text_min_jaccard
        else:
            min_sim, min_jacc = self.topic.text_min_sim, self.topic.text_min_jaccard
        if sim < min_sim or jacc < min_jacc:
            return self.gate(
                Gate.TEXT,
                f"sim={sim:.2f} jacc={jacc:.2f} (min {min_sim:.2f}/{min_jacc:.2f})",
                entity=entity,
                bucket=bucket,
            )

        components = {
            "entity": entity_overlap(lf.entities, rf.entities),
            "date": date_compatibility(lf.dates, rf.dates),
            "number": number_compatibility(lf.numbers, rf.numbers),
            "fuzzy": fuzzy,
            "jaccard": jacc,
        }
        total = sum(GENERAL_WEIGHTS[key] * value for key, value in components.items())
        reason = (
            f"entity={components['entity']:.2f} date={components['date']:.2f} "
            f"num={components['number']:.2f} fuzzy={fuzzy:.2f} jacc={jacc:.2f} "
            f"[{','.join(shared)}]"
        )
        return ScoreResult(
            score=round(min(1.0, total), 4),
            reason=reason,
            entity=entity,
            bucket=bucket,
            comparator=rf.comparator,
            threshold=nearest_threshold(lf.numbers, rf.numbers),
            components=components,
        )


class MacroScorer(Scorer):
    name = "macro"

    def score(self, left: ScoredMarket, right: ScoredMarket) -> ScoreResult:
        lf, rf = left.fingerprint, right.fingerprint
        shared = sorted(set(lf.macro_entities) & set(rf.macro_entities))
        if not lf.macro_entities or not rf.macro_entities or not shared:
            return self.gate(
                Gate.TYPE,
                f"macro entities {','.join(lf.macro_entities) or '-'}"
                f"/{','.join(rf.macro_entities) or '-'}",
            )
        entity = shared[0]
        if lf.period is None or rf.period is None:
            return self.gate(Gate.PERIOD, "missing period", entity=entity)

        left_key, right_key = period_key(lf.period), period_key(rf.period)
        kind = period_compatibility(lf.period, rf.period)
        if kind == PeriodKind.NONE:
            return self.gate(
                Gate.PERIOD,
                f"incompatible {left_key}/{right_key}",
                entity=entity,
                bucket=right_key,
                period_kind=kind,
            )

        me = 0.5
        per = PERIOD_WEIGHT * PERIOD_FACTORS[kind]
        num = number_compatibility(lf.numbers, rf.numbers)
        fuzzy, jacc = text_scores(lf, rf)
        txt = (fuzzy + jacc) / 2
        tier = Tier.STRONG if kind in PeriodKind.STRONG else Tier.WEAK
        total = me + per + 0.1 * num + 0.1 * txt
        reason = (
            f"MACRO: tier={tier} me={me:.2f} per={per:.2f}[{kind}]({left_key}/{right_key}) "
            f"num={num:.2f} txt={txt:.2f}"
        )
        return ScoreResult(
            score=round(min(1.0, total), 4),
            reason=reason,
            tier=tier,
            period_kind=kind,
            entity=entity,
            bucket=right_key,
            comparator=rf.comparator,
            threshold=nearest_threshold(lf.numbers, rf.numbers),
            components={"entity": me, "period": per, "number": num, "text": txt},
        )


class CryptoScorer(Scorer):
    name = "crypto"

    def score(self, left: ScoredMarket, right: ScoredMarket) -> ScoreResult:
        lf, rf = left.fingerprint, right.fingerprint
        left_entity, right_entity = crypto_entity(left), crypto_entity(right)
        if left_entity is None or left_entity != right_entity:
            return self.gate(Gate.TYPE, f"entity {left_entity or '-'}/{right_entity or '-'}")
        if is_intraday(left.market) or is_intraday(right.market):
            return self.gate(Gate.TYPE, "intraday market in daily run", entity=left_entity)

        left_settle, right_settle = extract_settle(left), extract_settle(right)
        bucket = right_settle.settle_date.isoformat() if right_settle.settle_date else ""
        if not date_types_compatible(left_settle, right_settle):
            return self.gate(
                Gate.DATE,
                f"dateType {left_settle.date_type}/{right_settle.date_type}",
                entity=left_entity,
                bucket=bucket,
            )
        days = settle_day_diff(left_settle, right_settle)
        if days is None or days > 1:
            return self.gate(Gate.DATE, f"settle gap {days}d", entity=left_entity, bucket=bucket)

        txt = text_similarity(lf, rf)
        if txt < self.topic.crypto_text_min:
            return self.gate(Gate.TEXT, f"text={txt:.2f}", entity=left_entity, bucket=bucket)

        date_score = 1.0 if days == 0 else 0.6
        num = crypto_number_score(lf.numbers, rf.numbers)
        total = (
            CRYPTO_WEIGHTS["entity"]
            + CRYPTO_WEIGHTS["date"] * date_score
            + CRYPTO_WEIGHTS["number"] * num
            + CRYPTO_WEIGHTS["text"] * txt
        )
        tier = Tier.STRONG if days == 0 and num >= 0.6 else Tier.WEAK
        number_kind = "price" if lf.numbers and rf.numbers else "none"
        reason = (
            f"entity={left_entity} dateType={left_settle.date_type} "
            f"date={date_score:.2f}({days}d) num={num:.2f}[{number_kind}] text={txt:.2f} "
            f"tier={tier} cmp={lf.comparator or '-'}/{rf.comparator or '-'}"
        )
        return ScoreResult(
            score=round(min(1.0, total), 4),
            reason=reason,
            tier=tier,
            entity=left_entity,
            bucket=bucket,
            settle_key=bucket,
            comparator=rf.comparator,
            threshold=nearest_threshold(lf.numbers, rf.numbers),
            components={"entity": 1.0, "date": date_score, "number": num, "text": txt},
        )


class IntradayScorer(Scorer):
    name = "intraday"

    def score(self, left: ScoredMarket, right: ScoredMarket) -> ScoreResult:
        left_entity, right_entity = crypto_entity(left), crypto_entity(right)
        if left_entity is None or left_entity != right_entity:
            return self.gate(Gate.TYPE, f"entity {left_entity or '-'}/{right_entity or '-'}")
        if not is_intraday(left.market) or not is_intraday(right.market):
            return self.gate(Gate.TYPE, "daily market in intraday run", entity=left_entity)

        slot = self.topic.slot_minutes
        left_bucket = time_bucket(left.market, slot)
        right_bucket = time_bucket(right.market, slot)
        if left_bucket is None or left_bucket != right_bucket:
            return self.gate(
                Gate.DATE,
                f"bucket {left_bucket or '-'}/{right_bucket or '-'}",
                entity=left_entity,
                bucket=right_bucket or "",
            )

        txt = text_similarity(left.fingerprint, right.fingerprint)
        left_dir = intraday_direction(left.market.title)
        right_dir = intraday_direction(right.market.title)
        tier = Tier.WEAK if left_dir and right_dir and left_dir != right_dir else Tier.STRONG
        total = INTRADAY_WEIGHTS["entity"] + INTRADAY_WEIGHTS["bucket"] + INTRADAY_WEIGHTS["text"] * txt
        reason = (
            f"entity={left_entity} bucket={left_bucket} dir={left_dir or '-'}/{right_dir or '-'} "
            f"text={txt:.2f} tier={tier}"
        )
        return ScoreResult(
            score=round(min(1.0, total), 4),
            reason=reason,
            tier=tier,
            entity=left_entity,
            bucket=right_bucket,
            settle_key=right_bucket,
            comparator=right.fingerprint.comparator,
            components={"entity": 1.0, "bucket": 1.0, "text": txt},
        )


class ElectionsScorer(Scorer):
    """Race-key gates (country, office, year, state), then candidate and text overlap."""

    name = "elections"

    def score(self, left: ScoredMarket, right: ScoredMarket) -> ScoreResult:
        ls, rs = race_signals(left), race_signals(right)
        bucket = rs.race_key
        if UNKNOWN not in (ls.country, rs.country) and ls.country != rs.country:
            return self.gate(Gate.TYPE, f"country {ls.country}/{rs.country}", bucket=bucket)
        if not offices_compatible(ls.office, rs.office):
            return self.gate(Gate.TYPE, f"office {ls.office}/{rs.office}", bucket=bucket)
        if ls.year is not None and rs.year is not None and ls.year != rs.year:
            return self.gate(Gate.DATE, f"year {ls.year}/{rs.year}", bucket=bucket)
        if ls.state and rs.state and ls.state != rs.state:
            return self.gate(Gate.TYPE, f"state {ls.state}/{rs.state}", bucket=bucket)

        country = 1.0
        if UNKNOWN in (ls.office, rs.office):
            office = 0.5
        elif ls.office == rs.office:
            office = 1.0
        else:
            office = 0.7
        year = 1.0 if ls.year is not None and rs.year is not None else 0.5
        shared = sorted(set(ls.candidates) & set(rs.candidates))
        if not ls.candidates and not rs.candidates:
            candidates = 0.5
        elif not ls.candidates or not rs.candidates:
            candidates = 0.3
        else:
            candidates = jaccard(ls.candidates, rs.candidates)
        txt = jaccard(left.fingerprint.tokens, right.fingerprint.tokens)

        components = {
            "country": country,
            "office": office,
            "year": year,
            "candidates": candidates,
            "text": txt,
        }
        total = sum(ELECTIONS_WEIGHTS[key] * value for key, value in components.items())
        if ls.state and rs.state:
            total += 0.05
        tier = Tier.STRONG if office >= 0.7 and shared else Tier.WEAK
        reason = (
            f"race={ls.race_key}/{rs.race_key} office={office:.2f} year={year:.2f} "
            f"cand={candidates:.2f}({len(shared)}) text={txt:.2f} tier={tier}"
        )
        return ScoreResult(
            score=round(min(1.0, total), 4),
            reason=reason,
            tier=tier,
            entity=shared[0] if shared else ls.office,
            bucket=bucket,
            comparator=right.fingerprint.comparator,
            components=components,
        )


SCORERS: Dict[str, type] = {
    GeneralScorer.name: GeneralScorer,
    MacroScorer.name: MacroScorer,
    CryptoScorer.name: CryptoScorer,
    IntradayScorer.name: IntradayScorer,
    ElectionsScorer.name: ElectionsScorer,
}


def build_scorer(topic: TopicConfig) -> Scorer:
    scorer_cls = SCORERS.get(topic.scorer)
    if scorer_cls is None:
        raise ValueError(f"Unknown scorer: {topic.scorer}")
    return scorer_cls(topic)


def score_all(
    scorer: Scorer, left: ScoredMarket, candidates: List[ScoredMarket]
) -> List[Tuple[ScoredMarket, ScoreResult]]:
    return [(right, scorer.score(left, right)) for right in candidates]
