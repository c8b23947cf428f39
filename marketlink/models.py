from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Tuple


class Intent:
    PRICE_DATE = "PRICE_DATE"
    ELECTION = "ELECTION"
    METRIC_DATE = "METRIC_DATE"
    MACRO_PERIOD = "MACRO_PERIOD"
    GENERAL = "GENERAL"


class Precision:
    DAY = "DAY"
    MONTH = "MONTH"
    QUARTER = "QUARTER"
    YEAR = "YEAR"


class Gate:
    NONE = "none"
    DATE = "date"
    TEXT = "text"
    PERIOD = "period"
    TYPE = "type"

    ALL = ("date", "text", "period", "type")


class PeriodKind:
    EXACT = "exact"
    MONTH_IN_QUARTER = "month_in_quarter"
    QUARTER_IN_YEAR = "quarter_in_year"
    MONTH_IN_YEAR = "month_in_year"
    NONE = "none"

    STRONG = ("exact", "month_in_quarter", "quarter_in_year")


class Tier:
    STRONG = "STRONG"
    WEAK = "WEAK"


class LinkStatus:
    SUGGESTED = "suggested"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"

    ALL = ("suggested", "confirmed", "rejected")


class DateType:
    DAY_EXACT = "DAY_EXACT"
    MONTH_END = "MONTH_END"
    QUARTER = "QUARTER"
    CLOSE_TIME = "CLOSE_TIME"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class EligibleMarket:
    market_id: str
    venue: str
    title: str
    category: str = ""
    close_time: Optional[datetime] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DateMention:
    raw: str
    year: int
    month: Optional[int]
    day: Optional[int]
    precision: str


@dataclass(frozen=True)
class Period:
    type: str
    year: int
    month: Optional[int] = None
    quarter: Optional[int] = None


@dataclass(frozen=True)
class Fingerprint:
    title: str
    entities: Tuple[str, ...]
    macro_entities: Tuple[str, ...]
    numbers: Tuple[float, ...]
    dates: Tuple[DateMention, ...]
    period: Optional[Period]
    intent: str
    comparator: Optional[str]
    tokens: Tuple[str, ...]


@dataclass(frozen=True)
class ScoredMarket:
    market: EligibleMarket
    fingerprint: Fingerprint

    @property
    def market_id(self) -> str:
        return self.market.market_id


@dataclass
class ScoreResult:
    score: float
    reason: str
    gate_failed: str = Gate.NONE
    tier: Optional[str] = None
    period_kind: Optional[str] = None
    # Cap bucket for the right side, e.g. "BITCOIN", "2025-12-31"
    entity: str = ""
    bucket: str = ""
    settle_key: str = ""
    comparator: Optional[str] = None
    threshold: Optional[float] = None
    components: Dict[str, float] = field(default_factory=dict)


@dataclass
class Candidate:
    left_id: str
    right_id: str
    result: ScoreResult

    @property
    def score(self) -> float:
        return self.result.score


@dataclass
class Link:
    id: int
    left_venue: str
    left_market_id: str
    right_venue: str
    right_market_id: str
    score: float
    reason: str
    status: str
    algo_version: str
    topic: str
    created_at: str
    updated_at: str
