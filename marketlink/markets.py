from __future__ import annotations

import calendar
import json
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from marketlink.aliases import CRYPTO_ENTITIES
from marketlink.config import TopicConfig
from marketlink.elections import race_signals
from marketlink.models import DateType, EligibleMarket, Precision, ScoredMarket

SPORTS_TICKER_PREFIXES = (
    "KXMVESPORT",
    "KXMVENBASI",
    "KXNCAAMBGA",
    "KXTABLETEN",
    "KXNBAREB",
    "KXNFL",
)
_SPORTS_TITLE_RE = re.compile(
    r"\b(?:vs\.?|versus|points|rebounds|assists|touchdowns?|goals scored|"
    r"moneyline|spread|over/under|parlay|match winner|map \d)\b"
)
_INTRADAY_TICKER_RE = re.compile(r"UPDOWN|INTRADAY|15MIN|30MIN|1HR|HOURLY")
_DAILY_TICKER_RE = re.compile(r"^KX(?:BTC|ETH|SOL|XRP|DOGE)[DP]-|\d{2}[A-Z]{3}\d{2}")
# A lone clock time ("at 5:00 PM ET") is a daily settle, only a range is a window.
_INTRADAY_TITLE_RE = re.compile(
    r"next \d+ ?min|next hour|\bminutes?\b|\bhourly\b|\bintraday\b|up or down"
    r"|\b\d{1,2}(?::\d{2})?\s?(?:am|pm)?\s?[-\u2013]\s?\d{1,2}:\d{2}"
)
_UP_RE = re.compile(r"\b(?:up|higher|rise|rises|above)\b")
_DOWN_RE = re.compile(r"\b(?:down|lower|fall|falls|below)\b")
_TICKER_KEYS = ("ticker", "eventTicker", "event_ticker", "seriesTicker", "series_ticker")


@dataclass(frozen=True)
class SettleInfo:
    date_type: str
    settle_date: Optional[date]


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(float(value), tz=timezone.utc)
    else:
        raw = str(value).strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError as exc:
            raise ValueError(f"Invalid timestamp: {value}") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_market(venue: str, data: Dict[str, Any]) -> EligibleMarket:
    market_id = data.get("market_id") or data.get("id") or data.get("ticker")
    if not market_id:
        raise ValueError(f"Market entry missing id: {json.dumps(data, sort_keys=True)}")
    title = data.get("title") or data.get("question")
    if not title:
        raise ValueError(f"Market {market_id} missing title")
    metadata = data.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValueError(f"Market {market_id} metadata must be an object")
    return EligibleMarket(
        market_id=str(market_id),
        venue=venue,
        title=str(title),
        category=str(data.get("category") or ""),
        close_time=parse_timestamp(data.get("close_time") or data.get("closeTime")),
        metadata={str(k): str(v) for k, v in metadata.items()},
    )


def _tickers(market: EligibleMarket) -> List[str]:
    values = [market.metadata.get(key, "") for key in _TICKER_KEYS]
    if market.venue == "kalshi":
        values.append(market.market_id)
    return [value.upper() for value in values if value]


def is_sports_market(market: EligibleMarket) -> bool:
    for ticker in _tickers(market):
        if ticker.startswith(SPORTS_TICKER_PREFIXES):
            return True
    if market.category.lower() == "sports":
        return True
    return bool(_SPORTS_TITLE_RE.search(market.title.lower()))


def is_intraday(market: EligibleMarket) -> bool:
    tickers = _tickers(market)
    if any(_INTRADAY_TICKER_RE.search(ticker) for ticker in tickers):
        return True
    if any(_DAILY_TICKER_RE.search(ticker) for ticker in tickers):
        return False
    return bool(_INTRADAY_TITLE_RE.search(market.title.lower()))


def crypto_entity(item: ScoredMarket) -> Optional[str]:
    for entity in item.fingerprint.entities:
        if entity in CRYPTO_ENTITIES:
            return entity
    return None


def intraday_direction(title: str) -> Optional[str]:
    lowered = title.lower()
    up = bool(_UP_RE.search(lowered))
    down = bool(_DOWN_RE.search(lowered))
    if up == down:
        return None
    return "UP" if up else "DOWN"


def _month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def extract_settle(item: ScoredMarket) -> SettleInfo:
    dates = [d for d in item.fingerprint.dates if d.raw != "close_time"]
    for mention in dates:
        if mention.precision == Precision.DAY:
            return SettleInfo(DateType.DAY_EXACT, date(mention.year, mention.month, mention.day))
    for mention in dates:
        if mention.precision == Precision.MONTH:
            return SettleInfo(DateType.MONTH_END, _month_end(mention.year, mention.month))
        if mention.precision == Precision.QUARTER:
            return SettleInfo(DateType.QUARTER, _month_end(mention.year, mention.month))
    close_time = item.market.close_time
    if close_time is not None:
        return SettleInfo(DateType.CLOSE_TIME, close_time.astimezone(timezone.utc).date())
    return SettleInfo(DateType.UNKNOWN, None)


def date_types_compatible(left: SettleInfo, right: SettleInfo) -> bool:
    day_types = (DateType.DAY_EXACT, DateType.CLOSE_TIME)
    if left.settle_date is None or right.settle_date is None:
        return False
    if left.date_type in day_types and right.date_type in day_types:
        return True
    if left.date_type in (DateType.MONTH_END, DateType.QUARTER):
        return left.date_type == right.date_type and left.settle_date == right.settle_date
    return False


def settle_day_diff(left: SettleInfo, right: SettleInfo) -> Optional[int]:
    if left.settle_date is None or right.settle_date is None:
        return None
    return abs((left.settle_date - right.settle_date).days)


def time_bucket(market: EligibleMarket, slot_minutes: int) -> Optional[str]:
    if market.close_time is None or slot_minutes <= 0:
        return None
    close = market.close_time.astimezone(timezone.utc)
    minutes = close.hour * 60 + close.minute
    floored = minutes - minutes % slot_minutes
    bucket = datetime(close.year, close.month, close.day, tzinfo=timezone.utc) + timedelta(
        minutes=floored
    )
    return bucket.strftime("%Y-%m-%dT%H:%M")


def filter_markets(
    items: Iterable[ScoredMarket], topic: TopicConfig, now: datetime
) -> Tuple[List[ScoredMarket], Dict[str, int]]:
    """Keep the markets a topic run can match, counting why others were dropped."""
    kept: List[ScoredMarket] = []
    skipped: Dict[str, int] = {}

    def skip(reason: str) -> None:
        skipped[reason] = skipped.get(reason, 0) + 1

    for item in items:
        market = item.market
        if topic.exclude_sports and is_sports_market(market):
            skip("sports")
            continue
        if topic.scorer in ("crypto", "intraday"):
            if crypto_entity(item) is None:
                skip("not_crypto")
                continue
            if is_intraday(market) != (topic.scorer == "intraday"):
                skip("wrong_market_type")
                continue
        elif topic.scorer == "macro":
            fp = item.fingerprint
            if not fp.macro_entities or fp.period is None:
                skip("no_macro_period")
                continue
            if abs(fp.period.year - now.year) > topic.macro_year_window:
                skip("outside_year_window")
                continue
        elif topic.scorer == "elections" and not race_signals(item).known:
            skip("not_election")
            continue
        kept.append(item)
    return kept, skipped
