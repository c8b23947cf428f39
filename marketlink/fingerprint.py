from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from marketlink.aliases import (
    CRYPTO_TICKER_PREFIXES,
    DEFAULT_TABLES,
    ELECTION_ENTITIES,
    POLITICIAN_ENTITIES,
    STOP_WORDS,
    EntityTables,
)
from marketlink.models import (
    DateMention,
    EligibleMarket,
    Fingerprint,
    Intent,
    Period,
    Precision,
    ScoredMarket,
)

MONTHS: Dict[str, int] = {
    "january": 1,
    "february": 2,
    "march": 3,
    "april": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12,
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "sept": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

_MONTH_ALT = "|".join(sorted(MONTHS, key=len, reverse=True))
_WORD_RE = re.compile(r"[a-z0-9]+")

_NUMBER_RE = re.compile(
    r"(?P<cur>\$\s?)?(?<![\w.,:])"
    r"(?P<num>\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)(?![\d:])"
    r"(?:(?P<suffix>[kmbt])(?![a-z])|\s?(?P<word>thousand|million|billion|trillion)\b)?"
    r"(?P<pct>\s?%|\s?percent\b)?",
    re.IGNORECASE,
)
_MULTIPLIERS = {
    "k": 1_000,
    "thousand": 1_000,
    "m": 1_000_000,
    "million": 1_000_000,
    "b": 1_000_000_000,
    "billion": 1_000_000_000,
    "t": 1_000_000_000_000,
    "trillion": 1_000_000_000_000,
}

_ISO_RE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
_MONTH_DAY_YEAR_RE = re.compile(
    rf"\b({_MONTH_ALT})\.?\s+(\d{{1,2}})(?:st|nd|rd|th)?,?\s+(\d{{4}})\b"
)
_QUARTER_RE = re.compile(r"\bq([1-4])\s*(?:of\s+)?(\d{4})\b")
_END_OF_YEAR_RE = re.compile(r"\bend\s+of\s+(\d{4})\b")
_MONTH_YEAR_RE = re.compile(rf"\b({_MONTH_ALT})\.?,?\s+(\d{{4}})\b")
_MONTH_DAY_RE = re.compile(rf"\b({_MONTH_ALT})\.?\s+(\d{{1,2}})(?:st|nd|rd|th)?\b")
_YEAR_AFTER_RE = re.compile(r"\b(?:by|in|before|until|during|after)\s+(\d{4})\b")
# Bare "2028" when nothing else dates the title. A year after ", " belongs to a
# date that failed to parse.
_STANDALONE_YEAR_RE = re.compile(r"(?<![\w$.,/-])(?<!,\s)(20\d{2})(?![\w%]|[.,/-]\d)")
_BARE_MONTH_RE = re.compile(
    r"\b(january|february|march|april|june|july|august|september|october|november|december)\b"
)

_BETWEEN_RE = re.compile(
    r"\bbetween\b|\bfrom\s+\$?\d[\d.,]*[kmbt]?\s+to\s+\$?\d|"
    r"(?<![\d-])\$?\d[\d.,]*[kmbt]?\s?-\s?\$?\d[\d.,]*[kmbt]?(?![\d-])"
)
_GE_RE = re.compile(
    r"\b(?:above|over|exceeds?|exceeding|more than|greater than|at least|reach(?:es)?|"
    r"hits?|higher than|or more|or higher|or above)\b|>=|>|≥"
)
_LE_RE = re.compile(
    r"\b(?:below|under|less than|fewer than|at most|lower than|or less|or lower|or below|"
    r"drops? to|falls? to)\b|<=|<|≤"
)
_EQ_RE = re.compile(r"\bexactly\b|(?<![<>])=")
_WIN_RE = re.compile(r"\b(?:win|wins|winner|won)\b")


def words(text: Optional[str]) -> List[str]:
    return _WORD_RE.findall((text or "").lower())


def tokenize(text: Optional[str], tables: EntityTables = DEFAULT_TABLES) -> List[str]:
    """Title tokens for similarity: stop words dropped, aliases canonicalized."""
    tokens: List[str] = []
    for word in words(text):
        if len(word) < 2 or word in STOP_WORDS:
            continue
        alias = tables.aliases.get(word)
        tokens.append(alias.lower() if alias else word)
    return tokens


def extract_entities(
    text: Optional[str],
    metadata: Optional[Dict[str, str]] = None,
    tables: EntityTables = DEFAULT_TABLES,
) -> Tuple[str, ...]:
    sequence = words(text)
    used = [False] * len(sequence)
    found = set()
    # Longest phrases first so "fed funds rate" wins over "fed funds".
    for size in range(tables.max_words, 0, -1):
        for start in range(0, len(sequence) - size + 1):
            if any(used[start : start + size]):
                continue
            tag = tables.aliases.get(" ".join(sequence[start : start + size]))
            if tag is None:
                continue
            found.add(tag)
            for idx in range(start, start + size):
                used[idx] = True
    found.update(_ticker_entities(metadata))
    return tuple(sorted(found))


def _ticker_entities(metadata: Optional[Dict[str, str]]) -> List[str]:
    if not metadata:
        return []
    tags = []
    for key in ("eventTicker", "event_ticker", "seriesTicker", "series_ticker", "ticker"):
        value = metadata.get(key)
        if not value:
            continue
        upper = str(value).upper()
        for prefix, tag in CRYPTO_TICKER_PREFIXES.items():
            if upper.startswith(prefix):
                tags.append(tag)
    return tags


def extract_numbers(text: Optional[str]) -> Tuple[float, ...]:
    values = set()
    for match in _NUMBER_RE.finditer(text or ""):
        raw = match.group("num")
        try:
            value = float(raw.replace(",", ""))
        except ValueError:
            continue
        suffix = (match.group("suffix") or match.group("word") or "").lower()
        marked = bool(match.group("cur") or suffix or match.group("pct"))
        if not marked and value.is_integer():
            if 1900 <= value <= 2100:
                continue
            if 1 <= value <= 31:
                continue
        if suffix:
            value *= _MULTIPLIERS[suffix]
        values.add(value)
    return tuple(sorted(values))


def _valid_day(year: int, month: int, day: int) -> bool:
    if not 1900 <= year <= 2100:
        return False
    try:
        date(year, month, day)
    except ValueError:
        return False
    return True


def extract_dates(
    text: Optional[str], close_time: Optional[datetime] = None
) -> Tuple[DateMention, ...]:
    lowered = (text or "").lower()
    spans: List[Tuple[int, int]] = []
    found: List[Tuple[int, DateMention]] = []

    def free(match: re.Match) -> bool:
        start, end = match.span()
        return all(end <= s or start >= e for s, e in spans)

    def claim(match: re.Match, mention: DateMention) -> None:
        spans.append(match.span())
        found.append((match.start(), mention))

    for match in _ISO_RE.finditer(lowered):
        year, month, day = (int(part) for part in match.groups())
        if free(match) and _valid_day(year, month, day):
            claim(match, DateMention(match.group(0), year, month, day, Precision.DAY))

    for match in _MONTH_DAY_YEAR_RE.finditer(lowered):
        month = MONTHS[match.group(1)]
        day, year = int(match.group(2)), int(match.group(3))
        if free(match) and _valid_day(year, month, day):
            claim(match, DateMention(match.group(0), year, month, day, Precision.DAY))

    for match in _QUARTER_RE.finditer(lowered):
        quarter, year = int(match.group(1)), int(match.group(2))
        if free(match) and 1900 <= year <= 2100:
            # Quarter mentions carry the quarter's last month.
            claim(match, DateMention(match.group(0), year, quarter * 3, None, Precision.QUARTER))

    for match in _END_OF_YEAR_RE.finditer(lowered):
        year = int(match.group(1))
        if free(match) and 1900 <= year <= 2100:
            claim(match, DateMention(match.group(0), year, None, None, Precision.YEAR))

    for match in _MONTH_YEAR_RE.finditer(lowered):
        month, year = MONTHS[match.group(1)], int(match.group(2))
        if free(match) and 1900 <= year <= 2100:
            claim(match, DateMention(match.group(0), year, month, None, Precision.MONTH))

    if close_time is not None:
        for match in _MONTH_DAY_RE.finditer(lowered):
            month, day = MONTHS[match.group(1)], int(match.group(2))
            year = close_time.year
            if free(match) and _valid_day(year, month, day):
                claim(match, DateMention(match.group(0), year, month, day, Precision.DAY))

    for match in _YEAR_AFTER_RE.finditer(lowered):
        year = int(match.group(1))
        if free(match) and 1900 <= year <= 2100:
            claim(match, DateMention(match.group(0), year, None, None, Precision.YEAR))

    if not found:
        for match in _STANDALONE_YEAR_RE.finditer(lowered):
            claim(match, DateMention(match.group(1), int(match.group(1)), None, None, Precision.YEAR))

    mentions = tuple(mention for _, mention in sorted(found, key=lambda item: item[0]))
    if not mentions and close_time is not None:
        mentions = (DateMention("close_time", close_time.year, None, None, Precision.YEAR),)
    return mentions


def extract_period(
    text: Optional[str],
    dates: Iterable[DateMention],
    close_time: Optional[datetime] = None,
) -> Optional[Period]:
    for mention in dates:
        if mention.raw == "close_time":
            continue
        if mention.precision == Precision.QUARTER:
            return Period("quarter", mention.year, quarter=(mention.month or 3) // 3)
        if mention.precision in (Precision.MONTH, Precision.DAY):
            return Period("month", mention.year, month=mention.month)
        if mention.precision == Precision.YEAR:
            return Period("year", mention.year)

    # "January CPI" style titles take the year from the close time.
    if close_time is not None:
        match = _BARE_MONTH_RE.search((text or "").lower())
        if match:
            return Period("month", close_time.year, month=MONTHS[match.group(1)])
    return None


def extract_comparator(text: Optional[str]) -> Optional[str]:
    lowered = (text or "").lower()
    if _BETWEEN_RE.search(lowered):
        return "BETWEEN"
    if _GE_RE.search(lowered):
        return "GE"
    if _LE_RE.search(lowered):
        return "LE"
    if _EQ_RE.search(lowered):
        return "EQ"
    if _WIN_RE.search(lowered):
        return "WIN"
    return None


def classify_intent(
    entities: Iterable[str],
    macro_entities: Iterable[str],
    numbers: Iterable[float],
    dates: Iterable[DateMention],
    period: Optional[Period],
) -> str:
    entities = tuple(entities)
    numbers = tuple(numbers)
    dates = tuple(dates)
    if tuple(macro_entities) and period is not None:
        return Intent.MACRO_PERIOD
    if entities and numbers and any(d.precision == Precision.DAY for d in dates):
        return Intent.PRICE_DATE
    if any(e in POLITICIAN_ENTITIES or e in ELECTION_ENTITIES for e in entities):
        return Intent.ELECTION
    if numbers and dates:
        return Intent.METRIC_DATE
    return Intent.GENERAL


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def extract_fingerprint(
    title: Optional[str],
    close_time: Optional[datetime] = None,
    metadata: Optional[Dict[str, str]] = None,
    tables: EntityTables = DEFAULT_TABLES,
) -> Fingerprint:
    text = title if isinstance(title, str) else ""
    close_time = _as_utc(close_time)
    entities = extract_entities(text, metadata, tables)
    macro_entities = tuple(e for e in entities if e in tables.macro_entities)
    numbers = extract_numbers(text)
    dates = extract_dates(text, close_time)
    period = extract_period(text, dates, close_time)
    intent = classify_intent(entities, macro_entities, numbers, dates, period)
    return Fingerprint(
        title=text.strip(),
        entities=entities,
        macro_entities=macro_entities,
        numbers=numbers,
        dates=dates,
        period=period,
        intent=intent,
        comparator=extract_comparator(text),
        tokens=tuple(tokenize(text, tables)),
    )


def fingerprint_market(
    market: EligibleMarket, tables: EntityTables = DEFAULT_TABLES
) -> ScoredMarket:
    return ScoredMarket(
        market=market,
        fingerprint=extract_fingerprint(market.title, market.close_time, market.metadata, tables),
    )
