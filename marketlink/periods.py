import re
from typing import List, Optional

from marketlink.models import Period, PeriodKind

PERIOD_FACTORS = {
    PeriodKind.EXACT: 1.0,
    PeriodKind.MONTH_IN_QUARTER: 0.6,
    PeriodKind.QUARTER_IN_YEAR: 0.55,
    PeriodKind.MONTH_IN_YEAR: 0.45,
    PeriodKind.NONE: 0.0,
}
PERIOD_WEIGHT = 0.4

_MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")
_QUARTER_KEY_RE = re.compile(r"^(\d{4})-Q([1-4])$")
_YEAR_KEY_RE = re.compile(r"^(\d{4})$")


def period_key(period: Period) -> str:
    if period.type == "month":
        return f"{period.year}-{period.month:02d}"
    if period.type == "quarter":
        return f"{period.year}-Q{period.quarter}"
    return f"{period.year}"


def parse_period_key(key: str) -> Optional[Period]:
    match = _MONTH_KEY_RE.match(key)
    if match and 1 <= int(match.group(2)) <= 12:
        return Period("month", int(match.group(1)), month=int(match.group(2)))
    match = _QUARTER_KEY_RE.match(key)
    if match:
        return Period("quarter", int(match.group(1)), quarter=int(match.group(2)))
    match = _YEAR_KEY_RE.match(key)
    if match:
        return Period("year", int(match.group(1)))
    return None


def quarter_of(month: int) -> int:
    return (month - 1) // 3 + 1


def compatible_period_keys(period: Period) -> List[str]:
    """Every index key a query period may match, its own key first."""
    year = period.year
    if period.type == "month":
        return [
            period_key(period),
            f"{year}-Q{quarter_of(period.month)}",
            f"{year}",
        ]
    if period.type == "quarter":
        first = (period.quarter - 1) * 3 + 1
        return [period_key(period), f"{year}"] + [
            f"{year}-{month:02d}" for month in range(first, first + 3)
        ]
    return (
        [f"{year}"]
        + [f"{year}-{month:02d}" for month in range(1, 13)]
        + [f"{year}-Q{quarter}" for quarter in range(1, 5)]
    )


def period_compatibility(left: Optional[Period], right: Optional[Period]) -> str:
    if left is None or right is None or left.year != right.year:
        return PeriodKind.NONE
    if left.type == right.type:
        if period_key(left) == period_key(right):
            return PeriodKind.EXACT
        return PeriodKind.NONE

    kinds = {left.type: left, right.type: right}
    month = kinds.get("month")
    quarter = kinds.get("quarter")
    if month is not None and quarter is not None:
        if quarter_of(month.month) == quarter.quarter:
            return PeriodKind.MONTH_IN_QUARTER
        return PeriodKind.NONE
    if quarter is not None and "year" in kinds:
        return PeriodKind.QUARTER_IN_YEAR
    if month is not None and "year" in kinds:
        return PeriodKind.MONTH_IN_YEAR
    return PeriodKind.NONE


def period_score(left: Optional[Period], right: Optional[Period]) -> float:
    return PERIOD_WEIGHT * PERIOD_FACTORS[period_compatibility(left, right)]
