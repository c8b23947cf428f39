"""Rule-based triage of stored suggestions.

Auto-confirm promotes links whose scoring trace passes every safe rule for
their topic. Auto-reject demotes old links that fail a floor check. Both
passes are dry-run unless ``apply`` is set and can explain each decision.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

from marketlink import storage
from marketlink.config import DEFAULT_TOPICS, ENGINE_VERSION, TopicConfig
from marketlink.fingerprint import fingerprint_market
from marketlink.markets import crypto_entity, extract_settle, is_intraday, settle_day_diff
from marketlink.models import Link, LinkStatus, PeriodKind, Tier
from marketlink.scoring import text_similarity

logger = logging.getLogger(__name__)

_FIELD_RE = re.compile(r"(\w+)=(\S+)")
_LEADING_FLOAT_RE = re.compile(r"^-?\d+(?:\.\d+)?")
_DAYS_RE = re.compile(r"\((\d+)d\)")
_KIND_RE = re.compile(r"\[(\w+)\]")


@dataclass
class RuleCheck:
    rule: str
    passed: bool
    detail: str


@dataclass
class PolicyReport:
    mode: str
    dry_run: bool
    scanned: int = 0
    eligible: int = 0
    applied: int = 0
    by_topic: Dict[str, int] = field(default_factory=dict)
    by_rule: Dict[str, int] = field(default_factory=dict)
    explain: List[Dict[str, Any]] = field(default_factory=list)

    def count_rule(self, key: str) -> None:
        self.by_rule[key] = self.by_rule.get(key, 0) + 1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_reason(reason: str) -> Dict[str, str]:
    return {key: value for key, value in _FIELD_RE.findall(reason or "")}


def _leading_float(raw: Optional[str]) -> Optional[float]:
    if not raw:
        return None
    match = _LEADING_FLOAT_RE.match(raw)
    return float(match.group(0)) if match else None


def _at_least(rule: str, fields: Dict[str, str], key: str, minimum: float) -> RuleCheck:
    value = _leading_float(fields.get(key))
    if value is None:
        return RuleCheck(rule, False, f"{key} missing")
    return RuleCheck(rule, value >= minimum, f"{key}={value:.2f} min={minimum:.2f}")


def _pair(raw: Optional[str]) -> Tuple[str, str]:
    left, _, right = (raw or "-/-").partition("/")
    return left or "-", right or "-"


def crypto_daily_rules(fields: Dict[str, str]) -> List[RuleCheck]:
    entity = fields.get("entity", "")
    date_type = fields.get("dateType", "")
    date_raw = fields.get("date", "")
    days_match = _DAYS_RE.search(date_raw)
    days = int(days_match.group(1)) if days_match else None
    left_cmp, right_cmp = _pair(fields.get("cmp"))
    comparator_ok = left_cmp == right_cmp or "-" in (left_cmp, right_cmp)
    return [
        RuleCheck("CD_ENTITY_PRESENT", bool(entity) and entity != "-", entity or "missing"),
        RuleCheck(
            "CD_DATETYPE_VALID",
            date_type in ("DAY_EXACT", "CLOSE_TIME", "MONTH_END", "QUARTER"),
            date_type or "missing",
        ),
        RuleCheck("CD_DATE_EXACT", days == 0, f"dayDiff={days}"),
        _at_least("CD_DATE_SCORE", fields, "date", 0.9),
        _at_least("CD_NUMBERS", fields, "num", 0.6),
        RuleCheck("CD_COMPARATOR", comparator_ok, f"{left_cmp}/{right_cmp}"),
        _at_least("CD_TEXT_SANITY", fields, "text", 0.12),
    ]


def crypto_intraday_rules(fields: Dict[str, str]) -> List[RuleCheck]:
    entity = fields.get("entity", "")
    bucket = fields.get("bucket", "")
    left_dir, right_dir = _pair(fields.get("dir"))
    return [
        RuleCheck("CI_ENTITY_PRESENT", bool(entity) and entity != "-", entity or "missing"),
        RuleCheck("CI_BUCKET_PRESENT", bool(bucket) and bucket != "None", bucket or "missing"),
        RuleCheck("CI_DIRECTION", left_dir == right_dir, f"{left_dir}/{right_dir}"),
        _at_least("CI_TEXT_SANITY", fields, "text", 0.15),
    ]


def macro_rules(fields: Dict[str, str]) -> List[RuleCheck]:
    kind_match = _KIND_RE.search(fields.get("per", ""))
    kind = kind_match.group(1) if kind_match else PeriodKind.NONE
    tier = fields.get("tier", "")
    return [
        _at_least("MA_ENTITY_MATCH", fields, "me", 0.5),
        RuleCheck("MA_PERIOD_KIND", kind in PeriodKind.STRONG, kind),
        _at_least("MA_PERIOD_SCORE", fields, "per", 0.22),
        _at_least("MA_TEXT_SANITY", fields, "txt", 0.10),
        RuleCheck("MA_TIER_STRONG", tier == Tier.STRONG, tier or "missing"),
    ]


SAFE_RULES = {
    "crypto_daily": crypto_daily_rules,
    "crypto_intraday": crypto_intraday_rules,
    "macro": macro_rules,
}


def topic_for(link: Link, topics: Optional[Dict[str, TopicConfig]] = None) -> TopicConfig:
    """Configured topic for a stored link; unknown topics fall back to general."""
    topic = (topics or {}).get(link.topic) or DEFAULT_TOPICS.get(link.topic)
    return topic or DEFAULT_TOPICS["general"]


def safe_rule_checks(
    link: Link, topic: TopicConfig, min_score: Optional[float] = None
) -> List[RuleCheck]:
    minimum = topic.safe_min_score if min_score is None else min_score
    checks = [
        RuleCheck("MIN_SCORE", link.score >= minimum, f"score={link.score:.2f} min={minimum:.2f}")
    ]
    rules = SAFE_RULES.get(link.topic)
    if rules is None:
        checks.append(RuleCheck("GEN_NO_SAFE_RULES", False, f"no safe rules for {link.topic}"))
        return checks
    checks.extend(rules(parse_reason(link.reason)))
    return checks


def _side_keys(link: Link) -> Tuple[str, str]:
    return (
        f"{link.left_venue}:{link.left_market_id}",
        f"{link.right_venue}:{link.right_market_id}",
    )


def auto_confirm(
    db_path: str,
    topic: Optional[str] = None,
    apply: bool = False,
    explain: bool = False,
    limit: Optional[int] = None,
    min_score: Optional[float] = None,
    topics: Optional[Dict[str, TopicConfig]] = None,
    engine_version: str = ENGINE_VERSION,
) -> PolicyReport:
    report = PolicyReport(mode="auto-confirm", dry_run=not apply)
    links = storage.list_suggestions(
        db_path, status=LinkStatus.SUGGESTED, topic=topic, limit=limit
    )
    claimed: Set[str] = set()
    for link in links:
        report.scanned += 1
        checks = safe_rule_checks(link, topic_for(link, topics), min_score)
        left_key, right_key = _side_keys(link)
        conflict = (
            left_key in claimed
            or right_key in claimed
            or storage.has_confirmed_link(db_path, link.left_venue, link.left_market_id)
            or storage.has_confirmed_link(db_path, link.right_venue, link.right_market_id)
        )
        checks.append(RuleCheck("CONFLICT_CONFIRMED", not conflict, "conflict" if conflict else "ok"))

        for check in checks:
            if not check.passed:
                report.count_rule(f"FAIL:{check.rule}")
        passed = all(check.passed for check in checks)
        if passed:
            report.eligible += 1
            report.by_topic[link.topic] = report.by_topic.get(link.topic, 0) + 1
            claimed.update((left_key, right_key))
            if apply:
                storage.confirm(
                    db_path,
                    link.id,
                    reason_suffix=f"auto_confirm@{engine_version}:{link.topic}:SAFE_RULES",
                )
                report.applied += 1

        if explain:
            report.explain.append(
                {
                    "id": link.id,
                    "topic": link.topic,
                    "score": link.score,
                    "left": left_key,
                    "right": right_key,
                    "decision": "confirm" if passed else "skip",
                    "rules": [asdict(check) for check in checks],
                }
            )

    logger.info(
        "auto-confirm scanned=%d eligible=%d applied=%d dry_run=%s",
        report.scanned,
        report.eligible,
        report.applied,
        report.dry_run,
    )
    return report


def _parse_created(value: str) -> datetime:
    created = datetime.fromisoformat(value)
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created


def reject_checks(
    db_path: str, link: Link, topic: TopicConfig, floor: Optional[float] = None
) -> List[RuleCheck]:
    """Each check passes when it finds a reason to reject."""
    floor = topic.reject_floor if floor is None else floor
    text_floor = topic.reject_text_floor
    checks = [RuleCheck("LOW_SCORE", link.score < floor, f"score={link.score:.2f} floor={floor:.2f}")]

    left = storage.get_market(db_path, link.left_venue, link.left_market_id)
    right = storage.get_market(db_path, link.right_venue, link.right_market_id)
    if left is None or right is None:
        fields = parse_reason(link.reason)
        text = _leading_float(fields.get("text") or fields.get("txt") or fields.get("jacc"))
        if text is not None:
            checks.append(RuleCheck("TEXT_FLOOR", text < text_floor, f"text={text:.2f} (reason)"))
        return checks

    tables = topic.entity_tables()
    left_item, right_item = fingerprint_market(left, tables), fingerprint_market(right, tables)
    lf, rf = left_item.fingerprint, right_item.fingerprint
    if lf.entities and rf.entities:
        shared = set(lf.entities) & set(rf.entities)
        checks.append(
            RuleCheck(
                "ENTITY_MISMATCH",
                not shared,
                f"{','.join(lf.entities)}/{','.join(rf.entities)}",
            )
        )

    left_crypto, right_crypto = crypto_entity(left_item), crypto_entity(right_item)
    if left_crypto and left_crypto == right_crypto:
        left_intraday, right_intraday = is_intraday(left), is_intraday(right)
        checks.append(
            RuleCheck(
                "TYPE_MISMATCH",
                left_intraday != right_intraday,
                f"intraday={left_intraday}/{right_intraday}",
            )
        )
        days = settle_day_diff(extract_settle(left_item), extract_settle(right_item))
        if days is not None:
            checks.append(RuleCheck("DATE_MISMATCH", days > 1, f"dayDiff={days}"))

    text = text_similarity(lf, rf)
    checks.append(RuleCheck("TEXT_FLOOR", text < text_floor, f"text={text:.2f}"))
    return checks


def auto_reject(
    db_path: str,
    topic: Optional[str] = None,
    apply: bool = False,
    explain: bool = False,
    min_age_hours: float = 24,
    limit: Optional[int] = None,
    floor: Optional[float] = None,
    topics: Optional[Dict[str, TopicConfig]] = None,
    now: Optional[datetime] = None,
    engine_version: str = ENGINE_VERSION,
) -> PolicyReport:
    report = PolicyReport(mode="auto-reject", dry_run=not apply)
    now = now or datetime.now(timezone.utc)
    links = storage.list_suggestions(
        db_path, status=LinkStatus.SUGGESTED, topic=topic, limit=limit
    )
    for link in links:
        report.scanned += 1
        age_hours = (now - _parse_created(link.created_at)).total_seconds() / 3600
        entry: Dict[str, Any] = {
            "id": link.id,
            "topic": link.topic,
            "score": link.score,
            "left": f"{link.left_venue}:{link.left_market_id}",
            "right": f"{link.right_venue}:{link.right_market_id}",
            "age_hours": round(age_hours, 2),
        }
        if age_hours < min_age_hours:
            report.count_rule("FAIL:AGE_TOO_FRESH")
            if explain:
                entry.update({"decision": "skip", "reasons": ["AGE_TOO_FRESH"], "rules": []})
                report.explain.append(entry)
            continue

        checks = reject_checks(db_path, link, topic_for(link, topics), floor)
        reasons = [check.rule for check in checks if check.passed]
        for rule in reasons:
            report.count_rule(f"REJECT:{rule}")
        if reasons:
            report.eligible += 1
            report.by_topic[link.topic] = report.by_topic.get(link.topic, 0) + 1
            if apply:
                storage.reject(
                    db_path,
                    link.id,
                    reason_suffix=f"auto_reject@{engine_version}:{link.topic}:{'+'.join(reasons)}",
                )
                report.applied += 1

        if explain:
            entry.update(
                {
                    "decision": "reject" if reasons else "keep",
                    "reasons": reasons,
                    "rules": [asdict(check) for check in checks],
                }
            )
            report.explain.append(entry)

    logger.info(
        "auto-reject scanned=%d eligible=%d applied=%d dry_run=%s",
        report.scanned,
        report.eligible,
        report.applied,
        report.dry_run,
    )
    return report
