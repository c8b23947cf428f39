import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv

from marketlink import aliases

ENGINE_VERSION = "3.0.6"


@dataclass(frozen=True)
class AppConfig:
    db_path: str
    workers: int
    reopen_rejected: bool
    engine_version: str
    topics_path: Optional[str]
    slack_webhook_url: Optional[str]


@dataclass(frozen=True)
class TopicConfig:
    name: str
    scorer: str
    min_score: float
    lookback_hours: int
    top_k: int = 10
    max_per_left: int = 5
    max_per_right: int = 5
    market_limit: int = 5000
    title_keywords: Tuple[str, ...] = ()
    candidate_cap: int = 500

    # General gates
    date_gate_days: int = 1
    price_text_min_sim: float = 0.20
    price_text_min_jaccard: float = 0.10
    text_min_sim: float = 0.12
    text_min_jaccard: float = 0.05

    # Macro
    max_cross_granularity_per_left: int = 1
    macro_year_window: int = 1

    # Crypto
    min_winner_gap: float = 0.02
    bracket_mode: bool = False
    max_groups_per_left: int = 3
    max_lines_per_group: int = 1
    bracket_strategy: str = "best_score"
    crypto_text_min: float = 0.02

    # Intraday
    slot_minutes: int = 15

    exclude_sports: bool = True

    # Triage thresholds: auto-confirm minimum, auto-reject floors
    safe_min_score: float = 0.92
    reject_floor: float = 0.50
    reject_text_floor: float = 0.05

    # Surface -> tag pairs and macro tags added to the built-in tables
    extra_aliases: Tuple[Tuple[str, str], ...] = ()
    extra_macro_entities: Tuple[str, ...] = ()

    def entity_tables(self) -> aliases.EntityTables:
        return aliases.entity_tables(self.extra_aliases, self.extra_macro_entities)


DEFAULT_TOPICS: Dict[str, TopicConfig] = {
    "general": TopicConfig(
        name="general",
        scorer="general",
        min_score=0.55,
        lookback_hours=24,
        candidate_cap=500,
    ),
    "crypto_daily": TopicConfig(
        name="crypto_daily",
        scorer="crypto",
        min_score=0.60,
        lookback_hours=720,
        candidate_cap=1000,
        safe_min_score=0.88,
        reject_floor=0.55,
    ),
    "crypto_intraday": TopicConfig(
        name="crypto_intraday",
        scorer="intraday",
        min_score=0.75,
        lookback_hours=24,
        max_per_left=3,
        max_per_right=3,
        candidate_cap=200,
        safe_min_score=0.85,
        reject_floor=0.65,
    ),
    "macro": TopicConfig(
        name="macro",
        scorer="macro",
        min_score=0.55,
        lookback_hours=720,
        max_per_left=3,
        max_per_right=3,
        candidate_cap=300,
        safe_min_score=0.90,
        reject_floor=0.60,
    ),
    "elections": TopicConfig(
        name="elections",
        scorer="elections",
        min_score=0.55,
        lookback_hours=720,
        max_per_left=3,
        max_per_right=3,
        title_keywords=("election", "president", "nominee", "senate", "governor"),
        safe_min_score=0.88,
    ),
}

SCORERS = ("general", "macro", "crypto", "intraday", "elections")
BRACKET_STRATEGIES = ("best_score", "central_threshold")


@dataclass(frozen=True)
class RunConfig:
    topic: TopicConfig
    db_path: str
    engine_version: str = ENGINE_VERSION
    workers: int = 1
    reopen_rejected: bool = True

    @property
    def algo_version(self) -> str:
        return f"{self.topic.name}@{self.engine_version}"


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid float for {name}: {raw}") from exc


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid int for {name}: {raw}") from exc


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid bool for {name}: {raw}")


def load_config() -> AppConfig:
    load_dotenv()

    return AppConfig(
        db_path=os.getenv("MARKETLINK_DB_PATH", "marketlink.db"),
        workers=_get_int("MARKETLINK_WORKERS", 1),
        reopen_rejected=_get_bool("MARKETLINK_REOPEN_REJECTED", True),
        engine_version=os.getenv("MARKETLINK_ENGINE_VERSION", ENGINE_VERSION),
        topics_path=os.getenv("MARKETLINK_TOPICS_PATH"),
        slack_webhook_url=os.getenv("SLACK_WEBHOOK_URL"),
    )


def _coerce(topic: str, key: str, current: Any, value: Any) -> Any:
    if key == "extra_aliases":
        if not isinstance(value, dict):
            raise ValueError(f"Invalid mapping for {topic}.{key}: {value}")
        return tuple(sorted((str(surface), str(tag).upper()) for surface, tag in value.items()))
    if isinstance(current, bool):
        if isinstance(value, bool):
            return value
        raise ValueError(f"Invalid bool for {topic}.{key}: {value}")
    if isinstance(current, int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Invalid int for {topic}.{key}: {value}")
        return value
    if isinstance(current, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"Invalid float for {topic}.{key}: {value}")
        return float(value)
    if isinstance(current, tuple):
        if not isinstance(value, list):
            raise ValueError(f"Invalid list for {topic}.{key}: {value}")
        return tuple(str(item) for item in value)
    return str(value)


def apply_overrides(topic: TopicConfig, overrides: Dict[str, Any]) -> TopicConfig:
    known = {f.name: getattr(topic, f.name) for f in fields(topic)}
    changes: Dict[str, Any] = {}
    for key, value in overrides.items():
        if key == "name":
            raise ValueError(f"Topic name cannot be overridden: {topic.name}")
        if key not in known:
            raise ValueError(f"Unknown setting for topic {topic.name}: {key}")
        if value is None:
            continue
        changes[key] = _coerce(topic.name, key, known[key], value)
    updated = replace(topic, **changes)
    if updated.scorer not in SCORERS:
        raise ValueError(f"Unknown scorer for topic {topic.name}: {updated.scorer}")
    if updated.bracket_strategy not in BRACKET_STRATEGIES:
        raise ValueError(
            f"Unknown bracket strategy for topic {topic.name}: {updated.bracket_strategy}"
        )
    return updated


def load_topics(path: Optional[str] = None) -> Dict[str, TopicConfig]:
    topics = dict(DEFAULT_TOPICS)
    if not path:
        return topics

    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    if not isinstance(data, dict):
        raise ValueError("topics file must be a mapping of topic name to settings")
    entries = data.get("topics", data)
    if not isinstance(entries, dict):
        raise ValueError("topics must be a mapping")

    for name, overrides in entries.items():
        if not isinstance(overrides, dict):
            raise ValueError(f"Topic {name} must be a mapping")
        base = topics.get(name)
        if base is None:
            scorer = overrides.get("scorer")
            if scorer is None:
                raise ValueError(f"New topic {name} requires a scorer")
            base = replace(DEFAULT_TOPICS["general"], name=name, scorer=scorer)
        topics[name] = apply_overrides(base, overrides)
    return topics


def build_run_config(
    config: AppConfig,
    topic_name: str,
    overrides: Optional[Dict[str, Any]] = None,
    topics: Optional[Dict[str, TopicConfig]] = None,
) -> RunConfig:
    if topics is None:
        topics = load_topics(config.topics_path)
    topic = topics.get(topic_name)
    if topic is None:
        raise ValueError(f"Unknown topic: {topic_name}")
    if overrides:
        topic = apply_overrides(topic, overrides)
    return RunConfig(
        topic=topic,
        db_path=config.db_path,
        engine_version=config.engine_version,
        workers=max(1, config.workers),
        reopen_rejected=config.reopen_rejected,
    )
