from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Set

from marketlink.config import TopicConfig
from marketlink.elections import RELATED_OFFICES, UNKNOWN, race_signals
from marketlink.markets import crypto_entity, extract_settle, time_bucket
from marketlink.models import ScoredMarket
from marketlink.periods import compatible_period_keys, period_key


class CandidateIndex:
    """Inverted key -> market id lookup over one venue's eligible markets."""

    def __init__(self, cap: int) -> None:
        self.cap = cap
        self._buckets: Dict[str, Set[str]] = defaultdict(set)
        self._items: Dict[str, ScoredMarket] = {}

    def keys_for(self, item: ScoredMarket) -> List[str]:
        raise NotImplementedError

    def query_keys(self, item: ScoredMarket) -> List[str]:
        raise NotImplementedError

    def add(self, item: ScoredMarket) -> None:
        keys = self.keys_for(item)
        if not keys:
            return
        self._items[item.market_id] = item
        for key in keys:
            self._buckets[key].add(item.market_id)

    def get(self, market_id: str) -> Optional[ScoredMarket]:
        return self._items.get(market_id)

    def bucket(self, key: str) -> Set[str]:
        return set(self._buckets.get(key, ()))

    def keys(self) -> List[str]:
        return sorted(self._buckets)

    def __len__(self) -> int:
        return len(self._items)

    def candidates(self, item: ScoredMarket) -> List[ScoredMarket]:
        overlap: Dict[str, int] = {}
        for key in self.query_keys(item):
            for market_id in self._buckets.get(key, ()):
                overlap[market_id] = overlap.get(market_id, 0) + 1
        ranked = sorted(overlap.items(), key=lambda entry: (-entry[1], entry[0]))
        return [self._items[market_id] for market_id, _ in ranked[: self.cap]]

    @classmethod
    def build(cls, items: Iterable[ScoredMarket], cap: int, **kwargs) -> "CandidateIndex":
        index = cls(cap, **kwargs)
        for item in items:
            index.add(item)
        return index


class GeneralIndex(CandidateIndex):
    @staticmethod
    def _year_keys(item: ScoredMarket) -> List[str]:
        return sorted({f"year:{mention.year}" for mention in item.fingerprint.dates})

    def keys_for(self, item: ScoredMarket) -> List[str]:
        if item.fingerprint.entities:
            return list(item.fingerprint.entities)
        return self._year_keys(item)

    def query_keys(self, item: ScoredMarket) -> List[str]:
        if item.fingerprint.entities:
            return list(item.fingerprint.entities)
        return self._year_keys(item)


class MacroIndex(CandidateIndex):
    def keys_for(self, item: ScoredMarket) -> List[str]:
        period = item.fingerprint.period
        if period is None:
            return []
        key = period_key(period)
        return [f"{entity}:{key}" for entity in item.fingerprint.macro_entities]

    def query_keys(self, item: ScoredMarket) -> List[str]:
        period = item.fingerprint.period
        if period is None:
            return []
        return [
            f"{entity}:{key}"
            for entity in item.fingerprint.macro_entities
            for key in compatible_period_keys(period)
        ]


class CryptoIndex(CandidateIndex):
    @staticmethod
    def _settle(item: ScoredMarket) -> Optional[date]:
        return extract_settle(item).settle_date

    def keys_for(self, item: ScoredMarket) -> List[str]:
        entity = crypto_entity(item)
        settle = self._settle(item)
        if entity is None or settle is None:
            return []
        return [f"{entity}:{settle.isoformat()}"]

    def query_keys(self, item: ScoredMarket) -> List[str]:
        entity = crypto_entity(item)
        settle = self._settle(item)
        if entity is None or settle is None:
            return []
        return [
            f"{entity}:{(settle + timedelta(days=offset)).isoformat()}" for offset in (0, -1, 1)
        ]


class IntradayIndex(CandidateIndex):
    def __init__(self, cap: int, slot_minutes: int = 15) -> None:
        super().__init__(cap)
        self.slot_minutes = slot_minutes

    def keys_for(self, item: ScoredMarket) -> List[str]:
        entity = crypto_entity(item)
        bucket = time_bucket(item.market, self.slot_minutes)
        if entity is None or bucket is None:
            return []
        return [f"{entity}:{bucket}"]

    def query_keys(self, item: ScoredMarket) -> List[str]:
        return self.keys_for(item)


class ElectionsIndex(CandidateIndex):
    """Race and candidate keys.

    A market is stored under its own race key and a country-year key. A query
    with an unknown office reaches every office through the country-year key;
    a query with a known office reaches its own race, unknown-office markets
    and related chambers.
    """

    def keys_for(self, item: ScoredMarket) -> List[str]:
        signals = race_signals(item)
        if not signals.known:
            return []
        year = str(signals.year) if signals.year else "unknown"
        keys = [f"{signals.country}|{signals.office}|{year}", f"{signals.country}|{year}"]
        keys.extend(f"candidate|{name}|{year}" for name in signals.candidates)
        return keys

    def query_keys(self, item: ScoredMarket) -> List[str]:
        signals = race_signals(item)
        if not signals.known:
            return []
        year = str(signals.year) if signals.year else "unknown"
        if signals.office == UNKNOWN:
            keys = [f"{signals.country}|{year}"]
        else:
            offices = [signals.office, UNKNOWN]
            offices.extend(sorted(b for a, b in RELATED_OFFICES if a == signals.office))
            keys = [f"{signals.country}|{office}|{year}" for office in offices]
        keys.extend(f"candidate|{name}|{year}" for name in signals.candidates)
        return keys


def build_index(topic: TopicConfig, items: Iterable[ScoredMarket]) -> CandidateIndex:
    if topic.scorer == "macro":
        return MacroIndex.build(items, topic.candidate_cap)
    if topic.scorer == "crypto":
        return CryptoIndex.build(items, topic.candidate_cap)
    if topic.scorer == "intraday":
        return IntradayIndex.build(items, topic.candidate_cap, slot_minutes=topic.slot_minutes)
    if topic.scorer == "elections":
        return ElectionsIndex.build(items, topic.candidate_cap)
    return GeneralIndex.build(items, topic.candidate_cap)
