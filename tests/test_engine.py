import os
import sqlite3
import tempfile
import unittest
from dataclasses import replace
from datetime import datetime, timezone
from unittest.mock import patch

from marketlink import storage
from marketlink.config import DEFAULT_TOPICS, RunConfig
from marketlink.engine import explain_pair, run_matching
from marketlink.models import EligibleMarket, Gate, LinkStatus

NOW = datetime(2026, 1, 15, tzinfo=timezone.utc)


def _fetcher(markets_by_venue):
    def fetch(venue, **kwargs):
        return list(markets_by_venue.get(venue, []))

    return fetch


def _kalshi(market_id, title):
    return EligibleMarket(market_id=market_id, venue="kalshi", title=title)


def _poly(market_id, title):
    return EligibleMarket(market_id=market_id, venue="polymarket", title=title)


def _links(db_path):
    conn = sqlite3.connect(db_path)
    try:
        return conn.execute(
            "SELECT left_market_id, right_market_id, status FROM market_links "
            "ORDER BY left_market_id, right_market_id"
        ).fetchall()
    finally:
        conn.close()


class EngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self._tmpdir.name, "marketlink.db")
        storage.init_db(self.db_path)

    def tearDown(self) -> None:
        self._tmpdir.cleanup()

    def _config(self, topic="general", workers=1, **overrides):
        return RunConfig(
            topic=replace(DEFAULT_TOPICS[topic], **overrides),
            db_path=self.db_path,
            engine_version="3.0.6",
            workers=workers,
        )

    def _btc_markets(self):
        return {
            "kalshi": [_kalshi("K-BTC", "Bitcoin above $100,000 on Dec 31, 2025?")],
            "polymarket": [
                _poly("P-BTC", "BTC > $100k by end of Dec 2025"),
                _poly("P-GDP", "GDP growth above 2% in Q1 2026?"),
            ],
        }

    def _macro_markets(self, lefts=50):
        return {
            "kalshi": [_kalshi(f"L{i:02d}", "CPI above 3% in January 2026?") for i in range(lefts)],
            "polymarket": [_poly("P1", "CPI January 2026 above 3%?")],
        }

    def test_abbreviated_pair_is_suggested(self) -> None:
        result = run_matching(
            self._config(), "kalshi", "polymarket", fetch_markets=_fetcher(self._btc_markets()), now=NOW
        )
        self.assertTrue(result.ok)
        self.assertEqual(result.algo_version, "general@3.0.6")
        self.assertEqual(result.saved_after_cap, 1)
        self.assertEqual(result.created, 1)
        self.assertEqual(_links(self.db_path), [("K-BTC", "P-BTC", LinkStatus.SUGGESTED)])
        link = storage.list_suggestions(self.db_path)[0]
        self.assertGreater(link.score, 0.6)
        self.assertEqual(link.topic, "general")
        self.assertEqual(result.entity_coverage["BITCOIN"]["rate"], 1.0)

    def test_rerun_is_idempotent(self) -> None:
        fetch = _fetcher(self._btc_markets())
        first = run_matching(self._config(), "kalshi", "polymarket", fetch_markets=fetch, now=NOW)
        before = storage.list_suggestions(self.db_path)
        second = run_matching(self._config(), "kalshi", "polymarket", fetch_markets=fetch, now=NOW)
        after = storage.list_suggestions(self.db_path)

        self.assertEqual(first.created, 1)
        self.assertEqual(second.created, 0)
        self.assertEqual(second.updated, 1)
        def snapshot(links):
            return [
                (link.id, link.left_market_id, link.right_market_id, link.score, link.reason, link.status)
                for link in links
            ]

        self.assertEqual(snapshot(before), snapshot(after))

    def test_dry_run_writes_nothing(self) -> None:
        result = run_matching(
            self._config(),
            "kalshi",
            "polymarket",
            dry_run=True,
            fetch_markets=_fetcher(self._btc_markets()),
            now=NOW,
        )
        self.assertTrue(result.dry_run)
        self.assertEqual(result.saved_after_cap, 1)
        self.assertEqual(result.created, 0)
        self.assertEqual(len(result.suggestions), 1)
        self.assertEqual(result.suggestions[0]["right_title"], "BTC > $100k by end of Dec 2025")
        self.assertEqual(_links(self.db_path), [])

    def test_right_cap_limits_fan_in(self) -> None:
        config = self._config("macro", max_per_right=8)
        result = run_matching(
            config, "kalshi", "polymarket", fetch_markets=_fetcher(self._macro_markets()), now=NOW
        )
        self.assertEqual(result.generated_before_cap, 50)
        self.assertEqual(result.saved_after_cap, 8)
        self.assertEqual(result.dropped["rightCap"], 42)
        links = _links(self.db_path)
        self.assertEqual(len(links), 8)
        self.assertEqual([row[0] for row in links], [f"L{i:02d}" for i in range(8)])

    def test_parallel_scoring_matches_sequential(self) -> None:
        markets = self._macro_markets()
        sequential = run_matching(
            self._config("macro", max_per_right=8),
            "kalshi",
            "polymarket",
            dry_run=True,
            fetch_markets=_fetcher(markets),
            now=NOW,
        )
        parallel = run_matching(
            self._config("macro", workers=4, max_per_right=8),
            "kalshi",
            "polymarket",
            dry_run=True,
            fetch_markets=_fetcher(markets),
            now=NOW,
        )
        self.assertEqual(sequential.suggestions, parallel.suggestions)
        self.assertEqual(sequential.dropped, parallel.dropped)

    def test_confirmed_lefts_are_skipped(self) -> None:
        storage.upsert_suggestions(
            self.db_path,
            [
                {
                    "left_venue": "kalshi",
                    "left_market_id": "L00",
                    "right_venue": "polymarket",
                    "right_market_id": "OTHER",
                    "score": 0.9,
                    "reason": "manual",
                    "algo_version": "macro@3.0.5",
                }
            ],
        )
        storage.confirm(self.db_path, 1)
        result = run_matching(
            self._config("macro"),
            "kalshi",
            "polymarket",
            fetch_markets=_fetcher(self._macro_markets(lefts=2)),
            now=NOW,
        )
        self.assertEqual(result.skipped_confirmed, 1)
        self.assertEqual(result.created, 1)
        self.assertIn(("L01", "P1", LinkStatus.SUGGESTED), _links(self.db_path))

    def test_fetch_failure_is_fatal_without_side_effects(self) -> None:
        def fetch(venue, **kwargs):
            if venue == "polymarket":
                raise RuntimeError("venue offline")
            return [_kalshi("K1", "Bitcoin above $100,000 on Dec 31, 2025?")]

        result = run_matching(self._config(), "kalshi", "polymarket", fetch_markets=fetch, now=NOW)
        self.assertTrue(result.fatal)
        self.assertFalse(result.ok)
        self.assertEqual(result.errors, ["fetch polymarket: venue offline"])
        self.assertEqual(result.created, 0)
        self.assertEqual(_links(self.db_path), [])

    def test_persistence_error_does_not_abort_run(self) -> None:
        real_upsert = storage.upsert_suggestions

        def flaky(path, rows, reopen_rejected=True):
            if rows[0]["left_market_id"] == "L01":
                raise sqlite3.OperationalError("database is locked")
            return real_upsert(path, rows, reopen_rejected=reopen_rejected)

        with patch("marketlink.engine.storage.upsert_suggestions", side_effect=flaky):
            result = run_matching(
                self._config("macro", max_per_right=8),
                "kalshi",
                "polymarket",
                fetch_markets=_fetcher(self._macro_markets(lefts=3)),
                now=NOW,
            )
        self.assertFalse(result.fatal)
        self.assertEqual(result.errors, ["upsert L01: database is locked"])
        self.assertEqual(result.created, 2)
        self.assertEqual([row[0] for row in _links(self.db_path)], ["L00", "L02"])

    def test_interrupt_keeps_finished_markets(self) -> None:
        real_upsert = storage.upsert_suggestions

        def interrupt_on_second(path, rows, reopen_rejected=True):
            if rows[0]["left_market_id"] == "L01":
                raise KeyboardInterrupt
            return real_upsert(path, rows, reopen_rejected=reopen_rejected)

        with patch("marketlink.engine.storage.upsert_suggestions", side_effect=interrupt_on_second):
            result = run_matching(
                self._config("macro", max_per_right=8),
                "kalshi",
                "polymarket",
                fetch_markets=_fetcher(self._macro_markets(lefts=3)),
                now=NOW,
            )
        self.assertTrue(result.interrupted)
        self.assertFalse(result.fatal)
        self.assertIn("interrupted", result.errors)
        self.assertEqual(result.created, 1)
        self.assertEqual(_links(self.db_path), [("L00", "P1", LinkStatus.SUGGESTED)])

    def test_filtered_and_gated_counts(self) -> None:
        markets = {
            "kalshi": [
                _kalshi("K1", "Bitcoin above $100,000 on Dec 31, 2025?"),
                _kalshi("K2", "Lakers vs Celtics points over 220.5"),
            ],
            "polymarket": [_poly("P1", "Bitcoin above $100,000 on March 15, 2026?")],
        }
        result = run_matching(
            self._config(), "kalshi", "polymarket", fetch_markets=_fetcher(markets), now=NOW
        )
        self.assertEqual(result.skipped_filtered, {"sports": 1})
        self.assertEqual(result.left_count, 1)
        self.assertEqual(result.candidates_considered, 1)
        self.assertEqual(result.gate_failures[Gate.DATE], 1)
        self.assertEqual(result.saved_after_cap, 0)

    def test_explain_pair(self) -> None:
        explained = explain_pair(
            self._config(),
            _kalshi("K-BTC", "Bitcoin above $100,000 on Dec 31, 2025?"),
            _poly("P-BTC", "BTC > $100k by end of Dec 2025"),
        )
        self.assertEqual(explained["gate_failed"], Gate.NONE)
        self.assertTrue(explained["would_suggest"])
        self.assertEqual(explained["left"]["fingerprint"]["intent"], "PRICE_DATE")


if __name__ == "__main__":
    unittest.main()
