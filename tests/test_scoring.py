import unittest
from dataclasses import replace
from datetime import datetime, timezone

from marketlink.config import DEFAULT_TOPICS
from marketlink.fingerprint import fingerprint_market
from marketlink.models import EligibleMarket, Gate, Period, PeriodKind, Tier
from marketlink.periods import compatible_period_keys, parse_period_key, period_compatibility, period_score
from marketlink.scoring import (
    CryptoScorer,
    ElectionsScorer,
    GeneralScorer,
    IntradayScorer,
    MacroScorer,
    build_scorer,
)


def _item(market_id, title, venue="polymarket", close_time=None, metadata=None):
    return fingerprint_market(
        EligibleMarket(
            market_id=market_id,
            venue=venue,
            title=title,
            close_time=close_time,
            metadata=metadata or {},
        )
    )


BTC_DAY = "Bitcoin above $100,000 on Dec 31, 2025?"


class GeneralScorerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.scorer = GeneralScorer(DEFAULT_TOPICS["general"])

    def test_abbreviated_titles_match(self) -> None:
        left = _item("K-BTC", BTC_DAY, venue="kalshi")
        right = _item("P-BTC", "BTC > $100k by end of Dec 2025")
        result = self.scorer.score(left, right)
        self.assertEqual(result.gate_failed, Gate.NONE)
        self.assertGreater(result.score, 0.6)
        self.assertLessEqual(result.score, 1.0)
        self.assertIn("[BITCOIN]", result.reason)
        self.assertEqual(result.entity, "BITCOIN")

    def test_score_is_deterministic(self) -> None:
        left = _item("K-BTC", BTC_DAY, venue="kalshi")
        right = _item("P-BTC", "BTC > $100k by end of Dec 2025")
        first = self.scorer.score(left, right)
        second = self.scorer.score(left, right)
        self.assertEqual(first.score, second.score)
        self.assertEqual(first.reason, second.reason)

    def test_price_date_gap_is_gated(self) -> None:
        left = _item("K-BTC", BTC_DAY, venue="kalshi")
        right = _item("P-BTC", "Bitcoin above $100,000 on March 15, 2026?")
        result = self.scorer.score(left, right)
        self.assertEqual(result.score, 0.0)
        self.assertEqual(result.gate_failed, Gate.DATE)
        self.assertTrue(result.reason.startswith("GATE date:"))

    def test_adjacent_days_pass_date_gate(self) -> None:
        left = _item("K-BTC", BTC_DAY, venue="kalshi")
        right = _item("P-BTC", "Bitcoin above $100,000 on January 1, 2026?")
        result = self.scorer.score(left, right)
        self.assertEqual(result.gate_failed, Gate.NONE)

    def test_text_gate_uses_price_thresholds(self) -> None:
        strict = GeneralScorer(replace(DEFAULT_TOPICS["general"], price_text_min_jaccard=0.5))
        left = _item("K-BTC", BTC_DAY, venue="kalshi")
        right = _item("P-BTC", "BTC > $100k by end of Dec 2025")
        result = strict.score(left, right)
        self.assertEqual(result.score, 0.0)
        self.assertEqual(result.gate_failed, Gate.TEXT)

    def test_intraday_and_daily_are_never_matched(self) -> None:
        left = _item("K-BTC", BTC_DAY, venue="kalshi")
        right = _item("P-BTC", "Bitcoin up or down in the next 15 minutes?")
        result = self.scorer.score(left, right)
        self.assertEqual(result.gate_failed, Gate.TYPE)
        self.assertEqual(result.score, 0.0)


    def test_different_election_years_are_gated(self) -> None:
        left = _item("K-2028", "Will Trump win the 2028 presidential election?", venue="kalshi")
        right = _item("P-2024", "Will Trump win the 2024 presidential election?")
        result = self.scorer.score(left, right)
        self.assertEqual(result.score, 0.0)
        self.assertEqual(result.gate_failed, Gate.DATE)
        self.assertEqual(result.reason, "GATE date: year 2028/2024")

    def test_same_year_in_different_forms_passes_year_gate(self) -> None:
        left = _item("K-BTC", BTC_DAY, venue="kalshi")
        right = _item("P-BTC", "Bitcoin above $100,000 in 2025?")
        result = self.scorer.score(left, right)
        self.assertNotEqual(result.gate_failed, Gate.DATE)


class MacroScorerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.scorer = MacroScorer(DEFAULT_TOPICS["macro"])

    def test_month_in_quarter(self) -> None:
        left = _item("K-CPI", "CPI above 3% in January 2026?", venue="kalshi")
        right = _item("P-CPI", "CPI Q1 2026 above 3%?")
        result = self.scorer.score(left, right)
        self.assertEqual(result.gate_failed, Gate.NONE)
        self.assertEqual(result.period_kind, PeriodKind.MONTH_IN_QUARTER)
        self.assertEqual(result.tier, Tier.STRONG)
        self.assertIn("per=0.24[month_in_quarter](2026-01/2026-Q1)", result.reason)
        self.assertTrue(result.reason.startswith("MACRO: tier=STRONG me=0.50"))
        self.assertEqual(result.bucket, "2026-Q1")

    def test_month_in_year_is_weak(self) -> None:
        left = _item("K-CPI", "CPI above 3% in January 2026?", venue="kalshi")
        right = _item("P-CPI", "Inflation and CPI above 3% in 2026?")
        result = self.scorer.score(left, right)
        self.assertEqual(result.period_kind, PeriodKind.MONTH_IN_YEAR)
        self.assertEqual(result.tier, Tier.WEAK)

    def test_incompatible_period_is_gated(self) -> None:
        left = _item("K-GDP", "GDP growth in 2026?", venue="kalshi")
        right = _item("P-GDP", "GDP growth in January 2027?")
        result = self.scorer.score(left, right)
        self.assertEqual(result.score, 0.0)
        self.assertEqual(result.gate_failed, Gate.PERIOD)

    def test_entity_mismatch_is_gated(self) -> None:
        left = _item("K-CPI", "CPI above 3% in January 2026?", venue="kalshi")
        right = _item("P-GDP", "GDP above 3% in January 2026?")
        result = self.scorer.score(left, right)
        self.assertEqual(result.gate_failed, Gate.TYPE)


class PeriodTests(unittest.TestCase):
    def test_period_scores(self) -> None:
        self.assertAlmostEqual(
            period_score(Period("month", 2026, month=1), Period("quarter", 2026, quarter=1)), 0.24
        )
        self.assertAlmostEqual(
            period_score(Period("quarter", 2026, quarter=1), Period("month", 2026, month=1)), 0.24
        )
        self.assertEqual(period_score(Period("year", 2026), Period("month", 2027, month=1)), 0.0)
        self.assertEqual(
            period_compatibility(Period("month", 2026, month=4), Period("quarter", 2026, quarter=1)),
            PeriodKind.NONE,
        )

    def test_compatible_keys(self) -> None:
        self.assertEqual(
            compatible_period_keys(Period("month", 2026, month=1)), ["2026-01", "2026-Q1", "2026"]
        )
        self.assertEqual(
            compatible_period_keys(Period("quarter", 2026, quarter=2)),
            ["2026-Q2", "2026", "2026-04", "2026-05", "2026-06"],
        )
        self.assertEqual(len(compatible_period_keys(Period("year", 2026))), 17)

    def test_parse_period_key(self) -> None:
        self.assertEqual(parse_period_key("2026-03"), Period("month", 2026, month=3))
        self.assertEqual(parse_period_key("2026-Q4"), Period("quarter", 2026, quarter=4))
        self.assertEqual(parse_period_key("2026"), Period("year", 2026))
        self.assertIsNone(parse_period_key("2026-13"))


class CryptoScorerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.scorer = CryptoScorer(DEFAULT_TOPICS["crypto_daily"])
        self.left = _item("KXBTCD-25DEC31-T100000", BTC_DAY, venue="kalshi")

    def test_same_day_is_strong(self) -> None:
        right = _item("P1", "Will BTC be above $100k on December 31, 2025?")
        result = self.scorer.score(self.left, right)
        self.assertEqual(result.gate_failed, Gate.NONE)
        self.assertEqual(result.tier, Tier.STRONG)
        self.assertGreaterEqual(result.score, 0.9)
        self.assertTrue(
            result.reason.startswith("entity=BITCOIN dateType=DAY_EXACT date=1.00(0d) num=1.00[price]")
        )
        self.assertIn("cmp=GE/GE", result.reason)
        self.assertEqual(result.settle_key, "2025-12-31")

    def test_one_day_apart_is_weak(self) -> None:
        right = _item("P1", "Will BTC be above $100k on January 1, 2026?")
        result = self.scorer.score(self.left, right)
        self.assertEqual(result.gate_failed, Gate.NONE)
        self.assertEqual(result.tier, Tier.WEAK)
        self.assertIn("date=0.60(1d)", result.reason)

    def test_two_days_apart_is_gated(self) -> None:
        right = _item("P1", "Will BTC be above $100k on January 2, 2026?")
        result = self.scorer.score(self.left, right)
        self.assertEqual(result.gate_failed, Gate.DATE)

    def test_month_end_never_matches_exact_day(self) -> None:
        right = _item("P1", "BTC > $100k by end of Dec 2025")
        result = self.scorer.score(self.left, right)
        self.assertEqual(result.gate_failed, Gate.DATE)
        self.assertIn("DAY_EXACT/MONTH_END", result.reason)

    def test_different_assets_are_gated(self) -> None:
        right = _item("P1", "Will ETH be above $4,000 on December 31, 2025?")
        result = self.scorer.score(self.left, right)
        self.assertEqual(result.gate_failed, Gate.TYPE)

    def test_intraday_market_is_gated(self) -> None:
        right = _item("P1", "Bitcoin up or down in the next 15 minutes?")
        result = self.scorer.score(self.left, right)
        self.assertEqual(result.gate_failed, Gate.TYPE)


class IntradayScorerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.scorer = IntradayScorer(DEFAULT_TOPICS["crypto_intraday"])
        self.left = _item(
            "K1",
            "Will BTC go up in the next 15 min?",
            venue="kalshi",
            close_time=datetime(2026, 1, 5, 14, 15, tzinfo=timezone.utc),
        )

    def test_same_bucket_matches(self) -> None:
        right = _item(
            "P1",
            "Bitcoin up or down next 15 minutes",
            close_time=datetime(2026, 1, 5, 14, 22, tzinfo=timezone.utc),
        )
        result = self.scorer.score(self.left, right)
        self.assertEqual(result.gate_failed, Gate.NONE)
        self.assertEqual(result.bucket, "2026-01-05T14:15")
        self.assertEqual(result.tier, Tier.STRONG)
        self.assertGreaterEqual(result.score, 0.9)
        self.assertIn("dir=UP/-", result.reason)

    def test_opposite_directions_are_weak(self) -> None:
        right = _item(
            "P1",
            "Will BTC go down in the next 15 min?",
            close_time=datetime(2026, 1, 5, 14, 20, tzinfo=timezone.utc),
        )
        result = self.scorer.score(self.left, right)
        self.assertEqual(result.tier, Tier.WEAK)

    def test_next_bucket_is_gated(self) -> None:
        right = _item(
            "P1",
            "Bitcoin up or down next 15 minutes",
            close_time=datetime(2026, 1, 5, 14, 31, tzinfo=timezone.utc),
        )
        result = self.scorer.score(self.left, right)
        self.assertEqual(result.gate_failed, Gate.DATE)
        self.assertEqual(result.score, 0.0)


class ElectionsScorerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.scorer = ElectionsScorer(DEFAULT_TOPICS["elections"])
        self.left = _item("K-PRES", "Will Trump win the 2028 presidential election?", venue="kalshi")

    def test_same_race_is_strong(self) -> None:
        right = _item("P-PRES", "Trump wins the 2028 presidential election")
        result = self.scorer.score(self.left, right)
        self.assertEqual(result.gate_failed, Gate.NONE)
        self.assertEqual(result.tier, Tier.STRONG)
        self.assertGreater(result.score, 0.85)
        self.assertEqual(result.entity, "DONALD_TRUMP")
        self.assertEqual(result.bucket, "US|PRESIDENT|2028")
        self.assertIn("race=US|PRESIDENT|2028/US|PRESIDENT|2028", result.reason)

    def test_year_mismatch_is_gated(self) -> None:
        right = _item("P-PRES", "Will Trump win the 2024 presidential election?")
        result = self.scorer.score(self.left, right)
        self.assertEqual(result.score, 0.0)
        self.assertEqual(result.gate_failed, Gate.DATE)
        self.assertEqual(result.reason, "GATE date: year 2028/2024")

    def test_country_mismatch_is_gated(self) -> None:
        left = _item("K-FR", "Who will win the 2027 French presidential election?", venue="kalshi")
        right = _item("P-US", "Who will win the 2027 presidential election?")
        result = self.scorer.score(left, right)
        self.assertEqual(result.gate_failed, Gate.TYPE)
        self.assertEqual(result.reason, "GATE type: country FRANCE/US")

    def test_office_and_state_mismatches_are_gated(self) -> None:
        left = _item("K-OH", "Will Democrats win the Ohio Senate race in 2026?", venue="kalshi")
        governor = _item("P-OH", "Will Democrats win the Ohio governor race in 2026?")
        texas = _item("P-TX", "Will Democrats win the Texas Senate race in 2026?")
        self.assertEqual(self.scorer.score(left, governor).reason, "GATE type: office SENATE/GOVERNOR")
        self.assertEqual(self.scorer.score(left, texas).reason, "GATE type: state OH/TX")

    def test_missing_candidates_score_weak(self) -> None:
        right = _item("P-PRES", "Who will win the 2028 presidential election?")
        result = self.scorer.score(self.left, right)
        self.assertEqual(result.gate_failed, Gate.NONE)
        self.assertEqual(result.tier, Tier.WEAK)
        self.assertEqual(result.components["candidates"], 0.3)


class BuildScorerTests(unittest.TestCase):
    def test_topics_select_scorers(self) -> None:
        self.assertIsInstance(build_scorer(DEFAULT_TOPICS["elections"]), ElectionsScorer)
        self.assertIsInstance(build_scorer(DEFAULT_TOPICS["general"]), GeneralScorer)
        self.assertIsInstance(build_scorer(DEFAULT_TOPICS["macro"]), MacroScorer)
        with self.assertRaises(ValueError):
            build_scorer(replace(DEFAULT_TOPICS["general"], scorer="nope"))


if __name__ == "__main__":
    unittest.main()
