import unittest
from datetime import datetime, timezone

from marketlink.config import DEFAULT_TOPICS
from marketlink.fingerprint import fingerprint_market
from marketlink.markets import (
    extract_settle,
    filter_markets,
    is_intraday,
    is_sports_market,
    parse_market,
    parse_timestamp,
    time_bucket,
)
from marketlink.models import DateType, EligibleMarket, Gate
from marketlink.scoring import IntradayScorer

NOW = datetime(2026, 1, 15, tzinfo=timezone.utc)


def _item(market_id, title, venue="kalshi", **kwargs):
    return fingerprint_market(EligibleMarket(market_id=market_id, venue=venue, title=title, **kwargs))


class ParseTests(unittest.TestCase):
    def test_parse_timestamp_variants(self) -> None:
        expected = datetime(2026, 1, 5, 14, 15, tzinfo=timezone.utc)
        self.assertEqual(parse_timestamp("2026-01-05T14:15:00Z"), expected)
        self.assertEqual(parse_timestamp("2026-01-05T09:15:00-05:00"), expected)
        self.assertEqual(parse_timestamp("2026-01-05T14:15:00"), expected)
        self.assertEqual(parse_timestamp(expected.timestamp()), expected)
        self.assertIsNone(parse_timestamp(""))
        with self.assertRaises(ValueError):
            parse_timestamp("next tuesday")

    def test_parse_market_requires_id_and_title(self) -> None:
        market = parse_market(
            "polymarket",
            {"id": 17, "question": "Will BTC hit $150k?", "metadata": {"slug": "btc-150k"}},
        )
        self.assertEqual(market.market_id, "17")
        self.assertEqual(market.title, "Will BTC hit $150k?")
        self.assertEqual(market.metadata, {"slug": "btc-150k"})
        with self.assertRaises(ValueError):
            parse_market("polymarket", {"question": "no id"})
        with self.assertRaises(ValueError):
            parse_market("polymarket", {"id": "P1"})


class ClassificationTests(unittest.TestCase):
    def test_sports_detection(self) -> None:
        self.assertTrue(is_sports_market(EligibleMarket("KXNFLGAME-1", "kalshi", "Who wins?")))
        self.assertTrue(is_sports_market(EligibleMarket("P1", "polymarket", "Lakers vs. Celtics")))
        self.assertTrue(is_sports_market(EligibleMarket("P2", "polymarket", "Final", category="Sports")))
        self.assertFalse(is_sports_market(EligibleMarket("P3", "polymarket", "CPI above 3%?")))

    def test_intraday_detection(self) -> None:
        self.assertTrue(is_intraday(EligibleMarket("KXBTC15MIN-1", "kalshi", "Bitcoin price")))
        self.assertTrue(is_intraday(EligibleMarket("P1", "polymarket", "Bitcoin up or down 2:15PM ET")))
        self.assertFalse(is_intraday(EligibleMarket("P2", "polymarket", "Bitcoin above $100k on Dec 31?")))

    def test_settle_types(self) -> None:
        self.assertEqual(extract_settle(_item("K1", "BTC above $100k on Dec 31, 2025?")).date_type, DateType.DAY_EXACT)
        self.assertEqual(extract_settle(_item("K1", "BTC above $100k in Dec 2025?")).date_type, DateType.MONTH_END)
        self.assertEqual(extract_settle(_item("K1", "BTC above $100k in Q4 2025?")).date_type, DateType.QUARTER)
        item = _item("K1", "BTC above $100k?", close_time=NOW)
        settle = extract_settle(item)
        self.assertEqual(settle.date_type, DateType.CLOSE_TIME)
        self.assertEqual(settle.settle_date, NOW.date())
        self.assertEqual(extract_settle(_item("K1", "BTC above $100k?")).date_type, DateType.UNKNOWN)

    def test_time_bucket_floors_to_slot(self) -> None:
        market = EligibleMarket(
            "P1", "polymarket", "BTC up?", close_time=datetime(2026, 1, 5, 14, 44, tzinfo=timezone.utc)
        )
        self.assertEqual(time_bucket(market, 15), "2026-01-05T14:30")
        self.assertEqual(time_bucket(market, 60), "2026-01-05T14:00")
        self.assertIsNone(time_bucket(EligibleMarket("P2", "polymarket", "BTC up?"), 15))


class DailyVersusIntradayTests(unittest.TestCase):
    CLOSE = datetime(2025, 12, 31, 22, 0, tzinfo=timezone.utc)

    def setUp(self) -> None:
        self.daily = EligibleMarket(
            "KXBTCD-25DEC3117-T100000",
            "kalshi",
            "Bitcoin above $100,000 on Dec 31, 2025 at 5:00 PM ET?",
            close_time=self.CLOSE,
            metadata={"eventTicker": "KXBTCD-25DEC3117"},
        )
        self.window = EligibleMarket(
            "P-UPDOWN",
            "polymarket",
            "Bitcoin Up or Down - December 31, 5:00PM-5:15PM ET",
            close_time=self.CLOSE,
        )

    def test_daily_ticker_with_clock_time_is_not_intraday(self) -> None:
        self.assertFalse(is_intraday(self.daily))

    def test_daily_title_with_clock_time_is_not_intraday(self) -> None:
        market = EligibleMarket("P-DAILY", "polymarket", "Bitcoin above $100,000 on December 31 at 5:00 PM ET?")
        self.assertFalse(is_intraday(market))

    def test_time_range_title_is_intraday(self) -> None:
        self.assertTrue(is_intraday(self.window))
        ranged = EligibleMarket("P-RANGE", "polymarket", "Ethereum price 5:00PM-5:15PM ET")
        self.assertTrue(is_intraday(ranged))

    def test_intraday_ticker_wins_over_date_code(self) -> None:
        market = EligibleMarket("KXBTCUPDOWN-25DEC311700", "kalshi", "Bitcoin at 5:00 PM ET?")
        self.assertTrue(is_intraday(market))

    def test_daily_market_survives_crypto_daily_filter(self) -> None:
        items = [fingerprint_market(self.daily), fingerprint_market(self.window)]
        kept, skipped = filter_markets(items, DEFAULT_TOPICS["crypto_daily"], NOW)
        self.assertEqual([item.market_id for item in kept], [self.daily.market_id])
        self.assertEqual(skipped, {"wrong_market_type": 1})

    def test_intraday_scorer_gates_daily_market(self) -> None:
        scorer = IntradayScorer(DEFAULT_TOPICS["crypto_intraday"])
        result = scorer.score(fingerprint_market(self.daily), fingerprint_market(self.window))
        self.assertEqual(result.gate_failed, Gate.TYPE)
        self.assertEqual(result.score, 0.0)


class FilterTests(unittest.TestCase):
    def test_crypto_daily_keeps_daily_crypto_only(self) -> None:
        items = [
            _item("K1", "Bitcoin above $100,000 on Dec 31, 2025?"),
            _item("K2", "Bitcoin up or down in the next 15 minutes?"),
            _item("K3", "Will it rain in Seattle on Dec 31, 2025?"),
            _item("K4", "Lakers vs Celtics"),
        ]
        kept, skipped = filter_markets(items, DEFAULT_TOPICS["crypto_daily"], NOW)
        self.assertEqual([item.market_id for item in kept], ["K1"])
        self.assertEqual(skipped, {"wrong_market_type": 1, "not_crypto": 1, "sports": 1})

    def test_macro_requires_period_in_window(self) -> None:
        items = [
            _item("K1", "CPI above 3% in January 2026?"),
            _item("K2", "CPI above 3%?"),
            _item("K3", "CPI above 3% in January 2029?"),
        ]
        kept, skipped = filter_markets(items, DEFAULT_TOPICS["macro"], NOW)
        self.assertEqual([item.market_id for item in kept], ["K1"])
        self.assertEqual(skipped, {"no_macro_period": 1, "outside_year_window": 1})

    def test_elections_requires_race_signals(self) -> None:
        items = [
            _item("K1", "Will Trump win the 2028 presidential election?"),
            _item("K2", "Who will win the Senate race in Ohio in 2026?"),
            _item("K3", "Will it snow in Denver on Christmas?"),
        ]
        kept, skipped = filter_markets(items, DEFAULT_TOPICS["elections"], NOW)
        self.assertEqual([item.market_id for item in kept], ["K1", "K2"])
        self.assertEqual(skipped, {"not_election": 1})


if __name__ == "__main__":
    unittest.main()
