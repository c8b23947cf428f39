import os
import tempfile
import unittest
from unittest.mock import patch

from marketlink.config import (
    DEFAULT_TOPICS,
    apply_overrides,
    build_run_config,
    load_config,
    load_topics,
)


class ConfigTests(unittest.TestCase):
    def test_env_values_are_parsed(self) -> None:
        env = {
            "MARKETLINK_DB_PATH": "/tmp/links.db",
            "MARKETLINK_WORKERS": "4",
            "MARKETLINK_REOPEN_REJECTED": "false",
            "MARKETLINK_ENGINE_VERSION": "9.9.9",
        }
        with patch.dict(os.environ, env):
            config = load_config()
        self.assertEqual(config.db_path, "/tmp/links.db")
        self.assertEqual(config.workers, 4)
        self.assertFalse(config.reopen_rejected)
        self.assertEqual(config.engine_version, "9.9.9")

    def test_invalid_env_value_names_the_variable(self) -> None:
        with patch.dict(os.environ, {"MARKETLINK_WORKERS": "many"}):
            with self.assertRaisesRegex(ValueError, "MARKETLINK_WORKERS"):
                load_config()

    def test_overrides_are_typed(self) -> None:
        topic = apply_overrides(DEFAULT_TOPICS["macro"], {"min_score": 0.7, "max_per_right": 8})
        self.assertEqual(topic.min_score, 0.7)
        self.assertEqual(topic.max_per_right, 8)
        self.assertEqual(DEFAULT_TOPICS["macro"].max_per_right, 3)

        with self.assertRaises(ValueError):
            apply_overrides(DEFAULT_TOPICS["macro"], {"max_per_rigth": 8})
        with self.assertRaises(ValueError):
            apply_overrides(DEFAULT_TOPICS["macro"], {"max_per_right": "eight"})
        with self.assertRaises(ValueError):
            apply_overrides(DEFAULT_TOPICS["crypto_daily"], {"bracket_strategy": "median"})

    def test_topics_file_overrides_and_adds(self) -> None:
        content = """
topics:
  crypto_daily:
    bracket_mode: true
    min_score: 0.65
  fed_watch:
    scorer: macro
    title_keywords: [fomc, fed]
"""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "topics.yml")
            with open(path, "w", encoding="utf-8") as handle:
                handle.write(content)
            topics = load_topics(path)

        self.assertTrue(topics["crypto_daily"].bracket_mode)
        self.assertEqual(topics["crypto_daily"].min_score, 0.65)
        self.assertEqual(topics["fed_watch"].scorer, "macro")
        self.assertEqual(topics["fed_watch"].title_keywords, ("fomc", "fed"))
        self.assertIn("general", topics)

    def test_topics_file_sets_triage_thresholds_and_aliases(self) -> None:
        content = """
topics:
  macro:
    safe_min_score: 0.95
    reject_floor: 0.4
    extra_aliases:
      core pce: pce
      Personal Consumption Expenditures: pce
    extra_macro_entities: [pce]
"""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "topics.yml")
            with open(path, "w", encoding="utf-8") as handle:
                handle.write(content)
            topics = load_topics(path)

        macro = topics["macro"]
        self.assertEqual(macro.safe_min_score, 0.95)
        self.assertEqual(macro.reject_floor, 0.4)
        self.assertEqual(
            macro.extra_aliases,
            (("Personal Consumption Expenditures", "PCE"), ("core pce", "PCE")),
        )
        tables = macro.entity_tables()
        self.assertEqual(tables.aliases["personal consumption expenditures"], "PCE")
        self.assertIn("PCE", tables.macro_entities)
        self.assertEqual(tables.max_words, 3)
        self.assertEqual(DEFAULT_TOPICS["macro"].safe_min_score, 0.90)

    def test_extra_aliases_must_be_a_mapping(self) -> None:
        with self.assertRaisesRegex(ValueError, "extra_aliases"):
            apply_overrides(DEFAULT_TOPICS["general"], {"extra_aliases": ["pce"]})

    def test_run_config_carries_algo_version(self) -> None:
        with patch.dict(os.environ, {"MARKETLINK_ENGINE_VERSION": "3.0.6"}):
            config = load_config()
        run = build_run_config(config, "crypto_intraday", overrides={"top_k": 2})
        self.assertEqual(run.algo_version, "crypto_intraday@3.0.6")
        self.assertEqual(run.topic.top_k, 2)
        with self.assertRaises(ValueError):
            build_run_config(config, "sports")


if __name__ == "__main__":
    unittest.main()
