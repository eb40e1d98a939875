import json
import os
import tempfile
import unittest

import pandas as pd
import yaml

from cohortcalc.constants.paths import EVALUATE_INDICATORS_CFG, INDICATORS_FILE, STATS_FILE
from cohortcalc.main.evaluate_indicators import main
from cohortcalc.main.helper.evaluate_indicators import build_indicators_from_config
from cohortcalc.modules.setup.config import Config, load_config
from tests.helpers.observations import make_observations


class TestEvaluateIndicatorsMain(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.TemporaryDirectory()
        root = self.tmp_dir.name
        self.observations_path = os.path.join(root, "observations.csv")
        self.output_dir = os.path.join(root, "output")
        self.config_path = os.path.join(root, "config.yaml")

        make_observations(
            [
                (1, "TB_SCREENING", "2020-01-05"),
                (1, "HIV_TEST", "2020-01-05", None, "POSITIVE"),
                (2, "TB_SCREENING", "2020-01-05"),
                (2, "HIV_TEST", "2020-01-05", None, "NEGATIVE"),
                (3, "TB_ENROLLMENT", "2019-06-01"),
                (3, "TB_VISIT", "2019-10-01"),
            ]
        ).to_csv(self.observations_path, index=False)

        self.config = {
            "logging": {"level": "INFO", "path": os.path.join(root, "logs")},
            "paths": {"observations": self.observations_path, "output": self.output_dir},
            "binding": {"startDate": "2020-01-01", "endDate": "2020-01-31"},
            "concepts": {
                "SCREENING": "TB_SCREENING",
                "POSITIVE": "POSITIVE",
                "TB_ENROLLMENT": "TB_ENROLLMENT",
                "TB_VISIT": "TB_VISIT",
            },
            "cohorts": {
                "screened": {"concept": "SCREENING"},
                "positive": {"concept": "HIV_TEST", "values": ["POSITIVE"]},
                "screened_and_positive": {"expression": "screened & positive"},
            },
            "indicators": {
                "tb_screened_hiv_positive": {
                    "cohort": "screened_and_positive",
                    "mapping": "onOrAfter=${startDate},onOrBefore=${endDate}",
                    "denominator": {
                        "cohort": "screened",
                        "mapping": "onOrAfter=${startDate},onOrBefore=${endDate}",
                    },
                }
            },
            "library": ["tb.defaulted"],
        }
        with open(self.config_path, "w") as f:
            yaml.safe_dump(self.config, f)

    def tearDown(self):
        self.tmp_dir.cleanup()

    def test_main_writes_results(self):
        main(self.config_path)

        frame = pd.read_csv(os.path.join(self.output_dir, INDICATORS_FILE))
        counts = dict(zip(frame["indicator"], frame["count"]))
        self.assertEqual(counts, {"tb_screened_hiv_positive": 1, "tb.defaulted": 1})
        share = frame.set_index("indicator").loc["tb_screened_hiv_positive", "percentage"]
        self.assertAlmostEqual(share, 50.0)

        with open(os.path.join(self.output_dir, STATS_FILE)) as f:
            stats = json.load(f)
        self.assertEqual(stats["indicators"]["tb.defaulted"], 1)
        self.assertIn("cache_hits", stats)
        self.assertTrue(os.path.exists(os.path.join(self.output_dir, EVALUATE_INDICATORS_CFG)))

    def test_invalid_config_fails_before_evaluation(self):
        cfg = Config(self.config)
        cfg.cohorts["screened_and_positive"]["expression"] = "screened & unknown"
        with self.assertRaises(ValueError):
            build_indicators_from_config(cfg)

    def test_duplicate_indicator_names(self):
        cfg = Config(self.config)
        cfg.indicators["tb.defaulted"] = {"cohort": "screened"}
        with self.assertRaises(ValueError):
            build_indicators_from_config(cfg)


class TestConfig(unittest.TestCase):
    def test_attribute_access_and_round_trip(self):
        cfg = Config({"paths": {"output": "out"}, "library": [{"name": "x"}]})
        self.assertEqual(cfg.paths.output, "out")
        self.assertEqual(cfg.library[0].name, "x")
        cfg.extra = {"a": 1}
        self.assertEqual(cfg.extra.a, 1)
        with self.assertRaises(AttributeError):
            cfg.missing

        with tempfile.TemporaryDirectory() as tmp_dir:
            path = os.path.join(tmp_dir, "cfg.yaml")
            cfg.save_to_yaml(path)
            self.assertEqual(load_config(path), cfg)

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_config("does/not/exist.yaml")


if __name__ == "__main__":
    unittest.main()
