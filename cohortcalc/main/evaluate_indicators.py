"""
Evaluates a report's indicators for one reporting period.

The script:
1. Loads and validates the cohort and indicator definitions of the config
2. Adds the requested indicators from the built-in library
3. Binds every indicator to the reporting period before reading any data
4. Evaluates the indicators against the observations file
5. Saves the counts (and percentages for proportion indicators) to
   ``indicators.csv`` and run statistics to ``stats.json``
"""

import logging

from cohortcalc.functional.setup.args import get_args
from cohortcalc.main.helper.evaluate_indicators import (
    build_indicators_from_config,
    get_binding,
    load_source,
    save_results,
)
from cohortcalc.modules.indicator.report import evaluate_indicators
from cohortcalc.modules.setup.config import load_config
from cohortcalc.modules.setup.directory import DirectoryPreparer

CONFIG_PATH = "./cohortcalc/configs/evaluate_indicators.yaml"


def main(config_path: str):
    """Evaluate the configured indicators and save the results."""
    cfg = load_config(config_path)
    DirectoryPreparer(cfg).setup_evaluate_indicators()

    logger = logging.getLogger("evaluate_indicators")

    logger.info("Building indicators")
    indicators = build_indicators_from_config(cfg)
    binding = get_binding(cfg)
    logger.info(f"Binding: {binding}")

    source = load_source(cfg)
    results = evaluate_indicators(
        indicators,
        binding,
        source,
        as_of_date=cfg.get("as_of_date"),
        max_workers=cfg.get("max_workers", 1),
    )
    for result in results:
        logger.info(f"{result.name}: {result.count}")

    logger.info("Saving results")
    save_results(results, cfg.paths.output)
    logger.info("Finished")


if __name__ == "__main__":
    args = get_args(CONFIG_PATH)
    main(args.config_path)
