import json
import logging
from os.path import join
from typing import List

from cohortcalc.constants.cohort import (
    BINDING,
    COHORTS,
    CONCEPTS,
    INDICATORS,
    LIBRARY,
)
from cohortcalc.constants.paths import INDICATORS_FILE, STATS_FILE
from cohortcalc.library import INDICATOR_LIBRARY
from cohortcalc.modules.cohort_handling.build import DefinitionBuilder
from cohortcalc.modules.cohort_handling.validator import DefinitionValidator
from cohortcalc.modules.indicator.indicator import CohortIndicator, IndicatorResult
from cohortcalc.modules.indicator.report import results_to_frame, summarize_results
from cohortcalc.modules.observation.source import FileObservationSource
from cohortcalc.modules.setup.config import Config

logger = logging.getLogger(__name__)


def build_indicators_from_config(cfg: Config) -> List[CohortIndicator]:
    """Validate the cohort/indicator config and build config and library indicators."""
    cohorts = cfg.get(COHORTS, {})
    indicators_cfg = cfg.get(INDICATORS, {})
    concepts = cfg.get(CONCEPTS, {})

    DefinitionValidator(cohorts, indicators_cfg).validate()
    indicators = DefinitionBuilder(cohorts, concepts).build_indicators(indicators_cfg)
    for name in cfg.get(LIBRARY, []) or []:
        indicators.append(INDICATOR_LIBRARY.build(name, concepts))

    names = [indicator.name for indicator in indicators]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValueError(f"Duplicate indicator names: {duplicates}")
    if not indicators:
        raise ValueError("No indicators configured.")
    return indicators


def get_binding(cfg: Config) -> dict:
    binding = dict(cfg.get(BINDING, {}) or {})
    if not binding:
        raise ValueError(f"Config needs a '{BINDING}' section with the reporting period.")
    return binding


def load_source(cfg: Config) -> FileObservationSource:
    paths = cfg.paths
    return FileObservationSource(paths.observations, paths.get("subjects"))


def save_results(results: List[IndicatorResult], output_dir: str) -> None:
    frame = results_to_frame(results)
    frame.to_csv(join(output_dir, INDICATORS_FILE), index=False)
    logger.info(f"Saved {len(frame)} indicators to {join(output_dir, INDICATORS_FILE)}")

    with open(join(output_dir, STATS_FILE), "w") as f:
        json.dump(summarize_results(results), f, indent=2)
