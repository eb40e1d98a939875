"""
Evaluation of a set of indicators for one reporting period.

Every indicator is bound before any of them is evaluated, so a configuration
mistake anywhere in the report fails the run before data is read. Each
indicator gets its own calculation engine and cache; with ``max_workers > 1``
indicators run on a thread pool and share only the read-only source.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable, List, Mapping, Optional

import pandas as pd
from tqdm import tqdm

from cohortcalc.constants.cohort import (
    CACHE_HITS,
    CACHE_MISSES,
    COUNT,
    DENOMINATOR_COUNT,
    INDICATOR,
    PERCENTAGE,
)
from cohortcalc.errors import CohortCalcError, IndicatorEvaluationError
from cohortcalc.modules.indicator.indicator import (
    CohortIndicator,
    IndicatorResult,
    normalize_binding,
)
from cohortcalc.modules.observation.source import ObservationSource

logger = logging.getLogger(__name__)

# Failures an indicator can raise for a given binding and source.
EVALUATION_ERRORS = (CohortCalcError, ValueError, SyntaxError)


def evaluate_indicators(
    indicators: Iterable[CohortIndicator],
    binding: Mapping[str, Any],
    source: ObservationSource,
    as_of_date=None,
    base_cohort: Optional[Iterable] = None,
    max_workers: int = 1,
) -> List[IndicatorResult]:
    """
    Evaluate ``indicators`` for one binding; results keep the input order.

    Raises:
        IndicatorEvaluationError: for the first indicator that fails, with the
            original error as ``cause``.
    """
    indicators = list(indicators)
    binding = normalize_binding(binding)
    base_cohort = None if base_cohort is None else frozenset(base_cohort)

    for indicator in indicators:
        try:
            indicator.bind(binding)
        except EVALUATION_ERRORS as e:
            raise IndicatorEvaluationError(indicator.name, e) from e
    logger.info(f"Bound {len(indicators)} indicators")

    def evaluate_one(indicator: CohortIndicator) -> IndicatorResult:
        try:
            return indicator.evaluate(binding, source, as_of_date, base_cohort)
        except EVALUATION_ERRORS as e:
            raise IndicatorEvaluationError(indicator.name, e) from e

    if max_workers <= 1:
        return [
            evaluate_one(indicator)
            for indicator in tqdm(indicators, desc="Evaluating indicators")
        ]
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        return list(executor.map(evaluate_one, indicators))


def results_to_frame(results: Iterable[IndicatorResult]) -> pd.DataFrame:
    rows = [result.to_dict() for result in results]
    return pd.DataFrame(rows, columns=[INDICATOR, COUNT, DENOMINATOR_COUNT, PERCENTAGE])


def summarize_results(results: Iterable[IndicatorResult]) -> dict:
    """Run statistics: per-indicator counts and total cache hits/misses."""
    results = list(results)
    return {
        "indicators": {result.name: result.count for result in results},
        CACHE_HITS: sum(r.cache_stats.get(CACHE_HITS, 0) for r in results),
        CACHE_MISSES: sum(r.cache_stats.get(CACHE_MISSES, 0) for r in results),
    }
