import logging
from typing import Any, Iterable, Mapping, Optional

import pandas as pd

from cohortcalc.functional.calculation.results import (
    align_to_cohort,
    cohort_index,
    empty_result,
)
from cohortcalc.modules.calculation.base import Calculation
from cohortcalc.modules.calculation.cache import CalculationCache
from cohortcalc.modules.calculation.context import EvaluationContext
from cohortcalc.modules.observation.source import ObservationSource

logger = logging.getLogger(__name__)


class CalculationEngine:
    """
    Evaluates calculations for one evaluation pass.

    All calls, including dependency calls made from inside a calculation, go
    through the pass cache, so a sub-calculation shared by several dependents
    over the same cohort, parameters and context runs once.
    """

    def __init__(
        self, source: ObservationSource, cache: Optional[CalculationCache] = None
    ) -> None:
        self.source = source
        self.cache = cache if cache is not None else CalculationCache()

    def calculate(
        self,
        calculation: Calculation,
        cohort: Iterable,
        context: EvaluationContext,
        parameters: Optional[Mapping[str, Any]] = None,
    ) -> pd.Series:
        """Result series with exactly one row per subject of ``cohort``."""
        ids = cohort_index(cohort)
        if not ids:
            return empty_result(calculation.calculation_name)
        parameters = dict(parameters or {})
        key = self.cache.make_key(calculation, ids, parameters, context)
        return self.cache.get_or_compute(
            key, lambda: self._evaluate(calculation, ids, parameters, context)
        )

    def _evaluate(
        self,
        calculation: Calculation,
        ids: list,
        parameters: dict,
        context: EvaluationContext,
    ) -> pd.Series:
        logger.debug(
            f"Evaluating {calculation.calculation_name} for {len(ids)} subjects"
        )
        result = calculation.evaluate(ids, parameters, context, self)
        return align_to_cohort(result, ids, calculation.calculation_name)

    def fetch(
        self, concept_id: str, cohort: Iterable, context: EvaluationContext
    ) -> pd.DataFrame:
        """Batch read of one concept for the cohort, as of the context date."""
        return self.source.fetch_all(concept_id, cohort, context.as_of_date)

    def universe(self, context: EvaluationContext) -> frozenset:
        """Base cohort of the context, or every subject known to the source."""
        if context.base_cohort is not None:
            return context.base_cohort
        return frozenset(self.source.entity_ids())
