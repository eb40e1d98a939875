import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from cohortcalc.constants.cohort import (
    AND,
    COMBINE_MODES,
    COUNT,
    DENOMINATOR_COUNT,
    END_DATE,
    INDICATOR,
    PERCENTAGE,
)
from cohortcalc.errors import BindingError
from cohortcalc.functional.cohort_handling.parameters import coerce_parameter_value
from cohortcalc.modules.calculation.context import EvaluationContext
from cohortcalc.modules.calculation.engine import CalculationEngine
from cohortcalc.modules.cohort_handling.definitions import (
    AndCohortDefinition,
    BoundCohort,
    Mapped,
    OrCohortDefinition,
    as_search,
    bind,
)
from cohortcalc.modules.observation.source import ObservationSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndicatorResult:
    name: str
    count: int
    cohort: FrozenSet = frozenset()
    denominator_count: Optional[int] = None
    denominator_cohort: Optional[FrozenSet] = None
    cache_stats: Dict[str, int] = field(default_factory=dict, compare=False)

    @property
    def percentage(self) -> Optional[float]:
        """Numerator as a percentage of the denominator; None without one or when it is empty."""
        if not self.denominator_count:
            return None
        return 100.0 * self.count / self.denominator_count

    def to_dict(self) -> dict:
        return {
            INDICATOR: self.name,
            COUNT: self.count,
            DENOMINATOR_COUNT: self.denominator_count,
            PERCENTAGE: self.percentage,
        }


@dataclass(frozen=True)
class CohortIndicator:
    """
    Count of the subjects in one or more mapped cohorts, combined with AND (default) or OR.

    With a ``denominator`` cohort the result also carries the denominator
    count, giving a proportion indicator. The indicator holds no state between
    evaluations: every call binds the whole definition tree first and then
    evaluates it with a fresh calculation cache unless an engine is passed in.

    Example usage:
    ```python
    indicator = CohortIndicator(
        "tb.screened_and_hiv_positive",
        cohorts=mapped(screened_and_positive, "onOrAfter=${startDate},onOrBefore=${endDate}"),
    )
    indicator.evaluate({"startDate": "2020-01-01", "endDate": "2020-01-31"}, source).count
    ```
    """

    name: str
    cohorts: Tuple[Mapped, ...]
    combine: str = AND
    denominator: Optional[Mapped] = None
    description: str = ""

    def __post_init__(self):
        cohorts = self.cohorts
        if not isinstance(cohorts, (list, tuple)):
            cohorts = (cohorts,)
        if not cohorts:
            raise ValueError(f"Indicator '{self.name}' needs at least one cohort.")
        object.__setattr__(self, "cohorts", tuple(as_search(c) for c in cohorts))
        if self.denominator is not None:
            object.__setattr__(self, "denominator", as_search(self.denominator))
        if self.combine not in COMBINE_MODES:
            raise ValueError(
                f"Indicator '{self.name}': combine must be one of {COMBINE_MODES}, got '{self.combine}'."
            )

    def numerator(self) -> Mapped:
        if len(self.cohorts) == 1:
            return self.cohorts[0]
        if self.combine == AND:
            return Mapped(AndCohortDefinition(self.cohorts))
        return Mapped(OrCohortDefinition(self.cohorts))

    def bind(
        self, binding: Mapping[str, Any]
    ) -> Tuple[BoundCohort, Optional[BoundCohort]]:
        """Bind numerator and denominator trees; raises BindingError before any evaluation."""
        binding = normalize_binding(binding)
        numerator = bind(self.numerator(), binding)
        denominator = None if self.denominator is None else bind(self.denominator, binding)
        return numerator, denominator

    def evaluate(
        self,
        binding: Mapping[str, Any],
        source: ObservationSource,
        as_of_date=None,
        base_cohort: Optional[Iterable] = None,
        engine: Optional[CalculationEngine] = None,
    ) -> IndicatorResult:
        binding = normalize_binding(binding)
        numerator, denominator = self.bind(binding)

        if as_of_date is None:
            as_of_date = binding.get(END_DATE)
        if as_of_date is None:
            raise BindingError(
                f"Indicator '{self.name}' needs an as-of date or an '{END_DATE}' binding."
            )
        context = EvaluationContext.create(as_of_date, binding, base_cohort)
        if engine is None:
            engine = CalculationEngine(source)

        logger.info(f"Evaluating indicator {self.name} as of {context.as_of_date.date()}")
        cohort = numerator.evaluate(context, engine)
        denominator_cohort = None
        if denominator is not None:
            denominator_cohort = denominator.evaluate(context, engine)

        result = IndicatorResult(
            name=self.name,
            count=len(cohort),
            cohort=cohort,
            denominator_count=None if denominator_cohort is None else len(denominator_cohort),
            denominator_cohort=denominator_cohort,
            cache_stats=engine.cache.stats(),
        )
        logger.info(
            f"Indicator {self.name}: {result.count}"
            + ("" if denominator_cohort is None else f" / {result.denominator_count}")
        )
        return result


def normalize_binding(binding: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Binding with date strings parsed to timestamps."""
    return {name: coerce_parameter_value(value) for name, value in (binding or {}).items()}
