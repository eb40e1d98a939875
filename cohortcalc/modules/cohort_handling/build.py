"""
Builds cohort definitions and indicators from a report config.

Example config:
```yaml
concepts:
  TB_SCREENING: "CIEL/1659"
  HIV_TEST: "CIEL/1169"
  HIV_POSITIVE: "CIEL/703"
cohorts:
  screened:
    concept: TB_SCREENING
  hiv_positive:
    concept: HIV_TEST
    values: [HIV_POSITIVE]
  screened_and_positive:
    expression: "screened & hiv_positive"
indicators:
  tb_screened_hiv_positive:
    cohort: screened_and_positive
    mapping: "onOrAfter=${startDate},onOrBefore=${endDate}"
```
Concept names are looked up in ``concepts``; names not listed there are used
as concept ids directly.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from cohortcalc.constants.cohort import (
    AND,
    CALCULATION,
    CALCULATION_NAME,
    COHORT,
    COHORTS,
    COMBINE,
    CONCEPT,
    DENOMINATOR,
    DESCRIPTION,
    EXPRESSION,
    IDS,
    MAPPING,
    MAX_VALUE,
    MIN_VALUE,
    PARAMETERS,
    PERIOD_PARAMETERS,
    SEARCHES,
    UNIVERSE,
    VALUES,
)
from cohortcalc.functional.cohort_handling.parameters import (
    extract_search_names_from_expression,
)
from cohortcalc.modules.calculation.base import Calculation, build_calculation
from cohortcalc.modules.cohort_handling.builders import expression, mapped
from cohortcalc.modules.cohort_handling.definitions import (
    CalculationCohortDefinition,
    CohortDefinition,
    Mapped,
    ObservationCohortDefinition,
    StaticCohortDefinition,
)
from cohortcalc.modules.indicator.indicator import CohortIndicator

logger = logging.getLogger(__name__)


class DefinitionBuilder:
    """Turns validated cohort and indicator configs into definition objects."""

    def __init__(
        self,
        cohorts: Mapping[str, Dict[str, Any]],
        concepts: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.cohorts = cohorts or {}
        self.concepts = concepts or {}
        self._built: Dict[str, CohortDefinition] = {}

    def concept(self, name: Any) -> Any:
        return self.concepts.get(name, name) if isinstance(name, str) else name

    def build_cohort(self, name: str) -> CohortDefinition:
        if name not in self._built:
            if name not in self.cohorts:
                raise ValueError(f"Unknown cohort '{name}'.")
            self._built[name] = self._build_cohort(name, self.cohorts[name])
        return self._built[name]

    def _build_cohort(self, name: str, cfg: Mapping[str, Any]) -> CohortDefinition:
        if CONCEPT in cfg:
            return ObservationCohortDefinition(
                self.concept(cfg[CONCEPT]),
                values=tuple(self.concept(v) for v in cfg.get(VALUES) or ()),
                min_value=cfg.get(MIN_VALUE),
                max_value=cfg.get(MAX_VALUE),
                parameters=tuple(cfg.get(PARAMETERS, PERIOD_PARAMETERS)),
            )
        if CALCULATION in cfg:
            values = cfg.get(VALUES)
            return CalculationCohortDefinition(
                self.build_calculation(cfg[CALCULATION]),
                values=None if values is None else tuple(values),
                parameters=tuple(cfg.get(PARAMETERS, ())),
            )
        if IDS in cfg:
            return StaticCohortDefinition(frozenset(cfg[IDS]))
        if EXPRESSION in cfg:
            mappings = cfg.get(SEARCHES) or {}
            searches = {
                search: mapped(self.build_cohort(search), mappings.get(search))
                for search in extract_search_names_from_expression(cfg[EXPRESSION])
            }
            universe = cfg.get(UNIVERSE)
            parameters = cfg.get(PARAMETERS)
            return expression(
                cfg[EXPRESSION],
                searches,
                universe=None if universe is None else self.build_cohort(universe),
                parameters=parameters,
            )
        raise ValueError(f"Cohort '{name}' has no definition.")

    def build_calculation(self, cfg: Mapping[str, Any]) -> Calculation:
        """Registered calculation from ``{name: ..., **fields}``; nested configs become dependencies."""
        config = dict(cfg)
        name = config.pop(CALCULATION_NAME)
        kwargs = {}
        for key, value in config.items():
            if isinstance(value, Mapping) and CALCULATION_NAME in value:
                kwargs[key] = self.build_calculation(value)
            elif key == CONCEPT:
                kwargs[key] = self.concept(value)
            elif isinstance(value, list):
                kwargs[key] = tuple(value)
            else:
                kwargs[key] = value
        return build_calculation(name, **kwargs)

    def _mapped(self, cfg: Any) -> Mapped:
        if isinstance(cfg, str):
            cfg = {COHORT: cfg}
        return mapped(self.build_cohort(cfg[COHORT]), cfg.get(MAPPING))

    def build_indicator(self, name: str, cfg: Mapping[str, Any]) -> CohortIndicator:
        denominator = cfg.get(DENOMINATOR)
        if COHORTS in cfg:
            cohorts = tuple(self._mapped(search) for search in cfg[COHORTS])
        else:
            cohorts = self._mapped(cfg)
        return CohortIndicator(
            name,
            cohorts=cohorts,
            combine=cfg.get(COMBINE, AND),
            denominator=None if denominator is None else self._mapped(denominator),
            description=cfg.get(DESCRIPTION, ""),
        )

    def build_indicators(self, indicators: Mapping[str, Mapping[str, Any]]) -> List[CohortIndicator]:
        built = [self.build_indicator(name, cfg) for name, cfg in (indicators or {}).items()]
        logger.info(f"Built {len(built)} indicators from {len(self._built)} cohorts")
        return built
