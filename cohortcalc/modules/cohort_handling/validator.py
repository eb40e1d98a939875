from typing import Any, Dict, Mapping

from cohortcalc.constants.cohort import (
    AND,
    CALCULATION,
    CALCULATION_NAME,
    COHORT,
    COHORTS,
    COMBINE,
    COMBINE_MODES,
    CONCEPT,
    DENOMINATOR,
    EXPRESSION,
    IDS,
    MAPPING,
    MAX_VALUE,
    MIN_VALUE,
    PARAMETERS,
    SEARCHES,
    UNIVERSE,
    VALUES,
)
from cohortcalc.errors import BindingError
from cohortcalc.functional.cohort_handling.parameters import (
    extract_search_names_from_expression,
    is_valid_search_name,
)
from cohortcalc.modules.calculation.base import CALCULATIONS
from cohortcalc.modules.cohort_handling.parameters import ParameterMapping


class DefinitionValidator:
    """
    Validates cohort and indicator definitions of a report config.

    Each cohort must have exactly one of:
    - concept (with optional values, min_value/max_value)
    - calculation (a registered calculation, with optional values)
    - expression (combining other cohorts, with optional searches mappings)
    - ids (a fixed list of subjects)

    Indicators must reference known cohorts with parseable mappings.
    """

    def __init__(
        self,
        cohorts: Mapping[str, Dict[str, Any]],
        indicators: Mapping[str, Dict[str, Any]] = None,
    ):
        self.cohorts = cohorts or {}
        self.indicators = indicators or {}
        self.names = list(self.cohorts.keys())

    def validate(self) -> None:
        """
        Validate all cohort and indicator definitions.

        Raises:
            ValueError: If any validation fails
        """
        for name, cfg in self.cohorts.items():
            self._validate_name(name)
            self._validate_exclusivity(name, cfg)
            if CONCEPT in cfg:
                self._validate_range(name, cfg.get(MIN_VALUE), cfg.get(MAX_VALUE))
            if CALCULATION in cfg:
                self._validate_calculation(name, cfg[CALCULATION])
            if EXPRESSION in cfg:
                self.validate_expression(name, cfg[EXPRESSION])
                for search, mapping in (cfg.get(SEARCHES) or {}).items():
                    if search not in self.names:
                        raise ValueError(f"'{name}': unknown search '{search}' in searches.")
                    self._validate_mapping(name, mapping)
            if IDS in cfg and not isinstance(cfg[IDS], list):
                raise ValueError(f"'{name}': ids must be a list.")
            if UNIVERSE in cfg and cfg[UNIVERSE] not in self.names:
                raise ValueError(f"'{name}': unknown universe cohort '{cfg[UNIVERSE]}'.")
            if PARAMETERS in cfg and not isinstance(cfg[PARAMETERS], list):
                raise ValueError(f"'{name}': parameters must be a list of names.")
        self._validate_acyclic()

        for name, cfg in self.indicators.items():
            self._validate_indicator(name, cfg)

    def _validate_name(self, name: str) -> None:
        if not is_valid_search_name(str(name)):
            raise ValueError(f"Invalid cohort name '{name}'.")

    def _validate_exclusivity(self, name: str, cfg: Dict[str, Any]) -> None:
        """
        Ensure cohort has exactly one type of definition.

        Raises:
            ValueError: If cohort has no definition or multiple definitions
        """
        if not isinstance(cfg, Mapping):
            raise ValueError(f"'{name}' must be a mapping.")
        flags = {
            CONCEPT: CONCEPT in cfg,
            CALCULATION: CALCULATION in cfg,
            EXPRESSION: EXPRESSION in cfg,
            IDS: IDS in cfg,
        }
        if not any(flags.values()):
            raise ValueError(
                f"'{name}' must define one of: concept, calculation, expression, or ids."
            )
        if sum(flags.values()) > 1:
            raise ValueError(
                f"'{name}' defines multiple kinds {list(f for f, v in flags.items() if v)}; only one allowed."
            )
        if VALUES in cfg and not isinstance(cfg[VALUES], list):
            raise ValueError(f"'{name}': values must be a list.")

    def _validate_range(self, name: str, lo: Any, hi: Any) -> None:
        for val, key in ((lo, MIN_VALUE), (hi, MAX_VALUE)):
            if val is not None and not isinstance(val, (int, float)):
                raise ValueError(f"'{name}': {key} must be a number.")
        if lo is not None and hi is not None and lo > hi:
            raise ValueError(f"'{name}': min_value > max_value.")

    def _validate_calculation(self, name: str, cfg: Any) -> None:
        if not isinstance(cfg, Mapping) or CALCULATION_NAME not in cfg:
            raise ValueError(f"'{name}': calculation needs a '{CALCULATION_NAME}'.")
        if cfg[CALCULATION_NAME] not in CALCULATIONS:
            raise ValueError(
                f"'{name}': unknown calculation '{cfg[CALCULATION_NAME]}'. "
                f"Registered: {sorted(CALCULATIONS)}"
            )
        for value in cfg.values():
            if isinstance(value, Mapping) and CALCULATION_NAME in value:
                self._validate_calculation(name, value)

    def _validate_mapping(self, name: str, mapping: Any) -> None:
        try:
            ParameterMapping.parse(mapping)
        except BindingError as e:
            raise ValueError(f"'{name}': {e}") from e

    def validate_expression(self, name: str, expr: str) -> None:
        """
        Validate expression references existing cohorts other than itself.

        Raises:
            ValueError: If expression is invalid
        """
        if not isinstance(expr, str) or not expr.strip():
            raise ValueError(f"'{name}': expression must be a non-empty string.")
        searches = extract_search_names_from_expression(expr)
        if not searches:
            raise ValueError(f"'{name}': expression '{expr}' references no cohorts.")
        invalid = [s for s in searches if s not in self.names]
        if invalid:
            raise ValueError(f"'{name}': unknown cohorts in expression: {invalid}")
        if name in searches:
            raise ValueError(f"'{name}': cannot reference itself in its expression.")

    def _validate_acyclic(self) -> None:
        """Expressions and universes must not reference each other in a cycle."""
        state = {}

        def visit(name, path):
            if state.get(name) == "done":
                return
            if state.get(name) == "active":
                raise ValueError(f"Cyclic cohort references: {' -> '.join(path + [name])}")
            state[name] = "active"
            cfg = self.cohorts[name]
            refs = []
            if EXPRESSION in cfg:
                refs.extend(extract_search_names_from_expression(cfg[EXPRESSION]))
            if UNIVERSE in cfg:
                refs.append(cfg[UNIVERSE])
            for ref in refs:
                visit(ref, path + [name])
            state[name] = "done"

        for name in self.names:
            visit(name, [])

    def _validate_search_ref(self, name: str, cfg: Any, label: str) -> None:
        if isinstance(cfg, str):
            cfg = {COHORT: cfg}
        if not isinstance(cfg, Mapping) or cfg.get(COHORT) not in self.names:
            raise ValueError(f"Indicator '{name}': unknown {label} cohort.")
        self._validate_mapping(name, cfg.get(MAPPING))

    def _validate_indicator(self, name: str, cfg: Any) -> None:
        if not isinstance(cfg, Mapping) or (COHORT in cfg) == (COHORTS in cfg):
            raise ValueError(f"Indicator '{name}' needs exactly one of '{COHORT}' or '{COHORTS}'.")
        if COHORT in cfg:
            self._validate_search_ref(name, cfg, "numerator")
        else:
            searches = cfg[COHORTS]
            if not isinstance(searches, list) or not searches:
                raise ValueError(f"Indicator '{name}': '{COHORTS}' must be a non-empty list.")
            for search in searches:
                self._validate_search_ref(name, search, "numerator")
        if cfg.get(COMBINE, AND) not in COMBINE_MODES:
            raise ValueError(f"Indicator '{name}': '{COMBINE}' must be one of {COMBINE_MODES}.")
        denominator = cfg.get(DENOMINATOR)
        if denominator is not None:
            self._validate_search_ref(name, denominator, "denominator")
