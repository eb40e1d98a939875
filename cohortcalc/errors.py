"""Exceptions raised while evaluating calculations, cohorts and indicators.

Absence of data for a subject is never an exception: it travels through the
results as an explicit absent value.
"""


class CohortCalcError(Exception):
    """Base class for evaluation errors."""


class DataAccessError(CohortCalcError):
    """The observation source was unreachable or returned a malformed response."""


class BindingError(CohortCalcError, ValueError):
    """A parameter mapping could not be resolved against the supplied binding."""


class UniverseError(CohortCalcError):
    """A complement was requested without a universe cohort to take it against."""


class IndicatorEvaluationError(CohortCalcError):
    """Raised by the reporting layer when an indicator could not be evaluated.

    The originating error is kept in ``cause`` (and chained as ``__cause__``) so
    callers can tell an infrastructure problem, worth retrying, from a
    configuration problem that needs fixing.
    """

    def __init__(self, indicator: str, cause: Exception):
        self.indicator = indicator
        self.cause = cause
        kind = "data access" if self.is_retryable else "configuration"
        super().__init__(
            f"Indicator '{indicator}' failed ({kind} error): {cause}"
        )

    @property
    def is_retryable(self) -> bool:
        return isinstance(self.cause, DataAccessError)
