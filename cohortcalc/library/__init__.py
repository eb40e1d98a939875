# Importing the namespaces registers their indicators.
from cohortcalc.library import hiv, tb  # noqa: F401
from cohortcalc.library.registry import INDICATOR_LIBRARY, register_indicator  # noqa: F401
