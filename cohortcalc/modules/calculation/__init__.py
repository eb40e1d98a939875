# Importing the implementations registers them for build_calculation.
from cohortcalc.modules.calculation import derived, observations  # noqa: F401
