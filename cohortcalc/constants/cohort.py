# === Parameter names ===
END_DATE = "endDate"
ON_OR_AFTER = "onOrAfter"
ON_OR_BEFORE = "onOrBefore"
PERIOD_PARAMETERS = (ON_OR_AFTER, ON_OR_BEFORE)

# === Parameter expression units ===
DAYS = "d"
MONTHS = "m"
YEARS = "y"
OFFSET_UNITS = (DAYS, MONTHS, YEARS)

# === Window boundary modes ===
BEFORE_OR_EQUAL = "before_or_equal"  # (anchor - W < t < anchor) or t == anchor
ON_OR_BEFORE_ANCHOR = "on_or_before"  # anchor - W <= t <= anchor
WINDOW_BOUNDARIES = (BEFORE_OR_EQUAL, ON_OR_BEFORE_ANCHOR)
DEFAULT_WINDOW_DAYS = 91

# === Classification values ===
YES = "Yes"
NO = "No"

# === Composition ===
AND = "and"
OR = "or"
COMBINE_MODES = (AND, OR)
ALLOWED_OPERATORS = {"|", "&", "~", "and", "or", "not", "(", ")"}

# === Report Config Keys (used in YAML configuration) ===
CONCEPTS = "concepts"
COHORTS = "cohorts"
INDICATORS = "indicators"
LIBRARY = "library"
BINDING = "binding"
CONCEPT = "concept"
VALUES = "values"
MIN_VALUE = "min_value"
MAX_VALUE = "max_value"
PARAMETERS = "parameters"
EXPRESSION = "expression"
SEARCHES = "searches"
CALCULATION = "calculation"
CALCULATION_NAME = "name"
IDS = "ids"
COHORT = "cohort"
UNIVERSE = "universe"
MAPPING = "mapping"
COMBINE = "combine"
DENOMINATOR = "denominator"
DESCRIPTION = "description"

# === Statistics ===
INDICATOR = "indicator"
COUNT = "count"
DENOMINATOR_COUNT = "denominator_count"
PERCENTAGE = "percentage"
CACHE_HITS = "cache_hits"
CACHE_MISSES = "cache_misses"
