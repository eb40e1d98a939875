# === Observation columns ===
PID_COL = "subject_id"
CONCEPT_COL = "code"
TIMESTAMP_COL = "time"
VALUE_COL = "numeric_value"
TEXT_VALUE_COL = "text_value"

OBSERVATION_COLUMNS = [PID_COL, CONCEPT_COL, TIMESTAMP_COL, VALUE_COL, TEXT_VALUE_COL]
REQUIRED_OBSERVATION_COLUMNS = [PID_COL, CONCEPT_COL, TIMESTAMP_COL]
