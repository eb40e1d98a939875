LOG_DIR = "./outputs/logs"

EVALUATE_INDICATORS_CFG = "evaluate_indicators.yaml"
INDICATORS_FILE = "indicators.csv"
STATS_FILE = "stats.json"
