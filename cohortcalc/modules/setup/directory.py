import logging
import os
from os.path import exists, join

from cohortcalc.constants.paths import EVALUATE_INDICATORS_CFG, LOG_DIR
from cohortcalc.modules.setup.config import Config

logger = logging.getLogger(__name__)  # Get the logger for this module

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(log_dir: str, name: str, level: int = logging.INFO) -> str:
    """Log to ``<log_dir>/<name>.log`` and the console. Returns the log file path."""
    os.makedirs(log_dir, exist_ok=True)
    log_file = join(log_dir, f"{name}.log")

    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    if not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in root.handlers
    ):
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(formatter)
        root.addHandler(console)
    return log_file


class DirectoryPreparer:
    """Validates paths of a run config, creates output directories and sets up logging."""

    def __init__(self, cfg: Config) -> None:
        self.cfg = cfg
        self.paths = cfg.get("paths", Config())

    def get_path(self, name: str) -> str:
        if name not in self.paths:
            raise ValueError(f"Missing path '{name}' in the paths configuration.")
        return self.paths[name]

    def check_file(self, name: str) -> str:
        path = self.get_path(name)
        if not exists(path):
            raise FileNotFoundError(f"Path '{name}' does not exist: {path}")
        return path

    def create_directory(self, name: str) -> str:
        path = self.get_path(name)
        os.makedirs(path, exist_ok=True)
        return path

    def setup_logging(self, name: str) -> None:
        log_dir = self.cfg.get("logging", {}).get("path", LOG_DIR)
        level = getattr(logging, str(self.cfg.get("logging", {}).get("level", "INFO")).upper())
        log_file = setup_logging(log_dir, name, level)
        logger.info(f"Logging to {log_file}")

    def write_config(self, target: str, name: str) -> None:
        self.cfg.save_to_yaml(join(self.get_path(target), name))

    def setup_evaluate_indicators(self) -> None:
        """
        Validates path config and sets up directories for evaluate_indicators.
        """
        # Setup logging
        self.setup_logging("evaluate_indicators")

        # Validate and create directories
        self.check_file("observations")
        if "subjects" in self.paths:
            self.check_file("subjects")
        self.create_directory("output")

        # Write config in output directory.
        self.write_config("output", name=EVALUATE_INDICATORS_CFG)
