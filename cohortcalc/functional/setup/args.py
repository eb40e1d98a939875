import argparse


def get_args(default_config_path: str) -> argparse.Namespace:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--config_path",
        type=str,
        default=default_config_path,
        help="Path to the YAML configuration file.",
    )
    return parser.parse_args()
