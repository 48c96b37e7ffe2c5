"""Entry point for the Web Analyzer proxy."""

import argparse
import logging
import sys

from analyzer.app import create_app
from analyzer.config import load_config


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Web Analyzer proxy")
    parser.add_argument(
        "--config", default=None,
        help="Path to YAML config file (default: $CONFIG_PATH)",
    )
    return parser


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
        stream=sys.stderr,
    )
    args = build_cli_parser().parse_args()

    config = load_config(args.config)
    app = create_app(config)

    server = config["server"]
    logging.getLogger(__name__).info(
        "Server running at http://%s:%d (max_logs=%d)",
        server["host"], server["port"], config["storage"]["max_logs"],
    )
    app.run(host=server["host"], port=server["port"], debug=server["debug"],
            threaded=True, use_reloader=False)


if __name__ == "__main__":
    main()
