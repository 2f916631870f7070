"""
LLM Profiles - Module Entry Point

Run with: python -m llm_profiles [--config path/to/profiles.yaml]
Open: http://localhost:5050/api/llm/profiles
"""

import argparse
import logging

from .config import load_config
from .web.app import run_server


def main() -> None:
    parser = argparse.ArgumentParser(description="LLM provider profile server")
    parser.add_argument("--config", help="Path to profiles.yaml")
    parser.add_argument("--debug", action="store_true", help="Enable Flask debug mode")
    args = parser.parse_args()

    config = load_config(args.config)
    logging.basicConfig(
        level=getattr(logging, str(config["logging"].get("level", "INFO")).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    run_server(config, debug=args.debug)


if __name__ == "__main__":
    main()
