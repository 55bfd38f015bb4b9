#!/usr/bin/env python3
"""Cluster tickets without a canonical intent and propose new intents."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

BASE_DIR = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = BASE_DIR / "config" / "config.yaml"
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from intent_core.errors import IntentInsightsError  # type: ignore  # pylint: disable=import-error
from intent_core.workflow import DiscoveryOptions, discover_intents  # type: ignore  # pylint: disable=import-error

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Cluster unmatched support tickets and compare clusters with canonical intents."
    )
    parser.add_argument(
        "--config",
        help=(
            "Path to configuration YAML file. Defaults to "
            f"{DEFAULT_CONFIG_PATH} or config/config.yaml if present."
        ),
    )
    parser.add_argument("--tickets", help="Ticket export (JSON or CSV). Overrides sources.tickets.")
    parser.add_argument(
        "--canonical",
        help="Canonical intent list (YAML or JSON). Overrides sources.canonical_intents.",
    )
    parser.add_argument(
        "--output-directory",
        help="Directory where the report bundle should be written. Overrides configuration defaults.",
    )
    parser.add_argument(
        "--formats",
        action="append",
        choices=["json", "html", "csv"],
        help="Report formats to write (default: json, html, csv). Can be supplied multiple times.",
    )
    parser.add_argument(
        "--show-console-log",
        action="store_true",
        help="Show detailed log output instead of the default progress display.",
    )
    parser.add_argument(
        "--simple-console",
        action="store_true",
        help="Use a simple console log format instead of Rich formatting.",
    )
    parser.add_argument(
        "--console-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override the console logging level.",
    )
    return parser


def run(args: argparse.Namespace) -> Path:
    options = DiscoveryOptions(
        config_path=args.config,
        tickets_path=args.tickets,
        canonical_path=args.canonical,
        output_directory=args.output_directory,
        formats=args.formats,
        disable_console=not args.show_console_log,
        simple_console=args.simple_console,
        console_level=args.console_level,
        show_console_log=args.show_console_log,
    )
    return discover_intents(options, base_dir=BASE_DIR)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        report_dir = run(args)
    except IntentInsightsError as exc:
        LOGGER.error("Intent discovery failed: %s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"Report bundle available at {report_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
