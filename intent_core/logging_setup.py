"""Logging configuration for the intent insight scripts."""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, Dict

from rich.logging import RichHandler

from .config import resolve_path


def configure_logging(config: Dict[str, Any], *, base_dir: Path | None = None) -> None:
    """Configure logging sinks based on YAML configuration."""
    logging.captureWarnings(True)
    logging.getLogger().handlers.clear()
    logging.getLogger().setLevel(logging.DEBUG)

    logging_config = config.get("logging") or {}
    console_cfg = logging_config.get("console") or {}
    file_cfg = logging_config.get("file") or {}

    if console_cfg.get("enabled", True):
        level = console_cfg.get("level", "INFO")
        if console_cfg.get("rich_format", False):
            handler = RichHandler(level=level, rich_tracebacks=True)
            formatter = logging.Formatter("%(message)s")
        else:
            handler = logging.StreamHandler(sys.stdout)
            handler.setLevel(level)
            formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        handler.setFormatter(formatter)
        logging.getLogger().addHandler(handler)

    if file_cfg.get("enabled", True):
        file_path = resolve_path(file_cfg.get("path", "logs/intent_insights.log"), base=base_dir)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(file_path, mode="a", encoding="utf-8")
        handler.setLevel(file_cfg.get("level", "DEBUG"))
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        logging.getLogger().addHandler(handler)
