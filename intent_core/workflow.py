"""Higher level workflows used by the command line entry points."""
from __future__ import annotations

import logging
import os
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .audit import AuditMatcher, AuditSettings, run_audit
from .config import load_config, resolve_path, section
from .discovery import DiscoverySettings, RunContext, run_discovery
from .embeddings import DEFAULT_BATCH_SIZE, DEFAULT_MODEL, EmbeddingClient, build_canonical_index
from .errors import ConfigError
from .logging_setup import configure_logging
from .reporting import ClusterReportWriter, render_discovery_html, save_audit_text, save_report_json
from .rules import load_regex_rules
from .sources import group_assignments, load_canonical_intents, load_tickets

LOGGER = logging.getLogger(__name__)

DISCOVERY_FORMATS = ("json", "html", "csv")
AUDIT_FORMATS = ("json", "txt")


def _current_utc_timestamp() -> str:
    """Return a compact UTC timestamp for report directory names."""

    return datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")


@dataclass
class DiscoveryOptions:
    config_path: Optional[str]
    tickets_path: Optional[str] = None
    canonical_path: Optional[str] = None
    output_directory: Optional[str] = None
    formats: Optional[List[str]] = None
    disable_console: bool = False
    simple_console: bool = False
    console_level: Optional[str] = None
    show_console_log: bool = False


@dataclass
class AuditOptions:
    config_path: Optional[str]
    tickets_path: Optional[str] = None
    canonical_path: Optional[str] = None
    regex_rules_path: Optional[str] = None
    output_directory: Optional[str] = None
    formats: Optional[List[str]] = None
    disable_console: bool = False
    simple_console: bool = False
    console_level: Optional[str] = None
    show_console_log: bool = False


class _ProgressTask:
    """Lightweight textual progress indicator with optional ETA."""

    _BAR_WIDTH = 30

    def __init__(self, description: str, enabled: bool) -> None:
        self.description = description
        self.enabled = enabled
        self.start_time = time.monotonic()
        self.total: Optional[int] = None
        self.count = 0

    def update(self, count: int, total: Optional[int] = None) -> None:
        if not self.enabled:
            return
        if total is not None and total >= 0:
            self.total = total
        self.count = max(count, 0)
        elapsed = max(time.monotonic() - self.start_time, 0.0)
        bar = ""
        summary = f"{self.count}"
        if self.total and self.total > 0:
            fraction = min(max(self.count / self.total, 0.0), 1.0)
            filled = min(int(round(fraction * self._BAR_WIDTH)), self._BAR_WIDTH)
            bar = f"[{'#' * filled}{'-' * (self._BAR_WIDTH - filled)}]"
            summary = f"{self.count}/{self.total} ({fraction * 100:5.1f}%)"
        parts = [self.description]
        if bar:
            parts.append(bar)
        parts.append(summary)
        parts.append(f"elapsed {elapsed:6.1f}s")
        sys.stdout.write("\r" + " ".join(parts))
        sys.stdout.flush()

    def stage(self, message: str, percent: int) -> None:
        self.description = message[:40].ljust(40)
        self.update(percent, 100)

    def done(self) -> None:
        if not self.enabled:
            return
        self.update(self.count, self.total)
        sys.stdout.write("\n")
        sys.stdout.flush()


def _prepare_logging(config: dict, options: DiscoveryOptions | AuditOptions, *, base_dir: Path) -> None:
    logging_config = config.setdefault("logging", {})
    console_cfg = logging_config.setdefault("console", {})
    if options.disable_console:
        console_cfg["enabled"] = False
    if options.simple_console:
        console_cfg["rich_format"] = False
    if options.console_level:
        console_cfg["level"] = options.console_level
    configure_logging(config, base_dir=base_dir)


def _create_embedding_client(config: dict) -> EmbeddingClient:
    emb_cfg = section(config, "embeddings")
    base_url = emb_cfg.get("base_url")
    if not base_url:
        raise ConfigError("Configuration missing embeddings.base_url")
    api_key = emb_cfg.get("api_key") or os.environ.get(emb_cfg.get("api_key_env", "OPENAI_API_KEY"), "")
    if not api_key:
        raise ConfigError("Configuration missing embeddings.api_key and the api_key_env variable is not set")
    dimensions = emb_cfg.get("dimensions")
    return EmbeddingClient(
        base_url=base_url,
        api_key=api_key,
        model=emb_cfg.get("model", DEFAULT_MODEL),
        dimensions=int(dimensions) if dimensions else None,
        verify_ssl=emb_cfg.get("verify_ssl", True),
        timeout=int(emb_cfg.get("timeout", 60)),
        rate_limit_per_minute=emb_cfg.get("rate_limit_per_minute"),
    )


def _input_path(option_value: Optional[str], config: dict, key: str, *, base_dir: Path) -> Path:
    value = option_value or section(config, "sources").get(key)
    if not value:
        raise ConfigError(f"No input given: pass it on the command line or set sources.{key}")
    path = resolve_path(value, base=base_dir)
    if not path.exists():
        raise ConfigError(f"Input file {path} does not exist")
    return path


def _report_root(options: DiscoveryOptions | AuditOptions, config: dict, prefix: str, *, base_dir: Path) -> Path:
    reporting_cfg = section(config, "reporting")
    output_directory = resolve_path(
        options.output_directory or reporting_cfg.get("output_directory", "reports"), base=base_dir
    )
    report_root = output_directory / f"{prefix}_{_current_utc_timestamp()}"
    report_root.mkdir(parents=True, exist_ok=True)
    return report_root


def _formats(requested: Optional[List[str]], configured: Optional[List[str]], default: tuple[str, ...]) -> List[str]:
    return [fmt.lower() for fmt in (requested or configured or list(default))]


def discover_intents(options: DiscoveryOptions, *, base_dir: Optional[Path] = None) -> Path:
    base_dir = base_dir or Path.cwd()
    config = load_config(options.config_path)
    _prepare_logging(config, options, base_dir=base_dir)

    tickets = load_tickets(_input_path(options.tickets_path, config, "tickets", base_dir=base_dir))
    canonical = load_canonical_intents(_input_path(options.canonical_path, config, "canonical_intents", base_dir=base_dir))
    emb_cfg = section(config, "embeddings")
    settings = DiscoverySettings.from_config(
        section(config, "discovery"),
        section(config, "tiering"),
        batch_size=int(emb_cfg.get("batch_size", DEFAULT_BATCH_SIZE)),
    )
    client = _create_embedding_client(config)

    progress = _ProgressTask("Discovering intents", not options.show_console_log)
    context = RunContext(on_progress=progress.stage)
    try:
        report = run_discovery(tickets, canonical, client, settings=settings, context=context)
    finally:
        progress.done()
    LOGGER.info(
        "Discovery found %s clusters (%s new, %s mapped, %s ambiguous), %s noise tickets",
        report.metadata.total_clusters,
        len(report.proposed_new_intents),
        len(report.map_to_existing),
        len(report.ambiguous_clusters),
        report.metadata.noise_tickets,
    )

    report_root = _report_root(options, config, "intent_discovery", base_dir=base_dir)
    formats = _formats(options.formats, section(config, "reporting").get("discovery_formats"), DISCOVERY_FORMATS)
    if "json" in formats:
        save_report_json(report, report_root / "discovery.json")
    if "html" in formats:
        render_discovery_html(report, report_root / "discovery.html")
    if "csv" in formats:
        ClusterReportWriter(output_directory=report_root).write(report)
    return report_root


def audit_matches(options: AuditOptions, *, base_dir: Optional[Path] = None) -> Path:
    base_dir = base_dir or Path.cwd()
    config = load_config(options.config_path)
    _prepare_logging(config, options, base_dir=base_dir)

    audit_cfg = section(config, "audit")
    settings = AuditSettings.from_config(audit_cfg)
    tickets = load_tickets(_input_path(options.tickets_path, config, "tickets", base_dir=base_dir))
    canonical = load_canonical_intents(_input_path(options.canonical_path, config, "canonical_intents", base_dir=base_dir))
    assignments = group_assignments(tickets, max_examples=settings.max_examples)

    rules_file = options.regex_rules_path or audit_cfg.get("regex_rules_file")
    rules = load_regex_rules(
        audit_cfg.get("regex_rules"),
        path=resolve_path(rules_file, base=base_dir) if rules_file else None,
    )

    client = _create_embedding_client(config)
    batch_size = int(section(config, "embeddings").get("batch_size", DEFAULT_BATCH_SIZE))
    index = build_canonical_index(canonical, client, batch_size=batch_size)
    matcher = AuditMatcher(
        index=index,
        rules=rules,
        provider=client,
        settings=settings,
        canonical_intents=canonical,
    )

    progress = _ProgressTask("Auditing assigned intents", not options.show_console_log)
    try:
        report = run_audit(assignments, matcher, on_progress=progress.update)
    finally:
        progress.done()

    report_root = _report_root(options, config, "match_audit", base_dir=base_dir)
    formats = _formats(options.formats, section(config, "reporting").get("audit_formats"), AUDIT_FORMATS)
    if "json" in formats:
        save_report_json(report, report_root / "audit.json")
    if "txt" in formats:
        save_audit_text(report, report_root / "audit_report.txt")
    LOGGER.info(
        "Audit complete: %s correct, %s incorrect, %s ambiguous, %s promotion candidates",
        report.summary.correct,
        report.summary.incorrect,
        report.summary.ambiguous,
        report.summary.unmatched,
    )
    return report_root
