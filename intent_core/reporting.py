"""Assemble, format and persist discovery and audit reports."""
from __future__ import annotations

import csv
import dataclasses
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import numpy as np
from jinja2 import Template

from .models import (
    AuditFinding,
    Classification,
    ClusterSummary,
    FixType,
    PromotionCandidate,
    TicketRecord,
    Verdict,
)

LOGGER = logging.getLogger(__name__)

NOISE_SAMPLE_LIMIT = 50
PROMOTION_TABLE_LIMIT = 15
RULE = "=" * 64

CLASSIFICATION_ORDER = {
    Classification.INCORRECT: 0,
    Classification.AMBIGUOUS: 1,
    Classification.CORRECT: 2,
}
BUCKETS = {
    Verdict.PROPOSE_NEW_INTENT: "proposed_new_intents",
    Verdict.MAP_TO_EXISTING: "map_to_existing",
    Verdict.AMBIGUOUS: "ambiguous_clusters",
}


@dataclass
class DiscoveryMetadata:
    run_at: str
    source_tickets: int = 0
    eligible_tickets: int = 0
    embedded_tickets: int = 0
    total_clusters: int = 0
    clustered_tickets: int = 0
    noise_tickets: int = 0
    embedding_errors: int = 0
    processing_time_ms: int = 0
    completed: bool = True


@dataclass
class DiscoveryReport:
    metadata: DiscoveryMetadata
    proposed_new_intents: List[ClusterSummary] = field(default_factory=list)
    map_to_existing: List[ClusterSummary] = field(default_factory=list)
    ambiguous_clusters: List[ClusterSummary] = field(default_factory=list)
    noise_sample: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def clusters(self) -> List[ClusterSummary]:
        return self.proposed_new_intents + self.map_to_existing + self.ambiguous_clusters


@dataclass
class AuditSummary:
    total_intents: int = 0
    matched: int = 0
    unmatched: int = 0
    correct: int = 0
    incorrect: int = 0
    ambiguous: int = 0
    embedding_errors: int = 0


@dataclass
class AuditReport:
    run_at: str
    findings: List[AuditFinding] = field(default_factory=list)
    promotion_candidates: List[PromotionCandidate] = field(default_factory=list)
    summary: AuditSummary = field(default_factory=AuditSummary)
    completed: bool = True


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


# -- Discovery ------------------------------------------------------------------

def noise_entries(tickets: Sequence[TicketRecord], limit: int = NOISE_SAMPLE_LIMIT) -> List[Dict[str, Any]]:
    return [
        {"ticket_id": ticket.id, "question": ticket.text[:200], "intent": ticket.prior_intent}
        for ticket in tickets[:limit]
    ]


def assemble_discovery_report(
    summaries: Iterable[ClusterSummary],
    noise: Sequence[TicketRecord],
    *,
    source_tickets: int,
    eligible_tickets: int,
    embedded_tickets: int,
    embedding_errors: int = 0,
    total_clusters: Optional[int] = None,
    clustered_tickets: Optional[int] = None,
    processing_time_ms: int = 0,
    completed: bool = True,
    noise_limit: int = NOISE_SAMPLE_LIMIT,
    run_at: Optional[str] = None,
) -> DiscoveryReport:
    """Partition cluster summaries into verdict buckets sorted by size.

    ``total_clusters`` and ``clustered_tickets`` default to the bucket totals.
    A cancelled run passes the clustering totals so clusters that were formed
    but never summarised still count.
    """
    report = DiscoveryReport(metadata=DiscoveryMetadata(run_at=run_at or utc_timestamp()))
    for summary in summaries:
        getattr(report, BUCKETS[summary.verdict.verdict]).append(summary)
    for bucket in BUCKETS.values():
        # list.sort is stable, so equal sizes keep cluster id order.
        getattr(report, bucket).sort(key=lambda item: item.size, reverse=True)
    report.noise_sample = noise_entries(noise, noise_limit)
    clusters = report.clusters
    report.metadata = DiscoveryMetadata(
        run_at=report.metadata.run_at,
        source_tickets=source_tickets,
        eligible_tickets=eligible_tickets,
        embedded_tickets=embedded_tickets,
        total_clusters=len(clusters) if total_clusters is None else total_clusters,
        clustered_tickets=sum(item.size for item in clusters) if clustered_tickets is None else clustered_tickets,
        noise_tickets=len(noise),
        embedding_errors=embedding_errors,
        processing_time_ms=processing_time_ms,
        completed=completed,
    )
    return report


def bucket_counts(report: Union[DiscoveryReport, Mapping[str, Any]]) -> Dict[str, int]:
    """Re-aggregate cluster counts from the buckets of a report or its JSON form."""
    data = report_to_dict(report) if isinstance(report, DiscoveryReport) else report
    counts: Dict[str, int] = {}
    total_clusters = 0
    clustered = 0
    for bucket in BUCKETS.values():
        items = data.get(bucket) or []
        counts[bucket] = len(items)
        total_clusters += len(items)
        clustered += sum(int(item["size"]) for item in items)
    counts["total_clusters"] = total_clusters
    counts["clustered_tickets"] = clustered
    counts["noise_tickets"] = int((data.get("metadata") or {}).get("noise_tickets", 0))
    counts["embedded_tickets"] = clustered + counts["noise_tickets"]
    return counts


# -- Audit ----------------------------------------------------------------------

def sort_findings(findings: Iterable[AuditFinding]) -> List[AuditFinding]:
    """Worst classification first, then by ticket count descending."""
    return sorted(
        findings,
        key=lambda finding: (CLASSIFICATION_ORDER[finding.classification], -finding.ticket_count),
    )


def sort_candidates(candidates: Iterable[PromotionCandidate]) -> List[PromotionCandidate]:
    return sorted(candidates, key=lambda candidate: -candidate.ticket_count)


def assemble_audit_report(
    findings: Iterable[AuditFinding],
    candidates: Iterable[PromotionCandidate],
    *,
    total_intents: int,
    completed: bool = True,
    embedding_errors: int = 0,
    run_at: Optional[str] = None,
) -> AuditReport:
    ordered = sort_findings(findings)
    ranked = sort_candidates(candidates)
    summary = AuditSummary(
        total_intents=total_intents,
        matched=len(ordered),
        unmatched=len(ranked),
        correct=sum(1 for item in ordered if item.classification is Classification.CORRECT),
        incorrect=sum(1 for item in ordered if item.classification is Classification.INCORRECT),
        ambiguous=sum(1 for item in ordered if item.classification is Classification.AMBIGUOUS),
        embedding_errors=embedding_errors,
    )
    return AuditReport(
        run_at=run_at or utc_timestamp(),
        findings=ordered,
        promotion_candidates=ranked,
        summary=summary,
        completed=completed,
    )


def _section(lines: List[str], title: str) -> None:
    lines.extend([RULE, f"  {title}", RULE, ""])


def _fix_lines(finding: AuditFinding) -> List[str]:
    fix = finding.proposed_fix
    if fix is None:
        return []
    lines = ["   -- Proposed fix --"]
    if fix.fix_type is FixType.TIGHTEN_REGEX:
        lines.append("   Type: Tighten regex")
        lines.append(f"   Suggested: {fix.suggested_regex}")
    elif fix.fix_type is FixType.ADJUST_NORMALIZATION:
        lines.append("   Type: Adjust normalization dictionary")
        for source, target in fix.normalization_replacements.items():
            lines.append(f"   {source} -> {target}")
    else:
        lines.append("   Type: Add disambiguation question")
        lines.append(f'   Q: "{fix.disambiguation_question}"')
        for option in fix.disambiguation_options:
            lines.append(f"     - {option}")
    return lines


def _action_label(candidate: PromotionCandidate) -> str:
    if candidate.recommended_action == "merge_with_existing":
        return f"MERGE -> {candidate.merge_target}"
    if candidate.recommended_action == "create_canonical_now":
        return "CREATE NOW"
    return "WAIT"


def format_audit_report(report: AuditReport) -> str:
    """Render the audit as a plain-text report for reviewers."""
    summary = report.summary
    lines: List[str] = []
    _section(lines, "MATCH CORRECTNESS AUDIT + PROMOTION PLAN")
    lines.append(f"  Generated: {report.run_at}")
    if not report.completed:
        lines.append("  NOTE: run was cancelled; results are partial")
    lines.append("")

    _section(lines, "SUMMARY")
    lines.append(f"  Assigned intents audited:      {summary.total_intents}")
    lines.append(f"  Matched to canonical intents:  {summary.matched}")
    lines.append(f"  Unmatched (promotion queue):   {summary.unmatched}")
    lines.append(f"  CORRECT:    {summary.correct}")
    lines.append(f"  INCORRECT:  {summary.incorrect}")
    lines.append(f"  AMBIGUOUS:  {summary.ambiguous}")
    if summary.embedding_errors:
        lines.append(f"  Embedding errors: {summary.embedding_errors} (affected intents may be misreported)")
    lines.append("")

    _section(lines, "PART 1: MATCH CORRECTNESS AUDIT")
    for finding in report.findings:
        match = finding.match
        lines.append(f"[{finding.classification.value}] {finding.assigned_intent} -> {match.matched_intent_id}")
        lines.append(
            f"   Method: {match.method.value} | Score: {match.score:.3f} | Tickets: {finding.ticket_count}"
        )
        lines.append(f"   Reason: {finding.reason}")
        if finding.reference_preview:
            lines.append(f"   Reference: {finding.reference_preview[:150]}")
        lines.append("   Example queries:")
        for example in finding.example_queries[:5]:
            suffix = "..." if len(example) > 120 else ""
            lines.append(f'     - "{example[:120]}{suffix}"')
        lines.extend(_fix_lines(finding))
        lines.append("")

    _section(lines, "PART 2: PRIORITIZED FIX LIST")
    fixes = [finding for finding in report.findings if finding.classification is not Classification.CORRECT]
    if not fixes:
        lines.append("  No fixes needed, all matches are correct.")
    else:
        lines.append(f"  {len(fixes)} items need attention:")
        lines.append("")
        for rank, finding in enumerate(fixes, start=1):
            fix_type = finding.proposed_fix.fix_type.value if finding.proposed_fix else "manual review"
            lines.append(
                f"  {rank}. [{finding.classification.value}] {finding.assigned_intent} -> "
                f"{finding.match.matched_intent_id} ({finding.ticket_count} tickets)"
            )
            lines.append(f"     Fix: {fix_type}")
    lines.append("")

    _section(lines, f"PART 3: PROMOTION PLAN (top {PROMOTION_TABLE_LIMIT} unmatched intents)")
    top = report.promotion_candidates[:PROMOTION_TABLE_LIMIT]
    lines.append(f"  {'Rank':>4} | {'Intent ID':<30} | {'Tickets':>7} | {'Category':<22} | Type  | Endpoint | Action")
    lines.append("  " + "-" * 100)
    for rank, candidate in enumerate(top, start=1):
        kind = "TRANS" if candidate.is_transactional else "INFO "
        lines.append(
            f"  {rank:>4} | {candidate.intent_id:<30} | {candidate.ticket_count:>7} | "
            f"{candidate.category:<22} | {kind} | {candidate.endpoint_readiness:<8} | {_action_label(candidate)}"
        )
    lines.append("")
    lines.append("  -- Detailed promotion candidates --")
    for rank, candidate in enumerate(top, start=1):
        lines.append(f"  {rank}. {candidate.intent_id}")
        lines.append(
            f"     Tickets: {candidate.ticket_count} | Confidence: {candidate.avg_confidence:.3f} | "
            f"Category: {candidate.category} / {candidate.subcategory}"
        )
        lines.append(
            f"     Type: {'Transactional' if candidate.is_transactional else 'Informational'} | "
            f"Endpoint: {candidate.endpoint_readiness}"
        )
        lines.append(f"     Action: {_action_label(candidate)}")
        lines.append(f"     Reasoning: {candidate.reasoning}")
    lines.append("")
    lines.append(f"  -- Remaining unmatched (not in top {PROMOTION_TABLE_LIMIT}) --")
    remaining = report.promotion_candidates[PROMOTION_TABLE_LIMIT:]
    if not remaining:
        lines.append("  None")
    for candidate in remaining:
        lines.append(f"  - {candidate.intent_id} ({candidate.ticket_count} tickets): {_action_label(candidate)}")
    lines.append("")
    lines.append(RULE)
    return "\n".join(lines)


# -- Persistence ----------------------------------------------------------------

def _normalise_for_json(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _normalise_for_json(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, dict):
        return {str(k): _normalise_for_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalise_for_json(item) for item in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    return value


def report_to_dict(report: Any) -> Dict[str, Any]:
    return _normalise_for_json(report)


def save_report_json(report: Any, output_path: Path) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(
        json.dumps(report_to_dict(report), indent=2, ensure_ascii=False), encoding="utf-8"
    )
    LOGGER.info("Wrote JSON report to %s", output_path)
    return output_path


def save_audit_text(report: AuditReport, output_path: Path) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(format_audit_report(report), encoding="utf-8")
    LOGGER.info("Wrote audit report to %s", output_path)
    return output_path


class ClusterReportWriter:
    """Persist one CSV row per discovered cluster."""

    HEADERS: Sequence[str] = (
        "cluster_id",
        "verdict",
        "size",
        "suggested_label",
        "nearest_intent",
        "similarity",
        "quality_flags",
        "auto_closeable_rate",
        "reopen_rate",
        "avg_confidence",
        "dominant_intent",
        "top_keywords",
        "example",
    )

    def __init__(self, *, output_directory: Path, report_name: str = "clusters.csv") -> None:
        self.output_directory = output_directory
        self.report_name = report_name
        self.output_directory.mkdir(parents=True, exist_ok=True)

    def write(self, report: DiscoveryReport) -> Path:
        report_path = self.output_directory / self.report_name
        LOGGER.info("Writing cluster report to %s", report_path)
        with report_path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle)
            writer.writerow(self.HEADERS)
            for summary in report.clusters:
                writer.writerow(
                    [
                        summary.cluster_id,
                        summary.verdict.verdict.value,
                        summary.size,
                        summary.suggested_label,
                        summary.nearest.matched_intent_id,
                        f"{summary.nearest.score:.3f}",
                        ";".join(flag.value for flag in summary.verdict.flags),
                        summary.auto_closeable_rate,
                        summary.reopen_rate,
                        summary.avg_confidence,
                        summary.dominant_intent or "",
                        ", ".join(summary.top_keywords),
                        summary.example_texts[0] if summary.example_texts else "",
                    ]
                )
        return report_path


HTML_TEMPLATE = Template(
    """
<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <title>Intent Discovery Report</title>
    <style>
      body { font-family: Arial, sans-serif; margin: 2rem; }
      h1, h2, h3 { color: #1f3b4d; }
      table { border-collapse: collapse; width: 100%; margin-bottom: 1.5rem; }
      th, td { border: 1px solid #ccc; padding: 0.4rem 0.6rem; text-align: left; vertical-align: top; }
      th { background-color: #f0f6fb; }
      .meta { font-size: 0.9rem; color: #555; margin-bottom: 2rem; }
      .section { margin-bottom: 2.5rem; }
      .flag { font-size: 0.8rem; font-weight: bold; color: #8a3b12; }
    </style>
  </head>
  <body>
    <h1>Intent Discovery</h1>
    <div class="meta">
      <strong>Run at:</strong> {{ report.metadata.run_at }}<br />
      <strong>Tickets:</strong> {{ report.metadata.source_tickets }} source, {{ report.metadata.eligible_tickets }} eligible, {{ report.metadata.embedded_tickets }} embedded<br />
      <strong>Clusters:</strong> {{ report.metadata.total_clusters }} ({{ report.metadata.clustered_tickets }} tickets), noise: {{ report.metadata.noise_tickets }}<br />
      <strong>Embedding errors:</strong> {{ report.metadata.embedding_errors }} | <strong>Processing time:</strong> {{ report.metadata.processing_time_ms }} ms
      {% if not report.metadata.completed %}<br /><strong>Run cancelled: results are partial.</strong>{% endif %}
    </div>

    {% for title, bucket in sections %}
    <div class="section">
      <h2>{{ title }} ({{ bucket|length }})</h2>
      <table>
        <thead><tr><th>Cluster</th><th>Size</th><th>Suggested label</th><th>Nearest intent</th><th>Similarity</th><th>Flags</th><th>Keywords</th><th>Examples</th></tr></thead>
        <tbody>
          {% for cluster in bucket %}
          <tr>
            <td>{{ cluster.cluster_id }}</td>
            <td>{{ cluster.size }}</td>
            <td>{{ cluster.suggested_label }}</td>
            <td>{{ cluster.nearest.matched_intent_id }}</td>
            <td>{{ '%.3f'|format(cluster.nearest.score) }}</td>
            <td>{% for note in cluster.verdict.quality_flags %}<span class="flag" title="{{ note.detail }}">{{ note.flag.value }}</span><br />{% endfor %}</td>
            <td>{{ cluster.top_keywords|join(', ') }}</td>
            <td>{% for example in cluster.example_texts %}{{ example }}<br />{% endfor %}</td>
          </tr>
          {% endfor %}
        </tbody>
      </table>
    </div>
    {% endfor %}

    <div class="section">
      <h2>Noise sample ({{ report.noise_sample|length }} of {{ report.metadata.noise_tickets }})</h2>
      <table>
        <thead><tr><th>Ticket</th><th>Intent</th><th>Text</th></tr></thead>
        <tbody>
          {% for row in report.noise_sample %}
          <tr><td>{{ row.ticket_id }}</td><td>{{ row.intent or '' }}</td><td>{{ row.question }}</td></tr>
          {% endfor %}
        </tbody>
      </table>
    </div>
  </body>
</html>
""",
    autoescape=True,
)


def render_discovery_html(report: DiscoveryReport, output_path: Path) -> Path:
    sections = [
        ("Proposed new intents", report.proposed_new_intents),
        ("Map to existing", report.map_to_existing),
        ("Ambiguous clusters", report.ambiguous_clusters),
    ]
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(HTML_TEMPLATE.render(report=report, sections=sections), encoding="utf-8")
    LOGGER.info("Wrote HTML report to %s", output_path)
    return output_path
