"""Render scan and vet results as JSON documents or terminal text."""

from __future__ import annotations

import json
from typing import Any, Dict, List

from ..models import Finding, FindingSeverity, ScanResult
from ..policy import severity_label
from ..service import VetReport

SEVERITY_ORDER = [severity for severity in reversed(list(FindingSeverity))]


def _serialize_finding(finding: Finding) -> Dict[str, Any]:
    return {
        "category": finding.category.value,
        "severity": finding.severity.value,
        "description": finding.description,
        "evidence": finding.evidence,
        "rule_id": finding.rule_id,
        "line": finding.line,
        "metadata": dict(finding.metadata),
    }


def to_report_dict(result: ScanResult, *, include_summary: bool = True) -> Dict[str, Any]:
    """Return the JSON-ready report with keys in a fixed order."""

    payload: Dict[str, Any] = {
        "results": [
            {
                "path": file_result.path,
                "findings": [_serialize_finding(finding) for finding in file_result.findings],
            }
            for file_result in result.results
        ]
    }
    if include_summary:
        payload["summary"] = result.summary()
        payload["maxSeverity"] = severity_label(result.true_max_severity)
        payload["verdict"] = result.verdict.value
        payload["metadata"] = dict(result.metadata)
    return payload


def render_json(result: ScanResult, *, include_summary: bool = True) -> str:
    return json.dumps(to_report_dict(result, include_summary=include_summary), indent=2)


def summary_line(result: ScanResult) -> str:
    counts = result.counts_by_severity()
    breakdown = ", ".join(f"{severity.value}: {counts[severity.value]}" for severity in SEVERITY_ORDER)
    total = result.finding_count
    noun = "finding" if total == 1 else "findings"
    return (
        f"Summary: {total} {noun} ({breakdown}) | "
        f"max severity: {severity_label(result.true_max_severity)} | "
        f"verdict: {result.verdict.value.upper()}"
    )


def render_text(result: ScanResult) -> str:
    """Render findings grouped by file, most severe first within each file."""

    lines: List[str] = []
    if result.finding_count == 0:
        lines.append("No findings detected.")

    for file_result in result.results:
        if not file_result.findings:
            lines.append(f"{file_result.path}: no findings")
            continue
        lines.append(file_result.path)
        ordered = sorted(file_result.findings, key=lambda finding: -finding.severity.rank)
        for finding in ordered:
            location = f" line {finding.line}" if finding.line is not None else ""
            lines.append(
                f"  [{finding.severity.value.upper()}] {finding.category.value} "
                f"{finding.rule_id}{location}: {finding.description}"
            )
            if finding.evidence:
                lines.append(f"      {finding.evidence}")
            decoded_from = finding.metadata.get("decoded_from")
            if decoded_from:
                lines.append(f"      (decoded from {decoded_from})")
        lines.append("")

    metadata = result.metadata
    if metadata.get("timed_out") or metadata.get("cancelled"):
        reason = "timed out" if metadata.get("timed_out") else "was cancelled"
        lines.append(
            f"Warning: scan {reason}; {metadata.get('files_incomplete', 0)} file(s) were not scanned."
        )

    lines.append(summary_line(result))
    return "\n".join(lines)


# ----------------------------------------------------------------------
def vet_report_dict(report: VetReport) -> Dict[str, Any]:
    decision = report.decision
    payload: Dict[str, Any] = {
        "source": report.source,
        "decision": {
            "status": decision.status.value,
            "verdict": decision.verdict.value,
            "maxSeverity": severity_label(decision.max_severity),
            "reason": decision.reason,
            "override": decision.override,
        },
        "install": decision.to_install_response(report.result.finding_count),
    }
    payload.update(to_report_dict(report.result))
    return payload


def render_vet_json(report: VetReport) -> str:
    return json.dumps(vet_report_dict(report), indent=2)


def render_vet_text(report: VetReport) -> str:
    decision = report.decision
    lines = [
        f"Source: {report.source}",
        f"Verdict: {decision.verdict.value.upper()}",
        f"Install: {decision.status.value.upper()} - {decision.reason}",
        "",
        render_text(report.result),
    ]
    return "\n".join(lines)


__all__ = [
    "render_json",
    "render_text",
    "render_vet_json",
    "render_vet_text",
    "summary_line",
    "to_report_dict",
    "vet_report_dict",
]
