"""Verdict computation and install-time severity gates."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .models.finding import FindingSeverity


class Verdict(str, Enum):
    """Aggregate risk label derived from the worst finding severity."""

    CLEAN = "clean"
    WARNINGS = "warnings"
    HIGH_RISK = "high_risk"
    DANGEROUS = "dangerous"


class GateStatus(str, Enum):
    ALLOWED = "allowed"
    BLOCKED = "blocked"


_VERDICTS = {
    FindingSeverity.CRITICAL: Verdict.DANGEROUS,
    FindingSeverity.HIGH: Verdict.HIGH_RISK,
    FindingSeverity.MEDIUM: Verdict.WARNINGS,
    FindingSeverity.LOW: Verdict.WARNINGS,
    FindingSeverity.INFO: Verdict.CLEAN,
}


def verdict_for(max_severity: Optional[FindingSeverity]) -> Verdict:
    """Map the highest finding severity (``None`` for no findings) to a verdict."""

    if max_severity is None:
        return Verdict.CLEAN
    return _VERDICTS[max_severity]


def severity_label(severity: Optional[FindingSeverity]) -> str:
    return severity.value if severity is not None else "none"


@dataclass(slots=True, frozen=True)
class GateDecision:
    """Outcome of applying the install gate to a scan.

    A blocked decision is a policy outcome rather than an error. ``override``
    names the flag that would lift the block, or is ``None`` when nothing can.
    """

    status: GateStatus
    verdict: Verdict
    max_severity: Optional[FindingSeverity]
    reason: str
    override: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.status is GateStatus.ALLOWED

    @property
    def blocked(self) -> bool:
        return self.status is GateStatus.BLOCKED

    def to_install_response(self, findings: int) -> Dict[str, Any]:
        """Render the decision in the shape consumed by install integrations."""

        return {
            "ok": self.allowed,
            "action": "installed" if self.allowed else "install_blocked",
            "verdict": self.verdict.value,
            "findings": findings,
            "maxSeverity": severity_label(self.max_severity),
            "reason": self.reason,
        }


def evaluate_gate(
    max_severity: Optional[FindingSeverity],
    *,
    allow_high: bool = False,
    force: bool = False,
    incomplete_files: int = 0,
) -> GateDecision:
    """Decide whether an install may proceed given the worst finding severity.

    A scan that left files unscanned blocks the install whatever the overrides.
    """

    verdict = verdict_for(max_severity)

    if verdict is Verdict.DANGEROUS:
        return GateDecision(
            status=GateStatus.BLOCKED,
            verdict=verdict,
            max_severity=max_severity,
            reason="Critical findings detected; no override can allow this install.",
        )

    if incomplete_files > 0:
        return GateDecision(
            status=GateStatus.BLOCKED,
            verdict=verdict,
            max_severity=max_severity,
            reason=(
                f"Scan incomplete: {incomplete_files} file(s) were not scanned; "
                "re-run without --timeout or with a longer one."
            ),
        )

    if verdict is Verdict.HIGH_RISK:
        if allow_high:
            return GateDecision(
                status=GateStatus.ALLOWED,
                verdict=verdict,
                max_severity=max_severity,
                reason="High severity findings allowed by --allow-high.",
                override="--allow-high",
            )
        return GateDecision(
            status=GateStatus.BLOCKED,
            verdict=verdict,
            max_severity=max_severity,
            reason="High severity findings detected; re-run with --allow-high to install anyway.",
            override="--allow-high",
        )

    if max_severity is FindingSeverity.MEDIUM:
        if force:
            return GateDecision(
                status=GateStatus.ALLOWED,
                verdict=verdict,
                max_severity=max_severity,
                reason="Medium severity findings allowed by --force.",
                override="--force",
            )
        return GateDecision(
            status=GateStatus.BLOCKED,
            verdict=verdict,
            max_severity=max_severity,
            reason="Medium severity findings detected; re-run with --force to install anyway.",
            override="--force",
        )

    reason = "No findings at or above medium severity." if max_severity else "No findings detected."
    return GateDecision(
        status=GateStatus.ALLOWED,
        verdict=verdict,
        max_severity=max_severity,
        reason=reason,
    )


__all__ = [
    "GateDecision",
    "GateStatus",
    "Verdict",
    "evaluate_gate",
    "severity_label",
    "verdict_for",
]
