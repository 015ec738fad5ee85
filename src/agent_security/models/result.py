"""Aggregates produced by a scan invocation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from .finding import Finding, FindingSeverity

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from ..policy import Verdict


def highest_severity(findings: Iterable[Finding]) -> Optional[FindingSeverity]:
    """Return the most severe level among ``findings`` or ``None`` when empty."""

    highest: Optional[FindingSeverity] = None
    for finding in findings:
        if highest is None or finding.severity.rank > highest.rank:
            highest = finding.severity
    return highest


@dataclass(slots=True)
class FileResult:
    """Findings for one scanned file, in detection order."""

    path: str
    findings: List[Finding] = field(default_factory=list)

    @property
    def max_severity(self) -> Optional[FindingSeverity]:
        return highest_severity(self.findings)


@dataclass(slots=True)
class ScanResult:
    """Collection of per-file results plus contextual metadata."""

    results: Sequence[FileResult] = field(default_factory=list)
    metadata: Mapping[str, Any] = field(default_factory=dict)
    unfiltered_max_severity: Optional[FindingSeverity] = None
    filtered_by: Optional[FindingSeverity] = None

    def iter_findings(self) -> Iterator[Finding]:
        for file_result in self.results:
            yield from file_result.findings

    @property
    def finding_count(self) -> int:
        return sum(len(file_result.findings) for file_result in self.results)

    @property
    def max_severity(self) -> Optional[FindingSeverity]:
        """Highest severity among the findings currently held."""

        return highest_severity(self.iter_findings())

    @property
    def true_max_severity(self) -> Optional[FindingSeverity]:
        """Highest severity before any display filter was applied."""

        if self.filtered_by is not None:
            return self.unfiltered_max_severity
        return self.max_severity

    @property
    def verdict(self) -> Verdict:
        from ..policy import verdict_for

        return verdict_for(self.true_max_severity)

    def counts_by_severity(self) -> Dict[str, int]:
        counts: Dict[FindingSeverity, int] = {severity: 0 for severity in FindingSeverity}
        for finding in self.iter_findings():
            counts[finding.severity] += 1
        return {severity.value: count for severity, count in counts.items()}

    def summary(self) -> Dict[str, Any]:
        return {
            "total_findings": self.finding_count,
            "counts": self.counts_by_severity(),
        }

    def filtered(
        self,
        min_severity: FindingSeverity,
        *,
        include_clean_files: bool = False,
    ) -> "ScanResult":
        """Return a copy that only shows findings at or above ``min_severity``.

        The unfiltered maximum severity is preserved so that verdicts and gate
        decisions are computed from what was actually detected.
        """

        threshold = min_severity.rank
        filtered_results: List[FileResult] = []
        for file_result in self.results:
            kept = [finding for finding in file_result.findings if finding.severity.rank >= threshold]
            if kept or include_clean_files:
                filtered_results.append(FileResult(path=file_result.path, findings=kept))

        return ScanResult(
            results=filtered_results,
            metadata=dict(self.metadata),
            unfiltered_max_severity=self.true_max_severity,
            filtered_by=min_severity,
        )
