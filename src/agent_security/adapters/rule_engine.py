"""Rule engine adapter interfaces and implementations."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence

from ..analysis import Detector, DetectorSet
from ..logger import get_logger
from ..models import Finding, FindingCategory, FindingSeverity, ScanTarget
from ..rules import RulePackManager

logger = get_logger(__name__)

DETECTOR_ERROR_RULE_ID = "DETECTOR-ERROR"
CORRELATION_RULE_ID = "EX-CORRELATED"


class RuleEvaluationError(RuntimeError):
    """Raised when the rule engine cannot be set up to evaluate files."""


class EvaluationCancelled(RuntimeError):
    """Raised when evaluation of a file is abandoned because the scan stopped."""


def detector_error(target: ScanTarget, source: str, exc: BaseException) -> Finding:
    """Build the informational finding recorded when a file cannot be analysed."""

    return Finding(
        rule_id=DETECTOR_ERROR_RULE_ID,
        category=FindingCategory.DETECTOR_ERROR,
        severity=FindingSeverity.INFO,
        file_path=target.relative_path,
        description=f"{source} failed: {exc}",
        metadata={"source": source, "error": type(exc).__name__},
    )


class RuleEngineAdapter(ABC):
    """Abstract base class describing the rule engine contract."""

    @abstractmethod
    def evaluate(
        self,
        target: ScanTarget,
        content: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> List[Finding]:
        """Evaluate the text of one file and return its findings."""

    # ------------------------------------------------------------------
    def evaluate_file(
        self,
        target: ScanTarget,
        *,
        cancel_event: threading.Event | None = None,
    ) -> List[Finding]:
        """Read ``target`` and evaluate it.

        Unreadable files yield a ``detector_error`` finding instead of raising.
        Invalid UTF-8 is replaced and still evaluated, with a ``detector_error``
        finding noting the decode problem.
        """

        try:
            raw = target.path.read_bytes()
        except OSError as exc:
            logger.warning("Failed to read file", path=target.relative_path, error=str(exc))
            return [detector_error(target, "read", exc)]

        decode_problem: Optional[Finding] = None
        try:
            content = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            logger.warning("File is not valid UTF-8", path=target.relative_path)
            decode_problem = detector_error(target, "decode", exc)
            content = raw.decode("utf-8", errors="replace")

        findings = self.evaluate(target, content, cancel_event=cancel_event)
        if decode_problem is not None:
            findings.append(decode_problem)
        return findings


class PatternRuleEngine(RuleEngineAdapter):
    """Run the detector set over file content, isolating detector failures."""

    def __init__(
        self,
        detectors: DetectorSet | Iterable[Detector] | None = None,
        *,
        rule_pack_manager: RulePackManager | None = None,
        manifests: Sequence[str] | None = None,
        disabled_categories: Iterable[FindingCategory | str] = (),
        decode_depth: int = 1,
        enable_entropy: bool = False,
        correlate: bool = True,
    ) -> None:
        if detectors is None:
            detectors = DetectorSet.default(
                rule_pack_manager=rule_pack_manager,
                manifests=manifests,
                disabled_categories=disabled_categories,
                decode_depth=decode_depth,
                enable_entropy=enable_entropy,
            )
        elif not isinstance(detectors, DetectorSet):
            detectors = DetectorSet(detectors)

        if not len(detectors):
            raise RuleEvaluationError("No detector categories are enabled")

        self.detectors = detectors
        self.correlate = correlate

    # ------------------------------------------------------------------
    def evaluate(
        self,
        target: ScanTarget,
        content: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> List[Finding]:
        findings: List[Finding] = []
        for detector in self.detectors:
            if cancel_event is not None and cancel_event.is_set():
                raise EvaluationCancelled(target.relative_path)
            try:
                findings.extend(detector.detect(target, content))
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Detector failed",
                    detector=detector.name,
                    path=target.relative_path,
                    error=str(exc),
                )
                findings.append(detector_error(target, f"{detector.name} detector", exc))

        if self.correlate:
            correlated = self._correlate(target, findings)
            if correlated is not None:
                findings.append(correlated)
        return findings

    # ------------------------------------------------------------------
    def _correlate(self, target: ScanTarget, findings: Sequence[Finding]) -> Optional[Finding]:
        credential = [f for f in findings if f.category is FindingCategory.CREDENTIAL_ACCESS]
        outbound = [f for f in findings if f.category is FindingCategory.DATA_EXFILTRATION]
        if not credential or not outbound:
            return None

        return Finding(
            rule_id=CORRELATION_RULE_ID,
            category=FindingCategory.DATA_EXFILTRATION,
            severity=FindingSeverity.CRITICAL,
            file_path=target.relative_path,
            description="File reads credentials and sends data to a remote endpoint",
            evidence=outbound[0].evidence,
            line=outbound[0].line,
            metadata={
                "credential_rules": sorted({f.rule_id for f in credential}),
                "exfiltration_rules": sorted({f.rule_id for f in outbound}),
            },
        )


__all__ = [
    "CORRELATION_RULE_ID",
    "DETECTOR_ERROR_RULE_ID",
    "EvaluationCancelled",
    "PatternRuleEngine",
    "RuleEngineAdapter",
    "RuleEvaluationError",
    "detector_error",
]
