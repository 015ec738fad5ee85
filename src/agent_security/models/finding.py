"""Finding models shared across detectors, the engine and reporting layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class FindingSeverity(str, Enum):
    """Severity levels, ordered from least to most severe."""

    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: "str | FindingSeverity") -> "FindingSeverity":
        """Parse a severity name, accepting the ``med`` and ``crit`` shorthands."""

        if isinstance(value, FindingSeverity):
            return value

        normalized = str(value).strip().lower()
        normalized = _SEVERITY_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ValueError(f"Unknown severity: {value}") from exc


SEVERITY_RANK = {
    FindingSeverity.INFO: 0,
    FindingSeverity.LOW: 1,
    FindingSeverity.MEDIUM: 2,
    FindingSeverity.HIGH: 3,
    FindingSeverity.CRITICAL: 4,
}

_SEVERITY_ALIASES = {"med": "medium", "crit": "critical", "informational": "info"}


class FindingCategory(str, Enum):
    """Kinds of issue the detectors report."""

    CODE_EXECUTION = "code_execution"
    SHELL_INJECTION = "shell_injection"
    DATA_EXFILTRATION = "data_exfiltration"
    CREDENTIAL_ACCESS = "credential_access"
    PROMPT_INJECTION = "prompt_injection"
    OBFUSCATION = "obfuscation"
    DETECTOR_ERROR = "detector_error"

    @classmethod
    def parse(cls, value: "str | FindingCategory") -> "FindingCategory":
        if isinstance(value, FindingCategory):
            return value

        normalized = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ValueError(f"Unknown finding category: {value}") from exc


@dataclass(slots=True)
class Finding:
    """A single detected issue inside one scanned file."""

    rule_id: str
    category: FindingCategory
    severity: FindingSeverity
    file_path: str
    description: str
    evidence: Optional[str] = None
    line: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.category, FindingCategory):
            raise ValueError(f"Finding category must be a FindingCategory, got {self.category!r}")
        if not isinstance(self.severity, FindingSeverity):
            raise ValueError(f"Finding severity must be a FindingSeverity, got {self.severity!r}")
