"""Data models for scan targets, findings and aggregated scan results."""

from .finding import SEVERITY_RANK, Finding, FindingCategory, FindingSeverity
from .result import FileResult, ScanResult, highest_severity
from .target import ComponentType, FileKind, ScanTarget

__all__ = [
    "SEVERITY_RANK",
    "ComponentType",
    "FileKind",
    "FileResult",
    "Finding",
    "FindingCategory",
    "FindingSeverity",
    "ScanResult",
    "ScanTarget",
    "highest_severity",
]
