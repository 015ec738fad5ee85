"""Per-category detectors run against the text of a single file."""

from __future__ import annotations

import math
import re
from abc import ABC, abstractmethod
from collections import Counter, defaultdict
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence

from ..models import FileKind, Finding, FindingCategory, FindingSeverity, ScanTarget, highest_severity
from ..rules import CompiledRule, RulePackManager
from .decoders import DecodedPayload, Decoder

EVIDENCE_LIMIT = 160

DECODED_PAYLOAD_RULE_ID = "OB-PAYLOAD"

# Order in which categories run for each file.
CATEGORY_ORDER = (
    FindingCategory.CODE_EXECUTION,
    FindingCategory.SHELL_INJECTION,
    FindingCategory.DATA_EXFILTRATION,
    FindingCategory.CREDENTIAL_ACCESS,
    FindingCategory.PROMPT_INJECTION,
    FindingCategory.OBFUSCATION,
)

_SEVERITY_LADDER = list(FindingSeverity)


def _truncate(value: str, limit: int = EVIDENCE_LIMIT) -> str:
    value = value.strip()
    if len(value) <= limit:
        return value
    return value[: limit - 3] + "..."


def _line_number(content: str, offset: int) -> int:
    return content.count("\n", 0, offset) + 1


def _line_text(content: str, offset: int) -> str:
    start = content.rfind("\n", 0, offset) + 1
    end = content.find("\n", offset)
    if end == -1:
        end = len(content)
    return content[start:end]


def escalate(severity: Optional[FindingSeverity]) -> FindingSeverity:
    """Return the level above ``severity``, at least medium and at most critical."""

    if severity is None:
        return FindingSeverity.MEDIUM
    index = min(_SEVERITY_LADDER.index(severity) + 1, len(_SEVERITY_LADDER) - 1)
    return max(_SEVERITY_LADDER[index], FindingSeverity.MEDIUM, key=lambda level: level.rank)


class Detector(ABC):
    """A stateless check for one finding category."""

    category: FindingCategory

    @property
    def name(self) -> str:
        return self.category.value

    @abstractmethod
    def detect(self, target: ScanTarget, content: str, *, apply_filters: bool = True) -> List[Finding]:
        """Return findings for ``content``.

        ``apply_filters`` is ``False`` when ``content`` is decoded text rather
        than the file itself, in which case the file-kind scoping of rules is
        ignored.
        """


class PatternDetector(Detector):
    """Run the regex rules of one category over file content."""

    def __init__(self, category: FindingCategory, rules: Sequence[CompiledRule]) -> None:
        self.category = category
        self.rules = list(rules)

    def detect(self, target: ScanTarget, content: str, *, apply_filters: bool = True) -> List[Finding]:
        findings: List[Finding] = []
        for compiled in self.rules:
            rule = compiled.rule
            if apply_filters and not rule.applies_to(target.kind, target.extension):
                continue

            seen_lines = set()
            for match in compiled.find_matches(content):
                line = _line_number(content, match.start())
                if line in seen_lines:
                    continue
                seen_lines.add(line)

                metadata = {"title": rule.title}
                if rule.remediation:
                    metadata["remediation"] = rule.remediation
                findings.append(
                    Finding(
                        rule_id=rule.id,
                        category=rule.category,
                        severity=rule.severity,
                        file_path=target.relative_path,
                        description=rule.description or rule.title,
                        evidence=_truncate(_line_text(content, match.start())),
                        line=line,
                        metadata=metadata,
                    )
                )
        return findings


class ObfuscationDetector(Detector):
    """Flag encoded payloads whose decoded text trips another detector.

    Findings raised on decoded text are reported as well, tagged with the
    encoding chain in ``decoded_from`` and placed on the line of the payload.
    Source-level decoding primitives are matched with the obfuscation rules.
    """

    category = FindingCategory.OBFUSCATION

    def __init__(
        self,
        detectors: Sequence[Detector],
        *,
        rules: Sequence[CompiledRule] = (),
        decoder: Decoder | None = None,
        depth: int = 1,
    ) -> None:
        self.detectors = [detector for detector in detectors if detector.category is not self.category]
        self.primitives = PatternDetector(self.category, rules)
        self.decoder = decoder or Decoder()
        self.depth = depth

    def detect(self, target: ScanTarget, content: str, *, apply_filters: bool = True) -> List[Finding]:
        findings = self.primitives.detect(target, content, apply_filters=apply_filters)
        if self.depth > 0:
            findings.extend(self._inspect(target, content, self.depth, None, []))
        return findings

    # ------------------------------------------------------------------
    def _inspect(
        self,
        target: ScanTarget,
        text: str,
        depth: int,
        base_line: Optional[int],
        chain: List[str],
    ) -> List[Finding]:
        findings: List[Finding] = []
        for payload in self.decoder.decode(text):
            line = base_line if base_line is not None else _line_number(text, payload.start)
            encodings = chain + [payload.encoding.value]
            decoded_from = "+".join(encodings)

            inner: List[Finding] = []
            for detector in self.detectors:
                for finding in detector.detect(target, payload.decoded, apply_filters=False):
                    metadata = dict(finding.metadata)
                    metadata["decoded_from"] = decoded_from
                    inner.append(replace(finding, line=line, metadata=metadata))
            if depth > 1:
                inner.extend(self._inspect(target, payload.decoded, depth - 1, line, encodings))

            if not inner:
                continue
            findings.append(self._payload_finding(target, payload, inner, line, decoded_from))
            findings.extend(inner)
        return findings

    # ------------------------------------------------------------------
    def _payload_finding(
        self,
        target: ScanTarget,
        payload: DecodedPayload,
        inner: Sequence[Finding],
        line: int,
        decoded_from: str,
    ) -> Finding:
        categories = sorted({finding.category.value for finding in inner})
        return Finding(
            rule_id=DECODED_PAYLOAD_RULE_ID,
            category=self.category,
            severity=escalate(highest_severity(inner)),
            file_path=target.relative_path,
            description=f"{payload.encoding.value} payload decodes to {', '.join(categories)} content",
            evidence=_truncate(payload.original),
            line=line,
            metadata={
                "encoding": decoded_from,
                "decoded": _truncate(payload.decoded),
                "categories": categories,
            },
        )


_IDENTIFIER = r"[A-Za-z_$][\w$]*"
_GLOBAL_PREFIX = r"(?:(?:window|globalThis|global|self)\s*\.\s*)?"
_CHILD_PROCESS = r"""["'](?:node:)?child_process["']"""
SHELL_EXPORTS = ("exec", "execSync", "execFile", "execFileSync", "spawn", "spawnSync", "fork")

_EVAL_ALIAS_RE = re.compile(
    rf"\b(?:const|let|var)\s+({_IDENTIFIER})\s*=\s*{_GLOBAL_PREFIX}(eval|Function)\s*(?=[;,)\n]|$)"
)
_REQUIRE_MEMBER_RE = re.compile(
    rf"\b(?:const|let|var)\s+({_IDENTIFIER})\s*=\s*require\(\s*{_CHILD_PROCESS}\s*\)\s*\.\s*(\w+)\b"
)
_REQUIRE_DESTRUCTURE_RE = re.compile(rf"\{{([^}}]*)\}}\s*=\s*require\(\s*{_CHILD_PROCESS}\s*\)")
_IMPORT_DESTRUCTURE_RE = re.compile(rf"\bimport\s*\{{([^}}]*)\}}\s*from\s*{_CHILD_PROCESS}")
_RENAMED_PROPERTY_RE = re.compile(rf"(\w+)\s*:\s*({_IDENTIFIER})")
_RENAMED_IMPORT_RE = re.compile(rf"(\w+)\s+as\s+({_IDENTIFIER})")

ALIASED_EVAL_RULE_ID = "CE-ALIAS"
ALIASED_SHELL_RULE_ID = "SH-ALIAS"


@dataclass(slots=True)
class _Alias:
    name: str
    target: str
    offset: int
    category: FindingCategory


class AliasCallDetector(Detector):
    """Report calls made through a renamed ``eval``/``Function`` or ``child_process`` export.

    ``const run = eval; run(x)`` and ``const { exec: run } = require('child_process')``
    hide the dangerous name from the call site, so the alias declarations are
    tracked and every later call of the alias is reported.
    """

    category = FindingCategory.CODE_EXECUTION

    def __init__(self, categories: Iterable[FindingCategory] | None = None) -> None:
        if categories is None:
            categories = (FindingCategory.CODE_EXECUTION, FindingCategory.SHELL_INJECTION)
        self.categories = set(categories)

    @property
    def name(self) -> str:
        return "alias"

    def detect(self, target: ScanTarget, content: str, *, apply_filters: bool = True) -> List[Finding]:
        if apply_filters and target.kind is not FileKind.CODE:
            return []

        findings: List[Finding] = []
        for alias in self._aliases(content):
            if alias.category not in self.categories:
                continue
            call = re.compile(rf"(?<![\w$.]){re.escape(alias.name)}\s*\(")
            seen_lines = set()
            for match in call.finditer(content, alias.offset):
                line = _line_number(content, match.start())
                if line in seen_lines:
                    continue
                seen_lines.add(line)
                findings.append(self._finding(target, content, alias, match.start(), line))
        return findings

    # ------------------------------------------------------------------
    def _aliases(self, content: str) -> List[_Alias]:
        aliases: List[_Alias] = []
        for match in _EVAL_ALIAS_RE.finditer(content):
            aliases.append(_Alias(match.group(1), match.group(2), match.end(), FindingCategory.CODE_EXECUTION))

        for match in _REQUIRE_MEMBER_RE.finditer(content):
            if match.group(2) in SHELL_EXPORTS:
                aliases.append(_Alias(match.group(1), match.group(2), match.end(), FindingCategory.SHELL_INJECTION))

        for pattern, renamed in (
            (_REQUIRE_DESTRUCTURE_RE, _RENAMED_PROPERTY_RE),
            (_IMPORT_DESTRUCTURE_RE, _RENAMED_IMPORT_RE),
        ):
            for match in pattern.finditer(content):
                for pair in renamed.finditer(match.group(1)):
                    if pair.group(1) in SHELL_EXPORTS:
                        aliases.append(
                            _Alias(pair.group(2), pair.group(1), match.end(), FindingCategory.SHELL_INJECTION)
                        )

        return [alias for alias in aliases if alias.name != alias.target]

    # ------------------------------------------------------------------
    def _finding(self, target: ScanTarget, content: str, alias: _Alias, offset: int, line: int) -> Finding:
        if alias.category is FindingCategory.CODE_EXECUTION:
            rule_id, severity = ALIASED_EVAL_RULE_ID, FindingSeverity.CRITICAL
            description = f"'{alias.name}' is an alias for {alias.target}; calling it executes arbitrary code"
        else:
            rule_id, severity = ALIASED_SHELL_RULE_ID, FindingSeverity.HIGH
            description = f"'{alias.name}' is an alias for child_process.{alias.target}; calling it runs commands"
        return Finding(
            rule_id=rule_id,
            category=alias.category,
            severity=severity,
            file_path=target.relative_path,
            description=description,
            evidence=_truncate(_line_text(content, offset)),
            line=line,
            metadata={"title": "Aliased dangerous call", "alias": alias.name, "target": alias.target},
        )


ENTROPY_RULE_ID = "OB-ENTROPY"
ENTROPY_THRESHOLD = 4.5
MIN_ENTROPY_LENGTH = 40

_ENTROPY_TOKEN_RE = re.compile(r"(?<![A-Za-z0-9+/=_-])[A-Za-z0-9+/=_-]{%d,}" % MIN_ENTROPY_LENGTH)


def shannon_entropy(value: str) -> float:
    """Bits of entropy per character of ``value``."""

    if not value:
        return 0.0
    length = len(value)
    return -sum(count / length * math.log2(count / length) for count in Counter(value).values())


class EntropyDetector(Detector):
    """Flag long tokens whose character entropy suggests packed or encrypted data."""

    category = FindingCategory.OBFUSCATION

    def __init__(self, threshold: float = ENTROPY_THRESHOLD) -> None:
        self.threshold = threshold

    @property
    def name(self) -> str:
        return "entropy"

    def detect(self, target: ScanTarget, content: str, *, apply_filters: bool = True) -> List[Finding]:
        if apply_filters and target.kind not in (FileKind.CODE, FileKind.CONFIG):
            return []

        findings: List[Finding] = []
        seen_lines = set()
        for match in _ENTROPY_TOKEN_RE.finditer(content):
            entropy = shannon_entropy(match.group(0))
            if entropy < self.threshold:
                continue
            line = _line_number(content, match.start())
            if line in seen_lines:
                continue
            seen_lines.add(line)
            findings.append(
                Finding(
                    rule_id=ENTROPY_RULE_ID,
                    category=self.category,
                    severity=FindingSeverity.MEDIUM,
                    file_path=target.relative_path,
                    description=f"High-entropy string ({entropy:.2f} bits per character) may hide a payload",
                    evidence=_truncate(match.group(0)),
                    line=line,
                    metadata={"title": "High-entropy string", "entropy": round(entropy, 2)},
                )
            )
        return findings


class DetectorSet:
    """The ordered detectors applied to every file of a scan."""

    def __init__(self, detectors: Iterable[Detector]) -> None:
        self.detectors = list(detectors)

    def __iter__(self):
        return iter(self.detectors)

    def __len__(self) -> int:
        return len(self.detectors)

    @property
    def categories(self) -> List[FindingCategory]:
        return [detector.category for detector in self.detectors]

    # ------------------------------------------------------------------
    @classmethod
    def from_rules(
        cls,
        rules: Sequence[CompiledRule],
        *,
        disabled_categories: Iterable[FindingCategory | str] = (),
        decode_depth: int = 1,
        decoder: Decoder | None = None,
        enable_entropy: bool = False,
    ) -> "DetectorSet":
        disabled = {FindingCategory.parse(category) for category in disabled_categories}

        by_category: Dict[FindingCategory, List[CompiledRule]] = defaultdict(list)
        for compiled in rules:
            by_category[compiled.rule.category].append(compiled)

        pattern_detectors: List[Detector] = []
        for category in CATEGORY_ORDER:
            if category is FindingCategory.OBFUSCATION or category in disabled:
                continue
            pattern_detectors.append(PatternDetector(category, by_category.get(category, [])))

        # Categories from custom packs that have no built-in slot run after the built-ins.
        for category, category_rules in by_category.items():
            if category in CATEGORY_ORDER or category in disabled:
                continue
            pattern_detectors.append(PatternDetector(category, category_rules))

        alias_categories = {FindingCategory.CODE_EXECUTION, FindingCategory.SHELL_INJECTION} - disabled
        if alias_categories:
            pattern_detectors.append(AliasCallDetector(alias_categories))

        detectors = list(pattern_detectors)
        if FindingCategory.OBFUSCATION not in disabled:
            detectors.append(
                ObfuscationDetector(
                    pattern_detectors,
                    rules=by_category.get(FindingCategory.OBFUSCATION, []),
                    decoder=decoder,
                    depth=decode_depth,
                )
            )
            if enable_entropy:
                detectors.append(EntropyDetector())
        return cls(detectors)

    # ------------------------------------------------------------------
    @classmethod
    def default(
        cls,
        *,
        rule_pack_manager: RulePackManager | None = None,
        manifests: Sequence[str] | None = None,
        disabled_categories: Iterable[FindingCategory | str] = (),
        decode_depth: int = 1,
        enable_entropy: bool = False,
    ) -> "DetectorSet":
        manager = rule_pack_manager or RulePackManager()
        return cls.from_rules(
            manager.compiled_rules(manifests),
            disabled_categories=disabled_categories,
            decode_depth=decode_depth,
            enable_entropy=enable_entropy,
        )


__all__ = [
    "ALIASED_EVAL_RULE_ID",
    "ALIASED_SHELL_RULE_ID",
    "AliasCallDetector",
    "CATEGORY_ORDER",
    "DECODED_PAYLOAD_RULE_ID",
    "Detector",
    "DetectorSet",
    "ENTROPY_RULE_ID",
    "EntropyDetector",
    "ObfuscationDetector",
    "PatternDetector",
    "escalate",
    "shannon_entropy",
]
