"""Utilities for loading and merging detection rule pack manifests."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

import yaml

from ..logger import get_logger
from ..models import FileKind, FindingCategory, FindingSeverity

logger = get_logger(__name__)

_REGEX_FLAGS = {
    "ignorecase": re.IGNORECASE,
    "multiline": re.MULTILINE,
    "dotall": re.DOTALL,
}

_MANIFEST_SUFFIXES = {".yaml", ".yml", ".json"}

BUILTIN_PACKS_DIR = Path(__file__).resolve().parent / "packs"


class RulePackError(RuntimeError):
    """Raised when rule pack manifests cannot be loaded or parsed."""


@dataclass(slots=True)
class Rule:
    """A regex-backed detection rule."""

    id: str
    title: str
    severity: FindingSeverity
    category: FindingCategory
    pattern: str
    description: str = ""
    flags: List[str] = field(default_factory=list)
    file_kinds: List[FileKind] = field(default_factory=list)
    file_extensions: List[str] = field(default_factory=list)
    remediation: Optional[str] = None
    enabled: bool = True

    def compile(self) -> "CompiledRule":
        flags = 0
        for name in self.flags:
            try:
                flags |= _REGEX_FLAGS[name.lower()]
            except KeyError as exc:
                raise RulePackError(f"Unknown regex flag '{name}' in rule {self.id}") from exc
        try:
            regex = re.compile(self.pattern, flags)
        except re.error as exc:
            raise RulePackError(f"Invalid pattern in rule {self.id}: {exc}") from exc
        return CompiledRule(rule=self, regex=regex)

    def applies_to(self, kind: FileKind, extension: str) -> bool:
        """Return ``True`` when the rule should run on a file of this kind."""

        if not self.file_kinds and not self.file_extensions:
            return True
        if kind in self.file_kinds:
            return True
        return extension.lower() in self.file_extensions

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "severity": self.severity.value,
            "category": self.category.value,
            "pattern": self.pattern,
            "flags": list(self.flags),
            "file_kinds": [kind.value for kind in self.file_kinds],
            "file_extensions": list(self.file_extensions),
            "remediation": self.remediation,
            "enabled": self.enabled,
        }


@dataclass(slots=True)
class CompiledRule:
    rule: Rule
    regex: re.Pattern[str]

    def find_matches(self, content: str) -> Iterable[re.Match[str]]:
        return self.regex.finditer(content)


@dataclass(slots=True)
class RulePack:
    """Configuration describing a logical group of rules."""

    name: str
    enabled: bool = True
    category: Optional[FindingCategory] = None
    rules: Dict[str, Rule] = field(default_factory=dict)
    severity_overrides: Dict[str, FindingSeverity] = field(default_factory=dict)
    disabled_rules: set[str] = field(default_factory=set)


class RulePackManager:
    """Load rule pack manifests and expose compiled rules for the detectors."""

    def __init__(
        self,
        default_manifests: Sequence[Path | str] | None = None,
        *,
        disabled_rules: Iterable[str] | None = None,
    ) -> None:
        manifest_paths: List[Path]
        if default_manifests is None:
            manifest_paths = [BUILTIN_PACKS_DIR]
        else:
            manifest_paths = [Path(path) for path in default_manifests]

        self._default_manifests = manifest_paths
        self._disabled_rules = set(disabled_rules or ())

    # ------------------------------------------------------------------
    def load(self, manifests: Sequence[Path | str] | None = None) -> List[RulePack]:
        """Return all packs defined by the default and provided manifests."""

        manifest_paths = list(self._default_manifests)
        if manifests:
            manifest_paths.extend(Path(path) for path in manifests)

        packs: MutableMapping[str, RulePack] = {}
        for manifest_path in self._expand(manifest_paths):
            data = self._load_manifest(manifest_path)
            for pack_config in data.get("packs", []) or []:
                if not isinstance(pack_config, Mapping):
                    continue
                name = pack_config.get("name")
                if not name:
                    continue

                pack = packs.get(name, RulePack(name=name))
                self._merge_pack(pack, pack_config, manifest_path)
                packs[name] = pack

        return list(packs.values())

    # ------------------------------------------------------------------
    def enabled_packs(self, manifests: Sequence[Path | str] | None = None) -> List[RulePack]:
        """Return only the packs that are enabled after merging manifests."""

        return [pack for pack in self.load(manifests) if pack.enabled]

    # ------------------------------------------------------------------
    def rules(self, manifests: Sequence[Path | str] | None = None) -> List[Rule]:
        """Return the effective rules of enabled packs, overrides applied."""

        effective: List[Rule] = []
        for pack in self.enabled_packs(manifests):
            for rule_id, rule in pack.rules.items():
                if not rule.enabled:
                    continue
                if rule_id in pack.disabled_rules or rule_id in self._disabled_rules:
                    continue
                override = pack.severity_overrides.get(rule_id)
                if override is not None and override is not rule.severity:
                    rule = replace(rule, severity=override)
                effective.append(rule)
        return effective

    # ------------------------------------------------------------------
    def compiled_rules(self, manifests: Sequence[Path | str] | None = None) -> List[CompiledRule]:
        compiled = [rule.compile() for rule in self.rules(manifests)]
        logger.debug("Compiled detection rules", count=len(compiled))
        return compiled

    # ------------------------------------------------------------------
    def _merge_pack(self, pack: RulePack, config: Mapping[str, Any], source: Path) -> None:
        if "enabled" in config:
            pack.enabled = bool(config["enabled"])

        if config.get("category"):
            pack.category = self._parse_category(config["category"], source)

        for rule_config in config.get("rules", []) or []:
            rule = self._parse_rule(rule_config, pack, source)
            pack.rules[rule.id] = rule

        severity = config.get("severity")
        if isinstance(severity, Mapping):
            for rule_id, level in severity.items():
                if not isinstance(rule_id, str):
                    continue
                try:
                    pack.severity_overrides[rule_id.strip()] = FindingSeverity.parse(level)
                except ValueError:
                    logger.warning("Ignoring unknown severity override", rule_id=rule_id, level=level)

        for rule_id in config.get("disabled", []) or []:
            pack.disabled_rules.add(str(rule_id).strip())

    # ------------------------------------------------------------------
    def _parse_rule(self, config: Any, pack: RulePack, source: Path) -> Rule:
        if not isinstance(config, Mapping):
            raise RulePackError(f"Rule entries must be mappings in {source}")

        rule_id = str(config.get("id") or "").strip()
        pattern = config.get("pattern")
        if not rule_id or not pattern:
            raise RulePackError(f"Rule in pack '{pack.name}' is missing an id or pattern ({source})")

        category_value = config.get("category") or pack.category
        if category_value is None:
            raise RulePackError(f"Rule {rule_id} has no category ({source})")

        try:
            severity = FindingSeverity.parse(config.get("severity", "medium"))
        except ValueError as exc:
            raise RulePackError(f"Rule {rule_id}: {exc}") from exc

        try:
            file_kinds = [FileKind(str(kind).lower()) for kind in config.get("file_kinds", []) or []]
        except ValueError as exc:
            raise RulePackError(f"Rule {rule_id} has an unknown file kind ({source})") from exc

        return Rule(
            id=rule_id,
            title=str(config.get("title") or rule_id),
            description=str(config.get("description") or "").strip(),
            severity=severity,
            category=self._parse_category(category_value, source),
            pattern=str(pattern),
            flags=[str(flag) for flag in config.get("flags", []) or []],
            file_kinds=file_kinds,
            file_extensions=[
                str(ext).lower().lstrip(".") for ext in config.get("file_extensions", []) or []
            ],
            remediation=config.get("remediation"),
            enabled=bool(config.get("enabled", True)),
        )

    # ------------------------------------------------------------------
    def _parse_category(self, value: Any, source: Path) -> FindingCategory:
        try:
            return FindingCategory.parse(value)
        except ValueError as exc:
            raise RulePackError(f"{exc} ({source})") from exc

    # ------------------------------------------------------------------
    def _expand(self, paths: Sequence[Path]) -> List[Path]:
        expanded: List[Path] = []
        for path in paths:
            if path.is_dir():
                expanded.extend(
                    sorted(child for child in path.iterdir() if child.suffix.lower() in _MANIFEST_SUFFIXES)
                )
            else:
                expanded.append(path)
        return expanded

    # ------------------------------------------------------------------
    def _load_manifest(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise RulePackError(f"Rule pack manifest not found: {path}")

        try:
            content = path.read_text(encoding="utf-8")
        except OSError as exc:  # pragma: no cover - filesystem errors surfaced to caller
            raise RulePackError(f"Failed to read rule pack manifest {path}") from exc

        if path.suffix.lower() == ".json":
            try:
                data = json.loads(content or "{}")
            except json.JSONDecodeError as exc:
                raise RulePackError(f"Invalid JSON in rule pack manifest {path}") from exc
        else:
            try:
                data = yaml.safe_load(content) or {}
            except yaml.YAMLError as exc:
                raise RulePackError(f"Invalid YAML in rule pack manifest {path}") from exc

        if not isinstance(data, Mapping):
            raise RulePackError(f"Rule pack manifest must be a mapping: {path}")

        logger.debug("Loaded rule pack manifest", path=str(path))
        return dict(data)

