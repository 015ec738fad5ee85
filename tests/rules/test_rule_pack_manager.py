import json
from pathlib import Path

import pytest

from agent_security.models import FileKind, FindingCategory, FindingSeverity
from agent_security.rules import RulePackError, RulePackManager


def write_manifest(tmp_path: Path, name: str, content: str) -> Path:
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return path


def test_merges_default_and_override_manifests(tmp_path: Path):
    default_manifest = write_manifest(
        tmp_path,
        "defaults.json",
        json.dumps(
            {
                "packs": [
                    {
                        "name": "custom-exec",
                        "category": "code_execution",
                        "rules": [
                            {"id": "X-1", "title": "eval", "pattern": r"\beval\(", "severity": "high"},
                            {"id": "X-2", "title": "exec", "pattern": r"\bexec\(", "severity": "medium"},
                        ],
                        "severity": {"X-2": "low"},
                    }
                ]
            },
            indent=2,
        ),
    )

    override_manifest = write_manifest(
        tmp_path,
        "override.yaml",
        """
packs:
  - name: custom-exec
    enabled: false
    severity:
      X-1: critical
  - name: custom-prompt
    category: prompt-injection
    rules:
      - id: P-1
        pattern: 'ignore previous'
        file_kinds: [prose]
""",
    )

    manager = RulePackManager(default_manifests=[default_manifest])
    packs = manager.load([override_manifest])

    packs_by_name = {pack.name: pack for pack in packs}
    assert set(packs_by_name) == {"custom-exec", "custom-prompt"}

    exec_pack = packs_by_name["custom-exec"]
    assert exec_pack.enabled is False
    assert set(exec_pack.rules) == {"X-1", "X-2"}
    assert exec_pack.severity_overrides == {
        "X-1": FindingSeverity.CRITICAL,
        "X-2": FindingSeverity.LOW,
    }

    prompt_pack = packs_by_name["custom-prompt"]
    assert prompt_pack.category is FindingCategory.PROMPT_INJECTION
    rule = prompt_pack.rules["P-1"]
    assert rule.severity is FindingSeverity.MEDIUM
    assert rule.file_kinds == [FileKind.PROSE]
    assert rule.title == "P-1"

    enabled = manager.enabled_packs([override_manifest])
    assert [pack.name for pack in enabled] == ["custom-prompt"]


def test_effective_rules_apply_overrides_and_disabled(tmp_path: Path):
    manifest = write_manifest(
        tmp_path,
        "pack.yaml",
        """
packs:
  - name: demo
    category: credential_access
    rules:
      - {id: C-1, pattern: '\\.ssh/', severity: high}
      - {id: C-2, pattern: '\\.aws/', severity: high}
      - {id: C-3, pattern: '\\.npmrc', severity: high}
    severity:
      C-1: med
    disabled: [C-2]
""",
    )

    manager = RulePackManager(default_manifests=[manifest], disabled_rules=["C-3"])
    rules = {rule.id: rule for rule in manager.rules()}

    assert set(rules) == {"C-1"}
    assert rules["C-1"].severity is FindingSeverity.MEDIUM
    assert rules["C-1"].category is FindingCategory.CREDENTIAL_ACCESS


def test_default_manifest_loaded():
    manager = RulePackManager()
    packs = manager.enabled_packs()

    assert {pack.name for pack in packs} == {
        "code-execution",
        "shell-injection",
        "data-exfiltration",
        "credential-access",
        "prompt-injection",
        "obfuscation",
    }

    compiled = manager.compiled_rules()
    categories = {compiled_rule.rule.category for compiled_rule in compiled}
    assert FindingCategory.DETECTOR_ERROR not in categories
    assert len(categories) == 6
    assert len({compiled_rule.rule.id for compiled_rule in compiled}) == len(compiled)


def test_builtin_prompt_rules_only_apply_to_prose_and_config():
    rules = [rule for rule in RulePackManager().rules() if rule.category is FindingCategory.PROMPT_INJECTION]

    assert rules
    for rule in rules:
        assert rule.applies_to(FileKind.PROSE, "md")
        assert rule.applies_to(FileKind.CONFIG, "json")
        assert not rule.applies_to(FileKind.CODE, "py")


def test_invalid_pattern_names_rule(tmp_path: Path):
    manifest = write_manifest(
        tmp_path,
        "broken.yaml",
        "packs:\n  - name: broken\n    category: obfuscation\n    rules:\n      - {id: BAD-1, pattern: '(unclosed'}\n",
    )

    manager = RulePackManager(default_manifests=[manifest])
    with pytest.raises(RulePackError, match="BAD-1"):
        manager.compiled_rules()


def test_unknown_category_rejected(tmp_path: Path):
    manifest = write_manifest(
        tmp_path,
        "unknown.yaml",
        "packs:\n  - name: odd\n    category: crypto_mining\n    rules:\n      - {id: O-1, pattern: 'xmrig'}\n",
    )

    with pytest.raises(RulePackError, match="crypto_mining"):
        RulePackManager(default_manifests=[manifest]).load()


def test_directory_manifests_expand_sorted(tmp_path: Path):
    packs_dir = tmp_path / "packs"
    packs_dir.mkdir()
    write_manifest(
        packs_dir,
        "b.yaml",
        "packs:\n  - name: shared\n    category: obfuscation\n    rules:\n      - {id: S-1, pattern: 'two', severity: high}\n",
    )
    write_manifest(
        packs_dir,
        "a.yaml",
        "packs:\n  - name: shared\n    category: obfuscation\n    rules:\n      - {id: S-1, pattern: 'one', severity: low}\n",
    )
    write_manifest(packs_dir, "notes.txt", "not a manifest")

    rules = RulePackManager(default_manifests=[packs_dir]).rules()

    assert [(rule.id, rule.pattern) for rule in rules] == [("S-1", "two")]


def test_missing_manifest_raises(tmp_path: Path):
    manager = RulePackManager()
    with pytest.raises(RulePackError):
        manager.load([tmp_path / "missing.yaml"])
