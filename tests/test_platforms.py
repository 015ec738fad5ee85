import json
from pathlib import Path

import pytest

from agent_security.models import ComponentType
from agent_security.platforms import Platform, get_profile, list_components


def write(root: Path, relative: str, content: str = "x\n") -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.mark.parametrize("value", ["claude-code", "Claude_Code", "claude", Platform.CLAUDE_CODE])
def test_parse_platform(value):
    assert Platform.parse(value) is Platform.CLAUDE_CODE


def test_parse_unknown_platform():
    with pytest.raises(ValueError, match="expected one of"):
        Platform.parse("emacs")


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("hooks/pre_tool.py", ComponentType.HOOK),
        ("plugin/hooks/hooks.json", ComponentType.HOOK),
        ("plugin/index.ts", ComponentType.PLUGIN),
        ("plugin/server.py", ComponentType.PLUGIN),
        ("settings.json", ComponentType.CONFIG),
        ("commands/review.md", ComponentType.PROMPT),
        ("scripts/setup.sh", ComponentType.HOOK),
        ("assets/logo.svg", ComponentType.OTHER),
    ],
)
def test_classify(path, expected):
    assert get_profile("claude-code").classify(path) is expected


def test_first_party_by_path_segment(tmp_path: Path):
    profile = get_profile("claude-code")
    official = write(tmp_path, "marketplaces/claude-plugins-official/fmt/index.js")
    community = write(tmp_path, "marketplaces/someone/fmt/index.js")

    assert profile.is_first_party(tmp_path, official)
    assert not profile.is_first_party(tmp_path, community)


def test_first_party_by_plugin_manifest_author(tmp_path: Path):
    write(tmp_path, "tool/.claude-plugin/plugin.json", json.dumps({"author": {"name": "Anthropic"}}))
    nested = write(tmp_path, "tool/lib/deep/index.js")
    write(tmp_path, "other/.claude-plugin/plugin.json", json.dumps({"author": "mallory"}))
    other = write(tmp_path, "other/index.js")

    profile = get_profile("generic")
    cache: dict = {}

    assert profile.is_first_party(tmp_path, nested, cache=cache)
    assert not profile.is_first_party(tmp_path, other, cache=cache)
    assert cache[nested.parent] == "anthropic"


def test_extra_publishers_extend_defaults(tmp_path: Path):
    profile = get_profile("generic", extra_publishers=["Acme", " "])
    path = write(tmp_path, "acme/tool.py")

    assert "acme" in profile.official_publishers
    assert "anthropic" in profile.official_publishers
    assert profile.is_first_party(tmp_path, path)
    assert not get_profile("generic").is_first_party(tmp_path, path)


def test_existing_roots(tmp_path: Path):
    (tmp_path / ".claude").mkdir()
    (tmp_path / "CLAUDE.md").write_text("# notes", encoding="utf-8")

    roots = get_profile("claude-code").existing_roots(tmp_path)

    assert roots == [tmp_path / ".claude", tmp_path / "CLAUDE.md"]
    assert get_profile("generic").existing_roots(tmp_path) == []


def test_list_components_groups_files(tmp_path: Path):
    write(tmp_path, "hooks/notify.sh")
    write(tmp_path, "commands/ship.md")
    write(tmp_path, "plugin.json", "{}")
    write(tmp_path, "server.py")

    components = list_components(tmp_path, get_profile("claude-code"))

    assert components[ComponentType.HOOK] == ["hooks/notify.sh"]
    assert components[ComponentType.PROMPT] == ["commands/ship.md"]
    assert components[ComponentType.CONFIG] == ["plugin.json"]
    assert components[ComponentType.PLUGIN] == ["server.py"]
    assert components[ComponentType.OTHER] == []
