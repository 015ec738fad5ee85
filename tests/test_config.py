from dataclasses import fields
from pathlib import Path

import pytest
import yaml

from agent_security.config import CONFIG_ENV_VAR, CONFIG_FILENAME, Config, ConfigError, generate_default_config
from agent_security.discovery import DEFAULT_MAX_FILE_SIZE
from agent_security.models import FindingCategory, FindingSeverity


def test_load_parses_and_resolves_manifests(tmp_path: Path):
    config_path = tmp_path / "conf" / "scanner.yaml"
    config_path.parent.mkdir()
    config_path.write_text(
        """
official_publishers: [acme]
trusted_packages: lodash
disabled_categories: [prompt-injection]
rule_manifests: [packs/extra.yaml]
min_severity: med
decode_depth: 2
timeout: 30
installed_only: true
enable_entropy: true
""",
        encoding="utf-8",
    )

    config = Config.load(config_path)

    assert config.official_publishers == ["acme"]
    assert config.trusted_packages == ["lodash"]
    assert config.disabled_categories == [FindingCategory.PROMPT_INJECTION]
    assert config.rule_manifests == [str((config_path.parent / "packs" / "extra.yaml").resolve())]
    assert config.min_severity is FindingSeverity.MEDIUM
    assert config.decode_depth == 2
    assert config.timeout == 30.0
    assert config.installed_only is True
    assert config.enable_entropy is True
    assert config.max_file_size == DEFAULT_MAX_FILE_SIZE
    assert config.source == config_path


@pytest.mark.parametrize(
    "content",
    [
        "decode_depth: -1\n",
        "decode_depth: yes\n",
        "skip_deps: 1\n",
        "enable_entropy: on-demand\n",
        "timeout: 0\n",
        "allowlist: [1, 2]\n",
        "min_severity: severe\n",
        "disabled_categories: [mining]\n",
        "- just\n- a list\n",
        "key: [unclosed\n",
    ],
)
def test_invalid_values_raise(tmp_path: Path, content: str):
    config_path = tmp_path / CONFIG_FILENAME
    config_path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError):
        Config.load(config_path)


def test_missing_file_raises(tmp_path: Path):
    with pytest.raises(ConfigError, match="not found"):
        Config.load(tmp_path / "absent.yaml")


def test_unknown_keys_are_ignored(tmp_path: Path):
    config = Config.from_mapping({"colour": "blue", "workers": 4})

    assert config.workers == 4
    assert not hasattr(config, "colour")


def test_load_default_prefers_env_then_cwd(tmp_path: Path, monkeypatch):
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    assert Config.load_default(tmp_path) == Config()

    (tmp_path / CONFIG_FILENAME).write_text("workers: 2\n", encoding="utf-8")
    assert Config.load_default(tmp_path).workers == 2

    env_config = tmp_path / "env.yaml"
    env_config.write_text("workers: 7\n", encoding="utf-8")
    monkeypatch.setenv(CONFIG_ENV_VAR, str(env_config))
    assert Config.load_default(tmp_path).workers == 7


def test_merged_extends_lists_and_ignores_none():
    base = Config(trusted_packages=["lodash"], decode_depth=2)

    merged = base.merged(trusted_packages=["lodash", "chalk"], decode_depth=None, installed_only=True)

    assert merged.trusted_packages == ["lodash", "chalk"]
    assert merged.decode_depth == 2
    assert merged.installed_only is True
    assert base.trusted_packages == ["lodash"]


def test_generated_config_round_trips(tmp_path: Path):
    config_path = tmp_path / CONFIG_FILENAME
    config_path.write_text(generate_default_config(), encoding="utf-8")

    data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    loaded = Config.load(config_path)

    assert set(data) == {field.name for field in fields(Config)} - {"source"}
    loaded.source = None
    assert loaded == Config()
