"""Scanner configuration loaded from an optional YAML file."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .discovery import DEFAULT_MAX_FILE_SIZE
from .logger import get_logger
from .models import FindingCategory, FindingSeverity

logger = get_logger(__name__)

CONFIG_FILENAME = ".agent-security.yaml"
CONFIG_ENV_VAR = "AGENT_SECURITY_CONFIG"

_LIST_KEYS = (
    "official_publishers",
    "trusted_packages",
    "skip_dirs",
    "allowlist",
    "disabled_rules",
    "disabled_categories",
    "rule_manifests",
)
_BOOL_KEYS = ("include_clean_files", "skip_deps", "installed_only", "enable_entropy")
_INT_KEYS = ("decode_depth", "max_file_size", "workers")


class ConfigError(RuntimeError):
    """Raised when a configuration file cannot be read or is invalid."""


@dataclass(slots=True)
class Config:
    official_publishers: List[str] = field(default_factory=list)
    trusted_packages: List[str] = field(default_factory=list)
    skip_dirs: List[str] = field(default_factory=list)
    allowlist: List[str] = field(default_factory=list)
    disabled_rules: List[str] = field(default_factory=list)
    disabled_categories: List[FindingCategory] = field(default_factory=list)
    rule_manifests: List[str] = field(default_factory=list)
    min_severity: Optional[FindingSeverity] = None
    include_clean_files: bool = False
    decode_depth: int = 1
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    workers: Optional[int] = None
    timeout: Optional[float] = None
    skip_deps: bool = False
    installed_only: bool = False
    enable_entropy: bool = False
    source: Optional[Path] = None

    # ------------------------------------------------------------------
    @classmethod
    def load(cls, path: str | os.PathLike[str]) -> "Config":
        """Load a configuration file, raising :class:`ConfigError` on problems."""

        config_path = Path(path).expanduser()
        if not config_path.is_file():
            raise ConfigError(f"Config file not found: {config_path}")

        try:
            data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        except OSError as exc:
            raise ConfigError(f"Failed to read config file {config_path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in config file {config_path}") from exc

        if not isinstance(data, Mapping):
            raise ConfigError(f"Config file must contain a mapping: {config_path}")

        config = cls.from_mapping(data, base_dir=config_path.parent)
        config.source = config_path
        logger.debug("Loaded config", path=str(config_path))
        return config

    # ------------------------------------------------------------------
    @classmethod
    def load_default(cls, cwd: Path | None = None) -> "Config":
        """Load ``$AGENT_SECURITY_CONFIG`` or ``./.agent-security.yaml`` if present."""

        env_path = os.environ.get(CONFIG_ENV_VAR)
        if env_path:
            return cls.load(env_path)

        candidate = (cwd or Path.cwd()) / CONFIG_FILENAME
        if candidate.is_file():
            return cls.load(candidate)
        return cls()

    # ------------------------------------------------------------------
    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, base_dir: Path | None = None) -> "Config":
        known = {f.name for f in fields(cls)} - {"source"}
        values: Dict[str, Any] = {}

        for key, value in data.items():
            if key not in known:
                logger.warning("Ignoring unknown config key", key=key)
                continue
            if value is None:
                continue

            if key in _LIST_KEYS:
                if isinstance(value, str):
                    value = [value]
                if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
                    raise ConfigError(f"Config key '{key}' must be a list of strings")
                values[key] = list(value)
            elif key in _BOOL_KEYS:
                if not isinstance(value, bool):
                    raise ConfigError(f"Config key '{key}' must be true or false")
                values[key] = value
            elif key in _INT_KEYS:
                if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                    raise ConfigError(f"Config key '{key}' must be a non-negative integer")
                values[key] = value
            elif key == "timeout":
                if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                    raise ConfigError("Config key 'timeout' must be a positive number of seconds")
                values[key] = float(value)
            elif key == "min_severity":
                try:
                    values[key] = FindingSeverity.parse(value)
                except ValueError as exc:
                    raise ConfigError(str(exc)) from exc

        if "disabled_categories" in values:
            try:
                values["disabled_categories"] = [
                    FindingCategory.parse(item) for item in values["disabled_categories"]
                ]
            except ValueError as exc:
                raise ConfigError(str(exc)) from exc

        if base_dir is not None and "rule_manifests" in values:
            values["rule_manifests"] = [
                str((base_dir / Path(item).expanduser()).resolve()) for item in values["rule_manifests"]
            ]

        return cls(**values)

    # ------------------------------------------------------------------
    def merged(self, **overrides: Any) -> "Config":
        """Return a copy with every non-``None`` override applied.

        List overrides extend the configured lists instead of replacing them.
        """

        changes: Dict[str, Any] = {}
        for key, value in overrides.items():
            if value is None:
                continue
            current = getattr(self, key)
            if isinstance(current, list):
                changes[key] = current + [item for item in value if item not in current]
            else:
                changes[key] = value
        return replace(self, **changes)


def generate_default_config() -> str:
    """Return a commented configuration file with the default settings."""

    return f"""\
# agent-security configuration
# Command-line flags override the values below.

# Publishers treated as first-party by --third-party-only, in addition to
# the built-in list (anthropic, anthropics, claude-plugins-official,
# anthropic-agent-skills).
official_publishers: []

# npm packages under node_modules/ that are never scanned.
trusted_packages: []

# Directory names skipped anywhere in the tree.
skip_dirs: []

# Path globs (relative to the scan root) that are never scanned.
allowlist: []

# Rule ids and detector categories to turn off.
disabled_rules: []
disabled_categories: []

# Extra rule pack files or directories, relative to this file.
rule_manifests: []

# Lowest severity shown in reports: info, low, medium, high or critical.
# The verdict always uses every finding.
min_severity: null

# Include files without findings in the results.
include_clean_files: false

# How many times encoded payloads are decoded and rescanned.
decode_depth: 1

# Files larger than this many bytes are skipped.
max_file_size: {DEFAULT_MAX_FILE_SIZE}

# Worker threads (null picks a default) and global timeout in seconds.
workers: null
timeout: null

# Skip node_modules/bower_components and do not run npm install on vet.
skip_deps: false

# Only scan files that ship when the package is installed.
installed_only: false

# Flag long high-entropy strings (packed or encrypted payloads).
enable_entropy: false
"""


__all__ = [
    "CONFIG_ENV_VAR",
    "CONFIG_FILENAME",
    "Config",
    "ConfigError",
    "generate_default_config",
]
