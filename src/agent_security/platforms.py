"""Platform profiles: where extensions live and which publishers are official."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, MutableMapping, Optional, Tuple

from .discovery import FileDiscovery
from .logger import get_logger
from .models import ComponentType

logger = get_logger(__name__)

DEFAULT_OFFICIAL_PUBLISHERS = frozenset(
    {"anthropic", "anthropics", "claude-plugins-official", "anthropic-agent-skills"}
)

PLUGIN_MANIFEST = Path(".claude-plugin") / "plugin.json"

_EXTENSION_COMPONENTS = {
    "js": ComponentType.PLUGIN,
    "ts": ComponentType.PLUGIN,
    "mjs": ComponentType.PLUGIN,
    "cjs": ComponentType.PLUGIN,
    "py": ComponentType.PLUGIN,
    "json": ComponentType.CONFIG,
    "yaml": ComponentType.CONFIG,
    "yml": ComponentType.CONFIG,
    "toml": ComponentType.CONFIG,
    "md": ComponentType.PROMPT,
    "sh": ComponentType.HOOK,
    "bash": ComponentType.HOOK,
    "zsh": ComponentType.HOOK,
}


class Platform(str, Enum):
    CLAUDE_CODE = "claude-code"
    GENERIC = "generic"

    @classmethod
    def parse(cls, value: "str | Platform") -> "Platform":
        if isinstance(value, Platform):
            return value
        normalized = str(value).strip().lower().replace("_", "-")
        if normalized == "claude":
            normalized = cls.CLAUDE_CODE.value
        try:
            return cls(normalized)
        except ValueError as exc:
            choices = ", ".join(platform.value for platform in cls)
            raise ValueError(f"Unknown platform: {value} (expected one of {choices})") from exc


def _manifest_author(manifest: Path) -> Optional[str]:
    try:
        data: Any = json.loads(manifest.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.debug("Ignoring unreadable plugin manifest", path=str(manifest), error=str(exc))
        return None
    if not isinstance(data, dict):
        return None
    author = data.get("author")
    if isinstance(author, dict):
        author = author.get("name")
    return str(author).strip().lower() if author else None


@dataclass(frozen=True)
class PlatformProfile:
    """Conventions of one agent platform."""

    platform: Platform
    default_roots: Tuple[str, ...] = ()
    official_publishers: frozenset[str] = field(default_factory=frozenset)
    hook_dirs: Tuple[str, ...] = ("hooks",)

    def with_publishers(self, publishers: Iterable[str]) -> "PlatformProfile":
        extra = {publisher.strip().lower() for publisher in publishers if publisher.strip()}
        if not extra:
            return self
        return replace(self, official_publishers=self.official_publishers | extra)

    # ------------------------------------------------------------------
    def classify(self, relative_path: str) -> ComponentType:
        """Return the component type of a file from its path."""

        path = Path(relative_path)
        if any(part in self.hook_dirs for part in path.parts[:-1]):
            return ComponentType.HOOK
        return _EXTENSION_COMPONENTS.get(path.suffix.lower().lstrip("."), ComponentType.OTHER)

    # ------------------------------------------------------------------
    def is_first_party(
        self,
        root: Path,
        path: Path,
        *,
        cache: MutableMapping[Path, Optional[str]] | None = None,
    ) -> bool:
        """Return ``True`` when ``path`` belongs to an official publisher.

        A file is first-party when any segment of its path below ``root``
        names an official publisher, or when the nearest plugin manifest at or
        above its directory (up to ``root``) names one as author.
        """

        if not self.official_publishers:
            return False

        try:
            relative = path.relative_to(root)
        except ValueError:
            relative = path
        if any(part.lower() in self.official_publishers for part in relative.parts):
            return True

        author = self._nearest_author(root, path.parent, cache if cache is not None else {})
        return author is not None and author in self.official_publishers

    # ------------------------------------------------------------------
    def _nearest_author(
        self,
        root: Path,
        directory: Path,
        cache: MutableMapping[Path, Optional[str]],
    ) -> Optional[str]:
        visited: List[Path] = []
        author: Optional[str] = None
        current = directory
        while True:
            if current in cache:
                author = cache[current]
                break
            visited.append(current)
            manifest = current / PLUGIN_MANIFEST
            if manifest.is_file():
                author = _manifest_author(manifest)
                break
            if current == root or current.parent == current:
                break
            current = current.parent

        for directory_seen in visited:
            cache[directory_seen] = author
        return author

    # ------------------------------------------------------------------
    def existing_roots(self, home: Path | None = None) -> List[Path]:
        """Return the default scan roots that exist for this user."""

        home = home or Path.home()
        return [home / root for root in self.default_roots if (home / root).exists()]


PROFILES: Dict[Platform, PlatformProfile] = {
    Platform.CLAUDE_CODE: PlatformProfile(
        platform=Platform.CLAUDE_CODE,
        default_roots=(".claude", ".claude.json", "CLAUDE.md"),
        official_publishers=DEFAULT_OFFICIAL_PUBLISHERS,
    ),
    Platform.GENERIC: PlatformProfile(
        platform=Platform.GENERIC,
        official_publishers=DEFAULT_OFFICIAL_PUBLISHERS,
    ),
}


def get_profile(
    platform: "Platform | str" = Platform.GENERIC,
    *,
    extra_publishers: Iterable[str] = (),
) -> PlatformProfile:
    return PROFILES[Platform.parse(platform)].with_publishers(extra_publishers)


def list_components(
    root: Path | str,
    profile: PlatformProfile,
    *,
    discovery: FileDiscovery | None = None,
) -> Dict[ComponentType, List[str]]:
    """Group the scannable files under ``root`` by component type."""

    finder = discovery or FileDiscovery(profile=profile)
    components: Dict[ComponentType, List[str]] = {component: [] for component in ComponentType}
    for target in finder.discover(root).targets:
        components[target.component_type].append(target.relative_path)
    return components


__all__ = [
    "DEFAULT_OFFICIAL_PUBLISHERS",
    "PLUGIN_MANIFEST",
    "PROFILES",
    "Platform",
    "PlatformProfile",
    "get_profile",
    "list_components",
]
