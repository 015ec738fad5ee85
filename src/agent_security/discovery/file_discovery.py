"""Walk a scan root and select the text files the detectors should see."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence

from ..logger import get_logger
from ..models import ComponentType, FileKind, ScanTarget
from .scope import InstalledScope, matches_any

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from ..platforms import PlatformProfile

logger = get_logger(__name__)

DEFAULT_SKIP_DIRS = frozenset(
    {
        ".git",
        ".hg",
        ".svn",
        "__pycache__",
        ".mypy_cache",
        ".pytest_cache",
        ".ruff_cache",
        ".tox",
        ".venv",
        ".cache",
    }
)
DEPENDENCY_DIRS = frozenset({"node_modules", "bower_components"})

DEFAULT_MAX_FILE_SIZE = 1024 * 1024
SNIFF_BYTES = 8192
NON_TEXT_THRESHOLD = 0.30

CODE_EXTENSIONS = frozenset(
    {
        "py", "pyw", "js", "mjs", "cjs", "jsx", "ts", "mts", "cts", "tsx",
        "sh", "bash", "zsh", "fish", "ps1", "psm1", "bat", "cmd",
        "rb", "pl", "php", "lua", "vbs",
    }
)
PROSE_EXTENSIONS = frozenset({"md", "mdx", "markdown", "txt", "rst"})
CONFIG_EXTENSIONS = frozenset({"json", "jsonc", "json5", "yaml", "yml", "toml", "ini", "cfg"})

_TEXT_BYTES = bytes({7, 8, 9, 10, 12, 13, 27} | set(range(0x20, 0x100)) - {0x7F})


class PathNotFound(RuntimeError):
    """Raised when a scan root or local source does not exist or cannot be read."""


def is_binary(sample: bytes) -> bool:
    """Classify a leading chunk of a file as binary by its content."""

    if not sample:
        return False
    if b"\x00" in sample:
        return True
    non_text = sample.translate(None, _TEXT_BYTES)
    return len(non_text) / len(sample) > NON_TEXT_THRESHOLD


def classify_kind(path: Path, sample: bytes = b"") -> FileKind:
    extension = path.suffix.lower().lstrip(".")
    if extension in CODE_EXTENSIONS:
        return FileKind.CODE
    if extension in PROSE_EXTENSIONS:
        return FileKind.PROSE
    if extension in CONFIG_EXTENSIONS:
        return FileKind.CONFIG
    if sample.startswith(b"#!"):
        return FileKind.CODE
    return FileKind.OTHER


@dataclass(slots=True)
class DiscoveryResult:
    """Files selected for scanning and the ones left out, with reasons."""

    root: Path
    targets: List[ScanTarget] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)


class FileDiscovery:
    """Select files under a root in sorted relative-path order."""

    def __init__(
        self,
        *,
        skip_dirs: Iterable[str] = (),
        skip_deps: bool = False,
        trusted_packages: Iterable[str] = (),
        allowlist: Iterable[str] = (),
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        installed_only: bool = False,
        profile: Optional["PlatformProfile"] = None,
    ) -> None:
        self.skip_dirs = set(DEFAULT_SKIP_DIRS) | set(skip_dirs)
        self.skip_deps = skip_deps
        self.trusted_packages = set(trusted_packages)
        self.allowlist = list(allowlist)
        self.max_file_size = max_file_size
        self.installed_only = installed_only
        self.profile = profile
        self._author_cache: Dict[Path, Optional[str]] = {}

    # ------------------------------------------------------------------
    def discover(self, root: str | os.PathLike[str]) -> DiscoveryResult:
        """Return the scan targets under ``root``.

        ``root`` may be a single file. Raises :class:`PathNotFound` when it
        does not exist or is not readable.
        """

        root_path = Path(root).expanduser()
        if not root_path.exists():
            raise PathNotFound(f"Path not found: {root}")
        if not os.access(root_path, os.R_OK):
            raise PathNotFound(f"Path is not readable: {root}")
        root_path = root_path.resolve()

        if root_path.is_file():
            base = root_path.parent
            result = DiscoveryResult(root=root_path)
            self._consider(base, root_path, result, scope=None)
            return result

        scope = InstalledScope.for_root(root_path) if self.installed_only else None
        result = DiscoveryResult(root=root_path)
        for dirpath, dirnames, filenames in os.walk(root_path):
            current = Path(dirpath)
            rel_parts = current.relative_to(root_path).parts
            dirnames[:] = sorted(name for name in dirnames if not self._skip_dir(rel_parts, name))
            for name in sorted(filenames):
                self._consider(root_path, current / name, result, scope=scope)

        result.targets.sort(key=lambda target: target.relative_path)
        logger.debug(
            "Discovered files",
            root=str(root_path),
            targets=len(result.targets),
            skipped=len(result.skipped),
        )
        return result

    # ------------------------------------------------------------------
    def _skip_dir(self, parent_parts: Sequence[str], name: str) -> bool:
        if name in self.skip_dirs:
            return True
        if self.skip_deps and name in DEPENDENCY_DIRS:
            return True

        relative = "/".join((*parent_parts, name))
        if self.allowlist and matches_any(relative, [p.rstrip("/") for p in self.allowlist]):
            return True

        if self.trusted_packages and parent_parts:
            if parent_parts[-1] in DEPENDENCY_DIRS and name in self.trusted_packages:
                return True
            if (
                len(parent_parts) >= 2
                and parent_parts[-2] in DEPENDENCY_DIRS
                and parent_parts[-1].startswith("@")
                and f"{parent_parts[-1]}/{name}" in self.trusted_packages
            ):
                return True
        return False

    # ------------------------------------------------------------------
    def _consider(
        self,
        base: Path,
        path: Path,
        result: DiscoveryResult,
        *,
        scope: Optional[InstalledScope],
    ) -> None:
        relative = path.relative_to(base).as_posix()

        if self.allowlist and matches_any(relative, self.allowlist):
            result.skipped[relative] = "allowlisted"
            return
        if scope is not None and not scope.includes(relative):
            result.skipped[relative] = "not_installed"
            return

        if path.is_symlink() and not path.resolve().is_relative_to(base):
            result.skipped[relative] = "outside_root"
            logger.debug("Skipping symlink outside the scan root", path=relative)
            return
        if not path.is_file():
            result.skipped[relative] = "not_a_file"
            return

        sample = b""
        try:
            size = path.stat().st_size
            if size > self.max_file_size:
                result.skipped[relative] = "too_large"
                logger.debug("Skipping oversize file", path=relative, size=size)
                return
            with path.open("rb") as handle:
                sample = handle.read(SNIFF_BYTES)
        except OSError as exc:
            # Kept as a target so evaluation records a detector_error finding.
            logger.warning("Cannot sniff file", path=relative, error=str(exc))

        if is_binary(sample):
            result.skipped[relative] = "binary"
            logger.debug("Skipping binary file", path=relative)
            return

        component_type = ComponentType.OTHER
        third_party = True
        if self.profile is not None:
            component_type = self.profile.classify(relative)
            third_party = not self.profile.is_first_party(base, path, cache=self._author_cache)

        result.targets.append(
            ScanTarget(
                path=path,
                relative_path=relative,
                kind=classify_kind(path, sample),
                component_type=component_type,
                third_party=third_party,
            )
        )


__all__ = [
    "CODE_EXTENSIONS",
    "CONFIG_EXTENSIONS",
    "DEFAULT_MAX_FILE_SIZE",
    "DEFAULT_SKIP_DIRS",
    "DEPENDENCY_DIRS",
    "DiscoveryResult",
    "FileDiscovery",
    "PROSE_EXTENSIONS",
    "PathNotFound",
    "classify_kind",
    "is_binary",
]
