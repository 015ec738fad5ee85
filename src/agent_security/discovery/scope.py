"""Installed-only scope: which files of a package actually ship to users.

Patterns use :func:`fnmatch.fnmatchcase` against POSIX relative paths, so
``*`` also crosses directory separators (``*.min.js`` matches
``lib/app.min.js``) while directory patterns such as ``tests/**`` only match
at the scan root.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any, Iterable, List, Optional

from ..logger import get_logger

logger = get_logger(__name__)

DEV_ONLY_DIRS = (
    "test",
    "tests",
    "__tests__",
    "spec",
    "examples",
    "example",
    "docs",
    "doc",
    "benchmarks",
    "benches",
    "fixtures",
    "__fixtures__",
    "__mocks__",
    ".github",
    ".circleci",
    ".husky",
    "e2e",
    "cypress",
    "playwright",
    "coverage",
    ".nyc_output",
    "dist",
    "build",
    "out",
)

DEV_ONLY_FILES = (
    "*.test.js",
    "*.test.ts",
    "*.test.jsx",
    "*.test.tsx",
    "*.test.mjs",
    "*.test.cjs",
    "*.spec.js",
    "*.spec.ts",
    "*.spec.jsx",
    "*.spec.tsx",
    "*.spec.mjs",
    "*.spec.cjs",
    "*_test.py",
    "test_*.py",
    "*_test.go",
    "jest.config.*",
    "vitest.config.*",
    "Dockerfile",
    "Dockerfile.*",
    "docker-compose*",
    ".editorconfig",
    ".gitattributes",
    ".eslintrc*",
    ".prettierrc*",
    "tsconfig.test.json",
    ".travis.yml",
    "Makefile",
    "Gruntfile*",
    "Gulpfile*",
    "rollup.config.*",
    "webpack.config.*",
    "*.min.js",
    "*.min.css",
    "*.min.mjs",
    "vendor-*.js",
)

DEV_ONLY_GLOBS = tuple(f"{name}/**" for name in DEV_ONLY_DIRS) + DEV_ONLY_FILES

# npm publishes these whatever the "files" field says.
NPM_ALWAYS_INCLUDED = (
    "package.json",
    "README*",
    "readme*",
    "LICENSE*",
    "license*",
    "LICENCE*",
    "licence*",
    "CHANGELOG*",
    "changelog*",
)

NPM_ENTRY_FIELDS = ("main", "module", "types", "typings", "browser")


def matches_any(relative_path: str, patterns: Iterable[str]) -> bool:
    return any(fnmatchcase(relative_path, pattern) for pattern in patterns)


def is_dev_only(relative_path: str) -> bool:
    """Return ``True`` for conventional paths that are not shipped on install."""

    return matches_any(relative_path, DEV_ONLY_GLOBS)


def _normalize_entry(value: str) -> str:
    value = value.strip()
    while value.startswith("./"):
        value = value[2:]
    return value


@dataclass(slots=True)
class NpmWhitelist:
    """Files npm would publish according to ``package.json``."""

    patterns: List[str] = field(default_factory=list)
    entry_points: List[str] = field(default_factory=list)

    def matches(self, relative_path: str) -> bool:
        return relative_path in self.entry_points or matches_any(relative_path, self.patterns)

    def is_entry_point(self, relative_path: str) -> bool:
        return relative_path in self.entry_points

    # ------------------------------------------------------------------
    @classmethod
    def from_package(cls, package: Any) -> Optional["NpmWhitelist"]:
        if not isinstance(package, dict):
            return None
        files = package.get("files")
        if not isinstance(files, list) or not files:
            return None

        patterns: List[str] = []
        for entry in files:
            if not isinstance(entry, str) or not entry.strip():
                continue
            pattern = _normalize_entry(entry)
            if "*" in pattern:
                patterns.append(pattern)
            else:
                # Bare names may be files or directories.
                patterns.append(pattern.rstrip("/"))
                patterns.append(f"{pattern.rstrip('/')}/**")
        patterns.extend(NPM_ALWAYS_INCLUDED)

        entry_points: List[str] = []
        for name in NPM_ENTRY_FIELDS:
            value = package.get(name)
            if isinstance(value, str) and value.strip():
                entry_points.append(_normalize_entry(value))

        bin_field = package.get("bin")
        if isinstance(bin_field, str):
            entry_points.append(_normalize_entry(bin_field))
        elif isinstance(bin_field, dict):
            entry_points.extend(
                _normalize_entry(value) for value in bin_field.values() if isinstance(value, str)
            )

        return cls(patterns=patterns, entry_points=entry_points)


def npm_files_whitelist(root: Path) -> Optional[NpmWhitelist]:
    """Read the ``files`` whitelist from ``root/package.json`` if there is one."""

    package_path = root / "package.json"
    if not package_path.is_file():
        return None
    try:
        package = json.loads(package_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable package.json", path=str(package_path), error=str(exc))
        return None
    return NpmWhitelist.from_package(package)


class InstalledScope:
    """Decide whether a file would be present after installing the package.

    With an npm ``files`` whitelist the whitelist decides and only the
    dev-only file patterns (tests, minified bundles, tool configs) are dropped
    on top of it. Without one, every conventional dev-only path is dropped.
    Entry points are always kept.
    """

    def __init__(self, whitelist: Optional[NpmWhitelist] = None) -> None:
        self.whitelist = whitelist

    @classmethod
    def for_root(cls, root: Path) -> "InstalledScope":
        return cls(npm_files_whitelist(root))

    def includes(self, relative_path: str) -> bool:
        if self.whitelist is None:
            return not is_dev_only(relative_path)
        if self.whitelist.is_entry_point(relative_path):
            return True
        if not self.whitelist.matches(relative_path):
            return False
        return not matches_any(relative_path, DEV_ONLY_FILES)


__all__ = [
    "DEV_ONLY_DIRS",
    "DEV_ONLY_FILES",
    "DEV_ONLY_GLOBS",
    "InstalledScope",
    "NpmWhitelist",
    "is_dev_only",
    "matches_any",
    "npm_files_whitelist",
]
