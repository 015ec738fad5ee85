"""File discovery and installed-only scoping."""

from .file_discovery import (
    DEFAULT_MAX_FILE_SIZE,
    DiscoveryResult,
    FileDiscovery,
    PathNotFound,
    classify_kind,
    is_binary,
)
from .scope import InstalledScope, NpmWhitelist, is_dev_only, npm_files_whitelist

__all__ = [
    "DEFAULT_MAX_FILE_SIZE",
    "DiscoveryResult",
    "FileDiscovery",
    "InstalledScope",
    "NpmWhitelist",
    "PathNotFound",
    "classify_kind",
    "is_binary",
    "is_dev_only",
    "npm_files_whitelist",
]
