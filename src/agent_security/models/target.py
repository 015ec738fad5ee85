"""Models describing the files selected for scanning."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class FileKind(str, Enum):
    """Broad content kind used to decide which rules apply to a file."""

    CODE = "code"
    PROSE = "prose"
    CONFIG = "config"
    OTHER = "other"


class ComponentType(str, Enum):
    """Role a file plays inside an agent extension."""

    PLUGIN = "plugin"
    HOOK = "hook"
    PROMPT = "prompt"
    CONFIG = "config"
    OTHER = "other"


@dataclass(slots=True)
class ScanTarget:
    """A discovered file that is eligible for detection."""

    path: Path
    relative_path: str
    kind: FileKind = FileKind.OTHER
    component_type: ComponentType = ComponentType.OTHER
    third_party: bool = True

    @property
    def extension(self) -> str:
        """Return the lower-cased file extension without the leading dot."""

        return self.path.suffix.lower().lstrip(".")
