"""Template source, snapshot and merge result models."""
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class TemplateSource(BaseModel):
    """Where service templates are fetched from."""

    model_config = ConfigDict(extra='forbid')

    url: str
    ref: Optional[str] = None
    subpath: str = "templates"

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        """Accept remote git URLs and absolute local repository paths."""
        if v.startswith(('https://', 'http://', 'git@', 'file://', '/')):
            return v
        raise ValueError(
            f"Template repository must start with https://, http://, git@, file:// "
            f"or be an absolute path. Got: {v}"
        )

    @field_validator('subpath')
    @classmethod
    def validate_subpath(cls, v):
        """Subpath is relative to the repository root and may not escape it."""
        cleaned = v.strip().strip('/')
        if not cleaned or '..' in Path(cleaned).parts:
            raise ValueError(f"Template subpath must be a relative path inside the repository. Got: {v}")
        return cleaned


@dataclass
class TemplateSnapshot:
    """A fetched template subtree at a resolved revision."""
    revision: str
    root: Path
    source: TemplateSource

    def template_dir(self, name: str) -> Path:
        return self.root / name


class LockState(str, Enum):
    """Template lock comparison result."""
    INITIAL = "initial"
    UP_TO_DATE = "up_to_date"
    STALE = "stale"


@dataclass
class EnvMergeResult:
    """Merged env lines plus the key -> source accumulator."""
    lines: List[str] = field(default_factory=list)
    seen: "OrderedDict[str, str]" = field(default_factory=OrderedDict)
    skipped: List[str] = field(default_factory=list)

    def render(self) -> str:
        return "".join(f"{line}\n" for line in self.lines)
