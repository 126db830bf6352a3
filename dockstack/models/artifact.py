"""Backup artifact identity.

Artifacts are addressed by typed identities instead of raw directory names:

    full          20250101_01             (date, seq)
    incremental   20250101_01_02          (date, seq, inc_seq)
    dump          shop_20250101_031500    (database, date, time)

Single-archive variants carry a kind prefix and a zstd suffix
(full_20250101_01.zst, incremental_20250101_01_02.tar.zst).
"""
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

ARCHIVE_SUFFIXES = (".tar.zst", ".zst")

_FULL_RE = re.compile(r"^(?:full_)?(?P<date>\d{8})_(?P<seq>\d{2,})(?P<ext>\.tar\.zst|\.zst)?$")
_INC_RE = re.compile(
    r"^(?:incremental_)?(?P<date>\d{8})_(?P<seq>\d{2,})_(?P<inc>\d{2,})(?P<ext>\.tar\.zst|\.zst)?$"
)
_DUMP_RE = re.compile(r"^(?P<db>.+)_(?P<date>\d{8})_(?P<time>\d{6})\.sql(?:\.gz)?$")


class ArtifactKind(str, Enum):
    """Kind of backup artifact."""
    FULL = "full"
    INCREMENTAL = "incremental"
    DUMP = "dump"


@dataclass(frozen=True)
class ArtifactId:
    """Composite identity of a backup artifact."""
    kind: ArtifactKind
    date: str
    seq: int = 0
    inc_seq: int = 0
    time: str = ""
    database: str = ""

    @classmethod
    def full(cls, date: str, seq: int) -> "ArtifactId":
        return cls(ArtifactKind.FULL, date, seq)

    @classmethod
    def incremental(cls, base: "ArtifactId", inc_seq: int) -> "ArtifactId":
        if base.kind != ArtifactKind.FULL:
            raise ValueError(f"Incremental base must be a full artifact, got {base.kind.value}")
        return cls(ArtifactKind.INCREMENTAL, base.date, base.seq, inc_seq)

    @classmethod
    def dump(cls, database: str, date: str, time: str) -> "ArtifactId":
        return cls(ArtifactKind.DUMP, date, time=time, database=database)

    @classmethod
    def parse(cls, name: str) -> Optional["ArtifactId"]:
        """Parse a directory or file name into an identity.

        Returns:
            ArtifactId, or None if the name is not an artifact name
        """
        match = _INC_RE.match(name)
        if match:
            return cls(
                ArtifactKind.INCREMENTAL,
                match.group("date"),
                int(match.group("seq")),
                int(match.group("inc")),
            )

        match = _FULL_RE.match(name)
        if match:
            return cls(ArtifactKind.FULL, match.group("date"), int(match.group("seq")))

        match = _DUMP_RE.match(name)
        if match:
            return cls.dump(match.group("db"), match.group("date"), match.group("time"))

        return None

    @property
    def name(self) -> str:
        """Canonical on-disk name (without kind prefix or suffix)."""
        if self.kind == ArtifactKind.FULL:
            return f"{self.date}_{self.seq:02d}"
        if self.kind == ArtifactKind.INCREMENTAL:
            return f"{self.date}_{self.seq:02d}_{self.inc_seq:02d}"
        return f"{self.database}_{self.date}_{self.time}.sql.gz"

    @property
    def base(self) -> "ArtifactId":
        """Full artifact an incremental is built on (self for a full)."""
        if self.kind == ArtifactKind.INCREMENTAL:
            return ArtifactId.full(self.date, self.seq)
        if self.kind == ArtifactKind.FULL:
            return self
        raise ValueError("Dump artifacts have no base")

    @property
    def sort_key(self) -> Tuple:
        return (self.date, self.seq, self.inc_seq, self.time, self.database)

    def __str__(self) -> str:
        return self.name


@dataclass
class Artifact:
    """An artifact identity bound to its location on disk."""
    id: ArtifactId
    path: Path
    archived: bool = field(default=False)

    @classmethod
    def from_path(cls, path: Path) -> Optional["Artifact"]:
        artifact_id = ArtifactId.parse(path.name)
        if artifact_id is None:
            return None
        archived = artifact_id.kind != ArtifactKind.DUMP and path.name.endswith(ARCHIVE_SUFFIXES)
        return cls(artifact_id, path, archived)

    @property
    def kind(self) -> ArtifactKind:
        return self.id.kind
