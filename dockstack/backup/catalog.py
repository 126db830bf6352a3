"""Artifact discovery and chain resolution.

Chain validation works on parsed ArtifactId values, never on raw names.
"""
from pathlib import Path
from typing import Dict, List, Optional

from dockstack.core.errors import ChainInconsistentError
from dockstack.core.logger import get_logger
from dockstack.models.artifact import Artifact, ArtifactId, ArtifactKind

logger = get_logger(__name__)

KIND_DIRS = {
    ArtifactKind.FULL: "full",
    ArtifactKind.INCREMENTAL: "incremental",
    ArtifactKind.DUMP: "dumps",
}


def _is_valid_entry(artifact: Artifact) -> bool:
    if artifact.kind == ArtifactKind.DUMP or artifact.archived:
        return artifact.path.is_file()
    return artifact.path.is_dir()


def list_artifacts(root: Path) -> List[Artifact]:
    """List every artifact under root.

    Looks at the top level of root and at its full/, incremental/ and
    dumps/ subdirectories. When the same identity appears twice the
    first location wins (top level before subdirectories).

    Returns:
        Artifacts ordered by identity (chain order for one base)
    """
    root = Path(root)
    if not root.is_dir():
        return []

    found: Dict[ArtifactId, Artifact] = {}
    for directory in (root, *(root / name for name in KIND_DIRS.values())):
        if not directory.is_dir():
            continue
        for path in sorted(directory.iterdir()):
            artifact = Artifact.from_path(path)
            if artifact is None or not _is_valid_entry(artifact):
                continue
            if artifact.id in found:
                logger.debug(f"Ignoring duplicate artifact {path}")
                continue
            found[artifact.id] = artifact

    return sorted(found.values(), key=lambda a: (a.id.sort_key, a.kind.value))


def physical_artifacts(artifacts: List[Artifact]) -> List[Artifact]:
    return [a for a in artifacts if a.kind != ArtifactKind.DUMP]


def latest_full(artifacts: List[Artifact]) -> Optional[Artifact]:
    """Return the full artifact with the highest (date, seq)."""
    fulls = [a for a in artifacts if a.kind == ArtifactKind.FULL]
    if not fulls:
        return None
    return max(fulls, key=lambda a: a.id.sort_key)


def incrementals_for(artifacts: List[Artifact], base: ArtifactId) -> List[Artifact]:
    """Incrementals built on base, in ascending inc_seq order."""
    return sorted(
        (a for a in artifacts if a.kind == ArtifactKind.INCREMENTAL and a.id.base == base),
        key=lambda a: a.id.inc_seq,
    )


def check_contiguous(base: ArtifactId, incrementals: List[Artifact]) -> None:
    """Require incremental numbers 1..N with no gaps.

    Raises:
        ChainInconsistentError: On the first missing number
    """
    for expected, artifact in enumerate(incrementals, start=1):
        if artifact.id.inc_seq != expected:
            missing = ArtifactId.incremental(base, expected)
            raise ChainInconsistentError(
                f"Backup chain inconsistent: expected {missing}, found {artifact.id}"
            )


def next_full_id(artifacts: List[Artifact], date: str) -> ArtifactId:
    """Next full identity for a date: highest sequence of that date + 1."""
    seqs = [a.id.seq for a in artifacts if a.kind == ArtifactKind.FULL and a.id.date == date]
    return ArtifactId.full(date, max(seqs, default=0) + 1)


def next_incremental_id(artifacts: List[Artifact], base: ArtifactId) -> ArtifactId:
    incs = incrementals_for(artifacts, base)
    return ArtifactId.incremental(base, max((a.id.inc_seq for a in incs), default=0) + 1)


def resolve_restore_chain(restore_dir: Path) -> List[Artifact]:
    """Resolve the chain to restore: latest full plus its incrementals.

    Returns:
        [full, inc_01, inc_02, ...], or an empty list when restore_dir
        holds no full or incremental artifacts

    Raises:
        ChainInconsistentError: Gap in the incremental numbering, or
            incrementals present without any full artifact
    """
    artifacts = physical_artifacts(list_artifacts(restore_dir))
    if not artifacts:
        return []

    full = latest_full(artifacts)
    if full is None:
        raise ChainInconsistentError(
            f"Incremental backups found in {restore_dir} but no full backup to apply them to"
        )

    incrementals = incrementals_for(artifacts, full.id)
    check_contiguous(full.id, incrementals)

    ignored = [a for a in artifacts if a is not full and a not in incrementals]
    for artifact in ignored:
        logger.info(f"Ignoring {artifact.id}: not part of the chain of {full.id}")

    return [full, *incrementals]
