"""Data models for dockstack."""
from dockstack.models.artifact import Artifact, ArtifactId, ArtifactKind
from dockstack.models.state import BackupState, RestoreState
from dockstack.models.template import (
    EnvMergeResult,
    LockState,
    TemplateSnapshot,
    TemplateSource,
)

__all__ = [
    'Artifact',
    'ArtifactId',
    'ArtifactKind',
    'BackupState',
    'RestoreState',
    'EnvMergeResult',
    'LockState',
    'TemplateSnapshot',
    'TemplateSource',
]
