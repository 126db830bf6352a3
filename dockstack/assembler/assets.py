"""Copying template assets into a project and rotating compose backups."""
import shutil
from pathlib import Path
from typing import Dict, List

from dockstack.core.config import SCRIPTS_DIR, SECRETS_DIR
from dockstack.core.errors import CopyError, NotFoundError
from dockstack.core.logger import get_logger

logger = get_logger(__name__)

MERGED_ASSET_DIRS = (SECRETS_DIR, SCRIPTS_DIR)


def fragment_name(service: str) -> str:
    return f"docker-compose.{service}.yaml"


def merge_tree(src: Path, dest: Path, dry_run: bool = False) -> List[Path]:
    """Copy files from src into dest without overwriting existing files.

    Returns:
        Destination paths that were (or would be) created

    Raises:
        CopyError: On any filesystem failure
    """
    created = []
    try:
        for item in sorted(src.rglob('*')):
            if item.is_dir():
                continue
            target = dest / item.relative_to(src)
            if target.exists():
                logger.info(f"'{target.relative_to(dest)}' exists - skipping")
                continue
            if dry_run:
                logger.info(f"DRY-RUN: Would copy {item.name} to {target}")
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(item, target)
                logger.info(f"Copied new file: {target.relative_to(dest)}")
            created.append(target)
    except OSError as e:
        raise CopyError(f"Failed to copy {src} into {dest}: {e}")
    return created


def copy_service_assets(
    template_dir: Path,
    service: str,
    project_dir: Path,
    force: bool = False,
    dry_run: bool = False,
) -> List[Path]:
    """Copy one template's fragment and merge its secrets/scripts.

    The fragment is copied when it is missing from the project or when
    force is set. Nested secrets/ and scripts/ are merged file by file and
    never overwrite existing files.

    Returns:
        Paths created or overwritten in the project

    Raises:
        NotFoundError: Template directory or fragment missing
        CopyError: Any filesystem copy failure
    """
    template_dir = Path(template_dir)
    project_dir = Path(project_dir)

    if not template_dir.is_dir():
        raise NotFoundError(f"Template '{service}' not found at {template_dir}")

    source_fragment = template_dir / fragment_name(service)
    target_fragment = project_dir / fragment_name(service)
    written: List[Path] = []

    if not target_fragment.exists() or force:
        if not source_fragment.is_file():
            raise NotFoundError(f"Template '{service}' has no {source_fragment.name}")
        if dry_run:
            logger.info(f"DRY-RUN: Would copy compose file {target_fragment.name}")
        else:
            try:
                shutil.copyfile(source_fragment, target_fragment)
            except OSError as e:
                raise CopyError(f"Failed to copy {source_fragment} to {target_fragment}: {e}")
            logger.info(f"Copied compose file: {target_fragment.name}")
        written.append(target_fragment)
    else:
        logger.info(f"Compose file exists: {target_fragment.name}")

    for asset_dir in MERGED_ASSET_DIRS:
        source_assets = template_dir / asset_dir
        if source_assets.is_dir():
            logger.info(f"Checking {asset_dir} for {service}")
            written.extend(merge_tree(source_assets, project_dir / asset_dir, dry_run=dry_run))

    return written


def backup_project_files(
    files: List[Path],
    backup_dir: Path,
    revision: str,
    max_backups: int = 2,
) -> List[Path]:
    """Copy files to backup_dir as <name>.<revision[:12]> and rotate.

    Returns:
        Paths of the backups written
    """
    backup_dir = Path(backup_dir)
    tag = (revision or "unknown")[:12]
    written = []

    try:
        backup_dir.mkdir(parents=True, exist_ok=True)
        for path in files:
            if not path.is_file():
                continue
            target = backup_dir / f"{path.name}.{tag}"
            shutil.copyfile(path, target)
            logger.info(f"Backed up {path.name}")
            written.append(target)
    except OSError as e:
        raise CopyError(f"Failed to back up project files to {backup_dir}: {e}")

    rotate_backups(backup_dir, max_backups)
    return written


def rotate_backups(backup_dir: Path, max_backups: int = 2) -> List[Path]:
    """Keep only the newest max_backups copies per original file name.

    A backup's original name is its file name minus the last suffix
    (the revision tag).

    Returns:
        Deleted backup paths
    """
    groups: Dict[str, List[Path]] = {}
    for path in Path(backup_dir).iterdir():
        if path.is_file() and '.' in path.name:
            groups.setdefault(path.name.rsplit('.', 1)[0], []).append(path)

    deleted = []
    for base, copies in sorted(groups.items()):
        copies.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        for old in copies[max_backups:]:
            logger.info(f"Deleting old backup file: {old.name}")
            old.unlink(missing_ok=True)
            deleted.append(old)
    return deleted
