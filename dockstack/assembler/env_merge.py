"""Env file merging with first-writer-wins duplicate detection."""
import re
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

from dockstack.core.logger import get_logger
from dockstack.models.template import EnvMergeResult

logger = get_logger(__name__)

EnvSource = Tuple[Path, str]

_ASSIGNMENT_RE = re.compile(r"^\s*([^=\s]+)\s*=\s*(.*)$")


def _is_passthrough(line: str) -> bool:
    return not line.strip() or line.lstrip().startswith('#')


def env_key(line: str) -> str:
    """Key of an env line: the text before the first '=', stripped."""
    return line.split('=', 1)[0].strip()


def normalize_assignment(line: str) -> str:
    """Collapse whitespace around '=' and strip the surrounding line."""
    match = _ASSIGNMENT_RE.match(line)
    if not match:
        return line.strip()
    return f"{match.group(1)}={match.group(2).rstrip()}"


def merge_env_file(
    path: Path,
    source_name: str,
    result: EnvMergeResult,
) -> EnvMergeResult:
    """Scan one env file into the accumulated result.

    Comments and blank lines always pass through. A key already owned by an
    earlier source is dropped with a warning naming both sources.
    """
    with open(path) as f:
        for raw in f.read().splitlines():
            if _is_passthrough(raw):
                result.lines.append(raw)
                continue

            key = env_key(raw)
            if not key:
                result.lines.append(raw)
                continue

            if key in result.seen:
                logger.warning(
                    f"Duplicate variable '{key}' found in {source_name} "
                    f"(already from {result.seen[key]}), skipping."
                )
                result.skipped.append(f"{source_name}:{key}")
                continue

            result.seen[key] = source_name
            result.lines.append(normalize_assignment(raw))

    result.lines.append("")
    return result


def merge_env(
    existing_env_files: Sequence[EnvSource],
    template_env_files: Sequence[EnvSource],
    seen: Optional["OrderedDict[str, str]"] = None,
) -> EnvMergeResult:
    """Merge env files in priority order.

    Args:
        existing_env_files: Project-local (path, source_name) pairs, scanned first
        template_env_files: One (path, source_name) per required template,
            in resolution order
        seen: Optional accumulator of key -> source from an earlier merge

    Returns:
        EnvMergeResult with the output lines and the key -> source map
    """
    result = EnvMergeResult(seen=OrderedDict(seen or {}))
    for path, source_name in [*existing_env_files, *template_env_files]:
        if not Path(path).is_file():
            logger.debug(f"Env source {path} not found, skipping")
            continue
        merge_env_file(Path(path), source_name, result)
    return result


def read_env_values(path: Path) -> Dict[str, str]:
    """Parse KEY=value pairs from an env file (quotes stripped)."""
    values: Dict[str, str] = {}
    for line in Path(path).read_text().splitlines():
        if _is_passthrough(line) or '=' not in line:
            continue
        key, value = normalize_assignment(line).split('=', 1)
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
            value = value[1:-1]
        values[key] = value
    return values

