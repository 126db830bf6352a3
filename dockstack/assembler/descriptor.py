"""Compose descriptor loading and deep merging.

Each project holds one fragment per service (docker-compose.<name>.yaml) plus
the primary docker-compose.app.yaml. All of them are overlaid section by
section into docker-compose.main.yaml.
"""
import copy
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

import yaml

from dockstack.core.config import REQUIRED_SERVICES_KEY
from dockstack.core.errors import ConfigError
from dockstack.core.logger import get_logger

logger = get_logger(__name__)

SECTIONS = ('services', 'volumes', 'secrets', 'networks')


def load_yaml(path: Path) -> Optional[Dict[str, Any]]:
    """Load a YAML mapping; a missing or empty file yields None.

    Raises:
        ConfigError: If the file is not valid YAML or not a mapping
    """
    path = Path(path)
    if not path.exists():
        return None

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")

    if data is None:
        return None
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def resolve_required_services(descriptor_path: Path) -> Set[str]:
    """Read the declared service list from the primary descriptor.

    Raises:
        ConfigError: If the file is missing or the list is absent or empty
    """
    descriptor_path = Path(descriptor_path)
    if not descriptor_path.exists():
        raise ConfigError(f"Descriptor not found: {descriptor_path}")

    data = load_yaml(descriptor_path) or {}
    declared = data.get(REQUIRED_SERVICES_KEY)

    if declared is None:
        raise ConfigError(f"No '{REQUIRED_SERVICES_KEY}' list in {descriptor_path}")
    if not isinstance(declared, list):
        raise ConfigError(f"'{REQUIRED_SERVICES_KEY}' in {descriptor_path} must be a list of names")

    services = {str(name).strip() for name in declared if name is not None and str(name).strip()}
    if not services:
        raise ConfigError(f"'{REQUIRED_SERVICES_KEY}' in {descriptor_path} is empty")

    return services


def deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively overlay one mapping onto another.

    Maps merge key by key, everything else (scalars, lists, None) in the
    overlay replaces the base value. Neither input is modified.
    """
    result = copy.deepcopy(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def strip_required_services(fragment: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Return a copy of the fragment without the required-services key."""
    if not fragment:
        return {}
    return {k: v for k, v in fragment.items() if k != REQUIRED_SERVICES_KEY}


def merge_descriptor(
    existing: Optional[Dict[str, Any]],
    fragments: Iterable[Optional[Dict[str, Any]]],
) -> Dict[str, Dict[str, Any]]:
    """Merge compose fragments into one deployment descriptor.

    Args:
        existing: Starting descriptor (None for an empty one)
        fragments: Fragments in scan order; later ones win key by key.
            None stands for an absent fragment file.

    Returns:
        Mapping with exactly the services, volumes, secrets and networks
        sections
    """
    merged: Dict[str, Dict[str, Any]] = {section: {} for section in SECTIONS}

    for fragment in [existing, *fragments]:
        cleaned = strip_required_services(fragment)
        for section in SECTIONS:
            value = cleaned.get(section)
            if value is None:
                continue
            if not isinstance(value, dict):
                logger.warning(f"Ignoring non-mapping '{section}' section in fragment")
                continue
            merged[section] = deep_merge(merged[section], value)

    return merged


def list_fragment_files(project_dir: Path, exclude: Path) -> List[Path]:
    """List docker-compose.*.yaml files in scan order (sorted by name)."""
    exclude = Path(exclude).resolve()
    return sorted(
        (p for p in Path(project_dir).glob("docker-compose.*.yaml") if p.resolve() != exclude),
        key=lambda p: p.name,
    )


def render_descriptor(merged: Dict[str, Dict[str, Any]]) -> str:
    """Render a merged descriptor as a YAML document.

    Sections are always written in the same order, separated by blank
    lines, so identical input renders to identical bytes.
    """
    blocks = [
        yaml.safe_dump({section: merged.get(section) or {}}, sort_keys=False, default_flow_style=False)
        for section in SECTIONS
    ]
    return "---\n" + "\n".join(blocks)
