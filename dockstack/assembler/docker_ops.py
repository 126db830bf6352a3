"""Docker image pulls and volume removal for an assembled project."""
import os
import re
import subprocess
from typing import Any, Dict, List, Mapping

from dockstack.core.logger import get_logger

logger = get_logger(__name__)

_VAR_RE = re.compile(r"\$\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?::?-(?P<default>[^}]*))?\}|\$(?P<bare>[A-Za-z_][A-Za-z0-9_]*)")


def expand_vars(value: str, env: Mapping[str, str]) -> str:
    """Expand $VAR, ${VAR} and ${VAR:-default} the way compose does."""
    def _replace(match):
        name = match.group('braced') or match.group('bare')
        resolved = env.get(name, os.environ.get(name))
        if resolved:
            return resolved
        default = match.group('default')
        return default if default is not None else ""

    return _VAR_RE.sub(_replace, value)


class DockerOperations:
    """Runs docker CLI commands against a merged descriptor."""

    def __init__(self, mock: bool = False):
        self.mock = mock

    def pull_images(self, descriptor: Dict[str, Any], env_values: Mapping[str, str]) -> Dict[str, bool]:
        """Pull the image of every service.

        Args:
            descriptor: Merged deployment descriptor
            env_values: Values from the merged .env used for ${VAR} images

        Returns:
            Dict mapping image -> pulled successfully
        """
        results: Dict[str, bool] = {}
        for service, definition in (descriptor.get('services') or {}).items():
            raw_image = (definition or {}).get('image')
            if not raw_image:
                logger.warning(f"No image defined for service {service}, skipping.")
                continue

            image = expand_vars(str(raw_image), env_values)
            if self.mock:
                logger.info(f"MOCK: Would pull {image} for service {service}")
                results[image] = True
                continue

            logger.info(f"Pulling image for service {service}: {image}")
            try:
                subprocess.run(['docker', 'pull', '--quiet', image], capture_output=True, text=True, check=True)
                logger.info(f"✓ Pulled {image}")
                results[image] = True
            except (subprocess.CalledProcessError, FileNotFoundError) as e:
                logger.error(f"Failed to pull {image}: {e}")
                results[image] = False
        return results

    def volume_exists(self, name: str) -> bool:
        if self.mock:
            return True
        try:
            result = subprocess.run(['docker', 'volume', 'inspect', name], capture_output=True, text=True, check=False)
        except FileNotFoundError:
            return False
        return result.returncode == 0

    def delete_volumes(self, descriptor: Dict[str, Any], project_name: str) -> List[str]:
        """Remove <project>_<volume> for every declared volume.

        Returns:
            Names of the volumes removed
        """
        removed = []
        for volume in (descriptor.get('volumes') or {}):
            full_name = f"{project_name}_{volume}"
            if not self.volume_exists(full_name):
                logger.warning(f"Volume {full_name} does not exist, skipping.")
                continue

            if self.mock:
                logger.info(f"MOCK: Would remove volume {full_name}")
                removed.append(full_name)
                continue

            try:
                subprocess.run(['docker', 'volume', 'rm', full_name], capture_output=True, text=True, check=True)
                logger.info(f"✓ Removed volume {full_name}")
                removed.append(full_name)
            except subprocess.CalledProcessError as e:
                logger.error(f"Failed to remove {full_name}: {e}")
        return removed
