"""Sparse, shallow Git fetch of the template subtree."""
import subprocess
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from dockstack.core.errors import ConfigError, FetchError, NotFoundError
from dockstack.core.logger import get_logger
from dockstack.models.template import TemplateSnapshot, TemplateSource

logger = get_logger(__name__)

MOCK_REVISION = "mock-commit-hash-1234567890"


class TemplateFetcher:
    """Fetches only the template subtree of a repository at one revision.

    No history and no paths outside the subtree are downloaded: the fetch is
    depth 1, blob-filtered, and the checkout is restricted by a sparse
    pattern. A failure is reported once; there is no retry.
    """

    def __init__(self, mock: bool = False):
        self.mock = mock

    def _git(self, args: List[str], cwd: Optional[Path] = None) -> str:
        """Run a git command and return stdout.

        Raises:
            FetchError: If git is missing or exits non-zero
        """
        cmd = ['git'] + args
        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                check=True,
            )
        except FileNotFoundError:
            raise FetchError("git not found. Please install git first.")
        except subprocess.CalledProcessError as e:
            detail = e.stderr.strip() if e.stderr else str(e)
            raise FetchError(f"git {args[0]} failed: {detail}")
        return result.stdout.strip()

    def resolve_default_branch(self, url: str) -> str:
        """Ask the remote which branch HEAD points to."""
        output = self._git(['ls-remote', '--symref', url, 'HEAD'])
        for line in output.splitlines():
            if line.startswith('ref:'):
                ref = line.split()[1]
                return ref.removeprefix('refs/heads/')
        raise FetchError(f"Could not determine default branch of {url}")

    def fetch(self, source: TemplateSource, dest: Path) -> TemplateSnapshot:
        """Fetch source.subpath at source.ref into dest.

        Args:
            source: Repository URL, ref and subpath
            dest: Empty or missing directory used as the local cache

        Returns:
            TemplateSnapshot with the resolved commit hash

        Raises:
            FetchError: Network, auth or git failure
            NotFoundError: subpath does not exist at that revision
        """
        dest = Path(dest)
        template_root = dest / source.subpath

        if self.mock:
            logger.info(f"MOCK: Would fetch {source.subpath}/ from {source.url} ({source.ref or 'default branch'})")
            template_root.mkdir(parents=True, exist_ok=True)
            return TemplateSnapshot(revision=MOCK_REVISION, root=template_root, source=source)

        ref = source.ref or self.resolve_default_branch(source.url)
        logger.info(f"Fetching {source.subpath}/ from {source.url} ({ref})")

        dest.mkdir(parents=True, exist_ok=True)
        self._git(['init', '--quiet', str(dest)])
        self._git(['remote', 'add', 'origin', source.url], cwd=dest)
        self._git(['config', 'core.sparseCheckout', 'true'], cwd=dest)
        try:
            (dest / '.git' / 'info').mkdir(parents=True, exist_ok=True)
            (dest / '.git' / 'info' / 'sparse-checkout').write_text(f"{source.subpath}/\n")
        except OSError as e:
            raise FetchError(f"Cannot configure sparse checkout in {dest}: {e}")
        self._git(['fetch', '--quiet', '--depth=1', '--filter=blob:none', 'origin', ref], cwd=dest)
        self._git(['checkout', '--quiet', 'FETCH_HEAD'], cwd=dest)
        revision = self._git(['rev-parse', 'HEAD'], cwd=dest)

        if not template_root.is_dir():
            raise NotFoundError(f"'{source.subpath}' does not exist in {source.url} at {revision[:12]}")

        logger.info(f"Using template version: {revision}")
        return TemplateSnapshot(revision=revision, root=template_root, source=source)


def fetch_templates(
    remote_url: str,
    ref: Optional[str],
    subpath: str,
    dest: Path,
    mock: bool = False,
) -> TemplateSnapshot:
    """Fetch a template subtree; see TemplateFetcher.fetch.

    Raises:
        ConfigError: If the URL or subpath is invalid
    """
    try:
        source = TemplateSource(url=remote_url, ref=ref, subpath=subpath)
    except ValidationError as e:
        raise ConfigError(f"Invalid template source: {e.errors()[0]['msg']}")
    return TemplateFetcher(mock=mock).fetch(source, dest)
