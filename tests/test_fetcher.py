"""Tests for the sparse template fetch."""
import shutil
import subprocess
from unittest.mock import Mock, patch

import pytest

from dockstack.assembler.fetcher import MOCK_REVISION, TemplateFetcher, fetch_templates
from dockstack.core.errors import ConfigError, FetchError, NotFoundError
from dockstack.models.template import TemplateSource


def _git_side_effect(revision="f" * 40):
    def run(cmd, **kwargs):
        if cmd[1] == 'rev-parse':
            return Mock(returncode=0, stdout=f"{revision}\n", stderr="")
        if cmd[1] == 'ls-remote':
            return Mock(returncode=0, stdout="ref: refs/heads/main\tHEAD\nabc123\tHEAD\n", stderr="")
        return Mock(returncode=0, stdout="", stderr="")
    return run


class TestTemplateFetcher:
    """Test TemplateFetcher git command sequence."""

    def test_mock_mode(self, tmp_path):
        source = TemplateSource(url="https://example.com/t.git")

        snapshot = TemplateFetcher(mock=True).fetch(source, tmp_path / "cache")

        assert snapshot.revision == MOCK_REVISION
        assert snapshot.root == tmp_path / "cache" / "templates"

    @patch('subprocess.run')
    def test_sparse_shallow_fetch(self, mock_run, tmp_path):
        mock_run.side_effect = _git_side_effect()
        dest = tmp_path / "cache"
        (dest / "templates").mkdir(parents=True)
        source = TemplateSource(url="https://example.com/t.git", ref="v2")

        snapshot = TemplateFetcher().fetch(source, dest)

        commands = [c[0][0] for c in mock_run.call_args_list]
        assert commands[0] == ['git', 'init', '--quiet', str(dest)]
        assert ['git', 'config', 'core.sparseCheckout', 'true'] in commands
        assert ['git', 'fetch', '--quiet', '--depth=1', '--filter=blob:none', 'origin', 'v2'] in commands
        assert commands[-1] == ['git', 'rev-parse', 'HEAD']
        assert (dest / ".git" / "info" / "sparse-checkout").read_text() == "templates/\n"
        assert snapshot.revision == "f" * 40
        assert snapshot.template_dir("redis") == dest / "templates" / "redis"

    @patch('subprocess.run')
    def test_default_branch_resolved(self, mock_run, tmp_path):
        mock_run.side_effect = _git_side_effect()
        dest = tmp_path / "cache"
        (dest / "templates").mkdir(parents=True)

        TemplateFetcher().fetch(TemplateSource(url="https://example.com/t.git"), dest)

        commands = [c[0][0] for c in mock_run.call_args_list]
        assert commands[0] == ['git', 'ls-remote', '--symref', 'https://example.com/t.git', 'HEAD']
        assert ['git', 'fetch', '--quiet', '--depth=1', '--filter=blob:none', 'origin', 'main'] in commands

    @patch('subprocess.run')
    def test_git_failure_is_fetch_error(self, mock_run, tmp_path):
        mock_run.side_effect = subprocess.CalledProcessError(128, ['git'], stderr="fatal: repository not found")
        source = TemplateSource(url="https://example.com/t.git", ref="main")

        with pytest.raises(FetchError, match="repository not found"):
            TemplateFetcher().fetch(source, tmp_path / "cache")
        assert mock_run.call_count == 1

    @patch('subprocess.run')
    def test_git_missing(self, mock_run, tmp_path):
        mock_run.side_effect = FileNotFoundError()

        with pytest.raises(FetchError, match="git not found"):
            TemplateFetcher().fetch(TemplateSource(url="https://example.com/t.git", ref="main"), tmp_path)

    @patch('subprocess.run')
    def test_missing_subpath(self, mock_run, tmp_path):
        mock_run.side_effect = _git_side_effect()

        with pytest.raises(NotFoundError, match="templates"):
            TemplateFetcher().fetch(TemplateSource(url="https://example.com/t.git", ref="main"), tmp_path / "cache")


class TestTemplateSource:
    def test_invalid_url(self, tmp_path):
        with pytest.raises(ConfigError):
            fetch_templates("ftp://example.com/t", None, "templates", tmp_path, mock=True)

    def test_subpath_cannot_escape(self, tmp_path):
        with pytest.raises(ConfigError):
            fetch_templates("https://example.com/t.git", None, "../etc", tmp_path, mock=True)

    def test_subpath_slashes_stripped(self):
        assert TemplateSource(url="/srv/templates.git", subpath="/stacks/").subpath == "stacks"


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
class TestLocalRepository:
    """Fetch from a real repository over file://."""

    def _make_repo(self, root):
        def git(*args):
            subprocess.run(
                ['git', '-c', 'user.name=test', '-c', 'user.email=test@example.com', *args],
                cwd=root, check=True, capture_output=True,
            )

        (root / "templates" / "redis").mkdir(parents=True)
        (root / "templates" / "redis" / "docker-compose.redis.yaml").write_text("services: {}\n")
        (root / "other").mkdir()
        (root / "other" / "big.bin").write_text("x" * 1000)
        git('init', '--quiet')
        git('add', '.')
        git('commit', '--quiet', '-m', 'templates')
        head = subprocess.run(['git', 'rev-parse', 'HEAD'], cwd=root, check=True, capture_output=True, text=True)
        return head.stdout.strip()

    def test_fetches_only_subtree(self, tmp_path):
        repo = tmp_path / "repo"
        repo.mkdir()
        revision = self._make_repo(repo)

        snapshot = fetch_templates(f"file://{repo}", None, "templates", tmp_path / "cache")

        assert snapshot.revision == revision
        assert (snapshot.root / "redis" / "docker-compose.redis.yaml").is_file()
        assert not (tmp_path / "cache" / "other").exists()
