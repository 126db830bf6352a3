"""Tests for env file merging."""
from collections import OrderedDict

from dockstack.assembler.env_merge import env_key, merge_env, normalize_assignment, read_env_values


def _keys(lines):
    return [env_key(line) for line in lines if line.strip() and not line.lstrip().startswith('#')]


class TestEnvMerge:
    """Test first-writer-wins merging across env sources."""

    def test_first_source_wins(self, tmp_path):
        local = tmp_path / "app.env"
        local.write_text("TZ=America/New_York\n")
        template = tmp_path / "redis.env"
        template.write_text("TZ=UTC\nREDIS_VERSION=7\n")

        result = merge_env([(local, "local app.env")], [(template, "template redis")])

        assert "TZ=America/New_York" in result.lines
        assert "TZ=UTC" not in result.lines
        assert result.seen == OrderedDict([("TZ", "local app.env"), ("REDIS_VERSION", "template redis")])
        assert result.skipped == ["template redis:TZ"]

    def test_every_key_appears_once(self, tmp_path):
        sources = []
        for index in range(4):
            path = tmp_path / f"{index}.env"
            path.write_text(f"SHARED={index}\nOWN_{index}=x\n")
            sources.append((path, f"source {index}"))

        result = merge_env(sources[:1], sources[1:])
        keys = _keys(result.lines)

        assert len(keys) == len(set(keys))
        assert "SHARED=0" in result.lines
        assert set(keys) == {"SHARED", "OWN_0", "OWN_1", "OWN_2", "OWN_3"}

    def test_comments_and_blank_lines_pass_through(self, tmp_path):
        path = tmp_path / "app.env"
        path.write_text("# header\n\nA=1\n# A again\nA=2\n")

        result = merge_env([(path, "local")], [])

        assert result.lines == ["# header", "", "A=1", "# A again", ""]

    def test_whitespace_around_equals_normalized(self, tmp_path):
        path = tmp_path / "template.env"
        path.write_text("POSTGRES_VERSION = 16\n  IMAGE=  nginx:latest  \n")

        result = merge_env([], [(path, "template")])

        assert "POSTGRES_VERSION=16" in result.lines
        assert "IMAGE=nginx:latest" in result.lines

    def test_key_with_spaces_is_duplicate(self, tmp_path):
        first = tmp_path / "a.env"
        first.write_text("PORT=80\n")
        second = tmp_path / "b.env"
        second.write_text("PORT = 8080\n")

        result = merge_env([(first, "a")], [(second, "b")])

        assert _keys(result.lines) == ["PORT"]

    def test_missing_sources_skipped(self, tmp_path):
        present = tmp_path / "present.env"
        present.write_text("A=1\n")

        result = merge_env([(tmp_path / "absent.env", "local")], [(present, "template")])

        assert result.lines == ["A=1", ""]

    def test_seen_accumulator_threads_through(self, tmp_path):
        path = tmp_path / "b.env"
        path.write_text("A=2\nB=2\n")

        result = merge_env([], [(path, "second")], seen=OrderedDict([("A", "first")]))

        assert result.lines == ["B=2", ""]
        assert result.seen["A"] == "first"

    def test_render_ends_with_newline(self, tmp_path):
        path = tmp_path / "a.env"
        path.write_text("A=1")

        assert merge_env([(path, "a")], []).render() == "A=1\n\n"


class TestHelpers:
    def test_env_key(self):
        assert env_key("  KEY = value=with=equals") == "KEY"

    def test_normalize_keeps_value_equals(self):
        assert normalize_assignment("URL = postgres://u:p@h/db?x=1") == "URL=postgres://u:p@h/db?x=1"

    def test_read_env_values_strips_quotes(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text('# c\nA="quoted"\nB=\'single\'\nC = plain\n')

        assert read_env_values(path) == {"A": "quoted", "B": "single", "C": "plain"}
