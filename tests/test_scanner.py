"""Tests for the scanner module."""

import json

from conftest import PROJECT_DIR, PROJECT_PATH

from claude_log_archive.scanner import (
    encode_project_path,
    extract_plan_title,
    iter_plan_files,
    iter_project_dirs,
    iter_session_files,
    iter_subagent_files,
    iter_task_files,
    load_history,
    project_name,
    resolve_project_path,
)


class TestProjectPaths:
    """Tests for project directory naming."""

    def test_encode(self):
        """Test every character outside the safe set becomes a dash."""
        assert encode_project_path("/home/user/my-proj") == "-home-user-my-proj"
        assert encode_project_path("C:\\work\\a.b") == "C--work-a-b"

    def test_resolve_prefers_history(self):
        """Test the history map wins over the dash heuristic."""
        path_map = {PROJECT_DIR: PROJECT_PATH}
        assert resolve_project_path(PROJECT_DIR, path_map) == PROJECT_PATH
        assert resolve_project_path("-tmp-scratch", path_map) == "/tmp/scratch"

    def test_project_name(self):
        """Test the name is the last path segment."""
        assert project_name("/home/user/my-proj") == "my-proj"
        assert project_name("/home/user/my-proj/") == "my-proj"
        assert project_name("C:\\work\\repo") == "repo"


class TestHistory:
    """Tests for loading the global history log."""

    def test_missing_file(self, tmp_path):
        """Test a missing history file yields nothing."""
        assert load_history(tmp_path / "history.jsonl") == ([], {})

    def test_first_path_wins(self, tmp_path):
        """Test the path map keeps the first project seen for an encoded name."""
        history_file = tmp_path / "history.jsonl"
        history_file.write_text(
            "\n".join(
                [
                    json.dumps({"display": "a", "timestamp": 1, "project": "/a/b-c"}),
                    json.dumps({"display": "b", "timestamp": 2, "project": "/a/b/c"}),
                    "junk",
                ]
            )
        )
        records, path_map = load_history(history_file)
        assert len(records) == 2
        assert path_map == {"-a-b-c": "/a/b-c"}


class TestDiscovery:
    """Tests for walking the Claude directory."""

    def test_layout(self, claude_dir):
        """Test each kind of source file is found."""
        projects = [p.name for p in iter_project_dirs(claude_dir / "projects")]
        assert projects == [PROJECT_DIR, "-tmp-scratch"]

        project_dir = claude_dir / "projects" / PROJECT_DIR
        assert [uuid for _, uuid in iter_session_files(project_dir)] == ["sess-1"]
        assert [agent for _, agent in iter_subagent_files(project_dir, "sess-1")] == ["abc123"]
        assert list(iter_subagent_files(project_dir, "missing")) == []

        tasks = [(path.name, session) for path, session in iter_task_files(claude_dir / "tasks")]
        assert tasks == [("1.json", "sess-1"), ("2.json", "sess-1"), ("bad.json", "sess-1")]
        assert [slug for _, slug in iter_plan_files(claude_dir / "plans")] == ["login-fix", "untitled"]

    def test_missing_directories(self, tmp_path):
        """Test absent directories are treated as empty."""
        assert list(iter_project_dirs(tmp_path / "none")) == []
        assert list(iter_task_files(tmp_path / "none")) == []
        assert list(iter_plan_files(tmp_path / "none")) == []


class TestPlanTitle:
    """Tests for plan title extraction."""

    def test_heading(self):
        """Test the first top-level heading is used."""
        assert extract_plan_title("intro\n# The Plan \n## Sub", "slug") == "The Plan"

    def test_fallback(self):
        """Test the slug is used without a heading."""
        assert extract_plan_title("## only a subheading", "slug") == "slug"
