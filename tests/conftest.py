"""Pytest configuration and shared fixtures."""

import json
from pathlib import Path

import pytest

from claude_log_archive.config import Config
from claude_log_archive.database import Database
from claude_log_archive.etl import sync

PROJECT_PATH = "/home/user/my-proj"
PROJECT_DIR = "-home-user-my-proj"
SCRATCH_DIR = "-tmp-scratch"

# 2025-01-15T10:00:00Z
T0 = 1736935200000


def write_jsonl(path: Path, records: list) -> None:
    """Write records as JSON lines; plain strings are written verbatim."""
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def user_record(uuid, content, timestamp, session_id="sess-1", **extra):
    record = {
        "type": "user",
        "sessionId": session_id,
        "uuid": uuid,
        "timestamp": timestamp,
        "cwd": PROJECT_PATH,
        "gitBranch": "main",
        "version": "1.0.0",
        "message": {"role": "user", "content": content},
    }
    record.update(extra)
    return record


def assistant_record(uuid, message_id, blocks, timestamp, session_id="sess-1", model="claude-sonnet-4-6", usage=None):
    message = {"id": message_id, "role": "assistant", "model": model, "content": blocks}
    if usage is not None:
        message["usage"] = usage
    return {
        "type": "assistant",
        "sessionId": session_id,
        "uuid": uuid,
        "timestamp": timestamp,
        "cwd": PROJECT_PATH,
        "gitBranch": "main",
        "message": message,
    }


def build_claude_dir(root: Path) -> Path:
    """Lay out a small but complete Claude log directory."""
    claude_dir = root / ".claude"

    write_jsonl(
        claude_dir / "history.jsonl",
        [
            {
                "display": "fix the login bug",
                "timestamp": T0 - 60_000,
                "project": PROJECT_PATH,
                "sessionId": "sess-1",
                "pastedContents": {},
            },
            {"display": "add pagination", "timestamp": "2025-01-15T11:00:00Z", "project": PROJECT_PATH},
            "this is not json",
        ],
    )

    write_jsonl(
        claude_dir / "projects" / PROJECT_DIR / "sess-1.jsonl",
        [
            {"type": "summary", "summary": "Login bug fix"},
            user_record("u1", "Please fix the login bug", "2025-01-15T10:00:00Z", slug="login-fix"),
            assistant_record(
                "a1",
                "msg_1",
                [{"type": "text", "text": "Let me look."}],
                "2025-01-15T10:00:05Z",
                usage={"input_tokens": 100, "output_tokens": 50},
            ),
            assistant_record(
                "a2",
                "msg_1",
                [{"type": "tool_use", "id": "toolu_1", "name": "Bash", "input": {"command": "ls -la"}}],
                "2025-01-15T10:00:06Z",
            ),
            user_record(
                "u2",
                [{"type": "tool_result", "tool_use_id": "toolu_1", "content": "file1\nfile2"}],
                "2025-01-15T10:00:10Z",
            ),
            assistant_record("a3", "msg_1", [{"type": "text", "text": "Found it."}], "2025-01-15T10:00:12Z"),
            {"type": "file-history-snapshot", "messageId": "x"},
            "{broken json",
            assistant_record(
                "a4",
                "msg_2",
                [{"type": "text", "text": "The login bug is fixed."}],
                "2025-01-15T10:01:00Z",
                usage={"input_tokens": 1000, "output_tokens": 500},
            ),
        ],
    )

    write_jsonl(
        claude_dir / "projects" / PROJECT_DIR / "sess-1" / "subagents" / "agent-abc123.jsonl",
        [
            user_record("sa-u1", "Search the codebase for auth", "2025-01-15T10:00:20Z", isSidechain=True),
            assistant_record(
                "sa-a1",
                "msg_sa1",
                [{"type": "text", "text": "Auth lives in auth.py"}],
                "2025-01-15T10:00:30Z",
                model="claude-haiku-4-5-20251001",
            ),
        ],
    )

    write_jsonl(
        claude_dir / "projects" / SCRATCH_DIR / "sess-2.jsonl",
        [user_record("u-2-1", "hello world", "2025-01-16T09:00:00Z", session_id="sess-2")],
    )

    tasks_dir = claude_dir / "tasks" / "sess-1"
    tasks_dir.mkdir(parents=True)
    (tasks_dir / "1.json").write_text(
        json.dumps(
            {
                "id": "1",
                "subject": "Fix login",
                "description": "Repair the auth flow",
                "activeForm": "Fixing login",
                "status": "completed",
                "blocks": ["2"],
                "blockedBy": [],
            }
        )
    )
    (tasks_dir / "2.json").write_text(json.dumps({"id": 2, "subject": "Write tests", "status": "pending"}))
    (tasks_dir / "bad.json").write_text("not json")

    plans_dir = claude_dir / "plans"
    plans_dir.mkdir(parents=True)
    (plans_dir / "login-fix.md").write_text("# Login Fix Plan\n\nSteps to fix the login.\n")
    (plans_dir / "untitled.md").write_text("no heading here\n")

    return claude_dir


@pytest.fixture
def claude_dir(tmp_path):
    """A populated Claude log directory."""
    return build_claude_dir(tmp_path)


@pytest.fixture
def config(claude_dir, tmp_path):
    """Config pointing at the fixture logs and a fresh database file."""
    return Config(claude_dir=claude_dir, db_path=tmp_path / "test.db")


@pytest.fixture
def temp_db(tmp_path):
    """Create an empty database for testing."""
    return Database(tmp_path / "empty.db")


@pytest.fixture
def synced_db(config):
    """A database populated by one sync of the fixture logs."""
    db = Database(config.db_path)
    sync(db, config)
    return db


def session_row_id(db: Database, session_id: str) -> int:
    with db.connection() as conn:
        row = conn.execute(
            "SELECT id FROM sessions WHERE session_id = ? AND agent_id IS NULL", (session_id,)
        ).fetchone()
    return row["id"]
