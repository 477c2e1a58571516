"""Tests for the database and store writer."""

import json

import pytest

from claude_log_archive.database import (
    PlanNotFoundError,
    ProjectNotFoundError,
    SessionNotFoundError,
)
from claude_log_archive.reconstructor import Message, Session, ToolUse
from claude_log_archive.records import HistoryRecord, TaskRecord


def _session(session_id="s1", agent_id=None, started_at=1000, ended_at=2000, summary=None, messages=None):
    return Session(
        session_id=session_id,
        agent_id=agent_id,
        is_subagent=agent_id is not None,
        started_at=started_at,
        ended_at=ended_at,
        summary=summary,
        messages=messages or [],
    )


class TestStoreWriter:
    """Tests for StoreWriter inserts and uniqueness handling."""

    def test_project_dedup(self, temp_db):
        """Test that a project path is stored once."""
        with temp_db.rebuild() as writer:
            first_id, created = writer.insert_project("/home/user/proj", "proj")
            assert created
            second_id, created = writer.insert_project("/home/user/proj", "proj")
            assert not created
            assert first_id == second_id
        assert temp_db.get_stats()["projects"] == 1

    def test_session_merge(self, temp_db):
        """Test that a duplicate session key widens bounds and fills the summary."""
        with temp_db.rebuild() as writer:
            project_id, _ = writer.insert_project("/p", "p")
            row_id, created = writer.insert_session(_session(started_at=1000, ended_at=2000), project_id)
            assert created
            again_id, created = writer.insert_session(
                _session(started_at=500, ended_at=1500, summary="Later summary"), project_id
            )
            assert not created
            assert again_id == row_id

        session = temp_db.get_session(row_id)
        assert session["started_at"] == 500
        assert session["ended_at"] == 2000
        assert session["summary"] == "Later summary"
        assert temp_db.get_stats()["sessions"] == 1

    def test_subagent_key_distinct(self, temp_db):
        """Test that a sub-agent sharing the session id is its own row."""
        with temp_db.rebuild() as writer:
            project_id, _ = writer.insert_project("/p", "p")
            _, created_main = writer.insert_session(_session(), project_id)
            _, created_agent = writer.insert_session(_session(agent_id="abc"), project_id)
        assert created_main and created_agent
        assert temp_db.get_stats()["sessions"] == 2

    def test_message_uuid_dedup(self, temp_db):
        """Test that a repeated message uuid is inserted once, with no tool uses duplicated."""
        tool = ToolUse(tool_use_id="t1", tool_name="Bash", input="{}", input_text="ls")
        message = Message(uuid="m1", role="assistant", content="hi", timestamp=1000, tool_uses=[tool])
        with temp_db.rebuild() as writer:
            project_id, _ = writer.insert_project("/p", "p")
            _, messages, tool_uses = writer.write_session(_session(messages=[message]), project_id)
            assert (messages, tool_uses) == (1, 1)
            _, messages, tool_uses = writer.write_session(
                _session(session_id="s2", messages=[message]), project_id
            )
            assert (messages, tool_uses) == (0, 0)

        stats = temp_db.get_stats()
        assert stats["messages"] == 1
        assert stats["tool_uses"] == 1

    def test_history_batches(self, temp_db):
        """Test that more history entries than one batch are all inserted."""
        records = [HistoryRecord(display=f"prompt {i}", timestamp=i) for i in range(250)]
        records[0].pasted_contents = {}
        with temp_db.rebuild() as writer:
            assert writer.insert_history(records) == 250

        history = temp_db.list_history()
        assert len(history) == 250
        by_display = {h["display"]: h for h in history}
        assert by_display["prompt 0"]["pasted_contents"] == "{}"
        assert by_display["prompt 1"]["pasted_contents"] is None

    def test_task_and_plan(self, temp_db):
        """Test task lists are serialized and plan slugs are unique."""
        with temp_db.rebuild() as writer:
            writer.insert_task(
                TaskRecord(task_number="1", subject="Do", status="pending", blocks=["2"]), "sess-1"
            )
            assert writer.insert_plan("my-plan", "My Plan", "# My Plan")
            assert not writer.insert_plan("my-plan", "Other", "other")

        task = temp_db.list_tasks()[0]
        assert json.loads(task["blocks"]) == ["2"]
        assert json.loads(task["blocked_by"]) == []
        assert temp_db.get_plan("my-plan")["title"] == "My Plan"

    def test_rebuild_rolls_back_on_error(self, temp_db):
        """Test that an error inside a rebuild leaves no partial rows."""
        with pytest.raises(RuntimeError):
            with temp_db.rebuild() as writer:
                writer.insert_project("/p", "p")
                raise RuntimeError("boom")
        assert temp_db.get_stats()["projects"] == 0

    def test_clear(self, temp_db):
        """Test that clear empties every derived table and its index."""
        with temp_db.rebuild() as writer:
            project_id, _ = writer.insert_project("/p", "p")
            writer.write_session(
                _session(messages=[Message(uuid="m1", role="user", content="searchable words")]), project_id
            )
        with temp_db.rebuild() as writer:
            writer.clear()

        assert all(count == 0 for count in temp_db.get_stats().values())
        with temp_db.connection() as conn:
            assert conn.execute("SELECT count(*) FROM messages_fts WHERE messages_fts MATCH 'searchable'").fetchone()[0] == 0


class TestDatabaseQueries:
    """Tests for the read side of the database."""

    def test_meta_upsert(self, temp_db):
        """Test meta values are inserted then overwritten."""
        assert temp_db.get_meta("k") is None
        temp_db.set_meta("k", "1")
        temp_db.set_meta("k", "2")
        assert temp_db.get_meta("k") == "2"

    def test_not_found(self, temp_db):
        """Test lookups of missing entities raise the specific errors."""
        with pytest.raises(ProjectNotFoundError):
            temp_db.get_project(42)
        with pytest.raises(ProjectNotFoundError):
            temp_db.list_project_sessions(42)
        with pytest.raises(SessionNotFoundError):
            temp_db.get_session(42)
        with pytest.raises(SessionNotFoundError):
            temp_db.get_session_messages(42)
        with pytest.raises(PlanNotFoundError):
            temp_db.get_plan("missing")

    def test_not_found_is_lookup_error(self, temp_db):
        """Test the error hierarchy is catchable as LookupError."""
        with pytest.raises(LookupError):
            temp_db.get_session(1)

    def test_stats_keys(self, temp_db):
        """Test stats cover every derived table."""
        assert set(temp_db.get_stats()) == {
            "projects",
            "sessions",
            "messages",
            "tool_uses",
            "global_history",
            "tasks",
            "plans",
        }

    def test_summary_fallback(self, temp_db):
        """Test that sessions without a summary show their first prompt."""
        with temp_db.rebuild() as writer:
            project_id, _ = writer.insert_project("/p", "p")
            writer.write_session(
                _session(
                    messages=[
                        Message(uuid="m2", role="user", content="second", timestamp=2000),
                        Message(uuid="m1", role="user", content="x" * 300, timestamp=1000),
                    ]
                ),
                project_id,
            )
        session = temp_db.list_sessions()[0]
        assert session["summary"] == "x" * 200
        assert session["message_count"] == 2

    def test_session_messages_chronological(self, temp_db):
        """Test session messages are ordered by time and untimed ones are left out."""
        with temp_db.rebuild() as writer:
            project_id, _ = writer.insert_project("/p", "p")
            row_id, _ = writer.insert_session(_session(), project_id)
            for uuid, ts in (("late", 3000), ("none", None), ("early", 1000)):
                writer.insert_message(Message(uuid=uuid, role="user", content=uuid, timestamp=ts), row_id)
        assert [m["uuid"] for m in temp_db.get_session_messages(row_id)] == ["early", "late"]
