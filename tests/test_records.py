"""Tests for the record decoders."""

import json

from claude_log_archive.records import (
    parse_history_line,
    parse_session_line,
    parse_session_lines,
    parse_task,
    parse_timestamp,
)


class TestParseTimestamp:
    """Tests for timestamp normalization."""

    def test_iso_with_z(self):
        """Test that a trailing Z is read as UTC."""
        assert parse_timestamp("2025-01-15T10:00:00Z") == 1736935200000

    def test_iso_with_millis(self):
        """Test fractional seconds are kept to the millisecond."""
        assert parse_timestamp("2025-01-15T10:00:00.250Z") == 1736935200250

    def test_epoch_millis_passthrough(self):
        """Test numeric timestamps are taken as epoch milliseconds."""
        assert parse_timestamp(1736935200000) == 1736935200000

    def test_invalid_values(self):
        """Test unusable values yield None."""
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(True) is None

    def test_out_of_integer_range(self):
        """Test numbers that do not fit a 64-bit integer column are rejected."""
        assert parse_timestamp(1e300) is None
        assert parse_timestamp(2**64 - 1) is None
        assert parse_timestamp(float("inf")) is None
        assert parse_timestamp(float("nan")) is None
        assert parse_timestamp(-(2**63)) == -(2**63)


class TestParseSessionLine:
    """Tests for transcript line decoding."""

    def test_malformed_lines(self):
        """Test that blank, broken and non-object lines are rejected."""
        assert parse_session_line("") is None
        assert parse_session_line("   ") is None
        assert parse_session_line("{broken") is None
        assert parse_session_line("[1, 2]") is None

    def test_ignored_kinds(self):
        """Test bookkeeping records are dropped."""
        assert parse_session_line(json.dumps({"type": "file-history-snapshot"})) is None
        assert parse_session_line(json.dumps({"type": "progress"})) is None

    def test_unknown_kind_is_kept(self):
        """Test that records of other kinds still decode."""
        record = parse_session_line(json.dumps({"type": "system", "sessionId": "s"}))
        assert record is not None
        assert record.kind == "system"
        assert record.session_id == "s"

    def test_user_record(self):
        """Test header fields and string content."""
        line = json.dumps(
            {
                "type": "user",
                "sessionId": "sess-1",
                "uuid": "u1",
                "parentUuid": None,
                "timestamp": "2025-01-15T10:00:00Z",
                "cwd": "/work",
                "gitBranch": "main",
                "isSidechain": True,
                "message": {"role": "user", "content": "hi"},
            }
        )
        record = parse_session_line(line)
        assert record.uuid == "u1"
        assert record.parent_uuid is None
        assert record.git_branch == "main"
        assert record.is_sidechain is True
        assert record.timestamp == 1736935200000
        assert record.message.content == "hi"
        assert record.blocks == []

    def test_assistant_usage(self):
        """Test token usage is mapped onto the payload."""
        line = json.dumps(
            {
                "type": "assistant",
                "uuid": "a1",
                "message": {
                    "id": "msg_1",
                    "model": "claude-sonnet-4-6",
                    "stop_reason": "end_turn",
                    "content": [{"type": "text", "text": "hello"}, "junk"],
                    "usage": {
                        "input_tokens": 10,
                        "output_tokens": 20,
                        "cache_creation_input_tokens": 30,
                        "cache_read_input_tokens": 40,
                    },
                },
            }
        )
        record = parse_session_line(line)
        payload = record.message
        assert payload.id == "msg_1"
        assert payload.stop_reason == "end_turn"
        assert (payload.input_tokens, payload.output_tokens) == (10, 20)
        assert (payload.cache_creation_tokens, payload.cache_read_tokens) == (30, 40)
        # Non-object blocks are dropped
        assert record.blocks == [{"type": "text", "text": "hello"}]

    def test_parse_lines_skips_bad(self):
        """Test that bad lines are skipped without affecting good ones."""
        lines = [
            json.dumps({"type": "user", "uuid": "u1"}),
            "garbage",
            json.dumps({"type": "progress"}),
            json.dumps({"type": "assistant", "uuid": "a1"}),
        ]
        records = parse_session_lines(lines)
        assert [r.uuid for r in records] == ["u1", "a1"]


class TestParseHistoryLine:
    """Tests for global history decoding."""

    def test_valid_entry(self):
        """Test a complete history entry."""
        record = parse_history_line(
            json.dumps(
                {
                    "display": "fix it",
                    "timestamp": 1736935200000,
                    "project": "/home/user/proj",
                    "sessionId": "sess-1",
                    "pastedContents": {"1": "text"},
                }
            )
        )
        assert record.display == "fix it"
        assert record.project == "/home/user/proj"
        assert record.session_id == "sess-1"
        assert record.pasted_contents == {"1": "text"}

    def test_empty_project_becomes_none(self):
        """Test that an empty project string is stored as absent."""
        record = parse_history_line(json.dumps({"display": "x", "timestamp": 1, "project": ""}))
        assert record.project is None

    def test_rejects_incomplete(self):
        """Test entries missing display text or timestamp are rejected."""
        assert parse_history_line(json.dumps({"timestamp": 1})) is None
        assert parse_history_line(json.dumps({"display": "x"})) is None
        assert parse_history_line(json.dumps({"display": 5, "timestamp": 1})) is None
        assert parse_history_line("nope") is None


class TestParseTask:
    """Tests for task file decoding."""

    def test_numeric_id_is_stringified(self):
        """Test the task id is stored as text."""
        task = parse_task(json.dumps({"id": 3, "subject": "Do it", "status": "pending"}))
        assert task.task_number == "3"
        assert task.blocks == []
        assert task.blocked_by == []

    def test_full_task(self):
        """Test optional fields are carried through."""
        task = parse_task(
            json.dumps(
                {
                    "id": "1",
                    "subject": "Fix login",
                    "description": "Repair auth",
                    "activeForm": "Fixing login",
                    "status": "in_progress",
                    "blocks": ["2"],
                    "blockedBy": ["0"],
                }
            )
        )
        assert task.description == "Repair auth"
        assert task.active_form == "Fixing login"
        assert task.blocks == ["2"]
        assert task.blocked_by == ["0"]

    def test_rejects_malformed(self):
        """Test malformed or incomplete task files are rejected."""
        assert parse_task("not json") is None
        assert parse_task(json.dumps({"subject": "x", "status": "pending"})) is None
        assert parse_task(json.dumps({"id": 1, "status": "pending"})) is None
        assert parse_task(json.dumps({"id": 1, "subject": "x"})) is None


class TestOversizedNumbers:
    """Tests for numbers too large to store."""

    def test_usage_overflow_dropped(self):
        """Test token counts beyond the 64-bit range are dropped, others kept."""
        line = json.dumps(
            {
                "type": "assistant",
                "uuid": "a1",
                "message": {"id": "m1", "usage": {"input_tokens": 2**64 - 1, "output_tokens": 7}},
            }
        )
        payload = parse_session_line(line).message
        assert payload.input_tokens is None
        assert payload.output_tokens == 7

    def test_history_overflow_rejected(self):
        """Test a history entry whose timestamp cannot be stored is rejected."""
        assert parse_history_line(json.dumps({"display": "weird", "timestamp": 1e300})) is None
