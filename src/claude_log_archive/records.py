"""Decoders for the line-delimited JSON records written by the Claude CLI.

Three sources are understood:
- per-session transcripts (``projects/<dir>/<session>.jsonl``)
- the flat prompt history (``history.jsonl``)
- task files (``tasks/<session>/<n>.json``)

Every decoder is tolerant: a line or file that cannot be decoded yields ``None``
instead of raising, so one bad record never aborts the batch it belongs to.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import orjson

# Record kinds in session transcripts
KIND_USER = "user"
KIND_ASSISTANT = "assistant"
KIND_SUMMARY = "summary"
IGNORED_KINDS = frozenset({"file-history-snapshot", "progress"})

# Content block kinds
BLOCK_TEXT = "text"
BLOCK_TOOL_USE = "tool_use"
BLOCK_TOOL_RESULT = "tool_result"

# Range of a SQLite INTEGER column
SQLITE_INT_MIN = -(2**63)
SQLITE_INT_MAX = 2**63 - 1


@dataclass
class MessagePayload:
    """The ``message`` object embedded in a user or assistant record."""

    id: str | None = None
    content: str | list[dict] | None = None
    model: str | None = None
    stop_reason: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    cache_creation_tokens: int | None = None
    cache_read_tokens: int | None = None


@dataclass
class SessionRecord:
    """One decoded line of a session transcript."""

    kind: str | None
    session_id: str | None = None
    slug: str | None = None
    version: str | None = None
    cwd: str | None = None
    git_branch: str | None = None
    uuid: str | None = None
    parent_uuid: str | None = None
    user_type: str | None = None
    is_sidechain: bool = False
    timestamp: int | None = None  # epoch milliseconds
    summary: str | None = None
    message: MessagePayload | None = None

    @property
    def blocks(self) -> list[dict]:
        """Content blocks of the embedded message (empty for plain-string content)."""
        if self.message is None or not isinstance(self.message.content, list):
            return []
        return self.message.content


@dataclass
class HistoryRecord:
    """One prompt from the global history log."""

    display: str
    timestamp: int  # epoch milliseconds
    project: str | None = None
    session_id: str | None = None
    pasted_contents: Any = None


@dataclass
class TaskRecord:
    """A task file tracked outside the conversation."""

    task_number: str
    subject: str
    status: str
    description: str | None = None
    active_form: str | None = None
    blocks: list = field(default_factory=list)
    blocked_by: list = field(default_factory=list)


def parse_timestamp(value: Any) -> int | None:
    """Convert an ISO-8601 string or epoch-milliseconds number to epoch milliseconds.

    Returns None when the value is missing or cannot be interpreted.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        value = int(value)
    if isinstance(value, int):
        return _sqlite_int(value)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def _sqlite_int(value: int) -> int | None:
    return value if SQLITE_INT_MIN <= value <= SQLITE_INT_MAX else None


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    return _sqlite_int(value) if isinstance(value, int) else None


def _decode_object(line: str | bytes) -> dict | None:
    if not line or not line.strip():
        return None
    try:
        data = orjson.loads(line)
    except orjson.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _parse_message(raw: Any) -> MessagePayload | None:
    if not isinstance(raw, dict):
        return None

    content = raw.get("content")
    if isinstance(content, list):
        content = [block for block in content if isinstance(block, dict)]
    elif not isinstance(content, str):
        content = None

    usage = raw.get("usage")
    if not isinstance(usage, dict):
        usage = {}

    return MessagePayload(
        id=_str_or_none(raw.get("id")),
        content=content,
        model=_str_or_none(raw.get("model")),
        stop_reason=_str_or_none(raw.get("stop_reason")),
        input_tokens=_int_or_none(usage.get("input_tokens")),
        output_tokens=_int_or_none(usage.get("output_tokens")),
        cache_creation_tokens=_int_or_none(usage.get("cache_creation_input_tokens")),
        cache_read_tokens=_int_or_none(usage.get("cache_read_input_tokens")),
    )


def parse_session_line(line: str | bytes) -> SessionRecord | None:
    """Decode one transcript line.

    Returns None for blank or malformed lines and for bookkeeping records
    (file-history snapshots, progress events) that carry no conversation data.
    """
    data = _decode_object(line)
    if data is None:
        return None

    kind = _str_or_none(data.get("type"))
    if kind in IGNORED_KINDS:
        return None

    return SessionRecord(
        kind=kind,
        session_id=_str_or_none(data.get("sessionId")),
        slug=_str_or_none(data.get("slug")),
        version=_str_or_none(data.get("version")),
        cwd=_str_or_none(data.get("cwd")),
        git_branch=_str_or_none(data.get("gitBranch")),
        uuid=_str_or_none(data.get("uuid")),
        parent_uuid=_str_or_none(data.get("parentUuid")),
        user_type=_str_or_none(data.get("userType")),
        is_sidechain=bool(data.get("isSidechain", False)),
        timestamp=parse_timestamp(data.get("timestamp")),
        summary=_str_or_none(data.get("summary")),
        message=_parse_message(data.get("message")),
    )


def parse_session_lines(lines) -> list[SessionRecord]:
    """Decode an iterable of transcript lines, silently dropping the bad ones."""
    records = []
    for line in lines:
        record = parse_session_line(line)
        if record is not None:
            records.append(record)
    return records


def parse_history_line(line: str | bytes) -> HistoryRecord | None:
    """Decode one line of the global history log.

    Entries without display text or a usable timestamp are rejected.
    """
    data = _decode_object(line)
    if data is None:
        return None

    display = data.get("display")
    timestamp = parse_timestamp(data.get("timestamp"))
    if not isinstance(display, str) or timestamp is None:
        return None

    return HistoryRecord(
        display=display,
        timestamp=timestamp,
        project=_str_or_none(data.get("project")) or None,
        session_id=_str_or_none(data.get("sessionId")),
        pasted_contents=data.get("pastedContents"),
    )


def parse_task(raw: str | bytes) -> TaskRecord | None:
    """Decode a task file's contents.

    The task id may be numeric or a string; it is stored stringified.
    """
    data = _decode_object(raw)
    if data is None:
        return None

    task_id = data.get("id")
    subject = data.get("subject")
    status = data.get("status")
    if task_id is None or not isinstance(subject, str) or not isinstance(status, str):
        return None

    blocks = data.get("blocks")
    blocked_by = data.get("blockedBy")
    return TaskRecord(
        task_number=str(task_id),
        subject=subject,
        status=status,
        description=_str_or_none(data.get("description")),
        active_form=_str_or_none(data.get("activeForm")),
        blocks=blocks if isinstance(blocks, list) else [],
        blocked_by=blocked_by if isinstance(blocked_by, list) else [],
    )
