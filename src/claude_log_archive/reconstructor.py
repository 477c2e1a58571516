"""Rebuild logical conversation turns from the raw records of one transcript file.

The CLI streams an assistant response as several records that share one API
message id, each carrying a slice of the content blocks. Those records are
grouped and coalesced into a single assistant message here. Tool results come
back inside later user records, so the whole file is buffered before any
message is emitted.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import orjson

from .records import (
    BLOCK_TEXT,
    BLOCK_TOOL_RESULT,
    BLOCK_TOOL_USE,
    KIND_ASSISTANT,
    KIND_SUMMARY,
    KIND_USER,
    SessionRecord,
)


@dataclass
class ToolUse:
    """A tool invocation requested by the assistant, with its result if one came back."""

    tool_use_id: str
    tool_name: str
    input: str  # serialized JSON of the structured input
    input_text: str  # searchable projection of the input
    result: str | None = None


@dataclass
class Message:
    """One logical user or assistant turn."""

    uuid: str
    role: str  # 'user' or 'assistant'
    content: str
    raw_content: str | None = None
    parent_uuid: str | None = None
    model: str | None = None
    stop_reason: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    cache_creation_tokens: int | None = None
    cache_read_tokens: int | None = None
    user_type: str | None = None
    is_sidechain: bool = False
    cwd: str | None = None
    git_branch: str | None = None
    timestamp: int | None = None
    tool_uses: list[ToolUse] = field(default_factory=list)


@dataclass
class Session:
    """A reconstructed conversation thread, top-level or sub-agent."""

    session_id: str
    slug: str | None = None
    summary: str | None = None
    git_branch: str | None = None
    cwd: str | None = None
    version: str | None = None
    is_subagent: bool = False
    agent_id: str | None = None
    parent_session_id: str | None = None
    started_at: int | None = None
    ended_at: int | None = None
    messages: list[Message] = field(default_factory=list)

    @property
    def tool_use_count(self) -> int:
        return sum(len(m.tool_uses) for m in self.messages)


ToolProjection = Callable[[dict], str]


def _first_string(*keys: str) -> ToolProjection:
    def project(tool_input: dict) -> str:
        for key in keys:
            value = tool_input.get(key)
            if isinstance(value, str):
                return value
        return ""

    return project


def _joined_strings(*keys: str) -> ToolProjection:
    def project(tool_input: dict) -> str:
        parts = [tool_input.get(key) for key in keys]
        return " ".join(p for p in parts if isinstance(p, str)).strip()

    return project


def _all_strings(tool_input: dict) -> str:
    return " ".join(v for v in tool_input.values() if isinstance(v, str))


# Tool name -> projection of its input used for full-text search.
# Tools not listed fall back to joining every string-valued input field.
TOOL_INPUT_PROJECTIONS: dict[str, ToolProjection] = {
    "Bash": _first_string("command"),
    "Read": _first_string("file_path"),
    "Write": _first_string("file_path"),
    "Edit": _first_string("file_path"),
    "Grep": _joined_strings("pattern", "path"),
    "Glob": _joined_strings("pattern", "path"),
    "WebSearch": _first_string("query"),
    "WebFetch": _first_string("url"),
    "Task": _first_string("prompt", "description"),
}


def flatten_tool_input(tool_name: str, tool_input: Any) -> str:
    """Project a tool's structured input onto the text indexed for search."""
    if not isinstance(tool_input, dict):
        tool_input = {}
    project = TOOL_INPUT_PROJECTIONS.get(tool_name, _all_strings)
    return project(tool_input)


def _dumps(value: Any) -> str:
    return orjson.dumps(value).decode("utf-8")


def extract_text(blocks: Iterable[dict]) -> str:
    """Join the text of all text blocks with a blank line."""
    parts = []
    for block in blocks:
        if block.get("type") == BLOCK_TEXT:
            text = block.get("text")
            parts.append(text if isinstance(text, str) else "")
    return "\n\n".join(parts)


def extract_user_content(content: str | list[dict]) -> str:
    """Plain-string content is used verbatim; block lists contribute their text blocks."""
    if isinstance(content, str):
        return content
    return extract_text(content)


def _tool_result_text(block: dict) -> str | None:
    content = block.get("content")
    if content is None:
        return None
    if isinstance(content, str):
        return content
    return _dumps(content)


def collect_tool_results(user_records: Iterable[SessionRecord]) -> dict[str, str | None]:
    """Index every tool-result block of the given user records by its tool_use_id."""
    results: dict[str, str | None] = {}
    for record in user_records:
        for block in record.blocks:
            tool_use_id = block.get("tool_use_id")
            if block.get("type") == BLOCK_TOOL_RESULT and isinstance(tool_use_id, str) and tool_use_id:
                results[tool_use_id] = _tool_result_text(block)
    return results


def _build_user_message(record: SessionRecord) -> Message | None:
    payload = record.message
    if payload is None or not payload.content or not record.uuid:
        return None

    raw_content = None if isinstance(payload.content, str) else _dumps(payload.content)
    return Message(
        uuid=record.uuid,
        role=KIND_USER,
        content=extract_user_content(payload.content),
        raw_content=raw_content,
        parent_uuid=record.parent_uuid,
        user_type=record.user_type,
        is_sidechain=record.is_sidechain,
        cwd=record.cwd,
        git_branch=record.git_branch,
        timestamp=record.timestamp,
    )


def _build_tool_uses(blocks: list[dict], tool_results: dict[str, str | None]) -> list[ToolUse]:
    tool_uses = []
    for block in blocks:
        if block.get("type") != BLOCK_TOOL_USE:
            continue
        tool_use_id = block.get("id")
        tool_name = block.get("name")
        if not isinstance(tool_use_id, str) or not tool_use_id:
            continue
        if not isinstance(tool_name, str) or not tool_name:
            continue
        tool_input = block.get("input")
        if not isinstance(tool_input, dict):
            tool_input = {}
        tool_uses.append(
            ToolUse(
                tool_use_id=tool_use_id,
                tool_name=tool_name,
                input=_dumps(tool_input),
                input_text=flatten_tool_input(tool_name, tool_input),
                result=tool_results.get(tool_use_id),
            )
        )
    return tool_uses


def _build_assistant_message(
    group: list[SessionRecord],
    tool_results: dict[str, str | None],
) -> Message | None:
    first = group[0]
    if not first.uuid:
        return None

    blocks: list[dict] = []
    for record in group:
        blocks.extend(record.blocks)

    payload = first.message
    return Message(
        uuid=first.uuid,
        role=KIND_ASSISTANT,
        content=extract_text(blocks),
        raw_content=_dumps(blocks),
        parent_uuid=first.parent_uuid,
        model=payload.model,
        stop_reason=payload.stop_reason,
        input_tokens=payload.input_tokens,
        output_tokens=payload.output_tokens,
        cache_creation_tokens=payload.cache_creation_tokens,
        cache_read_tokens=payload.cache_read_tokens,
        user_type=first.user_type,
        is_sidechain=first.is_sidechain,
        cwd=first.cwd,
        git_branch=first.git_branch,
        timestamp=first.timestamp,
        tool_uses=_build_tool_uses(blocks, tool_results),
    )


def reconstruct_session(
    records: Iterable[SessionRecord],
    is_subagent: bool = False,
    parent_session_id: str | None = None,
    agent_id: str | None = None,
) -> Session | None:
    """Reconstruct one session from the ordered records of a transcript file.

    Args:
        records: Decoded records in file order.
        is_subagent: Whether the file belongs to a sub-agent of another session.
        parent_session_id: Owning session's id, for sub-agent files.
        agent_id: Sub-agent identifier parsed from the file name.

    Returns:
        The Session, or None when no record carried a session id.
    """
    user_records: list[SessionRecord] = []
    assistant_groups: dict[str, list[SessionRecord]] = {}
    summary = None
    header: SessionRecord | None = None

    for record in records:
        if record.kind == KIND_SUMMARY:
            summary = record.summary
            continue

        if header is None and record.session_id:
            header = record

        if record.kind == KIND_USER:
            user_records.append(record)
        elif record.kind == KIND_ASSISTANT:
            message_id = record.message.id if record.message else None
            if not message_id:
                continue
            assistant_groups.setdefault(message_id, []).append(record)

    if header is None:
        return None

    timestamps = [r.timestamp for r in user_records if r.timestamp is not None]
    timestamps.extend(g[0].timestamp for g in assistant_groups.values() if g[0].timestamp is not None)

    session = Session(
        session_id=header.session_id,
        slug=header.slug,
        summary=summary,
        git_branch=header.git_branch,
        cwd=header.cwd,
        version=header.version,
        is_subagent=is_subagent,
        agent_id=agent_id,
        parent_session_id=parent_session_id,
        started_at=min(timestamps) if timestamps else None,
        ended_at=max(timestamps) if timestamps else None,
    )

    tool_results = collect_tool_results(user_records)

    for record in user_records:
        message = _build_user_message(record)
        if message is not None:
            session.messages.append(message)

    for group in assistant_groups.values():
        message = _build_assistant_message(group, tool_results)
        if message is not None:
            session.messages.append(message)

    return session
