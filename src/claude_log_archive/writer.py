"""Bulk loader for the derived tables.

A StoreWriter is bound to one open connection whose transaction spans the
whole rebuild; it never commits on its own. Uniqueness is enforced by the
schema and every insert skips rows that would violate it.
"""

import sqlite3
from collections.abc import Iterable
from typing import ClassVar

import orjson

from .reconstructor import Message, Session, ToolUse
from .records import HistoryRecord, TaskRecord


class StoreWriter:
    """Insert projects, sessions, messages, tool uses, history, tasks and plans."""

    # Child tables first so foreign keys hold at every step
    DERIVED_TABLES: ClassVar[list[str]] = [
        "tool_uses",
        "messages",
        "sessions",
        "projects",
        "global_history",
        "tasks",
        "plans",
    ]

    HISTORY_BATCH_SIZE = 100

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def clear(self) -> None:
        """Delete every derived row. The delete triggers drain the FTS indexes too."""
        for table in self.DERIVED_TABLES:
            self.conn.execute(f"DELETE FROM {table}")

    def insert_project(self, path: str, name: str) -> tuple[int, bool]:
        """Insert a project, reusing the row if the path is already present.

        Returns:
            (project row id, whether a new row was created)
        """
        cursor = self.conn.execute(
            "INSERT INTO projects (path, name) VALUES (?, ?) ON CONFLICT(path) DO NOTHING",
            (path, name),
        )
        if cursor.rowcount == 1:
            return cursor.lastrowid, True
        row = self.conn.execute("SELECT id FROM projects WHERE path = ?", (path,)).fetchone()
        return row[0], False

    def insert_session(self, session: Session, project_id: int) -> tuple[int, bool]:
        """Insert a session row (not its messages).

        A session whose (session_id, agent_id) key already exists is merged into
        the existing row: its time bounds widen and a missing summary is filled.

        Returns:
            (session row id, whether a new row was created)
        """
        cursor = self.conn.execute(
            """
            INSERT INTO sessions
            (session_id, project_id, slug, summary, git_branch, cwd, version,
             is_subagent, agent_id, parent_session_id, started_at, ended_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT DO NOTHING
            """,
            (
                session.session_id,
                project_id,
                session.slug,
                session.summary,
                session.git_branch,
                session.cwd,
                session.version,
                int(session.is_subagent),
                session.agent_id,
                session.parent_session_id,
                session.started_at,
                session.ended_at,
            ),
        )
        if cursor.rowcount == 1:
            return cursor.lastrowid, True

        row = self.conn.execute(
            """
            SELECT id, started_at, ended_at FROM sessions
            WHERE session_id = ? AND COALESCE(agent_id, '') = COALESCE(?, '')
            """,
            (session.session_id, session.agent_id),
        ).fetchone()
        bounds = [t for t in (row[1], row[2], session.started_at, session.ended_at) if t is not None]
        self.conn.execute(
            "UPDATE sessions SET started_at = ?, ended_at = ?, summary = COALESCE(summary, ?) WHERE id = ?",
            (
                min(bounds) if bounds else None,
                max(bounds) if bounds else None,
                session.summary,
                row[0],
            ),
        )
        return row[0], False

    def insert_message(self, message: Message, session_row_id: int) -> int | None:
        """Insert a message unless its uuid is already stored.

        Returns:
            The new row id, or None when the uuid was a duplicate.
        """
        cursor = self.conn.execute(
            """
            INSERT INTO messages
            (session_id, uuid, parent_uuid, role, content, raw_content, model, stop_reason,
             input_tokens, output_tokens, cache_creation_tokens, cache_read_tokens,
             user_type, is_sidechain, cwd, git_branch, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(uuid) DO NOTHING
            """,
            (
                session_row_id,
                message.uuid,
                message.parent_uuid,
                message.role,
                message.content,
                message.raw_content,
                message.model,
                message.stop_reason,
                message.input_tokens,
                message.output_tokens,
                message.cache_creation_tokens,
                message.cache_read_tokens,
                message.user_type,
                int(message.is_sidechain),
                message.cwd,
                message.git_branch,
                message.timestamp,
            ),
        )
        return cursor.lastrowid if cursor.rowcount == 1 else None

    def insert_tool_uses(self, tool_uses: Iterable[ToolUse], message_row_id: int) -> int:
        rows = [
            (message_row_id, t.tool_use_id, t.tool_name, t.input, t.input_text, t.result)
            for t in tool_uses
        ]
        self.conn.executemany(
            """
            INSERT INTO tool_uses (message_id, tool_use_id, tool_name, input, input_text, result)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            rows,
        )
        return len(rows)

    def write_session(self, session: Session, project_id: int) -> tuple[bool, int, int]:
        """Persist a reconstructed session with its messages and tool uses.

        Returns:
            (new session row created, messages inserted, tool uses inserted)
        """
        session_row_id, created = self.insert_session(session, project_id)
        messages = 0
        tool_uses = 0
        for message in session.messages:
            message_row_id = self.insert_message(message, session_row_id)
            if message_row_id is None:
                continue
            messages += 1
            if message.tool_uses:
                tool_uses += self.insert_tool_uses(message.tool_uses, message_row_id)
        return created, messages, tool_uses

    def insert_history(self, records: list[HistoryRecord]) -> int:
        """Insert history entries in fixed-size batches to bound statement size."""
        for start in range(0, len(records), self.HISTORY_BATCH_SIZE):
            batch = records[start : start + self.HISTORY_BATCH_SIZE]
            placeholders = ", ".join(["(?, ?, ?, ?, ?)"] * len(batch))
            params: list = []
            for r in batch:
                pasted = orjson.dumps(r.pasted_contents).decode("utf-8") if r.pasted_contents is not None else None
                params.extend([r.display, r.project, r.session_id, pasted, r.timestamp])
            self.conn.execute(
                "INSERT INTO global_history (display, project_path, session_id, pasted_contents, timestamp) "
                f"VALUES {placeholders}",
                params,
            )
        return len(records)

    def insert_task(self, task: TaskRecord, source_session_id: str) -> None:
        self.conn.execute(
            """
            INSERT INTO tasks
            (task_number, source_session_id, subject, description, active_form, status, blocks, blocked_by)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.task_number,
                source_session_id,
                task.subject,
                task.description,
                task.active_form,
                task.status,
                orjson.dumps(task.blocks).decode("utf-8"),
                orjson.dumps(task.blocked_by).decode("utf-8"),
            ),
        )

    def insert_plan(self, slug: str, title: str, content: str) -> bool:
        cursor = self.conn.execute(
            "INSERT INTO plans (slug, title, content) VALUES (?, ?, ?) ON CONFLICT(slug) DO NOTHING",
            (slug, title, content),
        )
        return cursor.rowcount == 1
