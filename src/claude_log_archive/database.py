"""Database module for storing and querying Claude CLI conversation logs.

The derived tables (projects through plans) are rebuilt in full by every sync;
``meta`` is the only state that survives across syncs. Full-text search is
provided by FTS5 shadow indexes kept in step with the base tables by triggers
(see ``fts.py``).
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path

from .fts import initialize_search_indexes
from .writer import StoreWriter


class NotFoundError(LookupError):
    """A requested entity does not exist."""


class ProjectNotFoundError(NotFoundError):
    pass


class SessionNotFoundError(NotFoundError):
    pass


class PlanNotFoundError(NotFoundError):
    pass


# First user prompt, truncated, stands in for sessions without a summary record
SUMMARY_FALLBACK_SQL = """COALESCE(s.summary, (
    SELECT substr(m.content, 1, 200) FROM messages m
    WHERE m.session_id = s.id AND m.role = 'user' AND m.content IS NOT NULL
    ORDER BY m.timestamp ASC LIMIT 1
))"""

MESSAGE_COUNT_SQL = "(SELECT count(*) FROM messages m WHERE m.session_id = s.id)"


class Database:
    """SQLite store for projects, sessions, messages, tool uses, history, tasks and plans."""

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS projects (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        path TEXT NOT NULL,
        name TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL,
        project_id INTEGER NOT NULL REFERENCES projects(id),
        slug TEXT,
        summary TEXT,
        git_branch TEXT,
        cwd TEXT,
        version TEXT,
        is_subagent INTEGER NOT NULL DEFAULT 0,
        agent_id TEXT,
        parent_session_id TEXT,
        started_at INTEGER,
        ended_at INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id INTEGER NOT NULL REFERENCES sessions(id),
        uuid TEXT NOT NULL,
        parent_uuid TEXT,
        role TEXT NOT NULL,
        content TEXT,
        raw_content TEXT,
        model TEXT,
        stop_reason TEXT,
        input_tokens INTEGER,
        output_tokens INTEGER,
        cache_creation_tokens INTEGER,
        cache_read_tokens INTEGER,
        user_type TEXT,
        is_sidechain INTEGER NOT NULL DEFAULT 0,
        cwd TEXT,
        git_branch TEXT,
        timestamp INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS tool_uses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        message_id INTEGER NOT NULL REFERENCES messages(id),
        tool_use_id TEXT NOT NULL,
        tool_name TEXT NOT NULL,
        input TEXT,
        input_text TEXT,
        result TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS global_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        display TEXT NOT NULL,
        project_path TEXT,
        session_id TEXT,
        pasted_contents TEXT,
        timestamp INTEGER NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        task_number TEXT NOT NULL,
        source_session_id TEXT NOT NULL,
        subject TEXT NOT NULL,
        description TEXT,
        active_form TEXT,
        status TEXT NOT NULL,
        blocks TEXT,
        blocked_by TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS plans (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        slug TEXT NOT NULL,
        title TEXT,
        content TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS meta (
        key TEXT PRIMARY KEY,
        value TEXT
    );

    CREATE UNIQUE INDEX IF NOT EXISTS idx_projects_path ON projects(path);
    CREATE UNIQUE INDEX IF NOT EXISTS idx_sessions_key ON sessions(session_id, COALESCE(agent_id, ''));
    CREATE INDEX IF NOT EXISTS idx_sessions_project ON sessions(project_id);
    CREATE INDEX IF NOT EXISTS idx_sessions_started ON sessions(started_at);
    CREATE UNIQUE INDEX IF NOT EXISTS idx_messages_uuid ON messages(uuid);
    CREATE INDEX IF NOT EXISTS idx_messages_session ON messages(session_id);
    CREATE INDEX IF NOT EXISTS idx_messages_role ON messages(role);
    CREATE INDEX IF NOT EXISTS idx_messages_timestamp ON messages(timestamp);
    CREATE INDEX IF NOT EXISTS idx_tool_uses_message ON tool_uses(message_id);
    CREATE INDEX IF NOT EXISTS idx_tool_uses_name ON tool_uses(tool_name);
    CREATE INDEX IF NOT EXISTS idx_global_history_session ON global_history(session_id);
    CREATE INDEX IF NOT EXISTS idx_global_history_project ON global_history(project_path);
    CREATE INDEX IF NOT EXISTS idx_global_history_timestamp ON global_history(timestamp);
    CREATE INDEX IF NOT EXISTS idx_tasks_source_session ON tasks(source_session_id);
    CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
    CREATE UNIQUE INDEX IF NOT EXISTS idx_plans_slug ON plans(slug);
    """

    def __init__(self, db_path: str | Path):
        """Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self._ensure_schema()

    @contextmanager
    def connection(self):
        """Open a connection that commits on success and rolls back on error."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_schema(self):
        with self.connection() as conn:
            conn.executescript(self.SCHEMA)
            initialize_search_indexes(conn)

    @contextmanager
    def rebuild(self):
        """Yield a StoreWriter whose writes form one all-or-nothing transaction.

        The write lock is taken up front so no other writer can interleave.
        """
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            yield StoreWriter(conn)

    # ── Meta ────────────────────────────────────────────────────────────────

    def get_meta(self, key: str) -> str | None:
        with self.connection() as conn:
            row = conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
            return row["value"] if row else None

    def set_meta(self, key: str, value: str) -> None:
        with self.connection() as conn:
            conn.execute(
                "INSERT INTO meta (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )

    # ── Projects ────────────────────────────────────────────────────────────

    def list_projects(self) -> list[dict]:
        """List projects with session/message counts, most recently active first."""
        with self.connection() as conn:
            cursor = conn.execute(
                """
                SELECT
                    p.id,
                    p.name,
                    p.path,
                    (SELECT count(*) FROM sessions s
                     WHERE s.project_id = p.id AND s.is_subagent = 0) as session_count,
                    (SELECT count(*) FROM messages m JOIN sessions s ON s.id = m.session_id
                     WHERE s.project_id = p.id) as message_count,
                    (SELECT MIN(s.started_at) FROM sessions s
                     WHERE s.project_id = p.id AND s.is_subagent = 0) as first_session,
                    (SELECT MAX(s.started_at) FROM sessions s
                     WHERE s.project_id = p.id AND s.is_subagent = 0) as last_session
                FROM projects p
                ORDER BY last_session DESC
                """
            )
            return [dict(row) for row in cursor.fetchall()]

    def get_project(self, project_id: int) -> dict:
        """Get a project by row id.

        Raises:
            ProjectNotFoundError: if no such project exists.
        """
        with self.connection() as conn:
            row = conn.execute(
                "SELECT id, name, path FROM projects WHERE id = ?", (project_id,)
            ).fetchone()
        if row is None:
            raise ProjectNotFoundError(f"Project not found: {project_id}")
        return dict(row)

    def list_project_sessions(self, project_id: int) -> list[dict]:
        """Top-level sessions of one project, newest first."""
        self.get_project(project_id)
        with self.connection() as conn:
            cursor = conn.execute(
                f"""
                SELECT
                    s.id,
                    s.session_id,
                    {SUMMARY_FALLBACK_SQL} as summary,
                    {MESSAGE_COUNT_SQL} as message_count,
                    s.started_at,
                    s.ended_at,
                    s.git_branch
                FROM sessions s
                WHERE s.project_id = ? AND s.is_subagent = 0
                ORDER BY s.started_at DESC
                """,
                (project_id,),
            )
            return [dict(row) for row in cursor.fetchall()]

    # ── Sessions ────────────────────────────────────────────────────────────

    def count_sessions(self) -> int:
        with self.connection() as conn:
            return conn.execute("SELECT count(*) FROM sessions WHERE is_subagent = 0").fetchone()[0]

    def list_sessions(self, limit: int | None = None, offset: int = 0) -> list[dict]:
        """List top-level sessions, newest first.

        Args:
            limit: Maximum number of sessions to return (None for all).
            offset: Number of sessions to skip.
        """
        query = f"""
            SELECT
                s.id,
                s.session_id,
                p.name as project,
                {SUMMARY_FALLBACK_SQL} as summary,
                {MESSAGE_COUNT_SQL} as message_count,
                s.started_at,
                s.ended_at,
                s.cwd,
                s.git_branch
            FROM sessions s
            JOIN projects p ON p.id = s.project_id
            WHERE s.is_subagent = 0
            ORDER BY s.started_at DESC
        """
        params: list = []
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        with self.connection() as conn:
            return [dict(row) for row in conn.execute(query, params).fetchall()]

    def get_session(self, session_row_id: int) -> dict:
        """Get a session by row id.

        Raises:
            SessionNotFoundError: if no such session exists.
        """
        with self.connection() as conn:
            row = conn.execute(
                f"""
                SELECT
                    s.id,
                    s.session_id,
                    s.slug,
                    p.name as project,
                    {SUMMARY_FALLBACK_SQL} as summary,
                    s.started_at,
                    s.ended_at,
                    s.cwd,
                    s.git_branch,
                    s.version,
                    s.is_subagent,
                    s.agent_id,
                    s.parent_session_id
                FROM sessions s
                JOIN projects p ON p.id = s.project_id
                WHERE s.id = ?
                """,
                (session_row_id,),
            ).fetchone()
        if row is None:
            raise SessionNotFoundError(f"Session not found: {session_row_id}")
        return dict(row)

    def get_session_messages(self, session_row_id: int) -> list[dict]:
        """Timestamped messages of a session in chronological order."""
        self.get_session(session_row_id)
        with self.connection() as conn:
            cursor = conn.execute(
                """
                SELECT id, uuid, parent_uuid, role, content, model, timestamp,
                       input_tokens, output_tokens
                FROM messages
                WHERE session_id = ? AND timestamp IS NOT NULL
                ORDER BY timestamp ASC
                """,
                (session_row_id,),
            )
            return [dict(row) for row in cursor.fetchall()]

    def list_subagent_sessions(self, session_id: str) -> list[dict]:
        """Sub-agent sessions spawned by the session with the given external id."""
        with self.connection() as conn:
            cursor = conn.execute(
                f"""
                SELECT s.id, s.session_id, s.agent_id, {SUMMARY_FALLBACK_SQL} as summary,
                       {MESSAGE_COUNT_SQL} as message_count, s.started_at, s.ended_at
                FROM sessions s
                WHERE s.is_subagent = 1 AND s.parent_session_id = ?
                ORDER BY s.started_at ASC
                """,
                (session_id,),
            )
            return [dict(row) for row in cursor.fetchall()]

    def get_tool_uses(self, message_row_id: int) -> list[dict]:
        with self.connection() as conn:
            cursor = conn.execute(
                """
                SELECT id, tool_use_id, tool_name, input, input_text, result
                FROM tool_uses WHERE message_id = ? ORDER BY id
                """,
                (message_row_id,),
            )
            return [dict(row) for row in cursor.fetchall()]

    # ── History, tasks, plans ───────────────────────────────────────────────

    def list_history(self, limit: int | None = None, offset: int = 0) -> list[dict]:
        query = """
            SELECT id, display, project_path, session_id, pasted_contents, timestamp
            FROM global_history ORDER BY timestamp DESC
        """
        params: list = []
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        with self.connection() as conn:
            return [dict(row) for row in conn.execute(query, params).fetchall()]

    def list_tasks(self, status: str | None = None, source_session_id: str | None = None) -> list[dict]:
        """List tasks, optionally filtered by status and owning session."""
        query = """
            SELECT id, task_number, source_session_id, subject, description,
                   active_form, status, blocks, blocked_by
            FROM tasks
        """
        clauses = []
        params: list = []
        if status:
            clauses.append("status = ?")
            params.append(status)
        if source_session_id:
            clauses.append("source_session_id = ?")
            params.append(source_session_id)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY source_session_id, CAST(task_number AS INTEGER), task_number"

        with self.connection() as conn:
            return [dict(row) for row in conn.execute(query, params).fetchall()]

    def list_plans(self) -> list[dict]:
        with self.connection() as conn:
            cursor = conn.execute("SELECT id, slug, title FROM plans ORDER BY slug")
            return [dict(row) for row in cursor.fetchall()]

    def get_plan(self, slug: str) -> dict:
        """Get a plan document by slug.

        Raises:
            PlanNotFoundError: if no plan has that slug.
        """
        with self.connection() as conn:
            row = conn.execute(
                "SELECT id, slug, title, content FROM plans WHERE slug = ?", (slug,)
            ).fetchone()
        if row is None:
            raise PlanNotFoundError(f"Plan not found: {slug}")
        return dict(row)

    def get_stats(self) -> dict:
        """Row counts of every derived table."""
        with self.connection() as conn:
            counts = {}
            for table in StoreWriter.DERIVED_TABLES:
                counts[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            return counts
