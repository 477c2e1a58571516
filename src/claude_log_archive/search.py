"""Full-text search across messages, tool uses and prompt history.

Free text is turned into a safe FTS5 query: characters that carry meaning in
the FTS5 grammar are replaced by spaces, every remaining word becomes a quoted prefix
term, and the terms are ANDed together. The per-entity matches are unioned
into one result set, ordered by FTS rank or by timestamp.
"""

import math
import re
from dataclasses import dataclass, field

from .config import DEFAULT_PAGE_SIZE
from .database import Database


# Characters with meaning in the FTS5 query grammar
_FTS_SPECIAL_CHARS = re.compile(r"['\"():^~*]")

# Allowed sort options with their SQL ORDER BY clauses (whitelist for security)
_SORT_ORDER_CLAUSES = {
    "relevance": "ORDER BY rank",
    "date": "ORDER BY timestamp DESC",
}


@dataclass
class SearchPage:
    """One page of search results plus the paging state that produced it."""

    query: str
    results: list[dict] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    total_pages: int = 0
    show_all: bool = False


def sanitize_terms(query: str) -> list[str]:
    """Split free text into search terms with FTS5 operator characters removed."""
    if not query:
        return []
    # Terms with no letters or digits tokenize to nothing in FTS5
    terms = _FTS_SPECIAL_CHARS.sub(" ", query).split()
    return [term for term in terms if any(ch.isalnum() for ch in term)]


def build_fts_query(query: str) -> str:
    """Convert free text to an FTS5 MATCH expression of ANDed prefix terms.

    Returns an empty string when nothing searchable is left.

    Example:
        'foo"bar(baz' -> '"foo"* "bar"* "baz"*'
    """
    return " ".join(f'"{term}"*' for term in sanitize_terms(query))


def _order_clause(sort_by: str) -> str:
    return _SORT_ORDER_CLAUSES.get(sort_by, _SORT_ORDER_CLAUSES["date"])


def _paginate(total: int, page: int, page_size: int, show_all: bool) -> tuple[int, int, int, int]:
    """Return (limit, offset, page, total_pages)."""
    if show_all:
        return total, 0, 1, 1
    page = max(1, page)
    return page_size, (page - 1) * page_size, page, math.ceil(total / page_size)


_UNION_SEARCH_SQL = """
    SELECT
        'message' as source,
        m.id,
        m.content,
        m.role,
        p.name as project,
        s.id as session_row_id,
        s.summary as session_summary,
        m.timestamp,
        null as tool_name,
        messages_fts.rank
    FROM messages_fts
    JOIN messages m ON m.id = messages_fts.rowid
    JOIN sessions s ON s.id = m.session_id
    JOIN projects p ON p.id = s.project_id
    WHERE messages_fts MATCH :q

    UNION ALL

    SELECT
        'tool_use' as source,
        t.id,
        t.input_text as content,
        null as role,
        p.name as project,
        s.id as session_row_id,
        s.summary as session_summary,
        m.timestamp,
        t.tool_name,
        tool_uses_fts.rank
    FROM tool_uses_fts
    JOIN tool_uses t ON t.id = tool_uses_fts.rowid
    JOIN messages m ON m.id = t.message_id
    JOIN sessions s ON s.id = m.session_id
    JOIN projects p ON p.id = s.project_id
    WHERE tool_uses_fts MATCH :q

    UNION ALL

    SELECT
        'history' as source,
        g.id,
        g.display as content,
        'user' as role,
        g.project_path as project,
        null as session_row_id,
        null as session_summary,
        g.timestamp,
        null as tool_name,
        global_history_fts.rank
    FROM global_history_fts
    JOIN global_history g ON g.id = global_history_fts.rowid
    WHERE global_history_fts MATCH :q
"""

_UNION_COUNT_SQL = """
    SELECT (
        (SELECT count(*) FROM messages_fts WHERE messages_fts MATCH :q) +
        (SELECT count(*) FROM tool_uses_fts WHERE tool_uses_fts MATCH :q) +
        (SELECT count(*) FROM global_history_fts WHERE global_history_fts MATCH :q)
    ) as total
"""

_MATCH_TIMESTAMPS_SQL = """
    SELECT m.timestamp
    FROM messages_fts
    JOIN messages m ON m.id = messages_fts.rowid
    WHERE messages_fts MATCH :q AND m.timestamp IS NOT NULL

    UNION ALL

    SELECT m.timestamp
    FROM tool_uses_fts
    JOIN tool_uses t ON t.id = tool_uses_fts.rowid
    JOIN messages m ON m.id = t.message_id
    WHERE tool_uses_fts MATCH :q AND m.timestamp IS NOT NULL

    UNION ALL

    SELECT g.timestamp
    FROM global_history_fts
    JOIN global_history g ON g.id = global_history_fts.rowid
    WHERE global_history_fts MATCH :q AND g.timestamp IS NOT NULL
"""

_SESSION_SEARCH_SQL = """
    SELECT
        'message' as source,
        m.id,
        m.content,
        m.role,
        m.timestamp,
        null as tool_name,
        messages_fts.rank
    FROM messages_fts
    JOIN messages m ON m.id = messages_fts.rowid
    WHERE messages_fts MATCH :q AND m.session_id = :session

    UNION ALL

    SELECT
        'tool_use' as source,
        t.id,
        t.input_text as content,
        null as role,
        m.timestamp,
        t.tool_name,
        tool_uses_fts.rank
    FROM tool_uses_fts
    JOIN tool_uses t ON t.id = tool_uses_fts.rowid
    JOIN messages m ON m.id = t.message_id
    WHERE tool_uses_fts MATCH :q AND m.session_id = :session
"""

_SESSION_COUNT_SQL = """
    SELECT (
        (SELECT count(*) FROM messages_fts JOIN messages m ON m.id = messages_fts.rowid
         WHERE messages_fts MATCH :q AND m.session_id = :session) +
        (SELECT count(*) FROM tool_uses_fts JOIN tool_uses t ON t.id = tool_uses_fts.rowid
         JOIN messages m ON m.id = t.message_id
         WHERE tool_uses_fts MATCH :q AND m.session_id = :session)
    ) as total
"""


def search(
    db: Database,
    query: str,
    page: int = 1,
    show_all: bool = False,
    sort_by: str = "date",
    page_size: int = DEFAULT_PAGE_SIZE,
) -> SearchPage:
    """Search messages, tool inputs and prompt history.

    Args:
        db: The archive database.
        query: Free-text query; operator characters are stripped.
        page: 1-based page number (ignored when show_all is set).
        show_all: Return every match on a single page.
        sort_by: 'date' (newest first) or 'relevance' (FTS rank).
        page_size: Results per page.

    Returns:
        A SearchPage; empty when the query has no searchable terms.
    """
    fts_query = build_fts_query(query)
    if not fts_query:
        return SearchPage(query=query, page_size=page_size)

    with db.connection() as conn:
        total = conn.execute(_UNION_COUNT_SQL, {"q": fts_query}).fetchone()["total"]
        limit, offset, page, total_pages = _paginate(total, page, page_size, show_all)
        # Note: the order clause comes from the _SORT_ORDER_CLAUSES whitelist
        cursor = conn.execute(
            f"SELECT * FROM ({_UNION_SEARCH_SQL}) {_order_clause(sort_by)} LIMIT :limit OFFSET :offset",
            {"q": fts_query, "limit": limit, "offset": offset},
        )
        results = [dict(row) for row in cursor.fetchall()]

    return SearchPage(
        query=query,
        results=results,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
        show_all=show_all,
    )


def match_timestamps(db: Database, query: str) -> list[int]:
    """Timestamps of every match, unpaginated, for drawing an activity histogram."""
    fts_query = build_fts_query(query)
    if not fts_query:
        return []
    with db.connection() as conn:
        return [row[0] for row in conn.execute(_MATCH_TIMESTAMPS_SQL, {"q": fts_query}).fetchall()]


def search_session(
    db: Database,
    session_row_id: int,
    query: str,
    page: int = 1,
    show_all: bool = False,
    sort_by: str = "date",
    page_size: int = DEFAULT_PAGE_SIZE,
) -> SearchPage:
    """Search the messages and tool uses of one session.

    Raises:
        SessionNotFoundError: if the session does not exist.
    """
    db.get_session(session_row_id)

    fts_query = build_fts_query(query)
    if not fts_query:
        return SearchPage(query=query, page_size=page_size)

    params = {"q": fts_query, "session": session_row_id}
    with db.connection() as conn:
        total = conn.execute(_SESSION_COUNT_SQL, params).fetchone()["total"]
        limit, offset, page, total_pages = _paginate(total, page, page_size, show_all)
        cursor = conn.execute(
            f"SELECT * FROM ({_SESSION_SEARCH_SQL}) {_order_clause(sort_by)} LIMIT :limit OFFSET :offset",
            {**params, "limit": limit, "offset": offset},
        )
        results = [dict(row) for row in cursor.fetchall()]

    return SearchPage(
        query=query,
        results=results,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
        show_all=show_all,
    )


def recent_messages(db: Database, limit: int = DEFAULT_PAGE_SIZE) -> list[dict]:
    """The newest timestamped messages, shown when no query is given."""
    with db.connection() as conn:
        cursor = conn.execute(
            """
            SELECT
                'message' as source,
                m.id,
                m.content,
                m.role,
                p.name as project,
                s.id as session_row_id,
                s.summary as session_summary,
                m.timestamp,
                null as tool_name
            FROM messages m
            JOIN sessions s ON s.id = m.session_id
            JOIN projects p ON p.id = s.project_id
            WHERE m.timestamp IS NOT NULL
            ORDER BY m.timestamp DESC
            LIMIT ?
            """,
            (limit,),
        )
        return [dict(row) for row in cursor.fetchall()]


def activity_time_range(db: Database) -> tuple[int | None, int | None]:
    """Earliest and latest timestamps across messages and prompt history."""
    with db.connection() as conn:
        row = conn.execute(
            """
            SELECT MIN(ts) as min_ts, MAX(ts) as max_ts FROM (
                SELECT timestamp as ts FROM messages WHERE timestamp IS NOT NULL
                UNION ALL
                SELECT timestamp as ts FROM global_history WHERE timestamp IS NOT NULL
            )
            """
        ).fetchone()
        return row["min_ts"], row["max_ts"]
