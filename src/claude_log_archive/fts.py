"""FTS5 shadow indexes for the searchable tables.

Each index is an external-content FTS5 table keyed by the base table's rowid.
Three triggers per table mirror every insert, update and delete into the index
inside the same write, so the bulk delete/reinsert of a sync keeps them exact.
"""

import sqlite3
from dataclasses import dataclass


@dataclass(frozen=True)
class SearchIndex:
    """An FTS5 index over some text columns of a base table."""

    table: str
    columns: tuple[str, ...]
    unindexed: tuple[str, ...] = ()  # stored for filtering, not ranked

    @property
    def name(self) -> str:
        return f"{self.table}_fts"

    @property
    def all_columns(self) -> tuple[str, ...]:
        return self.columns + self.unindexed


SEARCH_INDEXES: tuple[SearchIndex, ...] = (
    SearchIndex("messages", ("content",)),
    SearchIndex("tool_uses", ("input_text",), unindexed=("tool_name",)),
    SearchIndex("global_history", ("display",)),
    SearchIndex("tasks", ("subject", "description")),
    SearchIndex("plans", ("title", "content")),
)


def _index_script(index: SearchIndex) -> str:
    for identifier in (index.table, *index.all_columns):
        if not all(c.isalnum() or c == "_" for c in identifier):
            raise ValueError(f"Invalid identifier: {identifier}")

    fts = index.name
    declared = ",\n        ".join(
        [*index.columns, *(f"{col} UNINDEXED" for col in index.unindexed)]
    )
    cols = ", ".join(index.all_columns)
    new_vals = ", ".join(f"new.{col}" for col in index.all_columns)
    old_vals = ", ".join(f"old.{col}" for col in index.all_columns)

    return f"""
    CREATE VIRTUAL TABLE IF NOT EXISTS {fts} USING fts5(
        {declared},
        content='{index.table}',
        content_rowid='id'
    );

    CREATE TRIGGER IF NOT EXISTS {fts}_i AFTER INSERT ON {index.table} BEGIN
        INSERT INTO {fts}(rowid, {cols}) VALUES (new.id, {new_vals});
    END;

    CREATE TRIGGER IF NOT EXISTS {fts}_d AFTER DELETE ON {index.table} BEGIN
        INSERT INTO {fts}({fts}, rowid, {cols}) VALUES ('delete', old.id, {old_vals});
    END;

    CREATE TRIGGER IF NOT EXISTS {fts}_u AFTER UPDATE ON {index.table} BEGIN
        INSERT INTO {fts}({fts}, rowid, {cols}) VALUES ('delete', old.id, {old_vals});
        INSERT INTO {fts}(rowid, {cols}) VALUES (new.id, {new_vals});
    END;
    """


def initialize_search_indexes(conn: sqlite3.Connection) -> None:
    """Create the FTS tables and their sync triggers. Safe to call repeatedly."""
    conn.executescript("".join(_index_script(index) for index in SEARCH_INDEXES))


def rebuild_search_indexes(conn: sqlite3.Connection) -> None:
    """Repopulate every FTS table from its base table.

    Only needed for databases whose rows predate the triggers.
    """
    for index in SEARCH_INDEXES:
        conn.execute(f"INSERT INTO {index.name}({index.name}) VALUES ('rebuild')")
