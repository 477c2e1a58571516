"""Claude Log Archive - A searchable SQLite archive of Claude CLI conversation logs.

This package provides:
- Records / Reconstructor: decode transcript lines and rebuild logical turns
- Database: SQLite storage with FTS5 full-text search kept in sync by triggers
- ETL: full-rebuild sync of projects, sessions, history, tasks and plans
- Search and Reports: query surface consumed by the CLI and web app
"""

__version__ = "0.1.0"

from .config import Config, load_config
from .database import (
    Database,
    NotFoundError,
    PlanNotFoundError,
    ProjectNotFoundError,
    SessionNotFoundError,
)
from .etl import SyncStats, get_last_sync_at, is_sync_stale, sync, sync_if_stale
from .fts import initialize_search_indexes
from .reconstructor import Message, Session, ToolUse, flatten_tool_input, reconstruct_session
from .search import SearchPage, build_fts_query, match_timestamps, search, search_session

__all__ = [
    "Config",
    # Database
    "Database",
    # Reconstructor
    "Message",
    "NotFoundError",
    "PlanNotFoundError",
    "ProjectNotFoundError",
    # Search
    "SearchPage",
    "Session",
    "SessionNotFoundError",
    # ETL
    "SyncStats",
    "ToolUse",
    "__version__",
    "build_fts_query",
    "flatten_tool_input",
    "get_last_sync_at",
    "initialize_search_indexes",
    "is_sync_stale",
    "load_config",
    "match_timestamps",
    "reconstruct_session",
    "search",
    "search_session",
    "sync",
    "sync_if_stale",
]
