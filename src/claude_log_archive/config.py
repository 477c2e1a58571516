"""Configuration for the Claude log archive.

Values come from environment variables with sensible defaults; CLI options
override them per invocation.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_DB_PATH = "claude_logs.db"
DEFAULT_SYNC_MAX_AGE = 60 * 60  # seconds
DEFAULT_PAGE_SIZE = 50


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def default_claude_dir() -> Path:
    """Return the directory the Claude CLI writes its logs to."""
    return Path.home() / ".claude"


@dataclass
class Config:
    """Locations of the source logs and the archive database."""

    claude_dir: Path = field(default_factory=default_claude_dir)
    db_path: Path = Path(DEFAULT_DB_PATH)
    sync_max_age: int = DEFAULT_SYNC_MAX_AGE
    page_size: int = DEFAULT_PAGE_SIZE

    @property
    def history_file(self) -> Path:
        return self.claude_dir / "history.jsonl"

    @property
    def projects_dir(self) -> Path:
        return self.claude_dir / "projects"

    @property
    def tasks_dir(self) -> Path:
        return self.claude_dir / "tasks"

    @property
    def plans_dir(self) -> Path:
        return self.claude_dir / "plans"


def load_config(
    claude_dir: str | Path | None = None,
    db_path: str | Path | None = None,
) -> Config:
    """Build a Config from the environment, with explicit arguments taking precedence.

    Recognized variables:
    - CLAUDE_LOG_ARCHIVE_DIR: source directory (default ~/.claude)
    - CLAUDE_LOG_ARCHIVE_DB: SQLite database path
    - CLAUDE_LOG_ARCHIVE_MAX_AGE: seconds before the archive is considered stale
    - CLAUDE_LOG_ARCHIVE_PAGE_SIZE: rows per page on listing and search views
    """
    if claude_dir is None:
        env_dir = os.getenv("CLAUDE_LOG_ARCHIVE_DIR")
        claude_dir = Path(env_dir).expanduser() if env_dir else default_claude_dir()
    if db_path is None:
        db_path = os.getenv("CLAUDE_LOG_ARCHIVE_DB", DEFAULT_DB_PATH)

    page_size = _env_int("CLAUDE_LOG_ARCHIVE_PAGE_SIZE", DEFAULT_PAGE_SIZE)
    return Config(
        claude_dir=Path(claude_dir),
        db_path=Path(db_path),
        sync_max_age=_env_int("CLAUDE_LOG_ARCHIVE_MAX_AGE", DEFAULT_SYNC_MAX_AGE),
        page_size=page_size if page_size > 0 else DEFAULT_PAGE_SIZE,
    )
