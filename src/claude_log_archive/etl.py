"""Full-rebuild sync of Claude CLI logs into the archive database.

Every sync deletes all derived rows and reloads them from the files on disk
inside one transaction: readers see either the previous archive or the new
one, never a mix. Only after the transaction commits is the completion time
recorded in ``meta``, so a failed sync is retried on the next staleness check.
"""

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import orjson

from .config import DEFAULT_SYNC_MAX_AGE, Config
from .database import Database
from .reconstructor import reconstruct_session
from .records import parse_session_lines, parse_task
from .scanner import (
    extract_plan_title,
    iter_plan_files,
    iter_project_dirs,
    iter_session_files,
    iter_subagent_files,
    iter_task_files,
    load_history,
    project_name,
    read_lines,
    resolve_project_path,
)
from .writer import StoreWriter

logger = logging.getLogger(__name__)

LAST_SYNC_AT = "lastSyncAt"
LAST_SYNC_STATS = "lastSyncStats"


@dataclass
class SyncStats:
    """Row counts produced by one sync."""

    projects: int = 0
    sessions: int = 0
    messages: int = 0
    tool_uses: int = 0
    global_history: int = 0
    tasks: int = 0
    plans: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def _process_session_file(
    writer: StoreWriter,
    path: Path,
    project_id: int,
    stats: SyncStats,
    is_subagent: bool = False,
    parent_session_id: str | None = None,
    agent_id: str | None = None,
) -> None:
    try:
        lines = read_lines(path)
    except OSError as exc:
        logger.warning("Skipping unreadable session file %s: %s", path, exc)
        return

    session = reconstruct_session(
        parse_session_lines(lines),
        is_subagent=is_subagent,
        parent_session_id=parent_session_id,
        agent_id=agent_id,
    )
    if session is None:
        logger.debug("Skipping %s: no session id found", path)
        return

    created, messages, tool_uses = writer.write_session(session, project_id)
    stats.sessions += int(created)
    stats.messages += messages
    stats.tool_uses += tool_uses


def _load_projects(
    writer: StoreWriter,
    projects_dir: Path,
    path_map: dict[str, str],
    stats: SyncStats,
) -> list[tuple[Path, int]]:
    projects = []
    for project_dir in iter_project_dirs(projects_dir):
        path = resolve_project_path(project_dir.name, path_map)
        project_id, created = writer.insert_project(path, project_name(path))
        stats.projects += int(created)
        projects.append((project_dir, project_id))
    return projects


def _load_sessions(writer: StoreWriter, project_dir: Path, project_id: int, stats: SyncStats) -> None:
    for session_file, session_uuid in iter_session_files(project_dir):
        _process_session_file(writer, session_file, project_id, stats)
        for subagent_file, agent_id in iter_subagent_files(project_dir, session_uuid):
            _process_session_file(
                writer,
                subagent_file,
                project_id,
                stats,
                is_subagent=True,
                parent_session_id=session_uuid,
                agent_id=agent_id,
            )


def _load_tasks(writer: StoreWriter, tasks_dir: Path, stats: SyncStats) -> None:
    for task_file, source_session_id in iter_task_files(tasks_dir):
        try:
            raw = task_file.read_bytes()
        except OSError as exc:
            logger.warning("Skipping unreadable task file %s: %s", task_file, exc)
            continue
        task = parse_task(raw)
        if task is None:
            logger.warning("Skipping malformed task file %s", task_file)
            continue
        writer.insert_task(task, source_session_id)
        stats.tasks += 1


def _load_plans(writer: StoreWriter, plans_dir: Path, stats: SyncStats) -> None:
    for plan_file, slug in iter_plan_files(plans_dir):
        try:
            content = plan_file.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Skipping unreadable plan %s: %s", plan_file, exc)
            continue
        if writer.insert_plan(slug, extract_plan_title(content, slug), content):
            stats.plans += 1


def sync(db: Database, config: Config) -> SyncStats:
    """Rebuild the archive from the log files under ``config.claude_dir``.

    Raises:
        Any error raised while the rebuild transaction is open; the transaction
        is rolled back and the last-sync time is left untouched.
    """
    start = time.perf_counter()
    stats = SyncStats()
    logger.info("Syncing Claude logs from %s", config.claude_dir)

    history, path_map = load_history(config.history_file)

    with db.rebuild() as writer:
        writer.clear()
        for project_dir, project_id in _load_projects(writer, config.projects_dir, path_map, stats):
            _load_sessions(writer, project_dir, project_id, stats)
        stats.global_history = writer.insert_history(history)
        _load_tasks(writer, config.tasks_dir, stats)
        _load_plans(writer, config.plans_dir, stats)

    stats.duration_ms = round((time.perf_counter() - start) * 1000)
    record_sync(db, stats)

    logger.info(
        "Synced in %dms: %d projects, %d sessions, %d messages, %d tool uses",
        stats.duration_ms,
        stats.projects,
        stats.sessions,
        stats.messages,
        stats.tool_uses,
    )
    return stats


def record_sync(db: Database, stats: SyncStats, at: datetime | None = None) -> None:
    """Store the completion time and counters of a sync."""
    at = at or datetime.now(timezone.utc)
    db.set_meta(LAST_SYNC_AT, at.isoformat())
    db.set_meta(LAST_SYNC_STATS, orjson.dumps(stats.to_dict()).decode("utf-8"))


def get_last_sync_at(db: Database) -> datetime | None:
    """When the last successful sync completed, or None if never."""
    value = db.get_meta(LAST_SYNC_AT)
    if not value:
        return None
    try:
        at = datetime.fromisoformat(value)
    except ValueError:
        return None
    return at if at.tzinfo else at.replace(tzinfo=timezone.utc)


def get_last_sync_stats(db: Database) -> dict | None:
    value = db.get_meta(LAST_SYNC_STATS)
    if not value:
        return None
    try:
        return orjson.loads(value)
    except orjson.JSONDecodeError:
        return None


def is_sync_stale(
    db: Database,
    max_age: timedelta = timedelta(seconds=DEFAULT_SYNC_MAX_AGE),
    now: datetime | None = None,
) -> bool:
    """True when no sync has completed, or the last one is older than max_age."""
    last_sync = get_last_sync_at(db)
    if last_sync is None:
        return True
    now = now or datetime.now(timezone.utc)
    return now - last_sync > max_age


def sync_if_stale(db: Database, config: Config) -> SyncStats | None:
    """Run a sync only when the archive is stale; returns its stats, or None if fresh."""
    if not is_sync_stale(db, timedelta(seconds=config.sync_max_age)):
        logger.info("Data is fresh, skipping sync")
        return None
    logger.info("Data is stale, syncing")
    return sync(db, config)
