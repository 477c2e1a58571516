"""Scanner module to find Claude CLI log files on disk.

Layout under the Claude directory (``~/.claude`` by default)::

    history.jsonl                          global prompt history
    projects/<encoded-path>/<session>.jsonl
    projects/<encoded-path>/<session>/subagents/agent-<id>.jsonl
    tasks/<session>/<n>.json
    plans/<slug>.md

Project directories are named by replacing every character outside
``[A-Za-z0-9_-]`` in the working directory path with a dash. That encoding is
lossy, so real paths are recovered from the history log where possible.
"""

import logging
import re
from collections.abc import Iterator
from pathlib import Path

from .records import HistoryRecord, parse_history_line

logger = logging.getLogger(__name__)

SESSION_SUFFIX = ".jsonl"
TASK_SUFFIX = ".json"
PLAN_SUFFIX = ".md"
SUBAGENT_DIR = "subagents"
SUBAGENT_PREFIX = "agent-"

_PLAN_TITLE = re.compile(r"^#\s+(.+)$", re.MULTILINE)


def safe_listdir(directory: Path) -> list[Path]:
    """List a directory's entries in name order; unreadable directories list as empty."""
    try:
        return sorted(directory.iterdir())
    except OSError:
        return []


def _is_dir(path: Path) -> bool:
    try:
        return path.is_dir()
    except OSError:
        return False


def encode_project_path(path: str) -> str:
    """Encode a working directory path the way the CLI names its project directories."""
    return re.sub(r"[^a-zA-Z0-9_-]", "-", path)


def resolve_project_path(dir_name: str, path_map: dict[str, str]) -> str:
    """Recover the project path for a project directory name.

    The history-derived map is authoritative. Otherwise every dash is read back
    as a path separator, which is wrong for paths that contained dashes.
    """
    if dir_name in path_map:
        return path_map[dir_name]
    return dir_name.replace("-", "/")


def project_name(path: str) -> str:
    """Last segment of a project path."""
    return re.split(r"[\\/]", path.rstrip("\\/"))[-1]


def read_lines(path: Path) -> list[str]:
    """Read the non-empty lines of a text file. Raises OSError if unreadable."""
    with path.open(encoding="utf-8", errors="replace") as f:
        return [line for line in f.read().split("\n") if line]


def load_history(history_file: Path) -> tuple[list[HistoryRecord], dict[str, str]]:
    """Read the global history log.

    Returns:
        The decodable history records, and a map from encoded project directory
        name to the original project path (first occurrence wins).
    """
    records: list[HistoryRecord] = []
    path_map: dict[str, str] = {}

    try:
        lines = read_lines(history_file)
    except FileNotFoundError:
        return records, path_map
    except OSError as exc:
        logger.warning("Cannot read history file %s: %s", history_file, exc)
        return records, path_map

    skipped = 0
    for line in lines:
        record = parse_history_line(line)
        if record is None:
            skipped += 1
            continue
        records.append(record)
        if record.project:
            path_map.setdefault(encode_project_path(record.project), record.project)

    if skipped:
        logger.debug("Skipped %d malformed history lines in %s", skipped, history_file)
    return records, path_map


def iter_project_dirs(projects_dir: Path) -> Iterator[Path]:
    """Yield each project directory, skipping stray files."""
    for entry in safe_listdir(projects_dir):
        if _is_dir(entry):
            yield entry


def iter_session_files(project_dir: Path) -> Iterator[tuple[Path, str]]:
    """Yield (path, session uuid) for each top-level transcript in a project directory."""
    for entry in safe_listdir(project_dir):
        if entry.name.endswith(SESSION_SUFFIX):
            yield entry, entry.name[: -len(SESSION_SUFFIX)]


def iter_subagent_files(project_dir: Path, session_uuid: str) -> Iterator[tuple[Path, str]]:
    """Yield (path, agent id) for each sub-agent transcript spawned by a session."""
    subagent_dir = project_dir / session_uuid / SUBAGENT_DIR
    for entry in safe_listdir(subagent_dir):
        if not entry.name.endswith(SESSION_SUFFIX):
            continue
        agent_id = entry.name[: -len(SESSION_SUFFIX)]
        if agent_id.startswith(SUBAGENT_PREFIX):
            agent_id = agent_id[len(SUBAGENT_PREFIX) :]
        yield entry, agent_id


def iter_task_files(tasks_dir: Path) -> Iterator[tuple[Path, str]]:
    """Yield (path, source session id) for every task file."""
    for session_dir in safe_listdir(tasks_dir):
        if not _is_dir(session_dir):
            continue
        for entry in safe_listdir(session_dir):
            if entry.name.endswith(TASK_SUFFIX):
                yield entry, session_dir.name


def iter_plan_files(plans_dir: Path) -> Iterator[tuple[Path, str]]:
    """Yield (path, slug) for every plan document."""
    for entry in safe_listdir(plans_dir):
        if entry.name.endswith(PLAN_SUFFIX):
            yield entry, entry.name[: -len(PLAN_SUFFIX)]


def extract_plan_title(content: str, slug: str) -> str:
    """Title from the first top-level markdown heading, else the slug."""
    match = _PLAN_TITLE.search(content)
    return match.group(1).strip() if match else slug
