"""Flask web application serving the Claude log archive as JSON."""

import logging

import markdown
from flask import Flask, jsonify, request

from .config import Config, load_config
from .database import Database, NotFoundError
from .etl import get_last_sync_at, get_last_sync_stats, sync, sync_if_stale
from .reports import build_report
from .search import activity_time_range, match_timestamps, recent_messages, search, search_session

logger = logging.getLogger(__name__)

# Create a reusable markdown converter with extensions
_md_converter = markdown.Markdown(
    extensions=[
        "tables",  # Support markdown tables
        "fenced_code",  # Support ```code blocks```
        "sane_lists",  # Better list handling
    ],
)


def _markdown_to_html(text: str) -> str:
    """Convert markdown text to HTML using the markdown library."""
    if not text:
        return ""
    _md_converter.reset()
    return _md_converter.convert(text.replace("\r\n", "\n"))


def _int_arg(name: str, default: int) -> int:
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


def _flag_arg(name: str) -> bool:
    return request.args.get(name, "false").lower() in ("1", "true", "yes")


def _sort_arg() -> str:
    sort_by = request.args.get("sort", "date")
    return sort_by if sort_by in ("date", "relevance") else "date"


def _page_dict(result) -> dict:
    return {
        "query": result.query,
        "results": result.results,
        "total": result.total,
        "page": result.page,
        "page_size": result.page_size,
        "total_pages": result.total_pages,
        "show_all": result.show_all,
    }


def _sync_status(db: Database) -> dict:
    last_sync = get_last_sync_at(db)
    return {
        "last_sync_at": last_sync.isoformat() if last_sync else None,
        "last_sync_stats": get_last_sync_stats(db),
    }


def create_app(config: Config | None = None, auto_sync: bool = False) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Archive configuration; read from the environment when omitted.
        auto_sync: Sync once on startup if the archive is stale.

    Returns:
        Configured Flask application.
    """
    config = config or load_config()
    app = Flask(__name__)
    app.config["ARCHIVE"] = config

    if auto_sync:
        db = Database(config.db_path)
        try:
            sync_if_stale(db, config)
        except Exception:
            # Serve the previous archive; the next staleness check retries.
            logger.exception("Startup sync failed")

    def _db() -> Database:
        return Database(app.config["ARCHIVE"].db_path)

    @app.errorhandler(NotFoundError)
    def not_found(error: NotFoundError):
        return jsonify({"error": str(error)}), 404

    @app.route("/")
    def index():
        """Search everything, or list the newest messages when no query is given."""
        db = _db()
        query = request.args.get("q", "").strip()
        min_ts, max_ts = activity_time_range(db)
        payload = {
            "time_range": {"min": min_ts, "max": max_ts},
            **_sync_status(db),
        }

        if query:
            result = search(
                db,
                query,
                page=_int_arg("page", 1),
                show_all=_flag_arg("all"),
                sort_by=_sort_arg(),
                page_size=app.config["ARCHIVE"].page_size,
            )
            payload.update(_page_dict(result))
            payload["match_timestamps"] = match_timestamps(db, query)
        else:
            payload["query"] = ""
            payload["results"] = recent_messages(db, app.config["ARCHIVE"].page_size)
            payload["match_timestamps"] = []
        return jsonify(payload)

    @app.route("/sync", methods=["POST"])
    def run_sync():
        """Rebuild the archive now, regardless of staleness."""
        db = _db()
        stats = sync(db, app.config["ARCHIVE"])
        return jsonify({"stats": stats.to_dict(), **_sync_status(db)})

    @app.route("/projects")
    def projects():
        return jsonify({"projects": _db().list_projects()})

    @app.route("/projects/<int:project_id>")
    def project_detail(project_id: int):
        db = _db()
        project = db.get_project(project_id)
        return jsonify({"project": project, "sessions": db.list_project_sessions(project_id)})

    @app.route("/sessions")
    def sessions():
        db = _db()
        page_size = app.config["ARCHIVE"].page_size
        page = max(1, _int_arg("page", 1))
        total = db.count_sessions()
        return jsonify(
            {
                "sessions": db.list_sessions(limit=page_size, offset=(page - 1) * page_size),
                "total": total,
                "page": page,
                "total_pages": -(-total // page_size),
            }
        )

    @app.route("/sessions/<int:session_row_id>")
    def session_detail(session_row_id: int):
        """Show a session's messages in order, or search within it when q is given."""
        db = _db()
        session = db.get_session(session_row_id)
        payload = {
            "session": session,
            "subagents": db.list_subagent_sessions(session["session_id"]),
            "tasks": db.list_tasks(source_session_id=session["session_id"]),
        }

        query = request.args.get("q", "").strip()
        if query:
            result = search_session(
                db,
                session_row_id,
                query,
                page=_int_arg("page", 1),
                show_all=_flag_arg("all"),
                sort_by=_sort_arg(),
                page_size=app.config["ARCHIVE"].page_size,
            )
            payload.update(_page_dict(result))
        else:
            messages = db.get_session_messages(session_row_id)
            for message in messages:
                message["tool_uses"] = db.get_tool_uses(message["id"])
            payload["messages"] = messages
        return jsonify(payload)

    @app.route("/history")
    def history():
        page_size = app.config["ARCHIVE"].page_size
        page = max(1, _int_arg("page", 1))
        return jsonify(
            {
                "history": _db().list_history(limit=page_size, offset=(page - 1) * page_size),
                "page": page,
            }
        )

    @app.route("/reports")
    def reports():
        return jsonify(build_report(_db()))

    @app.route("/tasks")
    def tasks():
        status = request.args.get("status") or None
        return jsonify({"tasks": _db().list_tasks(status=status)})

    @app.route("/plans")
    def plans():
        return jsonify({"plans": _db().list_plans()})

    @app.route("/plans/<slug>")
    def plan_detail(slug: str):
        plan = _db().get_plan(slug)
        plan["html"] = _markdown_to_html(plan["content"])
        return jsonify({"plan": plan})

    return app


def run_server(
    host: str = "127.0.0.1",
    port: int = 5000,
    config: Config | None = None,
    auto_sync: bool = True,
    debug: bool = False,
) -> None:
    """Run the Flask development server.

    Args:
        host: Host to bind to.
        port: Port to bind to.
        config: Archive configuration; read from the environment when omitted.
        auto_sync: Sync on startup when the archive is stale.
        debug: Enable debug mode.
    """
    app = create_app(config, auto_sync=auto_sync)
    app.run(host=host, port=port, debug=debug)
