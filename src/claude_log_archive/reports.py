"""Usage reports: activity over time, tool and model usage, estimated cost."""

from dataclasses import dataclass

from .database import Database


@dataclass(frozen=True)
class ModelPricing:
    """USD per million tokens."""

    input: float
    output: float
    cache_write: float
    cache_read: float


MODEL_PRICING: dict[str, ModelPricing] = {
    "claude-opus-4-6": ModelPricing(5, 25, 6.25, 0.5),
    "claude-opus-4-5-20251101": ModelPricing(5, 25, 6.25, 0.5),
    "claude-opus-4-1-20250414": ModelPricing(15, 75, 18.75, 1.5),
    "claude-opus-4-0-20250514": ModelPricing(15, 75, 18.75, 1.5),
    "claude-sonnet-4-6": ModelPricing(3, 15, 3.75, 0.3),
    "claude-sonnet-4-5-20241022": ModelPricing(3, 15, 3.75, 0.3),
    "claude-sonnet-4-0-20250514": ModelPricing(3, 15, 3.75, 0.3),
    "claude-sonnet-3-7-20250219": ModelPricing(3, 15, 3.75, 0.3),
    "claude-haiku-4-5-20251001": ModelPricing(1, 5, 1.25, 0.1),
    "claude-haiku-3-5-20241022": ModelPricing(0.8, 4, 1, 0.08),
}

DEFAULT_PRICING = ModelPricing(5, 25, 6.25, 0.5)

_DAY = "date(m.timestamp / 1000, 'unixepoch')"

_TOKEN_SUMS = """
    COALESCE(SUM(m.input_tokens), 0) as input_tokens,
    COALESCE(SUM(m.output_tokens), 0) as output_tokens,
    COALESCE(SUM(m.cache_creation_tokens), 0) as cache_creation_tokens,
    COALESCE(SUM(m.cache_read_tokens), 0) as cache_read_tokens
"""


def pricing_for(model: str | None) -> ModelPricing:
    return MODEL_PRICING.get(model or "", DEFAULT_PRICING)


def cost_by_category(model: str | None, row: dict) -> dict[str, float]:
    """Cost of a row of token sums, split by token category."""
    p = pricing_for(model)
    return {
        "input": row["input_tokens"] / 1_000_000 * p.input,
        "output": row["output_tokens"] / 1_000_000 * p.output,
        "cache_write": row["cache_creation_tokens"] / 1_000_000 * p.cache_write,
        "cache_read": row["cache_read_tokens"] / 1_000_000 * p.cache_read,
    }


def compute_cost(model: str | None, row: dict) -> float:
    return sum(cost_by_category(model, row).values())


def _cents(value: float) -> float:
    return round(value * 100) / 100


def _rows(conn, query: str) -> list[dict]:
    return [dict(row) for row in conn.execute(query).fetchall()]


def summary(db: Database) -> dict:
    """Headline counters for the whole archive."""
    with db.connection() as conn:
        row = conn.execute(
            """
            SELECT
                (SELECT count(*) FROM sessions WHERE is_subagent = 0) as total_sessions,
                (SELECT count(*) FROM messages
                 WHERE role = 'user' AND content IS NOT NULL AND length(content) > 0) as prompts_sent,
                (SELECT count(*) FROM messages WHERE role = 'assistant') as responses_received,
                (SELECT count(*) FROM tool_uses) as total_tool_uses,
                (SELECT COALESCE(SUM(input_tokens), 0) FROM messages WHERE role = 'assistant') as total_input_tokens,
                (SELECT COALESCE(SUM(output_tokens), 0) FROM messages WHERE role = 'assistant') as total_output_tokens,
                (SELECT count(DISTINCT project_id) FROM sessions) as total_projects
            """
        ).fetchone()
        return dict(row)


def activity(db: Database) -> dict:
    """Daily, hourly, per-tool, per-model and per-project usage series."""
    with db.connection() as conn:
        return {
            "daily_tokens": _rows(
                conn,
                f"""
                SELECT {_DAY} as day, {_TOKEN_SUMS}
                FROM messages m
                WHERE m.role = 'assistant' AND m.timestamp IS NOT NULL
                GROUP BY day ORDER BY day
                """,
            ),
            "daily_sessions": _rows(
                conn,
                """
                SELECT date(started_at / 1000, 'unixepoch') as day, count(*) as count
                FROM sessions
                WHERE is_subagent = 0 AND started_at IS NOT NULL
                GROUP BY day ORDER BY day
                """,
            ),
            "daily_prompts": _rows(
                conn,
                f"""
                SELECT {_DAY} as day, count(*) as count
                FROM messages m
                WHERE m.role = 'user' AND m.timestamp IS NOT NULL
                  AND m.content IS NOT NULL AND length(m.content) > 0
                GROUP BY day ORDER BY day
                """,
            ),
            "daily_responses": _rows(
                conn,
                f"""
                SELECT {_DAY} as day, count(*) as count
                FROM messages m
                WHERE m.role = 'assistant' AND m.timestamp IS NOT NULL
                GROUP BY day ORDER BY day
                """,
            ),
            "tool_usage": _rows(
                conn,
                "SELECT tool_name, count(*) as count FROM tool_uses GROUP BY tool_name ORDER BY count DESC",
            ),
            "model_usage": _rows(
                conn,
                """
                SELECT model, count(*) as count FROM messages
                WHERE role = 'assistant' AND model IS NOT NULL
                GROUP BY model ORDER BY count DESC
                """,
            ),
            "hourly_activity": _rows(
                conn,
                """
                SELECT strftime('%H', timestamp / 1000, 'unixepoch', 'localtime') as hour, count(*) as count
                FROM messages WHERE timestamp IS NOT NULL
                GROUP BY hour ORDER BY hour
                """,
            ),
            "top_projects": _rows(
                conn,
                """
                SELECT p.name,
                       COALESCE(SUM(m.input_tokens), 0) as input_tokens,
                       COALESCE(SUM(m.output_tokens), 0) as output_tokens
                FROM messages m
                JOIN sessions s ON s.id = m.session_id
                JOIN projects p ON p.id = s.project_id
                WHERE m.role = 'assistant'
                GROUP BY p.id
                ORDER BY (COALESCE(SUM(m.input_tokens), 0) + COALESCE(SUM(m.output_tokens), 0)) DESC
                LIMIT 10
                """,
            ),
        }


def costs(db: Database) -> dict:
    """Estimated spend by day, model, token category and project."""
    with db.connection() as conn:
        daily_raw = _rows(
            conn,
            f"""
            SELECT {_DAY} as day, m.model, {_TOKEN_SUMS}
            FROM messages m
            WHERE m.role = 'assistant' AND m.timestamp IS NOT NULL AND m.model IS NOT NULL
            GROUP BY day, m.model ORDER BY day
            """,
        )
        by_model_raw = _rows(
            conn,
            f"""
            SELECT m.model, {_TOKEN_SUMS}
            FROM messages m
            WHERE m.role = 'assistant' AND m.model IS NOT NULL
            GROUP BY m.model
            """,
        )
        by_project_raw = _rows(
            conn,
            f"""
            SELECT p.name, m.model, {_TOKEN_SUMS}
            FROM messages m
            JOIN sessions s ON s.id = m.session_id
            JOIN projects p ON p.id = s.project_id
            WHERE m.role = 'assistant' AND m.model IS NOT NULL
            GROUP BY p.id, m.model
            """,
        )

    daily: dict[str, float] = {}
    for row in daily_raw:
        daily[row["day"]] = daily.get(row["day"], 0.0) + compute_cost(row["model"], row)

    by_model = [
        {"model": row["model"], "cost": _cents(compute_cost(row["model"], row))} for row in by_model_raw
    ]
    by_model = sorted((r for r in by_model if r["cost"] > 0), key=lambda r: r["cost"], reverse=True)

    categories = {"input": 0.0, "output": 0.0, "cache_write": 0.0, "cache_read": 0.0}
    for row in by_model_raw:
        for category, value in cost_by_category(row["model"], row).items():
            categories[category] += value

    by_project: dict[str, float] = {}
    for row in by_project_raw:
        by_project[row["name"]] = by_project.get(row["name"], 0.0) + compute_cost(row["model"], row)
    top_projects = sorted(by_project.items(), key=lambda item: item[1], reverse=True)[:10]

    return {
        "daily_cost": [{"day": day, "cost": _cents(cost)} for day, cost in sorted(daily.items())],
        "cost_by_model": by_model,
        "total_cost": _cents(sum(r["cost"] for r in by_model)),
        "cost_by_category": {k: _cents(v) for k, v in categories.items()},
        "top_projects_by_cost": [{"name": name, "cost": _cents(cost)} for name, cost in top_projects],
    }


def build_report(db: Database) -> dict:
    """Everything the reports view shows, in one dictionary."""
    return {"summary": summary(db), **activity(db), **costs(db)}
