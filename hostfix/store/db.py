"""Connection handling and schema for the record store.

HOSTFIX_DATABASE_URL selects PostgreSQL (psycopg2, pooled and shared with
the step threads); left empty, rows live in a local SQLite file opened
per call. Statements are plain SQL written with %s placeholders.
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DATABASE_URL = os.environ.get("HOSTFIX_DATABASE_URL", "")
SQLITE_PATH = Path(os.environ.get("HOSTFIX_SQLITE_PATH", str(Path(__file__).parent / "hostfix.db")))
PG_POOL_MAX = int(os.environ.get("HOSTFIX_DB_POOL_MAX", "10"))

_initialized = False
_pg_pool = None


def _is_postgres() -> bool:
    return DATABASE_URL.startswith("postgres")


def _pool():
    global _pg_pool
    if _pg_pool is None:
        import psycopg2.pool
        _pg_pool = psycopg2.pool.ThreadedConnectionPool(1, PG_POOL_MAX, dsn=DATABASE_URL)
        logger.info(f"Postgres pool ready (max {PG_POOL_MAX} connections)")
    return _pg_pool


@contextmanager
def get_connection():
    if _is_postgres():
        pool = _pool()
        conn = pool.getconn()
        try:
            yield conn
        finally:
            pool.putconn(conn)
        return

    conn = sqlite3.connect(str(SQLITE_PATH), check_same_thread=False, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    try:
        yield conn
    finally:
        conn.close()


def _json_dumps(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, default=str)


def _json_loads(value: Any) -> Any:
    if value is None or value == "":
        return None
    # psycopg2 hands JSONB columns back already decoded
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


def integrity_errors() -> tuple:
    """Exception types the active backend raises on a unique or foreign-key violation."""
    if _is_postgres():
        import psycopg2
        return (psycopg2.IntegrityError,)
    return (sqlite3.IntegrityError,)


def _as_dicts(cursor, rows) -> list[dict]:
    if _is_postgres():
        columns = [desc[0] for desc in cursor.description]
        return [dict(zip(columns, row)) for row in rows]
    return [dict(row) for row in rows]


def execute(sql: str, params: tuple = (), fetch: str = "none") -> Any:
    """Run one statement and commit.

    fetch="one" returns a row dict (or None), "all" a list of them,
    "rowcount" the number of rows touched and "none" nothing.
    """
    if not _is_postgres():
        sql = sql.replace("%s", "?")

    with get_connection() as conn:
        cursor = conn.cursor()
        try:
            cursor.execute(sql, params)
            if fetch == "one":
                row = cursor.fetchone()
                result = _as_dicts(cursor, [row])[0] if row is not None else None
            elif fetch == "all":
                result = _as_dicts(cursor, cursor.fetchall())
            elif fetch == "rowcount":
                result = cursor.rowcount
            else:
                result = None
            conn.commit()
        except Exception:
            conn.rollback()
            raise
    return result


def init_db(force: bool = False):
    """Create the schema once per process; force=True re-runs the (idempotent) DDL."""
    global _initialized
    if _initialized and not force:
        return

    if _is_postgres():
        _init_postgres()
    else:
        _init_sqlite()

    _initialized = True
    backend = "PostgreSQL" if _is_postgres() else f"SQLite ({SQLITE_PATH})"
    logger.info(f"Record store initialized: {backend}")


# Column types differ per backend; the table layout does not.
_DDL_TEMPLATE = """
CREATE TABLE IF NOT EXISTS users (
    id {id} PRIMARY KEY,
    external_auth_id {text} NOT NULL UNIQUE,
    email {text} NOT NULL UNIQUE,
    full_name {text},
    stripe_customer_id {text},
    fix_count INTEGER NOT NULL DEFAULT 0,
    created_at {ts},
    updated_at {ts}
);

CREATE TABLE IF NOT EXISTS projects (
    id {id} PRIMARY KEY,
    user_id {id} NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name {text} NOT NULL,
    status {text} NOT NULL DEFAULT 'onboarding',
    github_repo_url {text},
    github_repo_full_name {text},
    default_branch {text},
    supabase_url {text},
    supabase_anon_key {text},
    vercel_project_id {text},
    vercel_deployment_url {text},
    subdomain {text},
    custom_domain {text},
    created_at {ts},
    updated_at {ts}
);

CREATE INDEX IF NOT EXISTS idx_projects_user ON projects(user_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_projects_live_subdomain
    ON projects(subdomain) WHERE status <> 'deleted';

CREATE TABLE IF NOT EXISTS fix_requests (
    id {id} PRIMARY KEY,
    project_id {id} NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    user_id {id} NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    description {text} NOT NULL,
    status {text} NOT NULL DEFAULT 'submitted',
    complexity {text},
    price_in_cents INTEGER,
    stripe_payment_intent_id {text},
    paid_at {ts},
    triage_result {json},
    ai_fix {json},
    staging_branch {text},
    preview_url {text},
    error_log {text},
    created_at {ts},
    updated_at {ts}
);

CREATE INDEX IF NOT EXISTS idx_fix_requests_project ON fix_requests(project_id);
CREATE INDEX IF NOT EXISTS idx_fix_requests_user ON fix_requests(user_id);
CREATE INDEX IF NOT EXISTS idx_fix_requests_status ON fix_requests(status);

CREATE TABLE IF NOT EXISTS deployments (
    id {id} PRIMARY KEY,
    project_id {id} NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    vercel_deployment_id {text},
    commit_hash {text},
    commit_message {text},
    branch {text} NOT NULL DEFAULT 'main',
    status {text} NOT NULL DEFAULT 'queued',
    url {text},
    error_message {text},
    created_at {ts},
    updated_at {ts}
);

CREATE INDEX IF NOT EXISTS idx_deployments_project ON deployments(project_id);
CREATE INDEX IF NOT EXISTS idx_deployments_remote ON deployments(vercel_deployment_id);

CREATE TABLE IF NOT EXISTS invoices (
    id {id} PRIMARY KEY,
    user_id {id} NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    project_id {id} REFERENCES projects(id) ON DELETE SET NULL,
    fix_request_id {id} REFERENCES fix_requests(id) ON DELETE SET NULL,
    stripe_invoice_id {text} UNIQUE,
    stripe_payment_intent_id {text} UNIQUE,
    type {text} NOT NULL,
    description {text},
    amount_in_cents INTEGER NOT NULL,
    status {text} NOT NULL,
    created_at {ts}
);

CREATE INDEX IF NOT EXISTS idx_invoices_user ON invoices(user_id);

CREATE TABLE IF NOT EXISTS subscriptions (
    id {id} PRIMARY KEY,
    user_id {id} NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    project_id {id} NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    stripe_subscription_id {text} NOT NULL UNIQUE,
    status {text} NOT NULL,
    current_period_start {ts},
    current_period_end {ts},
    created_at {ts},
    updated_at {ts}
);

CREATE INDEX IF NOT EXISTS idx_subscriptions_user ON subscriptions(user_id);

CREATE TABLE IF NOT EXISTS step_runs (
    id {id} PRIMARY KEY,
    kind {text} NOT NULL,
    entity_id {id} NOT NULL,
    status {text} NOT NULL DEFAULT 'pending',
    error {text},
    attempts INTEGER NOT NULL DEFAULT 0,
    created_at {ts},
    started_at {ts},
    completed_at {ts}
);

CREATE INDEX IF NOT EXISTS idx_step_runs_status ON step_runs(status);
CREATE INDEX IF NOT EXISTS idx_step_runs_entity ON step_runs(entity_id, kind);
"""


def _init_postgres():
    ddl = _DDL_TEMPLATE.format(id="VARCHAR(36)", text="TEXT", ts="TIMESTAMP", json="JSONB")
    with get_connection() as conn:
        cursor = conn.cursor()
        cursor.execute(ddl)
        conn.commit()


def _init_sqlite():
    ddl = _DDL_TEMPLATE.format(id="TEXT", text="TEXT", ts="TEXT", json="TEXT")
    with get_connection() as conn:
        conn.executescript(ddl)
        conn.commit()
