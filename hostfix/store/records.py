"""Record store contract used by every orchestrator step.

Four shapes plus a compare-and-swap claim:
    get(table, id)                  -> row dict or None
    insert(table, fields)           -> row dict
    update(table, id, fields)       -> row dict or None
    list_by(table, **predicate)     -> list of row dicts
    claim(table, id, expected, new) -> row dict or None (lost the claim)
    update_if(table, id, fields, **predicate) -> same, any condition

Each call is a single statement against a single row set. There is no
cross-entity transaction; steps always re-read the latest row instead of
holding on to a copy.
"""

import logging
import re
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from hostfix.store.db import _json_dumps, _json_loads, execute

logger = logging.getLogger(__name__)

TABLE_COLUMNS: dict[str, frozenset[str]] = {
    "users": frozenset({
        "id", "external_auth_id", "email", "full_name", "stripe_customer_id",
        "fix_count", "created_at", "updated_at",
    }),
    "projects": frozenset({
        "id", "user_id", "name", "status", "github_repo_url", "github_repo_full_name",
        "default_branch", "supabase_url", "supabase_anon_key", "vercel_project_id",
        "vercel_deployment_url", "subdomain", "custom_domain", "created_at", "updated_at",
    }),
    "fix_requests": frozenset({
        "id", "project_id", "user_id", "description", "status", "complexity",
        "price_in_cents", "stripe_payment_intent_id", "paid_at", "triage_result",
        "ai_fix", "staging_branch", "preview_url", "error_log", "created_at", "updated_at",
    }),
    "deployments": frozenset({
        "id", "project_id", "vercel_deployment_id", "commit_hash", "commit_message",
        "branch", "status", "url", "error_message", "created_at", "updated_at",
    }),
    "invoices": frozenset({
        "id", "user_id", "project_id", "fix_request_id", "stripe_invoice_id",
        "stripe_payment_intent_id", "type", "description", "amount_in_cents",
        "status", "created_at",
    }),
    "subscriptions": frozenset({
        "id", "user_id", "project_id", "stripe_subscription_id", "status",
        "current_period_start", "current_period_end", "created_at", "updated_at",
    }),
    "step_runs": frozenset({
        "id", "kind", "entity_id", "status", "error", "attempts",
        "created_at", "started_at", "completed_at",
    }),
}

JSON_COLUMNS: dict[str, frozenset[str]] = {
    "fix_requests": frozenset({"triage_result", "ai_fix"}),
}

_ORDER_RE = re.compile(r"^([a-z_]+)(?:\s+(ASC|DESC))?$", re.IGNORECASE)


def now_iso() -> str:
    return datetime.utcnow().isoformat()


def _columns(table: str) -> frozenset[str]:
    try:
        return TABLE_COLUMNS[table]
    except KeyError:
        raise ValueError(f"Unknown table: {table}") from None


def _check_columns(table: str, names: Iterable[str]) -> None:
    unknown = set(names) - _columns(table)
    if unknown:
        raise ValueError(f"Unknown column(s) for {table}: {', '.join(sorted(unknown))}")


def _encode(table: str, fields: dict[str, Any]) -> dict[str, Any]:
    json_cols = JSON_COLUMNS.get(table, frozenset())
    encoded = {}
    for key, value in fields.items():
        if isinstance(value, Enum):
            value = value.value
        if key in json_cols and value is not None:
            value = _json_dumps(value)
        encoded[key] = value
    return encoded


def _decode(table: str, row: Optional[dict]) -> Optional[dict]:
    """Parse JSON columns and normalize timestamps to ISO strings."""
    if row is None:
        return None
    for key in JSON_COLUMNS.get(table, ()):
        if key in row:
            row[key] = _json_loads(row[key])
    for key, value in row.items():
        if isinstance(value, datetime):
            row[key] = value.isoformat()
    return row


def _where(table: str, predicate: dict[str, Any], negate: bool = False) -> tuple[list[str], list]:
    _check_columns(table, predicate)
    clauses: list[str] = []
    params: list = []
    for key, value in _encode(table, predicate).items():
        if value is None:
            clauses.append(f"{key} IS NOT NULL" if negate else f"{key} IS NULL")
        elif isinstance(value, (list, tuple, set, frozenset)):
            values = [v.value if isinstance(v, Enum) else v for v in value]
            if not values:
                clauses.append("1 = 1" if negate else "1 = 0")
                continue
            placeholders = ", ".join(["%s"] * len(values))
            op = "NOT IN" if negate else "IN"
            clauses.append(f"{key} {op} ({placeholders})")
            params.extend(values)
        else:
            clauses.append(f"{key} <> %s" if negate else f"{key} = %s")
            params.append(value)
    return clauses, params


def get(table: str, record_id: str) -> Optional[dict]:
    """Fetch one row by primary key."""
    _columns(table)
    row = execute(f"SELECT * FROM {table} WHERE id = %s", (record_id,), fetch="one")
    return _decode(table, row)


def insert(table: str, fields: dict[str, Any], *, ignore_conflicts: bool = False) -> Optional[dict]:
    """Insert a row and return it.

    With ignore_conflicts=True a unique-constraint collision is a no-op and
    None is returned instead of the row.
    """
    columns = _columns(table)
    values = dict(fields)
    values.setdefault("id", str(uuid.uuid4()))
    now = now_iso()
    if "created_at" in columns:
        values.setdefault("created_at", now)
    if "updated_at" in columns:
        values.setdefault("updated_at", now)
    _check_columns(table, values)

    encoded = _encode(table, values)
    names = list(encoded)
    placeholders = ", ".join(["%s"] * len(names))
    sql = f"INSERT INTO {table} ({', '.join(names)}) VALUES ({placeholders})"
    if ignore_conflicts:
        sql += " ON CONFLICT DO NOTHING"

    affected = execute(sql, tuple(encoded[n] for n in names), fetch="rowcount")
    if ignore_conflicts and affected == 0:
        logger.info(f"Insert into {table} skipped (duplicate)")
        return None
    return get(table, values["id"])


def update(table: str, record_id: str, fields: dict[str, Any]) -> Optional[dict]:
    """Partial update by primary key. Returns the updated row, or None if missing."""
    columns = _columns(table)
    values = dict(fields)
    if "updated_at" in columns:
        values.setdefault("updated_at", now_iso())
    _check_columns(table, values)
    if not values:
        return get(table, record_id)

    encoded = _encode(table, values)
    assignments = ", ".join(f"{name} = %s" for name in encoded)
    affected = execute(
        f"UPDATE {table} SET {assignments} WHERE id = %s",
        (*encoded.values(), record_id),
        fetch="rowcount",
    )
    if not affected:
        return None
    return get(table, record_id)


def list_by(
    table: str,
    *,
    order_by: str = "created_at DESC",
    limit: Optional[int] = None,
    exclude: Optional[dict[str, Any]] = None,
    **predicate: Any,
) -> list[dict]:
    """List rows matching an equality predicate.

    A list/tuple value means IN, None means IS NULL. `exclude` takes the
    same shapes and negates them (e.g. exclude={"status": "deleted"}).
    """
    clauses, params = _where(table, predicate)
    if exclude:
        neg_clauses, neg_params = _where(table, exclude, negate=True)
        clauses += neg_clauses
        params += neg_params

    sql = f"SELECT * FROM {table}"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)

    match = _ORDER_RE.match(order_by.strip())
    if not match or match.group(1) not in _columns(table):
        raise ValueError(f"Invalid order_by for {table}: {order_by}")
    sql += f" ORDER BY {match.group(1)} {(match.group(2) or 'ASC').upper()}"

    if limit is not None:
        sql += " LIMIT %s"
        params.append(int(limit))

    rows = execute(sql, tuple(params), fetch="all")
    return [_decode(table, row) for row in rows]


def count_by(table: str, **predicate: Any) -> int:
    clauses, params = _where(table, predicate)
    sql = f"SELECT COUNT(*) AS total FROM {table}"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    row = execute(sql, tuple(params), fetch="one")
    return int(row["total"]) if row else 0


def update_if(table: str, record_id: str, fields: dict[str, Any], **predicate: Any) -> Optional[dict]:
    """Conditional partial update: only applies if the row still matches `predicate`.

    This is a single conditional UPDATE, so of two concurrent callers
    exactly one sees the row change. Returns the updated row for the
    winner and None for everyone else (or if the row does not exist).
    """
    columns = _columns(table)
    values = dict(fields)
    if "updated_at" in columns:
        values.setdefault("updated_at", now_iso())
    _check_columns(table, values)

    encoded = _encode(table, values)
    assignments = ", ".join(f"{name} = %s" for name in encoded)
    clauses, params = _where(table, predicate)
    sql = f"UPDATE {table} SET {assignments} WHERE " + " AND ".join(["id = %s", *clauses])
    affected = execute(sql, (*encoded.values(), record_id, *params), fetch="rowcount")
    if not affected:
        return None
    return get(table, record_id)


def claim(
    table: str,
    record_id: str,
    expected: Iterable[Any],
    new_status: Any,
    **fields: Any,
) -> Optional[dict]:
    """Atomically move a row to new_status if it is still in an expected status.

    Returns None when the claim is lost (or the row does not exist).
    """
    expected_values = list(expected)
    if not expected_values:
        raise ValueError("claim() needs at least one expected status")
    return update_if(table, record_id, {"status": new_status, **fields}, status=expected_values)


def increment(table: str, record_id: str, column: str, by: int = 1) -> Optional[dict]:
    """Atomic counter increment (e.g. users.fix_count)."""
    _check_columns(table, [column])
    sets = f"{column} = {column} + %s"
    params: list = [by]
    if "updated_at" in _columns(table):
        sets += ", updated_at = %s"
        params.append(now_iso())
    execute(f"UPDATE {table} SET {sets} WHERE id = %s", (*params, record_id))
    return get(table, record_id)
