"""
db.py
SQLite helpers + initialization (creates DB/tables, inserts default superuser, etc.)
and the generic record store used by the membership engine:
query / insert / update / delete, with every write scoped by an owner filter.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from datetime import datetime

from errors import RecordNotFoundError, StoreConflictError, StoreError

logger = logging.getLogger(__name__)

DB_FILE = Path(os.environ.get("GYM_COACH_DB", Path(__file__).with_name("gym_coach.db")))

# Columns the store accepts per table (everything else is rejected before SQL is built)
TABLE_COLUMNS = {
    "users": ("id", "username", "password_hash", "full_name", "role", "created_at"),
    "clients": (
        "id", "trainer_id", "document_type", "cedula", "full_name", "phone",
        "start_date", "duration_months", "end_date", "created_at", "updated_at",
    ),
    "licenses": (
        "id", "license_key", "expiry_date", "status", "trainer_id",
        "client_name", "client_email", "created_at",
    ),
}


@contextmanager
def get_conn():
    conn = sqlite3.connect(DB_FILE, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def execute(sql: str, params: tuple = ()) -> int:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.lastrowid


def fetch_one(sql: str, params: tuple = ()):
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchone()


def fetch_all(sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchall()


def now_iso() -> str:
    return datetime.utcnow().isoformat(timespec="seconds")


# ---------- Record store ----------

def _check_columns(table: str, columns) -> None:
    allowed = TABLE_COLUMNS.get(table)
    if allowed is None:
        raise ValueError(f"Unknown table: {table}")
    for col in columns:
        if col not in allowed:
            raise ValueError(f"Unknown column for {table}: {col}")


def _where(table: str, filters: dict) -> tuple[str, list]:
    """
    Build a WHERE clause from equality filters.
    `col__ne` means not-equal; a None value means IS NULL / IS NOT NULL.
    """
    clauses = []
    params = []
    for key, value in filters.items():
        col, _, op = key.partition("__")
        if op not in ("", "ne"):
            raise ValueError(f"Unsupported filter: {key}")
        _check_columns(table, [col])
        if value is None:
            clauses.append(f"{col} IS NOT NULL" if op == "ne" else f"{col} IS NULL")
        else:
            clauses.append(f"{col} != ?" if op == "ne" else f"{col} = ?")
            params.append(value)
    if not clauses:
        return "", params
    return " WHERE " + " AND ".join(clauses), params


def _require_owner(owner_filter: dict | None) -> None:
    if not owner_filter:
        raise ValueError("Mutating store calls require an owner filter")


@contextmanager
def _store_errors(action: str, table: str):
    try:
        yield
    except sqlite3.IntegrityError as e:
        logger.error("Constraint violation on %s %s: %s", action, table, e)
        raise StoreConflictError(str(e)) from e
    except sqlite3.Error as e:
        logger.error("Store failure on %s %s: %s", action, table, e)
        raise StoreError(str(e)) from e


def query(table: str, filters: dict | None = None, ordering: list[tuple[str, str]] | None = None) -> list[dict]:
    _check_columns(table, [])
    where, params = _where(table, filters or {})
    sql = f"SELECT * FROM {table}{where}"
    if ordering:
        parts = []
        for col, direction in ordering:
            _check_columns(table, [col])
            if direction.lower() not in ("asc", "desc"):
                raise ValueError(f"Unsupported ordering direction: {direction}")
            parts.append(f"{col} {direction.upper()}")
        sql += " ORDER BY " + ", ".join(parts)
    with _store_errors("query", table):
        return [dict(r) for r in fetch_all(sql, tuple(params))]


def insert(table: str, record: dict) -> dict:
    _check_columns(table, record.keys())
    cols = list(record.keys())
    sql = f"INSERT INTO {table}({', '.join(cols)}) VALUES({', '.join('?' for _ in cols)})"
    with _store_errors("insert", table):
        with get_conn() as conn:
            cur = conn.execute(sql, tuple(record[c] for c in cols))
            row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (cur.lastrowid,)).fetchone()
    return dict(row)


def update(table: str, record_id, patch: dict, owner_filter: dict) -> dict:
    _require_owner(owner_filter)
    if not patch:
        raise ValueError("Empty update")
    _check_columns(table, patch.keys())
    sets = ", ".join(f"{col} = ?" for col in patch)
    where, params = _where(table, {"id": record_id, **owner_filter})
    with _store_errors("update", table):
        with get_conn() as conn:
            cur = conn.execute(f"UPDATE {table} SET {sets}{where}", (*patch.values(), *params))
            if cur.rowcount == 0:
                raise RecordNotFoundError(f"No {table} row {record_id} for this owner")
            row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (record_id,)).fetchone()
    return dict(row)


def delete(table: str, record_id, owner_filter: dict) -> None:
    _require_owner(owner_filter)
    where, params = _where(table, {"id": record_id, **owner_filter})
    with _store_errors("delete", table):
        with get_conn() as conn:
            cur = conn.execute(f"DELETE FROM {table}{where}", tuple(params))
            if cur.rowcount == 0:
                raise RecordNotFoundError(f"No {table} row {record_id} for this owner")


# ---------- Schema ----------

def _create_tables() -> None:
    execute(
        """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            full_name TEXT,
            role TEXT NOT NULL DEFAULT 'trainer' CHECK(role IN ('trainer','admin','superuser')),
            created_at TEXT NOT NULL
        )
        """
    )

    # No status column: membership status is derived from end_date at read time.
    # The UNIQUE constraint is the authoritative duplicate-identity guard.
    execute(
        """
        CREATE TABLE IF NOT EXISTS clients (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            trainer_id INTEGER NOT NULL,
            document_type TEXT NOT NULL CHECK(document_type IN ('V','E')),
            cedula TEXT NOT NULL,
            full_name TEXT NOT NULL,
            phone TEXT NOT NULL,
            start_date TEXT NOT NULL,
            duration_months INTEGER NOT NULL CHECK(duration_months > 0),
            end_date TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(trainer_id, document_type, cedula),
            FOREIGN KEY(trainer_id) REFERENCES users(id) ON DELETE CASCADE
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS licenses (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            license_key TEXT NOT NULL UNIQUE,
            expiry_date TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active','expired')),
            trainer_id INTEGER,
            client_name TEXT,
            client_email TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY(trainer_id) REFERENCES users(id) ON DELETE SET NULL
        )
        """
    )

    # Small settings table (used to force password change on first login)
    execute(
        """
        CREATE TABLE IF NOT EXISTS app_settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )


def _get_setting(key: str, default: str | None = None) -> str | None:
    row = fetch_one("SELECT value FROM app_settings WHERE key = ?", (key,))
    if row:
        return str(row["value"])
    return default


def _set_setting(key: str, value: str) -> None:
    execute(
        """
        INSERT INTO app_settings(key, value) VALUES(?, ?)
        ON CONFLICT(key) DO UPDATE SET value=excluded.value
        """,
        (key, value),
    )


def init_db(default_admin_hash: str) -> None:
    """
    Initialize the database.
    - Create tables
    - Insert default superuser (admin/admin123) if no user exists
    - Force password change on first login
    """
    _create_tables()

    user = fetch_one("SELECT id FROM users LIMIT 1")
    if not user:
        execute(
            "INSERT INTO users(username, password_hash, full_name, role, created_at) VALUES(?,?,?,?,?)",
            ("admin", default_admin_hash, "Administrator", "superuser", now_iso()),
        )
        _set_setting("force_password_change", "1")
        logger.info("Created default superuser 'admin'")
    else:
        # ensure setting exists
        if _get_setting("force_password_change") is None:
            _set_setting("force_password_change", "0")


def is_force_password_change() -> bool:
    val = fetch_one("SELECT value FROM app_settings WHERE key = ?", ("force_password_change",))
    return bool(val and str(val["value"]) == "1")


def clear_force_password_change() -> None:
    _set_setting("force_password_change", "0")
