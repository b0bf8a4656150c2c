import os
import json
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2 import pool as pg_pool
from psycopg2.extras import RealDictCursor, execute_values


_POOL: Optional[pg_pool.AbstractConnectionPool] = None

RUN_COLUMNS = (
    "id", "user_name", "created_at",
    "target_distance_m", "vehicle_distance_cm",
    "time1", "time2", "time3", "time_avg",
    "bucket_bonus", "competition_violation", "construction_violation", "failed_run",
    "car_angle_deg", "dial_turns", "winds",
    "score", "notes",
)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS runs (
        id VARCHAR(64) PRIMARY KEY,
        user_name VARCHAR(100) NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        target_distance_m DOUBLE PRECISION,
        vehicle_distance_cm DOUBLE PRECISION NOT NULL DEFAULT 0,
        time1 VARCHAR(32) NOT NULL DEFAULT '',
        time2 VARCHAR(32) NOT NULL DEFAULT '',
        time3 VARCHAR(32) NOT NULL DEFAULT '',
        time_avg DOUBLE PRECISION NOT NULL DEFAULT 0,
        bucket_bonus BOOLEAN NOT NULL DEFAULT FALSE,
        competition_violation BOOLEAN NOT NULL DEFAULT FALSE,
        construction_violation BOOLEAN NOT NULL DEFAULT FALSE,
        failed_run BOOLEAN NOT NULL DEFAULT FALSE,
        car_angle_deg DOUBLE PRECISION NOT NULL DEFAULT 0,
        dial_turns DOUBLE PRECISION NOT NULL DEFAULT 0,
        winds DOUBLE PRECISION NOT NULL DEFAULT 0,
        score DOUBLE PRECISION NOT NULL,
        notes TEXT NOT NULL DEFAULT ''
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_runs_user_created ON runs (user_name, created_at)",
    """
    CREATE TABLE IF NOT EXISTS meet_teams (
        id VARCHAR(64) PRIMARY KEY,
        user_name VARCHAR(100) NOT NULL,
        position INTEGER NOT NULL,
        team VARCHAR(200) NOT NULL DEFAULT '',
        not_impounded BOOLEAN NOT NULL DEFAULT FALSE,
        run1 JSONB NOT NULL,
        run2 JSONB NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_meet_teams_user ON meet_teams (user_name, position)",
)


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _connect_kwargs() -> Dict[str, Any]:
    """Connection kwargs shared by the pool and direct connections.

    connect_timeout defaults to 10 seconds (DB_CONNECT_TIMEOUT). TCP
    keepalives are on unless DB_KEEPALIVES is 0/false; the
    DB_KEEPALIVES_IDLE/INTERVAL/COUNT tunables are passed when set.
    """
    kwargs: Dict[str, Any] = {"connect_timeout": _env_int("DB_CONNECT_TIMEOUT", 10)}
    ka_env = os.environ.get("DB_KEEPALIVES")
    kwargs["keepalives"] = 0 if ka_env is not None and ka_env.lower() in ("0", "false") else 1
    for env_name, key in (
        ("DB_KEEPALIVES_IDLE", "keepalives_idle"),
        ("DB_KEEPALIVES_INTERVAL", "keepalives_interval"),
        ("DB_KEEPALIVES_COUNT", "keepalives_count"),
    ):
        value = _env_int(env_name)
        if value is not None:
            kwargs[key] = value
    return kwargs


def init_pool(minconn: int = 1, maxconn: int = 10) -> None:
    """Create the global connection pool from DATABASE_URL.

    Later calls are ignored once a pool exists; without DATABASE_URL no pool
    is created and callers connect directly.
    """
    global _POOL
    if _POOL is not None:
        return
    url = os.environ.get("DATABASE_URL")
    if not url:
        return
    _POOL = pg_pool.ThreadedConnectionPool(minconn, maxconn, dsn=url, **_connect_kwargs())


def _is_healthy(conn) -> bool:
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
        if not getattr(conn, "autocommit", False):
            conn.rollback()
    except (psycopg2.OperationalError, psycopg2.InterfaceError):
        return False
    return True


def _checkout():
    """Take a healthy connection from the pool, replacing one stale connection."""
    for _ in range(2):
        conn = _POOL.getconn()
        if _is_healthy(conn):
            return conn
        _POOL.putconn(conn, close=True)
    raise psycopg2.OperationalError("Failed to acquire healthy DB connection after retry")


@contextmanager
def _get_conn():
    """Yield a connection from the pool when available, else a direct one.

    Any open transaction is rolled back when the block raises.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set; configure a PostgreSQL connection string")
    if _POOL is not None:
        conn = _checkout()
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            # status 1 = active, 2 = in transaction, 3 = in error
            if getattr(conn, "closed", 0) == 0 and getattr(conn, "status", 0) in (1, 2, 3):
                conn.rollback()
            _POOL.putconn(conn)
    else:
        conn = psycopg2.connect(url, **_connect_kwargs())
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


def create_tables() -> None:
    with _get_conn() as conn, conn.cursor() as cur:
        for stmt in SCHEMA_STATEMENTS:
            cur.execute(stmt)
        conn.commit()


def _ts_to_str(val) -> Optional[str]:
    if val is None:
        return None
    if isinstance(val, datetime):
        if val.tzinfo is not None:
            val = val.astimezone(timezone.utc).replace(tzinfo=None)
        return val.isoformat(timespec="milliseconds") + "Z"
    return str(val)


def _row_to_run(row: Dict[str, Any]) -> Dict[str, Any]:
    run = {k: row.get(k) for k in RUN_COLUMNS if k != "user_name"}
    run["user"] = row.get("user_name")
    run["created_at"] = _ts_to_str(row.get("created_at"))
    run["notes"] = row.get("notes") or ""
    return run


def list_runs(user: str) -> List[Dict[str, Any]]:
    """Return the user's runs, oldest first."""
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"SELECT {', '.join(RUN_COLUMNS)} FROM runs WHERE user_name = %s ORDER BY created_at, id",
            (user,),
        )
        return [_row_to_run(r) for r in cur.fetchall()]


def add_run(run: Dict[str, Any]) -> Dict[str, Any]:
    values = [run.get("user") if col == "user_name" else run.get(col) for col in RUN_COLUMNS]
    placeholders = ", ".join(["%s"] * len(RUN_COLUMNS))
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute(
            f"INSERT INTO runs ({', '.join(RUN_COLUMNS)}) VALUES ({placeholders})",
            values,
        )
        conn.commit()
    return run


def delete_run(user: str, run_id: str) -> bool:
    """Delete one of ``user``'s runs; returns False when it does not exist."""
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute("DELETE FROM runs WHERE id = %s AND user_name = %s", (run_id, user))
        deleted = cur.rowcount
        conn.commit()
    return deleted > 0


def delete_user_runs(user: str) -> int:
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute("DELETE FROM runs WHERE user_name = %s", (user,))
        deleted = cur.rowcount
        conn.commit()
    return deleted


def get_meet_rows(user: str) -> List[Dict[str, Any]]:
    """Return the user's meet sheet in row order."""
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            "SELECT id, team, not_impounded, run1, run2 FROM meet_teams WHERE user_name = %s ORDER BY position",
            (user,),
        )
        rows = []
        for r in cur.fetchall():
            rows.append(
                {
                    "id": r.get("id"),
                    "team": r.get("team") or "",
                    "not_impounded": bool(r.get("not_impounded")),
                    "run1": r.get("run1") or {},
                    "run2": r.get("run2") or {},
                }
            )
        return rows


def set_meet_rows(user: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Replace the user's whole meet sheet in one transaction."""
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute("DELETE FROM meet_teams WHERE user_name = %s", (user,))
        values = [
            (
                row["id"],
                user,
                position,
                row.get("team") or "",
                bool(row.get("not_impounded")),
                json.dumps(row.get("run1") or {}),
                json.dumps(row.get("run2") or {}),
            )
            for position, row in enumerate(rows or [])
        ]
        if values:
            execute_values(
                cur,
                """
                INSERT INTO meet_teams (id, user_name, position, team, not_impounded, run1, run2)
                VALUES %s
                """,
                values,
            )
        conn.commit()
    return rows
