from typing import Any, Dict, List, Optional

# Datastore proxy used by the routes. Every call is forwarded to
# datastore_pg at call time so tests can monkeypatch that module.

from . import datastore_pg as _pg


def list_runs(user: str) -> List[Dict[str, Any]]:
    return _pg.list_runs(user)


def add_run(run: Dict[str, Any]) -> Dict[str, Any]:
    return _pg.add_run(run)


def delete_run(user: str, run_id: str) -> bool:
    return _pg.delete_run(user, run_id)


def delete_user_runs(user: str) -> int:
    return _pg.delete_user_runs(user)


def find_run(user: str, run_id: str) -> Optional[Dict[str, Any]]:
    """Return one of ``user``'s runs by id, or None."""
    for run in _pg.list_runs(user):
        if run.get("id") == run_id:
            return run
    return None


def get_meet_rows(user: str) -> List[Dict[str, Any]]:
    return _pg.get_meet_rows(user)


def set_meet_rows(user: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return _pg.set_meet_rows(user, rows)


def create_tables() -> None:
    _pg.create_tables()
