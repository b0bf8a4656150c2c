"""Helpers turning raw request payloads into run and meet records."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

from .scoring import FAILED_DISTANCE_CM, blank_meet_run, compute_score, num, to_flag, to_number

_TIME_FIELDS = ("time1", "time2", "time3")
_SETUP_FIELDS = ("car_angle_deg", "dial_turns", "winds")
_FLAG_FIELDS = ("bucket_bonus", "failed_run", "competition_violation", "construction_violation")


def _raw_time(value: Any) -> str:
    # Times are kept as entered so exports show exactly what was typed.
    if value is None or isinstance(value, bool):
        return ""
    return str(value).strip()


def coerce_run_input(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize a practice form payload into run inputs.

    Numeric fields that do not parse become 0, except the target distance
    which becomes None ("no track"). Times stay as raw strings and are only
    interpreted when scoring.
    """
    inp: Dict[str, Any] = {
        "target_distance_m": to_number(payload.get("target_distance_m")),
        "vehicle_distance_cm": num(payload.get("vehicle_distance_cm")),
    }
    for field in _TIME_FIELDS:
        inp[field] = _raw_time(payload.get(field))
    for field in _SETUP_FIELDS:
        inp[field] = num(payload.get(field))
    for field in _FLAG_FIELDS:
        inp[field] = to_flag(payload.get(field))
    inp["notes"] = str(payload.get("notes") or "").strip()
    return inp


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_run(user: str, inp: Dict[str, Any]) -> Dict[str, Any]:
    """Score ``inp`` and build the record persisted for ``user``.

    The score and averaged time are cached on the record and are the
    authoritative values from then on.
    """
    sc = compute_score(inp)
    run = {
        "id": uuid.uuid4().hex,
        "user": user,
        "created_at": utc_now_iso(),
        **inp,
        "time_avg": sc["time_avg"],
        "score": sc["total"],
    }
    if inp.get("failed_run"):
        run["vehicle_distance_cm"] = float(FAILED_DISTANCE_CM)
    return run


def chronological(runs: Iterable[Dict[str, Any]], newest_first: bool = False) -> List[Dict[str, Any]]:
    """Order runs by ``created_at`` (ISO strings sort chronologically)."""
    return sorted(runs, key=lambda r: (r.get("created_at") or "", r.get("id") or ""), reverse=newest_first)


def new_meet_row() -> Dict[str, Any]:
    return {
        "id": uuid.uuid4().hex,
        "team": "",
        "not_impounded": False,
        "run1": blank_meet_run(),
        "run2": blank_meet_run(),
    }
