"""Scoring utilities for Scrambler runs and meet sheets."""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Optional

BASE_SCORE = 100
DISTANCE_WEIGHT = 2.0
FAILED_DISTANCE_CM = 2500
BUCKET_BONUS = -100
COMPETITION_VIOLATION_POINTS = 150
CONSTRUCTION_VIOLATION_POINTS = 300
NOT_IMPOUNDED_PENALTY = 5000

_TRUE_STRINGS = {"1", "true", "yes", "on", "y"}


def round2(value: float) -> float:
    """Round half-up to two decimals (``Math.round(x * 100) / 100``)."""
    scaled = value * 100 + 0.5
    if not math.isfinite(scaled):
        return value
    return math.floor(scaled) / 100


def to_number(value: Any) -> Optional[float]:
    """Return ``value`` as a finite float, or None when it is not one.

    Blank strings, None, booleans and anything that does not parse are
    treated as missing.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def num(value: Any) -> float:
    """Coerce to a finite float, falling back to 0."""
    number = to_number(value)
    return 0.0 if number is None else number


def to_flag(value: Any) -> bool:
    """Interpret form and JSON values as a checkbox state.

    Numeric strings count like numbers, so the penalty values ``"150"`` and
    ``"300"`` are set while ``"0"`` is not.
    """
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        number = to_number(text)
        return number is not None and number != 0
    return bool(value)


def avg_of_times(*times: Any) -> float:
    """Average the usable time measurements.

    Only values that parse to a finite number >= 0 are counted; when none
    are usable the average is 0.
    """
    kept = [t for t in (to_number(v) for v in times) if t is not None and t >= 0]
    if not kept:
        return 0.0
    return sum(kept) / len(kept)


def compute_score(inp: Dict[str, Any]) -> Dict[str, Any]:
    """Compute the score breakdown for a single run.

    Args:
        inp: Run inputs. Recognised keys are ``vehicle_distance_cm``,
            ``time1``/``time2``/``time3``, ``bucket_bonus``, ``failed_run``,
            ``competition_violation`` and ``construction_violation``; missing
            keys default to zero/false.

    Returns:
        Dictionary with the rounded ``total`` and ``time_avg`` plus a
        ``breakdown`` of the individual contributions. Lower totals are
        better.
    """
    failed = to_flag(inp.get("failed_run"))
    if failed:
        dist_cm = float(FAILED_DISTANCE_CM)
        time_avg = 0.0
    else:
        dist_cm = max(num(inp.get("vehicle_distance_cm")), 0.0)
        time_avg = avg_of_times(inp.get("time1"), inp.get("time2"), inp.get("time3"))

    distance_score = DISTANCE_WEIGHT * dist_cm
    bucket = BUCKET_BONUS if to_flag(inp.get("bucket_bonus")) else 0
    penalties = 0
    if to_flag(inp.get("competition_violation")):
        penalties += COMPETITION_VIOLATION_POINTS
    if to_flag(inp.get("construction_violation")):
        penalties += CONSTRUCTION_VIOLATION_POINTS

    total = BASE_SCORE + distance_score + time_avg + bucket + penalties
    return {
        "total": round2(total),
        "time_avg": round2(time_avg),
        "breakdown": {
            "dist_cm": round2(dist_cm),
            "distance_score": round2(distance_score),
            "time_avg": round2(time_avg),
            "bucket": bucket,
            "penalties": penalties,
            "failed": failed,
        },
    }


# Inputs captured per run on the meet sheet.
MEET_RUN_FIELDS = (
    "vehicle_distance_cm",
    "time1",
    "time2",
    "time3",
    "bucket_bonus",
    "failed_run",
    "competition_violation",
    "construction_violation",
)
_MEET_FLAG_FIELDS = {"bucket_bonus", "failed_run", "competition_violation", "construction_violation"}


def blank_meet_run() -> Dict[str, Any]:
    return {f: (False if f in _MEET_FLAG_FIELDS else "") for f in MEET_RUN_FIELDS}


def score_meet_row(row: Dict[str, Any]) -> Dict[str, Any]:
    """Score both runs of a meet team and derive the final meet score.

    The better (lower) of the two run totals is kept; teams whose vehicle
    was not impounded receive :data:`NOT_IMPOUNDED_PENALTY` on top.
    """
    run1 = compute_score(row.get("run1") or {})
    run2 = compute_score(row.get("run2") or {})
    best = min(run1["total"], run2["total"])
    final = best + (NOT_IMPOUNDED_PENALTY if to_flag(row.get("not_impounded")) else 0)
    return {
        "run1": run1,
        "run2": run2,
        "best_of_2": best,
        "final_meet_score": round2(final),
    }


def update_meet_row(row: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    """Apply a partial edit to a meet row in place and return it.

    ``changes`` may carry ``team``, ``not_impounded`` and ``run1``/``run2``
    dictionaries with any of :data:`MEET_RUN_FIELDS`. Unknown keys are
    ignored. Missing and non-finite input values are stored as blanks.
    """
    if "team" in changes:
        row["team"] = str(changes.get("team") or "")
    if "not_impounded" in changes:
        row["not_impounded"] = to_flag(changes.get("not_impounded"))
    for run_name in ("run1", "run2"):
        edits = changes.get(run_name)
        if not isinstance(edits, dict):
            continue
        run = row.setdefault(run_name, blank_meet_run())
        for field in MEET_RUN_FIELDS:
            if field not in edits:
                continue
            value = edits[field]
            if field in _MEET_FLAG_FIELDS:
                run[field] = to_flag(value)
            elif value is None or (isinstance(value, float) and not math.isfinite(value)):
                # JSONB has no NaN or Infinity
                run[field] = ""
            else:
                run[field] = value
    return row


def score_meet(rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Return meet rows with their computed scores, in sheet order.

    Run inputs stay under ``run1``/``run2``; their score breakdowns are added
    as ``run1_score``/``run2_score``.
    """
    out = []
    for row in rows:
        scored = score_meet_row(row)
        out.append(
            {
                **row,
                "run1_score": scored["run1"],
                "run2_score": scored["run2"],
                "best_of_2": scored["best_of_2"],
                "final_meet_score": scored["final_meet_score"],
            }
        )
    return out


__all__ = [
    "avg_of_times",
    "compute_score",
    "round2",
    "score_meet",
    "score_meet_row",
    "update_meet_row",
]
