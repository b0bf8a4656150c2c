"""Practice summary: group runs by track and setup and rank the setups.

Runs are grouped first by their normalized target distance (the "track")
and then by mechanical setup (angle, dial turns, winds). For every track the
summary reports the number of scored runs, their average and best score and
the setup that performed best on average and in a single run. Lower scores
are better throughout.

The cached ``score`` of each run is used as-is; runs are never re-scored
here.
"""

from __future__ import annotations

import math
from collections import OrderedDict
from decimal import ROUND_HALF_UP, Context, Decimal
from typing import Any, Dict, Iterable, List, Optional

from .scoring import round2, to_number

BLANK_TRACK = "(blank)"
DEFAULT_TOLERANCE_M = 0.005
NO_MATCHES_MESSAGE = "No runs match this filter."

# Wide enough to quantize any finite float without InvalidOperation.
_KEY_CONTEXT = Context(prec=400)


def fixed(value: float, places: int) -> str:
    """Format ``value`` with ``places`` decimals, rounding halves away from zero.

    Negative values keep their sign even when they round to zero
    (``-0.004`` gives ``"-0.00"``); ``-0.0`` itself prints unsigned.
    """
    quantum = Decimal(1).scaleb(-places)
    rounded = Decimal(abs(value)).quantize(quantum, rounding=ROUND_HALF_UP, context=_KEY_CONTEXT)
    sign = "-" if value < 0 else ""
    return f"{sign}{rounded:.{places}f}"


def track_key(target_distance_m: Any) -> str:
    """Return the grouping key for a target distance in metres."""
    value = to_number(target_distance_m)
    if value is None or value == 0:
        return BLANK_TRACK
    return fixed(value, 2)


def track_sort_key(key: str):
    """Sort numeric track keys ascending with the blank track last."""
    if key == BLANK_TRACK:
        return (1, 0.0)
    return (0, float(key))


def setup_key(run: Dict[str, Any]) -> str:
    """Return the grouping key for a run's mechanical setup."""
    angle = fixed(to_number(run.get("car_angle_deg")) or 0.0, 1)
    turns = fixed(to_number(run.get("dial_turns")) or 0.0, 2)
    winds = fixed(to_number(run.get("winds")) or 0.0, 0)
    return f"{angle}° | {turns} turns | {winds} winds"


def filter_runs(
    runs: Iterable[Dict[str, Any]],
    target_m: Optional[float],
    tolerance_m: Optional[float] = None,
) -> List[Dict[str, Any]]:
    """Keep runs whose target distance lies within tolerance of ``target_m``.

    With no target every run is kept. A missing or non-positive tolerance
    falls back to :data:`DEFAULT_TOLERANCE_M`. Runs without a target
    distance never match an active filter.
    """
    runs = list(runs)
    if target_m is None:
        return runs
    tol = tolerance_m if tolerance_m is not None and tolerance_m > 0 else DEFAULT_TOLERANCE_M
    kept = []
    for run in runs:
        value = to_number(run.get("target_distance_m"))
        if value is None:
            continue
        if abs(value - target_m) <= tol:
            kept.append(run)
    return kept


def group_runs(runs: Iterable[Dict[str, Any]]) -> "OrderedDict[str, OrderedDict[str, List[Dict[str, Any]]]]":
    """Group runs into ``{track_key: {setup_key: [runs]}}``.

    Tracks are ordered by :func:`track_sort_key`; setups within a track keep
    the order in which they were first seen.
    """
    by_track: Dict[str, "OrderedDict[str, List[Dict[str, Any]]]"] = {}
    for run in runs:
        setups = by_track.setdefault(track_key(run.get("target_distance_m")), OrderedDict())
        setups.setdefault(setup_key(run), []).append(run)
    return OrderedDict((k, by_track[k]) for k in sorted(by_track, key=track_sort_key))


def _scores(runs: Iterable[Dict[str, Any]]) -> List[float]:
    out = []
    for run in runs:
        score = to_number(run.get("score"))
        if score is not None:
            out.append(score)
    return out


def _summarize_track(key: str, setups: "OrderedDict[str, List[Dict[str, Any]]]") -> Dict[str, Any]:
    scores = [s for group in setups.values() for s in _scores(group)]
    n = len(scores)

    best_by_avg = None
    best_avg_val = math.inf
    best_by_single = None
    best_single_val = math.inf
    for setup, setup_runs in setups.items():
        setup_scores = _scores(setup_runs)
        if not setup_scores:
            continue
        setup_avg = sum(setup_scores) / len(setup_scores)
        setup_best = min(setup_scores)
        # Strict comparison: the first setup seen keeps a tie.
        if setup_avg < best_avg_val:
            best_avg_val = setup_avg
            best_by_avg = {"setup": setup, "avg": round2(setup_avg), "n": len(setup_scores)}
        if setup_best < best_single_val:
            best_single_val = setup_best
            best_by_single = {"setup": setup, "best": round2(setup_best)}

    return {
        "track_group_m": key,
        "runs_count": n,
        "avg_score": round2(sum(scores) / n) if n else None,
        "best_score": round2(min(scores)) if n else None,
        "best_setup_by_avg": best_by_avg,
        "best_setup_by_single": best_by_single,
    }


def summarize(
    runs: Iterable[Dict[str, Any]],
    target_m: Optional[float] = None,
    tolerance_m: Optional[float] = None,
) -> List[Dict[str, Any]]:
    """Return one summary row per track for the (optionally filtered) runs."""
    grouped = group_runs(filter_runs(runs, target_m, tolerance_m))
    return [_summarize_track(key, setups) for key, setups in grouped.items()]


def practice_summary(
    runs: Iterable[Dict[str, Any]],
    target_m: Optional[float] = None,
    tolerance_m: Optional[float] = None,
) -> Dict[str, Any]:
    """Summarize runs and report how many matched the filter.

    An empty ``rows`` list comes with :data:`NO_MATCHES_MESSAGE` so callers
    can tell "nothing matched" apart from a populated summary.
    """
    matched = filter_runs(runs, target_m, tolerance_m)
    if not matched:
        return {"rows": [], "matched": 0, "message": NO_MATCHES_MESSAGE}
    return {
        "rows": summarize(matched),
        "matched": len(matched),
        "message": f"Showing {len(matched)} run(s).",
    }


__all__ = [
    "filter_runs",
    "group_runs",
    "practice_summary",
    "setup_key",
    "summarize",
    "track_key",
]
