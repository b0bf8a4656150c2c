"""CSV exports and chart data series."""

from __future__ import annotations

import csv
import io
from typing import Any, Dict, Iterable, List, Sequence

from .runs import chronological
from .scoring import score_meet_row

RUN_CSV_HEADERS = [
    "id", "user", "created_at",
    "target_distance_m", "vehicle_distance_cm",
    "time1", "time2", "time3", "time_avg",
    "bucket_bonus", "competition_violation", "construction_violation", "failed_run",
    "car_angle_deg", "dial_turns", "winds",
    "score", "notes",
]

SUMMARY_CSV_HEADERS = [
    "track_group_m", "runs_count", "avg_score", "best_score",
    "best_setup_by_avg", "best_setup_by_single",
]

CHART_MODES = ("score_over_time", "score_vs_distance")


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def to_csv(rows: Iterable[Dict[str, Any]], headers: Sequence[str]) -> str:
    """Serialize ``rows`` as comma separated text with a header line.

    Values are quoted only when they contain a comma, a quote or a newline.
    """
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_cell(row.get(h)) for h in headers])
    return buf.getvalue().rstrip("\n")


def runs_csv(runs: Iterable[Dict[str, Any]]) -> str:
    return to_csv(chronological(runs), RUN_CSV_HEADERS)


def fmt2(value: float) -> str:
    return f"{value:.2f}"


def setup_label_by_avg(best: Dict[str, Any] | None) -> str:
    if not best:
        return ""
    return f"{best['setup']} (avg {fmt2(best['avg'])}; n={best['n']})"


def setup_label_by_single(best: Dict[str, Any] | None) -> str:
    if not best:
        return ""
    return f"{best['setup']} (best {fmt2(best['best'])})"


def summary_csv(rows: List[Dict[str, Any]]) -> str:
    """Serialize summary rows; returns an empty string when there are none."""
    if not rows:
        return ""
    flat = []
    for row in rows:
        flat.append(
            {
                **row,
                "best_setup_by_avg": setup_label_by_avg(row.get("best_setup_by_avg")),
                "best_setup_by_single": setup_label_by_single(row.get("best_setup_by_single")),
            }
        )
    return to_csv(flat, SUMMARY_CSV_HEADERS)


def chart_series(runs: Iterable[Dict[str, Any]], mode: str = "score_over_time") -> Dict[str, Any]:
    """Build the data points for a chart of the user's runs.

    ``score_vs_distance`` yields scatter points ``{x: distance_cm, y: score}``;
    any other mode yields a line of scores labelled by creation time.
    """
    ordered = chronological(runs)
    if mode == "score_vs_distance":
        return {
            "mode": mode,
            "type": "scatter",
            "label": "Score vs Distance (cm)",
            "labels": [],
            "points": [{"x": r.get("vehicle_distance_cm"), "y": r.get("score")} for r in ordered],
        }
    return {
        "mode": "score_over_time",
        "type": "line",
        "label": "Score over time",
        "labels": [r.get("created_at") for r in ordered],
        "points": [r.get("score") for r in ordered],
    }


def chart_csv(runs: Iterable[Dict[str, Any]], mode: str = "score_over_time") -> str:
    ordered = chronological(runs)
    if mode == "score_vs_distance":
        return to_csv(ordered, ["created_at", "vehicle_distance_cm", "score"])
    return to_csv(ordered, ["created_at", "score"])


def _meet_run_cells(prefix: str, run: Dict[str, Any], scored: Dict[str, Any]) -> Dict[str, Any]:
    return {
        f"{prefix}_dist_cm": run.get("vehicle_distance_cm", ""),
        f"{prefix}_t1": run.get("time1", ""),
        f"{prefix}_t2": run.get("time2", ""),
        f"{prefix}_t3": run.get("time3", ""),
        f"{prefix}_time_avg": scored["time_avg"],
        f"{prefix}_bucket": bool(run.get("bucket_bonus")),
        f"{prefix}_failed": bool(run.get("failed_run")),
        f"{prefix}_cv": bool(run.get("competition_violation")),
        f"{prefix}_conv": bool(run.get("construction_violation")),
        f"{prefix}_score": scored["total"],
    }


def meet_csv(rows: Iterable[Dict[str, Any]]) -> str:
    out = []
    for row in rows:
        scored = score_meet_row(row)
        out.append(
            {
                "team": row.get("team") or "",
                "not_impounded": bool(row.get("not_impounded")),
                **_meet_run_cells("run1", row.get("run1") or {}, scored["run1"]),
                **_meet_run_cells("run2", row.get("run2") or {}, scored["run2"]),
                "best_of_2": scored["best_of_2"],
                "final_meet_score": scored["final_meet_score"],
            }
        )
    headers = list(out[0].keys()) if out else ["team"]
    return to_csv(out, headers)
