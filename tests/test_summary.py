from scrambler.runs import coerce_run_input, new_run
from scrambler.summary import (
    BLANK_TRACK,
    NO_MATCHES_MESSAGE,
    filter_runs,
    group_runs,
    practice_summary,
    setup_key,
    summarize,
    track_key,
)


def test_track_key_rounds_to_two_decimals():
    assert track_key(5.001) == "5.00"
    assert track_key(4.999) == "5.00"
    assert track_key("7.5") == "7.50"
    assert track_key(10) == "10.00"


def test_track_key_blank_for_unset_values():
    for value in (None, "", 0, 0.0, "abc", float("nan")):
        assert track_key(value) == BLANK_TRACK


def test_default_tolerance_filter_matches_near_targets(make_run):
    runs = [
        make_run(700, target=5.001, id="a"),
        make_run(710, target=4.999, id="b"),
        make_run(720, target=5.01, id="c"),
        make_run(730, target=None, id="d"),
    ]
    kept = filter_runs(runs, 5)
    assert [r["id"] for r in kept] == ["a", "b"]


def test_rounding_key_independent_of_filter(make_run):
    runs = [make_run(700, target=5.001, id="a"), make_run(710, target=4.999, id="b")]
    rows = summarize(runs)
    assert len(rows) == 1
    assert rows[0]["track_group_m"] == "5.00"
    assert rows[0]["runs_count"] == 2


def test_explicit_tolerance_and_non_positive_fallback(make_run):
    runs = [make_run(700, target=5.3, id="a"), make_run(700, target=5.0, id="b")]
    assert [r["id"] for r in filter_runs(runs, 5, 0.5)] == ["a", "b"]
    assert [r["id"] for r in filter_runs(runs, 5, 0)] == ["b"]
    assert [r["id"] for r in filter_runs(runs, 5, -1)] == ["b"]


def test_no_filter_keeps_blank_track_runs(make_run):
    runs = [make_run(700, target=None, id="a")]
    assert filter_runs(runs, None) == runs


def test_setup_key_rounding_boundaries():
    base = {"dial_turns": 1.5, "winds": 10}
    assert setup_key({**base, "car_angle_deg": 12.04}) == setup_key({**base, "car_angle_deg": 12.01})
    assert setup_key({**base, "car_angle_deg": 12.04}) != setup_key({**base, "car_angle_deg": 12.06})
    assert setup_key({**base, "car_angle_deg": 12.04}) != setup_key({**base, "car_angle_deg": 12.15})
    assert setup_key({**base, "car_angle_deg": 12.04}) == "12.0° | 1.50 turns | 10 winds"


def test_setup_key_defaults_and_half_up():
    assert setup_key({}) == "0.0° | 0.00 turns | 0 winds"
    assert setup_key({"winds": 2.5}) == "0.0° | 0.00 turns | 3 winds"
    assert setup_key({"car_angle_deg": -0.0}) == "0.0° | 0.00 turns | 0 winds"


def test_group_order_is_numeric_with_blank_last(make_run):
    runs = [
        make_run(700, target=10, id="a"),
        make_run(700, target=None, id="b"),
        make_run(700, target=2, id="c"),
        make_run(700, target=5, id="d"),
    ]
    grouped = group_runs(runs)
    assert list(grouped.keys()) == ["2.00", "5.00", "10.00", BLANK_TRACK]
    assert [row["track_group_m"] for row in summarize(runs)] == ["2.00", "5.00", "10.00", BLANK_TRACK]


def test_setups_keep_first_seen_order(make_run):
    runs = [
        make_run(700, angle=20, id="a"),
        make_run(700, angle=10, id="b"),
        make_run(700, angle=20, id="c"),
    ]
    setups = group_runs(runs)["5.00"]
    assert list(setups.keys()) == [setup_key(runs[0]), setup_key(runs[1])]
    assert [r["id"] for r in setups[setup_key(runs[0])]] == ["a", "c"]


def test_track_statistics(make_run):
    runs = [make_run(700, id="a"), make_run(650, angle=15, id="b"), make_run(601.2, id="c")]
    row = summarize(runs)[0]
    assert row["runs_count"] == 3
    assert row["avg_score"] == 650.4
    assert row["best_score"] == 601.2


def test_average_and_single_rankings_can_disagree(make_run):
    runs = [
        make_run(600, angle=10, id="a1"),
        make_run(800, angle=10, id="a2"),
        make_run(620, angle=20, id="b1"),
        make_run(680, angle=20, id="b2"),
    ]
    row = summarize(runs)[0]
    assert row["best_setup_by_avg"] == {"setup": setup_key(runs[2]), "avg": 650.0, "n": 2}
    assert row["best_setup_by_single"] == {"setup": setup_key(runs[0]), "best": 600.0}


def test_ties_keep_first_encountered_setup(make_run):
    runs = [make_run(640, angle=30, id="x"), make_run(640, angle=5, id="y")]
    row = summarize(runs)[0]
    assert row["best_setup_by_avg"]["setup"] == setup_key(runs[0])
    assert row["best_setup_by_single"]["setup"] == setup_key(runs[0])


def test_non_finite_scores_are_ignored(make_run):
    runs = [make_run(None, id="a"), make_run(float("nan"), angle=3, id="b"), make_run(500, target=2, id="c")]
    rows = summarize(runs)
    five = [r for r in rows if r["track_group_m"] == "5.00"][0]
    assert five["runs_count"] == 0
    assert five["avg_score"] is None
    assert five["best_score"] is None
    assert five["best_setup_by_avg"] is None
    assert five["best_setup_by_single"] is None


def test_empty_input_is_empty_summary():
    assert summarize([]) == []
    result = practice_summary([])
    assert result == {"rows": [], "matched": 0, "message": NO_MATCHES_MESSAGE}


def test_filter_with_no_matches_signals(make_run):
    result = practice_summary([make_run(700, target=3)], target_m=9)
    assert result["rows"] == []
    assert result["message"] == NO_MATCHES_MESSAGE


def test_practice_summary_reports_match_count(make_run):
    runs = [make_run(700, target=5, id="a"), make_run(700, target=6, id="b"), make_run(680, target=5.002, id="c")]
    result = practice_summary(runs, target_m=5)
    assert result["matched"] == 2
    assert result["message"] == "Showing 2 run(s)."
    assert [r["track_group_m"] for r in result["rows"]] == ["5.00"]


def test_same_input_twice_aggregates_to_common_score():
    inp = coerce_run_input({"target_distance_m": 7, "vehicle_distance_cm": 42, "time1": "8.5", "winds": 3})
    first = new_run("alice", inp)
    second = new_run("alice", inp)
    assert first["score"] == second["score"]
    row = summarize([first, second])[0]
    assert row["track_group_m"] == "7.00"
    assert row["runs_count"] == 2
    assert row["avg_score"] == first["score"]
    assert row["best_score"] == first["score"]
    assert row["best_setup_by_avg"]["n"] == 2


def test_negative_values_rounding_to_zero_keep_their_sign():
    assert setup_key({"car_angle_deg": -0.04}) == "-0.0° | 0.00 turns | 0 winds"
    assert setup_key({"car_angle_deg": -0.04}) != setup_key({"car_angle_deg": 0.04})
    assert track_key(-0.004) == "-0.00"
    assert track_key(0.004) == "0.00"
