from flask import Blueprint, Response, abort, current_app, request, session
import os

from .export import CHART_MODES, chart_csv, chart_series, meet_csv, runs_csv, summary_csv
from .runs import chronological, coerce_run_input, new_meet_row, new_run
from .scoring import compute_score, score_meet, update_meet_row, to_number
from .summary import practice_summary
from .datastore import (
    list_runs as ds_list_runs,
    add_run as ds_add_run,
    delete_run as ds_delete_run,
    delete_user_runs as ds_delete_user_runs,
    find_run as ds_find_run,
    get_meet_rows as ds_get_meet_rows,
    set_meet_rows as ds_set_meet_rows,
)


bp = Blueprint('main', __name__)

USER_HEADER = 'X-Scrambler-User'
MIN_USERNAME_LEN = 3
# Column widths of the runs and meet_teams tables
MAX_USERNAME_LEN = 100
MAX_TIME_LEN = 32
MAX_TEAM_LEN = 200


def current_user() -> str | None:
    """Return the user from the signed session or the identity header."""
    user = session.get('user') or request.headers.get(USER_HEADER, '')
    user = (user or '').strip()
    return user or None


def _require_user() -> str:
    user = current_user()
    if not user:
        abort(401, description='Sign in first: POST /api/session with a user name.')
    if len(user) > MAX_USERNAME_LEN:
        abort(400, description=f"User name must be at most {MAX_USERNAME_LEN} characters.")
    return user


def _json_payload() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        abort(400, description='Expected a JSON object.')
    return payload


def _query_float(name: str) -> float | None:
    raw = (request.args.get(name) or '').strip()
    if not raw:
        return None
    value = to_number(raw)
    if value is None:
        abort(400, description=f"Invalid {name} '{raw}'. Expected a number.")
    return value


def _csv_response(content: str, filename: str) -> Response:
    return Response(
        content,
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename="{filename}"'},
    )


@bp.route('/health/db')
def health_db():
    """Database connectivity health check.

    Always returns HTTP 200 with a JSON body describing connection status.
    """
    url = os.environ.get('DATABASE_URL')
    if not url:
        return {'connected': False, 'status': 'no_database_url'}
    try:
        import psycopg2  # type: ignore
        with psycopg2.connect(url, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute('SELECT current_user, current_database(), version()')
                user, db, ver = cur.fetchone()
        return {
            'connected': True,
            'status': 'ok',
            'user': user,
            'database': db,
            'server_version': (ver or '').split('\n')[0],
        }
    except Exception as e:  # pragma: no cover - best-effort health output
        return {'connected': False, 'status': 'error', 'error': str(e)}


@bp.route('/api/session', methods=['GET'])
def get_session():
    return {'user': current_user()}


@bp.route('/api/session', methods=['POST'])
def start_session():
    payload = _json_payload()
    user = str(payload.get('user') or '').strip()
    if len(user) < MIN_USERNAME_LEN:
        return {'error': f'User name must be at least {MIN_USERNAME_LEN} characters.'}, 400
    if len(user) > MAX_USERNAME_LEN:
        return {'error': f'User name must be at most {MAX_USERNAME_LEN} characters.'}, 400
    session['user'] = user
    current_app.logger.info("session_started user=%s", user)
    return {'user': user}


@bp.route('/api/session', methods=['DELETE'])
def end_session():
    session.pop('user', None)
    return {'status': 'ok'}


@bp.route('/api/score', methods=['POST'])
def preview_score():
    """Score a run without saving it."""
    inp = coerce_run_input(_json_payload())
    return compute_score(inp)


#<runs>
@bp.route('/api/runs', methods=['GET'])
def list_runs():
    user = _require_user()
    return {'runs': chronological(ds_list_runs(user), newest_first=True)}


@bp.route('/api/runs', methods=['POST'])
def save_run():
    """Score the submitted inputs and persist the run for the current user."""
    user = _require_user()
    inp = coerce_run_input(_json_payload())
    for field in ('time1', 'time2', 'time3'):
        if len(inp[field]) > MAX_TIME_LEN:
            abort(400, description=f"{field} must be at most {MAX_TIME_LEN} characters.")
    run = new_run(user, inp)
    ds_add_run(run)
    current_app.logger.info("run_saved user=%s id=%s score=%.2f", user, run['id'], run['score'])
    return {'run': run, 'message': f"Saved. Score: {run['score']:.2f} (avg time {run['time_avg']:.2f}s)"}, 201


@bp.route('/api/runs/<run_id>', methods=['GET'])
def get_run(run_id):
    user = _require_user()
    run = ds_find_run(user, run_id)
    if run is None:
        abort(404)
    return {'run': run}


@bp.route('/api/runs/<run_id>', methods=['DELETE'])
def delete_run(run_id):
    user = _require_user()
    if not ds_delete_run(user, run_id):
        abort(404)
    current_app.logger.info("run_deleted user=%s id=%s", user, run_id)
    return {'status': 'ok'}


@bp.route('/api/runs', methods=['DELETE'])
def clear_runs():
    user = _require_user()
    count = ds_delete_user_runs(user)
    current_app.logger.info("runs_cleared user=%s count=%d", user, count)
    return {'status': 'ok', 'deleted': count}


@bp.route('/api/runs.csv')
def export_runs():
    user = _require_user()
    return _csv_response(runs_csv(ds_list_runs(user)), f'scrambler_runs_{user}.csv')
#</runs>


#<summary>
def _summary_for(user: str) -> dict:
    target = _query_float('target')
    tolerance = _query_float('tolerance')
    result = practice_summary(ds_list_runs(user), target_m=target, tolerance_m=tolerance)
    current_app.logger.debug(
        "summary user=%s matched=%d groups=%d", user, result['matched'], len(result['rows'])
    )
    return result


@bp.route('/api/summary')
def summary():
    """Per-track statistics and best setups, optionally filtered by target."""
    user = _require_user()
    return _summary_for(user)


@bp.route('/api/summary.csv')
def export_summary():
    user = _require_user()
    rows = _summary_for(user)['rows']
    if not rows:
        return {'error': 'Nothing to export'}, 404
    return _csv_response(summary_csv(rows), f'scrambler_practice_summary_{user}.csv')


@bp.route('/api/chart')
def chart():
    user = _require_user()
    mode = request.args.get('mode') or 'score_over_time'
    return chart_series(ds_list_runs(user), mode)


@bp.route('/api/chart.csv')
def export_chart():
    user = _require_user()
    mode = request.args.get('mode')
    if mode not in CHART_MODES:
        mode = 'score_over_time'
    return _csv_response(chart_csv(ds_list_runs(user), mode), f'scrambler_chart_{mode}_{user}.csv')
#</summary>


#<meet>
def _check_team(row: dict) -> None:
    if len(row.get('team') or '') > MAX_TEAM_LEN:
        abort(400, description=f"Team name must be at most {MAX_TEAM_LEN} characters.")


def _save_meet(user: str, rows: list) -> dict:
    ds_set_meet_rows(user, rows)
    current_app.logger.info("meet_saved user=%s rows=%d", user, len(rows))
    return {'rows': score_meet(rows)}


def _find_meet_row(rows: list, row_id: str) -> dict:
    for row in rows:
        if row.get('id') == row_id:
            return row
    abort(404)


@bp.route('/api/meet', methods=['GET'])
def get_meet():
    user = _require_user()
    return {'rows': score_meet(ds_get_meet_rows(user))}


@bp.route('/api/meet', methods=['POST'])
def add_meet_team():
    user = _require_user()
    rows = ds_get_meet_rows(user)
    row = new_meet_row()
    update_meet_row(row, _json_payload())
    _check_team(row)
    rows.append(row)
    return _save_meet(user, rows), 201


@bp.route('/api/meet/<row_id>', methods=['PATCH'])
def edit_meet_team(row_id):
    user = _require_user()
    rows = ds_get_meet_rows(user)
    row = update_meet_row(_find_meet_row(rows, row_id), _json_payload())
    _check_team(row)
    return _save_meet(user, rows)


@bp.route('/api/meet/<row_id>', methods=['DELETE'])
def remove_meet_team(row_id):
    user = _require_user()
    rows = ds_get_meet_rows(user)
    rows.remove(_find_meet_row(rows, row_id))
    return _save_meet(user, rows)


@bp.route('/api/meet', methods=['DELETE'])
def clear_meet():
    user = _require_user()
    return _save_meet(user, [])


@bp.route('/api/meet.csv')
def export_meet():
    user = _require_user()
    return _csv_response(meet_csv(ds_get_meet_rows(user)), f'scrambler_meet_{user}.csv')
#</meet>
