from __future__ import annotations

from functools import wraps
import logging
from typing import Any, Dict, Tuple

from flask import (
    Blueprint,
    Response,
    current_app,
    flash,
    g,
    redirect,
    render_template,
    request,
    url_for,
)

from .schemas import TimeRange, User
from .services.ai_service import InsightService
from .services.charts import progress_percentage, total_amount, weekly_buckets
from .services.hydration_store import HydrationStore
from .utils.auth import AuthError, bearer_token, decode_session_token

main_bp = Blueprint('main', __name__)

logger = logging.getLogger(__name__)

QUICK_ADD_AMOUNTS = (200, 300, 500)


def _store() -> HydrationStore:
    return current_app.hydration_store


def _insights() -> InsightService:
    return current_app.insight_service


def _parse_positive_int(raw: Any, label: str) -> int:
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError) as exc:
        raise ValueError(f'{label} must be a whole number of millilitres.') from exc
    if value <= 0:
        raise ValueError(f'{label} must be greater than zero.')
    return value


def login_required(view):
    """Decorator ensuring a stored session exists before rendering a page."""

    @wraps(view)
    def wrapped(*args, **kwargs):
        auth_session = _store().get_session()
        if auth_session is None:
            flash('Please log in to continue.', 'warning')
            return redirect(url_for('main.login'))
        g.user = auth_session.user
        return view(*args, **kwargs)

    return wrapped


def api_auth_required(view):
    """Decorator for JSON endpoints: the bearer token must match the active session."""

    @wraps(view)
    def wrapped(*args, **kwargs):
        token = bearer_token(request.headers.get('Authorization'))
        try:
            payload = decode_session_token(token, current_app.config['SESSION_TOKEN_SECRET'])
        except AuthError as exc:
            return {'error': exc.message}, exc.status_code

        auth_session = _store().get_session()
        if auth_session is None or auth_session.token != token or auth_session.user.id != payload['sub']:
            return {'error': 'Session is no longer active. Please log in again.'}, 401
        g.user = auth_session.user
        return view(*args, **kwargs)

    return wrapped


def _dashboard_data(user: User) -> Dict[str, Any]:
    store = _store()
    goal = store.get_daily_goal(user.id)
    week_logs = store.get_water_logs(user.id, TimeRange.WEEK)
    today_logs = store.get_today_logs(user.id)
    today_total = total_amount(today_logs)
    stats = store.get_behavior_stats(user.id)

    return {
        'goal': goal,
        'week_logs': week_logs,
        'today_logs': today_logs,
        'today_total': today_total,
        'percentage': progress_percentage(today_total, goal.goal_ml),
        'buckets': weekly_buckets(week_logs, today=store.local_today(), tz=store.tz, goal_ml=goal.goal_ml),
        'streak_days': stats.streak_days if stats else 0,
    }


# --- Pages ------------------------------------------------------------------


@main_bp.route('/')
def index() -> str | Response:
    if _store().get_session() is not None:
        return redirect(url_for('main.dashboard'))

    has_api_key = _insights().has_api_key()
    quotes = _insights().get_motivational_quotes() if has_api_key else []
    return render_template('index.html', quotes=quotes, has_api_key=has_api_key)


@main_bp.route('/api-key', methods=['POST'])
def save_api_key() -> Response:
    try:
        _insights().set_api_key(request.form.get('api_key', ''))
    except ValueError as exc:
        flash(str(exc), 'warning')
    else:
        flash('API key saved. AI features are now enabled.', 'success')
    return redirect(url_for('main.index'))


def _auth_form(mode: str) -> str | Response | Tuple[str, int]:
    if request.method == 'GET':
        if _store().get_session() is not None:
            return redirect(url_for('main.dashboard'))
        return render_template('auth.html', mode=mode, error=None)

    email = request.form.get('email', '')
    password = request.form.get('password', '')
    try:
        if mode == 'register':
            _store().register(email, password, request.form.get('name', ''))
        else:
            _store().login(email, password)
    except AuthError as exc:
        logger.info('auth.%s.failed', mode, extra={'error': exc.message})
        return render_template('auth.html', mode=mode, error=exc.message, email=email), 400
    except ValueError as exc:
        return render_template('auth.html', mode=mode, error=str(exc), email=email), 400

    return redirect(url_for('main.dashboard'))


@main_bp.route('/register', methods=['GET', 'POST'])
def register() -> str | Response | Tuple[str, int]:
    return _auth_form('register')


@main_bp.route('/login', methods=['GET', 'POST'])
def login() -> str | Response | Tuple[str, int]:
    return _auth_form('login')


@main_bp.route('/logout')
def logout() -> Response:
    _store().logout()
    flash('You have been logged out.', 'info')
    return redirect(url_for('main.index'))


@main_bp.route('/dashboard')
@login_required
def dashboard() -> str:
    user = g.user
    data = _dashboard_data(user)

    insight = None
    if _insights().has_api_key() and data['week_logs']:
        insight = _insights().get_smart_insights(data['week_logs'], data['goal'].goal_ml)

    return render_template(
        'dashboard.html',
        user=user,
        insight=insight,
        quick_add_amounts=QUICK_ADD_AMOUNTS,
        **data,
    )


@main_bp.route('/dashboard/water', methods=['POST'])
@login_required
def add_water() -> Response:
    try:
        amount = _parse_positive_int(request.form.get('amount'), 'Amount')
        _store().log_water(g.user.id, amount)
    except ValueError as exc:
        flash(str(exc), 'warning')
    return redirect(url_for('main.dashboard'))


@main_bp.route('/dashboard/goal', methods=['POST'])
@login_required
def adjust_goal() -> Response:
    try:
        goal_ml = _parse_positive_int(request.form.get('goal_ml'), 'Daily goal')
        _store().update_daily_goal(g.user.id, goal_ml)
    except ValueError as exc:
        flash(str(exc), 'warning')
    else:
        flash('Daily goal updated.', 'success')
    return redirect(url_for('main.dashboard'))


# --- JSON API ---------------------------------------------------------------


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _session_payload(auth_session) -> Dict[str, Any]:
    return auth_session.model_dump(mode='json')


@main_bp.route('/api/register', methods=['POST'])
def api_register() -> Tuple[Dict[str, Any], int]:
    payload = _json_body()
    try:
        auth_session = _store().register(
            payload.get('email', ''), payload.get('password', ''), payload.get('name', '')
        )
    except AuthError as exc:
        return {'error': exc.message}, exc.status_code
    except ValueError as exc:
        return {'error': str(exc)}, 400
    return _session_payload(auth_session), 201


@main_bp.route('/api/login', methods=['POST'])
def api_login() -> Tuple[Dict[str, Any], int]:
    payload = _json_body()
    try:
        auth_session = _store().login(payload.get('email', ''), payload.get('password', ''))
    except AuthError as exc:
        return {'error': exc.message}, exc.status_code
    except ValueError as exc:
        return {'error': str(exc)}, 400
    return _session_payload(auth_session), 200


@main_bp.route('/api/logout', methods=['POST'])
@api_auth_required
def api_logout() -> Dict[str, Any]:
    _store().logout()
    return {'status': 'logged_out'}


@main_bp.route('/api/session')
def api_session() -> Dict[str, Any]:
    auth_session = _store().get_session()
    return {'session': _session_payload(auth_session) if auth_session else None}


@main_bp.route('/api/goal', methods=['GET', 'PUT'])
@api_auth_required
def api_goal() -> Dict[str, Any] | Tuple[Dict[str, Any], int]:
    if request.method == 'PUT':
        try:
            goal_ml = _parse_positive_int(_json_body().get('goal_ml'), 'Daily goal')
            goal = _store().update_daily_goal(g.user.id, goal_ml)
        except ValueError as exc:
            return {'error': str(exc)}, 400
    else:
        goal = _store().get_daily_goal(g.user.id)
    return {'goal': goal.model_dump(mode='json')}


@main_bp.route('/api/logs', methods=['GET', 'POST'])
@api_auth_required
def api_logs() -> Dict[str, Any] | Tuple[Dict[str, Any], int]:
    if request.method == 'POST':
        try:
            amount = _parse_positive_int(_json_body().get('amount_ml'), 'Amount')
            entry = _store().log_water(g.user.id, amount)
        except ValueError as exc:
            return {'error': str(exc)}, 400
        return {'log': entry.model_dump(mode='json')}, 201

    try:
        time_range = TimeRange((request.args.get('range') or TimeRange.WEEK.value).lower())
    except ValueError:
        return {'error': "range must be 'week' or 'month'"}, 400
    logs = _store().get_water_logs(g.user.id, time_range)
    return {'range': time_range.value, 'logs': [entry.model_dump(mode='json') for entry in logs]}


@main_bp.route('/api/logs/today')
@api_auth_required
def api_today_logs() -> Dict[str, Any]:
    data = _dashboard_data(g.user)
    return {
        'logs': [entry.model_dump(mode='json') for entry in data['today_logs']],
        'total_ml': data['today_total'],
        'goal_ml': data['goal'].goal_ml,
        'percentage': data['percentage'],
    }


@main_bp.route('/api/chart/weekly')
@api_auth_required
def api_weekly_chart() -> Dict[str, Any]:
    data = _dashboard_data(g.user)
    return {'buckets': [bucket.model_dump(mode='json') for bucket in data['buckets']]}


@main_bp.route('/api/insights')
@api_auth_required
def api_insights() -> Dict[str, Any]:
    insights = _insights()
    if not insights.has_api_key():
        return {'has_api_key': False, 'insight': None}

    store = _store()
    logs = store.get_water_logs(g.user.id, TimeRange.WEEK)
    if not logs:
        return {'has_api_key': True, 'insight': None}

    goal = store.get_daily_goal(g.user.id)
    insight = insights.get_smart_insights(logs, goal.goal_ml)
    return {'has_api_key': True, 'insight': insight.model_dump(mode='json')}


@main_bp.route('/api/quotes')
def api_quotes() -> Dict[str, Any]:
    insights = _insights()
    has_api_key = insights.has_api_key()
    quotes = insights.get_motivational_quotes() if has_api_key else []
    return {'has_api_key': has_api_key, 'quotes': quotes}


@main_bp.route('/api/api-key', methods=['POST'])
def api_save_api_key() -> Tuple[Dict[str, Any], int]:
    try:
        _insights().set_api_key(_json_body().get('api_key', ''))
    except ValueError as exc:
        return {'error': str(exc)}, 400
    return {'has_api_key': True}, 200
