"""Hydration records over a JSON key-value storage.

The store keeps five collections under fixed keys (users, goals, water logs,
behaviour stats and the current session), each a JSON array except the
session, which is a single object. Storage, clock and local time zone are
injected so tests can pin "now" and swap the backend.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from pydantic import ValidationError
from werkzeug.security import check_password_hash, generate_password_hash

from ..schemas import (
    DEFAULT_CONSISTENCY_SCORE,
    DEFAULT_GOAL_ML,
    DEFAULT_REMINDER_MINUTES,
    AuthSession,
    DailyGoal,
    TimeRange,
    User,
    UserBehaviorStats,
    WaterLog,
)
from ..utils.auth import DuplicateUserError, InvalidCredentialsError, issue_session_token
from .storage_service import KeyValueStorage

logger = logging.getLogger(__name__)

USERS_KEY = 'aquadaily_users'
LOGS_KEY = 'aquadaily_logs'
GOALS_KEY = 'aquadaily_goals'
STATS_KEY = 'aquadaily_stats'
SESSION_KEY = 'aquadaily_session'
CREDENTIALS_KEY = 'aquadaily_credentials'

COLLECTION_KEYS = (USERS_KEY, LOGS_KEY, GOALS_KEY, STATS_KEY)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _text(value: Any, label: str) -> str:
    if value is None:
        return ''
    if not isinstance(value, str):
        raise ValueError(f'{label} must be text.')
    return value


def _positive_int(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f'{label} must be a positive whole number of millilitres.')
    return value


class HydrationStore:
    """Create/read/update operations for hydration records, keyed by user id."""

    def __init__(
        self,
        storage: KeyValueStorage,
        token_secret: str,
        *,
        now: Callable[[], datetime] = _utc_now,
        tz: Optional[tzinfo] = None,
        session_lifetime: timedelta = timedelta(days=14),
    ) -> None:
        self._storage = storage
        self._token_secret = token_secret
        self._now = now
        self._tz = tz
        self._session_lifetime = session_lifetime

    def seed(self) -> None:
        """Write empty collections for any key that has never been stored."""

        for key in COLLECTION_KEYS:
            if self._storage.read_json(key) is None:
                self._storage.write_json(key, [])

    # --- Auth -------------------------------------------------------------

    def register(self, email: str, password: str, name: str) -> AuthSession:
        email = _text(email, 'Email').strip()
        password = _text(password, 'Password')
        if not email:
            raise ValueError('Email is required.')

        users = self._load(USERS_KEY)
        if self._find_user_row(users, email) is not None:
            logger.info('auth.register.duplicate')
            raise DuplicateUserError()

        now = self._now()
        user = User(id=str(uuid4()), email=email, name=_text(name, 'Name').strip(), created_at=now)
        goal = DailyGoal(
            user_id=user.id,
            goal_ml=DEFAULT_GOAL_ML,
            reminder_frequency=DEFAULT_REMINDER_MINUTES,
            updated_at=now,
        )
        stats = UserBehaviorStats(
            user_id=user.id,
            streak_days=0,
            average_daily_intake=0,
            last_logged_at=now,
            consistency_score=DEFAULT_CONSISTENCY_SCORE,
        )

        users.append(user.model_dump(mode='json'))
        self._storage.write_json(USERS_KEY, users)

        goals = self._load(GOALS_KEY)
        goals.append(goal.model_dump(mode='json'))
        self._storage.write_json(GOALS_KEY, goals)

        stats_rows = self._load(STATS_KEY)
        stats_rows.append(stats.model_dump(mode='json'))
        self._storage.write_json(STATS_KEY, stats_rows)

        credentials = self._load_credentials()
        credentials[user.id] = generate_password_hash(password)
        self._storage.write_json(CREDENTIALS_KEY, credentials)

        logger.info('auth.register.success', extra={'user_id': user.id})
        return self._start_session(user)

    def login(self, email: str, password: str) -> AuthSession:
        email = _text(email, 'Email').strip()
        password = _text(password, 'Password')
        row = self._find_user_row(self._load(USERS_KEY), email)
        if row is None:
            logger.info('auth.login.unknown_email')
            raise InvalidCredentialsError()
        user = User.model_validate(row)

        stored_hash = self._load_credentials().get(user.id)
        if stored_hash is None:
            # Accounts written without a credential row cannot be verified.
            logger.warning('auth.login.unverified_account', extra={'user_id': user.id})
        elif not check_password_hash(stored_hash, password):
            logger.info('auth.login.bad_password', extra={'user_id': user.id})
            raise InvalidCredentialsError()

        logger.info('auth.login.success', extra={'user_id': user.id})
        return self._start_session(user)

    def logout(self) -> None:
        self._storage.remove(SESSION_KEY)

    def get_session(self) -> Optional[AuthSession]:
        raw = self._storage.read_json(SESSION_KEY)
        if not isinstance(raw, dict):
            return None
        try:
            session = AuthSession.model_validate(raw)
        except ValidationError:
            logger.warning('Discarding malformed stored session')
            self._storage.remove(SESSION_KEY)
            return None

        if self.get_user(session.user.id) is None:
            logger.warning('session.orphaned', extra={'user_id': session.user.id})
            self._storage.remove(SESSION_KEY)
            return None
        return session

    def get_user(self, user_id: str) -> Optional[User]:
        for row in self._load(USERS_KEY):
            if row.get('id') == user_id:
                return User.model_validate(row)
        return None

    # --- Goals ------------------------------------------------------------

    def get_daily_goal(self, user_id: str) -> DailyGoal:
        for row in self._load(GOALS_KEY):
            if row.get('user_id') == user_id:
                return DailyGoal.model_validate(row)
        return DailyGoal(
            user_id=user_id,
            goal_ml=DEFAULT_GOAL_ML,
            reminder_frequency=DEFAULT_REMINDER_MINUTES,
            updated_at=self._now(),
        )

    def update_daily_goal(self, user_id: str, goal_ml: int) -> DailyGoal:
        goal = DailyGoal(
            user_id=user_id,
            goal_ml=_positive_int(goal_ml, 'Daily goal'),
            reminder_frequency=DEFAULT_REMINDER_MINUTES,
            updated_at=self._now(),
        )
        goals = [row for row in self._load(GOALS_KEY) if row.get('user_id') != user_id]
        goals.append(goal.model_dump(mode='json'))
        self._storage.write_json(GOALS_KEY, goals)
        logger.info('goal.updated', extra={'user_id': user_id, 'goal_ml': goal.goal_ml})
        return goal

    # --- Water logs -------------------------------------------------------

    def log_water(self, user_id: str, amount_ml: int) -> WaterLog:
        now = self._now()
        entry = WaterLog(
            id=str(uuid4()),
            user_id=user_id,
            amount_ml=_positive_int(amount_ml, 'Amount'),
            created_at=now,
        )
        logs = self._load(LOGS_KEY)
        logs.append(entry.model_dump(mode='json'))
        self._storage.write_json(LOGS_KEY, logs)

        stats_rows = self._load(STATS_KEY)
        for index, row in enumerate(stats_rows):
            if row.get('user_id') == user_id:
                # streak_days and average_daily_intake are not recomputed here.
                stats = UserBehaviorStats.model_validate(row).model_copy(update={'last_logged_at': now})
                stats_rows[index] = stats.model_dump(mode='json')
                self._storage.write_json(STATS_KEY, stats_rows)
                break

        logger.info('water.logged', extra={'user_id': user_id, 'amount_ml': entry.amount_ml})
        return entry

    def get_water_logs(self, user_id: str, time_range: TimeRange = TimeRange.WEEK) -> List[WaterLog]:
        # Calendar days in the local zone, not multiples of 24 hours.
        since = self._now().astimezone(self._tz) - timedelta(days=TimeRange(time_range).days)
        entries = [
            entry
            for entry in self._water_logs_for(user_id)
            if entry.created_at >= since
        ]
        return sorted(entries, key=lambda entry: entry.created_at)

    def get_today_logs(self, user_id: str) -> List[WaterLog]:
        today = self.local_today()
        return [
            entry
            for entry in self.get_water_logs(user_id, TimeRange.WEEK)
            if self.local_date(entry.created_at) == today
        ]

    def get_behavior_stats(self, user_id: str) -> Optional[UserBehaviorStats]:
        for row in self._load(STATS_KEY):
            if row.get('user_id') == user_id:
                return UserBehaviorStats.model_validate(row)
        return None

    # --- Calendar helpers -------------------------------------------------

    @property
    def tz(self) -> Optional[tzinfo]:
        return self._tz

    def local_date(self, moment: datetime) -> date:
        return moment.astimezone(self._tz).date()

    def local_today(self) -> date:
        return self.local_date(self._now())

    # --- Internals --------------------------------------------------------

    def _start_session(self, user: User) -> AuthSession:
        token = issue_session_token(
            user.id,
            self._token_secret,
            lifetime=self._session_lifetime,
            now=self._now(),
        )
        session = AuthSession(user=user, token=token)
        self._storage.write_json(SESSION_KEY, session.model_dump(mode='json'))
        return session

    def _load(self, key: str) -> List[Dict[str, Any]]:
        data = self._storage.read_json(key)
        if isinstance(data, list):
            return [item for item in data if isinstance(item, dict)]
        return []

    def _load_credentials(self) -> Dict[str, str]:
        data = self._storage.read_json(CREDENTIALS_KEY)
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _find_user_row(users: List[Dict[str, Any]], email: str) -> Optional[Dict[str, Any]]:
        wanted = email.lower()
        for row in users:
            if str(row.get('email', '')).lower() == wanted:
                return row
        return None

    def _water_logs_for(self, user_id: str) -> List[WaterLog]:
        entries: List[WaterLog] = []
        for row in self._load(LOGS_KEY):
            if row.get('user_id') != user_id:
                continue
            try:
                entries.append(WaterLog.model_validate(row))
            except ValidationError:
                logger.warning('Skipping malformed water log %s', row.get('id'))
        return entries
