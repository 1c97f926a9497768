from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from unittest import TestCase
from zoneinfo import ZoneInfo

from aquadaily.schemas import TimeRange
from aquadaily.services.charts import progress_percentage, total_amount
from aquadaily.services.hydration_store import (
    CREDENTIALS_KEY,
    GOALS_KEY,
    LOGS_KEY,
    SESSION_KEY,
    STATS_KEY,
    USERS_KEY,
    HydrationStore,
)
from aquadaily.services.storage_service import MemoryStorage
from aquadaily.utils.auth import DuplicateUserError, InvalidCredentialsError, decode_session_token


class _Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now


class HydrationStoreTestCase(TestCase):
    secret = "store-secret"

    def setUp(self) -> None:
        self.storage = MemoryStorage()
        self.clock = _Clock(datetime(2024, 5, 20, 12, 0, tzinfo=timezone.utc))
        self.store = HydrationStore(self.storage, self.secret, now=self.clock, tz=timezone.utc)
        self.store.seed()


class RegistrationTests(HydrationStoreTestCase):
    def test_seed_creates_empty_collections(self) -> None:
        for key in (USERS_KEY, LOGS_KEY, GOALS_KEY, STATS_KEY):
            self.assertEqual([], self.storage.read_json(key))
        self.assertIsNone(self.storage.read_json(SESSION_KEY))

    def test_register_creates_user_goal_stats_and_session(self) -> None:
        auth = self.store.register("ana@example.com", "pw-123", "Ana")

        users = self.storage.read_json(USERS_KEY)
        self.assertEqual(1, len(users))
        self.assertEqual("ana@example.com", users[0]["email"])
        self.assertEqual(auth.user.id, users[0]["id"])

        goal = self.store.get_daily_goal(auth.user.id)
        self.assertEqual(2000, goal.goal_ml)
        self.assertEqual(120, goal.reminder_frequency)
        self.assertEqual(1, len(self.storage.read_json(GOALS_KEY)))

        stats = self.store.get_behavior_stats(auth.user.id)
        self.assertIsNotNone(stats)
        self.assertEqual(0, stats.streak_days)
        self.assertEqual(50, stats.consistency_score)

        session = self.store.get_session()
        self.assertIsNotNone(session)
        self.assertEqual(auth.user.id, session.user.id)
        self.assertEqual(auth.token, session.token)

    def test_session_token_identifies_user(self) -> None:
        self.clock.now = datetime.now(timezone.utc)
        auth = self.store.register("ana@example.com", "pw-123", "Ana")
        payload = decode_session_token(auth.token, self.secret)
        self.assertEqual(auth.user.id, payload["sub"])

    def test_duplicate_email_is_rejected_and_users_unchanged(self) -> None:
        self.store.register("ana@example.com", "pw-123", "Ana")
        before = self.storage.read_json(USERS_KEY)

        with self.assertRaises(DuplicateUserError) as ctx:
            self.store.register("ana@example.com", "other", "Someone Else")

        self.assertEqual(409, ctx.exception.status_code)
        self.assertEqual(before, self.storage.read_json(USERS_KEY))

    def test_duplicate_check_ignores_email_case(self) -> None:
        self.store.register("ana@example.com", "pw-123", "Ana")
        with self.assertRaises(DuplicateUserError):
            self.store.register("ANA@example.com", "pw-123", "Ana")

    def test_password_is_never_stored_in_plain_text(self) -> None:
        auth = self.store.register("ana@example.com", "pw-123", "Ana")
        credentials = self.storage.read_json(CREDENTIALS_KEY)
        self.assertIn(auth.user.id, credentials)
        self.assertNotEqual("pw-123", credentials[auth.user.id])
        self.assertNotIn("password", self.storage.read_json(USERS_KEY)[0])

    def test_register_requires_email(self) -> None:
        with self.assertRaises(ValueError):
            self.store.register("  ", "pw", "Nobody")

    def test_non_text_fields_are_rejected(self) -> None:
        for email, password, name in ((123, "pw", "Ana"), ("ana@example.com", 5, "Ana"), ("ana@example.com", "pw", 7)):
            with self.assertRaises(ValueError):
                self.store.register(email, password, name)
        with self.assertRaises(ValueError):
            self.store.login(["ana@example.com"], "pw")
        self.assertEqual([], self.storage.read_json(USERS_KEY))
        self.assertIsNone(self.storage.read_json(CREDENTIALS_KEY))


class LoginTests(HydrationStoreTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.user = self.store.register("ana@example.com", "pw-123", "Ana").user
        self.store.logout()

    def test_login_with_correct_password_sets_session(self) -> None:
        auth = self.store.login("ana@example.com", "pw-123")
        self.assertEqual(self.user.id, auth.user.id)
        self.assertEqual(self.user.id, self.store.get_session().user.id)

    def test_unknown_email_is_invalid(self) -> None:
        with self.assertRaises(InvalidCredentialsError):
            self.store.login("nobody@example.com", "pw-123")
        self.assertIsNone(self.store.get_session())

    def test_wrong_password_is_invalid(self) -> None:
        with self.assertRaises(InvalidCredentialsError):
            self.store.login("ana@example.com", "wrong")

    def test_account_without_credential_row_still_logs_in(self) -> None:
        self.storage.remove(CREDENTIALS_KEY)
        with self.assertLogs("aquadaily.services.hydration_store", level="WARNING"):
            auth = self.store.login("ana@example.com", "anything")
        self.assertEqual(self.user.id, auth.user.id)

    def test_logout_clears_session(self) -> None:
        self.store.login("ana@example.com", "pw-123")
        self.store.logout()
        self.assertIsNone(self.store.get_session())
        self.assertIsNone(self.storage.read_json(SESSION_KEY))

    def test_session_for_missing_user_is_discarded(self) -> None:
        self.store.login("ana@example.com", "pw-123")
        self.storage.write_json(USERS_KEY, [])
        self.assertIsNone(self.store.get_session())
        self.assertIsNone(self.storage.read_json(SESSION_KEY))


class DailyGoalTests(HydrationStoreTestCase):
    def test_default_goal_is_not_persisted(self) -> None:
        goal = self.store.get_daily_goal("ghost")
        self.assertEqual(2000, goal.goal_ml)
        self.assertEqual([], self.storage.read_json(GOALS_KEY))

    def test_update_keeps_exactly_one_row_per_user(self) -> None:
        user = self.store.register("ana@example.com", "pw", "Ana").user
        other = self.store.register("ben@example.com", "pw", "Ben").user

        for goal_ml in (2500, 1800, 3000):
            self.clock.now += timedelta(minutes=5)
            self.store.update_daily_goal(user.id, goal_ml)

        rows = [row for row in self.storage.read_json(GOALS_KEY) if row["user_id"] == user.id]
        self.assertEqual(1, len(rows))
        goal = self.store.get_daily_goal(user.id)
        self.assertEqual(3000, goal.goal_ml)
        self.assertEqual(120, goal.reminder_frequency)
        self.assertEqual(self.clock.now, goal.updated_at)
        self.assertEqual(2000, self.store.get_daily_goal(other.id).goal_ml)

    def test_update_inserts_when_missing(self) -> None:
        goal = self.store.update_daily_goal("ghost", 1500)
        self.assertEqual(1500, goal.goal_ml)
        self.assertEqual(1, len(self.storage.read_json(GOALS_KEY)))

    def test_update_rejects_non_positive_goal(self) -> None:
        for bad in (0, -100, True):
            with self.assertRaises(ValueError):
                self.store.update_daily_goal("ghost", bad)


class WaterLogTests(HydrationStoreTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.user = self.store.register("ana@example.com", "pw", "Ana").user

    def test_today_total_and_percentage(self) -> None:
        self.store.log_water(self.user.id, 200)
        self.clock.now += timedelta(minutes=30)
        self.store.log_water(self.user.id, 300)

        today = self.store.get_today_logs(self.user.id)
        goal = self.store.get_daily_goal(self.user.id)

        self.assertEqual(500, total_amount(today))
        self.assertEqual(min(round(500 / goal.goal_ml * 100), 100), progress_percentage(500, goal.goal_ml))
        self.assertEqual(25, progress_percentage(total_amount(today), goal.goal_ml))

    def test_today_excludes_yesterday_and_other_users(self) -> None:
        other = self.store.register("ben@example.com", "pw", "Ben").user
        self.clock.now = datetime(2024, 5, 19, 23, 30, tzinfo=timezone.utc)
        self.store.log_water(self.user.id, 400)
        self.clock.now = datetime(2024, 5, 20, 0, 15, tzinfo=timezone.utc)
        self.store.log_water(self.user.id, 250)
        self.store.log_water(other.id, 999)

        today = self.store.get_today_logs(self.user.id)
        self.assertEqual([250], [entry.amount_ml for entry in today])

    def test_month_range_boundaries(self) -> None:
        now = self.clock.now
        self.clock.now = now - timedelta(days=31)
        old = self.store.log_water(self.user.id, 100)
        self.clock.now = now - timedelta(days=29)
        recent = self.store.log_water(self.user.id, 200)
        self.clock.now = now

        month_ids = [entry.id for entry in self.store.get_water_logs(self.user.id, TimeRange.MONTH)]
        self.assertNotIn(old.id, month_ids)
        self.assertIn(recent.id, month_ids)

        week_ids = [entry.id for entry in self.store.get_water_logs(self.user.id, TimeRange.WEEK)]
        self.assertEqual([], week_ids)

    def test_range_lower_bound_is_inclusive(self) -> None:
        now = self.clock.now
        self.clock.now = now - timedelta(days=7)
        edge = self.store.log_water(self.user.id, 150)
        self.clock.now = now
        self.assertEqual([edge.id], [entry.id for entry in self.store.get_water_logs(self.user.id)])

    def test_range_counts_local_calendar_days_across_dst(self) -> None:
        store = HydrationStore(self.storage, self.secret, now=self.clock, tz=ZoneInfo("America/New_York"))
        # 2024-03-05 11:30 EST; seven calendar days before 2024-03-12 12:00 EDT is 12:00 EST.
        self.clock.now = datetime(2024, 3, 5, 16, 30, tzinfo=timezone.utc)
        early = store.log_water(self.user.id, 100)
        self.clock.now = datetime(2024, 3, 5, 17, 0, tzinfo=timezone.utc)
        edge = store.log_water(self.user.id, 200)
        self.clock.now = datetime(2024, 3, 12, 16, 0, tzinfo=timezone.utc)

        ids = [entry.id for entry in store.get_water_logs(self.user.id, TimeRange.WEEK)]

        self.assertNotIn(early.id, ids)
        self.assertIn(edge.id, ids)

    def test_logs_are_returned_oldest_first(self) -> None:
        now = self.clock.now
        self.clock.now = now - timedelta(hours=1)
        first = self.store.log_water(self.user.id, 100)
        self.clock.now = now - timedelta(days=2)
        older = self.store.log_water(self.user.id, 100)
        self.clock.now = now

        ids = [entry.id for entry in self.store.get_water_logs(self.user.id, "week")]
        self.assertEqual([older.id, first.id], ids)

    def test_log_water_touches_last_logged_at_only(self) -> None:
        self.clock.now += timedelta(hours=3)
        self.store.log_water(self.user.id, 300)

        stats = self.store.get_behavior_stats(self.user.id)
        self.assertEqual(self.clock.now, stats.last_logged_at)
        self.assertEqual(0, stats.streak_days)
        self.assertEqual(0, stats.average_daily_intake)
        self.assertEqual(50, stats.consistency_score)

    def test_log_water_rejects_non_positive_amounts(self) -> None:
        for bad in (0, -5, 2.5):
            with self.assertRaises(ValueError):
                self.store.log_water(self.user.id, bad)
        self.assertEqual([], self.storage.read_json(LOGS_KEY))

    def test_local_timezone_decides_calendar_day(self) -> None:
        eastern = timezone(timedelta(hours=-5))
        store = HydrationStore(self.storage, self.secret, now=self.clock, tz=eastern)
        # 02:00 UTC on the 20th is still the 19th five hours west.
        self.clock.now = datetime(2024, 5, 20, 2, 0, tzinfo=timezone.utc)
        store.log_water(self.user.id, 300)
        self.clock.now = datetime(2024, 5, 20, 3, 0, tzinfo=timezone.utc)

        self.assertEqual(date(2024, 5, 19), store.local_today())
        self.assertEqual(300, total_amount(store.get_today_logs(self.user.id)))
