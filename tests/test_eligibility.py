import unittest
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from rechargewin.draw_engine.eligibility import (
    DEFAULT_LOOKBACK,
    EligibilitySelector,
    draw_window,
    resolve_timezone,
)
from rechargewin.draw_engine.ledger import TopUpLedger
from rechargewin.draw_engine.point_rules import PointRules
from rechargewin.draw_engine.registry import SubscriberRegistry
from rechargewin.errors import ConfigError, InvalidDrawConfig
from rechargewin.models import Base, DrawType

TUESDAY = date(2024, 6, 4)
DAY = timedelta(days=1)
WINDOW_START = datetime(2024, 6, 4, tzinfo=timezone.utc)
WINDOW_END = datetime(2024, 6, 5, tzinfo=timezone.utc)
NOON = WINDOW_START + timedelta(hours=12)
WAT = timezone(timedelta(hours=1))


class DrawWindowTests(unittest.TestCase):
    def test_daily_window_in_utc(self) -> None:
        self.assertEqual(draw_window(TUESDAY, DAY), (WINDOW_START, WINDOW_END))

    def test_weekly_window(self) -> None:
        start, end = draw_window(date(2024, 6, 8), DEFAULT_LOOKBACK[DrawType.SATURDAY])
        self.assertEqual(start, datetime(2024, 6, 2, tzinfo=timezone.utc))
        self.assertEqual(end, datetime(2024, 6, 9, tzinfo=timezone.utc))

    def test_window_follows_local_midnight(self) -> None:
        start, end = draw_window(TUESDAY, DAY, WAT)
        self.assertEqual(start, datetime(2024, 6, 3, 23, 0, tzinfo=timezone.utc))
        self.assertEqual(end, datetime(2024, 6, 4, 23, 0, tzinfo=timezone.utc))
        self.assertIs(end.tzinfo, timezone.utc)

    def test_non_positive_lookback_is_rejected(self) -> None:
        with self.assertRaises(InvalidDrawConfig):
            draw_window(TUESDAY, timedelta(0))

    def test_resolve_timezone(self) -> None:
        self.assertIs(resolve_timezone(None), timezone.utc)
        self.assertIs(resolve_timezone("utc"), timezone.utc)
        with self.assertRaises(ConfigError):
            resolve_timezone("Not/AZone")


class EligibilitySelectorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, future=True, expire_on_commit=False)
        self.registry = SubscriberRegistry(self.Session)
        self.ledger = TopUpLedger(self.Session, PointRules())
        self.selector = EligibilitySelector(self.Session)

    def tearDown(self) -> None:
        self.engine.dispose()

    def opted_in(self, msisdn: str, at: datetime = WINDOW_START - DAY) -> str:
        self.registry.opt_in(msisdn, at=at)
        return msisdn

    def select(self, digits=(2, 3)):
        return self.selector.select(TUESDAY, digits, DAY)

    def test_counts_qualifying_topups(self) -> None:
        number = self.opted_in("2348031234562")
        self.ledger.record(number, 100, NOON)
        self.ledger.record(number, 200, NOON + timedelta(hours=1))
        self.ledger.record(number, 100, WINDOW_START - timedelta(seconds=1))

        pool = self.select()

        self.assertEqual(pool.candidates, {number: 2})
        self.assertEqual(pool.window_start, WINDOW_START)
        self.assertEqual(pool.window_end, WINDOW_END)
        self.assertTrue(pool)
        self.assertEqual(pool.size, 1)

    def test_window_is_half_open(self) -> None:
        at_start = self.opted_in("2348031234562")
        at_end = self.opted_in("2348031234572")
        self.ledger.record(at_start, 100, WINDOW_START)
        self.ledger.record(at_end, 100, WINDOW_END)

        self.assertEqual(set(self.select().candidates), {at_start})

    def test_last_digit_must_match(self) -> None:
        match = self.opted_in("2348031234563")
        other = self.opted_in("2348031234569")
        self.ledger.record(match, 100, NOON)
        self.ledger.record(other, 100, NOON)

        self.assertEqual(set(self.select().candidates), {match})

    def test_requires_opt_in_at_window_end(self) -> None:
        never = "2348031234562"
        late = self.opted_in("2348031234572", at=WINDOW_END)
        during = self.opted_in("2348031234582", at=NOON + timedelta(hours=2))
        left = self.opted_in("2348031234592")
        for number in (never, late, during, left):
            self.ledger.record(number, 100, NOON)
        self.registry.opt_out(left, at=NOON + timedelta(hours=3))

        # Opting in later in the window still covers earlier top-ups.
        self.assertEqual(set(self.select().candidates), {during})

    def test_opt_out_after_window_keeps_eligibility(self) -> None:
        number = self.opted_in("2348031234562")
        self.ledger.record(number, 100, NOON)
        self.registry.opt_out(number, at=WINDOW_END + timedelta(hours=1))

        self.assertEqual(set(self.select().candidates), {number})

    def test_rejoining_after_window_keeps_eligibility(self) -> None:
        number = self.opted_in("2348031234562", at=datetime(2024, 5, 1, tzinfo=timezone.utc))
        self.ledger.record(number, 100, NOON)
        self.registry.opt_out(number, at=WINDOW_END + timedelta(minutes=1))
        self.registry.opt_in(number, at=WINDOW_END + timedelta(minutes=2))

        self.assertEqual(self.select().candidates, {number: 1})

    def test_consent_is_read_at_window_end(self) -> None:
        back_in_time = self.opted_in("2348031234562")
        too_late = self.opted_in("2348031234563")
        for number in (back_in_time, too_late):
            self.ledger.record(number, 100, NOON)
            self.registry.opt_out(number, at=NOON + timedelta(hours=1))
        self.registry.opt_in(back_in_time, at=NOON + timedelta(hours=2))
        self.registry.opt_in(too_late, at=WINDOW_END + timedelta(hours=1))

        self.assertEqual(set(self.select().candidates), {back_in_time})

    def test_zero_point_topups_do_not_qualify(self) -> None:
        number = self.opted_in("2348031234562")
        self.ledger.record(number, 50, NOON)

        self.assertFalse(self.select())

    def test_blacklisted_subscribers_are_excluded(self) -> None:
        banned = self.opted_in("2348031234562")
        allowed = self.opted_in("2348031234563")
        self.ledger.record(banned, 500, NOON)
        self.ledger.record(allowed, 100, NOON)
        self.registry.blacklist(banned, reason="fraud")

        self.assertEqual(self.select().candidates, {allowed: 1})

    def test_local_timezone_shifts_window(self) -> None:
        number = self.opted_in("2348031234562")
        self.ledger.record(number, 100, datetime(2024, 6, 4, 23, 30, tzinfo=timezone.utc))

        self.assertTrue(self.select())
        shifted = self.selector.select(TUESDAY, (2,), DAY, tz=WAT)
        self.assertFalse(shifted)
        self.assertEqual(shifted.window_end, datetime(2024, 6, 4, 23, 0, tzinfo=timezone.utc))

    def test_invalid_digits(self) -> None:
        with self.assertRaises(InvalidDrawConfig):
            self.select(digits=())
        with self.assertRaises(InvalidDrawConfig):
            self.select(digits=(10,))


if __name__ == "__main__":
    unittest.main()
