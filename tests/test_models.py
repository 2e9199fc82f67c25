import unittest
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import create_engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from rechargewin.models import (
    Base,
    BlacklistEntry,
    Draw,
    DrawStatus,
    DrawType,
    DrawWinner,
    NotificationJob,
    NotificationStatus,
    Subscriber,
    TopUp,
)

TUESDAY = date(2024, 6, 4)
NOW = datetime(2024, 6, 4, 12, 0, tzinfo=timezone.utc)


def make_draw(status: str = DrawStatus.SCHEDULED, draw_type: str = DrawType.DAILY) -> Draw:
    return Draw(
        draw_date=TUESDAY,
        draw_type=draw_type,
        eligible_digits=[2, 3],
        lookback_seconds=86400,
        prize_structure=[{"rank": 1, "name": "Jackpot", "amount": 100, "quantity": 2}],
        status=status,
    )


class DBTestCase(unittest.TestCase):
    def setUp(self):
        # In-memory SQLite for isolation
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(
            bind=self.engine, future=True, expire_on_commit=False
        )

    def tearDown(self):
        self.engine.dispose()

    def test_subscriber_derives_last_digit(self):
        with self.Session.begin() as session:
            session.add(Subscriber("2348031234567"))
        with self.Session() as session:
            subscriber = Subscriber.get_by_msisdn(session, "2348031234567")
            self.assertEqual(subscriber.last_digit, 7)
            self.assertFalse(subscriber.opt_in_status)
            self.assertEqual(subscriber.points, 0)
            self.assertEqual(subscriber.version, 1)

    def test_get_opted_in(self):
        with self.Session.begin() as session:
            session.add_all(
                [
                    Subscriber("2348031234562", opt_in_status=True, opt_in_date=NOW),
                    Subscriber("2348031234561", opt_in_status=True, opt_in_date=NOW),
                    Subscriber("2348031234560"),
                ]
            )
        with self.Session() as session:
            numbers = [s.msisdn for s in Subscriber.get_opted_in(session)]
        self.assertEqual(numbers, ["2348031234561", "2348031234562"])

    def test_subscriber_version_detects_lost_update(self):
        with self.Session.begin() as session:
            session.add(Subscriber("2348031234562"))
        with self.Session() as session:
            stale = Subscriber.get_by_msisdn(session, "2348031234562")

        with self.Session.begin() as session:
            fresh = Subscriber.get_by_msisdn(session, "2348031234562")
            fresh.points = 5

        with self.assertRaises(StaleDataError):
            with self.Session.begin() as session:
                session.add(stale)
                stale.points = 1

    def test_topups_by_msisdn(self):
        with self.Session.begin() as session:
            session.add(Subscriber("2348031234562"))
            session.add_all(
                [
                    TopUp(msisdn="2348031234562", amount=Decimal("200"), awarded_points=2,
                          timestamp=NOW),
                    TopUp(msisdn="2348031234562", amount=Decimal("100.50"), awarded_points=1,
                          timestamp=datetime(2024, 6, 4, 8, 0, tzinfo=timezone.utc)),
                ]
            )
        with self.Session() as session:
            topups = TopUp.for_msisdn(session, "2348031234562")
            self.assertEqual([t.amount for t in topups], [Decimal("100.50"), Decimal("200")])
            subscriber = Subscriber.get_by_msisdn(session, "2348031234562")
            self.assertEqual(len(subscriber.topups), 2)

    def test_blacklist_msisdn_is_unique(self):
        with self.Session.begin() as session:
            session.add(BlacklistEntry(msisdn="2348031234562", reason="fraud"))
        with self.assertRaises(IntegrityError):
            with self.Session.begin() as session:
                session.add(BlacklistEntry(msisdn="2348031234562"))

    def test_one_live_draw_per_date_and_type(self):
        with self.Session.begin() as session:
            session.add(make_draw(DrawStatus.FAILED))
            session.add(make_draw(DrawStatus.FAILED))
            session.add(make_draw())
            session.add(make_draw(draw_type=DrawType.SATURDAY))
        with self.assertRaises(IntegrityError):
            with self.Session.begin() as session:
                session.add(make_draw(DrawStatus.COMPLETED))
        with self.Session() as session:
            self.assertIsNotNone(Draw.get_active(session, TUESDAY, DrawType.DAILY))
            self.assertEqual(make_draw().total_prize_slots, 2)

    def test_winner_msisdn_unique_per_draw(self):
        with self.Session.begin() as session:
            draw = make_draw(DrawStatus.RUNNING)
            session.add(draw)
            session.flush()
            draw_id = draw.id
        with self.assertRaises(IntegrityError):
            with self.Session.begin() as session:
                for position in (1, 2):
                    session.add(
                        DrawWinner(
                            draw_id=draw_id,
                            position=position,
                            msisdn="2348031234562",
                            rank=1,
                            prize_name="Jackpot",
                            prize_amount=100,
                            picked_at=NOW,
                        )
                    )

    def test_due_notification_jobs(self):
        with self.Session.begin() as session:
            pending = NotificationJob(correlation_id="1-1-1", msisdn="2348031234562", body="a")
            retry = NotificationJob(correlation_id="1-1-2", msisdn="2348031234563", body="b")
            exhausted = NotificationJob(correlation_id="1-1-3", msisdn="2348031234564", body="c")
            sent = NotificationJob(correlation_id="1-1-4", msisdn="2348031234565", body="d")
            retry.status, retry.attempts = NotificationStatus.FAILED, 1
            exhausted.status, exhausted.attempts = NotificationStatus.FAILED, 3
            sent.status, sent.attempts = NotificationStatus.SENT, 1
            session.add_all([pending, retry, exhausted, sent])
        with self.Session() as session:
            due = NotificationJob.due(session, max_attempts=3, limit=10)
            self.assertEqual([job.correlation_id for job in due], ["1-1-1", "1-1-2"])
            self.assertEqual(len(NotificationJob.due(session, max_attempts=3, limit=1)), 1)
            self.assertIsNotNone(NotificationJob.get_by_correlation_id(session, "1-1-4"))


if __name__ == "__main__":
    unittest.main()
