import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from rechargewin.draw_engine.ledger import TopUpLedger
from rechargewin.draw_engine.point_rules import PointRules
from rechargewin.draw_engine.registry import SubscriberRegistry
from rechargewin.errors import InvalidInput, StorageUnavailable
from rechargewin.models import Base, OptInPeriod, Subscriber, TopUp

T0 = datetime(2024, 6, 4, 9, 0, tzinfo=timezone.utc)


class LedgerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, future=True, expire_on_commit=False)
        self.ledger = TopUpLedger(self.Session, PointRules())
        self.registry = SubscriberRegistry(self.Session)

    def tearDown(self) -> None:
        self.engine.dispose()


class TopUpLedgerTests(LedgerTestCase):
    def test_record_creates_opted_out_subscriber(self) -> None:
        topup = self.ledger.record("08031234562", 150, T0, provider_txn_id="TX1", channel="USSD")

        self.assertIsNotNone(topup.id)
        self.assertEqual(topup.msisdn, "2348031234562")
        self.assertEqual(topup.awarded_points, 1)
        self.assertEqual(topup.amount, Decimal("150"))

        subscriber = self.registry.get("2348031234562")
        self.assertIsNotNone(subscriber)
        self.assertFalse(subscriber.opt_in_status)
        self.assertEqual(subscriber.points, 1)
        self.assertEqual(subscriber.last_digit, 2)

    def test_points_accumulate_and_never_decrease(self) -> None:
        history = []
        for amount in (150, 50, 250, 1000, 99, 500):
            self.ledger.record("2348031234562", amount, T0)
            history.append(self.registry.get("2348031234562").points)
        self.assertEqual(history, [1, 1, 3, 13, 13, 18])
        self.assertEqual(history, sorted(history))

    def test_awarded_points_are_frozen(self) -> None:
        self.ledger.record("2348031234562", 1000, T0)
        cheaper = TopUpLedger(self.Session, PointRules([]))
        cheaper.record("2348031234562", 1000, T0 + timedelta(hours=1))
        points = [t.awarded_points for t in self.ledger.list_for_msisdn("2348031234562")]
        self.assertEqual(points, [10, 0])

    def test_rejects_invalid_input(self) -> None:
        with self.assertRaises(InvalidInput):
            self.ledger.record("2348031234562", 0, T0)
        with self.assertRaises(InvalidInput):
            self.ledger.record("2348031234562", -100, T0)
        with self.assertRaises(InvalidInput):
            self.ledger.record("not-a-number", 100, T0)
        with self.assertRaises(InvalidInput):
            self.ledger.record("2348031234562", 100, "2024-06-04")
        self.assertEqual(self.ledger.count(), 0)

    def test_float_amounts_are_recorded(self) -> None:
        topup = self.ledger.record("2348031234562", 150.0, T0)
        self.assertEqual(topup.amount, Decimal("150.0"))
        self.assertEqual(topup.awarded_points, 1)
        self.assertEqual(self.registry.get("2348031234562").points, 1)

    def test_duplicate_provider_reference_is_kept(self) -> None:
        self.ledger.record("2348031234562", 100, T0, provider_txn_id="TX1")
        self.ledger.record("2348031234562", 100, T0, provider_txn_id="TX1")
        self.assertEqual(self.ledger.count("2348031234562"), 2)

    def test_timestamps_are_stored_in_utc(self) -> None:
        lagos = timezone(timedelta(hours=1))
        self.ledger.record("2348031234562", 100, datetime(2024, 6, 4, 10, 0, tzinfo=lagos))
        with self.Session() as session:
            stored = session.scalar(select(TopUp))
        self.assertEqual(stored.timestamp.replace(tzinfo=None), datetime(2024, 6, 4, 9, 0))

    def test_list_between_is_half_open(self) -> None:
        self.ledger.record("2348031234562", 100, T0)
        self.ledger.record("2348031234563", 100, T0 + timedelta(hours=1))
        self.ledger.record("2348031234564", 100, T0 + timedelta(hours=2))
        rows = self.ledger.list_between(T0, T0 + timedelta(hours=2))
        self.assertEqual([r.msisdn for r in rows], ["2348031234562", "2348031234563"])

    def test_conflicts_are_retried(self) -> None:
        original = self.ledger._write
        calls = []

        def flaky(*args):
            calls.append(args)
            if len(calls) == 1:
                raise StaleDataError("subscriber row changed")
            return original(*args)

        with patch.object(self.ledger, "_write", side_effect=flaky):
            self.ledger.record("2348031234562", 200, T0)
        self.assertEqual(len(calls), 2)
        self.assertEqual(self.registry.get("2348031234562").points, 2)

    def test_persistent_conflicts_raise_storage_unavailable(self) -> None:
        with patch.object(self.ledger, "_write", side_effect=StaleDataError("busy")):
            with self.assertRaises(StorageUnavailable):
                self.ledger.record("2348031234562", 200, T0)


class SubscriberRegistryTests(LedgerTestCase):
    def test_opt_in_creates_subscriber(self) -> None:
        subscriber = self.registry.opt_in("+234 803 123 4562", at=T0, channel="SMS")
        self.assertTrue(subscriber.opt_in_status)
        self.assertEqual(subscriber.opt_in_channel, "SMS")
        self.assertEqual(self.registry.count(), 1)
        self.assertEqual(self.registry.count(opted_in=True), 1)

    def test_opt_in_twice_keeps_first_date(self) -> None:
        self.registry.opt_in("2348031234562", at=T0)
        self.registry.opt_in("2348031234562", at=T0 + timedelta(days=1))
        subscriber = self.registry.get("2348031234562")
        self.assertEqual(subscriber.opt_in_date.replace(tzinfo=None), T0.replace(tzinfo=None))

    def test_opt_out_and_back_in(self) -> None:
        self.registry.opt_in("2348031234562", at=T0)
        out = self.registry.opt_out("2348031234562", at=T0 + timedelta(days=1))
        self.assertFalse(out.opt_in_status)
        self.assertEqual(self.registry.count(opted_in=False), 1)

        back = self.registry.opt_in("2348031234562", at=T0 + timedelta(days=2))
        self.assertTrue(back.opt_in_status)
        self.assertEqual(
            back.opt_in_date.replace(tzinfo=None), datetime(2024, 6, 6, 9, 0)
        )

    def test_opt_in_history_is_kept(self) -> None:
        self.registry.opt_in("2348031234562", at=T0, channel="SMS")
        self.registry.opt_in("2348031234562", at=T0 + timedelta(hours=1))
        self.registry.opt_out("2348031234562", at=T0 + timedelta(days=1))
        self.registry.opt_in("2348031234562", at=T0 + timedelta(days=2), channel="USSD")

        with self.Session() as session:
            periods = session.scalars(
                select(OptInPeriod).order_by(OptInPeriod.opted_in_at)
            ).all()
            spans = [
                (
                    p.opted_in_at.replace(tzinfo=None),
                    p.opted_out_at.replace(tzinfo=None) if p.opted_out_at else None,
                    p.channel,
                )
                for p in periods
            ]
        self.assertEqual(
            spans,
            [
                (datetime(2024, 6, 4, 9, 0), datetime(2024, 6, 5, 9, 0), "SMS"),
                (datetime(2024, 6, 6, 9, 0), None, "USSD"),
            ],
        )

    def test_opt_in_after_topup_keeps_points(self) -> None:
        self.ledger.record("2348031234562", 500, T0)
        subscriber = self.registry.opt_in("2348031234562", at=T0 + timedelta(hours=1))
        self.assertEqual(subscriber.points, 5)
        self.assertTrue(subscriber.opt_in_status)

    def test_reset_points(self) -> None:
        self.ledger.record("2348031234562", 500, T0)
        self.assertEqual(self.registry.reset_points("2348031234562").points, 0)
        with self.assertRaises(InvalidInput):
            self.registry.reset_points("2348039999999")

    def test_get_unknown_returns_none(self) -> None:
        self.assertIsNone(self.registry.get("2348039999999"))

    def test_blacklist_round_trip(self) -> None:
        self.assertFalse(self.registry.is_blacklisted("2348031234562"))
        entry = self.registry.blacklist("08031234562", reason="fraud", created_by="ops")
        self.assertEqual(entry.msisdn, "2348031234562")
        self.assertTrue(self.registry.is_blacklisted("+2348031234562"))

        again = self.registry.blacklist("2348031234562", reason="dup")
        self.assertEqual(again.id, entry.id)
        self.assertEqual(again.reason, "fraud")

        self.assertTrue(self.registry.unblacklist("2348031234562"))
        self.assertFalse(self.registry.unblacklist("2348031234562"))
        self.assertFalse(self.registry.is_blacklisted("2348031234562"))

    def test_subscriber_requires_trailing_digit(self) -> None:
        with self.assertRaises(ValueError):
            Subscriber("234803123456X")


if __name__ == "__main__":
    unittest.main()
