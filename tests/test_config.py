import json
import unittest
from datetime import timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

from rechargewin.config import DEFAULT_PRIZE_STRUCTURE, Settings, load_settings
from rechargewin.errors import ConfigError
from rechargewin.models import DrawType


class LoadSettingsTestCase(unittest.TestCase):
    def test_defaults(self):
        settings = load_settings({})

        self.assertEqual(settings, Settings())
        self.assertIsNone(settings.db_url)
        self.assertEqual(settings.gateway_order, ["MTN", "KODOBE"])
        self.assertTrue(settings.sms_mock)
        self.assertIs(settings.tz(), timezone.utc)
        self.assertEqual(settings.lookback[DrawType.SATURDAY], timedelta(days=7))
        self.assertEqual(settings.prize_structure, DEFAULT_PRIZE_STRUCTURE)
        self.assertEqual(settings.point_rules().award(250), 2)
        self.assertEqual(settings.digits_policy().for_day("MON"), {0, 1})

    def test_overrides(self):
        env = {
            "DB_URL": "sqlite:///./rw.db",
            "SERVER_PORT": "8080",
            "DEFAULT_DIGITS_BY_WEEKDAY": '{"monday": [1], "sunday": [7, 8]}',
            "PRIZE_STRUCTURE_DAILY": '[{"rank": 1, "name": "Cash", "amount": 5000, "quantity": 3}]',
            "LOOKBACK_HOURS_DAILY": "48",
            "POINT_BANDS": '[{"minimum": 50, "points": 1}]',
            "SMS_PRIMARY_GATEWAY": "kodobe",
            "SMS_FALLBACK_GATEWAY": "",
            "SMS_MOCK": "false",
            "SMS_TEMPLATES": '{"winner": "You won {prizeName}!"}',
            "NOTIFICATION_MAX_ATTEMPTS": "5",
            "DEFAULT_COUNTRY_CODE": "+233",
            "LOG_LEVEL": "debug",
        }

        settings = load_settings(env)

        self.assertEqual(settings.db_url, "sqlite:///./rw.db")
        self.assertEqual(settings.server_port, 8080)
        policy = settings.digits_policy()
        self.assertEqual(policy.for_day("MONDAY"), {1})
        self.assertEqual(policy.for_day("SUNDAY"), {7, 8})
        self.assertEqual(policy.for_day("TUESDAY"), frozenset())
        self.assertEqual(settings.prize_structure[DrawType.DAILY][0].quantity, 3)
        self.assertEqual(
            settings.prize_structure[DrawType.SATURDAY], DEFAULT_PRIZE_STRUCTURE[DrawType.SATURDAY]
        )
        self.assertEqual(settings.lookback[DrawType.DAILY], timedelta(hours=48))
        self.assertEqual(settings.point_rules().award(Decimal("75")), 1)
        self.assertEqual(settings.gateway_order, ["KODOBE"])
        self.assertFalse(settings.sms_mock)
        self.assertEqual(
            settings.templates().render("winner", prizeName="Cash"), "You won Cash!"
        )
        self.assertEqual(settings.notification_max_attempts, 5)
        self.assertEqual(settings.default_country_code, "233")
        self.assertEqual(settings.log_level, "DEBUG")

    def test_finer_point_table_override(self):
        bands = [(100, 1), (200, 2), (300, 3), (400, 4), (500, 5), (1000, 10)]
        env = {
            "POINT_BANDS": json.dumps([{"minimum": m, "points": p} for m, p in bands]),
        }

        rules = load_settings(env).point_rules()

        self.assertEqual(rules.award(300), 3)
        self.assertEqual(rules.award(450), 4)
        self.assertEqual(load_settings({}).point_rules().award(450), 2)

    def test_invalid_values(self):
        invalid = [
            {"SERVER_PORT": "http"},
            {"SERVER_PORT": "0"},
            {"SMS_MOCK": "maybe"},
            {"SMS_TIMEOUT_SECONDS": "0"},
            {"DRAW_DEADLINE_BASE_SECONDS": "-1"},
            {"DRAW_TIMEZONE": "Mars/Olympus"},
            {"LOG_LEVEL": "LOUD"},
            {"DEFAULT_COUNTRY_CODE": "NG"},
            {"DEFAULT_DIGITS_BY_WEEKDAY": "{not json"},
            {"DEFAULT_DIGITS_BY_WEEKDAY": '{"FUNDAY": [1]}'},
            {"DEFAULT_DIGITS_BY_WEEKDAY": '{"MONDAY": [10]}'},
            {"PRIZE_STRUCTURE_DAILY": "[]"},
            {"PRIZE_STRUCTURE_SATURDAY": '[{"rank": 1}]'},
            {"PRIZE_STRUCTURE_SATURDAY": "[[1, 2]]"},
            {"LOOKBACK_HOURS_SATURDAY": "0"},
            {"POINT_BANDS": '[{"minimum": 100, "points": 2}, {"minimum": 200, "points": 1}]'},
            {"SMS_TEMPLATES": '{"winner": ""}'},
            {"NOTIFICATION_MAX_ATTEMPTS": "0"},
        ]
        for env in invalid:
            with self.subTest(env=env):
                with self.assertRaises(ConfigError):
                    load_settings(env)

    @patch("rechargewin.config.load_dotenv")
    def test_reads_process_environment(self, mock_load_dotenv):
        with patch.dict("os.environ", {"SERVER_PORT": "5000", "DRAW_TIMEZONE": "UTC"}, clear=True):
            settings = load_settings()
        mock_load_dotenv.assert_called_once()
        self.assertEqual(settings.server_port, 5000)


if __name__ == "__main__":
    unittest.main()
