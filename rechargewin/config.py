"""Process configuration loaded from the environment (and ``.env``)."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta, tzinfo
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from .draw_engine.digits import DEFAULT_DIGITS_BY_WEEKDAY, DefaultDigitsPolicy
from .draw_engine.eligibility import resolve_timezone
from .draw_engine.messages import DEFAULT_TEMPLATES, MessageTemplates
from .draw_engine.msisdn import DEFAULT_COUNTRY_CODE
from .draw_engine.point_rules import DEFAULT_POINT_BANDS, PointBand, PointRules
from .draw_engine.prizes import Prize, parse_prize_structure
from .errors import ConfigError, InvalidInput
from .models import DrawType

logger = logging.getLogger(__name__)

DEFAULT_PRIZE_STRUCTURE: Mapping[str, tuple[Prize, ...]] = {
    DrawType.DAILY: (
        Prize(1, "Jackpot", 1_000_000, 1),
        Prize(2, "Second Prize", 350_000, 1),
        Prize(3, "Third Prize", 150_000, 1),
        Prize(4, "Consolation", 75_000, 7),
    ),
    DrawType.SATURDAY: (
        Prize(1, "Jackpot", 3_000_000, 1),
        Prize(2, "Second Prize", 1_000_000, 1),
        Prize(3, "Third Prize", 500_000, 1),
        Prize(4, "Consolation", 100_000, 7),
    ),
}
DEFAULT_LOOKBACK_HOURS = {DrawType.DAILY: 24, DrawType.SATURDAY: 24 * 7}
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    """Immutable process settings.

    Built once at startup by :func:`load_settings`; engine collaborators
    receive the pieces they need at construction.
    """

    db_url: Optional[str] = None
    server_port: int = 4000
    jwt_secret: Optional[str] = None
    jwt_expiry_seconds: int = 24 * 60 * 60
    digits_by_weekday: Mapping[str, tuple[int, ...]] = field(
        default_factory=lambda: dict(DEFAULT_DIGITS_BY_WEEKDAY)
    )
    prize_structure: Mapping[str, tuple[Prize, ...]] = field(
        default_factory=lambda: dict(DEFAULT_PRIZE_STRUCTURE)
    )
    lookback: Mapping[str, timedelta] = field(
        default_factory=lambda: {
            draw_type: timedelta(hours=hours)
            for draw_type, hours in DEFAULT_LOOKBACK_HOURS.items()
        }
    )
    point_bands: tuple[PointBand, ...] = DEFAULT_POINT_BANDS
    draw_timezone: str = "UTC"
    sms_primary_gateway: str = "MTN"
    sms_fallback_gateway: Optional[str] = "KODOBE"
    sms_mock: bool = True
    sms_timeout_seconds: float = 30.0
    sms_templates: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_TEMPLATES))
    notification_max_attempts: int = 3
    draw_deadline_base_seconds: float = 30.0
    draw_deadline_per_candidate_seconds: float = 0.001
    default_country_code: str = DEFAULT_COUNTRY_CODE
    log_level: str = "INFO"

    @property
    def gateway_order(self) -> list[str]:
        """Gateway names, primary first, without duplicates."""
        order = [self.sms_primary_gateway]
        if self.sms_fallback_gateway and self.sms_fallback_gateway != self.sms_primary_gateway:
            order.append(self.sms_fallback_gateway)
        return order

    def tz(self) -> tzinfo:
        return resolve_timezone(self.draw_timezone)

    def point_rules(self) -> PointRules:
        return PointRules(self.point_bands)

    def digits_policy(self) -> DefaultDigitsPolicy:
        return DefaultDigitsPolicy(self.digits_by_weekday)

    def templates(self) -> MessageTemplates:
        return MessageTemplates(self.sms_templates)


def _int(env: Mapping[str, str], key: str, default: int, *, minimum: int = 0) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{key} must be >= {minimum}")
    return value


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ConfigError(f"{key} must not be negative")
    return value


def _bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigError(f"{key} must be a boolean, got {raw!r}")


def _json(env: Mapping[str, str], key: str) -> Any:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{key} is not valid JSON: {exc}") from exc


def _digits(env: Mapping[str, str]) -> dict[str, tuple[int, ...]]:
    data = _json(env, "DEFAULT_DIGITS_BY_WEEKDAY")
    if data is None:
        return dict(DEFAULT_DIGITS_BY_WEEKDAY)
    if not isinstance(data, dict) or not all(isinstance(v, list) for v in data.values()):
        raise ConfigError("DEFAULT_DIGITS_BY_WEEKDAY must map weekday names to digit lists")
    mapping = {str(day).upper(): tuple(digits) for day, digits in data.items()}
    # Validates names and digits.
    DefaultDigitsPolicy(mapping)
    return mapping


def _prizes(env: Mapping[str, str], key: str, draw_type: str) -> tuple[Prize, ...]:
    data = _json(env, key)
    if data is None:
        return DEFAULT_PRIZE_STRUCTURE[draw_type]
    if not isinstance(data, list):
        raise ConfigError(f"{key} must be a JSON list of prizes")
    try:
        return parse_prize_structure(data)
    except InvalidInput as exc:
        raise ConfigError(f"{key}: {exc}") from exc


def _point_bands(env: Mapping[str, str]) -> tuple[PointBand, ...]:
    data = _json(env, "POINT_BANDS")
    if data is None:
        return DEFAULT_POINT_BANDS
    if not isinstance(data, list) or not data:
        raise ConfigError("POINT_BANDS must be a non-empty JSON list")
    bands = tuple(PointBand.from_dict(item) for item in data)
    PointRules(bands)
    return bands


def _templates(env: Mapping[str, str]) -> dict[str, str]:
    data = _json(env, "SMS_TEMPLATES")
    templates = dict(DEFAULT_TEMPLATES)
    if data is None:
        return templates
    if not isinstance(data, dict):
        raise ConfigError("SMS_TEMPLATES must be a JSON object of name -> template")
    templates.update(data)
    MessageTemplates(templates)
    return templates


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from ``env`` (defaults to ``os.environ`` after ``.env``).

    Raises
    ------
    ConfigError
        If any variable is malformed.
    """

    if env is None:
        load_dotenv()
        env = os.environ

    log_level = (env.get("LOG_LEVEL") or "INFO").strip().upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")

    draw_timezone = (env.get("DRAW_TIMEZONE") or "UTC").strip()
    resolve_timezone(draw_timezone)

    primary = (env.get("SMS_PRIMARY_GATEWAY") or "MTN").strip().upper()
    fallback = env.get("SMS_FALLBACK_GATEWAY")
    fallback = fallback.strip().upper() if fallback is not None else "KODOBE"

    country_code = (env.get("DEFAULT_COUNTRY_CODE") or DEFAULT_COUNTRY_CODE).strip().lstrip("+")
    if not country_code.isdigit():
        raise ConfigError("DEFAULT_COUNTRY_CODE must be digits")

    settings = Settings(
        db_url=env.get("DB_URL") or None,
        server_port=_int(env, "SERVER_PORT", 4000, minimum=1),
        jwt_secret=env.get("JWT_SECRET") or None,
        jwt_expiry_seconds=_int(env, "JWT_EXPIRY_SECONDS", 24 * 60 * 60, minimum=1),
        digits_by_weekday=_digits(env),
        prize_structure={
            DrawType.DAILY: _prizes(env, "PRIZE_STRUCTURE_DAILY", DrawType.DAILY),
            DrawType.SATURDAY: _prizes(env, "PRIZE_STRUCTURE_SATURDAY", DrawType.SATURDAY),
        },
        lookback={
            DrawType.DAILY: timedelta(
                hours=_int(env, "LOOKBACK_HOURS_DAILY", DEFAULT_LOOKBACK_HOURS[DrawType.DAILY], minimum=1)
            ),
            DrawType.SATURDAY: timedelta(
                hours=_int(
                    env,
                    "LOOKBACK_HOURS_SATURDAY",
                    DEFAULT_LOOKBACK_HOURS[DrawType.SATURDAY],
                    minimum=1,
                )
            ),
        },
        point_bands=_point_bands(env),
        draw_timezone=draw_timezone,
        sms_primary_gateway=primary,
        sms_fallback_gateway=fallback or None,
        sms_mock=_bool(env, "SMS_MOCK", True),
        sms_timeout_seconds=_float(env, "SMS_TIMEOUT_SECONDS", 30.0),
        sms_templates=_templates(env),
        notification_max_attempts=_int(env, "NOTIFICATION_MAX_ATTEMPTS", 3, minimum=1),
        draw_deadline_base_seconds=_float(env, "DRAW_DEADLINE_BASE_SECONDS", 30.0),
        draw_deadline_per_candidate_seconds=_float(
            env, "DRAW_DEADLINE_PER_CANDIDATE_SECONDS", 0.001
        ),
        default_country_code=country_code,
        log_level=log_level,
    )
    if settings.sms_timeout_seconds <= 0:
        raise ConfigError("SMS_TIMEOUT_SECONDS must be positive")
    logger.debug(
        f"Settings loaded: tz={settings.draw_timezone} gateways={settings.gateway_order} "
        f"mock_sms={settings.sms_mock}"
    )
    return settings


__all__ = ["DEFAULT_PRIZE_STRUCTURE", "Settings", "load_settings"]
