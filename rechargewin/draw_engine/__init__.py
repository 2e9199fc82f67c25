"""Recharge-and-win draw engine."""

from .digits import DEFAULT_DIGITS_BY_WEEKDAY, DefaultDigitsPolicy
from .eligibility import (
    DEFAULT_LOOKBACK,
    CandidatePool,
    EligibilitySelector,
    draw_window,
    resolve_timezone,
)
from .ledger import TopUpLedger
from .messages import DEFAULT_TEMPLATES, MessageTemplates
from .msisdn import last_digit, mask_msisdn, normalize_msisdn
from .orchestrator import DrawEngine, NotificationSink, ReplayReport, correlation_id_for
from .picker import PickedWinner, PickResult, generate_seed, pick_winners
from .point_rules import DEFAULT_POINT_BANDS, PointBand, PointRules
from .prizes import Prize, parse_prize_structure
from .registry import SubscriberRegistry
from .store import DrawStore

__all__ = [
    "CandidatePool",
    "DEFAULT_DIGITS_BY_WEEKDAY",
    "DEFAULT_LOOKBACK",
    "DEFAULT_POINT_BANDS",
    "DEFAULT_TEMPLATES",
    "DefaultDigitsPolicy",
    "DrawEngine",
    "DrawStore",
    "EligibilitySelector",
    "MessageTemplates",
    "NotificationSink",
    "PickResult",
    "PickedWinner",
    "PointBand",
    "PointRules",
    "Prize",
    "ReplayReport",
    "SubscriberRegistry",
    "TopUpLedger",
    "correlation_id_for",
    "draw_window",
    "generate_seed",
    "last_digit",
    "mask_msisdn",
    "normalize_msisdn",
    "parse_prize_structure",
    "pick_winners",
    "resolve_timezone",
]
