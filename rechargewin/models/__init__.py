from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .subscriber import OptInPeriod, Subscriber  # noqa: F401
from .topup import BlacklistEntry, TopUp  # noqa: F401
from .draw import (  # noqa: F401
    Draw,
    DrawStatus,
    DrawType,
    DrawWinner,
    NotificationStatus,
)
from .notification import NotificationJob  # noqa: F401

__all__ = [
    "Base",
    "BlacklistEntry",
    "Draw",
    "DrawStatus",
    "DrawType",
    "DrawWinner",
    "NotificationJob",
    "NotificationStatus",
    "OptInPeriod",
    "Subscriber",
    "TopUp",
]
