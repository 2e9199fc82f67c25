"""Named SMS templates for winner notifications."""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Mapping, Optional

from ..errors import ConfigError, InvalidInput

WINNER_TEMPLATE = "winner"

DEFAULT_TEMPLATES: Mapping[str, str] = MappingProxyType(
    {
        WINNER_TEMPLATE: (
            "Congratulations! You have won {prizeName} worth N{prizeAmount} "
            "in the Recharge & Win draw of {drawDate}. Keep recharging to win more."
        ),
    }
)


class MessageTemplates:
    """Read-only set of ``str.format`` templates keyed by name.

    Templates reference variables in braces, e.g. ``{prizeAmount}`` and
    ``{drawDate}``. Configured templates override the defaults by name.
    """

    def __init__(self, templates: Optional[Mapping[str, str]] = None) -> None:
        merged = dict(DEFAULT_TEMPLATES)
        for name, body in (templates or {}).items():
            if not isinstance(body, str) or not body.strip():
                raise ConfigError(f"SMS template {name!r} must be a non-empty string")
            merged[name] = body
        self._templates = MappingProxyType(merged)

    @property
    def names(self) -> list[str]:
        return sorted(self._templates)

    def render(self, name: str, **variables: Any) -> str:
        try:
            template = self._templates[name]
        except KeyError as exc:
            raise InvalidInput(f"Unknown SMS template {name!r}") from exc
        try:
            return template.format_map(variables)
        except (KeyError, IndexError, ValueError) as exc:
            raise InvalidInput(f"SMS template {name!r} could not be rendered: {exc}") from exc


def format_amount(amount: int) -> str:
    return f"{amount:,}"


__all__ = ["DEFAULT_TEMPLATES", "MessageTemplates", "WINNER_TEMPLATE", "format_amount"]
