"""Weekday to default eligible-digit policy."""

from __future__ import annotations

from datetime import date
from types import MappingProxyType
from typing import Iterable, Mapping, Union

from ..errors import ConfigError, InvalidInput

WEEKDAY_NAMES = (
    "MONDAY",
    "TUESDAY",
    "WEDNESDAY",
    "THURSDAY",
    "FRIDAY",
    "SATURDAY",
    "SUNDAY",
)

DEFAULT_DIGITS_BY_WEEKDAY: Mapping[str, tuple[int, ...]] = MappingProxyType(
    {
        "MONDAY": (0, 1),
        "TUESDAY": (2, 3),
        "WEDNESDAY": (4, 5),
        "THURSDAY": (6, 7),
        "FRIDAY": (8, 9),
        "SATURDAY": tuple(range(10)),
        "SUNDAY": (),
    }
)

Day = Union[int, str, date]


def validate_digits(digits: Iterable[int]) -> frozenset[int]:
    """Return ``digits`` as a frozenset, raising if any is outside 0-9."""

    result: set[int] = set()
    for digit in digits:
        if isinstance(digit, bool) or not isinstance(digit, int) or not 0 <= digit <= 9:
            raise InvalidInput(f"eligible digits must be integers 0-9, got {digit!r}")
        result.add(digit)
    return frozenset(result)


def weekday_index(day: Day) -> int:
    """Resolve ``day`` (Monday=0 index, weekday name or date) to 0-6."""

    if isinstance(day, date):
        return day.weekday()
    if isinstance(day, bool):
        raise InvalidInput(f"not a weekday: {day!r}")
    if isinstance(day, int):
        if not 0 <= day <= 6:
            raise InvalidInput(f"weekday index must be 0-6, got {day}")
        return day
    if isinstance(day, str):
        name = day.strip().upper()
        for index, weekday in enumerate(WEEKDAY_NAMES):
            # Accept "MON" as well as "MONDAY".
            if name and weekday.startswith(name) and len(name) >= 3:
                return index
        raise InvalidInput(f"unknown weekday name: {day!r}")
    raise InvalidInput(f"not a weekday: {day!r}")


class DefaultDigitsPolicy:
    """Immutable weekday -> eligible digits table built from configuration."""

    def __init__(
        self, mapping: Mapping[str, Iterable[int]] = DEFAULT_DIGITS_BY_WEEKDAY
    ) -> None:
        table: dict[int, frozenset[int]] = {index: frozenset() for index in range(7)}
        for key, digits in mapping.items():
            try:
                index = weekday_index(key)
                table[index] = validate_digits(digits)
            except InvalidInput as exc:
                raise ConfigError(f"Invalid default digits for {key!r}: {exc}") from exc
        self._table: Mapping[int, frozenset[int]] = MappingProxyType(table)

    def for_day(self, day: Day) -> frozenset[int]:
        """Return the default eligible digits for ``day``; may be empty (no draw)."""

        return self._table[weekday_index(day)]

    def as_dict(self) -> dict[str, list[int]]:
        return {WEEKDAY_NAMES[index]: sorted(digits) for index, digits in self._table.items()}


__all__ = [
    "DEFAULT_DIGITS_BY_WEEKDAY",
    "DefaultDigitsPolicy",
    "WEEKDAY_NAMES",
    "validate_digits",
    "weekday_index",
]
