"""Recharge amount to point conversion."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Iterable, Sequence, Union

from ..errors import ConfigError, InvalidInput

Amount = Union[int, float, Decimal, str]


@dataclass(frozen=True)
class PointBand:
    """Recharges of at least ``minimum`` earn ``points`` (until the next band).

    Attributes
    ----------
    minimum : Decimal
        Inclusive lower bound of the band, in the same currency unit as top-ups.
    points : int
        Points awarded for any amount inside the band.
    """

    minimum: Decimal
    points: int

    @classmethod
    def from_dict(cls, data: dict) -> "PointBand":
        try:
            return cls(minimum=Decimal(str(data["minimum"])), points=int(data["points"]))
        except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
            raise ConfigError(f"Invalid point band {data!r}") from exc

    def to_dict(self) -> dict:
        return {"minimum": str(self.minimum), "points": self.points}


DEFAULT_POINT_BANDS: tuple[PointBand, ...] = (
    PointBand(Decimal("100"), 1),
    PointBand(Decimal("200"), 2),
    PointBand(Decimal("500"), 5),
    PointBand(Decimal("1000"), 10),
)


def to_amount(value: Amount) -> Decimal:
    """Convert ``value`` to :class:`~decimal.Decimal`.

    Floats go through their shortest repr, so ``150.1`` becomes ``Decimal("150.1")``.
    Booleans, non-numeric strings, NaN and infinities raise :class:`InvalidInput`.
    """

    if isinstance(value, bool):
        raise InvalidInput("amount must be a number, not a boolean")
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise InvalidInput(f"amount is not numeric: {value!r}") from exc
    if not amount.is_finite():
        raise InvalidInput("amount must be finite")
    return amount


class PointRules:
    """Piecewise-constant mapping from recharge amount to awarded points.

    The table is fixed at construction; ``award`` is a pure total function of
    its argument so the same amount always yields the same points.
    """

    def __init__(self, bands: Iterable[PointBand] = DEFAULT_POINT_BANDS) -> None:
        ordered = sorted(bands, key=lambda band: band.minimum)
        minimums = [band.minimum for band in ordered]
        if len(set(minimums)) != len(minimums):
            raise ConfigError("point bands must have distinct minimums")
        previous = 0
        for band in ordered:
            if band.minimum < 0:
                raise ConfigError("point band minimums must be non-negative")
            if band.points < 0:
                raise ConfigError("point band points must be non-negative")
            if band.points < previous:
                raise ConfigError("point bands must not award fewer points for larger amounts")
            previous = band.points
        self._bands: tuple[PointBand, ...] = tuple(ordered)

    @property
    def bands(self) -> Sequence[PointBand]:
        return self._bands

    def award(self, amount: Amount) -> int:
        """Return the points earned by a recharge of ``amount``.

        Amounts below the lowest band, including zero and negatives, earn 0;
        rejecting non-positive recharges is the ledger's job.
        """
        value = to_amount(amount)
        points = 0
        for band in self._bands:
            if value < band.minimum:
                break
            points = band.points
        return points

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return f"<PointRules(bands={[band.to_dict() for band in self._bands]})>"


__all__ = ["DEFAULT_POINT_BANDS", "PointBand", "PointRules", "to_amount"]
