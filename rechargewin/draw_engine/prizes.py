"""Prize structure value objects."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from ..errors import InvalidDrawConfig


@dataclass(frozen=True)
class Prize:
    """One rank of a draw's prize table.

    Attributes
    ----------
    rank : int
        1-based rank; lower ranks are picked first.
    name : str
        Display name such as ``"Jackpot"`` or ``"Consolation"``.
    amount : int
        Prize value per winner.
    quantity : int
        Number of winners to pick at this rank.
    """

    rank: int
    name: str
    amount: int
    quantity: int = 1

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Prize":
        try:
            return cls(
                rank=int(data["rank"]),
                name=str(data["name"]),
                amount=int(data["amount"]),
                quantity=int(data.get("quantity", 1)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidDrawConfig(f"Invalid prize definition {data!r}") from exc

    def to_dict(self) -> dict[str, Any]:
        return {
            "rank": self.rank,
            "name": self.name,
            "amount": self.amount,
            "quantity": self.quantity,
        }


def parse_prize_structure(
    prizes: Iterable[Prize | Mapping[str, Any]],
) -> tuple[Prize, ...]:
    """Validate ``prizes`` and return them in ascending rank order.

    Raises
    ------
    InvalidDrawConfig
        If the table is empty, ranks are not 1-based and strictly increasing,
        or any quantity/amount is out of range.
    """

    parsed = [p if isinstance(p, Prize) else Prize.from_dict(p) for p in prizes]
    if not parsed:
        raise InvalidDrawConfig("prize structure must contain at least one prize")
    ordered = sorted(parsed, key=lambda prize: prize.rank)
    if ordered[0].rank < 1:
        raise InvalidDrawConfig("prize ranks are 1-based")
    for previous, current in zip(ordered, ordered[1:]):
        if current.rank <= previous.rank:
            raise InvalidDrawConfig(f"duplicate prize rank {current.rank}")
    for prize in ordered:
        if prize.quantity < 1:
            raise InvalidDrawConfig(f"prize rank {prize.rank} must have quantity >= 1")
        if prize.amount < 0:
            raise InvalidDrawConfig(f"prize rank {prize.rank} has a negative amount")
        if not prize.name.strip():
            raise InvalidDrawConfig(f"prize rank {prize.rank} needs a name")
    return tuple(ordered)


def total_slots(prizes: Iterable[Prize]) -> int:
    return sum(prize.quantity for prize in prizes)


__all__ = ["Prize", "parse_prize_structure", "total_slots"]
