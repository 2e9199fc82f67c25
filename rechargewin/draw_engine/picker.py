"""Seeded weighted sampling of winners without replacement."""

from __future__ import annotations

import random
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Sequence

from ..errors import InvalidInput
from .prizes import Prize

SEED_BITS = 63


@dataclass(frozen=True)
class PickedWinner:
    """A candidate assigned to one prize slot.

    ``position`` is the 1-based order in which the slot was filled.
    """

    position: int
    msisdn: str
    rank: int
    prize_name: str
    prize_amount: int
    picked_at: datetime


@dataclass
class PickResult:
    """Winners in pick order plus prize slots the pool could not fill.

    Attributes
    ----------
    winners : list[PickedWinner]
        Ordered winners; never contains an MSISDN twice.
    unawarded : list[dict]
        ``{"rank", "name", "count"}`` entries for empty slots, in rank order.
    """

    winners: list[PickedWinner] = field(default_factory=list)
    unawarded: list[dict[str, Any]] = field(default_factory=list)


def generate_seed() -> int:
    """Return a fresh non-negative seed that fits a signed 64-bit column."""

    return secrets.randbits(SEED_BITS)


def pick_winners(
    candidates: Mapping[str, int],
    prize_structure: Sequence[Prize],
    seed: int,
    *,
    picked_at: datetime,
) -> PickResult:
    """Assign prize slots to candidates by seeded weighted sampling.

    Parameters
    ----------
    candidates : Mapping[str, int]
        MSISDN to weight (number of qualifying top-ups).
    prize_structure : Sequence[Prize]
        Prizes to award; slots are filled rank by rank, lowest rank first.
    seed : int
        Seed for :class:`random.Random`; the result is a pure function of
        ``(candidates, prize_structure, seed, picked_at)``.
    picked_at : datetime
        Timestamp stamped on every winner.

    Returns
    -------
    PickResult
        Winners in pick order and any unawarded slots.

    Raises
    ------
    InvalidInput
        If a candidate weight is below 1.

    Notes
    -----
    For every slot a number ``r`` is drawn uniformly from ``[0, W)`` where
    ``W`` is the total remaining weight. Candidates are walked in
    lexicographic MSISDN order and the first whose cumulative weight reaches
    ``r + 1`` wins and leaves the pool.
    """

    for msisdn, weight in candidates.items():
        if isinstance(weight, bool) or not isinstance(weight, int) or weight < 1:
            raise InvalidInput(f"candidate weight must be a positive int, got {weight!r}")

    rng = random.Random(seed)
    pool: list[tuple[str, int]] = sorted(candidates.items())
    remaining_weight = sum(weight for _, weight in pool)

    result = PickResult()
    position = 0
    for prize in sorted(prize_structure, key=lambda p: p.rank):
        missing = 0
        for _ in range(prize.quantity):
            if not pool:
                missing += 1
                continue
            target = rng.randrange(remaining_weight) + 1
            cumulative = 0
            for index, (msisdn, weight) in enumerate(pool):
                cumulative += weight
                if cumulative >= target:
                    break
            del pool[index]
            remaining_weight -= weight
            position += 1
            result.winners.append(
                PickedWinner(
                    position=position,
                    msisdn=msisdn,
                    rank=prize.rank,
                    prize_name=prize.name,
                    prize_amount=prize.amount,
                    picked_at=picked_at,
                )
            )
        if missing:
            result.unawarded.append(
                {"rank": prize.rank, "name": prize.name, "count": missing}
            )
    return result


__all__ = ["PickResult", "PickedWinner", "SEED_BITS", "generate_seed", "pick_winners"]
