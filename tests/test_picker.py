import unittest
from datetime import datetime, timezone

from rechargewin.draw_engine.picker import SEED_BITS, generate_seed, pick_winners
from rechargewin.draw_engine.prizes import Prize
from rechargewin.errors import InvalidInput

PICKED_AT = datetime(2024, 6, 4, 21, 0, tzinfo=timezone.utc)


class PickWinnersTests(unittest.TestCase):
    def setUp(self) -> None:
        self.candidates = {f"23480312345{index:02d}": (index % 4) + 1 for index in range(30)}
        self.prizes = [
            Prize(1, "Jackpot", 1_000_000, 1),
            Prize(2, "Second Prize", 250_000, 2),
            Prize(3, "Consolation", 10_000, 5),
        ]

    def test_same_seed_gives_identical_result(self) -> None:
        first = pick_winners(self.candidates, self.prizes, 0xDEADBEEF, picked_at=PICKED_AT)
        second = pick_winners(self.candidates, self.prizes, 0xDEADBEEF, picked_at=PICKED_AT)
        self.assertEqual(first, second)

    def test_result_does_not_depend_on_candidate_order(self) -> None:
        reordered = dict(reversed(list(self.candidates.items())))
        first = pick_winners(self.candidates, self.prizes, 42, picked_at=PICKED_AT)
        second = pick_winners(reordered, self.prizes, 42, picked_at=PICKED_AT)
        self.assertEqual(first.winners, second.winners)

    def test_winners_are_distinct_and_ranked(self) -> None:
        result = pick_winners(self.candidates, self.prizes, 7, picked_at=PICKED_AT)
        msisdns = [winner.msisdn for winner in result.winners]
        self.assertEqual(len(msisdns), 8)
        self.assertEqual(len(set(msisdns)), 8)
        self.assertEqual([w.rank for w in result.winners], [1, 2, 2, 3, 3, 3, 3, 3])
        self.assertEqual([w.position for w in result.winners], list(range(1, 9)))
        self.assertTrue(all(w.msisdn in self.candidates for w in result.winners))
        self.assertTrue(all(w.picked_at == PICKED_AT for w in result.winners))
        self.assertEqual(result.unawarded, [])

    def test_prizes_are_awarded_in_rank_order(self) -> None:
        shuffled = [self.prizes[2], self.prizes[0], self.prizes[1]]
        result = pick_winners(self.candidates, shuffled, 7, picked_at=PICKED_AT)
        expected = pick_winners(self.candidates, self.prizes, 7, picked_at=PICKED_AT)
        self.assertEqual(result, expected)
        self.assertEqual(result.winners[0].prize_name, "Jackpot")
        self.assertEqual(result.winners[0].prize_amount, 1_000_000)

    def test_small_pool_reports_unawarded_slots(self) -> None:
        candidates = {"2348031234562": 1, "2348031234563": 3, "2348031234572": 2}
        result = pick_winners(candidates, self.prizes, 99, picked_at=PICKED_AT)
        self.assertEqual(sorted(w.msisdn for w in result.winners), sorted(candidates))
        self.assertEqual(
            result.unawarded,
            [{"rank": 3, "name": "Consolation", "count": 5}],
        )
        self.assertEqual(len(result.winners) + 5, sum(p.quantity for p in self.prizes))

    def test_partially_filled_rank(self) -> None:
        candidates = {"2348031234562": 1, "2348031234563": 1}
        prizes = [Prize(1, "Jackpot", 100, 1), Prize(2, "Runner-up", 50, 3)]
        result = pick_winners(candidates, prizes, 1, picked_at=PICKED_AT)
        self.assertEqual([w.rank for w in result.winners], [1, 2])
        self.assertEqual(result.unawarded, [{"rank": 2, "name": "Runner-up", "count": 2}])

    def test_empty_pool(self) -> None:
        result = pick_winners({}, self.prizes, 1, picked_at=PICKED_AT)
        self.assertEqual(result.winners, [])
        self.assertEqual(
            result.unawarded,
            [
                {"rank": 1, "name": "Jackpot", "count": 1},
                {"rank": 2, "name": "Second Prize", "count": 2},
                {"rank": 3, "name": "Consolation", "count": 5},
            ],
        )

    def test_single_candidate_always_wins(self) -> None:
        for seed in range(10):
            result = pick_winners({"2348031234562": 4}, self.prizes[:1], seed, picked_at=PICKED_AT)
            self.assertEqual(result.winners[0].msisdn, "2348031234562")

    def test_weight_biases_selection(self) -> None:
        candidates = {"2348031234561": 1, "2348031234562": 1000}
        heavy_first = sum(
            pick_winners(candidates, self.prizes[:1], seed, picked_at=PICKED_AT).winners[0].msisdn
            == "2348031234562"
            for seed in range(50)
        )
        self.assertGreaterEqual(heavy_first, 45)

    def test_rejects_non_positive_weights(self) -> None:
        for weight in (0, -1, 1.5, True):
            with self.subTest(weight=weight):
                with self.assertRaises(InvalidInput):
                    pick_winners({"2348031234562": weight}, self.prizes, 1, picked_at=PICKED_AT)


class GenerateSeedTests(unittest.TestCase):
    def test_seed_range(self) -> None:
        seeds = {generate_seed() for _ in range(20)}
        self.assertTrue(all(0 <= seed < 2**SEED_BITS for seed in seeds))
        self.assertGreater(len(seeds), 1)


if __name__ == "__main__":
    unittest.main()
