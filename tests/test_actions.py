import unittest
from datetime import timedelta

from domain.errors import (
    BetOutOfRange,
    CooldownActive,
    InsufficientFunds,
    RobberTooPoor,
    SelfTargetNotAllowed,
    TargetNotFound,
    TargetTooPoor,
)
from domain.settings import Job

from fakes import FakeClock, InMemoryEconomyRepository, StubRandom, make_service


class ActionTestCase(unittest.TestCase):
    def build(self, rng=None, **overrides):
        self.repo = InMemoryEconomyRepository()
        self.clock = FakeClock()
        self.rng = rng or StubRandom()
        self.service = make_service(rng=self.rng, clock=self.clock, repo=self.repo, **overrides)
        self.actions = self.service.actions

    def wallet(self, user_id):
        return self.repo.get_account(user_id).wallet_balance


class WorkTests(ActionTestCase):
    def setUp(self) -> None:
        self.build(jobs=(Job("Courier", 200, 800),))

    def test_work_pays_from_the_job_table(self):
        result = self.actions.work("alice").value
        self.assertEqual(result["job"], "Courier")
        self.assertEqual(result["amount"], 200)
        self.assertEqual(self.wallet("alice"), 1200)
        self.assertEqual(self.repo.get_account("alice").work_count, 1)

    def test_second_work_is_on_cooldown_for_an_hour(self):
        self.actions.work("alice")
        with self.assertRaises(CooldownActive) as ctx:
            self.actions.work("alice")
        self.assertEqual(ctx.exception.remaining, timedelta(minutes=60))
        self.assertEqual(ctx.exception.details["action"], "work")
        self.assertEqual(self.wallet("alice"), 1200)

    def test_work_is_available_again_after_cooldown(self):
        self.actions.work("alice")
        self.clock.advance(minutes=59)
        with self.assertRaises(CooldownActive) as ctx:
            self.actions.work("alice")
        self.assertEqual(ctx.exception.remaining, timedelta(minutes=1))

        self.clock.advance(minutes=1)
        self.actions.work("alice")
        self.assertEqual(self.repo.get_account("alice").work_count, 2)

    def test_high_roll_pays_job_maximum(self):
        self.rng.high = True
        self.assertEqual(self.actions.work("alice").value["amount"], 800)


class DailyTests(ActionTestCase):
    def setUp(self) -> None:
        self.build()

    def test_first_claim_starts_streak(self):
        result = self.actions.daily("alice").value
        self.assertEqual(result["amount"], 500)
        self.assertEqual(result["streak"], 1)
        account = self.repo.get_account("alice")
        self.assertEqual(account.last_daily_on, "2024-03-01")
        self.assertEqual(account.daily_count, 1)

    def test_second_claim_same_day_waits_for_local_midnight(self):
        self.actions.daily("alice")
        self.clock.advance(hours=3)
        with self.assertRaises(CooldownActive) as ctx:
            self.actions.daily("alice")
        # 15:00 UTC is 16:00 in Lagos.
        self.assertEqual(ctx.exception.remaining, timedelta(hours=8))

    def test_consecutive_days_extend_streak(self):
        self.actions.daily("alice")
        self.clock.advance(days=1)
        self.actions.daily("alice")
        self.clock.advance(days=1)
        result = self.actions.daily("alice").value
        self.assertEqual(result["streak"], 3)
        self.assertEqual(self.repo.get_account("alice").longest_streak, 3)

    def test_missed_day_resets_streak_but_keeps_longest(self):
        self.actions.daily("alice")
        self.clock.advance(days=1)
        self.actions.daily("alice")
        self.clock.advance(days=2)
        result = self.actions.daily("alice").value
        self.assertEqual(result["streak"], 1)
        self.assertEqual(result["longest_streak"], 2)


class RobTests(ActionTestCase):
    def build(self, rng=None, **overrides):
        super().build(rng, **overrides)
        self.service.store.get_or_create("victim")

    def setUp(self) -> None:
        self.build()

    def test_forced_success_steals_within_bounds(self):
        for high, expected in ((False, 100), (True, 300)):
            with self.subTest(high=high):
                self.build(rng=StubRandom(roll=0.0, high=high))
                result = self.actions.rob("robber", "victim").value
                self.assertTrue(result["success"])
                self.assertEqual(result["amount"], expected)
                self.assertEqual(self.wallet("victim"), 1000 - expected)
                self.assertEqual(self.wallet("robber"), 1000 + expected)
                self.assertEqual(self.repo.get_account("robber").rob_count, 1)

    def test_failed_rob_pays_penalty_to_victim(self):
        self.rng.roll = 0.99
        result = self.actions.rob("robber", "victim").value
        self.assertFalse(result["success"])
        self.assertEqual(result["amount"], 150)
        self.assertEqual(self.wallet("robber"), 850)
        self.assertEqual(self.wallet("victim"), 1150)
        self.assertEqual(self.repo.get_account("robber").rob_count, 0)

    def test_failed_rob_penalty_is_clamped_to_wallet(self):
        self.build(rng=StubRandom(roll=0.99), rob_min_robber_balance=0)
        self.service.ledger.debit("robber", 900)
        result = self.actions.rob("robber", "victim").value
        self.assertEqual(result["amount"], 100)
        self.assertEqual(self.wallet("robber"), 0)
        self.assertEqual(self.wallet("victim"), 1100)

    def test_rob_is_on_cooldown_even_after_failure(self):
        self.rng.roll = 0.99
        self.actions.rob("robber", "victim")
        with self.assertRaises(CooldownActive) as ctx:
            self.actions.rob("robber", "victim")
        self.assertEqual(ctx.exception.remaining, timedelta(minutes=120))

    def test_cannot_rob_yourself(self):
        with self.assertRaises(SelfTargetNotAllowed):
            self.actions.rob("robber", "robber")

    def test_poor_target_is_rejected(self):
        self.service.ledger.debit("victim", 600)
        with self.assertRaises(TargetTooPoor):
            self.actions.rob("robber", "victim")
        self.assertEqual(self.wallet("victim"), 400)
        self.assertIsNone(self.repo.get_account("robber").last_rob_at)

    def test_poor_robber_is_rejected(self):
        self.service.ledger.debit("robber", 900)
        with self.assertRaises(RobberTooPoor):
            self.actions.rob("robber", "victim")
        self.assertEqual(self.wallet("robber"), 100)

    def test_rob_conserves_money(self):
        self.rng.high = True
        self.actions.rob("robber", "victim")
        self.assertEqual(self.wallet("robber") + self.wallet("victim"), 2000)

    def test_unknown_target_is_rejected_without_creating_it(self):
        for _ in range(3):
            with self.assertRaises(TargetNotFound):
                self.actions.rob("robber", "made-up-user")
            self.clock.advance(hours=3)
        self.assertIsNone(self.repo.get_account("made-up-user"))
        self.assertEqual(self.wallet("robber"), 1000)
        self.assertEqual(len(self.repo.accounts), 2)


class GambleTests(ActionTestCase):
    def setUp(self) -> None:
        self.build()

    def test_win_pays_multiplier(self):
        self.rng.roll = 0.0
        result = self.actions.gamble("alice", 500).value
        self.assertTrue(result["won"])
        self.assertEqual(result["winnings"], 900)
        self.assertEqual(self.wallet("alice"), 1400)

    def test_loss_takes_the_bet(self):
        self.rng.roll = 0.99
        result = self.actions.gamble("alice", 500).value
        self.assertFalse(result["won"])
        self.assertEqual(self.wallet("alice"), 500)

    def test_bet_limits(self):
        for bet in (50, 20000):
            with self.subTest(bet=bet):
                with self.assertRaises(BetOutOfRange):
                    self.actions.gamble("alice", bet)

    def test_bet_larger_than_wallet(self):
        with self.assertRaises(InsufficientFunds):
            self.actions.gamble("alice", 5000)
        self.assertEqual(self.wallet("alice"), 1000)


if __name__ == "__main__":
    unittest.main()
