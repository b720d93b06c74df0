import threading
import unittest

from domain.errors import (
    EconomyError,
    InsufficientFunds,
    InvalidAmount,
    InvariantViolation,
    SelfTargetNotAllowed,
    StaleWriteError,
    StorageUnavailable,
    TargetTooPoor,
)
from domain.settings import Job
from application.ledger import Outcome
from application.locks import KeyedLocks, account_key

from fakes import InMemoryEconomyRepository, StubRandom, make_service


class LedgerEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.repo = InMemoryEconomyRepository()
        self.service = make_service(repo=self.repo)
        self.ledger = self.service.ledger

    def balances(self, user_id):
        account = self.repo.get_account(user_id)
        return account.wallet_balance, account.bank_balance

    def test_withdraw_more_than_bank_fails_and_changes_nothing(self):
        with self.assertRaises(InsufficientFunds):
            self.ledger.withdraw("alice", 1500)
        self.assertEqual(self.balances("alice"), (1000, 0))

    def test_deposit_and_withdraw_move_money_between_wallet_and_bank(self):
        self.ledger.deposit("alice", 400)
        self.assertEqual(self.balances("alice"), (600, 400))
        self.ledger.withdraw("alice", 150)
        self.assertEqual(self.balances("alice"), (750, 250))

    def test_zero_and_negative_amounts_are_rejected_consistently(self):
        for operation in (self.ledger.deposit, self.ledger.withdraw, self.ledger.credit, self.ledger.debit):
            for amount in (0, -5):
                with self.assertRaises(InvalidAmount):
                    operation("alice", amount)
        with self.assertRaises(InvalidAmount):
            self.ledger.transfer("alice", "bob", 0)
        self.assertEqual(self.repo.transactions, [])

    def test_debit_never_goes_negative(self):
        with self.assertRaises(InsufficientFunds):
            self.ledger.debit("alice", 1001)
        self.assertEqual(self.balances("alice"), (1000, 0))

    def test_credit_and_debit_update_totals_and_records(self):
        self.ledger.credit("alice", 250, reason="bonus")
        self.ledger.debit("alice", 100)
        account = self.repo.get_account("alice")
        self.assertEqual(account.wallet_balance, 1150)
        self.assertEqual(account.total_earned, 250)
        self.assertEqual(account.total_spent, 100)
        kinds = [(r.kind, r.amount) for r in self.repo.transactions]
        self.assertEqual(kinds, [("credit", 250), ("debit", -100)])
        self.assertEqual(self.repo.transactions[0].metadata, {"reason": "bonus"})

    def test_transfer_conserves_money(self):
        self.ledger.transfer("alice", "bob", 300)
        self.assertEqual(self.balances("alice")[0] + self.balances("bob")[0], 2000)
        self.assertEqual(self.balances("alice"), (700, 0))
        self.assertEqual(self.balances("bob"), (1300, 0))

    def test_failed_transfer_leaves_both_unchanged(self):
        self.service.store.get_or_create("bob")
        with self.assertRaises(InsufficientFunds):
            self.ledger.transfer("alice", "bob", 5000)
        self.assertEqual(self.balances("alice"), (1000, 0))
        self.assertEqual(self.balances("bob"), (1000, 0))
        self.assertEqual(self.repo.transactions, [])

    def test_transfer_to_self_is_rejected(self):
        with self.assertRaises(SelfTargetNotAllowed):
            self.ledger.transfer("alice", "alice", 10)

    def test_transfer_writes_both_legs_in_one_commit(self):
        self.ledger.transfer("alice", "bob", 300)
        self.assertEqual(self.repo.commits, 1)
        legs = sorted((r.user_id, r.kind, r.amount) for r in self.repo.transactions)
        self.assertEqual(legs, [("alice", "transfer_out", -300), ("bob", "transfer_in", 300)])

    def test_admin_adjust_adds_and_removes(self):
        self.ledger.admin_adjust("alice", 500, "admin")
        self.ledger.admin_adjust("alice", -200, "admin")
        self.assertEqual(self.balances("alice"), (1300, 0))
        with self.assertRaises(InvalidAmount):
            self.ledger.admin_adjust("alice", 0, "admin")
        with self.assertRaises(InsufficientFunds):
            self.ledger.admin_adjust("alice", -5000, "admin")

    def test_history_is_newest_first(self):
        self.ledger.credit("alice", 10)
        self.ledger.credit("alice", 20)
        history = self.ledger.history("alice", limit=1)
        self.assertEqual([r.amount for r in history], [20])

    def test_session_cannot_touch_unlocked_accounts(self):
        with self.assertRaises(InvariantViolation):
            self.ledger.run(["alice"], lambda s: s.credit("bob", 10, "credit"))
        self.assertIsNone(self.repo.get_account("bob"))

    def test_session_cannot_stamp_balances(self):
        self.service.store.get_or_create("alice")
        with self.assertRaises(InvariantViolation):
            self.ledger.run(["alice"], lambda s: s.stamp("alice", wallet_balance=10**9))
        self.assertEqual(self.balances("alice"), (1000, 0))

    def test_stale_write_is_retried(self):
        calls = []
        original_commit = self.repo.commit

        def flaky_commit(changeset):
            calls.append(changeset)
            if len(calls) == 1:
                raise StaleWriteError("alice")
            original_commit(changeset)

        self.repo.commit = flaky_commit
        self.ledger.credit("alice", 50)
        self.assertEqual(len(calls), 2)
        self.assertEqual(self.balances("alice"), (1050, 0))

    def test_persistent_stale_writes_surface_as_storage_unavailable(self):
        self.ledger.credit("alice", 1)

        def always_stale(changeset):
            raise StaleWriteError("alice")

        self.repo.commit = always_stale
        with self.assertRaises(StorageUnavailable) as ctx:
            self.ledger.credit("alice", 50)
        self.assertTrue(ctx.exception.retryable)

    def test_concurrent_opposite_transfers_conserve_money(self):
        self.ledger.credit("alice", 1)
        self.ledger.credit("bob", 1)
        errors = []

        def worker(source, target):
            try:
                for _ in range(20):
                    self.ledger.transfer(source, target, 5)
            except Exception as exc:  # surfaced through the assertion below
                errors.append(exc)

        threads = [
            threading.Thread(target=worker, args=("alice", "bob")),
            threading.Thread(target=worker, args=("bob", "alice")),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        self.assertEqual(errors, [])
        self.assertEqual(self.balances("alice")[0] + self.balances("bob")[0], 2002)
        self.assertEqual(self.service.locks.active_keys(), 0)


class ConcurrentSettlementTests(unittest.TestCase):
    def run_together(self, *jobs):
        barrier = threading.Barrier(len(jobs))
        outcomes, errors = [], []

        def runner(job):
            barrier.wait(timeout=5)
            try:
                outcomes.append(job())
            except EconomyError as exc:
                outcomes.append(exc)
            except Exception as exc:  # surfaced through the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=runner, args=(job,)) for job in jobs]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        self.assertEqual(errors, [])
        self.assertEqual(len(outcomes), len(jobs))
        return outcomes

    def test_concurrent_robs_on_one_victim_conserve_money(self):
        repo = InMemoryEconomyRepository()
        service = make_service(rng=StubRandom(roll=0.0, high=True), repo=repo)
        robbers = [f"robber{i}" for i in range(6)]
        for user_id in robbers + ["victim"]:
            service.store.get_or_create(user_id)

        outcomes = self.run_together(
            *(lambda robber=robber: service.actions.rob(robber, "victim") for robber in robbers)
        )

        for outcome in outcomes:
            self.assertIsInstance(outcome, (Outcome, TargetTooPoor))
        stolen = [o.value["amount"] for o in outcomes if isinstance(o, Outcome)]
        self.assertTrue(stolen)

        wallets = {a.user_id: a.wallet_balance for a in repo.get_all_accounts()}
        self.assertEqual(sum(wallets.values()), 7000)
        self.assertTrue(all(balance >= 0 for balance in wallets.values()))
        self.assertEqual(wallets["victim"], 1000 - sum(stolen))
        self.assertEqual(service.locks.active_keys(), 0)

    def test_work_racing_a_transfer_keeps_both_effects(self):
        for _ in range(10):
            repo = InMemoryEconomyRepository()
            service = make_service(repo=repo, jobs=(Job("Courier", 200, 800),))
            service.store.get_or_create("alice")
            service.store.get_or_create("bob")

            outcomes = self.run_together(
                lambda: service.actions.work("alice"),
                lambda: service.transfer("alice", "bob", 1000),
            )

            for outcome in outcomes:
                self.assertIsInstance(outcome, Outcome)
            alice = repo.get_account("alice")
            self.assertEqual(alice.wallet_balance, 200)
            self.assertEqual(alice.work_count, 1)
            self.assertEqual(repo.get_account("bob").wallet_balance, 2000)
            kinds = sorted(r.kind for r in repo.get_transactions("alice", limit=10))
            self.assertEqual(kinds, ["transfer_out", "work"])


class KeyedLocksTests(unittest.TestCase):
    def test_released_keys_are_forgotten(self):
        locks = KeyedLocks(timeout=1.0)
        with locks.hold([account_key("alice"), account_key("bob")]):
            self.assertEqual(locks.active_keys(), 2)
        self.assertEqual(locks.active_keys(), 0)

    def test_lock_timeout_raises_storage_unavailable(self):

        locks = KeyedLocks(timeout=0.05)
        acquired = threading.Event()
        release = threading.Event()

        def holder():
            with locks.hold([account_key("zed")]):
                acquired.set()
                release.wait(timeout=5)

        thread = threading.Thread(target=holder)
        thread.start()
        acquired.wait(timeout=5)
        try:
            with self.assertRaises(StorageUnavailable):
                with locks.hold([account_key("zed"), account_key("alice")]):
                    pass
        finally:
            release.set()
            thread.join(timeout=5)

        # "alice" was taken first and released when "zed" timed out.
        with locks.hold([account_key("alice")]):
            pass
        self.assertEqual(locks.active_keys(), 0)


if __name__ == "__main__":
    unittest.main()
