import unittest
from datetime import timedelta

from application.services import Command, ExternalContext, OperationResult
from domain.errors import ConfirmationRequired, CooldownActive, InsufficientFunds, TargetNotFound
from interfaces.commands import is_admin_action, split_command, takes_target, with_target
from interfaces.formatting import format_duration, format_money, help_text, render

from fakes import make_service


class FormattingTests(unittest.TestCase):
    def test_money(self):
        self.assertEqual(format_money(1500, "₦"), "₦1,500")
        self.assertEqual(format_money(-200, "$"), "-$200")

    def test_duration(self):
        self.assertEqual(format_duration(0), "0s")
        self.assertEqual(format_duration(45), "45s")
        self.assertEqual(format_duration(3600), "1h")
        self.assertEqual(format_duration(3725), "1h 2m 5s")

    def test_error_messages_use_currency(self):
        result = OperationResult.failure(InsufficientFunds("no", balance=100, required=1500))
        self.assertEqual(render(result, "₦"), "❌ Insufficient balance! You have ₦100 but need ₦1,500.")

    def test_cooldown_message_per_action(self):
        result = OperationResult.failure(CooldownActive(timedelta(minutes=42), action="work"))
        self.assertIn("42m", render(result, "₦"))
        self.assertIn("working", render(result, "₦"))

    def test_reset_confirmation_shows_starting_balances(self):
        result = OperationResult.failure(
            ConfirmationRequired("confirm", starting_balance=1000, starting_bank_balance=0)
        )
        text = render(result, "₦")
        self.assertIn("₦1,000", text)
        self.assertIn("₦0", text)
        self.assertIn("confirm", text)

    def test_unknown_target_message(self):
        result = OperationResult.failure(TargetNotFound("no account", user_id="ghost"))
        self.assertIn("reply", render(result, "₦"))

    def test_unknown_error_kind_falls_back_to_message(self):
        result = OperationResult(success=False, error_kind="something_new", error_message="odd")
        self.assertEqual(render(result, "₦"), "❌ odd")

    def test_every_action_renders(self):
        service = make_service()
        alice = ExternalContext("whatsapp", "alice", "Alice")
        service.register(ExternalContext("whatsapp", "bob", "Bob"))
        service.ledger.credit("alice", 10000)
        commands = [
            ("balance", []),
            ("profile", []),
            ("work", []),
            ("daily", []),
            ("rob", ["bob"]),
            ("gamble", ["100"]),
            ("send", ["100", "bob"]),
            ("deposit", ["100"]),
            ("withdraw", ["100"]),
            ("leaderboard", []),
            ("history", []),
            ("clan", ["create", "Wolves"]),
            ("clan", ["deposit", "100"]),
            ("clan", ["info"]),
            ("clan", ["disband"]),
            ("ecogive", ["100", "bob"]),
            ("ecosetbalance", ["500", "bob"]),
            ("ecosettings", []),
            ("ecoreset", ["confirm"]),
        ]
        for action, args in commands:
            with self.subTest(action=action, args=args):
                result = service.dispatch(Command(alice, action, args))
                self.assertTrue(result.success, result.error_kind)
                text = render(result, "₦")
                self.assertNotEqual(text, "✅ Done.")
                self.assertNotIn("{", text)

    def test_help_uses_prefix(self):
        self.assertTrue(help_text("/").startswith("/balance"))


class CommandParsingTests(unittest.TestCase):
    def test_split_command(self):
        self.assertEqual(split_command("/send 500 @bob", "/"), ("send", ["500", "@bob"]))
        self.assertEqual(split_command("/work@EconomyBot", "/"), ("work", []))
        self.assertIsNone(split_command("hello", "/"))
        self.assertIsNone(split_command("/", "/"))

    def test_with_target_fills_the_target_slot(self):
        self.assertEqual(with_target("send", ["500"], "42"), ["500", "42"])
        self.assertEqual(with_target("pay", ["500", "@bob"], "42"), ["500", "42"])
        self.assertEqual(with_target("rob", [], "42"), ["42"])
        self.assertEqual(with_target("work", [], "42"), [])
        self.assertEqual(with_target("rob", ["x"], None), ["x"])

    def test_takes_target(self):
        self.assertTrue(takes_target("pay"))
        self.assertTrue(takes_target("ecosetbalance"))
        self.assertFalse(takes_target("work"))

    def test_admin_actions(self):
        self.assertTrue(is_admin_action("ecoaddmoney"))
        self.assertTrue(is_admin_action("setbalance"))
        self.assertTrue(is_admin_action("ecoreset"))
        self.assertTrue(is_admin_action("ecostats"))
        self.assertFalse(is_admin_action("work"))


if __name__ == "__main__":
    unittest.main()
