"""
Plain-text rendering of `OperationResult`s.

Both chat adapters send exactly what `render()` returns, so the wording of
every reply lives here. The currency symbol is only ever applied in this
module; the application layer deals in bare integers.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping

from application.services import OperationResult

MONEY_DETAILS = (
    "balance",
    "required",
    "minimum",
    "maximum",
    "starting_balance",
    "starting_bank_balance",
)

ERROR_MESSAGES: Dict[str, str] = {
    "insufficient_funds": "❌ Insufficient balance! You have {balance} but need {required}.",
    "target_too_poor": "❌ Target doesn't have enough money to rob. They need at least {required}.",
    "robber_too_poor": "❌ You need at least {required} to attempt a robbery.",
    "self_target_not_allowed": "❌ You can't do that to yourself.",
    "target_not_found": "❌ That user has no account yet. Mention them or reply to one of their messages.",
    "duplicate_name": "❌ A clan with that name already exists.",
    "already_in_clan": "❌ You are already in a clan.",
    "not_clan_leader": "❌ Only the clan leader can do that.",
    "leader_cannot_leave": "❌ You lead this clan. Disband it instead of leaving.",
    "clan_not_found": "❌ No clan with that name.",
    "not_in_clan": "❌ You are not in a clan.",
    "invalid_clan_name": "❌ Clan names must be 3-32 characters.",
    "invalid_amount": "❌ Please enter a valid amount greater than 0.",
    "bet_out_of_range": "❌ Bets must be between {minimum} and {maximum}.",
    "invalid_arguments": "❓ {message}. Type help to see usage.",
    "confirmation_required": (
        "⚠️ This sets every wallet to {starting_balance} and every bank to "
        "{starting_bank_balance} and clears all statistics. Add 'confirm' to go ahead."
    ),
    "unknown_action": "❓ Unknown command. Type help to see available commands.",
    "storage_unavailable": "⏳ The bank is busy right now. Please try again in a moment.",
}

COOLDOWN_MESSAGES: Dict[str, str] = {
    "work": "⏱️ You're tired! Rest for {remaining} before working again.",
    "rob": "⏱️ You're in hiding! Wait {remaining} before attempting another robbery.",
    "daily": "⏰ You already claimed your daily reward today. Come back in {remaining}.",
}

HELP_LINES = (
    "{p}balance                 - show your wallet and bank",
    "{p}profile [@user]         - show stats and rank",
    "{p}work                    - work a shift for money",
    "{p}daily                   - claim your daily reward",
    "{p}rob @user               - try to rob someone",
    "{p}gamble <amount>         - bet on a coin flip",
    "{p}send <amount> @user     - send money to someone",
    "{p}deposit <amount|all>    - move money into your bank",
    "{p}withdraw <amount|all>   - move money into your wallet",
    "{p}leaderboard             - richest users",
    "{p}history                 - your recent transactions",
    "{p}clan create|join <name> - start or join a clan",
    "{p}clan leave|disband      - leave or disband your clan",
    "{p}clan deposit <amount>   - add money to the clan bank",
    "{p}clan info [name]        - show clan details",
)


def help_text(prefix: str) -> str:
    return "\n".join(line.format(p=prefix) for line in HELP_LINES)


def format_money(amount: int, currency: str) -> str:
    if amount < 0:
        return f"-{currency}{-amount:,}"
    return f"{currency}{amount:,}"


def format_duration(seconds: int) -> str:
    """`3725` -> `1h 2m 5s`."""

    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def _name(entry: Mapping[str, Any]) -> str:
    return entry.get("display_name") or entry.get("user_id", "?")


def render_error(result: OperationResult, currency: str) -> str:
    details = dict(result.data)
    if result.error_kind == "cooldown_active":
        template = COOLDOWN_MESSAGES.get(
            details.get("action") or "", "⏱️ Please wait {remaining} before trying again."
        )
        return template.format(remaining=format_duration(details.get("remaining_seconds", 0)))

    for key in MONEY_DETAILS:
        if isinstance(details.get(key), int):
            details[key] = format_money(details[key], currency)
    details["message"] = (result.error_message or "").capitalize()

    template = ERROR_MESSAGES.get(result.error_kind or "")
    if template is None:
        return f"❌ {result.error_message or 'Something went wrong.'}"
    try:
        return template.format(**details)
    except KeyError:
        return f"❌ {result.error_message}"


def _balance(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    return [
        "💰 YOUR WALLET 💰",
        f"💵 Wallet: {money(data['wallet_balance'])}",
        f"🏦 Bank: {money(data['bank_balance'])}",
        f"💎 Total Wealth: {money(data['total_wealth'])}",
    ]


def _profile(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    return [
        f"👤 PROFILE: {_name(data)}",
        f"🏅 Rank: {data['rank']}",
        f"💎 Total Wealth: {money(data['total_wealth'])}",
        f"📈 Earned: {money(data['total_earned'])} | Spent: {money(data['total_spent'])}",
        f"💼 Work: {data['work_count']} | 🦹 Robs: {data['rob_count']} | 🎁 Dailies: {data['daily_count']}",
        f"🔥 Streak: {data['streak']} (best {data['longest_streak']})",
    ]


def _work(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    return [
        "💼 WORK COMPLETED 💼",
        f"🔨 Job: {data['job']}",
        f"💰 Earned: {money(data['amount'])}",
        f"💵 Wallet: {money(data['wallet_balance'])}",
        f"⏱️ Next shift in {format_duration(data['cooldown_seconds'])}",
    ]


def _daily(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    return [
        "🎁 DAILY REWARD CLAIMED 🎁",
        f"💰 Received: {money(data['amount'])}",
        f"🔥 Streak: {data['streak']} day(s)",
        f"💵 Wallet: {money(data['wallet_balance'])}",
    ]


def _rob(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    if data["success"]:
        return [
            "🦹 ROBBERY SUCCESSFUL 🦹",
            f"💰 Stole: {money(data['amount'])}",
            f"💵 Wallet: {money(data['wallet_balance'])}",
        ]
    return [
        "🚨 ROBBERY FAILED 🚨",
        f"💸 Fine paid to the victim: {money(data['amount'])}",
        f"💵 Wallet: {money(data['wallet_balance'])}",
    ]


def _gamble(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    if data["won"]:
        headline = f"🎰 YOU WON {money(data['winnings'])}!"
    else:
        headline = f"🎰 You lost {money(data['bet'])}."
    return [headline, f"💵 Wallet: {money(data['wallet_balance'])}"]


def _transfer(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    return [
        "✅ TRANSFER SUCCESSFUL ✅",
        f"💸 Sent: {money(data['amount'])}",
        f"💵 Wallet: {money(data['wallet_balance'])}",
    ]


def _deposit(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    return [
        f"🏦 Deposited {money(data['amount'])}",
        f"💵 Wallet: {money(data['wallet_balance'])} | 🏦 Bank: {money(data['bank_balance'])}",
    ]


def _withdraw(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    return [
        f"💵 Withdrew {money(data['amount'])}",
        f"💵 Wallet: {money(data['wallet_balance'])} | 🏦 Bank: {money(data['bank_balance'])}",
    ]


def _leaderboard(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    entries = data["entries"]
    if not entries:
        return ["📊 No users found in the economy yet."]
    lines = ["🏆 LEADERBOARD 🏆"]
    for entry in entries:
        lines.append(f"{entry['position']}. {_name(entry)}: {money(entry['total_wealth'])}")
    return lines


def _history(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    entries = data["entries"]
    if not entries:
        return ["📜 No transactions yet."]
    lines = ["📜 RECENT TRANSACTIONS 📜"]
    for entry in entries:
        lines.append(f"{entry['timestamp'][:16].replace('T', ' ')}  {entry['kind']}: {money(entry['amount'])}")
    return lines


def _clan(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    return [
        f"🛡️ {data['name']} (level {data['level']})",
        f"👑 Leader: {data['leader_id']}",
        f"👥 Members: {data['member_count']}",
        f"🏦 Clan bank: {money(data['bank'])}",
    ]


def _clan_create(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    return [f"🛡️ Clan {data['name']} created for {money(data['cost'])}!"] + _clan(data, money)[1:]


def _clan_join(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    return [f"🤝 You joined {data['name']}."]


def _clan_leave(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    return [f"👋 You left {data['name']}."]


def _clan_disband(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    lines = [f"💥 Clan {data['name']} has been disbanded."]
    if data["refund"]:
        lines.append(f"🏦 {money(data['refund'])} returned from the clan bank.")
    return lines


def _clan_deposit(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    return [
        f"🏦 Added {money(data['amount'])} to {data['name']}'s bank.",
        f"🛡️ Clan bank: {money(data['bank'])} (level {data['level']})",
    ]


def _ecogive(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    verb = "Added" if data["amount"] > 0 else "Removed"
    return [
        f"🛠️ {verb} {money(abs(data['amount']))} for {_name(data)}.",
        f"💵 Wallet: {money(data['wallet_balance'])}",
    ]


def _ecosetbalance(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    return [
        f"🎯 Wallet of {_name(data)} set to {money(data['wallet_balance'])}.",
        f"💵 Previous balance: {money(data['previous_balance'])}",
    ]


def _ecoreset(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    return [
        f"♻️ Economy reset: {data['accounts']} accounts restored.",
        f"💵 Wallets: {money(data['wallet_balance'])} | 🏦 Banks: {money(data['bank_balance'])}",
    ]


def _ecosettings(data: Dict[str, Any], money: Callable[[int], str]) -> List[str]:
    return [
        "🔧 ECONOMY SYSTEM STATS 🔧",
        f"👥 Users: {data['users']} | 🛡️ Clans: {data['clans']}",
        f"💰 Wealth in circulation: {money(data['total_wealth'])}",
        f"💵 Wallets: {money(data['total_wallet'])} | 🏦 Banks: {money(data['total_bank'])}"
        f" | Clan banks: {money(data['total_clan_bank'])}",
        f"🎁 Daily: {money(data['daily_min'])} - {money(data['daily_max'])}",
        f"💼 Work cooldown: {data['work_cooldown_minutes']}m | 🦹 Rob cooldown: {data['rob_cooldown_minutes']}m",
        f"🦹 Rob success rate: {data['rob_success_rate']:.0%}",
        f"🎰 Bets: {money(data['gamble_min_bet'])} - {money(data['gamble_max_bet'])}",
        f"🕛 Day boundary: {data['timezone']}",
    ]


RENDERERS: Dict[str, Callable[[Dict[str, Any], Callable[[int], str]], List[str]]] = {
    "balance": _balance,
    "profile": _profile,
    "work": _work,
    "daily": _daily,
    "rob": _rob,
    "gamble": _gamble,
    "transfer": _transfer,
    "deposit": _deposit,
    "withdraw": _withdraw,
    "leaderboard": _leaderboard,
    "history": _history,
    "clan_create": _clan_create,
    "clan_join": _clan_join,
    "clan_leave": _clan_leave,
    "clan_disband": _clan_disband,
    "clan_deposit": _clan_deposit,
    "clan_info": _clan,
    "ecogive": _ecogive,
    "ecosetbalance": _ecosetbalance,
    "ecoreset": _ecoreset,
    "ecosettings": _ecosettings,
}


def render(result: OperationResult, currency: str) -> str:
    if not result.success:
        return render_error(result, currency)

    renderer = RENDERERS.get(result.data.get("action", ""))
    if renderer is None:
        return "✅ Done."
    return "\n".join(renderer(result.data, lambda amount: format_money(amount, currency)))
