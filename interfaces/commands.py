from __future__ import annotations

from typing import List, Optional, Tuple

from application.services import ALIASES

# Position of the target user in each command's arguments.
TARGET_ARG_INDEX = {
    "profile": 0,
    "rob": 0,
    "transfer": 1,
    "ecogive": 1,
    "ecosetbalance": 1,
}

ADMIN_ACTIONS = frozenset({"ecogive", "ecosetbalance", "ecoreset", "ecosettings"})


def canonical_action(action: str) -> str:
    action = action.lower()
    return ALIASES.get(action, action)


def split_command(text: str, prefix: str) -> Optional[Tuple[str, List[str]]]:
    """
    Split `"/send 500 @bob"` into `("send", ["500", "@bob"])`.

    Returns None when the text is not a command. A trailing `@botname` on
    the command word (Telegram group syntax) is dropped.
    """

    text = (text or "").strip()
    if not text.startswith(prefix):
        return None
    parts = text[len(prefix):].split()
    if not parts:
        return None
    action = parts[0].split("@", 1)[0]
    return action, parts[1:]


def with_target(action: str, args: List[str], target_id: Optional[str]) -> List[str]:
    """
    Put `target_id` (from a mention or a replied-to message) into the
    argument slot where `action` expects its target user.
    """

    index = TARGET_ARG_INDEX.get(canonical_action(action))
    if index is None or target_id is None:
        return list(args)
    return list(args[:index]) + [target_id]


def takes_target(action: str) -> bool:
    return canonical_action(action) in TARGET_ARG_INDEX


def is_admin_action(action: str) -> bool:
    return canonical_action(action) in ADMIN_ACTIONS
