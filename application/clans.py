from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from domain.errors import (
    AlreadyInClan,
    ClanNotFound,
    DuplicateName,
    InvalidClanName,
    LeaderCannotLeave,
    LockSetChanged,
    NotClanLeader,
    NotInClan,
    StorageUnavailable,
)
from domain.models import Clan
from domain.repositories import EconomyRepository

from application.ledger import LedgerEngine, LedgerSession, Outcome, require_positive

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 3
MAX_NAME_LENGTH = 32


def normalize_clan_name(name: str) -> str:
    cleaned = re.sub(r"\s+", " ", (name or "").strip())
    if not MIN_NAME_LENGTH <= len(cleaned) <= MAX_NAME_LENGTH:
        raise InvalidClanName(
            f"clan names must be {MIN_NAME_LENGTH}-{MAX_NAME_LENGTH} characters",
            name=name,
        )
    return cleaned


def clan_view(clan: Clan) -> Dict[str, Any]:
    return {
        "clan_id": clan.id,
        "name": clan.name,
        "leader_id": clan.leader_id,
        "members": sorted(clan.members),
        "member_count": len(clan.members),
        "bank": clan.bank,
        "level": clan.level,
    }


class ClanService:
    """
    Clan aggregate operations.

    A clan and the `clan_id` pointers of its members always change in the
    same commit. Operations that start from a member (leave, contribute,
    disband) look the clan up first, then lock it together with the
    accounts involved and re-check membership under the locks.
    """

    def __init__(self, engine: LedgerEngine, repo: EconomyRepository) -> None:
        self._engine = engine
        self._repo = repo
        self._settings = engine.settings

    def _member_clan(self, user_id: str) -> Clan:
        account = self._repo.get_account(user_id)
        if account is None or account.clan_id is None:
            raise NotInClan("you are not in a clan", user_id=user_id)
        clan = self._repo.get_clan(account.clan_id)
        if clan is None:
            logger.error("Account %s points at missing clan %s", user_id, account.clan_id)
            raise ClanNotFound("clan no longer exists", clan_id=account.clan_id)
        return clan

    @staticmethod
    def _locked_clan(session: LedgerSession, user_id: str, expected: Clan) -> Clan:
        account = session.account(user_id)
        if account.clan_id is None:
            raise NotInClan("you are not in a clan", user_id=user_id)
        clan = session.clan_by_name(expected.name)
        if clan is None or clan.id != account.clan_id:
            raise StorageUnavailable("clan membership changed, try again", user_id=user_id)
        return clan

    def create(
        self,
        leader_id: str,
        name: str,
        *,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[Dict[str, Any]]:
        name = normalize_clan_name(name)
        cost = self._settings.clan_creation_cost

        def _create(session: LedgerSession) -> Dict[str, Any]:
            leader = session.account(leader_id)
            if session.clan_by_name(name) is not None:
                raise DuplicateName("a clan with that name already exists", name=name)
            if leader.clan_id is not None:
                raise AlreadyInClan("you are already in a clan", user_id=leader_id)

            clan = Clan(
                id=uuid.uuid4().hex,
                name=name,
                leader_id=leader_id,
                members={leader_id},
                created_at=session.now,
            )
            if cost > 0:
                session.debit(leader_id, cost, "clan_create", clan=name)
            session.add_clan(clan)
            session.stamp(leader_id, clan_id=clan.id)
            logger.info("Clan %r created by %s", name, leader_id)
            return {"action": "clan_create", "cost": cost, **clan_view(clan), "wallet_balance": leader.wallet_balance}

        return self._engine.run(
            [leader_id], _create, clan_names=[name], request_id=request_id, now=now
        )

    def join(
        self,
        user_id: str,
        name: str,
        *,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[Dict[str, Any]]:
        name = normalize_clan_name(name)

        def _join(session: LedgerSession) -> Dict[str, Any]:
            account = session.account(user_id)
            if account.clan_id is not None:
                raise AlreadyInClan("you are already in a clan", user_id=user_id)
            clan = session.clan_by_name(name)
            if clan is None:
                raise ClanNotFound("no clan with that name", name=name)

            clan.members.add(user_id)
            session.touch_clan(clan)
            session.stamp(user_id, clan_id=clan.id)
            return {"action": "clan_join", **clan_view(clan)}

        return self._engine.run(
            [user_id], _join, clan_names=[name], request_id=request_id, now=now
        )

    def leave(
        self,
        user_id: str,
        *,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[Dict[str, Any]]:
        replayed = self._engine.replay(request_id)
        if replayed is not None:
            return replayed
        expected = self._member_clan(user_id)

        def _leave(session: LedgerSession) -> Dict[str, Any]:
            clan = self._locked_clan(session, user_id, expected)
            if clan.leader_id == user_id:
                raise LeaderCannotLeave("the leader must disband the clan instead", clan=clan.name)

            clan.members.discard(user_id)
            session.touch_clan(clan)
            session.stamp(user_id, clan_id=None)
            return {"action": "clan_leave", **clan_view(clan)}

        return self._engine.run(
            [user_id], _leave, clan_names=[expected.name], request_id=request_id, now=now
        )

    def disband(
        self,
        leader_id: str,
        *,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[Dict[str, Any]]:
        replayed = self._engine.replay(request_id)
        if replayed is not None:
            return replayed
        for attempt in range(1, self._settings.max_commit_attempts + 1):
            expected = self._member_clan(leader_id)
            if expected.leader_id != leader_id:
                raise NotClanLeader("only the clan leader can disband", clan=expected.name)
            locked_members = set(expected.members) | {leader_id}

            def _disband(session: LedgerSession) -> Dict[str, Any]:
                clan = self._locked_clan(session, leader_id, expected)
                if clan.leader_id != leader_id:
                    raise NotClanLeader("only the clan leader can disband", clan=clan.name)
                if not clan.members <= locked_members:
                    raise LockSetChanged()

                for member_id in sorted(clan.members):
                    if session.account(member_id).clan_id == clan.id:
                        session.stamp(member_id, clan_id=None)
                refund = clan.bank
                if refund > 0:
                    session.credit(leader_id, refund, "clan_disband_refund", clan=clan.name)
                session.delete_clan(clan)
                logger.info("Clan %r disbanded by %s", clan.name, leader_id)
                return {"action": "clan_disband", "refund": refund, **clan_view(clan)}

            try:
                return self._engine.run(
                    sorted(locked_members),
                    _disband,
                    clan_names=[expected.name],
                    request_id=request_id,
                    now=now,
                )
            except LockSetChanged:
                logger.info("Members of %r changed before disband (attempt %d)", expected.name, attempt)

        raise StorageUnavailable("clan kept changing, try again")

    def contribute(
        self,
        user_id: str,
        amount: int,
        *,
        request_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[Dict[str, Any]]:
        amount = require_positive(amount)
        replayed = self._engine.replay(request_id)
        if replayed is not None:
            return replayed
        expected = self._member_clan(user_id)

        def _contribute(session: LedgerSession) -> Dict[str, Any]:
            clan = self._locked_clan(session, user_id, expected)
            account = session.debit(user_id, amount, "clan_contribution", clan=clan.name)
            session.credit_clan(clan, amount, self._settings.clan_level_step)
            return {
                "action": "clan_deposit",
                "amount": amount,
                "wallet_balance": account.wallet_balance,
                **clan_view(clan),
            }

        return self._engine.run(
            [user_id], _contribute, clan_names=[expected.name], request_id=request_id, now=now
        )

    def info(self, name: Optional[str] = None, user_id: Optional[str] = None) -> Dict[str, Any]:
        if name:
            clan = self._repo.get_clan_by_name(normalize_clan_name(name))
            if clan is None:
                raise ClanNotFound("no clan with that name", name=name)
            return clan_view(clan)
        if user_id is None:
            raise NotInClan("you are not in a clan")
        return clan_view(self._member_clan(user_id))
