"""
Account Store

Core account operations including:
- Lazy account creation (free plan + signup bonus)
- Lazy plan expiration on read
- Balance adjustments paired with ledger entries
- Plan changes (additive purchase grant or manual replace)

CRITICAL: every balance change is written in the same datastore
transaction as its ledger entry. A failed ledger append aborts the
balance write, and a rejected balance write never leaves an entry behind.

The *_in_txn methods take an open transaction so the gateway and the
webhook reconciler can compose them into a single atomic unit.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from .config import ACCOUNTS, FREE_PLAN
from .entitlements import get_entitlement, normalize_plan, is_expired
from .errors import AccountNotFound, InsufficientCredits, ValidationError
from .ledger import TransactionLedger
from .models import AccountView, TxMeta

logger = logging.getLogger(__name__)


def normalize_user_id(user_id: Any) -> str:
    """Accounts are keyed by the stripped, lower-cased user identifier (usually an email)."""
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError("userId is required")
    return user_id.strip().lower()


def to_view(account: Dict[str, Any]) -> AccountView:
    return AccountView(
        user_id=account["user_id"],
        credits=account.get("credits", 0),
        plan=account.get("plan", FREE_PLAN),
        plan_expires_at=account.get("plan_expires_at"),
        allowed_modules=list(account.get("allowed_modules", [])),
        devices=list(account.get("devices", []))
    )


class AccountStore:
    """Service for managing credit accounts."""

    def __init__(self, datastore, ledger: TransactionLedger):
        self.datastore = datastore
        self.ledger = ledger

    # ==================== READS ====================

    async def get_or_create(self, user_id: str) -> Dict[str, Any]:
        """
        Get existing account or create one lazily.

        Existence check and creation share one transaction, so two
        concurrent first requests create exactly one account and one
        signup bonus.
        """
        key = normalize_user_id(user_id)

        async def work(txn):
            return await self.load_in_txn(txn, key, create=True)

        return await self.datastore.run_transaction(work)

    async def get_account(self, user_id: str) -> Dict[str, Any]:
        """Existing account after the expiration check. Never creates."""
        key = normalize_user_id(user_id)

        async def work(txn):
            account = await self.load_in_txn(txn, key, create=False)
            if account is None:
                raise AccountNotFound(key)
            return account

        return await self.datastore.run_transaction(work)

    async def get_balance(self, user_id: str) -> int:
        account = await self.get_account(user_id)
        return account.get("credits", 0)

    async def load_in_txn(
        self,
        txn,
        user_id: str,
        create: bool = False,
        now: Optional[datetime] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Read an account inside txn, applying lazy expiration.

        Returns None when the account is absent and create is False.
        """
        now = now or datetime.now(timezone.utc)
        account = await txn.get(ACCOUNTS, user_id)

        if account is None:
            if not create:
                return None
            return await self._create_in_txn(txn, user_id, now)

        # Legacy plan names and stale module lists are corrected on read
        plan = normalize_plan(account.get("plan") or FREE_PLAN)
        account["plan"] = plan
        account["allowed_modules"] = get_entitlement(plan).allowed_modules
        account.setdefault("devices", [])
        account.setdefault("credits", 0)

        if is_expired(account, now):
            logger.info(f"Plan {plan} expired for {user_id}, downgrading to {FREE_PLAN}")
            await self.downgrade_in_txn(
                txn, account,
                TxMeta(type="expiry", source="system", reason="plan expired",
                       context={"previous_plan": plan}),
                now=now
            )

        return account

    async def _create_in_txn(self, txn, user_id: str, now: datetime) -> Dict[str, Any]:
        free = get_entitlement(FREE_PLAN)
        account = {
            "user_id": user_id,
            "credits": 0,
            "plan": free.plan,
            "plan_expires_at": None,
            "allowed_modules": free.allowed_modules,
            "devices": [],
            "created_at": now.isoformat(),
            "updated_at": now.isoformat()
        }

        # The bonus goes through the ledger like any other credit
        await self.apply_delta_in_txn(
            txn, account, free.credit_grant,
            TxMeta(type="credit", source="signup-bonus", reason="signup bonus", plan=free.plan),
            now=now
        )
        logger.info(f"Created account {user_id} with {free.credit_grant} signup credits")
        return account

    # ==================== BALANCE CHANGES ====================

    async def adjust_credits(
        self,
        user_id: str,
        delta: int,
        meta: TxMeta,
        create: bool = False
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        Atomically apply delta to the balance and append the matching entry.

        Raises:
            ValidationError: delta is zero or not an integer
            AccountNotFound: account missing and create is False
            InsufficientCredits: the balance would drop below zero

        Returns:
            (account, ledger entry)
        """
        if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
            raise ValidationError("credits must be a non-zero integer")
        key = normalize_user_id(user_id)

        async def work(txn):
            account = await self.load_in_txn(txn, key, create=create)
            if account is None:
                raise AccountNotFound(key)
            entry = await self.apply_delta_in_txn(txn, account, delta, meta)
            return account, entry

        account, entry = await self.datastore.run_transaction(work)
        logger.info(f"{meta.type} {delta:+d} for {key} (source={meta.source}), balance {account['credits']}")
        return account, entry

    async def apply_delta_in_txn(
        self,
        txn,
        account: Dict[str, Any],
        delta: int,
        meta: TxMeta,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Persist account with credits + delta and record the entry. Mutates account."""
        now = now or datetime.now(timezone.utc)
        current = account.get("credits", 0)
        new_balance = current + delta

        if new_balance < 0:
            raise InsufficientCredits(account["user_id"], current, -delta)

        account["credits"] = new_balance
        account["updated_at"] = now.isoformat()
        await txn.set(ACCOUNTS, account["user_id"], account)

        return await self.ledger.record(txn, account["user_id"], delta, new_balance, meta, now=now)

    # ==================== PLAN CHANGES ====================

    async def set_plan(
        self,
        user_id: str,
        plan: str,
        expires_at: Optional[datetime] = None,
        mode: str = "replace",
        source: str = "manual"
    ) -> Dict[str, Any]:
        """
        Set a user's plan and apply its credit grant.

        mode="additive" adds the grant to unspent credits (subscription
        purchase); mode="replace" sets the balance to the grant (manual set).
        """
        key = normalize_user_id(user_id)
        entitlement = get_entitlement(plan)

        async def work(txn):
            account = await self.load_in_txn(txn, key, create=True)
            await self.set_plan_in_txn(
                txn, account, entitlement.plan, expires_at, mode,
                TxMeta(type="credit", source=source, reason=f"plan set to {entitlement.plan}")
            )
            return account

        account = await self.datastore.run_transaction(work)
        logger.info(f"Plan for {key} set to {entitlement.plan} ({mode}), balance {account['credits']}")
        return account

    async def set_plan_in_txn(
        self,
        txn,
        account: Dict[str, Any],
        plan: str,
        expires_at: Optional[datetime],
        mode: str,
        meta: TxMeta,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        if mode not in ("additive", "replace"):
            raise ValidationError(f"Invalid plan mode: {mode}")

        entitlement = get_entitlement(plan)
        if mode == "additive":
            delta = entitlement.credit_grant
        else:
            delta = entitlement.credit_grant - account.get("credits", 0)

        account["plan"] = entitlement.plan
        account["allowed_modules"] = entitlement.allowed_modules
        account["plan_expires_at"] = expires_at.isoformat() if expires_at else None

        update = {"plan": entitlement.plan}
        # A replace that lowers the balance is a debit; expiry and canceled keep their type
        if meta.type == "credit" and delta < 0:
            update["type"] = "debit"

        return await self.apply_delta_in_txn(
            txn, account, delta, meta.model_copy(update=update), now=now
        )

    async def downgrade_in_txn(
        self,
        txn,
        account: Dict[str, Any],
        meta: TxMeta,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Move account to the free plan and reset credits to the free grant.

        Shared by lazy expiration and subscription cancellation. The entry
        carries the signed difference, which may be zero.
        """
        return await self.set_plan_in_txn(txn, account, FREE_PLAN, None, "replace", meta, now=now)
