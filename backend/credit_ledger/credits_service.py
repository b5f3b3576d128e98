"""
Credits Service

The operations the HTTP layer calls. Builds every core component from one
injected datastore:

    service = CreditsService(datastore, settings)

Errors are raised as CreditsError subclasses; routes map them to status
codes through a single exception handler.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .account_store import AccountStore, normalize_user_id, to_view
from .device_guard import DeviceGuard
from .entitlements import compute_expiration, get_entitlement
from .config import MAX_CREDIT_AMOUNT
from .errors import ValidationError
from .gateway import ConsumptionGateway
from .hotmart_service import HotmartWebhookService
from .ledger import TransactionLedger
from .models import (
    AccountView,
    BalanceChange,
    BalanceResponse,
    GenerationResult,
    ReconciliationReport,
    SessionResult,
    TransactionPage,
    TxMeta,
    WebhookResult
)

logger = logging.getLogger(__name__)


def _positive_amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("credits must be a positive integer")
    if amount > MAX_CREDIT_AMOUNT:
        raise ValidationError(f"credits must not exceed {MAX_CREDIT_AMOUNT}",
                              {"max": MAX_CREDIT_AMOUNT})
    return amount


class CreditsService:
    """Facade over the credit ledger components."""

    def __init__(self, datastore, settings):
        self.datastore = datastore
        self.settings = settings
        self.ledger = TransactionLedger(datastore)
        self.accounts = AccountStore(datastore, self.ledger)
        self.devices = DeviceGuard(datastore, self.accounts, salt=settings.device_hash_salt)
        self.gateway = ConsumptionGateway(datastore, self.accounts, self.devices)
        self.hotmart = HotmartWebhookService(datastore, self.accounts, settings.hotmart_secret)

    # ==================== ACCOUNTS ====================

    async def get_or_create_account(self, user_id: str) -> AccountView:
        return to_view(await self.accounts.get_or_create(user_id))

    async def get_balance(self, user_id: str) -> BalanceResponse:
        account = await self.accounts.get_account(user_id)
        return BalanceResponse(user_id=account["user_id"], credits=account["credits"])

    async def grant_credits(
        self,
        user_id: str,
        amount: int,
        transaction_id: Optional[str] = None,
        reason: Optional[str] = None,
        source: str = "manual"
    ) -> BalanceChange:
        """Add credits, creating the account if needed."""
        amount = _positive_amount(amount)
        account, entry = await self.accounts.adjust_credits(
            user_id, amount,
            TxMeta(type="purchase" if transaction_id else "credit", source=source,
                   reason=reason, transaction_id=transaction_id),
            create=True
        )
        return BalanceChange(user_id=account["user_id"], new_balance=account["credits"],
                             transaction_id=entry["id"])

    async def consume_credits(self, user_id: str, amount: int, reason: Optional[str] = None) -> BalanceChange:
        """Remove credits from an existing account. Never goes below zero."""
        amount = _positive_amount(amount)
        account, entry = await self.accounts.adjust_credits(
            user_id, -amount,
            TxMeta(type="debit", source="manual", reason=reason)
        )
        return BalanceChange(user_id=account["user_id"], new_balance=account["credits"],
                             transaction_id=entry["id"])

    async def set_plan(self, user_id: str, plan: str) -> AccountView:
        """Manual plan change: balance is replaced by the plan grant."""
        entitlement = get_entitlement(plan)
        expires_at = compute_expiration(entitlement.plan, datetime.now(timezone.utc))
        account = await self.accounts.set_plan(user_id, entitlement.plan, expires_at, mode="replace")
        return to_view(account)

    # ==================== LEDGER ====================

    async def list_transactions(self, user_id: str, limit: int = 10, cursor: Optional[str] = None) -> TransactionPage:
        return await self.ledger.list_by_user(normalize_user_id(user_id), limit, cursor)

    async def reconcile(self, user_id: str) -> ReconciliationReport:
        """Compare the stored balance with the signed sum of the ledger."""
        account = await self.accounts.get_account(user_id)
        total, count = await self.ledger.sum_for_user(account["user_id"])
        balanced = total == account["credits"]
        if not balanced:
            logger.error(f"Ledger mismatch for {account['user_id']}: balance {account['credits']} != ledger {total}")
        return ReconciliationReport(
            user_id=account["user_id"],
            credits=account["credits"],
            ledger_sum=total,
            transaction_count=count,
            balanced=balanced
        )

    # ==================== SESSIONS / GENERATION ====================

    async def start_session(self, user_id: str, device_fingerprint: str) -> SessionResult:
        key = normalize_user_id(user_id)
        await self.accounts.get_or_create(key)
        device_id = await self.devices.admit(key, device_fingerprint)
        account = await self.accounts.get_account(key)
        return SessionResult(account=to_view(account), device_id=device_id)

    async def generate(
        self,
        user_id: str,
        device_fingerprint: str,
        module: str,
        cost: int = 1,
        context: Optional[Dict[str, Any]] = None,
        destination: Optional[str] = None
    ) -> GenerationResult:
        return await self.gateway.consume(user_id, device_fingerprint, module, cost, context, destination)

    # ==================== WEBHOOKS ====================

    async def handle_subscription_webhook(self, payload: Any, auth_token: Optional[str]) -> WebhookResult:
        return await self.hotmart.process_webhook(payload, auth_token)
