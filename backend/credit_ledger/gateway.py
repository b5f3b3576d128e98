"""
Consumption Gateway - spend credits to run a generation

Enforces, in this order and inside ONE datastore transaction:
1. Device admission (a blocked device never gets further)
2. Module entitlement, re-derived from the plan catalog
3. Balance sufficiency
4. Debit + usage ledger entry

IMPORTANT: This gateway is the ONLY place where generation is gated.
It is NOT idempotent: a caller that times out must inspect the ledger
before retrying.
"""

import logging
from typing import Any, Dict, Optional

from .account_store import AccountStore, normalize_user_id
from .config import MAX_CREDIT_AMOUNT
from .device_guard import DeviceGuard
from .entitlements import get_entitlement
from .errors import InsufficientCredits, ModuleNotAllowed, ValidationError
from .models import GenerationResult, TxMeta

logger = logging.getLogger(__name__)


class ConsumptionGateway:
    """
    Usage:
        gateway = ConsumptionGateway(datastore, account_store, device_guard)
        result = await gateway.consume("alice@example.com", fp, "core", cost=1)
    """

    def __init__(self, datastore, account_store: AccountStore, device_guard: DeviceGuard):
        self.datastore = datastore
        self.account_store = account_store
        self.device_guard = device_guard

    async def consume(
        self,
        user_id: str,
        device_fingerprint: str,
        module: str,
        cost: int = 1,
        context: Optional[Dict[str, Any]] = None,
        destination: Optional[str] = None
    ) -> GenerationResult:
        if isinstance(cost, bool) or not isinstance(cost, int) or not 1 <= cost <= MAX_CREDIT_AMOUNT:
            raise ValidationError(f"cost must be an integer between 1 and {MAX_CREDIT_AMOUNT}")
        if not isinstance(module, str) or not module.strip():
            raise ValidationError("module is required")

        key = normalize_user_id(user_id)
        module = module.strip().lower()
        device_id = self.device_guard.device_id(device_fingerprint)

        await self.account_store.get_or_create(key)

        async def work(txn):
            account = await self.account_store.load_in_txn(txn, key, create=True)

            await self.device_guard.admit_in_txn(txn, account, device_id)

            allowed = get_entitlement(account["plan"]).allowed_modules
            if module not in allowed:
                raise ModuleNotAllowed(module, account["plan"], allowed)

            if account["credits"] < cost:
                raise InsufficientCredits(key, account["credits"], cost)

            entry = await self.account_store.apply_delta_in_txn(
                txn, account, -cost,
                TxMeta(
                    type="usage",
                    source="generation",
                    module=module,
                    destination=destination,
                    plan=account["plan"],
                    context=context or {}
                )
            )
            return account, entry

        account, entry = await self.datastore.run_transaction(work)
        logger.info(f"Generation {module} for {key}: -{cost}, remaining {account['credits']}")

        return GenerationResult(
            remaining_credits=account["credits"],
            plan=account["plan"],
            allowed_modules=list(account["allowed_modules"]),
            devices=list(account["devices"]),
            transaction_id=entry["id"]
        )
