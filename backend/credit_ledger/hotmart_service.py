"""
Hotmart Webhook Service for subscription lifecycle events

Features:
- Shared-secret (hottok) authentication with constant-time comparison
- Tolerant extraction of event type, buyer email and event id
- Idempotent event processing (Hotmart retries deliveries)
- Dispatch table driven state transitions

Required Environment Variables:
- HOTMART_SECRET
"""

import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from .account_store import AccountStore, normalize_user_id
from .config import (
    WEBHOOK_EVENTS,
    SYSTEM_INFO,
    DEFAULT_PURCHASE_PLAN,
    WEBHOOK_EVENT_ACTIONS,
    WEBHOOK_EMAIL_PATHS,
    WEBHOOK_EVENT_PATHS,
    WEBHOOK_EVENT_ID_PATHS,
    WEBHOOK_PLAN_PATHS
)
from .entitlements import compute_expiration, normalize_plan
from .errors import ConfigurationError, DatastoreUnavailable, MalformedPayload, Unauthorized
from .models import TxMeta, WebhookEvent, WebhookResult

logger = logging.getLogger(__name__)


def _dig(payload: Dict[str, Any], path: Sequence[str]) -> Any:
    value: Any = payload
    for part in path:
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _first(payload: Dict[str, Any], paths) -> Any:
    for path in paths:
        value = _dig(payload, path)
        if value not in (None, ""):
            return value
    return None


class HotmartWebhookService:
    """Applies Hotmart subscription events to accounts and the ledger."""

    def __init__(self, datastore, account_store: AccountStore, secret: Optional[str]):
        self.datastore = datastore
        self.account_store = account_store
        self.secret = secret

    # ==================== AUTHENTICATION ====================

    def authenticate(self, token: Optional[str]):
        """
        Compare the client token with HOTMART_SECRET.

        Raises:
            ConfigurationError: the server has no secret configured
            Unauthorized: token missing or wrong
        """
        if not self.secret:
            logger.error("HOTMART_SECRET not configured, rejecting webhook")
            raise ConfigurationError("Hotmart webhook secret is not configured")

        if not token or not isinstance(token, str):
            raise Unauthorized("Missing Hotmart token")

        if not hmac.compare_digest(token.encode("utf-8"), self.secret.encode("utf-8")):
            logger.warning("Invalid Hotmart webhook token")
            raise Unauthorized("Invalid Hotmart token")

    # ==================== EXTRACTION ====================

    @staticmethod
    def extract_event(payload: Dict[str, Any]) -> str:
        event = _first(payload, WEBHOOK_EVENT_PATHS)
        if not isinstance(event, str):
            return "unknown"
        return event.strip().lower()

    @staticmethod
    def extract_email(payload: Dict[str, Any]) -> str:
        email = _first(payload, WEBHOOK_EMAIL_PATHS)
        if not isinstance(email, str) or "@" not in email:
            raise MalformedPayload("No buyer email found in payload")
        return normalize_user_id(email)

    @staticmethod
    def extract_event_id(payload: Dict[str, Any]) -> str:
        """Hotmart's event id when present, else a digest of the payload itself."""
        event_id = _first(payload, WEBHOOK_EVENT_ID_PATHS)
        if event_id is not None:
            return str(event_id)

        canonical = json.dumps(
            {k: v for k, v in payload.items() if k != "hottok"},
            sort_keys=True, default=str
        )
        return "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    @staticmethod
    def resolve_plan(payload: Dict[str, Any]) -> str:
        """Plan named by the payload (strict), or the default purchase plan."""
        plan = _first(payload, WEBHOOK_PLAN_PATHS)
        if plan is None:
            return DEFAULT_PURCHASE_PLAN
        return normalize_plan(plan)

    # ==================== PROCESSING ====================

    async def process_webhook(self, payload: Any, auth_token: Optional[str] = None) -> WebhookResult:
        """
        Process a Hotmart webhook delivery.

        Implements idempotency - the same event id is applied at most once.
        The event record is written in the same transaction as the account
        change, so a crash between the two cannot leave half an event.

        Returns:
            WebhookResult with status applied, duplicate or ignored
        """
        if auth_token is None and isinstance(payload, dict):
            auth_token = payload.get("hottok")
        self.authenticate(auth_token)

        if not isinstance(payload, dict):
            raise MalformedPayload("Webhook payload must be a JSON object")

        event = self.extract_event(payload)
        user_id = self.extract_email(payload)
        event_id = self.extract_event_id(payload)
        action = WEBHOOK_EVENT_ACTIONS.get(event, "ignored")

        logger.info(f"Received Hotmart webhook: {event} (event_id={event_id}, user={user_id})")

        # Fast path for retried deliveries
        if await self.datastore.get(WEBHOOK_EVENTS, event_id):
            logger.info(f"Event {event_id} already processed, skipping")
            await self._count("duplicate")
            return WebhookResult(accepted=True, event=event, status="duplicate",
                                 event_id=event_id, user_id=user_id)

        plan = self.resolve_plan(payload) if action == "purchase" else None
        transaction_ref = _first(payload, [("data", "purchase", "transaction"), ("transaction",)])

        await self.account_store.get_or_create(user_id)

        async def work(txn):
            # Checked again inside the transaction: two deliveries may race
            if await txn.get(WEBHOOK_EVENTS, event_id):
                return "duplicate"

            now = datetime.now(timezone.utc)
            account = await self.account_store.load_in_txn(txn, user_id, create=True, now=now)

            if action == "purchase":
                await self.account_store.set_plan_in_txn(
                    txn, account, plan, compute_expiration(plan, now), "additive",
                    TxMeta(type="credit", source="hotmart", reason=event, event_id=event_id,
                           transaction_id=str(transaction_ref) if transaction_ref else None),
                    now=now
                )
            elif action == "cancel":
                await self.account_store.downgrade_in_txn(
                    txn, account,
                    TxMeta(type="canceled", source="hotmart", reason=event, event_id=event_id),
                    now=now
                )

            record = WebhookEvent(
                event_id=event_id,
                event=event,
                action=action,
                user_id=user_id,
                plan=account["plan"],
                processed_at=now.isoformat()
            )
            await txn.set(WEBHOOK_EVENTS, event_id, record.model_dump())
            return "applied" if action != "ignored" else "ignored"

        status = await self.datastore.run_transaction(work)

        if status == "ignored":
            logger.info(f"Ignoring Hotmart event type: {event}")
        elif status == "applied":
            logger.info(f"Applied Hotmart {action} for {user_id} (event_id={event_id})")

        await self._count(status)
        return WebhookResult(accepted=True, event=event, status=status,
                             event_id=event_id, user_id=user_id)

    async def _count(self, status: str):
        """Delivery counters shown by /api/debug-env. Losing one must not fail the delivery."""
        try:
            await self.datastore.atomic_increment(SYSTEM_INFO, "webhook_stats", status, 1)
        except DatastoreUnavailable as e:
            logger.warning(f"Could not update webhook counters: {e}")
