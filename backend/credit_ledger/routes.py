"""
Credit Ledger API Routes

Endpoints:
- POST /api/accounts/{user_id} - Get or create an account
- GET /api/credits/{user_id} - Get balance
- POST /api/buy-credits - Grant credits
- POST /api/consume-credit - Consume credits
- GET /api/transactions/{user_id} - Transaction history
- POST /api/sessions - Start a session on a device
- POST /api/generate - Spend credits on a generation
- POST /api/webhooks/hotmart - Hotmart webhook handler
- GET /api/plans - Plan catalog
- POST /api/admin/plan, GET /api/admin/reconcile/{user_id} - Admin (X-Admin-Key)
"""

import hmac
import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response

from .config import HOTMART_TOKEN_HEADER, NEXT_CURSOR_HEADER, DEFAULT_TRANSACTION_LIMIT, MAX_TRANSACTION_LIMIT
from .credits_service import CreditsService
from .entitlements import catalog_view
from .models import (
    AccountView,
    BalanceChange,
    BalanceResponse,
    ConsumeCreditsRequest,
    GenerateRequest,
    GenerationResult,
    GrantCreditsRequest,
    ReconciliationReport,
    SessionResult,
    SetPlanRequest,
    StartSessionRequest,
    Transaction,
    WebhookResult
)

logger = logging.getLogger(__name__)

credits_router = APIRouter(tags=["Credits"])


def get_credits_service(request: Request) -> CreditsService:
    return request.app.state.credits_service


async def get_admin(
    request: Request,
    x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key")
):
    """Check the admin API key"""
    expected = request.app.state.settings.admin_api_key
    if not expected:
        raise HTTPException(status_code=503, detail="Admin access is not configured")
    if not x_admin_key or not hmac.compare_digest(x_admin_key.encode(), expected.encode()):
        raise HTTPException(status_code=403, detail="Admin access required")
    return True


# ==================== ACCOUNT ENDPOINTS ====================

@credits_router.post("/accounts/{user_id}", response_model=AccountView)
async def get_or_create_account(user_id: str, service: CreditsService = Depends(get_credits_service)):
    """Get an account, creating it with the free plan on first reference."""
    return await service.get_or_create_account(user_id)


@credits_router.get("/credits/{user_id}", response_model=BalanceResponse)
async def get_balance(user_id: str, service: CreditsService = Depends(get_credits_service)):
    return await service.get_balance(user_id)


@credits_router.post("/buy-credits", response_model=BalanceChange)
async def buy_credits(body: GrantCreditsRequest, service: CreditsService = Depends(get_credits_service)):
    """
    Add credits to an account.

    transactionId (optional) is the external payment reference; it is
    stored on the ledger entry.
    """
    return await service.grant_credits(
        body.user_id, body.credits,
        transaction_id=body.transaction_id,
        reason=body.reason
    )


@credits_router.post("/consume-credit", response_model=BalanceChange)
async def consume_credit(body: ConsumeCreditsRequest, service: CreditsService = Depends(get_credits_service)):
    return await service.consume_credits(body.user_id, body.credits, body.reason)


@credits_router.get("/transactions/{user_id}", response_model=List[Transaction])
async def list_transactions(
    user_id: str,
    response: Response,
    limit: int = Query(DEFAULT_TRANSACTION_LIMIT, ge=1, le=MAX_TRANSACTION_LIMIT),
    cursor: Optional[str] = Query(None),
    service: CreditsService = Depends(get_credits_service)
):
    """
    Transaction history, newest first.

    The body is a plain array. When more entries exist, the X-Next-Cursor
    header carries the cursor for the next page.
    """
    page = await service.list_transactions(user_id, limit, cursor)
    if page.next_cursor is not None:
        response.headers[NEXT_CURSOR_HEADER] = page.next_cursor
    return page.items


# ==================== SESSION / GENERATION ====================

@credits_router.post("/sessions", response_model=SessionResult)
async def start_session(body: StartSessionRequest, service: CreditsService = Depends(get_credits_service)):
    return await service.start_session(body.user_id, body.device_fingerprint)


@credits_router.post("/generate", response_model=GenerationResult)
async def generate(body: GenerateRequest, service: CreditsService = Depends(get_credits_service)):
    """
    Spend credits on a generation.

    Not idempotent: on a timeout, check /transactions before retrying.
    """
    return await service.generate(
        body.user_id, body.device_fingerprint, body.module,
        cost=body.cost, context=body.context, destination=body.destination
    )


@credits_router.get("/plans")
async def get_plans():
    """Plan catalog with credit grants, modules and durations."""
    return {"plans": catalog_view()}


# ==================== HOTMART WEBHOOK ====================

@credits_router.post("/webhooks/hotmart", response_model=WebhookResult)
async def hotmart_webhook(request: Request, service: CreditsService = Depends(get_credits_service)):
    """
    Handle Hotmart webhook notifications.

    Unknown event types are acknowledged with 200 so Hotmart does not retry them.
    """
    body = await request.body()
    token = request.headers.get(HOTMART_TOKEN_HEADER)

    try:
        payload = json.loads(body.decode("utf-8")) if body else None
    except (UnicodeDecodeError, json.JSONDecodeError):
        payload = None

    return await service.handle_subscription_webhook(payload, token)


# ==================== ADMIN ENDPOINTS ====================

@credits_router.post("/admin/plan", response_model=AccountView)
async def admin_set_plan(
    body: SetPlanRequest,
    admin: bool = Depends(get_admin),
    service: CreditsService = Depends(get_credits_service)
):
    """Manually set a plan (admin only). The balance is replaced by the plan grant."""
    return await service.set_plan(body.user_id, body.plan)


@credits_router.get("/admin/reconcile/{user_id}", response_model=ReconciliationReport)
async def admin_reconcile(
    user_id: str,
    admin: bool = Depends(get_admin),
    service: CreditsService = Depends(get_credits_service)
):
    """Compare a balance with its ledger (admin only)."""
    return await service.reconcile(user_id)
