"""
Credit Ledger Data Models

Pydantic models for credit ledger operations.
These define the structure of documents stored in MongoDB collections
and the bodies exchanged over the API.

Response models serialize with camelCase keys (newBalance, allowedModules)
for the existing web client; Python code uses the snake_case attributes.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Literal, Dict, Any


TransactionType = Literal["credit", "debit", "canceled", "purchase", "usage", "expiry"]
TransactionSource = Literal["manual", "hotmart", "generation", "signup-bonus", "system"]


class _Response(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ==================== ACCOUNT MODELS ====================

class AccountView(_Response):
    """Response model for account endpoints"""
    user_id: str
    credits: int
    plan: str
    plan_expires_at: Optional[str] = None
    allowed_modules: List[str]
    devices: List[str]


class BalanceResponse(_Response):
    user_id: str
    credits: int


class BalanceChange(_Response):
    ok: bool = True
    user_id: str
    new_balance: int
    transaction_id: str


# ==================== LEDGER MODELS ====================

class Transaction(_Response):
    """Immutable ledger entry. amount is signed: positive adds, negative removes."""
    id: str
    user_id: str
    type: TransactionType
    amount: int
    balance_after: int
    source: TransactionSource
    reason: Optional[str] = None
    module: Optional[str] = None
    destination: Optional[str] = None
    transaction_id: Optional[str] = None
    event_id: Optional[str] = None
    plan: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str  # ISO datetime string


class TransactionPage(BaseModel):
    """One page of history. The API sends items as the body and next_cursor as a header."""
    items: List[Transaction]
    next_cursor: Optional[str] = None

class TxMeta(BaseModel):
    """Context recorded alongside a balance change"""
    type: TransactionType
    source: TransactionSource = "manual"
    reason: Optional[str] = None
    module: Optional[str] = None
    destination: Optional[str] = None
    transaction_id: Optional[str] = None
    event_id: Optional[str] = None
    plan: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)


class ReconciliationReport(_Response):
    user_id: str
    credits: int
    ledger_sum: int
    transaction_count: int
    balanced: bool


# ==================== ENTITLEMENT MODELS ====================

class Entitlement(BaseModel):
    """What a plan confers"""
    model_config = ConfigDict(frozen=True)

    plan: str
    credit_grant: int
    allowed_modules: List[str]
    duration_days: int = 0


# ==================== SESSION / GENERATION MODELS ====================

class SessionResult(_Response):
    account: AccountView
    device_id: str


class GenerationResult(_Response):
    remaining_credits: int
    plan: str
    allowed_modules: List[str]
    devices: List[str]
    transaction_id: str


# ==================== WEBHOOK MODELS ====================

class WebhookEvent(BaseModel):
    """Hotmart webhook event record for idempotency"""
    event_id: str
    event: str
    action: Literal["purchase", "cancel", "ignored"]
    user_id: str
    plan: Optional[str] = None
    processed_at: str


class WebhookResult(_Response):
    accepted: bool
    event: str
    status: Literal["applied", "duplicate", "ignored"]
    event_id: str
    user_id: Optional[str] = None


# ==================== REQUEST BODIES ====================
# Field aliases keep the camelCase names the web client already sends.

class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class GrantCreditsRequest(_Body):
    user_id: str = Field(..., alias="userId")
    credits: int = Field(..., description="Credits to add")
    transaction_id: Optional[str] = Field(None, alias="transactionId")
    reason: Optional[str] = None


class ConsumeCreditsRequest(_Body):
    user_id: str = Field(..., alias="userId")
    credits: int = Field(..., description="Credits to remove")
    reason: Optional[str] = None


class StartSessionRequest(_Body):
    user_id: str = Field(..., alias="userId")
    device_fingerprint: str = Field(..., alias="deviceFingerprint")


class GenerateRequest(_Body):
    user_id: str = Field(..., alias="userId")
    device_fingerprint: str = Field(..., alias="deviceFingerprint")
    module: str
    cost: int = 1
    destination: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)


class SetPlanRequest(_Body):
    user_id: str = Field(..., alias="userId")
    plan: str


class DeployLogRequest(_Body):
    version: Optional[str] = None
    deployed_by: Optional[str] = Field(None, alias="deployedBy")
