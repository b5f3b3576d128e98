"""
Credit Ledger Configuration and Constants

Plan catalog, webhook dispatch table, device policy and collection names
are defined here. Values are credits and days.
"""

# ==================== COLLECTIONS ====================
ACCOUNTS = "accounts"
TRANSACTIONS = "transactions"
WEBHOOK_EVENTS = "webhook_events"
SYSTEM_INFO = "system_info"

# ==================== MODULES ====================
CORE_MODULE = "core"
ITINERARY_PLUS = "itinerary-plus"
BUDGET_PLANNER = "budget-planner"
TRAVEL_CONCIERGE = "travel-concierge"

# ==================== PLAN CATALOG ====================
# duration_days = 0 means the plan never expires
PLAN_CATALOG = {
    "free": {
        "name": "Free",
        "credit_grant": 2,
        "allowed_modules": [CORE_MODULE],
        "duration_days": 0
    },
    "explorer": {
        "name": "Explorer",
        "credit_grant": 10,
        "allowed_modules": [CORE_MODULE],
        "duration_days": 30
    },
    "creator": {
        "name": "Creator",
        "credit_grant": 25,
        "allowed_modules": [CORE_MODULE, ITINERARY_PLUS, BUDGET_PLANNER],
        "duration_days": 30
    },
    "master": {
        "name": "Master",
        "credit_grant": 40,
        "allowed_modules": [CORE_MODULE, ITINERARY_PLUS, BUDGET_PLANNER, TRAVEL_CONCIERGE],
        "duration_days": 30
    }
}

# Legacy plan names still found on old account documents
LEGACY_PLAN_ALIASES = {
    "pro": "creator",
    "premium": "master"
}

FREE_PLAN = "free"

# Plan granted by an approved purchase that does not name one
DEFAULT_PURCHASE_PLAN = "creator"

# ==================== TRANSACTION VOCABULARY ====================
TRANSACTION_TYPES = ("credit", "debit", "canceled", "purchase", "usage", "expiry")
TRANSACTION_SOURCES = ("manual", "hotmart", "generation", "signup-bonus", "system")

# Largest single grant, debit or generation cost (keeps amounts inside BSON int64)
MAX_CREDIT_AMOUNT = 1_000_000

# ==================== DEVICE POLICY ====================
MAX_DEVICES = 2

# ==================== LEDGER PAGING ====================
DEFAULT_TRANSACTION_LIMIT = 10
MAX_TRANSACTION_LIMIT = 200

# ==================== HOTMART WEBHOOK ====================
HOTMART_TOKEN_HEADER = "x-hotmart-hottok"

# Cursor for the next /transactions page, sent as a response header
NEXT_CURSOR_HEADER = "X-Next-Cursor"

# Normalized (lower-case) event name -> action
WEBHOOK_EVENT_ACTIONS = {
    "purchase.approved": "purchase",
    "approved": "purchase",
    "purchase_approved": "purchase",
    "purchase_complete": "purchase",
    "subscription_canceled": "cancel",
    "canceled": "cancel",
    "subscription_cancellation": "cancel"
}

# Where the buyer email may live in a Hotmart payload, tried in order
WEBHOOK_EMAIL_PATHS = [
    ("data", "buyer", "email"),
    ("buyer", "email"),
    ("data", "subscriber", "email"),
    ("subscriber", "email"),
    ("data", "purchase", "buyer", "email"),
    ("email",)
]

WEBHOOK_EVENT_PATHS = [
    ("event",),
    ("event_type",),
    ("status",)
]

WEBHOOK_EVENT_ID_PATHS = [
    ("id",),
    ("event_id",),
    ("revision",)
]

WEBHOOK_PLAN_PATHS = [
    ("plan",),
    ("data", "plan"),
    ("data", "subscription", "plan", "name")
]
