"""
Credit Ledger Errors

Every failure the core can report is a CreditsError subclass. Each one
carries the HTTP status the API layer answers with, a stable error code
and optional diagnostic details.
"""

from typing import Any, Dict, Optional


class CreditsError(Exception):
    """Base class for all credit ledger failures."""
    status_code = 500
    error_code = "CREDITS_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API response format."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(CreditsError):
    """Missing or malformed caller input."""
    status_code = 400
    error_code = "VALIDATION_ERROR"


class AccountNotFound(CreditsError):
    status_code = 404
    error_code = "ACCOUNT_NOT_FOUND"

    def __init__(self, user_id: str):
        super().__init__(f"Account not found: {user_id}", {"user_id": user_id})


class InsufficientCredits(CreditsError):
    status_code = 402
    error_code = "INSUFFICIENT_CREDITS"

    def __init__(self, user_id: str, balance: int, required: int):
        super().__init__(
            "Not enough credits for this operation.",
            {"user_id": user_id, "balance": balance, "required": required},
        )


class DeviceLimitExceeded(CreditsError):
    """Raised when a new device would exceed the per-account device limit."""
    status_code = 403
    error_code = "DEVICE_LIMIT_EXCEEDED"

    def __init__(self, user_id: str, devices: list, limit: int):
        self.devices = list(devices)
        super().__init__(
            f"Device limit reached ({limit} devices per account).",
            {"user_id": user_id, "devices": self.devices, "limit": limit},
        )


class ModuleNotAllowed(CreditsError):
    status_code = 403
    error_code = "MODULE_NOT_ALLOWED"

    def __init__(self, module: str, plan: str, allowed_modules: list):
        super().__init__(
            f"Module '{module}' is not included in plan '{plan}'.",
            {"module": module, "plan": plan, "allowed_modules": list(allowed_modules)},
        )


class UnknownPlan(CreditsError):
    status_code = 422
    error_code = "UNKNOWN_PLAN"

    def __init__(self, plan: Any):
        super().__init__(f"Unknown plan: {plan}", {"plan": plan})


class Unauthorized(CreditsError):
    status_code = 401
    error_code = "UNAUTHORIZED"


class MalformedPayload(CreditsError):
    status_code = 400
    error_code = "MALFORMED_PAYLOAD"


class ConfigurationError(CreditsError):
    """Server-side misconfiguration (e.g. missing webhook secret), not a client fault."""
    status_code = 500
    error_code = "CONFIGURATION_ERROR"


class DatastoreUnavailable(CreditsError):
    """Transient datastore failure. Safe to retry for idempotent operations only."""
    status_code = 503
    error_code = "DATASTORE_UNAVAILABLE"
