"""
Entitlement Engine - Resolves what a plan confers

Pure lookups over PLAN_CATALOG, no I/O.

Rules:
- Plan names are case-insensitive
- Legacy names (pro, premium) resolve to their current equivalents
- Unknown plans raise UnknownPlan; callers never fall back to a default
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

from .config import PLAN_CATALOG, LEGACY_PLAN_ALIASES
from .errors import UnknownPlan
from .models import Entitlement


def normalize_plan(plan: Any) -> str:
    """Return the canonical catalog name for plan, or raise UnknownPlan."""
    if not isinstance(plan, str):
        raise UnknownPlan(plan)

    name = plan.strip().lower()
    name = LEGACY_PLAN_ALIASES.get(name, name)

    if name not in PLAN_CATALOG:
        raise UnknownPlan(plan)
    return name


def get_entitlement(plan: Any) -> Entitlement:
    """
    Resolve a plan identifier to its entitlement.

    Returns:
        Entitlement with credit grant, allowed modules and duration
    """
    name = normalize_plan(plan)
    entry = PLAN_CATALOG[name]
    return Entitlement(
        plan=name,
        credit_grant=entry["credit_grant"],
        allowed_modules=list(entry["allowed_modules"]),
        duration_days=entry["duration_days"]
    )


def compute_expiration(plan: Any, now: datetime) -> Optional[datetime]:
    """Expiration instant for a plan starting at now. None for non-expiring plans."""
    entitlement = get_entitlement(plan)
    if not entitlement.duration_days:
        return None
    return now + timedelta(days=entitlement.duration_days)


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            return None
    # Naive timestamps are stored in UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_expired(account: Mapping[str, Any], now: datetime) -> bool:
    """True when the account carries a plan expiration that lies in the past."""
    expires_at = parse_timestamp(account.get("plan_expires_at"))
    if expires_at is None:
        return False
    return now > expires_at


def catalog_view() -> Dict[str, Dict[str, Any]]:
    """Public view of the plan catalog."""
    return {
        name: {"name": entry["name"], **get_entitlement(name).model_dump(exclude={"plan"})}
        for name, entry in PLAN_CATALOG.items()
    }
