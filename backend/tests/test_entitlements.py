"""
Unit Tests for the Entitlement Engine
=====================================

Tests:
1. Catalog grants, modules and durations
2. Legacy plan aliases and case-insensitivity
3. Unknown plans are rejected, never defaulted
4. Expiration computation and checks
"""

import pytest
from datetime import datetime, timezone, timedelta

from credit_ledger.entitlements import (
    get_entitlement,
    normalize_plan,
    compute_expiration,
    is_expired,
    catalog_view
)
from credit_ledger.errors import UnknownPlan


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestPlanCatalog:

    @pytest.mark.parametrize("plan,grant,duration", [
        ("free", 2, 0),
        ("explorer", 10, 30),
        ("creator", 25, 30),
        ("master", 40, 30),
    ])
    def test_grants_and_durations(self, plan, grant, duration):
        entitlement = get_entitlement(plan)
        assert entitlement.plan == plan
        assert entitlement.credit_grant == grant
        assert entitlement.duration_days == duration

    def test_free_and_explorer_only_get_core(self):
        assert get_entitlement("free").allowed_modules == ["core"]
        assert get_entitlement("explorer").allowed_modules == ["core"]

    def test_paid_tiers_extend_modules(self):
        creator = set(get_entitlement("creator").allowed_modules)
        master = set(get_entitlement("master").allowed_modules)
        assert "core" in creator
        assert len(creator) > 1
        assert creator < master

    def test_catalog_view_lists_every_plan(self):
        view = catalog_view()
        assert set(view) == {"free", "explorer", "creator", "master"}
        assert view["creator"]["credit_grant"] == 25
        assert view["creator"]["name"] == "Creator"


class TestPlanNames:

    def test_legacy_aliases(self):
        assert normalize_plan("pro") == "creator"
        assert normalize_plan("premium") == "master"

    def test_case_insensitive(self):
        assert normalize_plan("  Creator ") == "creator"
        assert get_entitlement("MASTER").credit_grant == 40

    @pytest.mark.parametrize("plan", ["gold", "", None, 3])
    def test_unknown_plan_raises(self, plan):
        with pytest.raises(UnknownPlan):
            get_entitlement(plan)


class TestExpiration:

    def test_free_never_expires(self):
        assert compute_expiration("free", NOW) is None

    def test_paid_plan_expires_after_30_days(self):
        assert compute_expiration("explorer", NOW) == NOW + timedelta(days=30)

    def test_is_expired(self):
        past = (NOW - timedelta(seconds=1)).isoformat()
        future = (NOW + timedelta(days=1)).isoformat()
        assert is_expired({"plan_expires_at": past}, NOW) is True
        assert is_expired({"plan_expires_at": future}, NOW) is False
        assert is_expired({"plan_expires_at": None}, NOW) is False
        assert is_expired({}, NOW) is False

    def test_naive_and_zulu_timestamps_are_utc(self):
        assert is_expired({"plan_expires_at": "2026-02-28T12:00:00"}, NOW) is True
        assert is_expired({"plan_expires_at": "2026-03-02T12:00:00Z"}, NOW) is False
