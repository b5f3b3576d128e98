"""
Test Suite: Account Store
=========================

Tests:
- Lazy creation with the free plan and a signup bonus
- Balance adjustments paired with ledger entries
- Insufficient credits leave the balance untouched
- Lazy plan expiration (reset to the free grant)
- Purchase (additive) vs manual (replace) plan changes
- Atomicity when the ledger append fails
- Concurrent first access creates one account
"""

import asyncio
import pytest
from datetime import datetime, timezone, timedelta

from fakes import FailingWrite, InMemoryDatastore
from credit_ledger.account_store import AccountStore, normalize_user_id
from credit_ledger.config import ACCOUNTS, TRANSACTIONS
from credit_ledger.errors import AccountNotFound, InsufficientCredits, ValidationError
from credit_ledger.ledger import TransactionLedger
from credit_ledger.models import TxMeta


def ledger_sum(datastore, user_id):
    return sum(t["amount"] for t in datastore.collections[TRANSACTIONS].values() if t["user_id"] == user_id)


def ledger_entries(datastore, user_id):
    return [t for t in datastore.collections[TRANSACTIONS].values() if t["user_id"] == user_id]


@pytest.fixture
def store(datastore):
    return AccountStore(datastore, TransactionLedger(datastore))


class TestUserIds:

    def test_normalized_to_lower_case(self):
        assert normalize_user_id("  Alice@Example.COM ") == "alice@example.com"

    @pytest.mark.parametrize("bad", ["", "   ", None, 42])
    def test_missing_user_id_rejected(self, bad):
        with pytest.raises(ValidationError):
            normalize_user_id(bad)


class TestAccountCreation:

    @pytest.mark.asyncio
    async def test_new_account_gets_free_plan_and_bonus(self, store, datastore):
        account = await store.get_or_create("alice@example.com")

        assert account["credits"] == 2
        assert account["plan"] == "free"
        assert account["allowed_modules"] == ["core"]
        assert account["devices"] == []
        assert account["plan_expires_at"] is None

        entries = ledger_entries(datastore, "alice@example.com")
        assert len(entries) == 1
        assert entries[0]["type"] == "credit"
        assert entries[0]["source"] == "signup-bonus"
        assert entries[0]["amount"] == 2

    @pytest.mark.asyncio
    async def test_second_access_does_not_grant_again(self, store, datastore):
        await store.get_or_create("alice@example.com")
        account = await store.get_or_create("ALICE@example.com")

        assert account["credits"] == 2
        assert len(ledger_entries(datastore, "alice@example.com")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_first_access_creates_one_account(self, store, datastore):
        await asyncio.gather(*[store.get_or_create("race@example.com") for _ in range(5)])

        assert len(datastore.collections[ACCOUNTS]) == 1
        assert len(ledger_entries(datastore, "race@example.com")) == 1

    @pytest.mark.asyncio
    async def test_get_balance_never_creates(self, store, datastore):
        with pytest.raises(AccountNotFound):
            await store.get_balance("ghost@example.com")
        assert "ghost@example.com" not in datastore.collections[ACCOUNTS]


class TestAdjustCredits:

    @pytest.mark.asyncio
    async def test_debit_then_insufficient(self, store, datastore):
        await store.get_or_create("alice@example.com")

        account, entry = await store.adjust_credits("alice@example.com", -1, TxMeta(type="debit"))
        assert account["credits"] == 1
        assert entry["amount"] == -1
        assert entry["balance_after"] == 1

        with pytest.raises(InsufficientCredits) as exc_info:
            await store.adjust_credits("alice@example.com", -5, TxMeta(type="debit"))

        assert exc_info.value.details["balance"] == 1
        assert await store.get_balance("alice@example.com") == 1
        assert ledger_sum(datastore, "alice@example.com") == 1

    @pytest.mark.asyncio
    async def test_zero_delta_rejected(self, store):
        with pytest.raises(ValidationError):
            await store.adjust_credits("alice@example.com", 0, TxMeta(type="credit"), create=True)

    @pytest.mark.asyncio
    async def test_missing_account_without_create(self, store):
        with pytest.raises(AccountNotFound):
            await store.adjust_credits("ghost@example.com", -1, TxMeta(type="debit"))

    @pytest.mark.asyncio
    async def test_updated_at_refreshed(self, store):
        created = await store.get_or_create("alice@example.com")
        await asyncio.sleep(0.001)
        account, _ = await store.adjust_credits("alice@example.com", 3, TxMeta(type="credit"))
        assert account["updated_at"] > created["updated_at"]
        assert account["created_at"] == created["created_at"]

    @pytest.mark.asyncio
    async def test_failed_ledger_append_rolls_back_balance(self):
        datastore = InMemoryDatastore()
        store = AccountStore(datastore, TransactionLedger(datastore))
        await store.get_or_create("alice@example.com")

        datastore.failing_collections.add(TRANSACTIONS)
        with pytest.raises(FailingWrite):
            await store.adjust_credits("alice@example.com", 10, TxMeta(type="credit"))

        datastore.failing_collections.clear()
        assert await store.get_balance("alice@example.com") == 2
        assert ledger_sum(datastore, "alice@example.com") == 2


class TestPlans:

    @pytest.mark.asyncio
    async def test_additive_plan_keeps_unspent_credits(self, store, datastore):
        await store.get_or_create("bob@example.com")
        expires = datetime.now(timezone.utc) + timedelta(days=30)

        account = await store.set_plan("bob@example.com", "creator", expires, mode="additive", source="hotmart")

        assert account["plan"] == "creator"
        assert account["credits"] == 2 + 25
        assert "itinerary-plus" in account["allowed_modules"]
        assert account["plan_expires_at"] == expires.isoformat()
        assert ledger_sum(datastore, "bob@example.com") == 27

    @pytest.mark.asyncio
    async def test_replace_plan_sets_balance_to_grant(self, store, datastore):
        await store.get_or_create("carol@example.com")
        await store.adjust_credits("carol@example.com", 50, TxMeta(type="credit"))

        account = await store.set_plan("carol@example.com", "explorer", mode="replace")

        assert account["credits"] == 10
        assert ledger_sum(datastore, "carol@example.com") == 10

    @pytest.mark.asyncio
    async def test_replace_lowering_balance_is_recorded_as_debit(self, store, datastore):
        await store.get_or_create("carol@example.com")
        await store.adjust_credits("carol@example.com", 50, TxMeta(type="credit"))

        await store.set_plan("carol@example.com", "explorer", mode="replace")
        await store.set_plan("carol@example.com", "master", mode="replace")

        plan_entries = [
            t for t in sorted(datastore.collections[TRANSACTIONS].values(), key=lambda t: t["balance_after"])
            if t["user_id"] == "carol@example.com" and t["plan"] in ("explorer", "master")
        ]
        lowered, raised = plan_entries
        assert (lowered["type"], lowered["amount"], lowered["plan"]) == ("debit", 10 - 52, "explorer")
        assert (raised["type"], raised["amount"], raised["plan"]) == ("credit", 40 - 10, "master")

    @pytest.mark.asyncio
    async def test_invalid_mode_rejected(self, store):
        with pytest.raises(ValidationError):
            await store.set_plan("carol@example.com", "explorer", mode="merge")

    @pytest.mark.asyncio
    async def test_expired_plan_downgraded_on_read(self, store, datastore):
        expired = datetime.now(timezone.utc) - timedelta(days=1)
        await store.set_plan("dave@example.com", "master", expired, mode="additive")

        account = await store.get_or_create("dave@example.com")

        assert account["plan"] == "free"
        assert account["plan_expires_at"] is None
        assert account["allowed_modules"] == ["core"]
        assert account["credits"] == 2

        stored = datastore.collections[ACCOUNTS]["dave@example.com"]
        assert stored["plan"] == "free"

        expiry = [t for t in ledger_entries(datastore, "dave@example.com") if t["type"] == "expiry"]
        assert len(expiry) == 1
        assert expiry[0]["amount"] == 2 - 42
        assert expiry[0]["context"]["previous_plan"] == "master"
        assert ledger_sum(datastore, "dave@example.com") == 2

    @pytest.mark.asyncio
    async def test_legacy_plan_normalized_on_read(self, store, datastore):
        await store.get_or_create("legacy@example.com")
        datastore.collections[ACCOUNTS]["legacy@example.com"]["plan"] = "pro"

        account = await store.get_or_create("legacy@example.com")

        assert account["plan"] == "creator"
        assert "budget-planner" in account["allowed_modules"]
