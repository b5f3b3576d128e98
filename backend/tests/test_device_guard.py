"""
Test Suite: Device Guard
========================

Tests:
- Fingerprints are hashed, never stored raw
- Repeated fingerprints never grow the device set
- The third distinct device is rejected with the current devices
"""

import pytest

from credit_ledger.config import ACCOUNTS
from credit_ledger.device_guard import hash_fingerprint
from credit_ledger.errors import AccountNotFound, DeviceLimitExceeded, ValidationError


class TestFingerprintHashing:

    def test_stable_and_salted(self):
        assert hash_fingerprint("device-a") == hash_fingerprint("device-a")
        assert hash_fingerprint("device-a", "s1") != hash_fingerprint("device-a", "s2")
        assert len(hash_fingerprint("device-a")) == 64

    @pytest.mark.parametrize("bad", ["", "  ", None])
    def test_missing_fingerprint_rejected(self, bad):
        with pytest.raises(ValidationError):
            hash_fingerprint(bad)


class TestDeviceAdmission:

    @pytest.mark.asyncio
    async def test_raw_fingerprint_never_stored(self, service, datastore):
        await service.start_session("alice@example.com", "iphone-raw-fp")

        stored = datastore.collections[ACCOUNTS]["alice@example.com"]
        assert "iphone-raw-fp" not in stored["devices"]
        assert stored["devices"] == [service.devices.device_id("iphone-raw-fp")]

    @pytest.mark.asyncio
    async def test_same_fingerprint_is_idempotent(self, service, datastore):
        for _ in range(5):
            result = await service.start_session("alice@example.com", "laptop")

        assert len(result.account.devices) == 1
        assert len(datastore.collections[ACCOUNTS]["alice@example.com"]["devices"]) == 1

    @pytest.mark.asyncio
    async def test_third_device_rejected(self, service, datastore):
        first = await service.start_session("alice@example.com", "laptop")
        second = await service.start_session("alice@example.com", "phone")
        assert second.account.devices == [first.device_id, second.device_id]

        with pytest.raises(DeviceLimitExceeded) as exc_info:
            await service.start_session("alice@example.com", "tablet")

        assert exc_info.value.devices == [first.device_id, second.device_id]
        assert exc_info.value.status_code == 403
        assert datastore.collections[ACCOUNTS]["alice@example.com"]["devices"] == [
            first.device_id, second.device_id
        ]

    @pytest.mark.asyncio
    async def test_known_device_still_admitted_at_limit(self, service):
        await service.start_session("alice@example.com", "laptop")
        await service.start_session("alice@example.com", "phone")

        result = await service.start_session("alice@example.com", "laptop")

        assert len(result.account.devices) == 2

    @pytest.mark.asyncio
    async def test_admit_requires_account(self, service):
        with pytest.raises(AccountNotFound):
            await service.devices.admit("ghost@example.com", "laptop")
