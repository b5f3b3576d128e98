"""
Device Guard - caps the number of devices using one account

Device fingerprints are hashed (SHA-256, optionally salted) before they
touch the datastore. An account admits at most MAX_DEVICES distinct
devices; known devices always pass. Devices are never evicted.
"""

import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .account_store import AccountStore, normalize_user_id
from .config import ACCOUNTS, MAX_DEVICES
from .errors import AccountNotFound, DeviceLimitExceeded, ValidationError

logger = logging.getLogger(__name__)


def hash_fingerprint(fingerprint: Any, salt: str = "") -> str:
    """Stable one-way device id for a client fingerprint."""
    if not isinstance(fingerprint, str) or not fingerprint.strip():
        raise ValidationError("deviceFingerprint is required")
    return hashlib.sha256(f"{salt}{fingerprint.strip()}".encode("utf-8")).hexdigest()


class DeviceGuard:
    """Admits devices to an account up to max_devices."""

    def __init__(self, datastore, account_store: AccountStore, salt: str = "", max_devices: int = MAX_DEVICES):
        self.datastore = datastore
        self.account_store = account_store
        self.salt = salt
        self.max_devices = max_devices

    def device_id(self, fingerprint: str) -> str:
        return hash_fingerprint(fingerprint, self.salt)

    async def admit(self, user_id: str, fingerprint: str) -> str:
        """
        Admit a device for an existing account.

        Returns:
            The hashed device id

        Raises:
            DeviceLimitExceeded: the account already has max_devices other devices
        """
        key = normalize_user_id(user_id)
        device_id = self.device_id(fingerprint)

        async def work(txn):
            account = await self.account_store.load_in_txn(txn, key, create=False)
            if account is None:
                raise AccountNotFound(key)
            return await self.admit_in_txn(txn, account, device_id)

        return await self.datastore.run_transaction(work)

    async def admit_in_txn(
        self,
        txn,
        account: Dict[str, Any],
        device_id: str,
        now: Optional[datetime] = None
    ) -> str:
        """Check and record device_id on account within txn. Mutates account."""
        devices = list(account.get("devices", []))

        if device_id in devices:
            return device_id

        if len(devices) >= self.max_devices:
            logger.warning(f"Device limit reached for {account['user_id']} ({len(devices)} devices)")
            raise DeviceLimitExceeded(account["user_id"], devices, self.max_devices)

        now = now or datetime.now(timezone.utc)
        devices.append(device_id)
        account["devices"] = devices
        account["updated_at"] = now.isoformat()
        await txn.set(ACCOUNTS, account["user_id"], account)

        logger.info(f"Admitted device {device_id[:12]} for {account['user_id']} ({len(devices)}/{self.max_devices})")
        return device_id
