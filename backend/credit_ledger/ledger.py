"""
Transaction Ledger

Append-only log of every balance change. Entries are written only inside
the datastore transaction that mutates the balance (see AccountStore), and
are never updated or deleted; corrections are new compensating entries.

Amounts are signed: positive adds credits, negative removes them, so the
sum of a user's amounts always equals their balance.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from .config import TRANSACTIONS, DEFAULT_TRANSACTION_LIMIT, MAX_TRANSACTION_LIMIT
from .errors import ValidationError
from .models import Transaction, TransactionPage, TxMeta

logger = logging.getLogger(__name__)

# Newest first; id breaks timestamp ties so offsets stay stable between pages
LEDGER_ORDER = [("timestamp", -1), ("id", -1)]


def _parse_cursor(cursor: Optional[str]) -> int:
    if cursor in (None, ""):
        return 0
    try:
        offset = int(cursor)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid cursor: {cursor}")
    if offset < 0:
        raise ValidationError(f"Invalid cursor: {cursor}")
    return offset


class TransactionLedger:
    """Append-only transaction log over the datastore."""

    def __init__(self, datastore):
        self.datastore = datastore

    async def record(
        self,
        txn,
        user_id: str,
        amount: int,
        balance_after: int,
        meta: TxMeta,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Append one entry using the open transaction txn.

        Must be called from the same transaction that persists balance_after.
        """
        now = now or datetime.now(timezone.utc)
        tx_id = uuid.uuid4().hex
        entry = Transaction(
            id=tx_id,
            user_id=user_id,
            amount=amount,
            balance_after=balance_after,
            timestamp=now.isoformat(),
            **meta.model_dump()
        ).model_dump()

        await txn.add(TRANSACTIONS, entry, key=tx_id)
        logger.debug(f"Ledger {meta.type}/{meta.source} {amount:+d} for {user_id} -> {balance_after}")
        return entry

    async def list_by_user(
        self,
        user_id: str,
        limit: int = DEFAULT_TRANSACTION_LIMIT,
        cursor: Optional[str] = None
    ) -> TransactionPage:
        """
        One page of a user's transactions, newest first.

        cursor is the opaque value returned as next_cursor by the previous
        page; next_cursor is None on the last page.
        """
        if not isinstance(limit, int) or limit < 1 or limit > MAX_TRANSACTION_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_TRANSACTION_LIMIT}")
        offset = _parse_cursor(cursor)

        # Fetch one extra row to learn whether another page exists
        docs = await self.datastore.query(
            TRANSACTIONS,
            {"user_id": user_id},
            order_by=LEDGER_ORDER,
            limit=limit + 1,
            offset=offset
        )

        has_more = len(docs) > limit
        items = [Transaction(**doc) for doc in docs[:limit]]
        return TransactionPage(
            items=items,
            next_cursor=str(offset + limit) if has_more else None
        )

    async def iter_by_user(self, user_id: str, page_size: int = 100) -> AsyncIterator[Transaction]:
        """Lazily walk every transaction of a user, newest first."""
        cursor = None
        while True:
            page = await self.list_by_user(user_id, limit=page_size, cursor=cursor)
            for item in page.items:
                yield item
            if page.next_cursor is None:
                return
            cursor = page.next_cursor

    async def sum_for_user(self, user_id: str) -> tuple:
        """Signed sum of a user's amounts and the number of entries."""
        total = 0
        count = 0
        async for item in self.iter_by_user(user_id, page_size=MAX_TRANSACTION_LIMIT):
            total += item.amount
            count += 1
        return total, count
