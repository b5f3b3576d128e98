"""
Credit Ledger Database Initialization Script

Rules:
1. Environment Guard - requires CREDITS_INIT_CONFIRM=YES when ENVIRONMENT=production
2. Idempotent - running multiple times must not duplicate anything
3. No destructive operations - no dropping, deleting, truncation
4. Lazy account creation - accounts are created on first use, not here
5. Safe index creation - handles "index already exists" gracefully
6. Dry-run mode - --dry-run prints what it would do
7. Version stamp - tracks init version

Usage:
    CLI one-off: python -m credit_ledger.db_init
    With dry-run: python -m credit_ledger.db_init --dry-run
    In production: ENVIRONMENT=production CREDITS_INIT_CONFIRM=YES python -m credit_ledger.db_init
"""

import os
import sys
import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Tuple

from pymongo.errors import CollectionInvalid, OperationFailure

from .config import ACCOUNTS, TRANSACTIONS, WEBHOOK_EVENTS, SYSTEM_INFO

logger = logging.getLogger(__name__)

# Version tracking
INIT_VERSION = "v1.0.0"

# Collections to create (if not exist)
REQUIRED_COLLECTIONS = [
    ACCOUNTS,
    TRANSACTIONS,
    WEBHOOK_EVENTS,
    SYSTEM_INFO
]

# Index definitions: (collection, index_spec, options)
# Documents are keyed by _id, which is already unique.
REQUIRED_INDEXES = [
    # transaction history, newest first
    (TRANSACTIONS, [("user_id", 1), ("timestamp", -1), ("id", -1)], {"name": "idx_user_timestamp"}),
    (TRANSACTIONS, [("event_id", 1)], {"sparse": True, "name": "idx_event_id"}),
    (TRANSACTIONS, [("transaction_id", 1)], {"sparse": True, "name": "idx_transaction_id"}),

    # plan expiry sweeps and support lookups
    (ACCOUNTS, [("plan", 1), ("plan_expires_at", 1)], {"name": "idx_plan_expires"}),

    (WEBHOOK_EVENTS, [("user_id", 1), ("processed_at", -1)], {"name": "idx_webhook_user"}),
]


def check_environment() -> Tuple[bool, str]:
    """
    Check environment and confirm if production execution is allowed.

    Returns:
        Tuple of (allowed, message)
    """
    app_env = os.environ.get("ENVIRONMENT", "development")

    if app_env.lower() == "production":
        confirm = os.environ.get("CREDITS_INIT_CONFIRM", "")
        if confirm != "YES":
            return False, (
                "PRODUCTION ENVIRONMENT DETECTED!\n"
                "To run init in production, set: CREDITS_INIT_CONFIRM=YES\n"
                "Current value: CREDITS_INIT_CONFIRM='%s'" % confirm
            )

    return True, f"Environment: {app_env}"


async def create_collection_if_not_exists(db, collection_name: str, dry_run: bool = False) -> str:
    """Create a collection if it doesn't exist."""
    existing = await db.list_collection_names()

    if collection_name in existing:
        return f"  [SKIP] Collection '{collection_name}' already exists"

    if dry_run:
        return f"  [DRY-RUN] Would create collection '{collection_name}'"

    try:
        await db.create_collection(collection_name)
        return f"  [CREATE] Created collection '{collection_name}'"
    except CollectionInvalid:
        return f"  [SKIP] Collection '{collection_name}' already exists (race)"


async def create_index_if_not_exists(
    db,
    collection_name: str,
    index_spec: List[Tuple],
    options: dict,
    dry_run: bool = False
) -> str:
    """Create an index if it doesn't exist."""
    collection = db[collection_name]
    index_name = options.get("name", str(index_spec))

    existing_indexes = await collection.index_information()

    if index_name in existing_indexes:
        return f"  [SKIP] Index '{index_name}' on '{collection_name}' already exists"

    if dry_run:
        return f"  [DRY-RUN] Would create index '{index_name}' on '{collection_name}'"

    try:
        await collection.create_index(index_spec, **options)
        return f"  [CREATE] Created index '{index_name}' on '{collection_name}'"
    except OperationFailure as e:
        if "already exists" in str(e).lower():
            return f"  [SKIP] Index '{index_name}' on '{collection_name}' already exists (race)"
        raise


async def update_version_stamp(db, dry_run: bool = False) -> str:
    """Update or create version stamp document."""
    if dry_run:
        return f"  [DRY-RUN] Would update version stamp to {INIT_VERSION}"

    await db[SYSTEM_INFO].update_one(
        {"_id": "credits_init"},
        {
            "$set": {
                "version": INIT_VERSION,
                "applied_at": datetime.now(timezone.utc).isoformat()
            }
        },
        upsert=True
    )
    return f"  [UPDATE] Version stamp updated to {INIT_VERSION}"


async def run_init(db, dry_run: bool = False):
    """Create collections, indexes and the version stamp on db."""
    logger.info("=== Collections ===")
    for collection_name in REQUIRED_COLLECTIONS:
        logger.info(await create_collection_if_not_exists(db, collection_name, dry_run))

    logger.info("=== Indexes ===")
    for collection_name, index_spec, options in REQUIRED_INDEXES:
        logger.info(await create_index_if_not_exists(db, collection_name, index_spec, options, dry_run))

    logger.info("=== Version Stamp ===")
    logger.info(await update_version_stamp(db, dry_run))


async def _main(dry_run: bool):
    from database import MongoDatastore
    from utils.environment import load_settings

    allowed, env_message = check_environment()
    logger.info(env_message)

    if not allowed:
        logger.error("Init blocked due to environment guard")
        sys.exit(1)

    settings = load_settings()
    try:
        store = MongoDatastore.from_settings(settings)
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info(f"Database: {settings.db_name}")
    logger.info(f"Dry Run: {dry_run}")
    logger.info("-" * 50)

    db_ok, db_error = await store.ping()
    if not db_ok:
        logger.error(db_error)
        sys.exit(1)

    try:
        await run_init(store.db, dry_run)
    finally:
        store.close()

    logger.info("=" * 50)
    logger.info("SUCCESS: Credits DB init completed")
    logger.info("=" * 50)


def main():
    """Main entry point."""
    import argparse

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(
        description="Credit Ledger Database Initialization",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Development (default)
    python -m credit_ledger.db_init

    # Dry run (no changes)
    python -m credit_ledger.db_init --dry-run

    # Production
    ENVIRONMENT=production CREDITS_INIT_CONFIRM=YES python -m credit_ledger.db_init
        """
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Print what would be done without making changes'
    )

    args = parser.parse_args()

    asyncio.run(_main(dry_run=args.dry_run))


if __name__ == "__main__":
    main()
