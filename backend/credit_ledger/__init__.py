"""
Credit Ledger Module
Credits and subscription entitlements for TravelMundo

This module provides:
- Lazy account creation with a free-tier signup bonus
- Append-only transaction ledger (signed amounts)
- Plan catalog and entitlement lookup
- Device limit enforcement (max 2 per account)
- Idempotent Hotmart webhook processing
- Atomic credit consumption for generations

Collections used:
- accounts: Per-user balance, plan and devices
- transactions: Immutable transaction log
- webhook_events: Webhook idempotency store
- system_info: Deploy log and webhook counters
"""

__version__ = "3.9.0"
