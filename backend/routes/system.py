"""
System Routes - health, environment diagnostics and deploy log
"""
from fastapi import APIRouter, Request
from datetime import datetime, timezone
import logging

from credit_ledger.config import SYSTEM_INFO
from credit_ledger.models import DeployLogRequest

logger = logging.getLogger(__name__)

system_router = APIRouter(tags=["System"])


@system_router.get("/health")
async def health():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


@system_router.get("/debug-env")
async def debug_env(request: Request):
    """Environment diagnostics. Reports whether secrets are present, never their values."""
    settings = request.app.state.settings
    datastore = request.app.state.datastore

    webhook_stats = await datastore.get(SYSTEM_INFO, "webhook_stats") or {}

    return {
        "message": "Environment diagnostics",
        "variables": settings.describe(),
        "webhook_stats": webhook_stats
    }


@system_router.post("/deploy-log")
async def deploy_log(body: DeployLogRequest, request: Request):
    """Record a deployment in the system_info collection."""
    settings = request.app.state.settings
    datastore = request.app.state.datastore

    payload = {
        "version": body.version or "unknown",
        "deployedBy": body.deployed_by or "unknown",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "buildId": settings.build_id,
        "revision": settings.revision
    }

    await datastore.add(SYSTEM_INFO, payload)
    logger.info(f"Deploy logged: {payload['version']} by {payload['deployedBy']}")

    return {"ok": True, "message": "Deploy log recorded", "data": payload}
