"""
Environment Configuration Utility

Loads the service settings exactly once at process start.

Precedence (highest first):
1. Real process environment variables
2. backend/.env (python-dotenv, never overrides 1)
3. Defaults declared on Settings

ENVIRONMENT values:
- production: HOTMART_SECRET and ADMIN_API_KEY are mandatory (load_settings raises)
- development: default
- test: used by the automated test suite
"""
import os
import logging
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).parent.parent

# Valid environment values
VALID_ENVIRONMENTS = {"production", "development", "test"}


class Settings(BaseModel):
    """Process-wide settings. Built by load_settings(), then passed around explicitly."""
    environment: str = "development"
    mongo_url: Optional[str] = None
    db_name: Optional[str] = None
    hotmart_secret: Optional[str] = None
    admin_api_key: Optional[str] = None
    device_hash_salt: str = ""
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    app_version: str = "unknown"
    revision: str = "unknown"
    build_id: Optional[str] = None

    def is_production(self) -> bool:
        return self.environment == "production"

    def describe(self) -> dict:
        """Non-secret view of the settings, used by /api/debug-env."""
        return {
            "ENVIRONMENT": self.environment,
            "HOTMART_SECRET": "OK" if self.hotmart_secret else "missing",
            "ADMIN_API_KEY": "OK" if self.admin_api_key else "missing",
            "MONGO_URL": bool(self.mongo_url),
            "DB_NAME": self.db_name,
            "APP_VERSION": self.app_version,
            "K_REVISION": self.revision,
            "BUILD_ID": self.build_id,
        }


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """
    Build Settings from the environment.

    Args:
        env_file: Optional .env path, defaults to backend/.env

    Returns:
        Settings instance

    Raises:
        ValueError: ENVIRONMENT=production without HOTMART_SECRET or ADMIN_API_KEY
    """
    load_dotenv(env_file or ROOT_DIR / ".env", override=False)

    environment = os.environ.get("ENVIRONMENT", "development").lower()
    if environment not in VALID_ENVIRONMENTS:
        logger.warning(f"Invalid ENVIRONMENT '{environment}', defaulting to 'development'")
        environment = "development"

    settings = Settings(
        environment=environment,
        mongo_url=os.environ.get("MONGO_URL") or None,
        db_name=os.environ.get("DB_NAME") or None,
        hotmart_secret=os.environ.get("HOTMART_SECRET") or None,
        admin_api_key=os.environ.get("ADMIN_API_KEY") or None,
        device_hash_salt=os.environ.get("DEVICE_HASH_SALT", ""),
        cors_origins=_split_csv(os.environ.get("CORS_ORIGINS", "*")) or ["*"],
        app_version=os.environ.get("APP_VERSION", "unknown"),
        revision=os.environ.get("K_REVISION", "unknown"),
        build_id=os.environ.get("BUILD_ID") or None,
    )

    if settings.is_production():
        missing = [
            name for name, value in (
                ("HOTMART_SECRET", settings.hotmart_secret),
                ("ADMIN_API_KEY", settings.admin_api_key),
            )
            if not value
        ]
        if missing:
            raise ValueError(
                f"Missing required production environment variables: {', '.join(missing)}"
            )
    elif not settings.hotmart_secret:
        logger.warning("HOTMART_SECRET not configured, Hotmart webhooks will be rejected")

    logger.info(f"Environment: {settings.environment} | Version: {settings.app_version}")
    return settings
