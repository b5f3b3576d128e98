import sys
from pathlib import Path

import pytest

# Add backend to path for direct imports
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import InMemoryDatastore
from credit_ledger.credits_service import CreditsService
from utils.environment import Settings

HOTTOK = "test-hottok"
ADMIN_KEY = "test-admin-key"


@pytest.fixture
def settings():
    return Settings(
        environment="test",
        hotmart_secret=HOTTOK,
        admin_api_key=ADMIN_KEY,
        device_hash_salt="test-salt"
    )


@pytest.fixture
def datastore():
    return InMemoryDatastore()


@pytest.fixture
def service(datastore, settings):
    return CreditsService(datastore, settings)
