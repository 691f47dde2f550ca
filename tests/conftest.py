import pytest

from mac_whitelist_auth.allowlist import EntryStore
from mac_whitelist_auth.config import Settings
from mac_whitelist_auth.service import WhitelistService
from mac_whitelist_auth.storage import DurabilityManager

ADMIN_KEY = "test-admin-key"


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        admin_key=ADMIN_KEY,
        data_dir=tmp_path / "data",
        scratch_dir=tmp_path / "scratch",
    )


@pytest.fixture()
def service(settings):
    settings.scratch_dir.mkdir()
    store = EntryStore()
    durability = DurabilityManager(store, settings.storage_locations())
    svc = WhitelistService(store, durability, settings=settings)
    yield svc
    svc.close()
