import pytest

from authorization_sync import AuthorizationSyncService
from fakes import END, START, FakeElectionStore, FakeLedger
from provisioning import ProvisioningService


@pytest.fixture
def store():
    return FakeElectionStore()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def admin(store):
    return store.add_principal("admin@pitwall.test", "wallet-admin", is_admin=True)


@pytest.fixture
def voters(store):
    return [
        store.add_principal("lando@pitwall.test", "wallet-lando"),
        store.add_principal("oscar@pitwall.test", "wallet-oscar"),
        store.add_principal("charles@pitwall.test", "wallet-charles"),
    ]


@pytest.fixture
def provisioning(store, ledger):
    return ProvisioningService(store, ledger)


@pytest.fixture
def sync(store, ledger):
    return AuthorizationSyncService(store, ledger)


@pytest.fixture
def election(provisioning, admin):
    return provisioning.create_election(
        admin,
        title="Driver of the Day",
        description="Monaco GP",
        candidates=["Verstappen", "Hamilton", "Alonso"],
        start_time=START,
        end_time=END,
    )
