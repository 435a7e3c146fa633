import pytest

from ifood_crypto import SecretCipher
from ifood_models import IntegrationConfig, StateCell
from sync_events import SyncNotifier
from sync_store import MemoryStore
from tests.helpers import MERCHANT_ID, TEST_ENCRYPTION_KEY, FakeOrderAPI, FrozenClock


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def cipher():
    return SecretCipher(TEST_ENCRYPTION_KEY)


@pytest.fixture
def store():
    return MemoryStore(products={'SKU-1': 'local-1'})


@pytest.fixture
def notifier():
    return SyncNotifier()


@pytest.fixture
def config(cipher):
    return IntegrationConfig(
        merchant_id=MERCHANT_ID,
        client_id='client-1',
        client_secret_encrypted=cipher.encrypt('s3cret'),
    )


@pytest.fixture
def state_cell(store, config):
    store.save_config(config)
    cell = StateCell()
    cell.set_config(config)
    return cell


@pytest.fixture
def fake_api():
    return FakeOrderAPI()
