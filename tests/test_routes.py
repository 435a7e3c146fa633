import hashlib
import hmac
import json
from datetime import timedelta

import pytest

from ifood_crypto import SecretCipher
from ifood_models import IntegrationConfig, LocalOrder, utcnow
from ifood_settings import SyncSettings
from ifood_webhook import SIGNATURE_HEADER
from order_status import LocalStatus, RemoteStatus
from sync_store import MemoryStore
from syncserver import create_app
from tests.helpers import MERCHANT_ID, TEST_ENCRYPTION_KEY, FakeResponse, FakeSession

WEBHOOK_SECRET = 'webhook-secret'


def make_settings(**overrides):
    values = dict(
        encryption_key=TEST_ENCRYPTION_KEY,
        webhook_secret=WEBHOOK_SECRET,
        max_retries=0,
        retry_delay=0.0,
    )
    values.update(overrides)
    return SyncSettings(**values)


def authenticated_config():
    return IntegrationConfig(
        merchant_id=MERCHANT_ID,
        client_id='client-1',
        client_secret_encrypted=SecretCipher(TEST_ENCRYPTION_KEY).encrypt('s3cret'),
        access_token='tok',
        token_expires_at=utcnow() + timedelta(hours=6),
    )


def order_payload(order_id, status, created_at=None):
    return {
        'id': order_id,
        'displayId': order_id[-4:],
        'orderStatus': status,
        'createdAt': (created_at or utcnow()).isoformat(),
        'customer': {'name': 'Maria'},
        'items': [{'id': 'p-1', 'name': 'X-Burger', 'quantity': 1, 'unitPrice': 25.0, 'externalCode': 'SKU-1'}],
        'total': {'orderAmount': 25.0},
    }


class AppHarness:
    def __init__(self, configured=True, **settings):
        self.store = MemoryStore(products={'SKU-1': 'local-1'})
        if configured:
            self.store.save_config(authenticated_config())
        self.http = FakeSession()
        self.auth = FakeSession()
        self.app = create_app(
            settings=make_settings(**settings), store=self.store, start_scheduler=False,
            http_session=self.http, auth_session=self.auth,
        )
        self.client = self.app.test_client()

    def add_local_order(self, order_id, status=RemoteStatus.PLACED):
        self.store.upsert_order(LocalOrder(
            remote_order_id=order_id,
            local_status=LocalStatus.PENDING,
            remote_status=status,
            created_at=utcnow(),
        ))


@pytest.fixture
def harness():
    return AppHarness()


def test_health(harness):
    response = harness.client.get('/api/health')
    assert response.status_code == 200
    assert response.get_json()['webhook_mode'] == 'hmac_sha256'


def test_status_reports_configuration(harness):
    data = harness.client.get('/api/ifood/status').get_json()
    assert data['configured'] is True
    assert data['merchant_id'] == MERCHANT_ID
    assert data['polling']['running'] is False
    assert data['pending_actions'] == []


def test_save_config_authenticates_and_hides_secret():
    harness = AppHarness(configured=False)
    harness.auth.responses.append(FakeResponse(200, {'accessToken': 'new-token', 'expiresIn': 21600}))

    response = harness.client.post('/api/ifood/config', json={
        'merchant_id': MERCHANT_ID,
        'client_id': 'client-1',
        'client_secret': 'plain-secret',
        'polling_interval': 45,
    })

    data = response.get_json()
    assert response.status_code == 200
    assert data['authenticated'] is True
    assert 'plain-secret' not in response.get_data(as_text=True)
    assert harness.store.get_config().access_token == 'new-token'
    assert harness.app.extensions['ifood_sync']['scheduler'].interval == 45


def test_save_config_without_secret_is_rejected():
    harness = AppHarness(configured=False)
    response = harness.client.post('/api/ifood/config', json={'merchant_id': 'm', 'client_id': 'c'})
    assert response.status_code == 400
    assert response.get_json()['error_kind'] == 'configuration_error'


def test_orders_by_bucket(harness):
    harness.add_local_order('o-1')
    harness.add_local_order('o-2', RemoteStatus.DISPATCHED)

    data = harness.client.get('/api/ifood/orders/pending').get_json()
    assert [o['id'] for o in data['orders']] == ['o-1']
    assert harness.client.get('/api/ifood/orders/archived').status_code == 404


def test_stale_order_details_return_410(harness):
    harness.http.responses.append(FakeResponse(200, order_payload('o-1', 'PLACED', utcnow() - timedelta(hours=9))))
    response = harness.client.get('/api/ifood/orders/o-1/details')
    assert response.status_code == 410
    assert response.get_json()['error_kind'] == 'stale_order'


def test_async_action_returns_202(harness):
    harness.http.responses.extend([
        FakeResponse(200, order_payload('o-1', 'PLACED')),
        FakeResponse(202),
    ])

    response = harness.client.post('/api/ifood/orders/o-1/actions/confirm')

    assert response.status_code == 202
    assert response.get_json()['is_async'] is True
    assert harness.http.calls[1]['url'].endswith('/order/v1.0/orders/o-1/confirm')
    assert harness.store.get_order('o-1').remote_status is RemoteStatus.PLACED


def test_invalid_action_returns_409(harness):
    harness.http.responses.append(FakeResponse(200, order_payload('o-1', 'PLACED')))
    response = harness.client.post('/api/ifood/orders/o-1/actions/dispatch')
    assert response.status_code == 409
    assert len(harness.http.calls) == 1


def test_unknown_action_returns_404(harness):
    assert harness.client.post('/api/ifood/orders/o-1/actions/teleport').status_code == 404


def test_mappings(harness):
    assert harness.client.post('/api/ifood/mappings', json={'remote_product_id': 'r-1'}).status_code == 400
    created = harness.client.post('/api/ifood/mappings', json={
        'remote_product_id': 'r-1', 'local_product_id': 'local-7',
    }).get_json()
    assert created['mapping']['local_product_id'] == 'local-7'
    listed = harness.client.get('/api/ifood/mappings').get_json()
    assert listed['count'] == 1


def test_delete_mapping(harness):
    harness.client.post('/api/ifood/mappings', json={'remote_product_id': 'r-1', 'local_product_id': 'local-7'})

    response = harness.client.delete('/api/ifood/mappings/r-1')
    assert response.status_code == 200
    assert harness.client.get('/api/ifood/mappings').get_json()['count'] == 0

    missing = harness.client.delete('/api/ifood/mappings/r-1')
    assert missing.status_code == 404
    assert missing.get_json()['error_kind'] == 'mapping_not_found'


def test_stats_count_orders_and_mappings(harness):
    harness.add_local_order('o-1')
    harness.add_local_order('o-2', status=RemoteStatus.CONCLUDED)
    harness.client.post('/api/ifood/mappings', json={'remote_product_id': 'r-1', 'local_product_id': 'local-7'})
    harness.http.responses.append(FakeResponse(200, {'elements': [{'id': 'r-1'}, {'id': 'r-2'}, {'id': 'r-3'}]}))

    data = harness.client.get('/api/ifood/stats').get_json()

    stats = data['stats']
    assert stats['total_orders'] == 2
    assert stats['orders_today'] == 2
    assert stats['mapped_products'] == 1
    assert stats['unmapped_products'] == 2
    assert stats['catalog_error'] is None
    assert harness.http.calls[0]['url'].endswith(f'/catalog/v1.0/merchants/{MERCHANT_ID}/products')


def test_stats_survive_catalog_outage(harness):
    harness.add_local_order('o-1')
    harness.http.responses.append(FakeResponse(503))

    response = harness.client.get('/api/ifood/stats')

    assert response.status_code == 200
    stats = response.get_json()['stats']
    assert stats['total_orders'] == 1
    assert stats['unmapped_products'] == 0
    assert '503' in stats['catalog_error']


def test_user_code_defaults_to_configured_client(harness):
    harness.auth.responses.append(FakeResponse(200, {
        'userCode': 'ABCD-EFGH',
        'authorizationCodeVerifier': 'verifier-1',
        'verificationUrl': 'https://portal.ifood.com.br/apps/code',
        'verificationUrlComplete': 'https://portal.ifood.com.br/apps/code?c=ABCD-EFGH',
        'expiresIn': 600,
    }))

    response = harness.client.post('/api/ifood/user-code', json={})

    data = response.get_json()
    assert response.status_code == 200
    assert data['user_code'] == 'ABCD-EFGH'
    assert data['verification_url_complete'].endswith('ABCD-EFGH')
    assert harness.auth.calls[0]['data'] == {'clientId': 'client-1'}
    assert harness.store.get_config().authorization_code_verifier == 'verifier-1'


def test_user_code_without_any_client_is_rejected():
    harness = AppHarness(configured=False)
    response = harness.client.post('/api/ifood/user-code', json={})
    assert response.status_code == 400
    assert response.get_json()['error_kind'] == 'configuration_error'
    assert harness.auth.calls == []


def test_signed_webhook_is_merged(harness):
    harness.add_local_order('o-1')
    body = json.dumps({'orderId': 'o-1', 'fullCode': 'CONFIRMED'}).encode('utf-8')
    signature = hmac.new(WEBHOOK_SECRET.encode('utf-8'), body, hashlib.sha256).hexdigest()

    response = harness.client.post('/api/ifood/webhook', data=body, content_type='application/json',
                                   headers={SIGNATURE_HEADER: signature})

    assert response.status_code == 202
    assert response.get_json()['applied'] == 1
    assert harness.store.get_order('o-1').remote_status is RemoteStatus.CONFIRMED


def test_unsigned_webhook_is_rejected(harness):
    harness.add_local_order('o-1')
    response = harness.client.post('/api/ifood/webhook', json={'orderId': 'o-1', 'fullCode': 'CONFIRMED'})
    assert response.status_code == 401
    assert response.get_json()['error'] == 'missing_signature'
    assert response.get_json()['error_kind'] == 'invalid_signature'
    assert harness.store.get_order('o-1').remote_status is RemoteStatus.PLACED


def test_webhook_without_any_secret_is_unavailable():
    harness = AppHarness(webhook_secret=None)
    response = harness.client.post('/api/ifood/webhook', json={'orderId': 'o-1', 'fullCode': 'CONFIRMED'})
    assert response.status_code == 503
    assert response.get_json()['error'] == 'webhook_not_configured'
