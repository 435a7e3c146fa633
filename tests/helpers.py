"""
Fakes shared by the sync engine tests.

No test touches the network: requests sessions, the order API and the clock
are all replaced by the classes below.
"""
import json
import threading
from datetime import datetime, timedelta, timezone

from ifood_http import ApiResponse
from order_status import OrderAction

TEST_ENCRYPTION_KEY = 'test-encryption-key'
MERCHANT_ID = 'merchant-1'


class FrozenClock:
    def __init__(self, now=None):
        self.now = now or datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None, headers=None):
        self.status_code = status_code
        self._payload = payload
        if text is None:
            text = json.dumps(payload) if payload is not None else ''
        self.text = text
        self.content = text.encode('utf-8')
        self.headers = headers or {}

    def json(self):
        if self._payload is None:
            raise ValueError('No JSON body')
        return self._payload


class FakeSession:
    """Stand-in for requests.Session that replays queued responses.

    Queued exceptions are raised instead of returned.
    """

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []
        self.headers = {}
        self.trust_env = False
        self._lock = threading.Lock()

    def _next(self, method, url, kwargs):
        with self._lock:
            self.calls.append({'method': method, 'url': url, **kwargs})
            if not self.responses:
                raise AssertionError(f'Unexpected request: {method} {url}')
            item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def request(self, method, url, **kwargs):
        return self._next(method, url, kwargs)

    def post(self, url, **kwargs):
        return self._next('POST', url, kwargs)


class FakeOrderAPI:
    """In-memory IFoodOrderAPI with call recording"""

    def __init__(self):
        self.orders = {}
        self.events = []
        self.acknowledged = []
        self.action_calls = []
        self.action_status = 200
        self.action_error = None
        self.get_order_calls = []
        self.after_action = None

    def add_order(self, order_id, status, created_at, **extra):
        payload = {
            'id': order_id,
            'displayId': order_id[-4:],
            'orderStatus': status,
            'createdAt': created_at.isoformat(),
            'orderType': 'DELIVERY',
            'customer': {'name': 'Maria'},
            'items': [{'id': f'{order_id}-p1', 'name': 'X-Burger', 'quantity': 1,
                       'unitPrice': 25.0, 'externalCode': 'SKU-1'}],
            'total': {'orderAmount': 25.0},
        }
        payload.update(extra)
        self.orders[order_id] = payload
        return payload

    def set_status(self, order_id, status):
        self.orders[order_id]['orderStatus'] = status

    def list_orders(self, merchant_id, statuses):
        wanted = {getattr(s, 'value', s) for s in statuses}
        return [dict(o) for o in self.orders.values() if o['orderStatus'] in wanted]

    def get_order(self, order_id):
        self.get_order_calls.append(order_id)
        order = self.orders.get(order_id)
        return dict(order) if order else None

    def post_action(self, order_id, action, reason_code=None, reason=None):
        self.action_calls.append((order_id, OrderAction(action), reason_code, reason))
        if self.action_error is not None:
            raise self.action_error
        if self.after_action is not None:
            self.after_action(order_id, OrderAction(action))
        return ApiResponse(self.action_status)

    def poll_events(self, merchant_id):
        events, self.events = self.events, []
        return events

    def acknowledge_events(self, events):
        self.acknowledged.extend(events)
        return len(events)

    def get_cancellation_reasons(self, order_id):
        return [{'cancelCodeId': '501', 'description': 'Problemas de sistema'}]

    def get_catalog_products(self, merchant_id):
        return [{'id': 'p-1', 'name': 'X-Burger', 'externalCode': 'SKU-1'}]


