from ifood_api import IFoodOrderAPI, extract_event_code, extract_order_id
from ifood_http import ApiResponse
from order_status import OrderAction, RemoteStatus


class RecordingHttp:
    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def _respond(self):
        return self.responses.pop(0) if self.responses else ApiResponse(200, None)

    def get(self, path, params=None, headers=None):
        self.calls.append(('GET', path, params, headers))
        return self._respond()

    def post(self, path, json=None, headers=None):
        self.calls.append(('POST', path, json, headers))
        return self._respond()


def test_list_orders_passes_status_filter():
    http = RecordingHttp([ApiResponse(200, [{'id': '1'}, {'id': '2'}])])
    api = IFoodOrderAPI(http)
    orders = api.list_orders('m-1', [RemoteStatus.CONFIRMED, RemoteStatus.READY_TO_PICKUP])

    assert [o['id'] for o in orders] == ['1', '2']
    method, path, params, _ = http.calls[0]
    assert path == '/order/v1.0/merchants/m-1/orders'
    assert params == {'status': 'CONFIRMED,READY_TO_PICKUP'}


def test_actions_hit_their_endpoints():
    http = RecordingHttp()
    api = IFoodOrderAPI(http)
    for action in (OrderAction.CONFIRM, OrderAction.START_PREPARATION,
                   OrderAction.READY_TO_PICKUP, OrderAction.DISPATCH):
        api.post_action('o-1', action)
    api.post_action('o-1', OrderAction.CANCEL, reason_code='503', reason='Item sold out')

    paths = [call[1] for call in http.calls]
    assert paths == [
        '/order/v1.0/orders/o-1/confirm',
        '/order/v1.0/orders/o-1/startPreparation',
        '/order/v1.0/orders/o-1/readyToPickup',
        '/order/v1.0/orders/o-1/dispatch',
        '/order/v1.0/orders/o-1/requestCancellation',
    ]
    assert http.calls[-1][2] == {'reason': 'Item sold out', 'cancellationCode': '503'}
    assert http.calls[0][2] is None


def test_poll_events_sends_merchant_header_and_handles_204():
    http = RecordingHttp([ApiResponse(204)])
    api = IFoodOrderAPI(http)
    assert api.poll_events('m-1') == []
    assert http.calls[0][3] == {'x-polling-merchants': 'm-1'}


def test_poll_events_returns_event_list():
    events = [{'id': 'e1', 'code': 'PLC', 'orderId': 'o-1'}]
    api = IFoodOrderAPI(RecordingHttp([ApiResponse(200, events)]))
    assert api.poll_events(['m-1', 'm-1', 'm-2']) == events


def test_acknowledge_dedupes_and_batches():
    http = RecordingHttp()
    api = IFoodOrderAPI(http)
    events = [{'id': f'e{i}'} for i in range(2500)] + [{'id': 'e0'}, {'code': 'KEEPALIVE'}]

    assert api.acknowledge_events(events) == 2500
    assert [len(call[2]) for call in http.calls] == [2000, 500]
    assert http.calls[0][1] == '/events/v1.0/events/acknowledgment'
    assert http.calls[0][2][0] == {'id': 'e0'}


def test_get_order_fills_missing_id():
    api = IFoodOrderAPI(RecordingHttp([ApiResponse(200, {'orderStatus': 'PLACED'})]))
    assert api.get_order('o-9')['id'] == 'o-9'


def test_event_field_extraction_reads_metadata():
    event = {'id': 'e1', 'fullCode': 'CONFIRMED', 'metadata': {'orderId': 'o-3'}}
    assert extract_order_id(event) == 'o-3'
    assert extract_event_code(event) == 'CONFIRMED'
