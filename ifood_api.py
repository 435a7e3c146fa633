"""
iFood Merchant API endpoints used by the sync engine (orders, events,
catalog). Every call goes through IFoodHttpClient.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from ifood_http import ApiResponse, IFoodHttpClient
from order_status import OrderAction

logger = logging.getLogger(__name__)

ACK_BATCH_SIZE = 2000


def _extract_list(payload, keys: Sequence[str]) -> List[Dict]:
    if not payload:
        return []
    if isinstance(payload, list):
        return [p for p in payload if isinstance(p, dict)]
    if isinstance(payload, dict):
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list):
                return [p for p in value if isinstance(p, dict)]
        return [payload]
    return []


def extract_event_id(event: Dict) -> Optional[str]:
    if not isinstance(event, dict):
        return None
    for key in ('id', 'eventId', 'event_id'):
        value = event.get(key)
        if value:
            return str(value)
    metadata = event.get('metadata')
    if isinstance(metadata, dict):
        for key in ('id', 'eventId', 'event_id'):
            value = metadata.get(key)
            if value:
                return str(value)
    return None


def extract_order_id(event: Dict) -> Optional[str]:
    if not isinstance(event, dict):
        return None
    for source in (event, event.get('metadata')):
        if not isinstance(source, dict):
            continue
        for key in ('orderId', 'order_id'):
            value = source.get(key)
            if value:
                return str(value)
    return None


def extract_event_code(event: Dict) -> Optional[str]:
    if not isinstance(event, dict):
        return None
    for source in (event, event.get('metadata')):
        if not isinstance(source, dict):
            continue
        for key in ('fullCode', 'code', 'orderStatus', 'status'):
            value = source.get(key)
            if value:
                return str(value)
    return None


class IFoodOrderAPI:
    """Order, events and catalog endpoints for one client"""

    ACTION_ENDPOINTS = {
        OrderAction.CONFIRM: 'confirm',
        OrderAction.START_PREPARATION: 'startPreparation',
        OrderAction.READY_TO_PICKUP: 'readyToPickup',
        OrderAction.DISPATCH: 'dispatch',
        OrderAction.CANCEL: 'requestCancellation',
    }
    POLLING_ENDPOINT = '/events/v1.0/events:polling'
    ACK_ENDPOINT = '/events/v1.0/events/acknowledgment'

    def __init__(self, http: IFoodHttpClient):
        self.http = http

    # Orders -------------------------------------------------------------

    def list_orders(self, merchant_id: str, statuses: Iterable[str]) -> List[Dict]:
        status_param = ','.join(str(getattr(s, 'value', s)) for s in statuses)
        response = self.http.get(
            f'/order/v1.0/merchants/{merchant_id}/orders',
            params={'status': status_param},
        )
        return _extract_list(response.data, ('orders', 'data', 'items'))

    def get_order(self, order_id: str) -> Optional[Dict]:
        response = self.http.get(f'/order/v1.0/orders/{order_id}')
        if not isinstance(response.data, dict) or not response.data:
            return None
        payload = dict(response.data)
        payload.setdefault('id', order_id)
        return payload

    def post_action(self, order_id: str, action: OrderAction,
                    reason_code: Optional[str] = None, reason: Optional[str] = None) -> ApiResponse:
        endpoint = self.ACTION_ENDPOINTS[OrderAction(action)]
        body = None
        if action is OrderAction.CANCEL:
            body = {
                'reason': reason or 'Cancelled by the restaurant',
                'cancellationCode': reason_code or '501',
            }
        logger.info('POST %s for order %s', endpoint, order_id)
        return self.http.post(f'/order/v1.0/orders/{order_id}/{endpoint}', json=body)

    def get_cancellation_reasons(self, order_id: str) -> List[Dict]:
        response = self.http.get(f'/order/v1.0/orders/{order_id}/cancellationReasons')
        return _extract_list(response.data, ('reasons', 'data', 'items'))

    # Events -------------------------------------------------------------

    def poll_events(self, merchant_ids) -> List[Dict]:
        if isinstance(merchant_ids, (list, tuple, set)):
            merchants = ','.join(dict.fromkeys(str(m).strip() for m in merchant_ids if str(m).strip()))
        else:
            merchants = str(merchant_ids or '').strip()
        if not merchants:
            return []
        response = self.http.get(self.POLLING_ENDPOINT, headers={'x-polling-merchants': merchants})
        if response.is_empty:
            return []
        return _extract_list(response.data, ('events', 'data', 'items'))

    def acknowledge_events(self, events: List[Dict]) -> int:
        """Acknowledge processed events so the platform stops redelivering them."""
        ack_items = []
        seen_ids = set()
        for event in events or []:
            event_id = extract_event_id(event)
            if not event_id or event_id in seen_ids:
                continue
            seen_ids.add(event_id)
            ack_items.append({'id': event_id})

        for start in range(0, len(ack_items), ACK_BATCH_SIZE):
            self.http.post(self.ACK_ENDPOINT, json=ack_items[start:start + ACK_BATCH_SIZE])
        return len(ack_items)

    # Catalog ------------------------------------------------------------

    def get_catalog_products(self, merchant_id: str, page: int = 1, limit: int = 100) -> List[Dict]:
        response = self.http.get(
            f'/catalog/v1.0/merchants/{merchant_id}/products',
            params={'page': page, 'limit': limit},
        )
        return _extract_list(response.data, ('elements', 'products', 'data', 'items'))
