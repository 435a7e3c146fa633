"""
Value types shared by the sync engine: integration config/state, remote
order snapshots, local order records and product mappings.
"""

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from order_status import LocalStatus, RemoteStatus, local_status_for, parse_remote_status

DEFAULT_POLLING_INTERVAL = 30
MIN_POLLING_INTERVAL = 10
MAX_POLLING_INTERVAL = 300

ORDER_ACTIONABLE_WINDOW = timedelta(hours=8)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(raw_value) -> Optional[datetime]:
    """Parse ISO-8601 timestamps from the platform; naive values are UTC."""
    if raw_value is None or raw_value == '':
        return None
    if isinstance(raw_value, datetime):
        value = raw_value
    else:
        try:
            value = datetime.fromisoformat(str(raw_value).strip().replace('Z', '+00:00'))
        except ValueError:
            return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def clamp_polling_interval(value) -> int:
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return DEFAULT_POLLING_INTERVAL
    return max(MIN_POLLING_INTERVAL, min(MAX_POLLING_INTERVAL, seconds))


def _safe_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


# ============================================================================
# INTEGRATION CONFIG / STATE
# ============================================================================

@dataclass(frozen=True)
class IntegrationConfig:
    """One merchant's credentials and token state (secret kept encrypted)"""
    merchant_id: str
    client_id: str
    client_secret_encrypted: str
    authorization_code: Optional[str] = None
    authorization_code_verifier: Optional[str] = None
    access_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    refresh_token: Optional[str] = None
    polling_interval_seconds: int = DEFAULT_POLLING_INTERVAL
    is_active: bool = True
    last_sync_at: Optional[datetime] = None

    def with_tokens(self, access_token: str, expires_at: datetime,
                    refresh_token: Optional[str] = None) -> 'IntegrationConfig':
        return replace(
            self,
            access_token=access_token,
            token_expires_at=expires_at,
            refresh_token=refresh_token or self.refresh_token,
        )

    def without_tokens(self) -> 'IntegrationConfig':
        return replace(self, access_token=None, token_expires_at=None)

    def token_valid_at(self, now: datetime, buffer: timedelta) -> bool:
        if not self.access_token or not self.token_expires_at:
            return False
        return self.token_expires_at - now > buffer

    def public_dict(self) -> Dict:
        """Config as exposed to the dashboard; secrets and tokens never leave."""
        return {
            'merchant_id': self.merchant_id,
            'client_id': self.client_id,
            'has_client_secret': bool(self.client_secret_encrypted),
            'has_authorization_code': bool(self.authorization_code),
            'polling_interval': self.polling_interval_seconds,
            'is_active': self.is_active,
            'token_expires_at': isoformat(self.token_expires_at),
            'last_sync_at': isoformat(self.last_sync_at),
        }


@dataclass(frozen=True)
class IntegrationState:
    config: Optional[IntegrationConfig] = None
    authenticated: bool = False
    auth_error: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    last_sync_error: Optional[str] = None

    def evolve(self, **changes) -> 'IntegrationState':
        return replace(self, **changes)


class StateCell:
    """Single owner of the current IntegrationState.

    Readers get an immutable snapshot; writers pass a function that builds
    the next state from the current one.
    """

    def __init__(self, initial: Optional[IntegrationState] = None):
        self._state = initial or IntegrationState()
        self._lock = threading.Lock()

    def get(self) -> IntegrationState:
        return self._state

    def update(self, fn: Callable[[IntegrationState], IntegrationState]) -> IntegrationState:
        with self._lock:
            self._state = fn(self._state)
            return self._state

    def set_config(self, config: Optional[IntegrationConfig]) -> IntegrationState:
        return self.update(lambda state: state.evolve(config=config))


# ============================================================================
# ORDERS
# ============================================================================

@dataclass(frozen=True)
class RemoteOrderItem:
    remote_product_id: str
    name: str
    quantity: float = 1
    unit_price: float = 0.0
    total_price: float = 0.0
    sku: Optional[str] = None
    options: Tuple[Dict, ...] = ()
    observations: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict) -> 'RemoteOrderItem':
        quantity = _safe_float(payload.get('quantity') or 1)
        unit_price = _safe_float(payload.get('unitPrice') or payload.get('price'))
        total_price = _safe_float(payload.get('totalPrice'))
        if total_price <= 0 and unit_price > 0:
            total_price = quantity * unit_price
        options = tuple(
            {
                'id': str(option.get('id') or ''),
                'name': option.get('name') or '',
                'group': option.get('groupName') or option.get('group') or '',
                'quantity': _safe_float(option.get('quantity') or 1),
                'price': _safe_float(option.get('price') or option.get('unitPrice')),
            }
            for option in (payload.get('options') or [])
            if isinstance(option, dict)
        )
        return cls(
            remote_product_id=str(payload.get('id') or payload.get('productId') or payload.get('uniqueId') or ''),
            name=payload.get('name') or '',
            quantity=quantity,
            unit_price=unit_price,
            total_price=total_price,
            sku=payload.get('sku') or payload.get('externalCode') or None,
            options=options,
            observations=payload.get('observations') or None,
        )


def _extract_order_amount(payload: Dict) -> float:
    total = payload.get('total')
    if isinstance(total, dict):
        for key in ('orderAmount', 'totalPrice', 'amount'):
            amount = _safe_float(total.get(key))
            if amount > 0:
                return amount
        combined = _safe_float(total.get('subTotal')) + _safe_float(total.get('deliveryFee'))
        if combined > 0:
            return combined
    for key in ('totalPrice', 'orderAmount', 'amount'):
        amount = _safe_float(payload.get(key))
        if amount > 0:
            return amount
    items_total = 0.0
    for item in payload.get('items') or []:
        if isinstance(item, dict):
            items_total += RemoteOrderItem.from_payload(item).total_price
    return items_total


def _extract_payments(payload: Dict) -> Dict:
    payments = payload.get('payments')
    if not isinstance(payments, dict):
        return {'prepaid': 0.0, 'pending': 0.0, 'methods': []}
    methods = []
    for method in payments.get('methods') or []:
        if isinstance(method, dict):
            methods.append({
                'method': method.get('method') or '',
                'type': method.get('type') or '',
                'value': _safe_float(method.get('value')),
            })
    return {
        'prepaid': _safe_float(payments.get('prepaid')),
        'pending': _safe_float(payments.get('pending')),
        'methods': methods,
    }


def _extract_address(payload: Dict) -> Optional[Dict]:
    delivery = payload.get('delivery')
    if isinstance(delivery, dict) and isinstance(delivery.get('deliveryAddress'), dict):
        address = delivery['deliveryAddress']
        return {
            'formatted': address.get('formattedAddress') or '',
            'street': address.get('streetName') or '',
            'number': address.get('streetNumber') or '',
            'complement': address.get('complement') or '',
            'neighborhood': address.get('neighborhood') or '',
            'city': address.get('city') or '',
            'postal_code': address.get('postalCode') or '',
        }
    takeout = payload.get('takeout')
    if isinstance(takeout, dict):
        return {'takeout_at': takeout.get('takeoutDateTime') or ''}
    return None


@dataclass(frozen=True)
class RemoteOrder:
    """Order snapshot as reported by the platform"""
    id: str
    status: RemoteStatus
    display_id: str = ''
    created_at: Optional[datetime] = None
    order_type: str = 'DELIVERY'
    customer_name: str = ''
    customer_phone: str = ''
    items: Tuple[RemoteOrderItem, ...] = ()
    total: float = 0.0
    payments: Dict = field(default_factory=dict)
    address: Optional[Dict] = None
    merchant_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict, status=None) -> 'RemoteOrder':
        """Build from an order-details or order-list payload.

        The status comes from the payload unless given; unknown statuses raise
        UnknownStatusError.
        """
        raw_status = status
        if raw_status is None:
            for key in ('orderStatus', 'status', 'fullCode', 'code'):
                if payload.get(key):
                    raw_status = payload[key]
                    break
        customer = payload.get('customer') if isinstance(payload.get('customer'), dict) else {}
        phone = customer.get('phone')
        if isinstance(phone, dict):
            phone = phone.get('number') or ''
        merchant = payload.get('merchant') if isinstance(payload.get('merchant'), dict) else {}
        return cls(
            id=str(payload.get('id') or payload.get('orderId') or ''),
            status=parse_remote_status(raw_status),
            display_id=str(payload.get('displayId') or payload.get('shortReference') or ''),
            created_at=parse_datetime(payload.get('createdAt')),
            order_type=str(payload.get('orderType') or 'DELIVERY').upper(),
            customer_name=customer.get('name') or '',
            customer_phone=phone or '',
            items=tuple(
                RemoteOrderItem.from_payload(item)
                for item in (payload.get('items') or [])
                if isinstance(item, dict)
            ),
            total=_extract_order_amount(payload),
            payments=_extract_payments(payload),
            address=_extract_address(payload),
            merchant_id=merchant.get('id') or payload.get('merchantId'),
        )

    def is_stale(self, now: datetime) -> bool:
        return is_stale(self.created_at, now)


def is_stale(created_at: Optional[datetime], now: datetime) -> bool:
    """Orders older than eight hours are no longer queryable on the platform."""
    if created_at is None:
        return False
    return now - created_at > ORDER_ACTIONABLE_WINDOW


@dataclass(frozen=True)
class LocalOrderItem:
    remote_product_id: str
    name: str
    quantity: float
    unit_price: float
    total_price: float
    local_product_id: Optional[str] = None
    sku: Optional[str] = None
    options: Tuple[Dict, ...] = ()
    observations: Optional[str] = None

    @property
    def unmapped(self) -> bool:
        return self.local_product_id is None

    def to_dict(self) -> Dict:
        return {
            'remote_product_id': self.remote_product_id,
            'local_product_id': self.local_product_id,
            'unmapped': self.unmapped,
            'sku': self.sku,
            'name': self.name,
            'quantity': self.quantity,
            'unit_price': self.unit_price,
            'total_price': self.total_price,
            'options': list(self.options),
            'observations': self.observations,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'LocalOrderItem':
        return cls(
            remote_product_id=data.get('remote_product_id') or '',
            name=data.get('name') or '',
            quantity=_safe_float(data.get('quantity')),
            unit_price=_safe_float(data.get('unit_price')),
            total_price=_safe_float(data.get('total_price')),
            local_product_id=data.get('local_product_id'),
            sku=data.get('sku'),
            options=tuple(data.get('options') or ()),
            observations=data.get('observations'),
        )


@dataclass(frozen=True)
class LocalOrder:
    """Local record of a platform order, keyed by the remote order id"""
    remote_order_id: str
    local_status: LocalStatus
    remote_status: RemoteStatus
    display_id: str = ''
    customer_name: str = ''
    order_type: str = 'DELIVERY'
    total: float = 0.0
    created_at: Optional[datetime] = None
    items: Tuple[LocalOrderItem, ...] = ()
    address: Optional[Dict] = None
    payments: Dict = field(default_factory=dict)
    update_source: str = 'poll'
    updated_at: Optional[datetime] = None

    @property
    def has_unmapped_items(self) -> bool:
        return any(item.unmapped for item in self.items)

    def with_remote_status(self, remote_status: RemoteStatus, source: str, now: datetime) -> 'LocalOrder':
        return replace(
            self,
            remote_status=remote_status,
            local_status=local_status_for(remote_status),
            update_source=source,
            updated_at=now,
        )

    def to_dict(self) -> Dict:
        return {
            'id': self.remote_order_id,
            'remote_order_id': self.remote_order_id,
            'display_id': self.display_id,
            'local_status': self.local_status.value,
            'remote_status': self.remote_status.value,
            'customer_name': self.customer_name,
            'order_type': self.order_type,
            'total': round(self.total, 2),
            'created_at': isoformat(self.created_at),
            'items': [item.to_dict() for item in self.items],
            'has_unmapped_items': self.has_unmapped_items,
            'address': self.address,
            'payments': self.payments,
            'update_source': self.update_source,
            'updated_at': isoformat(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'LocalOrder':
        return cls(
            remote_order_id=data['remote_order_id'],
            local_status=LocalStatus(data['local_status']),
            remote_status=parse_remote_status(data['remote_status']),
            display_id=data.get('display_id') or '',
            customer_name=data.get('customer_name') or '',
            order_type=data.get('order_type') or 'DELIVERY',
            total=_safe_float(data.get('total')),
            created_at=parse_datetime(data.get('created_at')),
            items=tuple(LocalOrderItem.from_dict(item) for item in (data.get('items') or [])),
            address=data.get('address'),
            payments=data.get('payments') or {},
            update_source=data.get('update_source') or 'poll',
            updated_at=parse_datetime(data.get('updated_at')),
        )


@dataclass(frozen=True)
class ProductMapping:
    remote_product_id: str
    local_product_id: str
    remote_sku: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict:
        return {
            'remote_product_id': self.remote_product_id,
            'remote_sku': self.remote_sku,
            'local_product_id': self.local_product_id,
            'created_at': isoformat(self.created_at),
        }


@dataclass(frozen=True)
class ActionResult:
    success: bool
    is_async: bool = False
    error: Optional[str] = None
    error_kind: Optional[str] = None
    skipped: bool = False
    remote_status: Optional[RemoteStatus] = None
    local_status: Optional[LocalStatus] = None

    @classmethod
    def failure(cls, exc, remote_status: Optional[RemoteStatus] = None) -> 'ActionResult':
        return cls(
            success=False,
            error=getattr(exc, 'message', None) or str(exc),
            error_kind=getattr(exc, 'kind', 'ifood_error'),
            remote_status=remote_status,
        )

    def to_dict(self) -> Dict:
        payload = {
            'success': self.success,
            'is_async': self.is_async,
            'skipped': self.skipped,
            'remote_status': self.remote_status.value if self.remote_status else None,
            'local_status': self.local_status.value if self.local_status else None,
        }
        if self.error:
            payload['error'] = self.error
            payload['error_kind'] = self.error_kind
        return payload


def build_local_items(remote: RemoteOrder, resolve: Callable[[RemoteOrderItem], Optional[str]]) -> List[LocalOrderItem]:
    """Translate remote line items, tagging each with its resolved local product."""
    return [
        LocalOrderItem(
            remote_product_id=item.remote_product_id,
            name=item.name,
            quantity=item.quantity,
            unit_price=item.unit_price,
            total_price=item.total_price,
            local_product_id=resolve(item),
            sku=item.sku,
            options=item.options,
            observations=item.observations,
        )
        for item in remote.items
    ]
