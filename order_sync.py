"""
Order reconciliation engine.

Polling, event polling, webhooks and user actions all funnel into one
upsert-by-id merge that only ever moves an order's status forward.
"""

import logging
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from ifood_api import extract_event_code, extract_event_id, extract_order_id
from ifood_errors import (
    AuthError,
    ConfigurationError,
    IFoodError,
    InvalidTransitionError,
    PlatformError,
    StaleOrderError,
    TransientError,
    UnknownStatusError,
)
from ifood_models import (
    ActionResult,
    LocalOrder,
    RemoteOrder,
    StateCell,
    build_local_items,
    is_stale,
    parse_datetime,
    utcnow,
)
from order_actions import ActionExecutor, OrderLocks, PendingConfirmations
from order_status import (
    ACTION_TARGETS,
    LocalStatus,
    OrderAction,
    RemoteStatus,
    is_forward,
    is_informational_event,
    local_status_for,
    next_transition,
    parse_remote_status,
)
import sync_events

logger = logging.getLogger(__name__)

BUCKET_STATUSES = {
    'pending': (RemoteStatus.PLACED,),
    'active': (RemoteStatus.CONFIRMED, RemoteStatus.PREPARATION_STARTED, RemoteStatus.READY_TO_PICKUP),
    'dispatched': (RemoteStatus.DISPATCHED,),
    'concluded': (RemoteStatus.CONCLUDED, RemoteStatus.CANCELLED),
}

USER_ACTIONS = ('advance', 'close') + tuple(a.value for a in OrderAction)

# Failures worth a redelivery; anything else is acknowledged and dropped.
RETRYABLE_EVENT_ERRORS = (TransientError, AuthError)


class OrderSyncEngine:

    def __init__(self, api, store, resolver, notifier, state_cell: StateCell,
                 locks: Optional[OrderLocks] = None,
                 pending: Optional[PendingConfirmations] = None,
                 clock: Callable = utcnow):
        self.api = api
        self.store = store
        self.resolver = resolver
        self.notifier = notifier
        self.state_cell = state_cell
        self.locks = locks or OrderLocks()
        self.pending = pending or PendingConfirmations()
        self._clock = clock
        self.executor = ActionExecutor(
            api, self.fetch_remote_status, locks=self.locks, pending=self.pending, clock=clock,
        )

    def _merchant_id(self) -> str:
        config = self.state_cell.get().config
        if config is None or not config.merchant_id:
            raise ConfigurationError('iFood integration is not configured')
        return config.merchant_id

    # ========================================================================
    # Remote reads
    # ========================================================================

    def fetch_remote_order(self, order_id: str) -> RemoteOrder:
        """Fetch order details, enforcing the eight hour window.

        A cached creation time older than the window refuses the call locally;
        the fetched payload is checked again.
        """
        now = self._clock()
        cached = self.store.get_order(order_id)
        if cached is not None and is_stale(cached.created_at, now):
            raise StaleOrderError(f'Order {order_id} is older than 8 hours and can no longer be queried')

        payload = self.api.get_order(order_id)
        if not payload:
            raise PlatformError(f'Order {order_id} not found on iFood', status_code=404)
        remote = RemoteOrder.from_payload(payload)
        if remote.is_stale(now):
            raise StaleOrderError(f'Order {order_id} is older than 8 hours and can no longer be queried')
        return remote

    def fetch_remote_status(self, order_id: str) -> RemoteStatus:
        return self.fetch_remote_order(order_id).status

    def get_order_details(self, order_id: str) -> LocalOrder:
        remote = self.fetch_remote_order(order_id)
        return self.merge_remote_order(remote, source='poll')

    def get_cancellation_reasons(self, order_id: str) -> List[Dict]:
        cached = self.store.get_order(order_id)
        if cached is not None and is_stale(cached.created_at, self._clock()):
            raise StaleOrderError(f'Order {order_id} is older than 8 hours and can no longer be queried')
        return self.api.get_cancellation_reasons(order_id)

    def list_catalog_products(self) -> List[Dict]:
        return self.api.get_catalog_products(self._merchant_id())

    # ========================================================================
    # Merge
    # ========================================================================

    def merge_remote_order(self, remote: RemoteOrder, source: str) -> LocalOrder:
        """Upsert a full remote snapshot; status never moves backward."""
        with self.locks.hold(remote.id):
            existing = self.store.get_order(remote.id)
            if existing is None:
                return self._insert(remote, source)
            if existing.has_unmapped_items and remote.items:
                # mappings may have been added since the first ingest
                existing = replace(existing, items=tuple(build_local_items(remote, self.resolver.resolve_item)))
                if not is_forward(existing.remote_status, remote.status):
                    return self.store.upsert_order(existing)
            return self._advance(existing, remote.status, source)

    def _insert(self, remote: RemoteOrder, source: str) -> LocalOrder:
        now = self._clock()
        order = LocalOrder(
            remote_order_id=remote.id,
            local_status=local_status_for(remote.status),
            remote_status=remote.status,
            display_id=remote.display_id,
            customer_name=remote.customer_name,
            order_type=remote.order_type,
            total=remote.total,
            created_at=remote.created_at,
            items=tuple(build_local_items(remote, self.resolver.resolve_item)),
            address=remote.address,
            payments=remote.payments,
            update_source=source,
            updated_at=now,
        )
        self.store.upsert_order(order)
        if order.has_unmapped_items:
            logger.warning('Order %s stored with unmapped line items', order.remote_order_id)
        self.pending.resolve(order.remote_order_id, order.remote_status)
        logger.info('New iFood order %s (%s) via %s', order.display_id or order.remote_order_id,
                    order.remote_status.value, source)
        self.notifier.publish(sync_events.ORDER_NEW, order.to_dict())
        return order

    def _advance(self, existing: LocalOrder, status: RemoteStatus, source: str) -> LocalOrder:
        if not is_forward(existing.remote_status, status):
            return existing
        order = existing.with_remote_status(status, source, self._clock())
        self.store.upsert_order(order)
        self.pending.resolve(order.remote_order_id, status)
        logger.info('Order %s %s -> %s via %s', order.remote_order_id,
                    existing.remote_status.value, status.value, source)
        event_type = sync_events.ORDER_CANCELLED if status is RemoteStatus.CANCELLED else sync_events.ORDER_UPDATED
        self.notifier.publish(event_type, order.to_dict())
        return order

    def apply_status_update(self, order_id: str, code, source: str,
                            created_at=None) -> Optional[LocalOrder]:
        """Merge a bare status change (event or webhook).

        Informational codes return None; unknown codes raise
        UnknownStatusError. Orders we have never seen are fetched in full,
        unless already past the eight hour window.
        """
        if is_informational_event(code):
            logger.debug('Ignoring informational event %s for order %s', code, order_id)
            return None
        status = parse_remote_status(code)

        with self.locks.hold(order_id):
            existing = self.store.get_order(order_id)
            if existing is not None:
                return self._advance(existing, status, source)

            if is_stale(parse_datetime(created_at), self._clock()):
                logger.info('Skipping stale event for unknown order %s', order_id)
                return None
            remote = self.fetch_remote_order(order_id)
            if is_forward(remote.status, status):
                remote = replace(remote, status=status)
            return self.merge_remote_order(remote, source)

    # ========================================================================
    # Sync entry points
    # ========================================================================

    def sync_bucket(self, bucket: str) -> List[LocalOrder]:
        statuses = BUCKET_STATUSES[bucket]
        payloads = self.api.list_orders(self._merchant_id(), statuses)
        merged = []
        for payload in payloads:
            try:
                remote = RemoteOrder.from_payload(payload)
            except UnknownStatusError as exc:
                logger.warning('Skipping order %s: %s', payload.get('id'), exc.message)
                continue
            if not remote.id:
                continue
            merged.append(self.merge_remote_order(remote, source='poll'))
        return merged

    def sync_all(self) -> Dict:
        """Fetch every bucket; a failing bucket does not stop the others."""
        counts = {}
        errors = {}
        for bucket in BUCKET_STATUSES:
            try:
                counts[bucket] = len(self.sync_bucket(bucket))
            except IFoodError as exc:
                logger.error('Sync of %s orders failed: %s (%s)', bucket, exc.message, exc.kind)
                errors[bucket] = exc.to_dict()
        return {'counts': counts, 'errors': errors}

    def poll_events(self) -> Dict:
        """Poll platform events, merge them, then acknowledge what was handled."""
        events = self.api.poll_events(self._merchant_id())
        handled = []
        applied = 0
        seen = set()
        for event in events:
            event_id = extract_event_id(event)
            if event_id and event_id in seen:
                continue
            seen.add(event_id)

            order_id = extract_order_id(event)
            code = extract_event_code(event)
            if not order_id or not code:
                handled.append(event)
                continue
            try:
                if self.apply_status_update(order_id, code, 'event', created_at=event.get('createdAt')):
                    applied += 1
            except RETRYABLE_EVENT_ERRORS as exc:
                logger.warning('Event %s for order %s left for redelivery: %s', event_id, order_id, exc.message)
                continue
            except IFoodError as exc:
                logger.warning('Dropping event %s for order %s: %s (%s)', event_id, order_id, exc.message, exc.kind)
            handled.append(event)

        acknowledged = self.api.acknowledge_events(handled) if handled else 0
        return {'received': len(events), 'applied': applied, 'acknowledged': acknowledged}

    def handle_webhook(self, payload) -> Dict:
        events = payload if isinstance(payload, list) else [payload]
        applied = 0
        ignored = 0
        errors = []
        for event in events:
            order_id = extract_order_id(event)
            code = extract_event_code(event)
            if not order_id or not code:
                ignored += 1
                continue
            try:
                order = self.apply_status_update(order_id, code, 'webhook', created_at=event.get('createdAt'))
            except IFoodError as exc:
                logger.warning('Webhook event for order %s failed: %s (%s)', order_id, exc.message, exc.kind)
                errors.append({'order_id': order_id, 'error': exc.message, 'error_kind': exc.kind})
                continue
            if order is None:
                ignored += 1
            else:
                applied += 1
        return {'received': len(events), 'applied': applied, 'ignored': ignored, 'errors': errors}

    def expire_pending_actions(self) -> List:
        expired = self.pending.expire(self._clock())
        for entry in expired:
            logger.warning('Action %s on order %s was never confirmed by iFood', entry.action.value, entry.order_id)
            self.notifier.publish(sync_events.ACTION_UNCONFIRMED, entry.to_dict())
        return expired

    def list_orders(self, bucket: str) -> List[LocalOrder]:
        return self.store.list_orders(BUCKET_STATUSES[bucket])

    # ========================================================================
    # User actions
    # ========================================================================

    def perform_action(self, order_id: str, action: str, reason_code: Optional[str] = None,
                       reason: Optional[str] = None) -> ActionResult:
        """Run a user action (advance, close or an explicit platform action)."""
        action = str(action or '').strip().lower()
        if action not in USER_ACTIONS:
            return ActionResult.failure(InvalidTransitionError(f'Unknown action: {action}'))

        with self.locks.hold(order_id):
            try:
                remote = self.fetch_remote_order(order_id)
                local = self.merge_remote_order(remote, source='poll')
                if action == 'close':
                    return self._close(local, remote)
                if action == 'advance':
                    transition = next_transition(local.local_status, remote.status)
                    if transition.action is None:
                        return self._close(local, remote)
                    order_action = transition.action
                else:
                    order_action = OrderAction(action)
            except IFoodError as exc:
                return ActionResult.failure(exc)

            result = self.executor.execute(
                order_id, order_action, reason_code=reason_code, reason=reason,
                current_status=remote.status,
            )
            if not result.success or result.is_async or result.skipped:
                return replace(result, local_status=local.local_status)
            return self._commit_action(order_id, order_action, result)

    def _commit_action(self, order_id: str, action: OrderAction, result: ActionResult) -> ActionResult:
        target = ACTION_TARGETS[action]
        observed = target
        if action is not OrderAction.CANCEL:
            try:
                latest = self.fetch_remote_status(order_id)
            except IFoodError as exc:
                logger.warning('Could not re-check order %s after %s: %s', order_id, action.value, exc.message)
            else:
                if latest is RemoteStatus.CANCELLED:
                    order = self._advance(self.store.get_order(order_id), latest, 'poll')
                    return ActionResult(
                        success=False,
                        error='Order was cancelled on iFood',
                        error_kind=InvalidTransitionError.kind,
                        remote_status=latest,
                        local_status=order.local_status,
                    )
                if is_forward(target, latest):
                    observed = latest

        order = self._advance(self.store.get_order(order_id), observed, 'action')
        return replace(result, remote_status=order.remote_status, local_status=order.local_status)

    def _close(self, local: LocalOrder, remote: RemoteOrder) -> ActionResult:
        """Closing is local bookkeeping, allowed once iFood has concluded the order."""
        if remote.status is not RemoteStatus.CONCLUDED:
            exc = InvalidTransitionError(
                f'Order can only be closed once concluded on iFood (currently {remote.status.value})'
            )
            return ActionResult.failure(exc, remote_status=remote.status)
        return ActionResult(
            success=True,
            skipped=local.local_status is LocalStatus.CLOSED,
            remote_status=remote.status,
            local_status=LocalStatus.CLOSED,
        )
