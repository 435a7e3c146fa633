"""
State-changing order actions (confirm, start preparation, ready to pickup,
dispatch, cancel) issued back to the platform.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from ifood_errors import IFoodError
from ifood_models import ActionResult, utcnow
from order_status import (
    ACTION_TARGETS,
    OrderAction,
    RemoteStatus,
    parse_remote_status,
    status_rank,
    validate_action,
)

logger = logging.getLogger(__name__)

DEFAULT_ASYNC_CONFIRM_TIMEOUT = 120


class _LockEntry:
    __slots__ = ('lock', 'users')

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class OrderLocks:
    """One re-entrant lock per order id so actions on an order never interleave.

    A lock lives only while some thread holds or waits for it.
    """

    def __init__(self):
        self._locks: Dict[str, _LockEntry] = {}
        self._guard = threading.Lock()

    @property
    def active_count(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, order_id: str):
        with self._guard:
            entry = self._locks.get(order_id)
            if entry is None:
                entry = self._locks[order_id] = _LockEntry()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[order_id]


@dataclass(frozen=True)
class PendingAction:
    order_id: str
    action: OrderAction
    target: RemoteStatus
    requested_at: datetime

    def to_dict(self) -> Dict:
        return {
            'order_id': self.order_id,
            'action': self.action.value,
            'target_status': self.target.value,
            'requested_at': self.requested_at.isoformat(),
        }


class PendingConfirmations:
    """Actions accepted with 202 that no poll or webhook has confirmed yet"""

    def __init__(self, timeout_seconds: float = DEFAULT_ASYNC_CONFIRM_TIMEOUT):
        self.timeout = timedelta(seconds=timeout_seconds)
        self._pending: Dict[str, PendingAction] = {}
        self._lock = threading.Lock()

    def track(self, order_id: str, action: OrderAction, now: datetime) -> PendingAction:
        entry = PendingAction(order_id, action, ACTION_TARGETS[action], now)
        with self._lock:
            self._pending[order_id] = entry
        return entry

    def get(self, order_id: str) -> Optional[PendingAction]:
        with self._lock:
            return self._pending.get(order_id)

    def resolve(self, order_id: str, observed: RemoteStatus) -> Optional[PendingAction]:
        """Drop the pending entry once the observed status reaches (or passes) its target."""
        observed = parse_remote_status(observed)
        with self._lock:
            entry = self._pending.get(order_id)
            if entry is None:
                return None
            reached = (
                observed is RemoteStatus.CANCELLED
                or (entry.target is not RemoteStatus.CANCELLED
                    and status_rank(observed) >= status_rank(entry.target))
            )
            if not reached:
                return None
            return self._pending.pop(order_id)

    def expire(self, now: datetime) -> List[PendingAction]:
        with self._lock:
            expired = [e for e in self._pending.values() if now - e.requested_at > self.timeout]
            for entry in expired:
                del self._pending[entry.order_id]
        return expired

    def snapshot(self) -> List[PendingAction]:
        with self._lock:
            return list(self._pending.values())


class ActionExecutor:
    """Validates and sends one action per call.

    ``status_lookup(order_id)`` must return the order's current remote status
    (fetched from the platform, not the cache). Invalid or already-applied
    actions never reach the network.
    """

    def __init__(self, api, status_lookup: Callable[[str], RemoteStatus],
                 locks: Optional[OrderLocks] = None,
                 pending: Optional[PendingConfirmations] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.api = api
        self.status_lookup = status_lookup
        self.locks = locks or OrderLocks()
        self.pending = pending or PendingConfirmations()
        self._clock = clock

    def confirm(self, order_id: str) -> ActionResult:
        return self.execute(order_id, OrderAction.CONFIRM)

    def start_preparation(self, order_id: str) -> ActionResult:
        return self.execute(order_id, OrderAction.START_PREPARATION)

    def ready_to_pickup(self, order_id: str) -> ActionResult:
        return self.execute(order_id, OrderAction.READY_TO_PICKUP)

    def dispatch(self, order_id: str) -> ActionResult:
        return self.execute(order_id, OrderAction.DISPATCH)

    def cancel(self, order_id: str, reason_code: Optional[str] = None,
               reason: Optional[str] = None) -> ActionResult:
        return self.execute(order_id, OrderAction.CANCEL, reason_code=reason_code, reason=reason)

    def execute(self, order_id: str, action, reason_code: Optional[str] = None,
                reason: Optional[str] = None,
                current_status: Optional[RemoteStatus] = None) -> ActionResult:
        """Run one action. ``current_status`` skips the lookup when the caller
        already fetched it while holding the order lock."""
        action = OrderAction(action)
        current = current_status
        with self.locks.hold(order_id):
            try:
                if current is None:
                    current = self.status_lookup(order_id)
                if not validate_action(current, action):
                    logger.info('Order %s already %s; %s skipped', order_id, current.value, action.value)
                    return ActionResult(success=True, skipped=True, remote_status=current)
                response = self.api.post_action(order_id, action, reason_code=reason_code, reason=reason)
            except IFoodError as exc:
                logger.warning('Action %s on order %s failed: %s (%s)', action.value, order_id, exc.message, exc.kind)
                return ActionResult.failure(exc, remote_status=current)

            if response.is_async:
                self.pending.track(order_id, action, self._clock())
                logger.info('Action %s on order %s accepted asynchronously', action.value, order_id)
                return ActionResult(success=True, is_async=True, remote_status=current)

            return ActionResult(success=True, remote_status=ACTION_TARGETS[action])
