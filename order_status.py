"""
Order status state machine.

Remote (iFood) statuses advance PLACED -> CONFIRMED -> PREPARATION_STARTED ->
READY_TO_PICKUP -> DISPATCHED -> CONCLUDED, with CANCELLED reachable from any
non-terminal status. Local statuses are a pure function of the remote one.
"""

from enum import Enum
from typing import List, NamedTuple, Optional

from ifood_errors import InvalidTransitionError, UnknownStatusError


class RemoteStatus(str, Enum):
    PLACED = 'PLACED'
    CONFIRMED = 'CONFIRMED'
    PREPARATION_STARTED = 'PREPARATION_STARTED'
    READY_TO_PICKUP = 'READY_TO_PICKUP'
    DISPATCHED = 'DISPATCHED'
    CONCLUDED = 'CONCLUDED'
    CANCELLED = 'CANCELLED'


class LocalStatus(str, Enum):
    PENDING = 'Pending'
    PREPARING = 'Preparing'
    READY = 'Ready'
    DELIVERED = 'Delivered'
    CLOSED = 'Closed'
    CANCELLED = 'Cancelled'


class OrderAction(str, Enum):
    CONFIRM = 'confirm'
    START_PREPARATION = 'start_preparation'
    READY_TO_PICKUP = 'ready_to_pickup'
    DISPATCH = 'dispatch'
    CANCEL = 'cancel'


FORWARD_ORDER = (
    RemoteStatus.PLACED,
    RemoteStatus.CONFIRMED,
    RemoteStatus.PREPARATION_STARTED,
    RemoteStatus.READY_TO_PICKUP,
    RemoteStatus.DISPATCHED,
    RemoteStatus.CONCLUDED,
)

TERMINAL_STATUSES = frozenset({RemoteStatus.CONCLUDED, RemoteStatus.CANCELLED})

LOCAL_BY_REMOTE = {
    RemoteStatus.PLACED: LocalStatus.PENDING,
    RemoteStatus.CONFIRMED: LocalStatus.PREPARING,
    RemoteStatus.PREPARATION_STARTED: LocalStatus.PREPARING,
    RemoteStatus.READY_TO_PICKUP: LocalStatus.READY,
    RemoteStatus.DISPATCHED: LocalStatus.DELIVERED,
    RemoteStatus.CONCLUDED: LocalStatus.CLOSED,
    RemoteStatus.CANCELLED: LocalStatus.CANCELLED,
}

# Remote status each action moves the order into.
ACTION_TARGETS = {
    OrderAction.CONFIRM: RemoteStatus.CONFIRMED,
    OrderAction.START_PREPARATION: RemoteStatus.PREPARATION_STARTED,
    OrderAction.READY_TO_PICKUP: RemoteStatus.READY_TO_PICKUP,
    OrderAction.DISPATCH: RemoteStatus.DISPATCHED,
    OrderAction.CANCEL: RemoteStatus.CANCELLED,
}

ADVANCE_ACTIONS = {
    RemoteStatus.PLACED: OrderAction.CONFIRM,
    RemoteStatus.CONFIRMED: OrderAction.START_PREPARATION,
    RemoteStatus.PREPARATION_STARTED: OrderAction.READY_TO_PICKUP,
    RemoteStatus.READY_TO_PICKUP: OrderAction.DISPATCH,
}

# Full names plus the short event codes used by polling and webhooks.
STATUS_ALIASES = {
    'PLACED': RemoteStatus.PLACED,
    'PLC': RemoteStatus.PLACED,
    'REQUESTED': RemoteStatus.PLACED,
    'CONFIRMED': RemoteStatus.CONFIRMED,
    'CFM': RemoteStatus.CONFIRMED,
    'PREPARATION_STARTED': RemoteStatus.PREPARATION_STARTED,
    'PRS': RemoteStatus.PREPARATION_STARTED,
    'SEPARATION_STARTED': RemoteStatus.PREPARATION_STARTED,
    'SPS': RemoteStatus.PREPARATION_STARTED,
    'SEPARATION_ENDED': RemoteStatus.PREPARATION_STARTED,
    'SPE': RemoteStatus.PREPARATION_STARTED,
    'READY_TO_PICKUP': RemoteStatus.READY_TO_PICKUP,
    'RTP': RemoteStatus.READY_TO_PICKUP,
    'DISPATCHED': RemoteStatus.DISPATCHED,
    'DSP': RemoteStatus.DISPATCHED,
    'CONCLUDED': RemoteStatus.CONCLUDED,
    'CON': RemoteStatus.CONCLUDED,
    'CANCELLED': RemoteStatus.CANCELLED,
    'CANCELED': RemoteStatus.CANCELLED,
    'CAN': RemoteStatus.CANCELLED,
}

# Event codes that are valid platform traffic but carry no order status.
NON_STATUS_EVENT_CODES = frozenset({
    'CANCELLATION_REQUESTED', 'CAR',
    'CANCELLATION_REQUEST_FAILED', 'CARF',
    'CONSUMER_CANCELLATION_REQUESTED', 'CCR',
    'CONSUMER_CANCELLATION_DENIED', 'CCD',
    'ORDER_PATCHED', 'OPA',
    'KEEPALIVE', 'KEP',
    'ASSIGN_DRIVER', 'ADR',
    'GOING_TO_ORIGIN', 'GTO',
    'ARRIVED_AT_ORIGIN', 'AAO',
    'COLLECTED', 'CLT',
    'ARRIVED_AT_DESTINATION', 'AAD',
})


class Transition(NamedTuple):
    next_local: LocalStatus
    action: Optional[OrderAction]
    requires_remote: Optional[RemoteStatus] = None


def _normalize_code(value) -> str:
    if isinstance(value, Enum):
        value = value.value
    return str(value or '').strip().upper().replace('-', '_').replace(' ', '_')


def parse_remote_status(value) -> RemoteStatus:
    """Map a status name or event code onto RemoteStatus; unknown values raise."""
    if isinstance(value, RemoteStatus):
        return value
    code = _normalize_code(value)
    status = STATUS_ALIASES.get(code)
    if status is None:
        raise UnknownStatusError(f'Unknown remote order status: {value!r}')
    return status


def is_informational_event(code) -> bool:
    """True for known event codes that carry no order status (ignored by reconciliation)."""
    return _normalize_code(code) in NON_STATUS_EVENT_CODES


def local_status_for(remote: RemoteStatus) -> LocalStatus:
    return LOCAL_BY_REMOTE[parse_remote_status(remote)]


def is_terminal(remote: RemoteStatus) -> bool:
    return parse_remote_status(remote) in TERMINAL_STATUSES


def status_rank(remote: RemoteStatus) -> int:
    remote = parse_remote_status(remote)
    if remote is RemoteStatus.CANCELLED:
        return len(FORWARD_ORDER)
    return FORWARD_ORDER.index(remote)


def is_forward(current: Optional[RemoteStatus], incoming: RemoteStatus) -> bool:
    """Whether an observed status may replace the stored one (never regress)."""
    incoming = parse_remote_status(incoming)
    if current is None:
        return True
    current = parse_remote_status(current)
    if current in TERMINAL_STATUSES:
        return False
    if incoming is RemoteStatus.CANCELLED:
        return True
    return status_rank(incoming) > status_rank(current)


def allowed_actions(remote: RemoteStatus) -> List[OrderAction]:
    remote = parse_remote_status(remote)
    if remote in TERMINAL_STATUSES:
        return []
    actions = []
    advance = ADVANCE_ACTIONS.get(remote)
    if advance is not None:
        actions.append(advance)
    actions.append(OrderAction.CANCEL)
    return actions


def next_transition(current_local: Optional[LocalStatus], current_remote: RemoteStatus) -> Transition:
    """Single next step for a user-initiated "advance" request."""
    current_remote = parse_remote_status(current_remote)
    if current_local is not None:
        current_local = LocalStatus(current_local)
        if current_local in (LocalStatus.CLOSED, LocalStatus.CANCELLED):
            raise InvalidTransitionError(f'Order is already {current_local.value}')
    if current_remote is RemoteStatus.CANCELLED:
        raise InvalidTransitionError('Order was cancelled on the platform')

    action = ADVANCE_ACTIONS.get(current_remote)
    if action is not None:
        return Transition(LOCAL_BY_REMOTE[ACTION_TARGETS[action]], action)
    # DISPATCHED and CONCLUDED: closing is local bookkeeping only.
    return Transition(LocalStatus.CLOSED, None, RemoteStatus.CONCLUDED)


def validate_action(current_remote: RemoteStatus, action: OrderAction) -> bool:
    """Check an explicit action against the current remote status.

    Returns True when the platform must be called, False when the order is
    already where the action would put it. Raises InvalidTransitionError for
    skips, backward moves and actions on terminal orders.
    """
    current_remote = parse_remote_status(current_remote)
    action = OrderAction(action)
    target = ACTION_TARGETS[action]

    if action is OrderAction.CANCEL:
        if current_remote is RemoteStatus.CANCELLED:
            return False
        if current_remote in TERMINAL_STATUSES:
            raise InvalidTransitionError(f'Cannot cancel an order that is {current_remote.value}')
        return True

    if current_remote is RemoteStatus.CANCELLED:
        raise InvalidTransitionError(f'Cannot {action.value} a cancelled order')
    if current_remote is target:
        return False
    if ADVANCE_ACTIONS.get(current_remote) is action:
        return True
    if status_rank(target) < status_rank(current_remote):
        raise InvalidTransitionError(
            f'Cannot {action.value}: order already moved past {target.value} ({current_remote.value})'
        )
    message = f'Cannot {action.value} from {current_remote.value}'
    expected = ADVANCE_ACTIONS.get(current_remote)
    if expected is not None:
        message += f'; next step is {expected.value}'
    raise InvalidTransitionError(message)
