import pytest

from ifood_errors import InvalidTransitionError, UnknownStatusError
from order_status import (
    LocalStatus,
    OrderAction,
    RemoteStatus,
    allowed_actions,
    is_forward,
    is_informational_event,
    local_status_for,
    next_transition,
    parse_remote_status,
    validate_action,
)

NON_TERMINAL = [
    RemoteStatus.PLACED,
    RemoteStatus.CONFIRMED,
    RemoteStatus.PREPARATION_STARTED,
    RemoteStatus.READY_TO_PICKUP,
    RemoteStatus.DISPATCHED,
]


@pytest.mark.parametrize('remote,local', [
    (RemoteStatus.PLACED, LocalStatus.PENDING),
    (RemoteStatus.CONFIRMED, LocalStatus.PREPARING),
    (RemoteStatus.PREPARATION_STARTED, LocalStatus.PREPARING),
    (RemoteStatus.READY_TO_PICKUP, LocalStatus.READY),
    (RemoteStatus.DISPATCHED, LocalStatus.DELIVERED),
    (RemoteStatus.CONCLUDED, LocalStatus.CLOSED),
    (RemoteStatus.CANCELLED, LocalStatus.CANCELLED),
])
def test_local_status_mapping(remote, local):
    assert local_status_for(remote) is local


@pytest.mark.parametrize('raw,expected', [
    ('PLC', RemoteStatus.PLACED),
    ('cfm', RemoteStatus.CONFIRMED),
    ('SPS', RemoteStatus.PREPARATION_STARTED),
    ('RTP', RemoteStatus.READY_TO_PICKUP),
    ('DSP', RemoteStatus.DISPATCHED),
    ('CON', RemoteStatus.CONCLUDED),
    ('CANCELED', RemoteStatus.CANCELLED),
    ('ready-to-pickup', RemoteStatus.READY_TO_PICKUP),
])
def test_parse_accepts_names_and_event_codes(raw, expected):
    assert parse_remote_status(raw) is expected


@pytest.mark.parametrize('raw', ['DELIVERED_BY_DRONE', '', None, 'CAR'])
def test_parse_rejects_unknown_values(raw):
    with pytest.raises(UnknownStatusError):
        parse_remote_status(raw)


def test_informational_events_are_recognized():
    assert is_informational_event('CAR')
    assert is_informational_event('CANCELLATION_REQUEST_FAILED')
    assert is_informational_event('keepalive')
    assert not is_informational_event('CAN')


@pytest.mark.parametrize('remote,action,local', [
    (RemoteStatus.PLACED, OrderAction.CONFIRM, LocalStatus.PREPARING),
    (RemoteStatus.CONFIRMED, OrderAction.START_PREPARATION, LocalStatus.PREPARING),
    (RemoteStatus.PREPARATION_STARTED, OrderAction.READY_TO_PICKUP, LocalStatus.READY),
    (RemoteStatus.READY_TO_PICKUP, OrderAction.DISPATCH, LocalStatus.DELIVERED),
])
def test_next_transition_is_single_forward_step(remote, action, local):
    transition = next_transition(local_status_for(remote), remote)
    assert transition.action is action
    assert transition.next_local is local


@pytest.mark.parametrize('remote', [RemoteStatus.DISPATCHED, RemoteStatus.CONCLUDED])
def test_no_remote_action_after_dispatch(remote):
    transition = next_transition(None, remote)
    assert transition.action is None
    assert transition.next_local is LocalStatus.CLOSED


def test_cancelled_or_closed_orders_cannot_advance():
    with pytest.raises(InvalidTransitionError):
        next_transition(LocalStatus.CANCELLED, RemoteStatus.CANCELLED)
    with pytest.raises(InvalidTransitionError):
        next_transition(None, RemoteStatus.CANCELLED)
    with pytest.raises(InvalidTransitionError):
        next_transition(LocalStatus.CLOSED, RemoteStatus.CONCLUDED)


@pytest.mark.parametrize('remote', NON_TERMINAL)
def test_cancel_reachable_from_every_non_terminal_status(remote):
    assert OrderAction.CANCEL in allowed_actions(remote)
    assert validate_action(remote, OrderAction.CANCEL) is True


def test_terminal_statuses_allow_nothing():
    assert allowed_actions(RemoteStatus.CONCLUDED) == []
    assert allowed_actions(RemoteStatus.CANCELLED) == []


def test_validate_action_same_target_is_noop():
    assert validate_action(RemoteStatus.CONFIRMED, OrderAction.CONFIRM) is False
    assert validate_action(RemoteStatus.CANCELLED, OrderAction.CANCEL) is False


def test_validate_action_rejects_skips_and_backward_moves():
    with pytest.raises(InvalidTransitionError):
        validate_action(RemoteStatus.PLACED, OrderAction.DISPATCH)
    with pytest.raises(InvalidTransitionError):
        validate_action(RemoteStatus.READY_TO_PICKUP, OrderAction.CONFIRM)
    with pytest.raises(InvalidTransitionError):
        validate_action(RemoteStatus.CANCELLED, OrderAction.CONFIRM)
    with pytest.raises(InvalidTransitionError):
        validate_action(RemoteStatus.CONCLUDED, OrderAction.CANCEL)


def test_is_forward_never_regresses():
    assert is_forward(None, RemoteStatus.PLACED)
    assert is_forward(RemoteStatus.PLACED, RemoteStatus.CONFIRMED)
    assert not is_forward(RemoteStatus.DISPATCHED, RemoteStatus.CONFIRMED)
    assert not is_forward(RemoteStatus.CONFIRMED, RemoteStatus.CONFIRMED)
    assert is_forward(RemoteStatus.READY_TO_PICKUP, RemoteStatus.CANCELLED)
    assert not is_forward(RemoteStatus.CANCELLED, RemoteStatus.CONCLUDED)
    assert not is_forward(RemoteStatus.CONCLUDED, RemoteStatus.CANCELLED)
