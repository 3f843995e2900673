import pytest

from dineflow.core.exceptions import AuthorizationError, ConflictError
from dineflow.models import ActorRole, OrderStatus
from dineflow.services.state_machine import (
    NON_TERMINAL_STATUSES,
    allowed_predecessors,
    check_authority,
    is_terminal,
)

LEGAL = [
    (OrderStatus.PENDING_PAYMENT, OrderStatus.PAID),
    (OrderStatus.PAID, OrderStatus.IN_PROGRESS),
    (OrderStatus.IN_PROGRESS, OrderStatus.READY_FOR_PICKUP),
    (OrderStatus.READY_FOR_PICKUP, OrderStatus.SERVED),
]


def test_terminal_statuses():
    assert is_terminal(OrderStatus.SERVED)
    assert is_terminal(OrderStatus.CANCELLED)
    assert not is_terminal(OrderStatus.READY_FOR_PICKUP)
    assert OrderStatus.SERVED not in NON_TERMINAL_STATUSES


@pytest.mark.parametrize("source,target", LEGAL)
def test_forward_transition_has_single_predecessor(source, target):
    assert allowed_predecessors(1, target) == frozenset({source})
    assert allowed_predecessors(1, target, expected=source) == frozenset({source})


def test_skipping_a_step_is_a_conflict():
    with pytest.raises(ConflictError) as exc:
        allowed_predecessors(7, OrderStatus.SERVED, expected=OrderStatus.PAID)
    assert exc.value.status_code == 409
    assert exc.value.order_id == 7


def test_nothing_transitions_back_to_pending_payment():
    with pytest.raises(ConflictError):
        allowed_predecessors(1, OrderStatus.PENDING_PAYMENT)


def test_cancel_without_expected_allows_any_non_terminal():
    assert allowed_predecessors(1, OrderStatus.CANCELLED) == NON_TERMINAL_STATUSES


def test_cancel_narrows_to_observed_status():
    allowed = allowed_predecessors(1, OrderStatus.CANCELLED, expected=OrderStatus.IN_PROGRESS)
    assert allowed == frozenset({OrderStatus.IN_PROGRESS})


@pytest.mark.parametrize("terminal", [OrderStatus.SERVED, OrderStatus.CANCELLED])
def test_cancel_of_terminal_order_is_a_conflict(terminal):
    with pytest.raises(ConflictError) as exc:
        allowed_predecessors(3, OrderStatus.CANCELLED, expected=terminal)
    assert exc.value.current_status == terminal.value


def test_conflict_message_asks_for_refresh():
    error = ConflictError(5, "CANCELLED")
    assert "just updated elsewhere" in error.message
    assert "CANCELLED" in error.message


@pytest.mark.parametrize("role,target", [
    (ActorRole.CUSTOMER, OrderStatus.PAID),
    (ActorRole.KITCHEN, OrderStatus.IN_PROGRESS),
    (ActorRole.KITCHEN, OrderStatus.READY_FOR_PICKUP),
    (ActorRole.STAFF, OrderStatus.SERVED),
    (ActorRole.STAFF, OrderStatus.CANCELLED),
    (ActorRole.ADMIN, OrderStatus.IN_PROGRESS),
    (ActorRole.ADMIN, OrderStatus.SERVED),
    (ActorRole.ADMIN, OrderStatus.CANCELLED),
])
def test_authorized_roles(role, target):
    check_authority(role, target)


@pytest.mark.parametrize("role,target", [
    (ActorRole.KITCHEN, OrderStatus.SERVED),
    (ActorRole.KITCHEN, OrderStatus.CANCELLED),
    (ActorRole.STAFF, OrderStatus.IN_PROGRESS),
    (ActorRole.CUSTOMER, OrderStatus.CANCELLED),
    (ActorRole.ADMIN, OrderStatus.PAID),
])
def test_unauthorized_roles(role, target):
    with pytest.raises(AuthorizationError):
        check_authority(role, target)


def test_anonymous_actor_skips_role_check():
    check_authority(None, OrderStatus.SERVED)
