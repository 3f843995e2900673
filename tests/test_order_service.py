import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import scenario_a_lines
from dineflow.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PaymentDeclinedError,
    ValidationError,
)
from dineflow.models import ActorRole, OrderStatus
from dineflow.services.orders import Actor, LineRequest, OrderService
from dineflow.services.payment import MockPaymentService
from dineflow.services.store import SqlOrderStore
from dineflow.services.sync import OrderView

KITCHEN_STEPS = [OrderStatus.IN_PROGRESS, OrderStatus.READY_FOR_PICKUP]


async def paid_order(service: OrderService, seed, **kwargs):
    order = await service.create_order(seed.restaurant_id, "4", scenario_a_lines(seed), **kwargs)
    await service.confirm_payment(order.id, customer_id=kwargs.get("customer_id"))
    return order


async def ready_order(service: OrderService, seed):
    order = await paid_order(service, seed)
    kitchen = Actor(seed.restaurant_id, ActorRole.KITCHEN)
    for step in KITCHEN_STEPS:
        await service.transition(order.id, step, kitchen)
    return order


# =============================================================================
# CREATION
# =============================================================================

@pytest.mark.asyncio
async def test_create_order_computes_total_from_menu(service):
    svc, seed = service
    order = await svc.create_order(seed.restaurant_id, "4", scenario_a_lines(seed))

    assert order.total_amount == Decimal("25.00")
    assert order.status == OrderStatus.PENDING_PAYMENT
    assert [(l.name, l.price, l.quantity) for l in order.lines] == [
        ("Carbonara", Decimal("10.00"), 2),
        ("Caesar Salad", Decimal("5.00"), 1),
    ]


@pytest.mark.asyncio
async def test_create_order_keeps_optional_fields(service):
    svc, seed = service
    order = await svc.create_order(
        seed.restaurant_id,
        "4",
        [LineRequest(seed.pasta, 1, note="extra pepper")],
        customer_id="cust-1",
        customer_name="Sam",
        note="allergic to nuts",
    )
    assert order.customer_id == "cust-1"
    assert order.customer_name == "Sam"
    assert order.note == "allergic to nuts"
    assert order.lines[0].note == "extra pepper"


@pytest.mark.asyncio
async def test_create_order_rejects_empty_cart(service):
    svc, seed = service
    with pytest.raises(ValidationError):
        await svc.create_order(seed.restaurant_id, "4", [])


@pytest.mark.asyncio
async def test_create_order_unknown_restaurant_is_validation_error(service):
    svc, seed = service
    with pytest.raises(ValidationError) as exc:
        await svc.create_order(4242, "4", scenario_a_lines(seed))
    assert exc.value.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize("table_id", ["0", "13", "abc", ""])
async def test_create_order_invalid_table(service, table_id):
    svc, seed = service
    with pytest.raises(ValidationError):
        await svc.create_order(seed.restaurant_id, table_id, scenario_a_lines(seed))


@pytest.mark.asyncio
async def test_create_order_rejects_out_of_stock_item(service):
    svc, seed = service
    with pytest.raises(ValidationError) as exc:
        await svc.create_order(seed.restaurant_id, "4", [LineRequest(seed.soup)])
    assert "out of stock" in exc.value.message


@pytest.mark.asyncio
async def test_create_order_rejects_item_of_another_restaurant(service):
    svc, seed = service
    with pytest.raises(ValidationError):
        await svc.create_order(seed.restaurant_id, "4", [LineRequest(seed.foreign_item)])


@pytest.mark.asyncio
async def test_create_order_rejects_zero_quantity(service):
    svc, seed = service
    with pytest.raises(ValidationError):
        await svc.create_order(seed.restaurant_id, "4", [LineRequest(seed.pasta, quantity=0)])


@pytest.mark.asyncio
async def test_later_price_change_never_alters_order(service):
    svc, seed = service
    order = await svc.create_order(seed.restaurant_id, "4", scenario_a_lines(seed))

    await svc.store.update_menu_item(seed.pasta, price=Decimal("12.00"))

    again = await svc.get_order(order.id)
    assert again.total_amount == Decimal("25.00")
    assert again.lines[0].price == Decimal("10.00")

    newer = await svc.create_order(seed.restaurant_id, "4", scenario_a_lines(seed))
    assert newer.total_amount == Decimal("29.00")


@pytest.mark.asyncio
async def test_total_is_rounded_to_cents(memory_store, payment_service, settings):
    backend, seed = memory_store
    odd = backend.add_menu_item(seed.restaurant_id, "Espresso", "1.333", "Drinks")
    svc = OrderService(backend, payment_service=payment_service, settings=settings)

    order = await svc.create_order(seed.restaurant_id, "1", [LineRequest(odd.id, 3)])
    assert order.total_amount == Decimal("4.00")


@pytest.mark.asyncio
async def test_get_unknown_order(service):
    svc, _ = service
    with pytest.raises(NotFoundError):
        await svc.get_order(4242)


# =============================================================================
# TRANSITIONS
# =============================================================================

@pytest.mark.asyncio
async def test_full_lifecycle(service):
    svc, seed = service
    order = await paid_order(svc, seed)
    kitchen = Actor(seed.restaurant_id, ActorRole.KITCHEN)
    staff = Actor(seed.restaurant_id, ActorRole.STAFF)

    result = await svc.transition(order.id, OrderStatus.IN_PROGRESS, kitchen)
    assert result.previous_status == OrderStatus.PAID
    assert (await svc.get_order(order.id)).status == OrderStatus.IN_PROGRESS

    await svc.transition(order.id, OrderStatus.READY_FOR_PICKUP, kitchen)
    assert (await svc.get_order(order.id)).status == OrderStatus.READY_FOR_PICKUP

    result = await svc.transition(order.id, OrderStatus.SERVED, staff)
    assert result.order.status == OrderStatus.SERVED
    assert result.previous_status == OrderStatus.READY_FOR_PICKUP


@pytest.mark.asyncio
@pytest.mark.parametrize("role", [None, ActorRole.CUSTOMER, ActorRole.ADMIN])
async def test_paid_only_through_payment_confirmation(service, role):
    svc, seed = service
    order = await svc.create_order(seed.restaurant_id, "4", scenario_a_lines(seed))

    with pytest.raises(AuthorizationError):
        await svc.transition(order.id, OrderStatus.PAID, Actor(seed.restaurant_id, role))

    current = await svc.get_order(order.id)
    assert current.status == OrderStatus.PENDING_PAYMENT
    assert current.payment_id is None


@pytest.mark.asyncio
async def test_skipping_to_served_is_a_conflict(service):
    svc, seed = service
    order = await paid_order(svc, seed)

    with pytest.raises(ConflictError):
        await svc.transition(order.id, OrderStatus.SERVED, Actor(seed.restaurant_id, ActorRole.STAFF))

    assert (await svc.get_order(order.id)).status == OrderStatus.PAID


@pytest.mark.asyncio
async def test_pending_to_ready_is_a_conflict(service):
    svc, seed = service
    order = await svc.create_order(seed.restaurant_id, "4", scenario_a_lines(seed))

    with pytest.raises(ConflictError):
        await svc.transition(order.id, OrderStatus.READY_FOR_PICKUP, Actor(seed.restaurant_id))

    assert (await svc.get_order(order.id)).status == OrderStatus.PENDING_PAYMENT


@pytest.mark.asyncio
async def test_mark_ready_cannot_resurrect_cancelled_order(service):
    svc, seed = service
    order = await paid_order(svc, seed)
    kitchen = Actor(seed.restaurant_id, ActorRole.KITCHEN)
    await svc.transition(order.id, OrderStatus.IN_PROGRESS, kitchen)
    await svc.transition(order.id, OrderStatus.CANCELLED, Actor(seed.restaurant_id, ActorRole.STAFF))

    with pytest.raises(ConflictError) as exc:
        await svc.transition(order.id, OrderStatus.READY_FOR_PICKUP, kitchen)

    assert exc.value.current_status == "CANCELLED"
    assert (await svc.get_order(order.id)).status == OrderStatus.CANCELLED


@pytest.mark.asyncio
@pytest.mark.parametrize("terminal_step", [OrderStatus.SERVED, OrderStatus.CANCELLED])
async def test_no_transition_out_of_terminal_status(service, terminal_step):
    svc, seed = service
    order = await ready_order(svc, seed)
    staff = Actor(seed.restaurant_id, ActorRole.STAFF)
    await svc.transition(order.id, terminal_step, staff)

    with pytest.raises(ConflictError):
        await svc.transition(order.id, OrderStatus.CANCELLED, staff)
    with pytest.raises(ConflictError):
        await svc.transition(order.id, OrderStatus.SERVED, staff)

    assert (await svc.get_order(order.id)).status == terminal_step


@pytest.mark.asyncio
async def test_wrong_restaurant_is_forbidden(service):
    svc, seed = service
    order = await paid_order(svc, seed)

    with pytest.raises(AuthorizationError):
        await svc.transition(order.id, OrderStatus.IN_PROGRESS, Actor(seed.other_restaurant_id))

    assert (await svc.get_order(order.id)).status == OrderStatus.PAID


@pytest.mark.asyncio
async def test_kitchen_cannot_serve_or_cancel(service):
    svc, seed = service
    order = await ready_order(svc, seed)
    kitchen = Actor(seed.restaurant_id, ActorRole.KITCHEN)

    with pytest.raises(AuthorizationError):
        await svc.transition(order.id, OrderStatus.SERVED, kitchen)
    with pytest.raises(AuthorizationError):
        await svc.transition(order.id, OrderStatus.CANCELLED, kitchen)


@pytest.mark.asyncio
async def test_roster_role_is_used_for_actor_id(service):
    svc, seed = service
    order = await ready_order(svc, seed)

    with pytest.raises(AuthorizationError):
        await svc.transition(order.id, OrderStatus.SERVED, Actor(seed.restaurant_id, actor_id=seed.kitchen_id))

    result = await svc.transition(order.id, OrderStatus.SERVED, Actor(seed.restaurant_id, actor_id=seed.staff_id))
    assert result.order.status == OrderStatus.SERVED


@pytest.mark.asyncio
async def test_actor_from_another_roster_is_forbidden(service):
    svc, seed = service
    order = await ready_order(svc, seed)

    with pytest.raises(AuthorizationError):
        await svc.transition(
            order.id, OrderStatus.SERVED, Actor(seed.restaurant_id, actor_id=seed.other_staff_id),
        )


@pytest.mark.asyncio
async def test_claimed_role_must_match_roster(service):
    svc, seed = service
    order = await ready_order(svc, seed)

    with pytest.raises(AuthorizationError):
        await svc.transition(
            order.id,
            OrderStatus.SERVED,
            Actor(seed.restaurant_id, role=ActorRole.ADMIN, actor_id=seed.staff_id),
        )


@pytest.mark.asyncio
async def test_admin_can_cook_and_serve(service):
    svc, seed = service
    order = await paid_order(svc, seed)
    admin = Actor(seed.restaurant_id, actor_id=seed.admin_id)

    for step in KITCHEN_STEPS + [OrderStatus.SERVED]:
        await svc.transition(order.id, step, admin)
    assert (await svc.get_order(order.id)).status == OrderStatus.SERVED


@pytest.mark.asyncio
async def test_expected_status_must_match_predecessor(service):
    svc, seed = service
    order = await paid_order(svc, seed)

    with pytest.raises(ConflictError):
        await svc.transition(
            order.id, OrderStatus.IN_PROGRESS, Actor(seed.restaurant_id), expected=OrderStatus.READY_FOR_PICKUP,
        )


@pytest.mark.asyncio
async def test_cancel_with_stale_expected_status_is_a_conflict(service):
    svc, seed = service
    order = await paid_order(svc, seed)
    await svc.transition(order.id, OrderStatus.IN_PROGRESS, Actor(seed.restaurant_id, ActorRole.KITCHEN))

    with pytest.raises(ConflictError):
        await svc.transition(
            order.id,
            OrderStatus.CANCELLED,
            Actor(seed.restaurant_id, ActorRole.STAFF),
            expected=OrderStatus.PAID,
        )
    assert (await svc.get_order(order.id)).status == OrderStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_transition_unknown_order(service):
    svc, seed = service
    with pytest.raises(NotFoundError):
        await svc.transition(4242, OrderStatus.IN_PROGRESS, Actor(seed.restaurant_id))


@pytest.mark.asyncio
async def test_concurrent_serve_and_cancel_has_one_winner(memory_service):
    svc, seed = memory_service
    order = await ready_order(svc, seed)
    staff = Actor(seed.restaurant_id, ActorRole.STAFF)

    results = await asyncio.gather(
        svc.transition(order.id, OrderStatus.SERVED, staff),
        svc.transition(order.id, OrderStatus.CANCELLED, staff, expected=OrderStatus.READY_FOR_PICKUP),
        return_exceptions=True,
    )

    conflicts = [r for r in results if isinstance(r, ConflictError)]
    successes = [r for r in results if not isinstance(r, Exception)]
    assert len(conflicts) == 1
    assert len(successes) == 1
    assert (await svc.get_order(order.id)).status == successes[0].order.status


@pytest.mark.asyncio
async def test_concurrent_identical_transitions_apply_once(memory_service):
    svc, seed = memory_service
    order = await paid_order(svc, seed)
    kitchen = Actor(seed.restaurant_id, ActorRole.KITCHEN)

    results = await asyncio.gather(
        svc.transition(order.id, OrderStatus.IN_PROGRESS, kitchen),
        svc.transition(order.id, OrderStatus.IN_PROGRESS, kitchen),
        return_exceptions=True,
    )

    assert sum(isinstance(r, ConflictError) for r in results) == 1
    assert sum(not isinstance(r, Exception) for r in results) == 1


def sql_service(session, payment_service, settings) -> OrderService:
    return OrderService(SqlOrderStore(session), payment_service=payment_service, settings=settings)


@pytest.mark.asyncio
async def test_sql_concurrent_serve_and_cancel_has_one_winner(file_db, payment_service, settings):
    session_maker, seed = file_db
    async with session_maker() as session:
        order = await ready_order(sql_service(session, payment_service, settings), seed)
    staff = Actor(seed.restaurant_id, ActorRole.STAFF)

    async with session_maker() as first, session_maker() as second:
        results = await asyncio.gather(
            sql_service(first, payment_service, settings).transition(
                order.id, OrderStatus.SERVED, staff,
            ),
            sql_service(second, payment_service, settings).transition(
                order.id, OrderStatus.CANCELLED, staff, expected=OrderStatus.READY_FOR_PICKUP,
            ),
            return_exceptions=True,
        )

    conflicts = [r for r in results if isinstance(r, ConflictError)]
    successes = [r for r in results if not isinstance(r, Exception)]
    assert len(conflicts) == 1
    assert len(successes) == 1

    async with session_maker() as session:
        final = await SqlOrderStore(session).get_order(order.id)
    assert final.status == successes[0].order.status


@pytest.mark.asyncio
async def test_sql_concurrent_identical_transitions_apply_once(file_db, payment_service, settings):
    session_maker, seed = file_db
    async with session_maker() as session:
        order = await paid_order(sql_service(session, payment_service, settings), seed)
    kitchen = Actor(seed.restaurant_id, ActorRole.KITCHEN)

    async with session_maker() as first, session_maker() as second:
        results = await asyncio.gather(
            sql_service(first, payment_service, settings).transition(
                order.id, OrderStatus.IN_PROGRESS, kitchen,
            ),
            sql_service(second, payment_service, settings).transition(
                order.id, OrderStatus.IN_PROGRESS, kitchen,
            ),
            return_exceptions=True,
        )

    assert sum(isinstance(r, ConflictError) for r in results) == 1
    assert sum(not isinstance(r, Exception) for r in results) == 1

    async with session_maker() as session:
        final = await SqlOrderStore(session).get_order(order.id)
    assert final.status == OrderStatus.IN_PROGRESS


# =============================================================================
# PAYMENT
# =============================================================================

@pytest.mark.asyncio
async def test_confirm_payment_moves_to_paid(service):
    svc, seed = service
    order = await svc.create_order(seed.restaurant_id, "4", scenario_a_lines(seed))

    confirmation = await svc.confirm_payment(order.id)

    assert confirmation.already_confirmed is False
    assert confirmation.order.status == OrderStatus.PAID
    assert confirmation.order.payment_id.startswith("pay_mock_")


@pytest.mark.asyncio
async def test_retried_confirmation_does_not_charge_again(service):
    svc, seed = service
    order = await svc.create_order(seed.restaurant_id, "4", scenario_a_lines(seed))
    first = await svc.confirm_payment(order.id)

    second = await svc.confirm_payment(order.id)

    assert second.already_confirmed is True
    assert second.payment is None
    assert second.order.payment_id == first.order.payment_id


@pytest.mark.asyncio
async def test_confirmation_after_kitchen_started_is_already_confirmed(service):
    svc, seed = service
    order = await paid_order(svc, seed)
    await svc.transition(order.id, OrderStatus.IN_PROGRESS, Actor(seed.restaurant_id, ActorRole.KITCHEN))

    confirmation = await svc.confirm_payment(order.id)
    assert confirmation.already_confirmed is True
    assert confirmation.order.status == OrderStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_declined_payment_leaves_order_pending(service):
    svc, seed = service
    order = await svc.create_order(seed.restaurant_id, "4", scenario_a_lines(seed))

    with pytest.raises(PaymentDeclinedError) as exc:
        await svc.confirm_payment(order.id, simulate_failure=True)

    assert exc.value.status_code == 402
    assert (await svc.get_order(order.id)).status == OrderStatus.PENDING_PAYMENT

    retry = await svc.confirm_payment(order.id)
    assert retry.order.status == OrderStatus.PAID


@pytest.mark.asyncio
async def test_cancelled_order_cannot_be_paid(service):
    svc, seed = service
    order = await svc.create_order(seed.restaurant_id, "4", scenario_a_lines(seed))
    await svc.transition(order.id, OrderStatus.CANCELLED, Actor(seed.restaurant_id, ActorRole.STAFF))

    with pytest.raises(ConflictError):
        await svc.confirm_payment(order.id)


@pytest.mark.asyncio
async def test_payment_by_another_customer_is_forbidden(service):
    svc, seed = service
    order = await svc.create_order(seed.restaurant_id, "4", scenario_a_lines(seed), customer_id="cust-1")

    with pytest.raises(AuthorizationError):
        await svc.confirm_payment(order.id, customer_id="cust-2")
    assert (await svc.get_order(order.id)).status == OrderStatus.PENDING_PAYMENT


@pytest.mark.asyncio
async def test_concurrent_confirmations_flip_once(memory_store, settings):
    backend, seed = memory_store
    svc = OrderService(backend, payment_service=MockPaymentService(delay_seconds=0.01), settings=settings)
    order = await svc.create_order(seed.restaurant_id, "4", scenario_a_lines(seed))

    results = await asyncio.gather(*[svc.confirm_payment(order.id) for _ in range(3)])

    assert sum(not r.already_confirmed for r in results) == 1
    final = await svc.get_order(order.id)
    assert final.status == OrderStatus.PAID
    assert {r.order.payment_id for r in results} == {final.payment_id}


# =============================================================================
# SLICES & STALE ORDERS
# =============================================================================

@pytest.mark.asyncio
async def test_kitchen_slice_only_sees_paid_and_in_progress(service):
    svc, seed = service
    pending = await svc.create_order(seed.restaurant_id, "1", scenario_a_lines(seed))
    paid = await paid_order(svc, seed)
    cooking = await paid_order(svc, seed)
    await svc.transition(cooking.id, OrderStatus.IN_PROGRESS, Actor(seed.restaurant_id, ActorRole.KITCHEN))
    ready = await ready_order(svc, seed)

    kitchen = await svc.list_slice(OrderView.KITCHEN, restaurant_id=seed.restaurant_id)
    assert {o.id for o in kitchen.orders} == {paid.id, cooking.id}
    assert kitchen.poll_interval_seconds == 5

    staff = await svc.list_slice(OrderView.STAFF, restaurant_id=seed.restaurant_id)
    assert {o.id for o in staff.orders} == {pending.id, paid.id, cooking.id, ready.id}

    admin = await svc.list_slice(OrderView.ADMIN, restaurant_id=seed.restaurant_id)
    assert admin.poll_interval_seconds == 10


@pytest.mark.asyncio
async def test_customer_slice_by_table_and_identity(service):
    svc, seed = service
    mine = await svc.create_order(seed.restaurant_id, "3", scenario_a_lines(seed), customer_id="cust-7")
    neighbour = await svc.create_order(seed.restaurant_id, "5", scenario_a_lines(seed))

    by_table = await svc.list_slice(OrderView.CUSTOMER, restaurant_id=seed.restaurant_id, table_id="3")
    assert [o.id for o in by_table.orders] == [mine.id]

    by_identity = await svc.list_slice(OrderView.CUSTOMER, customer_id="cust-7")
    assert [o.id for o in by_identity.orders] == [mine.id]
    assert neighbour.id not in {o.id for o in by_identity.orders}


@pytest.mark.asyncio
async def test_find_stale_pending(service):
    svc, seed = service
    unpaid = await svc.create_order(seed.restaurant_id, "1", scenario_a_lines(seed))
    await paid_order(svc, seed)

    later = datetime.now(timezone.utc) + timedelta(minutes=45)
    stale = await svc.find_stale_pending(timedelta(minutes=30), now=later)
    assert [o.id for o in stale] == [unpaid.id]

    assert await svc.find_stale_pending(timedelta(minutes=30)) == []
