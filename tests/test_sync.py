import pytest

from dineflow.core.exceptions import ValidationError
from dineflow.models import OrderStatus
from dineflow.services.sync import (
    KITCHEN_STATUSES,
    OrderView,
    build_slice_query,
    infer_view,
    poll_interval,
)


def test_infer_view():
    assert infer_view(None) == OrderView.STAFF
    assert infer_view(None, table_id="3") == OrderView.CUSTOMER
    assert infer_view(None, customer_id="c") == OrderView.CUSTOMER
    assert infer_view(OrderView.KITCHEN, table_id="3") == OrderView.KITCHEN


def test_poll_intervals(settings):
    assert poll_interval(OrderView.KITCHEN, settings) == 5
    assert poll_interval(OrderView.STAFF, settings) == 5
    assert poll_interval(OrderView.CUSTOMER, settings) == 5
    assert poll_interval(OrderView.ADMIN, settings) == 10


def test_kitchen_query_forces_kitchen_statuses():
    query = build_slice_query(OrderView.KITCHEN, restaurant_id=1)
    assert query.statuses == KITCHEN_STATUSES
    assert query.restaurant_id == 1


def test_kitchen_status_filter_narrows():
    query = build_slice_query(OrderView.KITCHEN, restaurant_id=1, status=OrderStatus.PAID)
    assert query.statuses == frozenset({OrderStatus.PAID})


def test_kitchen_status_outside_slice_rejected():
    with pytest.raises(ValidationError):
        build_slice_query(OrderView.KITCHEN, restaurant_id=1, status=OrderStatus.SERVED)


@pytest.mark.parametrize("view", [OrderView.KITCHEN, OrderView.STAFF, OrderView.ADMIN])
def test_restaurant_views_need_restaurant(view):
    with pytest.raises(ValidationError):
        build_slice_query(view)


def test_staff_query_is_whole_restaurant():
    query = build_slice_query(OrderView.STAFF, restaurant_id=2)
    assert query.statuses is None
    assert query.table_id is None


def test_customer_table_tracking_needs_restaurant():
    with pytest.raises(ValidationError):
        build_slice_query(OrderView.CUSTOMER, table_id="3")

    query = build_slice_query(OrderView.CUSTOMER, restaurant_id=2, table_id="3")
    assert (query.restaurant_id, query.table_id) == (2, "3")


def test_customer_identity_tracking():
    query = build_slice_query(OrderView.CUSTOMER, customer_id="cust-1")
    assert query.customer_id == "cust-1"
    assert query.restaurant_id is None
