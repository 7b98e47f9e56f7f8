from datetime import datetime, timedelta, timezone

import pytest

from application.dtos.orders import AddOrderItem, DeliveryInput, OrderLineInput, PlaceOrder
from application.services.order_service import OrderApplicationService
from application.services.reconciliation_service import (
    PaymentReconciliationService,
    ReconciliationOutcome,
)
from domain.common.exceptions import (
    InvalidOrderLineError,
    InvalidTransitionError,
    OrderNotFoundException,
    OrderNotModifiableException,
    OrderValidationException,
)
from domain.order.entity import OrderStatus
from domain.payment.entity import TransactionStatus


@pytest.fixture
def service(uow_factory, order_lock):
    return OrderApplicationService(uow_factory, order_lock)


def _payload(**overrides) -> PlaceOrder:
    data = dict(
        customer_id="cust-1",
        items=[OrderLineInput(product_id=1, product_title="Book 1", quantity=2, unit_price=50_000)],
        delivery=DeliveryInput(name="Tran Van A", phone="0901234567", address="1 Trang Tien", province="Hanoi"),
    )
    data.update(overrides)
    return PlaceOrder(**data)


@pytest.mark.asyncio
async def test_place_order_persists_pending_order(service, store):
    order = await service.place_order(_payload())

    assert order.status == OrderStatus.PENDING
    assert order.subtotal == 100_000
    assert order.vat_amount == 10_000
    assert order.delivery_fee == 22_000
    assert order.grand_total == 132_000
    assert store.orders[order.id].version == 1


@pytest.mark.asyncio
async def test_quote_does_not_persist(service, store):
    quote = await service.calculate_order_total(_payload())

    assert quote.grand_total == 132_000
    assert quote.total_weight_kg == 1.0
    assert store.orders == {}


@pytest.mark.asyncio
async def test_quote_rejects_invalid_request(service):
    with pytest.raises(OrderValidationException) as exc:
        await service.calculate_order_total(_payload(is_rush_order=True, delivery=DeliveryInput(
            name="A", phone="1", address="x", province="Da Nang",
        )))
    assert "Rush order not available for selected province" in exc.value.errors


@pytest.mark.asyncio
async def test_get_and_list_orders(service, make_order):
    first = make_order()
    second = make_order(created_at=datetime.now(timezone.utc) + timedelta(seconds=1))

    assert (await service.get_order(first.id)).grand_total == 132_000
    listed = await service.list_customer_orders("cust-1")
    assert [o.id for o in listed] == [second.id, first.id]
    assert await service.list_customer_orders("nobody") == []

    with pytest.raises(OrderNotFoundException):
        await service.get_order(999)


@pytest.mark.asyncio
async def test_cancel_runs_under_order_lock(service, make_order, order_lock, store):
    order = make_order()

    cancelled = await service.cancel_order(order.id)

    assert cancelled.status == OrderStatus.CANCELLED
    assert order_lock.held == [str(order.id)]
    assert order_lock.active_keys() == 0
    assert store.orders[order.id].version == 2


@pytest.mark.asyncio
async def test_illegal_status_change_is_not_persisted(service, make_order, store):
    order = make_order()

    with pytest.raises(InvalidTransitionError):
        await service.update_status(order.id, OrderStatus.DELIVERED)

    assert store.orders[order.id].status == OrderStatus.PENDING
    assert store.orders[order.id].version == 1


@pytest.mark.asyncio
async def test_can_modify_order(service, make_order):
    created = datetime.now(timezone.utc) - timedelta(minutes=10)
    order = make_order(created_at=created)

    assert await service.can_modify_order(order.id)
    assert not await service.can_modify_order(order.id, now=created + timedelta(hours=3))

    confirmed = make_order(status=OrderStatus.CONFIRMED)
    assert not await service.can_modify_order(confirmed.id)


@pytest.mark.asyncio
async def test_add_and_remove_item_refresh_delivery_fee(service, make_order):
    order = make_order()

    updated = await service.add_item(
        order.id, AddOrderItem(product_id=2, product_title="CD 2", quantity=1, unit_price=15_000)
    )
    # subtotal 115000 now qualifies for the free-shipping discount
    assert updated.subtotal == 115_000
    assert updated.delivery_fee == 0
    assert updated.grand_total == 126_500

    restored = await service.remove_item(order.id, 2)
    assert restored.delivery_fee == 22_000
    assert restored.grand_total == 132_000

    # unknown product: nothing changes
    unchanged = await service.remove_item(order.id, 42)
    assert unchanged.grand_total == 132_000

    with pytest.raises(InvalidOrderLineError):
        await service.remove_item(order.id, 1)


@pytest.mark.asyncio
async def test_add_item_checks_availability(service, make_order):
    order = make_order()
    with pytest.raises(OrderValidationException):
        await service.add_item(
            order.id, AddOrderItem(product_id=3, product_title="Book 3", quantity=6, unit_price=1_000)
        )


@pytest.mark.asyncio
async def test_items_frozen_outside_modification_window(service, make_order):
    stale = make_order(created_at=datetime.now(timezone.utc) - timedelta(hours=3))
    line = AddOrderItem(product_id=2, product_title="CD 2", quantity=1, unit_price=15_000)

    with pytest.raises(OrderNotModifiableException):
        await service.add_item(stale.id, line)

    confirmed = make_order(status=OrderStatus.CONFIRMED)
    with pytest.raises(OrderNotModifiableException):
        await service.remove_item(confirmed.id, 1)


@pytest.fixture
def payments(gateway, uow_factory, order_lock):
    return PaymentReconciliationService(
        gateway=gateway,
        uow_factory=uow_factory,
        order_lock=order_lock,
        lookup_attempts=1,
        lookup_wait=0,
    )


@pytest.mark.asyncio
async def test_changing_items_voids_pending_payment(service, payments, gateway, make_order, store):
    order = make_order()
    redirect = await payments.start_payment(order.id, client_ip="10.0.0.1")

    updated = await service.add_item(
        order.id, AddOrderItem(product_id=2, product_title="CD 2", quantity=1, unit_price=15_000)
    )
    assert updated.grand_total == 126_500
    assert store.transactions[redirect.txn_ref].status == TransactionStatus.CANCELLED

    # the old 132000 attempt can no longer confirm the 126500 order
    outcome = await payments.handle_callback(gateway.callback(redirect.txn_ref, 132_000))
    assert outcome == ReconciliationOutcome.AMOUNT_MISMATCH
    assert store.transactions[redirect.txn_ref].status == TransactionStatus.CANCELLED
    assert store.orders[order.id].status == OrderStatus.PENDING

    retry = await payments.start_payment(order.id, client_ip="10.0.0.1")
    assert retry.amount == 126_500
    assert await payments.handle_callback(gateway.callback(retry.txn_ref, 126_500)) == ReconciliationOutcome.SUCCESS
    assert store.orders[order.id].status == OrderStatus.CONFIRMED


@pytest.mark.asyncio
async def test_removing_unknown_item_keeps_pending_payment(service, payments, make_order, store):
    order = make_order()
    redirect = await payments.start_payment(order.id, client_ip="10.0.0.1")

    await service.remove_item(order.id, 42)

    assert store.transactions[redirect.txn_ref].status == TransactionStatus.PENDING


@pytest.mark.asyncio
async def test_cancel_voids_pending_payment(service, payments, gateway, make_order, store):
    order = make_order()
    redirect = await payments.start_payment(order.id, client_ip="10.0.0.1")

    await service.cancel_order(order.id)

    txn = store.transactions[redirect.txn_ref]
    assert txn.status == TransactionStatus.CANCELLED
    assert txn.message == "order cancelled"
    # nothing is left for the stale-payment sweep to poll
    assert await payments.reconcile_from_gateway(str(order.id)) == ReconciliationOutcome.ALREADY_PROCESSED
    assert gateway.queries == []
