import asyncio
from datetime import timedelta

import pytest

from application.dtos.payments import StatusQueryResult
from application.services.reconciliation_service import (
    PaymentReconciliationService,
    ReconciliationOutcome as Outcome,
)
from domain.common.exceptions import (
    DomainValidationException,
    GatewayUnavailableError,
    InvalidSignatureError,
    OrderNotFoundException,
    PaymentNotFoundException,
)
from domain.order.entity import OrderStatus
from domain.payment.entity import TransactionStatus
from domain.services import payment_signing


@pytest.fixture
def service(gateway, uow_factory, order_lock):
    return PaymentReconciliationService(
        gateway=gateway,
        uow_factory=uow_factory,
        order_lock=order_lock,
        lookup_attempts=3,
        lookup_wait=0,
    )


async def _start(service, order):
    redirect = await service.start_payment(order.id, client_ip="10.0.0.1")
    return redirect.txn_ref


@pytest.mark.asyncio
async def test_start_payment_records_pending_intent(service, gateway, make_order, store, order_lock):
    order = make_order()
    redirect = await service.start_payment(order.id, client_ip="10.0.0.1", bank_code="NCB")

    txn = store.transactions[redirect.txn_ref]
    assert txn.status == TransactionStatus.PENDING
    assert txn.amount == order.grand_total == 132_000
    assert txn.order_id == str(order.id)
    assert txn.gateway_create_date == redirect.create_date
    assert gateway.redirects[0].amount == 132_000
    assert gateway.redirects[0].client_ip == "10.0.0.1"
    assert order_lock.held == [str(order.id)]


@pytest.mark.asyncio
async def test_start_payment_refuses_missing_or_settled_orders(service, make_order):
    with pytest.raises(OrderNotFoundException):
        await service.start_payment(999, client_ip="10.0.0.1")

    confirmed = make_order(status=OrderStatus.CONFIRMED)
    with pytest.raises(DomainValidationException):
        await service.start_payment(confirmed.id, client_ip="10.0.0.1")


@pytest.mark.asyncio
async def test_successful_callback_confirms_order(service, gateway, make_order, store):
    order = make_order()
    txn_ref = await _start(service, order)

    outcome = await service.handle_callback(gateway.callback(txn_ref, order.grand_total))

    assert outcome == Outcome.SUCCESS
    assert store.orders[order.id].status == OrderStatus.CONFIRMED
    txn = store.transactions[txn_ref]
    assert txn.status == TransactionStatus.SUCCESS
    assert txn.provider_txn_no == "14012345"
    assert txn.bank_code == "NCB"
    assert service.acknowledgement(outcome) == {"RspCode": "00", "Message": "Confirm Success"}


@pytest.mark.asyncio
async def test_duplicate_callback_is_idempotent(service, gateway, make_order, store):
    order = make_order()
    txn_ref = await _start(service, order)
    fields = gateway.callback(txn_ref, order.grand_total)

    assert await service.handle_callback(fields) == Outcome.SUCCESS
    snapshot = (store.orders[order.id].version, store.transactions[txn_ref].version)

    outcome = await service.handle_callback(fields)
    assert outcome == Outcome.ALREADY_PROCESSED
    assert (store.orders[order.id].version, store.transactions[txn_ref].version) == snapshot
    assert service.acknowledgement(outcome)["RspCode"] == "02"


@pytest.mark.asyncio
async def test_failed_callback_leaves_order_pending(service, gateway, make_order, store):
    order = make_order()
    txn_ref = await _start(service, order)

    outcome = await service.handle_callback(gateway.callback(txn_ref, order.grand_total, response_code="24"))

    assert outcome == Outcome.FAILED
    assert store.orders[order.id].status == OrderStatus.PENDING
    txn = store.transactions[txn_ref]
    assert txn.status == TransactionStatus.FAILED
    assert txn.response_code == "24"
    assert txn.message == "Transaction cancelled by customer"

    # a later success for the same attempt cannot resurrect it
    late = await service.handle_callback(gateway.callback(txn_ref, order.grand_total))
    assert late == Outcome.ALREADY_PROCESSED
    assert store.transactions[txn_ref].status == TransactionStatus.FAILED


@pytest.mark.asyncio
async def test_retry_after_failure_can_succeed(service, gateway, make_order, store):
    order = make_order()
    first = await _start(service, order)
    await service.handle_callback(gateway.callback(first, order.grand_total, response_code="51"))

    second = await _start(service, order)
    assert await service.handle_callback(gateway.callback(second, order.grand_total)) == Outcome.SUCCESS
    assert store.orders[order.id].status == OrderStatus.CONFIRMED


@pytest.mark.asyncio
async def test_success_after_cancellation_is_rejected(service, gateway, make_order, store):
    order = make_order()
    txn_ref = await _start(service, order)
    cancelled = store.orders[order.id]
    cancelled.status = OrderStatus.CANCELLED

    fields = gateway.callback(txn_ref, order.grand_total)
    for _ in range(2):
        outcome = await service.handle_callback(fields)
        assert outcome == Outcome.TRANSITION_REJECTED
        assert store.orders[order.id].status == OrderStatus.CANCELLED
        assert store.transactions[txn_ref].status == TransactionStatus.PENDING
    assert service.acknowledgement(outcome)["RspCode"] == "02"


@pytest.mark.asyncio
async def test_success_for_shipped_order_records_payment(service, gateway, make_order, store):
    order = make_order()
    txn_ref = await _start(service, order)
    store.orders[order.id].status = OrderStatus.SHIPPED
    version = store.orders[order.id].version

    outcome = await service.handle_callback(gateway.callback(txn_ref, order.grand_total))

    # the gateway took the money: the attempt is recorded even though the order has moved on
    assert outcome == Outcome.SUCCESS
    assert store.transactions[txn_ref].status == TransactionStatus.SUCCESS
    assert store.orders[order.id].status == OrderStatus.SHIPPED
    assert store.orders[order.id].version == version
    assert service.acknowledgement(outcome)["RspCode"] == "00"

    view = await service.get_payment_status(str(order.id))
    assert view.status == "success"


@pytest.mark.asyncio
async def test_success_for_confirmed_order_without_payment_is_recorded(service, gateway, make_order, store):
    order = make_order()
    txn_ref = await _start(service, order)
    store.orders[order.id].status = OrderStatus.CONFIRMED

    assert await service.handle_callback(gateway.callback(txn_ref, order.grand_total)) == Outcome.SUCCESS
    assert store.transactions[txn_ref].status == TransactionStatus.SUCCESS
    assert store.orders[order.id].status == OrderStatus.CONFIRMED


@pytest.mark.asyncio
async def test_success_for_outdated_amount_does_not_confirm(service, gateway, make_order, store):
    order = make_order()
    txn_ref = await _start(service, order)
    # the order total changed after the attempt was started
    store.orders[order.id].delivery_info.delivery_fee = 0

    outcome = await service.handle_callback(gateway.callback(txn_ref, order.grand_total))

    assert outcome == Outcome.AMOUNT_MISMATCH
    assert store.orders[order.id].status == OrderStatus.PENDING
    assert store.transactions[txn_ref].status == TransactionStatus.PENDING
    assert service.acknowledgement(outcome)["RspCode"] == "04"


@pytest.mark.asyncio
async def test_failure_for_outdated_amount_is_still_recorded(service, gateway, make_order, store):
    order = make_order()
    txn_ref = await _start(service, order)
    store.orders[order.id].delivery_info.delivery_fee = 0

    outcome = await service.handle_callback(gateway.callback(txn_ref, order.grand_total, response_code="24"))

    assert outcome == Outcome.FAILED
    assert store.transactions[txn_ref].status == TransactionStatus.FAILED


@pytest.mark.asyncio
async def test_tampered_callback_changes_nothing(service, gateway, make_order, store):
    order = make_order()
    txn_ref = await _start(service, order)
    fields = gateway.callback(txn_ref, order.grand_total, response_code="24")
    fields["vnp_ResponseCode"] = "00"
    fields["vnp_TransactionStatus"] = "00"

    outcome = await service.handle_callback(fields)

    assert outcome == Outcome.INVALID_SIGNATURE
    assert store.orders[order.id].status == OrderStatus.PENDING
    assert store.transactions[txn_ref].status == TransactionStatus.PENDING
    assert service.acknowledgement(outcome) == {"RspCode": "97", "Message": "Invalid signature"}
    with pytest.raises(InvalidSignatureError):
        payment_signing.ensure_valid(gateway.secret, fields)


@pytest.mark.asyncio
async def test_amount_mismatch(service, gateway, make_order, store):
    order = make_order()
    txn_ref = await _start(service, order)

    outcome = await service.handle_callback(gateway.callback(txn_ref, order.grand_total - 1))

    assert outcome == Outcome.AMOUNT_MISMATCH
    assert store.transactions[txn_ref].status == TransactionStatus.PENDING
    assert service.acknowledgement(outcome)["RspCode"] == "04"


@pytest.mark.asyncio
async def test_unknown_txn_ref_after_bounded_lookup(service, gateway, monkeypatch):
    calls = []
    original = service._find_transaction

    async def counting(txn_ref):
        calls.append(txn_ref)
        return await original(txn_ref)

    monkeypatch.setattr(service, "_find_transaction", counting)
    outcome = await service.handle_callback(gateway.callback("404-00000000", 10_000))

    assert outcome == Outcome.ORDER_NOT_FOUND
    assert len(calls) == 3
    assert service.acknowledgement(outcome)["RspCode"] == "01"


@pytest.mark.asyncio
async def test_lookup_tolerates_late_visible_write(service, gateway, make_order, monkeypatch):
    order = make_order()
    txn_ref = await _start(service, order)
    original = service._find_transaction
    calls = []

    async def late(ref):
        calls.append(ref)
        if len(calls) == 1:
            return None
        return await original(ref)

    monkeypatch.setattr(service, "_find_transaction", late)
    assert await service.handle_callback(gateway.callback(txn_ref, order.grand_total)) == Outcome.SUCCESS
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_concurrent_callbacks_yield_single_success(service, gateway, make_order, store):
    order = make_order()
    first = await _start(service, order)
    second = await _start(service, order)

    outcomes = await asyncio.gather(
        service.handle_callback(gateway.callback(first, order.grand_total)),
        service.handle_callback(gateway.callback(first, order.grand_total)),
        service.handle_callback(gateway.callback(second, order.grand_total)),
    )

    assert sorted(o.value for o in outcomes) == ["already_processed", "already_processed", "success"]
    successes = [t for t in store.transactions.values() if t.status == TransactionStatus.SUCCESS]
    assert len(successes) == 1
    assert store.orders[order.id].status == OrderStatus.CONFIRMED


@pytest.mark.asyncio
async def test_reconcile_from_gateway_applies_paid_result(service, gateway, make_order, store, order_lock):
    order = make_order()
    txn_ref = await _start(service, order)
    seen_locks = []

    original_query = gateway.query_status

    async def query(q):
        # no order lock may be held during gateway IO
        seen_locks.append(order_lock.active_keys())
        return await original_query(q)

    gateway.query_status = query
    gateway.query_result = StatusQueryResult(
        found=True, txn_ref=txn_ref, response_code="00", status_code="00",
        amount=order.grand_total, provider_txn_no="14099999",
    )

    outcome = await service.reconcile_from_gateway(str(order.id))

    assert outcome == Outcome.SUCCESS
    assert seen_locks == [0]
    assert store.transactions[txn_ref].provider_txn_no == "14099999"
    assert store.orders[order.id].status == OrderStatus.CONFIRMED
    assert gateway.queries[0].transaction_date == store.transactions[txn_ref].gateway_create_date


@pytest.mark.asyncio
async def test_reconcile_from_gateway_still_pending(service, gateway, make_order, store):
    order = make_order()
    txn_ref = await _start(service, order)
    gateway.query_result = StatusQueryResult(found=True, txn_ref=txn_ref, response_code="00", status_code="01")

    assert await service.reconcile_from_gateway(str(order.id)) == Outcome.STILL_PENDING
    assert store.transactions[txn_ref].status == TransactionStatus.PENDING
    assert service.acknowledgement(Outcome.STILL_PENDING)["RspCode"] == "99"


@pytest.mark.asyncio
async def test_reconcile_expires_attempt_gateway_never_saw(service, gateway, make_order, store):
    order = make_order()
    txn_ref = await _start(service, order)
    store.transactions[txn_ref].created_at -= timedelta(minutes=20)

    outcome = await service.reconcile_from_gateway(str(order.id))

    assert outcome == Outcome.EXPIRED
    assert gateway.queries[0].txn_ref == txn_ref
    txn = store.transactions[txn_ref]
    assert txn.status == TransactionStatus.CANCELLED
    assert txn.message == "payment session expired"
    assert store.orders[order.id].status == OrderStatus.PENDING


@pytest.mark.asyncio
async def test_expired_attempt_no_longer_blocks_newer_ones(service, gateway, make_order, store):
    order = make_order()
    stale = await _start(service, order)
    store.transactions[stale].created_at -= timedelta(minutes=20)
    assert await service.reconcile_from_gateway(str(order.id)) == Outcome.EXPIRED

    fresh = await _start(service, order)
    gateway.query_result = StatusQueryResult(
        found=True, txn_ref=fresh, response_code="00", status_code="00", amount=order.grand_total,
    )
    assert await service.reconcile_from_gateway(str(order.id)) == Outcome.SUCCESS
    assert gateway.queries[-1].txn_ref == fresh
    assert store.orders[order.id].status == OrderStatus.CONFIRMED


@pytest.mark.asyncio
async def test_abandoned_attempt_of_paid_order_expires(service, gateway, make_order, store):
    order = make_order()
    abandoned = await _start(service, order)
    paid = await _start(service, order)
    await service.handle_callback(gateway.callback(paid, order.grand_total))
    store.transactions[abandoned].created_at -= timedelta(minutes=20)

    assert await service.reconcile_from_gateway(str(order.id)) == Outcome.EXPIRED
    assert store.transactions[abandoned].status == TransactionStatus.CANCELLED
    assert store.transactions[paid].status == TransactionStatus.SUCCESS

    # nothing left to poll
    assert await service.reconcile_from_gateway(str(order.id)) == Outcome.ALREADY_PROCESSED
    assert len(gateway.queries) == 1


@pytest.mark.asyncio
async def test_unknown_attempt_within_session_stays_pending(service, gateway, make_order, store):
    order = make_order()
    txn_ref = await _start(service, order)

    assert await service.reconcile_from_gateway(str(order.id)) == Outcome.STILL_PENDING
    assert store.transactions[txn_ref].status == TransactionStatus.PENDING


@pytest.mark.asyncio
async def test_reconcile_gateway_unavailable_changes_nothing(service, gateway, make_order, store):
    order = make_order()
    txn_ref = await _start(service, order)
    gateway.query_error = GatewayUnavailableError("vnpay querydr failed", provider="vnpay")

    with pytest.raises(GatewayUnavailableError):
        await service.reconcile_from_gateway(str(order.id))
    assert store.transactions[txn_ref].status == TransactionStatus.PENDING


@pytest.mark.asyncio
async def test_refund_marks_transaction_refunded(service, gateway, make_order, store):
    order = make_order()
    txn_ref = await _start(service, order)
    await service.handle_callback(gateway.callback(txn_ref, order.grand_total))

    outcome = await service.refund(str(order.id), reason="customer request", requested_by="admin")

    assert outcome.accepted
    assert gateway.refunds[0].amount == order.grand_total
    assert gateway.refunds[0].provider_txn_no == "14012345"
    assert store.transactions[txn_ref].status == TransactionStatus.REFUNDED

    view = await service.get_payment_status(str(order.id))
    assert view.status == "refunded"


@pytest.mark.asyncio
async def test_rejected_refund_keeps_success(service, gateway, make_order, store):
    order = make_order()
    txn_ref = await _start(service, order)
    await service.handle_callback(gateway.callback(txn_ref, order.grand_total))
    gateway.refund_response_code = "94"

    outcome = await service.refund(str(order.id))

    assert not outcome.accepted
    assert store.transactions[txn_ref].status == TransactionStatus.SUCCESS


@pytest.mark.asyncio
async def test_refund_without_payment(service, make_order):
    order = make_order()
    with pytest.raises(PaymentNotFoundException):
        await service.refund(str(order.id))


@pytest.mark.asyncio
async def test_payment_status_prefers_authoritative_attempt(service, gateway, make_order):
    order = make_order()
    paid = await _start(service, order)
    await service.handle_callback(gateway.callback(paid, order.grand_total))

    view = await service.get_payment_status(str(order.id))
    assert view.txn_ref == paid
    assert view.status == "success"
    assert view.amount == order.grand_total


def test_customer_messages_are_localized():
    assert PaymentReconciliationService.customer_message("24", "en") == "Transaction cancelled by customer"
    assert PaymentReconciliationService.customer_message("24", "vn") == "Khách hàng hủy giao dịch"
    assert "42" in PaymentReconciliationService.customer_message("42", "en")
