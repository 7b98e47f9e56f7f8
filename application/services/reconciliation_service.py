"""
Application service reconciling VNPay payments with orders.

Flow:
1. ``start_payment`` records a PENDING transaction and returns the redirect.
2. The gateway calls back (IPN / return URL) zero, one or many times, in any
   order. ``handle_callback`` verifies the signature, then applies the result
   under the per-order lock inside one unit of work.
3. ``reconcile_from_gateway`` is the polling path for callbacks that never
   arrived; it queries the gateway outside the lock and applies the same
   update. Attempts the gateway never completed are cancelled once the
   payment session has expired.

A success is only accepted for the order's current grand total: changing
items or cancelling the order voids its PENDING attempts.

Gateway IO never happens while an order lock is held.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Mapping, Optional, Any

from structlog.contextvars import bound_contextvars
from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_fixed

from application.dtos.payments import (
    CallbackPayload,
    PaymentInitiation,
    PaymentRedirect,
    PaymentStatusView,
    RefundCommand,
    RefundOutcome,
    StatusQuery,
    StatusQueryResult,
)
from application.ports.order_lock import OrderLock
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from domain.common.exceptions import (
    DomainValidationException,
    OrderNotFoundException,
    PaymentNotFoundException,
    PaymentNotRefundableException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order, OrderStatus
from domain.order.service import OrderDomainService
from domain.order.state_machine import OrderStateMachine, core_state_machine
from domain.payment.entity import PaymentTransaction, TransactionStatus
from domain.payment.service import PaymentDomainService, new_txn_ref
from shared.codes.payment_codes import (
    IPN_ACK_ALREADY_CONFIRMED,
    IPN_ACK_CONFIRMED,
    IPN_ACK_INVALID_AMOUNT,
    IPN_ACK_INVALID_SIGNATURE,
    IPN_ACK_ORDER_NOT_FOUND,
    IPN_ACK_UNKNOWN_ERROR,
    VNPAY_SUCCESS_CODE,
    describe_response_code,
)


logger = get_logger(__name__)

UnitOfWorkFactory = Callable[..., AbstractUnitOfWork]

# vnp_TransactionStatus "01": payer has not completed the transaction yet
GATEWAY_STATUS_IN_PROGRESS = "01"


class ReconciliationOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    INVALID_SIGNATURE = "invalid_signature"
    ALREADY_PROCESSED = "already_processed"
    ORDER_NOT_FOUND = "order_not_found"
    TRANSITION_REJECTED = "transition_rejected"
    AMOUNT_MISMATCH = "amount_mismatch"
    STILL_PENDING = "still_pending"
    EXPIRED = "expired"


_ACKS = {
    ReconciliationOutcome.SUCCESS: IPN_ACK_CONFIRMED,
    ReconciliationOutcome.FAILED: IPN_ACK_CONFIRMED,
    ReconciliationOutcome.ALREADY_PROCESSED: IPN_ACK_ALREADY_CONFIRMED,
    # the gateway must stop retrying; the order state is authoritative
    ReconciliationOutcome.TRANSITION_REJECTED: IPN_ACK_ALREADY_CONFIRMED,
    ReconciliationOutcome.ORDER_NOT_FOUND: IPN_ACK_ORDER_NOT_FOUND,
    ReconciliationOutcome.AMOUNT_MISMATCH: IPN_ACK_INVALID_AMOUNT,
    ReconciliationOutcome.INVALID_SIGNATURE: IPN_ACK_INVALID_SIGNATURE,
}


@dataclass(frozen=True)
class GatewayResult:
    """Normalized payment result, whether pushed (callback) or pulled (query)."""

    txn_ref: str
    success: bool
    amount: Optional[int]
    response_code: Optional[str]
    provider_txn_no: Optional[str] = None
    bank_code: Optional[str] = None
    pay_date: Optional[datetime] = None
    source: str = "callback"

    @classmethod
    def from_callback(cls, payload: CallbackPayload) -> "GatewayResult":
        return cls(
            txn_ref=payload.txn_ref or "",
            success=payload.is_success,
            amount=payload.amount,
            response_code=payload.response_code,
            provider_txn_no=payload.provider_txn_no,
            bank_code=payload.bank_code,
            pay_date=payload.pay_date,
        )

    @classmethod
    def from_query(cls, result: StatusQueryResult) -> "GatewayResult":
        return cls(
            txn_ref=result.txn_ref,
            success=result.is_paid,
            amount=result.amount,
            response_code=result.status_code or result.response_code,
            provider_txn_no=result.provider_txn_no,
            bank_code=result.bank_code,
            pay_date=result.pay_date,
            source="query",
        )


def _order_pk(order_id: str) -> Optional[int]:
    try:
        return int(order_id)
    except (TypeError, ValueError):
        return None


class PaymentReconciliationService:
    def __init__(
        self,
        gateway: PaymentGateway,
        uow_factory: UnitOfWorkFactory,
        order_lock: OrderLock,
        *,
        state_machine: OrderStateMachine = core_state_machine,
        lookup_attempts: int = 3,
        lookup_wait: float = 0.2,
        payment_expiry: timedelta = timedelta(minutes=15),
    ) -> None:
        self.gateway = gateway
        self.uow_factory = uow_factory
        self.order_lock = order_lock
        self.state_machine = state_machine
        self.lookup_attempts = max(1, lookup_attempts)
        self.lookup_wait = lookup_wait
        # 网关支付会话有效期（vnp_ExpireDate）；过期后网关仍未完成的交易作废
        self.payment_expiry = payment_expiry

    # ------------------------------------------------------------------
    # payment intent
    # ------------------------------------------------------------------
    async def record_payment_intent(
        self,
        order: Order,
        *,
        txn_ref: Optional[str] = None,
        gateway_create_date: Optional[str] = None,
    ) -> PaymentTransaction:
        """Create the PENDING transaction row for ``order`` (amount = grand total)."""
        async with self.order_lock.hold(order.order_ref):
            async with self.uow_factory() as uow:
                payments = PaymentDomainService(uow.payment_repository)
                transaction = await payments.create_intent(
                    order_id=order.order_ref,
                    amount=order.grand_total,
                    gateway_create_date=gateway_create_date,
                    txn_ref=txn_ref,
                )
        logger.info(
            "payment_intent_recorded",
            order_id=transaction.order_id,
            txn_ref=transaction.txn_ref,
            amount=transaction.amount,
        )
        return transaction

    async def start_payment(
        self,
        order_id: int,
        *,
        client_ip: str,
        bank_code: Optional[str] = None,
        locale: str = "vn",
        return_url: Optional[str] = None,
    ) -> PaymentRedirect:
        async with self.uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
            if order is None:
                raise OrderNotFoundException(str(order_id))
            paid = await uow.payment_repository.get_successful_for_order(order.order_ref)

        if order.status != OrderStatus.PENDING or paid is not None:
            raise DomainValidationException(
                f"Order {order.order_ref} is not awaiting payment (status={order.status.value})",
                field="status",
            )

        txn_ref = new_txn_ref(order.order_ref)
        redirect = self.gateway.initiate_payment(PaymentInitiation(
            txn_ref=txn_ref,
            amount=order.grand_total,
            client_ip=client_ip,
            bank_code=bank_code,
            locale=locale,
            return_url=return_url,
        ))
        await self.record_payment_intent(
            order, txn_ref=txn_ref, gateway_create_date=redirect.create_date
        )
        return redirect

    # ------------------------------------------------------------------
    # callbacks
    # ------------------------------------------------------------------
    async def _find_transaction(self, txn_ref: str) -> Optional[PaymentTransaction]:
        async with self.uow_factory(readonly=True) as uow:
            return await uow.payment_repository.get_by_txn_ref(txn_ref)

    async def _lookup_with_retry(self, txn_ref: str) -> Optional[PaymentTransaction]:
        """The callback may beat the initiating write; retry a bounded number of times."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.lookup_attempts),
            wait=wait_fixed(self.lookup_wait),
            retry=retry_if_result(lambda txn: txn is None),
            retry_error_callback=lambda state: None,
        ):
            with attempt:
                transaction = await self._find_transaction(txn_ref)
            if not attempt.retry_state.outcome.failed:
                attempt.retry_state.set_result(transaction)
        return transaction

    async def handle_callback(self, raw_fields: Mapping[str, Any]) -> ReconciliationOutcome:
        """Apply an inbound gateway callback idempotently.

        Returns an outcome instead of raising so the HTTP layer can map it to
        the gateway-mandated acknowledgement.
        """
        fields = {k: ("" if v is None else str(v)) for k, v in raw_fields.items()}
        with bound_contextvars(correlation_id=uuid.uuid4().hex, txn_ref=fields.get("vnp_TxnRef")):
            if not self.gateway.verify_callback(fields):
                logger.warning("payment_callback_invalid_signature")
                return ReconciliationOutcome.INVALID_SIGNATURE

            payload = self.gateway.parse_callback(fields)
            if not payload.txn_ref:
                logger.warning("payment_callback_missing_txn_ref")
                return ReconciliationOutcome.ORDER_NOT_FOUND

            logger.info(
                "payment_callback_verified",
                response_code=payload.response_code,
                transaction_status=payload.transaction_status,
            )
            return await self._apply(GatewayResult.from_callback(payload))

    async def _apply(self, result: GatewayResult) -> ReconciliationOutcome:
        transaction = await self._lookup_with_retry(result.txn_ref)
        if transaction is None:
            logger.warning("payment_transaction_not_found", txn_ref=result.txn_ref)
            return ReconciliationOutcome.ORDER_NOT_FOUND

        with bound_contextvars(order_id=transaction.order_id):
            async with self.order_lock.hold(transaction.order_id):
                return await self._apply_locked(result)

    async def _apply_locked(self, result: GatewayResult) -> ReconciliationOutcome:
        async with self.uow_factory() as uow:
            payments = PaymentDomainService(uow.payment_repository)
            orders = OrderDomainService(
                uow.order_repository,
                uow.product_repository,
                state_machine=self.state_machine,
            )

            # re-read under the lock: another writer may have committed meanwhile
            transaction = await uow.payment_repository.get_by_txn_ref(result.txn_ref)
            pk = _order_pk(transaction.order_id) if transaction else None
            order = await uow.order_repository.get_by_id(pk) if pk is not None else None
            if transaction is None or order is None:
                logger.warning("payment_order_not_found", txn_ref=result.txn_ref)
                return ReconciliationOutcome.ORDER_NOT_FOUND

            if result.amount is not None and result.amount != transaction.amount:
                logger.warning(
                    "payment_amount_mismatch",
                    expected=transaction.amount,
                    received=result.amount,
                )
                return ReconciliationOutcome.AMOUNT_MISMATCH

            if result.success and order.is_cancelled():
                # a late success must never reopen a cancelled order
                logger.warning(
                    "payment_success_transition_rejected",
                    order_status=order.status.value,
                    transaction_status=transaction.status.value,
                )
                return ReconciliationOutcome.TRANSITION_REJECTED

            if result.success and transaction.amount != order.grand_total:
                # the order changed after this attempt was started
                logger.warning(
                    "payment_amount_outdated",
                    paid=transaction.amount,
                    grand_total=order.grand_total,
                    transaction_status=transaction.status.value,
                )
                return ReconciliationOutcome.AMOUNT_MISMATCH

            authoritative = await uow.payment_repository.get_successful_for_order(transaction.order_id)
            if authoritative is not None or transaction.status != TransactionStatus.PENDING:
                logger.info(
                    "payment_callback_already_processed",
                    transaction_status=transaction.status.value,
                    source=result.source,
                )
                return ReconciliationOutcome.ALREADY_PROCESSED

            if not result.success:
                await payments.mark_failed(
                    transaction,
                    response_code=result.response_code,
                    message=describe_response_code(result.response_code or "", "en"),
                    provider_txn_no=result.provider_txn_no,
                )
                self._publish(payments.clear_events())
                logger.info("payment_failed", response_code=result.response_code, source=result.source)
                return ReconciliationOutcome.FAILED

            await payments.mark_succeeded(
                transaction,
                provider_txn_no=result.provider_txn_no,
                pay_date=result.pay_date,
                bank_code=result.bank_code,
            )
            if self.state_machine.can_transition(order.status, OrderStatus.CONFIRMED):
                await orders.change_status(order, OrderStatus.CONFIRMED, reason=f"payment {transaction.txn_ref}")
            else:
                # money was taken: record it, but the order has already moved on
                logger.warning(
                    "payment_succeeded_order_not_transitioned",
                    order_status=order.status.value,
                )
            self._publish(payments.clear_events() + orders.clear_events())
            logger.info("payment_succeeded", amount=transaction.amount, source=result.source)
            return ReconciliationOutcome.SUCCESS

    # ------------------------------------------------------------------
    # polling / refund
    # ------------------------------------------------------------------
    async def reconcile_from_gateway(
        self,
        order_id: str,
        *,
        client_ip: str = "127.0.0.1",
    ) -> ReconciliationOutcome:
        """Ask the gateway about the newest PENDING attempt of ``order_id``.

        Raises:
            GatewayUnavailableError: the gateway could not be reached; nothing
                was changed and the caller may retry later.
        """
        async with self.uow_factory(readonly=True) as uow:
            transactions = await uow.payment_repository.list_by_order(order_id)
        if not transactions:
            return ReconciliationOutcome.ORDER_NOT_FOUND
        # a paid order may still carry abandoned attempts; they are polled until they expire
        pending = [t for t in transactions if t.is_pending() and t.gateway_create_date]
        if not pending:
            return ReconciliationOutcome.ALREADY_PROCESSED

        transaction = pending[0]
        with bound_contextvars(correlation_id=uuid.uuid4().hex, txn_ref=transaction.txn_ref):
            status = await self.gateway.query_status(StatusQuery(
                txn_ref=transaction.txn_ref,
                transaction_date=transaction.gateway_create_date,
                client_ip=client_ip,
            ))
            if not status.found or status.status_code in (None, "", GATEWAY_STATUS_IN_PROGRESS):
                if transaction.is_expired(self.payment_expiry):
                    return await self._expire(transaction, status.response_code)
                logger.info(
                    "payment_still_pending",
                    response_code=status.response_code,
                    transaction_status=status.status_code,
                )
                return ReconciliationOutcome.STILL_PENDING
            return await self._apply(GatewayResult.from_query(status))

    async def _expire(self, transaction: PaymentTransaction, response_code: Optional[str]) -> ReconciliationOutcome:
        """The payment session is over and the gateway never completed it."""
        async with self.order_lock.hold(transaction.order_id):
            async with self.uow_factory() as uow:
                current = await uow.payment_repository.get_by_txn_ref(transaction.txn_ref)
                if current is None or not current.is_pending():
                    return ReconciliationOutcome.ALREADY_PROCESSED
                payments = PaymentDomainService(uow.payment_repository)
                await payments.mark_cancelled(current, reason="payment session expired")
                self._publish(payments.clear_events())
        logger.info("payment_expired", response_code=response_code)
        return ReconciliationOutcome.EXPIRED

    async def refund(
        self,
        order_id: str,
        *,
        reason: Optional[str] = None,
        requested_by: Optional[str] = None,
        client_ip: str = "127.0.0.1",
    ) -> RefundOutcome:
        async with self.uow_factory(readonly=True) as uow:
            transaction = await uow.payment_repository.get_successful_for_order(order_id)
        if transaction is None:
            raise PaymentNotFoundException(order_id)
        if not transaction.can_refund():
            raise PaymentNotRefundableException(order_id, "refund window has passed")
        if not transaction.gateway_create_date:
            raise PaymentNotRefundableException(order_id, "gateway transaction date unknown")

        outcome = await self.gateway.request_refund(RefundCommand(
            txn_ref=transaction.txn_ref,
            amount=transaction.amount,
            transaction_date=transaction.gateway_create_date,
            full=True,
            provider_txn_no=transaction.provider_txn_no,
            reason=reason,
            requested_by=requested_by,
            client_ip=client_ip,
        ))
        if not outcome.accepted:
            logger.warning(
                "payment_refund_rejected",
                order_id=order_id,
                response_code=outcome.response_code,
                request_id=outcome.request_id,
            )
            return outcome

        async with self.order_lock.hold(order_id):
            async with self.uow_factory() as uow:
                payments = PaymentDomainService(uow.payment_repository)
                current = await uow.payment_repository.get_by_txn_ref(transaction.txn_ref)
                if current is not None and current.status == TransactionStatus.SUCCESS:
                    await payments.mark_refunded(current, outcome.request_id, outcome.message)
                    self._publish(payments.clear_events())
        logger.info("payment_refunded", order_id=order_id, request_id=outcome.request_id)
        return outcome

    async def get_payment_status(self, order_id: str) -> PaymentStatusView:
        async with self.uow_factory(readonly=True) as uow:
            transactions = await uow.payment_repository.list_by_order(order_id)
        if not transactions:
            raise PaymentNotFoundException(order_id)
        authoritative = next(
            (t for t in transactions if t.status in (TransactionStatus.SUCCESS, TransactionStatus.REFUNDED)),
            transactions[0],
        )
        return PaymentStatusView(
            order_id=authoritative.order_id,
            txn_ref=authoritative.txn_ref,
            status=authoritative.status.value,
            amount=authoritative.amount,
            response_code=authoritative.response_code,
            message=authoritative.message,
            provider_txn_no=authoritative.provider_txn_no,
            pay_date=authoritative.pay_date,
        )

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    @staticmethod
    def acknowledgement(outcome: ReconciliationOutcome) -> dict[str, str]:
        """VNPay IPN response body for ``outcome``."""
        code, message = _ACKS.get(outcome, IPN_ACK_UNKNOWN_ERROR)
        return {"RspCode": code, "Message": message}

    @staticmethod
    def customer_message(response_code: Optional[str], locale: str = "vn") -> str:
        return describe_response_code(response_code or "", locale)

    @staticmethod
    def _publish(events: list) -> None:
        for event in events:
            logger.info("domain_event", event_type=type(event).__name__, event_id=event.event_id)

    async def aclose(self) -> None:
        close = getattr(self.gateway, "aclose", None)
        if callable(close):
            await close()


__all__ = [
    "PaymentReconciliationService",
    "ReconciliationOutcome",
    "GatewayResult",
    "VNPAY_SUCCESS_CODE",
]
