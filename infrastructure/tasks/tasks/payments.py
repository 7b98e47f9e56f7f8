"""
Payment polling tasks: reconcile transactions whose callback never arrived.

A beat job sweeps PENDING transactions older than
``PAYMENT_RECONCILE_AFTER_MINUTES`` and enqueues one reconcile task per
order. Gateway outages are retried with backoff; nothing is changed until
the gateway answers.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from celery import shared_task

from ..utils.base_task import BaseTask
from application.services.reconciliation_service import PaymentReconciliationService
from core.config import settings
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import GatewayUnavailableError
from infrastructure.database import close_database
from infrastructure.external.payments import get_payment_gateway
from infrastructure.locks import build_order_lock
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

logger = get_logger(__name__)


def _build_service() -> PaymentReconciliationService:
    return PaymentReconciliationService(
        gateway=get_payment_gateway(payment_settings.default_provider),
        uow_factory=SQLAlchemyUnitOfWork,
        order_lock=build_order_lock(),
        lookup_attempts=payment_settings.lookup_retry.attempts,
        lookup_wait=payment_settings.lookup_retry.wait,
        payment_expiry=timedelta(minutes=payment_settings.vnpay.expire_minutes),
    )


async def _stale_order_ids(older_than: timedelta, limit: int) -> list[str]:
    before = datetime.now(timezone.utc) - older_than
    async with SQLAlchemyUnitOfWork(readonly=True) as uow:
        transactions = await uow.payment_repository.list_pending_older_than(before, limit=limit)
    # one task per order; the service picks the newest attempt itself
    return list(dict.fromkeys(t.order_id for t in transactions))


@shared_task(name="payments.reconcile_stale", bind=True, base=BaseTask)
def reconcile_stale_payments(self, limit: int = 100) -> list[str]:
    async def _run():
        try:
            return await _stale_order_ids(
                timedelta(minutes=settings.PAYMENT_RECONCILE_AFTER_MINUTES), limit
            )
        finally:
            # asyncio.run uses a fresh loop per task; pooled connections must not leak across loops
            await close_database()

    order_ids = asyncio.run(_run())
    for order_id in order_ids:
        reconcile_order_payment.delay(order_id)
    logger.info("payment_stale_sweep", count=len(order_ids))
    return order_ids


@shared_task(
    name="payments.reconcile_order",
    bind=True,
    base=BaseTask,
    autoretry_for=(GatewayUnavailableError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def reconcile_order_payment(self, order_id: str) -> str:
    async def _run():
        service = _build_service()
        try:
            return await service.reconcile_from_gateway(order_id)
        finally:
            await service.aclose()
            await close_database()

    outcome = asyncio.run(_run())
    logger.info("payment_reconciled_from_gateway", order_id=order_id, outcome=outcome.value)
    return outcome.value
