"""
API依赖项 - 组装应用服务（工作单元、订单锁、支付网关）
"""
from datetime import timedelta
from functools import lru_cache

from fastapi import Depends, Request

from application.ports.order_lock import OrderLock
from application.ports.payment_gateway import PaymentGateway
from application.services.order_service import OrderApplicationService
from application.services.reconciliation_service import PaymentReconciliationService
from core.config import settings
from core.settings import payment_settings
from infrastructure.external.payments import get_payment_gateway
from infrastructure.locks import build_order_lock
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


@lru_cache(maxsize=1)
def get_order_lock() -> OrderLock:
    """进程内共享同一个锁实例（内存锁必须单例才有互斥意义）"""
    return build_order_lock()


@lru_cache(maxsize=1)
def get_gateway() -> PaymentGateway:
    return get_payment_gateway(payment_settings.default_provider)


async def get_order_service(lock: OrderLock = Depends(get_order_lock)) -> OrderApplicationService:
    return OrderApplicationService(
        uow_factory=SQLAlchemyUnitOfWork,
        order_lock=lock,
        schedule=settings.pricing.to_schedule(),
    )


async def get_reconciliation_service(
    lock: OrderLock = Depends(get_order_lock),
    gateway: PaymentGateway = Depends(get_gateway),
) -> PaymentReconciliationService:
    return PaymentReconciliationService(
        gateway=gateway,
        uow_factory=SQLAlchemyUnitOfWork,
        order_lock=lock,
        lookup_attempts=payment_settings.lookup_retry.attempts,
        lookup_wait=payment_settings.lookup_retry.wait,
        payment_expiry=timedelta(minutes=payment_settings.vnpay.expire_minutes),
    )


def get_request_client_ip(request: Request) -> str:
    """RequestIDMiddleware 已解析的客户端IP"""
    return getattr(request.state, "client_ip", None) or (
        request.client.host if request.client else "127.0.0.1"
    )
