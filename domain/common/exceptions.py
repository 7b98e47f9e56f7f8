"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class InvalidOrderLineError(BusinessException):
    """订单行非法：空列表、数量 <= 0 或单价 < 0"""

    def __init__(self, message: str, *, line_index: Optional[int] = None):
        details = {"line_index": line_index} if line_index is not None else None
        super().__init__(
            code=BusinessCode.INVALID_ORDER_LINE,
            message=message,
            error_type="InvalidOrderLine",
            details=details,
            field="items",
        )


class InvalidTransitionError(BusinessException):
    """状态机拒绝的状态转换"""

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            code=BusinessCode.INVALID_TRANSITION,
            message=f"Invalid status transition from {from_status} to {to_status}",
            error_type="InvalidTransition",
            details={"from": from_status, "to": to_status},
            field="status",
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_id: str):
        super().__init__(
            code=BusinessCode.ORDER_NOT_FOUND,
            message=f"Order not found: {order_id}",
            error_type="OrderNotFound",
            details={"order_id": order_id},
        )


class OrderValidationException(BusinessException):
    """下单校验失败，errors 为全部错误信息"""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(
            code=BusinessCode.ORDER_VALIDATION_ERROR,
            message="Order validation failed: " + ", ".join(self.errors),
            error_type="OrderValidationError",
            details={"errors": self.errors},
        )


class OrderNotModifiableException(BusinessException):
    def __init__(self, order_id: str, status: str):
        super().__init__(
            code=BusinessCode.ORDER_NOT_MODIFIABLE,
            message=f"Order {order_id} can no longer be modified (status={status})",
            error_type="OrderNotModifiable",
            details={"order_id": order_id, "status": status},
        )


class PaymentNotFoundException(BusinessException):
    def __init__(self, identifier: str):
        super().__init__(
            code=BusinessCode.PAYMENT_NOT_FOUND,
            message=f"Payment transaction not found: {identifier}",
            error_type="PaymentNotFound",
        )


class PaymentNotRefundableException(BusinessException):
    def __init__(self, order_id: str, reason: str):
        super().__init__(
            code=BusinessCode.PAYMENT_NOT_REFUNDABLE,
            message=f"Payment for order {order_id} cannot be refunded: {reason}",
            error_type="PaymentNotRefundable",
            details={"order_id": order_id},
        )


class InvalidSignatureError(BusinessException):
    """回调或响应签名校验失败（安全相关，不得改变任何状态）"""

    def __init__(self, message: str = "Invalid signature", *, txn_ref: Optional[str] = None):
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="InvalidSignature",
            details={"txn_ref": txn_ref} if txn_ref else None,
        )


class GatewayUnavailableError(BusinessException):
    """网关暂不可用（超时/网络错误），调用方可重试；不等同于支付失败"""

    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.PROVIDER_RECOVERABLE,
            message=message,
            error_type="GatewayUnavailable",
            details=full_details,
        )


class ConcurrentModificationException(BusinessException):
    """乐观锁版本号不一致：记录已被其他写入者修改"""

    def __init__(self, entity: str, identifier: str):
        super().__init__(
            code=BusinessCode.CONCURRENT_MODIFICATION,
            message=f"{entity} {identifier} was modified concurrently",
            error_type="ConcurrentModification",
            details={"entity": entity, "id": identifier},
        )
