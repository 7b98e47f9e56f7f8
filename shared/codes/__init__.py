"""
Shared business codes used across layers (Domain/Core/API).

This package exposes BusinessCode at `shared.codes` and keeps
payment-specific codes under `shared.codes.payment_codes`.
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    """Unified business status codes (single source of truth)."""

    # Success
    SUCCESS = 0

    # Parameter errors (1xxxx)
    PARAM_ERROR = 10000
    PARAM_MISSING = 10001
    PARAM_TYPE_ERROR = 10002
    PARAM_VALIDATION_ERROR = 10003

    # Business errors (2xxxx)
    BUSINESS_ERROR = 20000
    NOT_FOUND = 20006  # Generic resource not found
    CONCURRENT_MODIFICATION = 20009  # Optimistic version check failed

    # Order errors (21xxx)
    ORDER_NOT_FOUND = 21000
    ORDER_VALIDATION_ERROR = 21001
    INVALID_ORDER_LINE = 21002
    INVALID_TRANSITION = 21003
    ORDER_NOT_MODIFIABLE = 21004
    PRODUCT_UNAVAILABLE = 21005

    # Payment errors (22xxx)
    PAYMENT_NOT_FOUND = 22000
    PAYMENT_NOT_REFUNDABLE = 22001

    # System errors (4xxxx)
    SYSTEM_ERROR = 40000
    DATABASE_ERROR = 40001
    NETWORK_ERROR = 40002
    SERVICE_UNAVAILABLE = 40003


__all__ = ["BusinessCode"]
