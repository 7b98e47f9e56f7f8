"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Example: ``PAYMENT__VNPAY__TMN_CODE=DEMO1234``,
``PAYMENT__TIMEOUTS__READ=5``.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class CallbackLookupRetry(BaseModel):
    """回调早于下单写入可见时，按交易号查找的有限重试"""
    attempts: int = 3
    wait: float = 0.2


class VNPaySettings(BaseModel):
    tmn_code: Optional[str] = None
    hash_secret: Optional[str] = None
    pay_url: str = "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
    api_url: str = "https://sandbox.vnpayment.vn/merchant_webapi/api/transaction"
    return_url: str = "http://localhost:8000/api/v1/payments/vnpay/return"
    version: str = "2.1.0"
    expire_minutes: int = 15


class PaymentSettings(BaseSettings):
    default_provider: str = Field(default="vnpay")
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    lookup_retry: CallbackLookupRetry = Field(default_factory=CallbackLookupRetry)

    vnpay: VNPaySettings = Field(default_factory=VNPaySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
