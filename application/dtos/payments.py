"""
Payment DTOs (Pydantic v2) used at application boundaries.

Amounts are integer VND; the x100 scaling required by VNPay happens inside
the adapter only.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Literal
from pydantic import BaseModel, Field, ConfigDict, field_validator

from shared.codes.payment_codes import VNPAY_SUCCESS_CODE


class PaymentInitiation(BaseModel):
    txn_ref: str
    amount: int = Field(gt=0)
    client_ip: str = "127.0.0.1"
    bank_code: Optional[str] = None
    locale: Literal["vn", "en"] = "vn"
    return_url: Optional[str] = None
    order_info: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("bank_code", "order_info", "return_url")
    @classmethod
    def _blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


class PaymentRedirect(BaseModel):
    redirect_url: str
    txn_ref: str
    amount: int
    create_date: str  # yyyyMMddHHmmss, UTC+7
    expire_date: str
    provider: str = "vnpay"


class StatusQuery(BaseModel):
    txn_ref: str
    transaction_date: str
    client_ip: str = "127.0.0.1"


class StatusQueryResult(BaseModel):
    found: bool
    txn_ref: str
    response_code: str
    message: Optional[str] = None
    provider_txn_no: Optional[str] = None
    amount: Optional[int] = None
    status_code: Optional[str] = None  # vnp_TransactionStatus
    bank_code: Optional[str] = None
    pay_date: Optional[datetime] = None

    @property
    def is_paid(self) -> bool:
        return self.found and self.status_code == VNPAY_SUCCESS_CODE


class RefundCommand(BaseModel):
    txn_ref: str
    amount: int = Field(gt=0)
    transaction_date: str
    full: bool = True
    provider_txn_no: Optional[str] = None
    reason: Optional[str] = None
    requested_by: Optional[str] = None
    client_ip: str = "127.0.0.1"


class RefundOutcome(BaseModel):
    accepted: bool
    request_id: str
    response_code: str
    message: Optional[str] = None
    provider_txn_no: Optional[str] = None
    status_code: Optional[str] = None


class CallbackPayload(BaseModel):
    """Typed view of an inbound IPN / return-URL request."""

    txn_ref: Optional[str] = None
    amount: Optional[int] = None
    response_code: Optional[str] = None
    transaction_status: Optional[str] = None
    provider_txn_no: Optional[str] = None
    bank_code: Optional[str] = None
    pay_date: Optional[datetime] = None
    secure_hash: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @property
    def is_success(self) -> bool:
        if self.response_code != VNPAY_SUCCESS_CODE:
            return False
        return self.transaction_status in (None, "", VNPAY_SUCCESS_CODE)


class PaymentStatusView(BaseModel):
    order_id: str
    txn_ref: str
    status: str
    amount: int
    response_code: Optional[str] = None
    message: Optional[str] = None
    provider_txn_no: Optional[str] = None
    pay_date: Optional[datetime] = None


class StartPaymentRequest(BaseModel):
    bank_code: Optional[str] = None
    locale: Literal["vn", "en"] = "vn"
    return_url: Optional[str] = None


class RefundPaymentRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)
    requested_by: Optional[str] = None
