"""
VNPay adapter (payment URL v2.1.0 + merchant_webapi ``querydr`` / ``refund``).

Signing:
- payment creation: ``&``-joined sorted ``k=v`` pairs (see payment_signing)
- querydr / refund: ``|``-joined values in the fixed order below
Amounts are VND on our side and VND x 100 on the wire.
"""
from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional

import httpx

from application.dtos.payments import (
    CallbackPayload,
    PaymentInitiation,
    PaymentRedirect,
    RefundCommand,
    RefundOutcome,
    StatusQuery,
    StatusQueryResult,
)
from core.settings import VNPaySettings, payment_settings
from domain.common.exceptions import InvalidSignatureError
from domain.services import payment_signing
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentProviderError
from shared.codes.payment_codes import VNPAY_SUCCESS_CODE


VNPAY_TZ = timezone(timedelta(hours=7))
DATE_FORMAT = "%Y%m%d%H%M%S"

QUERY_SIGNING_ORDER = (
    "vnp_RequestId", "vnp_Version", "vnp_Command", "vnp_TmnCode", "vnp_TxnRef",
    "vnp_TransactionDate", "vnp_CreateDate", "vnp_IpAddr", "vnp_OrderInfo",
)
REFUND_SIGNING_ORDER = (
    "vnp_RequestId", "vnp_Version", "vnp_Command", "vnp_TmnCode", "vnp_TransactionType",
    "vnp_TxnRef", "vnp_Amount", "vnp_TransactionNo", "vnp_TransactionDate",
    "vnp_CreateBy", "vnp_CreateDate", "vnp_IpAddr", "vnp_OrderInfo",
)
QUERY_RESPONSE_SIGNING_ORDER = (
    "vnp_ResponseId", "vnp_Command", "vnp_ResponseCode", "vnp_Message", "vnp_TmnCode",
    "vnp_TxnRef", "vnp_Amount", "vnp_BankCode", "vnp_PayDate", "vnp_TransactionNo",
    "vnp_TransactionType", "vnp_TransactionStatus", "vnp_OrderInfo",
    "vnp_PromotionCode", "vnp_PromotionAmount",
)
REFUND_RESPONSE_SIGNING_ORDER = (
    "vnp_ResponseId", "vnp_Command", "vnp_ResponseCode", "vnp_Message", "vnp_TmnCode",
    "vnp_TxnRef", "vnp_Amount", "vnp_BankCode", "vnp_PayDate", "vnp_TransactionNo",
    "vnp_TransactionType", "vnp_TransactionStatus", "vnp_OrderInfo",
)

FULL_REFUND = "02"
PARTIAL_REFUND = "03"


def format_vnpay_date(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(VNPAY_TZ).strftime(DATE_FORMAT)


def parse_vnpay_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value, DATE_FORMAT).replace(tzinfo=VNPAY_TZ).astimezone(timezone.utc)
    except ValueError:
        return None


def new_request_id() -> str:
    """8 random digits; fresh per API call (gateway-side idempotency key)."""
    return f"{secrets.randbelow(10 ** 8):08d}"


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class VNPayClient(BasePaymentClient):
    provider = "vnpay"

    def __init__(
        self,
        config: Optional[VNPaySettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
            transport=transport,
        )
        cfg = config or payment_settings.vnpay
        if not (cfg.tmn_code and cfg.hash_secret):
            raise RuntimeError("VNPAY configuration incomplete (tmn_code / hash_secret)")
        self.cfg = cfg
        self._secret = cfg.hash_secret
        self._clock = clock

    # ------------------------------------------------------------------
    # payment creation (no IO)
    # ------------------------------------------------------------------
    def build_payment_fields(self, req: PaymentInitiation) -> dict[str, str]:
        created = req.created_at or self._clock()
        create_date = format_vnpay_date(created)
        expire_date = format_vnpay_date(created + timedelta(minutes=self.cfg.expire_minutes))
        fields = {
            "vnp_Version": self.cfg.version,
            "vnp_Command": "pay",
            "vnp_TmnCode": self.cfg.tmn_code,
            "vnp_Amount": str(req.amount * 100),
            "vnp_CurrCode": "VND",
            "vnp_BankCode": req.bank_code,
            "vnp_TxnRef": req.txn_ref,
            "vnp_OrderInfo": req.order_info or f"Thanh toan don hang:{req.txn_ref}",
            "vnp_OrderType": "other",
            "vnp_Locale": req.locale or "vn",
            "vnp_ReturnUrl": req.return_url or self.cfg.return_url,
            "vnp_IpAddr": req.client_ip,
            "vnp_CreateDate": create_date,
            "vnp_ExpireDate": expire_date,
        }
        return {k: v for k, v in fields.items() if v is not None and v != ""}

    def initiate_payment(self, req: PaymentInitiation) -> PaymentRedirect:
        fields = self.build_payment_fields(req)
        query = payment_signing.signed_query(self._secret, fields)
        self._log("vnpay_payment_url_built", txn_ref=req.txn_ref, amount=req.amount)
        return PaymentRedirect(
            redirect_url=f"{self.cfg.pay_url}?{query}",
            txn_ref=req.txn_ref,
            amount=req.amount,
            create_date=fields["vnp_CreateDate"],
            expire_date=fields["vnp_ExpireDate"],
            provider=self.provider,
        )

    # ------------------------------------------------------------------
    # merchant_webapi commands
    # ------------------------------------------------------------------
    def build_query_fields(self, query: StatusQuery) -> dict[str, str]:
        fields = {
            "vnp_RequestId": new_request_id(),
            "vnp_Version": self.cfg.version,
            "vnp_Command": "querydr",
            "vnp_TmnCode": self.cfg.tmn_code,
            "vnp_TxnRef": query.txn_ref,
            "vnp_TransactionDate": query.transaction_date,
            "vnp_CreateDate": format_vnpay_date(self._clock()),
            "vnp_IpAddr": query.client_ip,
            "vnp_OrderInfo": f"Kiem tra ket qua GD OrderId:{query.txn_ref}",
        }
        data = payment_signing.pipe_join(fields[k] for k in QUERY_SIGNING_ORDER)
        fields["vnp_SecureHash"] = payment_signing.sign(self._secret, data)
        return fields

    def build_refund_fields(self, cmd: RefundCommand) -> dict[str, str]:
        fields = {
            "vnp_RequestId": new_request_id(),
            "vnp_Version": self.cfg.version,
            "vnp_Command": "refund",
            "vnp_TmnCode": self.cfg.tmn_code,
            "vnp_TransactionType": FULL_REFUND if cmd.full else PARTIAL_REFUND,
            "vnp_TxnRef": cmd.txn_ref,
            "vnp_Amount": str(cmd.amount * 100),
            "vnp_TransactionNo": cmd.provider_txn_no or "",
            "vnp_TransactionDate": cmd.transaction_date,
            "vnp_CreateBy": cmd.requested_by or "system",
            "vnp_CreateDate": format_vnpay_date(self._clock()),
            "vnp_IpAddr": cmd.client_ip,
            "vnp_OrderInfo": cmd.reason or f"Hoan tien GD OrderId:{cmd.txn_ref}",
        }
        data = payment_signing.pipe_join(fields[k] for k in REFUND_SIGNING_ORDER)
        fields["vnp_SecureHash"] = payment_signing.sign(self._secret, data)
        return fields

    async def _post(self, fields: dict[str, str], *, operation: str) -> dict[str, Any]:
        async def _send():
            async with self.client() as c:
                return await c.post(self.cfg.api_url, json=fields)

        resp = await self._retry(_send, operation=operation)
        if resp.status_code >= 500:
            raise PaymentProviderError(
                f"VNPay {operation} returned HTTP {resp.status_code}",
                provider=self.provider,
                details={"status_code": resp.status_code},
            )
        try:
            body = resp.json()
        except ValueError as exc:
            raise PaymentProviderError(
                f"VNPay {operation} returned a non-JSON body",
                provider=self.provider,
            ) from exc
        if not isinstance(body, dict):
            raise PaymentProviderError(f"VNPay {operation} returned an unexpected body", provider=self.provider)
        return body

    def _check_response_signature(self, body: Mapping[str, Any], order: tuple[str, ...]) -> None:
        provided = body.get("vnp_SecureHash")
        if not provided:
            return
        values = ("" if body.get(k) is None else str(body.get(k)) for k in order)
        if not payment_signing.verify_pipe(self._secret, values, provided):
            raise InvalidSignatureError(
                "VNPay response signature mismatch",
                txn_ref=body.get("vnp_TxnRef"),
            )

    async def query_status(self, query: StatusQuery) -> StatusQueryResult:
        fields = self.build_query_fields(query)
        body = await self._post(fields, operation="querydr")
        self._check_response_signature(body, QUERY_RESPONSE_SIGNING_ORDER)

        response_code = str(body.get("vnp_ResponseCode") or "99")
        amount = _to_int(body.get("vnp_Amount"))
        result = StatusQueryResult(
            found=response_code == VNPAY_SUCCESS_CODE,
            txn_ref=query.txn_ref,
            response_code=response_code,
            message=body.get("vnp_Message"),
            provider_txn_no=body.get("vnp_TransactionNo") or None,
            amount=amount // 100 if amount is not None else None,
            status_code=body.get("vnp_TransactionStatus"),
            bank_code=body.get("vnp_BankCode"),
            pay_date=parse_vnpay_date(body.get("vnp_PayDate")),
        )
        self._log(
            "vnpay_query_completed",
            txn_ref=query.txn_ref,
            response_code=response_code,
            transaction_status=result.status_code,
        )
        return result

    async def request_refund(self, cmd: RefundCommand) -> RefundOutcome:
        fields = self.build_refund_fields(cmd)
        body = await self._post(fields, operation="refund")
        self._check_response_signature(body, REFUND_RESPONSE_SIGNING_ORDER)

        response_code = str(body.get("vnp_ResponseCode") or "99")
        outcome = RefundOutcome(
            accepted=response_code == VNPAY_SUCCESS_CODE,
            request_id=fields["vnp_RequestId"],
            response_code=response_code,
            message=body.get("vnp_Message"),
            provider_txn_no=body.get("vnp_TransactionNo") or None,
            status_code=body.get("vnp_TransactionStatus"),
        )
        self._log(
            "vnpay_refund_completed",
            txn_ref=cmd.txn_ref,
            request_id=outcome.request_id,
            response_code=response_code,
        )
        return outcome

    # ------------------------------------------------------------------
    # inbound IPN / return URL
    # ------------------------------------------------------------------
    def verify_callback(self, fields: Mapping[str, Any]) -> bool:
        return payment_signing.verify(self._secret, fields, fields.get(payment_signing.SECURE_HASH_KEY))

    def parse_callback(self, fields: Mapping[str, Any]) -> CallbackPayload:
        amount = _to_int(fields.get("vnp_Amount"))
        return CallbackPayload(
            txn_ref=fields.get("vnp_TxnRef"),
            amount=amount // 100 if amount is not None else None,
            response_code=fields.get("vnp_ResponseCode"),
            transaction_status=fields.get("vnp_TransactionStatus"),
            provider_txn_no=fields.get("vnp_TransactionNo") or None,
            bank_code=fields.get("vnp_BankCode"),
            pay_date=parse_vnpay_date(fields.get("vnp_PayDate")),
            secure_hash=fields.get(payment_signing.SECURE_HASH_KEY),
            raw=dict(fields),
        )
