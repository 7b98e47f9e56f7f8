import json
from datetime import datetime, timezone
from urllib.parse import parse_qsl, urlsplit

import httpx
import pytest

from application.dtos.payments import PaymentInitiation, RefundCommand, StatusQuery
from core.settings import VNPaySettings
from domain.common.exceptions import GatewayUnavailableError, InvalidSignatureError
from domain.services import payment_signing
from infrastructure.external.payments.exceptions import PaymentProviderError
from infrastructure.external.payments.vnpay_client import (
    QUERY_RESPONSE_SIGNING_ORDER,
    QUERY_SIGNING_ORDER,
    REFUND_SIGNING_ORDER,
    VNPayClient,
    format_vnpay_date,
    parse_vnpay_date,
)

SECRET = "SANDBOXSECRET"
CONFIG = VNPaySettings(tmn_code="DEMO1234", hash_secret=SECRET)
FIXED_NOW = datetime(2024, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


def _client(handler=None) -> VNPayClient:
    transport = httpx.MockTransport(handler) if handler else None
    return VNPayClient(CONFIG, transport=transport, clock=lambda: FIXED_NOW)


def _signed_query_response(**overrides) -> dict:
    body = {
        "vnp_ResponseId": "r1",
        "vnp_Command": "querydr",
        "vnp_ResponseCode": "00",
        "vnp_Message": "QueryDR Success",
        "vnp_TmnCode": "DEMO1234",
        "vnp_TxnRef": "5-12345678",
        "vnp_Amount": "13200000",
        "vnp_BankCode": "NCB",
        "vnp_PayDate": "20240101071000",
        "vnp_TransactionNo": "14012345",
        "vnp_TransactionType": "01",
        "vnp_TransactionStatus": "00",
        "vnp_OrderInfo": "Thanh toan don hang:5-12345678",
    }
    body.update(overrides)
    values = [body.get(k, "") for k in QUERY_RESPONSE_SIGNING_ORDER]
    body["vnp_SecureHash"] = payment_signing.sign(SECRET, payment_signing.pipe_join(values))
    return body


def test_requires_credentials():
    with pytest.raises(RuntimeError):
        VNPayClient(VNPaySettings())


def test_dates_are_fixed_utc_plus_seven():
    assert format_vnpay_date(FIXED_NOW) == "20240101070000"
    assert parse_vnpay_date("20240101070000") == FIXED_NOW
    assert parse_vnpay_date("garbage") is None


def test_redirect_url_verifies_with_protocol():
    redirect = _client().initiate_payment(PaymentInitiation(
        txn_ref="5-12345678", amount=132_000, client_ip="10.0.0.1", bank_code="NCB",
    ))
    url = urlsplit(redirect.redirect_url)
    assert f"{url.scheme}://{url.netloc}{url.path}" == CONFIG.pay_url

    fields = dict(parse_qsl(url.query))
    provided = fields.pop("vnp_SecureHash")
    assert payment_signing.verify(SECRET, fields, provided)
    assert fields["vnp_Amount"] == "13200000"
    assert fields["vnp_Command"] == "pay"
    assert fields["vnp_Version"] == "2.1.0"
    assert fields["vnp_CurrCode"] == "VND"
    assert fields["vnp_Locale"] == "vn"
    assert fields["vnp_OrderInfo"] == "Thanh toan don hang:5-12345678"
    assert fields["vnp_CreateDate"] == redirect.create_date == "20240101070000"
    assert fields["vnp_ExpireDate"] == redirect.expire_date == "20240101071500"


def test_blank_bank_code_is_omitted():
    fields = _client().build_payment_fields(PaymentInitiation(txn_ref="5-1", amount=10_000, bank_code=" "))
    assert "vnp_BankCode" not in fields


def test_query_signature_uses_pipe_order():
    fields = _client().build_query_fields(StatusQuery(txn_ref="5-12345678", transaction_date="20240101070000"))
    expected = payment_signing.sign(SECRET, "|".join(fields[k] for k in QUERY_SIGNING_ORDER))
    assert fields["vnp_SecureHash"] == expected
    assert fields["vnp_Command"] == "querydr"
    assert len(fields["vnp_RequestId"]) == 8


def test_refund_fields_and_fresh_request_id():
    client = _client()
    cmd = RefundCommand(txn_ref="5-12345678", amount=132_000, transaction_date="20240101070000",
                        provider_txn_no="14012345", requested_by="admin")
    first = client.build_refund_fields(cmd)
    assert first["vnp_TransactionType"] == "02"
    assert first["vnp_Amount"] == "13200000"
    assert first["vnp_CreateBy"] == "admin"
    assert first["vnp_SecureHash"] == payment_signing.sign(
        SECRET, "|".join(first[k] for k in REFUND_SIGNING_ORDER)
    )
    partial = client.build_refund_fields(cmd.model_copy(update={"full": False}))
    assert partial["vnp_TransactionType"] == "03"
    ids = {client.build_refund_fields(cmd)["vnp_RequestId"] for _ in range(20)}
    assert len(ids) > 1


@pytest.mark.asyncio
async def test_query_status_parses_signed_response():
    sent = {}

    def handler(request: httpx.Request) -> httpx.Response:
        sent.update(json.loads(request.content))
        return httpx.Response(200, json=_signed_query_response())

    client = _client(handler)
    result = await client.query_status(StatusQuery(txn_ref="5-12345678", transaction_date="20240101070000"))
    await client.aclose()

    assert sent["vnp_Command"] == "querydr"
    assert result.found and result.is_paid
    assert result.amount == 132_000
    assert result.provider_txn_no == "14012345"
    assert result.pay_date == datetime(2024, 1, 1, 0, 10, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_query_status_rejects_tampered_response():
    body = _signed_query_response()
    body["vnp_TransactionStatus"] = "02"
    client = _client(lambda request: httpx.Response(200, json=body))
    with pytest.raises(InvalidSignatureError):
        await client.query_status(StatusQuery(txn_ref="5-12345678", transaction_date="20240101070000"))


@pytest.mark.asyncio
async def test_timeout_surfaces_as_gateway_unavailable():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ReadTimeout("timed out", request=request)

    client = _client(handler)
    with pytest.raises(GatewayUnavailableError) as exc:
        await client.query_status(StatusQuery(txn_ref="5-12345678", transaction_date="20240101070000"))
    assert exc.value.details["operation"] == "querydr"
    # bounded: first attempt plus the configured retries
    assert 1 < len(calls) <= 3


@pytest.mark.asyncio
async def test_server_error_is_provider_error():
    client = _client(lambda request: httpx.Response(502, text="bad gateway"))
    with pytest.raises(PaymentProviderError):
        await client.request_refund(RefundCommand(
            txn_ref="5-12345678", amount=132_000, transaction_date="20240101070000",
        ))


@pytest.mark.asyncio
async def test_refund_rejected_by_gateway():
    client = _client(lambda request: httpx.Response(200, json={"vnp_ResponseCode": "94", "vnp_Message": "Duplicate"}))
    outcome = await client.request_refund(RefundCommand(
        txn_ref="5-12345678", amount=132_000, transaction_date="20240101070000",
    ))
    assert not outcome.accepted
    assert outcome.response_code == "94"
    assert len(outcome.request_id) == 8


def test_parse_callback_scales_amount_back():
    payload = _client().parse_callback({
        "vnp_TxnRef": "5-12345678",
        "vnp_Amount": "13200000",
        "vnp_ResponseCode": "00",
        "vnp_TransactionStatus": "00",
        "vnp_PayDate": "20240101071000",
    })
    assert payload.amount == 132_000
    assert payload.is_success
    assert payload.pay_date == datetime(2024, 1, 1, 0, 10, tzinfo=timezone.utc)
