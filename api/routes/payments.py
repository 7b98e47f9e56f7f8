"""
Payments API routes (VNPay).

Keep this thin: signing, wire formats and reconciliation rules live in the
adapter and the application service. The IPN endpoint always answers with
the acknowledgement body the gateway expects; it never raises.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.dependencies import get_reconciliation_service, get_request_client_ip
from application.dtos.payments import (
    PaymentRedirect,
    PaymentStatusView,
    RefundOutcome,
    RefundPaymentRequest,
    StartPaymentRequest,
)
from application.services.reconciliation_service import (
    PaymentReconciliationService,
    ReconciliationOutcome,
)
from core.logging_config import get_logger
from core.response import success_response, Response as ApiResponse


router = APIRouter(prefix="/payments/vnpay", tags=["Payments"])
logger = get_logger(__name__)


def _gateway_fields(request: Request) -> dict[str, str]:
    # only vnp_* parameters take part in the signature
    return {k: v for k, v in request.query_params.items() if k.startswith("vnp_")}


async def _form_fields(request: Request) -> dict[str, str]:
    fields = _gateway_fields(request)
    content_type = request.headers.get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form = await request.form()
        fields.update({k: v for k, v in form.items() if k.startswith("vnp_") and isinstance(v, str)})
    return fields


async def _acknowledge(fields: dict[str, str], service: PaymentReconciliationService) -> JSONResponse:
    try:
        outcome = await service.handle_callback(fields)
    except Exception as exc:
        # the gateway retries on 99; nothing was committed for a failed unit of work
        logger.error("payment_ipn_failed", txn_ref=fields.get("vnp_TxnRef"), error=str(exc), exc_info=True)
        return JSONResponse(content={"RspCode": "99", "Message": "Unknown error"})
    logger.info("payment_ipn_handled", txn_ref=fields.get("vnp_TxnRef"), outcome=outcome.value)
    return JSONResponse(content=service.acknowledgement(outcome))


@router.get("/ipn", summary="VNPay IPN callback", include_in_schema=False)
async def vnpay_ipn(
    request: Request,
    service: PaymentReconciliationService = Depends(get_reconciliation_service),
):
    return await _acknowledge(_gateway_fields(request), service)


@router.post("/ipn", summary="VNPay IPN callback (POST)", include_in_schema=False)
async def vnpay_ipn_post(
    request: Request,
    service: PaymentReconciliationService = Depends(get_reconciliation_service),
):
    return await _acknowledge(await _form_fields(request), service)


@router.get("/return", summary="VNPay return URL")
async def vnpay_return(
    request: Request,
    locale: str = "vn",
    service: PaymentReconciliationService = Depends(get_reconciliation_service),
):
    """Browser redirect after checkout; applies the result idempotently like the IPN."""
    fields = _gateway_fields(request)
    outcome = await service.handle_callback(fields)
    response_code = fields.get("vnp_ResponseCode")
    paid = outcome in (ReconciliationOutcome.SUCCESS, ReconciliationOutcome.ALREADY_PROCESSED) and response_code == "00"
    return success_response(
        data={
            "txn_ref": fields.get("vnp_TxnRef"),
            "outcome": outcome.value,
            "paid": paid,
            "response_code": response_code,
        },
        message=service.customer_message(response_code, locale)
        if outcome != ReconciliationOutcome.INVALID_SIGNATURE else "Invalid signature",
    )


@router.post("/{order_id}", summary="Start VNPay payment", response_model=ApiResponse[PaymentRedirect])
async def start_payment(
    order_id: int,
    request: Request,
    payload: StartPaymentRequest = StartPaymentRequest(),
    service: PaymentReconciliationService = Depends(get_reconciliation_service),
):
    redirect = await service.start_payment(
        order_id,
        client_ip=get_request_client_ip(request),
        bank_code=payload.bank_code,
        locale=payload.locale,
        return_url=payload.return_url,
    )
    return success_response(data=redirect, message="Redirect to payment gateway")


@router.get("/{order_id}/status", summary="Payment status", response_model=ApiResponse[PaymentStatusView])
async def payment_status(
    order_id: int,
    service: PaymentReconciliationService = Depends(get_reconciliation_service),
):
    view = await service.get_payment_status(str(order_id))
    return success_response(data=view)


@router.post("/{order_id}/reconcile", summary="Query gateway and reconcile")
async def reconcile_payment(
    order_id: int,
    request: Request,
    service: PaymentReconciliationService = Depends(get_reconciliation_service),
):
    outcome = await service.reconcile_from_gateway(str(order_id), client_ip=get_request_client_ip(request))
    return success_response(data={"order_id": order_id, "outcome": outcome.value})


@router.post("/{order_id}/refund", summary="Refund payment", response_model=ApiResponse[RefundOutcome])
async def refund_payment(
    order_id: int,
    request: Request,
    payload: RefundPaymentRequest = RefundPaymentRequest(),
    service: PaymentReconciliationService = Depends(get_reconciliation_service),
):
    outcome = await service.refund(
        str(order_id),
        reason=payload.reason,
        requested_by=payload.requested_by,
        client_ip=get_request_client_ip(request),
    )
    message = "Refund accepted" if outcome.accepted else service.customer_message(outcome.response_code, "en")
    return success_response(data=outcome, message=message)
