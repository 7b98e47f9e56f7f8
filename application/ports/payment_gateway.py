"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Any, Mapping, Protocol, runtime_checkable

from application.dtos.payments import (
    CallbackPayload,
    PaymentInitiation,
    PaymentRedirect,
    RefundCommand,
    RefundOutcome,
    StatusQuery,
    StatusQueryResult,
)


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for redirect-style payment providers.

    ``initiate_payment`` performs no IO. ``query_status`` and ``request_refund``
    raise ``GatewayUnavailableError`` on timeout/transport failure and never
    synthesize a result.
    """

    provider: str

    def initiate_payment(self, req: PaymentInitiation) -> PaymentRedirect: ...

    async def query_status(self, query: StatusQuery) -> StatusQueryResult: ...

    async def request_refund(self, cmd: RefundCommand) -> RefundOutcome: ...

    def verify_callback(self, fields: Mapping[str, Any]) -> bool: ...

    def parse_callback(self, fields: Mapping[str, Any]) -> CallbackPayload: ...

    async def aclose(self) -> None: ...
