"""Pytest bootstrap configuration.

Environment variables are set before any application module is imported,
then in-memory repositories, a unit of work and a stub gateway are exposed
as fixtures so services can be exercised without a database or network.
"""
import copy
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PAYMENT__VNPAY__TMN_CODE", "TESTTMN1")
os.environ.setdefault("PAYMENT__VNPAY__HASH_SECRET", "TESTSECRETKEY0123456789")
os.environ.setdefault("PAYMENT__RETRY__MAX", "1")
os.environ.setdefault("PAYMENT__RETRY__BASE_BACKOFF", "0.01")

import pytest

from application.dtos.payments import (
    CallbackPayload,
    PaymentInitiation,
    PaymentRedirect,
    RefundCommand,
    RefundOutcome,
    StatusQuery,
    StatusQueryResult,
)
from domain.common.exceptions import ConcurrentModificationException, PaymentNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import DeliveryInfo, Order, OrderItem, OrderStatus
from domain.order.repository import OrderRepository
from domain.payment.entity import PaymentTransaction, TransactionStatus
from domain.payment.repository import PaymentTransactionRepository
from domain.pricing.delivery import DeliveryType
from domain.product.entity import BookDetails, CDDetails, Product, ProductKind
from domain.product.repository import ProductRepository
from domain.services import payment_signing
from infrastructure.external.payments.vnpay_client import format_vnpay_date
from infrastructure.locks import InMemoryOrderLock


SECRET = os.environ["PAYMENT__VNPAY__HASH_SECRET"]


class InMemoryStore:
    def __init__(self) -> None:
        self.orders: dict[int, Order] = {}
        self.transactions: dict[str, PaymentTransaction] = {}
        self.products: dict[int, Product] = {}
        self._order_seq = 0
        self._txn_seq = 0

    def next_order_id(self) -> int:
        self._order_seq += 1
        return self._order_seq

    def next_txn_id(self) -> int:
        self._txn_seq += 1
        return self._txn_seq


class InMemoryOrderRepository(OrderRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def create(self, order: Order) -> Order:
        stored = copy.deepcopy(order)
        stored.id = self.store.next_order_id()
        stored.version = 1
        self.store.orders[stored.id] = stored
        return copy.deepcopy(stored)

    async def get_by_id(self, order_id: int) -> Optional[Order]:
        order = self.store.orders.get(order_id)
        return copy.deepcopy(order) if order else None

    async def list_by_customer(self, customer_id: str, skip: int = 0, limit: int = 100):
        orders = [o for o in self.store.orders.values() if o.customer_id == customer_id]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return [copy.deepcopy(o) for o in orders[skip:skip + limit]]

    async def list_by_status(self, status: OrderStatus, skip: int = 0, limit: int = 100):
        orders = [o for o in self.store.orders.values() if o.status == status]
        return [copy.deepcopy(o) for o in orders[skip:skip + limit]]

    async def update(self, order: Order) -> Order:
        current = self.store.orders[order.id]
        if current.version != order.version:
            raise ConcurrentModificationException("Order", order.order_ref)
        stored = copy.deepcopy(order)
        stored.version += 1
        self.store.orders[order.id] = stored
        return copy.deepcopy(stored)


class InMemoryPaymentRepository(PaymentTransactionRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def create(self, transaction: PaymentTransaction) -> PaymentTransaction:
        stored = copy.deepcopy(transaction)
        stored.id = self.store.next_txn_id()
        stored.version = 1
        self.store.transactions[stored.txn_ref] = stored
        return copy.deepcopy(stored)

    async def get_by_txn_ref(self, txn_ref: str) -> Optional[PaymentTransaction]:
        txn = self.store.transactions.get(txn_ref)
        return copy.deepcopy(txn) if txn else None

    async def list_by_order(self, order_id: str):
        txns = [t for t in self.store.transactions.values() if t.order_id == order_id]
        txns.sort(key=lambda t: (t.created_at, t.id), reverse=True)
        return [copy.deepcopy(t) for t in txns]

    async def get_successful_for_order(self, order_id: str) -> Optional[PaymentTransaction]:
        for t in self.store.transactions.values():
            if t.order_id == order_id and t.status == TransactionStatus.SUCCESS:
                return copy.deepcopy(t)
        return None

    async def list_pending_older_than(self, before: datetime, limit: int = 100):
        txns = [
            t for t in self.store.transactions.values()
            if t.status == TransactionStatus.PENDING and t.created_at < before
        ]
        return [copy.deepcopy(t) for t in txns[:limit]]

    async def update(self, transaction: PaymentTransaction) -> PaymentTransaction:
        current = self.store.transactions.get(transaction.txn_ref)
        if current is None:
            raise PaymentNotFoundException(transaction.txn_ref)
        if current.version != transaction.version:
            raise ConcurrentModificationException("PaymentTransaction", transaction.txn_ref)
        stored = copy.deepcopy(transaction)
        stored.version += 1
        self.store.transactions[transaction.txn_ref] = stored
        return copy.deepcopy(stored)


class InMemoryProductRepository(ProductRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def get_by_id(self, product_id: int) -> Optional[Product]:
        return self.store.products.get(product_id)

    async def is_available(self, product_id: int, quantity: int) -> bool:
        product = self.store.products.get(product_id)
        return product is not None and product.is_available(quantity)


class InMemoryUnitOfWork(AbstractUnitOfWork):
    def __init__(self, store: InMemoryStore, *, readonly: bool = False) -> None:
        super().__init__(readonly=readonly)
        self.store = store
        self.commits = 0

    async def __aenter__(self):
        self.order_repository = InMemoryOrderRepository(self.store)
        self.payment_repository = InMemoryPaymentRepository(self.store)
        self.product_repository = InMemoryProductRepository(self.store)
        return self

    async def commit(self) -> None:
        self.commits += 1
        self._committed = True

    async def rollback(self) -> None:
        self._committed = False


class RecordingLock(InMemoryOrderLock):
    """In-memory lock that also records which order ids were locked."""

    def __init__(self) -> None:
        super().__init__()
        self.held: list[str] = []

    @asynccontextmanager
    async def hold(self, order_id: str):
        async with super().hold(order_id):
            self.held.append(order_id)
            yield


class StubGateway:
    """Sandbox gateway: signs callbacks with the real protocol, answers queries from a script."""

    provider = "vnpay"

    def __init__(self, secret: str = SECRET) -> None:
        self.secret = secret
        self.redirects: list[PaymentInitiation] = []
        self.queries: list[StatusQuery] = []
        self.refunds: list[RefundCommand] = []
        self.query_result: Optional[StatusQueryResult] = None
        self.query_error: Optional[Exception] = None
        self.refund_response_code = "00"
        self.closed = False

    def initiate_payment(self, req: PaymentInitiation) -> PaymentRedirect:
        self.redirects.append(req)
        created = datetime.now(timezone.utc)
        return PaymentRedirect(
            redirect_url=f"https://sandbox.example/pay?vnp_TxnRef={req.txn_ref}",
            txn_ref=req.txn_ref,
            amount=req.amount,
            create_date=format_vnpay_date(created),
            expire_date=format_vnpay_date(created),
        )

    async def query_status(self, query: StatusQuery) -> StatusQueryResult:
        self.queries.append(query)
        if self.query_error is not None:
            raise self.query_error
        if self.query_result is None:
            return StatusQueryResult(found=False, txn_ref=query.txn_ref, response_code="91")
        return self.query_result.model_copy(update={"txn_ref": query.txn_ref})

    async def request_refund(self, cmd: RefundCommand) -> RefundOutcome:
        self.refunds.append(cmd)
        return RefundOutcome(
            accepted=self.refund_response_code == "00",
            request_id=f"{len(self.refunds):08d}",
            response_code=self.refund_response_code,
        )

    def verify_callback(self, fields) -> bool:
        return payment_signing.verify(self.secret, fields, fields.get(payment_signing.SECURE_HASH_KEY))

    def parse_callback(self, fields) -> CallbackPayload:
        amount = fields.get("vnp_Amount")
        return CallbackPayload(
            txn_ref=fields.get("vnp_TxnRef"),
            amount=int(amount) // 100 if amount else None,
            response_code=fields.get("vnp_ResponseCode"),
            transaction_status=fields.get("vnp_TransactionStatus"),
            provider_txn_no=fields.get("vnp_TransactionNo"),
            bank_code=fields.get("vnp_BankCode"),
            raw=dict(fields),
        )

    def callback(self, txn_ref: str, amount: int, response_code: str = "00", **extra) -> dict[str, str]:
        """Build a signed IPN query the way the gateway would send it."""
        fields = {
            "vnp_TmnCode": "TESTTMN1",
            "vnp_TxnRef": txn_ref,
            "vnp_Amount": str(amount * 100),
            "vnp_ResponseCode": response_code,
            "vnp_TransactionStatus": response_code,
            "vnp_TransactionNo": "14012345",
            "vnp_BankCode": "NCB",
            "vnp_PayDate": format_vnpay_date(datetime.now(timezone.utc)),
            "vnp_OrderInfo": f"Thanh toan don hang:{txn_ref}",
        }
        fields.update(extra)
        fields[payment_signing.SECURE_HASH_KEY] = payment_signing.sign_fields(self.secret, fields)
        return fields

    async def aclose(self) -> None:
        self.closed = True


def book(product_id: int = 1, price: int = 50_000, weight: str = "0.5", stock: int = 100) -> Product:
    return Product(
        id=product_id,
        kind=ProductKind.BOOK,
        title=f"Book {product_id}",
        price=price,
        details=BookDetails(authors="Nguyen Nhat Anh", cover_type="paperback"),
        weight_kg=Decimal(weight),
        quantity=stock,
        rush_order_supported=True,
    )


def cd(product_id: int = 2, price: int = 15_000, stock: int = 100) -> Product:
    return Product(
        id=product_id,
        kind=ProductKind.CD,
        title=f"CD {product_id}",
        price=price,
        details=CDDetails(artist="Son Tung"),
        quantity=stock,
    )


@pytest.fixture
def store() -> InMemoryStore:
    s = InMemoryStore()
    for product in (book(1), cd(2), book(3, price=1_000, weight="3.4", stock=5)):
        s.products[product.id] = product
    return s


@pytest.fixture
def uow_factory(store):
    def _factory(*, readonly: bool = False) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(store, readonly=readonly)
    return _factory


@pytest.fixture
def order_lock() -> RecordingLock:
    return RecordingLock()


@pytest.fixture
def gateway() -> StubGateway:
    return StubGateway()


@pytest.fixture
def make_order(store):
    """Persist an order directly into the store and return it."""

    def _make(
        status: OrderStatus = OrderStatus.PENDING,
        quantity: int = 2,
        unit_price: int = 50_000,
        delivery_fee: int = 22_000,
        created_at: Optional[datetime] = None,
    ) -> Order:
        order = Order(
            id=store.next_order_id(),
            customer_id="cust-1",
            items=[OrderItem(product_id=1, product_title="Book 1", quantity=quantity,
                             unit_price=unit_price, unit_weight_kg=Decimal("0.5"))],
            payment_method="vnpay",
            status=status,
            delivery_info=DeliveryInfo(
                name="Tran Van A",
                phone="0901234567",
                address="1 Trang Tien",
                province="Hanoi",
                delivery_type=DeliveryType.STANDARD,
                delivery_fee=delivery_fee,
            ),
            created_at=created_at,
            version=1,
        )
        store.orders[order.id] = order
        return copy.deepcopy(order)

    return _make


@pytest.fixture
def order_repository(store) -> InMemoryOrderRepository:
    return InMemoryOrderRepository(store)


@pytest.fixture
def product_repository(store) -> InMemoryProductRepository:
    return InMemoryProductRepository(store)
