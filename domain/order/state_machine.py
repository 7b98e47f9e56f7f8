"""
Order lifecycle state machine.

Two transition tables share one status vocabulary: CORE drives the persisted
order aggregate, EXTENDED adds the PROCESSING and RETURNED stages. Terminal
states (CANCELLED, RETURNED) have no outgoing edges in either table.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from domain.common.exceptions import InvalidTransitionError
from .entity import Order, OrderStatus
from .events import OrderCancelled, OrderStatusChanged


S = OrderStatus

CORE_TRANSITIONS: Mapping[OrderStatus, frozenset[OrderStatus]] = {
    S.PENDING: frozenset({S.CONFIRMED, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.SHIPPED, S.CANCELLED}),
    S.SHIPPED: frozenset({S.DELIVERED}),
    S.DELIVERED: frozenset(),
    S.CANCELLED: frozenset(),
}

EXTENDED_TRANSITIONS: Mapping[OrderStatus, frozenset[OrderStatus]] = {
    S.PENDING: frozenset({S.CONFIRMED, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.PROCESSING, S.CANCELLED}),
    S.PROCESSING: frozenset({S.SHIPPED, S.CANCELLED}),
    S.SHIPPED: frozenset({S.DELIVERED, S.RETURNED}),
    S.DELIVERED: frozenset({S.RETURNED}),
    S.CANCELLED: frozenset(),
    S.RETURNED: frozenset(),
}

MODIFICATION_WINDOW = timedelta(hours=1)


class OrderStateMachine:
    def __init__(
        self,
        transitions: Mapping[OrderStatus, frozenset[OrderStatus]] = CORE_TRANSITIONS,
        modification_window: timedelta = MODIFICATION_WINDOW,
    ) -> None:
        self.transitions = transitions
        self.modification_window = modification_window

    def next_statuses(self, current: OrderStatus) -> frozenset[OrderStatus]:
        return self.transitions.get(current, frozenset())

    def can_transition(self, current: OrderStatus, target: OrderStatus) -> bool:
        return target in self.next_statuses(current)

    def is_terminal(self, status: OrderStatus) -> bool:
        return not self.next_statuses(status)

    def can_cancel(self, status: OrderStatus) -> bool:
        return self.can_transition(status, OrderStatus.CANCELLED)

    def can_modify(self, order: Order, now: Optional[datetime] = None) -> bool:
        """PENDING orders stay editable for a fixed window after creation."""
        if order.status != OrderStatus.PENDING:
            return False
        now = now or datetime.now(timezone.utc)
        created = order.created_at or now
        return now - created <= self.modification_window

    def transition(
        self,
        order: Order,
        target: OrderStatus,
        reason: Optional[str] = None,
    ) -> OrderStatusChanged:
        """Apply a legal transition to `order` and return the emitted event.

        Raises:
            InvalidTransitionError: when `target` is not reachable from the
                order's current status. The order is left untouched.
        """
        current = order.status
        if not self.can_transition(current, target):
            raise InvalidTransitionError(current.value, target.value)

        order.status = target
        order.updated_at = datetime.now(timezone.utc)
        if target == OrderStatus.DELIVERED and order.delivery_info is not None:
            order.delivery_info.mark_delivered(order.updated_at)

        event_cls = OrderCancelled if target == OrderStatus.CANCELLED else OrderStatusChanged
        return event_cls(
            order_id=order.order_ref,
            from_status=current.value,
            to_status=target.value,
            reason=reason,
        )


core_state_machine = OrderStateMachine()
extended_state_machine = OrderStateMachine(EXTENDED_TRANSITIONS)
