"""Order state machine with transition validation.

Orders move Pending -> Confirmed when a payment succeeds, or Pending ->
Cancelled before payment. Confirmed and Cancelled orders never change
status again. Staff status updates go through ``validate_status_update``;
cancellations go through ``validate_cancellation`` because they also
restore stock.
"""

from typing import Any, Callable, Dict, Optional, Set

from evdealer.core.exceptions import InvalidStateError
from evdealer.core.logging import get_logger
from evdealer.database.models import Order, OrderStatus

logger = get_logger(__name__)


ORDER_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: set(),
    OrderStatus.CANCELLED: set(),
}


def get_allowed_order_transitions(status: OrderStatus) -> Set[OrderStatus]:
    return ORDER_TRANSITIONS.get(status, set())


def validate_order_status_transition(
    current: OrderStatus, target: OrderStatus
) -> bool:
    return target in get_allowed_order_transitions(current)


class StateTransitionError(InvalidStateError):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        message: str,
        current_state: Any,
        target_state: Any,
        **context: Any,
    ):
        super().__init__(
            message,
            current_state=getattr(current_state, "value", current_state),
            target_state=getattr(target_state, "value", target_state),
            **context,
        )
        self.current_state = current_state
        self.target_state = target_state


class OrderStateMachine:
    """Validates order status changes against the transition table and guards.

    Guards receive an order whose invoices and payments are loaded.
    """

    def __init__(self) -> None:
        self._transition_guards: Dict[
            tuple[OrderStatus, OrderStatus], Callable[[Order], Optional[str]]
        ] = {
            (OrderStatus.PENDING, OrderStatus.CONFIRMED): self._guard_payment_received,
            (OrderStatus.PENDING, OrderStatus.CANCELLED): self._guard_not_paid,
        }

    @staticmethod
    def _guard_payment_received(order: Order) -> Optional[str]:
        if not order.has_paid_payment:
            return "Cannot confirm order without payment"
        return None

    @staticmethod
    def _guard_not_paid(order: Order) -> Optional[str]:
        if order.has_paid_payment:
            return "Cannot cancel a paid order. Please contact staff for assistance."
        return None

    def validate_transition(self, order: Order, target_status: OrderStatus) -> None:
        """Validate a transition to ``target_status``.

        Args:
            order: Order with invoices and payments loaded
            target_status: Desired status

        Raises:
            StateTransitionError: If the transition or its guard fails
        """
        current_status = order.status

        if not validate_order_status_transition(current_status, target_status):
            allowed = get_allowed_order_transitions(current_status)
            raise StateTransitionError(
                f"Cannot change order status from {current_status.value} "
                f"to {target_status.value}",
                current_state=current_status,
                target_state=target_status,
                order_id=str(order.id),
                allowed_transitions=sorted(s.value for s in allowed),
            )

        guard = self._transition_guards.get((current_status, target_status))
        if guard is not None:
            failure = guard(order)
            if failure is not None:
                raise StateTransitionError(
                    failure,
                    current_state=current_status,
                    target_state=target_status,
                    order_id=str(order.id),
                    guard_failed=True,
                )

        logger.debug(
            "Order transition validated",
            order_id=str(order.id),
            transition=f"{current_status.value}->{target_status.value}",
        )

    def validate_status_update(self, order: Order, target_status: OrderStatus) -> bool:
        """Validate a staff status update.

        Returns:
            True if the status changes, False for a same-status update that
            only appends notes

        Raises:
            StateTransitionError: If the update is not permitted
        """
        if order.status == OrderStatus.CANCELLED:
            raise StateTransitionError(
                "Cannot update a cancelled order",
                current_state=order.status,
                target_state=target_status,
                order_id=str(order.id),
            )

        if target_status == OrderStatus.CANCELLED:
            raise StateTransitionError(
                "Orders must be cancelled through order cancellation so stock is restored",
                current_state=order.status,
                target_state=target_status,
                order_id=str(order.id),
            )

        if target_status == order.status:
            return False

        self.validate_transition(order, target_status)
        return True

    def validate_cancellation(self, order: Order) -> None:
        """Validate a customer or staff cancellation.

        Raises:
            StateTransitionError: If the order is already cancelled, has a
                paid payment or is confirmed
        """
        if order.status == OrderStatus.CANCELLED:
            raise StateTransitionError(
                "Order is already cancelled",
                current_state=order.status,
                target_state=OrderStatus.CANCELLED,
                order_id=str(order.id),
            )
        if order.has_paid_payment:
            raise StateTransitionError(
                "Cannot cancel a paid order. Please contact staff for assistance.",
                current_state=order.status,
                target_state=OrderStatus.CANCELLED,
                order_id=str(order.id),
            )
        self.validate_transition(order, OrderStatus.CANCELLED)
