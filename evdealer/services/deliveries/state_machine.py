"""Delivery state machine.

Pending -> Scheduled -> InTransit -> Delivered, with Cancelled reachable
from Pending or Scheduled only. Delivered and Cancelled are terminal.
"""

from typing import Dict, Optional, Set

from evdealer.database.models import Delivery, DeliveryStatus, UserRole
from evdealer.services.orders.state_machine import StateTransitionError

DELIVERY_TRANSITIONS: Dict[DeliveryStatus, Set[DeliveryStatus]] = {
    DeliveryStatus.PENDING: {DeliveryStatus.SCHEDULED, DeliveryStatus.CANCELLED},
    DeliveryStatus.SCHEDULED: {DeliveryStatus.IN_TRANSIT, DeliveryStatus.CANCELLED},
    DeliveryStatus.IN_TRANSIT: {DeliveryStatus.DELIVERED},
    DeliveryStatus.DELIVERED: set(),
    DeliveryStatus.CANCELLED: set(),
}

# Status a delivery must be in before moving to the key status
REQUIRED_PREDECESSOR: Dict[DeliveryStatus, DeliveryStatus] = {
    DeliveryStatus.SCHEDULED: DeliveryStatus.PENDING,
    DeliveryStatus.IN_TRANSIT: DeliveryStatus.SCHEDULED,
    DeliveryStatus.DELIVERED: DeliveryStatus.IN_TRANSIT,
}


def validate_delivery_status_transition(
    current: DeliveryStatus, target: DeliveryStatus
) -> bool:
    return target in DELIVERY_TRANSITIONS.get(current, set())


class DeliveryStateMachine:
    """Validates delivery status changes."""

    def _error(
        self, delivery: Delivery, target: DeliveryStatus, message: str
    ) -> StateTransitionError:
        return StateTransitionError(
            message,
            current_state=delivery.status,
            target_state=target,
            delivery_id=str(delivery.id),
        )

    def validate_confirmation(self, delivery: Delivery) -> None:
        if delivery.status != DeliveryStatus.PENDING:
            raise self._error(
                delivery,
                DeliveryStatus.SCHEDULED,
                f"Cannot confirm delivery with status {delivery.status.display_name}",
            )

    def validate_status_update(
        self, delivery: Delivery, target: DeliveryStatus
    ) -> None:
        """
        Validate a staff status update.

        Raises:
            StateTransitionError: If the delivery is terminal or the target
                status does not follow from the current one
        """
        if delivery.status == DeliveryStatus.CANCELLED:
            raise self._error(delivery, target, "Cannot update cancelled delivery")
        if delivery.status == DeliveryStatus.DELIVERED:
            raise self._error(delivery, target, "Cannot update delivered delivery")

        if target == DeliveryStatus.CANCELLED:
            raise self._error(
                delivery, target, "Use delivery cancellation to cancel a delivery"
            )

        if target == DeliveryStatus.PENDING:
            raise self._error(
                delivery, target, "Cannot move a delivery back to Pending"
            )

        required: Optional[DeliveryStatus] = REQUIRED_PREDECESSOR.get(target)
        if required is not None and delivery.status != required:
            raise self._error(
                delivery,
                target,
                f"Delivery must be {required.display_name.replace(' ', '')} "
                f"before setting to {target.display_name.replace(' ', '')}",
            )

    def validate_cancellation(self, delivery: Delivery, role: UserRole) -> None:
        """
        Validate a cancellation by the given role.

        Customers may only cancel a pending request; staff may also cancel
        a scheduled delivery.
        """
        if role == UserRole.CUSTOMER:
            if delivery.status != DeliveryStatus.PENDING:
                raise self._error(
                    delivery,
                    DeliveryStatus.CANCELLED,
                    "Customer can only cancel pending delivery requests",
                )
            return

        if not validate_delivery_status_transition(
            delivery.status, DeliveryStatus.CANCELLED
        ):
            raise self._error(
                delivery,
                DeliveryStatus.CANCELLED,
                "Cannot cancel delivery in progress or completed",
            )
