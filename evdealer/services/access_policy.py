"""
Capability checks for workflow actions.

Each action maps to the roles allowed to perform it and whether a
customer must own the resource. Services call ``check_access`` instead of
branching on roles themselves.
"""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from evdealer.core.exceptions import ForbiddenError, NotFoundError, UnauthorizedError
from evdealer.core.identity import Identity
from evdealer.core.logging import get_logger
from evdealer.database.models import User, UserRole
from evdealer.database.repository import GenericRepository

logger = get_logger(__name__)


class Action(str, Enum):
    """Workflow actions subject to access control."""

    CREATE_ORDER = "create_order"
    VIEW_ORDER = "view_order"
    LIST_OWN_ORDERS = "list_own_orders"
    LIST_ALL_ORDERS = "list_all_orders"
    CANCEL_ORDER = "cancel_order"
    UPDATE_ORDER_STATUS = "update_order_status"
    ASSIGN_STAFF = "assign_staff"
    CREATE_CHECKOUT = "create_checkout"
    REQUEST_DELIVERY = "request_delivery"
    VIEW_DELIVERY = "view_delivery"
    LIST_DELIVERIES = "list_deliveries"
    CONFIRM_DELIVERY = "confirm_delivery"
    UPDATE_DELIVERY_STATUS = "update_delivery_status"
    CANCEL_DELIVERY = "cancel_delivery"
    CREATE_FEEDBACK = "create_feedback"
    VIEW_FEEDBACK = "view_feedback"
    LIST_OWN_FEEDBACK = "list_own_feedback"
    LIST_ALL_FEEDBACK = "list_all_feedback"
    RESOLVE_FEEDBACK = "resolve_feedback"
    DELETE_FEEDBACK = "delete_feedback"
    VIEW_ANALYTICS = "view_analytics"


CUSTOMERS: FrozenSet[UserRole] = frozenset({UserRole.CUSTOMER})
STAFF: FrozenSet[UserRole] = frozenset({UserRole.DEALER_STAFF, UserRole.DEALER_MANAGER})
MANAGERS: FrozenSet[UserRole] = frozenset({UserRole.DEALER_MANAGER})
EVERYONE: FrozenSet[UserRole] = CUSTOMERS | STAFF


@dataclass(frozen=True)
class AccessRule:
    """
    Roles allowed to perform an action.

    Attributes:
        roles: Roles granted the action
        owner_scoped: Customers may only act on resources they own
        resource: Resource name used in denial messages
        denied_message: Message used when the role is not allowed
    """

    roles: FrozenSet[UserRole]
    owner_scoped: bool = False
    resource: str = "resource"
    denied_message: str = "You do not have permission to perform this action"


ACCESS_RULES: Dict[Action, AccessRule] = {
    Action.CREATE_ORDER: AccessRule(
        CUSTOMERS, resource="order", denied_message="Only customers can place orders"
    ),
    Action.VIEW_ORDER: AccessRule(EVERYONE, owner_scoped=True, resource="order"),
    Action.LIST_OWN_ORDERS: AccessRule(EVERYONE, resource="order"),
    Action.LIST_ALL_ORDERS: AccessRule(
        STAFF, resource="order", denied_message="Only staff can view all orders"
    ),
    Action.CANCEL_ORDER: AccessRule(EVERYONE, owner_scoped=True, resource="order"),
    Action.UPDATE_ORDER_STATUS: AccessRule(
        STAFF, resource="order", denied_message="Only staff can update order status"
    ),
    Action.ASSIGN_STAFF: AccessRule(
        STAFF, resource="order", denied_message="Only staff can assign orders"
    ),
    Action.CREATE_CHECKOUT: AccessRule(
        CUSTOMERS,
        owner_scoped=True,
        resource="order",
        denied_message="Only customers can pay for orders",
    ),
    Action.REQUEST_DELIVERY: AccessRule(
        CUSTOMERS,
        owner_scoped=True,
        resource="order",
        denied_message="Only customers can request deliveries",
    ),
    Action.VIEW_DELIVERY: AccessRule(EVERYONE, owner_scoped=True, resource="delivery"),
    Action.LIST_DELIVERIES: AccessRule(
        STAFF, resource="delivery", denied_message="Only staff can view all deliveries"
    ),
    Action.CONFIRM_DELIVERY: AccessRule(
        STAFF, resource="delivery", denied_message="Only staff can confirm deliveries"
    ),
    Action.UPDATE_DELIVERY_STATUS: AccessRule(
        STAFF, resource="delivery", denied_message="Only staff can update delivery status"
    ),
    Action.CANCEL_DELIVERY: AccessRule(EVERYONE, owner_scoped=True, resource="delivery"),
    Action.CREATE_FEEDBACK: AccessRule(
        CUSTOMERS, resource="feedback", denied_message="Only customers can give feedback"
    ),
    Action.VIEW_FEEDBACK: AccessRule(EVERYONE, owner_scoped=True, resource="feedback"),
    Action.LIST_OWN_FEEDBACK: AccessRule(
        CUSTOMERS,
        resource="feedback",
        denied_message="Only customers can view their own feedback",
    ),
    Action.LIST_ALL_FEEDBACK: AccessRule(
        STAFF, resource="feedback", denied_message="Only staff can view all feedback"
    ),
    Action.RESOLVE_FEEDBACK: AccessRule(
        MANAGERS, resource="feedback", denied_message="Only managers can resolve feedback"
    ),
    Action.DELETE_FEEDBACK: AccessRule(
        CUSTOMERS | MANAGERS, owner_scoped=True, resource="feedback"
    ),
    Action.VIEW_ANALYTICS: AccessRule(
        STAFF, resource="report", denied_message="Only staff can view sales analytics"
    ),
}


def check_access(
    actor: Identity, action: Action, owner_id: Optional[uuid.UUID] = None
) -> None:
    """
    Allow or deny an action for an actor.

    Args:
        actor: Resolved identity of the caller
        action: Action being attempted
        owner_id: Customer owning the target resource, when there is one

    Raises:
        UnauthorizedError: If the actor is not authenticated
        ForbiddenError: If the role or ownership does not permit the action
    """
    if not actor.is_authenticated or actor.role is None:
        raise UnauthorizedError("Authentication required", action=action.value)

    rule = ACCESS_RULES[action]

    if actor.role not in rule.roles:
        logger.warning(
            "Access denied: role not permitted",
            action=action.value,
            actor_id=str(actor.user_id),
            role=actor.role.value,
        )
        raise ForbiddenError(
            rule.denied_message, action=action.value, role=actor.role.value
        )

    if (
        rule.owner_scoped
        and actor.role == UserRole.CUSTOMER
        and owner_id is not None
        and owner_id != actor.user_id
    ):
        logger.warning(
            "Access denied: resource owned by another customer",
            action=action.value,
            actor_id=str(actor.user_id),
            owner_id=str(owner_id),
        )
        raise ForbiddenError(
            f"You do not have permission to access this {rule.resource}",
            action=action.value,
        )


async def resolve_actor(
    users: GenericRepository[User],
    identity: Identity,
    missing_user_message: Optional[str] = None,
) -> Identity:
    """
    Resolve an identity against the stored user.

    The stored role wins over any role claim carried by the identity.
    Missing or soft-deleted users are treated as unauthenticated unless
    ``missing_user_message`` is given, in which case they are not found.

    Raises:
        UnauthorizedError: If the identity is anonymous, or the user record
            is unusable and no ``missing_user_message`` is given
        NotFoundError: If the user record is unusable and
            ``missing_user_message`` is given
    """
    if identity.user_id is None:
        raise UnauthorizedError("Authentication required")

    user = await users.get_by_id(identity.user_id)
    if user is None:
        logger.warning("Identity does not match an active user", user_id=str(identity.user_id))
        if missing_user_message is not None:
            raise NotFoundError(missing_user_message, user_id=str(identity.user_id))
        raise UnauthorizedError("Authentication required", user_id=str(identity.user_id))

    return Identity(user_id=user.id, role=user.role)
