"""
Tests for role and ownership checks.
"""

from uuid import uuid4

import pytest

from evdealer.core.exceptions import ForbiddenError, UnauthorizedError
from evdealer.core.identity import Identity
from evdealer.database.models import UserRole
from evdealer.services.access_policy import (
    ACCESS_RULES,
    Action,
    check_access,
    resolve_actor,
)
from evdealer.services.unit_of_work import UnitOfWork
from factories import identity_of

CUSTOMER = Identity(user_id=uuid4(), role=UserRole.CUSTOMER)
STAFF = Identity(user_id=uuid4(), role=UserRole.DEALER_STAFF)
MANAGER = Identity(user_id=uuid4(), role=UserRole.DEALER_MANAGER)


def test_every_action_has_a_rule():
    assert set(ACCESS_RULES) == set(Action)


def test_anonymous_is_unauthorized():
    with pytest.raises(UnauthorizedError):
        check_access(Identity.anonymous(), Action.VIEW_ORDER)


@pytest.mark.parametrize(
    "actor,action,allowed",
    [
        (CUSTOMER, Action.CREATE_ORDER, True),
        (STAFF, Action.CREATE_ORDER, False),
        (CUSTOMER, Action.LIST_ALL_ORDERS, False),
        (STAFF, Action.LIST_ALL_ORDERS, True),
        (CUSTOMER, Action.UPDATE_ORDER_STATUS, False),
        (MANAGER, Action.UPDATE_ORDER_STATUS, True),
        (STAFF, Action.RESOLVE_FEEDBACK, False),
        (MANAGER, Action.RESOLVE_FEEDBACK, True),
        (STAFF, Action.DELETE_FEEDBACK, False),
        (CUSTOMER, Action.VIEW_ANALYTICS, False),
        (MANAGER, Action.VIEW_ANALYTICS, True),
    ],
)
def test_role_rules(actor, action, allowed):
    if allowed:
        check_access(actor, action)
    else:
        with pytest.raises(ForbiddenError):
            check_access(actor, action)


def test_forbidden_carries_action_context():
    with pytest.raises(ForbiddenError) as exc_info:
        check_access(STAFF, Action.CREATE_ORDER)

    assert exc_info.value.message == "Only customers can place orders"
    assert exc_info.value.context["action"] == "create_order"


class TestOwnership:
    def test_owner_allowed(self):
        check_access(CUSTOMER, Action.VIEW_ORDER, owner_id=CUSTOMER.user_id)

    def test_other_customer_denied(self):
        with pytest.raises(ForbiddenError, match="access this order"):
            check_access(CUSTOMER, Action.VIEW_ORDER, owner_id=uuid4())

    def test_staff_ignore_ownership(self):
        check_access(STAFF, Action.VIEW_ORDER, owner_id=uuid4())

    def test_manager_deletes_any_feedback(self):
        check_access(MANAGER, Action.DELETE_FEEDBACK, owner_id=uuid4())


class TestResolveActor:
    async def test_stored_role_replaces_claim(self, db_session, staff):
        claimed = Identity(user_id=staff.id, role=UserRole.CUSTOMER)

        actor = await resolve_actor(UnitOfWork(db_session).users, claimed)

        assert actor == identity_of(staff)

    async def test_unknown_user(self, db_session):
        with pytest.raises(UnauthorizedError):
            await resolve_actor(UnitOfWork(db_session).users, CUSTOMER)

    async def test_anonymous(self, db_session):
        with pytest.raises(UnauthorizedError):
            await resolve_actor(UnitOfWork(db_session).users, Identity.anonymous())
