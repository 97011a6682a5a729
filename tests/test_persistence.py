"""
Tests for the generic repository and the unit of work commit.
"""

import pytest

from evdealer.core.exceptions import PersistenceError
from evdealer.database.models import User, UserRole
from evdealer.services.unit_of_work import UnitOfWork
from factories import create_user


@pytest.fixture
def uow(db_session) -> UnitOfWork:
    return UnitOfWork(db_session)


class TestGenericRepository:
    async def test_add_stamps_audit_fields(self, uow, clock, manager):
        user = uow.users.add(
            User(email="new@example.com", full_name="New Person", role=UserRole.CUSTOMER),
            clock.now(),
            by=manager.id,
        )

        assert await uow.save_changes() == 1
        assert user.created_at == clock.now()
        assert user.created_by == manager.id

    async def test_soft_removed_rows_are_hidden(self, uow, clock, customer):
        uow.users.soft_remove(customer, clock.now())
        await uow.save_changes()

        assert customer.is_deleted
        assert await uow.users.get_by_id(customer.id) is None
        assert await uow.users.get_by_id(customer.id, include_deleted=True) is not None

    async def test_update_sets_values(self, uow, clock, customer):
        uow.users.update(customer, clock.now(), full_name="Casey Renamed")
        await uow.save_changes()

        reloaded = await uow.users.get_by_id(customer.id, refresh=True)
        assert reloaded.full_name == "Casey Renamed"
        assert reloaded.updated_at == clock.now()

    async def test_paginate(self, uow, db_session):
        for i in range(5):
            await create_user(db_session, email=f"page{i}@example.com", full_name=f"Page {i}")
        statement = uow.users.query().where(User.email.like("page%")).order_by(User.email)

        items, total = await uow.users.paginate(statement, 2, 2)

        assert total == 5
        assert [u.email for u in items] == ["page2@example.com", "page3@example.com"]


class TestSaveChanges:
    async def test_failed_commit_rolls_back(self, uow, clock, customer):
        email = customer.email
        uow.users.add(
            User(email=email, full_name="Duplicate", role=UserRole.CUSTOMER),
            clock.now(),
        )

        with pytest.raises(PersistenceError, match="Failed to save changes"):
            await uow.save_changes()

        assert await uow.users.count(uow.users.query().where(User.email == email)) == 1

    async def test_nothing_staged(self, uow):
        assert await uow.save_changes() == 0
