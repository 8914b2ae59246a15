from __future__ import annotations

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError

from services.miles_service.app.db.session import is_transaction_conflict, unit_of_work
from services.miles_service.app.errors import RaceConditionDetected, TransactionConflict
from services.miles_service.app.models import MembershipPlan
from services.miles_service.tests.helpers import serialization_failure


class _UniqueViolation(Exception):
    sqlstate = "23505"


class _Deadlock(Exception):
    pgcode = "40P01"


async def _plans(session_factory) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(MembershipPlan))


@pytest.mark.asyncio
async def test_commits_on_clean_exit(session_factory):
    async with unit_of_work(session_factory, "SERIALIZABLE") as session:
        session.add(MembershipPlan(name="basic", monthly_service_miles=60, rollover_cap_miles=40))

    assert await _plans(session_factory) == 1


@pytest.mark.asyncio
async def test_serialization_failure_rolls_back_as_transaction_conflict(session_factory):
    with pytest.raises(TransactionConflict) as exc_info:
        async with unit_of_work(session_factory, "SERIALIZABLE") as session:
            session.add(MembershipPlan(name="basic", monthly_service_miles=60, rollover_cap_miles=40))
            await session.flush()
            raise serialization_failure()

    assert isinstance(exc_info.value, RaceConditionDetected)
    assert isinstance(exc_info.value.__cause__, DBAPIError)
    assert await _plans(session_factory) == 0


@pytest.mark.asyncio
async def test_other_driver_errors_propagate_unchanged(session_factory):
    error = DBAPIError("INSERT ...", {}, _UniqueViolation("duplicate key"))

    with pytest.raises(DBAPIError) as exc_info:
        async with unit_of_work(session_factory):
            raise error

    assert exc_info.value is error


def test_conflict_detection_reads_sqlstate_and_pgcode():
    assert is_transaction_conflict(serialization_failure())
    assert is_transaction_conflict(DBAPIError("UPDATE ...", {}, _Deadlock("deadlock detected")))
    assert not is_transaction_conflict(DBAPIError("INSERT ...", {}, _UniqueViolation("duplicate key")))
    assert not is_transaction_conflict(ValueError("40001"))
