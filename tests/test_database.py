"""
Test database lifecycle helpers.
"""

import pytest

from orrbit.core import database
from orrbit.core.database import DatabaseManager, get_session_maker
from orrbit.core.exceptions import DatabaseError


@pytest.fixture
def uninitialized(monkeypatch):
    monkeypatch.setattr(database, "async_engine", None)
    monkeypatch.setattr(database, "async_session_maker", None)


def test_session_maker_requires_init(uninitialized):
    with pytest.raises(DatabaseError) as exc_info:
        get_session_maker()
    assert exc_info.value.code == "DATABASE_ERROR"


async def test_create_tables_requires_init(uninitialized):
    with pytest.raises(DatabaseError):
        await DatabaseManager.create_tables()


async def test_health_check_reports_uninitialized(uninitialized):
    assert await DatabaseManager.health_check() is False


async def test_health_check_with_engine(engine, monkeypatch):
    monkeypatch.setattr(database, "async_session_maker", database.build_session_maker(engine))
    assert await DatabaseManager.health_check() is True
