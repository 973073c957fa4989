import pytest
from sqlalchemy import text

from learnhub.core.db import DatabaseManager
from learnhub.models import Base, Student


@pytest.fixture
def manager(tmp_path):
    manager = DatabaseManager()
    manager.initialize(f"sqlite:///{tmp_path / 'learnhub.db'}")
    Base.metadata.create_all(bind=manager.engine)
    yield manager
    manager.close()


def test_transaction_commits(manager):
    with manager.transaction() as session:
        session.add(Student(full_name="Asha Verma", email="asha@example.com"))

    with manager.transaction() as session:
        assert session.query(Student).count() == 1


def test_transaction_rolls_back_on_error(manager):
    with pytest.raises(RuntimeError):
        with manager.transaction() as session:
            session.add(Student(full_name="Ravi", email="ravi@example.com"))
            session.flush()
            raise RuntimeError("boom")

    with manager.transaction() as session:
        assert session.query(Student).count() == 0


def test_sqlite_pragmas_applied(manager):
    with manager.engine.connect() as conn:
        assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1


def test_health_check(manager):
    assert manager.health_check()["status"] == "healthy"
