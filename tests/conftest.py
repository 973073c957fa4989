# tests/conftest.py - Shared fixtures: in-memory database, seeded catalog, API client
import os

# Settings are validated on import, so the environment must be set first
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-secret-for-learnhub-0123456789abcdef"
os.environ["SMTP_HOST"] = ""
os.environ["RAZORPAY_KEY_ID"] = ""
os.environ["RAZORPAY_KEY_SECRET"] = ""

from datetime import datetime, timedelta
from decimal import Decimal
import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from learnhub.core.config import EnrollmentPolicy
from learnhub.core.security import create_access_token
from learnhub.models import Base, Course, CoursePricing, Batch, Student
from learnhub.services.notification_service import NotificationError

NOW = datetime(2026, 1, 5, 9, 0, 0)


class RecordingNotifier:
    """Stands in for NotificationService; records what would have been sent"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send(self, event, payload):
        if self.fail:
            raise NotificationError("SMTP connection refused")
        self.sent.append((event, payload))
        return True


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def file_engine(tmp_path):
    # Threads need real connections, so use a database file instead of :memory:
    engine = create_engine(
        f"sqlite:///{tmp_path / 'learnhub.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def policy():
    return EnrollmentPolicy()


@pytest.fixture
def notifier():
    return RecordingNotifier()


def make_course(
    db,
    title="Python for Data Analysis",
    individual="999.00",
    batch="799.00",
    currency="INR",
    early_bird_pct="0",
    group_pct="0",
    min_batch_size=2,
    max_batch_size=10,
):
    course = Course(title=title)
    course.prices.append(CoursePricing(
        currency=currency,
        individual=Decimal(individual),
        batch=Decimal(batch),
        min_batch_size=min_batch_size,
        max_batch_size=max_batch_size,
        early_bird_discount_pct=Decimal(early_bird_pct),
        group_discount_pct=Decimal(group_pct),
        is_active=True,
        position=0,
    ))
    db.add(course)
    db.commit()
    return course


def make_batch(db, course, capacity=10, enrolled=0, status="Active", start=None, weeks=12):
    start = start or NOW - timedelta(days=7)
    batch = Batch(
        course_id=course.id,
        batch_name=f"Cohort {uuid.uuid4().hex[:4]}",
        batch_code=f"B-{uuid.uuid4().hex[:8]}",
        status=status,
        capacity=capacity,
        enrolled_students=enrolled,
        start_date=start,
        end_date=start + timedelta(weeks=weeks),
    )
    db.add(batch)
    db.commit()
    return batch


def make_student(db, full_name="Asha Verma", email="asha@example.com"):
    student = Student(full_name=full_name, email=email)
    db.add(student)
    db.commit()
    return student


@pytest.fixture
def course(db):
    return make_course(db)


@pytest.fixture
def student(db):
    return make_student(db)


@pytest.fixture
def batch(db, course):
    return make_batch(db, course)


def auth_headers(user_id, roles=None):
    return {"Authorization": f"Bearer {create_access_token(user_id, roles)}"}


@pytest.fixture
def admin_headers():
    return auth_headers(uuid.uuid4(), ["ADMIN"])
