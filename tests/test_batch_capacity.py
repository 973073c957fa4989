import threading

import pytest
from sqlalchemy.orm import sessionmaker

from learnhub.core.config import EnrollmentPolicy
from learnhub.core.errors import ConflictError, CAPACITY_EXCEEDED
from learnhub.models import Batch, Enrollment
from learnhub.repositories.course_repository import BatchRepository
from learnhub.schemas.enrollment import EnrollmentOptions
from learnhub.services.enrollment_service import EnrollmentService
from tests.conftest import NOW, make_batch, make_course, make_student


def test_atomic_increment_never_exceeds_capacity(db, course):
    batch = make_batch(db, course, capacity=3, enrolled=1)
    repo = BatchRepository(db)

    assert repo.atomic_increment(batch.id, 2)
    assert not repo.atomic_increment(batch.id, 1)
    assert batch.enrolled_students == 3


def test_atomic_increment_rejects_non_positive_seats(db, batch):
    with pytest.raises(ValueError):
        BatchRepository(db).atomic_increment(batch.id, 0)


def test_simultaneous_requests_for_last_seat(file_engine):
    Session = sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)
    with Session() as setup:
        course = make_course(setup)
        batch = make_batch(setup, course, capacity=5, enrolled=4)
        students = [make_student(setup, f"Learner {i}", None) for i in range(2)]
        course_id, batch_id = course.id, batch.id
        student_ids = [s.id for s in students]

    barrier = threading.Barrier(len(student_ids))
    created, errors = [], []

    def attempt(student_id):
        with Session() as session:
            service = EnrollmentService(session, EnrollmentPolicy())
            barrier.wait()
            try:
                outcome = service.create_enrollment(
                    student_id, course_id, "batch", EnrollmentOptions(batch_id=batch_id), now=NOW,
                )
                created.append(outcome.enrollment.id)
            except ConflictError as e:
                errors.append(e.code)

    threads = [threading.Thread(target=attempt, args=(sid,)) for sid in student_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert len(created) == 1
    assert errors == [CAPACITY_EXCEEDED]

    with Session() as check:
        assert check.get(Batch, batch_id).enrolled_students == 5
        assert check.query(Enrollment).filter(Enrollment.batch_id == batch_id).count() == 1


def test_many_requests_fill_exactly_the_free_seats(file_engine):
    Session = sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)
    with Session() as setup:
        course = make_course(setup)
        batch = make_batch(setup, course, capacity=6, enrolled=3)
        student_ids = [make_student(setup, f"Learner {i}", None).id for i in range(8)]
        course_id, batch_id = course.id, batch.id

    barrier = threading.Barrier(len(student_ids))
    created, errors = [], []

    def attempt(student_id):
        with Session() as session:
            barrier.wait()
            try:
                EnrollmentService(session, EnrollmentPolicy()).create_enrollment(
                    student_id, course_id, "batch", EnrollmentOptions(batch_id=batch_id), now=NOW,
                )
                created.append(student_id)
            except ConflictError as e:
                errors.append(e.code)

    threads = [threading.Thread(target=attempt, args=(sid,)) for sid in student_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert len(created) == 3
    assert errors == [CAPACITY_EXCEEDED] * 5
    with Session() as check:
        assert check.get(Batch, batch_id).enrolled_students == 6
