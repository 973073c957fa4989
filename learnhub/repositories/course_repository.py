# learnhub/repositories/course_repository.py - Course and batch lookups, atomic seat counter
import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from learnhub.models.course import Course, Batch

logger = logging.getLogger(__name__)


class CourseRepository:
    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, course_id: UUID) -> Optional[Course]:
        return self.db.execute(
            select(Course).options(selectinload(Course.prices)).where(Course.id == course_id)
        ).scalar_one_or_none()


class BatchRepository:
    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, batch_id: UUID) -> Optional[Batch]:
        return self.db.execute(
            select(Batch).where(Batch.id == batch_id)
        ).scalar_one_or_none()

    def list_open_for_course(self, course_id: UUID) -> List[Batch]:
        """Active/Upcoming batches with at least one free seat, soonest first"""
        return list(self.db.execute(
            select(Batch)
            .where(
                Batch.course_id == course_id,
                Batch.status.in_(("Active", "Upcoming")),
                Batch.enrolled_students < Batch.capacity,
            )
            .order_by(Batch.start_date.asc())
        ).scalars().all())

    def atomic_increment(self, batch_id: UUID, seats: int = 1) -> bool:
        """
        Reserve `seats` in a batch with a single conditional UPDATE.

        Returns False when the batch does not have enough free seats; the
        counter is never read and written back separately.
        """
        if seats < 1:
            raise ValueError("seats must be at least 1")

        result = self.db.execute(
            update(Batch)
            .where(
                Batch.id == batch_id,
                Batch.enrolled_students + seats <= Batch.capacity,
            )
            .values(enrolled_students=Batch.enrolled_students + seats)
            .execution_options(synchronize_session=False)
        )
        reserved = result.rowcount == 1
        if reserved:
            # Keep any loaded Batch instance in step with the row
            batch = self.db.get(Batch, batch_id)
            if batch is not None:
                self.db.refresh(batch, attribute_names=["enrolled_students"])
        else:
            logger.info(f"Batch {batch_id} has no room for {seats} more seat(s)")
        return reserved
