from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from uuid import UUID


class ContentType(StrEnum):
    COURSE = "course"
    LESSON = "lesson"
    QUIZ = "quiz"


class RecordStatus(StrEnum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ProgressRecord:
    """Analytics-oriented projection of enrollment progress.

    Derived from the progress embedded in the Enrollment, which stays the
    source of truth.  Eventually consistent: writes are best-effort and
    ``rebuild_progress_records`` can replay the whole projection.
    Keyed by (student_id, course_id, content_type, content_id).
    """

    student_id: UUID
    course_id: UUID
    content_type: ContentType
    content_id: str
    progress_percentage: int = 0
    status: RecordStatus = RecordStatus.NOT_STARTED
    time_spent: int = 0
    score: Decimal | None = None
    attempts: int = 0
    last_accessed: datetime | None = None
    metadata: dict = field(default_factory=dict)

    @property
    def key(self) -> tuple[UUID, UUID, ContentType, str]:
        return (self.student_id, self.course_id, self.content_type, self.content_id)
