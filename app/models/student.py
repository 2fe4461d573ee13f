from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4

GENERAL_TIER = "general"


@dataclass(frozen=True, slots=True)
class Student:
    id: UUID
    email: str
    full_name: str = ""
    is_active: bool = True
    membership_type: str = GENERAL_TIER  # denormalized; "general" when none

    @staticmethod
    def new(*, email: str, full_name: str = "") -> Student:
        return Student(
            id=uuid4(),
            email=email.strip().lower(),
            full_name=full_name,
        )
