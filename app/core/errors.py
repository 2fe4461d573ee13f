"""Domain errors raised by the enrollment engine.

Every error carries a stable ``kind`` (the contract clients and log queries
match on), a human-readable message, and optional structured ``details``.
The API layer maps kinds to HTTP status codes in one place
(app/api/errors.py); services never raise HTTPException themselves.

``expected`` marks business-rule rejections (full batch, duplicate
enrollment, ...).  Those are normal outcomes and are logged at INFO, never
as system failures.
"""

from __future__ import annotations

from typing import Any


class EngineError(Exception):
    kind = "engine_error"
    expected = True

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFound(EngineError):
    kind = "not_found"

    def __init__(self, entity: str, entity_id: object):
        super().__init__(
            f"{entity} not found",
            details={"entity": entity, "id": str(entity_id)},
        )
        self.entity = entity


class CapacityExceeded(EngineError):
    kind = "capacity_exceeded"


class DuplicateEnrollment(EngineError):
    kind = "duplicate_enrollment"


class InvalidEnrollmentStructure(EngineError):
    kind = "invalid_enrollment_structure"


class SequentialViolation(EngineError):
    kind = "sequential_violation"

    def __init__(self, lesson_id: str, blocking: list[str]):
        super().__init__(
            "previous lessons must be completed before this lesson",
            details={"lesson_id": lesson_id, "blocking_lessons": blocking},
        )
        self.blocking = blocking


class InvalidPayment(EngineError):
    kind = "invalid_payment"


class MembershipAlreadyActive(EngineError):
    kind = "membership_already_active"


class InvalidTierTransition(EngineError):
    kind = "invalid_tier_transition"


class InvalidStatusTransition(EngineError):
    kind = "invalid_status_transition"


class EnrollmentInactive(EngineError):
    kind = "enrollment_inactive"


class Forbidden(EngineError):
    kind = "forbidden"


class ConcurrentModification(EngineError):
    kind = "concurrent_modification"


class ConfigurationError(EngineError):
    kind = "configuration_error"
    expected = False
