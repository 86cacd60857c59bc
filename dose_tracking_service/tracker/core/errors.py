from typing import List, Optional


class TrackingError(Exception):
    """Base class for every error raised by the tracking core."""


class ScheduleValidationError(TrackingError, ValueError):
    """A schedule or dose violates its invariants. Nothing was changed."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid input")


class NotFoundError(TrackingError, KeyError):
    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id} not found")

    def __str__(self) -> str:
        return f"{self.kind} {self.entity_id} not found"


class DuplicateEntityError(TrackingError):
    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id} already exists")


class PersistenceError(TrackingError):
    """Storage backend failed. Logged, never fatal."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"persistence operation '{operation}' failed{detail}")


class CatalogLookupMiss(TrackingError, LookupError):
    """The medicine catalog cannot currently resolve a medicine id."""

    def __init__(self, medicine_id: str, reason: str = "not found"):
        self.medicine_id = medicine_id
        self.reason = reason
        super().__init__(f"medicine {medicine_id}: {reason}")
