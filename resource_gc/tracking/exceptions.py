"""
Exceptions raised by the test-resources garbage collector.

None of these reach application write callers: the interceptor and the
cleaner catch them and turn them into log diagnostics.
"""

from typing import Any, Dict, Optional


class TrackingError(Exception):
    """Base exception for tracking and cleanup errors"""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class MissingIdentifier(TrackingError):
    """A create/upsert succeeded but its result carries no identifier"""

    def __init__(self, entity_type: str, id_field: str):
        super().__init__(
            f"Can't find ID field on {entity_type}. The resource won't be saved into the "
            f"test garbage collector and needs to be manually deleted",
            details={"entity_type": entity_type, "id_field": id_field},
        )
        self.entity_type = entity_type
        self.id_field = id_field


class DeletionFailure(TrackingError):
    """A bulk delete for one entity type failed"""

    def __init__(self, entity_type: str, message: str, *, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details.setdefault("entity_type", entity_type)
        super().__init__(message, details=details)
        self.entity_type = entity_type


class UnknownEntityType(DeletionFailure):
    """The entity type is not part of the schema known to the database layer"""

    def __init__(self, entity_type: str):
        super().__init__(entity_type, f"Unknown entity type: {entity_type}")
