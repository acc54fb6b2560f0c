from enum import Enum
from typing import Any, Dict, NamedTuple, Optional


class OperationKind(str, Enum):
    """Kinds of calls the data access layer performs"""
    CREATE = "create"
    CREATE_MANY = "create_many"
    UPSERT = "upsert"
    UPDATE = "update"
    UPDATE_MANY = "update_many"
    DELETE = "delete"
    DELETE_MANY = "delete_many"
    FIND_UNIQUE = "find_unique"
    FIND_MANY = "find_many"
    COUNT = "count"

    @property
    def creates_records(self) -> bool:
        return self in (OperationKind.CREATE, OperationKind.UPSERT, OperationKind.CREATE_MANY)


class Operation(NamedTuple):
    """Description of one data access call, handed to the executor"""
    kind: OperationKind
    entity_type: Optional[str]
    arguments: Optional[Dict[str, Any]] = None
