"""
In-memory bookkeeping of the records created while running in test mode.
"""

import logging
import threading
from typing import Dict, Hashable, Iterable, List, Set

logger = logging.getLogger(__name__)

Identifier = Hashable


class TestResourceRegistry:
    """IDs of resources created by the app in test mode, per entity type.

    The registry is an append log: the same ID can be recorded several times
    (e.g. repeated upserts). Duplicates collapse when the log is drained.
    """

    # Not a test class, despite the name
    __test__ = False

    def __init__(self, entity_types: Iterable[str] = ()):
        self.lock = threading.Lock()
        self._resources: Dict[str, List[Identifier]] = {
            entity_type: [] for entity_type in entity_types
        }

    @property
    def entity_types(self) -> List[str]:
        with self.lock:
            return list(self._resources)

    def record(self, entity_type: str, identifier: Identifier) -> None:
        """Append an ID to the log of its entity type"""
        with self.lock:
            ids = self._resources.get(entity_type)
            if ids is None:
                # Not part of the schema known at startup; kept so the cleanup reports it
                logger.warning(f"Recording ID for unregistered entity type {entity_type}")
                ids = self._resources[entity_type] = []
            ids.append(identifier)

    def drain_and_clear(self) -> Dict[str, Set[Identifier]]:
        """Return the tracked IDs as sets and start a new, empty epoch.

        Only entity types with at least one tracked ID appear in the result.
        """
        with self.lock:
            drained = self._resources
            self._resources = {entity_type: [] for entity_type in drained}

        return {entity_type: set(ids) for entity_type, ids in drained.items() if ids}

    def snapshot(self) -> Dict[str, List[Identifier]]:
        """Copy of the current epoch, every known entity type included"""
        with self.lock:
            return {entity_type: list(ids) for entity_type, ids in self._resources.items()}

    def pending_count(self) -> int:
        with self.lock:
            return sum(len(ids) for ids in self._resources.values())
