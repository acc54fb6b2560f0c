"""
Deletion of the resources tracked by the TestResourceRegistry.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Optional

from resource_gc.tracking.exceptions import DeletionFailure
from resource_gc.tracking.registry import TestResourceRegistry
from resource_gc.utils.structured_logging import log_cleanup_run

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


@dataclass
class CleanupReport:
    """Outcome of one cleanup run"""
    deleted: Dict[str, int] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def total_deleted(self) -> int:
        return sum(self.deleted.values())

    @property
    def ok(self) -> bool:
        return not self.failures


class TestResourceCleaner:
    """Drains the registry and bulk-deletes the tracked records.

    ``data_access`` must expose ``bulk_delete(entity_type, ids) -> int``.
    Deletions for different entity types run in parallel; a failure for one
    entity type is logged and reported, never retried nor raised.
    """

    __test__ = False

    def __init__(self, registry: TestResourceRegistry, data_access, max_workers: int = DEFAULT_MAX_WORKERS):
        self.registry = registry
        self.data_access = data_access
        self.max_workers = max(1, max_workers)

    @log_cleanup_run
    def clear(self) -> CleanupReport:
        report = CleanupReport()
        tracked = self.registry.drain_and_clear()
        if not tracked:
            logger.debug("No test resources to clear")
            return report

        workers = min(self.max_workers, len(tracked))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="test_gc") as executor:
            futures = {
                entity_type: executor.submit(self.data_access.bulk_delete, entity_type, ids)
                for entity_type, ids in tracked.items()
            }
            for entity_type, future in futures.items():
                error = self._collect(entity_type, future, report)
                if error is not None:
                    report.failures[entity_type] = str(error)

        return report

    def _collect(self, entity_type: str, future, report: CleanupReport) -> Optional[Exception]:
        try:
            count = future.result()
        except DeletionFailure as e:
            logger.error(f"Failed to delete test resources for {entity_type}: {e}")
            return e
        except Exception as e:
            logger.error(f"Failed to delete test resources for {entity_type}: {e}", exc_info=True)
            return DeletionFailure(entity_type, str(e), details={"error_type": type(e).__name__})

        report.deleted[entity_type] = count
        logger.info(f"Deleted {count} {entity_type}")
        return None
