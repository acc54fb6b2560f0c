import logging
from typing import Optional

from config.settings import config_by_name
from resource_gc.tracking.cleanup import CleanupReport, TestResourceCleaner
from resource_gc.tracking.interceptor import PassthroughExecutor, TrackingInterceptor
from resource_gc.tracking.registry import TestResourceRegistry
from resource_gc.utils.database import DatabaseManager, DataAccess, EntityCatalog

logger = logging.getLogger(__name__)

class Container:
    """Dependency injection container.

    The mode flag is read once from the config class. In test mode the
    container owns the TestResourceRegistry and installs the tracking
    interceptor; in any other mode the registry is never created.
    """

    def __init__(self, config_class=None, database_manager: Optional[DatabaseManager] = None, base=None):
        self.config = config_class or config_by_name()
        self.test_mode = self.config.MODE == 'test'
        self._base = base
        self._database_manager = database_manager
        self._owns_database_manager = database_manager is None
        self._catalog = None
        self._registry = None
        self._executor = None
        self._data_access = None
        self._cleaner = None

    @property
    def database_manager(self) -> DatabaseManager:
        if self._database_manager is None:
            self._database_manager = DatabaseManager(database_url=self.config.SQLALCHEMY_DATABASE_URI)
        return self._database_manager

    @property
    def catalog(self) -> EntityCatalog:
        if self._catalog is None:
            base = self._base
            if base is None:
                from models import Base
                base = Base
            self._catalog = EntityCatalog(base, id_fields=self.config.TEST_RESOURCE_ID_FIELDS)
        return self._catalog

    @property
    def registry(self) -> Optional[TestResourceRegistry]:
        if self.test_mode and self._registry is None:
            self._registry = TestResourceRegistry(self.catalog.entity_types)
        return self._registry

    @property
    def executor(self):
        if self._executor is None:
            if self.test_mode:
                logger.info('Using test-resources garbage collector')
                self._executor = TrackingInterceptor(self.registry, id_fields=self.catalog.id_fields)
                self._executor.attach_to_sessions(self.database_manager.SessionLocal)
            else:
                self._executor = PassthroughExecutor()
        return self._executor

    @property
    def data_access(self) -> DataAccess:
        if self._data_access is None:
            self._data_access = DataAccess(self.database_manager, self.catalog, self.executor)
        return self._data_access

    @property
    def cleaner(self) -> Optional[TestResourceCleaner]:
        if self.test_mode and self._cleaner is None:
            max_workers = self.config.TEST_RESOURCE_CLEANUP_WORKERS
            if self.database_manager.engine.dialect.name == 'sqlite':
                # SQLite has a single writer; parallel deletes only collide on locks
                max_workers = 1
            self._cleaner = TestResourceCleaner(self.registry, self.data_access, max_workers=max_workers)
        return self._cleaner

    def clear_test_resources(self) -> CleanupReport:
        """Delete every resource created since the last call. No-op outside test mode."""
        if not self.test_mode:
            logger.debug(f"Not in test mode ({self.config.MODE}), nothing to clear")
            return CleanupReport()
        return self.cleaner.clear()

    def shutdown(self):
        if isinstance(self._executor, TrackingInterceptor):
            self._executor.detach_from_sessions()
        if self._owns_database_manager and self._database_manager is not None:
            self._database_manager.close()

# Global container instance
_container: Optional[Container] = None

def configure_container(config_class=None, **kwargs) -> Container:
    """Replace the global container"""
    global _container

    if _container is not None:
        _container.shutdown()
    _container = Container(config_class, **kwargs)
    return _container

def get_container() -> Container:
    """Get or create the global container"""
    global _container

    if _container is None:
        _container = Container()
    return _container

def clear_test_resources() -> CleanupReport:
    """Teardown hook: delete the resources tracked by the global container"""
    return get_container().clear_test_resources()
