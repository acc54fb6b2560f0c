import os
import pytest
from config.database import DatabaseConfig
from models import Base
from resource_gc.tracking.interceptor import TrackingInterceptor
from resource_gc.tracking.registry import TestResourceRegistry
from resource_gc.utils.database import DatabaseManager, DataAccess, EntityCatalog
from tests.factories import FACTORIES

@pytest.fixture(scope='session')
def test_db():
    """Create the test database schema"""
    engine = DatabaseConfig.create_engine(os.environ['TEST_DATABASE_URL'])
    Base.metadata.create_all(engine)

    yield engine

    Base.metadata.drop_all(engine)
    engine.dispose()

@pytest.fixture
def db_manager(test_db):
    """Database manager bound to the test engine, emptied after each test"""
    manager = DatabaseManager(engine=test_db)

    yield manager

    with manager.get_session(skip_tracking=True) as session:
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())

@pytest.fixture
def catalog():
    return EntityCatalog(Base)

@pytest.fixture
def registry(catalog):
    return TestResourceRegistry(catalog.entity_types)

@pytest.fixture
def interceptor(registry, catalog):
    tracker = TrackingInterceptor(registry, id_fields=catalog.id_fields)
    yield tracker
    tracker.detach_from_sessions()

@pytest.fixture
def data_access(db_manager, catalog, interceptor):
    """Data access layer with tracking installed"""
    return DataAccess(db_manager, catalog, interceptor)

@pytest.fixture
def passthrough_data_access(db_manager, catalog):
    return DataAccess(db_manager, catalog)

@pytest.fixture
def count_rows(db_manager):
    """Row count of a model, read outside of any tracking"""
    def _count(model):
        with db_manager.get_session(skip_tracking=True) as session:
            return session.query(model).count()
    return _count

@pytest.fixture
def factory_session(db_manager, interceptor):
    """Session used by the factories, tracked through the flush bridge"""
    interceptor.attach_to_sessions(db_manager.SessionLocal)
    session = db_manager.SessionLocal()
    for model_factory in FACTORIES:
        model_factory._meta.sqlalchemy_session = session

    yield session

    for model_factory in FACTORIES:
        model_factory._meta.sqlalchemy_session = None
    session.close()
