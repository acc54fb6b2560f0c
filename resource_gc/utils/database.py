import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, event, func, select, update
from sqlalchemy.orm import sessionmaker

from config.database import DatabaseConfig
from resource_gc.tracking.exceptions import UnknownEntityType
from resource_gc.tracking.interceptor import PassthroughExecutor, SKIP_SESSION_TRACKING
from resource_gc.tracking.operations import Operation, OperationKind

logger = logging.getLogger(__name__)

class DatabaseManager:
    def __init__(self, engine=None, database_url: Optional[str] = None):
        self.engine = engine if engine is not None else DatabaseConfig.create_engine(database_url)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._setup_event_listeners()

    def _setup_event_listeners(self):
        """Forward database engine events to the application log"""

        @event.listens_for(self.engine, "connect")
        def on_connect(dbapi_connection, connection_record):
            logger.debug("New database connection created")

        @event.listens_for(self.engine, "invalidate")
        def on_invalidate(dbapi_connection, connection_record, exception):
            logger.warning(f"Database connection invalidated: {exception}")

        @event.listens_for(self.engine, "handle_error")
        def on_error(exception_context):
            logger.warning(f"Database error: {exception_context.original_exception}")

    @contextmanager
    def get_session(self, skip_tracking: bool = False):
        """Context manager for database sessions"""
        session = self.SessionLocal()
        if skip_tracking:
            session.info[SKIP_SESSION_TRACKING] = True
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_session_sync(self):
        """Get session for synchronous operations"""
        return self.SessionLocal()

    def close_session(self, session):
        """Properly close a session"""
        try:
            session.close()
        except Exception as e:
            logger.warning(f"Error closing session: {e}")

    def create_tables(self, metadata):
        metadata.create_all(self.engine)

    def close(self):
        self.engine.dispose()
        logger.info("Database connections closed")


class EntityCatalog:
    """Entity type name -> mapped class, built once from the declarative base"""

    def __init__(self, base, id_fields: Optional[Dict[str, str]] = None):
        self._models = {mapper.class_.__name__: mapper.class_ for mapper in base.registry.mappers}
        self._id_fields = {}
        for name, model in self._models.items():
            primary_key = model.__mapper__.primary_key
            if len(primary_key) == 1:
                self._id_fields[name] = model.__mapper__.get_property_by_column(primary_key[0]).key
        self._id_fields.update(id_fields or {})

    @property
    def entity_types(self) -> List[str]:
        return sorted(self._models)

    @property
    def id_fields(self) -> Dict[str, str]:
        return dict(self._id_fields)

    def __contains__(self, entity_type: str) -> bool:
        return entity_type in self._models

    def model_for(self, entity_type: str):
        try:
            return self._models[entity_type]
        except KeyError:
            raise UnknownEntityType(entity_type) from None

    def id_field(self, entity_type: str) -> str:
        return self._id_fields.get(entity_type, 'id')


class DataAccess:
    """Per entity type operations, all routed through the installed executor.

    Every call runs in its own committed session and returns detached
    instances (sessions do not expire on commit).
    """

    def __init__(self, db_manager: DatabaseManager, catalog: EntityCatalog, executor=None):
        self.db_manager = db_manager
        self.catalog = catalog
        self.executor = executor or PassthroughExecutor()

    def _run(self, kind: OperationKind, entity_type: str, proceed, **arguments):
        operation = Operation(kind, entity_type, arguments)
        return self.executor.execute(operation, proceed)

    def _session(self):
        # The executor already tracks what goes through here
        return self.db_manager.get_session(skip_tracking=True)

    def create(self, entity_type: str, data: Dict[str, Any]):
        model = self.catalog.model_for(entity_type)

        def proceed():
            with self._session() as session:
                instance = model(**data)
                session.add(instance)
                session.flush()
                return instance

        return self._run(OperationKind.CREATE, entity_type, proceed, data=data)

    def create_many(self, entity_type: str, rows: Iterable[Dict[str, Any]]) -> List[Any]:
        model = self.catalog.model_for(entity_type)
        rows = list(rows)

        def proceed():
            with self._session() as session:
                instances = [model(**row) for row in rows]
                session.add_all(instances)
                session.flush()
                return instances

        return self._run(OperationKind.CREATE_MANY, entity_type, proceed, rows=rows)

    def upsert(self, entity_type: str, where: Dict[str, Any], create: Dict[str, Any], update: Dict[str, Any]):
        model = self.catalog.model_for(entity_type)

        def proceed():
            with self._session() as session:
                instance = session.execute(select(model).filter_by(**where)).scalars().first()
                if instance is None:
                    instance = model(**create)
                    session.add(instance)
                else:
                    for key, value in update.items():
                        setattr(instance, key, value)
                session.flush()
                return instance

        return self._run(OperationKind.UPSERT, entity_type, proceed, where=where, create=create, update=update)

    def update(self, entity_type: str, where: Dict[str, Any], data: Dict[str, Any]):
        model = self.catalog.model_for(entity_type)

        def proceed():
            with self._session() as session:
                instance = session.execute(select(model).filter_by(**where)).scalars().first()
                if instance is None:
                    return None
                for key, value in data.items():
                    setattr(instance, key, value)
                session.flush()
                return instance

        return self._run(OperationKind.UPDATE, entity_type, proceed, where=where, data=data)

    def update_many(self, entity_type: str, where: Dict[str, Any], data: Dict[str, Any]) -> int:
        model = self.catalog.model_for(entity_type)

        def proceed():
            with self._session() as session:
                statement = update(model).filter_by(**where).values(**data)
                return session.execute(statement.execution_options(synchronize_session=False)).rowcount

        return self._run(OperationKind.UPDATE_MANY, entity_type, proceed, where=where, data=data)

    def delete(self, entity_type: str, where: Dict[str, Any]):
        model = self.catalog.model_for(entity_type)

        def proceed():
            with self._session() as session:
                instance = session.execute(select(model).filter_by(**where)).scalars().first()
                if instance is not None:
                    session.delete(instance)
                return instance

        return self._run(OperationKind.DELETE, entity_type, proceed, where=where)

    def delete_many(self, entity_type: str, where: Dict[str, Any]) -> int:
        model = self.catalog.model_for(entity_type)

        def proceed():
            with self._session() as session:
                statement = delete(model).filter_by(**where)
                return session.execute(statement.execution_options(synchronize_session=False)).rowcount

        return self._run(OperationKind.DELETE_MANY, entity_type, proceed, where=where)

    def find_unique(self, entity_type: str, where: Dict[str, Any]):
        model = self.catalog.model_for(entity_type)

        def proceed():
            with self._session() as session:
                return session.execute(select(model).filter_by(**where)).scalars().one_or_none()

        return self._run(OperationKind.FIND_UNIQUE, entity_type, proceed, where=where)

    def find_many(self, entity_type: str, where: Optional[Dict[str, Any]] = None) -> List[Any]:
        model = self.catalog.model_for(entity_type)

        def proceed():
            with self._session() as session:
                return list(session.execute(select(model).filter_by(**(where or {}))).scalars())

        return self._run(OperationKind.FIND_MANY, entity_type, proceed, where=where)

    def count(self, entity_type: str, where: Optional[Dict[str, Any]] = None) -> int:
        model = self.catalog.model_for(entity_type)

        def proceed():
            with self._session() as session:
                statement = select(func.count()).select_from(model).filter_by(**(where or {}))
                return session.execute(statement).scalar_one()

        return self._run(OperationKind.COUNT, entity_type, proceed, where=where)

    def bulk_delete(self, entity_type: str, ids: Iterable[Any]) -> int:
        """Delete every record of ``entity_type`` whose ID is in ``ids``.

        Returns the number of deleted rows. Raises ``UnknownEntityType`` when
        the entity type is not in the catalog.
        """
        model = self.catalog.model_for(entity_type)
        ids = list(ids)
        if not ids:
            return 0
        id_column = getattr(model, self.catalog.id_field(entity_type))

        def proceed():
            with self._session() as session:
                statement = delete(model).where(id_column.in_(ids))
                return session.execute(statement.execution_options(synchronize_session=False)).rowcount

        return self._run(OperationKind.DELETE_MANY, entity_type, proceed, ids=ids)
