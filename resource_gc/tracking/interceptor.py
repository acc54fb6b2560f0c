"""
Executors sitting between the data access layer and the database.

Every data access call is described by an ``Operation`` and handed to an
executor together with a ``proceed`` callable performing the real work.
Outside of test mode the ``PassthroughExecutor`` is installed. In test mode
the ``TrackingInterceptor`` stores the ID of every created record into the
``TestResourceRegistry`` so the cleanup can delete only test resources,
without harming the rest of the database.
"""

import logging
from collections.abc import Mapping
from typing import Any, Callable, Dict, Optional

from sqlalchemy import event

from resource_gc.tracking.exceptions import MissingIdentifier
from resource_gc.tracking.operations import Operation, OperationKind
from resource_gc.tracking.registry import Identifier, TestResourceRegistry

logger = logging.getLogger(__name__)

DEFAULT_ID_FIELD = 'id'

# Session.info keys used by the flush bridge
SKIP_SESSION_TRACKING = 'resource_gc.skip_tracking'
PENDING_CREATIONS = 'resource_gc.pending_creations'


class PassthroughExecutor:
    """Runs operations untouched"""

    tracking = False

    def execute(self, operation: Operation, proceed: Callable[[], Any]) -> Any:
        return proceed()


class TrackingInterceptor:
    """Records the ID of every record created through the data access layer"""

    tracking = True

    def __init__(self, registry: TestResourceRegistry, id_fields: Optional[Dict[str, str]] = None):
        self.registry = registry
        self.id_fields = dict(id_fields or {})
        self._session_targets = []

    def execute(self, operation: Operation, proceed: Callable[[], Any]) -> Any:
        """Run the operation, then track what it created.

        Errors raised by ``proceed`` propagate and nothing is recorded.
        """
        result = proceed()
        self.observe(operation, result)
        return result

    def observe(self, operation: Operation, result: Any) -> None:
        if not operation.entity_type or not operation.kind.creates_records:
            return

        if operation.kind == OperationKind.CREATE_MANY:
            if isinstance(result, (list, tuple)):
                for record in result:
                    self._track(operation.entity_type, record)
            else:
                # Only a row count came back
                logger.error(str(MissingIdentifier(operation.entity_type, self.id_field_for(operation.entity_type))))
            return

        self._track(operation.entity_type, result)

    def id_field_for(self, entity_type: str) -> str:
        return self.id_fields.get(entity_type, DEFAULT_ID_FIELD)

    def extract_identifier(self, entity_type: str, result: Any) -> Identifier:
        """Read the ID field from a mapped instance, a row mapping or a dict"""
        id_field = self.id_field_for(entity_type)
        if isinstance(result, Mapping):
            identifier = result.get(id_field)
        else:
            identifier = getattr(result, id_field, None)

        if identifier is None or identifier == '':
            raise MissingIdentifier(entity_type, id_field)
        return identifier

    def _track(self, entity_type: str, result: Any) -> None:
        try:
            identifier = self.extract_identifier(entity_type, result)
        except MissingIdentifier as e:
            logger.error(str(e))
            return
        self.registry.record(entity_type, identifier)

    # Session flush bridge

    def attach_to_sessions(self, target) -> None:
        """Track records persisted directly through sessions of ``target``.

        ``target`` is a ``sessionmaker``, a ``Session`` subclass or instance.
        IDs are collected at flush time, per transaction, and only recorded
        once the outermost transaction commits. A SAVEPOINT keeps its own
        creations: they move to the enclosing transaction when it is
        released and are dropped when it rolls back.
        """
        for name, listener in self._session_listeners():
            event.listen(target, name, listener)
        self._session_targets.append(target)
        logger.debug(f"Session tracking attached to {target!r}")

    def detach_from_sessions(self) -> None:
        for target in self._session_targets:
            for name, listener in self._session_listeners():
                event.remove(target, name, listener)
        self._session_targets = []

    def _session_listeners(self):
        return [
            ('after_flush', self._after_flush),
            ('after_commit', self._after_commit),
            ('after_rollback', self._after_rollback),
            ('after_transaction_end', self._after_transaction_end),
        ]

    @staticmethod
    def _innermost_transaction(session):
        # Flush subtransactions are skipped, creations belong to the real transaction
        return session.get_nested_transaction() or session.get_transaction()

    def _after_flush(self, session, flush_context):
        if session.info.get(SKIP_SESSION_TRACKING):
            return

        pending = session.info.setdefault(PENDING_CREATIONS, {})
        creations = pending.setdefault(self._innermost_transaction(session), [])
        # session.new still holds the pre-flush state; primary keys are populated
        for instance in session.new:
            entity_type = type(instance).__name__
            id_field = self.id_field_for(entity_type)
            creations.append((entity_type, {id_field: getattr(instance, id_field, None)}))

    def _after_commit(self, session):
        if session.get_nested_transaction() is not None:
            # Released SAVEPOINT, merged into its parent at transaction end
            return

        pending = session.info.get(PENDING_CREATIONS, {})
        for entity_type, row in pending.pop(session.get_transaction(), []):
            self.observe(Operation(OperationKind.CREATE, entity_type), row)

    def _after_rollback(self, session):
        pending = session.info.get(PENDING_CREATIONS, {})
        discarded = pending.pop(self._innermost_transaction(session), [])
        if discarded:
            logger.debug(f"Discarded {len(discarded)} tracked creations after rollback")

    def _after_transaction_end(self, session, transaction):
        pending = session.info.get(PENDING_CREATIONS)
        if not pending:
            return

        creations = pending.pop(transaction, None)
        if not creations:
            return
        if transaction.parent is not None:
            pending.setdefault(transaction.parent, []).extend(creations)
        else:
            # Root transaction closed without commit, e.g. Session.close()
            logger.debug(f"Discarded {len(creations)} tracked creations of a closed transaction")
