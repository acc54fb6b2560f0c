import logging
import threading
from unittest.mock import Mock
import pytest
from sqlalchemy.exc import OperationalError
from resource_gc.tracking.cleanup import CleanupReport, TestResourceCleaner
from resource_gc.tracking.exceptions import UnknownEntityType
from resource_gc.tracking.registry import TestResourceRegistry

@pytest.fixture
def tracked_registry():
    registry = TestResourceRegistry(['User', 'Order', 'OrderItem'])
    registry.record('User', 1)
    registry.record('User', 2)
    registry.record('User', 2)
    registry.record('Order', 10)
    return registry

@pytest.mark.unit
class TestTestResourceCleaner:

    def test_empty_registry_issues_no_deletes(self):
        """Test that nothing is deleted when nothing was tracked"""
        data_access = Mock()
        cleaner = TestResourceCleaner(TestResourceRegistry(['User', 'Order']), data_access)

        report = cleaner.clear()

        data_access.bulk_delete.assert_not_called()
        assert report.deleted == {}
        assert report.ok

    def test_one_bulk_delete_per_entity_type(self, tracked_registry):
        """Test that each tracked entity type gets exactly one delete"""
        data_access = Mock()
        data_access.bulk_delete.side_effect = lambda entity_type, ids: len(ids)
        cleaner = TestResourceCleaner(tracked_registry, data_access)

        report = cleaner.clear()

        calls = {c.args[0]: c.args[1] for c in data_access.bulk_delete.call_args_list}
        assert calls == {'User': {1, 2}, 'Order': {10}}
        assert data_access.bulk_delete.call_count == 2
        assert report.deleted == {'User': 2, 'Order': 1}
        assert report.total_deleted == 3

    def test_registry_is_empty_after_cleanup(self, tracked_registry):
        """Test that the cleanup starts a new epoch"""
        cleaner = TestResourceCleaner(tracked_registry, Mock(**{'bulk_delete.return_value': 1}))

        cleaner.clear()

        assert tracked_registry.snapshot() == {'User': [], 'Order': [], 'OrderItem': []}

    def test_deleted_counts_are_logged(self, tracked_registry, caplog):
        """Test the per entity type diagnostic"""
        data_access = Mock()
        data_access.bulk_delete.side_effect = lambda entity_type, ids: len(ids)
        cleaner = TestResourceCleaner(tracked_registry, data_access)

        with caplog.at_level(logging.INFO, logger='resource_gc.tracking.cleanup'):
            cleaner.clear()

        assert 'Deleted 2 User' in caplog.text
        assert 'Deleted 1 Order' in caplog.text

    def test_failure_does_not_block_other_entity_types(self, tracked_registry, caplog):
        """Test that one failing delete is reported, not raised"""
        def bulk_delete(entity_type, ids):
            if entity_type == 'Order':
                raise OperationalError("DELETE FROM orders", {}, Exception("connection lost"))
            return len(ids)

        data_access = Mock()
        data_access.bulk_delete.side_effect = bulk_delete
        cleaner = TestResourceCleaner(tracked_registry, data_access)

        with caplog.at_level(logging.ERROR, logger='resource_gc.tracking.cleanup'):
            report = cleaner.clear()

        assert report.deleted == {'User': 2}
        assert set(report.failures) == {'Order'}
        assert 'connection lost' in report.failures['Order']
        assert not report.ok
        assert 'Failed to delete test resources for Order' in caplog.text

    def test_failed_ids_are_not_requeued(self, tracked_registry):
        """Test that a failed cleanup doesn't retry on the next run"""
        data_access = Mock()
        data_access.bulk_delete.side_effect = RuntimeError("boom")
        cleaner = TestResourceCleaner(tracked_registry, data_access)

        first = cleaner.clear()
        second = cleaner.clear()

        assert set(first.failures) == {'User', 'Order'}
        assert second.failures == {}
        assert data_access.bulk_delete.call_count == 2

    def test_unknown_entity_type_is_a_deletion_failure(self):
        """Test schema drift handling"""
        registry = TestResourceRegistry(['User'])
        registry.record('Invoice', 1)
        data_access = Mock()
        data_access.bulk_delete.side_effect = UnknownEntityType('Invoice')
        cleaner = TestResourceCleaner(registry, data_access)

        report = cleaner.clear()

        assert report.failures == {'Invoice': 'Unknown entity type: Invoice (entity_type=Invoice)'}

    def test_deletes_run_in_parallel(self, tracked_registry):
        """Test that deletions of different entity types overlap"""
        barrier = threading.Barrier(2, timeout=5)

        def bulk_delete(entity_type, ids):
            # Both workers must be inside bulk_delete at the same time
            barrier.wait()
            return len(ids)

        data_access = Mock()
        data_access.bulk_delete.side_effect = bulk_delete
        cleaner = TestResourceCleaner(tracked_registry, data_access, max_workers=2)

        report = cleaner.clear()

        assert report.ok
        assert report.deleted == {'User': 2, 'Order': 1}

    def test_max_workers_is_at_least_one(self):
        cleaner = TestResourceCleaner(TestResourceRegistry(), Mock(), max_workers=0)

        assert cleaner.max_workers == 1

@pytest.mark.unit
class TestCleanupReport:

    def test_empty_report(self):
        report = CleanupReport()

        assert report.total_deleted == 0
        assert report.ok

    def test_report_with_failures(self):
        report = CleanupReport(deleted={'User': 3, 'Order': 2}, failures={'OrderItem': 'boom'})

        assert report.total_deleted == 5
        assert not report.ok
