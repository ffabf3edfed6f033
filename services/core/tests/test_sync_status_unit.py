"""Unit tests for the sync status tracker.

Tests cover:
- Starting a sync and the single-active-sync rule
- Monotonic status transitions
- Stale sync reconciliation
"""

from datetime import timedelta

import pytest

from factories import create_sync_status
from parley_core.domain.models import SyncState, utcnow
from parley_core.domain.services.sync_status import (
    STALE_SYNC_ERROR,
    InvalidSyncStatusError,
    InvalidSyncTransitionError,
    SyncConflictError,
    SyncNotFoundError,
    SyncStatusService,
    generate_sync_id,
)


@pytest.fixture
def service(db_session) -> SyncStatusService:
    return SyncStatusService(db_session, stale_after_seconds=300)


class TestGenerateSyncId:
    def test_format(self):
        sync_id = generate_sync_id()
        prefix, millis, suffix = sync_id.split("-")
        assert prefix == "sync"
        assert millis.isdigit()
        assert len(suffix) == 10

    def test_unique(self):
        assert generate_sync_id() != generate_sync_id()


class TestStart:
    """Tests for SyncStatusService.start."""

    def test_creates_pending_sync(self, service):
        sync = service.start("cust-1")

        assert sync.status == SyncState.PENDING
        assert sync.is_syncing is True
        assert sync.active_customer_id == "cust-1"
        assert sync.total_messages == 0
        assert sync.total_chats == 0

    def test_second_start_conflicts(self, service):
        first = service.start("cust-1")

        with pytest.raises(SyncConflictError) as exc_info:
            service.start("cust-1")

        assert exc_info.value.sync_id == first.sync_id

    def test_customers_are_independent(self, service):
        service.start("cust-1")
        assert service.start("cust-2").customer_id == "cust-2"

    def test_start_after_completion(self, service):
        first = service.start("cust-1")
        service.mark_completed("cust-1", first.sync_id, total_messages=0, total_chats=0)

        second = service.start("cust-1")

        assert second.sync_id != first.sync_id

    def test_stale_sync_does_not_block(self, service, db_session):
        stale = create_sync_status(db_session, status=SyncState.RUNNING)
        stale.updated_at = utcnow() - timedelta(seconds=301)
        db_session.flush()

        sync = service.start("cust-1")

        assert sync.sync_id != stale.sync_id
        assert stale.status == SyncState.COMPLETED
        assert stale.error == STALE_SYNC_ERROR


class TestUpdate:
    """Tests for SyncStatusService.update."""

    def test_running_then_completed(self, service):
        sync = service.start("cust-1")

        service.mark_running("cust-1", sync.sync_id)
        assert sync.status == SyncState.RUNNING
        assert sync.is_syncing is True

        service.mark_completed("cust-1", sync.sync_id, total_messages=7, total_chats=2)
        assert sync.status == SyncState.COMPLETED
        assert sync.is_syncing is False
        assert sync.active_customer_id is None
        assert sync.last_sync_time is not None
        assert sync.total_messages == 7
        assert sync.total_chats == 2

    def test_failed_records_error(self, service):
        sync = service.start("cust-1")

        service.mark_failed("cust-1", sync.sync_id, "No connections found")

        assert sync.status == SyncState.FAILED
        assert sync.error == "No connections found"
        assert sync.is_syncing is False

    def test_terminal_sync_cannot_move(self, service):
        sync = service.start("cust-1")
        service.mark_completed("cust-1", sync.sync_id, total_messages=0, total_chats=0)

        with pytest.raises(InvalidSyncTransitionError):
            service.mark_running("cust-1", sync.sync_id)

    def test_running_cannot_go_back_to_pending(self, service):
        sync = service.start("cust-1")
        service.mark_running("cust-1", sync.sync_id)

        with pytest.raises(InvalidSyncTransitionError):
            service.update("cust-1", sync.sync_id, SyncState.PENDING)

    def test_unknown_status(self, service):
        sync = service.start("cust-1")

        with pytest.raises(InvalidSyncStatusError):
            service.update("cust-1", sync.sync_id, "paused")

    def test_unknown_sync(self, service):
        with pytest.raises(SyncNotFoundError):
            service.mark_running("cust-1", "sync-missing")

    def test_sync_of_other_customer_is_not_found(self, service):
        sync = service.start("cust-1")

        with pytest.raises(SyncNotFoundError):
            service.mark_running("cust-2", sync.sync_id)


class TestStaleness:
    """Tests for stale sync detection and reconciliation."""

    def test_get_current_expires_stale_sync(self, service, db_session):
        sync = create_sync_status(db_session, status=SyncState.RUNNING)
        sync.updated_at = utcnow() - timedelta(minutes=10)
        db_session.flush()

        current = service.get_current("cust-1")

        assert current.sync_id == sync.sync_id
        assert current.status == SyncState.COMPLETED
        assert current.is_syncing is False
        assert current.error == STALE_SYNC_ERROR
        assert current.active_customer_id is None

    def test_recent_progress_keeps_sync_alive(self, service, db_session):
        sync = create_sync_status(db_session, status=SyncState.RUNNING)
        sync.start_time = utcnow() - timedelta(hours=1)
        service.record_progress(sync, total_chats=3, total_messages=10)

        current = service.get_current("cust-1")

        assert current.status == SyncState.RUNNING
        assert current.total_chats == 3

    def test_get_current_without_syncs(self, service):
        assert service.get_current("cust-1") is None

    def test_reconcile_stale_across_customers(self, service, db_session):
        for customer_id in ("cust-1", "cust-2"):
            sync = create_sync_status(
                db_session, sync_id=f"sync-{customer_id}", customer_id=customer_id
            )
            sync.updated_at = utcnow() - timedelta(minutes=10)
        fresh = create_sync_status(db_session, sync_id="sync-fresh", customer_id="cust-3")
        db_session.flush()

        assert service.reconcile_stale() == 2
        assert fresh.status == SyncState.PENDING

    def test_completed_syncs_are_never_stale(self, service, db_session):
        sync = create_sync_status(db_session, status=SyncState.COMPLETED)
        sync.updated_at = utcnow() - timedelta(days=1)
        db_session.flush()

        assert service.is_stale(sync) is False
