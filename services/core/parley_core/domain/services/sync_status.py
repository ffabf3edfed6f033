"""Sync status tracker.

Owns the lifecycle of a sync run:

    pending -> running -> completed | failed

Rules enforced here:
1. At most one pending/running sync per customer
2. Transitions are monotonic; a terminal run never moves again
3. A run that has made no progress for ``stale_after_seconds`` is presumed
   abandoned and force-completed with error "Sync timed out"

Usage:
    tracker = SyncStatusService(db=session, stale_after_seconds=300)

    sync = tracker.start(customer_id="cust-1")
    tracker.mark_running("cust-1", sync.sync_id)
    tracker.record_progress(sync, total_chats=3, total_messages=42)
    tracker.mark_completed("cust-1", sync.sync_id)
"""

import logging
import secrets
import time
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from parley_core.domain.models import SyncState, SyncStatus, utcnow

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================


class SyncStatusError(Exception):
    """Base exception for sync status operations."""
    pass


class SyncConflictError(SyncStatusError):
    """Raised when the customer already has an active sync."""

    def __init__(self, message: str, sync_id: Optional[str] = None):
        super().__init__(message)
        self.sync_id = sync_id


class SyncNotFoundError(SyncStatusError):
    """Raised when the sync id is unknown for the customer."""
    pass


class InvalidSyncStatusError(SyncStatusError):
    """Raised when a status value is not a sync status."""
    pass


class InvalidSyncTransitionError(SyncStatusError):
    """Raised when a transition would move a sync backwards."""
    pass


# =============================================================================
# CONSTANTS
# =============================================================================


STALE_SYNC_ERROR = "Sync timed out"

# Same-state updates are allowed so progress counters can be written
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    SyncState.PENDING: frozenset(
        {SyncState.PENDING, SyncState.RUNNING, SyncState.COMPLETED, SyncState.FAILED}
    ),
    SyncState.RUNNING: frozenset(
        {SyncState.RUNNING, SyncState.COMPLETED, SyncState.FAILED}
    ),
    SyncState.COMPLETED: frozenset(),
    SyncState.FAILED: frozenset(),
}


def generate_sync_id() -> str:
    """``sync-<epoch millis>-<random>``."""
    return f"sync-{int(time.time() * 1000)}-{secrets.token_hex(5)}"


# =============================================================================
# SERVICE
# =============================================================================


class SyncStatusService:
    """Service for tracking sync runs."""

    def __init__(self, db: Session, stale_after_seconds: int = 300):
        """Initialize the tracker.

        Args:
            db: SQLAlchemy database session.
            stale_after_seconds: Inactivity after which a run is abandoned.
        """
        self.db = db
        self.stale_after = timedelta(seconds=stale_after_seconds)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, customer_id: str, sync_id: str) -> SyncStatus:
        """Load a customer's sync.

        Raises:
            SyncNotFoundError: If the customer has no sync with that id.
        """
        sync = (
            self.db.query(SyncStatus)
            .filter(
                SyncStatus.customer_id == customer_id,
                SyncStatus.sync_id == sync_id,
            )
            .first()
        )
        if sync is None:
            raise SyncNotFoundError(f"Sync {sync_id} not found")
        return sync

    def get_active(self, customer_id: str) -> Optional[SyncStatus]:
        """The customer's pending or running sync, stale or not."""
        return (
            self.db.query(SyncStatus)
            .filter(
                SyncStatus.customer_id == customer_id,
                SyncStatus.status.in_(SyncState.ACTIVE),
            )
            .order_by(SyncStatus.created_at.desc(), SyncStatus.id.desc())
            .first()
        )

    def get_current(self, customer_id: str) -> Optional[SyncStatus]:
        """Latest sync for the customer, reconciling it first if stale.

        Returns:
            The most recent SyncStatus, or None if the customer never synced.
        """
        sync = (
            self.db.query(SyncStatus)
            .filter(SyncStatus.customer_id == customer_id)
            .order_by(SyncStatus.created_at.desc(), SyncStatus.id.desc())
            .first()
        )
        if sync is not None and self.is_stale(sync):
            self._expire(sync)
            self.db.flush()
        return sync

    def is_stale(self, sync: SyncStatus) -> bool:
        """Whether an active sync has had no progress for the stale timeout.

        Activity is the last heartbeat (``updated_at``), falling back to
        the start time.
        """
        if sync.status not in SyncState.ACTIVE:
            return False
        last_activity = sync.updated_at or sync.start_time or sync.created_at
        return last_activity is not None and utcnow() - last_activity > self.stale_after

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def start(self, customer_id: str) -> SyncStatus:
        """Create a new pending sync.

        Raises:
            SyncConflictError: If a pending/running sync exists.
        """
        self.reconcile_stale(customer_id=customer_id)

        active = self.get_active(customer_id)
        if active is not None:
            raise SyncConflictError("Sync already in progress", sync_id=active.sync_id)

        now = utcnow()
        sync = SyncStatus(
            sync_id=generate_sync_id(),
            customer_id=customer_id,
            active_customer_id=customer_id,
            status=SyncState.PENDING,
            is_syncing=True,
            start_time=now,
            total_messages=0,
            total_chats=0,
        )
        self.db.add(sync)
        try:
            self.db.flush()
        except IntegrityError as e:
            # Lost a race with a concurrent start for the same customer
            self.db.rollback()
            raise SyncConflictError("Sync already in progress") from e

        logger.info(f"Started sync {sync.sync_id} for customer {customer_id}")
        return sync

    def update(
        self,
        customer_id: str,
        sync_id: str,
        status: str,
        total_messages: Optional[int] = None,
        total_chats: Optional[int] = None,
        error: Optional[str] = None,
    ) -> SyncStatus:
        """Apply a status update to a sync.

        Raises:
            InvalidSyncStatusError: If ``status`` is not a sync status.
            SyncNotFoundError: If the sync does not exist for the customer.
            InvalidSyncTransitionError: If the transition is not monotonic.
        """
        if status not in ALLOWED_TRANSITIONS:
            raise InvalidSyncStatusError(f"Invalid sync status '{status}'")

        sync = self.get(customer_id, sync_id)

        if status not in ALLOWED_TRANSITIONS[sync.status]:
            raise InvalidSyncTransitionError(
                f"Cannot move sync {sync_id} from '{sync.status}' to '{status}'"
            )

        sync.status = status
        if status == SyncState.RUNNING:
            sync.is_syncing = True
        elif status in SyncState.TERMINAL:
            sync.is_syncing = False
            sync.last_sync_time = utcnow()
            sync.active_customer_id = None

        if error:
            sync.error = error
        if total_messages is not None:
            sync.total_messages = total_messages
        if total_chats is not None:
            sync.total_chats = total_chats

        # Bump updated_at even when no column changed
        sync.updated_at = utcnow()
        self.db.flush()
        return sync

    def mark_running(self, customer_id: str, sync_id: str) -> SyncStatus:
        return self.update(customer_id, sync_id, SyncState.RUNNING)

    def mark_completed(
        self,
        customer_id: str,
        sync_id: str,
        total_messages: int,
        total_chats: int,
    ) -> SyncStatus:
        return self.update(
            customer_id,
            sync_id,
            SyncState.COMPLETED,
            total_messages=total_messages,
            total_chats=total_chats,
        )

    def mark_failed(self, customer_id: str, sync_id: str, error: str) -> SyncStatus:
        return self.update(customer_id, sync_id, SyncState.FAILED, error=error)

    def record_progress(
        self,
        sync: SyncStatus,
        total_chats: int,
        total_messages: int,
    ) -> None:
        """Write running counters; doubles as the run's heartbeat."""
        if sync.status not in SyncState.ACTIVE:
            return
        sync.total_chats = total_chats
        sync.total_messages = total_messages
        sync.updated_at = utcnow()
        self.db.flush()

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def _expire(self, sync: SyncStatus) -> None:
        """Close a stale sync as completed with the timeout error."""
        logger.warning(
            f"Sync {sync.sync_id} for customer {sync.customer_id} is stale, "
            f"marking completed"
        )
        sync.status = SyncState.COMPLETED
        sync.is_syncing = False
        sync.active_customer_id = None
        sync.error = STALE_SYNC_ERROR
        sync.updated_at = utcnow()

    def reconcile_stale(self, customer_id: Optional[str] = None) -> int:
        """Force-complete stale active syncs.

        Args:
            customer_id: Limit to one customer; all customers when None.

        Returns:
            Number of syncs reconciled.
        """
        query = self.db.query(SyncStatus).filter(
            SyncStatus.status.in_(SyncState.ACTIVE)
        )
        if customer_id is not None:
            query = query.filter(SyncStatus.customer_id == customer_id)

        count = 0
        for sync in query.all():
            if self.is_stale(sync):
                self._expire(sync)
                count += 1

        if count:
            self.db.flush()
        return count
