import logging
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

from common.dates import settlement_month as month_of, utcnow
from common.storage import InMemoryStorage

from .models import BalanceSnapshot, SnapshotResult


class SnapshotService:
    """Freezes every membership balance at month end.

    Snapshots are keyed by (member, org, month) and written insert-if-absent,
    so running the job twice for the same month never changes the first run's
    figures.
    """

    def __init__(
        self,
        storage: InMemoryStorage,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock

    def take_balance_snapshots(self, settlement_month: Optional[str] = None) -> SnapshotResult:
        now = self.clock()
        month = settlement_month or month_of(now.date())

        created = skipped = 0
        for membership in self.storage.list_memberships():
            snapshot = BalanceSnapshot(
                member_id=membership.member_id,
                org_id=membership.org_id,
                settlement_month=month,
                balance_cents=membership.balance_cents,
                snapshot_at=now,
            )
            if self.storage.insert_snapshot_if_absent(snapshot):
                created += 1
            else:
                skipped += 1

        self.logger.info(
            "Balance snapshots for %s: created=%d skipped=%d", month, created, skipped
        )
        return SnapshotResult(settlement_month=month, created=created, skipped=skipped)

    def list_snapshots(self, org_id: UUID, settlement_month: str) -> list[BalanceSnapshot]:
        return self.storage.list_snapshots(org_id=org_id, settlement_month=settlement_month)
