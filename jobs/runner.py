"""
Scheduled batch jobs and the runner that isolates them.

Each job returns a :class:`JobResult` instead of raising: per-entity failures
are collected as a PARTIAL_FAILURE, and anything escaping the job body is
caught at the job boundary and reported as FAILED. Bundles run their jobs in
order and never roll back jobs that already finished.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional
from pydantic import BaseModel, Field

from common.batch import BatchResult, EntityError
from common.config import AppConfig
from common.dates import parse_settlement_month, settlement_month as month_of, utcnow
from common.errors import InvalidRequestError, NotFoundError
from common.notifications import LoggingNotifier, Notifier
from common.storage import InMemoryStorage
from ledger.service import LedgerService
from rentals.service import RentalService
from settlement.disputes import DisputeService
from settlement.netting import BillSplittingService
from settlement.snapshots import SnapshotService

NIGHTLY_JOBS = (
    "mark-overdue-rentals",
    "send-overdue-reminders",
    "send-bill-notices",
    "send-bill-reminders",
    "check-overdue-bills",
)
MONTHLY_JOBS = (
    "resolve-disputed-bills",
    "take-balance-snapshots",
    "perform-bill-splitting",
)
BUNDLES = {
    "all-nightly": NIGHTLY_JOBS,
    "all-monthly": MONTHLY_JOBS,
}


class UnknownJobError(NotFoundError):
    pass


class JobStatus(str, Enum):
    SUCCESS = "SUCCESS"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"
    FAILED = "FAILED"


class JobResult(BaseModel):
    job: str
    status: JobStatus
    processed: int = 0
    skipped: int = 0
    entity_errors: list[EntityError] = Field(default_factory=list)
    error: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime
    finished_at: datetime


@dataclass
class Services:
    storage: InMemoryStorage
    notifier: Notifier
    ledger: LedgerService
    rentals: RentalService
    snapshots: SnapshotService
    bill_splitting: BillSplittingService
    disputes: DisputeService
    config: AppConfig = field(default_factory=AppConfig)


def build_services(
    config: Optional[AppConfig] = None,
    storage: Optional[InMemoryStorage] = None,
    notifier: Optional[Notifier] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Services:
    config = config or AppConfig()
    storage = storage or InMemoryStorage()
    notifier = notifier or LoggingNotifier(logging.getLogger("toolshare.notifications"))

    ledger = LedgerService(storage, logging.getLogger("toolshare.ledger"), clock)
    return Services(
        storage=storage,
        notifier=notifier,
        ledger=ledger,
        rentals=RentalService(storage, ledger, notifier, logging.getLogger("toolshare.rentals"), clock),
        snapshots=SnapshotService(storage, logging.getLogger("toolshare.snapshots"), clock),
        bill_splitting=BillSplittingService(storage, notifier, logging.getLogger("toolshare.netting"), clock),
        disputes=DisputeService(
            storage, ledger, notifier, logging.getLogger("toolshare.disputes"), clock,
            dispute_after_days=config.billing.dispute_after_days,
            reminder_after_days=config.billing.reminder_after_days,
        ),
        config=config,
    )


class JobRunner:
    def __init__(
        self,
        services: Services,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.services = services
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock
        self._jobs: dict[str, Callable[[Optional[str]], BatchResult]] = {
            "mark-overdue-rentals": lambda month: services.rentals.mark_overdue_rentals(),
            "send-overdue-reminders": lambda month: services.rentals.send_overdue_reminders(),
            "send-bill-notices": lambda month: services.disputes.send_bill_notices(),
            "send-bill-reminders": lambda month: services.disputes.send_bill_reminders(),
            "check-overdue-bills": lambda month: services.disputes.check_overdue_bills(),
            "resolve-disputed-bills": lambda month: services.disputes.auto_resolve_disputed_bills(cutoff_month=month),
            "take-balance-snapshots": self._take_snapshots,
            "perform-bill-splitting": lambda month: services.bill_splitting.perform_bill_splitting(month),
        }

    @staticmethod
    def job_names() -> list[str]:
        return list(NIGHTLY_JOBS) + list(MONTHLY_JOBS) + list(BUNDLES)

    def run(self, name: str, settlement_month: Optional[str] = None) -> list[JobResult]:
        """Run a single job or a bundle by name; one result per job."""
        if name not in self._jobs and name not in BUNDLES:
            raise UnknownJobError(f"Unknown job {name!r}")
        if settlement_month is not None:
            try:
                settlement_month = parse_settlement_month(settlement_month)
            except ValueError as e:
                raise InvalidRequestError(str(e))
        elif name == "all-monthly":
            # snapshots and splitting must agree on one month
            settlement_month = month_of(self.clock().date())

        if name in BUNDLES:
            self.logger.info("Running job bundle %s", name)
            return [self.run_job(job, settlement_month) for job in BUNDLES[name]]
        return [self.run_job(name, settlement_month)]

    def run_all_nightly(self) -> list[JobResult]:
        return self.run("all-nightly")

    def run_all_monthly(self, settlement_month: Optional[str] = None) -> list[JobResult]:
        return self.run("all-monthly", settlement_month)

    def run_job(self, name: str, settlement_month: Optional[str] = None) -> JobResult:
        job = self._jobs.get(name)
        if job is None:
            raise UnknownJobError(f"Unknown job {name!r}")

        self.logger.info("Starting job %s", name)
        started_at = self.clock()
        try:
            batch = job(settlement_month)
        except Exception as e:
            self.logger.exception("Job %s failed", name)
            return JobResult(
                job=name,
                status=JobStatus.FAILED,
                error=f"{type(e).__name__}: {e}",
                started_at=started_at,
                finished_at=self.clock(),
            )

        status = JobStatus.PARTIAL_FAILURE if batch.errors else JobStatus.SUCCESS
        result = JobResult(
            job=name,
            status=status,
            processed=batch.processed,
            skipped=batch.skipped,
            entity_errors=batch.errors,
            details=batch.details,
            started_at=started_at,
            finished_at=self.clock(),
        )
        if status == JobStatus.PARTIAL_FAILURE:
            self.logger.warning(
                "Job %s finished with %d entity errors (processed=%d)",
                name, len(batch.errors), batch.processed,
            )
        else:
            self.logger.info("Job %s finished (processed=%d)", name, batch.processed)
        return result

    def _take_snapshots(self, settlement_month: Optional[str]) -> BatchResult:
        snapshot = self.services.snapshots.take_balance_snapshots(settlement_month)
        return BatchResult(
            processed=snapshot.created,
            skipped=snapshot.skipped,
            details={"settlement_month": snapshot.settlement_month},
        )
