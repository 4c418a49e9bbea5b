import logging
from datetime import datetime
from typing import Callable, Iterable, Optional
from uuid import UUID, uuid4
from pydantic import BaseModel

from common.batch import BatchResult
from common.dates import previous_settlement_month, utcnow
from common.notifications import Notification, Notifier, dispatch
from common.storage import DuplicateBillError, InMemoryStorage
from ledger.models import MembershipStatus

from .models import Bill, BillStatus


class MemberNetBalance(BaseModel):
    member_id: UUID
    balance_cents: int


class ProposedBill(BaseModel):
    debtor_id: UUID
    creditor_id: UUID
    amount_cents: int


def compute_settlement_bills(balances: Iterable[MemberNetBalance]) -> list[ProposedBill]:
    """
    Greedy first-in-list netting of monthly balances into debtor -> creditor bills.

    Debtors (negative balance) and creditors (positive balance) keep their
    arrival order. The head debtor pays the head creditor the smaller of the two
    outstanding amounts, and whichever side reaches zero is dropped. Zero
    balances are ignored. The result is not a minimum-bill-count solution.
    """
    debtors: list[list] = []
    creditors: list[list] = []
    for entry in balances:
        if entry.balance_cents < 0:
            debtors.append([entry.member_id, -entry.balance_cents])
        elif entry.balance_cents > 0:
            creditors.append([entry.member_id, entry.balance_cents])

    bills: list[ProposedBill] = []
    d = c = 0
    while d < len(debtors) and c < len(creditors):
        debtor, creditor = debtors[d], creditors[c]
        amount = min(debtor[1], creditor[1])
        bills.append(ProposedBill(debtor_id=debtor[0], creditor_id=creditor[0], amount_cents=amount))
        debtor[1] -= amount
        creditor[1] -= amount
        if debtor[1] == 0:
            d += 1
        if creditor[1] == 0:
            c += 1
    return bills


class BillSplittingService:
    def __init__(
        self,
        storage: InMemoryStorage,
        notifier: Notifier,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.notifier = notifier
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock

    def split_organization(self, org_id: UUID, settlement_month: str) -> BatchResult:
        """Create the month's bills for one organization from its snapshots.

        Bills that already exist for the same debtor, creditor and month are
        skipped, so a re-run after a partial failure only fills the gaps.
        """
        active = {
            m.member_id for m in self.storage.list_memberships(org_id=org_id)
            if m.status == MembershipStatus.ACTIVE
        }
        balances = [
            MemberNetBalance(member_id=s.member_id, balance_cents=s.balance_cents)
            for s in self.storage.list_snapshots(org_id=org_id, settlement_month=settlement_month)
            if s.member_id in active and s.balance_cents != 0
        ]

        result = BatchResult()
        if not balances:
            self.logger.info("No balances to settle for org %s in %s", org_id, settlement_month)
            return result

        for proposed in compute_settlement_bills(balances):
            now = self.clock()
            bill = Bill(
                id=uuid4(),
                org_id=org_id,
                debtor_id=proposed.debtor_id,
                creditor_id=proposed.creditor_id,
                amount_cents=proposed.amount_cents,
                settlement_month=settlement_month,
                status=BillStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
            try:
                self.storage.create_bill(bill)
            except DuplicateBillError:
                result.skipped += 1
                continue
            result.processed += 1
            self.logger.debug(
                "Created bill %s: %s owes %s %d cents",
                bill.id, bill.debtor_id, bill.creditor_id, bill.amount_cents,
            )
            dispatch(self.notifier, self.logger, Notification(
                recipient_id=bill.debtor_id,
                org_id=org_id,
                title="New Bill Created",
                message=f"You owe {bill.amount_cents} cents for {settlement_month}. "
                        "Please pay and acknowledge in the app.",
                attributes={"type": "BILL_CREATED", "bill_id": str(bill.id)},
            ))

        self.logger.info(
            "Bill splitting for org %s in %s: created=%d skipped=%d",
            org_id, settlement_month, result.processed, result.skipped,
        )
        return result

    def perform_bill_splitting(self, settlement_month: Optional[str] = None) -> BatchResult:
        month = settlement_month or previous_settlement_month(self.clock().date())
        self.logger.info("Starting bill splitting for %s", month)

        result = BatchResult(details={"settlement_month": month})
        for org in self.storage.list_organizations():
            try:
                result.merge(self.split_organization(org.id, month))
            except Exception as e:
                self.logger.error("Failed to split bills for org %s (%s): %s", org.id, org.name, e)
                result.record_error("organization", org.id, e)

        self.logger.info(
            "Bill splitting for %s done: bills=%d skipped=%d failed_orgs=%d",
            month, result.processed, result.skipped, len(result.errors),
        )
        return result
