import logging
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID, uuid4

from common.dates import utcnow
from common.errors import NotFoundError, UnauthorizedError, InvalidRequestError
from common.storage import InMemoryStorage

from .models import (
    TransactionType,
    LedgerTransaction,
    MemberBalance,
    AdjustBalanceRequest,
    LedgerHistoryResponse,
    ReconciliationReport,
)


class MembershipNotFoundError(NotFoundError):
    pass


class LedgerService:
    """Append-only ledger with a cached per-membership balance.

    Every balance change is a ledger entry; the cached ``balance_cents`` is
    incremented by the storage layer in the same step as the append, so it
    can always be rebuilt by replaying the entries.
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

    def record_rental_settlement(self, rental, amount_cents: int) -> list[LedgerTransaction]:
        """Credit the owner and debit the renter; both entries or neither."""
        now = self.clock()
        credit = self._entry(
            org_id=rental.org_id,
            member_id=rental.owner_id,
            amount_cents=amount_cents,
            entry_type=TransactionType.LENDING_CREDIT,
            description=f"Earnings from rental of tool {rental.tool_id}",
            now=now,
            related_rental_id=rental.id,
        )
        debit = self._entry(
            org_id=rental.org_id,
            member_id=rental.renter_id,
            amount_cents=-amount_cents,
            entry_type=TransactionType.RENTAL_DEBIT,
            description=f"Settlement for rental of tool {rental.tool_id}",
            now=now,
            related_rental_id=rental.id,
        )
        self._append_pair(credit, debit)
        self.logger.info(
            "Recorded rental settlement rental_id=%s amount_cents=%d owner=%s renter=%s",
            rental.id, amount_cents, rental.owner_id, rental.renter_id,
        )
        return [credit, debit]

    def record_bill_settlement(self, bill) -> list[LedgerTransaction]:
        """Debtor pays creditor: both balances move toward zero by the bill amount."""
        now = self.clock()
        debtor_entry = self._entry(
            org_id=bill.org_id,
            member_id=bill.debtor_id,
            amount_cents=bill.amount_cents,
            entry_type=TransactionType.SETTLEMENT_CREDIT,
            description=f"Payment sent for {bill.settlement_month} settlement",
            now=now,
            related_bill_id=bill.id,
        )
        creditor_entry = self._entry(
            org_id=bill.org_id,
            member_id=bill.creditor_id,
            amount_cents=-bill.amount_cents,
            entry_type=TransactionType.SETTLEMENT_DEBIT,
            description=f"Payment received for {bill.settlement_month} settlement",
            now=now,
            related_bill_id=bill.id,
        )
        self._append_pair(debtor_entry, creditor_entry)
        self.logger.info(
            "Recorded bill settlement bill_id=%s amount_cents=%d", bill.id, bill.amount_cents
        )
        return [debtor_entry, creditor_entry]

    def record_penalty(self, member_id: UUID, bill, reason: str) -> LedgerTransaction:
        entry = self._entry(
            org_id=bill.org_id,
            member_id=member_id,
            amount_cents=-bill.amount_cents,
            entry_type=TransactionType.PENALTY,
            description=reason,
            now=self.clock(),
            related_bill_id=bill.id,
        )
        self.storage.append_ledger_transaction(entry)
        self.logger.info(
            "Recorded penalty member_id=%s bill_id=%s amount_cents=%d",
            member_id, bill.id, bill.amount_cents,
        )
        return entry

    def adjust_balance(self, request: AdjustBalanceRequest) -> LedgerTransaction:
        admin = self.storage.get_membership(request.admin_id, request.org_id)
        if admin is None or not admin.is_admin():
            raise UnauthorizedError("Admin privileges required to adjust balances")
        if request.amount_cents == 0:
            raise InvalidRequestError("Adjustment amount must not be zero")
        self._require_membership(request.member_id, request.org_id)

        entry = self._entry(
            org_id=request.org_id,
            member_id=request.member_id,
            amount_cents=request.amount_cents,
            entry_type=TransactionType.ADJUSTMENT,
            description=f"Admin adjustment by {request.admin_id}: {request.reason}",
            now=self.clock(),
        )
        self.storage.append_ledger_transaction(entry)
        self.logger.info(
            "Admin %s adjusted balance of member %s in org %s by %d",
            request.admin_id, request.member_id, request.org_id, request.amount_cents,
        )
        return entry

    def get_balance(self, member_id: UUID, org_id: UUID) -> MemberBalance:
        membership = self._require_membership(member_id, org_id)
        return MemberBalance(
            member_id=member_id,
            org_id=org_id,
            balance_cents=membership.balance_cents,
            last_balance_update_on=membership.last_balance_update_on,
        )

    def get_ledger_history(
        self, member_id: UUID, org_id: UUID, limit: int = 50, offset: int = 0
    ) -> LedgerHistoryResponse:
        balance = self.get_balance(member_id, org_id)
        all_entries = self.storage.list_ledger_transactions(member_id=member_id, org_id=org_id)
        all_entries.sort(key=lambda e: e.created_at, reverse=True)
        paginated = all_entries[offset:offset + limit]

        return LedgerHistoryResponse(
            member_id=member_id,
            org_id=org_id,
            entries=paginated,
            total_count=len(all_entries),
            balance_cents=balance.balance_cents,
        )

    def reconcile(self, member_id: UUID, org_id: UUID) -> ReconciliationReport:
        membership = self._require_membership(member_id, org_id)
        entries = self.storage.list_ledger_transactions(member_id=member_id, org_id=org_id)
        report = ReconciliationReport(
            member_id=member_id,
            org_id=org_id,
            cached_balance_cents=membership.balance_cents,
            ledger_balance_cents=sum(e.amount_cents for e in entries),
            entry_count=len(entries),
        )
        if not report.is_consistent:
            self.logger.error(
                "Balance cache mismatch member_id=%s org_id=%s cached=%d ledger=%d",
                member_id, org_id, report.cached_balance_cents, report.ledger_balance_cents,
            )
        return report

    def _append_pair(self, first: LedgerTransaction, second: LedgerTransaction) -> None:
        with self.storage.transaction():
            self.storage.append_ledger_transaction(first)
            self.storage.append_ledger_transaction(second)

    def _require_membership(self, member_id: UUID, org_id: UUID):
        membership = self.storage.get_membership(member_id, org_id)
        if membership is None:
            raise MembershipNotFoundError(f"Member {member_id} is not part of org {org_id}")
        return membership

    @staticmethod
    def _entry(
        org_id: UUID,
        member_id: UUID,
        amount_cents: int,
        entry_type: TransactionType,
        description: str,
        now: datetime,
        related_rental_id: Optional[UUID] = None,
        related_bill_id: Optional[UUID] = None,
    ) -> LedgerTransaction:
        return LedgerTransaction(
            id=uuid4(),
            org_id=org_id,
            member_id=member_id,
            amount_cents=amount_cents,
            type=entry_type,
            related_rental_id=related_rental_id,
            related_bill_id=related_bill_id,
            description=description,
            charged_on=now.date(),
            created_at=now,
        )
