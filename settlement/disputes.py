import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional
from uuid import UUID, uuid4

from common.batch import BatchResult
from common.dates import settlement_month as month_of, utcnow
from common.errors import (
    InvalidRequestError,
    InvalidStateTransitionError,
    NotFoundError,
    UnauthorizedError,
)
from common.notifications import Notification, Notifier, dispatch
from common.storage import InMemoryStorage
from ledger.models import MemberOrgBalance
from ledger.service import LedgerService

from .models import (
    ACTIVE_BILL_STATUSES,
    BillStatus,
    BillActionType,
    DisputeReason,
    PaymentCategory,
    ResolutionOutcome,
    Bill,
    BillAction,
    AcknowledgePaymentRequest,
    ResolveDisputeRequest,
    ClearMemberBlockRequest,
    BillResponse,
    PaymentDetailResponse,
    BillSummary,
)


class BillNotFoundError(NotFoundError):
    pass


ADMIN_OUTCOMES = (
    ResolutionOutcome.DEBTOR_FAULT,
    ResolutionOutcome.CREDITOR_FAULT,
    ResolutionOutcome.BOTH_FAULT,
)


class DisputeService:
    """
    Bill acknowledgment protocol and dispute handling.

    A PENDING bill is paid in two steps: the debtor acknowledges sending the
    money, then the creditor acknowledges receiving it, at which point the
    ledger records the settlement. Bills left unacknowledged past the dispute
    window become DISPUTED and are resolved by an admin or, at month end, by
    the system default action.
    """

    def __init__(
        self,
        storage: InMemoryStorage,
        ledger: LedgerService,
        notifier: Notifier,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = utcnow,
        dispute_after_days: int = 10,
        reminder_after_days: int = 3,
    ):
        self.storage = storage
        self.ledger = ledger
        self.notifier = notifier
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock
        self.dispute_after_days = dispute_after_days
        self.reminder_after_days = reminder_after_days

    # -- notices and reminders --------------------------------------------

    def send_bill_notices(self, now: Optional[datetime] = None) -> BatchResult:
        now = now or self.clock()
        result = BatchResult()
        for bill in self.storage.list_bills(statuses=[BillStatus.PENDING]):
            if bill.notice_sent_at is not None:
                continue
            delivered = self._notify(
                bill.debtor_id, bill, "Payment Due",
                f"You owe {self._name(bill.creditor_id)} {bill.amount_cents} cents for "
                f"{bill.settlement_month}. Please pay and acknowledge in the app.",
                "BILL_NOTICE",
            )
            if not delivered:
                result.record_error("bill", bill.id, RuntimeError("notice delivery failed"))
                continue
            try:
                with self.storage.transaction():
                    bill.notice_sent_at = now
                    self._save(bill, now)
                    self._record_action(bill.id, None, BillActionType.NOTICE_SENT, now)
            except Exception as e:
                self.logger.error("Failed to stamp notice for bill %s: %s", bill.id, e)
                result.record_error("bill", bill.id, e)
                continue
            result.processed += 1
        self.logger.info("Bill notices sent: %d", result.processed)
        return result

    def send_bill_reminders(self, now: Optional[datetime] = None) -> BatchResult:
        now = now or self.clock()
        threshold = now - timedelta(days=self.reminder_after_days)
        result = BatchResult()
        for bill in self.storage.list_bills(statuses=[BillStatus.PENDING]):
            if bill.notice_sent_at is None or bill.notice_sent_at >= threshold:
                continue
            if bill.debtor_acknowledged_at is None:
                delivered = self._notify(
                    bill.debtor_id, bill, "Reminder: Payment Due",
                    f"You have a pending payment of {bill.amount_cents} cents to "
                    f"{self._name(bill.creditor_id)} for {bill.settlement_month}.",
                    "BILL_REMINDER",
                )
            else:
                delivered = self._notify(
                    bill.creditor_id, bill, "Reminder: Confirm Payment Receipt",
                    f"{self._name(bill.debtor_id)} reports paying {bill.amount_cents} cents "
                    f"for {bill.settlement_month}. Please confirm receipt.",
                    "BILL_RECEIPT_REMINDER",
                )
            if delivered:
                result.processed += 1
            else:
                result.record_error("bill", bill.id, RuntimeError("reminder delivery failed"))
        self.logger.info("Bill reminders sent: %d", result.processed)
        return result

    # -- acknowledgment ---------------------------------------------------

    def acknowledge_payment(self, bill_id: UUID, request: AcknowledgePaymentRequest) -> BillResponse:
        bill = self._get_bill(bill_id)
        if not bill.is_party(request.member_id):
            raise UnauthorizedError("Only the debtor or the creditor can acknowledge this bill")
        if bill.status != BillStatus.PENDING:
            raise InvalidStateTransitionError(f"Cannot acknowledge bill in {bill.status.value} state")

        now = self.clock()
        if request.member_id == bill.debtor_id:
            if bill.debtor_acknowledged_at is not None:
                raise InvalidStateTransitionError("Payment already acknowledged by debtor")
            bill.debtor_acknowledged_at = now
            with self.storage.transaction():
                bill = self._save(bill, now)
                action = self._record_action(bill.id, request.member_id, BillActionType.DEBTOR_ACKNOWLEDGED, now)
            self._notify(
                bill.creditor_id, bill, "Payment Sent",
                f"{self._name(bill.debtor_id)} reports sending {bill.amount_cents} cents. "
                "Please confirm receipt.",
                "BILL_DEBTOR_ACKNOWLEDGED",
            )
            message = "Payment acknowledged by debtor"
        else:
            if bill.debtor_acknowledged_at is None:
                raise InvalidStateTransitionError("Debtor must acknowledge payment before the creditor")
            if bill.creditor_acknowledged_at is not None:
                raise InvalidStateTransitionError("Receipt already acknowledged by creditor")
            bill.creditor_acknowledged_at = now
            bill.status = BillStatus.PAID
            bill.resolved_at = now
            bill.resolution_outcome = ResolutionOutcome.GRACEFUL
            with self.storage.transaction():
                self.ledger.record_bill_settlement(bill)
                bill = self._save(bill, now)
                action = self._record_action(bill.id, request.member_id, BillActionType.CREDITOR_ACKNOWLEDGED, now)
            self._notify(
                bill.debtor_id, bill, "Payment Confirmed",
                f"{self._name(bill.creditor_id)} confirmed receipt of {bill.amount_cents} cents.",
                "BILL_PAID",
            )
            message = "Payment confirmed by creditor"

        self.logger.info("Bill %s acknowledged by %s", bill.id, request.member_id)
        return BillResponse(bill=bill, action=action, message=message)

    # -- disputes ---------------------------------------------------------

    def check_overdue_bills(self, now: Optional[datetime] = None) -> BatchResult:
        """Open a dispute on every PENDING bill whose notice is past the dispute window."""
        now = now or self.clock()
        threshold = now - timedelta(days=self.dispute_after_days)
        result = BatchResult()
        for bill in self.storage.list_bills(statuses=[BillStatus.PENDING]):
            if bill.notice_sent_at is None or bill.notice_sent_at >= threshold:
                continue
            reason = (
                DisputeReason.DEBTOR_NO_ACK if bill.debtor_acknowledged_at is None
                else DisputeReason.CREDITOR_NO_ACK
            )
            try:
                with self.storage.transaction():
                    bill.status = BillStatus.DISPUTED
                    bill.disputed_at = now
                    bill.dispute_reason = reason
                    bill = self._save(bill, now)
                    self._record_action(
                        bill.id, None, BillActionType.DISPUTE_OPENED, now,
                        details={"reason": reason.value},
                    )
            except Exception as e:
                self.logger.error("Failed to open dispute for bill %s: %s", bill.id, e)
                result.record_error("bill", bill.id, e)
                continue
            result.processed += 1
            for recipient in (bill.debtor_id, bill.creditor_id):
                self._notify(
                    recipient, bill, "Bill Disputed",
                    f"The {bill.settlement_month} bill of {bill.amount_cents} cents was not "
                    f"settled within {self.dispute_after_days} days and is now in dispute.",
                    "BILL_DISPUTED",
                    reason=reason.value,
                )
        self.logger.info("Bills moved to dispute: %d", result.processed)
        return result

    def resolve_dispute(self, bill_id: UUID, request: ResolveDisputeRequest) -> BillResponse:
        bill = self._get_bill(bill_id)
        self._require_admin(request.admin_id, bill.org_id)
        if bill.is_party(request.admin_id):
            raise UnauthorizedError("Admins cannot resolve disputes they are a party to")
        if bill.status != BillStatus.DISPUTED:
            raise InvalidStateTransitionError(f"Cannot resolve bill in {bill.status.value} state")
        if request.outcome not in ADMIN_OUTCOMES:
            raise InvalidRequestError(f"Unsupported resolution outcome {request.outcome.value}")

        now = self.clock()
        outcome = request.outcome
        reason = f"Dispute resolved as {outcome.value} for {bill.settlement_month} bill"

        bill.status = BillStatus.ADMIN_RESOLVED
        bill.resolution_outcome = outcome
        bill.resolution_notes = request.notes
        bill.resolved_at = now

        with self.storage.transaction():
            if outcome == ResolutionOutcome.DEBTOR_FAULT:
                self.ledger.record_bill_settlement(bill)
                self._block(bill.debtor_id, bill, reason, renting=True)
            elif outcome == ResolutionOutcome.CREDITOR_FAULT:
                self.ledger.record_penalty(bill.creditor_id, bill, reason)
                self._block(bill.creditor_id, bill, reason, lending=True)
            else:
                self.ledger.record_penalty(bill.debtor_id, bill, reason)
                self.ledger.record_penalty(bill.creditor_id, bill, reason)
                self._block(bill.debtor_id, bill, reason, renting=True)
                self._block(bill.creditor_id, bill, reason, lending=True)
            bill = self._save(bill, now)
            action = self._record_action(
                bill.id, request.admin_id, BillActionType.ADMIN_RESOLUTION, now,
                details={"outcome": outcome.value}, notes=request.notes,
            )

        self.logger.info(
            "Dispute on bill %s resolved by admin %s: %s", bill.id, request.admin_id, outcome.value
        )
        for recipient in (bill.debtor_id, bill.creditor_id):
            self._notify(
                recipient, bill, "Dispute Resolved",
                f"An admin resolved the {bill.settlement_month} dispute as {outcome.value}.",
                "BILL_DISPUTE_RESOLVED",
                outcome=outcome.value,
            )
        return BillResponse(bill=bill, action=action, message="Dispute resolved")

    def auto_resolve_disputed_bills(
        self,
        org_id: Optional[UUID] = None,
        cutoff_month: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BatchResult:
        """
        Month-end default action for disputes no admin has handled.

        Every DISPUTED bill settled in or before ``cutoff_month`` ends as
        SYSTEM_DEFAULT_ACTION with outcome BOTH_FAULT: the debtor is blocked
        from renting and the creditor from lending. No money moves.
        """
        now = now or self.clock()
        cutoff = cutoff_month or month_of(now.date())
        result = BatchResult(details={"cutoff_month": cutoff})

        for bill in self.storage.list_bills(org_id=org_id, statuses=[BillStatus.DISPUTED]):
            if bill.settlement_month > cutoff:
                continue
            reason = f"Unresolved dispute on {bill.settlement_month} bill"
            try:
                with self.storage.transaction():
                    bill.status = BillStatus.SYSTEM_DEFAULT_ACTION
                    bill.resolution_outcome = ResolutionOutcome.BOTH_FAULT
                    bill.resolution_notes = "Automatically resolved at month end"
                    bill.resolved_at = now
                    self._block(bill.debtor_id, bill, reason, renting=True)
                    self._block(bill.creditor_id, bill, reason, lending=True)
                    bill = self._save(bill, now)
                    self._record_action(
                        bill.id, None, BillActionType.SYSTEM_AUTO_RESOLVE, now,
                        details={"outcome": ResolutionOutcome.BOTH_FAULT.value},
                    )
            except Exception as e:
                self.logger.error("Failed to auto-resolve bill %s: %s", bill.id, e)
                result.record_error("bill", bill.id, e)
                continue
            result.processed += 1
            for recipient in (bill.debtor_id, bill.creditor_id):
                self._notify(
                    recipient, bill, "Dispute Closed by System",
                    f"The {bill.settlement_month} dispute was not resolved by an admin. "
                    "Your account has been restricted.",
                    "BILL_AUTO_RESOLVED",
                )
        self.logger.info("Auto-resolved %d disputed bills up to %s", result.processed, cutoff)
        return result

    def clear_member_block(self, request: ClearMemberBlockRequest) -> MemberOrgBalance:
        self._require_admin(request.admin_id, request.org_id)
        membership = self._get_membership(request.member_id, request.org_id)

        if request.clear_renting:
            membership.renting_blocked = False
        if request.clear_lending:
            membership.lending_blocked = False
        if not membership.renting_blocked and not membership.lending_blocked:
            membership.blocked_due_to_bill_id = None
            membership.bill_block_reason = None
        membership = self.storage.update_membership(membership)

        self.logger.info(
            "Admin %s cleared blocks for member %s in org %s (renting=%s lending=%s)",
            request.admin_id, request.member_id, request.org_id,
            request.clear_renting, request.clear_lending,
        )
        return membership

    # -- queries ----------------------------------------------------------

    def list_payments(
        self, member_id: UUID, org_id: Optional[UUID] = None, show_history: bool = False
    ) -> list[Bill]:
        statuses = None if show_history else ACTIVE_BILL_STATUSES
        return self.storage.list_bills(org_id=org_id, member_id=member_id, statuses=statuses)

    def get_payment_detail(self, member_id: UUID, bill_id: UUID) -> PaymentDetailResponse:
        bill = self._get_bill(bill_id)
        if not bill.is_party(member_id):
            membership = self.storage.get_membership(member_id, bill.org_id)
            if membership is None or not membership.is_admin():
                raise UnauthorizedError("Only bill parties or org admins can view this bill")
        return PaymentDetailResponse(
            bill=bill,
            actions=self.storage.list_bill_actions(bill.id),
            can_acknowledge=bill.can_acknowledge(member_id),
        )

    def get_bill_summary(self, member_id: UUID) -> BillSummary:
        summary = BillSummary(member_id=member_id)
        for bill in self.storage.list_bills(member_id=member_id, statuses=ACTIVE_BILL_STATUSES):
            category = bill.payment_category(member_id)
            if category == PaymentCategory.PAYMENT_TO_MAKE:
                summary.payments_to_make += 1
            elif category == PaymentCategory.RECEIPT_TO_VERIFY:
                summary.receipts_to_verify += 1
            elif category == PaymentCategory.PAYMENT_IN_DISPUTE:
                summary.payments_in_dispute += 1
            elif category == PaymentCategory.RECEIPT_IN_DISPUTE:
                summary.receipts_in_dispute += 1
        return summary

    def list_disputed_bills(self, admin_id: UUID, org_id: UUID) -> list[Bill]:
        self._require_admin(admin_id, org_id)
        return [
            b for b in self.storage.list_bills(org_id=org_id, statuses=[BillStatus.DISPUTED])
            if not b.is_party(admin_id)
        ]

    def list_resolved_disputes(self, admin_id: UUID, org_id: UUID) -> list[Bill]:
        self._require_admin(admin_id, org_id)
        return self.storage.list_bills(
            org_id=org_id,
            statuses=[BillStatus.ADMIN_RESOLVED, BillStatus.SYSTEM_DEFAULT_ACTION],
        )

    # -- helpers ----------------------------------------------------------

    def _get_bill(self, bill_id: UUID) -> Bill:
        bill = self.storage.get_bill(bill_id)
        if bill is None:
            raise BillNotFoundError(f"Bill {bill_id} not found")
        return bill

    def _get_membership(self, member_id: UUID, org_id: UUID) -> MemberOrgBalance:
        membership = self.storage.get_membership(member_id, org_id)
        if membership is None:
            raise NotFoundError(f"Member {member_id} is not part of org {org_id}")
        return membership

    def _require_admin(self, admin_id: UUID, org_id: UUID) -> None:
        membership = self.storage.get_membership(admin_id, org_id)
        if membership is None or not membership.is_admin():
            raise UnauthorizedError("Admin privileges required")

    def _block(self, member_id: UUID, bill: Bill, reason: str, renting: bool = False, lending: bool = False) -> None:
        membership = self._get_membership(member_id, bill.org_id)
        if renting:
            membership.renting_blocked = True
        if lending:
            membership.lending_blocked = True
        membership.blocked_due_to_bill_id = bill.id
        membership.bill_block_reason = reason
        self.storage.update_membership(membership)
        self.logger.info(
            "Blocked member %s in org %s (renting=%s lending=%s) for bill %s",
            member_id, bill.org_id, renting, lending, bill.id,
        )

    def _save(self, bill: Bill, now: datetime) -> Bill:
        bill.updated_at = now
        return self.storage.update_bill(bill)

    def _record_action(
        self,
        bill_id: UUID,
        actor_id: Optional[UUID],
        action_type: BillActionType,
        now: datetime,
        details: Optional[dict[str, Any]] = None,
        notes: Optional[str] = None,
    ) -> BillAction:
        return self.storage.create_bill_action(BillAction(
            id=uuid4(),
            bill_id=bill_id,
            actor_id=actor_id,
            action_type=action_type,
            details=details or {},
            notes=notes,
            created_at=now,
        ))

    def _name(self, member_id: UUID) -> str:
        member = self.storage.get_member(member_id)
        return member.name if member else str(member_id)

    def _notify(self, recipient_id: UUID, bill: Bill, title: str, message: str, kind: str, **attributes) -> bool:
        notification = Notification(
            recipient_id=recipient_id,
            org_id=bill.org_id,
            title=title,
            message=message,
            attributes={"type": kind, "bill_id": str(bill.id), **attributes},
        )
        return dispatch(self.notifier, self.logger, notification)
