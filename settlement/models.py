from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class BillStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    DISPUTED = "DISPUTED"
    ADMIN_RESOLVED = "ADMIN_RESOLVED"
    SYSTEM_DEFAULT_ACTION = "SYSTEM_DEFAULT_ACTION"


ACTIVE_BILL_STATUSES = (BillStatus.PENDING, BillStatus.DISPUTED)
CLOSED_BILL_STATUSES = (BillStatus.PAID, BillStatus.ADMIN_RESOLVED, BillStatus.SYSTEM_DEFAULT_ACTION)


class DisputeReason(str, Enum):
    DEBTOR_NO_ACK = "DEBTOR_NO_ACK"
    CREDITOR_NO_ACK = "CREDITOR_NO_ACK"


class ResolutionOutcome(str, Enum):
    GRACEFUL = "GRACEFUL"
    DEBTOR_FAULT = "DEBTOR_FAULT"
    CREDITOR_FAULT = "CREDITOR_FAULT"
    BOTH_FAULT = "BOTH_FAULT"


class BillActionType(str, Enum):
    NOTICE_SENT = "NOTICE_SENT"
    DEBTOR_ACKNOWLEDGED = "DEBTOR_ACKNOWLEDGED"
    CREDITOR_ACKNOWLEDGED = "CREDITOR_ACKNOWLEDGED"
    DISPUTE_OPENED = "DISPUTE_OPENED"
    ADMIN_RESOLUTION = "ADMIN_RESOLUTION"
    SYSTEM_AUTO_RESOLVE = "SYSTEM_AUTO_RESOLVE"


class PaymentCategory(str, Enum):
    PAYMENT_TO_MAKE = "PAYMENT_TO_MAKE"
    RECEIPT_TO_VERIFY = "RECEIPT_TO_VERIFY"
    PAYMENT_IN_DISPUTE = "PAYMENT_IN_DISPUTE"
    RECEIPT_IN_DISPUTE = "RECEIPT_IN_DISPUTE"
    COMPLETED = "COMPLETED"


class BalanceSnapshot(BaseModel):
    member_id: UUID
    org_id: UUID
    settlement_month: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    balance_cents: int
    snapshot_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Bill(BaseModel):
    id: UUID
    org_id: UUID
    debtor_id: UUID
    creditor_id: UUID
    amount_cents: int = Field(..., gt=0)
    settlement_month: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    status: BillStatus = BillStatus.PENDING
    notice_sent_at: Optional[datetime] = None
    debtor_acknowledged_at: Optional[datetime] = None
    creditor_acknowledged_at: Optional[datetime] = None
    disputed_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    dispute_reason: Optional[DisputeReason] = None
    resolution_outcome: Optional[ResolutionOutcome] = None
    resolution_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def is_party(self, member_id: UUID) -> bool:
        return member_id in (self.debtor_id, self.creditor_id)

    def payment_category(self, member_id: UUID) -> PaymentCategory:
        is_debtor = self.debtor_id == member_id
        is_creditor = self.creditor_id == member_id

        if self.status == BillStatus.PENDING:
            if is_debtor and self.debtor_acknowledged_at is None:
                return PaymentCategory.PAYMENT_TO_MAKE
            if is_creditor and self.debtor_acknowledged_at is not None:
                return PaymentCategory.RECEIPT_TO_VERIFY
        elif self.status == BillStatus.DISPUTED:
            if is_debtor:
                return PaymentCategory.PAYMENT_IN_DISPUTE
            if is_creditor:
                return PaymentCategory.RECEIPT_IN_DISPUTE
        return PaymentCategory.COMPLETED

    def can_acknowledge(self, member_id: UUID) -> bool:
        if self.status != BillStatus.PENDING:
            return False
        if member_id == self.debtor_id:
            return self.debtor_acknowledged_at is None
        if member_id == self.creditor_id:
            return self.debtor_acknowledged_at is not None and self.creditor_acknowledged_at is None
        return False


class BillAction(BaseModel):
    id: UUID
    bill_id: UUID
    actor_id: Optional[UUID] = Field(None, description="None for system actions")
    action_type: BillActionType
    details: dict[str, Any] = Field(default_factory=dict)
    notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AcknowledgePaymentRequest(BaseModel):
    member_id: UUID


class ResolveDisputeRequest(BaseModel):
    admin_id: UUID
    outcome: ResolutionOutcome
    notes: Optional[str] = None


class ClearMemberBlockRequest(BaseModel):
    admin_id: UUID
    member_id: UUID
    org_id: UUID
    clear_renting: bool = True
    clear_lending: bool = True


class BillResponse(BaseModel):
    bill: Bill
    action: Optional[BillAction] = None
    message: str


class PaymentDetailResponse(BaseModel):
    bill: Bill
    actions: list[BillAction]
    can_acknowledge: bool


class BillSummary(BaseModel):
    member_id: UUID
    payments_to_make: int = 0
    receipts_to_verify: int = 0
    payments_in_dispute: int = 0
    receipts_in_dispute: int = 0


class SnapshotResult(BaseModel):
    settlement_month: str
    created: int
    skipped: int
