from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class TransactionType(str, Enum):
    LENDING_CREDIT = "LENDING_CREDIT"
    RENTAL_DEBIT = "RENTAL_DEBIT"
    SETTLEMENT_CREDIT = "SETTLEMENT_CREDIT"
    SETTLEMENT_DEBIT = "SETTLEMENT_DEBIT"
    PENALTY = "PENALTY"
    ADJUSTMENT = "ADJUSTMENT"


class MemberRole(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class MembershipStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    BLOCKED = "BLOCKED"


class Organization(BaseModel):
    id: UUID
    name: str

    model_config = ConfigDict(from_attributes=True)


class Member(BaseModel):
    id: UUID
    name: str
    email: str

    model_config = ConfigDict(from_attributes=True)


class MemberOrgBalance(BaseModel):
    """Membership row: role, block flags and the cached balance for one member in one org."""
    member_id: UUID
    org_id: UUID
    role: MemberRole = MemberRole.MEMBER
    status: MembershipStatus = MembershipStatus.ACTIVE
    balance_cents: int = 0
    last_balance_update_on: Optional[date] = None
    renting_blocked: bool = False
    lending_blocked: bool = False
    blocked_due_to_bill_id: Optional[UUID] = None
    bill_block_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    def is_admin(self) -> bool:
        return self.role in (MemberRole.ADMIN, MemberRole.SUPER_ADMIN)

    def is_active(self) -> bool:
        return self.status == MembershipStatus.ACTIVE


class LedgerTransaction(BaseModel):
    id: UUID
    org_id: UUID
    member_id: UUID
    amount_cents: int = Field(..., description="Positive for credit, negative for debit")
    type: TransactionType
    related_rental_id: Optional[UUID] = None
    related_bill_id: Optional[UUID] = None
    description: str
    charged_on: date
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AdjustBalanceRequest(BaseModel):
    admin_id: UUID
    member_id: UUID
    org_id: UUID
    amount_cents: int = Field(..., description="Signed adjustment in cents")
    reason: str = Field(..., min_length=1)


class MemberBalance(BaseModel):
    member_id: UUID
    org_id: UUID
    balance_cents: int
    last_balance_update_on: Optional[date] = None

    model_config = ConfigDict(from_attributes=True)


class LedgerHistoryResponse(BaseModel):
    member_id: UUID
    org_id: UUID
    entries: list[LedgerTransaction]
    total_count: int
    balance_cents: int


class ReconciliationReport(BaseModel):
    member_id: UUID
    org_id: UUID
    cached_balance_cents: int
    ledger_balance_cents: int
    entry_count: int

    @property
    def is_consistent(self) -> bool:
        return self.cached_balance_cents == self.ledger_balance_cents
