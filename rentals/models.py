from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict

from ledger.models import LedgerTransaction


class RentalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SCHEDULED = "SCHEDULED"
    ACTIVE = "ACTIVE"
    OVERDUE = "OVERDUE"
    RETURN_DATE_CHANGED = "RETURN_DATE_CHANGED"
    RETURN_DATE_CHANGE_REJECTED = "RETURN_DATE_CHANGE_REJECTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


PRE_PICKUP_STATUSES = (RentalStatus.PENDING, RentalStatus.APPROVED, RentalStatus.SCHEDULED)
IN_PROGRESS_STATUSES = (RentalStatus.ACTIVE, RentalStatus.OVERDUE)
NEGOTIATION_STATUSES = (RentalStatus.RETURN_DATE_CHANGED, RentalStatus.RETURN_DATE_CHANGE_REJECTED)
TERMINAL_STATUSES = (RentalStatus.COMPLETED, RentalStatus.REJECTED, RentalStatus.CANCELLED)


class ToolStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    UNAVAILABLE = "UNAVAILABLE"
    RENTED = "RENTED"


class Tool(BaseModel):
    id: UUID
    org_id: UUID
    owner_id: UUID
    name: str
    price_per_day_cents: int = Field(..., ge=0)
    status: ToolStatus = ToolStatus.AVAILABLE

    model_config = ConfigDict(from_attributes=True)


class Rental(BaseModel):
    id: UUID
    org_id: UUID
    tool_id: UUID
    renter_id: UUID
    owner_id: UUID
    status: RentalStatus
    start_date: date
    scheduled_end_date: date
    last_agreed_end_date: Optional[date] = None
    requested_end_date: Optional[date] = None
    actual_return_date: Optional[date] = None
    total_cost_cents: int
    pickup_note: Optional[str] = None
    rejection_reason: Optional[str] = None
    cancel_reason: Optional[str] = None
    return_condition: Optional[str] = None
    surcharge_or_credit_cents: int = 0
    completed_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def current_end_date(self) -> date:
        """End date the current cost is computed against."""
        if self.status in NEGOTIATION_STATUSES and self.requested_end_date is not None:
            return self.requested_end_date
        return self.scheduled_end_date

    def is_party(self, member_id: UUID) -> bool:
        return member_id in (self.renter_id, self.owner_id)

    def can_cancel(self) -> bool:
        return self.status in PRE_PICKUP_STATUSES

    def can_complete(self) -> bool:
        return self.status in IN_PROGRESS_STATUSES


class CreateRentalRequest(BaseModel):
    renter_id: UUID
    tool_id: UUID
    start_date: date
    end_date: date

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "renter_id": "550e8400-e29b-41d4-a716-446655440000",
            "tool_id": "11111111-1111-1111-1111-111111111111",
            "start_date": "2024-01-02",
            "end_date": "2024-01-04",
        }
    })


class ApproveRentalRequest(BaseModel):
    owner_id: UUID
    pickup_note: Optional[str] = None


class RejectRentalRequest(BaseModel):
    owner_id: UUID
    reason: Optional[str] = None


class CancelRentalRequest(BaseModel):
    renter_id: UUID
    reason: Optional[str] = None


class FinalizeRentalRequest(BaseModel):
    renter_id: UUID


class ActivateRentalRequest(BaseModel):
    member_id: UUID = Field(..., description="Owner or renter confirming pickup")


class ChangeRentalDatesRequest(BaseModel):
    member_id: UUID
    new_start_date: Optional[date] = None
    new_end_date: Optional[date] = None


class ApproveReturnDateChangeRequest(BaseModel):
    owner_id: UUID


class RejectReturnDateChangeRequest(BaseModel):
    owner_id: UUID
    reason: Optional[str] = None
    new_end_date: Optional[date] = Field(None, description="Mandatory counter-proposal")


class RenterActionRequest(BaseModel):
    renter_id: UUID


class CompleteRentalRequest(BaseModel):
    owner_id: UUID
    return_condition: Optional[str] = None
    surcharge_or_credit_cents: int = Field(0, description="Positive surcharge or negative credit")


class RentalResponse(BaseModel):
    rental: Rental
    ledger_entries: list[LedgerTransaction] = Field(default_factory=list)
    message: str


class FinalizeRentalResponse(RentalResponse):
    approved_requests: list[Rental] = Field(default_factory=list)
    pending_requests: list[Rental] = Field(default_factory=list)


class RentalListResponse(BaseModel):
    rentals: list[Rental]
    total_count: int
