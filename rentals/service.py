import logging
from datetime import date, datetime
from typing import Callable, Iterable, Optional
from uuid import UUID, uuid4

from common.batch import BatchResult
from common.dates import is_past, utcnow
from common.errors import (
    InvalidRequestError,
    InvalidStateTransitionError,
    MemberBlockedError,
    NotFoundError,
    UnauthorizedError,
)
from common.notifications import Notification, Notifier, dispatch
from common.storage import InMemoryStorage
from ledger.service import LedgerService

from .models import (
    PRE_PICKUP_STATUSES,
    IN_PROGRESS_STATUSES,
    RentalStatus,
    ToolStatus,
    Rental,
    Tool,
    CreateRentalRequest,
    ApproveRentalRequest,
    RejectRentalRequest,
    CancelRentalRequest,
    FinalizeRentalRequest,
    ActivateRentalRequest,
    ChangeRentalDatesRequest,
    ApproveReturnDateChangeRequest,
    RejectReturnDateChangeRequest,
    RenterActionRequest,
    CompleteRentalRequest,
    RentalResponse,
    FinalizeRentalResponse,
    RentalListResponse,
)
from .pricing import rental_cost


class RentalNotFoundError(NotFoundError):
    pass


class ToolNotFoundError(NotFoundError):
    pass


class RentalService:
    """Rental lifecycle from request to completion.

    Every transition loads the rental, checks the caller, checks the current
    status, validates input, and only then mutates a copy and persists it.
    Any failure before the write leaves the stored rental untouched.
    """

    def __init__(
        self,
        storage: InMemoryStorage,
        ledger: LedgerService,
        notifier: Notifier,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.ledger = ledger
        self.notifier = notifier
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock

    # -- request and approval ---------------------------------------------

    def create_rental_request(self, request: CreateRentalRequest) -> RentalResponse:
        tool = self._get_tool(request.tool_id)

        renter_membership = self.storage.get_membership(request.renter_id, tool.org_id)
        if renter_membership is None or not renter_membership.is_active():
            raise UnauthorizedError(f"Member {request.renter_id} is not an active member of this organization")
        if request.renter_id == tool.owner_id:
            raise InvalidRequestError("Owners cannot rent their own tools")
        if renter_membership.renting_blocked:
            raise MemberBlockedError(
                renter_membership.bill_block_reason or "Member is blocked from renting"
            )
        owner_membership = self.storage.get_membership(tool.owner_id, tool.org_id)
        if owner_membership is not None and owner_membership.lending_blocked:
            raise MemberBlockedError("Tool owner is currently blocked from lending")
        if tool.status == ToolStatus.UNAVAILABLE:
            raise InvalidStateTransitionError(f"Tool {tool.name} is not available for rent")

        total_cost = rental_cost(request.start_date, request.end_date, tool.price_per_day_cents)

        now = self.clock()
        rental = Rental(
            id=uuid4(),
            org_id=tool.org_id,
            tool_id=tool.id,
            renter_id=request.renter_id,
            owner_id=tool.owner_id,
            status=RentalStatus.PENDING,
            start_date=request.start_date,
            scheduled_end_date=request.end_date,
            total_cost_cents=total_cost,
            created_at=now,
            updated_at=now,
        )
        rental = self.storage.create_rental(rental)
        self.logger.info(
            "Rental requested rental_id=%s tool_id=%s renter_id=%s total_cost_cents=%d",
            rental.id, tool.id, request.renter_id, total_cost,
        )

        self._notify(
            rental.owner_id, rental, "New Rental Request",
            f"{self._name(request.renter_id)} requested to rent {tool.name}",
            "RENTAL_REQUEST",
        )
        return RentalResponse(rental=rental, message="Rental request created")

    def approve_rental_request(self, rental_id: UUID, request: ApproveRentalRequest) -> RentalResponse:
        rental = self._get_rental(rental_id)
        self._require_owner(rental, request.owner_id)
        self._require_status(rental, "approve", RentalStatus.PENDING)

        rental.status = RentalStatus.APPROVED
        rental.pickup_note = request.pickup_note
        rental = self._save(rental)

        self._notify(
            rental.renter_id, rental, "Rental Approved",
            f"Your rental request for {self._tool_name(rental)} was approved",
            "RENTAL_APPROVED",
        )
        return RentalResponse(rental=rental, message="Rental request approved")

    def reject_rental_request(self, rental_id: UUID, request: RejectRentalRequest) -> RentalResponse:
        rental = self._get_rental(rental_id)
        self._require_owner(rental, request.owner_id)
        self._require_status(rental, "reject", RentalStatus.PENDING)

        rental.status = RentalStatus.REJECTED
        rental.rejection_reason = request.reason
        rental = self._save(rental)

        self._notify(
            rental.renter_id, rental, "Rental Rejected",
            f"Your rental request for {self._tool_name(rental)} was rejected",
            "RENTAL_REJECTED",
        )
        return RentalResponse(rental=rental, message="Rental request rejected")

    def cancel_rental(self, rental_id: UUID, request: CancelRentalRequest) -> RentalResponse:
        rental = self._get_rental(rental_id)
        self._require_renter(rental, request.renter_id)
        if not rental.can_cancel():
            raise InvalidStateTransitionError(f"Cannot cancel rental in {rental.status.value} state")

        was_scheduled = rental.status == RentalStatus.SCHEDULED
        rental.status = RentalStatus.CANCELLED
        rental.cancel_reason = request.reason

        with self.storage.transaction():
            rental = self._save(rental)
            if was_scheduled:
                self._set_tool_status(rental.tool_id, ToolStatus.AVAILABLE)

        self._notify(
            rental.owner_id, rental, "Rental Cancelled",
            f"{self._name(rental.renter_id)} cancelled the rental of {self._tool_name(rental)}",
            "RENTAL_CANCELLED",
            reason=request.reason or "",
        )
        return RentalResponse(rental=rental, message="Rental cancelled")

    def finalize_rental_request(self, rental_id: UUID, request: FinalizeRentalRequest) -> FinalizeRentalResponse:
        rental = self._get_rental(rental_id)
        self._require_renter(rental, request.renter_id)
        self._require_status(rental, "finalize", RentalStatus.APPROVED)

        rental.status = RentalStatus.SCHEDULED
        rental.last_agreed_end_date = rental.scheduled_end_date

        with self.storage.transaction():
            rental = self._save(rental)
            self._set_tool_status(rental.tool_id, ToolStatus.RENTED)

        self._notify(
            rental.owner_id, rental, "Rental Confirmed",
            f"{self._name(rental.renter_id)} confirmed the rental of {self._tool_name(rental)}",
            "RENTAL_CONFIRMED",
        )

        others = [r for r in self.storage.list_rentals(tool_id=rental.tool_id) if r.id != rental.id]
        return FinalizeRentalResponse(
            rental=rental,
            message="Rental scheduled",
            approved_requests=[r for r in others if r.status == RentalStatus.APPROVED],
            pending_requests=[r for r in others if r.status == RentalStatus.PENDING],
        )

    def activate_rental(self, rental_id: UUID, request: ActivateRentalRequest) -> RentalResponse:
        rental = self._get_rental(rental_id)
        if not rental.is_party(request.member_id):
            raise UnauthorizedError("Only the owner or the renter can confirm pickup")
        self._require_status(rental, "activate", RentalStatus.SCHEDULED)

        rental.status = RentalStatus.ACTIVE
        rental = self._save(rental)

        other_id = rental.owner_id if request.member_id == rental.renter_id else rental.renter_id
        self._notify(
            other_id, rental, "Rental Picked Up",
            f"Rental of {self._tool_name(rental)} has been picked up "
            f"({rental.start_date.isoformat()} to {rental.scheduled_end_date.isoformat()})",
            "RENTAL_PICKUP",
        )
        return RentalResponse(rental=rental, message="Rental is active")

    # -- date changes and return-date negotiation -------------------------

    def change_rental_dates(self, rental_id: UUID, request: ChangeRentalDatesRequest) -> RentalResponse:
        rental = self._get_rental(rental_id)
        if not rental.is_party(request.member_id):
            raise UnauthorizedError("Only the owner or the renter can change rental dates")
        is_renter = request.member_id == rental.renter_id

        price = self._get_tool(rental.tool_id).price_per_day_cents
        was_scheduled = rental.status == RentalStatus.SCHEDULED

        if rental.status in PRE_PICKUP_STATUSES:
            if request.new_start_date is None and request.new_end_date is None:
                raise InvalidRequestError("A new start date or end date is required")
            new_start = request.new_start_date or rental.start_date
            new_end = request.new_end_date or rental.scheduled_end_date
            rental.total_cost_cents = rental_cost(new_start, new_end, price)
            rental.start_date = new_start
            rental.scheduled_end_date = new_end
            if is_renter:
                rental.status = RentalStatus.PENDING
                recipient, title, message = (
                    rental.owner_id, "Rental Dates Changed",
                    f"Renter changed dates for {self._tool_name(rental)}. Please re-approve.",
                )
            else:
                rental.status = RentalStatus.APPROVED
                recipient, title, message = (
                    rental.renter_id, "Rental Dates Updated",
                    f"Owner updated dates for {self._tool_name(rental)}. Please confirm.",
                )
            kind = "RENTAL_DATE_CHANGE"

        elif is_renter and rental.status in IN_PROGRESS_STATUSES + (RentalStatus.RETURN_DATE_CHANGED,):
            new_end = self._validate_extension(rental, request)
            rental.total_cost_cents = rental_cost(rental.start_date, new_end, price)
            if rental.last_agreed_end_date is None:
                rental.last_agreed_end_date = rental.scheduled_end_date
            updating = rental.status == RentalStatus.RETURN_DATE_CHANGED
            rental.requested_end_date = new_end
            rental.status = RentalStatus.RETURN_DATE_CHANGED
            recipient = rental.owner_id
            if updating:
                title, kind = "Extension Request Updated", "RETURN_DATE_CHANGE_REQUEST_UPDATED"
                message = f"Renter updated their extension request for {self._tool_name(rental)} to {new_end.isoformat()}."
            else:
                title, kind = "Return Date Extension Request", "RETURN_DATE_CHANGE_REQUEST"
                message = f"Renter requests to extend return date for {self._tool_name(rental)} to {new_end.isoformat()}."

        else:
            raise InvalidStateTransitionError(
                f"Cannot change dates of a {rental.status.value} rental as the "
                f"{'renter' if is_renter else 'owner'}"
            )

        with self.storage.transaction():
            rental = self._save(rental)
            # back to negotiation, so the tool is no longer held
            if was_scheduled:
                self._set_tool_status(rental.tool_id, ToolStatus.AVAILABLE)
        self._notify(recipient, rental, title, message, kind)
        return RentalResponse(rental=rental, message="Rental dates changed")

    def approve_return_date_change(self, rental_id: UUID, request: ApproveReturnDateChangeRequest) -> RentalResponse:
        rental = self._get_rental(rental_id)
        self._require_owner(rental, request.owner_id)
        self._require_status(rental, "approve the return date change of", RentalStatus.RETURN_DATE_CHANGED)

        agreed = rental.requested_end_date
        price = self._get_tool(rental.tool_id).price_per_day_cents
        rental.scheduled_end_date = agreed
        rental.last_agreed_end_date = agreed
        rental.requested_end_date = None
        rental.total_cost_cents = rental_cost(rental.start_date, agreed, price)
        rental.status = self._resume_status(agreed)
        rental = self._save(rental)

        self._notify(
            rental.renter_id, rental, "Extension Approved",
            f"Extension for {self._tool_name(rental)} approved until {agreed.isoformat()}.",
            "RETURN_DATE_CHANGE_APPROVED",
        )
        return RentalResponse(rental=rental, message="Return date change approved")

    def reject_return_date_change(self, rental_id: UUID, request: RejectReturnDateChangeRequest) -> RentalResponse:
        rental = self._get_rental(rental_id)
        self._require_owner(rental, request.owner_id)
        self._require_status(rental, "reject the return date change of", RentalStatus.RETURN_DATE_CHANGED)

        if request.new_end_date is None:
            raise InvalidRequestError("A counter-proposal end date is required")
        if request.new_end_date == rental.requested_end_date:
            raise InvalidRequestError("New end date must be different from the requested date")
        price = self._get_tool(rental.tool_id).price_per_day_cents
        new_cost = rental_cost(rental.start_date, request.new_end_date, price)

        rental.status = RentalStatus.RETURN_DATE_CHANGE_REJECTED
        rental.rejection_reason = request.reason
        rental.requested_end_date = request.new_end_date
        rental.total_cost_cents = new_cost
        rental = self._save(rental)

        self._notify(
            rental.renter_id, rental, "Extension Rejected - Counter-Proposal",
            f"Extension for {self._tool_name(rental)} rejected. Owner proposed return date "
            f"{request.new_end_date.isoformat()}. Reason: {request.reason or 'n/a'}",
            "RETURN_DATE_CHANGE_REJECTED",
            new_end_date=request.new_end_date.isoformat(),
            total_cost_cents=str(new_cost),
        )
        return RentalResponse(rental=rental, message="Return date change rejected")

    def acknowledge_return_date_rejection(self, rental_id: UUID, request: RenterActionRequest) -> RentalResponse:
        rental = self._get_rental(rental_id)
        self._require_renter(rental, request.renter_id)
        self._require_status(rental, "acknowledge the rejection of", RentalStatus.RETURN_DATE_CHANGE_REJECTED)

        self._revert_to_agreed_terms(rental)
        rental.rejection_reason = None
        rental = self._save(rental)

        self._notify(
            rental.owner_id, rental, "Rejection Acknowledged",
            "Renter acknowledged the extension rejection.",
            "RETURN_DATE_REJECTION_ACKNOWLEDGED",
        )
        return RentalResponse(rental=rental, message="Return date rejection acknowledged")

    def cancel_return_date_change(self, rental_id: UUID, request: RenterActionRequest) -> RentalResponse:
        rental = self._get_rental(rental_id)
        self._require_renter(rental, request.renter_id)
        self._require_status(rental, "cancel the return date change of", RentalStatus.RETURN_DATE_CHANGED)

        self._revert_to_agreed_terms(rental)
        rental = self._save(rental)

        self._notify(
            rental.owner_id, rental, "Extension Request Cancelled",
            "Renter cancelled the extension request.",
            "RETURN_DATE_CHANGE_CANCELLED",
        )
        return RentalResponse(rental=rental, message="Return date change cancelled")

    # -- completion -------------------------------------------------------

    def complete_rental(self, rental_id: UUID, request: CompleteRentalRequest) -> RentalResponse:
        rental = self._get_rental(rental_id)
        self._require_owner(rental, request.owner_id)
        if not rental.can_complete():
            raise InvalidStateTransitionError(f"Cannot complete rental in {rental.status.value} state")

        settlement = rental.total_cost_cents + request.surcharge_or_credit_cents
        if settlement < 0:
            raise InvalidRequestError(
                f"Credit of {-request.surcharge_or_credit_cents} cents exceeds the rental cost"
            )

        rental.return_condition = request.return_condition
        rental.surcharge_or_credit_cents = request.surcharge_or_credit_cents
        rental.actual_return_date = self._today()
        rental.completed_by = request.owner_id
        rental.status = RentalStatus.COMPLETED

        with self.storage.transaction():
            entries = self.ledger.record_rental_settlement(rental, settlement)
            rental = self._save(rental)
            self._set_tool_status(rental.tool_id, ToolStatus.AVAILABLE)

        self.logger.info(
            "Rental completed rental_id=%s settlement_cents=%d", rental.id, settlement
        )
        for recipient in (rental.owner_id, rental.renter_id):
            self._notify(
                recipient, rental, "Rental Completed",
                f"Rental of {self._tool_name(rental)} completed. Settlement: {settlement} cents",
                "RENTAL_COMPLETED",
                settlement_cents=str(settlement),
            )
        return RentalResponse(rental=rental, ledger_entries=entries, message="Rental completed")

    # -- batch steps ------------------------------------------------------

    def mark_overdue_rentals(self, today: Optional[date] = None) -> BatchResult:
        """Move every ACTIVE rental whose agreed end date is before today to OVERDUE."""
        today = today or self._today()
        result = BatchResult()
        for rental in self.storage.list_rentals(statuses=[RentalStatus.ACTIVE]):
            if not is_past(rental.scheduled_end_date, today):
                continue
            try:
                rental.status = RentalStatus.OVERDUE
                self._save(rental)
            except Exception as e:
                self.logger.error("Failed to mark rental %s overdue: %s", rental.id, e)
                result.record_error("rental", rental.id, e)
                continue
            result.processed += 1
            self.logger.debug(
                "Marked rental overdue rental_id=%s renter_id=%s end_date=%s",
                rental.id, rental.renter_id, rental.scheduled_end_date,
            )
        self.logger.info("Marked %d rentals as overdue", result.processed)
        return result

    def send_overdue_reminders(self) -> BatchResult:
        result = BatchResult()
        for rental in self.storage.list_rentals(statuses=[RentalStatus.OVERDUE]):
            delivered = self._notify(
                rental.renter_id, rental, "Reminder: Overdue Tool Return",
                f"Your rental of {self._tool_name(rental)} was due on "
                f"{rental.scheduled_end_date.isoformat()} and is now overdue. "
                "Please return the tool as soon as possible.",
                "RENTAL_OVERDUE_REMINDER",
            )
            if delivered:
                result.processed += 1
            else:
                result.record_error("rental", rental.id, RuntimeError("reminder delivery failed"))
        self.logger.info("Overdue reminders sent: %d", result.processed)
        return result

    # -- queries ----------------------------------------------------------

    def get_rental(self, member_id: UUID, rental_id: UUID) -> Rental:
        rental = self._get_rental(rental_id)
        if not rental.is_party(member_id):
            raise UnauthorizedError("Only the owner or the renter can view this rental")
        return rental

    def list_rentals(
        self, renter_id: UUID, org_id: Optional[UUID] = None,
        statuses: Optional[Iterable[RentalStatus]] = None, page: int = 1, page_size: int = 20,
    ) -> RentalListResponse:
        rentals = self.storage.list_rentals(org_id=org_id, renter_id=renter_id, statuses=statuses)
        return self._page(rentals, page, page_size)

    def list_lendings(
        self, owner_id: UUID, org_id: Optional[UUID] = None,
        statuses: Optional[Iterable[RentalStatus]] = None, page: int = 1, page_size: int = 20,
    ) -> RentalListResponse:
        rentals = self.storage.list_rentals(org_id=org_id, owner_id=owner_id, statuses=statuses)
        return self._page(rentals, page, page_size)

    def list_tool_rentals(
        self, owner_id: UUID, tool_id: UUID,
        statuses: Optional[Iterable[RentalStatus]] = None, page: int = 1, page_size: int = 20,
    ) -> RentalListResponse:
        tool = self._get_tool(tool_id)
        if tool.owner_id != owner_id:
            raise UnauthorizedError("Only the tool owner can list its rentals")
        rentals = self.storage.list_rentals(tool_id=tool_id, statuses=statuses)
        return self._page(rentals, page, page_size)

    # -- helpers ----------------------------------------------------------

    def _validate_extension(self, rental: Rental, request: ChangeRentalDatesRequest) -> date:
        if request.new_start_date is not None and request.new_start_date != rental.start_date:
            raise InvalidRequestError("Cannot change the start date of a rental in progress")
        if request.new_end_date is None:
            raise InvalidRequestError("A new end date is required to extend a rental")
        if request.new_end_date == rental.scheduled_end_date:
            raise InvalidRequestError("New end date is the same as the agreed end date")
        return request.new_end_date

    def _revert_to_agreed_terms(self, rental: Rental) -> None:
        agreed = rental.last_agreed_end_date or rental.scheduled_end_date
        price = self._get_tool(rental.tool_id).price_per_day_cents
        rental.scheduled_end_date = agreed
        rental.requested_end_date = None
        rental.total_cost_cents = rental_cost(rental.start_date, agreed, price)
        rental.status = self._resume_status(agreed)

    def _resume_status(self, end_date: date) -> RentalStatus:
        return RentalStatus.OVERDUE if is_past(end_date, self._today()) else RentalStatus.ACTIVE

    def _today(self) -> date:
        return self.clock().date()

    def _save(self, rental: Rental) -> Rental:
        rental.updated_at = self.clock()
        return self.storage.update_rental(rental)

    def _get_rental(self, rental_id: UUID) -> Rental:
        rental = self.storage.get_rental(rental_id)
        if rental is None:
            raise RentalNotFoundError(f"Rental {rental_id} not found")
        return rental

    def _get_tool(self, tool_id: UUID) -> Tool:
        tool = self.storage.get_tool(tool_id)
        if tool is None:
            raise ToolNotFoundError(f"Tool {tool_id} not found")
        return tool

    def _set_tool_status(self, tool_id: UUID, status: ToolStatus) -> None:
        tool = self.storage.get_tool(tool_id)
        if tool is not None:
            tool.status = status
            self.storage.update_tool(tool)

    @staticmethod
    def _require_owner(rental: Rental, member_id: UUID) -> None:
        if rental.owner_id != member_id:
            raise UnauthorizedError("Only the tool owner can perform this action")

    @staticmethod
    def _require_renter(rental: Rental, member_id: UUID) -> None:
        if rental.renter_id != member_id:
            raise UnauthorizedError("Only the renter can perform this action")

    @staticmethod
    def _require_status(rental: Rental, action: str, *statuses: RentalStatus) -> None:
        if rental.status not in statuses:
            raise InvalidStateTransitionError(
                f"Cannot {action} rental in {rental.status.value} state"
            )

    @staticmethod
    def _page(rentals: list[Rental], page: int, page_size: int) -> RentalListResponse:
        page = max(page, 1)
        start = (page - 1) * page_size
        return RentalListResponse(rentals=rentals[start:start + page_size], total_count=len(rentals))

    def _name(self, member_id: UUID) -> str:
        member = self.storage.get_member(member_id)
        return member.name if member else str(member_id)

    def _tool_name(self, rental: Rental) -> str:
        tool = self.storage.get_tool(rental.tool_id)
        return tool.name if tool else "Unknown Tool"

    def _notify(self, recipient_id: UUID, rental: Rental, title: str, message: str, kind: str, **attributes) -> bool:
        notification = Notification(
            recipient_id=recipient_id,
            org_id=rental.org_id,
            title=title,
            message=message,
            attributes={"type": kind, "rental_id": str(rental.id), **attributes},
        )
        return dispatch(self.notifier, self.logger, notification)
