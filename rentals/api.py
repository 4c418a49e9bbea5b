from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query, status

from api.deps import get_services, http_error
from common.errors import ToolShareError
from jobs.runner import Services

from .models import (
    RentalStatus,
    Rental,
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

router = APIRouter(prefix="/rentals", tags=["Rentals"])


@router.post("", response_model=RentalResponse, status_code=status.HTTP_201_CREATED)
def create_rental(request: CreateRentalRequest, services: Services = Depends(get_services)) -> RentalResponse:
    try:
        return services.rentals.create_rental_request(request)
    except ToolShareError as e:
        raise http_error(e)


@router.get("", response_model=RentalListResponse)
def list_rentals(
    member_id: UUID,
    role: str = Query("renter", pattern="^(renter|owner)$"),
    org_id: Optional[UUID] = None,
    statuses: Optional[list[RentalStatus]] = Query(None),
    page: int = 1,
    page_size: int = 20,
    services: Services = Depends(get_services),
) -> RentalListResponse:
    if role == "owner":
        return services.rentals.list_lendings(member_id, org_id, statuses, page, page_size)
    return services.rentals.list_rentals(member_id, org_id, statuses, page, page_size)


@router.get("/tools/{tool_id}", response_model=RentalListResponse)
def list_tool_rentals(
    tool_id: UUID,
    owner_id: UUID,
    statuses: Optional[list[RentalStatus]] = Query(None),
    page: int = 1,
    page_size: int = 20,
    services: Services = Depends(get_services),
) -> RentalListResponse:
    try:
        return services.rentals.list_tool_rentals(owner_id, tool_id, statuses, page, page_size)
    except ToolShareError as e:
        raise http_error(e)


@router.get("/{rental_id}", response_model=Rental)
def get_rental(rental_id: UUID, member_id: UUID, services: Services = Depends(get_services)) -> Rental:
    try:
        return services.rentals.get_rental(member_id, rental_id)
    except ToolShareError as e:
        raise http_error(e)


@router.post("/{rental_id}/approve", response_model=RentalResponse)
def approve_rental(rental_id: UUID, request: ApproveRentalRequest, services: Services = Depends(get_services)) -> RentalResponse:
    try:
        return services.rentals.approve_rental_request(rental_id, request)
    except ToolShareError as e:
        raise http_error(e)


@router.post("/{rental_id}/reject", response_model=RentalResponse)
def reject_rental(rental_id: UUID, request: RejectRentalRequest, services: Services = Depends(get_services)) -> RentalResponse:
    try:
        return services.rentals.reject_rental_request(rental_id, request)
    except ToolShareError as e:
        raise http_error(e)


@router.post("/{rental_id}/cancel", response_model=RentalResponse)
def cancel_rental(rental_id: UUID, request: CancelRentalRequest, services: Services = Depends(get_services)) -> RentalResponse:
    try:
        return services.rentals.cancel_rental(rental_id, request)
    except ToolShareError as e:
        raise http_error(e)


@router.post("/{rental_id}/finalize", response_model=FinalizeRentalResponse)
def finalize_rental(rental_id: UUID, request: FinalizeRentalRequest, services: Services = Depends(get_services)) -> FinalizeRentalResponse:
    try:
        return services.rentals.finalize_rental_request(rental_id, request)
    except ToolShareError as e:
        raise http_error(e)


@router.post("/{rental_id}/activate", response_model=RentalResponse)
def activate_rental(rental_id: UUID, request: ActivateRentalRequest, services: Services = Depends(get_services)) -> RentalResponse:
    try:
        return services.rentals.activate_rental(rental_id, request)
    except ToolShareError as e:
        raise http_error(e)


@router.post("/{rental_id}/dates", response_model=RentalResponse)
def change_rental_dates(rental_id: UUID, request: ChangeRentalDatesRequest, services: Services = Depends(get_services)) -> RentalResponse:
    try:
        return services.rentals.change_rental_dates(rental_id, request)
    except ToolShareError as e:
        raise http_error(e)


@router.post("/{rental_id}/return-date/approve", response_model=RentalResponse)
def approve_return_date_change(
    rental_id: UUID, request: ApproveReturnDateChangeRequest, services: Services = Depends(get_services)
) -> RentalResponse:
    try:
        return services.rentals.approve_return_date_change(rental_id, request)
    except ToolShareError as e:
        raise http_error(e)


@router.post("/{rental_id}/return-date/reject", response_model=RentalResponse)
def reject_return_date_change(
    rental_id: UUID, request: RejectReturnDateChangeRequest, services: Services = Depends(get_services)
) -> RentalResponse:
    try:
        return services.rentals.reject_return_date_change(rental_id, request)
    except ToolShareError as e:
        raise http_error(e)


@router.post("/{rental_id}/return-date/acknowledge", response_model=RentalResponse)
def acknowledge_return_date_rejection(
    rental_id: UUID, request: RenterActionRequest, services: Services = Depends(get_services)
) -> RentalResponse:
    try:
        return services.rentals.acknowledge_return_date_rejection(rental_id, request)
    except ToolShareError as e:
        raise http_error(e)


@router.post("/{rental_id}/return-date/cancel", response_model=RentalResponse)
def cancel_return_date_change(
    rental_id: UUID, request: RenterActionRequest, services: Services = Depends(get_services)
) -> RentalResponse:
    try:
        return services.rentals.cancel_return_date_change(rental_id, request)
    except ToolShareError as e:
        raise http_error(e)


@router.post("/{rental_id}/complete", response_model=RentalResponse)
def complete_rental(rental_id: UUID, request: CompleteRentalRequest, services: Services = Depends(get_services)) -> RentalResponse:
    try:
        return services.rentals.complete_rental(rental_id, request)
    except ToolShareError as e:
        raise http_error(e)
