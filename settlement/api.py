from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends

from api.deps import get_services, http_error
from common.errors import ToolShareError
from jobs.runner import Services
from ledger.models import MemberOrgBalance

from .models import (
    Bill,
    BalanceSnapshot,
    AcknowledgePaymentRequest,
    ResolveDisputeRequest,
    ClearMemberBlockRequest,
    BillResponse,
    PaymentDetailResponse,
    BillSummary,
)

router = APIRouter(tags=["Settlement"])


@router.get("/members/{member_id}/payments", response_model=list[Bill])
def list_payments(
    member_id: UUID, org_id: Optional[UUID] = None, show_history: bool = False,
    services: Services = Depends(get_services),
) -> list[Bill]:
    return services.disputes.list_payments(member_id, org_id, show_history)


@router.get("/members/{member_id}/payments/summary", response_model=BillSummary)
def get_bill_summary(member_id: UUID, services: Services = Depends(get_services)) -> BillSummary:
    return services.disputes.get_bill_summary(member_id)


@router.get("/bills/{bill_id}", response_model=PaymentDetailResponse)
def get_payment_detail(bill_id: UUID, member_id: UUID, services: Services = Depends(get_services)) -> PaymentDetailResponse:
    try:
        return services.disputes.get_payment_detail(member_id, bill_id)
    except ToolShareError as e:
        raise http_error(e)


@router.post("/bills/{bill_id}/acknowledge", response_model=BillResponse)
def acknowledge_payment(bill_id: UUID, request: AcknowledgePaymentRequest, services: Services = Depends(get_services)) -> BillResponse:
    try:
        return services.disputes.acknowledge_payment(bill_id, request)
    except ToolShareError as e:
        raise http_error(e)


@router.post("/bills/{bill_id}/resolve", response_model=BillResponse)
def resolve_dispute(bill_id: UUID, request: ResolveDisputeRequest, services: Services = Depends(get_services)) -> BillResponse:
    try:
        return services.disputes.resolve_dispute(bill_id, request)
    except ToolShareError as e:
        raise http_error(e)


@router.get("/orgs/{org_id}/disputes", response_model=list[Bill])
def list_disputed_bills(org_id: UUID, admin_id: UUID, services: Services = Depends(get_services)) -> list[Bill]:
    try:
        return services.disputes.list_disputed_bills(admin_id, org_id)
    except ToolShareError as e:
        raise http_error(e)


@router.get("/orgs/{org_id}/disputes/resolved", response_model=list[Bill])
def list_resolved_disputes(org_id: UUID, admin_id: UUID, services: Services = Depends(get_services)) -> list[Bill]:
    try:
        return services.disputes.list_resolved_disputes(admin_id, org_id)
    except ToolShareError as e:
        raise http_error(e)


@router.get("/orgs/{org_id}/snapshots/{settlement_month}", response_model=list[BalanceSnapshot])
def list_snapshots(org_id: UUID, settlement_month: str, services: Services = Depends(get_services)) -> list[BalanceSnapshot]:
    return services.snapshots.list_snapshots(org_id, settlement_month)


@router.post("/blocks/clear", response_model=MemberOrgBalance)
def clear_member_block(request: ClearMemberBlockRequest, services: Services = Depends(get_services)) -> MemberOrgBalance:
    try:
        return services.disputes.clear_member_block(request)
    except ToolShareError as e:
        raise http_error(e)
