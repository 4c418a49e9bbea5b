from uuid import UUID
from fastapi import APIRouter, Depends, status

from api.deps import get_services, http_error
from common.errors import ToolShareError
from jobs.runner import Services

from .models import AdjustBalanceRequest, LedgerTransaction, MemberBalance, LedgerHistoryResponse, ReconciliationReport

router = APIRouter(tags=["Ledger"])


@router.get("/orgs/{org_id}/members/{member_id}/balance", response_model=MemberBalance)
def get_member_balance(org_id: UUID, member_id: UUID, services: Services = Depends(get_services)) -> MemberBalance:
    try:
        return services.ledger.get_balance(member_id, org_id)
    except ToolShareError as e:
        raise http_error(e)


@router.get("/orgs/{org_id}/members/{member_id}/ledger", response_model=LedgerHistoryResponse)
def get_member_ledger(
    org_id: UUID, member_id: UUID, limit: int = 50, offset: int = 0,
    services: Services = Depends(get_services),
) -> LedgerHistoryResponse:
    try:
        return services.ledger.get_ledger_history(member_id, org_id, limit, offset)
    except ToolShareError as e:
        raise http_error(e)


@router.get("/orgs/{org_id}/members/{member_id}/reconcile", response_model=ReconciliationReport)
def reconcile_member(org_id: UUID, member_id: UUID, services: Services = Depends(get_services)) -> ReconciliationReport:
    try:
        return services.ledger.reconcile(member_id, org_id)
    except ToolShareError as e:
        raise http_error(e)


@router.post("/adjustments", response_model=LedgerTransaction, status_code=status.HTTP_201_CREATED)
def adjust_balance(request: AdjustBalanceRequest, services: Services = Depends(get_services)) -> LedgerTransaction:
    try:
        return services.ledger.adjust_balance(request)
    except ToolShareError as e:
        raise http_error(e)
