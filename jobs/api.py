from typing import Optional
from fastapi import APIRouter, Depends

from api.deps import get_services, http_error
from common.errors import ToolShareError

from .runner import JobResult, JobRunner, Services

router = APIRouter(prefix="/jobs", tags=["Jobs"])


@router.get("", response_model=list[str])
def list_jobs() -> list[str]:
    return JobRunner.job_names()


@router.post("/{name}", response_model=list[JobResult])
def trigger_job(name: str, month: Optional[str] = None, services: Services = Depends(get_services)) -> list[JobResult]:
    try:
        return JobRunner(services).run(name, month)
    except ToolShareError as e:
        raise http_error(e)
