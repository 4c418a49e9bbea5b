from fastapi import HTTPException, Request, status

from common.config import AppConfig
from common.errors import (
    ToolShareError,
    InvalidRequestError,
    UnauthorizedError,
    InvalidStateTransitionError,
    NotFoundError,
    IdempotencyConflictError,
)
from common.storage import InMemoryStorage
from jobs.runner import Services, build_services

ERROR_STATUS = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (UnauthorizedError, status.HTTP_403_FORBIDDEN),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (IdempotencyConflictError, status.HTTP_409_CONFLICT),
    (InvalidRequestError, status.HTTP_400_BAD_REQUEST),
)


def create_services(config: AppConfig) -> Services:
    storage = InMemoryStorage.load(config.state_file) if config.state_file else InMemoryStorage()
    return build_services(config, storage)


def get_services(request: Request) -> Services:
    """Services built once at application startup."""
    return request.app.state.services


def http_error(error: ToolShareError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
