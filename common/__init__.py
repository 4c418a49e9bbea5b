"""
Shared plumbing for the tool-share settlement backend.

This package provides:
- The error taxonomy shared by all services
- Configuration and logging setup
- The in-memory store (``common.storage``) with transactional writes
- The fire-and-forget notification capability
"""

from .errors import (
    ToolShareError,
    InvalidRequestError,
    UnauthorizedError,
    MemberBlockedError,
    InvalidStateTransitionError,
    NotFoundError,
    IdempotencyConflictError,
    PersistenceError,
)

__all__ = [
    "ToolShareError",
    "InvalidRequestError",
    "UnauthorizedError",
    "MemberBlockedError",
    "InvalidStateTransitionError",
    "NotFoundError",
    "IdempotencyConflictError",
    "PersistenceError",
]
