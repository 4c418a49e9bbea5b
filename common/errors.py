class ToolShareError(Exception):
    pass


class InvalidRequestError(ToolShareError):
    pass


class UnauthorizedError(ToolShareError):
    pass


class MemberBlockedError(UnauthorizedError):
    pass


class InvalidStateTransitionError(ToolShareError):
    pass


class NotFoundError(ToolShareError):
    pass


class IdempotencyConflictError(ToolShareError):
    pass


class PersistenceError(ToolShareError):
    pass
