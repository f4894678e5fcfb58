import logging

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for service layer errors."""

    def __init__(self, message="An internal service error occurred.", status_code=500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class InvalidArgumentError(ServiceError):
    """Malformed or missing input."""

    def __init__(self, message="Invalid argument."):
        super().__init__(message, status_code=400)


class BusinessRuleError(ServiceError):
    """For operations that are not valid for the target (e.g. adding members to a personal chat)."""

    def __init__(self, message="Action violates business rules."):
        super().__init__(message, status_code=400)


class UnauthenticatedError(ServiceError):
    def __init__(self, message="Missing or invalid credentials."):
        super().__init__(message, status_code=401)


class NotAuthorizedError(ServiceError):
    def __init__(self, message="User not authorized for this action."):
        super().__init__(message, status_code=403)


class ConversationNotFoundError(ServiceError):
    def __init__(self, message="Conversation not found."):
        super().__init__(message, status_code=404)


class UserNotFoundError(ServiceError):
    def __init__(self, message="User not found."):
        super().__init__(message, status_code=404)


class MessageNotFoundError(ServiceError):
    def __init__(self, message="Message not found."):
        super().__init__(message, status_code=404)


class ConflictError(ServiceError):
    """For conflicts like two writers racing on the same unique key."""

    def __init__(self, message="Operation conflicts with existing state."):
        super().__init__(message, status_code=409)


class DatabaseError(ServiceError):
    """For general database errors during service operations."""

    def __init__(self, message="A database error occurred."):
        super().__init__(message, status_code=500)


class StoreTimeoutError(DatabaseError):
    def __init__(self, message="The data store did not respond in time. Please retry."):
        super().__init__(message)
        self.status_code = 504
