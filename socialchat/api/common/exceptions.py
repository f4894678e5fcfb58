import logging

from fastapi import HTTPException, status

from socialchat.services.exceptions import (
    BusinessRuleError,
    ConflictError,
    ConversationNotFoundError,
    DatabaseError,
    InvalidArgumentError,
    MessageNotFoundError,
    NotAuthorizedError,
    ServiceError,
    StoreTimeoutError,
    UnauthenticatedError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)


class APIException(HTTPException):
    """Base class for API specific exceptions."""

    def __init__(
        self, status_code: int, detail: any = None, headers: dict | None = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class NotFoundError(APIException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class BadRequestError(APIException):
    def __init__(self, detail: str = "Bad request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class UnauthorizedError(APIException):
    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class ForbiddenError(APIException):
    def __init__(self, detail: str = "Forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class InternalServerError(APIException):
    def __init__(self, detail: str = "Internal server error"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail
        )


def handle_service_error(e: ServiceError):
    """
    Maps ServiceError subclasses to APIException responses. Always raises.
    Store failures are logged in full but surface only a generic message.
    """
    message = getattr(e, "message", str(e))
    logger.warning(f"Handling service error: {e.__class__.__name__} - {message}")

    if isinstance(e, (ConversationNotFoundError, UserNotFoundError, MessageNotFoundError)):
        raise NotFoundError(detail=message)
    elif isinstance(e, (InvalidArgumentError, BusinessRuleError)):
        raise BadRequestError(detail=message)
    elif isinstance(e, UnauthenticatedError):
        raise UnauthorizedError(detail=message)
    elif isinstance(e, NotAuthorizedError):
        raise ForbiddenError(detail=message)
    elif isinstance(e, ConflictError):
        raise APIException(status_code=status.HTTP_409_CONFLICT, detail=message)
    elif isinstance(e, StoreTimeoutError):
        raise APIException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=message)
    elif isinstance(e, DatabaseError):
        logger.error(f"Database error: {e}", exc_info=True)
        raise InternalServerError(detail="A database error occurred.")

    status_code = getattr(e, "status_code", status.HTTP_500_INTERNAL_SERVER_ERROR)
    raise APIException(
        status_code=status_code,
        detail=message or "A service error occurred.",
    )
