import logging
from functools import wraps

from fastapi import HTTPException, status

from socialchat.api.common.exceptions import handle_service_error
from socialchat.services.exceptions import DatabaseError, ServiceError

logger = logging.getLogger(__name__)


def _summarize(value) -> str:
    # Users and services are logged by id or type, never field by field
    if hasattr(value, "__dict__"):
        return str(getattr(value, "id", None) or type(value).__name__)
    return repr(value)


def log_route_call(func):
    """Logs entry into and exit from a route, and the type of any error it raises."""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        route_logger = logging.getLogger(func.__module__)

        logged_kwargs = {k: _summarize(v) for k, v in kwargs.items()}
        route_logger.info(f"Entering route: {func.__name__} (kwargs: {logged_kwargs})")
        try:
            result = await func(*args, **kwargs)
            route_logger.info(f"Successfully exited route: {func.__name__}")
            return result
        except Exception as e:
            route_logger.error(
                f"Error during route: {func.__name__}. Exception: {type(e).__name__} - {e}",
                exc_info=False,
            )
            raise

    return wrapper


def handle_route_errors(func):
    """
    Standardizes error handling in API routes: service errors are mapped to
    HTTP responses, anything unexpected becomes a 500 without internals.
    """

    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except DatabaseError as e:
            logger.error(f"Store error in {func.__name__} route: {e}", exc_info=True)
            handle_service_error(e)
        except ServiceError as e:
            logger.info(f"Service error in {func.__name__} route: {e}")
            handle_service_error(e)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(
                f"Unexpected error in {func.__name__} route: {e}", exc_info=True
            )
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="An unexpected server error occurred.",
            )

    return wrapper
