import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError

from socialchat.api.common import APIResponse
from socialchat.api.routes import chats, realtime
from socialchat.auth_config import auth_backend, cookie_auth_backend, fastapi_users
from socialchat.db import check_database_health
from socialchat.realtime.gateway import ChatGateway
from socialchat.schemas.user import UserCreate, UserRead, UserUpdate
from socialchat.services.migration_service import run_migrations

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Runs migrations and checks the database before serving; stops the gateway on exit."""
    logger.info("Starting application...")
    try:
        if os.getenv("SKIP_MIGRATIONS") != "true":
            await run_migrations()
        await check_database_health()
        logger.info("Database health check passed - application ready")
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        logger.error("Application startup aborted due to database issues")
        raise

    yield

    logger.info("Application shutting down...")
    await app.state.gateway.shutdown()


app = FastAPI(title="socialchat", lifespan=lifespan)
app.state.gateway = ChatGateway(app=app)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return APIResponse.error(
        message=message,
        status_code=exc.status_code,
        detail=exc.detail,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = f"{location}: {first.get('msg', 'invalid request')}".strip(": ")
    logger.info(f"Rejected request to {request.url.path}: {message}")
    return APIResponse.error(
        message=message,
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=errors,
    )


app.include_router(
    fastapi_users.get_auth_router(auth_backend), prefix="/auth/jwt", tags=["auth"]
)
app.include_router(
    fastapi_users.get_auth_router(cookie_auth_backend),
    prefix="/auth/cookie",
    tags=["auth"],
)
app.include_router(
    fastapi_users.get_register_router(UserRead, UserCreate),
    prefix="/auth",
    tags=["auth"],
)
app.include_router(
    fastapi_users.get_users_router(UserRead, UserUpdate),
    prefix="/users",
    tags=["users"],
)
app.include_router(chats.chats_api_router)
app.include_router(realtime.realtime_api_router, tags=["realtime"])


@app.get("/health")
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}
