import logging

from fastapi import APIRouter, WebSocket

from socialchat.auth_config import AUTH_COOKIE_NAME
from socialchat.realtime.gateway import get_chat_gateway

logger = logging.getLogger(__name__)
realtime_api_router = APIRouter()


def extract_token(websocket: WebSocket) -> str | None:
    """Token from ``?token=``, a bearer Authorization header or the auth cookie."""
    token = websocket.query_params.get("token")
    if token:
        return token

    authorization = websocket.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()

    return websocket.cookies.get(AUTH_COOKIE_NAME)


@realtime_api_router.websocket("/ws")
async def chat_socket(websocket: WebSocket):
    gateway = get_chat_gateway(websocket.app)
    await gateway.serve(websocket, extract_token(websocket))
