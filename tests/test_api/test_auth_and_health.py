import pytest
from httpx import AsyncClient

from test_helpers import register_user

pytestmark = pytest.mark.asyncio


async def test_health(test_client: AsyncClient):
    response = await test_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_register_login_and_use_token(test_client: AsyncClient):
    register = await test_client.post(
        "/auth/register",
        json={"email": "dana@example.com", "password": "s3cret-pass", "name": "Dana"},
    )
    assert register.status_code == 201, register.text
    assert register.json()["name"] == "Dana"

    login = await test_client.post(
        "/auth/jwt/login",
        data={"username": "dana@example.com", "password": "s3cret-pass"},
    )
    assert login.status_code == 200, login.text
    token = login.json()["access_token"]
    headers = {"Authorization": f"Bearer {token}"}

    me = await test_client.get("/users/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["email"] == "dana@example.com"

    chats = await test_client.get("/chats", headers=headers)
    assert chats.status_code == 200
    assert chats.json() == []


async def test_login_with_wrong_password(test_client: AsyncClient, db_test_session_manager):
    await register_user(db_test_session_manager, "erin@example.com", "right-pass", "Erin")

    wrong = await test_client.post(
        "/auth/jwt/login",
        data={"username": "erin@example.com", "password": "wrong-pass"},
    )
    assert wrong.status_code == 400

    right = await test_client.post(
        "/auth/jwt/login",
        data={"username": "erin@example.com", "password": "right-pass"},
    )
    assert right.status_code == 200


async def test_cookie_login_authenticates_chat_routes(
    test_client: AsyncClient, db_test_session_manager
):
    await register_user(db_test_session_manager, "finn@example.com", "cookie-pass", "Finn")

    login = await test_client.post(
        "/auth/cookie/login",
        data={"username": "finn@example.com", "password": "cookie-pass"},
    )
    assert login.status_code == 204
    token = login.cookies.get("fastapiusersauth")
    assert token

    chats = await test_client.get(
        "/chats", headers={"Cookie": f"fastapiusersauth={token}"}
    )
    assert chats.status_code == 200
