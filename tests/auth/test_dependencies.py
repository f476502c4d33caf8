"""Tests for JWT-based authentication and role guards.

Tokens are minted with the same secret and issuer the test settings use.
"""

import pytest
from httpx import AsyncClient
from jose import JWTError

from flowbundle.auth.dependencies import CurrentUser, decode_token
from flowbundle.core.config import Settings


class TestDecodeToken:
    def test_valid_token(self, token_factory) -> None:
        settings = Settings(jwt_secret="test-secret-for-unit-tests")
        claims = decode_token(token_factory(7, "FUNCIONARIO", email="e@x"), settings)
        assert claims["sub"] == "e@x"
        assert claims["userId"] == 7
        assert claims["role"] == "FUNCIONARIO"

    def test_wrong_issuer_is_rejected(self, token_factory) -> None:
        settings = Settings(jwt_secret="test-secret-for-unit-tests")
        with pytest.raises(JWTError):
            decode_token(token_factory(issuer="someone-else"), settings)

    def test_missing_secret_rejects_everything(self, token_factory) -> None:
        with pytest.raises(JWTError):
            decode_token(token_factory(), Settings(jwt_secret=""))


class TestGetCurrentUserViaAPI:
    """Exercise get_current_user through GET /flows, which depends on it."""

    async def test_bearer_token(self, admin_client: AsyncClient) -> None:
        res = await admin_client.get("/flows")
        assert res.status_code == 200

    async def test_session_cookie(self, client_factory, token_factory) -> None:
        async with client_factory() as ac:
            ac.cookies.set("athenaoffice", token_factory())
            res = await ac.get("/flows")
        assert res.status_code == 200

    async def test_missing_token_raises_401(self, client: AsyncClient) -> None:
        res = await client.get("/flows")
        assert res.status_code == 401

    async def test_expired_token_raises_401(self, client_factory, token_factory) -> None:
        async with client_factory(token_factory(expired=True)) as ac:
            res = await ac.get("/flows")
        assert res.status_code == 401

    async def test_wrong_secret_raises_401(self, client_factory, token_factory) -> None:
        async with client_factory(token_factory(secret="not-the-secret")) as ac:
            res = await ac.get("/flows")
        assert res.status_code == 401

    async def test_malformed_tokens_raise_401(self, app) -> None:
        from httpx import ASGITransport

        transport = ASGITransport(app=app)
        for bad_header in ["garbage-no-bearer-prefix", "Bearer ", "Bearer not.a.valid.jwt"]:
            async with AsyncClient(
                transport=transport,
                base_url="http://test",
                headers={"Authorization": bad_header},
            ) as ac:
                res = await ac.get("/flows")
                assert res.status_code == 401, bad_header

    async def test_token_without_user_id_raises_401(self, client_factory) -> None:
        from jose import jwt

        token = jwt.encode(
            {"sub": "x@y", "role": "ADMIN", "iss": "auth-api"},
            "test-secret-for-unit-tests",
            algorithm="HS256",
        )
        async with client_factory(token) as ac:
            res = await ac.get("/flows")
        assert res.status_code == 401


class TestRoleGuards:
    async def test_employee_cannot_change_status(self, employee_client: AsyncClient) -> None:
        res = await employee_client.patch(
            "/flows/00000000-0000-0000-0000-000000000001/status",
            params={"status": "published"},
        )
        assert res.status_code == 403

    async def test_unknown_role_cannot_publish(self, client_factory, token_factory) -> None:
        async with client_factory(token_factory(9, "VISITANTE")) as ac:
            res = await ac.post("/flows", data={"title": "T", "sector_code": "TI"})
        assert res.status_code == 403


def test_current_user_admin_flag() -> None:
    assert CurrentUser(id=1, email="a@b", role="ADMIN").is_admin
    assert not CurrentUser(id=2, email="c@d", role="LIDER_DE_SETOR").is_admin
