"""URLトークン認証ミドルウェアのユニットテスト。"""

import pytest
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from ballast.middleware import TokenAuthMiddleware


async def _ok(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def _client(url_token: str, **kwargs: object) -> TestClient:
    app = Starlette(
        routes=[Route("/health", _ok), Route("/rules", _ok), Route("/mcp", _ok, methods=["GET", "POST"])],
        middleware=[Middleware(TokenAuthMiddleware, url_token=url_token, **kwargs)],
    )
    return TestClient(app)


class TestTokenAuthMiddleware:
    def test_no_token_configured_allows_all(self) -> None:
        response = _client("").get("/mcp")
        assert response.status_code == 200

    def test_missing_token_is_rejected(self) -> None:
        response = _client("secret").get("/mcp")
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized", "message": "Invalid or missing token"}

    @pytest.mark.parametrize("token", ["wrong", "", "Secret"])
    def test_wrong_token_is_rejected(self, token: str) -> None:
        response = _client("secret").get("/mcp", params={"token": token})
        assert response.status_code == 401

    def test_valid_token(self) -> None:
        response = _client("secret").post("/mcp", params={"token": "secret"})
        assert response.status_code == 200

    def test_health_skips_auth(self) -> None:
        response = _client("secret").get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_bearer_header(self) -> None:
        client = _client("secret")
        assert client.post("/mcp", headers={"Authorization": "Bearer secret"}).status_code == 200
        assert client.post("/mcp", headers={"Authorization": "bearer secret"}).status_code == 200
        assert client.post("/mcp", headers={"Authorization": "Bearer wrong"}).status_code == 401
        assert client.post("/mcp", headers={"Authorization": "Basic secret"}).status_code == 401

    def test_query_token_takes_precedence_over_header(self) -> None:
        response = _client("secret").get("/mcp", params={"token": "wrong"}, headers={"Authorization": "Bearer secret"})
        assert response.status_code == 401

    def test_custom_public_paths(self) -> None:
        client = _client("secret", public_paths=["/rules"])
        assert client.get("/rules").status_code == 200
        assert client.get("/health").status_code == 401
