"""MCPエンドポイントへのトークン認証ミドルウェア。"""

import hmac
from collections.abc import Iterable

from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

PUBLIC_PATHS = ("/health",)

_BEARER_PREFIX = "bearer "


def presented_token(request: Request) -> str:
    """リクエストが提示したトークン。token クエリを優先し、なければ Bearer ヘッダーを見る。"""
    token = request.query_params.get("token")
    if token is not None:
        return token
    authorization = request.headers.get("authorization", "")
    if authorization.lower().startswith(_BEARER_PREFIX):
        return authorization[len(_BEARER_PREFIX) :].strip()
    return ""


class TokenAuthMiddleware(BaseHTTPMiddleware):
    """BALLAST_URL_TOKEN が設定されている場合、公開パス以外にトークンの一致を要求する。

    トークンは ?token= クエリまたは Authorization: Bearer ヘッダーで受け付ける。
    """

    def __init__(self, app: ASGIApp, url_token: str = "", public_paths: Iterable[str] = PUBLIC_PATHS) -> None:
        super().__init__(app)
        self.url_token = url_token
        self.public_paths = frozenset(public_paths)

    def is_authorized(self, request: Request) -> bool:
        if not self.url_token or request.url.path in self.public_paths:
            return True
        return hmac.compare_digest(presented_token(request).encode(), self.url_token.encode())

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if self.is_authorized(request):
            return await call_next(request)
        logger.warning("Rejected {} {}: invalid or missing token", request.method, request.url.path)
        return JSONResponse(
            {"error": "Unauthorized", "message": "Invalid or missing token"},
            status_code=401,
        )
