"""FastMCPベースのMCPサーバーエントリポイント。"""

from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse

from ballast.config import ServerConfig
from ballast.resources.rules import register_rule_resources
from ballast.rules.registry import default_registry
from ballast.schema.service import SchemaService
from ballast.services.linter import LintService
from ballast.tools.lint import register_lint_tools


def create_server(config: ServerConfig | None = None) -> FastMCP:
    """Ballast MCPサーバーを作成し、ツールとリソースを登録する。

    Args:
        config: サーバー設定。Noneの場合はデフォルト設定を使用。

    Returns:
        設定済みのFastMCPインスタンス。
    """
    if config is None:
        config = ServerConfig()

    mcp = FastMCP("ballast")

    # データ層
    schema = SchemaService(data_dir=config.schema_dir)
    registry = default_registry()

    # サービス層
    lint_service = LintService(
        registry=registry,
        schema=schema,
        ignore_checks=config.ignore_checks,
        max_template_size=config.max_template_size,
    )

    # MCPインターフェース登録
    register_lint_tools(mcp, lint_service)
    register_rule_resources(mcp, lint_service)

    # ヘルスチェックエンドポイント
    @mcp.custom_route("/health", methods=["GET"])
    async def health_check(request: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "rules": len(registry)})

    return mcp
