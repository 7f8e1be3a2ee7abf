"""診断のMCPツール定義。"""

from typing import Any

from fastmcp import FastMCP

from ballast.models.errors import BallastError
from ballast.services.linter import LintService


def register_lint_tools(mcp: FastMCP, lint_service: LintService) -> None:
    """診断関連のMCPツールを登録する。"""

    @mcp.tool()
    async def lint_template(
        template_body: str,
        ignore_checks: list[str] | None = None,
        tags: list[str] | None = None,
    ) -> dict[str, Any]:
        """CloudFormationテンプレートを静的に診断する。

        YAMLまたはJSONのテンプレート本文を解析し、登録済みの全ルールを
        ルールID順に適用した結果を返します。パースできない本文は
        ルールID E0000 の1件の診断として報告されます。

        Args:
            template_body: テンプレート本文（YAMLまたはJSON）。
            ignore_checks: 実行しないルールID、またはIDの接頭辞（例: "W", "E30"）。
            tags: 指定時は、いずれかのタグを持つルールのみ実行する（例: ["iam"]）。
        """
        try:
            result = lint_service.lint(template_body, ignore_checks=ignore_checks, tags=tags)
            return {
                "findings": [f.model_dump() for f in result.findings],
                "error_count": result.error_count,
                "warning_count": result.warning_count,
                "informational_count": result.informational_count,
                "is_valid": result.is_valid,
            }
        except BallastError as e:
            return {"error": type(e).__name__, "message": str(e)}

    @mcp.tool()
    async def list_rules(tag: str | None = None) -> dict[str, Any]:
        """登録済みの診断ルールを一覧する。

        Args:
            tag: 指定時はこのタグを持つルールのみ返す（例: "catalog", "lambda"）。
        """
        return {"rules": [r.model_dump() for r in lint_service.list_rules(tag)]}

    @mcp.tool()
    async def describe_rule(rule_id: str) -> dict[str, Any]:
        """診断ルールの詳細を取得する。

        Args:
            rule_id: ルールID（例: "E3012"）。
        """
        try:
            return lint_service.describe_rule(rule_id).model_dump()
        except BallastError as e:
            return {"error": type(e).__name__, "message": str(e)}
