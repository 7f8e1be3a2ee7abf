"""ルールカタログのMCPリソース定義。"""

import json

from fastmcp import FastMCP

from ballast.models.errors import RuleNotFoundError
from ballast.services.linter import LintService


def register_rule_resources(mcp: FastMCP, lint_service: LintService) -> None:
    """ルールカタログのMCPリソースを登録する。"""

    @mcp.resource("ballast://rules")
    async def rule_catalog() -> str:
        """診断ルールカタログを取得する。

        全ルールのID、説明、参照URL、タグ、重大度をID順のJSONで返します。
        """
        rules = [r.model_dump() for r in lint_service.list_rules()]
        return json.dumps({"rules": rules}, ensure_ascii=False, indent=2)

    @mcp.resource("ballast://rules/{rule_id}")
    async def rule_detail(rule_id: str) -> str:
        """指定IDの診断ルール定義を取得する。"""
        try:
            info = lint_service.describe_rule(rule_id)
        except RuleNotFoundError as e:
            return json.dumps({"error": type(e).__name__, "message": str(e)})
        return info.model_dump_json(indent=2)
