"""ルールカタログのメタデータモデル。"""

from pydantic import BaseModel

from ballast.models.finding import Severity


class RuleInfo(BaseModel):
    """MCPクライアントへ返すルール定義の要約。"""

    id: str
    short_desc: str
    description: str
    source_url: str
    tags: list[str]
    severity: Severity
