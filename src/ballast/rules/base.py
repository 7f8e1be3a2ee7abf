"""診断ルールの基底クラスと、ルール実装が共有する値取り出しヘルパー。"""

from typing import Any, ClassVar

from ballast.models.finding import Finding, Severity, severity_for_rule_id
from ballast.models.rule import RuleInfo
from ballast.models.template import Resource, Template
from ballast.schema.service import SchemaService
from ballast.validators.intrinsics import is_intrinsic


class Rule:
    """テンプレートに対する1つの診断。

    サブクラスはクラス属性でメタデータを宣言し、match を実装する。
    match は純粋関数として振る舞い、テンプレートやスキーマを変更しない。
    """

    id: ClassVar[str] = ""
    short_desc: ClassVar[str] = ""
    description: ClassVar[str] = ""
    source_url: ClassVar[str] = ""
    tags: ClassVar[tuple[str, ...]] = ()

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        raise NotImplementedError

    @property
    def severity(self) -> Severity:
        return severity_for_rule_id(self.id)

    def info(self) -> RuleInfo:
        return RuleInfo(
            id=self.id,
            short_desc=self.short_desc,
            description=self.description,
            source_url=self.source_url,
            tags=sorted(self.tags),
            severity=self.severity,
        )

    def finding(self, template: Template, message: str, path: list[str]) -> Finding:
        """パスが指す最も深いノードの位置で Finding を作る。"""
        node = template.locate(path)
        return Finding(
            rule_id=self.id,
            message=message,
            line=node.line,
            column=node.column,
            path=list(path),
            severity=self.severity,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id}>"


def resource_path(resource: Resource, *parts: str) -> list[str]:
    """リソース配下のパンくずパスを作る。"""
    return ["Resources", resource.logical_id, *parts]


def property_path(resource: Resource, *parts: str) -> list[str]:
    """リソースの Properties 配下のパンくずパスを作る。"""
    return ["Resources", resource.logical_id, "Properties", *parts]


def get_string(mapping: Any, key: str) -> str | None:
    """マッピングから文字列値を取り出す。組み込み関数や他の型なら None。"""
    if not isinstance(mapping, dict):
        return None
    value = mapping.get(key)
    return value if isinstance(value, str) else None


def get_mapping(mapping: Any, key: str) -> dict[str, Any] | None:
    """マッピングから組み込み関数でないマッピング値を取り出す。"""
    if not isinstance(mapping, dict):
        return None
    value = mapping.get(key)
    if isinstance(value, dict) and not is_intrinsic(value):
        return value
    return None


def get_list(mapping: Any, key: str) -> list[Any] | None:
    """マッピングからリスト値を取り出す。"""
    if not isinstance(mapping, dict):
        return None
    value = mapping.get(key)
    return value if isinstance(value, list) else None


def iter_mappings(items: list[Any] | None) -> list[tuple[int, dict[str, Any]]]:
    """リスト中の組み込み関数でないマッピング要素を (インデックス, 要素) で返す。"""
    if not items:
        return []
    return [(i, item) for i, item in enumerate(items) if isinstance(item, dict) and not is_intrinsic(item)]
