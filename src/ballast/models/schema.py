"""組み込みリソーススキーマのデータモデル。"""

from typing import Literal

from pydantic import BaseModel, Field

PrimitiveType = Literal["String", "Integer", "Long", "Double", "Boolean", "Timestamp", "Json"]


class Property(BaseModel):
    """リソースプロパティ定義。

    primitive_type が設定されていればスカラー、type が List / Map またはサブタイプ名を示す。
    """

    primitive_type: PrimitiveType | None = None
    type: str | None = None
    item_type: str | None = None
    primitive_item_type: PrimitiveType | None = None
    required: bool = False

    @property
    def is_list(self) -> bool:
        return self.type == "List"

    @property
    def is_map(self) -> bool:
        return self.type == "Map"


class ResourceType(BaseModel):
    """リソースタイプ定義。"""

    name: str
    properties: dict[str, Property] = Field(default_factory=dict)

    def required_properties(self) -> list[str]:
        return sorted(name for name, prop in self.properties.items() if prop.required)


class Constraints(BaseModel):
    """プロパティ単位の値制約。"""

    min_length: int | None = None
    max_length: int | None = None
    min_value: float | None = None
    max_value: float | None = None
    min_items: int | None = None
    max_items: int | None = None
    pattern: str | None = None
    unique_items: bool = False


class ResourceConstraints(BaseModel):
    """リソース単位のプロパティ間制約。プロパティ名はドット区切りでネストを表せる。"""

    read_only_properties: list[str] = Field(default_factory=list)
    any_of_groups: list[list[str]] = Field(default_factory=list)
    one_of_groups: list[list[str]] = Field(default_factory=list)
    mutually_exclusive: list[list[str]] = Field(default_factory=list)
    dependent_required: dict[str, list[str]] = Field(default_factory=dict)
    dependent_excluded: dict[str, list[str]] = Field(default_factory=dict)
