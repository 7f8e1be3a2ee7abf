"""位置情報付きテンプレートツリーのデータモデル。"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

ScalarValue = str | int | float | bool | None


class ScalarNode(BaseModel):
    """スカラー値ノード。raw はソース上の表記、value はデコード済みの値。"""

    kind: Literal["scalar"] = "scalar"
    line: int
    column: int
    raw: str
    value: ScalarValue = None

    def decode(self) -> Any:
        return self.value


class SequenceNode(BaseModel):
    """シーケンスノード。"""

    kind: Literal["sequence"] = "sequence"
    line: int
    column: int
    items: list[Node] = Field(default_factory=list)

    def decode(self) -> Any:
        return [item.decode() for item in self.items]


class MappingEntry(BaseModel):
    """マッピングのキーと値の組。"""

    key: ScalarNode
    value: Node


class MappingNode(BaseModel):
    """マッピングノード。キーの出現順を保持する。"""

    kind: Literal["mapping"] = "mapping"
    line: int
    column: int
    entries: list[MappingEntry] = Field(default_factory=list)

    def keys(self) -> list[str]:
        return [str(entry.key.value) for entry in self.entries]

    def get(self, key: str) -> Node | None:
        for entry in self.entries:
            if str(entry.key.value) == key:
                return entry.value
        return None

    def key_node(self, key: str) -> ScalarNode | None:
        for entry in self.entries:
            if str(entry.key.value) == key:
                return entry.key
        return None

    def decode(self) -> Any:
        return {str(entry.key.value): entry.value.decode() for entry in self.entries}


class AliasNode(BaseModel):
    """YAMLエイリアス参照。位置はエイリアス自身、値はアンカー先に従う。"""

    kind: Literal["alias"] = "alias"
    line: int
    column: int
    anchor: str
    target: Node

    def decode(self) -> Any:
        return self.target.decode()


Node = Annotated[
    ScalarNode | SequenceNode | MappingNode | AliasNode,
    Field(discriminator="kind"),
]


def resolve(node: Node) -> ScalarNode | SequenceNode | MappingNode:
    """エイリアスを辿って実体ノードを返す。"""
    while isinstance(node, AliasNode):
        node = node.target
    return node


for _model in (SequenceNode, MappingEntry, MappingNode, AliasNode):
    _model.model_rebuild()
