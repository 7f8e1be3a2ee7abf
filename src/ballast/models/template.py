"""CloudFormationテンプレートの論理モデル。"""

from typing import Any

from pydantic import BaseModel, Field

from ballast.models.node import MappingNode, Node, SequenceNode, resolve


class Parameter(BaseModel):
    """Parametersセクションの1エントリ。"""

    name: str
    type: str = ""
    default: Any = None
    node: Node


class Output(BaseModel):
    """Outputsセクションの1エントリ。"""

    name: str
    value: Any = None
    condition: str = ""
    node: Node


class Resource(BaseModel):
    """Resourcesセクションの1リソース。

    properties / metadata はノード参照を含まないデコード済みの値。
    位置情報が必要な場合は node と attributes から取得する。
    """

    logical_id: str
    type: str = ""
    properties: dict[str, Any] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)
    condition: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    node: Node
    attributes: dict[str, Node] = Field(default_factory=dict)

    @property
    def type_node(self) -> Node | None:
        return self.attributes.get("Type")

    @property
    def properties_node(self) -> Node | None:
        return self.attributes.get("Properties")

    @property
    def metadata_node(self) -> Node | None:
        return self.attributes.get("Metadata")

    @property
    def update_policy(self) -> Node | None:
        return self.attributes.get("UpdatePolicy")

    @property
    def deletion_policy(self) -> Node | None:
        return self.attributes.get("DeletionPolicy")

    @property
    def update_replace_policy(self) -> Node | None:
        return self.attributes.get("UpdateReplacePolicy")

    @property
    def creation_policy(self) -> Node | None:
        return self.attributes.get("CreationPolicy")


class Template(BaseModel):
    """構築後は不変として扱うテンプレート全体のビュー。"""

    raw: Node
    sections: dict[str, Node] = Field(default_factory=dict)
    resources: dict[str, Resource] = Field(default_factory=dict)
    parameters: dict[str, Parameter] = Field(default_factory=dict)
    conditions: dict[str, Node] = Field(default_factory=dict)
    outputs: dict[str, Output] = Field(default_factory=dict)
    mappings: dict[str, Node] = Field(default_factory=dict)
    transform: list[str] = Field(default_factory=list)

    def has_resource(self, name: str) -> bool:
        return name in self.resources

    def sorted_resources(self) -> list[Resource]:
        """論理IDの昇順でリソースを返す。"""
        return [self.resources[name] for name in sorted(self.resources)]

    def resources_of_type(self, *types: str) -> list[Resource]:
        return [res for res in self.sorted_resources() if res.type in types]

    def locate(self, path: list[str]) -> Node:
        """パンくずパスを辿り、到達できた最も深いノードを返す。

        マッピングはキー、シーケンスは10進数のインデックス（"[0]" 表記も可）で辿る。
        途中で辿れなくなった場合はその直前のノードを返す。
        """
        current: Node = self.raw
        for crumb in path:
            node = resolve(current)
            child: Node | None = None
            if isinstance(node, MappingNode):
                child = node.get(crumb)
            elif isinstance(node, SequenceNode):
                index = crumb.strip("[]")
                if index.isdigit() and int(index) < len(node.items):
                    child = node.items[int(index)]
            if child is None:
                break
            current = child
        return current
