"""ノードツリーからテンプレートモデルを構築する。"""

from typing import Any

from ballast.models.node import MappingNode, Node, ScalarNode, SequenceNode, resolve
from ballast.models.template import Output, Parameter, Resource, Template
from ballast.template.loader import load_template_node


def parse_template(content: str | bytes) -> Template:
    """テンプレート本文をパースして Template を構築する。

    Raises:
        TemplateParseError: 本文がYAML/JSONとして不正な場合。
    """
    return build_template(load_template_node(content))


def build_template(root: MappingNode) -> Template:
    """ルートマッピングから Template を構築する。

    セクションの形が不正でも例外にはせず、読み取れる範囲だけを取り込む。
    形の問題はルール側で診断する。
    """
    sections = {entry.key.raw: entry.value for entry in root.entries}

    return Template(
        raw=root,
        sections=sections,
        resources=_build_resources(sections.get("Resources")),
        parameters=_build_parameters(sections.get("Parameters")),
        conditions=_mapping_children(sections.get("Conditions")),
        outputs=_build_outputs(sections.get("Outputs")),
        mappings=_mapping_children(sections.get("Mappings")),
        transform=_build_transform(sections.get("Transform")),
    )


def _mapping_children(node: Node | None) -> dict[str, Node]:
    if node is None:
        return {}
    node = resolve(node)
    if not isinstance(node, MappingNode):
        return {}
    return {entry.key.raw: entry.value for entry in node.entries}


def _build_resources(node: Node | None) -> dict[str, Resource]:
    resources: dict[str, Resource] = {}
    for logical_id, res_node in _mapping_children(node).items():
        resources[logical_id] = _build_resource(logical_id, res_node)
    return resources


def _build_resource(logical_id: str, node: Node) -> Resource:
    body = resolve(node)
    if not isinstance(body, MappingNode):
        return Resource(logical_id=logical_id, node=node)

    attributes = {entry.key.raw: entry.value for entry in body.entries}

    properties: dict[str, Any] = {}
    props_node = attributes.get("Properties")
    if props_node is not None and isinstance(resolve(props_node), MappingNode):
        properties = props_node.decode()

    metadata: dict[str, Any] = {}
    metadata_node = attributes.get("Metadata")
    if metadata_node is not None and isinstance(resolve(metadata_node), MappingNode):
        metadata = metadata_node.decode()

    return Resource(
        logical_id=logical_id,
        type=_scalar_string(attributes.get("Type")),
        properties=properties,
        depends_on=_string_list(attributes.get("DependsOn")),
        condition=_scalar_string(attributes.get("Condition")),
        metadata=metadata,
        node=node,
        attributes=attributes,
    )


def _build_parameters(node: Node | None) -> dict[str, Parameter]:
    parameters: dict[str, Parameter] = {}
    for name, param_node in _mapping_children(node).items():
        body = resolve(param_node)
        param_type = ""
        default: Any = None
        if isinstance(body, MappingNode):
            param_type = _scalar_string(body.get("Type"))
            default_node = body.get("Default")
            default = default_node.decode() if default_node is not None else None
        parameters[name] = Parameter(name=name, type=param_type, default=default, node=param_node)
    return parameters


def _build_outputs(node: Node | None) -> dict[str, Output]:
    outputs: dict[str, Output] = {}
    for name, out_node in _mapping_children(node).items():
        body = resolve(out_node)
        value: Any = None
        condition = ""
        if isinstance(body, MappingNode):
            value_node = body.get("Value")
            value = value_node.decode() if value_node is not None else None
            condition = _scalar_string(body.get("Condition"))
        outputs[name] = Output(name=name, value=value, condition=condition, node=out_node)
    return outputs


def _build_transform(node: Node | None) -> list[str]:
    return _string_list(node)


def _scalar_string(node: Node | None) -> str:
    if node is None:
        return ""
    node = resolve(node)
    if isinstance(node, ScalarNode) and isinstance(node.value, str):
        return node.value
    return ""


def _string_list(node: Node | None) -> list[str]:
    """スカラー1件またはスカラーのシーケンスを文字列リストにする。"""
    if node is None:
        return []
    node = resolve(node)
    if isinstance(node, ScalarNode):
        return [node.value] if isinstance(node.value, str) and node.value else []
    if isinstance(node, SequenceNode):
        return [
            item.value
            for item in (resolve(i) for i in node.items)
            if isinstance(item, ScalarNode) and isinstance(item.value, str)
        ]
    return []
