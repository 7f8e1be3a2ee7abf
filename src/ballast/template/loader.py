"""YAML/JSONテンプレートを位置情報付きノードツリーへ変換するローダー。

PyYAMLのcomposerで得たノードを独自の Node モデルへ写し取る。
CloudFormationの短縮タグ（!Ref, !GetAtt, !Sub など）は
長い形式（Ref, Fn::GetAtt, Fn::Sub ...）の単一キーマッピングへ展開する。
"""

from typing import Any

import yaml
from yaml.composer import Composer
from yaml.constructor import ConstructorError, SafeConstructor
from yaml.events import AliasEvent
from yaml.parser import Parser
from yaml.reader import Reader
from yaml.resolver import Resolver
from yaml.scanner import Scanner

from ballast.models.errors import TemplateParseError
from ballast.models.node import AliasNode, MappingEntry, MappingNode, Node, ScalarNode, SequenceNode

_YAML_TAG_PREFIX = "tag:yaml.org,2002:"

# safe_load相当で値を構築するタグ。timestampやbinaryは元の文字列のまま扱う
_CONSTRUCTED_TAGS = {
    _YAML_TAG_PREFIX + "null",
    _YAML_TAG_PREFIX + "bool",
    _YAML_TAG_PREFIX + "int",
    _YAML_TAG_PREFIX + "float",
    _YAML_TAG_PREFIX + "str",
}

# 短縮タグのうち Fn:: を付けないもの
_BARE_INTRINSIC_TAGS = {"Ref", "Condition"}

# マッピング・シーケンスの入れ子の上限
MAX_NESTING_DEPTH = 100

_NESTING_TOO_DEEP = "Template nesting is too deep"


class _AliasMarker(yaml.Node):
    """エイリアス参照位置を保持するためのcomposer内部ノード。"""

    id = "alias"

    def __init__(self, target: yaml.Node, anchor: str, start_mark: Any, end_mark: Any) -> None:
        super().__init__(target.tag, target, start_mark, end_mark)
        self.anchor = anchor


class _TemplateComposer(Reader, Scanner, Parser, Composer, SafeConstructor, Resolver):
    """エイリアス位置を記録するcomposer。値の構築はスカラー単位でのみ行う。"""

    def __init__(self, stream: str) -> None:
        Reader.__init__(self, stream)
        Scanner.__init__(self)
        Parser.__init__(self)
        Composer.__init__(self)
        SafeConstructor.__init__(self)
        Resolver.__init__(self)

    def compose_node(self, parent: Any, index: Any) -> Any:
        if self.check_event(AliasEvent):
            event = self.peek_event()
            target = super().compose_node(parent, index)
            return _AliasMarker(target, event.anchor, event.start_mark, event.end_mark)
        return super().compose_node(parent, index)


def load_template_node(content: str | bytes) -> MappingNode:
    """テンプレート本文をパースしてルートのマッピングノードを返す。

    Raises:
        TemplateParseError: YAML/JSONとして不正、キー重複、入れ子が深すぎる、
            ルートがマッピングでない場合。
    """
    text = _decode(content)
    if text.lstrip().startswith("{"):
        # JSONではタブは文字列外の空白としてのみ現れる
        text = text.replace("\t", " ")

    composer = _TemplateComposer(text)
    try:
        root = composer.get_single_node()
        if root is None:
            raise TemplateParseError("Template is empty")
        node = _NodeConverter(composer).convert(root)
    except yaml.MarkedYAMLError as e:
        mark = e.problem_mark or e.context_mark
        line = mark.line + 1 if mark else 1
        column = mark.column + 1 if mark else 1
        raise TemplateParseError(_yaml_error_message(e), line, column) from e
    except yaml.YAMLError as e:
        raise TemplateParseError(str(e)) from e
    except RecursionError as e:
        raise TemplateParseError(_NESTING_TOO_DEEP) from e
    finally:
        composer.dispose()

    if not isinstance(node, MappingNode):
        raise TemplateParseError("Template root must be a mapping", node.line, node.column)
    return node


def _decode(content: str | bytes) -> str:
    if isinstance(content, str):
        return content
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise TemplateParseError(f"Template is not valid UTF-8: {e}") from e


def _yaml_error_message(error: yaml.MarkedYAMLError) -> str:
    parts = [part for part in (error.context, error.problem) if part]
    return "; ".join(parts) if parts else str(error)


class _NodeConverter:
    """PyYAMLノードを Node モデルへ変換する。"""

    def __init__(self, composer: _TemplateComposer) -> None:
        self._composer = composer
        self._stack: set[int] = set()
        self._depth = 0

    def convert(self, node: yaml.Node) -> Node:
        line = node.start_mark.line + 1
        column = node.start_mark.column + 1

        if self._depth >= MAX_NESTING_DEPTH:
            raise TemplateParseError(_NESTING_TOO_DEEP, line, column)
        self._depth += 1
        try:
            return self._convert_node(node, line, column)
        finally:
            self._depth -= 1

    def _convert_node(self, node: yaml.Node, line: int, column: int) -> Node:
        if isinstance(node, _AliasMarker):
            if id(node.value) in self._stack:
                raise TemplateParseError(f"Recursive alias '*{node.anchor}'", line, column)
            return AliasNode(line=line, column=column, anchor=node.anchor, target=self.convert(node.value))

        tag = node.tag or ""
        self._stack.add(id(node))
        try:
            if tag.startswith("!") and not tag.startswith("!!") and len(tag) > 1:
                return self._convert_intrinsic(node, tag[1:], line, column)
            if isinstance(node, yaml.ScalarNode):
                return ScalarNode(line=line, column=column, raw=node.value, value=self._scalar_value(node, tag))
            if isinstance(node, yaml.SequenceNode):
                return SequenceNode(line=line, column=column, items=[self.convert(item) for item in node.value])
            return self._convert_mapping(node, line, column)
        finally:
            self._stack.discard(id(node))

    def _convert_mapping(self, node: yaml.MappingNode, line: int, column: int) -> MappingNode:
        entries: list[MappingEntry] = []
        seen: dict[str, int] = {}
        for key_node, value_node in node.value:
            if isinstance(key_node, _AliasMarker):
                key_node = key_node.value
            if not isinstance(key_node, yaml.ScalarNode):
                raise TemplateParseError(
                    "Mapping keys must be scalars",
                    key_node.start_mark.line + 1,
                    key_node.start_mark.column + 1,
                )
            key_line = key_node.start_mark.line + 1
            key_column = key_node.start_mark.column + 1
            if key_node.value in seen:
                raise TemplateParseError(
                    f"Duplicate key '{key_node.value}' (first defined at line {seen[key_node.value]})",
                    key_line,
                    key_column,
                )
            seen[key_node.value] = key_line
            key = ScalarNode(line=key_line, column=key_column, raw=key_node.value, value=key_node.value)
            entries.append(MappingEntry(key=key, value=self.convert(value_node)))
        return MappingNode(line=line, column=column, entries=entries)

    def _convert_intrinsic(self, node: yaml.Node, name: str, line: int, column: int) -> MappingNode:
        function = name if name in _BARE_INTRINSIC_TAGS else f"Fn::{name}"
        if isinstance(node, yaml.ScalarNode):
            untagged = yaml.ScalarNode(
                self._composer.resolve(yaml.ScalarNode, node.value, (node.style is None, False)),
                node.value,
                node.start_mark,
                node.end_mark,
                style=node.style,
            )
            if function == "Fn::GetAtt" and "." in node.value:
                resource, attribute = node.value.split(".", 1)
                value: Node = SequenceNode(
                    line=line,
                    column=column,
                    items=[
                        ScalarNode(line=line, column=column, raw=resource, value=resource),
                        ScalarNode(line=line, column=column, raw=attribute, value=attribute),
                    ],
                )
            else:
                value = self.convert(untagged)
        elif isinstance(node, yaml.SequenceNode):
            value = self.convert(yaml.SequenceNode(_YAML_TAG_PREFIX + "seq", node.value, node.start_mark, node.end_mark))
        else:
            value = self.convert(yaml.MappingNode(_YAML_TAG_PREFIX + "map", node.value, node.start_mark, node.end_mark))

        key = ScalarNode(line=line, column=column, raw=function, value=function)
        return MappingNode(line=line, column=column, entries=[MappingEntry(key=key, value=value)])

    def _scalar_value(self, node: yaml.ScalarNode, tag: str) -> Any:
        if tag not in _CONSTRUCTED_TAGS:
            return node.value
        try:
            value = self._composer.construct_object(node)
        except ConstructorError as e:
            raise TemplateParseError(
                str(e.problem or e), node.start_mark.line + 1, node.start_mark.column + 1
            ) from e
        except ValueError:
            # int() の桁数上限を超える数値などは表記のまま保持する
            return node.value
        if isinstance(value, (str, int, float, bool)) or value is None:
            return value
        return node.value
