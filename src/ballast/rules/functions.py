"""Fn::FindInMap / Fn::If と条件関数の引数構造を検査するルール。"""

from collections.abc import Iterator
from typing import Any, ClassVar

from ballast.models.finding import Finding
from ballast.models.node import MappingNode, resolve
from ballast.models.template import Template
from ballast.rules.base import Rule, property_path
from ballast.rules.registry import register
from ballast.schema.service import SchemaService
from ballast.validators.intrinsics import walk_with_path

_DOCS = "https://docs.aws.amazon.com/AWSCloudFormation/latest/UserGuide"
_CONDITION_DOCS = f"{_DOCS}/intrinsic-function-reference-conditions.html"


def _condition_values(template: Template) -> Iterator[tuple[str, list[str], Any]]:
    for name in sorted(template.conditions):
        yield f"condition '{name}'", ["Conditions", name], template.conditions[name].decode()


def _resource_and_output_values(template: Template) -> Iterator[tuple[str, list[str], Any]]:
    for resource in template.sorted_resources():
        yield f"resource '{resource.logical_id}'", property_path(resource), resource.properties
    for name in sorted(template.outputs):
        yield f"output '{name}'", ["Outputs", name, "Value"], template.outputs[name].value


def _function_calls(
    values: Iterator[tuple[str, list[str], Any]], function: str
) -> Iterator[tuple[str, list[str], Any]]:
    """値ツリー中の組み込み関数呼び出しを (説明, 関数キーまでのパス, 引数) で列挙する。"""
    for owner, base, value in values:
        for path, mapping in walk_with_path(value, base):
            if function in mapping:
                yield owner, [*path, function], mapping[function]


def _mapping_keys(template: Template, name: str) -> dict[str, set[str]] | None:
    """マッピングのトップレベルキーごとの第2レベルキー集合。マッピングが読めなければ None。"""
    body = resolve(template.mappings[name])
    if not isinstance(body, MappingNode):
        return None
    keys: dict[str, set[str]] = {}
    for entry in body.entries:
        second = resolve(entry.value)
        keys[str(entry.key.value)] = set(second.keys()) if isinstance(second, MappingNode) else set()
    return keys


@register
class FindInMapReference(Rule):
    id = "E1011"
    short_desc = "FindInMap validation of configuration"
    description = "Fn::FindInMap must take three arguments naming a declared mapping and its keys"
    source_url = f"{_DOCS}/intrinsic-function-reference-findinmap.html"
    tags = ("functions", "findinmap", "mappings")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        values = _condition_values(template), _resource_and_output_values(template)
        for source in values:
            for owner, path, args in _function_calls(source, "Fn::FindInMap"):
                problem = self._check(template, args)
                if problem:
                    findings.append(self.finding(template, f"{problem} in {owner}", path))
        return findings

    def _check(self, template: Template, args: Any) -> str | None:
        if not isinstance(args, list):
            return "Fn::FindInMap must be a list"
        if len(args) < 3:
            return f"Fn::FindInMap requires 3 arguments, got {len(args)}"

        map_name, top_key, second_key = args[:3]
        if not isinstance(map_name, str):
            return None
        if map_name not in template.mappings:
            return f"Fn::FindInMap references undefined mapping '{map_name}'"

        keys = _mapping_keys(template, map_name)
        if keys is None or not isinstance(top_key, str):
            return None
        if top_key not in keys:
            return f"Fn::FindInMap references undefined top-level key '{top_key}' in mapping '{map_name}'"
        if isinstance(second_key, str) and second_key not in keys[top_key]:
            return (
                f"Fn::FindInMap references undefined second-level key '{second_key}' "
                f"in mapping '{map_name}' under '{top_key}'"
            )
        return None


@register
class IfStructure(Rule):
    """Fn::If の引数の形だけを検査する。条件名の存在確認は E8002 が担う。"""

    id = "E1028"
    short_desc = "Check Fn::If structure for validity"
    description = "Fn::If must be a list of a condition name, a value if true and a value if false"
    source_url = f"{_CONDITION_DOCS}#intrinsic-function-reference-conditions-if"
    tags = ("functions", "conditions", "if")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for owner, path, args in _function_calls(_resource_and_output_values(template), "Fn::If"):
            if not isinstance(args, list):
                findings.append(self.finding(template, f"Fn::If must be a list in {owner}", path))
            elif len(args) != 3:
                findings.append(
                    self.finding(
                        template,
                        "Fn::If must have exactly 3 elements [condition_name, value_if_true, value_if_false], "
                        f"got {len(args)} in {owner}",
                        path,
                    )
                )
            elif not isinstance(args[0], str):
                findings.append(
                    self.finding(template, f"Fn::If first element must be a condition name in {owner}", path)
                )
        return findings


class _ConditionFunctionRule(Rule):
    """条件関数の引数がリストで、要素数が範囲内にあることを検査する共通処理。"""

    function: ClassVar[str] = ""
    min_items: ClassVar[int] = 1
    max_items: ClassVar[int] = 1
    scan_resources: ClassVar[bool] = False

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        sources = [_condition_values(template)]
        if self.scan_resources:
            sources.append(_resource_and_output_values(template))
        findings: list[Finding] = []
        for source in sources:
            for owner, path, args in _function_calls(source, self.function):
                problem = self._check(args)
                if problem:
                    findings.append(self.finding(template, f"{problem} in {owner}", path))
        return findings

    def _check(self, args: Any) -> str | None:
        if not isinstance(args, list):
            return f"{self.function} must be a list"
        if self.min_items == self.max_items and len(args) != self.min_items:
            noun = "element" if self.min_items == 1 else "elements"
            return f"{self.function} must have exactly {self.min_items} {noun}, got {len(args)}"
        if len(args) < self.min_items:
            return f"{self.function} must have at least {self.min_items} conditions, got {len(args)}"
        if len(args) > self.max_items:
            return f"{self.function} must have at most {self.max_items} conditions, got {len(args)}"
        return None


@register
class EqualsStructure(_ConditionFunctionRule):
    id = "E8003"
    short_desc = "Check Fn::Equals structure for validity"
    description = "Fn::Equals must be a list of exactly two values"
    source_url = f"{_CONDITION_DOCS}#intrinsic-function-reference-conditions-equals"
    tags = ("functions", "conditions", "equals")
    function = "Fn::Equals"
    min_items = 2
    max_items = 2
    scan_resources = True


@register
class AndStructure(_ConditionFunctionRule):
    id = "E8004"
    short_desc = "Check Fn::And structure for validity"
    description = "Fn::And must be a list of 2 to 10 conditions"
    source_url = f"{_CONDITION_DOCS}#intrinsic-function-reference-conditions-and"
    tags = ("functions", "conditions", "and")
    function = "Fn::And"
    min_items = 2
    max_items = 10


@register
class NotStructure(_ConditionFunctionRule):
    id = "E8005"
    short_desc = "Check Fn::Not structure for validity"
    description = "Fn::Not must be a list of exactly one condition"
    source_url = f"{_CONDITION_DOCS}#intrinsic-function-reference-conditions-not"
    tags = ("functions", "conditions", "not")
    function = "Fn::Not"


@register
class OrStructure(_ConditionFunctionRule):
    id = "E8006"
    short_desc = "Check Fn::Or structure for validity"
    description = "Fn::Or must be a list of 2 to 10 conditions"
    source_url = f"{_CONDITION_DOCS}#intrinsic-function-reference-conditions-or"
    tags = ("functions", "conditions", "or")
    function = "Fn::Or"
    min_items = 2
    max_items = 10


@register
class ConditionIntrinsic(Rule):
    id = "E8007"
    short_desc = "Check Condition intrinsic function for validity"
    description = "The Condition function inside condition expressions must name a condition as a string"
    source_url = f"{_DOCS}/conditions-section-structure.html"
    tags = ("functions", "conditions", "condition")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        return [
            self.finding(template, f"Condition function must reference a condition name in {owner}", path)
            for owner, path, args in _function_calls(_condition_values(template), "Condition")
            if not isinstance(args, str)
        ]
