"""組み込みスキーマに基づくプロパティ検査ルール。

未知のリソースタイプは対象外とし、組み込み関数の値は検査しない。
"""

import re
import threading
from collections.abc import Iterator
from typing import Any

from ballast.models.finding import Finding
from ballast.models.node import MappingNode, resolve
from ballast.models.schema import Constraints, Property
from ballast.models.template import Resource, Template
from ballast.rules.base import Rule, property_path
from ballast.rules.registry import register
from ballast.schema.service import SchemaService
from ballast.validators.intrinsics import is_intrinsic
from ballast.validators.predicates import (
    canonical_json_key,
    check_primitive_type,
    get_path,
    has_path,
    to_float,
    type_name,
)

_DOCS = "https://docs.aws.amazon.com/AWSCloudFormation/latest/UserGuide"
_SPEC_URL = f"{_DOCS}/cfn-resource-specification.html"

_MAX_VALUE_IN_MESSAGE = 50


def _known_resources(template: Template, schema: SchemaService) -> Iterator[Resource]:
    """スキーマに定義があり、Properties を解釈できるリソースを論理ID順に返す。"""
    for resource in template.sorted_resources():
        if not schema.has_resource_type(resource.type):
            continue
        node = resource.properties_node
        if node is not None and (not isinstance(resolve(node), MappingNode) or is_intrinsic(node.decode())):
            continue
        yield resource


def _label(resource: Resource) -> str:
    return f"resource '{resource.logical_id}' ({resource.type})"


def _path(resource: Resource, dotted: str) -> list[str]:
    return property_path(resource, *dotted.split("."))


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _truncate(value: str) -> str:
    if len(value) <= _MAX_VALUE_IN_MESSAGE:
        return value
    return value[:_MAX_VALUE_IN_MESSAGE] + "..."


class _ConstraintRule(Rule):
    """プロパティ制約テーブルの各エントリに対して値を検査するルールの共通処理。"""

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in _known_resources(template, schema):
            for dotted, constraints in schema.iter_property_constraints(resource.type):
                if not has_path(resource.properties, dotted):
                    continue
                value = get_path(resource.properties, dotted)
                if value is None or is_intrinsic(value):
                    continue
                findings.extend(self.check(template, resource, dotted, value, constraints))
        return findings

    def check(
        self, template: Template, resource: Resource, dotted: str, value: Any, constraints: Constraints
    ) -> list[Finding]:
        raise NotImplementedError


# --- プロパティ名・必須・型 ---


@register
class UnknownProperty(Rule):
    id = "E1101"
    short_desc = "Validate an unknown property"
    description = "Properties must be defined for the resource type in the CloudFormation resource specification"
    source_url = _SPEC_URL
    tags = ("schema", "resources", "properties")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in _known_resources(template, schema):
            for name in resource.properties:
                if not schema.has_property(resource.type, name):
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{resource.logical_id}' ({resource.type}) has unknown property '{name}'",
                            property_path(resource, name),
                        )
                    )
        return findings


@register
class RequiredProperty(Rule):
    id = "E3003"
    short_desc = "Required Resource properties are missing"
    description = "Properties marked as required in the resource specification must be specified"
    source_url = _SPEC_URL
    tags = ("schema", "resources", "properties", "required")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in _known_resources(template, schema):
            for name in schema.get_required_properties(resource.type):
                if name not in resource.properties:
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{resource.logical_id}' ({resource.type}) is missing required property '{name}'",
                            property_path(resource),
                        )
                    )
        return findings


@register
class PropertyValueType(Rule):
    id = "E3012"
    short_desc = "Check resource properties values"
    description = (
        "Property values must match the primitive, list, map or object type declared in the resource specification. "
        "Scalars are coerced the way CloudFormation does: numbers are accepted as strings, "
        "numeric strings as numbers and 'true' or 'false' as booleans"
    )
    source_url = _SPEC_URL
    tags = ("schema", "resources", "properties", "types")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in _known_resources(template, schema):
            for name, value in resource.properties.items():
                prop = schema.get_property(resource.type, name)
                if prop is None or value is None or is_intrinsic(value):
                    continue
                for path, error in self._problems(prop, value, [name]):
                    display = path[0] + "".join(p if p.startswith("[") else f".{p}" for p in path[1:])
                    findings.append(
                        self.finding(
                            template,
                            f"Property '{display}' in {_label(resource)}: {error}",
                            property_path(resource, *path),
                        )
                    )
        return findings

    def _problems(self, prop: Property, value: Any, path: list[str]) -> list[tuple[list[str], str]]:
        if prop.primitive_type:
            error = check_primitive_type(value, prop.primitive_type)
            return [(path, error)] if error else []
        if prop.is_list:
            if not isinstance(value, list):
                return [(path, f"expected list, got {type_name(value)}")]
            problems: list[tuple[list[str], str]] = []
            for i, item in enumerate(value):
                problems.extend(self._item_problems(prop, item, [*path, f"[{i}]"]))
            return problems
        if prop.is_map:
            if not isinstance(value, dict):
                return [(path, f"expected map, got {type_name(value)}")]
            problems = []
            for key, item in value.items():
                problems.extend(self._item_problems(prop, item, [*path, key]))
            return problems
        if prop.type and not isinstance(value, dict):
            return [(path, f"expected object ({prop.type}), got {type_name(value)}")]
        return []

    def _item_problems(self, prop: Property, item: Any, path: list[str]) -> list[tuple[list[str], str]]:
        if item is None or is_intrinsic(item):
            return []
        if prop.primitive_item_type:
            error = check_primitive_type(item, prop.primitive_item_type)
            return [(path, error)] if error else []
        if prop.item_type and not isinstance(item, dict):
            return [(path, f"expected object ({prop.item_type}), got {type_name(item)}")]
        return []


# --- 値制約 ---


_pattern_cache: dict[str, re.Pattern[str] | None] = {}
_pattern_lock = threading.Lock()


def _compile(pattern: str) -> re.Pattern[str] | None:
    """パターンをコンパイルしてキャッシュする。コンパイルできないパターンは None。"""
    with _pattern_lock:
        if pattern not in _pattern_cache:
            try:
                _pattern_cache[pattern] = re.compile(pattern)
            except re.error:
                _pattern_cache[pattern] = None
        return _pattern_cache[pattern]


@register
class PatternConstraint(_ConstraintRule):
    id = "E3031"
    short_desc = "Check if property values adhere to a specific pattern"
    description = "String property values must match the pattern defined for the property"
    source_url = _SPEC_URL
    tags = ("schema", "resources", "properties", "pattern")

    def check(
        self, template: Template, resource: Resource, dotted: str, value: Any, constraints: Constraints
    ) -> list[Finding]:
        if not constraints.pattern:
            return []
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            return []
        compiled = _compile(constraints.pattern)
        text = str(value)
        if compiled is None or compiled.search(text):
            return []
        return [
            self.finding(
                template,
                f"Property '{dotted}' in {_label(resource)} has value '{_truncate(text)}' "
                f"that does not match pattern '{constraints.pattern}'",
                _path(resource, dotted),
            )
        ]


@register
class ArrayLength(_ConstraintRule):
    id = "E3032"
    short_desc = "Check if a list has between min and max number of values specified"
    description = "List property values must have a number of items within the allowed range"
    source_url = _SPEC_URL
    tags = ("schema", "resources", "properties", "array")

    def check(
        self, template: Template, resource: Resource, dotted: str, value: Any, constraints: Constraints
    ) -> list[Finding]:
        if not isinstance(value, list):
            return []
        count = len(value)
        if constraints.min_items is not None and count < constraints.min_items:
            message = f"has {count} items, expected at least {constraints.min_items}"
        elif constraints.max_items is not None and count > constraints.max_items:
            message = f"has {count} items, expected at most {constraints.max_items}"
        else:
            return []
        return [self.finding(template, f"Property '{dotted}' in {_label(resource)} {message}", _path(resource, dotted))]


@register
class StringLength(_ConstraintRule):
    id = "E3033"
    short_desc = "Check if a string has between min and max number of values specified"
    description = "String property values must have a length within the allowed range"
    source_url = _SPEC_URL
    tags = ("schema", "resources", "properties", "length")

    def check(
        self, template: Template, resource: Resource, dotted: str, value: Any, constraints: Constraints
    ) -> list[Finding]:
        if not isinstance(value, str):
            return []
        length = len(value)
        if constraints.min_length is not None and length < constraints.min_length:
            message = f"has length {length}, expected at least {constraints.min_length}"
        elif constraints.max_length is not None and length > constraints.max_length:
            message = f"has length {length}, expected at most {constraints.max_length}"
        else:
            return []
        return [self.finding(template, f"Property '{dotted}' in {_label(resource)} {message}", _path(resource, dotted))]


@register
class NumericRange(_ConstraintRule):
    id = "E3034"
    short_desc = "Check if a number is between min and max"
    description = "Numeric property values must lie within the allowed range"
    source_url = _SPEC_URL
    tags = ("schema", "resources", "properties", "range")

    def check(
        self, template: Template, resource: Resource, dotted: str, value: Any, constraints: Constraints
    ) -> list[Finding]:
        if constraints.min_value is None and constraints.max_value is None:
            return []
        number = to_float(value)
        if number is None:
            return []
        if constraints.min_value is not None and number < constraints.min_value:
            message = f"has value {_format_number(number)}, expected at least {_format_number(constraints.min_value)}"
        elif constraints.max_value is not None and number > constraints.max_value:
            message = f"has value {_format_number(number)}, expected at most {_format_number(constraints.max_value)}"
        else:
            return []
        return [self.finding(template, f"Property '{dotted}' in {_label(resource)} {message}", _path(resource, dotted))]


@register
class UniqueItems(_ConstraintRule):
    id = "E3037"
    short_desc = "Check if a list has duplicate values"
    description = "List properties declared with unique items must not repeat a value"
    source_url = _SPEC_URL
    tags = ("schema", "resources", "properties", "array")

    def check(
        self, template: Template, resource: Resource, dotted: str, value: Any, constraints: Constraints
    ) -> list[Finding]:
        if not constraints.unique_items or not isinstance(value, list):
            return []
        findings: list[Finding] = []
        seen: dict[str, int] = {}
        reported: set[str] = set()
        for i, item in enumerate(value):
            if is_intrinsic(item):
                continue
            key = canonical_json_key(item)
            if key not in seen:
                seen[key] = i
                continue
            if key in reported:
                continue
            reported.add(key)
            findings.append(
                self.finding(
                    template,
                    f"Property '{dotted}' in {_label(resource)} has duplicate item at index {i} "
                    f"(same as index {seen[key]})",
                    [*_path(resource, dotted), f"[{i}]"],
                )
            )
        return findings


@register
class ReadOnlyProperty(Rule):
    id = "E3040"
    short_desc = "Check that read-only properties are not specified"
    description = "Read-only properties are returned by CloudFormation and cannot be set in a template"
    source_url = _SPEC_URL
    tags = ("schema", "resources", "properties", "readonly")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in _known_resources(template, schema):
            constraints = schema.get_resource_constraints(resource.type)
            if constraints is None:
                continue
            for dotted in constraints.read_only_properties:
                if has_path(resource.properties, dotted):
                    findings.append(
                        self.finding(
                            template,
                            f"Property '{dotted}' in {_label(resource)} is read-only and cannot be specified",
                            _path(resource, dotted),
                        )
                    )
        return findings


@register
class EnumValue(Rule):
    id = "E3030"
    short_desc = "Check if properties have a valid value"
    description = "String property values with an enumerated domain must be one of the allowed values"
    source_url = _SPEC_URL
    tags = ("schema", "resources", "properties", "allowed-values")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in _known_resources(template, schema):
            parts = resource.type.split("::")
            if len(parts) != 3 or parts[0] != "AWS":
                continue
            service = parts[1].lower()
            for name, value in resource.properties.items():
                if not isinstance(value, str):
                    continue
                enum_name = schema.get_enum_for_property(service, name)
                if not enum_name or schema.is_valid_value(service, enum_name, value):
                    continue
                allowed = ", ".join(schema.get_allowed_values(service, enum_name))
                findings.append(
                    self.finding(
                        template,
                        f"Property '{name}' in {_label(resource)} has invalid value '{value}'. "
                        f"Allowed values: {allowed}",
                        property_path(resource, name),
                    )
                )
        return findings


# --- リソース単位のプロパティ間制約 ---


@register
class AnyOfGroups(Rule):
    id = "E3017"
    short_desc = "Check that at least one of the required properties is specified"
    description = "For each anyOf group at least one of the listed properties must be present"
    source_url = _SPEC_URL
    tags = ("schema", "resources", "properties", "anyof")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in _known_resources(template, schema):
            constraints = schema.get_resource_constraints(resource.type)
            if constraints is None:
                continue
            for group in constraints.any_of_groups:
                if not any(has_path(resource.properties, p) for p in group):
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{resource.logical_id}' ({resource.type}) must have at least one of: "
                            f"{', '.join(group)}",
                            property_path(resource),
                        )
                    )
        return findings


@register
class MutuallyExclusive(Rule):
    id = "E3014"
    short_desc = "Check that mutually exclusive properties are not specified together"
    description = "Only one property of each mutually exclusive set may be specified"
    source_url = _SPEC_URL
    tags = ("cross-property", "resources", "properties", "exclusive")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in _known_resources(template, schema):
            constraints = schema.get_resource_constraints(resource.type)
            if constraints is None:
                continue
            for group in constraints.mutually_exclusive:
                present = sorted(p for p in group if has_path(resource.properties, p))
                if len(present) > 1:
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{resource.logical_id}' ({resource.type}) has mutually exclusive properties: "
                            f"{', '.join(present)}",
                            _path(resource, present[-1]),
                        )
                    )
        return findings


@register
class OneOfGroups(Rule):
    id = "E3018"
    short_desc = "Check that exactly one of the properties is specified"
    description = "For each oneOf group exactly one of the listed properties must be present"
    source_url = _SPEC_URL
    tags = ("cross-property", "resources", "properties", "oneof")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in _known_resources(template, schema):
            constraints = schema.get_resource_constraints(resource.type)
            if constraints is None:
                continue
            label = f"Resource '{resource.logical_id}' ({resource.type})"
            for group in constraints.one_of_groups:
                present = [p for p in group if has_path(resource.properties, p)]
                if not present:
                    message = f"{label} must have exactly one of: {', '.join(group)}"
                elif len(present) > 1:
                    message = (
                        f"{label} has multiple oneOf properties but only one is allowed: {', '.join(present)}"
                    )
                else:
                    continue
                findings.append(self.finding(template, message, property_path(resource)))
        return findings


@register
class DependentExcluded(Rule):
    id = "E3020"
    short_desc = "Check that excluded properties are not specified with a trigger property"
    description = "Some properties cannot be used when another property is specified"
    source_url = _SPEC_URL
    tags = ("cross-property", "resources", "properties", "dependencies")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in _known_resources(template, schema):
            constraints = schema.get_resource_constraints(resource.type)
            if constraints is None:
                continue
            for trigger, excluded in sorted(constraints.dependent_excluded.items()):
                if not has_path(resource.properties, trigger):
                    continue
                present = [p for p in excluded if has_path(resource.properties, p)]
                if present:
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{resource.logical_id}' ({resource.type}) property '{trigger}' "
                            f"cannot be used with: {', '.join(present)}",
                            _path(resource, trigger),
                        )
                    )
        return findings


@register
class DependentRequired(Rule):
    id = "E3021"
    short_desc = "Check that required companion properties are specified"
    description = "Some properties require other properties to be specified as well"
    source_url = _SPEC_URL
    tags = ("cross-property", "resources", "properties", "dependencies")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in _known_resources(template, schema):
            constraints = schema.get_resource_constraints(resource.type)
            if constraints is None:
                continue
            for trigger, required in sorted(constraints.dependent_required.items()):
                if not has_path(resource.properties, trigger):
                    continue
                missing = [p for p in required if not has_path(resource.properties, p)]
                if missing:
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{resource.logical_id}' ({resource.type}) property '{trigger}' "
                            f"requires: {', '.join(missing)}",
                            _path(resource, trigger),
                        )
                    )
        return findings
