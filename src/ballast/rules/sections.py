"""Parameters / Metadata / Outputs / Mappings / Conditions セクションの構成ルール。"""

import re
from collections.abc import Iterator
from typing import Any

from ballast.models.finding import Finding
from ballast.models.node import MappingNode, resolve
from ballast.models.template import Template
from ballast.rules.base import Rule
from ballast.rules.registry import register
from ballast.schema.service import SchemaService
from ballast.validators.intrinsics import find_refs, find_sub_refs

_DOCS = "https://docs.aws.amazon.com/AWSCloudFormation/latest/UserGuide"

PARAMETER_PROPERTIES = frozenset(
    {
        "Type",
        "Default",
        "AllowedPattern",
        "AllowedValues",
        "ConstraintDescription",
        "Description",
        "MaxLength",
        "MaxValue",
        "MinLength",
        "MinValue",
        "NoEcho",
    }
)
OUTPUT_PROPERTIES = frozenset({"Value", "Description", "Export", "Condition"})
CONDITION_FUNCTIONS = frozenset({"Fn::Equals", "Fn::And", "Fn::Or", "Fn::Not", "Fn::If", "Condition"})

MAX_MAPPINGS = 200
MAX_MAPPING_NAME_LENGTH = 255

_MAPPING_KEY = re.compile(r"^[a-zA-Z0-9.-]+$")


@register
class ParameterConfiguration(Rule):
    id = "E2001"
    short_desc = "Parameter configuration error"
    description = "Parameters must be objects with a Type and may only use known parameter properties"
    source_url = f"{_DOCS}/parameters-section-structure.html"
    tags = ("sections", "parameters")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for name in sorted(template.parameters):
            parameter = template.parameters[name]
            body = resolve(parameter.node)
            if not isinstance(body, MappingNode):
                findings.append(self.finding(template, f"Parameter '{name}' must be an object", ["Parameters", name]))
                continue
            if not parameter.type:
                findings.append(
                    self.finding(
                        template,
                        f"Parameter '{name}' is missing required property 'Type'",
                        ["Parameters", name],
                    )
                )
            for key in body.keys():
                if key not in PARAMETER_PROPERTIES:
                    findings.append(
                        self.finding(
                            template,
                            f"Parameter '{name}' has invalid property '{key}'",
                            ["Parameters", name, key],
                        )
                    )
        return findings


@register
class UnusedParameter(Rule):
    id = "W2001"
    short_desc = "Unused parameter"
    description = "Parameters should be referenced by Ref or Fn::Sub somewhere in the template"
    source_url = f"{_DOCS}/parameters-section-structure.html"
    tags = ("sections", "parameters", "unused")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        used: set[str] = set()
        for section, node in template.sections.items():
            if section == "Parameters":
                continue
            value = node.decode()
            used.update(find_refs(value))
            used.update(find_sub_refs(value))
        return [
            self.finding(template, f"Parameter '{name}' is defined but never used", ["Parameters", name])
            for name in sorted(template.parameters)
            if name not in used
        ]


def _null_paths(value: Any, path: list[str]) -> Iterator[list[str]]:
    if value is None:
        yield path
    elif isinstance(value, dict):
        for key, child in value.items():
            yield from _null_paths(child, [*path, key])
    elif isinstance(value, list):
        for i, child in enumerate(value):
            yield from _null_paths(child, [*path, f"[{i}]"])


@register
class MetadataSection(Rule):
    id = "E4002"
    short_desc = "Metadata section is valid"
    description = "The template Metadata section must be an object without null values"
    source_url = f"{_DOCS}/metadata-section-structure.html"
    tags = ("sections", "metadata")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        node = template.sections.get("Metadata")
        if node is None:
            return []
        if not isinstance(resolve(node), MappingNode):
            return [self.finding(template, "Metadata must be an object", ["Metadata"])]
        return [
            self.finding(template, f"Metadata contains null value at {'.'.join(path[1:])}", path)
            for path in _null_paths(node.decode(), ["Metadata"])
        ]


@register
class OutputConfiguration(Rule):
    id = "E6001"
    short_desc = "Output property structure error"
    description = "Outputs must be objects using only Value, Description, Export and Condition"
    source_url = f"{_DOCS}/outputs-section-structure.html"
    tags = ("sections", "outputs")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for name in sorted(template.outputs):
            body = resolve(template.outputs[name].node)
            if not isinstance(body, MappingNode):
                findings.append(self.finding(template, f"Output '{name}' must be an object", ["Outputs", name]))
                continue
            for key in body.keys():
                if key not in OUTPUT_PROPERTIES:
                    findings.append(
                        self.finding(
                            template,
                            f"Output '{name}' has invalid property '{key}'",
                            ["Outputs", name, key],
                        )
                    )
        return findings


@register
class MappingConfiguration(Rule):
    id = "E7001"
    short_desc = "Mappings are appropriately configured"
    description = (
        "Mappings must be two levels of objects with alphanumeric keys, "
        f"and a template may declare at most {MAX_MAPPINGS} mappings"
    )
    source_url = f"{_DOCS}/mappings-section-structure.html"
    tags = ("sections", "mappings")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for name in sorted(template.mappings):
            findings.extend(self._check_mapping(template, name))
        if len(template.mappings) > MAX_MAPPINGS:
            findings.append(
                self.finding(
                    template,
                    f"Template has {len(template.mappings)} mappings, exceeding the limit of {MAX_MAPPINGS}",
                    ["Mappings"],
                )
            )
        return findings

    def _check_mapping(self, template: Template, name: str) -> list[Finding]:
        path = ["Mappings", name]
        findings: list[Finding] = []
        if len(name) > MAX_MAPPING_NAME_LENGTH:
            findings.append(
                self.finding(template, f"Mapping '{name}' name exceeds {MAX_MAPPING_NAME_LENGTH} characters", path)
            )
        if not _MAPPING_KEY.match(name):
            findings.append(self.finding(template, f"Mapping '{name}' name must be alphanumeric (a-zA-Z0-9.-)", path))

        body = resolve(template.mappings[name])
        if not isinstance(body, MappingNode):
            findings.append(self.finding(template, f"Mapping '{name}' must be an object", path))
            return findings
        if not body.entries:
            findings.append(self.finding(template, f"Mapping '{name}' must have at least one top-level key", path))

        for entry in body.entries:
            top_key = str(entry.key.value)
            top_path = [*path, top_key]
            if not _MAPPING_KEY.match(top_key):
                findings.append(
                    self.finding(
                        template, f"Mapping '{name}' key '{top_key}' must be alphanumeric (a-zA-Z0-9.-)", top_path
                    )
                )
            second = resolve(entry.value)
            if not isinstance(second, MappingNode):
                findings.append(
                    self.finding(template, f"Mapping '{name}' top-level key '{top_key}' must be an object", top_path)
                )
                continue
            if not second.entries:
                findings.append(
                    self.finding(
                        template,
                        f"Mapping '{name}' top-level key '{top_key}' must have at least one second-level key",
                        top_path,
                    )
                )
            for second_key in second.keys():
                if not _MAPPING_KEY.match(second_key):
                    findings.append(
                        self.finding(
                            template,
                            f"Mapping '{name}' second-level key '{second_key}' must be alphanumeric (a-zA-Z0-9.-)",
                            [*top_path, second_key],
                        )
                    )
        return findings


@register
class ConditionConfiguration(Rule):
    id = "E8001"
    short_desc = "Condition configuration error"
    description = "Each condition must be a condition function (Fn::Equals, Fn::And, Fn::Or, Fn::Not, Condition)"
    source_url = f"{_DOCS}/conditions-section-structure.html"
    tags = ("sections", "conditions")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for name in sorted(template.conditions):
            path = ["Conditions", name]
            expression = template.conditions[name].decode()
            if expression is None:
                findings.append(self.finding(template, f"Condition '{name}' has no expression", path))
            elif not isinstance(expression, dict):
                findings.append(self.finding(template, f"Condition '{name}' must be a condition function", path))
            elif not CONDITION_FUNCTIONS.intersection(expression):
                findings.append(
                    self.finding(
                        template,
                        f"Condition '{name}' must use a valid condition function "
                        "(Fn::Equals, Fn::And, Fn::Or, Fn::Not, Condition)",
                        path,
                    )
                )
        return findings
