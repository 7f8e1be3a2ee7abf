"""Ref / GetAtt / DependsOn / Condition の参照整合性ルール。"""

from collections.abc import Iterator
from typing import Any

from ballast.models.finding import Finding
from ballast.models.template import Template
from ballast.rules.base import Rule, property_path, resource_path
from ballast.rules.registry import register
from ballast.schema.service import SchemaService
from ballast.validators.intrinsics import (
    PSEUDO_PARAMETERS,
    find_condition_refs,
    find_resource_dependencies,
    getatt_target,
    walk_with_path,
)

_DOCS = "https://docs.aws.amazon.com/AWSCloudFormation/latest/UserGuide"


def _template_values(template: Template) -> Iterator[tuple[str, list[str], Any]]:
    """参照を含みうる値を (説明, パス, 値) で列挙する。リソースは論理ID順。"""
    for resource in template.sorted_resources():
        yield f"resource '{resource.logical_id}'", property_path(resource), resource.properties
    for name in sorted(template.outputs):
        yield f"output '{name}'", ["Outputs", name, "Value"], template.outputs[name].value


@register
class UndefinedRef(Rule):
    id = "E1001"
    short_desc = "Ref validation of resources and parameters"
    description = "Ref must point to a declared resource, a declared parameter or a pseudo parameter"
    source_url = f"{_DOCS}/intrinsic-function-reference-ref.html"
    tags = ("reference", "functions", "ref")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        valid = set(template.resources) | set(template.parameters) | PSEUDO_PARAMETERS
        findings: list[Finding] = []
        for owner, base, value in _template_values(template):
            reported: set[str] = set()
            for path, mapping in walk_with_path(value, base):
                target = mapping.get("Ref")
                if not isinstance(target, str) or target in valid or target in reported:
                    continue
                reported.add(target)
                findings.append(
                    self.finding(
                        template,
                        f"Ref '{target}' in {owner} references undefined resource or parameter",
                        [*path, "Ref"],
                    )
                )
        return findings


@register
class UndefinedGetAtt(Rule):
    id = "E1010"
    short_desc = "GetAtt validation of resources"
    description = "Fn::GetAtt must point to a resource declared in the template"
    source_url = f"{_DOCS}/intrinsic-function-reference-getatt.html"
    tags = ("reference", "functions", "getatt")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for owner, base, value in _template_values(template):
            reported: set[str] = set()
            for path, mapping in walk_with_path(value, base):
                target = getatt_target(mapping)
                if target is None or template.has_resource(target) or target in reported:
                    continue
                reported.add(target)
                findings.append(
                    self.finding(
                        template,
                        f"GetAtt references undefined resource '{target}' in {owner}",
                        [*path, "Fn::GetAtt"],
                    )
                )
        return findings


def dependency_graph(template: Template) -> dict[str, list[str]]:
    """DependsOn と Ref / GetAtt / Sub から作るリソース間の依存グラフ。"""
    graph: dict[str, list[str]] = {}
    for resource in template.sorted_resources():
        edges = [dep for dep in resource.depends_on if template.has_resource(dep)]
        for dep in find_resource_dependencies(resource.properties, template.resources):
            if dep not in edges:
                edges.append(dep)
        graph[resource.logical_id] = edges
    return graph


def find_cycle(graph: dict[str, list[str]]) -> list[str] | None:
    """深さ優先探索で最初に見つかった循環を返す。循環がなければ None。

    返り値は始点を末尾に繰り返した経路（例: [A, B, A]）。
    依存の連鎖が長くても再帰上限に達しないよう、明示的なスタックで辿る。
    """
    visited: set[str] = set()

    for start in sorted(graph):
        if start in visited:
            continue
        visited.add(start)
        path = [start]
        on_stack = {start}
        frames: list[Iterator[str]] = [iter(graph.get(start, []))]
        while frames:
            dep = next(frames[-1], None)
            if dep is None:
                frames.pop()
                on_stack.discard(path.pop())
                continue
            if dep in on_stack:
                return [*path[path.index(dep) :], dep]
            if dep not in visited:
                visited.add(dep)
                path.append(dep)
                on_stack.add(dep)
                frames.append(iter(graph.get(dep, [])))
    return None


@register
class CircularDependency(Rule):
    id = "E3004"
    short_desc = "Resource dependencies are not circular"
    description = "Check that resources are not circularly dependent through DependsOn, Ref, Fn::GetAtt or Fn::Sub"
    source_url = f"{_DOCS}/aws-attribute-dependson.html"
    tags = ("reference", "resources", "dependson")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        cycle = find_cycle(dependency_graph(template))
        if cycle is None:
            return []
        return [
            self.finding(
                template,
                f"Circular dependency detected: {' -> '.join(cycle)}",
                ["Resources", cycle[0]],
            )
        ]


@register
class DependsOnTargets(Rule):
    id = "E3005"
    short_desc = "Check DependsOn values for Resources"
    description = "DependsOn must name declared resources other than the resource itself"
    source_url = f"{_DOCS}/aws-attribute-dependson.html"
    tags = ("reference", "resources", "dependson")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.sorted_resources():
            name = resource.logical_id
            for i, dep in enumerate(resource.depends_on):
                path = resource_path(resource, "DependsOn", f"[{i}]")
                if dep == name:
                    findings.append(self.finding(template, f"Resource '{name}' cannot depend on itself", path))
                elif not template.has_resource(dep):
                    findings.append(
                        self.finding(
                            template,
                            f"DependsOn references undefined resource '{dep}' in resource '{name}'",
                            path,
                        )
                    )
        return findings


@register
class UndefinedCondition(Rule):
    id = "E8002"
    short_desc = "Check if the referenced Conditions are defined"
    description = "Conditions used by resources, outputs, Fn::If and other conditions must be declared"
    source_url = f"{_DOCS}/conditions-section-structure.html"
    tags = ("reference", "conditions")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        defined = set(template.conditions)
        findings: list[Finding] = []

        for resource in template.sorted_resources():
            name = resource.logical_id
            if resource.condition and resource.condition not in defined:
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{name}' references undefined condition '{resource.condition}'",
                        resource_path(resource, "Condition"),
                    )
                )
            for ref in _unique(find_condition_refs(resource.properties)):
                if ref not in defined:
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{name}' references undefined condition '{ref}' in Fn::If",
                            property_path(resource),
                        )
                    )

        for name in sorted(template.outputs):
            output = template.outputs[name]
            if output.condition and output.condition not in defined:
                findings.append(
                    self.finding(
                        template,
                        f"Output '{name}' references undefined condition '{output.condition}'",
                        ["Outputs", name, "Condition"],
                    )
                )
            for ref in _unique(find_condition_refs(output.value)):
                if ref not in defined:
                    findings.append(
                        self.finding(
                            template,
                            f"Output '{name}' references undefined condition '{ref}' in Fn::If",
                            ["Outputs", name, "Value"],
                        )
                    )

        for name in sorted(template.conditions):
            for ref in _unique(find_condition_refs(template.conditions[name].decode())):
                if ref not in defined:
                    findings.append(
                        self.finding(
                            template,
                            f"Condition '{name}' references undefined condition '{ref}'",
                            ["Conditions", name],
                        )
                    )
        return findings


def _unique(names: list[str]) -> list[str]:
    return list(dict.fromkeys(names))


@register
class RedundantDependsOn(Rule):
    id = "W3005"
    short_desc = "Check obsolete DependsOn configuration for Resources"
    description = "DependsOn is unnecessary when the resource already depends on the target through Ref, Fn::GetAtt or Fn::Sub"
    source_url = f"{_DOCS}/aws-attribute-dependson.html"
    tags = ("reference", "resources", "dependson")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.sorted_resources():
            if not resource.depends_on:
                continue
            implicit = set(find_resource_dependencies(resource.properties, template.resources))
            for i, dep in enumerate(resource.depends_on):
                if dep in implicit:
                    findings.append(
                        self.finding(
                            template,
                            f"DependsOn '{dep}' in resource '{resource.logical_id}' is redundant "
                            "(already an implicit dependency via Ref/GetAtt/Sub)",
                            resource_path(resource, "DependsOn", f"[{i}]"),
                        )
                    )
        return findings
