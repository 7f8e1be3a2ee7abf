"""リソースの外形（属性・型名・各種ポリシー属性）を検査する構造ルール。"""

import re
from typing import Any

from ballast.models.finding import Finding
from ballast.models.node import MappingNode, Node, resolve
from ballast.models.template import Template
from ballast.rules.base import Rule, get_list, iter_mappings, property_path, resource_path
from ballast.rules.registry import register
from ballast.schema.service import SchemaService
from ballast.validators.intrinsics import is_intrinsic
from ballast.validators.predicates import to_int

_DOCS = "https://docs.aws.amazon.com/AWSCloudFormation/latest/UserGuide"

RESOURCE_ATTRIBUTES = frozenset(
    {
        "Type",
        "Properties",
        "DependsOn",
        "Condition",
        "Metadata",
        "DeletionPolicy",
        "UpdatePolicy",
        "UpdateReplacePolicy",
        "CreationPolicy",
    }
)

MAX_RESOURCES = 500

_PROPERTY_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9]*$")
_RESOURCE_TYPE_PATTERNS = (
    re.compile(r"^(AWS|Alexa)::[A-Za-z0-9]+::[A-Za-z0-9]+$"),
    re.compile(r"^Custom::[A-Za-z0-9_@-]+$"),
    re.compile(r"^[A-Za-z0-9]+::[A-Za-z0-9]+::[A-Za-z0-9]+::MODULE$"),
)
_TAG_KEY = re.compile(r"^[\w\s+\-=._:/@]{1,128}$")
_ISO8601_DURATION = re.compile(r"^PT(?=\d)(\d+H)?(\d+M)?(\d+S)?$")

_INIT_SECTIONS = ("packages", "groups", "users", "sources", "files", "commands", "services")
_UPDATE_POLICY_KEYS = frozenset(
    {
        "AutoScalingReplacingUpdate",
        "AutoScalingRollingUpdate",
        "AutoScalingScheduledAction",
        "CodeDeployLambdaAliasUpdate",
        "EnableVersionUpgrade",
        "UseOnlineResharding",
        "AutoScalingReplicationGroupUpdate",
    }
)
_CREATION_POLICY_KEYS = frozenset({"AutoScalingCreationPolicy", "ResourceSignal", "StartFleet"})
_DELETION_POLICIES = ("Delete", "Retain", "Snapshot", "RetainExceptOnCreate")
_UPDATE_REPLACE_POLICIES = ("Delete", "Retain", "Snapshot")


def _kind_name(node: Node) -> str:
    kind = resolve(node).kind
    return {"sequence": "list", "mapping": "object"}.get(kind, kind)


@register
class ResourceEnvelope(Rule):
    id = "E3001"
    short_desc = "Basic CloudFormation resource check"
    description = "Resources must be objects with a Type and may only use known resource attributes"
    source_url = f"{_DOCS}/resources-section-structure.html"
    tags = ("structural", "resources")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.sorted_resources():
            name = resource.logical_id
            body = resolve(resource.node)
            if not isinstance(body, MappingNode):
                findings.append(
                    self.finding(template, f"Resource '{name}' must be an object", resource_path(resource))
                )
                continue
            if not resource.type:
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{name}' is missing required property 'Type'",
                        resource_path(resource),
                    )
                )
            for key in body.keys():
                if key not in RESOURCE_ATTRIBUTES:
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{name}' has invalid property '{key}'",
                            resource_path(resource, key),
                        )
                    )
        return findings


@register
class PropertiesShape(Rule):
    id = "E3002"
    short_desc = "Resource properties are invalid"
    description = "Properties must be an object and property names must be alphanumeric"
    source_url = f"{_DOCS}/resources-section-structure.html"
    tags = ("structural", "resources", "properties")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.sorted_resources():
            node = resource.properties_node
            if node is None:
                continue
            body = resolve(node)
            if is_intrinsic(body.decode()):
                continue
            if not isinstance(body, MappingNode):
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{resource.logical_id}' Properties must be an object, got {_kind_name(node)}",
                        property_path(resource),
                    )
                )
                continue
            for key in body.keys():
                if not _PROPERTY_NAME.match(key):
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{resource.logical_id}' has invalid property name '{key}'",
                            property_path(resource, key),
                        )
                    )
        return findings


@register
class ResourceTypeFormat(Rule):
    id = "E3006"
    short_desc = "Resource type format"
    description = "Resource types must look like AWS::Service::Resource, Custom::Name or a module type"
    source_url = f"{_DOCS}/aws-template-resource-type-ref.html"
    tags = ("structural", "resources")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.sorted_resources():
            if not resource.type:
                continue
            if not any(pattern.match(resource.type) for pattern in _RESOURCE_TYPE_PATTERNS):
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{resource.logical_id}' has invalid type '{resource.type}'",
                        resource_path(resource, "Type"),
                    )
                )
        return findings


@register
class CloudFormationInit(Rule):
    id = "E3009"
    short_desc = "CloudFormation init configuration"
    description = "AWS::CloudFormation::Init metadata must be made of config objects with known sections"
    source_url = f"{_DOCS}/aws-resource-init.html"
    tags = ("structural", "resources", "metadata")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.sorted_resources():
            if "AWS::CloudFormation::Init" not in resource.metadata:
                continue
            name = resource.logical_id
            base = resource_path(resource, "Metadata", "AWS::CloudFormation::Init")
            init = resource.metadata["AWS::CloudFormation::Init"]
            if is_intrinsic(init):
                continue
            if not isinstance(init, dict):
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{name}' has invalid AWS::CloudFormation::Init metadata (must be an object)",
                        base,
                    )
                )
                continue
            for key, config in init.items():
                if key == "configSets":
                    if not isinstance(config, dict):
                        findings.append(
                            self.finding(
                                template,
                                f"Resource '{name}' has invalid configSets in AWS::CloudFormation::Init "
                                "(must be an object)",
                                [*base, key],
                            )
                        )
                    continue
                if not isinstance(config, dict):
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{name}' has invalid config '{key}' in AWS::CloudFormation::Init "
                            "(must be an object)",
                            [*base, key],
                        )
                    )
                    continue
                for section in config:
                    if section not in _INIT_SECTIONS:
                        findings.append(
                            self.finding(
                                template,
                                f"Resource '{name}' has invalid section '{section}' in config '{key}' "
                                f"(must be one of: {', '.join(_INIT_SECTIONS)})",
                                [*base, key, section],
                            )
                        )
        return findings


@register
class ResourceLimit(Rule):
    id = "E3010"
    short_desc = "Resource limit not exceeded"
    description = f"A template may declare at most {MAX_RESOURCES} resources"
    source_url = f"{_DOCS}/cloudformation-limits.html"
    tags = ("structural", "resources", "limits")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        count = len(template.resources)
        if count <= MAX_RESOURCES:
            return []
        return [
            self.finding(
                template,
                f"Template has {count} resources, exceeding the limit of {MAX_RESOURCES}",
                ["Resources"],
            )
        ]


@register
class UpdatePolicyKeys(Rule):
    id = "E3016"
    short_desc = "Check the configuration of a resource's UpdatePolicy"
    description = "UpdatePolicy must be an object whose keys are known update policies"
    source_url = f"{_DOCS}/aws-attribute-updatepolicy.html"
    tags = ("structural", "resources", "updatepolicy")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.sorted_resources():
            node = resource.update_policy
            if node is None:
                continue
            body = resolve(node)
            if not isinstance(body, MappingNode):
                findings.append(
                    self.finding(
                        template,
                        f"UpdatePolicy in resource '{resource.logical_id}' must be an object",
                        resource_path(resource, "UpdatePolicy"),
                    )
                )
                continue
            if is_intrinsic(body.decode()):
                continue
            for key in body.keys():
                if key not in _UPDATE_POLICY_KEYS:
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{resource.logical_id}' has invalid UpdatePolicy key '{key}'",
                            resource_path(resource, "UpdatePolicy", key),
                        )
                    )
        return findings


@register
class TagsShape(Rule):
    id = "E3024"
    short_desc = "Validate tag configuration"
    description = "Each tag needs a Key and a Value, and tag keys must be unique and well formed"
    source_url = f"{_DOCS}/aws-properties-resource-tags.html"
    tags = ("structural", "properties", "tags")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.sorted_resources():
            name = resource.logical_id
            seen: set[str] = set()
            for i, tag in iter_mappings(get_list(resource.properties, "Tags")):
                tag_path = property_path(resource, "Tags", f"[{i}]")
                if "Key" not in tag:
                    findings.append(self.finding(template, f"Resource '{name}' has tag without Key at index {i}", tag_path))
                    continue
                key = tag["Key"]
                if isinstance(key, str):
                    if key in seen:
                        findings.append(
                            self.finding(template, f"Resource '{name}' has duplicate tag key '{key}'", [*tag_path, "Key"])
                        )
                    seen.add(key)
                    if not _TAG_KEY.match(key):
                        findings.append(
                            self.finding(
                                template,
                                f"Resource '{name}' has invalid tag key '{key}' "
                                "(must be 1-128 characters, letters, numbers, spaces, and +-=._:/@)",
                                [*tag_path, "Key"],
                            )
                        )
                if "Value" not in tag:
                    findings.append(
                        self.finding(template, f"Resource '{name}' has tag without Value at index {i}", tag_path)
                    )
        return findings


@register
class MetadataShape(Rule):
    id = "E3028"
    short_desc = "Resource metadata is an object"
    description = "The Metadata attribute of a resource must be an object"
    source_url = f"{_DOCS}/aws-attribute-metadata.html"
    tags = ("structural", "resources", "metadata")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.sorted_resources():
            node = resource.metadata_node
            if node is None or isinstance(resolve(node), MappingNode):
                continue
            findings.append(
                self.finding(
                    template,
                    f"Metadata in resource '{resource.logical_id}' must be an object, got {_kind_name(node)}",
                    resource_path(resource, "Metadata"),
                )
            )
        return findings


class _PolicyAttributeRule(Rule):
    attribute: str = ""
    allowed: tuple[str, ...] = ()

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.sorted_resources():
            node = resource.attributes.get(self.attribute)
            if node is None:
                continue
            value: Any = node.decode()
            if is_intrinsic(value) or value in self.allowed:
                continue
            findings.append(
                self.finding(
                    template,
                    f"Invalid {self.attribute} '{value}' in resource '{resource.logical_id}'. "
                    f"Valid values: {', '.join(self.allowed)}",
                    resource_path(resource, self.attribute),
                )
            )
        return findings


@register
class DeletionPolicyValue(_PolicyAttributeRule):
    id = "E3035"
    short_desc = "Check DeletionPolicy values for Resources"
    description = "DeletionPolicy must be Delete, Retain, Snapshot or RetainExceptOnCreate"
    source_url = f"{_DOCS}/aws-attribute-deletionpolicy.html"
    tags = ("structural", "resources", "deletionpolicy")
    attribute = "DeletionPolicy"
    allowed = _DELETION_POLICIES


@register
class UpdateReplacePolicyValue(_PolicyAttributeRule):
    id = "E3036"
    short_desc = "Check UpdateReplacePolicy values for Resources"
    description = "UpdateReplacePolicy must be Delete, Retain or Snapshot"
    source_url = f"{_DOCS}/aws-attribute-updatereplacepolicy.html"
    tags = ("structural", "resources", "updatereplacepolicy")
    attribute = "UpdateReplacePolicy"
    allowed = _UPDATE_REPLACE_POLICIES


@register
class CreationPolicyShape(Rule):
    id = "E3055"
    short_desc = "Validate CreationPolicy configuration"
    description = (
        "CreationPolicy may only contain known keys, ResourceSignal.Count must be at least 1, "
        "ResourceSignal.Timeout must be an ISO 8601 duration and "
        "MinSuccessfulInstancesPercent must be between 0 and 100"
    )
    source_url = f"{_DOCS}/aws-attribute-creationpolicy.html"
    tags = ("structural", "resources", "creationpolicy")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.sorted_resources():
            node = resource.creation_policy
            if node is None:
                continue
            name = resource.logical_id
            base = resource_path(resource, "CreationPolicy")
            policy = node.decode()
            if is_intrinsic(policy):
                continue
            if not isinstance(policy, dict):
                findings.append(self.finding(template, f"CreationPolicy in resource '{name}' must be an object", base))
                continue
            for key in policy:
                if key not in _CREATION_POLICY_KEYS:
                    findings.append(
                        self.finding(template, f"Resource '{name}' has invalid CreationPolicy key '{key}'", [*base, key])
                    )
            findings.extend(self._check_signal(template, name, policy.get("ResourceSignal"), [*base, "ResourceSignal"]))
            findings.extend(
                self._check_autoscaling(
                    template, name, policy.get("AutoScalingCreationPolicy"), [*base, "AutoScalingCreationPolicy"]
                )
            )
        return findings

    def _check_signal(self, template: Template, name: str, signal: Any, path: list[str]) -> list[Finding]:
        if not isinstance(signal, dict) or is_intrinsic(signal):
            return []
        findings: list[Finding] = []
        count = signal.get("Count")
        if count is not None and not is_intrinsic(count):
            number = to_int(count)
            if number is None or number < 1:
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{name}' CreationPolicy ResourceSignal Count must be at least 1, got {count}",
                        [*path, "Count"],
                    )
                )
        timeout = signal.get("Timeout")
        if isinstance(timeout, str) and not _ISO8601_DURATION.match(timeout):
            findings.append(
                self.finding(
                    template,
                    f"Resource '{name}' CreationPolicy ResourceSignal Timeout '{timeout}' "
                    "must be an ISO 8601 duration such as PT15M",
                    [*path, "Timeout"],
                )
            )
        return findings

    def _check_autoscaling(self, template: Template, name: str, policy: Any, path: list[str]) -> list[Finding]:
        if not isinstance(policy, dict) or is_intrinsic(policy):
            return []
        percent = policy.get("MinSuccessfulInstancesPercent")
        if percent is None or is_intrinsic(percent):
            return []
        number = to_int(percent)
        if number is not None and 0 <= number <= 100:
            return []
        return [
            self.finding(
                template,
                f"Resource '{name}' CreationPolicy MinSuccessfulInstancesPercent must be between 0 and 100, "
                f"got {percent}",
                [*path, "MinSuccessfulInstancesPercent"],
            )
        ]
