"""複数リソースの関係を検査するルール。"""

from typing import Any

from ballast.models.finding import Finding
from ballast.models.template import Resource, Template
from ballast.rules.base import Rule, get_list, get_string, iter_mappings, property_path, resource_path
from ballast.rules.registry import register
from ballast.schema.service import SchemaService
from ballast.validators.intrinsics import is_intrinsic, ref_target, walk_with_path
from ballast.validators.predicates import cidr_contains, cidr_overlaps, parse_cidr

_DOCS = "https://docs.aws.amazon.com/AWSCloudFormation/latest/UserGuide"

# 名前系プロパティの優先順。最初に見つかった文字列値をそのリソースの識別子とする
IDENTIFIER_PROPERTIES = (
    "Name",
    "BucketName",
    "TableName",
    "FunctionName",
    "QueueName",
    "TopicName",
    "RoleName",
    "PolicyName",
    "GroupName",
    "UserName",
    "KeyName",
    "StreamName",
    "ClusterName",
    "DBInstanceIdentifier",
)

SERVERLESS_TYPES = frozenset(
    {
        "AWS::Serverless::Function",
        "AWS::Serverless::Api",
        "AWS::Serverless::HttpApi",
        "AWS::Serverless::SimpleTable",
        "AWS::Serverless::Application",
        "AWS::Serverless::LayerVersion",
        "AWS::Serverless::StateMachine",
    }
)

_PATH_SCOPED_IAM_TYPES = ("AWS::IAM::User", "AWS::IAM::Group", "AWS::IAM::Role")


def _reference_key(value: Any) -> str | None:
    """文字列値または Ref 先の名前。どちらでもなければ None。"""
    if isinstance(value, str):
        return value
    return ref_target(value)


@register
class UniqueIdentifier(Rule):
    id = "E3019"
    short_desc = "Validate that all resources have unique primary identifiers"
    description = "Resources of the same type must not share the same name-like identifier property value"
    source_url = f"{_DOCS}/resources-section-structure.html"
    tags = ("cross-resource", "resources", "identifiers")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        seen: dict[tuple[str, str], str] = {}
        for resource in template.sorted_resources():
            if not schema.has_resource_type(resource.type):
                continue
            identified = self._identifier(resource)
            if identified is None:
                continue
            prop, identifier = identified
            key = (resource.type, identifier)
            if key in seen:
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{resource.logical_id}' has duplicate identifier '{identifier}' "
                        f"with resource '{seen[key]}'",
                        property_path(resource, prop),
                    )
                )
            else:
                seen[key] = resource.logical_id
        return findings

    def _identifier(self, resource: Resource) -> tuple[str, str] | None:
        for prop in IDENTIFIER_PROPERTIES:
            value = resource.properties.get(prop)
            if isinstance(value, str) and value:
                return prop, value
        return None


@register
class SubnetRouteTableAssociation(Rule):
    id = "E3022"
    short_desc = "Resource SubnetRouteTableAssociation Properties"
    description = "A subnet can be associated with only one route table"
    source_url = f"{_DOCS}/aws-resource-ec2-subnetroutetableassociation.html"
    tags = ("cross-resource", "ec2", "subnet", "routetable")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        first: dict[str, str] = {}
        for resource in template.resources_of_type("AWS::EC2::SubnetRouteTableAssociation"):
            subnet = _reference_key(resource.properties.get("SubnetId"))
            if subnet is None:
                continue
            if subnet in first:
                findings.append(
                    self.finding(
                        template,
                        f"Subnet '{subnet}' has multiple route table associations "
                        f"('{first[subnet]}' and '{resource.logical_id}')",
                        property_path(resource, "SubnetId"),
                    )
                )
            else:
                first[subnet] = resource.logical_id
        return findings


@register
class ServerlessTransform(Rule):
    id = "E3038"
    short_desc = "Check if Serverless resources have the Serverless transform"
    description = "Templates that declare AWS::Serverless resources must use the AWS::Serverless transform"
    source_url = f"{_DOCS}/transform-aws-serverless.html"
    tags = ("cross-resource", "serverless", "transform")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        if any("AWS::Serverless" in transform for transform in template.transform):
            return []
        return [
            self.finding(
                template,
                f"Resource '{resource.logical_id}' of type '{resource.type}' requires the "
                "AWS::Serverless transform",
                resource_path(resource, "Type"),
            )
            for resource in template.sorted_resources()
            if resource.type in SERVERLESS_TYPES
        ]


@register
class DynamoDBAttributeDefinitions(Rule):
    id = "E3039"
    short_desc = "AttributeDefinitions / KeySchemas mismatch"
    description = (
        "Every attribute in AttributeDefinitions must be used by a key schema of the table or its indexes, "
        "and every key attribute must be defined"
    )
    source_url = f"{_DOCS}/aws-resource-dynamodb-table.html"
    tags = ("cross-resource", "dynamodb")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::DynamoDB::Table"):
            definitions = get_list(resource.properties, "AttributeDefinitions")
            if definitions is None:
                continue
            defined = {
                name
                for _, item in iter_mappings(definitions)
                if (name := get_string(item, "AttributeName")) is not None
            }
            used = self._key_attributes(resource.properties)
            name = resource.logical_id
            for attribute in sorted(used - defined):
                findings.append(
                    self.finding(
                        template,
                        f"Attribute '{attribute}' in resource '{name}' is used in a key schema "
                        "but not defined in AttributeDefinitions",
                        property_path(resource, "KeySchema"),
                    )
                )
            for attribute in sorted(defined - used):
                findings.append(
                    self.finding(
                        template,
                        f"Attribute '{attribute}' in resource '{name}' is defined in AttributeDefinitions "
                        "but not used in any key schema",
                        property_path(resource, "AttributeDefinitions"),
                    )
                )
        return findings

    def _key_attributes(self, properties: dict[str, Any]) -> set[str]:
        schemas = [get_list(properties, "KeySchema")]
        for index_key in ("GlobalSecondaryIndexes", "LocalSecondaryIndexes"):
            for _, index in iter_mappings(get_list(properties, index_key)):
                schemas.append(get_list(index, "KeySchema"))
        used: set[str] = set()
        for key_schema in schemas:
            for _, key in iter_mappings(key_schema):
                attribute = get_string(key, "AttributeName")
                if attribute is not None:
                    used.add(attribute)
        return used


@register
class NestedStackParameters(Rule):
    id = "E3043"
    short_desc = "Validate parameters for a nested stack"
    description = "Parameters of an AWS::CloudFormation::Stack must be a map of parameter names to scalar values"
    source_url = f"{_DOCS}/aws-resource-cloudformation-stack.html"
    tags = ("cross-resource", "cloudformation", "nested-stack")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::CloudFormation::Stack"):
            if "Parameters" not in resource.properties:
                continue
            params = resource.properties["Parameters"]
            name = resource.logical_id
            if is_intrinsic(params):
                continue
            if not isinstance(params, dict):
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{name}': Parameters must be a map of parameter names to values",
                        property_path(resource, "Parameters"),
                    )
                )
                continue
            for key, value in params.items():
                if isinstance(value, (dict, list)) and not is_intrinsic(value):
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{name}': nested stack parameter '{key}' must be a scalar value",
                            property_path(resource, "Parameters", key),
                        )
                    )
        return findings


@register
class RefToPathScopedIAMResource(Rule):
    id = "E3050"
    short_desc = "Check Ref usage of IAM resources with a custom Path"
    description = (
        "IAM users, groups and roles declared with a non-default Path should be referenced through "
        "Fn::GetAtt Arn instead of Ref"
    )
    source_url = f"{_DOCS}/aws-resource-iam-role.html"
    tags = ("cross-resource", "iam")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        scoped = {
            resource.logical_id
            for resource in template.resources_of_type(*_PATH_SCOPED_IAM_TYPES)
            if isinstance(path := resource.properties.get("Path"), str) and path != "/"
        }
        if not scoped:
            return []
        findings: list[Finding] = []
        for resource in template.sorted_resources():
            for path, mapping in walk_with_path(resource.properties, property_path(resource)):
                target = mapping.get("Ref")
                if isinstance(target, str) and target in scoped:
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{resource.logical_id}': Cannot use Ref to IAM resource '{target}' "
                            "which has a custom Path. Use GetAtt to retrieve the ARN instead",
                            path,
                        )
                    )
        return findings


@register
class SubnetWithinVpc(Rule):
    id = "E3059"
    short_desc = "Subnet CIDR is within the VPC CIDR"
    description = "The CidrBlock of a subnet must lie inside the CidrBlock of the VPC it belongs to"
    source_url = f"{_DOCS}/aws-resource-ec2-subnet.html"
    tags = ("cross-resource", "ec2", "vpc", "subnet")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        vpc_cidrs = {
            resource.logical_id: resource.properties["CidrBlock"]
            for resource in template.resources_of_type("AWS::EC2::VPC")
            if isinstance(resource.properties.get("CidrBlock"), str)
        }
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::EC2::Subnet"):
            vpc = ref_target(resource.properties.get("VpcId"))
            subnet_cidr = get_string(resource.properties, "CidrBlock")
            if vpc is None or subnet_cidr is None or vpc not in vpc_cidrs:
                continue
            subnet_net = parse_cidr(subnet_cidr)
            vpc_net = parse_cidr(vpc_cidrs[vpc])
            if subnet_net is None or vpc_net is None or cidr_contains(vpc_net, subnet_net):
                continue
            findings.append(
                self.finding(
                    template,
                    f"Resource '{resource.logical_id}': Subnet CIDR '{subnet_cidr}' is not within "
                    f"VPC '{vpc}' CIDR block '{vpc_cidrs[vpc]}'",
                    property_path(resource, "CidrBlock"),
                )
            )
        return findings


@register
class SubnetOverlap(Rule):
    id = "E3060"
    short_desc = "Subnet CIDRs do not overlap"
    description = "Subnets in the same VPC must not have overlapping CIDR blocks"
    source_url = f"{_DOCS}/aws-resource-ec2-subnet.html"
    tags = ("cross-resource", "ec2", "vpc", "subnet")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        by_vpc: dict[str, list[tuple[Resource, str]]] = {}
        for resource in template.resources_of_type("AWS::EC2::Subnet"):
            vpc = _reference_key(resource.properties.get("VpcId"))
            cidr = get_string(resource.properties, "CidrBlock")
            if vpc is None or cidr is None or parse_cidr(cidr) is None:
                continue
            by_vpc.setdefault(vpc, []).append((resource, cidr))

        findings: list[Finding] = []
        for vpc in sorted(by_vpc):
            subnets = by_vpc[vpc]
            for i, (first, first_cidr) in enumerate(subnets):
                for second, second_cidr in subnets[i + 1 :]:
                    first_net = parse_cidr(first_cidr)
                    second_net = parse_cidr(second_cidr)
                    if first_net is None or second_net is None or not cidr_overlaps(first_net, second_net):
                        continue
                    findings.append(
                        self.finding(
                            template,
                            f"Subnet '{first.logical_id}' CIDR '{first_cidr}' overlaps with subnet "
                            f"'{second.logical_id}' CIDR '{second_cidr}' in VPC '{vpc}'",
                            property_path(first, "CidrBlock"),
                        )
                    )
        return findings
