"""IAMポリシードキュメントとロールARNのルール。"""

from collections.abc import Iterator
from typing import Any

from ballast.models.finding import Finding
from ballast.models.template import Resource, Template
from ballast.rules.base import Rule, get_list, iter_mappings, property_path
from ballast.rules.registry import register
from ballast.schema.service import SchemaService
from ballast.validators.intrinsics import walk_with_path
from ballast.validators.policy import check_policy_document, iter_statement_resources, parse_policy_document
from ballast.validators.predicates import is_arn, is_role_arn

_DOCS = "https://docs.aws.amazon.com/IAM/latest/UserGuide"

# 単一のポリシードキュメントを持つプロパティ
IDENTITY_POLICY_PROPERTIES = {
    "AWS::IAM::Policy": "PolicyDocument",
    "AWS::IAM::ManagedPolicy": "PolicyDocument",
}
# Policies[].PolicyDocument にインラインポリシーを持つタイプ
INLINE_POLICY_TYPES = ("AWS::IAM::User", "AWS::IAM::Group", "AWS::IAM::Role")

RESOURCE_POLICY_PROPERTIES = {
    "AWS::S3::BucketPolicy": "PolicyDocument",
    "AWS::SQS::QueuePolicy": "PolicyDocument",
    "AWS::SNS::TopicPolicy": "PolicyDocument",
    "AWS::KMS::Key": "KeyPolicy",
    "AWS::SecretsManager::SecretResourcePolicy": "ResourcePolicy",
}

ROLE_ARN_PROPERTIES = frozenset(
    {"RoleArn", "RoleARN", "ExecutionRoleArn", "TaskRoleArn", "ServiceRoleArn", "IamRoleArn"}
)


def identity_policies(resource: Resource) -> Iterator[tuple[list[str], Any]]:
    """アイデンティティベースのポリシードキュメントを (パス, 値) で列挙する。"""
    prop = IDENTITY_POLICY_PROPERTIES.get(resource.type)
    if prop is not None:
        if prop in resource.properties:
            yield property_path(resource, prop), resource.properties[prop]
        return
    if resource.type not in INLINE_POLICY_TYPES:
        return
    for i, policy in iter_mappings(get_list(resource.properties, "Policies")):
        if "PolicyDocument" in policy:
            yield property_path(resource, "Policies", f"[{i}]", "PolicyDocument"), policy["PolicyDocument"]


def resource_policies(resource: Resource) -> Iterator[tuple[list[str], Any]]:
    """リソースベースのポリシードキュメントを (パス, 値) で列挙する。"""
    prop = RESOURCE_POLICY_PROPERTIES.get(resource.type)
    if prop is not None and prop in resource.properties:
        yield property_path(resource, prop), resource.properties[prop]
    if resource.type == "AWS::ECR::Repository" and "RepositoryPolicyText" in resource.properties:
        yield property_path(resource, "RepositoryPolicyText"), resource.properties["RepositoryPolicyText"]


class _PolicyDocumentRule(Rule):
    """ポリシードキュメントの構造を検査するルールの共通処理。"""

    resource_based: bool = False

    def documents(self, resource: Resource) -> Iterator[tuple[list[str], Any]]:
        raise NotImplementedError

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.sorted_resources():
            for path, value in self.documents(resource):
                label = path[3]
                document, error = parse_policy_document(value)
                if error is not None:
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{resource.logical_id}': {label} must be valid JSON: {error}",
                            path,
                        )
                    )
                    continue
                if document is None:
                    continue
                for problem in check_policy_document(document, resource_based=self.resource_based):
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{resource.logical_id}': {label} {problem.message}",
                            [*path, *problem.path],
                        )
                    )
        return findings


@register
class IdentityPolicyDocument(_PolicyDocumentRule):
    id = "E3510"
    short_desc = "Validate identity based IAM polices"
    description = "Identity-based policy documents require Version and Statement, and each statement needs Effect, Action and Resource"
    source_url = f"{_DOCS}/reference_policies_grammar.html"
    tags = ("iam", "policy", "identity")

    def documents(self, resource: Resource) -> Iterator[tuple[list[str], Any]]:
        return identity_policies(resource)


@register
class RoleArnPattern(Rule):
    id = "E3511"
    short_desc = "IAM role ARN pattern"
    description = "Properties that take an IAM role ARN must follow the arn:<partition>:iam::<account>:role/<name> format"
    source_url = f"{_DOCS}/reference_identifiers.html"
    tags = ("iam", "role", "arn")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.sorted_resources():
            for path, mapping in walk_with_path(resource.properties, property_path(resource)):
                for key, value in mapping.items():
                    if key not in ROLE_ARN_PROPERTIES or not isinstance(value, str):
                        continue
                    if not value.startswith("arn:") or is_role_arn(value):
                        continue
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{resource.logical_id}': Property '{key}' has invalid IAM role ARN "
                            f"format '{value}'",
                            [*path, key],
                        )
                    )
        return findings


@register
class ResourcePolicyDocument(_PolicyDocumentRule):
    id = "E3512"
    short_desc = "Validate resource based IAM polices"
    description = "Resource-based policy documents require Version and Statement, and each statement needs Effect, Action and Principal"
    source_url = f"{_DOCS}/access_policies_identity-vs-resource.html"
    tags = ("iam", "policy", "resource-based")
    resource_based = True

    def documents(self, resource: Resource) -> Iterator[tuple[list[str], Any]]:
        prop = RESOURCE_POLICY_PROPERTIES.get(resource.type)
        if prop is not None and prop in resource.properties:
            yield property_path(resource, prop), resource.properties[prop]


@register
class ECRRepositoryPolicy(_PolicyDocumentRule):
    id = "E3513"
    short_desc = "ECR repository policy"
    description = "RepositoryPolicyText of an ECR repository must be a valid resource-based policy"
    source_url = "https://docs.aws.amazon.com/AmazonECR/latest/userguide/repository-policies.html"
    tags = ("iam", "policy", "ecr")
    resource_based = True

    def documents(self, resource: Resource) -> Iterator[tuple[list[str], Any]]:
        if resource.type == "AWS::ECR::Repository" and "RepositoryPolicyText" in resource.properties:
            yield property_path(resource, "RepositoryPolicyText"), resource.properties["RepositoryPolicyText"]


@register
class PolicyResourceArn(Rule):
    id = "E3514"
    short_desc = "Validate ARNs in policy Resource elements"
    description = "Resource and NotResource values that start with arn: must be well-formed ARNs"
    source_url = f"{_DOCS}/reference-arns.html"
    tags = ("iam", "policy", "arn")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.sorted_resources():
            documents = [*identity_policies(resource), *resource_policies(resource)]
            for path, value in documents:
                document, _ = parse_policy_document(value)
                if document is None:
                    continue
                for relative, arn in iter_statement_resources(document):
                    if not arn.startswith("arn:") or is_arn(arn):
                        continue
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{resource.logical_id}': Invalid ARN format '{arn}' in policy Resource field",
                            [*path, *relative],
                        )
                    )
        return findings
