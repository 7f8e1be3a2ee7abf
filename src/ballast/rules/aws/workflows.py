"""Step Functions / CodePipeline / CodeBuild / SSM / Backup / API Gateway のルール。"""

import json
from collections.abc import Iterator
from typing import Any

import yaml

from ballast.models.finding import Finding
from ballast.models.template import Resource, Template
from ballast.rules.base import Rule, get_list, get_mapping, get_string, iter_mappings, property_path
from ballast.rules.registry import register
from ballast.schema.service import SchemaService
from ballast.validators.intrinsics import is_intrinsic
from ballast.validators.predicates import to_int

_PIPELINE_DOCS = "https://docs.aws.amazon.com/codepipeline/latest/userguide"

MINIMUM_COLD_STORAGE_DAYS = 90
STATE_MACHINE_KEYS = ("States", "StartAt")
ACTION_TYPE_KEYS = ("Category", "Owner", "Provider", "Version")


@register
class SSMDocumentContent(Rule):
    id = "E3051"
    short_desc = "Validate the structure of a SSM document"
    description = "SSM document Content must be valid JSON or YAML and should declare schemaVersion"
    source_url = "https://docs.aws.amazon.com/systems-manager/latest/userguide/documents-schemas-features.html"
    tags = ("catalog", "ssm", "document")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::SSM::Document"):
            content = resource.properties.get("Content")
            if content is None or is_intrinsic(content):
                continue
            name = resource.logical_id
            path = property_path(resource, "Content")
            if isinstance(content, str):
                try:
                    content = yaml.safe_load(content)
                except yaml.YAMLError as e:
                    findings.append(
                        self.finding(template, f"Resource '{name}': SSM Document Content must be valid JSON or YAML: {e}", path)
                    )
                    continue
            if isinstance(content, dict) and "schemaVersion" not in content:
                findings.append(
                    self.finding(template, f"Resource '{name}': SSM Document Content should include 'schemaVersion'", path)
                )
        return findings


@register
class BackupColdStorageGap(Rule):
    id = "E3504"
    short_desc = "Check minimum 90 period is met between BackupPlan cold and delete"
    description = "Backup rules must keep recovery points in cold storage for at least 90 days before deletion"
    source_url = "https://docs.aws.amazon.com/aws-backup/latest/devguide/plan-options-and-configuration.html"
    tags = ("catalog", "backup", "lifecycle")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::Backup::BackupPlan"):
            plan = get_mapping(resource.properties, "BackupPlan")
            for i, rule in iter_mappings(get_list(plan, "BackupPlanRule")):
                lifecycle = get_mapping(rule, "Lifecycle")
                if lifecycle is None:
                    continue
                cold = to_int(lifecycle.get("MoveToColdStorageAfterDays"))
                delete = to_int(lifecycle.get("DeleteAfterDays"))
                if cold is None or delete is None or delete - cold >= MINIMUM_COLD_STORAGE_DAYS:
                    continue
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{resource.logical_id}': BackupPlanRule {i} must have at least "
                        f"{MINIMUM_COLD_STORAGE_DAYS} days between MoveToColdStorageAfterDays ({cold}) and "
                        f"DeleteAfterDays ({delete}), gap is {delete - cold} days",
                        property_path(resource, "BackupPlan", "BackupPlanRule", f"[{i}]", "Lifecycle"),
                    )
                )
        return findings


@register
class StateMachineDefinition(Rule):
    id = "E3601"
    short_desc = "Basic validation of a state machine definition"
    description = "Step Functions Definition and DefinitionString must be objects with StartAt and States"
    source_url = "https://docs.aws.amazon.com/step-functions/latest/dg/concepts-amazon-states-language.html"
    tags = ("catalog", "stepfunctions", "statemachine")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::StepFunctions::StateMachine"):
            for key, definition in self._definitions(resource, findings, template):
                for required in STATE_MACHINE_KEYS:
                    if required not in definition:
                        findings.append(
                            self.finding(
                                template,
                                f"Resource '{resource.logical_id}': StateMachine {key} must have '{required}' field",
                                property_path(resource, key),
                            )
                        )
        return findings

    def _definitions(
        self, resource: Resource, findings: list[Finding], template: Template
    ) -> Iterator[tuple[str, dict[str, Any]]]:
        props = resource.properties
        name = resource.logical_id
        if "Definition" in props and not is_intrinsic(props["Definition"]):
            if isinstance(props["Definition"], dict):
                yield "Definition", props["Definition"]
            else:
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{name}': StateMachine Definition must be an object",
                        property_path(resource, "Definition"),
                    )
                )
        definition_string = get_string(props, "DefinitionString")
        if definition_string is None:
            return
        try:
            parsed = json.loads(definition_string)
        except json.JSONDecodeError as e:
            findings.append(
                self.finding(
                    template,
                    f"Resource '{name}': StateMachine DefinitionString must be valid JSON: {e}",
                    property_path(resource, "DefinitionString"),
                )
            )
            return
        if isinstance(parsed, dict):
            yield "DefinitionString", parsed


@register
class CodeBuildS3Location(Rule):
    id = "E3636"
    short_desc = "CodeBuild S3 source location"
    description = "CodeBuild projects with an S3 source must specify Source.Location"
    source_url = "https://docs.aws.amazon.com/codebuild/latest/userguide/create-project.html"
    tags = ("cross-property", "codebuild", "source")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::CodeBuild::Project"):
            source = get_mapping(resource.properties, "Source")
            if get_string(source, "Type") != "S3" or "Location" in source:
                continue
            findings.append(
                self.finding(
                    template,
                    f"Resource '{resource.logical_id}': CodeBuild Project with Source Type 'S3' must specify "
                    "Location property",
                    property_path(resource, "Source"),
                )
            )
        return findings


@register
class RestApiName(Rule):
    id = "E3660"
    short_desc = "API Gateway RestApi name"
    description = "A RestApi needs a Name unless it is imported from Body or BodyS3Location"
    source_url = "https://docs.aws.amazon.com/AWSCloudFormation/latest/UserGuide/aws-resource-apigateway-restapi.html"
    tags = ("cross-property", "apigateway", "restapi")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        return [
            self.finding(
                template,
                f"Resource '{resource.logical_id}': RestApi must have a Name property when Body and BodyS3Location "
                "are not specified",
                property_path(resource),
            )
            for resource in template.resources_of_type("AWS::ApiGateway::RestApi")
            if not any(key in resource.properties for key in ("Name", "Body", "BodyS3Location"))
        ]


def pipeline_actions(
    pipeline: Resource,
) -> Iterator[tuple[int, list[str], dict[str, Any]]]:
    """パイプラインの全アクションを (ステージ番号, パス, アクション) で宣言順に列挙する。"""
    for i, stage in iter_mappings(get_list(pipeline.properties, "Stages")):
        for j, action in iter_mappings(get_list(stage, "Actions")):
            yield i, property_path(pipeline, "Stages", f"[{i}]", "Actions", f"[{j}]"), action


def _category(action: dict[str, Any]) -> str | None:
    return get_string(get_mapping(action, "ActionTypeId"), "Category")


def _artifact_names(action: dict[str, Any], key: str) -> list[str]:
    return [name for _, artifact in iter_mappings(get_list(action, key)) if (name := get_string(artifact, "Name"))]


@register
class SourceActionStage(Rule):
    id = "E3700"
    short_desc = "CodePipeline source actions in the first stage"
    description = "Source actions may only appear in the first stage of a pipeline"
    source_url = f"{_PIPELINE_DOCS}/reference-pipeline-structure.html"
    tags = ("cross-property", "codepipeline", "stage")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for pipeline in template.resources_of_type("AWS::CodePipeline::Pipeline"):
            for stage, path, action in pipeline_actions(pipeline):
                if stage == 0 or _category(action) != "Source":
                    continue
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{pipeline.logical_id}': Source actions must be in the first stage only. "
                        f"Found in stage {stage}",
                        path,
                    )
                )
        return findings


@register
class PipelineArtifacts(Rule):
    id = "E3701"
    short_desc = "CodePipeline artifact references"
    description = "Every InputArtifact must name an OutputArtifact produced by an earlier action"
    source_url = f"{_PIPELINE_DOCS}/reference-pipeline-structure.html#pipeline-requirements"
    tags = ("cross-property", "codepipeline", "artifacts")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for pipeline in template.resources_of_type("AWS::CodePipeline::Pipeline"):
            produced: set[str] = set()
            for _, path, action in pipeline_actions(pipeline):
                for artifact in _artifact_names(action, "InputArtifacts"):
                    if artifact in produced:
                        continue
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{pipeline.logical_id}': InputArtifact '{artifact}' does not reference any "
                            "OutputArtifact",
                            [*path, "InputArtifacts"],
                        )
                    )
                produced.update(_artifact_names(action, "OutputArtifacts"))
        return findings


@register
class ActionArtifactCounts(Rule):
    id = "E3702"
    short_desc = "CodePipeline action output artifacts"
    description = "Source actions need at least one OutputArtifact and Deploy actions should not produce any"
    source_url = f"{_PIPELINE_DOCS}/reference-action-artifacts.html"
    tags = ("cross-property", "codepipeline", "artifacts")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for pipeline in template.resources_of_type("AWS::CodePipeline::Pipeline"):
            name = pipeline.logical_id
            for _, path, action in pipeline_actions(pipeline):
                category = _category(action)
                outputs = get_list(action, "OutputArtifacts") or []
                if category == "Source" and not outputs:
                    findings.append(
                        self.finding(
                            template, f"Resource '{name}': Source action must have at least one OutputArtifact", path
                        )
                    )
                elif category == "Deploy" and outputs:
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{name}': Deploy action typically should not have OutputArtifacts",
                            [*path, "OutputArtifacts"],
                        )
                    )
        return findings


@register
class ActionDeclaration(Rule):
    id = "E3703"
    short_desc = "CodePipeline action declaration"
    description = "Pipeline actions need a Name and an ActionTypeId with Category, Owner, Provider and Version"
    source_url = f"{_PIPELINE_DOCS}/reference-pipeline-structure.html#action-requirements"
    tags = ("cross-property", "codepipeline", "actions")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for pipeline in template.resources_of_type("AWS::CodePipeline::Pipeline"):
            name = pipeline.logical_id
            for _, path, action in pipeline_actions(pipeline):
                if "Name" not in action:
                    findings.append(self.finding(template, f"Resource '{name}': Pipeline action must have a Name", path))
                if "ActionTypeId" not in action:
                    findings.append(
                        self.finding(template, f"Resource '{name}': Pipeline action must have an ActionTypeId", path)
                    )
                    continue
                type_id = get_mapping(action, "ActionTypeId")
                if type_id is None:
                    continue
                for key in ACTION_TYPE_KEYS:
                    if key not in type_id:
                        findings.append(
                            self.finding(
                                template,
                                f"Resource '{name}': Pipeline action ActionTypeId must have {key}",
                                [*path, "ActionTypeId"],
                            )
                        )
        return findings
