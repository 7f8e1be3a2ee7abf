"""Step Functions / CodePipeline ほかのルールのユニットテスト。"""

from collections.abc import Callable

from ballast.models.finding import Finding

RunRule = Callable[[str, str], list[Finding]]


def _resource(type_: str, props: str, name: str = "Res") -> str:
    body = f"Resources:\n  {name}:\n    Type: {type_}\n    Properties:\n"
    return body + "".join(f"      {line}\n" for line in props.splitlines())


def _pipeline(stages: str) -> str:
    return _resource("AWS::CodePipeline::Pipeline", f"RoleArn: role\nStages:\n{stages}", "Pipeline")


SOURCE_ACTION = """\
      - Name: Checkout
        ActionTypeId: {Category: Source, Owner: AWS, Provider: CodeCommit, Version: "1"}
        OutputArtifacts:
          - Name: SourceOut"""

BUILD_ACTION = """\
      - Name: Compile
        ActionTypeId: {Category: Build, Owner: AWS, Provider: CodeBuild, Version: "1"}
        InputArtifacts:
          - Name: SourceOut
        OutputArtifacts:
          - Name: BuildOut"""


class TestSSMDocumentContent:
    def test_object_content_with_schema_version(self, run_rule: RunRule) -> None:
        body = _resource("AWS::SSM::Document", "DocumentType: Command\nContent:\n  schemaVersion: '2.2'")
        assert run_rule("E3051", body) == []

    def test_object_content_without_schema_version(self, run_rule: RunRule) -> None:
        body = _resource("AWS::SSM::Document", "Content:\n  mainSteps: []")
        findings = run_rule("E3051", body)
        assert len(findings) == 1
        assert "should include 'schemaVersion'" in findings[0].message

    def test_string_content_is_parsed(self, run_rule: RunRule) -> None:
        body = _resource("AWS::SSM::Document", "Content: '{\"schemaVersion\": \"2.2\"}'")
        assert run_rule("E3051", body) == []

    def test_invalid_string_content(self, run_rule: RunRule) -> None:
        body = _resource("AWS::SSM::Document", "Content: '{\"schemaVersion\": [}'")
        findings = run_rule("E3051", body)
        assert len(findings) == 1
        assert "must be valid JSON or YAML" in findings[0].message

    def test_intrinsic_content_is_skipped(self, run_rule: RunRule) -> None:
        body = _resource("AWS::SSM::Document", "Content: !Sub '${Doc}'")
        assert run_rule("E3051", body) == []


class TestBackupColdStorageGap:
    def _plan(self, cold: int, delete: int) -> str:
        return _resource(
            "AWS::Backup::BackupPlan",
            "BackupPlan:\n"
            "  BackupPlanName: daily\n"
            "  BackupPlanRule:\n"
            "    - RuleName: r\n"
            "      TargetBackupVault: vault\n"
            "      Lifecycle:\n"
            f"        MoveToColdStorageAfterDays: {cold}\n"
            f"        DeleteAfterDays: {delete}",
        )

    def test_gap_is_enough(self, run_rule: RunRule) -> None:
        assert run_rule("E3504", self._plan(30, 120)) == []

    def test_gap_too_small(self, run_rule: RunRule) -> None:
        findings = run_rule("E3504", self._plan(30, 100))
        assert len(findings) == 1
        assert findings[0].message == (
            "Resource 'Res': BackupPlanRule 0 must have at least 90 days between MoveToColdStorageAfterDays (30) "
            "and DeleteAfterDays (100), gap is 70 days"
        )
        assert findings[0].path[-1] == "Lifecycle"


class TestStateMachineDefinition:
    def test_valid_definition(self, run_rule: RunRule) -> None:
        body = _resource(
            "AWS::StepFunctions::StateMachine",
            "RoleArn: role\nDefinition:\n  StartAt: Done\n  States:\n    Done:\n      Type: Succeed",
        )
        assert run_rule("E3601", body) == []

    def test_missing_fields(self, run_rule: RunRule) -> None:
        body = _resource("AWS::StepFunctions::StateMachine", "RoleArn: role\nDefinition:\n  Comment: nothing")
        messages = [f.message for f in run_rule("E3601", body)]
        assert messages == [
            "Resource 'Res': StateMachine Definition must have 'States' field",
            "Resource 'Res': StateMachine Definition must have 'StartAt' field",
        ]

    def test_definition_must_be_object(self, run_rule: RunRule) -> None:
        body = _resource("AWS::StepFunctions::StateMachine", "RoleArn: role\nDefinition: [a]")
        findings = run_rule("E3601", body)
        assert [f.message for f in findings] == ["Resource 'Res': StateMachine Definition must be an object"]

    def test_definition_string_is_parsed(self, run_rule: RunRule) -> None:
        body = _resource(
            "AWS::StepFunctions::StateMachine",
            "RoleArn: role\nDefinitionString: '{\"StartAt\": \"A\"}'",
        )
        findings = run_rule("E3601", body)
        assert [f.message for f in findings] == ["Resource 'Res': StateMachine DefinitionString must have 'States' field"]

    def test_invalid_definition_string(self, run_rule: RunRule) -> None:
        body = _resource("AWS::StepFunctions::StateMachine", "RoleArn: role\nDefinitionString: '{not json'")
        findings = run_rule("E3601", body)
        assert len(findings) == 1
        assert "must be valid JSON" in findings[0].message

    def test_intrinsic_definition_string_is_skipped(self, run_rule: RunRule) -> None:
        body = _resource("AWS::StepFunctions::StateMachine", "RoleArn: role\nDefinitionString: !Sub '${Def}'")
        assert run_rule("E3601", body) == []


class TestCodeBuildAndRestApi:
    def test_s3_source_requires_location(self, run_rule: RunRule) -> None:
        body = _resource("AWS::CodeBuild::Project", "Source:\n  Type: S3")
        findings = run_rule("E3636", body)
        assert len(findings) == 1
        assert findings[0].path == ["Resources", "Res", "Properties", "Source"]

    def test_s3_source_with_location(self, run_rule: RunRule) -> None:
        body = _resource("AWS::CodeBuild::Project", "Source:\n  Type: S3\n  Location: bucket/key.zip")
        assert run_rule("E3636", body) == []

    def test_other_source_types(self, run_rule: RunRule) -> None:
        body = _resource("AWS::CodeBuild::Project", "Source:\n  Type: CODEPIPELINE")
        assert run_rule("E3636", body) == []

    def test_rest_api_needs_name(self, run_rule: RunRule) -> None:
        body = _resource("AWS::ApiGateway::RestApi", "Description: api")
        findings = run_rule("E3660", body)
        assert len(findings) == 1
        assert "must have a Name property" in findings[0].message

    def test_rest_api_imported_from_body(self, run_rule: RunRule) -> None:
        assert run_rule("E3660", _resource("AWS::ApiGateway::RestApi", "Body:\n  openapi: 3.0.1")) == []
        assert run_rule("E3660", _resource("AWS::ApiGateway::RestApi", "Name: api")) == []


class TestCodePipeline:
    def test_valid_pipeline(self, run_rule: RunRule) -> None:
        body = _pipeline(f"  - Name: Source\n    Actions:\n{SOURCE_ACTION}\n  - Name: Build\n    Actions:\n{BUILD_ACTION}")
        for rule_id in ("E3700", "E3701", "E3702", "E3703"):
            assert run_rule(rule_id, body) == [], rule_id

    def test_source_action_outside_first_stage(self, run_rule: RunRule) -> None:
        body = _pipeline(f"  - Name: Build\n    Actions:\n{BUILD_ACTION}\n  - Name: Late\n    Actions:\n{SOURCE_ACTION}")
        findings = run_rule("E3700", body)
        assert len(findings) == 1
        assert findings[0].message.endswith("Found in stage 1")
        assert findings[0].path == ["Resources", "Pipeline", "Properties", "Stages", "[1]", "Actions", "[0]"]

    def test_input_artifact_must_be_produced_earlier(self, run_rule: RunRule) -> None:
        body = _pipeline(f"  - Name: Build\n    Actions:\n{BUILD_ACTION}\n  - Name: Source\n    Actions:\n{SOURCE_ACTION}")
        findings = run_rule("E3701", body)
        assert len(findings) == 1
        assert "InputArtifact 'SourceOut'" in findings[0].message
        assert findings[0].path[-1] == "InputArtifacts"

    def test_source_without_outputs_and_deploy_with_outputs(self, run_rule: RunRule) -> None:
        body = _pipeline(
            "  - Name: Source\n"
            "    Actions:\n"
            "      - Name: Checkout\n"
            "        ActionTypeId: {Category: Source, Owner: AWS, Provider: S3, Version: '1'}\n"
            "  - Name: Deploy\n"
            "    Actions:\n"
            "      - Name: Ship\n"
            "        ActionTypeId: {Category: Deploy, Owner: AWS, Provider: ECS, Version: '1'}\n"
            "        OutputArtifacts:\n"
            "          - Name: Extra"
        )
        messages = [f.message for f in run_rule("E3702", body)]
        assert messages == [
            "Resource 'Pipeline': Source action must have at least one OutputArtifact",
            "Resource 'Pipeline': Deploy action typically should not have OutputArtifacts",
        ]

    def test_action_declaration(self, run_rule: RunRule) -> None:
        body = _pipeline(
            "  - Name: Source\n"
            "    Actions:\n"
            "      - ActionTypeId: {Category: Source, Owner: AWS}\n"
            "        OutputArtifacts:\n"
            "          - Name: Out\n"
            "      - Name: NoType"
        )
        messages = [f.message for f in run_rule("E3703", body)]
        assert messages == [
            "Resource 'Pipeline': Pipeline action must have a Name",
            "Resource 'Pipeline': Pipeline action ActionTypeId must have Provider",
            "Resource 'Pipeline': Pipeline action ActionTypeId must have Version",
            "Resource 'Pipeline': Pipeline action must have an ActionTypeId",
        ]
