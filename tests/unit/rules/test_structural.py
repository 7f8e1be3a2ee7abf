"""構造ルールのユニットテスト。"""

from collections.abc import Callable

from ballast.models.finding import Finding

RunRule = Callable[[str, str], list[Finding]]


class TestResourceEnvelope:
    def test_valid_resource(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3001",
            """\
            Resources:
              Bucket:
                Type: AWS::S3::Bucket
                DeletionPolicy: Retain
                Properties: {}
            """,
        )
        assert findings == []

    def test_missing_type(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3001",
            """\
            Resources:
              Bucket:
                Properties: {}
            """,
        )
        assert [f.message for f in findings] == ["Resource 'Bucket' is missing required property 'Type'"]
        assert findings[0].path == ["Resources", "Bucket"]
        assert (findings[0].line, findings[0].column) == (3, 5)

    def test_unknown_attribute(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3001",
            """\
            Resources:
              Bucket:
                Type: AWS::S3::Bucket
                Propertys: {}
            """,
        )
        assert [f.message for f in findings] == ["Resource 'Bucket' has invalid property 'Propertys'"]
        assert findings[0].line == 4
        assert findings[0].severity == "Error"

    def test_resource_must_be_object(self, run_rule: RunRule) -> None:
        findings = run_rule("E3001", "Resources:\n  Bucket: AWS::S3::Bucket\n")
        assert [f.message for f in findings] == ["Resource 'Bucket' must be an object"]


class TestPropertiesShape:
    def test_properties_must_be_object(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3002",
            """\
            Resources:
              Bucket:
                Type: AWS::S3::Bucket
                Properties: [a]
            """,
        )
        assert [f.message for f in findings] == ["Resource 'Bucket' Properties must be an object, got list"]

    def test_intrinsic_properties_are_skipped(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3002",
            """\
            Resources:
              Bucket:
                Type: AWS::S3::Bucket
                Properties: !If [IsProd, {BucketName: a}, {BucketName: b}]
            """,
        )
        assert findings == []

    def test_invalid_property_name(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3002",
            """\
            Resources:
              Bucket:
                Type: AWS::S3::Bucket
                Properties:
                  Bucket-Name: x
            """,
        )
        assert [f.path for f in findings] == [["Resources", "Bucket", "Properties", "Bucket-Name"]]


class TestResourceTypeFormat:
    def test_valid_types(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3006",
            """\
            Resources:
              A:
                Type: AWS::S3::Bucket
              B:
                Type: Custom::MyThing
              C:
                Type: Org::Service::Thing::MODULE
            """,
        )
        assert findings == []

    def test_invalid_type(self, run_rule: RunRule) -> None:
        findings = run_rule("E3006", "Resources:\n  A:\n    Type: AWS::S3\n")
        assert [f.message for f in findings] == ["Resource 'A' has invalid type 'AWS::S3'"]
        assert findings[0].line == 3


class TestCloudFormationInit:
    def test_unknown_section(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3009",
            """\
            Resources:
              Instance:
                Type: AWS::EC2::Instance
                Metadata:
                  AWS::CloudFormation::Init:
                    configSets:
                      default: [config]
                    config:
                      packages: {}
                      scripts: {}
            """,
        )
        assert len(findings) == 1
        assert "invalid section 'scripts' in config 'config'" in findings[0].message

    def test_config_must_be_object(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3009",
            """\
            Resources:
              Instance:
                Type: AWS::EC2::Instance
                Metadata:
                  AWS::CloudFormation::Init:
                    config: [packages]
            """,
        )
        assert "invalid config 'config'" in findings[0].message


class TestResourceLimit:
    @staticmethod
    def _body(count: int) -> str:
        lines = ["Resources:"]
        for i in range(count):
            lines.append(f"  Topic{i:03d}:\n    Type: AWS::SNS::Topic")
        return "\n".join(lines) + "\n"

    def test_at_limit(self, run_rule: RunRule) -> None:
        assert run_rule("E3010", self._body(500)) == []

    def test_over_limit(self, run_rule: RunRule) -> None:
        findings = run_rule("E3010", self._body(501))
        assert [f.message for f in findings] == ["Template has 501 resources, exceeding the limit of 500"]
        assert findings[0].path == ["Resources"]


class TestUpdatePolicy:
    def test_unknown_key(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3016",
            """\
            Resources:
              Group:
                Type: AWS::AutoScaling::AutoScalingGroup
                UpdatePolicy:
                  AutoScalingRollingUpdate: {}
                  RollingUpdate: {}
            """,
        )
        assert [f.message for f in findings] == ["Resource 'Group' has invalid UpdatePolicy key 'RollingUpdate'"]

    def test_must_be_object(self, run_rule: RunRule) -> None:
        findings = run_rule("E3016", "Resources:\n  G:\n    Type: AWS::AutoScaling::AutoScalingGroup\n    UpdatePolicy: x\n")
        assert [f.message for f in findings] == ["UpdatePolicy in resource 'G' must be an object"]


class TestTags:
    def test_tag_problems(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3024",
            """\
            Resources:
              Bucket:
                Type: AWS::S3::Bucket
                Properties:
                  Tags:
                    - Key: Env
                      Value: dev
                    - Key: Env
                      Value: prod
                    - Value: orphan
                    - Key: "bad#key"
            """,
        )
        assert [f.message for f in findings] == [
            "Resource 'Bucket' has duplicate tag key 'Env'",
            "Resource 'Bucket' has tag without Key at index 2",
            "Resource 'Bucket' has invalid tag key 'bad#key' "
            "(must be 1-128 characters, letters, numbers, spaces, and +-=._:/@)",
            "Resource 'Bucket' has tag without Value at index 3",
        ]

    def test_valid_tags(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3024",
            """\
            Resources:
              Bucket:
                Type: AWS::S3::Bucket
                Properties:
                  Tags:
                    - Key: aws-cdk:path/Stack
                      Value: x
                    - !Ref ExtraTag
            """,
        )
        assert findings == []


class TestMetadataShape:
    def test_metadata_must_be_object(self, run_rule: RunRule) -> None:
        findings = run_rule("E3028", "Resources:\n  T:\n    Type: AWS::SNS::Topic\n    Metadata: [a]\n")
        assert [f.message for f in findings] == ["Metadata in resource 'T' must be an object, got list"]


class TestPolicyAttributes:
    def test_deletion_policy(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3035",
            """\
            Resources:
              A:
                Type: AWS::S3::Bucket
                DeletionPolicy: Keep
              B:
                Type: AWS::S3::Bucket
                DeletionPolicy: RetainExceptOnCreate
              C:
                Type: AWS::S3::Bucket
                DeletionPolicy: !If [IsProd, Retain, Delete]
            """,
        )
        assert [f.message for f in findings] == [
            "Invalid DeletionPolicy 'Keep' in resource 'A'. Valid values: Delete, Retain, Snapshot, RetainExceptOnCreate"
        ]

    def test_update_replace_policy(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3036",
            "Resources:\n  A:\n    Type: AWS::S3::Bucket\n    UpdateReplacePolicy: RetainExceptOnCreate\n",
        )
        assert len(findings) == 1
        assert findings[0].path == ["Resources", "A", "UpdateReplacePolicy"]


class TestCreationPolicy:
    def test_valid_policy(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3055",
            """\
            Resources:
              Group:
                Type: AWS::AutoScaling::AutoScalingGroup
                CreationPolicy:
                  ResourceSignal:
                    Count: 2
                    Timeout: PT15M
                  AutoScalingCreationPolicy:
                    MinSuccessfulInstancesPercent: 50
            """,
        )
        assert findings == []

    def test_invalid_policy(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3055",
            """\
            Resources:
              Group:
                Type: AWS::AutoScaling::AutoScalingGroup
                CreationPolicy:
                  Signal: {}
                  ResourceSignal:
                    Count: 0
                    Timeout: 15 minutes
                  AutoScalingCreationPolicy:
                    MinSuccessfulInstancesPercent: 150
            """,
        )
        assert [f.path[-1] for f in findings] == [
            "Signal",
            "Count",
            "Timeout",
            "MinSuccessfulInstancesPercent",
        ]
