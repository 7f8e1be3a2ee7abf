"""テンプレートセクション構成ルールのユニットテスト。"""

from collections.abc import Callable

from ballast.models.finding import Finding

RunRule = Callable[[str, str], list[Finding]]


class TestParameterConfiguration:
    def test_valid_parameters(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E2001",
            """\
            Parameters:
              Env:
                Type: String
                Default: dev
                AllowedValues: [dev, prod]
                Description: Deployment stage
              Size:
                Type: Number
                MinValue: 1
                MaxValue: 10
            """,
        )
        assert findings == []

    def test_missing_type_and_invalid_property(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E2001",
            """\
            Parameters:
              Env:
                Default: dev
                Required: true
              Other: just-a-string
            """,
        )
        assert [f.message for f in findings] == [
            "Parameter 'Env' is missing required property 'Type'",
            "Parameter 'Env' has invalid property 'Required'",
            "Parameter 'Other' must be an object",
        ]
        assert findings[1].path == ["Parameters", "Env", "Required"]
        assert findings[1].line == 4


class TestUnusedParameter:
    def test_refs_and_sub_variables_count_as_use(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "W2001",
            """\
            Parameters:
              Env:
                Type: String
              Prefix:
                Type: String
              Flag:
                Type: String
            Conditions:
              IsOn: !Equals [!Ref Flag, "true"]
            Resources:
              Topic:
                Type: AWS::SNS::Topic
                Properties:
                  TopicName: !Sub "${Prefix}-topic"
            Outputs:
              Stage:
                Value: !Ref Env
            """,
        )
        assert findings == []

    def test_unused_parameter(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "W2001",
            """\
            Parameters:
              Unused:
                Type: String
            Resources:
              Topic:
                Type: AWS::SNS::Topic
            """,
        )
        assert [f.message for f in findings] == ["Parameter 'Unused' is defined but never used"]
        assert findings[0].severity == "Warning"
        assert findings[0].path == ["Parameters", "Unused"]


class TestMetadataSection:
    def test_null_values(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E4002",
            """\
            Metadata:
              Owner: team
              Notes:
              Labels:
                - a
                - null
            Resources:
              Topic:
                Type: AWS::SNS::Topic
            """,
        )
        assert [f.path for f in findings] == [["Metadata", "Notes"], ["Metadata", "Labels", "[1]"]]
        assert findings[0].message == "Metadata contains null value at Notes"
        assert findings[1].line == 6

    def test_metadata_must_be_object(self, run_rule: RunRule) -> None:
        findings = run_rule("E4002", "Metadata: [a]\nResources: {}\n")
        assert [f.message for f in findings] == ["Metadata must be an object"]

    def test_no_metadata(self, run_rule: RunRule) -> None:
        assert run_rule("E4002", "Resources: {}\n") == []


class TestOutputConfiguration:
    def test_invalid_property(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E6001",
            """\
            Resources:
              Topic:
                Type: AWS::SNS::Topic
            Outputs:
              Good:
                Value: !Ref Topic
                Description: topic
                Export:
                  Name: topic-arn
              Bad:
                Value: !Ref Topic
                Exports:
                  Name: typo
              Scalar: nope
            """,
        )
        assert [f.message for f in findings] == [
            "Output 'Bad' has invalid property 'Exports'",
            "Output 'Scalar' must be an object",
        ]
        assert findings[0].path == ["Outputs", "Bad", "Exports"]


class TestMappingConfiguration:
    def test_valid_mapping(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E7001",
            """\
            Mappings:
              RegionMap:
                us-east-1:
                  Ami: ami-123
                eu-west-1:
                  Ami: ami-456
            Resources: {}
            """,
        )
        assert findings == []

    def test_structure_problems(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E7001",
            """\
            Mappings:
              Bad_Name:
                key:
                  value: 1
              Empty: {}
              Flat:
                key: value
              Keys:
                "bad key":
                  "also bad": 1
                none: {}
            Resources: {}
            """,
        )
        assert [f.message for f in findings] == [
            "Mapping 'Bad_Name' name must be alphanumeric (a-zA-Z0-9.-)",
            "Mapping 'Empty' must have at least one top-level key",
            "Mapping 'Flat' top-level key 'key' must be an object",
            "Mapping 'Keys' key 'bad key' must be alphanumeric (a-zA-Z0-9.-)",
            "Mapping 'Keys' second-level key 'also bad' must be alphanumeric (a-zA-Z0-9.-)",
            "Mapping 'Keys' top-level key 'none' must have at least one second-level key",
        ]
        assert findings[4].path == ["Mappings", "Keys", "bad key", "also bad"]

    def test_mapping_limit(self, run_rule: RunRule) -> None:
        lines = ["Mappings:"]
        for i in range(201):
            lines += [f"  M{i}:", "    k:", "      v: 1"]
        findings = run_rule("E7001", "\n".join(lines) + "\nResources: {}\n")
        assert [f.message for f in findings] == ["Template has 201 mappings, exceeding the limit of 200"]


class TestConditionConfiguration:
    def test_condition_functions(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E8001",
            """\
            Conditions:
              IsProd: !Equals [!Ref "AWS::Region", us-east-1]
              Both: !And [!Condition IsProd, !Condition IsProd]
              Alias:
                Condition: IsProd
              Empty:
              Text: yes-please
              Wrong:
                Fn::Select: [0, [a]]
            Resources: {}
            """,
        )
        assert [f.message for f in findings] == [
            "Condition 'Empty' has no expression",
            "Condition 'Text' must be a condition function",
            "Condition 'Wrong' must use a valid condition function (Fn::Equals, Fn::And, Fn::Or, Fn::Not, Condition)",
        ]
        assert findings[2].path == ["Conditions", "Wrong"]
