"""組み込み関数の構造ルールのユニットテスト。"""

from collections.abc import Callable

import pytest

from ballast.models.finding import Finding

RunRule = Callable[[str, str], list[Finding]]

MAPPINGS = """\
            Mappings:
              RegionMap:
                us-east-1:
                  Ami: ami-123
"""


class TestFindInMapReference:
    def test_valid_lookup(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E1011",
            MAPPINGS
            + """\
            Resources:
              Instance:
                Type: AWS::EC2::Instance
                Properties:
                  ImageId: !FindInMap [RegionMap, !Ref "AWS::Region", Ami]
                  KeyName: !FindInMap [RegionMap, us-east-1, Ami]
            """,
        )
        assert findings == []

    def test_undefined_mapping_and_keys(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E1011",
            MAPPINGS
            + """\
            Resources:
              Instance:
                Type: AWS::EC2::Instance
                Properties:
                  ImageId: !FindInMap [Missing, us-east-1, Ami]
                  KeyName: !FindInMap [RegionMap, eu-west-1, Ami]
                  UserData: !FindInMap [RegionMap, us-east-1, Kernel]
            Outputs:
              Short:
                Value: !FindInMap [RegionMap, us-east-1]
            """,
        )
        assert [f.message for f in findings] == [
            "Fn::FindInMap references undefined mapping 'Missing' in resource 'Instance'",
            "Fn::FindInMap references undefined top-level key 'eu-west-1' in mapping 'RegionMap' "
            "in resource 'Instance'",
            "Fn::FindInMap references undefined second-level key 'Kernel' in mapping 'RegionMap' "
            "under 'us-east-1' in resource 'Instance'",
            "Fn::FindInMap requires 3 arguments, got 2 in output 'Short'",
        ]
        assert findings[0].path == ["Resources", "Instance", "Properties", "ImageId", "Fn::FindInMap"]
        assert findings[0].line == 9


class TestIfStructure:
    def test_valid_if(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E1028",
            """\
            Resources:
              Fn:
                Type: AWS::Lambda::Function
                Properties:
                  Timeout: !If [IsProd, 30, 10]
                  MemorySize: !If [Undeclared, 128, 256]
            """,
        )
        assert findings == []

    def test_malformed_if(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E1028",
            """\
            Resources:
              Fn:
                Type: AWS::Lambda::Function
                Properties:
                  Timeout: !If [IsProd, 30]
                  MemorySize: !If [[IsProd], 128, 256]
            Outputs:
              Out:
                Value:
                  Fn::If: IsProd
            """,
        )
        assert [f.message for f in findings] == [
            "Fn::If must have exactly 3 elements [condition_name, value_if_true, value_if_false], "
            "got 2 in resource 'Fn'",
            "Fn::If first element must be a condition name in resource 'Fn'",
            "Fn::If must be a list in output 'Out'",
        ]


class TestConditionFunctionStructure:
    @pytest.mark.parametrize("rule_id", ["E8003", "E8004", "E8005", "E8006", "E8007"])
    def test_valid_conditions(self, run_rule: RunRule, rule_id: str) -> None:
        body = """\
            Conditions:
              IsProd: !Equals [!Ref "AWS::Region", us-east-1]
              IsDev: !Not [!Condition IsProd]
              Both: !And [!Condition IsProd, !Condition IsDev]
              Either: !Or [!Condition IsProd, !Condition IsDev]
            Resources: {}
            """
        assert run_rule(rule_id, body) == []

    @pytest.mark.parametrize(
        ("rule_id", "expression", "message"),
        [
            ("E8003", "!Equals [a]", "Fn::Equals must have exactly 2 elements, got 1 in condition 'C'"),
            ("E8003", "!Equals a", "Fn::Equals must be a list in condition 'C'"),
            ("E8004", "!And [!Condition X]", "Fn::And must have at least 2 conditions, got 1 in condition 'C'"),
            (
                "E8005",
                "!Not [!Condition X, !Condition Y]",
                "Fn::Not must have exactly 1 element, got 2 in condition 'C'",
            ),
            (
                "E8006",
                "!Or [" + ", ".join(["!Condition X"] * 11) + "]",
                "Fn::Or must have at most 10 conditions, got 11 in condition 'C'",
            ),
            (
                "E8007",
                "!Not [{Condition: [X]}]",
                "Condition function must reference a condition name in condition 'C'",
            ),
        ],
    )
    def test_malformed_conditions(self, run_rule: RunRule, rule_id: str, expression: str, message: str) -> None:
        findings = run_rule(rule_id, f"Conditions:\n  C: {expression}\nResources: {{}}\n")
        assert [f.message for f in findings] == [message]
        assert findings[0].path[:2] == ["Conditions", "C"]

    def test_equals_in_resource_properties(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E8003",
            """\
            Resources:
              Topic:
                Type: AWS::SNS::Topic
                Properties:
                  TopicName: !If [!Equals [a, b, c], x, y]
            """,
        )
        assert [f.message for f in findings] == ["Fn::Equals must have exactly 2 elements, got 3 in resource 'Topic'"]
        assert findings[0].path == ["Resources", "Topic", "Properties", "TopicName", "Fn::If", "[0]", "Fn::Equals"]

