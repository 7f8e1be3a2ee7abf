"""テンプレートモデル構築のユニットテスト。"""

from collections.abc import Callable

from ballast.models.node import MappingNode, ScalarNode
from ballast.models.template import Template
from ballast.template.builder import parse_template

LoadTemplate = Callable[[str], Template]


class TestBuildTemplate:
    def test_sections_are_collected(self, load_template: LoadTemplate) -> None:
        template = load_template(
            """\
            AWSTemplateFormatVersion: "2010-09-09"
            Description: demo
            Parameters:
              Env:
                Type: String
                Default: dev
            Conditions:
              IsProd: !Equals [!Ref Env, prod]
            Mappings:
              RegionMap:
                us-east-1:
                  Ami: ami-123
            Resources:
              Bucket:
                Type: AWS::S3::Bucket
            Outputs:
              BucketName:
                Value: !Ref Bucket
                Condition: IsProd
            """
        )
        assert list(template.sections) == [
            "AWSTemplateFormatVersion",
            "Description",
            "Parameters",
            "Conditions",
            "Mappings",
            "Resources",
            "Outputs",
        ]
        assert template.parameters["Env"].type == "String"
        assert template.parameters["Env"].default == "dev"
        assert list(template.conditions) == ["IsProd"]
        assert list(template.mappings) == ["RegionMap"]
        assert template.outputs["BucketName"].value == {"Ref": "Bucket"}
        assert template.outputs["BucketName"].condition == "IsProd"

    def test_resource_attributes(self, load_template: LoadTemplate) -> None:
        template = load_template(
            """\
            Resources:
              Queue:
                Type: AWS::SQS::Queue
                DependsOn: [Topic, Bucket]
                Condition: IsProd
                Metadata:
                  Owner: team
                Properties:
                  DelaySeconds: 5
            """
        )
        queue = template.resources["Queue"]
        assert queue.type == "AWS::SQS::Queue"
        assert queue.depends_on == ["Topic", "Bucket"]
        assert queue.condition == "IsProd"
        assert queue.metadata == {"Owner": "team"}
        assert queue.properties == {"DelaySeconds": 5}
        assert isinstance(queue.type_node, ScalarNode)
        assert queue.properties_node is not None
        assert queue.deletion_policy is None

    def test_single_depends_on_becomes_list(self, load_template: LoadTemplate) -> None:
        template = load_template(
            """\
            Resources:
              A:
                Type: AWS::SNS::Topic
                DependsOn: B
            """
        )
        assert template.resources["A"].depends_on == ["B"]

    def test_malformed_resource_is_kept(self, load_template: LoadTemplate) -> None:
        template = load_template(
            """\
            Resources:
              Broken: just-a-string
              NoProps:
                Type: AWS::SNS::Topic
                Properties: [a, b]
            """
        )
        assert template.resources["Broken"].type == ""
        assert template.resources["Broken"].properties == {}
        assert template.resources["NoProps"].properties == {}

    def test_non_mapping_sections_are_empty(self, load_template: LoadTemplate) -> None:
        template = load_template(
            """\
            Resources: nope
            Parameters: [1, 2]
            """
        )
        assert template.resources == {}
        assert template.parameters == {}
        assert "Resources" in template.sections

    def test_transform_as_string_or_list(self, load_template: LoadTemplate) -> None:
        single = load_template("Transform: AWS::Serverless-2016-10-31\nResources: {}\n")
        many = load_template("Transform: [AWS::Serverless-2016-10-31, AWS::LanguageExtensions]\n")
        assert single.transform == ["AWS::Serverless-2016-10-31"]
        assert many.transform == ["AWS::Serverless-2016-10-31", "AWS::LanguageExtensions"]

    def test_aliased_properties_are_decoded(self, load_template: LoadTemplate) -> None:
        template = load_template(
            """\
            Resources:
              A:
                Type: AWS::SQS::Queue
                Properties: &props
                  DelaySeconds: 1
              B:
                Type: AWS::SQS::Queue
                Properties: *props
            """
        )
        assert template.resources["B"].properties == {"DelaySeconds": 1}


class TestResourceOrdering:
    def test_sorted_resources_by_logical_id(self, load_template: LoadTemplate) -> None:
        template = load_template(
            """\
            Resources:
              Zeta:
                Type: AWS::SNS::Topic
              Alpha:
                Type: AWS::SQS::Queue
              Mid:
                Type: AWS::SNS::Topic
            """
        )
        assert [r.logical_id for r in template.sorted_resources()] == ["Alpha", "Mid", "Zeta"]
        assert [r.logical_id for r in template.resources_of_type("AWS::SNS::Topic")] == ["Mid", "Zeta"]
        assert template.has_resource("Alpha")
        assert not template.has_resource("Missing")


class TestLocate:
    BODY = (
        "Resources:\n"
        "  Sg:\n"
        "    Type: AWS::EC2::SecurityGroup\n"
        "    Properties:\n"
        "      SecurityGroupIngress:\n"
        "        - CidrIp: 10.0.0.0/8\n"
        "        - CidrIp: 0.0.0.0/0\n"
        "          FromPort: 22\n"
    )

    def test_walks_mappings_and_sequences(self) -> None:
        template = parse_template(self.BODY)
        node = template.locate(["Resources", "Sg", "Properties", "SecurityGroupIngress", "[1]", "FromPort"])
        assert isinstance(node, ScalarNode)
        assert (node.line, node.column) == (8, 21)

    def test_bare_numeric_index(self) -> None:
        template = parse_template(self.BODY)
        node = template.locate(["Resources", "Sg", "Properties", "SecurityGroupIngress", "0"])
        assert isinstance(node, MappingNode)
        assert node.line == 6

    def test_falls_back_to_deepest_reachable_node(self) -> None:
        template = parse_template(self.BODY)
        node = template.locate(["Resources", "Sg", "Properties", "Missing", "Deeper"])
        assert node.line == 5

    def test_out_of_range_index(self) -> None:
        template = parse_template(self.BODY)
        node = template.locate(["Resources", "Sg", "Properties", "SecurityGroupIngress", "[5]"])
        assert node.line == 6

    def test_empty_path_is_root(self) -> None:
        template = parse_template(self.BODY)
        assert template.locate([]) is template.raw
