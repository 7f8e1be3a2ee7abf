"""テンプレートローダーのユニットテスト。"""

import pytest

from ballast.models.errors import TemplateParseError
from ballast.models.node import AliasNode, MappingNode, ScalarNode, SequenceNode
from ballast.template.loader import MAX_NESTING_DEPTH, load_template_node


class TestLoadYaml:
    def test_scalars_keep_location(self) -> None:
        root = load_template_node("Description: hello\nResources:\n  Bucket:\n    Type: AWS::S3::Bucket\n")
        description = root.get("Description")
        assert isinstance(description, ScalarNode)
        assert description.value == "hello"
        assert (description.line, description.column) == (1, 14)

        bucket = root.get("Resources").get("Bucket")  # type: ignore[union-attr]
        assert isinstance(bucket, MappingNode)
        assert (bucket.line, bucket.column) == (4, 5)

    def test_scalar_types_are_decoded(self) -> None:
        root = load_template_node("A: 1\nB: 1.5\nC: true\nD: null\nE: '1'\n")
        assert root.decode() == {"A": 1, "B": 1.5, "C": True, "D": None, "E": "1"}

    def test_timestamp_stays_string(self) -> None:
        root = load_template_node("AWSTemplateFormatVersion: 2010-09-09\n")
        assert root.decode() == {"AWSTemplateFormatVersion": "2010-09-09"}

    def test_mapping_keeps_key_order(self) -> None:
        root = load_template_node("Zeta: 1\nAlpha: 2\nMid: 3\n")
        assert root.keys() == ["Zeta", "Alpha", "Mid"]


class TestShortFormTags:
    def test_ref(self) -> None:
        root = load_template_node("Value: !Ref MyParam\n")
        assert root.decode() == {"Value": {"Ref": "MyParam"}}

    def test_condition(self) -> None:
        root = load_template_node("Value: !Condition IsProd\n")
        assert root.decode() == {"Value": {"Condition": "IsProd"}}

    def test_getatt_dotted_is_split_on_first_dot(self) -> None:
        root = load_template_node("Value: !GetAtt Db.Endpoint.Address\n")
        assert root.decode() == {"Value": {"Fn::GetAtt": ["Db", "Endpoint.Address"]}}

    def test_getatt_sequence_form(self) -> None:
        root = load_template_node("Value: !GetAtt [Db, Arn]\n")
        assert root.decode() == {"Value": {"Fn::GetAtt": ["Db", "Arn"]}}

    def test_other_tags_get_fn_prefix(self) -> None:
        root = load_template_node("Value: !Sub '${AWS::StackName}-bucket'\nList: !Split [',', 'a,b']\n")
        assert root.decode() == {
            "Value": {"Fn::Sub": "${AWS::StackName}-bucket"},
            "List": {"Fn::Split": [",", "a,b"]},
        }

    def test_tagged_mapping(self) -> None:
        root = load_template_node("Value: !Transform {Name: Include}\n")
        assert root.decode() == {"Value": {"Fn::Transform": {"Name": "Include"}}}

    def test_intrinsic_node_carries_tag_location(self) -> None:
        root = load_template_node("Key:\n  Value: !Ref Foo\n")
        value = root.get("Key").get("Value")  # type: ignore[union-attr]
        assert isinstance(value, MappingNode)
        assert (value.line, value.column) == (2, 10)

    def test_nested_tags(self) -> None:
        root = load_template_node("Value: !Join ['', [!Ref A, !GetAtt B.Arn]]\n")
        assert root.decode() == {
            "Value": {"Fn::Join": ["", [{"Ref": "A"}, {"Fn::GetAtt": ["B", "Arn"]}]]}
        }


class TestAliases:
    def test_alias_node_points_to_anchor(self) -> None:
        root = load_template_node("Base: &base\n  Name: x\nCopy: *base\n")
        copy = root.get("Copy")
        assert isinstance(copy, AliasNode)
        assert copy.anchor == "base"
        assert copy.line == 3
        assert copy.decode() == {"Name": "x"}


class TestLoadJson:
    def test_json_document(self) -> None:
        root = load_template_node('{\n  "Resources": {\n    "Bucket": {"Type": "AWS::S3::Bucket"}\n  }\n}\n')
        assert root.decode() == {"Resources": {"Bucket": {"Type": "AWS::S3::Bucket"}}}
        bucket = root.get("Resources").get("Bucket")  # type: ignore[union-attr]
        assert bucket.line == 3  # type: ignore[union-attr]

    def test_json_with_tab_indentation(self) -> None:
        root = load_template_node('{\n\t"Resources": {\n\t\t"Queue": {"Type": "AWS::SQS::Queue"}\n\t}\n}\n')
        assert root.decode() == {"Resources": {"Queue": {"Type": "AWS::SQS::Queue"}}}

    def test_bytes_with_bom(self) -> None:
        root = load_template_node('\ufeff{"Description": "x"}'.encode())
        assert root.decode() == {"Description": "x"}

    def test_json_list_items(self) -> None:
        root = load_template_node('{"Items": [1, "two", false]}')
        items = root.get("Items")
        assert isinstance(items, SequenceNode)
        assert items.decode() == [1, "two", False]


class TestLoadErrors:
    def test_invalid_yaml_reports_location(self) -> None:
        with pytest.raises(TemplateParseError) as exc_info:
            load_template_node("Resources:\n  Bucket: [unclosed\n")
        assert exc_info.value.line >= 2
        assert exc_info.value.column >= 1

    def test_duplicate_key(self) -> None:
        with pytest.raises(TemplateParseError) as exc_info:
            load_template_node("Resources:\n  A:\n    Type: x\n  A:\n    Type: y\n")
        assert "Duplicate key 'A'" in str(exc_info.value)
        assert "line 2" in str(exc_info.value)
        assert exc_info.value.line == 4

    def test_empty_document(self) -> None:
        with pytest.raises(TemplateParseError, match="empty"):
            load_template_node("")

    def test_root_must_be_mapping(self) -> None:
        with pytest.raises(TemplateParseError, match="mapping"):
            load_template_node("- a\n- b\n")

    def test_non_scalar_key(self) -> None:
        with pytest.raises(TemplateParseError, match="scalars"):
            load_template_node("? [a, b]\n: value\n")

    def test_invalid_utf8(self) -> None:
        with pytest.raises(TemplateParseError, match="UTF-8"):
            load_template_node(b"Description: \xff\xfe\n")

    def test_recursive_alias(self) -> None:
        with pytest.raises(TemplateParseError):
            load_template_node("a: &x\n  b: *x\n")

    def test_nesting_too_deep_for_parser(self) -> None:
        depth = 3000
        with pytest.raises(TemplateParseError, match="too deep"):
            load_template_node("Metadata: {X: " + "[" * depth + "]" * depth + "}\n")

    def test_nesting_over_limit(self) -> None:
        depth = MAX_NESTING_DEPTH + 10
        with pytest.raises(TemplateParseError, match="too deep") as exc_info:
            load_template_node("Metadata: {X: " + "[" * depth + "]" * depth + "}\n")
        assert exc_info.value.line == 1


class TestLargeValues:
    def test_nesting_within_limit(self) -> None:
        depth = 50
        root = load_template_node("Metadata: {X: " + "[" * depth + "1" + "]" * depth + "}\n")
        value = root.decode()["Metadata"]["X"]
        for _ in range(depth - 1):
            value = value[0]
        assert value == [1]

    def test_integer_beyond_conversion_limit_stays_string(self) -> None:
        digits = "9" * 5000
        root = load_template_node(f"DelaySeconds: {digits}\n")
        scalar = root.get("DelaySeconds")
        assert isinstance(scalar, ScalarNode)
        assert scalar.value == digits
        assert scalar.raw == digits
