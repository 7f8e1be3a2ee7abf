"""組み込み関数ヘルパーのユニットテスト。"""

from ballast.validators.intrinsics import (
    PSEUDO_PARAMETERS,
    find_condition_refs,
    find_getatts,
    find_refs,
    find_resource_dependencies,
    find_sub_refs,
    getatt_target,
    is_intrinsic,
    ref_target,
    walk_with_path,
)


class TestIsIntrinsic:
    def test_function_keys(self) -> None:
        assert is_intrinsic({"Ref": "X"})
        assert is_intrinsic({"Condition": "IsProd"})
        assert is_intrinsic({"Fn::If": ["C", 1, 2]})

    def test_plain_values(self) -> None:
        assert not is_intrinsic({"Key": "Value"})
        assert not is_intrinsic({})
        assert not is_intrinsic("Ref")
        assert not is_intrinsic(["Ref"])


class TestTargets:
    def test_ref_target(self) -> None:
        assert ref_target({"Ref": "Bucket"}) == "Bucket"
        assert ref_target({"Ref": "Bucket", "Other": 1}) is None
        assert ref_target("Bucket") is None

    def test_getatt_target(self) -> None:
        assert getatt_target({"Fn::GetAtt": ["Db", "Endpoint.Address"]}) == "Db"
        assert getatt_target({"Fn::GetAtt": "Db.Arn"}) == "Db"
        assert getatt_target({"Fn::GetAtt": {"Ref": "X"}}) is None
        assert getatt_target({"Ref": "Db"}) is None


class TestFinders:
    VALUE = {
        "A": {"Ref": "Param"},
        "B": [{"Fn::GetAtt": ["Role", "Arn"]}, {"Ref": "AWS::Region"}],
        "C": {"Fn::Sub": "arn:${AWS::Partition}:s3:::${Bucket}/${Prefix.Value}/${!Literal}"},
        "D": {"Fn::Sub": ["${Local}-${Queue.Arn}", {"Local": "x"}]},
        "E": {"Fn::If": ["IsProd", {"Ref": "Topic"}, {"Ref": "AWS::NoValue"}]},
        "F": {"Condition": "HasName"},
    }

    def test_find_refs_in_order(self) -> None:
        assert find_refs(self.VALUE) == ["Param", "AWS::Region", "Topic", "AWS::NoValue"]

    def test_find_getatts(self) -> None:
        assert find_getatts(self.VALUE) == ["Role"]

    def test_find_sub_refs_skips_locals_pseudo_and_escapes(self) -> None:
        assert find_sub_refs(self.VALUE) == ["Bucket", "Prefix", "Queue"]

    def test_find_condition_refs(self) -> None:
        assert find_condition_refs(self.VALUE) == ["IsProd", "HasName"]

    def test_find_resource_dependencies(self) -> None:
        names = {"Role", "Bucket", "Queue", "Topic", "Unused"}
        assert find_resource_dependencies(self.VALUE, names) == ["Topic", "Role", "Bucket", "Queue"]

    def test_pseudo_parameters(self) -> None:
        assert "AWS::StackName" in PSEUDO_PARAMETERS
        assert "AWS::Made" not in PSEUDO_PARAMETERS


class TestWalkWithPath:
    def test_yields_breadcrumbs(self) -> None:
        value = {"List": [{"Ref": "A"}, "x"], "Map": {"Key": {"Ref": "B"}}}
        paths = [path for path, _ in walk_with_path(value, ["Properties"])]
        assert paths == [
            ["Properties"],
            ["Properties", "List", "[0]"],
            ["Properties", "Map"],
            ["Properties", "Map", "Key"],
        ]
