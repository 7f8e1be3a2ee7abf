"""組み込み関数（Ref / Fn::*）の判定と参照抽出。"""

import re
from collections.abc import Iterator
from typing import Any

# Fn::Sub 文字列中の ${Name} / ${Name.Attr}。${!Literal} はエスケープ
_SUB_VARIABLE = re.compile(r"\$\{([^!}][^}]*)\}")

PSEUDO_PARAMETERS = frozenset(
    {
        "AWS::AccountId",
        "AWS::NotificationARNs",
        "AWS::NoValue",
        "AWS::Partition",
        "AWS::Region",
        "AWS::StackId",
        "AWS::StackName",
        "AWS::URLSuffix",
    }
)


def is_intrinsic(value: Any) -> bool:
    """値がデプロイ時に評価される組み込み関数かどうかを判定する。

    唯一（または先頭）のキーが Ref / Condition / Fn:: で始まるマッピングを組み込み関数とみなす。
    """
    if not isinstance(value, dict) or not value:
        return False
    return _is_function_key(next(iter(value)))


def _is_function_key(key: str) -> bool:
    return key in ("Ref", "Condition") or key.startswith("Fn::")


def ref_target(value: Any) -> str | None:
    """{"Ref": name} 形式なら name を返す。"""
    if isinstance(value, dict) and len(value) == 1 and isinstance(value.get("Ref"), str):
        return value["Ref"]
    return None


def getatt_target(value: Any) -> str | None:
    """{"Fn::GetAtt": ...} 形式ならリソース名を返す。"""
    if not isinstance(value, dict) or "Fn::GetAtt" not in value:
        return None
    return _getatt_resource(value["Fn::GetAtt"])


def _getatt_resource(args: Any) -> str | None:
    if isinstance(args, str):
        return args.split(".", 1)[0] or None
    if isinstance(args, list) and args and isinstance(args[0], str):
        return args[0]
    return None


def _walk(value: Any) -> Iterator[dict[str, Any]]:
    """値ツリー中の全マッピングを深さ優先・出現順で列挙する。"""
    if isinstance(value, dict):
        yield value
        for child in value.values():
            yield from _walk(child)
    elif isinstance(value, list):
        for child in value:
            yield from _walk(child)


def walk_with_path(value: Any, path: list[str]) -> Iterator[tuple[list[str], dict[str, Any]]]:
    """値ツリー中の全マッピングを、パンくずパスとともに出現順で列挙する。"""
    if isinstance(value, dict):
        yield path, value
        for key, child in value.items():
            yield from walk_with_path(child, [*path, key])
    elif isinstance(value, list):
        for i, child in enumerate(value):
            yield from walk_with_path(child, [*path, f"[{i}]"])


def find_refs(value: Any) -> list[str]:
    """値ツリー中の Ref 対象名を出現順に返す。"""
    return [m["Ref"] for m in _walk(value) if isinstance(m.get("Ref"), str)]


def find_getatts(value: Any) -> list[str]:
    """値ツリー中の Fn::GetAtt 対象リソース名を出現順に返す。"""
    names: list[str] = []
    for mapping in _walk(value):
        if "Fn::GetAtt" in mapping:
            name = _getatt_resource(mapping["Fn::GetAtt"])
            if name:
                names.append(name)
    return names


def find_sub_refs(value: Any) -> list[str]:
    """Fn::Sub 文字列中の変数が指す名前（属性部分を除く）を返す。

    Fn::Sub の第2引数で定義されたローカル変数は除外する。
    """
    names: list[str] = []
    for mapping in _walk(value):
        if "Fn::Sub" not in mapping:
            continue
        args = mapping["Fn::Sub"]
        local_vars: set[str] = set()
        if isinstance(args, list) and args:
            if len(args) > 1 and isinstance(args[1], dict):
                local_vars = set(args[1])
            args = args[0]
        if not isinstance(args, str):
            continue
        for variable in _SUB_VARIABLE.findall(args):
            variable = variable.strip()
            if variable in local_vars or variable in PSEUDO_PARAMETERS:
                continue
            names.append(variable.split(".", 1)[0])
    return names


def find_condition_refs(value: Any) -> list[str]:
    """Fn::If の第1引数および Condition 組み込み関数が参照する条件名を返す。"""
    names: list[str] = []
    for mapping in _walk(value):
        if_args = mapping.get("Fn::If")
        if isinstance(if_args, list) and if_args and isinstance(if_args[0], str):
            names.append(if_args[0])
        condition = mapping.get("Condition")
        if isinstance(condition, str) and len(mapping) == 1:
            names.append(condition)
    return names


def find_resource_dependencies(value: Any, resource_names: set[str] | dict[str, Any]) -> list[str]:
    """Ref / Fn::GetAtt / Fn::Sub 経由で参照されるリソース名を重複なく出現順に返す。"""
    seen: set[str] = set()
    result: list[str] = []
    for name in find_refs(value) + find_getatts(value) + find_sub_refs(value):
        if name in resource_names and name not in seen:
            seen.add(name)
            result.append(name)
    return result
