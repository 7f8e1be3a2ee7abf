"""IAMポリシードキュメントの解析と構造検査。"""

import json
from collections.abc import Iterator
from typing import Any, NamedTuple

from ballast.validators.intrinsics import is_intrinsic


class PolicyProblem(NamedTuple):
    """ポリシードキュメント内で見つかった構造上の問題。"""

    message: str
    path: list[str]


def parse_policy_document(value: Any) -> tuple[dict[str, Any] | None, str | None]:
    """マッピングまたはJSON文字列のポリシードキュメントを解析する。

    Returns:
        (ドキュメント, エラー) のタプル。組み込み関数や解釈できない形状は (None, None)。
        JSON文字列の解析に失敗した場合は (None, エラーメッセージ)。
    """
    if is_intrinsic(value):
        return None, None
    if isinstance(value, dict):
        return value, None
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as e:
            return None, str(e)
        if not isinstance(parsed, dict):
            return None, "policy document must be a JSON object"
        return parsed, None
    return None, None


def _statements(document: dict[str, Any]) -> Iterator[tuple[int, dict[str, Any]]]:
    statements = document.get("Statement")
    if not isinstance(statements, list):
        return
    for i, statement in enumerate(statements):
        if isinstance(statement, dict) and not is_intrinsic(statement):
            yield i, statement


def check_policy_document(document: dict[str, Any], *, resource_based: bool) -> list[PolicyProblem]:
    """ポリシードキュメントの必須要素を検査する。

    Args:
        document: 解析済みのポリシードキュメント。
        resource_based: リソースベースポリシーなら True（Principal を要求）。
            False ならアイデンティティベースポリシーとして Resource を要求する。

    Returns:
        検出された問題のリスト。パスはドキュメントからの相対パス。
    """
    problems: list[PolicyProblem] = []
    if "Version" not in document:
        problems.append(PolicyProblem("must include Version", []))
    if "Statement" not in document:
        problems.append(PolicyProblem("must include Statement", []))
        return problems

    statements = document["Statement"]
    if is_intrinsic(statements):
        return problems
    if not isinstance(statements, list):
        problems.append(PolicyProblem("Statement must be a list", ["Statement"]))
        return problems

    for i, statement in _statements(document):
        path = ["Statement", f"[{i}]"]
        if "Effect" not in statement:
            problems.append(PolicyProblem(f"Statement {i} must include Effect", path))
        if "Action" not in statement and "NotAction" not in statement:
            problems.append(PolicyProblem(f"Statement {i} must include Action or NotAction", path))
        if resource_based:
            if "Principal" not in statement and "NotPrincipal" not in statement:
                problems.append(PolicyProblem(f"Statement {i} must include Principal or NotPrincipal", path))
        elif "Resource" not in statement and "NotResource" not in statement:
            problems.append(PolicyProblem(f"Statement {i} must include Resource or NotResource", path))
    return problems


def iter_statement_resources(document: dict[str, Any]) -> Iterator[tuple[list[str], str]]:
    """各ステートメントの Resource / NotResource に書かれた文字列を列挙する。

    Yields:
        (ドキュメントからの相対パス, 値) のタプル。
    """
    for i, statement in _statements(document):
        for key in ("Resource", "NotResource"):
            value = statement.get(key)
            path = ["Statement", f"[{i}]", key]
            if isinstance(value, str):
                yield path, value
            elif isinstance(value, list):
                for item in value:
                    if isinstance(item, str):
                        yield path, item
