"""複数のルールが共有する値の判定ヘルパー。"""

import ipaddress
import json
import re
from typing import Any

ARN_PATTERN = re.compile(r"^arn:(aws|aws-cn|aws-us-gov):([a-z0-9-]+):([a-z0-9-]*):(\d{12}|):(.+)$")
IAM_ROLE_ARN_PATTERN = re.compile(r"^arn:(aws|aws-cn|aws-us-gov):iam::\d{12}:role/[\w+=,.@/-]+$")
DOMAIN_NAME_PATTERN = re.compile(r"^(\*\.)?([a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$")

_RATE_EXPRESSION = re.compile(r"^rate\(\d+\s+(minute|minutes|hour|hours|day|days)\)$")
_CRON_EXPRESSION = re.compile(r"^cron\([^)]+\)$")
_INTEGER_STRING = re.compile(r"^[+-]?\d+$")

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


# --- ARN ---


def is_arn(value: str) -> bool:
    return ARN_PATTERN.match(value) is not None


def is_role_arn(value: str) -> bool:
    return IAM_ROLE_ARN_PATTERN.match(value) is not None


# --- CIDR ---


def parse_cidr(value: Any) -> IPNetwork | None:
    """CIDR表記を解析する。ホスト部が立っていてもネットワークとして扱う。"""
    if not isinstance(value, str) or "/" not in value:
        return None
    try:
        return ipaddress.ip_network(value, strict=False)
    except ValueError:
        return None


def cidr_contains(outer: IPNetwork, inner: IPNetwork) -> bool:
    """inner のアドレス範囲全体が outer に含まれるか。"""
    if outer.version != inner.version:
        return False
    return inner.subnet_of(outer)  # type: ignore[arg-type]


def cidr_overlaps(a: IPNetwork, b: IPNetwork) -> bool:
    if a.version != b.version:
        return False
    return a.overlaps(b)  # type: ignore[arg-type]


# --- ドメイン名 ---


def is_domain_name(value: str) -> bool:
    """ドメイン名として妥当か。左端ラベルのみワイルドカードを許可する。"""
    return DOMAIN_NAME_PATTERN.match(value) is not None


def _normalize_domain(value: str) -> str:
    return value.lower().rstrip(".") + "."


def is_subdomain_or_equal(name: str, parent: str) -> bool:
    """name が parent と等しいか、ラベル境界で parent の配下にあるか。"""
    name = _normalize_domain(name)
    parent = _normalize_domain(parent)
    return name == parent or name.endswith("." + parent)


# --- スケジュール式 ---


def is_schedule_expression(value: str) -> bool:
    return _RATE_EXPRESSION.match(value) is not None or _CRON_EXPRESSION.match(value) is not None


# --- 数値変換 ---


def to_float(value: Any) -> float | None:
    """数値または数値の文字列表現を float に変換する。変換できなければ None。"""
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            return float(value.strip())
    except (ValueError, OverflowError):
        return None
    return None


def to_int(value: Any) -> int | None:
    """整数、小数部が0の浮動小数、整数の文字列表現を int に変換する。"""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str) and _INTEGER_STRING.match(value.strip()):
        try:
            return int(value.strip())
        except ValueError:
            # 桁数上限を超える整数文字列
            return None
    return None


def to_bool(value: Any) -> bool | None:
    """真偽値または "true" / "false" 文字列を bool に変換する。"""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    return None


# --- 型判定 ---


def type_name(value: Any) -> str:
    """メッセージ用の値の型名。"""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "list"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def check_primitive_type(value: Any, primitive_type: str) -> str | None:
    """値がプリミティブ型に適合するか検査し、不適合ならエラーメッセージを返す。

    Double は整数を、Integer / Long は小数部0の浮動小数と整数文字列を受け付ける。
    String は数値を受け付ける（テンプレートでは引用符なしの数値が一般的なため）。
    """
    if primitive_type == "String":
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            return f"expected string, got {type_name(value)}"
    elif primitive_type in ("Integer", "Long"):
        if to_int(value) is None:
            if isinstance(value, float):
                return f"expected {primitive_type.lower()}, got float {value}"
            return f"expected {primitive_type.lower()}, got {type_name(value)}"
    elif primitive_type == "Double":
        if to_float(value) is None:
            return f"expected double, got {type_name(value)}"
    elif primitive_type == "Boolean":
        if not isinstance(value, bool) and not (isinstance(value, str) and value.lower() in ("true", "false")):
            return f"expected boolean, got {type_name(value)}"
    elif primitive_type == "Timestamp":
        if not isinstance(value, str):
            return f"expected timestamp (string), got {type_name(value)}"
    elif primitive_type == "Json":
        if not isinstance(value, (str, dict, list)):
            return f"expected JSON (string, map, or list), got {type_name(value)}"
    return None


# --- 値ツリー ---


def canonical_json_key(value: Any) -> str:
    """重複判定用の正規化JSON表現。キー順に依存しない。"""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


_MISSING = object()


def get_path(properties: dict[str, Any], path: str) -> Any:
    """ドット区切りのパスで値を取り出す。見つからなければ None。"""
    value = _lookup(properties, path)
    return None if value is _MISSING else value


def has_path(properties: dict[str, Any], path: str) -> bool:
    """ドット区切りのパスが存在するか。途中がマッピングでなければ False。"""
    return _lookup(properties, path) is not _MISSING


def _lookup(properties: dict[str, Any], path: str) -> Any:
    current: Any = properties
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current
