"""Ballastのカスタム例外クラス。"""

from pathlib import Path


class BallastError(Exception):
    """Ballastの基底例外クラス。"""


class TemplateParseError(BallastError):
    """テンプレートをYAML/JSONとして解釈できない場合の例外。"""

    def __init__(self, message: str, line: int = 1, column: int = 1) -> None:
        super().__init__(message)
        self.line = max(line, 1)
        self.column = max(column, 1)


class TemplateTooLargeError(BallastError):
    """テンプレート本文がサイズ上限を超えた場合の例外。"""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Template body is {size} bytes, exceeding the limit of {limit} bytes")
        self.size = size
        self.limit = limit


class RuleRegistrationError(BallastError):
    """ルール定義が登録要件を満たさない場合の例外。"""

    def __init__(self, rule_id: str, reason: str) -> None:
        super().__init__(f"Cannot register rule '{rule_id}': {reason}")
        self.rule_id = rule_id
        self.reason = reason


class DuplicateRuleError(BallastError):
    """同じIDのルールが既に登録されている場合の例外。"""

    def __init__(self, rule_id: str) -> None:
        super().__init__(f"Rule already registered: {rule_id}")
        self.rule_id = rule_id


class RegistryFrozenError(BallastError):
    """凍結後のレジストリへ登録しようとした場合の例外。"""

    def __init__(self, rule_id: str) -> None:
        super().__init__(f"Rule registry is frozen; cannot register {rule_id}")
        self.rule_id = rule_id


class RuleNotFoundError(BallastError):
    """指定されたルールIDが見つからない場合の例外。"""

    def __init__(self, rule_id: str) -> None:
        super().__init__(f"Rule not found: {rule_id}")
        self.rule_id = rule_id


class SchemaDataError(BallastError):
    """組み込みスキーマデータの読み込みに失敗した場合の例外。"""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Invalid schema data in {path}: {reason}")
        self.path = path
        self.reason = reason
