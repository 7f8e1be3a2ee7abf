"""ルールレジストリと、組み込みルールカタログの読み込み。"""

import importlib
import re
from functools import lru_cache
from typing import TypeVar

from loguru import logger

from ballast.models.errors import (
    DuplicateRuleError,
    RegistryFrozenError,
    RuleNotFoundError,
    RuleRegistrationError,
)
from ballast.rules.base import Rule

RULE_ID_PATTERN = re.compile(r"^[EWI]\d{4}$")

# 組み込みルールを定義するモジュール。インポート時に @register で収集される
RULE_MODULES: tuple[str, ...] = (
    "ballast.rules.structural",
    "ballast.rules.references",
    "ballast.rules.functions",
    "ballast.rules.sections",
    "ballast.rules.schema_constraints",
    "ballast.rules.cross_resource",
    "ballast.rules.iam_policies",
    "ballast.rules.aws.lambda_functions",
    "ballast.rules.aws.containers",
    "ballast.rules.aws.databases",
    "ballast.rules.aws.instance_types",
    "ballast.rules.aws.messaging",
    "ballast.rules.aws.networking",
    "ballast.rules.aws.workflows",
)

_RULE_CLASSES: list[type[Rule]] = []

RuleT = TypeVar("RuleT", bound=type[Rule])


def register(cls: RuleT) -> RuleT:
    """組み込みルールカタログにルールクラスを追加するデコレータ。"""
    _RULE_CLASSES.append(cls)
    return cls


class RuleRegistry:
    """ルールIDからルールへの対応表。

    起動時に登録し、freeze した後は読み取り専用として共有する。
    列挙は常にID順。
    """

    def __init__(self) -> None:
        self._rules: dict[str, Rule] = {}
        self._frozen = False

    def register(self, rule: Rule) -> Rule:
        """ルールを登録する。

        Raises:
            RegistryFrozenError: freeze 済みの場合。
            RuleRegistrationError: IDやメタデータが不正な場合。
            DuplicateRuleError: 同じIDが登録済みの場合。
        """
        if self._frozen:
            raise RegistryFrozenError(rule.id)
        if not RULE_ID_PATTERN.match(rule.id):
            raise RuleRegistrationError(rule.id, "rule id must match [EWI] followed by four digits")
        if not rule.short_desc or not rule.description:
            raise RuleRegistrationError(rule.id, "short description and description are required")
        if rule.id in self._rules:
            raise DuplicateRuleError(rule.id)
        self._rules[rule.id] = rule
        return rule

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, rule_id: str) -> Rule:
        """IDでルールを取得する。

        Raises:
            RuleNotFoundError: 登録されていない場合。
        """
        rule = self._rules.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    def all(self) -> list[Rule]:
        return [self._rules[rule_id] for rule_id in sorted(self._rules)]

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._rules

    def __len__(self) -> int:
        return len(self._rules)


def load_builtin_rules() -> list[type[Rule]]:
    """組み込みルールモジュールをインポートし、収集されたルールクラスを返す。"""
    for module in RULE_MODULES:
        importlib.import_module(module)
    return list(_RULE_CLASSES)


@lru_cache(maxsize=1)
def default_registry() -> RuleRegistry:
    """組み込みルールを全て登録して凍結したレジストリを返す。"""
    registry = RuleRegistry()
    for rule_class in load_builtin_rules():
        registry.register(rule_class())
    registry.freeze()
    logger.info("Rule registry frozen with {} rules", len(registry))
    return registry
