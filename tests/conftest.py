"""テスト共通フィクスチャ。"""

import textwrap
from collections.abc import Callable

import pytest

from ballast.config import ServerConfig
from ballast.models.finding import Finding
from ballast.models.template import Template
from ballast.rules.registry import RuleRegistry, default_registry
from ballast.schema.service import SchemaService
from ballast.services.linter import LintService
from ballast.template.builder import parse_template

RuleRunner = Callable[[str, str], list[Finding]]


def _load(body: str) -> Template:
    return parse_template(textwrap.dedent(body))


@pytest.fixture(scope="session")
def schema() -> SchemaService:
    """組み込みデータを読むSchemaService。"""
    return SchemaService()


@pytest.fixture(scope="session")
def registry() -> RuleRegistry:
    """組み込みルールを登録済みの凍結レジストリ。"""
    return default_registry()


@pytest.fixture
def lint_service(registry: RuleRegistry, schema: SchemaService) -> LintService:
    """テスト用LintService。"""
    return LintService(registry=registry, schema=schema)


@pytest.fixture
def server_config() -> ServerConfig:
    """テスト用ServerConfig。"""
    return ServerConfig()


@pytest.fixture
def load_template() -> Callable[[str], Template]:
    """インデント付きのYAML文字列からテンプレートを構築する関数。"""
    return _load


@pytest.fixture
def run_rule(registry: RuleRegistry, schema: SchemaService) -> RuleRunner:
    """指定IDのルールだけをテンプレートに適用する関数。"""

    def _run(rule_id: str, body: str) -> list[Finding]:
        return registry.get(rule_id).match(_load(body), schema)

    return _run
