"""テンプレート診断の実行を担うサービス。"""

from collections.abc import Iterable

from loguru import logger

from ballast.models.errors import TemplateParseError, TemplateTooLargeError
from ballast.models.finding import Finding, LintResult
from ballast.models.rule import RuleInfo
from ballast.models.template import Template
from ballast.rules.base import Rule
from ballast.rules.registry import RuleRegistry
from ballast.schema.service import SchemaService
from ballast.template.builder import parse_template

PARSE_ERROR_RULE_ID = "E0000"


class LintService:
    """テンプレートの解析・ルール適用・フィルタリングを行うサービス。

    レジストリとスキーマは読み取り専用として共有され、
    1回の lint 呼び出しは他の呼び出しと状態を共有しない。
    """

    def __init__(
        self,
        registry: RuleRegistry,
        schema: SchemaService,
        ignore_checks: Iterable[str] = (),
        max_template_size: int = 1_000_000,
    ) -> None:
        self.registry = registry
        self.schema = schema
        self.ignore_checks = tuple(ignore_checks)
        self.max_template_size = max_template_size

    def lint(
        self,
        template_body: str | bytes,
        ignore_checks: list[str] | None = None,
        tags: list[str] | None = None,
    ) -> LintResult:
        """テンプレート本文を診断する。

        Args:
            template_body: YAMLまたはJSONのテンプレート本文。
            ignore_checks: 実行しないルールIDまたはIDの接頭辞。設定値とマージされる。
            tags: 指定時はいずれかのタグを持つルールのみ実行する。

        Returns:
            ルールID順に並んだ診断結果。

        Raises:
            TemplateTooLargeError: 本文がサイズ上限を超えた場合。
        """
        raw = template_body.encode("utf-8") if isinstance(template_body, str) else template_body
        if len(raw) > self.max_template_size:
            raise TemplateTooLargeError(len(raw), self.max_template_size)

        try:
            template = parse_template(raw)
        except TemplateParseError as e:
            logger.debug("Template rejected by parser at {}:{}", e.line, e.column)
            return LintResult.from_findings([parse_error_finding(e)])

        rules = self.select_rules(ignore_checks, tags)
        findings = self.run_rules(template, rules)
        logger.debug("Ran {} rules, {} findings", len(rules), len(findings))
        return LintResult.from_findings(findings)

    def select_rules(self, ignore_checks: list[str] | None = None, tags: list[str] | None = None) -> list[Rule]:
        """無視リストとタグ指定を適用した実行対象ルールをID順に返す。"""
        ignored = (*self.ignore_checks, *(ignore_checks or []))
        wanted = set(tags or [])
        return [
            rule
            for rule in self.registry.all()
            if not is_ignored(rule.id, ignored) and (not wanted or wanted.intersection(rule.tags))
        ]

    def run_rules(self, template: Template, rules: list[Rule]) -> list[Finding]:
        """ルールを順に適用する。例外を送出したルールは合成Findingに置き換える。"""
        findings: list[Finding] = []
        for rule in rules:
            try:
                findings.extend(rule.match(template, self.schema))
            except Exception as e:
                logger.exception("Rule {} failed", rule.id)
                findings.append(
                    Finding(
                        rule_id=rule.id,
                        message=f"Unknown exception while processing rule {rule.id}: {e}",
                        line=1,
                        column=1,
                        path=[],
                        severity=rule.severity,
                    )
                )
        return findings

    def list_rules(self, tag: str | None = None) -> list[RuleInfo]:
        """ルールカタログをID順に返す。tag 指定時はそのタグを持つルールのみ。"""
        return [rule.info() for rule in self.registry.all() if tag is None or tag in rule.tags]

    def describe_rule(self, rule_id: str) -> RuleInfo:
        """ルールのメタデータを返す。

        Raises:
            RuleNotFoundError: 登録されていないIDの場合。
        """
        return self.registry.get(rule_id).info()


def is_ignored(rule_id: str, ignore_checks: Iterable[str]) -> bool:
    return any(entry and rule_id.startswith(entry) for entry in ignore_checks)


def parse_error_finding(error: TemplateParseError) -> Finding:
    return Finding(
        rule_id=PARSE_ERROR_RULE_ID,
        message=str(error),
        line=error.line,
        column=error.column,
        path=[],
        severity="Error",
    )
