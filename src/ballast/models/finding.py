"""診断結果（Finding）のデータモデル。"""

from typing import Literal

from pydantic import BaseModel, Field

Severity = Literal["Error", "Warning", "Informational"]

_SEVERITY_BY_PREFIX: dict[str, Severity] = {
    "E": "Error",
    "W": "Warning",
    "I": "Informational",
}


def severity_for_rule_id(rule_id: str) -> Severity:
    """ルールIDの先頭文字から重大度を決定する。不明な接頭辞はErrorとする。"""
    return _SEVERITY_BY_PREFIX.get(rule_id[:1], "Error")


class Finding(BaseModel):
    """ルールが検出した1件の診断。"""

    rule_id: str
    message: str
    line: int = Field(ge=1)
    column: int = Field(ge=1)
    path: list[str] = Field(default_factory=list)
    severity: Severity = "Error"


class LintResult(BaseModel):
    """1テンプレートの診断結果と重大度別の件数。"""

    findings: list[Finding] = Field(default_factory=list)
    error_count: int = 0
    warning_count: int = 0
    informational_count: int = 0

    @property
    def is_valid(self) -> bool:
        return self.error_count == 0

    @classmethod
    def from_findings(cls, findings: list[Finding]) -> "LintResult":
        return cls(
            findings=findings,
            error_count=sum(1 for f in findings if f.severity == "Error"),
            warning_count=sum(1 for f in findings if f.severity == "Warning"),
            informational_count=sum(1 for f in findings if f.severity == "Informational"),
        )
