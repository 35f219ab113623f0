# src/vertebrae/tasks/triage.py

"""
Triage validation: do a task's sections document it well enough to leave the backlog?

Rules are an ordered list. Each rule names one or more alternative section
types (any of them counts), a minimum count and a severity:
- ERROR   blocks triage
- WARNING ("encouraged") blocks only unless the caller forces it
- NOTE    ("recommended") never blocks
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum

from .task_models import SectionType, Task

logger = logging.getLogger(__name__)


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    NOTE = "note"


@dataclass(frozen=True, slots=True)
class SectionRule:
    section_types: tuple[SectionType, ...]
    min_count: int
    severity: Severity
    description: str | None = None

    @classmethod
    def required(cls, section_type: SectionType, min_count: int) -> SectionRule:
        return cls((section_type,), min_count, Severity.ERROR)

    @classmethod
    def required_any(cls, section_types: tuple[SectionType, ...], min_count: int) -> SectionRule:
        return cls(tuple(section_types), min_count, Severity.ERROR)

    @classmethod
    def encouraged(cls, section_type: SectionType, min_count: int) -> SectionRule:
        return cls((section_type,), min_count, Severity.WARNING)

    @classmethod
    def recommended(cls, section_type: SectionType) -> SectionRule:
        return cls((section_type,), 1, Severity.NOTE)

    def type_label(self) -> str:
        if len(self.section_types) == 1:
            return self.section_types[0].value
        return " OR ".join(t.value for t in self.section_types)


@dataclass(slots=True)
class TriageConfig:
    rules: list[SectionRule] = field(default_factory=list)

    @classmethod
    def default(cls) -> TriageConfig:
        return cls(
            rules=[
                SectionRule.required_any((SectionType.GOAL, SectionType.DESIRED_BEHAVIOR), 1),
                SectionRule.required(SectionType.TESTING_CRITERION, 2),
                SectionRule.required(SectionType.STEP, 1),
                SectionRule.required(SectionType.CONSTRAINT, 2),
                SectionRule.encouraged(SectionType.ANTI_PATTERN, 1),
                SectionRule.encouraged(SectionType.FAILURE_TEST, 1),
                SectionRule.recommended(SectionType.CONTEXT),
                SectionRule.recommended(SectionType.CURRENT_BEHAVIOR),
            ]
        )


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    section_types: tuple[SectionType, ...]
    severity: Severity
    message: str
    current_count: int
    required_count: int


@dataclass(slots=True)
class TriageResult:
    task_id: str
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.has_errors

    @property
    def has_errors(self) -> bool:
        return any(i.severity == Severity.ERROR for i in self.issues)

    @property
    def has_warnings(self) -> bool:
        return any(i.severity == Severity.WARNING for i in self.issues)

    @property
    def has_notes(self) -> bool:
        return any(i.severity == Severity.NOTE for i in self.issues)

    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.ERROR]

    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.WARNING]

    def notes(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.NOTE]

    @property
    def error_count(self) -> int:
        return len(self.errors())

    @property
    def warning_count(self) -> int:
        return len(self.warnings())

    @property
    def note_count(self) -> int:
        return len(self.notes())

    def __str__(self) -> str:
        lines: list[str] = []
        for title, group in (
            ("ERRORS", self.errors()),
            ("WARNINGS", self.warnings()),
            ("NOTES", self.notes()),
        ):
            if not group:
                continue
            if lines:
                lines.append("")
            lines.append(f"{title} ({len(group)}):")
            lines.extend(f"  - {issue.message}" for issue in group)
        return "\n".join(lines)


def _issue_message(rule: SectionRule, count: int) -> str:
    label = rule.type_label()
    if rule.severity == Severity.NOTE:
        return f"Recommended: add a {label} section"
    prefix = "Required" if rule.severity == Severity.ERROR else "Encouraged"
    if len(rule.section_types) > 1:
        return f"{prefix}: at least {rule.min_count} of [{label}], found {count}"
    return f"{prefix}: at least {rule.min_count} {label}(s), found {count}"


class TriageValidator:
    def __init__(self, config: TriageConfig | None = None) -> None:
        self.config = config or TriageConfig.default()

    def validate(self, task: Task) -> TriageResult:
        counts: dict[SectionType, int] = {}
        for section in task.sections:
            counts[section.section_type] = counts.get(section.section_type, 0) + 1

        result = TriageResult(task_id=task.id)
        for rule in self.config.rules:
            count = sum(counts.get(t, 0) for t in rule.section_types)
            if count >= rule.min_count:
                continue
            result.issues.append(
                ValidationIssue(
                    section_types=rule.section_types,
                    severity=rule.severity,
                    message=_issue_message(rule, count),
                    current_count=count,
                    required_count=rule.min_count,
                )
            )

        logger.debug(
            "Triage validated id=%s errors=%s warnings=%s notes=%s",
            task.id,
            result.error_count,
            result.warning_count,
            result.note_count,
        )
        return result
