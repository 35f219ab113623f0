# src/vertebrae/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any

from .errors import ValidationError

# Sentinel for "field not part of this update" where None is a meaningful value.
UNSET: Any = object()


class Level(StrEnum):
    """Granularity hint (epic > ticket > task). Hierarchy itself lives in child_of edges."""

    EPIC = "epic"
    TICKET = "ticket"
    TASK = "task"

    @classmethod
    def from_db(cls, raw: str | None) -> Level:
        try:
            return cls(raw or "task")
        except ValueError:
            return cls.TASK

    @classmethod
    def parse(cls, raw: str) -> Level:
        try:
            return cls(raw.strip().lower())
        except ValueError:
            raise ValidationError(
                f"Invalid level '{raw}'. Valid levels: {', '.join(m.value for m in cls)}"
            ) from None


class TaskStatus(StrEnum):
    """
    Workflow status.

    Notes:
    - done and rejected are terminal (see lifecycle.py).
    - unknown values read from the database fall back to todo.
    """

    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    PENDING_REVIEW = "pending_review"
    BLOCKED = "blocked"
    DONE = "done"
    REJECTED = "rejected"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.TODO
        try:
            return cls(raw)
        except ValueError:
            return cls.TODO

    @classmethod
    def parse(cls, raw: str) -> TaskStatus:
        key = raw.strip().lower().replace("-", "_")
        try:
            return cls(key)
        except ValueError:
            raise ValidationError(
                f"Invalid status '{raw}'. Valid statuses: {', '.join(m.value for m in cls)}"
            ) from None


# Statuses that count as "work started" below a readiness candidate.
WORK_STARTED: frozenset[TaskStatus] = frozenset(
    {TaskStatus.IN_PROGRESS, TaskStatus.PENDING_REVIEW, TaskStatus.DONE}
)


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def from_db(cls, raw: str | None) -> Priority | None:
        if not raw:
            return None
        try:
            return cls(raw)
        except ValueError:
            return None

    @classmethod
    def parse(cls, raw: str) -> Priority:
        try:
            return cls(raw.strip().lower())
        except ValueError:
            raise ValidationError(
                f"Invalid priority '{raw}'. Valid priorities: {', '.join(m.value for m in cls)}"
            ) from None


class SectionType(StrEnum):
    # positive space
    GOAL = "goal"
    CONTEXT = "context"
    CURRENT_BEHAVIOR = "current_behavior"
    DESIRED_BEHAVIOR = "desired_behavior"
    STEP = "step"
    TESTING_CRITERION = "testing_criterion"
    # negative space
    ANTI_PATTERN = "anti_pattern"
    FAILURE_TEST = "failure_test"
    CONSTRAINT = "constraint"

    @property
    def is_single_instance(self) -> bool:
        return self in SINGLE_INSTANCE_TYPES

    @classmethod
    def parse(cls, raw: str) -> SectionType:
        key = raw.strip().lower().replace("-", "_")
        try:
            return cls(key)
        except ValueError:
            raise ValidationError(
                f"Invalid section type '{raw}'. Valid types: {', '.join(m.value for m in cls)}"
            ) from None


SINGLE_INSTANCE_TYPES: frozenset[SectionType] = frozenset(
    {
        SectionType.GOAL,
        SectionType.CONTEXT,
        SectionType.CURRENT_BEHAVIOR,
        SectionType.DESIRED_BEHAVIOR,
    }
)

NEGATIVE_SPACE_TYPES: frozenset[SectionType] = frozenset(
    {SectionType.ANTI_PATTERN, SectionType.FAILURE_TEST, SectionType.CONSTRAINT}
)


def normalize_id(raw: str) -> str:
    """Task ids are case-insensitive; the canonical form is lowercase."""
    task_id = (raw or "").strip().lower()
    if not task_id:
        raise ValidationError("Task id cannot be empty")
    return task_id


@dataclass(slots=True)
class Section:
    section_type: SectionType
    content: str
    order: int | None = None
    done: bool | None = None
    done_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.section_type.value, "content": self.content}
        if self.order is not None:
            out["order"] = self.order
        if self.done is not None:
            out["done"] = self.done
        if self.done_at is not None:
            out["done_at"] = self.done_at
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Section:
        order = data.get("order")
        done = data.get("done")
        done_at = data.get("done_at")
        return cls(
            section_type=SectionType.parse(str(data.get("type", ""))),
            content=str(data.get("content", "")),
            order=int(order) if order is not None else None,
            done=bool(done) if done is not None else None,
            done_at=float(done_at) if done_at is not None else None,
        )


def next_ordinal(sections: list[Section], section_type: SectionType) -> int:
    """(max existing ordinal of this type) + 1, or 0 if there is none."""
    orders = [
        s.order for s in sections if s.section_type == section_type and s.order is not None
    ]
    return max(orders) + 1 if orders else 0


def with_section(sections: list[Section], section_type: SectionType, content: str) -> list[Section]:
    """
    Return a new sections list with one section of `section_type` added.

    Single-instance types replace any existing section of that type (keeping the
    position of the first one); multi-instance types are appended with the next ordinal.
    """
    if section_type.is_single_instance:
        new = Section(section_type=section_type, content=content)
        out: list[Section] = []
        placed = False
        for s in sections:
            if s.section_type == section_type:
                if not placed:
                    out.append(new)
                    placed = True
                continue
            out.append(s)
        if not placed:
            out.append(new)
        return out

    order = next_ordinal(sections, section_type)
    return [*sections, Section(section_type=section_type, content=content, order=order)]


@dataclass(slots=True)
class CodeRef:
    path: str
    line_start: int | None = None
    line_end: int | None = None
    name: str | None = None
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"path": self.path}
        for key in ("line_start", "line_end", "name", "description"):
            val = getattr(self, key)
            if val is not None:
                out[key] = val
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CodeRef:
        ls = data.get("line_start")
        le = data.get("line_end")
        return cls(
            path=str(data.get("path", "")),
            line_start=int(ls) if ls is not None else None,
            line_end=int(le) if le is not None else None,
            name=data.get("name"),
            description=data.get("description"),
        )

    def __str__(self) -> str:
        loc = self.path
        if self.line_start is not None:
            loc += f":{self.line_start}"
            if self.line_end is not None:
                loc += f"-{self.line_end}"
        if self.name:
            loc += f" ({self.name})"
        return loc


def _list_field(data: dict[str, Any], key: str) -> list[Any]:
    raw = data.get(key)
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError(f"Field '{key}' must be a list")
    return raw


def _timestamp_field(data: dict[str, Any], key: str) -> float | None:
    raw = data.get(key)
    if raw is None:
        return None
    # bool is an int subclass; a true/false timestamp is a malformed record
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ValidationError(f"Field '{key}' must be a number of seconds, got {raw!r}")
    return float(raw)


@dataclass(slots=True)
class Task:
    id: str
    title: str
    level: Level = Level.TASK
    status: TaskStatus = TaskStatus.TODO
    priority: Priority | None = None
    tags: list[str] = field(default_factory=list)
    sections: list[Section] = field(default_factory=list)
    code_refs: list[CodeRef] = field(default_factory=list)
    needs_human_review: bool = False

    created_at: float | None = None
    updated_at: float | None = None
    started_at: float | None = None
    completed_at: float | None = None

    def sections_of(self, section_type: SectionType) -> list[Section]:
        return [s for s in self.sections if s.section_type == section_type]

    def steps(self) -> list[Section]:
        """Step sections sorted by ordinal (unordered steps last)."""
        return sorted(
            self.sections_of(SectionType.STEP),
            key=lambda s: s.order if s.order is not None else 2**32,
        )

    def summary(self) -> TaskSummary:
        return TaskSummary(
            id=self.id,
            title=self.title,
            level=self.level,
            status=self.status,
            priority=self.priority,
            tags=list(self.tags),
            needs_human_review=self.needs_human_review,
        )

    def to_record(self) -> dict[str, Any]:
        """Plain JSON-able dict (used by export)."""
        return {
            "id": self.id,
            "title": self.title,
            "level": self.level.value,
            "status": self.status.value,
            "priority": self.priority.value if self.priority else None,
            "tags": list(self.tags),
            "sections": [s.to_dict() for s in self.sections],
            "refs": [r.to_dict() for r in self.code_refs],
            "needs_human_review": self.needs_human_review,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> Task:
        title = str(data.get("title") or "").strip()
        if not title:
            raise ValidationError("Task title cannot be empty")
        priority = data.get("priority")
        tags = _list_field(data, "tags")
        sections = _list_field(data, "sections")
        refs = _list_field(data, "refs")
        for key, items in (("sections", sections), ("refs", refs)):
            if any(not isinstance(item, dict) for item in items):
                raise ValidationError(f"Field '{key}' must be a list of objects")
        return cls(
            id=normalize_id(str(data.get("id") or "")),
            title=title,
            level=Level.parse(str(data.get("level") or "task")),
            status=TaskStatus.parse(str(data.get("status") or "todo")),
            priority=Priority.parse(priority) if priority else None,
            tags=[str(t) for t in tags],
            sections=[Section.from_dict(s) for s in sections],
            code_refs=[CodeRef.from_dict(r) for r in refs],
            needs_human_review=bool(data.get("needs_human_review", False)),
            created_at=_timestamp_field(data, "created_at"),
            updated_at=_timestamp_field(data, "updated_at"),
            started_at=_timestamp_field(data, "started_at"),
            completed_at=_timestamp_field(data, "completed_at"),
        )

    def copy(self) -> Task:
        return replace(
            self,
            tags=list(self.tags),
            sections=[replace(s) for s in self.sections],
            code_refs=[replace(r) for r in self.code_refs],
        )


@dataclass(frozen=True, slots=True)
class TaskSummary:
    id: str
    title: str
    level: Level
    status: TaskStatus
    priority: Priority | None = None
    tags: list[str] = field(default_factory=list)
    needs_human_review: bool = False


@dataclass(slots=True)
class TaskUpdate:
    """
    Sparse set of field changes for TaskStore.update().

    Fields left at UNSET / None / empty are not touched. `priority=None` clears
    the priority; `sections=[]` clears the sections.
    """

    title: str | None = None
    priority: Any = UNSET
    add_tags: list[str] = field(default_factory=list)
    remove_tags: list[str] = field(default_factory=list)
    sections: Any = UNSET
    code_refs: Any = UNSET
    needs_human_review: bool | None = None
    status: TaskStatus | None = None
    started_at: float | None = None
    started_at_if_null: bool = False

    def has_updates(self) -> bool:
        return (
            self.title is not None
            or self.priority is not UNSET
            or bool(self.add_tags)
            or bool(self.remove_tags)
            or self.sections is not UNSET
            or self.code_refs is not UNSET
            or self.needs_human_review is not None
            or self.status is not None
            or self.started_at is not None
            or self.started_at_if_null
        )


@dataclass(slots=True)
class TaskFilter:
    levels: list[Level] = field(default_factory=list)
    statuses: list[TaskStatus] = field(default_factory=list)
    priorities: list[Priority] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    root_only: bool = False
    children_of: str | None = None
    include_done: bool = False
    search: str | None = None
