# tests/test_task_models.py

from __future__ import annotations

import pytest

from vertebrae.tasks.errors import ValidationError
from vertebrae.tasks.task_models import (
    CodeRef,
    Section,
    SectionType,
    Task,
    TaskStatus,
    normalize_id,
    with_section,
)


def test_steps_get_ordinals_0_1_2_regardless_of_other_sections() -> None:
    sections: list[Section] = []
    sections = with_section(sections, SectionType.CONSTRAINT, "c1")
    sections = with_section(sections, SectionType.STEP, "first")
    sections = with_section(sections, SectionType.GOAL, "goal")
    sections = with_section(sections, SectionType.STEP, "second")
    sections = with_section(sections, SectionType.CONSTRAINT, "c2")
    sections = with_section(sections, SectionType.STEP, "third")

    steps = [s for s in sections if s.section_type == SectionType.STEP]
    assert [(s.content, s.order) for s in steps] == [("first", 0), ("second", 1), ("third", 2)]

    constraints = [s for s in sections if s.section_type == SectionType.CONSTRAINT]
    assert [s.order for s in constraints] == [0, 1]


def test_single_instance_section_is_replaced_without_touching_others() -> None:
    sections: list[Section] = []
    sections = with_section(sections, SectionType.STEP, "s0")
    sections = with_section(sections, SectionType.GOAL, "old goal")
    sections = with_section(sections, SectionType.STEP, "s1")
    sections = with_section(sections, SectionType.GOAL, "new goal")

    goals = [s for s in sections if s.section_type == SectionType.GOAL]
    assert len(goals) == 1
    assert goals[0].content == "new goal"
    assert goals[0].order is None

    steps = [(s.content, s.order) for s in sections if s.section_type == SectionType.STEP]
    assert steps == [("s0", 0), ("s1", 1)]


def test_next_ordinal_continues_after_gaps() -> None:
    sections = [
        Section(SectionType.STEP, "a", order=0),
        Section(SectionType.STEP, "b", order=5),
    ]
    out = with_section(sections, SectionType.STEP, "c")
    assert out[-1].order == 6


def test_normalize_id_is_case_insensitive_and_rejects_blank() -> None:
    assert normalize_id("  AbC123 ") == "abc123"
    with pytest.raises(ValidationError):
        normalize_id("   ")


def test_status_parse_accepts_dashes_and_rejects_unknown() -> None:
    assert TaskStatus.parse("In-Progress") == TaskStatus.IN_PROGRESS
    with pytest.raises(ValidationError, match="Invalid status"):
        TaskStatus.parse("finished")


def test_section_type_knows_single_instance_types() -> None:
    assert SectionType.GOAL.is_single_instance
    assert SectionType.DESIRED_BEHAVIOR.is_single_instance
    assert not SectionType.STEP.is_single_instance
    assert not SectionType.CONSTRAINT.is_single_instance


def test_task_from_record_requires_title() -> None:
    with pytest.raises(ValidationError, match="title"):
        Task.from_record({"id": "abc", "title": "  "})


def test_steps_are_sorted_by_ordinal() -> None:
    task = Task(
        id="t1",
        title="t",
        sections=[
            Section(SectionType.STEP, "late", order=2),
            Section(SectionType.GOAL, "g"),
            Section(SectionType.STEP, "early", order=0),
        ],
    )
    assert [s.content for s in task.steps()] == ["early", "late"]


def test_code_ref_renders_location() -> None:
    ref = CodeRef(path="src/app.py", line_start=10, line_end=20, name="run")
    assert str(ref) == "src/app.py:10-20 (run)"
    assert str(CodeRef(path="README.md")) == "README.md"


def test_task_from_record_checks_timestamps_and_collections() -> None:
    task = Task.from_record({"id": "abc", "title": "t", "created_at": 10, "started_at": None})
    assert task.created_at == 10.0
    assert task.started_at is None

    with pytest.raises(ValidationError, match="completed_at"):
        Task.from_record({"id": "abc", "title": "t", "completed_at": True})
    with pytest.raises(ValidationError, match="tags"):
        Task.from_record({"id": "abc", "title": "t", "tags": "abc"})
    with pytest.raises(ValidationError, match="list of objects"):
        Task.from_record({"id": "abc", "title": "t", "refs": ["src/a.py"]})
