"""Domain records for learner data.

Records are immutable value objects assembled fresh on every parse. Only
``title`` is required; everything else is absent when the server text did
not carry it.
"""

from dataclasses import dataclass, fields
from typing import Any, Dict, Optional, Tuple, Union


class _RecordMixin:
    """Shared helpers for the record dataclasses."""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, omitting absent fields."""
        data: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None or value == ():
                continue
            data[f.name] = list(value) if isinstance(value, tuple) else value
        return data

    def __post_init__(self) -> None:
        if not self.title or not self.title.strip():
            raise ValueError(f"{type(self).__name__} requires a non-empty title")


@dataclass(frozen=True)
class Assignment(_RecordMixin):
    """An assignment line, e.g. ``- Fractions Worksheet - Due: 2024-03-01``."""
    title: str
    due_date: Optional[str] = None
    status: Optional[str] = None


@dataclass(frozen=True)
class Grade(_RecordMixin):
    """A graded piece of work, e.g. ``- Algebra Quiz - 85/100 (85%)``."""
    title: str
    content_type: Optional[str] = None
    grade_value: Optional[int] = None
    grade_max_value: Optional[int] = None
    percentage: Optional[int] = None


@dataclass(frozen=True)
class Lesson(_RecordMixin):
    title: str
    content_type: Optional[str] = None
    subject: Optional[str] = None
    due_date: Optional[str] = None
    objectives: Tuple[str, ...] = ()
    focus: Optional[str] = None
    keywords: Tuple[str, ...] = ()
    difficulty_level: Optional[str] = None


@dataclass(frozen=True)
class Worksheet(_RecordMixin):
    title: str
    subject: Optional[str] = None
    due_date: Optional[str] = None
    related_lesson: Optional[str] = None


@dataclass(frozen=True)
class StudyMaterial(_RecordMixin):
    title: str
    type: Optional[str] = None
    subject: Optional[str] = None


DomainRecord = Union[Assignment, Grade, Lesson, Worksheet, StudyMaterial]
