"""
Section-scoped parsers for the capability server's plain-text replies.

The server answers searches with prose like::

    **Overdue Assignments:**
    - Fractions Worksheet - Due: 2024-03-01

    **Recent Grades:**
    - Algebra Quiz - 85/100 (85%)

Sections are separated by blank lines and routed by a substring of their
header line. Each bullet line is matched against its section's grammar; a
line that does not fit still produces a title-only record, so parsing never
raises when the upstream format drifts.
"""

import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Pattern, Sequence, Tuple

from tutor_mcp.core.log_sanitizer import preview_for_logging
from tutor_mcp.domain.records.models import (
    Assignment,
    Grade,
    Lesson,
    StudyMaterial,
    Worksheet,
)

logger = logging.getLogger(__name__)

ParsedResults = Dict[str, List[Any]]

RESULT_KEYS = (
    "assignments",
    "overdue",
    "upcoming",
    "completed",
    "grades",
    "subjects",
    "lessons",
    "worksheets",
    "study_materials",
)

BULLET = "- "
NO_RESULTS_MARKER = "No results found"
ERROR_PREFIX = "Error:"

ASSIGNMENT_RE = re.compile(r"^- (?P<title>.+?) - Due: (?P<due>.+)$")
GRADE_RE = re.compile(
    r"^- (?P<title>.+?)(?: \[(?P<type>[^\]]+)\])? - (?P<earned>\d+)/(?P<possible>\d+) \((?P<percent>\d+)%\)$"
)
LESSON_RE = re.compile(
    r"^- (?:(?:📄|📚|📝|❓|📋)\s*)?\*\*(?P<title>.+?)\*\*\s*\[(?P<type>.+?)\]\s*\((?P<subject>.+?)\)"
    r"(?:\s*-\s*Due:\s*(?P<due>.+))?$"
)
WORKSHEET_RE = re.compile(
    r"^- \*\*(?P<title>.+?)\*\*(?:\s*\((?P<subject>[^)]+)\))?"
    r"(?:\s*-\s*Due:\s*(?P<due>.+?))?(?:\s*-\s*Related:\s*(?P<related>.+))?$"
)
STUDY_MATERIAL_RE = re.compile(
    r"^- \[(?P<type>[^\]]+)\]\s*\*\*(?P<title>.+?)\*\*(?:\s*\((?P<subject>[^)]+)\))?$"
)

# Unanchored variants for scanning whole replies regardless of sections
_OVERDUE_SCAN_RE = re.compile(r"- (?P<title>.+?) - Due: (?P<due>.+)$")
_GRADE_SCAN_RE = re.compile(r"- (?P<title>.+?) - (?P<earned>\d+)/(?P<possible>\d+) \((?P<percent>\d+)%\)$")

# Indented detail lines that follow a lesson bullet
_LESSON_DETAIL_RE = re.compile(r"^(?P<label>Objectives|Focus|Keywords|Level):\s*(?P<value>.*)$", re.IGNORECASE)
_LIST_SPLIT_RE = re.compile(r"\s*[;,]\s*")


def _strip_bullet(line: str) -> str:
    """Trimmed line without its leading bullet."""
    text = line.strip()
    if text.startswith(BULLET):
        text = text[len(BULLET):]
    elif text == "-":
        text = ""
    return text.strip()


def _opt(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _split_list(value: str) -> Tuple[str, ...]:
    return tuple(item for item in _LIST_SPLIT_RE.split(value.strip()) if item)


@dataclass(frozen=True)
class LineGrammar:
    """One bullet-line grammar: an anchored pattern plus how to build a record.

    ``fallback`` builds the title-only record used when a line does not match.
    """
    name: str
    pattern: Optional[Pattern[str]]
    build: Callable[[Any], Any]
    fallback: Callable[[str], Any]

    def parse_line(self, line: str) -> Optional[Any]:
        text = line.strip()
        title = _strip_bullet(text)
        if not title:
            return None
        if self.pattern is None:
            return self.fallback(title)
        match = self.pattern.match(text)
        if match:
            try:
                return self.build(match)
            except ValueError:
                # matched with a blank title, e.g. "- ** ** [quiz] (Math)"
                pass
        logger.debug(f"{self.name} grammar did not match, keeping title only: {preview_for_logging(text)}")
        return self.fallback(title)


def _assignment_grammar(status: str) -> LineGrammar:
    return LineGrammar(
        name=f"{status}_assignment",
        pattern=ASSIGNMENT_RE,
        build=lambda m: Assignment(title=m.group("title").strip(), due_date=_opt(m.group("due")), status=status),
        fallback=lambda title: Assignment(title=title),
    )


def _build_grade(m) -> Grade:
    return Grade(
        title=m.group("title").strip(),
        content_type=_opt(m.groupdict().get("type")),
        grade_value=int(m.group("earned")),
        grade_max_value=int(m.group("possible")),
        percentage=int(m.group("percent")),
    )


def _build_lesson(m) -> Lesson:
    return Lesson(
        title=m.group("title").strip(),
        content_type=_opt(m.group("type")),
        subject=_opt(m.group("subject")),
        due_date=_opt(m.group("due")),
    )


GRAMMARS: Dict[str, LineGrammar] = {
    "overdue": _assignment_grammar("overdue"),
    "upcoming": _assignment_grammar("upcoming"),
    "completed": _assignment_grammar("completed"),
    "grades": LineGrammar(
        name="grade",
        pattern=GRADE_RE,
        build=_build_grade,
        fallback=lambda title: Grade(title=title),
    ),
    "subjects": LineGrammar(
        name="subject",
        pattern=None,
        build=lambda m: None,
        fallback=lambda title: title,
    ),
    "lessons": LineGrammar(
        name="lesson",
        pattern=LESSON_RE,
        build=_build_lesson,
        fallback=lambda title: Lesson(title=title),
    ),
    "worksheets": LineGrammar(
        name="worksheet",
        pattern=WORKSHEET_RE,
        build=lambda m: Worksheet(
            title=m.group("title").strip(),
            subject=_opt(m.group("subject")),
            due_date=_opt(m.group("due")),
            related_lesson=_opt(m.group("related")),
        ),
        fallback=lambda title: Worksheet(title=title),
    ),
    "study_materials": LineGrammar(
        name="study_material",
        pattern=STUDY_MATERIAL_RE,
        build=lambda m: StudyMaterial(
            title=m.group("title").strip(),
            type=_opt(m.group("type")),
            subject=_opt(m.group("subject")),
        ),
        fallback=lambda title: StudyMaterial(title=title),
    ),
}

# Header substring -> result key. Checked in order; the first hit wins.
SECTION_ROUTES: Sequence[Tuple[str, str]] = (
    ("Overdue Assignments", "overdue"),
    ("Upcoming Assignments", "upcoming"),
    ("Current Assignments", "upcoming"),
    ("Completed Assignments", "completed"),
    ("Recent Grades", "grades"),
    ("Grades", "grades"),
    ("Enrolled Subjects", "subjects"),
    ("Current Lessons", "lessons"),
    ("Lessons", "lessons"),
    ("Worksheets", "worksheets"),
    ("Study Materials", "study_materials"),
)

# Category hint -> grammar used when the reply has no recognised headers
CATEGORY_HINTS: Dict[str, str] = {
    "overdue": "overdue",
    "upcoming": "upcoming",
    "incomplete_assignments": "upcoming",
    "completed": "completed",
    "grades": "grades",
    "subjects": "subjects",
    "lessons": "lessons",
    "worksheets": "worksheets",
    "study_materials": "study_materials",
}

# Category -> keys concatenated (in order, no dedup) into "assignments"
AGGREGATED_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    "all": ("upcoming", "overdue", "grades"),
    "assignments": ("upcoming", "overdue", "grades"),
    "incomplete_assignments": ("upcoming", "overdue"),
}


def empty_results() -> ParsedResults:
    return {key: [] for key in RESULT_KEYS}


def route_header(header: str) -> Optional[str]:
    """Return the result key for a section header, or None when unrecognised."""
    for needle, key in SECTION_ROUTES:
        if needle in header:
            return key
    return None


def is_empty_reply(text: Optional[str]) -> bool:
    """True for replies that carry no data (blank, "No results found", "Error: ...")."""
    if not text or not text.strip():
        return True
    return NO_RESULTS_MARKER in text or text.strip().startswith(ERROR_PREFIX)


def _parse_lesson_lines(lines: Sequence[str]) -> List[Lesson]:
    """Parse lesson bullets, folding indented detail lines into the preceding lesson."""
    grammar = GRAMMARS["lessons"]
    lessons: List[Lesson] = []
    details: List[Dict[str, Any]] = []

    for raw in lines:
        text = raw.strip()
        if text.startswith(BULLET):
            lesson = grammar.parse_line(text)
            if lesson is not None:
                lessons.append(lesson)
                details.append({})
            continue
        detail = _LESSON_DETAIL_RE.match(text)
        if detail and lessons:
            label = detail.group("label").lower()
            value = detail.group("value").strip()
            if not value:
                continue
            if label == "objectives":
                details[-1]["objectives"] = _split_list(value)
            elif label == "keywords":
                details[-1]["keywords"] = _split_list(value)
            elif label == "focus":
                details[-1]["focus"] = value
            else:
                details[-1]["difficulty_level"] = value

    return [
        replace(lesson, **extra) if extra else lesson
        for lesson, extra in zip(lessons, details)
    ]


def parse_section_lines(key: str, lines: Sequence[str]) -> List[Any]:
    """Parse the body lines of one section with the grammar registered under ``key``."""
    if key == "lessons":
        return _parse_lesson_lines(lines)
    grammar = GRAMMARS[key]
    records = []
    for raw in lines:
        if not raw.strip().startswith(BULLET):
            continue
        record = grammar.parse_line(raw)
        if record is not None:
            records.append(record)
    return records


class ResponseTextParser:
    """Turns a formatted text reply into categorised typed records."""

    def parse(self, text: Optional[str], category: str = "all") -> ParsedResults:
        results = empty_results()
        if is_empty_reply(text):
            return results

        recognised = False
        for section in re.split(r"\n\s*\n", text.strip()):
            lines = section.strip().split("\n")
            key = route_header(lines[0])
            if key is None:
                continue
            recognised = True
            results[key].extend(parse_section_lines(key, lines[1:]))

        hint = CATEGORY_HINTS.get(category)
        if not recognised and hint is not None:
            logger.debug(f"No section headers recognised, parsing bullets as {hint}")
            results[hint] = parse_section_lines(hint, text.split("\n"))

        for key in AGGREGATED_CATEGORIES.get(category, ()):
            results["assignments"].extend(results[key])

        return results


_default_parser = ResponseTextParser()


def parse_text_search_response(text: Optional[str], category: str = "all") -> ParsedResults:
    """Parse a search reply with the shared parser instance."""
    return _default_parser.parse(text, category)


def parse_lessons_from_text(text: Optional[str]) -> List[Lesson]:
    """Scan a whole reply for lesson bullets; lines that are not lessons are skipped."""
    if not text:
        return []
    lines = [
        line for line in text.split("\n")
        if not line.strip().startswith(BULLET) or LESSON_RE.match(line.strip())
    ]
    return _parse_lesson_lines(lines)


def parse_overdue_from_text(text: Optional[str]) -> List[Assignment]:
    """Scan a whole reply for bullets flagged OVERDUE that carry a due date."""
    assignments: List[Assignment] = []
    if not text:
        return assignments
    for line in text.split("\n"):
        stripped = line.strip()
        if not stripped.startswith(BULLET) or "OVERDUE" not in stripped:
            continue
        match = _OVERDUE_SCAN_RE.search(stripped)
        if match:
            assignments.append(
                Assignment(title=match.group("title").strip(), due_date=match.group("due").strip(), status="overdue")
            )
    return assignments


def parse_grades_from_text(text: Optional[str]) -> List[Grade]:
    """Scan a whole reply for bullets carrying an earned/possible (percent%) grade."""
    grades: List[Grade] = []
    if not text:
        return grades
    for line in text.split("\n"):
        stripped = line.strip()
        if not stripped.startswith(BULLET) or "%" not in stripped:
            continue
        match = _GRADE_SCAN_RE.search(stripped)
        if match:
            grades.append(
                Grade(
                    title=match.group("title").strip(),
                    grade_value=int(match.group("earned")),
                    grade_max_value=int(match.group("possible")),
                    percentage=int(match.group("percent")),
                )
            )
    return grades
