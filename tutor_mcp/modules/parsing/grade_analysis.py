"""Grade summaries used to enrich a learner's context.

Grades may be parsed ``Grade`` records or raw dictionaries from a JSON reply;
both are read through ``_as_mapping``.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional

REVIEW_THRESHOLD = 70.0
DEFAULT_SUBJECT = "General"


def _as_mapping(grade: Any) -> Mapping[str, Any]:
    if isinstance(grade, Mapping):
        return grade
    to_dict = getattr(grade, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return {}


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _earned_and_possible(grade: Mapping[str, Any]):
    earned = _to_float(grade.get("grade_value"))
    possible = _to_float(grade.get("grade_max_value"))
    # zero counts as "not graded", matching how the server reports ungraded work
    if not earned or not possible:
        return None
    return earned, possible


def _subject_name(grade: Mapping[str, Any]) -> str:
    """Resolve the subject from a nested lesson payload, a flat field, or the default."""
    lesson = grade.get("lesson") or {}
    child_subject = ((lesson.get("unit") or {}).get("child_subject") or {}) if isinstance(lesson, Mapping) else {}
    return (
        child_subject.get("custom_subject_name_override")
        or (child_subject.get("subject") or {}).get("name")
        or grade.get("subject")
        or DEFAULT_SUBJECT
    )


def _rounded_average(earned: float, possible: float) -> Optional[float]:
    if possible <= 0:
        return None
    return round(earned / possible * 100, 1)


def calculate_percentage(grade: Any) -> float:
    """Percentage earned, or 0 when the grade is missing either value."""
    pair = _earned_and_possible(_as_mapping(grade))
    if pair is None:
        return 0.0
    earned, possible = pair
    return earned / possible * 100


def calculate_grade_analysis(grades: Iterable[Any]) -> Dict[str, Any]:
    """Per-subject and overall averages, rounded to one decimal."""
    by_subject: Dict[str, Dict[str, Any]] = {}
    total_earned = 0.0
    total_possible = 0.0
    graded_count = 0

    for grade in grades:
        data = _as_mapping(grade)
        bucket = by_subject.setdefault(
            _subject_name(data), {"earned": 0.0, "possible": 0.0, "count": 0, "materials": []}
        )
        bucket["materials"].append(grade)

        pair = _earned_and_possible(data)
        if pair is None:
            continue
        earned, possible = pair
        bucket["earned"] += earned
        bucket["possible"] += possible
        bucket["count"] += 1
        total_earned += earned
        total_possible += possible
        graded_count += 1

    for bucket in by_subject.values():
        bucket["average"] = _rounded_average(bucket["earned"], bucket["possible"])

    return {
        "by_subject": by_subject,
        "overall": {
            "average": _rounded_average(total_earned, total_possible),
            "total_earned": total_earned,
            "total_possible": total_possible,
            "total_graded_materials": graded_count,
        },
    }


def review_reason(percentage: float) -> str:
    if percentage < 50:
        return "Failed - needs significant review"
    if percentage < 60:
        return "Below average - review recommended"
    return "Room for improvement"


def find_materials_for_review(grades: Iterable[Any], threshold: float = REVIEW_THRESHOLD) -> List[Dict[str, Any]]:
    """Graded materials under ``threshold`` percent, each labelled with a review reason."""
    review = []
    for grade in grades:
        data = _as_mapping(grade)
        if _earned_and_possible(data) is None:
            continue
        percentage = calculate_percentage(data)
        if percentage < threshold:
            review.append({**data, "percentage": percentage, "reason": review_reason(percentage)})
    return review
