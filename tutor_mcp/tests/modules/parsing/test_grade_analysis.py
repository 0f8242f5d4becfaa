import pytest

from tutor_mcp.domain.records.models import Grade
from tutor_mcp.modules.parsing.grade_analysis import (
    calculate_grade_analysis,
    calculate_percentage,
    find_materials_for_review,
    review_reason,
)


def _nested(title, earned, possible, subject_name, override=None):
    return {
        "title": title,
        "grade_value": earned,
        "grade_max_value": possible,
        "lesson": {
            "unit": {
                "child_subject": {
                    "custom_subject_name_override": override,
                    "subject": {"name": subject_name},
                }
            }
        },
    }


class TestCalculatePercentage:
    def test_percentage_from_record(self):
        assert calculate_percentage(Grade(title="Quiz", grade_value=9, grade_max_value=12)) == 75.0

    @pytest.mark.parametrize(
        "grade",
        [
            {"grade_value": 0, "grade_max_value": 10},
            {"grade_value": 5, "grade_max_value": 0},
            {"grade_value": None, "grade_max_value": 10},
            {"grade_value": "n/a", "grade_max_value": 10},
            {},
        ],
    )
    def test_missing_values_are_zero(self, grade):
        assert calculate_percentage(grade) == 0.0


class TestGradeAnalysis:
    def test_groups_by_subject(self):
        grades = [
            _nested("Fractions Quiz", 8, 10, "Math"),
            _nested("Decimals Test", 15, 20, "Math"),
            _nested("Cells Lab", 9, 10, "Science", override="Life Science"),
            {"title": "Spelling", "grade_value": 7, "grade_max_value": 10, "subject": "English"},
            Grade(title="Mental Math", grade_value=3, grade_max_value=4),
        ]
        analysis = calculate_grade_analysis(grades)

        by_subject = analysis["by_subject"]
        assert set(by_subject) == {"Math", "Life Science", "English", "General"}
        assert by_subject["Math"]["earned"] == 23
        assert by_subject["Math"]["possible"] == 30
        assert by_subject["Math"]["count"] == 2
        assert by_subject["Math"]["average"] == 76.7
        assert by_subject["General"]["materials"] == [grades[4]]

        overall = analysis["overall"]
        assert overall["total_earned"] == 42
        assert overall["total_possible"] == 54
        assert overall["total_graded_materials"] == 5
        assert overall["average"] == 77.8

    def test_ungraded_items_are_listed_but_not_averaged(self):
        analysis = calculate_grade_analysis([{"title": "Draft", "grade_value": None, "subject": "Art"}])
        assert analysis["by_subject"]["Art"]["count"] == 0
        assert analysis["by_subject"]["Art"]["average"] is None
        assert analysis["overall"]["average"] is None

    def test_empty(self):
        analysis = calculate_grade_analysis([])
        assert analysis["by_subject"] == {}
        assert analysis["overall"]["total_graded_materials"] == 0


class TestMaterialsForReview:
    def test_below_threshold_with_reasons(self):
        grades = [
            {"title": "A", "grade_value": 4, "grade_max_value": 10},
            {"title": "B", "grade_value": 55, "grade_max_value": 100},
            {"title": "C", "grade_value": 65, "grade_max_value": 100},
            {"title": "D", "grade_value": 70, "grade_max_value": 100},
            {"title": "E", "grade_value": None, "grade_max_value": 100},
        ]
        review = find_materials_for_review(grades)
        assert [(r["title"], r["reason"]) for r in review] == [
            ("A", "Failed - needs significant review"),
            ("B", "Below average - review recommended"),
            ("C", "Room for improvement"),
        ]
        assert review[0]["percentage"] == 40.0

    def test_custom_threshold(self):
        grades = [Grade(title="Quiz", grade_value=8, grade_max_value=10)]
        assert find_materials_for_review(grades, threshold=90)[0]["title"] == "Quiz"
        assert find_materials_for_review(grades, threshold=80) == []

    @pytest.mark.parametrize(
        "percentage,reason",
        [(10, "Failed - needs significant review"), (50, "Below average - review recommended"), (60, "Room for improvement")],
    )
    def test_reason_bands(self, percentage, reason):
        assert review_reason(percentage) == reason
