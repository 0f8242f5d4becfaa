"""Parsers for capability server replies."""

from .grade_analysis import calculate_grade_analysis, calculate_percentage, find_materials_for_review
from .question_locator import find_instruction, locate_question
from .text_parser import (
    ResponseTextParser,
    parse_grades_from_text,
    parse_lessons_from_text,
    parse_overdue_from_text,
    parse_text_search_response,
)

__all__ = [
    "ResponseTextParser",
    "parse_text_search_response",
    "parse_lessons_from_text",
    "parse_overdue_from_text",
    "parse_grades_from_text",
    "calculate_grade_analysis",
    "calculate_percentage",
    "find_materials_for_review",
    "find_instruction",
    "locate_question",
]
