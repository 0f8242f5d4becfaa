"""Typed records parsed out of capability server replies."""

from .models import Assignment, DomainRecord, Grade, Lesson, StudyMaterial, Worksheet

__all__ = ["Assignment", "DomainRecord", "Grade", "Lesson", "StudyMaterial", "Worksheet"]
