"""Lesson read model consumed by watch-time tracking."""

from .models import LESSONS_TABLES_CQL, Lesson
from .repository import LessonRepository


__all__ = ["LESSONS_TABLES_CQL", "Lesson", "LessonRepository"]
