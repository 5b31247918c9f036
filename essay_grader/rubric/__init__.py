"""
Rubric Processing Module.

Parsing and validation of caller-supplied rubrics for ad-hoc grading.
"""

from essay_grader.rubric.parser import RubricParseError, RubricParser
from essay_grader.rubric.validator import RubricValidationError, RubricValidator, ValidationReport

__all__ = [
    "RubricParser",
    "RubricParseError",
    "RubricValidator",
    "RubricValidationError",
    "ValidationReport",
]
