"""
Rubric validation module.

Checks a caller-supplied rubric before it is used for grading. Errors make
a rubric unusable; warnings describe rubrics that grade, but less well.
"""

from typing import NamedTuple, Sequence

from essay_grader.models import CustomRubric, ScoringPoint


class RubricValidationError(Exception):
    """Raised when rubric validation fails."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        message = "Rubric validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(message)


class ValidationReport(NamedTuple):
    errors: list[str]
    warnings: list[str]

    @property
    def is_valid(self) -> bool:
        return not self.errors


class RubricValidator:
    """
    Validates rubrics for completeness and consistency.

    Checks:
    1. Every scoring point describes something gradable
    2. No duplicate scoring points
    3. Points carry keywords, so they can be credited without a model call
    4. The total is positive; a zero total grades with the hybrid blend
    """

    # Minimum content length for a gradable point
    MIN_CONTENT_LENGTH = 2

    def validate(self, rubric: CustomRubric) -> ValidationReport:
        """
        Validate a rubric and return any issues found.

        Args:
            rubric: The rubric to validate.

        Returns:
            ValidationReport with errors and warnings.
        """
        errors: list[str] = []
        warnings: list[str] = []

        if not rubric.reference_answer.strip():
            warnings.append("Reference answer is empty; feedback will rely on scoring points only")

        for point in rubric.scoring_points:
            point_errors, point_warnings = self._validate_point(point)
            errors.extend(point_errors)
            warnings.extend(point_warnings)

        errors.extend(self._check_duplicates(rubric.scoring_points))

        if rubric.total_max_score <= 0:
            warnings.append(
                "Scoring points total 0; answers will be graded with the hybrid "
                "algorithmic/AI blend instead of per-point scores"
            )

        return ValidationReport(errors, warnings)

    def validate_or_raise(self, rubric: CustomRubric) -> list[str]:
        """
        Validate a rubric and raise if it has errors.

        Returns:
            The warnings, for the caller to display.

        Raises:
            RubricValidationError: If validation finds errors.
        """
        report = self.validate(rubric)
        if not report.is_valid:
            raise RubricValidationError(report.errors)
        return report.warnings

    def _validate_point(self, point: ScoringPoint) -> tuple[list[str], list[str]]:
        errors: list[str] = []
        warnings: list[str] = []
        prefix = f"Point {point.point_order} ({point.content[:20]})"

        if len(point.content.strip()) < self.MIN_CONTENT_LENGTH:
            errors.append(f"{prefix}: Content is too short to grade against")

        if point.max_score <= 0:
            warnings.append(f"{prefix}: Worth 0 points")

        if not point.keywords:
            warnings.append(f"{prefix}: No keywords; this point can only be credited semantically")

        return errors, warnings

    def _check_duplicates(self, points: Sequence[ScoringPoint]) -> list[str]:
        """Check for duplicate point contents."""
        issues: list[str] = []
        seen: dict[str, int] = {}

        for point in points:
            key = point.content.lower().strip()
            if key in seen:
                issues.append(
                    f"Duplicate scoring point: '{point.content}' "
                    f"(appears at positions {seen[key]} and {point.point_order})"
                )
            else:
                seen[key] = point.point_order

        return issues
