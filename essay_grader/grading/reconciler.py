"""
Score reconciliation.

Two independent judges score each answer: deterministic matching and the
model's own per-point verdicts. The final content score takes the more
generous of the two, capped at the rubric ceiling, so either judge can award
a valid point but neither can push the score past the maximum.
"""

import logging
from typing import NamedTuple, Sequence

from essay_grader.config import Settings, get_settings
from essay_grader.models import HolisticFeedback, PointMatch, round_score

logger = logging.getLogger(__name__)


class ReconciledScore(NamedTuple):
    """Final scores after merging both judges."""

    content_score: float
    total_score: float
    max_score: float
    points_hit: int
    points_total: int
    hit_rate: float
    hybrid: bool


class ScoreReconciler:
    """
    Merges point matches with the holistic critique into one score.

    Rubrics whose scoring points sum to zero cannot be scored per point;
    for those the algorithmic total and the scaled dimension scores are
    blended against the question's overall maximum instead.
    """

    def __init__(self, settings: Settings | None = None):
        self._settings = settings or get_settings()

    def reconcile(
        self,
        point_matches: Sequence[PointMatch],
        feedback: HolisticFeedback,
        question_max_score: float,
        algorithmic_total: float = 0.0,
    ) -> ReconciledScore:
        """
        Combine both judges.

        Args:
            point_matches: Deterministic and semantic results, one per point.
            feedback: The holistic critique.
            question_max_score: The question's overall maximum score.
            algorithmic_total: Content, format and language total with
                deductions; used only for rubrics without scoring points.

        Returns:
            ReconciledScore with ``0 <= total_score <= max_score``.
        """
        deterministic = sum((m.earned_score for m in point_matches), 0.0)
        max_points_score = sum((m.max_score for m in point_matches), 0.0)

        refined = deterministic
        if feedback.scoring_details:
            # The model may recover missed points but never lower a justified score
            refined = max(deterministic, feedback.ai_earned_total)

        hybrid = max_points_score <= 0
        if not hybrid:
            max_score = max_points_score
            raw_total = refined
        else:
            logger.info("Rubric has no scored points, using hybrid scoring")
            max_score = max(0.0, question_max_score)
            ai_scaled = feedback.dimensions.total / 100 * max_score
            raw_total = (
                self._settings.hybrid_algorithm_weight * algorithmic_total
                + self._settings.hybrid_ai_weight * ai_scaled
            )

        total_score = self._clamp(round_score(raw_total), max_score)
        content_score = round_score(refined)
        if not hybrid:
            content_score = self._clamp(content_score, max_points_score)

        if feedback.scoring_details:
            points_hit = sum(1 for d in feedback.scoring_details if d.earned > 0)
        else:
            points_hit = sum(1 for m in point_matches if m.earned_score > 0)
        points_total = max(len(point_matches), len(feedback.scoring_details))
        hit_rate = points_hit / points_total if points_total else 0.0

        return ReconciledScore(
            content_score=content_score,
            total_score=total_score,
            max_score=max_score,
            points_hit=points_hit,
            points_total=points_total,
            hit_rate=hit_rate,
            hybrid=hybrid,
        )

    @staticmethod
    def _clamp(value: float, upper: float) -> float:
        return max(0.0, min(upper, value))
