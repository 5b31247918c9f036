"""
Semantic fallback evaluation for scoring points.

When keyword matching is inconclusive, the model is asked how closely the
answer expresses the scoring point. One flaky call must never abort a
whole answer, so every failure degrades to a neutral similarity.
"""

import logging
import re

from essay_grader.config import Settings, get_settings
from essay_grader.grading.llm_client import LLMClient, LLMError
from essay_grader.grading.matcher import KeywordMatch
from essay_grader.grading.prompt_builder import PromptBuilder
from essay_grader.models import MatchType, PointMatch, ScoringPoint, round_score

logger = logging.getLogger(__name__)

# Leading number of a reply; any gloss after it is ignored
SIMILARITY_PATTERN = re.compile(r"\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)")


class SemanticFallbackEvaluator:
    """Scores topical similarity between a scoring point and an answer."""

    def __init__(self, llm_client: LLMClient, settings: Settings | None = None):
        self._llm_client = llm_client
        self._settings = settings or get_settings()

    async def score(self, point_content: str, answer: str) -> float:
        """
        Ask the model for a similarity in [0, 1].

        Returns:
            The clamped similarity, or the configured neutral value when the
            call fails or the reply does not start with a number.
        """
        neutral = self._settings.neutral_similarity
        try:
            reply = await self._llm_client.acomplete(
                PromptBuilder.build_similarity_messages(point_content, answer),
                temperature=self._settings.similarity_temperature,
                max_tokens=self._settings.similarity_max_tokens,
            )
        except LLMError as e:
            logger.warning("Semantic similarity call failed, using %.2f: %s", neutral, e)
            return neutral

        match = SIMILARITY_PATTERN.match(reply)
        if match is None:
            logger.warning("Non-numeric similarity reply %.50r, using %.2f", reply, neutral)
            return neutral

        similarity = float(match.group(1))
        return min(1.0, max(0.0, similarity))

    async def evaluate(
        self, answer: str, point: ScoringPoint, keyword_match: KeywordMatch
    ) -> PointMatch:
        """
        Credit a point whose keyword match was not a full hit.

        Args:
            answer: The candidate's answer.
            point: The scoring point.
            keyword_match: What the deterministic matcher found.

        Returns:
            The point match, semantic, partial or none.
        """
        similarity = await self.score(point.content, answer)
        return self.credit(point, keyword_match, similarity)

    def credit(
        self, point: ScoringPoint, keyword_match: KeywordMatch, similarity: float
    ) -> PointMatch:
        """Turn a similarity into a point match against the point's threshold."""
        threshold = (
            point.semantic_threshold
            if point.semantic_threshold is not None
            else self._settings.default_semantic_threshold
        )

        if similarity >= threshold:
            if similarity >= self._settings.semantic_full_credit_cutoff:
                earned = point.max_score
            else:
                earned = round_score(point.max_score * similarity)
            return PointMatch(
                point_order=point.point_order,
                point_content=point.content,
                max_score=point.max_score,
                earned_score=min(earned, point.max_score),
                is_matched=True,
                match_type=MatchType.SEMANTIC,
                similarity_score=similarity,
                feedback=f"语义匹配度: {round(similarity * 100)}%",
            )

        if keyword_match.is_matched and keyword_match.match_type is MatchType.PARTIAL:
            earned = round_score(point.max_score * self._settings.partial_credit_ratio)
            return PointMatch(
                point_order=point.point_order,
                point_content=point.content,
                max_score=point.max_score,
                earned_score=min(earned, point.max_score),
                is_matched=True,
                match_type=MatchType.PARTIAL,
                matched_text=keyword_match.matched_text,
                similarity_score=similarity,
                feedback="部分命中，建议补充完整",
            )

        return PointMatch(
            point_order=point.point_order,
            point_content=point.content,
            max_score=point.max_score,
            earned_score=0.0,
            is_matched=False,
            match_type=MatchType.NONE,
            similarity_score=similarity,
            feedback="未命中此采分点",
        )
