"""
Grading engine - the core orchestrator.

Sequences keyword matching, semantic fallback, language analysis and the
holistic critique for one answer, then reconciles everything into a
single GradingResult.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Mapping, Sequence

from essay_grader.config import Settings, get_settings
from essay_grader.grading.analysis import (
    LanguageQualityAnalyzer,
    analyze_structure,
    check_format,
    count_words,
    language_score,
    needs_format_check,
    round_half_up,
    word_count_deduction,
)
from essay_grader.grading.feedback import HolisticFeedbackGenerator
from essay_grader.grading.llm_client import LLMClient
from essay_grader.grading.matcher import ScoringPointMatcher
from essay_grader.grading.reconciler import ScoreReconciler
from essay_grader.grading.semantic import SemanticFallbackEvaluator
from essay_grader.models import (
    GradingResult,
    MatchType,
    PointMatch,
    Question,
    Rubric,
    ScoringPoint,
    SourceType,
)
from essay_grader.store import GradingStore

logger = logging.getLogger(__name__)

CUSTOM_QUESTION_TYPE = "归纳概括"


class NotFoundError(Exception):
    """Raised when a record needed for grading does not exist."""


class QuestionNotFoundError(NotFoundError):
    def __init__(self, question_id: str):
        self.question_id = question_id
        super().__init__(f"Question not found: {question_id}")


class RubricNotFoundError(NotFoundError):
    def __init__(self, question_id: str):
        self.question_id = question_id
        super().__init__(f"No standard answer for question {question_id}, cannot grade")


class GradingEngine:
    """
    Main grading engine.

    Full keyword hits are credited without a model call; every other point
    gets a semantic check. Semantic checks run concurrently, and the
    holistic critique starts only once all point matches are known.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        llm_client: LLMClient | None = None,
        store: GradingStore | None = None,
    ):
        """
        Initialize the grading engine.

        Args:
            settings: Configuration settings. Uses global settings if not provided.
            llm_client: Model client shared by all model-backed steps.
            store: Persistence used by ``grade_question``.
        """
        self._settings = settings or get_settings()
        self._llm_client = llm_client or LLMClient(self._settings)
        self._store = store

        self._matcher = ScoringPointMatcher(
            full_ratio=self._settings.keyword_full_ratio,
            partial_ratio=self._settings.keyword_partial_ratio,
        )
        self._semantic = SemanticFallbackEvaluator(self._llm_client, self._settings)
        self._language = LanguageQualityAnalyzer(self._llm_client, self._settings)
        self._feedback = HolisticFeedbackGenerator(self._llm_client, self._settings)
        self._reconciler = ScoreReconciler(self._settings)

    async def grade(self, question: Question, rubric: Rubric, content: str) -> GradingResult:
        """
        Grade one answer.

        Args:
            question: The question being answered.
            rubric: Its reference answer and scoring points.
            content: The candidate's answer.

        Returns:
            Complete GradingResult.

        Raises:
            LLMError: If the holistic critique call fails.
            FeedbackError: If the critique cannot be parsed into feedback.
        """
        started = time.monotonic()
        max_score = question.max_score
        word_count = count_words(content)

        t = time.monotonic()
        point_matches = await self.match_points(content, rubric.scoring_points)
        logger.info(
            "Matched %d scoring points for question %s in %.2fs",
            len(point_matches),
            question.id,
            time.monotonic() - t,
        )
        content_score = sum((m.earned_score for m in point_matches), 0.0)

        format_check = None
        format_score = 0.0
        if needs_format_check(question.question_type):
            format_check = check_format(content)
            format_score = format_check.format_score

        t = time.monotonic()
        language_analysis, feedback = await asyncio.gather(
            self._language.analyze(content, question.question_type),
            self._feedback.generate(
                content,
                question.title,
                rubric.full_answer,
                question.question_type,
                rubric.scoring_points,
                question.exam_level,
            ),
        )
        logger.info("Language analysis and feedback took %.2fs", time.monotonic() - t)
        lang_score = language_score(language_analysis)

        structure_analysis = analyze_structure(content)
        deduction = word_count_deduction(word_count, question.word_limit)

        algorithmic_total = content_score + format_score + lang_score - deduction
        algorithmic_total = max(0.0, min(max_score, float(round_half_up(algorithmic_total))))

        reconciled = self._reconciler.reconcile(
            point_matches, feedback, max_score, algorithmic_total
        )

        logger.info(
            "Graded question %s: %s/%s (%s) in %.2fs",
            question.id,
            reconciled.total_score,
            reconciled.max_score,
            "hybrid" if reconciled.hybrid else "per-point",
            time.monotonic() - started,
        )

        return GradingResult(
            total_score=reconciled.total_score,
            max_score=reconciled.max_score,
            content_score=reconciled.content_score,
            content_max_score=rubric.total_max_score or max_score * 0.7,
            format_score=format_score,
            format_max_score=max(3.0, float(round_half_up(max_score * 0.1))),
            language_score=lang_score,
            language_max_score=max(10.0, float(round_half_up(max_score * 0.2))),
            word_count=word_count,
            word_count_deduction=deduction,
            point_matches=tuple(point_matches),
            format_check=format_check,
            language_analysis=language_analysis,
            structure_analysis=structure_analysis,
            feedback=feedback,
            score_explanation=(
                f"内容分: {reconciled.content_score:g} | 语言分: {lang_score:g} | "
                f"格式分: {format_score:g} | 扣分: {deduction:g}"
            ),
            points_hit=reconciled.points_hit,
            points_total=reconciled.points_total,
            hit_rate=reconciled.hit_rate,
        )

    async def match_points(
        self, content: str, scoring_points: Sequence[ScoringPoint]
    ) -> list[PointMatch]:
        """
        Credit every scoring point, in rubric order.

        Full keyword hits are credited immediately; the rest are evaluated
        semantically and concurrently.
        """
        pending: list[Any] = []
        for point in scoring_points:
            keyword_match = self._matcher.match(content, point)
            if keyword_match.is_matched and keyword_match.match_type is MatchType.KEYWORD:
                pending.append(self._full_keyword_match(point, keyword_match.matched_text))
            else:
                pending.append(self._semantic.evaluate(content, point, keyword_match))

        return list(await asyncio.gather(*pending))

    async def grade_question(self, question_id: str, content: str) -> GradingResult:
        """
        Load a question and its rubric from the store and grade an answer.

        Raises:
            QuestionNotFoundError: If the question does not exist.
            RubricNotFoundError: If the question has no rubric.
        """
        if self._store is None:
            raise RuntimeError("GradingEngine was created without a store")

        question = await self._store.get_question(question_id)
        if question is None:
            raise QuestionNotFoundError(question_id)

        rubric = await self._store.get_rubric(question_id)
        if rubric is None:
            raise RubricNotFoundError(question_id)

        return await self.grade(question, rubric, content)

    async def grade_custom(
        self,
        question_title: str,
        reference_answer: str,
        scoring_points: Sequence[ScoringPoint | Mapping[str, Any]],
        answer: str,
        word_limit: int | None = None,
    ) -> GradingResult:
        """
        Grade against a caller-supplied rubric without persisting anything.

        Scoring points may be ScoringPoint objects or mappings with
        ``content``, ``score`` and optional ``keywords``; order follows
        the sequence.
        """
        points = tuple(
            self._custom_point(order, point) for order, point in enumerate(scoring_points, start=1)
        )
        question = Question(
            id=str(uuid.uuid4()),
            title=question_title,
            max_score=sum((p.max_score for p in points), 0.0),
            question_type=CUSTOM_QUESTION_TYPE,
            word_limit=word_limit,
        )
        rubric = Rubric(
            id=str(uuid.uuid4()),
            question_id=question.id,
            full_answer=reference_answer,
            scoring_points=points,
            source_type=SourceType.USER,
        )
        return await self.grade(question, rubric, answer)

    def health_check(self) -> bool:
        """
        Check if the grading engine is operational.

        Returns:
            True if LLM API is reachable.
        """
        return self._llm_client.health_check()

    async def _full_keyword_match(self, point: ScoringPoint, matched_text: str | None) -> PointMatch:
        return PointMatch(
            point_order=point.point_order,
            point_content=point.content,
            max_score=point.max_score,
            earned_score=point.max_score,
            is_matched=True,
            match_type=MatchType.KEYWORD,
            matched_text=matched_text,
            feedback="✓ 完整命中采分点",
        )

    def _custom_point(self, order: int, point: ScoringPoint | Mapping[str, Any]) -> ScoringPoint:
        if isinstance(point, ScoringPoint):
            return point.model_copy(update={"point_order": order})
        return ScoringPoint(
            point_order=order,
            content=point["content"],
            max_score=point.get("max_score", point.get("score", 0)),
            keywords=point.get("keywords") or (),
            synonyms=point.get("synonyms") or (),
            must_contain=point.get("must_contain") or (),
            semantic_threshold=point.get("semantic_threshold", self._settings.default_semantic_threshold),
        )
