"""
Holistic feedback generation.

One model call over the whole answer produces the narrative critique, the
four dimension scores, a per-point verdict with evidence and the optional
polishing artifacts. It is the slowest and least reliable step of grading.
"""

import logging
from typing import Any, Sequence

from pydantic import ValidationError

from essay_grader.config import Settings, get_settings
from essay_grader.grading.llm_client import LLMClient
from essay_grader.grading.prompt_builder import PromptBuilder
from essay_grader.grading.response_parser import StructuredResponseParser
from essay_grader.models import HolisticFeedback, ScoringPoint

logger = logging.getLogger(__name__)


def default_feedback_reply() -> dict[str, Any]:
    """Fallback used when the model reply holds no structured data."""
    return {
        "analysis_thought": "",
        "dimensions": {"understanding": 0, "logic": 0, "language": 0, "norm": 0},
        "overall_comment": "批改完成，请查看得分详情。",
        "strengths": [],
        "weaknesses": [],
        "suggestions": ["请参考标准答案进行对照学习"],
        "scoring_details": [],
        "logic_analysis": None,
        "sentence_upgrades": [],
    }


class FeedbackError(Exception):
    """Raised when a model reply cannot be turned into feedback."""

    def __init__(self, message: str, raw_response: str | None = None):
        self.raw_response = raw_response
        super().__init__(message)


class HolisticFeedbackGenerator:
    """
    Generates the full critique of an answer.

    Malformed replies fall back to a neutral critique through the parser.
    Model failures are not caught here: without a critique there is no
    safe way to finish grading, so they propagate to the caller.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        settings: Settings | None = None,
        parser: StructuredResponseParser | None = None,
    ):
        self._llm_client = llm_client
        self._settings = settings or get_settings()
        self._parser = parser or StructuredResponseParser()

    async def generate(
        self,
        answer: str,
        question_title: str,
        reference_answer: str,
        question_type: str,
        scoring_points: Sequence[ScoringPoint],
        exam_level: str | None = None,
    ) -> HolisticFeedback:
        """
        Critique an answer against the question and its rubric.

        Returns:
            HolisticFeedback, with defaults for anything the reply lacked.

        Raises:
            LLMError: If the model call fails.
            FeedbackError: If the parsed reply is unusable.
        """
        messages = PromptBuilder.build_feedback_messages(
            answer,
            question_title,
            reference_answer,
            question_type,
            scoring_points,
            exam_level,
        )
        reply = await self._llm_client.acomplete(
            messages,
            temperature=self._settings.feedback_temperature,
            max_tokens=self._settings.feedback_max_tokens,
            json_mode=True,
        )
        return self.build(reply)

    def build(self, reply: str) -> HolisticFeedback:
        """Parse a raw model reply into HolisticFeedback."""
        fallback = default_feedback_reply()
        data = self._parser.parse(reply, fallback)
        if not isinstance(data, dict):
            logger.warning("Feedback reply parsed to %s, using fallback", type(data).__name__)
            data = fallback

        try:
            feedback = HolisticFeedback.model_validate(data)
        except ValidationError as e:
            raise FeedbackError(f"Invalid feedback structure: {e}", raw_response=reply) from e

        logger.debug(
            "Feedback parsed (details=%d, upgrades=%d, polished=%s)",
            len(feedback.scoring_details),
            len(feedback.sentence_upgrades),
            bool(feedback.polished_with_marks),
        )
        return feedback


class RevisionWriter:
    """Rewrites answers: a formal-register polish or a full upgraded essay."""

    def __init__(self, llm_client: LLMClient, settings: Settings | None = None):
        self._llm_client = llm_client
        self._settings = settings or get_settings()

    async def polish(self, content: str, question_type: str) -> str:
        reply = await self._llm_client.acomplete(
            PromptBuilder.build_polish_messages(content, question_type),
            temperature=self._settings.revision_temperature,
            max_tokens=self._settings.revision_max_tokens,
        )
        return reply.strip()

    async def upgrade(self, answer: str, question_title: str, reference_answer: str) -> str:
        reply = await self._llm_client.acomplete(
            PromptBuilder.build_upgrade_messages(answer, question_title, reference_answer),
            temperature=self._settings.revision_temperature,
            max_tokens=self._settings.revision_max_tokens,
        )
        return reply.strip()
