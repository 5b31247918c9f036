"""
Peripheral answer analysis.

Word count, document-format and paragraph-structure heuristics plus a
model-rated language quality check. None of these affect a rubric with
scoring points directly; they are reported alongside the score and feed
the hybrid blend used when a rubric has no scoring points.
"""

import logging
import math
import re

from essay_grader.config import Settings, get_settings
from essay_grader.grading.llm_client import LLMClient, LLMError
from essay_grader.grading.prompt_builder import PromptBuilder
from essay_grader.grading.response_parser import StructuredResponseParser
from essay_grader.models import FormatCheck, LanguageAnalysis, StructureAnalysis

logger = logging.getLogger(__name__)

# Question type that is graded as official document writing
DOCUMENT_QUESTION_TYPE = "贯彻执行"

TITLE_PATTERN = re.compile(r".{2,20}\n")
GREETING_PATTERN = re.compile(r"各位|同志们|领导|先生|女士|朋友们")
SIGNATURE_PATTERN = re.compile(r"\d{4}年\d{1,2}月\d{1,2}日|署名|单位")
PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
WHITESPACE = re.compile(r"\s")

NEUTRAL_LANGUAGE_RATING = 0.7


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves upward."""
    return math.floor(value + 0.5)


def count_words(content: str) -> int:
    """Count characters excluding whitespace, the usual measure for Chinese essays."""
    return len(WHITESPACE.sub("", content))


def word_count_deduction(word_count: int, word_limit: int | None) -> float:
    """Deduction for answers far below or above the word limit."""
    if not word_limit:
        return 0.0
    if word_count < word_limit * 0.5:
        return 3.0
    if word_count < word_limit * 0.8:
        return 2.0
    if word_count > word_limit * 1.2:
        return 1.0
    return 0.0


def needs_format_check(question_type: str) -> bool:
    return question_type == DOCUMENT_QUESTION_TYPE


def check_format(content: str) -> FormatCheck:
    """Check the parts an official document is expected to have."""
    issues: list[str] = []
    score = 0.0

    has_title = bool(TITLE_PATTERN.match(content)) or "关于" in content
    if has_title:
        score += 1
    else:
        issues.append("缺少标题")

    has_greeting = bool(GREETING_PATTERN.search(content))
    if has_greeting:
        score += 0.5
    else:
        issues.append("缺少称呼语")

    has_body = len(content) > 100
    if has_body:
        score += 1

    has_signature = bool(SIGNATURE_PATTERN.search(content))
    if has_signature:
        score += 0.5
    else:
        issues.append("缺少落款")

    return FormatCheck(
        has_title=has_title,
        has_greeting=has_greeting,
        has_body=has_body,
        has_signature=has_signature,
        format_score=score,
        issues=issues,
    )


def analyze_structure(content: str) -> StructureAnalysis:
    """Judge introduction, body and conclusion from paragraph breaks."""
    paragraphs = [p for p in PARAGRAPH_SPLIT.split(content) if p.strip()]
    count = len(paragraphs)

    has_introduction = count >= 1 and len(paragraphs[0]) >= 20
    has_body = count >= 2
    has_conclusion = count >= 3

    score = 0.0
    if has_introduction:
        score += 1
    if has_body:
        score += 1.5
    if has_conclusion:
        score += 0.5

    issues: list[str] = []
    if count < 3:
        issues.append("段落划分不够清晰，建议分为开头、主体、结尾三部分")

    return StructureAnalysis(
        has_introduction=has_introduction,
        has_body=has_body,
        has_conclusion=has_conclusion,
        paragraph_count=count,
        structure_score=score,
        issues=issues,
    )


def language_score(analysis: LanguageAnalysis) -> float:
    """Mean of the three ratings, scaled to 10 points."""
    mean = (
        analysis.fluency_score + analysis.accuracy_score + analysis.professionalism_score
    ) / 3
    return float(round_half_up(mean * 10))


class LanguageQualityAnalyzer:
    """Rates fluency, accuracy and professionalism of an answer via the model."""

    def __init__(
        self,
        llm_client: LLMClient,
        settings: Settings | None = None,
        parser: StructuredResponseParser | None = None,
    ):
        self._llm_client = llm_client
        self._settings = settings or get_settings()
        self._parser = parser or StructuredResponseParser()

    async def analyze(self, content: str, question_type: str) -> LanguageAnalysis:
        """
        Rate the answer's language.

        Any failure degrades to neutral ratings with no issues.
        """
        try:
            reply = await self._llm_client.acomplete(
                PromptBuilder.build_language_messages(content, question_type),
                temperature=self._settings.language_temperature,
                max_tokens=self._settings.language_max_tokens,
                json_mode=True,
            )
        except LLMError as e:
            logger.warning("Language analysis call failed, using neutral ratings: %s", e)
            return self.neutral()

        data = self._parser.parse(reply, None)
        if not isinstance(data, dict):
            return self.neutral()

        return LanguageAnalysis(
            fluency_score=self._rating(data.get("fluency")),
            accuracy_score=self._rating(data.get("accuracy")),
            professionalism_score=self._rating(data.get("professionalism")),
            issues=self._texts(data.get("issues")),
            suggestions=self._texts(data.get("suggestions")),
        )

    @staticmethod
    def neutral() -> LanguageAnalysis:
        return LanguageAnalysis(
            fluency_score=NEUTRAL_LANGUAGE_RATING,
            accuracy_score=NEUTRAL_LANGUAGE_RATING,
            professionalism_score=NEUTRAL_LANGUAGE_RATING,
        )

    @staticmethod
    def _rating(value: object) -> float:
        if isinstance(value, bool):
            return NEUTRAL_LANGUAGE_RATING
        try:
            rating = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return NEUTRAL_LANGUAGE_RATING
        if math.isnan(rating):
            return NEUTRAL_LANGUAGE_RATING
        return min(1.0, max(0.0, rating))

    @staticmethod
    def _texts(value: object) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value if item]
