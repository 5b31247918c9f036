"""
Grading Module.

Keyword matching, model-backed semantic fallback and holistic critique,
reconciled into one score per answer.
"""

from essay_grader.grading.engine import (
    GradingEngine,
    NotFoundError,
    QuestionNotFoundError,
    RubricNotFoundError,
)
from essay_grader.grading.feedback import FeedbackError, HolisticFeedbackGenerator, RevisionWriter
from essay_grader.grading.llm_client import LLMClient, LLMError
from essay_grader.grading.matcher import ScoringPointMatcher
from essay_grader.grading.prompt_builder import PromptBuilder
from essay_grader.grading.reconciler import ScoreReconciler
from essay_grader.grading.response_parser import StructuredResponseParser
from essay_grader.grading.semantic import SemanticFallbackEvaluator

__all__ = [
    "FeedbackError",
    "GradingEngine",
    "HolisticFeedbackGenerator",
    "LLMClient",
    "LLMError",
    "NotFoundError",
    "PromptBuilder",
    "QuestionNotFoundError",
    "RevisionWriter",
    "RubricNotFoundError",
    "ScoreReconciler",
    "ScoringPointMatcher",
    "SemanticFallbackEvaluator",
    "StructuredResponseParser",
]
