"""
Pytest configuration and fixtures.

Provides common test fixtures for all test modules.
"""

import json
import tempfile
from pathlib import Path
from typing import Any, Callable, Generator
from unittest.mock import AsyncMock, MagicMock

import pytest

from essay_grader.config import Settings
from essay_grader.models import GradingResult, Question, Rubric, ScoringPoint
from essay_grader.store import InMemoryStore


# ==============================================================================
# Directory Fixtures
# ==============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def test_settings(temp_dir: Path) -> Settings:
    """Create test settings with mocked values."""
    return Settings(
        ai_api_key="test-api-key-for-testing",
        ai_base_url="https://test.api.local/",
        ai_model="test-model",
        ai_max_retries=0,
        store_directory=temp_dir / "data",
        poll_interval_seconds=0.01,
        max_polls=50,
    )


# ==============================================================================
# Question and Rubric Fixtures
# ==============================================================================


@pytest.fixture
def sample_points() -> tuple[ScoringPoint, ...]:
    """Three scoring points worth 10 in total."""
    return (
        ScoringPoint(
            point_order=1,
            content="坚持创新驱动发展",
            max_score=4,
            keywords=["创新", "驱动"],
        ),
        ScoringPoint(
            point_order=2,
            content="加强人才队伍建设",
            max_score=3,
            keywords=["人才", "培养", "引进", "激励"],
        ),
        ScoringPoint(
            point_order=3,
            content="防范化解重大风险",
            max_score=3,
            keywords=["风险", "防范"],
            must_contain=["风险"],
        ),
    )


@pytest.fixture
def sample_question() -> Question:
    return Question(
        id="q-001",
        title="根据给定资料，概括推动高质量发展的主要做法。",
        max_score=10,
        question_type="归纳概括",
        exam_level="地市级",
    )


@pytest.fixture
def sample_rubric(sample_points: tuple[ScoringPoint, ...]) -> Rubric:
    return Rubric(
        id="r-001",
        question_id="q-001",
        full_answer="坚持创新驱动发展；加强人才队伍建设；防范化解重大风险。",
        scoring_points=sample_points,
    )


@pytest.fixture
def sample_answer() -> str:
    """Hits point 1 fully, point 2 partially and misses point 3."""
    return (
        "一是坚持创新驱动，把科技创新摆在发展全局的核心位置。\n\n"
        "二是加强人才培养与引进，建设高素质干部队伍。\n\n"
        "三是完善体制机制，持续优化营商环境。"
    )


@pytest.fixture
def memory_store(sample_question: Question, sample_rubric: Rubric) -> InMemoryStore:
    """In-memory store seeded with the sample question and rubric."""
    store = InMemoryStore()
    store.add_question(sample_question)
    store.add_rubric(sample_rubric)
    return store


# ==============================================================================
# Model Reply Fixtures
# ==============================================================================


LANGUAGE_REPLY = json.dumps(
    {
        "fluency": 0.8,
        "accuracy": 0.8,
        "professionalism": 0.8,
        "issues": ["个别表述口语化"],
        "suggestions": ["使用规范表述"],
    },
    ensure_ascii=False,
)


@pytest.fixture
def feedback_reply() -> dict[str, Any]:
    """A well-formed holistic critique."""
    return {
        "analysis_thought": "考生作答覆盖了创新与人才两个方面，遗漏风险防范。",
        "dimensions": {"understanding": 20, "logic": 18, "language": 17, "norm": 20},
        "overall_comment": "要点较全，但遗漏风险防范。",
        "strengths": ["条理清晰"],
        "weaknesses": ["遗漏风险防范"],
        "suggestions": ["补充风险防范相关表述"],
        "scoring_details": [
            {"point": "坚持创新驱动发展", "score": 4, "earned": 4, "status": "full", "evidence": "坚持创新驱动"},
            {"point": "加强人才队伍建设", "score": 3, "earned": 2, "status": "partial", "evidence": "加强人才培养与引进"},
            {"point": "防范化解重大风险", "score": 3, "earned": 0, "status": "missed", "evidence": ""},
        ],
        "logic_analysis": {
            "user_logic_chain": ["创新", "人才"],
            "master_logic_chain": ["创新", "人才", "风险"],
            "gaps": ["缺少风险防范"],
            "suggestions": ["补充底线思维"],
        },
        "sentence_upgrades": [
            {"original": "建设高素质干部队伍", "upgraded": "锻造忠诚干净担当的高素质干部队伍", "reason": "更规范"}
        ],
    }


# ==============================================================================
# Mock Fixtures
# ==============================================================================


@pytest.fixture
def llm_factory(
    test_settings: Settings, feedback_reply: dict[str, Any]
) -> Callable[..., MagicMock]:
    """
    Build a mocked LLM client whose ``acomplete`` answers by call type.

    Calls are told apart by their token budget. Each reply may be a string,
    an exception to raise, or a callable taking the messages.
    """

    def factory(
        similarity: Any = "0.5",
        language: Any = LANGUAGE_REPLY,
        feedback: Any = None,
        revision: Any = "润色后的答案",
    ) -> MagicMock:
        replies = {
            test_settings.similarity_max_tokens: similarity,
            test_settings.language_max_tokens: language,
            test_settings.feedback_max_tokens: (
                json.dumps(feedback_reply, ensure_ascii=False) if feedback is None else feedback
            ),
            test_settings.revision_max_tokens: revision,
        }

        async def acomplete(
            messages: list[dict[str, str]],
            temperature: float = 0.7,
            max_tokens: int = 2000,
            json_mode: bool = False,
        ) -> str:
            reply = replies[max_tokens]
            if isinstance(reply, Exception):
                raise reply
            if callable(reply):
                return reply(messages)
            return reply

        client = MagicMock()
        client.acomplete = AsyncMock(side_effect=acomplete)
        client.health_check.return_value = True
        return client

    return factory


@pytest.fixture
def mock_llm_client(llm_factory: Callable[..., MagicMock]) -> MagicMock:
    """Mocked LLM client with default replies for every call type."""
    return llm_factory()


# ==============================================================================
# Grading Result Fixtures
# ==============================================================================


@pytest.fixture
def sample_grading_result() -> GradingResult:
    return GradingResult(
        total_score=6.0,
        max_score=10.0,
        content_score=6.0,
        content_max_score=10.0,
        word_count=80,
        points_hit=2,
        points_total=3,
        hit_rate=2 / 3,
        score_explanation="内容分: 6 | 语言分: 8 | 格式分: 0 | 扣分: 0",
    )


# ==============================================================================
# File Fixtures
# ==============================================================================


@pytest.fixture
def sample_rubric_text() -> str:
    """Sample rubric in text format."""
    return """# 推动高质量发展的主要做法

参考答案: 坚持创新驱动发展；
加强人才队伍建设；防范化解重大风险。
字数限制: 200字

1. 坚持创新驱动发展 (4分) 关键词: 创新, 驱动; 同义词: 革新
2. 加强人才队伍建设 (3分) 关键词: 人才、培养、引进
3. 防范化解重大风险 (3分) 关键词: 风险, 防范; 必含: 风险
"""


@pytest.fixture
def rubric_file(temp_dir: Path, sample_rubric_text: str) -> Path:
    file_path = temp_dir / "rubric.txt"
    file_path.write_text(sample_rubric_text, encoding="utf-8")
    return file_path


@pytest.fixture
def answer_file(temp_dir: Path, sample_answer: str) -> Path:
    file_path = temp_dir / "answer.txt"
    file_path.write_text(sample_answer, encoding="utf-8")
    return file_path
