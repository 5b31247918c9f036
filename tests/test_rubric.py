"""
Unit tests for rubric parsing and validation.

Tests the rubric parser with text and JSON formats and edge cases,
and the rubric validator for errors and warnings.
"""

from pathlib import Path

import pytest

from essay_grader.models import CustomRubric, ScoringPoint
from essay_grader.rubric import (
    RubricParseError,
    RubricParser,
    RubricValidationError,
    RubricValidator,
)


@pytest.fixture
def parser() -> RubricParser:
    return RubricParser()


@pytest.fixture
def validator() -> RubricValidator:
    return RubricValidator()


def make_rubric(*points: ScoringPoint, reference_answer: str = "参考答案") -> CustomRubric:
    return CustomRubric(title="题目", reference_answer=reference_answer, scoring_points=points)


class TestTextFormat:
    """Tests for line-based rubrics."""

    def test_parse_sample(self, parser: RubricParser, sample_rubric_text: str) -> None:
        rubric = parser.parse(sample_rubric_text)

        assert rubric.title == "推动高质量发展的主要做法"
        assert rubric.word_limit == 200
        assert rubric.total_max_score == 10
        assert [p.content for p in rubric.scoring_points] == [
            "坚持创新驱动发展",
            "加强人才队伍建设",
            "防范化解重大风险",
        ]

    def test_term_lists(self, parser: RubricParser, sample_rubric_text: str) -> None:
        first, second, third = parser.parse(sample_rubric_text).scoring_points

        assert first.keywords == ("创新", "驱动")
        assert first.synonyms == ("革新",)
        assert second.keywords == ("人才", "培养", "引进")
        assert third.must_contain == ("风险",)

    def test_multi_line_reference(self, parser: RubricParser, sample_rubric_text: str) -> None:
        rubric = parser.parse(sample_rubric_text)
        assert rubric.reference_answer == "坚持创新驱动发展；\n加强人才队伍建设；防范化解重大风险。"

    def test_english_labels(self, parser: RubricParser) -> None:
        content = """Title: Innovation policy
Reference answer: Drive innovation.
1. Drive innovation (4 points) keywords: innovation, drive; must contain: innovation
2) Train talent (2.5 pts) synonyms: training
"""
        rubric = parser.parse(content)

        assert rubric.title == "Innovation policy"
        assert rubric.reference_answer == "Drive innovation."
        first, second = rubric.scoring_points
        assert first.keywords == ("innovation", "drive")
        assert first.must_contain == ("innovation",)
        assert second.max_score == 2.5
        assert second.synonyms == ("training",)
        assert second.keywords == ()

    def test_default_title(self, parser: RubricParser) -> None:
        rubric = parser.parse("1. 要点一 (2分)")
        assert rubric.title == "自定义题目"
        assert rubric.reference_answer == ""

    def test_point_numbering_follows_line_order(self, parser: RubricParser) -> None:
        rubric = parser.parse("5、要点甲（3分）\n2．要点乙（1分）")
        assert [(p.point_order, p.content) for p in rubric.scoring_points] == [
            (1, "要点甲"),
            (2, "要点乙"),
        ]

    def test_unrecognized_lines_are_skipped(self, parser: RubricParser) -> None:
        rubric = parser.parse("评分说明：按点给分\n1. 要点一 (2分)\n这一行会被忽略")
        assert len(rubric.scoring_points) == 1

    @pytest.mark.parametrize("content", ["", "   \n  "])
    def test_empty_content(self, parser: RubricParser, content: str) -> None:
        with pytest.raises(RubricParseError, match="empty"):
            parser.parse(content)

    def test_no_points(self, parser: RubricParser) -> None:
        with pytest.raises(RubricParseError, match="No scoring points"):
            parser.parse("# 标题\n参考答案: 没有采分点")

    def test_invalid_word_limit(self, parser: RubricParser) -> None:
        with pytest.raises(RubricParseError, match="Line 2: Invalid word limit") as exc_info:
            parser.parse("1. 要点 (2分)\n字数限制: 不限")
        assert exc_info.value.line_number == 2

    def test_parse_file(self, parser: RubricParser, rubric_file: Path) -> None:
        rubric = parser.parse_file(rubric_file)
        assert len(rubric.scoring_points) == 3

    def test_parse_file_title_falls_back_to_name(self, parser: RubricParser, temp_dir: Path) -> None:
        path = temp_dir / "期中测验.txt"
        path.write_text("1. 要点 (2分)", encoding="utf-8")

        assert parser.parse_file(path).title == "期中测验"

    def test_parse_missing_file(self, parser: RubricParser, temp_dir: Path) -> None:
        with pytest.raises(RubricParseError, match="Cannot read"):
            parser.parse_file(temp_dir / "missing.txt")


class TestJsonFormat:
    """Tests for JSON rubrics."""

    def test_parse_json(self, parser: RubricParser) -> None:
        content = """{
            "title": "概括主要做法",
            "reference_answer": "参考答案",
            "word_limit": 300,
            "scoring_points": [
                {"content": "坚持创新驱动发展", "score": 4, "keywords": ["创新", "驱动"]},
                {"content": "加强人才队伍建设", "max_score": 6, "keywords": "人才，培养、引进",
                 "semantic_threshold": 0.8}
            ]
        }"""

        rubric = parser.parse(content)

        assert rubric.title == "概括主要做法"
        assert rubric.word_limit == 300
        assert rubric.total_max_score == 10
        second = rubric.scoring_points[1]
        assert second.point_order == 2
        assert second.keywords == ("人才", "培养", "引进")
        assert second.semantic_threshold == 0.8

    def test_json5_leniency(self, parser: RubricParser) -> None:
        content = """{
            // exported by hand
            question_title: '题目',
            scoring_points: [{content: '要点', score: 2,},],
        }"""

        rubric = parser.parse(content)

        assert rubric.title == "题目"
        assert rubric.scoring_points[0].max_score == 2

    def test_json_without_points_is_allowed(self, parser: RubricParser) -> None:
        """Test an empty point list parses; grading then uses the hybrid blend."""
        rubric = parser.parse('{"title": "题目", "scoring_points": []}')
        assert rubric.scoring_points == ()
        assert rubric.total_max_score == 0

    @pytest.mark.parametrize(
        ("content", "message"),
        [
            ("{not json", "Invalid JSON"),
            ('{"scoring_points": {"content": "a"}}', "must be a list"),
            ('{"scoring_points": ["要点"]}', "must be an object"),
            ('{"scoring_points": [{"content": "要点", "score": -1}]}', "Invalid scoring point 1"),
            ('{"scoring_points": [{"content": "要点", "score": 1, "semantic_threshold": 1.5}]}', "Invalid scoring point 1"),
            ('{"word_limit": 0, "scoring_points": []}', "Invalid rubric"),
        ],
    )
    def test_invalid_json(self, parser: RubricParser, content: str, message: str) -> None:
        with pytest.raises(RubricParseError, match=message):
            parser.parse(content)


class TestRubricValidator:
    """Tests for RubricValidator."""

    def test_valid_rubric(
        self, parser: RubricParser, validator: RubricValidator, sample_rubric_text: str
    ) -> None:
        report = validator.validate(parser.parse(sample_rubric_text))

        assert report.is_valid
        assert report.errors == []
        assert report.warnings == []

    def test_duplicate_points(self, validator: RubricValidator) -> None:
        rubric = make_rubric(
            ScoringPoint(point_order=1, content="加强人才建设", max_score=2, keywords=["人才"]),
            ScoringPoint(point_order=2, content="加强人才建设 ", max_score=2, keywords=["人才"]),
        )

        report = validator.validate(rubric)

        assert not report.is_valid
        assert any("Duplicate scoring point" in e for e in report.errors)

    def test_short_content(self, validator: RubricValidator) -> None:
        rubric = make_rubric(ScoringPoint(point_order=1, content="创", max_score=2, keywords=["创"]))

        report = validator.validate(rubric)

        assert any("too short" in e for e in report.errors)

    def test_warnings(self, validator: RubricValidator) -> None:
        rubric = make_rubric(
            ScoringPoint(point_order=1, content="坚持创新驱动", max_score=0),
            reference_answer="",
        )

        report = validator.validate(rubric)

        assert report.is_valid
        assert any("Reference answer is empty" in w for w in report.warnings)
        assert any("Worth 0 points" in w for w in report.warnings)
        assert any("No keywords" in w for w in report.warnings)
        assert any("hybrid" in w for w in report.warnings)

    def test_validate_or_raise(self, validator: RubricValidator) -> None:
        duplicate = ScoringPoint(point_order=1, content="要点内容", max_score=1, keywords=["要点"])
        rubric = make_rubric(duplicate, duplicate.model_copy(update={"point_order": 2}))

        with pytest.raises(RubricValidationError) as exc_info:
            validator.validate_or_raise(rubric)

        assert len(exc_info.value.errors) == 1
        assert "Rubric validation failed" in str(exc_info.value)

    def test_validate_or_raise_returns_warnings(self, validator: RubricValidator) -> None:
        rubric = make_rubric(ScoringPoint(point_order=1, content="坚持创新驱动", max_score=3))
        assert len(validator.validate_or_raise(rubric)) == 1
