"""
Unit tests for the structured response parser.
"""

import json

import pytest

from essay_grader.grading import StructuredResponseParser


@pytest.fixture
def parser() -> StructuredResponseParser:
    return StructuredResponseParser()


class TestStructuredResponseParser:
    """Tests for StructuredResponseParser."""

    @pytest.mark.parametrize("text", ["", "   \n\t", None])
    def test_empty_text_returns_fallback(self, parser: StructuredResponseParser, text) -> None:
        """Test empty output returns the very fallback object passed in."""
        fallback = {"default": True}
        assert parser.parse(text, fallback) is fallback

    def test_well_formed_json_matches_standard_parser(self, parser: StructuredResponseParser) -> None:
        """Test well-formed JSON parses exactly as json.loads would."""
        text = json.dumps(
            {"overall_comment": "很好", "dimensions": {"logic": 20}, "items": [1, 2.5, None, True]},
            ensure_ascii=False,
        )
        assert parser.parse(text, None) == json.loads(text)

    def test_parse_fenced_block(self, parser: StructuredResponseParser) -> None:
        """Test parsing JSON wrapped in a markdown code block."""
        text = '下面是批改结果：\n```json\n{"score": 8, "comment": "良好"}\n```\n以上。'
        assert parser.parse(text, None) == {"score": 8, "comment": "良好"}

    def test_parse_unlabelled_fence(self, parser: StructuredResponseParser) -> None:
        """Test a fence without a language label is also recognised."""
        text = '```\n{"score": 5}\n```'
        assert parser.parse(text, None) == {"score": 5}

    def test_parse_object_surrounded_by_prose(self, parser: StructuredResponseParser) -> None:
        """Test the outermost braces are sliced out of surrounding text."""
        text = '好的，结果如下 {"a": {"b": 1}} 希望有帮助'
        assert parser.parse(text, None) == {"a": {"b": 1}}

    def test_parse_trailing_commas_and_comments(self, parser: StructuredResponseParser) -> None:
        """Test JSON5 leniency: trailing commas, comments and unquoted keys."""
        text = """{
            // model commentary
            overall_comment: '不错',
            "strengths": ["条理清晰",],
        }"""
        assert parser.parse(text, None) == {"overall_comment": "不错", "strengths": ["条理清晰"]}

    def test_parse_python_literal_last_resort(self, parser: StructuredResponseParser) -> None:
        """Test Python-style literals are read without executing code."""
        text = "{'passed': True, 'score': None}"
        assert parser.parse(text, None) == {"passed": True, "score": None}

    def test_bare_number(self, parser: StructuredResponseParser) -> None:
        """Test a bare numeric reply parses to a number."""
        assert parser.parse(" 0.82 ", None) == 0.82

    def test_plain_prose_returns_fallback(self, parser: StructuredResponseParser) -> None:
        """Test prose with no structure yields the fallback."""
        fallback = {"overall_comment": "fallback"}
        text = "这篇作答整体不错，但是遗漏了一些要点，建议补充。"
        assert parser.parse(text, fallback) is fallback

    @pytest.mark.parametrize(
        "text",
        [
            "{{{",
            '{"unterminated": "value',
            "```json\n{broken: [}\n```",
            "__import__('os').system('echo unsafe')",
        ],
    )
    def test_malformed_text_never_raises(self, parser: StructuredResponseParser, text: str) -> None:
        """Test malformed or hostile text returns the fallback instead of raising."""
        fallback = object()
        assert parser.parse(text, fallback) is fallback

    def test_parse_list(self, parser: StructuredResponseParser) -> None:
        """Test top-level arrays are returned as parsed."""
        assert parser.parse("[1, 2, 3]", None) == [1, 2, 3]
