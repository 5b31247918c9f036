"""
Rubric parser module.

Parses caller-supplied rubric text into a CustomRubric. Two formats are
accepted: a JSON document, or plain text with one numbered scoring point
per line.
"""

import logging
import re
from pathlib import Path
from typing import Any

import json5
from pydantic import ValidationError

from essay_grader.models import CustomRubric, ScoringPoint

logger = logging.getLogger(__name__)


class RubricParseError(Exception):
    """Raised when rubric parsing fails."""

    def __init__(self, message: str, line_number: int | None = None):
        self.line_number = line_number
        if line_number:
            message = f"Line {line_number}: {message}"
        super().__init__(message)


class RubricParser:
    """
    Parses rubric text into a CustomRubric.

    Supports formats:
    1. JSON: ``{"title", "reference_answer", "word_limit", "scoring_points": [...]}``
       where each point has ``content``, ``score`` and optional ``keywords``,
       ``synonyms``, ``must_contain`` and ``semantic_threshold``.
    2. Text: "1. 推动科技创新 (4分) 关键词: 创新, 驱动; 同义词: 革新"
       with optional "题目:", "参考答案:" and "字数限制:" lines.
    """

    POINT_PATTERN = re.compile(
        r"^\s*(\d+)\s*[.、．)）]\s*"  # Number with separator
        r"(.+?)\s*"  # Point content
        r"[(（]\s*(\d+(?:\.\d+)?)\s*(?:分|points?|pts?|marks?)\s*[)）]"  # Score in parentheses
        r"(.*)$",  # Optional term lists
        re.IGNORECASE,
    )

    TERMS_PATTERN = re.compile(
        r"(关键词|同义词|必含|keywords?|synonyms?|must[_ ]contain)\s*[:：]\s*([^;；|]*)",
        re.IGNORECASE,
    )

    META_PATTERN = re.compile(
        r"^\s*(题目|标题|title|参考答案|reference(?:\s+answer)?|字数限制|word\s*limit)\s*[:：]\s*(.*)$",
        re.IGNORECASE,
    )

    TERM_SPLIT = re.compile(r"[,，、]")

    TERM_FIELDS = {
        "关键词": "keywords",
        "keyword": "keywords",
        "keywords": "keywords",
        "同义词": "synonyms",
        "synonym": "synonyms",
        "synonyms": "synonyms",
        "必含": "must_contain",
        "must contain": "must_contain",
    }

    def parse(self, content: str, title: str = "自定义题目") -> CustomRubric:
        """
        Parse rubric content into a CustomRubric.

        Args:
            content: Raw rubric text, JSON or line format.
            title: Title used when the content does not name one.

        Returns:
            Structured CustomRubric.

        Raises:
            RubricParseError: If parsing fails.
        """
        if not content or not content.strip():
            raise RubricParseError("Rubric content is empty")

        if content.lstrip().startswith("{"):
            return self._parse_json(content, title)
        return self._parse_text(content, title)

    def parse_file(self, path: Path) -> CustomRubric:
        """Parse a rubric file; the file name is the fallback title."""
        try:
            content = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise RubricParseError(f"Cannot read rubric file {path}: {e}") from e
        return self.parse(content, title=Path(path).stem)

    def _parse_json(self, content: str, title: str) -> CustomRubric:
        try:
            data = json5.loads(content)
        except ValueError as e:
            raise RubricParseError(f"Invalid JSON rubric: {e}") from e

        if not isinstance(data, dict):
            raise RubricParseError("JSON rubric must be an object")

        raw_points = data.get("scoring_points") or []
        if not isinstance(raw_points, list):
            raise RubricParseError("'scoring_points' must be a list")

        points: list[ScoringPoint] = []
        for order, raw in enumerate(raw_points, start=1):
            if not isinstance(raw, dict):
                raise RubricParseError(f"Scoring point {order} must be an object")
            points.append(self._build_point({"point_order": order, **raw}, order))

        return self._build_rubric(
            {
                "title": data.get("title") or data.get("question_title") or title,
                "reference_answer": data.get("reference_answer") or "",
                "word_limit": data.get("word_limit"),
                "scoring_points": tuple(points),
            }
        )

    def _parse_text(self, content: str, title: str) -> CustomRubric:
        parsed_title: str | None = None
        reference_lines: list[str] = []
        word_limit: int | None = None
        points: list[ScoringPoint] = []
        in_reference = False

        for line_number, line in enumerate(content.splitlines(), start=1):
            stripped = line.strip()
            if not stripped:
                continue

            if stripped.startswith("#"):
                parsed_title = parsed_title or stripped.lstrip("#").strip()
                in_reference = False
                continue

            point_match = self.POINT_PATTERN.match(stripped)
            if point_match:
                points.append(self._point_from_line(point_match, len(points) + 1, line_number))
                in_reference = False
                continue

            meta_match = self.META_PATTERN.match(stripped)
            if meta_match:
                label = meta_match.group(1).lower()
                value = meta_match.group(2).strip()
                if label in ("题目", "标题", "title"):
                    parsed_title = value
                    in_reference = False
                elif label == "参考答案" or label.startswith("reference"):
                    if value:
                        reference_lines.append(value)
                    in_reference = True
                else:
                    word_limit = self._parse_word_limit(value, line_number)
                    in_reference = False
                continue

            # Reference answers may span several lines
            if in_reference:
                reference_lines.append(stripped)
            else:
                logger.debug("Skipping unrecognized rubric line %d: %s", line_number, stripped)

        if not points:
            raise RubricParseError(
                "No scoring points found. Expected lines like:\n"
                "  1. 推动科技创新 (4分) 关键词: 创新, 驱动\n"
                "  OR: 1. Drive innovation (4 points) keywords: innovation, drive"
            )

        return self._build_rubric(
            {
                "title": parsed_title or title,
                "reference_answer": "\n".join(reference_lines),
                "word_limit": word_limit,
                "scoring_points": tuple(points),
            }
        )

    def _point_from_line(self, match: re.Match[str], order: int, line_number: int) -> ScoringPoint:
        fields: dict[str, Any] = {
            "point_order": order,
            "content": match.group(2).strip(),
            "max_score": match.group(3),
        }
        for label, values in self.TERMS_PATTERN.findall(match.group(4)):
            field = self.TERM_FIELDS[re.sub(r"[_\s]+", " ", label.lower())]
            terms = [t.strip() for t in self.TERM_SPLIT.split(values) if t.strip()]
            fields[field] = tuple(fields.get(field, ())) + tuple(terms)
        return self._build_point(fields, order, line_number)

    @staticmethod
    def _parse_word_limit(value: str, line_number: int) -> int:
        digits = re.search(r"\d+", value)
        if not digits or int(digits.group()) <= 0:
            raise RubricParseError(f"Invalid word limit: {value}", line_number)
        return int(digits.group())

    @staticmethod
    def _build_point(fields: dict[str, Any], order: int, line_number: int | None = None) -> ScoringPoint:
        try:
            return ScoringPoint.model_validate(fields)
        except ValidationError as e:
            raise RubricParseError(f"Invalid scoring point {order}: {e}", line_number) from e

    @staticmethod
    def _build_rubric(fields: dict[str, Any]) -> CustomRubric:
        try:
            return CustomRubric.model_validate(fields)
        except ValidationError as e:
            raise RubricParseError(f"Invalid rubric: {e}") from e
