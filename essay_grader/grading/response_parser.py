"""
Structured response parser for free-form model output.

Models asked for JSON routinely wrap it in markdown fences, surround it with
prose, or emit trailing commas, comments and single-quoted keys. The parser
recovers the structured value through progressively more permissive tiers
and hands back the caller's fallback when every tier fails. It never raises.
"""

import ast
import json
import logging
import re
from typing import Any, TypeVar

import json5

logger = logging.getLogger(__name__)

T = TypeVar("T")

_LITERAL_ERRORS = (ValueError, SyntaxError, TypeError, MemoryError, RecursionError)


class StructuredResponseParser:
    """
    Extracts a structured value from arbitrary model text.

    Tiers, stopping at the first success:
    1. Empty text returns the fallback.
    2. A fenced code block (optionally labelled ``json``) is parsed.
    3. Otherwise the span from the first ``{`` to the last ``}`` is parsed.
    4. Parsing uses a JSON5 reader, which tolerates trailing commas,
       unquoted or single-quoted keys and comments.
    5. As a last resort the whole trimmed text is read as JSON5 and then
       as a Python literal (never evaluated as code).
    6. The fallback is returned.
    """

    FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)

    def parse(self, text: str | None, fallback: T) -> T | Any:
        """
        Parse model text into a structured value.

        Args:
            text: Raw model output.
            fallback: Value returned when nothing can be recovered.

        Returns:
            The parsed value, or ``fallback``.
        """
        if not text or not text.strip():
            logger.debug("Empty model output, using fallback")
            return fallback

        trimmed = text.strip()
        candidate = self._extract_candidate(trimmed)

        value = self._parse_permissive(candidate)
        if value is not _FAILED:
            return value

        logger.debug("Permissive parse failed, trying last-resort literal read")
        value = self._parse_last_resort(trimmed)
        if value is not _FAILED:
            return value

        logger.warning("Could not parse model output, using fallback: %.200s", trimmed)
        return fallback

    def _extract_candidate(self, text: str) -> str:
        """Pick the substring most likely to hold the structured value."""
        # Remove markdown code block if present
        fence_match = self.FENCE_PATTERN.search(text)
        if fence_match:
            logger.debug("Extracted structured value from code block")
            return fence_match.group(1)

        first_open = text.find("{")
        last_close = text.rfind("}")
        if first_open != -1 and last_close > first_open:
            logger.debug("Extracted outermost object from text")
            return text[first_open : last_close + 1]

        return text

    def _parse_permissive(self, candidate: str) -> Any:
        try:
            return json.loads(candidate)
        except ValueError:
            pass

        try:
            return json5.loads(candidate)
        except ValueError as e:
            logger.debug("JSON5 parse failed: %s", e)
            return _FAILED

    def _parse_last_resort(self, text: str) -> Any:
        try:
            return json5.loads(text)
        except ValueError:
            pass

        try:
            return ast.literal_eval(text)
        except _LITERAL_ERRORS:
            return _FAILED


class _Failed:
    """Sentinel for a failed tier; distinct from any parsed value including None."""

    def __repr__(self) -> str:
        return "<FAILED>"


_FAILED = _Failed()
