"""
Deterministic scoring point matcher.

Cheap, case-insensitive keyword matching that runs before any model call.
A full keyword hit awards the point outright; anything weaker is handed to
the semantic evaluator.
"""

from typing import NamedTuple

from essay_grader.models import MatchType, ScoringPoint


class KeywordMatch(NamedTuple):
    """Outcome of matching one scoring point against an answer."""

    is_matched: bool
    match_type: MatchType
    matched_text: str | None = None
    match_ratio: float = 0.0


NO_MATCH = KeywordMatch(is_matched=False, match_type=MatchType.NONE)


class ScoringPointMatcher:
    """
    Matches scoring points by must-contain phrases, keywords and synonyms.

    The match ratio is ``matched terms / len(keywords)``: synonyms add to
    the numerator but never to the denominator, so a point may reach a full
    hit through synonyms alone.
    """

    def __init__(self, full_ratio: float = 0.8, partial_ratio: float = 0.4):
        self._full_ratio = full_ratio
        self._partial_ratio = partial_ratio

    def match(self, answer: str, point: ScoringPoint) -> KeywordMatch:
        """
        Match one scoring point against the answer text.

        Args:
            answer: The candidate's answer.
            point: The scoring point to check.

        Returns:
            KeywordMatch with kind keyword, partial or none.
        """
        answer_lower = answer.lower()

        # Must-contain phrases are a hard gate
        if point.must_contain and not all(
            phrase.lower() in answer_lower for phrase in point.must_contain
        ):
            return NO_MATCH

        candidates = self._unique_terms(point.keywords + point.synonyms)
        matched = [term for term in candidates if term.lower() in answer_lower]
        if not matched:
            return NO_MATCH

        ratio = len(matched) / max(1, len(point.keywords))
        matched_text = ", ".join(matched)

        if ratio >= self._full_ratio:
            return KeywordMatch(True, MatchType.KEYWORD, matched_text, ratio)
        if ratio >= self._partial_ratio:
            return KeywordMatch(True, MatchType.PARTIAL, matched_text, ratio)
        return KeywordMatch(False, MatchType.NONE, None, ratio)

    @staticmethod
    def _unique_terms(terms: tuple[str, ...]) -> list[str]:
        seen: set[str] = set()
        unique: list[str] = []
        for term in terms:
            key = term.lower()
            if key not in seen:
                seen.add(key)
                unique.append(term)
        return unique
