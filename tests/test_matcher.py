"""
Unit tests for deterministic scoring point matching.
"""

import pytest

from essay_grader.grading import ScoringPointMatcher
from essay_grader.models import MatchType, ScoringPoint


def make_point(**overrides) -> ScoringPoint:
    fields = {"point_order": 1, "content": "坚持创新驱动发展", "max_score": 4}
    fields.update(overrides)
    return ScoringPoint(**fields)


@pytest.fixture
def matcher() -> ScoringPointMatcher:
    return ScoringPointMatcher()


class TestScoringPointMatcher:
    """Tests for ScoringPointMatcher."""

    def test_must_contain_is_a_hard_gate(self, matcher: ScoringPointMatcher) -> None:
        """Test a missing must-contain phrase blocks all keyword credit."""
        point = make_point(keywords=["防范", "化解", "重大"], must_contain=["风险"])
        answer = "要防范化解重大问题，守住底线。"

        match = matcher.match(answer, point)

        assert match.is_matched is False
        assert match.match_type is MatchType.NONE

    def test_all_keywords_present_is_full_hit(self, matcher: ScoringPointMatcher) -> None:
        """Test every keyword present gives a keyword match."""
        point = make_point(keywords=["创新", "驱动"])

        match = matcher.match("坚持创新驱动发展战略", point)

        assert match.is_matched is True
        assert match.match_type is MatchType.KEYWORD
        assert match.match_ratio == 1.0
        assert match.matched_text == "创新, 驱动"

    def test_low_ratio_is_no_match(self, matcher: ScoringPointMatcher) -> None:
        """Test one of four keywords falls below the partial band."""
        point = make_point(keywords=["创新", "驱动", "引领", "发展"])

        match = matcher.match("我们要重视创新。", point)

        assert match.is_matched is False
        assert match.match_type is MatchType.NONE
        assert match.match_ratio == 0.25

    def test_no_terms_found(self, matcher: ScoringPointMatcher) -> None:
        point = make_point(keywords=["创新"])
        match = matcher.match("完全无关的内容", point)
        assert match.match_type is MatchType.NONE
        assert match.matched_text is None

    @pytest.mark.parametrize(
        ("matched", "total", "expected"),
        [
            (4, 5, MatchType.KEYWORD),  # exactly 0.8
            (2, 5, MatchType.PARTIAL),  # exactly 0.4
            (3, 8, MatchType.NONE),  # 0.375
            (5, 5, MatchType.KEYWORD),
            (3, 5, MatchType.PARTIAL),
        ],
    )
    def test_ratio_boundaries(
        self, matcher: ScoringPointMatcher, matched: int, total: int, expected: MatchType
    ) -> None:
        """Test the 0.8 and 0.4 band edges are inclusive."""
        keywords = [f"词{i}" for i in range(total)]
        answer = "，".join(keywords[:matched])

        match = matcher.match(answer, make_point(keywords=keywords))

        assert match.match_type is expected
        assert match.is_matched is (expected is not MatchType.NONE)

    def test_partial_hit_reports_evidence(self, matcher: ScoringPointMatcher) -> None:
        point = make_point(keywords=["人才", "培养", "引进", "激励"])

        match = matcher.match("加强人才培养与引进", point)

        assert match.match_type is MatchType.PARTIAL
        assert match.matched_text == "人才, 培养, 引进"

    def test_synonyms_count_toward_numerator_only(self, matcher: ScoringPointMatcher) -> None:
        """Test a synonym can complete a full hit without raising the denominator."""
        point = make_point(keywords=["创新", "驱动"], synonyms=["革新"])

        match = matcher.match("以革新为动力，坚持创新", point)

        assert match.match_type is MatchType.KEYWORD
        assert match.match_ratio == 1.0

    def test_synonyms_only_point(self, matcher: ScoringPointMatcher) -> None:
        """Test a point with no keywords divides by one."""
        point = make_point(keywords=[], synonyms=["革新"])

        match = matcher.match("推动革新", point)

        assert match.match_type is MatchType.KEYWORD

    def test_case_insensitive(self, matcher: ScoringPointMatcher) -> None:
        point = make_point(keywords=["Innovation", "AI"], must_contain=["Digital"])

        match = matcher.match("digital innovation powered by ai", point)

        assert match.match_type is MatchType.KEYWORD

    def test_blank_terms_are_ignored(self, matcher: ScoringPointMatcher) -> None:
        """Test empty keywords never match every answer."""
        point = make_point(keywords=["", "  ", "创新"], must_contain=[""])

        assert point.keywords == ("创新",)
        assert point.must_contain == ()
        assert matcher.match("毫不相关", point).match_type is MatchType.NONE

    def test_custom_bands(self) -> None:
        """Test configurable ratio bands."""
        matcher = ScoringPointMatcher(full_ratio=0.5, partial_ratio=0.25)
        point = make_point(keywords=["创新", "驱动", "引领", "发展"])

        assert matcher.match("创新驱动", point).match_type is MatchType.KEYWORD
        assert matcher.match("创新", point).match_type is MatchType.PARTIAL

    def test_matching_is_deterministic(self, matcher: ScoringPointMatcher) -> None:
        point = make_point(keywords=["人才", "培养", "引进", "激励"])
        answer = "加强人才培养"
        assert matcher.match(answer, point) == matcher.match(answer, point)
