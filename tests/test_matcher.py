"""Tests for catalog matching."""

import pytest

from clinic_radar.core.enums import MatchMethod
from clinic_radar.core.schema import CatalogEntry
from clinic_radar.ingestion.config import MatchingConfig
from clinic_radar.ingestion.matcher import (
    CatalogMatcher,
    correct_ocr_noise,
    levenshtein_distance,
    normalize_key,
    string_similarity,
)


class TestNormalization:
    """Tests for key normalization."""

    def test_full_width_folded(self) -> None:
        assert correct_ocr_noise("ＦＬＸ") == "FLX"

    def test_shot_misreads(self) -> None:
        assert correct_ocr_noise("300숏") == "300샷"

    def test_normalize_key(self) -> None:
        assert normalize_key(" 써마지 FLX ") == "써마지flx"


class TestMatch:
    """Tests for CatalogMatcher.match."""

    def test_exact_keyword(self, matcher: CatalogMatcher) -> None:
        result = matcher.match("써마지FLX")
        assert result.canonical_name == "써마지"
        assert result.method == MatchMethod.EXACT
        assert result.score == 1.0

    def test_exact_is_case_insensitive(self, matcher: CatalogMatcher) -> None:
        result = matcher.match("ULTHERA")
        assert result.canonical_name == "울쎄라"
        assert result.method == MatchMethod.EXACT

    def test_contains(self, matcher: CatalogMatcher) -> None:
        result = matcher.match("울쎄라 리프팅 300샷")
        assert result.canonical_name == "울쎄라"
        assert result.method == MatchMethod.CONTAINS
        assert 0 < result.score < 1

    def test_fuzzy(self, matcher: CatalogMatcher) -> None:
        result = matcher.match("thermaje")
        assert result.canonical_name == "써마지"
        assert result.method == MatchMethod.FUZZY
        assert result.score >= 0.85

    def test_unresolved_keeps_raw_name(self, matcher: CatalogMatcher) -> None:
        result = matcher.match("아쿠아필")
        assert not result.matched
        assert result.display_name == "아쿠아필"

    def test_compound_stays_unresolved(self, matcher: CatalogMatcher) -> None:
        assert not matcher.match("울써마지").matched

    def test_multiple_entries_stay_unresolved(self, matcher: CatalogMatcher) -> None:
        assert not matcher.match("인모드슈링크").matched

    def test_blank_name(self, matcher: CatalogMatcher) -> None:
        assert not matcher.match("   ").matched

    def test_deterministic(self, matcher: CatalogMatcher) -> None:
        names = ["써마지FLX", "thermaje", "울쎄라 300샷", "아쿠아필"]
        first = [matcher.match(n) for n in names]
        second = [matcher.match(n) for n in names]
        assert first == second

    def test_shared_keyword_goes_to_first_canonical_name(self) -> None:
        entries = [
            CatalogEntry(canonical_name="나장비", category="rf", keywords=["공통"]),
            CatalogEntry(canonical_name="가장비", category="rf", keywords=["공통"]),
        ]
        matcher = CatalogMatcher(entries)
        assert matcher.match("공통").canonical_name == "가장비"

    def test_threshold_from_config(self, catalog_seed) -> None:
        strict = CatalogMatcher(
            catalog_seed.entries, catalog_seed.compounds, MatchingConfig(fuzzy_threshold=0.95)
        )
        assert not strict.match("thermaje").matched


class TestMatchAll:
    """Tests for batch matching."""

    def test_report(self, matcher: CatalogMatcher) -> None:
        report = matcher.match_all(["써마지FLX", "울쎄라", "아쿠아필", "써마지"])
        assert report.total == 4
        assert report.matched_count == 3
        assert report.match_rate == pytest.approx(0.75)
        assert report.unresolved == ["아쿠아필"]
        assert report.canonical_names() == ["써마지", "울쎄라", "아쿠아필"]

    def test_empty_report(self, matcher: CatalogMatcher) -> None:
        assert matcher.match_all([]).match_rate is None

    def test_blank_names_skipped(self, matcher: CatalogMatcher) -> None:
        report = matcher.match_all(["울쎄라", "  ", "", "\n"])
        assert report.total == 1
        assert report.match_rate == 1.0
        assert report.canonical_names() == ["울쎄라"]
        assert matcher.match_all(["  "]).match_rate is None


class TestScanKeywords:
    """Tests for keyword scanning."""

    def test_longest_keyword_wins(self, matcher: CatalogMatcher) -> None:
        hits = matcher.scan_keywords("울쎄라더블로 써마지")
        assert [h.canonical_name for h in hits] == ["울쎄라", "써마지"]
        assert hits[0].keyword == "울쎄라더블로"

    def test_no_hits(self, matcher: CatalogMatcher) -> None:
        assert matcher.scan_keywords("아쿠아필") == []


class TestSimilarity:
    """Tests for string similarity helpers."""

    def test_levenshtein(self) -> None:
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("", "abc") == 3

    def test_similarity_bounds(self) -> None:
        assert string_similarity("abc", "abc") == 1.0
        assert string_similarity("", "abc") == 0.0
        assert string_similarity("thermage", "thermaje") == pytest.approx(0.875)
