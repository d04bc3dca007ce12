"""Tests for decomposition of unresolved names."""

from uuid import uuid4

import pytest

from clinic_radar.core.enums import DecompositionSource
from clinic_radar.ingestion.decomposer import Decomposer
from clinic_radar.ingestion.matcher import CatalogMatcher


@pytest.fixture
def decomposer(matcher: CatalogMatcher, catalog_seed) -> Decomposer:
    return Decomposer(matcher, catalog_seed.compounds)


class TestDecompose:
    """Tests for Decomposer.decompose."""

    def test_dictionary_compound(self, decomposer: Decomposer) -> None:
        result = decomposer.decompose("울써마지리프팅")
        assert result.source == DecompositionSource.DICTIONARY
        assert result.components == ["울쎄라", "써마지"]
        assert result.matched_keywords == ["울써마지"]
        assert not result.is_candidate

    def test_keyword_combination(self, decomposer: Decomposer) -> None:
        result = decomposer.decompose("인모드슈링크")
        assert result.source == DecompositionSource.KEYWORDS
        assert result.components == ["인모드", "슈링크"]
        assert result.residual == ""
        assert result.is_candidate

    def test_keywords_occur_in_source(self, decomposer: Decomposer) -> None:
        name = "써마지flx 인모드"
        result = decomposer.decompose(name)
        assert result.components == ["써마지", "인모드"]
        assert result.matched_keywords == ["써마지flx", "인모드"]
        assert all(k in name for k in result.matched_keywords)

    def test_keyword_spaced_in_source(self, decomposer: Decomposer) -> None:
        result = decomposer.decompose("써마지 FLX인모드")
        assert result.matched_keywords == ["써마지 FLX", "인모드"]

    def test_abbreviation_pattern(self, decomposer: Decomposer) -> None:
        result = decomposer.decompose("울슈")
        assert result.source == DecompositionSource.PATTERN
        assert result.residual == "울슈"
        assert result.components == []

    def test_unrecognized(self, decomposer: Decomposer) -> None:
        result = decomposer.decompose("아쿠아필")
        assert result.source is None
        assert not result.is_candidate


class TestDecomposeUnresolved:
    """Tests for candidate generation from a match report."""

    def test_candidates_from_report(self, matcher: CatalogMatcher, decomposer: Decomposer) -> None:
        site_id = uuid4()
        report = matcher.match_all(["써마지", "인모드슈링크", "울써마지", "아쿠아필", "울슈", "울 슈"])

        result = decomposer.decompose_unresolved(report, site_id)

        assert len(result.results) == 5
        assert result.candidate_names == ["인모드슈링크", "울슈"]
        assert all(c.first_site_id == site_id for c in result.candidates)

    def test_nothing_unresolved(self, matcher: CatalogMatcher, decomposer: Decomposer) -> None:
        result = decomposer.decompose_unresolved(matcher.match_all(["울쎄라"]))
        assert result.results == []
        assert result.candidates == []
