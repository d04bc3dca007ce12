"""Tests for the keyword analyzer and the analyzer registry."""

import pytest

from clinic_radar.collaborators import (
    ANALYZER_REGISTRY,
    BaseContentAnalyzer,
    KeywordContentAnalyzer,
    get_analyzer,
    get_analyzer_info,
    list_analyzers,
    register_analyzer,
)
from clinic_radar.collaborators.base import AnalysisResult
from clinic_radar.core.errors import RecognitionError
from clinic_radar.ingestion.matcher import CatalogMatcher

PAGE_TEXT = "김철수 대표원장\n보유 장비 울쎄라 써마지FLX\n리쥬란힐러 2cc 30만원\n울슈 25만원"


class TestKeywordContentAnalyzer:
    """Tests for KeywordContentAnalyzer."""

    def test_analyze(self, matcher: CatalogMatcher) -> None:
        result = KeywordContentAnalyzer(matcher).analyze(PAGE_TEXT)

        assert result.doctors == ["김철수"]
        assert result.equipment == ["울쎄라", "써마지FLX"]
        assert result.treatments == ["리쥬란힐러", "울슈"]
        assert result.tokens_used == 0

    def test_equipment_categories_configurable(self, matcher: CatalogMatcher) -> None:
        from clinic_radar.ingestion.config import MatchingConfig

        analyzer = KeywordContentAnalyzer(matcher, MatchingConfig(equipment_categories=["booster"]))
        result = analyzer.analyze(PAGE_TEXT)

        assert result.equipment == ["리쥬란힐러"]
        assert "울쎄라" in result.treatments

    def test_titles_are_not_doctors(self, matcher: CatalogMatcher) -> None:
        result = KeywordContentAnalyzer(matcher).analyze("병원 대표원장 인사말")
        assert result.doctors == []

    def test_empty_text(self, matcher: CatalogMatcher) -> None:
        with pytest.raises(RecognitionError):
            KeywordContentAnalyzer(matcher).analyze("   ")

    def test_to_dict(self, matcher: CatalogMatcher) -> None:
        data = KeywordContentAnalyzer(matcher).analyze(PAGE_TEXT).to_dict()
        assert set(data) == {"doctors", "equipment", "treatments", "tokens_used"}


class TestAnalyzerRegistry:
    """Tests for the analyzer registry."""

    def test_keyword_registered(self, matcher: CatalogMatcher) -> None:
        assert "keyword" in list_analyzers()
        assert isinstance(get_analyzer("keyword", matcher), KeywordContentAnalyzer)

    def test_unknown_analyzer(self, matcher: CatalogMatcher) -> None:
        assert get_analyzer("gpt", matcher) is None
        assert get_analyzer_info("gpt") is None

    def test_info(self) -> None:
        info = get_analyzer_info("keyword")
        assert info == {"name": "keyword", "version": "1.0.0", "class": "KeywordContentAnalyzer"}

    def test_register_custom(self, matcher: CatalogMatcher, monkeypatch: pytest.MonkeyPatch) -> None:
        class StaticAnalyzer(BaseContentAnalyzer):
            ANALYZER_NAME = "static"

            def __init__(self, matcher, config=None) -> None:
                self.matcher = matcher

            def analyze(self, text: str) -> AnalysisResult:
                return AnalysisResult(equipment=["울쎄라"])

        monkeypatch.setitem(ANALYZER_REGISTRY, "static", StaticAnalyzer)
        register_analyzer("static", StaticAnalyzer)
        assert get_analyzer("static", matcher).analyze("x").equipment == ["울쎄라"]

    def test_register_rejects_non_analyzer(self) -> None:
        with pytest.raises(TypeError):
            register_analyzer("bad", dict)
