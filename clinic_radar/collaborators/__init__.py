"""
Collaborator Registry Module
============================

Central registry for content analyzers, plus the collaborator contracts.
Provides factory functions for creating analyzers by name.
"""

from __future__ import annotations

from typing import Type

from clinic_radar.collaborators.base import (
    AnalysisResult,
    BaseCollector,
    BaseContentAnalyzer,
    BaseVisualRecognizer,
    RawContent,
    RecognitionResult,
    ScreenshotInput,
    Subpage,
)
from clinic_radar.collaborators.http import HttpCollector
from clinic_radar.collaborators.keyword import KeywordContentAnalyzer
from clinic_radar.ingestion.config import MatchingConfig
from clinic_radar.ingestion.matcher import CatalogMatcher


# Registry mapping analyzer names to their classes
ANALYZER_REGISTRY: dict[str, Type[BaseContentAnalyzer]] = {
    "keyword": KeywordContentAnalyzer,
}


def get_analyzer(
    analyzer_type: str,
    matcher: CatalogMatcher,
    config: MatchingConfig | None = None,
) -> BaseContentAnalyzer | None:
    """
    Get an analyzer instance by type name.

    Args:
        analyzer_type: Name of the analyzer (e.g., "keyword")
        matcher: Catalog matcher the analyzer resolves names with
        config: Optional matching configuration

    Returns:
        Analyzer instance, or None if type not found
    """
    analyzer_class = ANALYZER_REGISTRY.get(analyzer_type)
    if analyzer_class is None:
        return None
    return analyzer_class(matcher, config)


def register_analyzer(name: str, analyzer_class: Type[BaseContentAnalyzer]) -> None:
    """
    Register a new analyzer type.

    Args:
        name: Name to register the analyzer under
        analyzer_class: Analyzer class (must inherit from BaseContentAnalyzer)
    """
    if not issubclass(analyzer_class, BaseContentAnalyzer):
        raise TypeError(f"{analyzer_class} must inherit from BaseContentAnalyzer")
    ANALYZER_REGISTRY[name] = analyzer_class


def list_analyzers() -> list[str]:
    """List all registered analyzer names."""
    return list(ANALYZER_REGISTRY.keys())


def get_analyzer_info(analyzer_type: str) -> dict[str, str] | None:
    """Get name, version and class of an analyzer type."""
    analyzer_class = ANALYZER_REGISTRY.get(analyzer_type)
    if analyzer_class is None:
        return None

    return {
        "name": analyzer_class.ANALYZER_NAME,
        "version": analyzer_class.ANALYZER_VERSION,
        "class": analyzer_class.__name__,
    }


__all__ = [
    # Registry functions
    "get_analyzer",
    "register_analyzer",
    "list_analyzers",
    "get_analyzer_info",
    "ANALYZER_REGISTRY",
    # Contracts
    "AnalysisResult",
    "BaseCollector",
    "BaseContentAnalyzer",
    "BaseVisualRecognizer",
    "RawContent",
    "RecognitionResult",
    "ScreenshotInput",
    "Subpage",
    # Concrete collaborators
    "HttpCollector",
    "KeywordContentAnalyzer",
]
