"""
Keyword Content Analyzer
========================

Offline analyzer that extracts names from page text with the catalog and
the price patterns instead of a language model. Catalog keyword hits are
split into equipment and treatments by entry category; labels found in
front of prices are reported as treatments so unknown compound names
still reach the matcher and decomposer.
"""

from __future__ import annotations

import logging
import re

from clinic_radar.collaborators.base import AnalysisResult, BaseContentAnalyzer
from clinic_radar.core.errors import RecognitionError
from clinic_radar.ingestion.config import MatchingConfig
from clinic_radar.ingestion.matcher import CatalogMatcher, normalize_key
from clinic_radar.ingestion.pricing import (
    find_man_won_prices,
    find_quantity_prices,
    find_won_prices,
)

logger = logging.getLogger(__name__)

DOCTOR_PATTERN = re.compile(r"([가-힣]{2,4})\s*(?:대표\s*)?원장")

# Titles that precede 원장 but are not names
_NOT_NAMES = {"대표", "병원", "의원", "부원장", "총괄"}


def _dedupe(names: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for name in names:
        key = normalize_key(name)
        if key and key not in seen:
            seen.add(key)
            result.append(name)
    return result


class KeywordContentAnalyzer(BaseContentAnalyzer):
    """Extracts doctors, equipment and treatments without external calls."""

    ANALYZER_NAME = "keyword"
    ANALYZER_VERSION = "1.0.0"

    def __init__(self, matcher: CatalogMatcher, config: MatchingConfig | None = None) -> None:
        self.matcher = matcher
        self.config = config or matcher.config
        self._equipment_categories = {c.lower() for c in self.config.equipment_categories}

    def _is_equipment(self, canonical_name: str | None) -> bool:
        if canonical_name is None:
            return False
        entry = self.matcher.get_entry(canonical_name)
        return entry is not None and entry.category.lower() in self._equipment_categories

    def analyze(self, text: str) -> AnalysisResult:
        if not text or not text.strip():
            raise RecognitionError("No text to analyze", stage="extracting")

        equipment: list[str] = []
        treatments: list[str] = []

        for hit in self.matcher.scan_keywords(text):
            if self._is_equipment(hit.canonical_name):
                equipment.append(hit.keyword)
            else:
                treatments.append(hit.keyword)

        for group in (find_quantity_prices(text), find_man_won_prices(text), find_won_prices(text)):
            for candidate in group:
                if self._is_equipment(self.matcher.match(candidate.label).canonical_name):
                    equipment.append(candidate.label)
                else:
                    treatments.append(candidate.label)

        doctors = [
            m.group(1) for m in DOCTOR_PATTERN.finditer(text) if m.group(1) not in _NOT_NAMES
        ]

        result = AnalysisResult(
            doctors=_dedupe(doctors),
            equipment=_dedupe(equipment),
            treatments=_dedupe(treatments),
        )
        logger.debug(
            f"Keyword analysis: {len(result.equipment)} equipment, "
            f"{len(result.treatments)} treatments, {len(result.doctors)} doctors"
        )
        return result
