"""
Decomposer Module
=================

Explains names the Catalog Matcher could not resolve as combinations of
known catalog keywords, and turns what remains into curation candidates.

The Decomposer never touches the catalog and never re-labels the original
extraction. Every keyword it reports occurs in the source name.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from uuid import UUID

from clinic_radar.core.enums import DecompositionSource
from clinic_radar.core.schema import CompoundCandidate, CompoundWord
from clinic_radar.ingestion.matcher import CatalogMatcher, MatchReport, normalize_key

logger = logging.getLogger(__name__)

# Abbreviated compounds join the leading syllables of two treatment names,
# e.g. 울(쎄라) + 써(마지) = 울써마지
COMPOUND_PREFIX_PATTERN = re.compile(r"^(울|써|인|슈|텐|올|포|쥬|리|실|보)(써|쥬|리|슈|모|포|텐|올|인)")

_NON_WORD = re.compile(r"[^\w]+")


def source_slice(raw_name: str, keyword: str) -> str | None:
    """
    Return the part of raw_name that spells keyword.

    Case and whitespace between characters are ignored; None when the
    keyword does not occur in raw_name as written.
    """
    chars = [re.escape(ch) for ch in keyword if not ch.isspace()]
    if not chars:
        return None
    m = re.search(r"\s*".join(chars), raw_name, re.IGNORECASE)
    return m.group(0) if m else None


@dataclass
class Decomposition:
    """How one unresolved name was explained."""

    raw_name: str
    source: DecompositionSource | None = None
    components: list[str] = field(default_factory=list)
    matched_keywords: list[str] = field(default_factory=list)
    residual: str = ""
    note: str = ""

    @property
    def is_candidate(self) -> bool:
        """Curated dictionary hits are already explained; anything else found needs review."""
        return self.source in (DecompositionSource.KEYWORDS, DecompositionSource.PATTERN)


@dataclass
class DecompositionReport:
    """Decompositions for a run plus the candidates they produced."""

    results: list[Decomposition] = field(default_factory=list)
    candidates: list[CompoundCandidate] = field(default_factory=list)

    @property
    def candidate_names(self) -> list[str]:
        return [c.raw_text for c in self.candidates]


class Decomposer:
    """Splits unresolved names into catalog keywords and a residual."""

    def __init__(self, matcher: CatalogMatcher, compounds: list[CompoundWord] | None = None) -> None:
        self.matcher = matcher
        self._compounds = sorted(
            (c for c in compounds or [] if c.compound.strip()),
            key=lambda c: (-len(normalize_key(c.compound)), c.compound),
        )

    def decompose(self, raw_name: str) -> Decomposition:
        """
        Decompose a single name.

        Args:
            raw_name: A name the matcher could not resolve

        Returns:
            Decomposition; ``source`` is None when nothing was recognized
        """
        key = normalize_key(raw_name)
        if not key:
            return Decomposition(raw_name=raw_name)

        for word in self._compounds:
            if normalize_key(word.compound) in key:
                text = source_slice(raw_name, word.compound)
                return Decomposition(
                    raw_name=raw_name,
                    source=DecompositionSource.DICTIONARY,
                    components=list(word.components),
                    matched_keywords=[text] if text else [],
                    note=word.note,
                )

        # Hits only found through OCR correction are dropped
        found = []
        for hit in self.matcher.scan_keywords(key):
            text = source_slice(raw_name, hit.keyword)
            if text is not None:
                found.append((hit, text))

        if found:
            components: list[str] = []
            keywords: list[str] = []
            for hit, text in found:
                if hit.canonical_name not in components:
                    components.append(hit.canonical_name)
                if text not in keywords:
                    keywords.append(text)
            return Decomposition(
                raw_name=raw_name,
                source=DecompositionSource.KEYWORDS,
                components=components,
                matched_keywords=keywords,
                residual=self._residual(key, [(h.start, h.end) for h, _ in found]),
            )

        if COMPOUND_PREFIX_PATTERN.match(key):
            return Decomposition(
                raw_name=raw_name,
                source=DecompositionSource.PATTERN,
                residual=_NON_WORD.sub("", key),
            )

        return Decomposition(raw_name=raw_name)

    def decompose_unresolved(
        self, report: MatchReport, site_id: UUID | None = None
    ) -> DecompositionReport:
        """
        Decompose every name the matcher left unresolved.

        Candidates are de-duplicated by normalized name within the run.
        """
        result = DecompositionReport()
        seen: set[str] = set()

        for raw_name in report.unresolved:
            decomposition = self.decompose(raw_name)
            result.results.append(decomposition)
            if not decomposition.is_candidate:
                continue

            key = normalize_key(raw_name)
            if key in seen:
                continue
            seen.add(key)
            result.candidates.append(
                CompoundCandidate(
                    raw_text=raw_name.strip(),
                    matched_keywords=decomposition.matched_keywords,
                    components=decomposition.components,
                    residual=decomposition.residual,
                    source=decomposition.source,
                    first_site_id=site_id,
                )
            )

        if result.candidates:
            logger.info(f"Found {len(result.candidates)} compound candidates")
        return result

    @staticmethod
    def _residual(key: str, spans: list[tuple[int, int]]) -> str:
        kept = [ch for i, ch in enumerate(key) if not any(s <= i < e for s, e in spans)]
        return _NON_WORD.sub("", "".join(kept))
