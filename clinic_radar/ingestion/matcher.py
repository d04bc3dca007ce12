"""
Catalog Matcher Module
======================

Maps raw extracted equipment/treatment names to canonical catalog entries.

Matching is a pure function of (name, catalog): the keyword index is
sorted once, every tie is broken by a fixed key, and no state changes
between calls.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field

from clinic_radar.core.enums import MatchMethod, UnitType
from clinic_radar.core.schema import CatalogEntry, CompoundWord
from clinic_radar.ingestion.config import MatchingConfig

logger = logging.getLogger(__name__)

# Common OCR misreads of the shot unit
_OCR_FIXES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"숏|숫|쇼트"), "샷"),
]

_WHITESPACE = re.compile(r"\s+")


def correct_ocr_noise(text: str) -> str:
    """Fold full-width characters to ASCII and fix common OCR misreads."""
    text = unicodedata.normalize("NFKC", text)
    for pattern, replacement in _OCR_FIXES:
        text = pattern.sub(replacement, text)
    return text


def normalize_key(text: str) -> str:
    """Comparison key: OCR-corrected, lowercase, no whitespace."""
    return _WHITESPACE.sub("", correct_ocr_noise(text)).lower()


@dataclass(frozen=True)
class KeywordHit:
    """A catalog keyword found inside a normalized string."""

    keyword: str
    canonical_name: str
    start: int
    end: int


@dataclass
class MatchResult:
    """Outcome of matching one raw name."""

    raw_name: str
    canonical_name: str | None = None
    category: str | None = None
    base_unit_type: UnitType | None = None
    method: MatchMethod | None = None
    score: float = 0.0
    matched_keyword: str | None = None

    @property
    def matched(self) -> bool:
        return self.canonical_name is not None

    @property
    def display_name(self) -> str:
        """Canonical name when matched, otherwise the raw name unchanged."""
        return self.canonical_name or self.raw_name


@dataclass
class MatchReport:
    """Results for a batch of names plus the aggregate match rate."""

    results: list[MatchResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def matched_count(self) -> int:
        return sum(1 for r in self.results if r.matched)

    @property
    def match_rate(self) -> float | None:
        if not self.results:
            return None
        return self.matched_count / self.total

    @property
    def unresolved(self) -> list[str]:
        return [r.raw_name for r in self.results if not r.matched]

    def canonical_names(self) -> list[str]:
        """Display names in input order, without duplicates."""
        names: list[str] = []
        for result in self.results:
            if result.display_name not in names:
                names.append(result.display_name)
        return names


class CatalogMatcher:
    """
    Resolves raw names against the catalog.

    Order of attempts:
    1. Exact key match on a canonical name or keyword
    2. Containment: the longest keywords found inside the name, if they
       all belong to a single entry
    3. Fuzzy: normalized Levenshtein similarity above the threshold

    Names containing a curated compound word, or keywords of more than one
    entry, stay unresolved so the Decomposer can explain them.
    """

    def __init__(
        self,
        entries: list[CatalogEntry],
        compounds: list[CompoundWord] | None = None,
        config: MatchingConfig | None = None,
    ) -> None:
        self.config = config or MatchingConfig()
        self._entries: dict[str, CatalogEntry] = {}
        self._exact: dict[str, CatalogEntry] = {}
        index: list[tuple[str, str, CatalogEntry]] = []

        for entry in sorted(entries, key=lambda e: e.canonical_name):
            self._entries[entry.canonical_name] = entry
            for keyword in entry.all_keywords:
                key = normalize_key(keyword)
                if len(key) < self.config.min_keyword_length:
                    continue
                # First entry (by canonical name) wins a shared keyword
                self._exact.setdefault(key, entry)
                index.append((key, keyword, entry))

        # Longest keywords first so containment prefers specific names
        index.sort(key=lambda item: (-len(item[0]), item[0], item[2].canonical_name))
        self._index = index
        self._compound_keys = sorted(
            {normalize_key(c.compound) for c in compounds or [] if c.compound.strip()},
            key=lambda k: (-len(k), k),
        )

    @property
    def entries(self) -> list[CatalogEntry]:
        return list(self._entries.values())

    def get_entry(self, canonical_name: str) -> CatalogEntry | None:
        return self._entries.get(canonical_name)

    def scan_keywords(self, text: str) -> list[KeywordHit]:
        """
        Find non-overlapping catalog keywords in text, longest first.

        Args:
            text: Raw or normalized text

        Returns:
            Hits in order of position within the normalized text
        """
        key = normalize_key(text)
        taken = [False] * len(key)
        hits: list[KeywordHit] = []

        for kw_key, keyword, entry in self._index:
            start = key.find(kw_key)
            while start != -1:
                end = start + len(kw_key)
                if not any(taken[start:end]):
                    for i in range(start, end):
                        taken[i] = True
                    hits.append(KeywordHit(keyword, entry.canonical_name, start, end))
                start = key.find(kw_key, start + 1)

        hits.sort(key=lambda h: (h.start, h.end))
        return hits

    def contains_compound(self, text: str) -> str | None:
        """Return the curated compound word found in text, if any."""
        key = normalize_key(text)
        for compound_key in self._compound_keys:
            if compound_key in key:
                return compound_key
        return None

    def match(self, raw_name: str) -> MatchResult:
        """
        Match a single raw name.

        Args:
            raw_name: Name as extracted from the page

        Returns:
            MatchResult; unresolved results keep the raw name unchanged
        """
        key = normalize_key(raw_name)
        if not key:
            return MatchResult(raw_name=raw_name)

        entry = self._exact.get(key)
        if entry is not None:
            return self._result(raw_name, entry, MatchMethod.EXACT, 1.0, key)

        if self.contains_compound(key):
            return MatchResult(raw_name=raw_name)

        hits = self.scan_keywords(key)
        hit_entries = {h.canonical_name for h in hits}
        if len(hit_entries) == 1:
            covered = sum(h.end - h.start for h in hits)
            entry = self._entries[hits[0].canonical_name]
            return self._result(
                raw_name, entry, MatchMethod.CONTAINS, covered / len(key), hits[0].keyword
            )
        if len(hit_entries) > 1:
            return MatchResult(raw_name=raw_name)

        return self._fuzzy_match(raw_name, key)

    def match_all(self, raw_names: list[str]) -> MatchReport:
        """Match every non-blank name and report the aggregate match rate."""
        report = MatchReport(results=[self.match(name) for name in raw_names if name.strip()])
        if report.total:
            logger.debug(
                f"Matched {report.matched_count}/{report.total} names "
                f"(rate {report.match_rate:.2f})"
            )
        return report

    def _fuzzy_match(self, raw_name: str, key: str) -> MatchResult:
        if len(key) < self.config.min_fuzzy_length:
            return MatchResult(raw_name=raw_name)

        best_score = 0.0
        best: tuple[str, CatalogEntry] | None = None
        for kw_key, keyword, entry in self._index:
            if len(kw_key) < self.config.min_fuzzy_length:
                continue
            score = string_similarity(key, kw_key)
            # Strictly greater keeps the earliest index position on ties
            if score > best_score:
                best_score = score
                best = (keyword, entry)

        if best is not None and best_score >= self.config.fuzzy_threshold:
            keyword, entry = best
            return self._result(raw_name, entry, MatchMethod.FUZZY, best_score, keyword)
        return MatchResult(raw_name=raw_name)

    @staticmethod
    def _result(
        raw_name: str, entry: CatalogEntry, method: MatchMethod, score: float, keyword: str
    ) -> MatchResult:
        return MatchResult(
            raw_name=raw_name,
            canonical_name=entry.canonical_name,
            category=entry.category,
            base_unit_type=entry.base_unit_type,
            method=method,
            score=round(score, 4),
            matched_keyword=keyword,
        )


def string_similarity(s1: str, s2: str) -> float:
    """
    Calculate string similarity using Levenshtein distance.

    Returns:
        Similarity score between 0.0 and 1.0
    """
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0

    distance = levenshtein_distance(s1, s2)
    return 1.0 - (distance / max(len(s1), len(s2)))


def levenshtein_distance(s1: str, s2: str) -> int:
    """Calculate the Levenshtein distance between two strings."""
    if len(s1) < len(s2):
        s1, s2 = s2, s1

    if len(s2) == 0:
        return len(s1)

    previous_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            # Cost is 0 if characters match, 1 otherwise
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row

    return previous_row[-1]
