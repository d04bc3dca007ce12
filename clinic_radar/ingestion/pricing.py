"""
Price Extractor Module
======================

Turns free text into structured, de-duplicated price records.

Each notation is recognized by its own pure function (text in, candidates
out):

- ``find_quantity_prices``: "울쎄라 300샷 150만원" (label, quantity, unit, price)
- ``find_man_won_prices``: "써마지 250만원" (prices abbreviated in units of 10,000)
- ``find_won_prices``: "써마지FLX: 500,000원" (plain currency amounts)

``PriceExtractor`` combines them, resolves overlaps, attaches catalog names
and promotional context, and flags outliers without dropping them.
"""

from __future__ import annotations

import calendar
import logging
import re
import statistics
from dataclasses import dataclass
from datetime import date

from clinic_radar.core.enums import ConfidenceLevel, PriceBand, UnitType
from clinic_radar.core.schema import EventConditions, EventContext, PriceRecord
from clinic_radar.ingestion.config import PricingConfig
from clinic_radar.ingestion.matcher import CatalogMatcher

logger = logging.getLogger(__name__)

# A label is one token: Hangul (optionally followed by a short Latin model
# name such as "FLX") or a Latin word. It must not continue a previous word.
_LABEL = r"(?<![가-힣A-Za-z0-9])([가-힣]{2,15}(?:[A-Za-z]{1,6})?|[A-Za-z]{2,15})"
_SEP = r"\s*[:：\-–]?\s*"
_AMOUNT = r"\d[\d,]*(?:\.\d+)?"
_UNITS = (
    r"shots|shot|joules|joule|sessions|session|units|unit|lines|line|"
    r"샷|cc|ml|시시|유닛|줄|라인|가닥|회|패키지|세션|j|u"
)

QUANTITY_PRICE_PATTERN = re.compile(
    _LABEL
    + _SEP
    + rf"({_AMOUNT}(?:만|천)?)\s*({_UNITS})(?![A-Za-z])"
    + r"[^\d\n]{0,10}?"
    + rf"({_AMOUNT}(?:\s*만(?:\s*\d+\s*천)?|\s*천)?)\s*원",
    re.IGNORECASE,
)

MAN_WON_PATTERN = re.compile(
    _LABEL + _SEP + rf"({_AMOUNT}\s*만(?:\s*\d+\s*천)?)\s*원",
)

WON_PATTERN = re.compile(
    _LABEL + _SEP + r"(\d{1,3}(?:,\d{3})+|\d+)\s*원",
)

UNIT_MAP: dict[str, UnitType | None] = {
    "샷": UnitType.SHOT, "shot": UnitType.SHOT, "shots": UnitType.SHOT,
    "cc": UnitType.CC, "ml": UnitType.CC, "시시": UnitType.CC,
    "유닛": UnitType.UNIT, "u": UnitType.UNIT, "unit": UnitType.UNIT, "units": UnitType.UNIT,
    "줄": None,  # JOULE or LINE depending on the treatment
    "j": UnitType.JOULE, "joule": UnitType.JOULE, "joules": UnitType.JOULE,
    "라인": UnitType.LINE, "line": UnitType.LINE, "lines": UnitType.LINE, "가닥": UnitType.LINE,
    "회": UnitType.SESSION, "패키지": UnitType.SESSION, "세션": UnitType.SESSION,
    "session": UnitType.SESSION, "sessions": UnitType.SESSION,
}

_JOULE_HINTS = ("온다", "onda", "줄리프팅", "하이푸")
_LINE_HINTS = ("실", "민트", "코그", "실루엣", "캐번", "잼버")

# Words that precede prices but are not items
GENERIC_LABELS = frozenset(
    {"가격", "정상가", "할인가", "이벤트가", "체험가", "특가", "판매가", "원가", "부가세", "합계", "총액"}
)

EVENT_KEYWORDS = (
    "체험가", "이벤트가", "이벤트", "1회체험", "체험", "프로모션", "할인가", "특가",
    "한정", "기념", "오픈", "할인", "세일", "선착순", "마감", "임박", "금일",
    "오늘만", "기간한정", "얼리버드", "런칭", "파격",
)

# English event words match as standalone words only
_EVENT_WORDS = re.compile(r"(?<![a-z])(?:sale|event|off)(?![a-z])")

EVENT_LABEL_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"(\d{1,2}월\s*(?:한정|이벤트|특가|프로모션|할인|세일))"),
    re.compile(r"(\d{1,2}월\s*\d{1,2}일\s*(?:까지|한정|마감))"),
    re.compile(r"(선착순\s*\d+\s*명)"),
    re.compile(r"(\d+\s*명\s*한정)"),
    re.compile(r"((?:오픈|개원|리뉴얼|\d+주년)\s*기념)"),
    re.compile(r"(신규\s*오픈)"),
    re.compile(r"(마감\s*임박)"),
    re.compile(r"(오늘만|금일\s*한정|기간\s*한정)"),
    re.compile(r"(\d+\s*%\s*(?:할인|off|세일))", re.IGNORECASE),
    re.compile(r"(얼리버드\s*(?:특가|할인|가격)?)"),
    re.compile(r"(런칭\s*(?:특가|할인|가격)?)"),
    re.compile(r"(파격\s*(?:가|할인|특가))"),
    re.compile(r"(초특가)"),
]

_LIMIT = re.compile(r"(선착순\s*\d+\s*명|\d+\s*명\s*한정)")
_DURATION = re.compile(r"(\d{1,2}월\s*(?:한정|말\s*까지|까지)|\d{1,2}월\s*\d{1,2}일\s*까지|기간\s*한정)")
_URGENCY = re.compile(r"(마감\s*임박|오늘만|금일\s*한정|오늘\s*마감|마지막\s*기회)")
_OCCASION = re.compile(r"((?:오픈|개원|리뉴얼|\d+주년)\s*기념|신규\s*오픈|런칭)")
_DISCOUNT = re.compile(r"(\d+\s*%\s*(?:할인|off|세일))", re.IGNORECASE)

_MONTH_DAY_RANGE = re.compile(r"(\d{1,2})월\s*(\d{1,2})일\s*[~\-–]\s*(\d{1,2})월\s*(\d{1,2})일")
_FULL_DATE_RANGE = re.compile(
    r"(\d{4})[./-](\d{1,2})[./-](\d{1,2})\s*[~\-–]\s*(\d{4})[./-](\d{1,2})[./-](\d{1,2})"
)
_UNTIL_DAY = re.compile(r"(\d{1,2})월\s*(\d{1,2})일\s*까지")
_UNTIL_MONTH = re.compile(r"(\d{1,2})월\s*(?:한정|말\s*까지)")


@dataclass
class PriceCandidate:
    """A raw price match before enrichment."""

    label: str
    total_price: int
    start: int
    end: int
    raw_text: str
    quantity: float | None = None
    unit_text: str | None = None
    confidence: ConfidenceLevel = ConfidenceLevel.ESTIMATED


# ============================================================================
# Pure pattern functions
# ============================================================================


def parse_korean_number(text: str) -> int | None:
    """
    Parse Korean-style amounts.

    "350,000" -> 350000, "250만" -> 2500000, "1.5만" -> 15000,
    "5천" -> 5000, "1만5천" -> 15000.
    """
    cleaned = re.sub(r"[\s,]", "", text)
    if not cleaned:
        return None

    m = re.fullmatch(r"(\d+(?:\.\d+)?)만", cleaned)
    if m:
        return round(float(m.group(1)) * 10_000)

    m = re.fullmatch(r"(\d+(?:\.\d+)?)천", cleaned)
    if m:
        return round(float(m.group(1)) * 1_000)

    m = re.fullmatch(r"(\d+)만(\d+)(천)?", cleaned)
    if m:
        rest = int(m.group(2)) * (1_000 if m.group(3) else 1)
        return int(m.group(1)) * 10_000 + rest

    m = re.fullmatch(r"\d+(?:\.\d+)?", cleaned)
    if m:
        return round(float(cleaned))
    return None


def _parse_quantity(text: str) -> float | None:
    cleaned = re.sub(r"[\s,]", "", text)
    if cleaned.endswith(("만", "천")):
        value = parse_korean_number(cleaned)
        return float(value) if value is not None else None
    try:
        return float(cleaned)
    except ValueError:
        return None


def _label_ok(label: str) -> bool:
    return label not in GENERIC_LABELS and not label.isdigit()


def find_quantity_prices(text: str) -> list[PriceCandidate]:
    """Find "label quantity unit ... price원" phrases."""
    candidates = []
    for m in QUANTITY_PRICE_PATTERN.finditer(text):
        label = m.group(1).strip()
        price = parse_korean_number(m.group(4))
        if not _label_ok(label) or not price:
            continue
        candidates.append(
            PriceCandidate(
                label=label,
                total_price=price,
                start=m.start(),
                end=m.end(),
                raw_text=m.group(0),
                quantity=_parse_quantity(m.group(2)),
                unit_text=m.group(3),
                confidence=ConfidenceLevel.EXACT,
            )
        )
    return candidates


def find_man_won_prices(text: str) -> list[PriceCandidate]:
    """Find "label N만원" phrases."""
    candidates = []
    for m in MAN_WON_PATTERN.finditer(text):
        label = m.group(1).strip()
        price = parse_korean_number(m.group(2))
        if not _label_ok(label) or not price:
            continue
        candidates.append(
            PriceCandidate(label=label, total_price=price, start=m.start(), end=m.end(), raw_text=m.group(0))
        )
    return candidates


def find_won_prices(text: str) -> list[PriceCandidate]:
    """Find "label N원" phrases."""
    candidates = []
    for m in WON_PATTERN.finditer(text):
        label = m.group(1).strip()
        price = parse_korean_number(m.group(2))
        if not _label_ok(label) or not price:
            continue
        candidates.append(
            PriceCandidate(label=label, total_price=price, start=m.start(), end=m.end(), raw_text=m.group(0))
        )
    return candidates


def resolve_unit(unit_text: str | None, label: str, matcher: CatalogMatcher | None = None) -> UnitType | None:
    """Map unit text to a UnitType, resolving the ambiguous 줄 from the label."""
    if unit_text is None:
        return None
    lower = unit_text.strip().lower()
    if lower not in UNIT_MAP:
        return None
    unit = UNIT_MAP[lower]
    if unit is not None:
        return unit

    label_lower = label.lower()
    if any(hint in label_lower for hint in _JOULE_HINTS):
        return UnitType.JOULE
    if any(hint in label_lower for hint in _LINE_HINTS):
        return UnitType.LINE
    if matcher is not None:
        result = matcher.match(label)
        if result.base_unit_type in (UnitType.JOULE, UnitType.LINE):
            return result.base_unit_type
    return UnitType.LINE


def _window(text: str, start: int, end: int, size: int) -> str:
    return text[max(0, start - size) : min(len(text), end + size)]


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def extract_event_context(window: str, reference_date: date) -> EventContext:
    """Pull promotional labels, conditions and dates out of a text window."""
    labels: list[str] = []
    for pattern in EVENT_LABEL_PATTERNS:
        for m in pattern.finditer(window):
            label = m.group(1).strip()
            if label and label not in labels:
                labels.append(label)

    def first(pattern: re.Pattern[str]) -> str | None:
        m = pattern.search(window)
        return m.group(1).strip() if m else None

    conditions = EventConditions(
        limit=first(_LIMIT),
        duration=first(_DURATION),
        urgency=first(_URGENCY),
        occasion=first(_OCCASION),
        discount=first(_DISCOUNT),
    )

    year = reference_date.year
    start_date: date | None = None
    end_date: date | None = None

    m = _FULL_DATE_RANGE.search(window)
    if m:
        parts = [int(g) for g in m.groups()]
        start_date = _safe_date(parts[0], parts[1], parts[2])
        end_date = _safe_date(parts[3], parts[4], parts[5])

    if end_date is None:
        m = _MONTH_DAY_RANGE.search(window)
        if m:
            start_date = _safe_date(year, int(m.group(1)), int(m.group(2)))
            end_date = _safe_date(year, int(m.group(3)), int(m.group(4)))

    if end_date is None:
        m = _UNTIL_DAY.search(window)
        if m:
            end_date = _safe_date(year, int(m.group(1)), int(m.group(2)))

    if end_date is None:
        m = _UNTIL_MONTH.search(window)
        if m:
            month = int(m.group(1))
            if 1 <= month <= 12:
                end_date = date(year, month, calendar.monthrange(year, month)[1])

    return EventContext(
        label=", ".join(labels) if labels else None,
        start_date=start_date,
        end_date=end_date,
        conditions=conditions,
    )


# ============================================================================
# Extractor
# ============================================================================


class PriceExtractor:
    """
    Combines the pattern functions into price records.

    Overlapping matches are resolved in favour of the quantity notation,
    then the 만원 notation. Records are de-duplicated by label (case and
    whitespace insensitive), keeping the first occurrence in the text.
    """

    def __init__(self, config: PricingConfig | None = None, matcher: CatalogMatcher | None = None) -> None:
        self.config = config or PricingConfig()
        self.matcher = matcher

    def extract(self, text: str, reference_date: date | None = None) -> list[PriceRecord]:
        """
        Extract price records from text.

        Args:
            text: Free text from the collected pages
            reference_date: Year reference for event end dates (default: today)

        Returns:
            Records in order of appearance; outliers are flagged, not removed
        """
        reference_date = reference_date or date.today()

        accepted: list[PriceCandidate] = []
        for group in (find_quantity_prices(text), find_man_won_prices(text), find_won_prices(text)):
            for candidate in group:
                if not any(candidate.start < a.end and a.start < candidate.end for a in accepted):
                    accepted.append(candidate)
        accepted.sort(key=lambda c: c.start)

        records: list[PriceRecord] = []
        seen: set[str] = set()
        for candidate in accepted:
            label_key = re.sub(r"\s+", "", candidate.label).lower()
            if label_key in seen:
                continue
            seen.add(label_key)
            records.append(self._to_record(text, candidate, reference_date))

        self.flag_outliers(records)
        logger.debug(
            f"Extracted {len(records)} prices "
            f"({sum(1 for r in records if r.is_outlier)} outliers, "
            f"{sum(1 for r in records if r.is_event)} promotional)"
        )
        return records

    def flag_outliers(self, records: list[PriceRecord]) -> None:
        """
        Mark implausible prices in place.

        A record is an outlier when its unit price or total falls outside
        the configured bounds, or, once enough prices were found, when its
        total differs from the run's median by more than the ratio.
        """
        cfg = self.config
        median = None
        if len(records) >= cfg.outlier_min_sample:
            median = statistics.median(r.total_price for r in records)

        for record in records:
            outlier = record.total_price > cfg.max_total_price or record.total_price < cfg.min_unit_price
            if record.unit_price is not None:
                outlier = outlier or not (cfg.min_unit_price <= record.unit_price <= cfg.max_unit_price)
            if median:
                ratio = record.total_price / median
                outlier = outlier or ratio > cfg.outlier_ratio or ratio < 1 / cfg.outlier_ratio
            record.is_outlier = outlier

    def price_band(self, unit_price: float | None, total_price: int) -> PriceBand:
        price = unit_price if unit_price is not None else total_price
        if price >= self.config.premium_threshold:
            return PriceBand.PREMIUM
        if price >= self.config.mid_threshold:
            return PriceBand.MID
        return PriceBand.MASS

    def _to_record(self, text: str, candidate: PriceCandidate, reference_date: date) -> PriceRecord:
        canonical_name = None
        base_unit = None
        if self.matcher is not None:
            result = self.matcher.match(candidate.label)
            canonical_name = result.canonical_name
            base_unit = result.base_unit_type

        if candidate.unit_text is not None:
            unit_type = resolve_unit(candidate.unit_text, candidate.label, self.matcher)
        else:
            unit_type = base_unit or UnitType.SESSION

        unit_price = None
        if candidate.quantity:
            unit_price = round(candidate.total_price / candidate.quantity, 2)

        keyword_window = _window(
            text, candidate.start, candidate.end, self.config.event_keyword_window
        ).lower()
        context = extract_event_context(
            _window(text, candidate.start, candidate.end, self.config.event_context_window),
            reference_date,
        )
        has_keyword = any(kw in keyword_window for kw in EVENT_KEYWORDS) or bool(
            _EVENT_WORDS.search(keyword_window)
        )
        is_event = has_keyword or context.label is not None or not context.conditions.is_empty()

        return PriceRecord(
            item_name=candidate.label,
            canonical_name=canonical_name,
            raw_text=candidate.raw_text,
            total_quantity=candidate.quantity,
            unit_type=unit_type,
            total_price=candidate.total_price,
            unit_price=unit_price,
            price_band=self.price_band(unit_price, candidate.total_price),
            is_package="패키지" in candidate.label or "세트" in candidate.label,
            is_event=is_event,
            confidence=candidate.confidence,
            event_context=context if is_event else EventContext(),
            position=candidate.start,
        )


def extract_prices(
    text: str,
    matcher: CatalogMatcher | None = None,
    config: PricingConfig | None = None,
    reference_date: date | None = None,
) -> list[PriceRecord]:
    """Convenience wrapper around PriceExtractor.extract."""
    return PriceExtractor(config, matcher).extract(text, reference_date)


def promotional_subset(records: list[PriceRecord]) -> list[PriceRecord]:
    """Event prices that are not outliers."""
    return [r for r in records if r.is_event and not r.is_outlier]
