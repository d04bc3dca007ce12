"""
Change Detector Module
======================

Decides whether a collected page needs any downstream work.

The comparison key is a SHA-256 hash of the page text with volatile
content (dates, promotional wording, urgency phrases) stripped, so a
page whose only change is "2월 이벤트" becoming "3월 이벤트" counts as
unchanged. The raw-text hash is kept alongside for audit.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime

from clinic_radar.core.enums import Tier
from clinic_radar.core.schema import Snapshot
from clinic_radar.ingestion.config import SchedulingConfig

logger = logging.getLogger(__name__)

# Applied in order; later patterns assume earlier ones already ran.
_VOLATILE_PATTERNS: list[re.Pattern[str]] = [
    # Years and full dates: "2026년", "2026.03.01"
    re.compile(r"\d{4}년\s*"),
    re.compile(r"\d{4}[./-]\d{1,2}[./-]\d{1,2}"),
    # Month/day: "3월 31일", "2월", "3/31"
    re.compile(r"\d{1,2}월\s*\d{1,2}일"),
    re.compile(r"\d{1,2}월"),
    # Decimal amounts such as "99.9만원" or "1.5cc" are prices, not dates
    re.compile(r"(?<![\d.,])\d{1,2}[./]\d{1,2}(?![\d.]|\s*(?:만|천|원|샷|cc|ml))"),
    # Ranges: "~3/31까지", "~ 까지"
    re.compile(r"[~\-–]\s*\d{1,2}[./]\d{1,2}\s*까지"),
    re.compile(r"[~\-–]\s*\d{1,2}\s*까지"),
    re.compile(r"[~\-–]\s*까지"),
    re.compile(r"까지"),
    # Promotional wording
    re.compile(r"이벤트|한정|특가|프로모션|할인가|세일|체험가"),
    re.compile(r"선착순\s*\d+\s*명"),
    re.compile(r"\d+\s*명\s*한정"),
    re.compile(r"오픈\s*기념|개원\s*기념|\d+주년\s*기념"),
    re.compile(r"얼리버드|런칭|파격|초특가"),
    re.compile(r"\d+\s*%\s*(?:할인|OFF|세일)", re.IGNORECASE),
    # Urgency
    re.compile(r"마감\s*임박|오늘만|금일\s*한정|기간\s*한정"),
]

_WHITESPACE = re.compile(r"\s+")


def compute_hash(text: str) -> str:
    """
    Compute SHA-256 hash of text.

    Args:
        text: Text to hash (UTF-8 encoded)

    Returns:
        Hex-encoded SHA-256 hash
    """
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def strip_volatile_content(text: str) -> str:
    """Remove dates and promotional wording, then collapse whitespace."""
    stripped = text
    for pattern in _VOLATILE_PATTERNS:
        stripped = pattern.sub("", stripped)
    return _WHITESPACE.sub(" ", stripped).strip()


def compute_ocr_hash(names: list[str] | None) -> str | None:
    """
    Hash recognized visual content independent of order and case.

    Returns None when no visual pass ran.
    """
    if names is None:
        return None
    normalized = sorted({n.strip().lower() for n in names if n.strip()})
    return compute_hash("\n".join(normalized))


@dataclass
class ChangeDecision:
    """What the pipeline should do with a freshly collected page."""

    text_hash: str
    raw_text_hash: str
    is_first_crawl: bool
    text_changed: bool
    raw_text_changed: bool
    run_downstream: bool
    run_visual: bool
    reason: str


class ChangeDetector:
    """
    Compares collected text against the previous snapshot.

    Decision table:
    - no previous snapshot: proceed, with a visual pass
    - stripped text hash unchanged: skip everything downstream
    - changed: proceed; visual pass only if the tier's visual interval
      has elapsed since the last visual pass (or none was ever made)

    Text-only runs never take a visual pass.
    """

    def __init__(self, config: SchedulingConfig | None = None) -> None:
        self.config = config or SchedulingConfig()

    def visual_due(self, tier: Tier, last_visual_at: datetime | None, now: datetime) -> bool:
        """Check whether the tier policy allows another visual pass."""
        if last_visual_at is None:
            return True
        elapsed_days = (now - last_visual_at).total_seconds() / 86400
        return elapsed_days >= self.config.visual_interval_days[tier]

    def detect(
        self,
        text: str,
        previous: Snapshot | None,
        tier: Tier,
        now: datetime,
        last_visual_at: datetime | None = None,
        text_only: bool = False,
    ) -> ChangeDecision:
        """
        Decide whether downstream stages and the visual pass should run.

        Args:
            text: Aggregated page text for this run
            previous: The site's latest snapshot, if any
            tier: The site's current tier
            now: Reference time
            last_visual_at: When the site last had a visual pass
            text_only: Suppress the visual pass entirely

        Returns:
            ChangeDecision
        """
        text_hash = compute_hash(strip_volatile_content(text))
        raw_text_hash = compute_hash(text)

        if previous is None:
            return ChangeDecision(
                text_hash=text_hash,
                raw_text_hash=raw_text_hash,
                is_first_crawl=True,
                text_changed=True,
                raw_text_changed=True,
                run_downstream=True,
                run_visual=not text_only,
                reason="first crawl",
            )

        raw_changed = raw_text_hash != previous.raw_text_hash
        if text_hash == previous.text_hash:
            reason = "volatile content only" if raw_changed else "identical content"
            logger.debug(f"No substantive change ({reason})")
            return ChangeDecision(
                text_hash=text_hash,
                raw_text_hash=raw_text_hash,
                is_first_crawl=False,
                text_changed=False,
                raw_text_changed=raw_changed,
                run_downstream=False,
                run_visual=False,
                reason=reason,
            )

        run_visual = not text_only and self.visual_due(tier, last_visual_at, now)
        return ChangeDecision(
            text_hash=text_hash,
            raw_text_hash=raw_text_hash,
            is_first_crawl=False,
            text_changed=True,
            raw_text_changed=True,
            run_downstream=True,
            run_visual=run_visual,
            reason="content changed",
        )

    @staticmethod
    def ocr_changed(previous: Snapshot | None, ocr_hash: str | None) -> bool:
        """Compare this run's OCR hash with the previous snapshot's."""
        if ocr_hash is None:
            return False
        if previous is None or previous.ocr_hash is None:
            return True
        return previous.ocr_hash != ocr_hash
