"""
HTTP Collector Module
=====================

Fetches clinic websites with httpx and parses them with selectolax:
page text, same-site subpages worth visiting, and likely content images.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from urllib.parse import urljoin, urlparse

import httpx
from selectolax.parser import HTMLParser

from clinic_radar.collaborators.base import (
    BaseCollector,
    RawContent,
    ScreenshotInput,
    Subpage,
)
from clinic_radar.ingestion.config import CollectionConfig
from clinic_radar.ingestion.pacing import Clock, SystemClock

logger = logging.getLogger(__name__)

NOISE_TAGS = ["script", "style", "noscript", "iframe", "svg", "nav", "footer", "header"]

SUBPAGE_TYPES = ("doctor", "equipment", "treatment", "contact")

TEXT_PATTERNS: dict[str, re.Pattern[str]] = {
    "doctor": re.compile(r"의료진|원장|doctor|about.*소개|인사말|대표.*소개|의사", re.IGNORECASE),
    "treatment": re.compile(
        r"시술|treatment|program|menu|진료|서비스|클리닉|프로그램|피부|리프팅|레이저|탄력|주름"
        r"|볼륨|체형|모공|여드름|제모|두피|윤곽|보톡스|필러|procedure",
        re.IGNORECASE,
    ),
    "equipment": re.compile(r"장비|equipment|시설|보유.*장비|첨단|기기", re.IGNORECASE),
    "contact": re.compile(
        r"contact|문의|오시는.*길|찾아오|상담|예약|위치|map|location|consult", re.IGNORECASE
    ),
}

URL_PATH_PATTERNS: dict[str, re.Pattern[str]] = {
    "doctor": re.compile(r"/(doctor|about|staff|team|인사말|의료진)(/|$)", re.IGNORECASE),
    "treatment": re.compile(
        r"/(procedure|treatment|program|clinic|시술|진료|skin|lifting|laser|filler|botox"
        r"|contour|wrinkle|acne|pore|scar|hair|body|scalp|fat|volume|hydration|pigment|tone"
        r"|sagging|neck|face|eye|nose|forehead|cheek|temple|cellulite|leg|weight"
        r"|hyperhidrosis|tattoo|removal|redness|vessels|sensitive|stem.?cell|double.?chin)"
        r"(s?)(/|$)",
        re.IGNORECASE,
    ),
    "equipment": re.compile(r"/(equipment|device|장비|시설|기기)(/|$)", re.IGNORECASE),
    "contact": re.compile(r"/(contact|consult|map|location|예약|문의|상담)(/|$)", re.IGNORECASE),
}

MAX_PER_TYPE = {"doctor": 3, "treatment": 15, "equipment": 5, "contact": 2}
MAX_SUBPAGES_TOTAL = 25

SKIPPED_HREF_PREFIXES = ("javascript:", "tel:", "mailto:")

# Banners and popups often carry price tables, so they rank first.
IMAGE_WHITELIST = re.compile(
    r"price|가격|event|이벤트|banner|popup|팝업|시술|treatment|menu|메뉴|service|진료|equipment|장비",
    re.IGNORECASE,
)
IMAGE_PRIORITY = re.compile(
    r"치료|비용|할인|promo|schedule|staff|doctor|의료진|before[-_]?after", re.IGNORECASE
)
IMAGE_BLACKLIST = re.compile(
    r"favicon\.ico|spacer\.|1x1\.|pixel\.|tracking\.|beacon\.|blank\.", re.IGNORECASE
)
SNS_ICONS = re.compile(
    r"(?:facebook|instagram|youtube|kakao|naver|twitter|tiktok)[-_.](?:icon|logo|btn|badge)",
    re.IGNORECASE,
)
ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp")


def normalize_url(url: str) -> str:
    """Add a scheme to bare hostnames."""
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url


def _origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}".lower()


def extract_text(html: str, max_chars: int | None = None) -> str:
    """
    Convert HTML to plain text, one line per block of content.

    Scripts, styles and navigation chrome are dropped before extraction.
    """
    tree = HTMLParser(html)
    tree.strip_tags(NOISE_TAGS)
    root = tree.body or tree.root
    if root is None:
        return ""

    raw = root.text(separator="\n")
    lines = [re.sub(r"\s+", " ", line).strip() for line in raw.splitlines()]
    text = "\n".join(line for line in lines if line)
    if max_chars is not None and len(text) > max_chars:
        text = text[:max_chars]
    return text


def find_subpages(html: str, base_url: str) -> list[Subpage]:
    """
    Find same-origin links that look like doctor, equipment, treatment or
    contact pages.

    Each link is classified by the first type whose text or URL path
    pattern matches, subject to per-type and total caps.
    """
    base_url = normalize_url(base_url)
    base_origin = _origin(base_url)
    tree = HTMLParser(html)

    results: list[Subpage] = []
    seen: set[str] = set()
    counts = {page_type: 0 for page_type in SUBPAGE_TYPES}

    for anchor in tree.css("a"):
        if len(results) >= MAX_SUBPAGES_TOTAL:
            break

        href = (anchor.attributes.get("href") or "").strip()
        if not href or href == "#" or href.startswith(SKIPPED_HREF_PREFIXES):
            continue

        full_url = urljoin(base_url, href).split("#")[0]
        if _origin(full_url) != base_origin or full_url in seen:
            continue

        text = anchor.text(strip=True)
        title = anchor.attributes.get("title") or ""
        combined = f"{text} {title}"
        path = urlparse(full_url).path

        for page_type in SUBPAGE_TYPES:
            if counts[page_type] >= MAX_PER_TYPE[page_type]:
                continue
            if TEXT_PATTERNS[page_type].search(combined) or URL_PATH_PATTERNS[page_type].search(path):
                seen.add(full_url)
                counts[page_type] += 1
                results.append(
                    Subpage(url=full_url, page_type=page_type, label=(text or href)[:50])
                )
                break

    return results


def rank_content_images(urls: list[str]) -> list[str]:
    """
    Order image URLs so likely price, menu and equipment images come first.

    Tracking pixels, spacers and social-media icons are removed.
    """
    whitelist: list[str] = []
    priority: list[str] = []
    normal: list[str] = []

    for url in urls:
        filename = url.rsplit("/", 1)[-1]
        path = url.lower()
        if IMAGE_BLACKLIST.search(filename) or IMAGE_BLACKLIST.search(path):
            continue
        if SNS_ICONS.search(filename) or SNS_ICONS.search(path):
            continue

        if IMAGE_WHITELIST.search(filename) or IMAGE_WHITELIST.search(path):
            whitelist.append(url)
        elif IMAGE_PRIORITY.search(filename) or IMAGE_PRIORITY.search(path):
            priority.append(url)
        else:
            normal.append(url)

    return whitelist + priority + normal


def extract_image_urls(html: str, base_url: str) -> list[str]:
    """Collect absolute http(s) image URLs in document order."""
    base_url = normalize_url(base_url)
    tree = HTMLParser(html)
    urls: list[str] = []
    seen: set[str] = set()

    for img in tree.css("img"):
        attrs = img.attributes
        src = attrs.get("src") or attrs.get("data-src") or attrs.get("data-lazy-src")
        if not src or src.startswith("data:"):
            continue
        full_url = urljoin(base_url, src.strip())
        if not full_url.startswith(("http://", "https://")) or full_url in seen:
            continue
        seen.add(full_url)
        urls.append(full_url)

    return urls


class HttpCollector(BaseCollector):
    """
    Collector backed by a synchronous httpx client.

    Transport errors and 5xx responses are retried with exponential
    backoff; 4xx responses are not.
    """

    def __init__(
        self,
        config: CollectionConfig | None = None,
        client: httpx.Client | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or CollectionConfig()
        self.clock = clock or SystemClock()
        self._owns_client = client is None
        self.client = client or httpx.Client(
            timeout=self.config.request_timeout,
            follow_redirects=True,
            headers={"User-Agent": self.config.user_agent},
        )

    def fetch(self, url: str) -> RawContent | None:
        url = normalize_url(url)
        attempts = max(1, self.config.max_retries)

        for attempt in range(attempts):
            try:
                response = self.client.get(url)
            except httpx.HTTPError as e:
                logger.warning(f"Fetch attempt {attempt + 1}/{attempts} failed for {url}: {e}")
            else:
                if response.is_success:
                    html = response.text
                    return RawContent(
                        url=str(response.url),
                        html=html,
                        text=extract_text(html, self.config.max_text_chars),
                        status_code=response.status_code,
                        fetched_at=datetime.now(UTC),
                    )
                if response.status_code < 500:
                    logger.warning(f"HTTP {response.status_code} for {url}")
                    return None
                logger.warning(
                    f"HTTP {response.status_code} for {url} (attempt {attempt + 1}/{attempts})"
                )

            if attempt < attempts - 1:
                self.clock.sleep(2**attempt)

        return None

    def find_subpages(self, raw: RawContent, base_url: str) -> list[Subpage]:
        return find_subpages(raw.html, base_url)

    def extract_images(self, raw: RawContent, base_url: str) -> list[str]:
        return rank_content_images(extract_image_urls(raw.html, base_url))

    def download_images(self, urls: list[str], max_count: int) -> list[ScreenshotInput]:
        results: list[ScreenshotInput] = []
        for url in urls[: max_count * 2]:
            if len(results) >= max_count:
                break
            try:
                response = self.client.get(url)
            except httpx.HTTPError as e:
                logger.debug(f"Image download failed for {url}: {e}")
                continue
            if not response.is_success:
                continue

            mime_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
            if mime_type not in ALLOWED_IMAGE_TYPES:
                continue
            data = response.content
            if len(data) > self.config.max_image_bytes:
                logger.debug(f"Skipping oversized image {url} ({len(data)} bytes)")
                continue

            results.append(ScreenshotInput(url=url, data=data, mime_type=mime_type))

        return results

    def close(self) -> None:
        if self._owns_client:
            self.client.close()
