"""
Collaborator Base Module
========================

Contracts for the external services the pipeline drives:

1. Collector - fetches pages, finds subpages and images
2. ContentAnalyzer - extracts doctors, equipment and treatments from text
3. VisualRecognizer - recognizes names in images (an expensive session resource)

Implementations raise nothing for "not found" conditions; they return
None or empty lists and let the pipeline decide how fatal that is.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class RawContent:
    """A fetched page."""

    url: str
    html: str
    text: str
    status_code: int = 200
    fetched_at: datetime | None = None


@dataclass
class Subpage:
    """A same-site link worth collecting."""

    url: str
    page_type: str  # "doctor", "equipment", "treatment", "contact"
    label: str = ""


@dataclass
class ScreenshotInput:
    """Image bytes handed to the visual recognizer."""

    url: str
    data: bytes
    mime_type: str

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass
class RecognitionResult:
    """Names recognized in images."""

    equipment_names: list[str] = field(default_factory=list)
    treatment_names: list[str] = field(default_factory=list)
    tokens_used: int = 0


@dataclass
class AnalysisResult:
    """Structured best-effort extraction from page text."""

    doctors: list[str] = field(default_factory=list)
    equipment: list[str] = field(default_factory=list)
    treatments: list[str] = field(default_factory=list)
    tokens_used: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "doctors": self.doctors,
            "equipment": self.equipment,
            "treatments": self.treatments,
            "tokens_used": self.tokens_used,
        }


class BaseCollector(ABC):
    """
    Abstract base class for page collectors.

    Subclasses must implement fetching, subpage discovery, image
    extraction and image download.
    """

    @abstractmethod
    def fetch(self, url: str) -> RawContent | None:
        """
        Fetch a page.

        Returns:
            RawContent, or None if the page could not be retrieved
        """

    @abstractmethod
    def find_subpages(self, raw: RawContent, base_url: str) -> list[Subpage]:
        """Find same-site subpages likely to list doctors, equipment or treatments."""

    @abstractmethod
    def extract_images(self, raw: RawContent, base_url: str) -> list[str]:
        """Return absolute image URLs, most likely content images first."""

    @abstractmethod
    def download_images(self, urls: list[str], max_count: int) -> list[ScreenshotInput]:
        """Download up to max_count usable images."""

    def close(self) -> None:
        """Release network resources."""


class BaseContentAnalyzer(ABC):
    """Abstract base class for text analyzers."""

    ANALYZER_NAME: str = "base"
    ANALYZER_VERSION: str = "1.0.0"

    @abstractmethod
    def analyze(self, text: str) -> AnalysisResult:
        """
        Extract structured names from text.

        Raises:
            RecognitionError: If analysis fails
        """


class BaseVisualRecognizer(ABC):
    """
    Abstract base class for visual recognizers.

    A recognizer holds an external session; the batch driver acquires
    one lazily and calls close() exactly once at the end of the batch.
    """

    @abstractmethod
    def recognize(self, inputs: list[ScreenshotInput]) -> RecognitionResult:
        """
        Recognize equipment and treatment names in images.

        Raises:
            VisualRecognitionError: If recognition fails
        """

    def close(self) -> None:
        """Release the session."""
