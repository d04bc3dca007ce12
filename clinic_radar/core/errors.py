"""Exception hierarchy for the extraction pipeline.

Fatal errors abort a single site's run; non-fatal errors degrade it.
The batch driver catches both at the per-site boundary.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    fatal: bool = True

    def __init__(self, message: str, site_id: str | None = None, stage: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.site_id = site_id
        self.stage = stage

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


class CollectionError(PipelineError):
    """The primary page could not be fetched."""


class SubpageError(PipelineError):
    """A secondary page could not be fetched; its content is omitted."""

    fatal = False


class RecognitionError(PipelineError):
    """The content analyzer failed; no structured data is available."""


class VisualRecognitionError(PipelineError):
    """The visual recognizer failed; the run degrades to text-only results."""

    fatal = False


class PersistenceError(PipelineError):
    """Writing a site's results failed; nothing from the run is kept."""


class ClassificationError(PipelineError):
    """Signal rule evaluation failed; the run still counts as successful."""

    fatal = False


class RuleValidationError(ValueError):
    """A sales signal rule payload has an unrecognized shape."""


class ConfigError(ValueError):
    """The pipeline configuration file is invalid."""
