"""Enums for tracked sites, extraction results and sales signals."""

from enum import Enum


class Tier(str, Enum):
    """Re-crawl frequency class."""

    TIER1 = "tier1"
    TIER2 = "tier2"
    TIER3 = "tier3"


class ProfileGrade(str, Enum):
    """Business-importance grade produced by site profiling."""

    PRIME = "PRIME"
    HIGH = "HIGH"
    MID = "MID"
    LOW = "LOW"


class ChangeType(str, Enum):
    """Direction of an equipment/treatment change between snapshots."""

    ADDED = "added"
    REMOVED = "removed"


class ItemType(str, Enum):
    """Kind of item tracked on a site."""

    EQUIPMENT = "equipment"
    TREATMENT = "treatment"


class SignalPriority(str, Enum):
    """Priority carried by a sales signal rule."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class SignalStatus(str, Enum):
    """Lifecycle status of an emitted sales signal."""

    NEW = "NEW"
    REVIEWED = "REVIEWED"
    ACTIONED = "ACTIONED"
    DISMISSED = "DISMISSED"


class SiteStage(str, Enum):
    """Stage of a single site's run."""

    ELIGIBLE = "eligible"
    COLLECTING = "collecting"
    EXTRACTING = "extracting"
    STORING = "storing"
    CLASSIFYING = "classifying"
    DONE = "done"
    DONE_WITH_ERROR = "done_with_error"


class RunOutcome(str, Enum):
    """Final outcome of a site's run."""

    SUCCEEDED = "succeeded"
    NO_CHANGE = "no_change"
    FAILED = "failed"


class UnitType(str, Enum):
    """Unit in which a treatment is priced."""

    SHOT = "SHOT"
    CC = "CC"
    UNIT = "UNIT"
    JOULE = "JOULE"
    LINE = "LINE"
    SESSION = "SESSION"


class PriceBand(str, Enum):
    """Price band of a single price record."""

    PREMIUM = "Premium"
    MID = "Mid"
    MASS = "Mass"


class ConfidenceLevel(str, Enum):
    """How a price record was derived."""

    EXACT = "EXACT"
    ESTIMATED = "ESTIMATED"


class MatchMethod(str, Enum):
    """How a raw name was resolved to a catalog entry."""

    EXACT = "exact"
    CONTAINS = "contains"
    FUZZY = "fuzzy"


class CandidateStatus(str, Enum):
    """Curation status of a compound candidate."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DecompositionSource(str, Enum):
    """Which mechanism produced a decomposition."""

    DICTIONARY = "dictionary"
    KEYWORDS = "keywords"
    PATTERN = "pattern"
