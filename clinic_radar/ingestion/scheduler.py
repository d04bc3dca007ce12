"""
Tier Scheduler Module
=====================

Assigns tracked sites to re-crawl tiers from their profile grade and
decides which sites are due in the current run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from clinic_radar.core.enums import ProfileGrade, Tier
from clinic_radar.core.schema import TrackedSite
from clinic_radar.ingestion.config import SchedulingConfig

logger = logging.getLogger(__name__)


@dataclass
class ScheduledSite:
    """A site selected for this run, with its freshly assigned tier."""

    site: TrackedSite
    tier: Tier
    days_since_crawl: float | None


@dataclass
class SchedulePlan:
    """Result of planning a run."""

    eligible: list[ScheduledSite] = field(default_factory=list)
    total_considered: int = 0
    skipped_by_schedule: int = 0
    eligible_before_paging: int = 0


class TierScheduler:
    """
    Decides crawl eligibility per tier.

    A site with no recorded crawl is always eligible. Otherwise it is
    eligible once the days elapsed since its last crawl reach its tier's
    interval. Timestamps are only advanced once a run attempt completes,
    failed attempts included, so a failed site comes up again on the next
    scheduled invocation instead of being dropped.
    """

    def __init__(self, config: SchedulingConfig | None = None) -> None:
        self.config = config or SchedulingConfig()

    def assign_tier(self, grade: ProfileGrade | None) -> Tier:
        """Map a profile grade to a tier; unknown and low grades get tier3."""
        if grade is None:
            return Tier.TIER3
        return self.config.grade_tiers.get(grade, Tier.TIER3)

    def interval_days(self, tier: Tier) -> int:
        return self.config.interval_days[tier]

    @staticmethod
    def days_since(then: datetime | None, now: datetime) -> float | None:
        if then is None:
            return None
        return (now - then).total_seconds() / 86400

    def is_eligible(self, site: TrackedSite, now: datetime, tier: Tier | None = None) -> bool:
        """Check whether a site is due for a crawl at ``now``."""
        elapsed = self.days_since(site.last_crawled_at, now)
        if elapsed is None:
            return True
        tier = tier or self.assign_tier(site.profile_grade)
        return elapsed >= self.interval_days(tier)

    def plan(
        self,
        sites: list[TrackedSite],
        now: datetime,
        tier: Tier | None = None,
        source: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> SchedulePlan:
        """
        Select the sites to process in this run.

        Args:
            sites: Candidate sites (typically all active sites)
            now: Reference time for elapsed-day calculations
            tier: Only consider sites in this tier
            source: Only consider sites from this acquisition channel
            limit: Maximum number of eligible sites to return
            offset: Number of eligible sites to skip (paging)

        Returns:
            SchedulePlan with the eligible page and skip counts
        """
        plan = SchedulePlan()
        due: list[ScheduledSite] = []

        for site in sites:
            if not site.active:
                continue
            if source and site.source != source:
                continue
            site_tier = self.assign_tier(site.profile_grade)
            if tier and site_tier != tier:
                continue

            plan.total_considered += 1
            if not self.is_eligible(site, now, site_tier):
                plan.skipped_by_schedule += 1
                continue

            due.append(
                ScheduledSite(
                    site=site,
                    tier=site_tier,
                    days_since_crawl=self.days_since(site.last_crawled_at, now),
                )
            )

        plan.eligible_before_paging = len(due)
        end = None if limit is None else offset + limit
        plan.eligible = due[offset:end]

        logger.info(
            f"Scheduled {len(plan.eligible)} of {plan.eligible_before_paging} due sites "
            f"({plan.skipped_by_schedule} not yet due)"
        )
        return plan
