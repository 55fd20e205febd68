"""
Action item ledger: deduplicate, prioritize and persist detected issues.
"""
import logging
from typing import Iterable, List, Optional, Sequence

from django.db import transaction

from action_items.constants import (
    BASE_PRIORITY,
    IMPACT_BONUS,
    MAX_AFFECTED_BONUS,
    MAX_PRIORITY,
    SEVERITY_BONUS,
    TERMINAL_STATUSES,
)
from action_items.models import ActionItem
from sites.normalization import url_variations

logger = logging.getLogger(__name__)


def calculate_priority_score(severity: str, estimated_impact: str, affected_count: int) -> int:
    """
    50 plus severity and impact bonuses plus 2 per extra affected URL
    (capped at 10), clamped to 100.
    """
    affected_bonus = min(max((affected_count - 1) * 2, 0), MAX_AFFECTED_BONUS)
    score = BASE_PRIORITY + SEVERITY_BONUS.get(severity, 0) + IMPACT_BONUS.get(estimated_impact, 0) + affected_bonus
    return min(score, MAX_PRIORITY)


def find_similar_action_item(user, site_url: str, issue_type: str, issue_category: str) -> Optional[ActionItem]:
    """An open item for the same issue on any spelling of the site, oldest first."""
    return (
        ActionItem.objects
        .filter(
            user=user,
            site_url__in=url_variations(site_url),
            issue_type=issue_type,
            issue_category=issue_category,
        )
        .exclude(status__in=TERMINAL_STATUSES)
        .order_by('detected_at')
        .first()
    )


def create_action_item(user, site_url: str, issue) -> ActionItem:
    """
    Persist a DetectedIssue, or return the open item that already covers it.

    An existing item is returned untouched: its status, priority and
    timestamps are not refreshed by re-detection.
    """
    existing = find_similar_action_item(user, site_url, issue.issue_type, issue.category)
    if existing is not None:
        logger.info(f"Action item already open for {issue.issue_type} on {site_url}: {existing.id} ({existing.status})")
        return existing

    priority_score = calculate_priority_score(issue.severity, issue.estimated_impact, len(issue.affected_urls))

    with transaction.atomic():
        # A concurrent scan may have inserted the same item since the first check
        existing = find_similar_action_item(user, site_url, issue.issue_type, issue.category)
        if existing is not None:
            return existing

        item = ActionItem.objects.create(
            user=user,
            site_url=site_url,
            issue_type=issue.issue_type,
            issue_category=issue.category,
            severity=issue.severity,
            title=issue.title,
            description=issue.description,
            impact_description=issue.impact_description,
            fix_recommendation=issue.fix_recommendation,
            affected_urls=list(issue.affected_urls),
            reference_id=issue.reference_id,
            reference_table=issue.reference_table,
            status='detected',
            priority_score=priority_score,
            estimated_impact=issue.estimated_impact,
            estimated_effort=issue.estimated_effort,
            metadata=dict(issue.metadata or {}),
        )

    logger.info(f"Created action item {item.id}: {item.issue_type} on {site_url} (priority {priority_score})")
    return item


def process_detected_issues(user, site_url: str, issues: Iterable) -> List[ActionItem]:
    return [create_action_item(user, site_url, issue) for issue in issues]


def get_action_items(
    user,
    site_url: Optional[str] = None,
    status: Optional[Sequence[str]] = None,
    category: Optional[str] = None,
    severity: Optional[str] = None,
    limit: Optional[int] = None,
):
    """Items for a user, highest priority first, oldest first within a priority."""
    queryset = ActionItem.objects.filter(user=user)
    if site_url:
        queryset = queryset.filter(site_url__in=url_variations(site_url))
    if status:
        queryset = queryset.filter(status__in=list(status))
    if category:
        queryset = queryset.filter(issue_category=category)
    if severity:
        queryset = queryset.filter(severity=severity)
    queryset = queryset.order_by('-priority_score', 'detected_at')
    if limit:
        queryset = queryset[:limit]
    return queryset
