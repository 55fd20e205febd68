"""
Scan and verification cycles.

Both are stateless: call them from a view, a management command or a
scheduler. Database errors propagate to the caller.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from django.conf import settings
from django.db import connections
from django.db.models import Q
from django.utils import timezone

from action_items.constants import AWAITING_VERIFICATION_STATUSES, RECHECK_VERIFICATION_STATUSES
from action_items.detectors import collect_site_signals, detect_issues
from action_items.ledger import process_detected_issues
from action_items.models import ActionItem
from action_items.verification import verify
from sites.normalization import is_valid_site_identifier, url_variations

logger = logging.getLogger(__name__)


def run_scan_cycle(user, site_url: str, deadline: Optional[float] = None) -> dict:
    """
    Detect issues for one site and record them in the ledger.

    A malformed site identifier is skipped without touching the ledger.
    """
    if not is_valid_site_identifier(site_url):
        logger.warning(f"Skipping scan of malformed site identifier {site_url!r}")
        return {'site_url': site_url, 'skipped': True, 'issues_detected': 0, 'created': 0, 'action_items': []}

    started = timezone.now()
    signals = collect_site_signals(user, site_url, deadline)
    issues = detect_issues(signals)
    items = process_detected_issues(user, site_url, issues)
    created = sum(1 for item in items if item.created_at >= started)

    logger.info(f"Scan of {site_url}: {len(issues)} issue(s) detected, {created} new action item(s)")
    return {
        'site_url': site_url,
        'skipped': False,
        'issues_detected': len(issues),
        'created': created,
        'action_items': items,
    }


def pending_verification_items(user=None, site_url: Optional[str] = None, force: bool = False):
    """Items waiting on a verification attempt, highest priority first."""
    queryset = ActionItem.objects.filter(
        status__in=AWAITING_VERIFICATION_STATUSES,
        verification_status__in=RECHECK_VERIFICATION_STATUSES,
    )
    if user is not None:
        queryset = queryset.filter(user=user)
    if site_url:
        queryset = queryset.filter(site_url__in=url_variations(site_url))
    if not force:
        queryset = queryset.filter(Q(next_check_at__isnull=True) | Q(next_check_at__lte=timezone.now()))

    max_attempts = getattr(settings, 'ACTION_ITEM_MAX_VERIFICATION_ATTEMPTS', None)
    if max_attempts:
        queryset = queryset.filter(verification_attempts__lt=max_attempts)
    return queryset.order_by('-priority_score', 'detected_at')


def _verify_in_worker(item: ActionItem, deadline: Optional[float]) -> bool:
    try:
        return verify(item, deadline)
    finally:
        connections.close_all()


def run_verification_cycle(user=None, site_url: Optional[str] = None, force: bool = False,
                           deadline: Optional[float] = None) -> dict:
    """
    Verify every due item. Returns counts of checked, verified and failed
    items plus errors (items skipped for a malformed site identifier).
    """
    items = list(pending_verification_items(user=user, site_url=site_url, force=force).select_related('user'))
    summary = {'total_checked': 0, 'verified': 0, 'failed': 0, 'errors': 0}

    checkable = []
    for item in items:
        if is_valid_site_identifier(item.site_url):
            checkable.append(item)
        else:
            logger.warning(f"Skipping verification of {item.id}: malformed site identifier {item.site_url!r}")
            summary['errors'] += 1

    max_workers = int(getattr(settings, 'VERIFICATION_MAX_WORKERS', 1))
    if max_workers > 1 and len(checkable) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            outcomes = list(executor.map(lambda item: _verify_in_worker(item, deadline), checkable))
    else:
        outcomes = [verify(item, deadline) for item in checkable]

    summary['total_checked'] = len(checkable)
    summary['verified'] = sum(1 for outcome in outcomes if outcome)
    summary['failed'] = summary['total_checked'] - summary['verified']
    logger.info(
        f"Verification cycle: checked={summary['total_checked']} verified={summary['verified']} "
        f"failed={summary['failed']} errors={summary['errors']}"
    )
    return summary
