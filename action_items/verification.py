"""
Verification engine.

Decides whether the fix for an action item actually took effect by
checking live signals, never by trusting the stored record alone. Each
category is an ordered chain of strategies; the first one that confirms
wins. GSC and network failures count as "not confirmed yet" and the item
is rescheduled.
"""
import logging
import re
import threading
import time
import weakref
from typing import Callable, List, Optional, Tuple

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from action_items import lifecycle
from action_items.detectors import (
    ROBOTS_PATH,
    SITEMAP_CONTENT_TYPES,
    SITEMAP_PATH,
)
from action_items.fallbacks import best_effort, first_confirmed
from action_items.models import ActionItem
from integrations import gsc, probes
from integrations.models import RobotsAnalysis, SchemaGeneration, SitemapSubmission
from sites.normalization import find_matching_sitemap, to_canonical_https, url_variations

logger = logging.getLogger(__name__)

Strategy = Tuple[str, Callable[[], Optional[bool]]]

ROBOTS_DIRECTIVE_RE = re.compile(r'^\s*(user-agent|disallow|allow|sitemap)\s*:', re.IGNORECASE | re.MULTILINE)

DYNAMIC_ROBOTS_CONTENT = 'Dynamic serving via agent script'

_registry_lock = threading.Lock()
# Entries disappear once no caller holds the lock
_key_locks = weakref.WeakValueDictionary()


def _lock_for(key) -> threading.Lock:
    with _registry_lock:
        lock = _key_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _key_locks[key] = lock
        return lock


def _pause(setting_name: str, default: float):
    delay = float(getattr(settings, setting_name, default))
    if delay > 0:
        time.sleep(delay)


def looks_like_robots_txt(body: str) -> bool:
    """Crawl-control syntax present and not an HTML page."""
    if not body:
        return False
    if body.lstrip()[:1] == '<':
        return False
    return bool(ROBOTS_DIRECTIVE_RE.search(body))


# Sitemap

def _expected_sitemap_url(item: ActionItem) -> str:
    return (
        (item.metadata or {}).get('sitemap_url')
        or (item.affected_urls[0] if item.affected_urls else None)
        or f'{to_canonical_https(item.site_url)}{SITEMAP_PATH}'
    )


def sitemap_strategies(item: ActionItem, deadline=None) -> List[Strategy]:
    def authority():
        refreshed = best_effort('GSC sitemap refresh', gsc.refresh_sitemap_status, item.user, item.site_url)
        if refreshed is not None:
            _pause('SITEMAP_VERIFY_DELAY_SECONDS', 1.5)
        records = SitemapSubmission.objects.filter(user=item.user, site_url__in=url_variations(item.site_url))
        record = find_matching_sitemap(_expected_sitemap_url(item), records)
        return bool(record and record.last_downloaded and not record.is_pending and record.status == 'processed')

    def direct_probe():
        return probes.probe(item.site_url, SITEMAP_PATH, deadline, SITEMAP_CONTENT_TYPES).exists

    def signature():
        return probes.detect_dynamic_serving(item.site_url, deadline)

    return [
        ('gsc_sitemap_status', authority),
        ('direct_probe', direct_probe),
        ('agent_signature', signature),
    ]


# Robots

def robots_strategies(item: ActionItem, deadline=None, observed=None) -> List[Strategy]:
    observed = observed if observed is not None else {}

    def direct_fetch():
        result = probes.fetch_resource(
            item.site_url, ROBOTS_PATH, deadline,
            accept=lambda r: looks_like_robots_txt(r.body),
        )
        if result.exists:
            observed['content'] = result.body
        return result.exists

    def signature():
        return probes.detect_dynamic_serving(item.site_url, deadline)

    return [
        ('direct_fetch', direct_fetch),
        ('agent_signature', signature),
    ]


def _write_back_robots(item: ActionItem, method: str, content: Optional[str]):
    dynamic = method == 'agent_signature'
    body = content if content else DYNAMIC_ROBOTS_CONTENT
    RobotsAnalysis.objects.update_or_create(
        user=item.user,
        site_url=item.site_url,
        defaults={
            'exists': True,
            'accessible': not dynamic,
            'size': len(body),
            'content': body,
            'google_fetch_status': 'warning' if dynamic else 'success',
            'google_fetch_errors': 0,
            'analyzed_at': timezone.now(),
        },
    )


# Indexing, schema and mobile

def indexing_strategies(item: ActionItem, deadline=None) -> List[Strategy]:
    urls = list(item.affected_urls or [])
    if not urls:
        return [('no_affected_urls', lambda: True)]

    def reinspect():
        limit = int(getattr(settings, 'INDEXING_REINSPECT_LIMIT', 3))
        inspected = best_effort('GSC URL inspection', gsc.inspect_urls, item.user, item.site_url, urls[:limit])
        if inspected is not None:
            _pause('INDEXING_VERIFY_DELAY_SECONDS', 2.0)
        latest = gsc.latest_inspections(item.user, item.site_url, urls)
        return all(
            url in latest and latest[url].can_be_indexed and latest[url].index_status != 'FAIL'
            for url in urls
        )

    return [('url_inspection', reinspect)]


def schema_strategies(item: ActionItem, deadline=None) -> List[Strategy]:
    def stored_schemas():
        records = SchemaGeneration.objects.filter(
            user=item.user,
            site_url__in=url_variations(item.site_url),
            schemas_generated__gt=0,
        )
        if item.issue_type == 'schema_missing_all':
            return records.exists()
        covered = set(records.values_list('page_url', flat=True))
        return all(url in covered for url in item.affected_urls or [])

    return [('schema_records', stored_schemas)]


def mobile_strategies(item: ActionItem, deadline=None) -> List[Strategy]:
    urls = list(item.affected_urls or [])

    def stored_inspections():
        latest = gsc.latest_inspections(item.user, item.site_url, urls)
        return all(url in latest and latest[url].mobile_usable is True for url in urls)

    return [('url_inspection', stored_inspections)]


STRATEGY_BUILDERS = {
    'sitemap': sitemap_strategies,
    'indexing': indexing_strategies,
    'schema': schema_strategies,
    'mobile': mobile_strategies,
}


def run_checks(item: ActionItem, deadline=None):
    """
    Evaluate the item's strategy chain without recording anything.

    Returns (confirmed, details).
    """
    observed = {}
    if item.issue_category == 'robots':
        strategies = robots_strategies(item, deadline, observed)
    elif item.issue_category in STRATEGY_BUILDERS:
        strategies = STRATEGY_BUILDERS[item.issue_category](item, deadline)
    else:
        strategies = []

    confirmed, method, checks = first_confirmed(strategies)
    details = {
        'method': method,
        'checks': [{'strategy': name, 'outcome': outcome} for name, outcome in checks],
        'checked_at': timezone.now().isoformat(),
    }
    if not strategies:
        details['reason'] = f"No verification signal for category {item.issue_category}"

    if confirmed and item.issue_category == 'robots':
        best_effort(
            'robots.txt analysis write-back', _write_back_robots, item, method, observed.get('content'),
            errors=(DatabaseError,),
        )
    return confirmed, details


def verify(item: ActionItem, deadline: Optional[float] = None) -> bool:
    """
    Verify one action item and record the attempt.

    Items already in a terminal status are not re-verified. Concurrent
    calls for the same (user, site, issue_type) run one at a time.
    """
    if item.is_terminal:
        logger.info(f"Skipping verification of {item.id}: already {item.status}")
        return item.status == 'verified'

    with _lock_for(item.verification_key):
        item.refresh_from_db()
        if item.is_terminal:
            return item.status == 'verified'

        confirmed, details = run_checks(item, deadline)

        with transaction.atomic():
            locked = ActionItem.objects.select_for_update().get(pk=item.pk)
            if locked.is_terminal:
                item.refresh_from_db()
                return locked.status == 'verified'
            lifecycle.record_verification(locked, confirmed, details)

        item.refresh_from_db()

    logger.info(
        f"Verification of {item.issue_type} for {item.site_url}: "
        f"{'verified via ' + details['method'] if confirmed else 'not confirmed'}"
    )
    return confirmed
