"""
Google Search Console Integration

The authority on whether Google has fetched a sitemap and whether a URL can
be indexed. Everything here is eventually consistent: callers treat a
failure as "no fresh data" and carry on with what the database already has.
"""
import logging
import os
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

import requests
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from integrations.models import SitemapSubmission, UrlInspection
from sites.normalization import (
    find_matching_sitemap,
    is_same_site,
    to_canonical_https,
    to_domain_property,
    url_variations,
)

logger = logging.getLogger(__name__)

# OAuth Configuration (from environment)
GSC_CLIENT_ID = os.environ.get('GSC_CLIENT_ID', '')
GSC_CLIENT_SECRET = os.environ.get('GSC_CLIENT_SECRET', '')

GOOGLE_TOKEN_URL = 'https://oauth2.googleapis.com/token'
GSC_API_BASE = 'https://searchconsole.googleapis.com/v1'
WEBMASTERS_API_BASE = 'https://www.googleapis.com/webmasters/v3'

GSC_REQUEST_TIMEOUT = 30


class GSCError(Exception):
    """Search Console could not be reached or refused the request."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


def get_valid_access_token(site) -> str:
    """Get a valid access token, refreshing if needed."""
    if site.gsc_access_token and site.gsc_token_expires_at and site.gsc_token_expires_at > timezone.now():
        return site.gsc_access_token

    if not site.gsc_refresh_token:
        raise GSCError('GSC_NOT_CONNECTED', f"Site {site.id} has no GSC refresh token")

    token_data = {
        'client_id': GSC_CLIENT_ID,
        'client_secret': GSC_CLIENT_SECRET,
        'refresh_token': site.gsc_refresh_token,
        'grant_type': 'refresh_token',
    }

    response = requests.post(GOOGLE_TOKEN_URL, data=token_data, timeout=GSC_REQUEST_TIMEOUT)

    if response.status_code != 200:
        logger.error(f"Token refresh failed for site {site.id}: {response.text}")
        raise GSCError('GSC_TOKEN_REFRESH_FAILED', 'Could not refresh the GSC access token')

    tokens = response.json()
    site.gsc_access_token = tokens.get('access_token')
    site.gsc_token_expires_at = timezone.now() + timedelta(seconds=tokens.get('expires_in', 3600))
    site.save(update_fields=['gsc_access_token', 'gsc_token_expires_at', 'updated_at'])

    return site.gsc_access_token


def find_connected_site(user, site_url: str):
    """The user's GSC-connected Site for any spelling of site_url, or None."""
    from sites.models import Site

    candidates = Site.objects.filter(user=user, is_active=True, gsc_refresh_token__isnull=False).exclude(gsc_refresh_token='')
    for site in candidates:
        if is_same_site(site.url, site_url) or (site.gsc_site_url and is_same_site(site.gsc_site_url, site_url)):
            return site
    return None


def _property_candidates(site, site_url: str) -> List[str]:
    """GSC property spellings to try, the stored property first."""
    candidates = []
    if site.gsc_site_url:
        candidates.append(site.gsc_site_url)
    for candidate in (to_domain_property(site_url), f"{to_canonical_https(site_url)}/"):
        if candidate not in candidates:
            candidates.append(candidate)
    return candidates


def _auth_headers(access_token: str) -> Dict[str, str]:
    return {
        'Authorization': f'Bearer {access_token}',
        'Content-Type': 'application/json',
    }


def list_sitemaps(access_token: str, property_url: str) -> List[Dict[str, Any]]:
    """
    List sitemaps Google knows about for a property.

    Raises GSCError on any non-200 response.
    """
    encoded_site = requests.utils.quote(property_url, safe='')
    url = f'{WEBMASTERS_API_BASE}/sites/{encoded_site}/sitemaps'
    response = requests.get(url, headers=_auth_headers(access_token), timeout=GSC_REQUEST_TIMEOUT)

    if response.status_code != 200:
        raise GSCError('GSC_SITEMAPS_FAILED', f"Listing sitemaps for {property_url} returned {response.status_code}")

    return response.json().get('sitemap', [])


def _parse_timestamp(value) -> Optional[datetime]:
    """RFC 3339 timestamp from GSC; raises GSCError when it cannot be read."""
    if not value:
        return None
    try:
        parsed = parse_datetime(value)
    except (TypeError, ValueError):
        parsed = None
    if parsed is None:
        raise GSCError('GSC_BAD_RESPONSE', f"Unreadable timestamp {value!r}")
    return parsed


def _sitemap_fields(gsc_sitemap: Dict[str, Any]) -> Dict[str, Any]:
    last_downloaded = _parse_timestamp(gsc_sitemap.get('lastDownloaded'))
    try:
        warnings = int(gsc_sitemap.get('warnings') or 0)
        errors = int(gsc_sitemap.get('errors') or 0)
    except (TypeError, ValueError):
        raise GSCError('GSC_BAD_RESPONSE', f"Unreadable warning/error counts in {gsc_sitemap!r}")
    return {
        'last_downloaded': last_downloaded,
        'is_pending': bool(gsc_sitemap.get('isPending', False)),
        'warnings': warnings,
        'errors': errors,
        'status': 'processed' if last_downloaded else 'submitted',
    }


def refresh_sitemap_status(user, site_url: str) -> int:
    """
    Pull sitemap status from GSC into the matching SitemapSubmission rows.

    Returns the number of local records updated. Raises GSCError when the
    site has no GSC connection or no property spelling answers.
    """
    site = find_connected_site(user, site_url)
    if site is None:
        raise GSCError('GSC_NOT_CONNECTED', f"No GSC connection for {site_url}")

    access_token = get_valid_access_token(site)

    gsc_sitemaps = None
    last_error = None
    for property_url in _property_candidates(site, site_url):
        try:
            gsc_sitemaps = list_sitemaps(access_token, property_url)
            break
        except GSCError as exc:
            last_error = exc
            logger.info(f"Sitemap listing failed for property {property_url}, trying next format")
    if gsc_sitemaps is None:
        raise last_error

    local_records = list(SitemapSubmission.objects.filter(user=user, site_url__in=url_variations(site_url)))
    updated = 0
    for gsc_sitemap in gsc_sitemaps:
        record = find_matching_sitemap(gsc_sitemap.get('path', ''), local_records)
        if record is None:
            continue
        try:
            fields = _sitemap_fields(gsc_sitemap)
        except GSCError as exc:
            logger.warning(f"Skipping sitemap {gsc_sitemap.get('path')} for {site_url}: {exc.message}")
            continue
        for name, value in fields.items():
            setattr(record, name, value)
        record.save(update_fields=['last_downloaded', 'is_pending', 'warnings', 'errors', 'status', 'updated_at'])
        updated += 1

    logger.info(f"Refreshed {updated} sitemap record(s) for {site_url} from {len(gsc_sitemaps)} GSC sitemap(s)")
    return updated


def inspect_url(access_token: str, property_url: str, url: str) -> Dict[str, Any]:
    """Run the URL Inspection API for one URL and return its inspectionResult."""
    payload = {
        'inspectionUrl': url,
        'siteUrl': property_url,
    }
    response = requests.post(
        f'{GSC_API_BASE}/urlInspection/index:inspect',
        headers=_auth_headers(access_token),
        json=payload,
        timeout=GSC_REQUEST_TIMEOUT,
    )

    if response.status_code != 200:
        raise GSCError('GSC_INSPECTION_FAILED', f"Inspecting {url} returned {response.status_code}")

    return response.json().get('inspectionResult', {})


def _inspection_fields(result: Dict[str, Any]) -> Dict[str, Any]:
    index_result = result.get('indexStatusResult') or {}
    mobile_result = result.get('mobileUsabilityResult') or {}
    verdict = index_result.get('verdict') or 'UNKNOWN'
    return {
        'index_status': verdict,
        'can_be_indexed': verdict == 'PASS',
        'fetch_status': index_result.get('pageFetchState') or 'UNKNOWN',
        'robots_txt_state': index_result.get('robotsTxtState') or 'UNKNOWN',
        'mobile_usable': mobile_result.get('verdict') == 'PASS' if mobile_result else None,
        'mobile_usability_issues': len(mobile_result.get('issues') or []),
        'last_crawl_time': _parse_timestamp(index_result.get('lastCrawlTime')),
        'inspection_data': result,
    }


def inspect_urls(user, site_url: str, urls: Iterable[str]) -> List[UrlInspection]:
    """
    Re-inspect URLs through GSC and upsert their UrlInspection rows.

    A URL whose inspection fails is logged and skipped. Raises GSCError when
    the site has no GSC connection or every inspection failed.
    """
    site = find_connected_site(user, site_url)
    if site is None:
        raise GSCError('GSC_NOT_CONNECTED', f"No GSC connection for {site_url}")

    access_token = get_valid_access_token(site)
    property_url = _property_candidates(site, site_url)[0]

    urls = list(urls)
    records = []
    for url in urls:
        try:
            fields = _inspection_fields(inspect_url(access_token, property_url, url))
        except GSCError as exc:
            logger.warning(f"URL inspection failed for {url}: {exc.message}")
            continue

        fields['inspected_at'] = timezone.now()
        record, _ = UrlInspection.objects.update_or_create(
            user=user,
            site_url=site_url,
            inspected_url=url,
            defaults=fields,
        )
        records.append(record)

    if urls and not records:
        raise GSCError('GSC_INSPECTION_FAILED', f"No URL inspections succeeded for {site_url}")
    return records


def latest_inspections(user, site_url: str, urls: Optional[Iterable[str]] = None) -> Dict[str, UrlInspection]:
    """
    Most recent inspection per URL across every spelling of the site.
    """
    queryset = UrlInspection.objects.filter(user=user, site_url__in=url_variations(site_url))
    if urls is not None:
        queryset = queryset.filter(inspected_url__in=list(urls))
    latest = {}
    for record in queryset.order_by('-inspected_at'):
        latest.setdefault(record.inspected_url, record)
    return latest
