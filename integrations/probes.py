"""
Live probing of a site's public resources.

Answers "does /robots.txt (or /sitemap.xml, ...) actually resolve right now"
and "is the agent script serving these resources dynamically". Every
network failure turns into a negative result; nothing here raises.
"""
import logging
import threading
import time
import weakref
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

import requests
from django.conf import settings

from sites.normalization import (
    extract_domain,
    is_valid_site_identifier,
    to_canonical_https,
    to_www_https,
)

logger = logging.getLogger(__name__)

# Servers that refuse HEAD outright; retry those with GET
HEAD_REJECTED_STATUSES = (405, 501)

MAX_BODY_CHARS = 512 * 1024

_slots_lock = threading.Lock()
# Entries disappear once no probe holds the semaphore
_site_slots = weakref.WeakValueDictionary()


@dataclass
class ProbeResult:
    """Outcome of probing one resource of a site."""
    exists: bool
    url: Optional[str] = None
    status_code: Optional[int] = None
    content_type_hint: str = ''
    body: str = ''
    error: Optional[str] = None


def deadline_in(seconds: float) -> float:
    """A deadline usable by probe/fetch_resource/detect_dynamic_serving."""
    return time.monotonic() + seconds


def _time_left(deadline: Optional[float]) -> Optional[float]:
    if deadline is None:
        return None
    return deadline - time.monotonic()


def _request_timeout(deadline: Optional[float]) -> Optional[float]:
    """Per-request timeout capped by the caller's deadline; None once it has passed."""
    timeout = float(getattr(settings, 'PROBE_TIMEOUT_SECONDS', 10))
    left = _time_left(deadline)
    if left is None:
        return timeout
    if left <= 0:
        return None
    return min(timeout, left)


def _slot_for(site_identifier: str) -> threading.BoundedSemaphore:
    key = extract_domain(site_identifier)
    if key.startswith('www.'):
        key = key[4:]
    with _slots_lock:
        slot = _site_slots.get(key)
        if slot is None:
            slot = threading.BoundedSemaphore(int(getattr(settings, 'PROBE_MAX_CONCURRENCY_PER_SITE', 4)))
            _site_slots[key] = slot
        return slot


def _candidate_urls(site_identifier: str, resource_path: str):
    path = resource_path if resource_path.startswith('/') else f'/{resource_path}'
    return [
        f'{to_canonical_https(site_identifier)}{path}',
        f'{to_www_https(site_identifier)}{path}',
    ]


def _send(method: str, url: str, deadline: Optional[float]) -> ProbeResult:
    """One HTTP exchange with the bounded redirect and timeout policy."""
    timeout = _request_timeout(deadline)
    if timeout is None:
        return ProbeResult(exists=False, url=url, error='deadline_exceeded')

    session = requests.Session()
    session.max_redirects = int(getattr(settings, 'PROBE_MAX_REDIRECTS', 5))
    headers = {'User-Agent': getattr(settings, 'PROBE_USER_AGENT', 'SiteGuard-ActionItemBot/1.0')}
    try:
        if method == 'HEAD':
            response = session.head(url, headers=headers, timeout=timeout, allow_redirects=True)
        else:
            response = session.get(url, headers=headers, timeout=timeout, allow_redirects=True)
        body = response.text[:MAX_BODY_CHARS] if method == 'GET' else ''
        return ProbeResult(
            exists=200 <= response.status_code < 300,
            url=url,
            status_code=response.status_code,
            content_type_hint=(response.headers.get('Content-Type') or '').lower(),
            body=body,
        )
    except requests.TooManyRedirects:
        return ProbeResult(exists=False, url=url, error='too_many_redirects')
    except requests.exceptions.Timeout:
        return ProbeResult(exists=False, url=url, error='timeout')
    except requests.exceptions.ConnectionError:
        return ProbeResult(exists=False, url=url, error='connection_error')
    except requests.exceptions.RequestException as exc:
        logger.debug(f"{method} {url} failed: {exc}")
        return ProbeResult(exists=False, url=url, error='request_error')
    finally:
        session.close()


def content_type_check(content_types: Optional[Iterable[str]]) -> Optional[Callable[[ProbeResult], bool]]:
    if not content_types:
        return None
    content_types = tuple(content_types)
    return lambda result: any(hint in result.content_type_hint for hint in content_types)


def _probe_urls(site_identifier, resource_path, method, deadline, accept=None) -> ProbeResult:
    if not is_valid_site_identifier(site_identifier):
        logger.warning(f"Refusing to probe malformed site identifier: {site_identifier!r}")
        return ProbeResult(exists=False, error='invalid_site')

    slot = _slot_for(site_identifier)
    left = _time_left(deadline)
    acquired = slot.acquire(timeout=max(left, 0)) if left is not None else slot.acquire()
    if not acquired:
        return ProbeResult(exists=False, error='deadline_exceeded')

    try:
        last = ProbeResult(exists=False)
        for url in _candidate_urls(site_identifier, resource_path):
            result = _send(method, url, deadline)
            if method == 'HEAD' and result.status_code in HEAD_REJECTED_STATUSES:
                result = _send('GET', url, deadline)
            if result.exists and (accept is None or accept(result)):
                return result
            if result.exists:
                result.exists = False
                result.error = 'rejected_content'
            last = result
            if result.error == 'deadline_exceeded':
                break
        return last
    finally:
        slot.release()


def probe(site_identifier: str, resource_path: str, deadline: Optional[float] = None,
          content_types: Optional[Iterable[str]] = None) -> ProbeResult:
    """
    Check whether a site-relative resource resolves.

    Tries the canonical https://<domain> spelling, then https://www.<domain>,
    stopping at the first 2xx. When content_types is given, the response's
    Content-Type must contain one of them.
    """
    result = _probe_urls(site_identifier, resource_path, 'HEAD', deadline, content_type_check(content_types))
    logger.debug(f"probe {site_identifier}{resource_path}: exists={result.exists} status={result.status_code} error={result.error}")
    return result


def fetch_resource(site_identifier: str, resource_path: str, deadline: Optional[float] = None,
                   accept: Optional[Callable[[ProbeResult], bool]] = None) -> ProbeResult:
    """
    Like probe() but with GET, so the body is available to the caller.

    accept, when given, decides whether a 2xx response counts; a rejected
    response moves on to the next spelling.
    """
    return _probe_urls(site_identifier, resource_path, 'GET', deadline, accept)


def has_agent_signature(html: str) -> bool:
    """Both an agent script reference and an embedded site token must be present."""
    if not html:
        return False
    script_markers = getattr(settings, 'AGENT_SCRIPT_MARKERS', ('seoagent.js', 'SEO-METRICS'))
    token_markers = getattr(settings, 'AGENT_TOKEN_MARKERS', ('idv = ', 'website_token'))
    has_script = any(marker in html for marker in script_markers)
    has_token = any(marker in html for marker in token_markers)
    return has_script and has_token


def detect_dynamic_serving(site_identifier: str, deadline: Optional[float] = None) -> bool:
    """
    Whether the site root carries the agent script that serves robots.txt
    and sitemap.xml dynamically.
    """
    result = fetch_resource(site_identifier, '/', deadline, accept=lambda r: has_agent_signature(r.body))
    detected = result.exists
    logger.info(f"Dynamic serving for {site_identifier}: {'detected' if detected else 'not detected'}")
    return detected
