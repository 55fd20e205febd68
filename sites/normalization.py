"""
Site identifier normalization.

GSC, the database and user input spell the same site differently:
"sc-domain:example.com", "https://www.example.com/", "example.com" and so on.
Everything that compares or looks up records by site goes through here.
"""
import re
from typing import Iterable, Optional, Set
from urllib.parse import urlsplit

DOMAIN_PROPERTY_PREFIX = 'sc-domain:'

_HOSTNAME_RE = re.compile(
    r'^(?=.{1,253}$)([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?)(\.[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?)*$'
)


def extract_domain(identifier: str) -> str:
    """
    Pull the lowercase hostname out of any spelling of a site identifier.

    Returns '' when nothing resembling a host can be found.
    """
    if not identifier:
        return ''
    value = identifier.strip().lower()
    if value.startswith(DOMAIN_PROPERTY_PREFIX):
        value = value[len(DOMAIN_PROPERTY_PREFIX):]
    if '://' not in value:
        value = f'http://{value}'
    try:
        host = urlsplit(value).hostname or ''
    except ValueError:
        return ''
    return host.rstrip('.')


def _bare_domain(identifier: str) -> str:
    domain = extract_domain(identifier)
    if domain.startswith('www.'):
        domain = domain[4:]
    return domain


def is_valid_site_identifier(identifier: Optional[str]) -> bool:
    if not identifier or any(ch.isspace() for ch in identifier.strip()):
        return False
    domain = _bare_domain(identifier)
    if not domain:
        return False
    return domain == 'localhost' or ('.' in domain and bool(_HOSTNAME_RE.match(domain)))


def url_variations(identifier: str) -> Set[str]:
    """
    All equivalent spellings of a site identifier.

    Includes the input itself so records stored under an odd spelling still
    match. Malformed input yields a single-element set holding the input.
    """
    if not is_valid_site_identifier(identifier):
        return {identifier}
    domain = _bare_domain(identifier)
    variations = {
        identifier,
        domain,
        f'{DOMAIN_PROPERTY_PREFIX}{domain}',
    }
    for scheme in ('https', 'http'):
        for host in (domain, f'www.{domain}'):
            variations.add(f'{scheme}://{host}')
            variations.add(f'{scheme}://{host}/')
    return variations


def normalize_for_comparison(url: str) -> str:
    """Lowercase, drop protocol, www., sc-domain:, a trailing /sitemap.xml and trailing slash."""
    value = (url or '').strip().lower()
    value = re.sub(r'^https?://', '', value)
    value = re.sub(r'^www\.', '', value)
    if value.startswith(DOMAIN_PROPERTY_PREFIX):
        value = value[len(DOMAIN_PROPERTY_PREFIX):]
    value = re.sub(r'^www\.', '', value)
    value = re.sub(r'/sitemap\.xml$', '', value)
    return value.rstrip('/')


def is_same_site(a: str, b: str) -> bool:
    if not is_valid_site_identifier(a) or not is_valid_site_identifier(b):
        return (a or '').strip() == (b or '').strip()
    return _bare_domain(a) == _bare_domain(b)


def to_canonical_https(identifier: str) -> str:
    """https://<domain> without www. Malformed input comes back unchanged."""
    if not is_valid_site_identifier(identifier):
        return identifier
    return f'https://{_bare_domain(identifier)}'


def to_www_https(identifier: str) -> str:
    if not is_valid_site_identifier(identifier):
        return identifier
    return f'https://www.{_bare_domain(identifier)}'


def to_domain_property(identifier: str) -> str:
    if not is_valid_site_identifier(identifier):
        return identifier
    return f'{DOMAIN_PROPERTY_PREFIX}{_bare_domain(identifier)}'


def domain_property_to_https(identifier: str) -> str:
    if identifier and identifier.startswith(DOMAIN_PROPERTY_PREFIX):
        return f'https://{identifier[len(DOMAIN_PROPERTY_PREFIX):]}'
    return identifier


def find_matching_sitemap(sitemap_url: str, records: Iterable):
    """
    Pick the local sitemap record that corresponds to a sitemap URL.

    An exact sitemap_url match wins; otherwise the first record whose
    site_url is the same site as the sitemap's host.
    """
    records = list(records)
    wanted = normalize_for_comparison(sitemap_url)
    for record in records:
        if normalize_for_comparison(record.sitemap_url) == wanted:
            return record

    for record in records:
        if is_same_site(record.site_url, sitemap_url):
            return record
    return None
