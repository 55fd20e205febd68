"""
Issue detectors.

collect_site_signals() gathers everything a scan needs for one site:
a best-effort GSC refresh, the stored signal records, live probes of
/sitemap.xml and /robots.txt, and (only when a probe came back empty)
one agent-script signature check. The detect_* functions are then pure
functions of those signals returning DetectedIssue lists; they never
touch the ledger.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from django.conf import settings

from action_items.fallbacks import best_effort
from action_items.indexing import analyze_indexing_issues
from integrations import gsc, probes
from integrations.models import RobotsAnalysis, SchemaGeneration, SitemapSubmission
from sites.normalization import find_matching_sitemap, to_canonical_https, url_variations

logger = logging.getLogger(__name__)

SITEMAP_PATH = '/sitemap.xml'
ROBOTS_PATH = '/robots.txt'
SITEMAP_CONTENT_TYPES = ('xml', 'text')

DETECTION_AGENT_SCRIPT = 'agent_script_detected'
DETECTION_DIRECT_PROBE = 'direct_probe'


@dataclass
class DetectedIssue:
    """A problem found by a detector, before it reaches the ledger."""
    issue_type: str
    category: str
    severity: str
    title: str
    description: str
    impact_description: str = ''
    fix_recommendation: str = ''
    affected_urls: List[str] = field(default_factory=list)
    reference_id: Optional[str] = None
    reference_table: Optional[str] = None
    estimated_impact: str = 'medium'
    estimated_effort: str = 'medium'
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SiteSignals:
    """Everything the detectors look at for one site."""
    site_url: str
    sitemap_exists: bool = False
    robots_exists: bool = False
    dynamic_serving: bool = False
    authority_refreshed: bool = False
    sitemap_record: Optional[SitemapSubmission] = None
    robots_analysis: Optional[RobotsAnalysis] = None
    inspections: List[Any] = field(default_factory=list)
    schema_records: List[SchemaGeneration] = field(default_factory=list)

    @property
    def canonical_url(self) -> str:
        return to_canonical_https(self.site_url)

    @property
    def sitemap_url(self) -> str:
        if self.sitemap_record is not None:
            return self.sitemap_record.sitemap_url
        return f'{self.canonical_url}{SITEMAP_PATH}'

    @property
    def robots_url(self) -> str:
        return f'{self.canonical_url}{ROBOTS_PATH}'


def latest_robots_analysis(user, site_url: str) -> Optional[RobotsAnalysis]:
    return (
        RobotsAnalysis.objects
        .filter(user=user, site_url__in=url_variations(site_url))
        .order_by('-analyzed_at')
        .first()
    )


def collect_site_signals(user, site_url: str, deadline: Optional[float] = None) -> SiteSignals:
    """
    Gather detector inputs for a site.

    Database reads happen on the calling thread; only the HTTP probes run
    in the worker pool. Store errors propagate.
    """
    refreshed = best_effort('GSC sitemap refresh', gsc.refresh_sitemap_status, user, site_url)
    signals = SiteSignals(site_url=site_url, authority_refreshed=refreshed is not None)

    sitemap_records = SitemapSubmission.objects.filter(user=user, site_url__in=url_variations(site_url))
    signals.sitemap_record = find_matching_sitemap(signals.sitemap_url, sitemap_records)
    signals.robots_analysis = latest_robots_analysis(user, site_url)
    signals.inspections = list(gsc.latest_inspections(user, site_url).values())
    signals.schema_records = list(SchemaGeneration.objects.filter(user=user, site_url__in=url_variations(site_url)))

    with ThreadPoolExecutor(max_workers=2) as executor:
        sitemap_future = executor.submit(probes.probe, site_url, SITEMAP_PATH, deadline, SITEMAP_CONTENT_TYPES)
        # Any 2xx counts for robots.txt whatever its Content-Type
        robots_future = executor.submit(probes.probe, site_url, ROBOTS_PATH, deadline)
        signals.sitemap_exists = sitemap_future.result().exists
        signals.robots_exists = robots_future.result().exists

    if not (signals.sitemap_exists and signals.robots_exists):
        signals.dynamic_serving = probes.detect_dynamic_serving(site_url, deadline)

    logger.info(
        f"Signals for {site_url}: sitemap={signals.sitemap_exists} robots={signals.robots_exists} "
        f"dynamic={signals.dynamic_serving} gsc_refreshed={signals.authority_refreshed}"
    )
    return signals


def detect_sitemap_issues(signals: SiteSignals) -> List[DetectedIssue]:
    record = signals.sitemap_record
    exists = signals.sitemap_exists or signals.dynamic_serving
    dynamic_only = signals.dynamic_serving and not signals.sitemap_exists
    metadata = {
        'sitemap_url': signals.sitemap_url,
        'actually_exists': exists,
        'has_dynamic_serving': dynamic_only,
        'detection_method': DETECTION_AGENT_SCRIPT if dynamic_only else DETECTION_DIRECT_PROBE,
    }

    if exists and record is None:
        description = (
            'The agent script is serving your sitemap dynamically but it has not been submitted to Google Search Console.'
            if dynamic_only else
            'A sitemap.xml file exists at your website but has not been submitted to Google Search Console.'
        )
        return [DetectedIssue(
            issue_type='sitemap_not_submitted',
            category='sitemap',
            severity='medium',
            title='Sitemap Exists but Not Submitted to GSC',
            description=description,
            impact_description='Google may not discover all your pages efficiently without a submitted sitemap.',
            fix_recommendation='Submit your existing sitemap to Google Search Console.',
            affected_urls=[signals.sitemap_url],
            estimated_impact='medium',
            estimated_effort='easy',
            metadata=metadata,
        )]

    if not exists and record is None:
        return [DetectedIssue(
            issue_type='sitemap_missing',
            category='sitemap',
            severity='high',
            title='XML Sitemap Missing',
            description='No XML sitemap exists at your website and none has been submitted to Google Search Console.',
            impact_description='Missing sitemaps make it harder for search engines to discover and index your pages.',
            fix_recommendation='Generate and submit an XML sitemap to Google Search Console.',
            affected_urls=[signals.sitemap_url],
            reference_table='sitemap_submissions',
            estimated_impact='high',
            estimated_effort='easy',
            metadata=metadata,
        )]

    if not exists:
        return [DetectedIssue(
            issue_type='sitemap_broken',
            category='sitemap',
            severity='high',
            title='Submitted Sitemap Not Accessible',
            description='A sitemap has been submitted to Google Search Console but the URL is not accessible or returns invalid content.',
            impact_description='Google cannot process your sitemap, affecting page discovery and indexing.',
            fix_recommendation='Fix the sitemap URL or regenerate and resubmit the sitemap.',
            affected_urls=[record.sitemap_url],
            reference_id=str(record.id),
            reference_table='sitemap_submissions',
            estimated_impact='high',
            estimated_effort='medium',
            metadata=metadata,
        )]

    if record.last_downloaded is None or record.is_pending:
        return [DetectedIssue(
            issue_type='sitemap_not_downloaded',
            category='sitemap',
            severity='medium',
            title='Sitemap Not Downloaded by Google',
            description='Sitemap has been submitted but Google has not downloaded it yet.',
            impact_description='Google may not be aware of all your pages until the sitemap is processed.',
            fix_recommendation='Wait for Google to process the sitemap or resubmit if it has been more than 24 hours.',
            affected_urls=[record.sitemap_url],
            reference_id=str(record.id),
            reference_table='sitemap_submissions',
            estimated_impact='medium',
            estimated_effort='easy',
            metadata=metadata,
        )]

    return []


def robots_manual_instructions(site_url: str) -> str:
    base_url = to_canonical_https(site_url)
    return f"""To add a robots.txt file to your website:

1. Create a file named "robots.txt" with this content:
   User-agent: *
   Allow: /

   Sitemap: {base_url}{SITEMAP_PATH}

   # Block admin areas
   Disallow: /admin/
   Disallow: /wp-admin/

2. Upload this file to your website's root directory
3. Verify it's accessible at: {base_url}{ROBOTS_PATH}

For developers:
- Place robots.txt in the public/static folder of your web application
- Configure your web server (Nginx/Apache) to serve static files from root
- For CDN/hosting platforms (Vercel/Netlify), place it in the public/ directory"""


def detect_robots_issues(signals: SiteSignals) -> List[DetectedIssue]:
    analysis = signals.robots_analysis
    exists = signals.robots_exists or signals.dynamic_serving
    metadata = {
        'robots_url': signals.robots_url,
        'actually_exists': exists,
        'has_dynamic_serving': signals.dynamic_serving and not signals.robots_exists,
    }

    if not exists and analysis is not None and analysis.exists:
        return [DetectedIssue(
            issue_type='robots_broken',
            category='robots',
            severity='high',
            title='Robots.txt Not Accessible',
            description='Robots.txt is recorded as existing but the URL is not accessible or returns invalid content.',
            impact_description='Search engines cannot access your robots.txt file, affecting crawling behavior.',
            fix_recommendation='Fix the robots.txt URL or regenerate the robots.txt file.',
            affected_urls=[signals.robots_url],
            reference_id=str(analysis.id),
            reference_table='robots_analyses',
            estimated_impact='medium',
            estimated_effort='medium',
            metadata=metadata,
        )]

    if not exists:
        metadata.update({'requires_manual_deployment': True, 'automatable': False})
        return [DetectedIssue(
            issue_type='robots_missing_manual_fix',
            category='robots',
            severity='medium',
            title='Robots.txt File Missing - Manual Setup Required',
            description='No robots.txt file exists at your website. This file must be deployed at the server level.',
            impact_description=(
                'Missing robots.txt can lead to crawling inefficiencies. Search engines may not know '
                'which parts of your site to crawl.'
            ),
            fix_recommendation=robots_manual_instructions(signals.site_url),
            affected_urls=[signals.robots_url],
            estimated_impact='medium',
            estimated_effort='easy',
            metadata=metadata,
        )]

    if analysis is None:
        return [DetectedIssue(
            issue_type='robots_not_analyzed',
            category='robots',
            severity='low',
            title='Robots.txt Exists but Not Analyzed',
            description='A robots.txt file exists at your website but has not been analyzed.',
            impact_description='Without analysis, you may miss opportunities to improve crawling efficiency.',
            fix_recommendation='Run robots.txt analysis and make sure it references your sitemap URL.',
            affected_urls=[signals.robots_url],
            estimated_impact='low',
            estimated_effort='easy',
            metadata=metadata,
        )]

    if analysis.google_fetch_errors > 0:
        return [DetectedIssue(
            issue_type='robots_fetch_errors',
            category='robots',
            severity='medium',
            title='Robots.txt Fetch Errors',
            description='Google is encountering errors when trying to fetch your robots.txt file.',
            impact_description='Fetch errors can prevent proper crawling of your website.',
            fix_recommendation='Check robots.txt accessibility and fix any server-side issues.',
            affected_urls=[signals.robots_url],
            reference_id=str(analysis.id),
            reference_table='robots_analyses',
            estimated_impact='medium',
            estimated_effort='medium',
            metadata={**metadata, 'fetch_errors': analysis.google_fetch_errors},
        )]

    return []


def detect_indexing_issues(signals: SiteSignals) -> List[DetectedIssue]:
    analysis = analyze_indexing_issues(signals.inspections)
    if analysis is None:
        return []

    total = analysis.total_affected_pages
    critical_threshold = int(getattr(settings, 'INDEXING_CRITICAL_THRESHOLD', 5))
    return [DetectedIssue(
        issue_type='indexing_blocked_pages',
        category='indexing',
        severity='critical' if total > critical_threshold else 'high',
        title=f"{total} Page{'s' if total != 1 else ''} Cannot Be Indexed",
        description=analysis.summary,
        impact_description=(
            f"{total} page{'s' if total != 1 else ''} cannot appear in Google search results, so potential "
            "customers won't find them when searching for your products or services."
        ),
        fix_recommendation='\n\n'.join([analysis.detailed_explanation] + analysis.recommended_actions),
        affected_urls=analysis.affected_urls,
        reference_table='url_inspections',
        estimated_impact='high' if total > 10 else 'medium',
        estimated_effort='easy' if analysis.auto_fixable_count > 0 else 'medium',
        metadata={
            'auto_fixable_count': analysis.auto_fixable_count,
            'code_fixable_count': analysis.code_fixable_count,
            'manual_only_count': analysis.manual_only_count,
            'problems_by_type': {
                problem_type: [p.as_dict() for p in problems]
                for problem_type, problems in analysis.problems_by_type.items()
            },
        },
    )]


def detect_schema_issues(signals: SiteSignals) -> List[DetectedIssue]:
    if not signals.schema_records:
        return [DetectedIssue(
            issue_type='schema_missing_all',
            category='schema',
            severity='medium',
            title='No Schema Markup Found',
            description='Website lacks structured data markup.',
            impact_description='Missing schema markup reduces rich snippet opportunities in search results.',
            fix_recommendation='Add appropriate schema markup to key pages (Organization, WebSite, Article, etc.).',
            affected_urls=[signals.site_url],
            estimated_impact='medium',
            estimated_effort='medium',
        )]

    missing = sorted({record.page_url for record in signals.schema_records if record.schemas_generated <= 0})
    if not missing:
        return []
    return [DetectedIssue(
        issue_type='schema_missing_pages',
        category='schema',
        severity='high' if len(missing) > 10 else 'medium',
        title=f"{len(missing)} Page{'s' if len(missing) != 1 else ''} Missing Schema Markup",
        description=f"{len(missing)} page{'s' if len(missing) != 1 else ''} lack structured data markup.",
        impact_description='Pages without schema markup miss opportunities for enhanced search result displays.',
        fix_recommendation='Add appropriate schema markup to these pages based on their content type.',
        affected_urls=missing,
        reference_table='schema_generations',
        estimated_impact='medium',
        estimated_effort='medium',
        metadata={'missing_count': len(missing)},
    )]


def detect_mobile_issues(signals: SiteSignals) -> List[DetectedIssue]:
    unfriendly = [i.inspected_url for i in signals.inspections if i.mobile_usable is False]
    if not unfriendly:
        return []
    count = len(unfriendly)
    return [DetectedIssue(
        issue_type='mobile_usability_issues',
        category='mobile',
        severity='high' if count > 5 else 'medium',
        title=f"{count} Page{'s' if count != 1 else ''} Have Mobile Usability Issues",
        description=f"{count} page{'s' if count != 1 else ''} have mobile-unfriendly elements.",
        impact_description='Mobile usability issues can hurt mobile search performance and user experience.',
        fix_recommendation='Review and fix mobile usability issues such as content width and clickable element spacing.',
        affected_urls=unfriendly,
        reference_table='url_inspections',
        estimated_impact='medium',
        estimated_effort='medium',
        metadata={'mobile_issues_count': count},
    )]


DETECTORS = (
    detect_indexing_issues,
    detect_sitemap_issues,
    detect_robots_issues,
    detect_schema_issues,
    detect_mobile_issues,
)


def detect_issues(signals: SiteSignals) -> List[DetectedIssue]:
    issues = []
    for detector in DETECTORS:
        found = detector(signals)
        logger.debug(f"{detector.__name__} found {len(found)} issue(s) for {signals.site_url}")
        issues.extend(found)
    return issues
