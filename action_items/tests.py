"""
Tests for action_items app - detection, ledger, lifecycle, verification and API.
"""
import gc
import threading
import time
from datetime import timedelta
from io import StringIO
from types import SimpleNamespace

import pytest
from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.utils import timezone
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from action_items import detectors, lifecycle, verification
from action_items.cycles import _verify_in_worker, pending_verification_items, run_scan_cycle, run_verification_cycle
from action_items.detectors import DetectedIssue, SiteSignals
from action_items.indexing import analyze_indexing_issues
from action_items.ledger import (
    calculate_priority_score,
    create_action_item,
    find_similar_action_item,
    get_action_items,
)
from action_items.models import ActionItem
from action_items.verification import looks_like_robots_txt, verify
from integrations import gsc, probes
from integrations.gsc import GSCError
from integrations.models import RobotsAnalysis, SchemaGeneration, SitemapSubmission, UrlInspection
from integrations.probes import ProbeResult


class _Network:
    """Stands in for live probing and GSC; tests flip its attributes."""

    def __init__(self):
        self.existing = set()
        self.robots_body = 'User-agent: *\nAllow: /\nSitemap: https://example.com/sitemap.xml\n'
        self.dynamic = False
        self.gsc_up = False
        self.calls = []

    def probe(self, site_identifier, resource_path, deadline=None, content_types=None):
        self.calls.append(('probe', resource_path))
        return ProbeResult(exists=resource_path in self.existing, url=f'https://example.com{resource_path}')

    def fetch_resource(self, site_identifier, resource_path, deadline=None, accept=None):
        self.calls.append(('fetch', resource_path))
        if resource_path not in self.existing:
            return ProbeResult(exists=False)
        result = ProbeResult(exists=True, url=f'https://example.com{resource_path}', body=self.robots_body)
        if accept is not None and not accept(result):
            return ProbeResult(exists=False, error='rejected_content')
        return result

    def detect_dynamic_serving(self, site_identifier, deadline=None):
        self.calls.append(('signature', site_identifier))
        return self.dynamic

    def refresh_sitemap_status(self, user, site_url):
        self.calls.append(('gsc_refresh', site_url))
        if not self.gsc_up:
            raise GSCError('GSC_NOT_CONNECTED', 'offline')
        return 0

    def inspect_urls(self, user, site_url, urls):
        self.calls.append(('gsc_inspect', tuple(urls)))
        if not self.gsc_up:
            raise GSCError('GSC_NOT_CONNECTED', 'offline')
        return []

    def count(self, kind):
        return sum(1 for call in self.calls if call[0] == kind)


class _RobotsOnlySession:
    """requests.Session stand-in serving only /robots.txt, under the given Content-Type."""

    def __init__(self, content_type):
        self.content_type = content_type

    def _answer(self, url):
        if url.endswith('/robots.txt'):
            headers = {'Content-Type': self.content_type} if self.content_type else {}
            return SimpleNamespace(status_code=200, headers=headers, text='User-agent: *\nDisallow: /admin/\n')
        return SimpleNamespace(status_code=404, headers={}, text='')

    def head(self, url, headers=None, timeout=None, allow_redirects=None):
        return self._answer(url)

    def get(self, url, headers=None, timeout=None, allow_redirects=None):
        return self._answer(url)

    def close(self):
        pass


@pytest.fixture
def network(monkeypatch):
    fake = _Network()
    monkeypatch.setattr(probes, 'probe', fake.probe)
    monkeypatch.setattr(probes, 'fetch_resource', fake.fetch_resource)
    monkeypatch.setattr(probes, 'detect_dynamic_serving', fake.detect_dynamic_serving)
    monkeypatch.setattr(gsc, 'refresh_sitemap_status', fake.refresh_sitemap_status)
    monkeypatch.setattr(gsc, 'inspect_urls', fake.inspect_urls)
    return fake


@pytest.fixture(autouse=True)
def no_verification_delays(settings):
    settings.SITEMAP_VERIFY_DELAY_SECONDS = 0
    settings.INDEXING_VERIFY_DELAY_SECONDS = 0
    settings.ACTION_ITEM_MAX_VERIFICATION_ATTEMPTS = None


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def user_model():
    return get_user_model()


@pytest.fixture
def create_user(user_model):
    def _create_user(email="test@example.com", password="testpass123"):
        return user_model.objects.create_user(
            email=email,
            username=email,
            password=password
        )
    return _create_user


@pytest.fixture
def user(create_user):
    return create_user()


@pytest.fixture
def create_site(user):
    def _create_site(owner=None, name="Test Site", url="https://example.com"):
        from sites.models import Site
        return Site.objects.create(user=owner or user, name=name, url=url)
    return _create_site


@pytest.fixture
def authenticated_client(api_client, user):
    refresh = RefreshToken.for_user(user)
    api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
    return api_client


@pytest.fixture
def create_item(user):
    def _create_item(**overrides):
        fields = {
            'user': user,
            'site_url': 'https://example.com',
            'issue_type': 'sitemap_missing',
            'issue_category': 'sitemap',
            'severity': 'high',
            'title': 'XML Sitemap Missing',
            'description': 'No sitemap',
            'affected_urls': ['https://example.com/sitemap.xml'],
            'priority_score': 95,
            'estimated_impact': 'high',
            'estimated_effort': 'easy',
        }
        fields.update(overrides)
        return ActionItem.objects.create(**fields)
    return _create_item


def _issue(**overrides):
    fields = {
        'issue_type': 'robots_missing_manual_fix',
        'category': 'robots',
        'severity': 'medium',
        'title': 'Robots.txt File Missing - Manual Setup Required',
        'description': 'No robots.txt',
        'affected_urls': ['https://example.com/robots.txt'],
        'estimated_impact': 'medium',
        'estimated_effort': 'easy',
    }
    fields.update(overrides)
    return DetectedIssue(**fields)


def _inspection(url, **overrides):
    fields = {
        'inspected_url': url,
        'index_status': 'FAIL',
        'can_be_indexed': False,
        'fetch_status': 'SUCCESSFUL',
        'robots_txt_state': 'ALLOWED',
        'mobile_usable': True,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestPriorityScore:

    def test_known_values(self):
        assert calculate_priority_score('high', 'high', 1) == 95
        assert calculate_priority_score('medium', 'medium', 1) == 70
        assert calculate_priority_score('low', 'low', 1) == 55
        assert calculate_priority_score('critical', 'high', 5) == 100

    def test_severity_is_monotonic(self):
        scores = [calculate_priority_score(s, 'medium', 1) for s in ('critical', 'high', 'medium', 'low')]
        assert scores == sorted(scores, reverse=True)
        assert len(set(scores)) == 4

    def test_affected_bonus_is_capped(self):
        assert calculate_priority_score('medium', 'low', 6) == 75
        assert calculate_priority_score('medium', 'low', 60) == 75

    def test_empty_affected_list_adds_nothing(self):
        assert calculate_priority_score('low', 'low', 0) == 55

    def test_always_in_range(self):
        for severity in ('critical', 'high', 'medium', 'low'):
            for impact in ('high', 'medium', 'low'):
                for count in (0, 1, 3, 100):
                    assert 50 <= calculate_priority_score(severity, impact, count) <= 100


class TestSitemapDetector:

    def test_missing_everywhere(self):
        issues = detectors.detect_sitemap_issues(SiteSignals(site_url='https://example.com'))
        assert len(issues) == 1
        issue = issues[0]
        assert issue.issue_type == 'sitemap_missing'
        assert issue.severity == 'high'
        assert issue.estimated_impact == 'high'
        assert issue.affected_urls == ['https://example.com/sitemap.xml']
        assert issue.reference_table == 'sitemap_submissions'

    def test_live_but_not_submitted(self):
        issues = detectors.detect_sitemap_issues(SiteSignals(site_url='example.com', sitemap_exists=True))
        assert [i.issue_type for i in issues] == ['sitemap_not_submitted']
        assert issues[0].severity == 'medium'
        assert issues[0].metadata['has_dynamic_serving'] is False

    def test_dynamic_serving_counts_as_existing(self):
        issues = detectors.detect_sitemap_issues(SiteSignals(site_url='example.com', dynamic_serving=True))
        assert [i.issue_type for i in issues] == ['sitemap_not_submitted']
        assert issues[0].metadata['has_dynamic_serving'] is True
        assert issues[0].metadata['detection_method'] == 'agent_script_detected'

    def test_submitted_but_unreachable(self):
        record = SimpleNamespace(id=7, sitemap_url='https://example.com/sitemap.xml', last_downloaded=None,
                                 is_pending=False)
        issues = detectors.detect_sitemap_issues(SiteSignals(site_url='example.com', sitemap_record=record))
        assert [i.issue_type for i in issues] == ['sitemap_broken']
        assert issues[0].reference_id == '7'

    def test_not_downloaded_yet(self):
        record = SimpleNamespace(id=7, sitemap_url='https://example.com/sitemap.xml', last_downloaded=None,
                                 is_pending=False)
        signals = SiteSignals(site_url='example.com', sitemap_exists=True, sitemap_record=record)
        assert [i.issue_type for i in detectors.detect_sitemap_issues(signals)] == ['sitemap_not_downloaded']

    def test_healthy(self):
        record = SimpleNamespace(id=7, sitemap_url='https://example.com/sitemap.xml', last_downloaded=timezone.now(),
                                 is_pending=False)
        signals = SiteSignals(site_url='example.com', sitemap_exists=True, sitemap_record=record)
        assert detectors.detect_sitemap_issues(signals) == []

    def test_pending_download_counts_as_not_downloaded(self):
        record = SimpleNamespace(id=7, sitemap_url='https://example.com/sitemap.xml', last_downloaded=timezone.now(),
                                 is_pending=True)
        signals = SiteSignals(site_url='example.com', sitemap_exists=True, sitemap_record=record)
        assert [i.issue_type for i in detectors.detect_sitemap_issues(signals)] == ['sitemap_not_downloaded']


class TestRobotsDetector:

    def test_missing_needs_manual_fix(self):
        issues = detectors.detect_robots_issues(SiteSignals(site_url='sc-domain:example.com'))
        assert [i.issue_type for i in issues] == ['robots_missing_manual_fix']
        issue = issues[0]
        assert issue.severity == 'medium'
        assert issue.metadata['requires_manual_deployment'] is True
        assert issue.metadata['automatable'] is False
        assert 'User-agent: *' in issue.fix_recommendation
        assert 'Sitemap: https://example.com/sitemap.xml' in issue.fix_recommendation
        assert issue.affected_urls == ['https://example.com/robots.txt']

    def test_previously_present_now_unreachable(self):
        analysis = SimpleNamespace(id=3, exists=True, google_fetch_errors=0)
        issues = detectors.detect_robots_issues(SiteSignals(site_url='example.com', robots_analysis=analysis))
        assert [i.issue_type for i in issues] == ['robots_broken']
        assert issues[0].severity == 'high'

    def test_present_but_never_analyzed(self):
        issues = detectors.detect_robots_issues(SiteSignals(site_url='example.com', robots_exists=True))
        assert [i.issue_type for i in issues] == ['robots_not_analyzed']
        assert issues[0].severity == 'low'

    def test_fetch_errors(self):
        analysis = SimpleNamespace(id=3, exists=True, google_fetch_errors=2)
        signals = SiteSignals(site_url='example.com', robots_exists=True, robots_analysis=analysis)
        issues = detectors.detect_robots_issues(signals)
        assert [i.issue_type for i in issues] == ['robots_fetch_errors']
        assert issues[0].metadata['fetch_errors'] == 2

    def test_dynamic_serving_satisfies_robots(self):
        analysis = SimpleNamespace(id=3, exists=True, google_fetch_errors=0)
        signals = SiteSignals(site_url='example.com', dynamic_serving=True, robots_analysis=analysis)
        assert detectors.detect_robots_issues(signals) == []


class TestIndexingDetector:

    def test_analyzer_groups_by_cause(self):
        inspections = [
            _inspection('https://example.com/a', robots_txt_state='DISALLOWED'),
            _inspection('https://example.com/b', fetch_status='SERVER_ERROR'),
            _inspection('https://example.com/c', fetch_status='SOFT_404'),
            _inspection('https://example.com/d', fetch_status='ACCESS_DENIED'),
            _inspection('https://example.com/e', fetch_status='REDIRECT_ERROR'),
            _inspection('https://example.com/f'),
            _inspection('https://example.com/ok', index_status='PASS', can_be_indexed=True),
        ]
        analysis = analyze_indexing_issues(inspections)
        assert analysis.total_affected_pages == 6
        assert set(analysis.problems_by_type) == {
            'Robots.txt Blocking', 'Server Error', 'Page Not Found', 'Access Denied', 'Redirect Problem', 'Indexing Issue',
        }
        assert analysis.auto_fixable_count == 2
        assert analysis.code_fixable_count == 3
        assert analysis.manual_only_count == 1
        assert 'various indexing problems' in analysis.summary

    def test_nothing_blocked(self):
        assert analyze_indexing_issues([_inspection('https://example.com/', index_status='PASS', can_be_indexed=True)]) is None

    def test_severity_and_effort(self):
        inspections = [_inspection(f'https://example.com/p{i}', robots_txt_state='DISALLOWED') for i in range(6)]
        issues = detectors.detect_indexing_issues(SiteSignals(site_url='example.com', inspections=inspections))
        issue = issues[0]
        assert issue.issue_type == 'indexing_blocked_pages'
        assert issue.severity == 'critical'
        assert issue.estimated_impact == 'medium'
        assert issue.estimated_effort == 'easy'
        assert len(issue.affected_urls) == 6
        assert '...and 3 more pages' in issue.fix_recommendation

    def test_few_pages_is_high(self):
        inspections = [_inspection('https://example.com/x', fetch_status='SERVER_ERROR')]
        issue = detectors.detect_indexing_issues(SiteSignals(site_url='example.com', inspections=inspections))[0]
        assert issue.severity == 'high'
        assert issue.estimated_effort == 'medium'
        assert issue.title == '1 Page Cannot Be Indexed'

    def test_threshold_is_configurable(self, settings):
        settings.INDEXING_CRITICAL_THRESHOLD = 0
        inspections = [_inspection('https://example.com/x')]
        issue = detectors.detect_indexing_issues(SiteSignals(site_url='example.com', inspections=inspections))[0]
        assert issue.severity == 'critical'


class TestSchemaAndMobileDetectors:

    def test_no_schema_at_all(self):
        issues = detectors.detect_schema_issues(SiteSignals(site_url='https://example.com'))
        assert [i.issue_type for i in issues] == ['schema_missing_all']
        assert issues[0].affected_urls == ['https://example.com']

    def test_pages_without_schema(self):
        records = [
            SimpleNamespace(page_url='https://example.com/a', schemas_generated=0),
            SimpleNamespace(page_url='https://example.com/b', schemas_generated=2),
        ]
        issues = detectors.detect_schema_issues(SiteSignals(site_url='example.com', schema_records=records))
        assert [i.issue_type for i in issues] == ['schema_missing_pages']
        assert issues[0].affected_urls == ['https://example.com/a']
        assert issues[0].severity == 'medium'

    def test_mobile(self):
        inspections = [_inspection(f'https://example.com/m{i}', mobile_usable=False) for i in range(6)]
        inspections.append(_inspection('https://example.com/unknown', mobile_usable=None))
        issues = detectors.detect_mobile_issues(SiteSignals(site_url='example.com', inspections=inspections))
        assert [i.issue_type for i in issues] == ['mobile_usability_issues']
        assert issues[0].severity == 'high'
        assert len(issues[0].affected_urls) == 6


@pytest.mark.django_db
class TestCollectSignals:

    def test_signature_checked_only_when_a_probe_fails(self, network, user):
        network.existing = {'/sitemap.xml', '/robots.txt'}
        detectors.collect_site_signals(user, 'example.com')
        assert network.count('signature') == 0

        network.existing = {'/sitemap.xml'}
        detectors.collect_site_signals(user, 'example.com')
        assert network.count('signature') == 1

    def test_gsc_failure_is_tolerated(self, network, user):
        signals = detectors.collect_site_signals(user, 'example.com')
        assert signals.authority_refreshed is False
        assert network.count('gsc_refresh') == 1

    def test_records_found_under_any_spelling(self, network, user):
        SitemapSubmission.objects.create(
            user=user, site_url='sc-domain:example.com', sitemap_url='https://example.com/sitemap.xml',
        )
        RobotsAnalysis.objects.create(user=user, site_url='example.com', exists=True, analyzed_at=timezone.now())
        signals = detectors.collect_site_signals(user, 'https://www.example.com/')
        assert signals.sitemap_record is not None
        assert signals.robots_analysis is not None

    @pytest.mark.parametrize('content_type', ['application/octet-stream', None])
    def test_robots_content_type_does_not_matter(self, monkeypatch, user, create_item, content_type):
        monkeypatch.setattr(probes.requests, 'Session', lambda: _RobotsOnlySession(content_type))

        signals = detectors.collect_site_signals(user, 'example.com')
        assert signals.robots_exists is True
        assert [i.issue_type for i in detectors.detect_robots_issues(signals)] == ['robots_not_analyzed']

        item = create_item(issue_type='robots_missing_manual_fix', issue_category='robots', severity='medium',
                           status='completed', verification_status='pending')
        assert verify(item) is True

        rescanned = run_scan_cycle(user, 'example.com')
        assert 'robots_missing_manual_fix' not in {i.issue_type for i in rescanned['action_items']}
        assert ActionItem.objects.filter(issue_type='robots_missing_manual_fix').count() == 1


@pytest.mark.django_db
class TestLedger:

    def test_scan_is_idempotent(self, network, user):
        first = run_scan_cycle(user, 'https://example.com')
        count = ActionItem.objects.count()
        second = run_scan_cycle(user, 'https://example.com')

        assert first['created'] == count
        assert second['created'] == 0
        assert ActionItem.objects.count() == count
        assert {i.pk for i in first['action_items']} == {i.pk for i in second['action_items']}

    def test_scenario_missing_sitemap(self, network, user):
        run_scan_cycle(user, 'https://example.com')
        item = ActionItem.objects.get(issue_type='sitemap_missing')
        assert item.severity == 'high'
        assert item.status == 'detected'
        assert item.priority_score == 95

    def test_scenario_unsubmitted_sitemap(self, network, user):
        network.existing = {'/sitemap.xml'}
        run_scan_cycle(user, 'https://example.com')
        item = ActionItem.objects.get(issue_category='sitemap')
        assert item.issue_type == 'sitemap_not_submitted'
        assert item.severity == 'medium'

    def test_open_item_in_verification_is_not_duplicated(self, network, user, create_item):
        existing = create_item(
            issue_type='robots_missing_manual_fix',
            issue_category='robots',
            severity='medium',
            status='needs_verification',
            verification_status='needs_recheck',
            verification_attempts=2,
        )
        run_scan_cycle(user, 'https://example.com')

        robots_items = ActionItem.objects.filter(issue_type='robots_missing_manual_fix')
        assert robots_items.count() == 1
        existing.refresh_from_db()
        assert existing.status == 'needs_verification'
        assert existing.verification_attempts == 2

    def test_dedup_across_spellings(self, user):
        first = create_action_item(user, 'https://example.com', _issue())
        second = create_action_item(user, 'sc-domain:example.com', _issue())
        assert first.pk == second.pk
        assert find_similar_action_item(user, 'www.example.com', 'robots_missing_manual_fix', 'robots').pk == first.pk

    def test_terminal_item_does_not_block(self, user):
        first = create_action_item(user, 'example.com', _issue())
        lifecycle.dismiss(first, 'not relevant')
        second = create_action_item(user, 'example.com', _issue())
        assert second.pk != first.pk
        assert second.status == 'detected'

    def test_other_users_are_separate(self, user, create_user):
        other = create_user(email='other@example.com')
        first = create_action_item(user, 'example.com', _issue())
        second = create_action_item(other, 'example.com', _issue())
        assert first.pk != second.pk

    def test_get_action_items_order_and_filters(self, user, create_item):
        low = create_item(issue_type='robots_not_analyzed', issue_category='robots', severity='low', priority_score=55)
        high = create_item(priority_score=95)
        create_item(issue_type='schema_missing_all', issue_category='schema', severity='medium',
                    priority_score=70, status='dismissed')

        assert list(get_action_items(user, 'sc-domain:example.com', status=['detected'])) == [high, low]
        assert list(get_action_items(user, category='robots')) == [low]
        assert list(get_action_items(user, severity='high', limit=1)) == [high]

    def test_malformed_site_is_skipped(self, network, user):
        result = run_scan_cycle(user, 'not a url')
        assert result['skipped'] is True
        assert ActionItem.objects.count() == 0
        assert network.calls == []


@pytest.mark.django_db
class TestLifecycle:

    def test_happy_path_timestamps(self, create_item):
        item = create_item()
        lifecycle.assign(item)
        assert item.status == 'assigned' and item.assigned_at is not None
        lifecycle.start(item)
        assert item.status == 'in_progress' and item.started_at is not None
        lifecycle.mark_completed(item, 'manual_upload', {'path': '/sitemap.xml'})
        item.refresh_from_db()
        assert item.status == 'completed'
        assert item.completed_at is not None
        assert item.verification_status == 'pending'
        assert item.fix_type == 'manual_upload'
        assert item.next_check_at > timezone.now() + timedelta(hours=23)

    def test_dismiss_records_reason(self, create_item):
        item = create_item()
        lifecycle.dismiss(item, 'handled elsewhere')
        item.refresh_from_db()
        assert item.status == 'dismissed'
        assert item.dismissed_at is not None
        assert item.metadata['dismissal_reason'] == 'handled elsewhere'

    def test_invalid_transitions(self, create_item):
        item = create_item()
        with pytest.raises(lifecycle.InvalidTransition):
            lifecycle.close(item)
        lifecycle.dismiss(item)
        with pytest.raises(lifecycle.InvalidTransition):
            lifecycle.assign(item)
        with pytest.raises(lifecycle.InvalidTransition):
            lifecycle.record_verification(item, True)

    def test_verified_can_be_closed(self, create_item):
        item = create_item(status='verified', verification_status='verified')
        lifecycle.close(item)
        assert item.status == 'closed'

    def test_verification_may_skip_the_transition_table(self, create_item):
        item = create_item()
        assert not lifecycle.can_transition('detected', 'verified')
        lifecycle.record_verification(item, True, {'method': 'direct_probe'})
        item.refresh_from_db()
        assert item.status == 'verified'
        assert item.verification_attempts == 1


@pytest.mark.django_db
class TestVerification:

    def test_processed_sitemap_record_verifies(self, network, user, create_item):
        SitemapSubmission.objects.create(
            user=user, site_url='sc-domain:example.com', sitemap_url='https://example.com/sitemap.xml',
            status='processed', last_downloaded=timezone.now(),
        )
        item = create_item(status='completed', verification_status='pending')

        assert verify(item) is True
        item.refresh_from_db()
        assert item.status == 'verified'
        assert item.verification_status == 'verified'
        assert item.verification_attempts == 1
        assert item.verified_at is not None
        assert item.next_check_at is None
        assert item.verification_details['method'] == 'gsc_sitemap_status'
        assert network.count('probe') == 0

    def test_sitemap_signature_fallback(self, network, create_item):
        network.dynamic = True
        item = create_item(status='completed', verification_status='pending')
        assert verify(item) is True
        item.refresh_from_db()
        assert item.verification_details['method'] == 'agent_signature'
        assert [c['strategy'] for c in item.verification_details['checks']] == [
            'gsc_sitemap_status', 'direct_probe', 'agent_signature',
        ]

    def test_sitemap_direct_probe(self, network, create_item):
        network.existing = {'/sitemap.xml'}
        item = create_item(status='completed', verification_status='pending')
        assert verify(item) is True
        assert network.count('signature') == 0

    def test_failure_reschedules(self, network, create_item):
        item = create_item(status='completed', verification_status='pending')
        assert verify(item) is False
        assert verify(item) is False
        item.refresh_from_db()
        assert item.status == 'needs_verification'
        assert item.verification_status == 'needs_recheck'
        assert item.verification_attempts == 2
        assert item.next_check_at > timezone.now() + timedelta(hours=23)

    def test_robots_signature_writes_back(self, network, user, create_item):
        network.dynamic = True
        item = create_item(issue_type='robots_missing_manual_fix', issue_category='robots',
                           status='completed', verification_status='pending')
        assert verify(item) is True
        analysis = RobotsAnalysis.objects.get(user=user)
        assert analysis.exists is True
        assert analysis.accessible is False
        assert analysis.google_fetch_status == 'warning'
        assert analysis.google_fetch_errors == 0

    def test_robots_direct_fetch_writes_back_content(self, network, user, create_item):
        network.existing = {'/robots.txt'}
        item = create_item(issue_type='robots_missing_manual_fix', issue_category='robots',
                           status='completed', verification_status='pending')
        assert verify(item) is True
        analysis = RobotsAnalysis.objects.get(user=user)
        assert analysis.accessible is True
        assert analysis.google_fetch_status == 'success'
        assert analysis.content.startswith('User-agent')

    def test_robots_html_page_is_rejected(self, network, create_item):
        network.existing = {'/robots.txt'}
        network.robots_body = '<!doctype html><html><body>Not found</body></html>'
        item = create_item(issue_type='robots_missing_manual_fix', issue_category='robots',
                           status='completed', verification_status='pending')
        assert verify(item) is False
        assert RobotsAnalysis.objects.count() == 0

    def test_robots_syntax_check(self):
        assert looks_like_robots_txt('user-agent: *\ndisallow: /admin/')
        assert looks_like_robots_txt('# comment\nSitemap: https://example.com/sitemap.xml')
        assert not looks_like_robots_txt('<html>User-agent: *</html>')
        assert not looks_like_robots_txt('hello world')
        assert not looks_like_robots_txt('')

    def test_indexing_requires_every_url(self, network, user, create_item):
        now = timezone.now()
        for url, verdict in (('https://example.com/a', 'PASS'), ('https://example.com/b', 'FAIL')):
            UrlInspection.objects.create(
                user=user, site_url='example.com', inspected_url=url,
                index_status=verdict, can_be_indexed=verdict == 'PASS', inspected_at=now,
            )
        item = create_item(issue_type='indexing_blocked_pages', issue_category='indexing', severity='high',
                           affected_urls=['https://example.com/a', 'https://example.com/b'],
                           status='completed', verification_status='pending')
        assert verify(item) is False

        UrlInspection.objects.filter(inspected_url='https://example.com/b').update(index_status='PASS', can_be_indexed=True)
        assert verify(item) is True
        assert network.count('gsc_inspect') == 2

    def test_indexing_reinspects_at_most_three(self, network, user, settings, create_item):
        network.gsc_up = True
        urls = [f'https://example.com/p{i}' for i in range(5)]
        item = create_item(issue_type='indexing_blocked_pages', issue_category='indexing', affected_urls=urls,
                           status='completed', verification_status='pending')
        verify(item)
        inspected = [call[1] for call in network.calls if call[0] == 'gsc_inspect']
        assert inspected == [tuple(urls[:3])]

    def test_indexing_without_urls_is_verified(self, network, create_item):
        item = create_item(issue_type='indexing_blocked_pages', issue_category='indexing', affected_urls=[],
                           status='completed', verification_status='pending')
        assert verify(item) is True

    def test_schema(self, network, user, create_item):
        item = create_item(issue_type='schema_missing_pages', issue_category='schema', severity='medium',
                           affected_urls=['https://example.com/a', 'https://example.com/b'],
                           status='completed', verification_status='pending')
        SchemaGeneration.objects.create(user=user, site_url='example.com', page_url='https://example.com/a', schemas_generated=1)
        assert verify(item) is False
        SchemaGeneration.objects.create(user=user, site_url='example.com', page_url='https://example.com/b', schemas_generated=3)
        assert verify(item) is True

    def test_schema_missing_all(self, network, user, create_item):
        item = create_item(issue_type='schema_missing_all', issue_category='schema', severity='medium',
                           affected_urls=['https://example.com'], status='completed', verification_status='pending')
        SchemaGeneration.objects.create(user=user, site_url='https://example.com', page_url='https://example.com/x', schemas_generated=2)
        assert verify(item) is True

    def test_mobile(self, network, user, create_item):
        UrlInspection.objects.create(
            user=user, site_url='example.com', inspected_url='https://example.com/m',
            index_status='PASS', can_be_indexed=True, mobile_usable=True, inspected_at=timezone.now(),
        )
        item = create_item(issue_type='mobile_usability_issues', issue_category='mobile', severity='medium',
                           affected_urls=['https://example.com/m'], status='completed', verification_status='pending')
        assert verify(item) is True

    def test_unsupported_category_is_never_confirmed(self, network, create_item):
        item = create_item(issue_type='slow_pages', issue_category='performance', status='completed',
                           verification_status='pending')
        assert verify(item) is False
        item.refresh_from_db()
        assert item.verification_attempts == 1
        assert 'reason' in item.verification_details

    def test_terminal_items_are_skipped(self, network, create_item):
        item = create_item(status='verified', verification_status='verified', verification_attempts=1)
        assert verify(item) is True
        item.refresh_from_db()
        assert item.verification_attempts == 1
        assert network.calls == []

    def test_authority_refresh_waits_before_reading(self, network, user, settings, create_item, monkeypatch):
        network.gsc_up = True
        settings.SITEMAP_VERIFY_DELAY_SECONDS = 1.5
        slept = []
        monkeypatch.setattr('action_items.verification.time.sleep', slept.append)
        item = create_item(status='completed', verification_status='pending')
        verify(item)
        assert slept == [1.5]

    def test_pending_sitemap_is_not_confirmed_by_gsc(self, network, user, create_item):
        SitemapSubmission.objects.create(
            user=user, site_url='example.com', sitemap_url='https://example.com/sitemap.xml',
            status='processed', last_downloaded=timezone.now(), is_pending=True,
        )
        item = create_item(issue_type='sitemap_not_downloaded', severity='medium',
                           status='completed', verification_status='pending')
        assert verify(item) is False
        item.refresh_from_db()
        assert item.verification_details['checks'][0] == {'strategy': 'gsc_sitemap_status', 'outcome': False}

    def test_key_lock_is_released_from_registry(self, network, create_item):
        item = create_item(status='completed', verification_status='pending')
        verify(item)
        gc.collect()
        assert item.verification_key not in verification._key_locks


@pytest.mark.django_db(transaction=True)
class TestVerificationLocking:

    def test_same_item_is_verified_one_at_a_time(self, network, monkeypatch, create_item):
        entered = threading.Event()
        release = threading.Event()
        guard = threading.Lock()
        state = {'active': 0, 'peak': 0, 'calls': 0}

        def held_check():
            with guard:
                state['active'] += 1
                state['calls'] += 1
                state['peak'] = max(state['peak'], state['active'])
            entered.set()
            release.wait(timeout=5)
            with guard:
                state['active'] -= 1
            return False

        monkeypatch.setitem(
            verification.STRATEGY_BUILDERS, 'sitemap', lambda item, deadline=None: [('held_check', held_check)],
        )
        item = create_item(status='completed', verification_status='pending')
        workers = [
            threading.Thread(target=_verify_in_worker, args=(ActionItem.objects.get(pk=item.pk), None))
            for _ in range(2)
        ]

        workers[0].start()
        assert entered.wait(timeout=5)
        workers[1].start()
        time.sleep(0.2)
        assert state['calls'] == 1

        release.set()
        for worker in workers:
            worker.join(timeout=5)

        assert state['peak'] == 1
        assert state['calls'] == 2
        item.refresh_from_db()
        assert item.verification_attempts == 2
        assert item.status == 'needs_verification'


@pytest.mark.django_db
class TestVerificationCycle:

    def test_only_due_items_unless_forced(self, network, user, create_item):
        due = create_item(status='needs_verification', verification_status='needs_recheck',
                          next_check_at=timezone.now() - timedelta(minutes=1))
        later = create_item(issue_type='sitemap_broken', status='completed', verification_status='pending',
                            next_check_at=timezone.now() + timedelta(hours=5))
        create_item(issue_type='sitemap_not_downloaded', status='detected')

        assert list(pending_verification_items(user=user)) == [due]
        assert set(pending_verification_items(user=user, force=True)) == {due, later}

        summary = run_verification_cycle(user=user)
        assert summary == {'total_checked': 1, 'verified': 0, 'failed': 1, 'errors': 0}

    def test_counts_verified(self, network, user, create_item):
        network.dynamic = True
        create_item(status='completed', verification_status='pending')
        summary = run_verification_cycle(user=user, force=True)
        assert summary['verified'] == 1
        assert ActionItem.objects.get().status == 'verified'

    def test_attempt_cap(self, network, user, settings, create_item):
        settings.ACTION_ITEM_MAX_VERIFICATION_ATTEMPTS = 3
        create_item(status='needs_verification', verification_status='needs_recheck', verification_attempts=3)
        assert pending_verification_items(user=user, force=True).count() == 0

    def test_malformed_site_counts_as_error(self, network, user, create_item):
        create_item(site_url='???', status='completed', verification_status='pending')
        summary = run_verification_cycle(user=user, force=True)
        assert summary['errors'] == 1
        assert summary['total_checked'] == 0


@pytest.mark.django_db
class TestActionItemAPI:

    def test_list_requires_site(self, authenticated_client):
        response = authenticated_client.get('/api/v1/action-items/')
        assert response.status_code == 400
        assert response.data['error']['code'] == 'SITE_NOT_FOUND'

    def test_list_other_users_site(self, authenticated_client, create_user, create_site):
        site = create_site(owner=create_user(email='other@example.com'))
        response = authenticated_client.get(f'/api/v1/action-items/?site_id={site.id}')
        assert response.status_code == 403

    def test_list_in_priority_order(self, authenticated_client, create_site, create_item):
        site = create_site(url='sc-domain:example.com')
        low = create_item(issue_type='robots_not_analyzed', issue_category='robots', severity='low', priority_score=55)
        high = create_item(priority_score=95)

        response = authenticated_client.get(f'/api/v1/action-items/?site_id={site.id}')
        assert response.status_code == 200
        assert [i['id'] for i in response.data['action_items']] == [str(high.id), str(low.id)]
        assert response.data['counts']['detected'] == 2

    def test_list_rejects_unknown_status(self, authenticated_client, create_site):
        site = create_site()
        response = authenticated_client.get(f'/api/v1/action-items/?site_id={site.id}&status=bogus')
        assert response.status_code == 400

    def test_scan(self, authenticated_client, network, create_site):
        site = create_site()
        response = authenticated_client.post('/api/v1/action-items/scan/', {'site_id': site.id}, format='json')
        assert response.status_code == 200
        types = {i['issue_type'] for i in response.data['action_items']}
        assert {'sitemap_missing', 'robots_missing_manual_fix', 'schema_missing_all'} <= types
        assert response.data['created'] == len(types)
        site.refresh_from_db()
        assert site.last_scanned_at is not None

    def test_detail_and_actions(self, authenticated_client, create_item):
        item = create_item()
        url = f'/api/v1/action-items/{item.id}/'

        assert authenticated_client.get(url).data['title'] == 'XML Sitemap Missing'

        response = authenticated_client.post(url, {'action': 'mark_completed', 'fix_type': 'generated'}, format='json')
        assert response.status_code == 200
        assert response.data['action_item']['status'] == 'completed'
        assert response.data['action_item']['verification_status'] == 'pending'

        response = authenticated_client.post(url, {'action': 'assign'}, format='json')
        assert response.status_code == 409
        assert response.data['error']['code'] == 'INVALID_TRANSITION'

    def test_verify_completion(self, authenticated_client, network, create_item):
        network.existing = {'/sitemap.xml'}
        item = create_item(status='completed', verification_status='pending')
        response = authenticated_client.post(f'/api/v1/action-items/{item.id}/', {'action': 'verify_completion'}, format='json')
        assert response.status_code == 200
        assert response.data['verified'] is True
        assert response.data['action_item']['status'] == 'verified'

    def test_dismiss(self, authenticated_client, create_item):
        item = create_item()
        response = authenticated_client.post(
            f'/api/v1/action-items/{item.id}/', {'action': 'dismiss', 'reason': 'duplicate'}, format='json',
        )
        assert response.data['action_item']['status'] == 'dismissed'
        assert response.data['action_item']['metadata']['dismissal_reason'] == 'duplicate'

    def test_unknown_action(self, authenticated_client, create_item):
        item = create_item()
        response = authenticated_client.post(f'/api/v1/action-items/{item.id}/', {'action': 'explode'}, format='json')
        assert response.status_code == 400

    def test_other_users_item_is_hidden(self, authenticated_client, create_user):
        other = create_user(email='other@example.com')
        item = ActionItem.objects.create(
            user=other, site_url='example.com', issue_type='sitemap_missing', issue_category='sitemap',
            severity='high', title='t', description='d',
        )
        assert authenticated_client.get(f'/api/v1/action-items/{item.id}/').status_code == 404

    def test_verify_pending(self, authenticated_client, network, create_item):
        create_item(status='completed', verification_status='pending',
                    next_check_at=timezone.now() + timedelta(hours=5))

        response = authenticated_client.get('/api/v1/action-items/verify-pending/')
        assert response.data == {'pending': 1, 'needs_recheck': 0, 'due_now': 0}

        response = authenticated_client.post('/api/v1/action-items/verify-pending/', {'force': True}, format='json')
        assert response.status_code == 200
        assert response.data['total_checked'] == 1
        assert response.data['failed'] == 1


@pytest.mark.django_db
class TestCommands:

    def test_scan_sites(self, network, create_site):
        create_site()
        out = StringIO()
        call_command('scan_sites', stdout=out)
        assert 'Scanned 1 site(s)' in out.getvalue()
        assert ActionItem.objects.filter(issue_type='sitemap_missing').count() == 1

    def test_verify_action_items(self, network, create_site, create_item):
        create_site()
        network.dynamic = True
        create_item(status='completed', verification_status='pending')
        out = StringIO()
        call_command('verify_action_items', '--force', stdout=out)
        assert '1 verified' in out.getvalue()
