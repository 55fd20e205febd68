"""
Tests for integrations app - resource probing and the GSC client.
"""
import gc
import threading
import time
from datetime import timedelta
from unittest.mock import patch

import pytest
import requests
from django.contrib.auth import get_user_model
from django.utils import timezone

from integrations import gsc, probes
from integrations.models import SitemapSubmission, UrlInspection


class _Resp:
    def __init__(self, status_code, headers=None, text=''):
        self.status_code = status_code
        self.headers = headers or {}
        self.text = text
        self.content = text.encode()

    def json(self):
        return self._json

    @classmethod
    def with_json(cls, status_code, payload):
        resp = cls(status_code)
        resp._json = payload
        return resp


class _Session:
    """Answers requests from a {(method, url): response-or-exception} table."""

    def __init__(self, routes):
        self.routes = routes
        self.max_redirects = 30
        self.calls = []
        self.closed = False

    def _answer(self, method, url, timeout):
        self.calls.append((method, url, timeout))
        answer = self.routes.get((method, url), _Resp(404))
        if isinstance(answer, Exception):
            raise answer
        return answer

    def head(self, url, headers=None, timeout=None, allow_redirects=None):
        return self._answer('HEAD', url, timeout)

    def get(self, url, headers=None, timeout=None, allow_redirects=None):
        return self._answer('GET', url, timeout)

    def close(self):
        self.closed = True


class _HeldSession:
    """Holds every HEAD until released, counting requests in flight."""

    def __init__(self):
        self.release = threading.Event()
        self.guard = threading.Lock()
        self.in_flight = 0
        self.peak = 0
        self.calls = 0

    def head(self, url, headers=None, timeout=None, allow_redirects=None):
        with self.guard:
            self.in_flight += 1
            self.calls += 1
            self.peak = max(self.peak, self.in_flight)
        self.release.wait(timeout=5)
        with self.guard:
            self.in_flight -= 1
        return _Resp(200, {'Content-Type': 'text/plain'})

    def close(self):
        pass


@pytest.fixture
def fake_session(monkeypatch):
    def _install(routes):
        session = _Session(routes)
        monkeypatch.setattr(probes.requests, "Session", lambda: session)
        return session
    return _install


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
def connected_site(create_user):
    from sites.models import Site
    user = create_user()
    return Site.objects.create(
        user=user,
        name="Example",
        url="https://example.com",
        gsc_site_url="sc-domain:example.com",
        gsc_access_token="access",
        gsc_refresh_token="refresh",
        gsc_token_expires_at=timezone.now() + timedelta(hours=1),
    )


class TestProbe:

    def test_first_spelling_wins(self, fake_session):
        session = fake_session({
            ('HEAD', 'https://example.com/sitemap.xml'): _Resp(200, {'Content-Type': 'application/xml'}),
        })
        result = probes.probe('sc-domain:example.com', '/sitemap.xml')
        assert result.exists is True
        assert result.url == 'https://example.com/sitemap.xml'
        assert result.content_type_hint == 'application/xml'
        assert [c[1] for c in session.calls] == ['https://example.com/sitemap.xml']
        assert session.closed is True

    def test_falls_back_to_www(self, fake_session):
        fake_session({
            ('HEAD', 'https://example.com/robots.txt'): requests.exceptions.ConnectionError('dns'),
            ('HEAD', 'https://www.example.com/robots.txt'): _Resp(200, {'Content-Type': 'text/plain'}),
        })
        result = probes.probe('example.com', '/robots.txt')
        assert result.exists is True
        assert result.url == 'https://www.example.com/robots.txt'

    def test_head_rejected_retries_with_get(self, fake_session):
        session = fake_session({
            ('HEAD', 'https://example.com/sitemap.xml'): _Resp(405),
            ('GET', 'https://example.com/sitemap.xml'): _Resp(200, {'Content-Type': 'text/xml'}, '<urlset/>'),
        })
        result = probes.probe('https://example.com', '/sitemap.xml')
        assert result.exists is True
        assert ('GET', 'https://example.com/sitemap.xml') in [c[:2] for c in session.calls]

    def test_timeout_is_a_negative_result(self, fake_session):
        fake_session({
            ('HEAD', 'https://example.com/sitemap.xml'): requests.exceptions.Timeout('slow'),
            ('HEAD', 'https://www.example.com/sitemap.xml'): requests.exceptions.Timeout('slow'),
        })
        result = probes.probe('example.com', '/sitemap.xml')
        assert result.exists is False
        assert result.error == 'timeout'

    def test_redirect_overflow_is_a_negative_result(self, fake_session):
        fake_session({
            ('HEAD', 'https://example.com/sitemap.xml'): requests.TooManyRedirects('loop'),
            ('HEAD', 'https://www.example.com/sitemap.xml'): requests.TooManyRedirects('loop'),
        })
        result = probes.probe('example.com', '/sitemap.xml')
        assert result.exists is False
        assert result.error == 'too_many_redirects'

    def test_content_type_filter(self, fake_session):
        fake_session({
            ('HEAD', 'https://example.com/sitemap.xml'): _Resp(200, {'Content-Type': 'image/png'}),
            ('HEAD', 'https://www.example.com/sitemap.xml'): _Resp(200, {'Content-Type': 'image/png'}),
        })
        result = probes.probe('example.com', '/sitemap.xml', content_types=('xml', 'text'))
        assert result.exists is False
        assert result.error == 'rejected_content'

    def test_expired_deadline_sends_nothing(self, fake_session):
        session = fake_session({})
        result = probes.probe('example.com', '/sitemap.xml', deadline=time.monotonic() - 1)
        assert result.exists is False
        assert session.calls == []

    def test_malformed_site_is_not_probed(self, fake_session):
        session = fake_session({})
        result = probes.probe('not a site', '/robots.txt')
        assert result.exists is False
        assert result.error == 'invalid_site'
        assert session.calls == []

    def test_timeout_is_capped_by_deadline(self, fake_session, settings):
        settings.PROBE_TIMEOUT_SECONDS = 10
        session = fake_session({
            ('HEAD', 'https://example.com/robots.txt'): _Resp(200),
        })
        probes.probe('example.com', '/robots.txt', deadline=probes.deadline_in(2))
        assert session.calls[0][2] <= 2

    def test_per_site_concurrency_cap(self, monkeypatch, settings):
        settings.PROBE_MAX_CONCURRENCY_PER_SITE = 2
        session = _HeldSession()
        monkeypatch.setattr(probes.requests, "Session", lambda: session)
        threads = [
            threading.Thread(target=probes.probe, args=('capped.example.com', '/robots.txt'))
            for _ in range(4)
        ]
        for thread in threads:
            thread.start()
        time.sleep(0.3)
        assert session.in_flight == 2

        session.release.set()
        for thread in threads:
            thread.join(timeout=5)
        assert session.peak == 2
        assert session.calls == 4

    def test_idle_site_slot_is_dropped(self, fake_session):
        fake_session({('HEAD', 'https://idle.example.com/robots.txt'): _Resp(200)})
        probes.probe('idle.example.com', '/robots.txt')
        gc.collect()
        assert 'idle.example.com' not in probes._site_slots


class TestDynamicServing:

    def test_needs_script_and_token(self, fake_session):
        html = '<script src="https://cdn.seoagent.com/seoagent.js"></script><script>var idv = "abc";</script>'
        fake_session({('GET', 'https://example.com/'): _Resp(200, {'Content-Type': 'text/html'}, html)})
        assert probes.detect_dynamic_serving('example.com') is True

    def test_script_alone_is_not_enough(self, fake_session):
        html = '<script src="/seoagent.js"></script>'
        fake_session({('GET', 'https://example.com/'): _Resp(200, {'Content-Type': 'text/html'}, html)})
        assert probes.detect_dynamic_serving('example.com') is False

    def test_unreachable_root(self, fake_session):
        fake_session({
            ('GET', 'https://example.com/'): requests.exceptions.ConnectionError('refused'),
            ('GET', 'https://www.example.com/'): requests.exceptions.ConnectionError('refused'),
        })
        assert probes.detect_dynamic_serving('example.com') is False

    def test_markers_come_from_settings(self, settings):
        settings.AGENT_SCRIPT_MARKERS = ('agent.min.js',)
        settings.AGENT_TOKEN_MARKERS = ('data-site-key',)
        assert probes.has_agent_signature('<script src="agent.min.js" data-site-key="x"></script>')
        assert not probes.has_agent_signature('<script src="seoagent.js"></script> website_token')


@pytest.mark.django_db
class TestRefreshSitemapStatus:

    def test_updates_matching_record(self, connected_site):
        user = connected_site.user
        record = SitemapSubmission.objects.create(
            user=user, site_url='sc-domain:example.com', sitemap_url='https://example.com/sitemap.xml',
        )
        payload = {'sitemap': [{
            'path': 'https://www.example.com/sitemap.xml',
            'lastDownloaded': '2026-10-01T12:00:00Z',
            'isPending': False,
            'warnings': '2',
            'errors': '0',
        }]}
        with patch.object(gsc.requests, 'get', return_value=_Resp.with_json(200, payload)):
            updated = gsc.refresh_sitemap_status(user, 'https://www.example.com/')

        assert updated == 1
        record.refresh_from_db()
        assert record.status == 'processed'
        assert record.last_downloaded is not None
        assert record.warnings == 2

    def test_unreadable_entry_is_skipped(self, connected_site):
        user = connected_site.user
        record = SitemapSubmission.objects.create(
            user=user, site_url='example.com', sitemap_url='https://example.com/sitemap.xml',
        )
        payload = {'sitemap': [{
            'path': 'https://example.com/sitemap.xml',
            'lastDownloaded': '2026-13-45T99:00:00Z',
            'warnings': 'many',
        }]}
        with patch.object(gsc.requests, 'get', return_value=_Resp.with_json(200, payload)):
            updated = gsc.refresh_sitemap_status(user, 'example.com')

        assert updated == 0
        record.refresh_from_db()
        assert record.status == 'submitted'
        assert record.last_downloaded is None

    def test_unreadable_counts_are_rejected(self):
        with pytest.raises(gsc.GSCError) as exc:
            gsc._sitemap_fields({'lastDownloaded': '2026-10-01T12:00:00Z', 'errors': 'n/a'})
        assert exc.value.code == 'GSC_BAD_RESPONSE'

    def test_no_connection_raises(self, create_user):
        with pytest.raises(gsc.GSCError) as exc:
            gsc.refresh_sitemap_status(create_user(), 'example.com')
        assert exc.value.code == 'GSC_NOT_CONNECTED'

    def test_api_failure_raises(self, connected_site):
        with patch.object(gsc.requests, 'get', return_value=_Resp.with_json(403, {})):
            with pytest.raises(gsc.GSCError):
                gsc.refresh_sitemap_status(connected_site.user, 'example.com')

    def test_expired_token_is_refreshed(self, connected_site):
        connected_site.gsc_token_expires_at = timezone.now() - timedelta(minutes=1)
        connected_site.save()
        token = _Resp.with_json(200, {'access_token': 'fresh', 'expires_in': 3600})
        with patch.object(gsc.requests, 'post', return_value=token):
            assert gsc.get_valid_access_token(connected_site) == 'fresh'
        connected_site.refresh_from_db()
        assert connected_site.gsc_access_token == 'fresh'


@pytest.mark.django_db
class TestInspectUrls:

    def test_upserts_inspection(self, connected_site):
        user = connected_site.user
        payload = {'inspectionResult': {
            'indexStatusResult': {
                'verdict': 'PASS',
                'pageFetchState': 'SUCCESSFUL',
                'robotsTxtState': 'ALLOWED',
                'lastCrawlTime': '2026-10-02T08:00:00Z',
            },
            'mobileUsabilityResult': {'verdict': 'PASS', 'issues': []},
        }}
        with patch.object(gsc.requests, 'post', return_value=_Resp.with_json(200, payload)):
            records = gsc.inspect_urls(user, 'example.com', ['https://example.com/a'])

        assert len(records) == 1
        stored = UrlInspection.objects.get(user=user, inspected_url='https://example.com/a')
        assert stored.can_be_indexed is True
        assert stored.index_status == 'PASS'
        assert stored.mobile_usable is True
        assert stored.fetch_status == 'SUCCESSFUL'

    def test_all_failures_raise(self, connected_site):
        with patch.object(gsc.requests, 'post', return_value=_Resp.with_json(500, {})):
            with pytest.raises(gsc.GSCError):
                gsc.inspect_urls(connected_site.user, 'example.com', ['https://example.com/a'])

    def test_unreadable_inspection_counts_as_failure(self, connected_site):
        payload = {'inspectionResult': {'indexStatusResult': {'verdict': 'PASS', 'lastCrawlTime': 'yesterday'}}}
        with patch.object(gsc.requests, 'post', return_value=_Resp.with_json(200, payload)):
            with pytest.raises(gsc.GSCError):
                gsc.inspect_urls(connected_site.user, 'example.com', ['https://example.com/a'])
        assert not UrlInspection.objects.exists()

    def test_latest_inspections_across_spellings(self, connected_site):
        user = connected_site.user
        now = timezone.now()
        UrlInspection.objects.create(
            user=user, site_url='sc-domain:example.com', inspected_url='https://example.com/a',
            index_status='FAIL', can_be_indexed=False, inspected_at=now - timedelta(days=1),
        )
        UrlInspection.objects.create(
            user=user, site_url='https://example.com', inspected_url='https://example.com/a',
            index_status='PASS', can_be_indexed=True, inspected_at=now,
        )
        latest = gsc.latest_inspections(user, 'www.example.com')
        assert latest['https://example.com/a'].index_status == 'PASS'
