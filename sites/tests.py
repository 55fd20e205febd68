"""
Tests for sites app - site identifier normalization and the Site model.
"""
import pytest
from types import SimpleNamespace
from django.contrib.auth import get_user_model

from sites.normalization import (
    extract_domain,
    find_matching_sitemap,
    is_same_site,
    is_valid_site_identifier,
    normalize_for_comparison,
    to_canonical_https,
    to_domain_property,
    to_www_https,
    url_variations,
)


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
def create_site(create_user):
    def _create_site(user=None, name="Test Site", url="https://example.com"):
        from sites.models import Site
        if user is None:
            user = create_user()
        return Site.objects.create(user=user, name=name, url=url)
    return _create_site


class TestNormalization:

    @pytest.mark.parametrize('identifier', [
        'example.com',
        'https://example.com',
        'https://www.example.com/',
        'http://example.com/',
        'HTTP://WWW.Example.com',
        'sc-domain:example.com',
        'https://example.com/blog/post',
    ])
    def test_canonical_form_is_same_site(self, identifier):
        assert to_canonical_https(identifier) == 'https://example.com'
        assert is_same_site(to_canonical_https(identifier), identifier)

    def test_variations_cover_every_spelling(self):
        variations = url_variations('sc-domain:example.com')
        assert 'sc-domain:example.com' in variations
        assert 'example.com' in variations
        assert 'https://example.com' in variations
        assert 'https://www.example.com/' in variations
        assert 'http://www.example.com' in variations

    def test_variations_keep_original_spelling(self):
        assert 'https://Example.com/' in url_variations('https://Example.com/')

    def test_different_sites_do_not_match(self):
        assert not is_same_site('https://example.com', 'https://example.org')
        assert not is_same_site('example.com', 'shop.example.com')

    @pytest.mark.parametrize('identifier', ['', 'not a url', 'https://', 'sc-domain:', 'nodots'])
    def test_malformed_input_is_left_alone(self, identifier):
        assert not is_valid_site_identifier(identifier)
        assert url_variations(identifier) == {identifier}
        assert to_canonical_https(identifier) == identifier

    def test_localhost_is_valid(self):
        assert is_valid_site_identifier('http://localhost:8000')
        assert to_canonical_https('http://localhost:8000') == 'https://localhost'

    def test_helpers(self):
        assert extract_domain('https://www.example.com:8443/x') == 'www.example.com'
        assert to_www_https('example.com') == 'https://www.example.com'
        assert to_domain_property('https://www.example.com/') == 'sc-domain:example.com'
        assert normalize_for_comparison('https://www.Example.com/sitemap.xml') == 'example.com'
        assert normalize_for_comparison('sc-domain:example.com/') == 'example.com'


class TestFindMatchingSitemap:

    def test_exact_sitemap_url_wins(self):
        other = SimpleNamespace(site_url='https://example.com', sitemap_url='https://example.com/sitemap_index.xml')
        exact = SimpleNamespace(site_url='example.com', sitemap_url='https://www.example.com/sitemap.xml')
        assert find_matching_sitemap('https://example.com/sitemap.xml', [other, exact]) is exact

    def test_falls_back_to_site_equivalence(self):
        record = SimpleNamespace(site_url='sc-domain:example.com', sitemap_url='https://example.com/post-sitemap.xml')
        assert find_matching_sitemap('https://www.example.com/sitemap.xml', [record]) is record

    def test_no_match(self):
        record = SimpleNamespace(site_url='example.org', sitemap_url='https://example.org/sitemap.xml')
        assert find_matching_sitemap('https://example.com/sitemap.xml', [record]) is None


@pytest.mark.django_db
class TestSiteModel:

    def test_canonical_url(self, create_site):
        site = create_site(url='sc-domain:example.com')
        assert site.canonical_url == 'https://example.com'
        assert str(site) == 'Test Site (sc-domain:example.com)'

    def test_gsc_connected(self, create_site):
        site = create_site()
        assert site.is_gsc_connected is False
        site.gsc_site_url = 'sc-domain:example.com'
        site.gsc_refresh_token = 'refresh'
        assert site.is_gsc_connected is True
