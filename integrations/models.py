"""
Signal records for the health monitoring pipeline.

These tables hold what the rest of the system knows about a site's
sitemaps, robots.txt, URL inspections and structured data. Detectors read
them; GSC refreshes and verification write-backs update them.
"""
from django.conf import settings
from django.db import models


class SitemapSubmission(models.Model):
    STATUS_CHOICES = [
        ('submitted', 'Submitted'),
        ('processed', 'Processed'),
        ('error', 'Error'),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='sitemap_submissions'
    )
    site_url = models.CharField(max_length=500, help_text="Site identifier as it was submitted")
    sitemap_url = models.CharField(max_length=1000)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='submitted')
    submission_method = models.CharField(max_length=50, default='api')
    last_downloaded = models.DateTimeField(null=True, blank=True, help_text="When Google last fetched the sitemap")
    is_pending = models.BooleanField(default=False)
    warnings = models.IntegerField(default=0)
    errors = models.IntegerField(default=0)
    submitted_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'sitemap_submissions'
        ordering = ['-submitted_at']
        indexes = [
            models.Index(fields=['user', 'site_url'], name='sitemap_sub_user_site_idx'),
        ]

    def __str__(self):
        return f"{self.sitemap_url} ({self.status})"


class RobotsAnalysis(models.Model):
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='robots_analyses'
    )
    site_url = models.CharField(max_length=500)
    exists = models.BooleanField(default=False)
    accessible = models.BooleanField(default=False)
    size = models.IntegerField(default=0)
    content = models.TextField(blank=True)
    google_fetch_status = models.CharField(max_length=50, blank=True)
    google_fetch_errors = models.IntegerField(default=0)
    analyzed_at = models.DateTimeField()

    class Meta:
        db_table = 'robots_analyses'
        ordering = ['-analyzed_at']
        unique_together = [['user', 'site_url']]

    def __str__(self):
        return f"robots.txt for {self.site_url}"


class UrlInspection(models.Model):
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='url_inspections'
    )
    site_url = models.CharField(max_length=500)
    inspected_url = models.CharField(max_length=2000)
    index_status = models.CharField(max_length=50, blank=True, help_text="Inspection verdict: PASS, FAIL, NEUTRAL, ...")
    can_be_indexed = models.BooleanField(default=False)
    fetch_status = models.CharField(max_length=50, blank=True, help_text="GSC pageFetchState")
    robots_txt_state = models.CharField(max_length=50, blank=True)
    mobile_usable = models.BooleanField(null=True, blank=True)
    mobile_usability_issues = models.IntegerField(default=0)
    last_crawl_time = models.DateTimeField(null=True, blank=True)
    inspection_data = models.JSONField(default=dict, blank=True)
    inspected_at = models.DateTimeField()

    class Meta:
        db_table = 'url_inspections'
        ordering = ['-inspected_at']
        unique_together = [['user', 'site_url', 'inspected_url']]
        indexes = [
            models.Index(fields=['user', 'site_url'], name='url_insp_user_site_idx'),
        ]

    def __str__(self):
        return f"{self.inspected_url} ({self.index_status or 'unknown'})"


class SchemaGeneration(models.Model):
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='schema_generations'
    )
    site_url = models.CharField(max_length=500)
    page_url = models.CharField(max_length=2000)
    schemas_generated = models.IntegerField(default=0)
    schema_types = models.JSONField(default=list, blank=True)
    generated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'schema_generations'
        ordering = ['-generated_at']
        indexes = [
            models.Index(fields=['user', 'site_url'], name='schema_gen_user_site_idx'),
        ]

    def __str__(self):
        return f"{self.page_url} ({self.schemas_generated} schemas)"
