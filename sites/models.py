"""
Site model.
"""
from django.db import models
from django.conf import settings

from sites.normalization import to_canonical_https


class Site(models.Model):
    """
    A website monitored for health issues.
    One user can have multiple sites.
    """
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='sites'
    )
    name = models.CharField(max_length=255)
    url = models.CharField(
        max_length=500,
        help_text="Site identifier in any spelling (example.com, https://www.example.com/, sc-domain:example.com)"
    )
    is_active = models.BooleanField(default=True)
    last_scanned_at = models.DateTimeField(null=True, blank=True)
    last_verified_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    # Google Search Console Integration
    gsc_site_url = models.CharField(
        max_length=500,
        blank=True,
        null=True,
        help_text="GSC property (e.g., https://example.com/ or sc-domain:example.com)"
    )
    gsc_access_token = models.TextField(
        blank=True,
        null=True,
        help_text="GSC OAuth access token"
    )
    gsc_refresh_token = models.TextField(
        blank=True,
        null=True,
        help_text="GSC OAuth refresh token"
    )
    gsc_token_expires_at = models.DateTimeField(
        blank=True,
        null=True,
        help_text="When the access token expires"
    )
    gsc_connected_at = models.DateTimeField(
        blank=True,
        null=True,
        help_text="When GSC was connected"
    )

    class Meta:
        db_table = 'sites'
        ordering = ['-created_at']
        unique_together = [['user', 'url']]

    def __str__(self):
        return f"{self.name} ({self.url})"

    @property
    def canonical_url(self):
        return to_canonical_https(self.url)

    @property
    def is_gsc_connected(self):
        return bool(self.gsc_site_url and self.gsc_refresh_token)
