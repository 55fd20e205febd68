"""
Action item ledger.

One row per problem found on a site, from detection through remediation
to verified resolution. At most one non-terminal row exists per
(user, site, issue_type, issue_category); see action_items.ledger.
"""
import uuid

from django.conf import settings
from django.db import models

from action_items.constants import (
    CATEGORY_CHOICES,
    EFFORT_CHOICES,
    IMPACT_CHOICES,
    SEVERITY_CHOICES,
    STATUS_CHOICES,
    TERMINAL_STATUSES,
    VERIFICATION_STATUS_CHOICES,
)


class ActionItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='action_items'
    )
    site_url = models.CharField(max_length=500, help_text="Site identifier in the spelling it was detected under")

    # Classification
    issue_type = models.CharField(max_length=100, help_text="e.g. sitemap_missing, robots_missing_manual_fix")
    issue_category = models.CharField(max_length=20, choices=CATEGORY_CHOICES)
    severity = models.CharField(max_length=10, choices=SEVERITY_CHOICES)

    # Narrative
    title = models.CharField(max_length=500)
    description = models.TextField()
    impact_description = models.TextField(blank=True)
    fix_recommendation = models.TextField(blank=True)

    # Scope
    affected_urls = models.JSONField(default=list, blank=True)
    reference_id = models.CharField(max_length=255, blank=True, null=True)
    reference_table = models.CharField(max_length=100, blank=True, null=True)

    # Lifecycle
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='detected')

    # Verification bookkeeping
    verification_status = models.CharField(
        max_length=20,
        choices=VERIFICATION_STATUS_CHOICES,
        null=True,
        blank=True,
    )
    verification_attempts = models.PositiveIntegerField(default=0)
    verification_details = models.JSONField(default=dict, blank=True)
    next_check_at = models.DateTimeField(null=True, blank=True)

    # Ranking
    priority_score = models.PositiveSmallIntegerField(default=50)
    estimated_impact = models.CharField(max_length=10, choices=IMPACT_CHOICES, default='medium')
    estimated_effort = models.CharField(max_length=10, choices=EFFORT_CHOICES, default='medium')

    # Fix tracking
    fix_type = models.CharField(max_length=100, blank=True)
    fix_details = models.JSONField(default=dict, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    # Timestamps
    detected_at = models.DateTimeField(auto_now_add=True)
    assigned_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    verified_at = models.DateTimeField(null=True, blank=True)
    dismissed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'seo_action_items'
        ordering = ['-priority_score', 'detected_at']
        indexes = [
            models.Index(fields=['user', 'site_url', 'status'], name='action_item_user_site_idx'),
            models.Index(fields=['issue_type', 'issue_category'], name='action_item_type_idx'),
            models.Index(fields=['status', 'next_check_at'], name='action_item_recheck_idx'),
        ]

    def __str__(self):
        return f"{self.title} ({self.status})"

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    @property
    def verification_key(self):
        """Items sharing this key are verified one at a time."""
        from sites.normalization import to_canonical_https
        return (self.user_id, to_canonical_https(self.site_url), self.issue_type)
