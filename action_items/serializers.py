"""
Serializers for ActionItem.
"""
from rest_framework import serializers

from .models import ActionItem


class ActionItemSerializer(serializers.ModelSerializer):
    """Full action item as exposed to the dashboard."""
    is_terminal = serializers.BooleanField(read_only=True)

    class Meta:
        model = ActionItem
        fields = (
            'id', 'site_url', 'issue_type', 'issue_category', 'severity',
            'title', 'description', 'impact_description', 'fix_recommendation',
            'affected_urls', 'reference_id', 'reference_table',
            'status', 'verification_status', 'verification_attempts', 'verification_details',
            'next_check_at', 'priority_score', 'estimated_impact', 'estimated_effort',
            'fix_type', 'fix_details', 'metadata', 'is_terminal',
            'detected_at', 'assigned_at', 'started_at', 'completed_at',
            'verified_at', 'dismissed_at', 'created_at', 'updated_at',
        )
        read_only_fields = fields


class ActionItemActionSerializer(serializers.Serializer):
    """Body of POST /action-items/<id>/."""
    ACTIONS = ('verify_completion', 'mark_completed', 'dismiss', 'assign', 'start')

    action = serializers.ChoiceField(choices=ACTIONS)
    fix_type = serializers.CharField(required=False, allow_blank=True, max_length=100)
    fix_details = serializers.JSONField(required=False)
    reason = serializers.CharField(required=False, allow_blank=True)


class VerifyPendingSerializer(serializers.Serializer):
    site_id = serializers.IntegerField(required=False)
    force = serializers.BooleanField(required=False, default=False)
