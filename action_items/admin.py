from django.contrib import admin
from .models import ActionItem


@admin.register(ActionItem)
class ActionItemAdmin(admin.ModelAdmin):
    list_display = ('title', 'site_url', 'user', 'issue_category', 'severity', 'status',
                    'verification_status', 'verification_attempts', 'priority_score', 'detected_at')
    list_filter = ('status', 'issue_category', 'severity', 'verification_status')
    search_fields = ('title', 'site_url', 'issue_type', 'user__email')
    readonly_fields = ('id', 'priority_score', 'verification_attempts', 'verification_details',
                       'detected_at', 'assigned_at', 'started_at', 'completed_at',
                       'verified_at', 'dismissed_at', 'created_at', 'updated_at')
    ordering = ('-priority_score', 'detected_at')
