from django.contrib import admin
from .models import SitemapSubmission, RobotsAnalysis, UrlInspection, SchemaGeneration


@admin.register(SitemapSubmission)
class SitemapSubmissionAdmin(admin.ModelAdmin):
    list_display = ('sitemap_url', 'site_url', 'user', 'status', 'last_downloaded', 'warnings', 'errors')
    list_filter = ('status', 'is_pending')
    search_fields = ('sitemap_url', 'site_url', 'user__email')


@admin.register(RobotsAnalysis)
class RobotsAnalysisAdmin(admin.ModelAdmin):
    list_display = ('site_url', 'user', 'exists', 'accessible', 'google_fetch_status', 'analyzed_at')
    list_filter = ('exists', 'accessible')
    search_fields = ('site_url', 'user__email')


@admin.register(UrlInspection)
class UrlInspectionAdmin(admin.ModelAdmin):
    list_display = ('inspected_url', 'site_url', 'index_status', 'can_be_indexed', 'mobile_usable', 'inspected_at')
    list_filter = ('index_status', 'can_be_indexed', 'mobile_usable')
    search_fields = ('inspected_url', 'site_url')


@admin.register(SchemaGeneration)
class SchemaGenerationAdmin(admin.ModelAdmin):
    list_display = ('page_url', 'site_url', 'schemas_generated', 'generated_at')
    search_fields = ('page_url', 'site_url')
