from django.contrib import admin
from .models import Site


@admin.register(Site)
class SiteAdmin(admin.ModelAdmin):
    list_display = ('name', 'url', 'user', 'is_active', 'last_scanned_at', 'last_verified_at', 'created_at')
    list_filter = ('is_active', 'created_at')
    search_fields = ('name', 'url', 'user__email')
    readonly_fields = ('created_at', 'updated_at', 'last_scanned_at', 'last_verified_at', 'gsc_connected_at')
    exclude = ('gsc_access_token', 'gsc_refresh_token')
