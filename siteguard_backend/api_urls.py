"""
API URL routing for siteguard_backend.
All API endpoints are prefixed with /api/v1/
"""
from django.urls import path, include

from siteguard_backend.views import health_check

urlpatterns = [
    path('health/', health_check, name='health_check'),
    path('action-items/', include('action_items.urls')),
]
