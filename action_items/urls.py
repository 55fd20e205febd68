"""
URL routing for action items.
Mounted at /api/v1/action-items/.
"""
from django.urls import path

from . import views

urlpatterns = [
    path('', views.action_item_list, name='action-item-list'),
    path('scan/', views.action_item_scan, name='action-item-scan'),
    path('verify-pending/', views.verify_pending, name='action-item-verify-pending'),
    path('<uuid:item_id>/', views.action_item_detail, name='action-item-detail'),
]
