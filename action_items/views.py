"""
API endpoints for action items: listing, scanning, lifecycle actions and
verification.
"""
import logging

from django.db.models import Count
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from action_items import lifecycle
from action_items.constants import CATEGORY_CHOICES, SEVERITY_CHOICES, STATUS_CHOICES
from action_items.cycles import pending_verification_items, run_scan_cycle, run_verification_cycle
from action_items.ledger import get_action_items
from action_items.models import ActionItem
from action_items.serializers import (
    ActionItemActionSerializer,
    ActionItemSerializer,
    VerifyPendingSerializer,
)
from action_items.verification import verify
from sites.models import Site
from sites.normalization import url_variations

logger = logging.getLogger(__name__)

VALID_STATUSES = {value for value, _ in STATUS_CHOICES}
VALID_CATEGORIES = {value for value, _ in CATEGORY_CHOICES}
VALID_SEVERITIES = {value for value, _ in SEVERITY_CHOICES}
MAX_LIMIT = 200


def _error(code, message, http_status):
    return Response(
        {'error': {'code': code, 'message': message, 'status': http_status}},
        status=http_status,
    )


def _get_site_or_403(request, site_id=None):
    site_id = site_id or request.query_params.get('site_id') or request.data.get('site_id')
    if not site_id:
        return None, _error('SITE_NOT_FOUND', 'site_id is required', status.HTTP_400_BAD_REQUEST)
    site = get_object_or_404(Site, id=site_id)
    if site.user != request.user:
        return None, _error('FORBIDDEN', 'Permission denied', status.HTTP_403_FORBIDDEN)
    return site, None


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def action_item_list(request):
    """
    GET /api/v1/action-items/?site_id=...&status=detected,assigned&category=&severity=&limit=

    Highest priority first. Includes per-status counts for the site.
    """
    site, err = _get_site_or_403(request)
    if err:
        return err

    statuses = [s for s in request.query_params.get('status', '').split(',') if s]
    category = request.query_params.get('category') or None
    severity = request.query_params.get('severity') or None

    if any(s not in VALID_STATUSES for s in statuses):
        return _error('INVALID_STATUS', f"status must be among {sorted(VALID_STATUSES)}", status.HTTP_400_BAD_REQUEST)
    if category and category not in VALID_CATEGORIES:
        return _error('INVALID_CATEGORY', f"category must be one of {sorted(VALID_CATEGORIES)}", status.HTTP_400_BAD_REQUEST)
    if severity and severity not in VALID_SEVERITIES:
        return _error('INVALID_SEVERITY', f"severity must be one of {sorted(VALID_SEVERITIES)}", status.HTTP_400_BAD_REQUEST)

    try:
        limit = min(int(request.query_params.get('limit', 50)), MAX_LIMIT)
    except ValueError:
        return _error('INVALID_LIMIT', 'limit must be an integer', status.HTTP_400_BAD_REQUEST)

    items = get_action_items(
        request.user,
        site_url=site.url,
        status=statuses or None,
        category=category,
        severity=severity,
        limit=limit,
    )
    counts = dict(
        ActionItem.objects
        .filter(user=request.user, site_url__in=url_variations(site.url))
        .order_by()
        .values_list('status')
        .annotate(n=Count('id'))
    )

    return Response({
        'site_id': site.id,
        'action_items': ActionItemSerializer(items, many=True).data,
        'counts': {value: counts.get(value, 0) for value, _ in STATUS_CHOICES},
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def action_item_scan(request):
    """
    POST /api/v1/action-items/scan/ {site_id}

    Runs every detector for the site and records new issues.
    """
    site, err = _get_site_or_403(request)
    if err:
        return err

    result = run_scan_cycle(request.user, site.url)
    if result['skipped']:
        return _error('INVALID_SITE_URL', f"Site URL {site.url!r} cannot be scanned", status.HTTP_400_BAD_REQUEST)

    site.last_scanned_at = timezone.now()
    site.save(update_fields=['last_scanned_at', 'updated_at'])

    return Response({
        'site_id': site.id,
        'issues_detected': result['issues_detected'],
        'created': result['created'],
        'action_items': ActionItemSerializer(result['action_items'], many=True).data,
    })


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def action_item_detail(request, item_id):
    """
    GET  /api/v1/action-items/<id>/  - One action item.
    POST /api/v1/action-items/<id>/  - {action: verify_completion | mark_completed | dismiss | assign | start}
    """
    item = get_object_or_404(ActionItem, id=item_id, user=request.user)
    if request.method == 'GET':
        return Response(ActionItemSerializer(item).data)

    serializer = ActionItemActionSerializer(data=request.data)
    if not serializer.is_valid():
        return _error('INVALID_ACTION', serializer.errors, status.HTTP_400_BAD_REQUEST)
    data = serializer.validated_data
    action = data['action']

    try:
        if action == 'verify_completion':
            verified = verify(item)
            return Response({
                'verified': verified,
                'action_item': ActionItemSerializer(item).data,
            })
        if action == 'mark_completed':
            lifecycle.mark_completed(item, data.get('fix_type', ''), data.get('fix_details'))
        elif action == 'dismiss':
            lifecycle.dismiss(item, data.get('reason', ''))
        elif action == 'assign':
            lifecycle.assign(item)
        elif action == 'start':
            lifecycle.start(item)
    except lifecycle.InvalidTransition as exc:
        return _error(exc.code, exc.message, status.HTTP_409_CONFLICT)

    return Response({'action_item': ActionItemSerializer(item).data})


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def verify_pending(request):
    """
    GET  /api/v1/action-items/verify-pending/?site_id=  - How many items are waiting on verification.
    POST /api/v1/action-items/verify-pending/ {site_id?, force?}  - Run a verification cycle.
    """
    if request.method == 'GET':
        site_url = None
        if request.query_params.get('site_id'):
            site, err = _get_site_or_403(request)
            if err:
                return err
            site_url = site.url
        all_pending = pending_verification_items(user=request.user, site_url=site_url, force=True)
        due = pending_verification_items(user=request.user, site_url=site_url)
        return Response({
            'pending': all_pending.filter(verification_status='pending').count(),
            'needs_recheck': all_pending.filter(verification_status='needs_recheck').count(),
            'due_now': due.count(),
        })

    serializer = VerifyPendingSerializer(data=request.data)
    if not serializer.is_valid():
        return _error('INVALID_REQUEST', serializer.errors, status.HTTP_400_BAD_REQUEST)

    site = None
    site_id = serializer.validated_data.get('site_id')
    if site_id:
        site, err = _get_site_or_403(request, site_id)
        if err:
            return err

    summary = run_verification_cycle(
        user=request.user,
        site_url=site.url if site else None,
        force=serializer.validated_data['force'],
    )
    if site is not None:
        site.last_verified_at = timezone.now()
        site.save(update_fields=['last_verified_at', 'updated_at'])

    return Response(summary)
