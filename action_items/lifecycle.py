"""
Action item lifecycle.

detected -> assigned -> in_progress -> completed -> needs_verification
-> verified -> closed, with dismissed reachable from every other state.
Only the verification engine moves an item out of completed or
needs_verification (via record_verification).

record_verification does not consult TRANSITIONS: a verification attempt
may be recorded from any status in VERIFIABLE_STATUSES, so a detected or
assigned item whose problem has already gone away moves straight to
verified (or to needs_verification on failure).
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from action_items.models import ActionItem

logger = logging.getLogger(__name__)

TRANSITIONS = {
    'detected': {'assigned', 'in_progress', 'completed', 'dismissed'},
    'assigned': {'in_progress', 'completed', 'dismissed'},
    'in_progress': {'completed', 'dismissed'},
    'completed': {'needs_verification', 'verified', 'dismissed'},
    'needs_verification': {'needs_verification', 'verified', 'dismissed'},
    'verified': {'closed', 'dismissed'},
    'closed': {'dismissed'},
    'dismissed': set(),
}

# Statuses from which a verification attempt may be recorded
VERIFIABLE_STATUSES = frozenset({'detected', 'assigned', 'in_progress', 'completed', 'needs_verification'})

_TIMESTAMP_FIELDS = {
    'assigned': 'assigned_at',
    'in_progress': 'started_at',
    'completed': 'completed_at',
    'verified': 'verified_at',
    'dismissed': 'dismissed_at',
}


class InvalidTransition(Exception):
    """The requested status change is not allowed from the item's current status."""

    def __init__(self, item: ActionItem, target: str):
        self.code = 'INVALID_TRANSITION'
        self.current = item.status
        self.target = target
        self.message = f"Cannot move action item {item.id} from {item.status} to {target}"
        super().__init__(self.message)


def recheck_delay() -> timedelta:
    return timedelta(hours=int(getattr(settings, 'VERIFICATION_RECHECK_HOURS', 24)))


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


def _apply(item: ActionItem, target: str, extra_fields=()):
    """Set status plus its timestamp and save the touched fields."""
    if not can_transition(item.status, target):
        raise InvalidTransition(item, target)

    now = timezone.now()
    previous = item.status
    item.status = target
    update_fields = ['status', 'updated_at', *extra_fields]
    timestamp_field = _TIMESTAMP_FIELDS.get(target)
    if timestamp_field:
        setattr(item, timestamp_field, now)
        update_fields.append(timestamp_field)
    item.save(update_fields=update_fields)
    logger.info(f"Action item {item.id}: {previous} -> {target}")
    return item


def assign(item: ActionItem) -> ActionItem:
    return _apply(item, 'assigned')


def start(item: ActionItem) -> ActionItem:
    return _apply(item, 'in_progress')


def mark_completed(item: ActionItem, fix_type: str = '', fix_details=None) -> ActionItem:
    """External remediation reports the fix as done; verification takes it from here."""
    item.fix_type = fix_type or ''
    item.fix_details = fix_details or {}
    item.verification_status = 'pending'
    item.next_check_at = timezone.now() + recheck_delay()
    return _apply(item, 'completed', ('fix_type', 'fix_details', 'verification_status', 'next_check_at'))


def dismiss(item: ActionItem, reason: str = '') -> ActionItem:
    item.metadata = {**(item.metadata or {}), 'dismissal_reason': reason}
    item.next_check_at = None
    return _apply(item, 'dismissed', ('metadata', 'next_check_at'))


def close(item: ActionItem) -> ActionItem:
    return _apply(item, 'closed')


def record_verification(item: ActionItem, verified: bool, details=None) -> ActionItem:
    """
    Record one verification attempt.

    Success moves the item to verified; failure leaves it in
    needs_verification with the next check scheduled. The attempt counter
    increments either way.
    """
    if item.status not in VERIFIABLE_STATUSES:
        raise InvalidTransition(item, 'verified' if verified else 'needs_verification')

    now = timezone.now()
    previous = item.status
    item.verification_attempts += 1
    item.verification_details = details or {}
    if verified:
        item.status = 'verified'
        item.verification_status = 'verified'
        item.verified_at = now
        item.next_check_at = None
    else:
        item.status = 'needs_verification'
        item.verification_status = 'needs_recheck'
        item.next_check_at = now + recheck_delay()

    item.save(update_fields=[
        'status', 'verification_status', 'verification_attempts', 'verification_details',
        'verified_at', 'next_check_at', 'updated_at',
    ])
    logger.info(
        f"Action item {item.id} verification attempt {item.verification_attempts}: "
        f"{previous} -> {item.status}"
    )
    return item
