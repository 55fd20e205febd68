"""
Management command to verify completed action items.
Usage: python manage.py verify_action_items [--site-id ID] [--force]
"""
import logging

from django.core.management.base import BaseCommand
from django.db import DatabaseError
from django.utils import timezone

from action_items.cycles import run_verification_cycle
from sites.models import Site

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Re-check completed action items and mark the ones whose fix took effect as verified'

    def add_arguments(self, parser):
        parser.add_argument('--site-id', type=int, help='Only verify items for this site')
        parser.add_argument('--force', action='store_true', help='Ignore next_check_at and verify every pending item')

    def handle(self, *args, **options):
        sites = Site.objects.filter(is_active=True).select_related('user')
        if options.get('site_id'):
            sites = sites.filter(id=options['site_id'])

        totals = {'total_checked': 0, 'verified': 0, 'failed': 0, 'errors': 0}
        for site in sites:
            try:
                summary = run_verification_cycle(user=site.user, site_url=site.url, force=options['force'])
            except DatabaseError as exc:
                logger.error(f"Verification for site {site.id} ({site.url}) failed: {exc}")
                self.stdout.write(self.style.ERROR(f'failed: {site.url}'))
                totals['errors'] += 1
                continue

            for key in totals:
                totals[key] += summary[key]
            site.last_verified_at = timezone.now()
            site.save(update_fields=['last_verified_at', 'updated_at'])
            if summary['total_checked']:
                self.stdout.write(f"{site.url}: {summary['verified']}/{summary['total_checked']} verified")

        self.stdout.write(self.style.SUCCESS(
            f"Checked {totals['total_checked']} item(s): {totals['verified']} verified, "
            f"{totals['failed']} not yet, {totals['errors']} error(s)."
        ))
