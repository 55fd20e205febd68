# Generated manually for the action item ledger

import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='ActionItem',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('site_url', models.CharField(help_text='Site identifier in the spelling it was detected under', max_length=500)),
                ('issue_type', models.CharField(help_text='e.g. sitemap_missing, robots_missing_manual_fix', max_length=100)),
                ('issue_category', models.CharField(choices=[('indexing', 'Indexing'), ('sitemap', 'Sitemap'), ('robots', 'Robots.txt'), ('schema', 'Schema'), ('mobile', 'Mobile'), ('performance', 'Performance'), ('meta_tags', 'Meta Tags'), ('alt_tags', 'Alt Tags'), ('core_vitals', 'Core Web Vitals'), ('security', 'Security')], max_length=20)),
                ('severity', models.CharField(choices=[('critical', 'Critical'), ('high', 'High'), ('medium', 'Medium'), ('low', 'Low')], max_length=10)),
                ('title', models.CharField(max_length=500)),
                ('description', models.TextField()),
                ('impact_description', models.TextField(blank=True)),
                ('fix_recommendation', models.TextField(blank=True)),
                ('affected_urls', models.JSONField(blank=True, default=list)),
                ('reference_id', models.CharField(blank=True, max_length=255, null=True)),
                ('reference_table', models.CharField(blank=True, max_length=100, null=True)),
                ('status', models.CharField(choices=[('detected', 'Detected'), ('assigned', 'Assigned'), ('in_progress', 'In Progress'), ('completed', 'Completed'), ('needs_verification', 'Needs Verification'), ('verified', 'Verified'), ('closed', 'Closed'), ('dismissed', 'Dismissed')], default='detected', max_length=20)),
                ('verification_status', models.CharField(blank=True, choices=[('pending', 'Pending'), ('verified', 'Verified'), ('failed', 'Failed'), ('needs_recheck', 'Needs Recheck')], max_length=20, null=True)),
                ('verification_attempts', models.PositiveIntegerField(default=0)),
                ('verification_details', models.JSONField(blank=True, default=dict)),
                ('next_check_at', models.DateTimeField(blank=True, null=True)),
                ('priority_score', models.PositiveSmallIntegerField(default=50)),
                ('estimated_impact', models.CharField(choices=[('high', 'High'), ('medium', 'Medium'), ('low', 'Low')], default='medium', max_length=10)),
                ('estimated_effort', models.CharField(choices=[('easy', 'Easy'), ('medium', 'Medium'), ('hard', 'Hard')], default='medium', max_length=10)),
                ('fix_type', models.CharField(blank=True, max_length=100)),
                ('fix_details', models.JSONField(blank=True, default=dict)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('detected_at', models.DateTimeField(auto_now_add=True)),
                ('assigned_at', models.DateTimeField(blank=True, null=True)),
                ('started_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('verified_at', models.DateTimeField(blank=True, null=True)),
                ('dismissed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='action_items', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'seo_action_items',
                'ordering': ['-priority_score', 'detected_at'],
                'indexes': [
                    models.Index(fields=['user', 'site_url', 'status'], name='action_item_user_site_idx'),
                    models.Index(fields=['issue_type', 'issue_category'], name='action_item_type_idx'),
                    models.Index(fields=['status', 'next_check_at'], name='action_item_recheck_idx'),
                ],
            },
        ),
    ]
