# Generated manually for health signal tables

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
            name='SitemapSubmission',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('site_url', models.CharField(help_text='Site identifier as it was submitted', max_length=500)),
                ('sitemap_url', models.CharField(max_length=1000)),
                ('status', models.CharField(choices=[('submitted', 'Submitted'), ('processed', 'Processed'), ('error', 'Error')], default='submitted', max_length=20)),
                ('submission_method', models.CharField(default='api', max_length=50)),
                ('last_downloaded', models.DateTimeField(blank=True, help_text='When Google last fetched the sitemap', null=True)),
                ('is_pending', models.BooleanField(default=False)),
                ('warnings', models.IntegerField(default=0)),
                ('errors', models.IntegerField(default=0)),
                ('submitted_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='sitemap_submissions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'sitemap_submissions',
                'ordering': ['-submitted_at'],
                'indexes': [models.Index(fields=['user', 'site_url'], name='sitemap_sub_user_site_idx')],
            },
        ),
        migrations.CreateModel(
            name='RobotsAnalysis',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('site_url', models.CharField(max_length=500)),
                ('exists', models.BooleanField(default=False)),
                ('accessible', models.BooleanField(default=False)),
                ('size', models.IntegerField(default=0)),
                ('content', models.TextField(blank=True)),
                ('google_fetch_status', models.CharField(blank=True, max_length=50)),
                ('google_fetch_errors', models.IntegerField(default=0)),
                ('analyzed_at', models.DateTimeField()),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='robots_analyses', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'robots_analyses',
                'ordering': ['-analyzed_at'],
                'unique_together': {('user', 'site_url')},
            },
        ),
        migrations.CreateModel(
            name='UrlInspection',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('site_url', models.CharField(max_length=500)),
                ('inspected_url', models.CharField(max_length=2000)),
                ('index_status', models.CharField(blank=True, help_text='Inspection verdict: PASS, FAIL, NEUTRAL, ...', max_length=50)),
                ('can_be_indexed', models.BooleanField(default=False)),
                ('fetch_status', models.CharField(blank=True, help_text='GSC pageFetchState', max_length=50)),
                ('robots_txt_state', models.CharField(blank=True, max_length=50)),
                ('mobile_usable', models.BooleanField(blank=True, null=True)),
                ('mobile_usability_issues', models.IntegerField(default=0)),
                ('last_crawl_time', models.DateTimeField(blank=True, null=True)),
                ('inspection_data', models.JSONField(blank=True, default=dict)),
                ('inspected_at', models.DateTimeField()),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='url_inspections', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'url_inspections',
                'ordering': ['-inspected_at'],
                'unique_together': {('user', 'site_url', 'inspected_url')},
                'indexes': [models.Index(fields=['user', 'site_url'], name='url_insp_user_site_idx')],
            },
        ),
        migrations.CreateModel(
            name='SchemaGeneration',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('site_url', models.CharField(max_length=500)),
                ('page_url', models.CharField(max_length=2000)),
                ('schemas_generated', models.IntegerField(default=0)),
                ('schema_types', models.JSONField(blank=True, default=list)),
                ('generated_at', models.DateTimeField(auto_now=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='schema_generations', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'schema_generations',
                'ordering': ['-generated_at'],
                'indexes': [models.Index(fields=['user', 'site_url'], name='schema_gen_user_site_idx')],
            },
        ),
    ]
