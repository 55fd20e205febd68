# Generated manually for the site registry

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
            name='Site',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255)),
                ('url', models.CharField(help_text='Site identifier in any spelling (example.com, https://www.example.com/, sc-domain:example.com)', max_length=500)),
                ('is_active', models.BooleanField(default=True)),
                ('last_scanned_at', models.DateTimeField(blank=True, null=True)),
                ('last_verified_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('gsc_site_url', models.CharField(blank=True, help_text='GSC property (e.g., https://example.com/ or sc-domain:example.com)', max_length=500, null=True)),
                ('gsc_access_token', models.TextField(blank=True, help_text='GSC OAuth access token', null=True)),
                ('gsc_refresh_token', models.TextField(blank=True, help_text='GSC OAuth refresh token', null=True)),
                ('gsc_token_expires_at', models.DateTimeField(blank=True, help_text='When the access token expires', null=True)),
                ('gsc_connected_at', models.DateTimeField(blank=True, help_text='When GSC was connected', null=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='sites', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'sites',
                'ordering': ['-created_at'],
                'unique_together': {('user', 'url')},
            },
        ),
    ]
