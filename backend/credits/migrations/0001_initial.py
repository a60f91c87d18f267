import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('drivers', '0001_initial'),
        ('trips', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='CreditLedgerEntry',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('credits_delta', models.IntegerField()),
                ('balance_after', models.IntegerField()),
                ('action', models.CharField(choices=[('ADMIN_ADD', 'Admin Add'), ('TRIP_DEDUCTION', 'Trip Deduction'), ('REFUND', 'Refund')], max_length=20)),
                ('amount', models.PositiveIntegerField(blank=True, null=True)),
                ('package_name', models.CharField(blank=True, max_length=100, null=True)),
                ('notes', models.TextField(blank=True, default='')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('actor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('driver', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='credit_entries', to='drivers.driverprofile')),
                ('trip', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='credit_entries', to='trips.trip')),
            ],
            options={
                'db_table': 'credit_ledger',
                'ordering': ['-created_at', '-id'],
                'indexes': [models.Index(fields=['driver', '-created_at'], name='credit_driver_created_idx')],
            },
        ),
    ]
