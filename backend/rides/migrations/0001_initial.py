import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Ride',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('pickup_latitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('pickup_longitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('pickup_address', models.TextField(blank=True, default='')),
                ('dropoff_latitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('dropoff_longitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('dropoff_address', models.TextField(blank=True, default='')),
                ('car_model', models.CharField(blank=True, default='', max_length=100)),
                ('car_number', models.CharField(blank=True, default='', max_length=20)),
                ('departure_time', models.DateTimeField()),
                ('total_seats', models.PositiveSmallIntegerField()),
                ('price', models.DecimalField(decimal_places=2, max_digits=10)),
                ('smoking_allowed', models.BooleanField(default=False)),
                ('pets_allowed', models.BooleanField(default=False)),
                ('alcohol_allowed', models.BooleanField(default=False)),
                ('gender_preference', models.CharField(choices=[('any', 'Any'), ('male', 'Male passengers only'), ('female', 'Female passengers only')], default='any', max_length=10)),
                ('status', models.CharField(choices=[('active', 'Active'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], default='active', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('creator', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='created_rides', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'rides',
                'ordering': ['departure_time', 'id'],
                'indexes': [models.Index(fields=['status', 'departure_time'], name='ride_status_departure_idx')],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('total_seats__gte', 1)), name='ride_total_seats_positive'),
                    models.CheckConstraint(condition=models.Q(('price__gte', 0)), name='ride_price_non_negative'),
                ],
            },
        ),
        migrations.CreateModel(
            name='PassengerRequest',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('confirmed', 'Confirmed'), ('rejected', 'Rejected'), ('cancelled', 'Cancelled')], default='pending', max_length=20)),
                ('requested_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('decided_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('ride', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='passengers', to='rides.ride')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='ride_requests', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'passenger_requests',
                'ordering': ['requested_at', 'id'],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('status__in', ['pending', 'confirmed'])), fields=('ride', 'user'), name='unique_active_request_per_user'),
                ],
            },
        ),
    ]
