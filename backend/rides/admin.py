"""Tells what to show in the Django admin interface for rides app"""

from django.contrib import admin
from .models import Ride, PassengerRequest


class PassengerRequestInline(admin.TabularInline):
    model = PassengerRequest
    extra = 0
    readonly_fields = ['user', 'status', 'requested_at', 'decided_at', 'cancelled_at']
    can_delete = False


@admin.register(Ride)
class RideAdmin(admin.ModelAdmin):
    """Ride admin"""
    list_display = ['id', 'creator', 'pickup_address', 'dropoff_address', 'departure_time',
                    'total_seats', 'price', 'status']
    list_filter = ['status', 'departure_time']
    search_fields = ['creator__username', 'pickup_address', 'dropoff_address']
    readonly_fields = ['created_at', 'completed_at', 'cancelled_at']
    date_hierarchy = 'departure_time'
    inlines = [PassengerRequestInline]


@admin.register(PassengerRequest)
class PassengerRequestAdmin(admin.ModelAdmin):
    list_display = ("ride", "user", "status", "requested_at", "decided_at")
    list_filter = ("status",)
    search_fields = ("ride__id", "user__username")
