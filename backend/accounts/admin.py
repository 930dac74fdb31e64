from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from accounts.models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Admin panel for custom User model"""

    list_display = ["username", "email", "role", "phone_number", "completed_rides", "is_active"]
    list_filter = ["role", "is_active", "is_staff"]
    search_fields = ["username", "email", "phone_number"]
    ordering = ("username",)

    fieldsets = BaseUserAdmin.fieldsets + (
        ("Carpool", {"fields": ("role", "phone_number", "gender", "completed_rides")}),
    )

    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ("Carpool", {"fields": ("role", "phone_number", "gender")}),
    )
