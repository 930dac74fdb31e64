# rides/permissions.py
from rest_framework.permissions import BasePermission


class _HasRole(BasePermission):
    role = None
    message = "You do not have the required role."

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False
        return getattr(user, "role", None) == self.role


class IsDriver(_HasRole):
    """Allows access only to users with role == 'driver'."""
    role = "driver"
    message = "Only drivers can do this."


class IsRider(_HasRole):
    """Allows access only to users with role == 'rider'."""
    role = "rider"
    message = "Only riders can do this."
