# jobs/permissions.py
from rest_framework.permissions import BasePermission


class IsDriver(BasePermission):
    """
    Allows access only to users with a driver profile.
    """
    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False
        return getattr(user, "role", None) == "driver" and hasattr(user, "driver_profile")


class IsCustomer(BasePermission):
    """
    Allows access only to customers (people who order food or book rides).
    """
    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False
        return getattr(user, "role", None) == "customer"


class IsOpsUser(BasePermission):
    """
    Allows access only to staff/admin users running dispatch operations.
    """
    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False
        return bool(getattr(user, "is_ops", False))
