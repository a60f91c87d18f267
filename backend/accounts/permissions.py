from rest_framework.permissions import BasePermission


class IsAdminRole(BasePermission):
    """Platform admins (role=admin or Django staff)."""
    message = "Only admins can perform this action."

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and user.is_admin_role)


class IsDriver(BasePermission):
    message = "Only drivers allowed"

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and user.role == user.ROLE_DRIVER)
