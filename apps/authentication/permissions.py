from rest_framework.permissions import BasePermission


class IsTenantUser(BasePermission):
    def has_permission(self, request, view):
        return (
            request.user.is_authenticated and
            getattr(request.user, 'tenant_id', None) is not None
        )


class IsTenantAdmin(IsTenantUser):
    """Operators allowed to move money and campaign state for their tenant."""

    def has_permission(self, request, view):
        return super().has_permission(request, view) and request.user.is_tenant_admin
