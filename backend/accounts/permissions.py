from rest_framework import permissions

ENGINE_MANAGER_ROLES = ('manager', 'admin')


class IsManagerOrAdmin(permissions.BasePermission):
    """
    Allow only manager or admin users.
    """
    message = 'Manager or admin role required'

    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.role in ENGINE_MANAGER_ROLES


class CanManageTariffEngine(IsManagerOrAdmin):
    """
    Operations that affect every caller of the engine (clearing the cache).
    """
    message = 'Only managers or admins can manage the tariff engine'


class CanEditTariffs(IsManagerOrAdmin):
    """
    Bulk writes over tariff records (kind corrections, validity updates).
    """
    message = 'Only managers or admins can edit tariff records in bulk'
