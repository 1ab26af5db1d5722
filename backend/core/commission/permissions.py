from rest_framework.permissions import BasePermission


def vendor_id_for(user):
    vendor = getattr(user, "vendor", None) if user else None
    return getattr(vendor, "pk", None)


class IsStaffOrVendor(BasePermission):
    message = "Only staff or vendor accounts can access commission endpoints."

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        if user.is_staff or user.is_superuser:
            return True
        return vendor_id_for(user) is not None


class IsStaffOrOwningVendor(IsStaffOrVendor):
    """Staff see every vendor; a vendor account only sees its own store.

    The view names the vendor through the `vendor_id` URL kwarg, or resolves
    it itself via `get_owner_vendor_id()`.
    """

    message = "You can only access commission data for your own store."

    def has_permission(self, request, view):
        if not super().has_permission(request, view):
            return False

        user = request.user
        if user.is_staff or user.is_superuser:
            return True

        resolver = getattr(view, "get_owner_vendor_id", None)
        owner_id = resolver() if resolver else view.kwargs.get("vendor_id")
        return owner_id is not None and str(owner_id) == str(vendor_id_for(user))
