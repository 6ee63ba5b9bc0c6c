"""
DRF permission classes and decorators for capability enforcement.

This module provides:
- HasCapability: DRF permission class that resolves required capabilities
- @requires_capability: Decorator to declare required capabilities on views

Gates call the resolution engine directly, so the HTTP API is protected
by the same policy it administers.
"""
import logging
from functools import wraps
from rest_framework.permissions import BasePermission

logger = logging.getLogger(__name__)


class HasCapability(BasePermission):
    """
    DRF permission class that enforces capability requirements on API endpoints.

    This permission class:
    1. Reads required_capabilities from the handler method, then the view
    2. Resolves each capability for request.principal
    3. Returns 403 if any capability is denied; a store outage also denies

    Usage in views:
        class MyView(APIView):
            permission_classes = [HasCapability]
            required_capabilities = ['manage_company_users']

    Or per method:
        class MyView(APIView):
            permission_classes = [HasCapability]

            @requires_capability('manage_company_features')
            def put(self, request):
                pass
    """

    message = 'You do not have permission to perform this action.'

    def get_required_capabilities(self, request, view):
        handler = getattr(view, request.method.lower(), None)
        required = getattr(handler, 'required_capabilities', None)
        if required is None:
            required = getattr(view, 'required_capabilities', None)
        if isinstance(required, str):
            required = {required}
        return set(required or ())

    def has_permission(self, request, view):
        """
        Check the principal holds every required capability.

        Returns:
            bool: True if all required capabilities resolve to allow
        """
        required = self.get_required_capabilities(request, view)
        if not required:
            return True

        principal = getattr(request, 'principal', None)
        if principal is None:
            logger.warning(
                "Permission denied: no principal on request",
                extra={
                    'view': view.__class__.__name__,
                    'path': request.path,
                    'request_id': getattr(request, 'request_id', None),
                }
            )
            return False

        # Import here to avoid circular dependency
        from apps.rbac.engine import ResolutionEngine
        from apps.core.exceptions import StoreUnavailable
        from apps.core.logging import SecurityLogger

        engine = ResolutionEngine()
        for capability_key in sorted(required):
            try:
                decision, _ = engine.resolve(principal, capability_key)
            except StoreUnavailable:
                # Fail closed
                matched_source = 'store_unavailable'
            else:
                if decision.allowed:
                    continue
                matched_source = decision.matched_source.value

            SecurityLogger.log_access_denied(
                principal,
                capability_key,
                matched_source=matched_source,
                path=request.path,
            )
            logger.warning(
                f"Permission denied: {principal.role} missing capability {capability_key}",
                extra={
                    'user_id': str(principal.user_id),
                    'role': principal.role,
                    'capability_key': capability_key,
                    'view': view.__class__.__name__,
                    'method': request.method,
                    'path': request.path,
                    'request_id': getattr(request, 'request_id', None),
                }
            )
            return False

        return True


def requires_capability(*capability_keys):
    """
    Decorator to declare required capabilities on view classes or methods.

    The attribute is read by HasCapability before the handler runs.

    Args:
        *capability_keys: Capability keys required for access

    Returns:
        Decorator function that sets required_capabilities
    """
    def decorator(view_or_method):
        if isinstance(view_or_method, type):
            view_or_method.required_capabilities = set(capability_keys)
            return view_or_method

        @wraps(view_or_method)
        def wrapped(self, request, *args, **kwargs):
            return view_or_method(self, request, *args, **kwargs)

        wrapped.required_capabilities = set(capability_keys)
        return wrapped

    return decorator
