"""
Tenant context middleware for multi-tenant isolation.

Builds the request principal (user, tenant, role) from the identity
headers set by the upstream identity layer, ensuring every API request
is scoped to one tenant before any policy is evaluated.
"""
import logging
import threading
import uuid
from django.db import InterfaceError, OperationalError
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin
from apps.core.logging import SecurityLogger
from .models import Tenant

logger = logging.getLogger(__name__)


class TenantContextMiddleware(MiddlewareMixin):
    """
    Extract and validate the principal from request headers.

    This middleware:
    1. Extracts X-USER-ID, X-USER-ROLE and X-TENANT-ID headers
    2. Validates the tenant exists and is active
    3. Validates the principal shape (known role, tenant present for tenant roles)
    4. Injects request.tenant and request.principal for use in views

    Authentication happens upstream; these headers are trusted as given.
    Public endpoints (health checks, schema, admin) bypass the check.
    """

    PUBLIC_PATHS = [
        '/v1/health',
        '/schema',
        '/admin/',
    ]

    def process_request(self, request):
        """Extract and validate principal context from headers."""
        if not hasattr(request, 'request_id'):
            request.request_id = request.headers.get('X-Request-ID') or str(uuid.uuid4())
        request_id = request.request_id

        request.tenant = None
        request.principal = None

        if self._is_public_path(request.path):
            return None

        # Import here to avoid circular dependency
        from apps.core.exceptions import InvalidRequest
        from apps.rbac.engine import Principal

        user_id = request.headers.get('X-USER-ID')
        role = request.headers.get('X-USER-ROLE')
        tenant_id = request.headers.get('X-TENANT-ID')

        if not user_id or not role:
            return self._error_response(
                'MISSING_IDENTITY',
                'X-USER-ID and X-USER-ROLE headers are required',
                status=401
            )

        try:
            user_uuid = uuid.UUID(user_id)
            tenant_uuid = uuid.UUID(tenant_id) if tenant_id else None
        except ValueError:
            return self._error_response(
                'INVALID_IDENTITY',
                'X-USER-ID and X-TENANT-ID must be UUIDs',
                status=400
            )

        tenant = None
        if tenant_uuid:
            try:
                tenant = Tenant.objects.filter(id=tenant_uuid).first()
            except (OperationalError, InterfaceError) as e:
                logger.error(
                    f"Tenant lookup failed: {e}",
                    extra={'request_id': request_id},
                    exc_info=True
                )
                SecurityLogger.log_store_unavailable('tenant_lookup', str(e))
                return self._error_response(
                    'STORE_UNAVAILABLE',
                    'The policy store is unavailable',
                    status=503
                )

            if tenant is None:
                logger.warning(
                    f"Invalid tenant ID: {tenant_id}",
                    extra={'request_id': request_id}
                )
                return self._error_response(
                    'INVALID_TENANT',
                    'Invalid tenant ID',
                    status=401
                )

            if not tenant.is_active():
                logger.info(
                    f"Inactive tenant attempted access: {tenant_id}",
                    extra={'request_id': request_id}
                )
                return self._error_response(
                    'TENANT_INACTIVE',
                    'This company account is not active.',
                    status=403,
                    details={'status': tenant.status}
                )

        principal = Principal(user_id=user_uuid, tenant_id=tenant_uuid, role=role)
        try:
            principal.validate()
        except InvalidRequest as e:
            return self._error_response(
                e.code,
                e.message,
                status=e.status_code,
                details=e.details
            )

        request.tenant = tenant
        request.principal = principal

        if tenant:
            threading.current_thread().tenant_id = str(tenant.id)

        logger.debug(
            f"Principal context set: {principal.role} @ {tenant.slug if tenant else 'platform'}",
            extra={'request_id': request_id}
        )
        return None

    def _is_public_path(self, path):
        """Check if path is public and doesn't require identity headers."""
        return any(path.startswith(public_path) for public_path in self.PUBLIC_PATHS)

    def _error_response(self, code, message, status=400, details=None):
        """Generate standardized error response."""
        error_data = {
            'error': {
                'code': code,
                'message': message,
            }
        }

        if details:
            error_data['error']['details'] = details

        return JsonResponse(error_data, status=status)
