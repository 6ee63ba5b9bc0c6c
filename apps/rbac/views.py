"""
RBAC REST API views.

Implements endpoints for:
- Capability catalog listing
- Access checks, the access playground and effective permissions
- Role matrix management (tenant and platform) and bulk sync
- User override management
- Feature flag management
- Audit log viewing
"""
import uuid
from datetime import datetime, time

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from rest_framework import status
from rest_framework.exceptions import PermissionDenied
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.pagination import PageNumberPagination
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.core.exceptions import InvalidRequest, NotFound
from apps.core.logging import SecurityLogger
from apps.core.permissions import requires_capability, HasCapability
from apps.rbac.catalog import CapabilityCatalog, scope_allows_role
from apps.rbac.constants import FEATURE_KEYS, SCOPE_PLATFORM, SUPER_ADMIN, role_scope
from apps.rbac.engine import Principal, ResolutionEngine
from apps.rbac.models import AuditLog
from apps.rbac.services import PolicyAdminService
from apps.rbac.store import PolicyStore
from apps.rbac.trace import trace_as_dicts
from apps.rbac.serializers import (
    CapabilitySerializer, AccessCheckSerializer, PlaygroundRequestSerializer,
    PlaygroundResponseSerializer, EffectivePermissionSerializer,
    RolePermissionSerializer, RolePermissionSetSerializer,
    PlatformRolePermissionSetSerializer, RoleMatrixSyncSerializer,
    SyncResultSerializer, UserOverrideSerializer, UserOverrideSetSerializer,
    FeatureFlagSetSerializer, AuditLogSerializer
)


class StandardResultsSetPagination(PageNumberPagination):
    """Standard pagination for list endpoints."""
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 100


TENANT_ID_PARAMETER = OpenApiParameter(
    'tenant_id', OpenApiTypes.UUID,
    description='Target tenant (super_admin only; defaults to the caller\'s tenant)'
)


def _parse_uuid(value, field):
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise InvalidRequest(f"{field} must be a UUID", details={field: str(value)})


def _parse_datetime(value, field):
    """Parse an ISO 8601 datetime or date query parameter."""
    try:
        parsed = parse_datetime(value)
        if parsed is None:
            day = parse_date(value)
            parsed = datetime.combine(day, time.min) if day else None
    except ValueError:
        parsed = None
    if parsed is None:
        raise InvalidRequest(
            f"{field} must be an ISO 8601 date or datetime",
            details={field: value}
        )
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def resolve_target_tenant(request, tenant_id=None):
    """
    Tenant a request acts on.

    Tenant principals always act on their own tenant; naming another one
    is refused and logged. Platform principals may name any existing
    tenant and must name one when they have no tenant context.
    """
    principal = request.principal
    if tenant_id in (None, ''):
        if principal.tenant_id is None:
            raise InvalidRequest('tenant_id is required without a tenant context')
        return principal.tenant_id

    tenant_id = _parse_uuid(tenant_id, 'tenant_id')
    if tenant_id == principal.tenant_id:
        return tenant_id

    if not principal.is_platform:
        SecurityLogger.log_cross_tenant_attempt(principal, tenant_id, path=request.path)
        raise PermissionDenied('You can only manage your own company.')

    if not PolicyStore().tenant_exists(tenant_id):
        raise NotFound(f"Tenant '{tenant_id}' does not exist", details={'tenant_id': str(tenant_id)})
    return tenant_id


def _target_principal(request, user_id, role, tenant_id):
    """Build the principal evaluated by the playground and effective views."""
    caller = request.principal
    if not caller.is_platform:
        if role_scope(role) == SCOPE_PLATFORM:
            raise PermissionDenied('Only platform administrators can evaluate platform roles.')
        tenant_id = resolve_target_tenant(request, tenant_id)
    elif tenant_id not in (None, ''):
        tenant_id = resolve_target_tenant(request, tenant_id)
    else:
        tenant_id = None

    return Principal(user_id=user_id, tenant_id=tenant_id, role=role).validate()


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Capabilities'],
        summary='List capabilities',
        description='''
List the capability catalog. Tenant roles only see tenant-scope capabilities.

**No capability required.**

Query parameters:
- `scope`: Filter by scope (`tenant` or `platform`)
- `group`: Filter by display group (e.g., `approvals`)
- `group_by`: Set to `group` to group results by display group
        ''',
        parameters=[
            OpenApiParameter('scope', OpenApiTypes.STR, description='Filter by scope'),
            OpenApiParameter('group', OpenApiTypes.STR, description='Filter by display group'),
            OpenApiParameter('group_by', OpenApiTypes.STR, description="Set to 'group' to group results"),
        ],
        responses={200: CapabilitySerializer(many=True)},
    )
)
class CapabilityListView(APIView):
    """
    GET /v1/capabilities

    List the capability catalog visible to the caller's role.
    """

    def get(self, request):
        """List capabilities."""
        role = request.principal.role
        catalog = CapabilityCatalog()
        scope = request.query_params.get('scope')
        group = request.query_params.get('group')

        if request.query_params.get('group_by') == 'group':
            groups = catalog.grouped(scope=scope, group=group, role=role)
            return Response({
                'count': sum(len(item['capabilities']) for item in groups),
                'groups': [
                    {
                        'group': item['group'],
                        'capabilities': CapabilitySerializer(item['capabilities'], many=True).data,
                    }
                    for item in groups
                ],
            })

        capabilities = [
            capability for capability in catalog.list(scope=scope, group=group)
            if scope_allows_role(capability.scope, role)
        ]

        return Response({
            'count': len(capabilities),
            'capabilities': CapabilitySerializer(capabilities, many=True).data,
        })


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Access'],
        summary='Check own access',
        description='''
Check whether the caller holds one or more capabilities.

**No capability required** - callers can always check their own access.
Returns only the allow/deny result; use the playground for traces.

Returns 503 when the policy store is unavailable so an outage is never
mistaken for a denial.

**Example curl:**
```bash
curl -X POST https://portal.example.com/v1/access/check \\
  -H "X-TENANT-ID: {tenant_id}" \\
  -H "X-USER-ID: {user_id}" \\
  -H "X-USER-ROLE: manager" \\
  -H "Content-Type: application/json" \\
  -d '{"capability_keys": ["tickets:approve", "view_request_metrics"]}'
```
        ''',
        request=AccessCheckSerializer,
        responses={200: OpenApiTypes.OBJECT, 503: OpenApiTypes.OBJECT},
    )
)
class AccessCheckView(APIView):
    """
    POST /v1/access/check

    Resolve capabilities for the calling principal.
    """

    def post(self, request):
        """Check the caller's access."""
        serializer = AccessCheckSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        engine = ResolutionEngine()
        single_key = serializer.validated_data.get('capability_key')
        if single_key:
            decision, _ = engine.resolve(request.principal, single_key)
            return Response({'capability_key': single_key, 'allowed': decision.allowed})

        decisions = engine.resolve_many(
            request.principal, serializer.validated_data['capability_keys']
        )
        return Response({
            'results': {key: decision.allowed for key, decision in decisions.items()},
        })


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Access'],
        summary='Access playground',
        description='''
Evaluate any principal against one capability and return the decision with
its full trace.

**Required capability:** `manage_company_users`

Tenant administrators can only evaluate principals in their own company.
super_admin may pass `tenant_id` for any company, or omit it to evaluate at
platform level.
        ''',
        request=PlaygroundRequestSerializer,
        responses={200: PlaygroundResponseSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Override grant',
                value={
                    'principal': {'user_id': '8d5c...', 'tenant_id': '1b2a...', 'role': 'requester'},
                    'capability_key': 'approve_hardware_requests',
                    'decision': {'allowed': True, 'matched_source': 'user_override'},
                    'trace': [
                        {'step_name': 'user_override', 'outcome': 'allow',
                         'reason': 'user override grants this capability'},
                        {'step_name': 'role_permission', 'outcome': 'skip',
                         'reason': 'decided by user_override'},
                        {'step_name': 'platform_role_permission', 'outcome': 'skip',
                         'reason': 'decided by user_override'},
                        {'step_name': 'default_deny', 'outcome': 'skip',
                         'reason': 'decided by user_override'},
                    ],
                },
                response_only=True,
            )
        ],
    )
)
@requires_capability('manage_company_users')
class AccessPlaygroundView(APIView):
    """
    POST /v1/access/playground

    Decision and trace for an arbitrary principal.

    Required capability: manage_company_users
    """

    permission_classes = [HasCapability]

    def post(self, request):
        """Evaluate a principal."""
        serializer = PlaygroundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        principal = _target_principal(
            request, data['user_id'], data['role'], data.get('tenant_id')
        )
        decision, trace = ResolutionEngine().resolve(principal, data['capability_key'])

        return Response({
            'principal': principal.as_dict(),
            'capability_key': data['capability_key'],
            'decision': decision.as_dict(),
            'trace': trace_as_dicts(trace),
        })


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Access'],
        summary='Effective permissions',
        description='''
Resolve every capability in the catalog for one principal.

**Required capability:** `manage_company_users`

Query parameters default to the caller's own identity.
        ''',
        parameters=[
            OpenApiParameter('user_id', OpenApiTypes.UUID, description='User to evaluate'),
            OpenApiParameter('role', OpenApiTypes.STR, description='Role to evaluate'),
            TENANT_ID_PARAMETER,
        ],
        responses={200: EffectivePermissionSerializer(many=True), 403: OpenApiTypes.OBJECT},
    )
)
@requires_capability('manage_company_users')
class EffectivePermissionsView(APIView):
    """
    GET /v1/access/effective

    Effective permissions for a principal.

    Required capability: manage_company_users
    """

    permission_classes = [HasCapability]

    def get(self, request):
        """List effective permissions."""
        caller = request.principal
        user_id = request.query_params.get('user_id')
        user_id = _parse_uuid(user_id, 'user_id') if user_id else caller.user_id
        role = request.query_params.get('role') or caller.role
        tenant_id = request.query_params.get('tenant_id')
        if tenant_id is None and not caller.is_platform:
            tenant_id = caller.tenant_id

        principal = _target_principal(request, user_id, role, tenant_id)
        results = ResolutionEngine().effective_permissions(principal)

        permissions = [
            {
                'capability': CapabilitySerializer(capability).data,
                'allowed': decision.allowed,
                'matched_source': decision.matched_source.value,
                'trace': trace_as_dicts(trace),
            }
            for capability, decision, trace in results
        ]
        return Response({
            'principal': principal.as_dict(),
            'count': len(permissions),
            'allowed_count': sum(1 for item in permissions if item['allowed']),
            'permissions': permissions,
        })


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Role Matrix'],
        summary='List role matrix',
        description='''
List the company's role matrix entries. Pairs without an entry are unset.

**Required capability:** `manage_company_users`
        ''',
        parameters=[
            OpenApiParameter('role', OpenApiTypes.STR, description='Filter by role'),
            TENANT_ID_PARAMETER,
        ],
        responses={200: RolePermissionSerializer(many=True), 403: OpenApiTypes.OBJECT},
    ),
    put=extend_schema(
        tags=['RBAC - Role Matrix'],
        summary='Set role matrix entry',
        description='''
Set one entry of the company's role matrix. `effect: null` removes the entry
and reverts the pair to unset.

**Required capability:** `manage_company_users`

**Example curl:**
```bash
curl -X PUT https://portal.example.com/v1/role-permissions \\
  -H "X-TENANT-ID: {tenant_id}" \\
  -H "X-USER-ID: {user_id}" \\
  -H "X-USER-ROLE: tenant_admin" \\
  -H "Content-Type: application/json" \\
  -d '{"role": "manager", "capability_key": "tickets:approve", "effect": "allow"}'
```
        ''',
        parameters=[TENANT_ID_PARAMETER],
        request=RolePermissionSetSerializer,
        responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    ),
)
@requires_capability('manage_company_users')
class RolePermissionView(APIView):
    """
    GET/PUT /v1/role-permissions

    Tenant role matrix.

    Required capability: manage_company_users
    """

    permission_classes = [HasCapability]

    def get(self, request):
        """List role matrix entries."""
        tenant_id = resolve_target_tenant(request, request.query_params.get('tenant_id'))
        entries = PolicyStore().list_role_permissions(
            tenant_id, role=request.query_params.get('role')
        )
        return Response({
            'tenant_id': str(tenant_id),
            'count': len(entries),
            'role_permissions': RolePermissionSerializer(entries, many=True).data,
        })

    def put(self, request):
        """Set or remove one role matrix entry."""
        tenant_id = resolve_target_tenant(request, request.query_params.get('tenant_id'))
        serializer = RolePermissionSetSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = PolicyAdminService.set_role_permission(
            tenant_id,
            serializer.validated_data['role'],
            serializer.validated_data['capability_key'],
            serializer.validated_data['effect'],
            actor_id=request.principal.user_id,
            request=request,
        )
        return Response(result, status=status.HTTP_200_OK)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Role Matrix'],
        summary='Sync role matrix',
        description='''
Apply a batch of role matrix changes. Each change is applied on its own:
a failing item is reported in the results and earlier items stay applied.

**Required capability:** `manage_company_users`
        ''',
        parameters=[TENANT_ID_PARAMETER],
        request=RoleMatrixSyncSerializer,
        responses={200: SyncResultSerializer(many=True), 403: OpenApiTypes.OBJECT},
    )
)
@requires_capability('manage_company_users')
class RoleMatrixSyncView(APIView):
    """
    POST /v1/role-permissions/sync

    Bulk matrix sync with per-item results.

    Required capability: manage_company_users
    """

    permission_classes = [HasCapability]

    def post(self, request):
        """Apply matrix changes."""
        tenant_id = resolve_target_tenant(request, request.query_params.get('tenant_id'))
        serializer = RoleMatrixSyncSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        results = PolicyAdminService.sync_role_matrix(
            tenant_id,
            serializer.validated_data['changes'],
            actor_id=request.principal.user_id,
            request=request,
        )
        applied = sum(1 for item in results if item['status'] == 'applied')
        return Response({
            'tenant_id': str(tenant_id),
            'applied': applied,
            'failed': len(results) - applied,
            'results': results,
        })


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Role Matrix'],
        summary='List platform matrix',
        description='''
List platform-wide entries for super_admin.

**Required capability:** `manage_role_permissions`
        ''',
        responses={200: RolePermissionSerializer(many=True), 403: OpenApiTypes.OBJECT},
    ),
    put=extend_schema(
        tags=['RBAC - Role Matrix'],
        summary='Set platform matrix entry',
        description='''
Set one platform entry for super_admin. `effect: null` removes it.

**Required capability:** `manage_role_permissions`
        ''',
        request=PlatformRolePermissionSetSerializer,
        responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    ),
)
@requires_capability('manage_role_permissions')
class PlatformRolePermissionView(APIView):
    """
    GET/PUT /v1/platform/role-permissions

    Platform role matrix.

    Required capability: manage_role_permissions
    """

    permission_classes = [HasCapability]

    def get(self, request):
        """List platform entries."""
        entries = PolicyStore().list_platform_role_permissions()
        return Response({
            'count': len(entries),
            'role_permissions': RolePermissionSerializer(entries, many=True).data,
        })

    def put(self, request):
        """Set or remove one platform entry."""
        serializer = PlatformRolePermissionSetSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = PolicyAdminService.set_role_permission(
            None,
            SUPER_ADMIN,
            serializer.validated_data['capability_key'],
            serializer.validated_data['effect'],
            actor_id=request.principal.user_id,
            request=request,
        )
        return Response(result, status=status.HTTP_200_OK)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - User Overrides'],
        summary='List user overrides',
        description='''
List the per-user overrides for one user in the company.

**Required capability:** `manage_company_users`
        ''',
        parameters=[TENANT_ID_PARAMETER],
        responses={200: UserOverrideSerializer(many=True), 403: OpenApiTypes.OBJECT},
    ),
    put=extend_schema(
        tags=['RBAC - User Overrides'],
        summary='Set user override',
        description='''
Grant (`granted: true`), deny (`granted: false`) or remove (`granted: null`)
a capability for one user. Overrides outrank the role matrix.

**Required capability:** `manage_company_users`

**Example curl (grant):**
```bash
curl -X PUT https://portal.example.com/v1/users/{user_id}/overrides \\
  -H "X-TENANT-ID: {tenant_id}" \\
  -H "X-USER-ID: {admin_id}" \\
  -H "X-USER-ROLE: tenant_admin" \\
  -H "Content-Type: application/json" \\
  -d '{
    "capability_key": "approve_hardware_requests",
    "granted": true,
    "reason": "Covering for the office manager"
  }'
```
        ''',
        parameters=[TENANT_ID_PARAMETER],
        request=UserOverrideSetSerializer,
        responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    ),
)
@requires_capability('manage_company_users')
class UserOverrideView(APIView):
    """
    GET/PUT /v1/users/{user_id}/overrides

    Per-user overrides.

    Required capability: manage_company_users
    """

    permission_classes = [HasCapability]

    def get(self, request, user_id):
        """List overrides for a user."""
        tenant_id = resolve_target_tenant(request, request.query_params.get('tenant_id'))
        overrides = PolicyStore().list_user_overrides(tenant_id, user_id=user_id)
        return Response({
            'tenant_id': str(tenant_id),
            'user_id': str(user_id),
            'count': len(overrides),
            'overrides': UserOverrideSerializer(overrides, many=True).data,
        })

    def put(self, request, user_id):
        """Set or remove an override."""
        tenant_id = resolve_target_tenant(request, request.query_params.get('tenant_id'))
        serializer = UserOverrideSetSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = PolicyAdminService.set_user_override(
            tenant_id,
            user_id,
            serializer.validated_data['capability_key'],
            serializer.validated_data['granted'],
            reason=serializer.validated_data.get('reason', ''),
            actor_id=request.principal.user_id,
            request=request,
        )
        return Response(result, status=status.HTTP_200_OK)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Features'],
        summary='List feature flags',
        description='''
List every module with its state for the company. Modules without a flag
are enabled.

**Required capability:** `manage_company_features`
        ''',
        parameters=[TENANT_ID_PARAMETER],
        responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    ),
    put=extend_schema(
        tags=['RBAC - Features'],
        summary='Set feature flag',
        description='''
Switch a module on or off. `is_enabled: null` clears the flag.

**Required capability:** `manage_company_features`
        ''',
        parameters=[TENANT_ID_PARAMETER],
        request=FeatureFlagSetSerializer,
        responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    ),
)
@requires_capability('manage_company_features')
class FeatureFlagView(APIView):
    """
    GET/PUT /v1/features

    Per-company module toggles.

    Required capability: manage_company_features
    """

    permission_classes = [HasCapability]

    def get(self, request):
        """List module states."""
        tenant_id = resolve_target_tenant(request, request.query_params.get('tenant_id'))
        stored = {
            flag.feature_key: flag.is_enabled
            for flag in PolicyStore().list_feature_flags(tenant_id)
        }
        features = [
            {
                'feature_key': feature_key,
                'is_enabled': stored.get(feature_key, True),
                'is_default': feature_key not in stored,
            }
            for feature_key in FEATURE_KEYS
        ]
        return Response({'tenant_id': str(tenant_id), 'features': features})

    def put(self, request):
        """Set or clear a feature flag."""
        tenant_id = resolve_target_tenant(request, request.query_params.get('tenant_id'))
        serializer = FeatureFlagSetSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = PolicyAdminService.set_feature_flag(
            tenant_id,
            serializer.validated_data['feature_key'],
            serializer.validated_data['is_enabled'],
            actor_id=request.principal.user_id,
            request=request,
        )
        return Response(result, status=status.HTTP_200_OK)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Audit'],
        summary='List audit logs',
        description='''
List policy change audit logs for the company. super_admin without a tenant
context sees platform changes.

**Required capability:** `view_audit_logs`

Query parameters:
- `action`: Filter by action (e.g., 'role_permission_set')
- `target_type`: Filter by target type (e.g., 'UserOverride')
- `actor_id`: Filter by user who performed the action
- `from_date`: Filter by date range start (ISO 8601)
- `to_date`: Filter by date range end (ISO 8601)
        ''',
        parameters=[
            OpenApiParameter('action', OpenApiTypes.STR, description='Filter by action'),
            OpenApiParameter('target_type', OpenApiTypes.STR, description='Filter by target type'),
            OpenApiParameter('actor_id', OpenApiTypes.UUID, description='Filter by actor'),
            OpenApiParameter('from_date', OpenApiTypes.DATETIME, description='Filter from date'),
            OpenApiParameter('to_date', OpenApiTypes.DATETIME, description='Filter to date'),
            TENANT_ID_PARAMETER,
        ],
        responses={200: AuditLogSerializer(many=True), 403: OpenApiTypes.OBJECT},
    )
)
@requires_capability('view_audit_logs')
class AuditLogListView(APIView):
    """
    GET /v1/audit-logs

    List audit logs for the tenant.

    Required capability: view_audit_logs
    """

    permission_classes = [HasCapability]
    pagination_class = StandardResultsSetPagination

    def get(self, request):
        """List audit logs."""
        principal = request.principal
        tenant_id = request.query_params.get('tenant_id')
        if principal.is_platform and not tenant_id and principal.tenant_id is None:
            logs = AuditLog.objects.platform()
        else:
            logs = AuditLog.objects.filter(
                tenant_id=resolve_target_tenant(request, tenant_id)
            )

        action = request.query_params.get('action')
        if action:
            logs = logs.filter(action=action)

        target_type = request.query_params.get('target_type')
        if target_type:
            logs = logs.filter(target_type=target_type)

        actor_id = request.query_params.get('actor_id')
        if actor_id:
            logs = logs.filter(actor_id=_parse_uuid(actor_id, 'actor_id'))

        from_date = request.query_params.get('from_date')
        if from_date:
            logs = logs.filter(created_at__gte=_parse_datetime(from_date, 'from_date'))

        to_date = request.query_params.get('to_date')
        if to_date:
            logs = logs.filter(created_at__lte=_parse_datetime(to_date, 'to_date'))

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(logs, request)

        serializer = AuditLogSerializer(page, many=True)

        return paginator.get_paginated_response(serializer.data)
