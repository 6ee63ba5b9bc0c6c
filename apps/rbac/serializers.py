"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Capabilities (catalog)
- Access checks, playground decisions and traces
- Role matrix entries and bulk sync
- User overrides
- Feature flags
- Audit logs

Write serializers validate shape only; policy validation (known role,
known capability, scope rules) happens in PolicyAdminService so bulk
sync can report it per item.
"""
from rest_framework import serializers

from apps.rbac.constants import EFFECT_CHOICES, FEATURE_KEYS
from apps.rbac.models import AuditLog, Capability, RolePermission, UserOverride


# ===== CATALOG =====

class CapabilitySerializer(serializers.ModelSerializer):
    """Serializer for catalog capabilities."""

    class Meta:
        model = Capability
        fields = ['id', 'key', 'scope', 'group', 'label', 'description']
        read_only_fields = fields


# ===== DECISIONS =====

class TraceStepSerializer(serializers.Serializer):
    """One step of a resolution trace."""

    step_name = serializers.CharField()
    outcome = serializers.ChoiceField(choices=['allow', 'deny', 'skip'])
    reason = serializers.CharField()


class DecisionSerializer(serializers.Serializer):
    """Outcome of a resolution."""

    allowed = serializers.BooleanField()
    matched_source = serializers.CharField()


class AccessCheckSerializer(serializers.Serializer):
    """Serializer for the caller checking their own access."""

    capability_key = serializers.CharField(required=False, max_length=255)
    capability_keys = serializers.ListField(
        child=serializers.CharField(max_length=255),
        required=False,
        allow_empty=False,
        max_length=200,
    )

    def validate(self, attrs):
        if not attrs.get('capability_key') and not attrs.get('capability_keys'):
            raise serializers.ValidationError(
                "Provide capability_key or capability_keys."
            )
        return attrs


class PlaygroundRequestSerializer(serializers.Serializer):
    """Serializer for evaluating an arbitrary principal in the access playground."""

    user_id = serializers.UUIDField()
    role = serializers.CharField(max_length=50)
    tenant_id = serializers.UUIDField(required=False, allow_null=True)
    capability_key = serializers.CharField(max_length=255)


class PlaygroundResponseSerializer(serializers.Serializer):
    """Decision and full trace for one playground evaluation."""

    principal = serializers.DictField()
    capability_key = serializers.CharField()
    decision = DecisionSerializer()
    trace = TraceStepSerializer(many=True)


class EffectivePermissionSerializer(serializers.Serializer):
    """One capability with its resolved decision."""

    capability = CapabilitySerializer()
    allowed = serializers.BooleanField()
    matched_source = serializers.CharField()
    trace = TraceStepSerializer(many=True)


# ===== ROLE MATRIX =====

class RolePermissionSerializer(serializers.ModelSerializer):
    """Serializer for role matrix entries."""

    capability_key = serializers.CharField(source='capability.key', read_only=True)
    capability_group = serializers.CharField(source='capability.group', read_only=True)

    class Meta:
        model = RolePermission
        fields = [
            'id', 'tenant', 'role', 'capability_key', 'capability_group',
            'effect', 'updated_at'
        ]
        read_only_fields = fields


class RolePermissionSetSerializer(serializers.Serializer):
    """Set or remove one role matrix entry. effect=null removes it."""

    role = serializers.CharField(max_length=50)
    capability_key = serializers.CharField(max_length=255)
    effect = serializers.CharField(max_length=10, allow_null=True)


class PlatformRolePermissionSetSerializer(serializers.Serializer):
    """Set or remove one platform entry for super_admin."""

    capability_key = serializers.CharField(max_length=255)
    effect = serializers.ChoiceField(choices=EFFECT_CHOICES, allow_null=True)


class RoleMatrixSyncSerializer(serializers.Serializer):
    """Batch of independent matrix changes."""

    changes = RolePermissionSetSerializer(many=True, allow_empty=False)


class SyncResultSerializer(serializers.Serializer):
    """Result of one item in a matrix sync."""

    role = serializers.CharField(allow_null=True)
    capability_key = serializers.CharField(allow_null=True)
    status = serializers.ChoiceField(choices=['applied', 'error'])
    effect = serializers.CharField(required=False, allow_null=True)
    changed = serializers.BooleanField(required=False)
    code = serializers.CharField(required=False)
    message = serializers.CharField(required=False)


# ===== USER OVERRIDES =====

class UserOverrideSerializer(serializers.ModelSerializer):
    """Serializer for per-user overrides."""

    capability_key = serializers.CharField(source='capability.key', read_only=True)

    class Meta:
        model = UserOverride
        fields = [
            'id', 'tenant', 'user_id', 'capability_key', 'granted',
            'reason', 'granted_by', 'updated_at'
        ]
        read_only_fields = fields


class UserOverrideSetSerializer(serializers.Serializer):
    """Grant, deny or remove (granted=null) an override."""

    capability_key = serializers.CharField(max_length=255)
    granted = serializers.BooleanField(allow_null=True)
    reason = serializers.CharField(required=False, allow_blank=True, default='')


# ===== FEATURE FLAGS =====


class FeatureFlagSetSerializer(serializers.Serializer):
    """Switch a module on or off, or clear the flag (is_enabled=null)."""

    feature_key = serializers.ChoiceField(choices=FEATURE_KEYS)
    is_enabled = serializers.BooleanField(allow_null=True)


# ===== AUDIT =====

class AuditLogSerializer(serializers.ModelSerializer):
    """Serializer for audit log entries."""

    class Meta:
        model = AuditLog
        fields = [
            'id', 'tenant', 'actor_id', 'action', 'target_type', 'target_id',
            'diff', 'metadata', 'ip_address', 'request_id', 'created_at'
        ]
        read_only_fields = fields
