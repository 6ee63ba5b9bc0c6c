"""
Resolution engine: decides whether a principal holds a capability.

Sources are consulted in a fixed order and the first one that says
allow or deny wins:

1. user_override              per-user grant/deny in the principal's tenant
2. role_permission            the tenant's role matrix
3. platform_role_permission   platform matrix, super_admin only
4. default_deny

Every resolution returns a Decision and the ordered trace of the sources
considered. Resolution has no side effects and keeps no state between
calls.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from apps.core.exceptions import InvalidRequest, StoreUnavailable
from .catalog import CapabilityCatalog
from .constants import (
    EFFECT_ALLOW,
    ROLE_DEFINITIONS,
    SCOPE_PLATFORM,
    SCOPE_TENANT,
    SUPER_ADMIN,
    role_scope,
)
from .store import PolicyStore
from .trace import Decision, MatchedSource, Outcome, TraceRecorder

logger = logging.getLogger(__name__)

STEP_CATALOG_LOOKUP = 'catalog_lookup'
STEP_USER_OVERRIDE = MatchedSource.USER_OVERRIDE.value
STEP_ROLE_PERMISSION = MatchedSource.ROLE_PERMISSION.value
STEP_PLATFORM_ROLE_PERMISSION = MatchedSource.PLATFORM_ROLE_PERMISSION.value
STEP_DEFAULT_DENY = MatchedSource.DEFAULT_DENY.value

REASON_UNKNOWN_CAPABILITY = 'unknown capability'
REASON_NO_TENANT_CONTEXT = 'no tenant context'
REASON_DEFAULT_DENY = 'no policy grants this capability'


def _as_uuid(value):
    if value is None or isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


@dataclass(frozen=True)
class Principal:
    """
    The subject of a resolution: one user acting with one role,
    inside one tenant (or none, for super_admin at platform level).
    """
    user_id: uuid.UUID
    tenant_id: Optional[uuid.UUID]
    role: str

    @property
    def is_platform(self) -> bool:
        return role_scope(self.role) == SCOPE_PLATFORM

    def validate(self):
        """
        Raise InvalidRequest unless the principal is well formed.

        A malformed principal is an error, never a denial.
        """
        if not self.user_id:
            raise InvalidRequest('Principal requires a user_id')
        try:
            _as_uuid(self.user_id)
            _as_uuid(self.tenant_id)
        except (TypeError, ValueError):
            raise InvalidRequest(
                'Principal user_id and tenant_id must be UUIDs',
                details={'user_id': str(self.user_id), 'tenant_id': str(self.tenant_id)}
            )
        if self.role not in ROLE_DEFINITIONS:
            raise InvalidRequest(
                f"Unknown role '{self.role}'",
                details={'allowed_roles': sorted(ROLE_DEFINITIONS)}
            )
        if role_scope(self.role) == SCOPE_TENANT and not self.tenant_id:
            raise InvalidRequest(
                f"Role '{self.role}' requires a tenant",
                details={'role': self.role}
            )
        return self

    def as_dict(self):
        return {
            'user_id': str(self.user_id),
            'tenant_id': str(self.tenant_id) if self.tenant_id else None,
            'role': self.role,
        }


def _effect_outcome(effect):
    return Outcome.ALLOW if effect == EFFECT_ALLOW else Outcome.DENY


class ResolutionEngine:
    """
    Evaluates capabilities against the policy store.

    The store is read on every call, so a completed mutation is visible
    to the next resolution.
    """

    def __init__(self, store=None):
        self.store = store or PolicyStore()
        self.catalog = CapabilityCatalog(self.store)

    def resolve(self, principal, capability_key):
        """
        Resolve one capability for a principal.

        Args:
            principal: Principal to evaluate
            capability_key: Raw key ('tickets:approve') or CapabilityKey

        Returns:
            Tuple of (Decision, trace) where trace is a tuple of TraceStep

        Raises:
            InvalidRequest: If the principal is malformed
            StoreUnavailable: If the policy store cannot be read
        """
        principal.validate()
        recorder = TraceRecorder()

        capability = self.catalog.lookup_for_role(capability_key, principal.role)
        if capability is None:
            recorder.deny(STEP_CATALOG_LOOKUP, REASON_UNKNOWN_CAPABILITY)
            return Decision(False, MatchedSource.DEFAULT_DENY), recorder.steps()

        decision = self._evaluate(principal, capability.key, recorder)

        logger.debug(
            f"Resolved {capability.key} for {principal.role}: "
            f"{'allow' if decision.allowed else 'deny'} via {decision.matched_source.value}",
            extra={
                'user_id': str(principal.user_id),
                'capability_key': capability.key,
                'matched_source': decision.matched_source.value,
            }
        )
        return decision, recorder.steps()

    def _evaluate(self, principal, key, recorder):
        decision = None
        for source, evaluate in (
            (MatchedSource.USER_OVERRIDE, self._user_override),
            (MatchedSource.ROLE_PERMISSION, self._role_permission),
            (MatchedSource.PLATFORM_ROLE_PERMISSION, self._platform_role_permission),
        ):
            if decision is not None:
                recorder.skip(source.value, f"decided by {decision.matched_source.value}")
                continue

            outcome, reason = evaluate(principal, key)
            recorder.record(source.value, outcome, reason)
            if outcome is not Outcome.SKIP:
                decision = Decision(outcome is Outcome.ALLOW, source)

        if decision is None:
            recorder.deny(STEP_DEFAULT_DENY, REASON_DEFAULT_DENY)
            decision = Decision(False, MatchedSource.DEFAULT_DENY)
        else:
            recorder.skip(STEP_DEFAULT_DENY, f"decided by {decision.matched_source.value}")
        return decision

    def _user_override(self, principal, key):
        if not principal.tenant_id:
            return Outcome.SKIP, REASON_NO_TENANT_CONTEXT

        granted = self.store.get_user_override(principal.tenant_id, principal.user_id, key)
        if granted is None:
            return Outcome.SKIP, 'no override for this user'
        if granted:
            return Outcome.ALLOW, 'user override grants this capability'
        return Outcome.DENY, 'user override denies this capability'

    def _role_permission(self, principal, key):
        if not principal.tenant_id:
            return Outcome.SKIP, REASON_NO_TENANT_CONTEXT

        effect = self.store.get_role_permission(principal.tenant_id, principal.role, key)
        if effect is None:
            return Outcome.SKIP, f"no entry for role '{principal.role}'"
        return _effect_outcome(effect), f"role '{principal.role}' entry: {effect}"

    def _platform_role_permission(self, principal, key):
        if principal.role != SUPER_ADMIN:
            return Outcome.SKIP, 'applies to super_admin only'

        effect = self.store.get_platform_role_permission(SUPER_ADMIN, key)
        if effect is None:
            return Outcome.SKIP, 'no platform entry'
        return _effect_outcome(effect), f"platform entry for '{SUPER_ADMIN}': {effect}"

    def check(self, principal, capability_key):
        """
        Fail-closed boolean check.

        A store outage denies instead of raising; resolve() still
        propagates it for callers that need to tell the difference.
        """
        try:
            decision, _ = self.resolve(principal, capability_key)
        except StoreUnavailable:
            logger.error(
                f"Denying {capability_key}: policy store unavailable",
                extra={'user_id': str(principal.user_id), 'capability_key': str(capability_key)}
            )
            return False
        return decision.allowed

    def resolve_many(self, principal, capability_keys):
        """
        Resolve several capabilities for one principal.

        Returns:
            Dict of raw key -> Decision, in input order
        """
        return {
            str(key): self.resolve(principal, key)[0]
            for key in capability_keys
        }

    def effective_permissions(self, principal):
        """
        Resolve every capability the principal's role can be evaluated against.

        Returns:
            List of (Capability, Decision, trace) in catalog order
        """
        principal.validate()
        results = []
        for capability in self.catalog.for_role(principal.role):
            decision, trace = self.resolve(principal, capability.key)
            results.append((capability, decision, trace))
        return results


def resolve(principal, capability_key):
    return ResolutionEngine().resolve(principal, capability_key)


def check(principal, capability_key):
    return ResolutionEngine().check(principal, capability_key)
