"""
Capability keys and the read-only capability catalog.

A capability key is either a ``resource:action`` pair (``tickets:approve``)
or a flat feature key (``manage_company_users``). Both are parsed into a
single CapabilityKey value at the boundary so the rest of the system
never deals with raw strings.
"""
import re
from dataclasses import dataclass
from typing import Optional

from .constants import SCOPE_PLATFORM, SCOPE_TENANT, role_scope

_SEGMENT = r'[a-z][a-z0-9_-]*'
_RESOURCE_ACTION_RE = re.compile(rf'^({_SEGMENT}):({_SEGMENT})$')
_FEATURE_RE = re.compile(rf'^{_SEGMENT}$')

MAX_KEY_LENGTH = 100


@dataclass(frozen=True)
class CapabilityKey:
    """
    Parsed capability key.

    ``action`` is None for flat feature keys.
    """
    resource: str
    action: Optional[str] = None

    @property
    def is_feature(self) -> bool:
        return self.action is None

    def __str__(self):
        if self.action is None:
            return self.resource
        return f"{self.resource}:{self.action}"

    @classmethod
    def parse(cls, raw) -> Optional['CapabilityKey']:
        """
        Parse a raw key, returning None when it is not well formed.

        Keys are lower-case; surrounding whitespace is ignored.
        """
        if isinstance(raw, CapabilityKey):
            return raw
        if not isinstance(raw, str):
            return None

        value = raw.strip()
        if not value or len(value) > MAX_KEY_LENGTH:
            return None

        match = _RESOURCE_ACTION_RE.match(value)
        if match:
            return cls(resource=match.group(1), action=match.group(2))
        if _FEATURE_RE.match(value):
            return cls(resource=value)
        return None


def parse_key(raw):
    """Shortcut for CapabilityKey.parse."""
    return CapabilityKey.parse(raw)


def scope_allows_role(capability_scope, role):
    """
    Whether a role may hold a capability of the given scope at all.

    Platform capabilities are reserved for platform roles; tenant
    capabilities are open to every known role (super_admin included).
    """
    scope = role_scope(role)
    if scope is None:
        return False
    if capability_scope == SCOPE_PLATFORM:
        return scope == SCOPE_PLATFORM
    return capability_scope == SCOPE_TENANT


class CapabilityCatalog:
    """
    Read-only view over the capability catalog table.

    Every method reads the database; nothing is cached between calls.
    """

    def __init__(self, store=None):
        if store is None:
            from .store import PolicyStore
            store = PolicyStore()
        self.store = store

    def lookup(self, key):
        """
        Find the capability for a key.

        Returns None for unparseable and unknown keys alike.
        """
        parsed = parse_key(key)
        if parsed is None:
            return None
        return self.store.get_capability(str(parsed))

    def lookup_for_role(self, key, role):
        """
        Find a capability the given role may be evaluated against.

        A platform capability requested for a tenant role is reported as
        missing, so tenant callers cannot tell it exists.
        """
        capability = self.lookup(key)
        if capability is None or not scope_allows_role(capability.scope, role):
            return None
        return capability

    def list(self, scope=None, group=None):
        """List capabilities, optionally filtered by scope and group."""
        return self.store.list_capabilities(scope=scope, group=group)

    def for_role(self, role):
        """All capabilities a role may be evaluated against."""
        return [
            capability for capability in self.list()
            if scope_allows_role(capability.scope, role)
        ]

    def grouped(self, scope=None, group=None, role=None):
        """
        Capabilities grouped by display group.

        When a role is given only capabilities it may be evaluated
        against are included.

        Returns:
            List of {'group': str, 'capabilities': [Capability]} in catalog order
        """
        groups = {}
        for capability in self.list(scope=scope, group=group):
            if role is not None and not scope_allows_role(capability.scope, role):
                continue
            groups.setdefault(capability.group, []).append(capability)
        return [
            {'group': name, 'capabilities': capabilities}
            for name, capabilities in groups.items()
        ]
