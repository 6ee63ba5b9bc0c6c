"""
Property-based tests for resolution precedence and trace shape.

These run the engine against an in-memory store so hypothesis can explore
every combination of policy facts without touching the database.
"""
import uuid
from types import SimpleNamespace

from hypothesis import given, strategies as st

from apps.core.exceptions import StoreUnavailable
from apps.rbac.constants import ROLE_DEFINITIONS, SCOPE_PLATFORM, SCOPE_TENANT, SUPER_ADMIN
from apps.rbac.engine import Principal, ResolutionEngine
from apps.rbac.trace import MatchedSource, Outcome

TENANT_CAPABILITY = 'tickets:approve'
PLATFORM_CAPABILITY = 'manage_all_companies'

SOURCE_ORDER = [
    MatchedSource.USER_OVERRIDE,
    MatchedSource.ROLE_PERMISSION,
    MatchedSource.PLATFORM_ROLE_PERMISSION,
    MatchedSource.DEFAULT_DENY,
]


class InMemoryStore:
    """Policy store stand-in keyed exactly like the database store."""

    def __init__(self, overrides=None, entries=None, platform_entries=None):
        self.capabilities = {
            TENANT_CAPABILITY: SimpleNamespace(
                key=TENANT_CAPABILITY, scope=SCOPE_TENANT, group='ticket-management'
            ),
            PLATFORM_CAPABILITY: SimpleNamespace(
                key=PLATFORM_CAPABILITY, scope=SCOPE_PLATFORM, group='system-admin'
            ),
        }
        self.overrides = overrides or {}
        self.entries = entries or {}
        self.platform_entries = platform_entries or {}

    def get_capability(self, key):
        return self.capabilities.get(key)

    def list_capabilities(self, scope=None, group=None):
        return [
            capability for capability in self.capabilities.values()
            if (scope is None or capability.scope == scope)
            and (group is None or capability.group == group)
        ]

    def get_user_override(self, tenant_id, user_id, key):
        return self.overrides.get((tenant_id, user_id, key))

    def get_role_permission(self, tenant_id, role, key):
        return self.entries.get((tenant_id, role, key))

    def get_platform_role_permission(self, role, key):
        return self.platform_entries.get((role, key))


class UnavailableStore(InMemoryStore):
    """Store whose policy reads all fail."""

    def get_user_override(self, tenant_id, user_id, key):
        raise StoreUnavailable('The policy store is unavailable')

    get_role_permission = get_user_override


effects = st.sampled_from([None, 'allow', 'deny'])
override_values = st.sampled_from([None, True, False])


@st.composite
def scenarios(draw):
    role = draw(st.sampled_from(sorted(ROLE_DEFINITIONS)))
    # Tenant roles always carry a tenant; super_admin may or may not
    has_tenant = True if role != SUPER_ADMIN else draw(st.booleans())
    return {
        'role': role,
        'tenant_id': uuid.uuid4() if has_tenant else None,
        'user_id': uuid.uuid4(),
        'key': draw(st.sampled_from([TENANT_CAPABILITY, PLATFORM_CAPABILITY])),
        'override': draw(override_values),
        'effect': draw(effects),
        'platform_effect': draw(effects),
    }


def build_engine(scenario):
    key = scenario['key']
    tenant_id = scenario['tenant_id']
    overrides, entries, platform_entries = {}, {}, {}

    if scenario['override'] is not None and tenant_id:
        overrides[(tenant_id, scenario['user_id'], key)] = scenario['override']
    if scenario['effect'] is not None and tenant_id:
        entries[(tenant_id, scenario['role'], key)] = scenario['effect']
    if scenario['platform_effect'] is not None:
        platform_entries[(SUPER_ADMIN, key)] = scenario['platform_effect']

    return ResolutionEngine(store=InMemoryStore(overrides, entries, platform_entries))


def expected_decision(scenario):
    """First source that says something wins; otherwise default deny."""
    candidates = []
    if scenario['tenant_id']:
        override = scenario['override']
        candidates.append(
            (MatchedSource.USER_OVERRIDE, None if override is None else override)
        )
        effect = scenario['effect']
        candidates.append(
            (MatchedSource.ROLE_PERMISSION, None if effect is None else effect == 'allow')
        )
    if scenario['role'] == SUPER_ADMIN:
        effect = scenario['platform_effect']
        candidates.append(
            (MatchedSource.PLATFORM_ROLE_PERMISSION, None if effect is None else effect == 'allow')
        )
    for source, allowed in candidates:
        if allowed is not None:
            return allowed, source
    return False, MatchedSource.DEFAULT_DENY


def principal_for(scenario):
    return Principal(
        user_id=scenario['user_id'],
        tenant_id=scenario['tenant_id'],
        role=scenario['role'],
    )


def hidden_from_role(scenario):
    return scenario['key'] == PLATFORM_CAPABILITY and scenario['role'] != SUPER_ADMIN


class TestResolutionProperties:
    """Precedence and trace invariants over arbitrary policy facts."""

    @given(scenarios())
    def test_first_deciding_source_wins(self, scenario):
        """The decision matches the first source with an opinion."""
        decision, _ = build_engine(scenario).resolve(principal_for(scenario), scenario['key'])

        if hidden_from_role(scenario):
            assert not decision.allowed
            assert decision.matched_source is MatchedSource.DEFAULT_DENY
        else:
            allowed, source = expected_decision(scenario)
            assert decision.allowed == allowed
            assert decision.matched_source is source

    @given(scenarios())
    def test_trace_has_exactly_one_terminal_step(self, scenario):
        """Every trace ends in exactly one allow/deny step; the rest are skips."""
        decision, trace = build_engine(scenario).resolve(principal_for(scenario), scenario['key'])

        terminal = [step for step in trace if step.outcome is not Outcome.SKIP]
        assert len(terminal) == 1
        assert (terminal[0].outcome is Outcome.ALLOW) == decision.allowed

    @given(scenarios())
    def test_trace_lists_every_source_in_order(self, scenario):
        """All four sources appear in precedence order, and the winner is the terminal step."""
        decision, trace = build_engine(scenario).resolve(principal_for(scenario), scenario['key'])

        if hidden_from_role(scenario):
            assert [step.step_name for step in trace] == ['catalog_lookup']
            assert trace[0].reason == 'unknown capability'
            return

        assert [step.step_name for step in trace] == [source.value for source in SOURCE_ORDER]
        winner = SOURCE_ORDER.index(decision.matched_source)
        assert trace[winner].is_terminal
        for step in trace[winner + 1:]:
            assert step.outcome is Outcome.SKIP
            assert step.reason == f"decided by {decision.matched_source.value}"

    @given(scenarios())
    def test_resolution_is_deterministic(self, scenario):
        """Same facts, same decision and same trace."""
        engine = build_engine(scenario)
        principal = principal_for(scenario)

        assert engine.resolve(principal, scenario['key']) == engine.resolve(principal, scenario['key'])

    @given(scenarios())
    def test_unset_role_entry_is_not_a_deny(self, scenario):
        """Removing an unset entry never changes anything; only explicit deny blocks."""
        scenario = dict(scenario, key=TENANT_CAPABILITY, override=None, effect=None)
        decision, trace = build_engine(scenario).resolve(principal_for(scenario), TENANT_CAPABILITY)

        role_steps = [step for step in trace if step.step_name == 'role_permission']
        assert role_steps[0].outcome is Outcome.SKIP
        if scenario['role'] != SUPER_ADMIN:
            assert decision.matched_source is MatchedSource.DEFAULT_DENY

    @given(scenarios())
    def test_check_fails_closed_when_store_is_down(self, scenario):
        """check() denies on an outage it cannot read through."""
        scenario = dict(scenario, key=TENANT_CAPABILITY)
        if not scenario['tenant_id']:
            return
        engine = ResolutionEngine(store=UnavailableStore())

        assert engine.check(principal_for(scenario), TENANT_CAPABILITY) is False
