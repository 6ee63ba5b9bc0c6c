"""
RBAC (Role-Based Access Control) application.

Provides multi-tenant capability resolution with:
- Capability catalog of resource:action and feature keys
- Per-tenant and platform role matrices
- Per-user grant/deny overrides
- Explainable decisions with an ordered trace
- Audited administrative mutations
"""
