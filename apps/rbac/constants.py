"""
Role definitions and the canonical capability set.

Roles are fixed identifiers tagged with a scope. Capabilities are
provisioned into the catalog table from CAPABILITY_GROUPS by the
seed_capabilities command; the engine only ever reads the table.
"""

SCOPE_TENANT = 'tenant'
SCOPE_PLATFORM = 'platform'

SCOPE_CHOICES = [
    (SCOPE_TENANT, 'Tenant'),
    (SCOPE_PLATFORM, 'Platform'),
]

SUPER_ADMIN = 'super_admin'

ROLE_DEFINITIONS = {
    'requester': {
        'label': 'Requester',
        'description': 'Create and track requests for their own needs.',
        'scope': SCOPE_TENANT,
    },
    'marketing': {
        'label': 'Marketing',
        'description': 'Submit and collaborate on marketing requests.',
        'scope': SCOPE_TENANT,
    },
    'manager': {
        'label': 'Manager',
        'description': 'Approve and oversee requests across their team.',
        'scope': SCOPE_TENANT,
    },
    'marketing_manager': {
        'label': 'Marketing Manager',
        'description': 'Coordinate company-wide marketing initiatives.',
        'scope': SCOPE_TENANT,
    },
    'tenant_admin': {
        'label': 'Tenant Admin',
        'description': 'Manage users, permissions, and settings for their company.',
        'scope': SCOPE_TENANT,
    },
    SUPER_ADMIN: {
        'label': 'Super Admin',
        'description': 'Platform-wide administrator with access to every company.',
        'scope': SCOPE_PLATFORM,
    },
}

ROLE_CHOICES = [(key, role['label']) for key, role in ROLE_DEFINITIONS.items()]

TENANT_ROLES = frozenset(
    key for key, role in ROLE_DEFINITIONS.items() if role['scope'] == SCOPE_TENANT
)
PLATFORM_ROLES = frozenset(
    key for key, role in ROLE_DEFINITIONS.items() if role['scope'] == SCOPE_PLATFORM
)

DEFAULT_TENANT_ROLE = 'requester'

EFFECT_ALLOW = 'allow'
EFFECT_DENY = 'deny'

EFFECT_CHOICES = [
    (EFFECT_ALLOW, 'Allow'),
    (EFFECT_DENY, 'Deny'),
]


def role_scope(role):
    """Return the scope of a role, or None for an unknown role."""
    definition = ROLE_DEFINITIONS.get(role)
    return definition['scope'] if definition else None


def format_role_label(role):
    """Human-readable label for a role key."""
    definition = ROLE_DEFINITIONS.get(role)
    if definition:
        return definition['label']
    return ' '.join(part.capitalize() for part in role.split('_'))


# Canonical capabilities, grouped for administrative display.
# Keys are either resource:action pairs or flat feature keys.
CAPABILITY_GROUPS = [
    {
        'key': 'basic-access',
        'name': 'Basic Access',
        'scope': SCOPE_TENANT,
        'capabilities': [
            ('view_dashboard', 'View Dashboard'),
            ('view_own_requests', 'View Own Requests'),
            ('edit_own_drafts', 'Edit Own Drafts'),
        ],
    },
    {
        'key': 'create-requests',
        'name': 'Create Requests',
        'scope': SCOPE_TENANT,
        'capabilities': [
            ('create_hardware_request', 'Create Hardware Request'),
            ('create_toner_request', 'Create Toner Request'),
            ('create_marketing_request', 'Create Marketing Request'),
            ('create_user_account_request', 'Create User Account Request'),
            ('create_user_offboarding_request', 'Create User Offboarding Request'),
            ('create_ticket_request', 'Create Ticket Request'),
            ('create_facility_services_request', 'Create Facility Services Request'),
            ('create_hr_request', 'Create HR Request'),
            ('create_department_request', 'Create Department Request'),
        ],
    },
    {
        'key': 'approvals',
        'name': 'Approvals',
        'scope': SCOPE_TENANT,
        'capabilities': [
            ('approve_hardware_requests', 'Approve Hardware Requests'),
            ('approve_user_account_requests', 'Approve User Account Requests'),
            ('approve_marketing_requests', 'Approve Marketing Requests'),
        ],
    },
    {
        'key': 'management',
        'name': 'Management',
        'scope': SCOPE_TENANT,
        'capabilities': [
            ('manage_company_users', 'Manage Company Users'),
            ('view_all_company_requests', 'View All Company Requests'),
            ('view_request_metrics', 'View Request Metrics'),
        ],
    },
    {
        'key': 'configuration',
        'name': 'Configuration',
        'scope': SCOPE_TENANT,
        'capabilities': [
            ('configure_company_settings', 'Configure Company Settings'),
            ('manage_company_features', 'Manage Company Features'),
            ('configure_sharepoint', 'Configure SharePoint'),
        ],
    },
    {
        'key': 'documentation',
        'name': 'Documentation',
        'scope': SCOPE_TENANT,
        'capabilities': [
            ('view_sharepoint_documents', 'View SharePoint Documents'),
            ('view_news', 'View News'),
            ('create_news', 'Create News'),
            ('manage_knowledge_base', 'Manage Knowledge Base'),
        ],
    },
    {
        'key': 'ticket-management',
        'name': 'Ticket Management',
        'scope': SCOPE_TENANT,
        'capabilities': [
            ('tickets:view', 'View Tickets'),
            ('tickets:create', 'Create Tickets'),
            ('tickets:assign', 'Assign Tickets'),
            ('tickets:approve', 'Approve Tickets'),
            ('tickets:resolve', 'Resolve Tickets'),
            ('tickets:delete', 'Delete Tickets'),
        ],
    },
    {
        'key': 'requests',
        'name': 'Requests',
        'scope': SCOPE_TENANT,
        'capabilities': [
            ('requests:view', 'View Requests'),
            ('requests:create', 'Create Requests'),
            ('requests:approve', 'Approve Requests'),
            ('requests:delete', 'Delete Requests'),
        ],
    },
    {
        'key': 'audit',
        'name': 'Audit',
        'scope': SCOPE_TENANT,
        'capabilities': [
            ('view_audit_logs', 'View Audit Logs'),
        ],
    },
    {
        'key': 'system-admin',
        'name': 'System Administration',
        'scope': SCOPE_PLATFORM,
        'capabilities': [
            ('manage_all_companies', 'Manage All Companies'),
            ('manage_system_users', 'Manage System Users'),
            ('manage_file_storage', 'Manage File Storage'),
            ('manage_role_permissions', 'Manage Role Permissions'),
            ('view_system_metrics', 'View System Metrics'),
        ],
    },
]

# Default tenant role matrix applied by seed_role_matrix.
# Pairs absent from this map stay unset.
DEFAULT_ROLE_MATRIX = {
    'requester': {
        EFFECT_ALLOW: [
            'view_dashboard', 'view_own_requests', 'edit_own_drafts',
            'create_hardware_request', 'create_toner_request',
            'create_ticket_request', 'create_hr_request',
            'tickets:view', 'tickets:create', 'requests:view', 'requests:create',
            'view_news', 'view_sharepoint_documents',
        ],
    },
    'marketing': {
        EFFECT_ALLOW: [
            'view_dashboard', 'view_own_requests', 'edit_own_drafts',
            'create_marketing_request', 'requests:view', 'requests:create',
            'view_news', 'create_news',
        ],
    },
    'manager': {
        EFFECT_ALLOW: [
            'view_dashboard', 'view_own_requests', 'edit_own_drafts',
            'approve_hardware_requests', 'approve_user_account_requests',
            'view_all_company_requests', 'view_request_metrics',
            'tickets:view', 'tickets:create', 'tickets:assign', 'tickets:approve',
            'requests:view', 'requests:create', 'requests:approve',
        ],
    },
    'marketing_manager': {
        EFFECT_ALLOW: [
            'view_dashboard', 'view_own_requests', 'edit_own_drafts',
            'create_marketing_request', 'approve_marketing_requests',
            'view_request_metrics', 'view_news', 'create_news',
            'requests:view', 'requests:approve',
        ],
    },
    'tenant_admin': {
        EFFECT_ALLOW: 'ALL',
        EFFECT_DENY: ['tickets:delete', 'requests:delete'],
    },
}

# Default platform matrix for super_admin
DEFAULT_PLATFORM_MATRIX = {
    EFFECT_ALLOW: 'ALL',
}

# Per-company modules that can be toggled off. Missing flag means enabled.
FEATURE_KEYS = [
    'hardware_requests',
    'toner_requests',
    'user_accounts',
    'marketing_requests',
    'department_requests',
    'monthly_newsletter',
    'print_ordering',
    'fax_campaigns',
    'knowledge_base',
    'approvals',
]
