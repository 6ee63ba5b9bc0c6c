"""
Management command to seed the default role matrix.

Applies constants.DEFAULT_ROLE_MATRIX to one or all tenants, or
constants.DEFAULT_PLATFORM_MATRIX to the platform matrix. Existing
entries are left alone unless --reset is given, so the command is
idempotent and does not undo administrator changes.
"""
from django.core.management.base import BaseCommand, CommandError
from apps.rbac.constants import (
    DEFAULT_PLATFORM_MATRIX,
    DEFAULT_ROLE_MATRIX,
    EFFECT_ALLOW,
    EFFECT_DENY,
    SCOPE_TENANT,
    SUPER_ADMIN,
)
from apps.rbac.models import Capability
from apps.rbac.store import PolicyStore
from apps.tenants.models import Tenant


class Command(BaseCommand):
    help = 'Seed the default role matrix for tenant(s) or the platform (idempotent)'

    def add_arguments(self, parser):
        """Add command arguments."""
        parser.add_argument(
            '--tenant',
            type=str,
            help='Tenant ID or slug to seed the matrix for',
        )
        parser.add_argument(
            '--all',
            action='store_true',
            help='Seed the matrix for all tenants',
        )
        parser.add_argument(
            '--platform',
            action='store_true',
            help='Seed the platform matrix for super_admin',
        )
        parser.add_argument(
            '--reset',
            action='store_true',
            help='Overwrite existing entries with the defaults',
        )

    def handle(self, *args, **options):
        """Seed the matrix for the selected target."""

        tenant_id = options.get('tenant')
        seed_all = options.get('all')
        seed_platform = options.get('platform')
        self.reset = options.get('reset')
        self.store = PolicyStore()

        selected = sum(1 for flag in (tenant_id, seed_all, seed_platform) if flag)
        if selected == 0:
            raise CommandError(
                'Please specify --tenant=<id|slug>, --all or --platform'
            )
        if selected > 1:
            raise CommandError(
                'Cannot combine --tenant, --all and --platform'
            )

        if not Capability.objects.exists():
            raise CommandError(
                'The capability catalog is empty. Run seed_capabilities first.'
            )

        if seed_platform:
            created, updated = self._seed_platform()
            self.stdout.write(
                self.style.SUCCESS(
                    f'\n✓ Seeding complete: {created} entries created, '
                    f'{updated} entries updated for the platform matrix'
                )
            )
            return

        if seed_all:
            tenants = list(Tenant.objects.all())
            self.stdout.write(f'Seeding role matrix for all {len(tenants)} tenants...\n')
        else:
            tenant = Tenant.objects.by_identifier(tenant_id)
            if not tenant:
                raise CommandError(f'Tenant not found: {tenant_id}')
            tenants = [tenant]
            self.stdout.write(f'Seeding role matrix for tenant: {tenant.name}\n')

        total_created = 0
        total_updated = 0
        for tenant in tenants:
            created, updated = self._seed_tenant(tenant)
            total_created += created
            total_updated += updated

        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Seeding complete: {total_created} entries created, '
                f'{total_updated} entries updated across {len(tenants)} tenant(s)'
            )
        )

    def _expand(self, keys, capabilities):
        if keys == 'ALL':
            return list(capabilities.values())
        missing = [key for key in keys if key not in capabilities]
        if missing:
            self.stdout.write(
                self.style.WARNING(f"    Skipping unknown capabilities: {', '.join(missing)}")
            )
        return [capabilities[key] for key in keys if key in capabilities]

    def _planned_effects(self, matrix, capabilities):
        """Map capability -> effect; explicit denies win over ALL allows."""
        planned = {}
        for capability in self._expand(matrix.get(EFFECT_ALLOW, []), capabilities):
            planned[capability] = EFFECT_ALLOW
        for capability in self._expand(matrix.get(EFFECT_DENY, []), capabilities):
            planned[capability] = EFFECT_DENY
        return planned

    def _seed_tenant(self, tenant):
        """Seed the default matrix for one tenant."""

        self.stdout.write(f'\n{tenant.name} ({tenant.slug}):')
        capabilities = {
            capability.key: capability
            for capability in Capability.objects.for_scope(SCOPE_TENANT)
        }

        created_count = 0
        updated_count = 0
        for role, matrix in DEFAULT_ROLE_MATRIX.items():
            role_created = 0
            role_updated = 0
            for capability, effect in self._planned_effects(matrix, capabilities).items():
                current = self.store.get_role_permission(tenant.id, role, capability.key)
                if current is None:
                    self.store.upsert_role_permission(tenant.id, role, capability, effect)
                    role_created += 1
                elif self.reset and current != effect:
                    self.store.upsert_role_permission(tenant.id, role, capability, effect)
                    role_updated += 1

            created_count += role_created
            updated_count += role_updated
            if role_created or role_updated:
                self.stdout.write(
                    self.style.SUCCESS(
                        f'  ✓ {role}: {role_created} created, {role_updated} updated'
                    )
                )
            else:
                self.stdout.write(self.style.HTTP_INFO(f'    Exists: {role}'))

        return created_count, updated_count

    def _seed_platform(self):
        """Seed the default platform matrix for super_admin."""

        self.stdout.write('Seeding platform matrix for super_admin...\n')
        capabilities = {
            capability.key: capability for capability in Capability.objects.all()
        }

        created_count = 0
        updated_count = 0
        for capability, effect in self._planned_effects(DEFAULT_PLATFORM_MATRIX, capabilities).items():
            current = self.store.get_platform_role_permission(SUPER_ADMIN, capability.key)
            if current is None:
                self.store.upsert_platform_role_permission(capability, effect)
                created_count += 1
            elif self.reset and current != effect:
                self.store.upsert_platform_role_permission(capability, effect)
                updated_count += 1

        return created_count, updated_count
