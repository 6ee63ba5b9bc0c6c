"""
Management command to seed the capability catalog.

Creates all Capability records defined in constants.CAPABILITY_GROUPS.
This command is idempotent and safe to re-run.
"""
from django.core.management.base import BaseCommand
from apps.rbac.constants import CAPABILITY_GROUPS
from apps.rbac.models import Capability


class Command(BaseCommand):
    help = 'Seed the capability catalog (idempotent)'

    def handle(self, *args, **options):
        """Create or update all catalog capabilities."""

        created_count = 0
        updated_count = 0
        total = 0

        self.stdout.write('Seeding capability catalog...\n')

        for group in CAPABILITY_GROUPS:
            for key, label in group['capabilities']:
                total += 1
                capability, created = Capability.objects.get_or_create_capability(
                    key=key,
                    label=label,
                    scope=group['scope'],
                    group=group['key'],
                )

                if created:
                    created_count += 1
                    self.stdout.write(
                        self.style.SUCCESS(f'✓ Created: {capability.key}')
                    )
                    continue

                # Update fields if they changed
                updated = False
                for field, value in (('label', label), ('scope', group['scope']), ('group', group['key'])):
                    if getattr(capability, field) != value:
                        setattr(capability, field, value)
                        updated = True

                if updated:
                    capability.save()
                    updated_count += 1
                    self.stdout.write(
                        self.style.WARNING(f'↻ Updated: {capability.key}')
                    )
                else:
                    self.stdout.write(
                        self.style.HTTP_INFO(f'  Exists: {capability.key}')
                    )

        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Seeding complete: {created_count} created, {updated_count} updated, '
                f'{total - created_count - updated_count} unchanged'
            )
        )

        # Display summary by group
        self.stdout.write('\n' + '=' * 70)
        self.stdout.write('Capabilities Summary by Group:')
        self.stdout.write('=' * 70)

        for group in CAPABILITY_GROUPS:
            capabilities = Capability.objects.by_group(group['key']).order_by('key')
            self.stdout.write(f"\n{group['name'].upper()} ({group['scope']}):")
            for capability in capabilities:
                self.stdout.write(f'  • {capability.key:<35} {capability.label}')

        self.stdout.write(f'\nTotal capabilities: {Capability.objects.count()}')
