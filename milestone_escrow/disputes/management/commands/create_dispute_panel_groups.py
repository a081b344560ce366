from django.conf import settings
from django.core.management.base import BaseCommand
from django.contrib.auth.models import Group, Permission
from django.contrib.contenttypes.models import ContentType
from django.contrib.auth import get_user_model
from disputes.models import Dispute, DisputeMessage

User = get_user_model()


class Command(BaseCommand):
    help = "Creates the 'Mediators' and 'Arbitrators' groups with dispute permissions. Optionally assign users."

    def add_arguments(self, parser):
        parser.add_argument('--mediator', action='append', default=[], metavar='EMAIL',
                            help='Email of a user to add to the Mediators group (repeatable)')
        parser.add_argument('--arbitrator', action='append', default=[], metavar='EMAIL',
                            help='Email of a user to add to the Arbitrators group (repeatable)')

    def handle(self, *args, **options):
        permissions_needed = ["view_dispute", "change_dispute", "view_disputemessage", "add_disputemessage"]

        ct_dispute = ContentType.objects.get_for_model(Dispute)
        ct_disputemessage = ContentType.objects.get_for_model(DisputeMessage)
        all_perms = list(Permission.objects.filter(
            content_type__in=[ct_dispute, ct_disputemessage],
            codename__in=permissions_needed,
        ))

        panels = (
            (settings.MEDIATORS_GROUP, options['mediator']),
            (settings.ARBITRATORS_GROUP, options['arbitrator']),
        )
        for group_name, emails in panels:
            group, created = Group.objects.get_or_create(name=group_name)
            if created:
                self.stdout.write(self.style.SUCCESS(f"Created group: {group_name}"))
            else:
                self.stdout.write(f"Group '{group_name}' already exists.")
            group.permissions.add(*all_perms)

            for email in emails:
                try:
                    user = User.objects.get(email=email)
                except User.DoesNotExist:
                    self.stdout.write(self.style.ERROR(f"User with email {email} does not exist."))
                    continue
                user.groups.add(group)
                self.stdout.write(self.style.SUCCESS(f"User {email} added to {group_name} group."))

        self.stdout.write(self.style.SUCCESS("Assigned Dispute and DisputeMessage permissions to the dispute panels."))
