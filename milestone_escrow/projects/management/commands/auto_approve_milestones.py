from django.core.management.base import BaseCommand
from django.utils import timezone

from projects.services import MilestoneService


class Command(BaseCommand):
    help = "Approves submitted milestones whose review period has run out. Meant to be run from cron."

    def add_arguments(self, parser):
        parser.add_argument('--skip-warnings', action='store_true',
                            help="Don't warn parties about milestones that will auto-approve within 48 hours")

    def handle(self, *args, **options):
        now = timezone.now()
        service = MilestoneService()

        if not options['skip_warnings']:
            warned = service.send_auto_approval_warnings(now=now)
            if warned:
                self.stdout.write(f"Warned about {len(warned)} milestone(s) due for auto-approval.")

        approved, failures = service.auto_approve_due_milestones(now=now)
        for milestone_id, error in failures:
            self.stdout.write(self.style.ERROR(f"Milestone {milestone_id} was not approved: {error}"))
        self.stdout.write(self.style.SUCCESS(f"Auto-approved {len(approved)} milestone(s)."))
