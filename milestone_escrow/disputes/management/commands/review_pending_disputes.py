from django.core.management.base import BaseCommand

from disputes.services import DisputeService


class Command(BaseCommand):
    help = "Runs the automated review on every dispute still awaiting it."

    def handle(self, *args, **options):
        outcomes = DisputeService().review_pending_disputes()
        if not outcomes:
            self.stdout.write("No disputes awaiting review.")
            return

        for dispute_id, outcome in outcomes:
            self.stdout.write(f"Dispute {dispute_id}: {outcome}")
        self.stdout.write(self.style.SUCCESS(f"Reviewed {len(outcomes)} dispute(s)."))
