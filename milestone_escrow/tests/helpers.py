"""
Shared fixtures for the service and API tests: in-memory collaborators and a
base TestCase that builds a funded project with an assigned freelancer.
"""
from datetime import timedelta

from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from django.test import TestCase
from django.utils import timezone

from disputes.review import BaseDisputeReviewer, ReviewError, ReviewResult
from disputes.services import DisputeService
from escrow.models import Escrow
from escrow.services import EscrowService
from fraud.services import RiskGate
from payments.models import PayoutMethod
from payments.providers.base import BasePaymentProvider, ProviderError, TransferReceipt
from payments.services import PaymentReleaseEngine
from projects.models import Milestone
from projects.moderation import WordListModerator
from projects.notifications import BaseNotifier
from projects.services import MilestoneService, ProjectService

User = get_user_model()


class FakeProvider(BasePaymentProvider):
    """Records transfers; fails those sent to an account listed in ``failing_accounts``."""
    name = 'stripe'

    def __init__(self, failing_accounts=(), short_by=0):
        super().__init__()
        self.failing_accounts = set(failing_accounts)
        self.short_by = short_by
        self.transfers = []
        self.currencies = []

    def transfer(self, destination_account_ref, amount_minor_units, **kwargs):
        if destination_account_ref in self.failing_accounts:
            raise ProviderError(f"Account {destination_account_ref} rejected the transfer")
        self.transfers.append((destination_account_ref, amount_minor_units))
        self.currencies.append(kwargs.get('currency'))
        return TransferReceipt(
            provider_transaction_id=f"tr_{len(self.transfers)}",
            amount_transferred=amount_minor_units - self.short_by,
        )


class FakeReviewer(BaseDisputeReviewer):
    def __init__(self, confidence=90, to_freelancer=None, error=None):
        self.confidence = confidence
        self.to_freelancer = to_freelancer
        self.error = error
        self.reviewed = []

    def analyze(self, dispute):
        self.reviewed.append(dispute.id)
        if self.error:
            raise ReviewError(self.error)
        amount = dispute.amount_in_dispute
        to_freelancer = amount if self.to_freelancer is None else self.to_freelancer
        return ReviewResult(
            confidence_score=self.confidence,
            key_issues=['test issue'],
            recommended_resolution={
                'amount_to_freelancer': to_freelancer,
                'amount_to_client': amount - to_freelancer,
            },
            reasoning='test reasoning',
        )


class RecordingNotifier(BaseNotifier):
    def __init__(self):
        self.events = []

    def notify(self, project_id, event_name, payload):
        self.events.append((project_id, event_name, payload))

    def names(self):
        return [name for _, name, _ in self.events]


def make_user(email, user_type='client', **extra):
    extra.setdefault('date_joined', timezone.now() - timedelta(days=90))
    return User.objects.create_user(
        email=email,
        password='testpass123',
        user_type=user_type,
        first_name=email.split('@')[0],
        last_name='Tester',
        **extra,
    )


class EscrowTestCase(TestCase):
    """
    Builds a client, an assigned freelancer (both with Stripe payout accounts)
    and the services wired to in-memory collaborators.
    """
    budget = 20000

    def setUp(self):
        self.client_user = make_user('client@example.com', 'client')
        self.freelancer = make_user('freelancer@example.com', 'freelancer')
        self.stranger = make_user('stranger@example.com', 'freelancer')
        self.staff = make_user('staff@example.com', 'client', is_staff=True)

        self.freelancer_account = PayoutMethod.objects.create(
            user=self.freelancer, provider='stripe', account_reference='acct_freelancer', is_default=True,
        )
        self.client_account = PayoutMethod.objects.create(
            user=self.client_user, provider='stripe', account_reference='acct_client', is_default=True,
        )

        self.provider = FakeProvider()
        self.engine = PaymentReleaseEngine(provider=self.provider)
        self.notifier = RecordingNotifier()
        self.moderator = WordListModerator(flagged_terms=['scam', 'fraudster'], max_length=2000)
        self.reviewer = FakeReviewer()
        self.risk_gate = RiskGate()

        self.projects = ProjectService(moderator=self.moderator, notifier=self.notifier)
        self.escrow_service = EscrowService()
        self.milestones = MilestoneService(
            release_engine=self.engine, moderator=self.moderator,
            notifier=self.notifier, risk_gate=self.risk_gate,
        )
        self.disputes = DisputeService(
            release_engine=self.engine, reviewer=self.reviewer, moderator=self.moderator,
            notifier=self.notifier, risk_gate=self.risk_gate,
        )

    def make_project(self, budget=None, fund=None, fee_rate=None, auto_approve_days=None, currency='USD'):
        budget = budget or self.budget
        project = self.projects.create_project(
            client=self.client_user, title='Company website', budget=budget,
            description='Landing page and blog', fee_rate=fee_rate, auto_approve_days=auto_approve_days,
            currency=currency,
        )
        project = self.projects.assign_freelancer(
            client=self.client_user, project_id=project.id, freelancer=self.freelancer,
        )
        amount = budget if fund is None else fund
        if amount:
            self.escrow_service.fund_project(user=self.client_user, project_id=project.id, amount=amount)
        return project

    def make_milestone(self, project, amount=5000, title='Homepage design'):
        return self.milestones.create_milestone(
            actor=self.client_user, project_id=project.id, title=title, amount=amount,
            acceptance_criteria='Responsive layout approved by the client',
        )

    def submit(self, project, milestone, deliverables=('https://example.com/design.fig',)):
        self.milestones.start_milestone(actor=self.freelancer, project_id=project.id, milestone_id=milestone.id)
        return self.milestones.submit_milestone(
            actor=self.freelancer, project_id=project.id, milestone_id=milestone.id,
            deliverables=list(deliverables), notes='First version',
        )

    def backdate_submission(self, milestone, **delta):
        submitted_at = timezone.now() - timedelta(**delta)
        Milestone.objects.filter(pk=milestone.pk).update(submitted_at=submitted_at)
        milestone.refresh_from_db()
        return milestone

    def escrow_for(self, project):
        return Escrow.objects.get(project=project)

    def add_to_group(self, user, group_name):
        group, _ = Group.objects.get_or_create(name=group_name)
        user.groups.add(group)
        return user
