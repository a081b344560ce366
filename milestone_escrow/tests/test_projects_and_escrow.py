from django.db import IntegrityError, transaction
from django.test import override_settings
from rest_framework.exceptions import ValidationError

from escrow.models import Escrow
from escrow.services import EscrowLedger
from milestone_escrow.exceptions import Forbidden, InvalidState
from payments.models import Transaction
from projects.models import ActivityLogEntry

from .helpers import EscrowTestCase, make_user


class ProjectSetupTests(EscrowTestCase):

    def test_create_project_opens_empty_escrow(self):
        project = self.projects.create_project(client=self.client_user, title='Mobile app', budget=50000)

        self.assertEqual(project.status, 'pending')
        self.assertIsNone(project.freelancer)
        escrow = self.escrow_for(project)
        self.assertEqual((escrow.total_held, escrow.total_released, escrow.remaining), (0, 0, 0))
        self.assertEqual(escrow.status, 'pending_funding')

    def test_freelancer_cannot_create_project(self):
        with self.assertRaises(Forbidden):
            self.projects.create_project(client=self.freelancer, title='Mine', budget=1000)

    def test_unsupported_currency_rejected(self):
        with self.assertRaises(ValidationError):
            self.projects.create_project(client=self.client_user, title='Crypto', budget=1000, currency='XYZ')

    @override_settings(PAYMENT_PROVIDER='chapa')
    def test_currency_the_provider_cannot_pay_out_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.projects.create_project(client=self.client_user, title='Euro site', budget=1000, currency='EUR')
        self.assertIn('chapa', str(ctx.exception.detail['currency']))
        project = self.projects.create_project(client=self.client_user, title='Addis site', budget=1000, currency='ETB')
        self.assertEqual(project.currency, 'ETB')

    def test_assign_freelancer_activates_project(self):
        project = self.projects.create_project(client=self.client_user, title='Mobile app', budget=50000)
        project = self.projects.assign_freelancer(client=self.client_user, project_id=project.id, freelancer=self.freelancer)

        self.assertEqual(project.status, 'active')
        self.assertEqual(project.freelancer, self.freelancer)

    def test_cannot_assign_a_second_freelancer(self):
        project = self.make_project()
        with self.assertRaises(InvalidState):
            self.projects.assign_freelancer(client=self.client_user, project_id=project.id, freelancer=self.stranger)

    def test_client_account_cannot_be_assigned(self):
        project = self.projects.create_project(client=self.client_user, title='Mobile app', budget=50000)
        other_client = make_user('other-client@example.com', 'client')
        with self.assertRaises(ValidationError):
            self.projects.assign_freelancer(client=self.client_user, project_id=project.id, freelancer=other_client)


class EscrowFundingTests(EscrowTestCase):

    def test_funding_records_completed_deposit(self):
        project = self.make_project(budget=10000, fund=0)
        escrow = self.escrow_service.fund_project(
            user=self.client_user, project_id=project.id, amount=6000, provider_reference='pi_123',
        )

        self.assertEqual((escrow.total_held, escrow.remaining), (6000, 6000))
        deposit = Transaction.objects.get(project=project, type=Transaction.Type.DEPOSIT)
        self.assertEqual(deposit.status, Transaction.Status.COMPLETED)
        self.assertEqual(deposit.from_user, self.client_user)
        self.assertEqual(deposit.provider_transaction_id, 'pi_123')
        self.assertTrue(ActivityLogEntry.objects.filter(project=project, action='ESCROW_FUNDED').exists())

    def test_funding_cannot_exceed_budget(self):
        project = self.make_project(budget=10000, fund=8000)
        with self.assertRaises(InvalidState):
            self.escrow_service.fund_project(user=self.client_user, project_id=project.id, amount=2001)
        self.assertEqual(self.escrow_for(project).total_held, 8000)

    def test_only_client_funds(self):
        project = self.make_project(fund=0)
        with self.assertRaises(Forbidden):
            self.escrow_service.fund_project(user=self.freelancer, project_id=project.id, amount=100)

    def test_ledger_refuses_overdraw(self):
        project = self.make_project(budget=1000)
        escrow = self.escrow_for(project)
        with self.assertRaises(InvalidState):
            EscrowLedger().release(escrow, 1001)
        escrow.refresh_from_db()
        self.assertEqual(escrow.remaining, 1000)

    def test_database_rejects_unbalanced_escrow(self):
        project = self.make_project(budget=1000)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Escrow.objects.filter(project=project).update(remaining=500)

    def test_escrow_status_follows_balances(self):
        project = self.make_project(budget=10000)
        milestone = self.make_milestone(project, amount=4000)
        self.submit(project, milestone)
        self.assertEqual(self.escrow_for(project).status, 'funded')

        self.milestones.approve_milestone(actor=self.client_user, project_id=project.id, milestone_id=milestone.id)
        self.assertEqual(self.escrow_for(project).status, 'partially_released')


class ActivityLogTests(EscrowTestCase):

    def test_entries_are_append_only(self):
        project = self.make_project()
        entry = ActivityLogEntry.objects.filter(project=project).first()

        entry.action = 'TAMPERED'
        with self.assertRaises(ValueError):
            entry.save()
        with self.assertRaises(ValueError):
            entry.delete()

    def test_every_transition_is_logged_in_order(self):
        project = self.make_project(budget=5000)
        milestone = self.make_milestone(project, amount=5000)
        self.submit(project, milestone)
        self.milestones.approve_milestone(actor=self.client_user, project_id=project.id, milestone_id=milestone.id)

        actions = list(ActivityLogEntry.objects.filter(project=project).values_list('action', flat=True))
        self.assertEqual(actions, [
            'PROJECT_CREATED', 'FREELANCER_ASSIGNED', 'ESCROW_FUNDED', 'MILESTONE_CREATED',
            'MILESTONE_STARTED', 'MILESTONE_SUBMITTED', 'PAYMENT_RELEASED', 'MILESTONE_APPROVED',
            'PROJECT_COMPLETED',
        ])
