"""
HTTP surface: JWT-authenticated requests against the project, milestone,
dispute, payment and fraud endpoints, including the tagged error bodies.
"""
from unittest import mock

from django.conf import settings
from django.test import override_settings
from rest_framework import status
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from disputes.models import Dispute
from payments.models import PayoutMethod, Transaction
from projects.models import Milestone

from .helpers import EscrowTestCase, FakeProvider, make_user


class APITestCase(EscrowTestCase):

    def setUp(self):
        super().setUp()
        self.api = APIClient()

    def login(self, user):
        token = RefreshToken.for_user(user).access_token
        self.api.credentials(HTTP_AUTHORIZATION=f'Bearer {token}')

    def use_provider(self, provider):
        patcher = mock.patch('payments.services.get_payment_provider', return_value=provider)
        patcher.start()
        self.addCleanup(patcher.stop)
        return provider


class ProjectEndpointTests(APITestCase):

    def test_anonymous_request_rejected(self):
        response = self.api.get('/projects/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_client_creates_project_with_empty_escrow(self):
        self.login(self.client_user)
        response = self.api.post('/projects/', {'title': 'Mobile app', 'budget': 20000}, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        project = response.data['project']
        self.assertEqual(project['status'], 'pending')
        self.assertEqual(project['escrow']['total_held'], 0)
        self.assertEqual(project['escrow']['remaining'], 0)

    def test_freelancer_cannot_create_project(self):
        self.login(self.freelancer)
        response = self.api.post('/projects/', {'title': 'Mobile app', 'budget': 20000}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['error'], 'forbidden')

    def test_flagged_title_rejected_with_reasons(self):
        self.login(self.client_user)
        response = self.api.post('/projects/', {'title': 'Spam campaign', 'budget': 20000}, format='json')

        self.assertEqual(response.status_code, status.HTTP_422_UNPROCESSABLE_ENTITY)
        self.assertEqual(response.data['error'], 'content_rejected')
        self.assertTrue(response.data['reasons'])

    def test_list_shows_only_own_projects(self):
        project = self.make_project()
        self.login(self.stranger)
        self.assertEqual(self.api.get('/projects/').data, [])

        self.login(self.freelancer)
        response = self.api.get('/projects/')
        self.assertEqual([item['id'] for item in response.data], [project.id])

    def test_stranger_cannot_view_project(self):
        project = self.make_project()
        self.login(self.stranger)
        response = self.api.get(f'/projects/{project.id}/')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['error'], 'forbidden')

    def test_missing_project_is_not_found(self):
        self.login(self.client_user)
        response = self.api.get('/projects/9999/')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'not_found')

    def test_funding_over_budget_is_invalid_state(self):
        project = self.make_project(fund=0)
        self.login(self.client_user)

        response = self.api.post(f'/projects/{project.id}/fund/', {'amount': self.budget}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['escrow']['remaining'], self.budget)

        response = self.api.post(f'/projects/{project.id}/fund/', {'amount': 1}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'invalid_state')

    def test_writes_and_rejections_reach_audit_log(self):
        project = self.make_project(fund=0)
        self.login(self.client_user)
        with self.assertLogs('audit', level='INFO') as logs:
            self.api.post(f'/projects/{project.id}/fund/', {'amount': 500}, format='json')
            self.api.post(f'/projects/{project.id}/fund/', {'amount': self.budget}, format='json')

        self.assertTrue(logs.output[0].startswith('INFO:audit:client@example.com - POST'))
        self.assertIn(f'project_id={project.id}', logs.output[0])
        self.assertTrue(logs.output[1].startswith('WARNING:audit:'))

    def test_activity_log_lists_actions(self):
        project = self.make_project()
        self.login(self.client_user)
        response = self.api.get(f'/projects/{project.id}/activity/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        actions = [entry['action'] for entry in response.data]
        self.assertIn('PROJECT_CREATED', actions)
        self.assertIn('ESCROW_FUNDED', actions)


class MilestoneEndpointTests(APITestCase):

    def setUp(self):
        super().setUp()
        self.project = self.make_project()
        self.milestone = self.make_milestone(self.project)
        self.base = f'/projects/{self.project.id}/milestones/{self.milestone.id}'

    def test_full_lifecycle_releases_payment(self):
        provider = self.use_provider(FakeProvider())

        self.login(self.freelancer)
        response = self.api.post(f'{self.base}/start/')
        self.assertEqual(response.data['milestone']['status'], 'IN_PROGRESS')
        response = self.api.post(f'{self.base}/submit/', {'deliverables': ['https://example.com/v1.zip']}, format='json')
        self.assertEqual(response.data['milestone']['status'], 'SUBMITTED')

        self.login(self.client_user)
        response = self.api.post(f'{self.base}/approve/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['milestone']['status'], 'APPROVED')
        self.assertEqual(provider.transfers, [('acct_freelancer', 4875)])

    def test_approving_pending_milestone_is_invalid_state(self):
        self.login(self.client_user)
        response = self.api.post(f'{self.base}/approve/')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'invalid_state')

    def test_freelancer_cannot_approve(self):
        self.submit(self.project, self.milestone)
        self.login(self.freelancer)
        response = self.api.post(f'{self.base}/approve/')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['error'], 'forbidden')

    def test_unknown_milestone_is_not_found(self):
        self.login(self.client_user)
        response = self.api.post(f'/projects/{self.project.id}/milestones/9999/approve/')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'not_found')

    def test_provider_failure_returns_failed_transaction(self):
        self.use_provider(FakeProvider(failing_accounts={'acct_freelancer'}))
        self.submit(self.project, self.milestone)
        self.login(self.client_user)

        response = self.api.post(f'{self.base}/approve/')

        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)
        self.assertEqual(response.data['error'], 'provider_failure')
        failed = Transaction.objects.get(pk=response.data['transaction_id'])
        self.assertEqual(failed.status, Transaction.Status.FAILED)
        self.milestone.refresh_from_db()
        self.assertEqual(self.milestone.status, Milestone.Status.SUBMITTED)

    def test_missing_payout_account(self):
        self.use_provider(FakeProvider())
        PayoutMethod.objects.filter(user=self.freelancer).delete()
        self.submit(self.project, self.milestone)
        self.login(self.client_user)

        response = self.api.post(f'{self.base}/approve/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'payout_account_missing')

    def test_request_revision_records_notes(self):
        self.submit(self.project, self.milestone)
        self.login(self.client_user)
        response = self.api.post(f'{self.base}/request-revision/', {'notes': 'Fix the footer'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        milestone = response.data['milestone']
        self.assertEqual(milestone['status'], 'REVISION_REQUESTED')
        self.assertEqual(milestone['revision_history'][-1]['notes'], 'Fix the footer')

    def test_create_milestone_over_budget_rejected(self):
        self.login(self.client_user)
        response = self.api.post(
            f'/projects/{self.project.id}/milestones/',
            {'title': 'Everything else', 'amount': self.budget}, format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'invalid_state')

    def test_non_positive_amount_is_validation_error(self):
        self.login(self.client_user)
        response = self.api.post(
            f'/projects/{self.project.id}/milestones/', {'title': 'Nothing', 'amount': 0}, format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('amount', response.data)


@override_settings(DISPUTE_AUTO_REVIEW_ON_OPEN=False)
class DisputeEndpointTests(APITestCase):

    def setUp(self):
        super().setUp()
        self.project = self.make_project()
        self.milestone = self.make_milestone(self.project)
        self.submit(self.project, self.milestone)
        self.mediator = self.add_to_group(make_user('mediator@example.com', 'client'), settings.MEDIATORS_GROUP)

    def open(self, user=None):
        self.login(user or self.client_user)
        return self.api.post(
            f'/projects/{self.project.id}/milestones/{self.milestone.id}/disputes/',
            {'reason': 'The delivered pages do not match the agreed design', 'evidence': []},
            format='json',
        )

    def test_open_dispute(self):
        response = self.open()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['dispute']['status'], 'PENDING_REVIEW')
        self.milestone.refresh_from_db()
        self.assertEqual(self.milestone.status, Milestone.Status.DISPUTED)

    def test_stranger_cannot_open_or_view(self):
        response = self.open(user=self.stranger)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        dispute_id = self.open().data['dispute']['id']
        self.login(self.stranger)
        self.assertEqual(self.api.get('/disputes/').data, [])
        response = self.api.get(f'/disputes/{dispute_id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['error'], 'forbidden')

    def test_staff_assigns_mediator_who_resolves(self):
        self.use_provider(FakeProvider())
        dispute_id = self.open().data['dispute']['id']

        self.login(self.staff)
        response = self.api.post(f'/disputes/{dispute_id}/advance/', {'action': 'assign_mediator'}, format='json')
        self.assertEqual(response.data['dispute']['status'], 'IN_MEDIATION')

        self.login(self.mediator)
        self.assertEqual([item['id'] for item in self.api.get('/disputes/').data], [dispute_id])
        response = self.api.post(
            f'/disputes/{dispute_id}/resolve/',
            {'amount_to_freelancer': 3000, 'amount_to_client': 2000, 'reason': 'Partial delivery'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        resolution = response.data['dispute']['resolution']
        self.assertEqual(resolution['decided_by'], 'mediator@example.com')
        self.assertEqual(Dispute.objects.get(pk=dispute_id).status, Dispute.Status.RESOLVED)

    def test_split_that_does_not_add_up(self):
        dispute_id = self.open().data['dispute']['id']
        self.login(self.staff)
        self.api.post(f'/disputes/{dispute_id}/advance/', {'action': 'assign_mediator'}, format='json')

        self.login(self.mediator)
        response = self.api.post(
            f'/disputes/{dispute_id}/resolve/', {'amount_to_freelancer': 3000, 'amount_to_client': 1000}, format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_422_UNPROCESSABLE_ENTITY)
        self.assertEqual(response.data['error'], 'conservation_violation')

    def test_only_staff_assign_mediators(self):
        dispute_id = self.open().data['dispute']['id']
        response = self.api.post(f'/disputes/{dispute_id}/advance/', {'action': 'assign_mediator'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_raiser_withdraws(self):
        dispute_id = self.open().data['dispute']['id']
        response = self.api.post(f'/disputes/{dispute_id}/withdraw/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['milestone']['status'], 'SUBMITTED')
        self.assertEqual(Dispute.objects.get(pk=dispute_id).status, Dispute.Status.WITHDRAWN)

    def test_messages_between_parties(self):
        dispute_id = self.open().data['dispute']['id']
        self.login(self.freelancer)
        response = self.api.post(f'/disputes/{dispute_id}/messages/', {'message': 'Here is the sign-off thread'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        self.login(self.client_user)
        response = self.api.get(f'/disputes/{dispute_id}/messages/')
        self.assertEqual([item['message'] for item in response.data], ['Here is the sign-off thread'])

        self.login(self.stranger)
        response = self.api.get(f'/disputes/{dispute_id}/messages/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class PaymentEndpointTests(APITestCase):

    def test_add_stripe_payout_method_as_default(self):
        self.login(self.stranger)
        response = self.api.post(
            '/payments/payout-methods/', {'provider': 'stripe', 'account_reference': 'acct_new', 'is_default': True},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['is_default'])

    def test_stripe_reference_must_be_connected_account(self):
        self.login(self.stranger)
        response = self.api.post(
            '/payments/payout-methods/', {'provider': 'stripe', 'account_reference': '12345'}, format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('account_reference', response.data)

    def test_chapa_needs_bank_code(self):
        self.login(self.stranger)
        response = self.api.post(
            '/payments/payout-methods/', {'provider': 'chapa', 'account_reference': '0123456789'}, format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('bank_code', response.data)

    def test_delete_deactivates(self):
        method = PayoutMethod.objects.get(user=self.freelancer)
        self.login(self.freelancer)
        response = self.api.delete(f'/payments/payout-methods/{method.id}/')

        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        method.refresh_from_db()
        self.assertFalse(method.is_active)

    def test_cannot_touch_another_users_method(self):
        method = PayoutMethod.objects.get(user=self.freelancer)
        self.login(self.client_user)
        response = self.api.delete(f'/payments/payout-methods/{method.id}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_project_transactions_filter_by_type(self):
        self.use_provider(FakeProvider())
        project = self.make_project()
        milestone = self.make_milestone(project)
        self.submit(project, milestone)
        self.milestones.approve_milestone(actor=self.client_user, project_id=project.id, milestone_id=milestone.id)

        self.login(self.freelancer)
        response = self.api.get(f'/payments/projects/{project.id}/transactions/', {'type': 'MILESTONE_RELEASE'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['amount'], 4875)
        self.assertEqual(response.data[0]['platform_fee'], 125)


class FraudEndpointTests(APITestCase):

    def test_staff_sees_risk_assessment(self):
        self.login(self.staff)
        response = self.api.get(f'/fraud/users/{self.client_user.id}/risk/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['risk_level'], 'LOW')
        self.assertFalse(response.data['requires_secondary_review'])

    def test_non_staff_forbidden(self):
        self.login(self.client_user)
        response = self.api.get(f'/fraud/users/{self.client_user.id}/risk/')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['error'], 'forbidden')
