from datetime import timedelta
from io import StringIO
from unittest import mock

from django.core.management import call_command
from django.utils import timezone

from milestone_escrow.exceptions import InvalidState
from payments.models import Transaction
from projects.models import ActivityLogEntry, Milestone

from .helpers import EscrowTestCase


class AutoApproveMilestoneTests(EscrowTestCase):

    def setUp(self):
        super().setUp()
        self.project = self.make_project(budget=20000, auto_approve_days=3)
        self.milestone = self.make_milestone(self.project, amount=5000)
        self.submit(self.project, self.milestone)

    def test_due_milestone_is_approved_by_timer(self):
        self.backdate_submission(self.milestone, days=4)

        milestone = self.milestones.auto_approve_milestone(milestone_id=self.milestone.id)

        self.assertEqual(milestone.status, Milestone.Status.APPROVED)
        entry = ActivityLogEntry.objects.get(project=self.project, action='MILESTONE_AUTO_APPROVED')
        self.assertIsNone(entry.actor)
        self.assertEqual(self.escrow_for(self.project).remaining, 15000)

    def test_not_yet_due_milestone_is_rejected(self):
        self.backdate_submission(self.milestone, days=1)
        with self.assertRaises(InvalidState):
            self.milestones.auto_approve_milestone(milestone_id=self.milestone.id)

    def test_running_twice_is_a_no_op(self):
        self.backdate_submission(self.milestone, days=4)
        self.milestones.auto_approve_milestone(milestone_id=self.milestone.id)
        releases_before = Transaction.objects.filter(type=Transaction.Type.MILESTONE_RELEASE).count()

        milestone = self.milestones.auto_approve_milestone(milestone_id=self.milestone.id)

        self.assertEqual(milestone.status, Milestone.Status.APPROVED)
        self.assertEqual(Transaction.objects.filter(type=Transaction.Type.MILESTONE_RELEASE).count(), releases_before)

    def test_timer_loses_to_manual_revision(self):
        self.backdate_submission(self.milestone, days=4)
        self.milestones.request_revision(
            actor=self.client_user, project_id=self.project.id, milestone_id=self.milestone.id, notes='Fix the footer',
        )

        milestone = self.milestones.auto_approve_milestone(milestone_id=self.milestone.id)

        self.assertEqual(milestone.status, Milestone.Status.REVISION_REQUESTED)
        self.assertFalse(Transaction.objects.filter(milestone=self.milestone).exists())

    def test_manual_approval_after_timer_is_a_no_op(self):
        self.backdate_submission(self.milestone, days=4)
        self.milestones.auto_approve_milestone(milestone_id=self.milestone.id)

        self.milestones.approve_milestone(
            actor=self.client_user, project_id=self.project.id, milestone_id=self.milestone.id,
        )
        self.assertEqual(len(self.provider.transfers), 1)


class AutoApprovalSweepTests(EscrowTestCase):

    def setUp(self):
        super().setUp()
        self.project = self.make_project(budget=20000, auto_approve_days=7)

    def test_sweep_approves_only_due_milestones(self):
        due = self.make_milestone(self.project, amount=4000, title='Due')
        fresh = self.make_milestone(self.project, amount=4000, title='Fresh')
        self.submit(self.project, due)
        self.submit(self.project, fresh)
        self.backdate_submission(due, days=8)

        approved, failures = self.milestones.auto_approve_due_milestones()

        self.assertEqual(approved, [due.id])
        self.assertEqual(failures, [])
        fresh.refresh_from_db()
        self.assertEqual(fresh.status, Milestone.Status.SUBMITTED)

    def test_one_failure_does_not_stop_the_sweep(self):
        short = self.make_project(budget=6000, fund=1000, auto_approve_days=7)
        unfunded = self.make_milestone(short, amount=6000, title='Unfunded')
        funded = self.make_milestone(self.project, amount=4000, title='Funded')
        for project, milestone in ((short, unfunded), (self.project, funded)):
            self.submit(project, milestone)
            self.backdate_submission(milestone, days=8)

        approved, failures = self.milestones.auto_approve_due_milestones()

        self.assertEqual(approved, [funded.id])
        self.assertEqual(failures, [(unfunded.id, 'invalid_state')])

    def test_warning_is_sent_once_inside_the_window(self):
        milestone = self.make_milestone(self.project, amount=4000)
        self.submit(self.project, milestone)
        self.backdate_submission(milestone, days=6)

        with self.captureOnCommitCallbacks(execute=True):
            warned = self.milestones.send_auto_approval_warnings()
            again = self.milestones.send_auto_approval_warnings()

        self.assertEqual(warned, [milestone.id])
        self.assertEqual(again, [])
        self.assertEqual(self.notifier.names().count('milestone-auto-approve-warning'), 1)

    def test_no_warning_outside_the_window(self):
        milestone = self.make_milestone(self.project, amount=4000)
        self.submit(self.project, milestone)
        self.backdate_submission(milestone, days=1)

        self.assertEqual(self.milestones.send_auto_approval_warnings(), [])

    def test_warning_resets_on_resubmission(self):
        milestone = self.make_milestone(self.project, amount=4000)
        self.submit(self.project, milestone)
        self.backdate_submission(milestone, days=6)
        self.milestones.send_auto_approval_warnings()
        self.milestones.request_revision(actor=self.client_user, project_id=self.project.id, milestone_id=milestone.id)
        milestone = self.milestones.submit_milestone(
            actor=self.freelancer, project_id=self.project.id, milestone_id=milestone.id, notes='Second pass',
        )
        self.assertIsNone(milestone.auto_approval_warned_at)

    def test_management_command_runs_the_sweep(self):
        milestone = self.make_milestone(self.project, amount=4000)
        self.submit(self.project, milestone)
        self.backdate_submission(milestone, days=8)

        out = StringIO()
        with mock.patch('projects.management.commands.auto_approve_milestones.MilestoneService',
                        return_value=self.milestones):
            call_command('auto_approve_milestones', stdout=out)

        milestone.refresh_from_db()
        self.assertEqual(milestone.status, Milestone.Status.APPROVED)
        self.assertIn('Auto-approved 1 milestone(s).', out.getvalue())

    def test_auto_approve_at_uses_project_period(self):
        milestone = self.make_milestone(self.project, amount=4000)
        milestone = self.submit(self.project, milestone)
        self.assertEqual(milestone.auto_approve_at, milestone.submitted_at + timedelta(days=7))
        self.assertGreater(milestone.auto_approve_at, timezone.now())
