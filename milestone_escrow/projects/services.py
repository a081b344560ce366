from datetime import timedelta
from django.conf import settings
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from .activity import record_activity
from .models import Milestone, Project
from .moderation import ensure_acceptable, get_content_moderator
from .notifications import get_notifier, notify_on_commit
from escrow.models import Escrow
from escrow.services import lock_escrow
from fraud.services import RiskGate
from payments.models import Transaction
from payments.providers import get_provider_class
from payments.services import PaymentReleaseEngine
from milestone_escrow.exceptions import EscrowError, Forbidden, InvalidState, NotFound, ProviderFailure
import logging

logger = logging.getLogger(__name__)

AUTO_APPROVE_WARNING_WINDOW = timedelta(hours=48)


def lock_project(project_id) -> Project:
    try:
        return Project.objects.locked().get(pk=project_id)
    except Project.DoesNotExist:
        raise NotFound("Project not found.")


def lock_milestone(project, milestone_id) -> Milestone:
    """Lock a milestone row after its project row. Always lock the project first."""
    try:
        milestone = Milestone.objects.locked().get(pk=milestone_id)
    except Milestone.DoesNotExist:
        raise NotFound("Milestone not found.")
    if milestone.project_id != project.id:
        raise NotFound("Milestone does not belong to this project.")
    milestone.project = project
    return milestone


def require_status(milestone, *expected):
    if milestone.status not in expected:
        raise InvalidState(
            f"Milestone {milestone.id} is {milestone.status}; "
            f"this action requires {' or '.join(expected)}."
        )


def validate_currency(currency):
    if currency not in settings.SUPPORTED_CURRENCIES:
        raise ValidationError({'currency': f"Unsupported currency '{currency}'."})
    if not get_provider_class(settings.PAYMENT_PROVIDER).supports_currency(currency):
        raise ValidationError({
            'currency': f"The {settings.PAYMENT_PROVIDER} payment provider cannot pay out in {currency}."
        })


def complete_project_if_done(project, notifier, actor=None):
    """Mark the project COMPLETED once every one of its milestones is APPROVED."""
    statuses = set(project.milestones.values_list('status', flat=True))
    if statuses != {Milestone.Status.APPROVED} or project.status == 'completed':
        return False
    project.status = 'completed'
    project.completed_at = timezone.now()
    project.save(update_fields=['status', 'completed_at', 'updated_at'])
    record_activity(project, 'PROJECT_COMPLETED', actor=actor)
    notify_on_commit(notifier, project.id, 'project-completed')
    logger.info(f"Project {project.id} completed")
    return True


class ProjectService:
    def __init__(self, moderator=None, notifier=None):
        self.moderator = moderator or get_content_moderator()
        self.notifier = notifier or get_notifier()

    def create_project(self, *, client, title, budget: int, description='', currency='USD',
                       fee_rate=None, auto_approve_days=None):
        if client.user_type != 'client':
            raise Forbidden("Only clients can create projects.")
        if budget <= 0:
            raise ValidationError({'budget': "Budget must be a positive amount."})
        validate_currency(currency)
        ensure_acceptable(self.moderator, {'title': title, 'description': description},
                          {'kind': 'project', 'user_id': client.id})

        with transaction.atomic():
            project = Project.objects.create(
                client=client,
                title=title,
                description=description,
                budget=budget,
                currency=currency,
                fee_rate=fee_rate,
                auto_approve_days=auto_approve_days,
            )
            Escrow.objects.create(project=project, currency=currency)
            record_activity(project, 'PROJECT_CREATED', actor=client, budget=budget, currency=currency)

        logger.info(f"Project {project.id} created by {client.email}")
        return project

    def assign_freelancer(self, *, client, project_id, freelancer):
        with transaction.atomic():
            project = lock_project(project_id)
            if client.id != project.client_id:
                raise Forbidden("Only the project client can assign a freelancer.")
            if project.freelancer_id is not None:
                raise InvalidState("A freelancer is already assigned to this project.")
            if project.status != 'pending':
                raise InvalidState(f"Cannot assign a freelancer to a {project.status} project.")
            if freelancer.user_type != 'freelancer' or freelancer.id == client.id:
                raise ValidationError({'freelancer': "The assignee must be a freelancer account."})

            project.freelancer = freelancer
            project.status = 'active'
            project.save(update_fields=['freelancer', 'status', 'updated_at'])
            record_activity(project, 'FREELANCER_ASSIGNED', actor=client, freelancer_id=freelancer.id)

        logger.info(f"Freelancer {freelancer.email} assigned to project {project.id}")
        return project


class MilestoneService:
    """
    Milestone lifecycle. Each operation locks the project row, then the
    milestone row, re-checks the source status on the locked row, and commits
    the milestone, ledger, transaction and activity changes together.
    """

    def __init__(self, release_engine=None, moderator=None, notifier=None, risk_gate=None):
        self.release_engine = release_engine or PaymentReleaseEngine()
        self.moderator = moderator or get_content_moderator()
        self.notifier = notifier or get_notifier()
        self.risk_gate = risk_gate or RiskGate()

    def create_milestone(self, *, actor, project_id, title, amount: int, description='',
                         currency=None, deadline=None, acceptance_criteria=''):
        if amount <= 0:
            raise ValidationError({'amount': "Milestone amount must be positive."})

        with transaction.atomic():
            project = lock_project(project_id)
            if actor.id != project.client_id:
                raise Forbidden("Only the project client can create milestones.")
            if project.status in ('completed', 'cancelled'):
                raise InvalidState(f"Cannot add milestones to a {project.status} project.")

            currency = currency or project.currency
            validate_currency(currency)
            if currency != project.currency:
                raise ValidationError({'currency': f"Milestones of this project must be in {project.currency}."})

            ensure_acceptable(
                self.moderator,
                {'title': title, 'description': description, 'acceptance_criteria': acceptance_criteria},
                {'kind': 'milestone', 'project_id': project.id, 'user_id': actor.id},
            )

            allocated = project.milestones.aggregate(total=Sum('amount'))['total'] or 0
            if allocated + amount > project.budget:
                raise InvalidState(
                    f"Milestones would total {allocated + amount}, above the project budget of {project.budget}."
                )

            milestone = Milestone.objects.create(
                project=project,
                position=project.milestones.count(),
                title=title,
                description=description,
                amount=amount,
                currency=currency,
                deadline=deadline,
                acceptance_criteria=acceptance_criteria,
            )
            record_activity(project, 'MILESTONE_CREATED', actor=actor, milestone_id=milestone.id, amount=amount)
            notify_on_commit(self.notifier, project.id, 'milestone-created', {'milestone_id': milestone.id})

        logger.info(f"Milestone {milestone.id} created on project {project.id}")
        return milestone

    def start_milestone(self, *, actor, project_id, milestone_id):
        with transaction.atomic():
            project = lock_project(project_id)
            milestone = lock_milestone(project, milestone_id)
            if project.freelancer_id is None or actor.id != project.freelancer_id:
                raise Forbidden("Only the assigned freelancer can start this milestone.")
            require_status(milestone, Milestone.Status.PENDING)

            milestone.status = Milestone.Status.IN_PROGRESS
            milestone.started_at = timezone.now()
            milestone.save(update_fields=['status', 'started_at', 'updated_at'])
            record_activity(project, 'MILESTONE_STARTED', actor=actor, milestone_id=milestone.id)
            notify_on_commit(self.notifier, project.id, 'milestone-started', {'milestone_id': milestone.id})

        logger.info(f"Milestone {milestone.id} started")
        return milestone

    def submit_milestone(self, *, actor, project_id, milestone_id, deliverables=None, notes=''):
        deliverables = [item for item in (deliverables or []) if item]
        notes = (notes or '').strip()

        with transaction.atomic():
            project = lock_project(project_id)
            milestone = lock_milestone(project, milestone_id)
            if project.freelancer_id is None or actor.id != project.freelancer_id:
                raise Forbidden("Only the assigned freelancer can submit this milestone.")
            require_status(milestone, Milestone.Status.IN_PROGRESS, Milestone.Status.REVISION_REQUESTED)
            if not deliverables and not notes:
                raise ValidationError({'deliverables': "A submission needs at least one deliverable or notes."})

            resubmission = milestone.status == Milestone.Status.REVISION_REQUESTED
            milestone.status = Milestone.Status.SUBMITTED
            milestone.deliverables = deliverables
            milestone.submission_notes = notes
            milestone.submitted_at = timezone.now()
            milestone.auto_approval_warned_at = None
            milestone.save(update_fields=[
                'status', 'deliverables', 'submission_notes', 'submitted_at',
                'auto_approval_warned_at', 'updated_at',
            ])
            record_activity(
                project, 'MILESTONE_RESUBMITTED' if resubmission else 'MILESTONE_SUBMITTED',
                actor=actor, milestone_id=milestone.id, deliverables=len(deliverables),
            )
            notify_on_commit(self.notifier, project.id, 'milestone-submitted', {'milestone_id': milestone.id})

        logger.info(f"Milestone {milestone.id} submitted for review")
        return milestone

    def request_revision(self, *, actor, project_id, milestone_id, notes=''):
        with transaction.atomic():
            project = lock_project(project_id)
            milestone = lock_milestone(project, milestone_id)
            if actor.id != project.client_id:
                raise Forbidden("Only the project client can request revisions.")
            require_status(milestone, Milestone.Status.SUBMITTED)

            now = timezone.now()
            milestone.status = Milestone.Status.REVISION_REQUESTED
            milestone.revision_history = list(milestone.revision_history) + [{
                'requested_at': now.isoformat(),
                'requested_by': actor.id,
                'notes': notes,
            }]
            milestone.save(update_fields=['status', 'revision_history', 'updated_at'])
            record_activity(project, 'REVISION_REQUESTED', actor=actor, milestone_id=milestone.id, notes=notes)
            notify_on_commit(self.notifier, project.id, 'revision-requested', {
                'milestone_id': milestone.id, 'notes': notes,
            })

        logger.info(f"Revision requested on milestone {milestone.id}")
        return milestone

    def approve_milestone(self, *, actor, project_id, milestone_id):
        return self._approve(project_id, milestone_id, actor=actor)

    def auto_approve_milestone(self, *, milestone_id, now=None):
        """
        Timer-driven approval. A milestone that is no longer SUBMITTED (already
        approved, sent back for revision, or disputed) is left untouched.
        """
        try:
            project_id = Milestone.objects.values_list('project_id', flat=True).get(pk=milestone_id)
        except Milestone.DoesNotExist:
            raise NotFound("Milestone not found.")
        return self._approve(project_id, milestone_id, actor=None, now=now or timezone.now())

    def _approve(self, project_id, milestone_id, actor=None, now=None):
        automatic = actor is None
        failed = None

        with transaction.atomic():
            project = lock_project(project_id)
            milestone = lock_milestone(project, milestone_id)

            if not automatic and actor.id != project.client_id:
                raise Forbidden("Only the project client can approve this milestone.")
            if milestone.status == Milestone.Status.APPROVED:
                logger.info(f"Milestone {milestone.id} is already approved; nothing to do")
                return milestone
            if automatic:
                if milestone.status != Milestone.Status.SUBMITTED:
                    logger.info(f"Skipping auto-approval of milestone {milestone.id}: status is {milestone.status}")
                    return milestone
                if milestone.auto_approve_at is None or milestone.auto_approve_at > now:
                    raise InvalidState(f"Milestone {milestone.id} is not yet due for auto-approval.")
            else:
                require_status(milestone, Milestone.Status.SUBMITTED)

            escrow = lock_escrow(project.id)
            assessment = self.risk_gate.assess_release(project.client, milestone)
            record = self.release_engine.release_milestone(
                project=project, escrow=escrow, milestone=milestone, actor=actor,
            )

            if record.status == Transaction.Status.FAILED:
                failed = record
                notify_on_commit(self.notifier, project.id, 'payment-failed', {
                    'milestone_id': milestone.id, 'transaction_id': record.id,
                })
            else:
                milestone.status = Milestone.Status.APPROVED
                milestone.approved_at = timezone.now()
                milestone.save(update_fields=['status', 'approved_at', 'updated_at'])
                record_activity(
                    project, 'MILESTONE_AUTO_APPROVED' if automatic else 'MILESTONE_APPROVED',
                    actor=actor, milestone_id=milestone.id, transaction_id=record.id,
                    risk=assessment.as_dict(),
                )
                if self.risk_gate.is_flagged(assessment):
                    record_activity(
                        project, 'FRAUD_RISK_FLAGGED', actor=actor,
                        milestone_id=milestone.id, subject='milestone-release', risk=assessment.as_dict(),
                    )
                notify_on_commit(
                    self.notifier, project.id,
                    'milestone-auto-approved' if automatic else 'milestone-approved',
                    {'milestone_id': milestone.id, 'net_amount': record.amount, 'platform_fee': record.platform_fee},
                )
                complete_project_if_done(project, self.notifier, actor=actor)

        if failed is not None:
            raise ProviderFailure(
                f"Payment for milestone {milestone.id} failed: {failed.failure_reason}",
                transaction=failed,
            )

        logger.info(f"Milestone {milestone.id} approved ({'timer' if automatic else actor.email})")
        return milestone

    def auto_approve_due_milestones(self, now=None):
        """
        Approve every SUBMITTED milestone whose auto-approval time has passed.
        A failure on one milestone is logged and does not stop the sweep.

        Returns ``(approved_ids, failures)`` where failures are ``(id, error)`` pairs.
        """
        now = now or timezone.now()
        approved, failures = [], []

        candidates = Milestone.objects.awaiting_review().filter(
            submitted_at__isnull=False,
        ).select_related('project')
        for milestone in candidates:
            if milestone.auto_approve_at > now:
                continue
            try:
                result = self.auto_approve_milestone(milestone_id=milestone.id, now=now)
            except EscrowError as e:
                logger.error(f"Auto-approval of milestone {milestone.id} failed: {str(e.detail)}")
                failures.append((milestone.id, e.default_code))
                continue
            if result.status == Milestone.Status.APPROVED:
                approved.append(milestone.id)

        return approved, failures

    def send_auto_approval_warnings(self, now=None):
        """Warn both parties once when a submitted milestone will auto-approve within 48 hours."""
        now = now or timezone.now()
        warned = []

        candidates = Milestone.objects.awaiting_review().filter(
            submitted_at__isnull=False,
            auto_approval_warned_at__isnull=True,
        ).select_related('project')
        for milestone in candidates:
            due = milestone.auto_approve_at
            if not (now < due <= now + AUTO_APPROVE_WARNING_WINDOW):
                continue
            claimed = Milestone.objects.filter(
                pk=milestone.pk, auto_approval_warned_at__isnull=True,
            ).update(auto_approval_warned_at=now)
            if not claimed:
                continue
            notify_on_commit(self.notifier, milestone.project_id, 'milestone-auto-approve-warning', {
                'milestone_id': milestone.id, 'auto_approve_at': due.isoformat(),
            })
            warned.append(milestone.id)

        return warned
