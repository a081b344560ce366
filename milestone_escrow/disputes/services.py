from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from .models import Dispute, DisputeMessage, DisputeResolution
from .review import ReviewError, get_dispute_reviewer
from escrow.services import lock_escrow
from fraud.services import RiskGate
from payments.models import Transaction
from payments.services import PaymentReleaseEngine, unpaid_amount
from projects.activity import record_activity
from projects.models import Milestone
from projects.moderation import ensure_acceptable, get_content_moderator
from projects.notifications import get_notifier, notify_on_commit
from projects.services import complete_project_if_done, lock_milestone, lock_project, require_status
from milestone_escrow.exceptions import (
    ConservationViolation, EscrowError, Forbidden, InvalidState, NotFound, PayoutAccountMissing, ProviderFailure,
)
import logging

logger = logging.getLogger(__name__)

User = get_user_model()


class DisputeAction:
    AUTO_REVIEW = 'auto_review'
    ASSIGN_MEDIATOR = 'assign_mediator'
    ESCALATE_TO_ARBITRATION = 'escalate_to_arbitration'
    ESCALATE = 'escalate'

    CHOICES = (
        (AUTO_REVIEW, 'Run automated review'),
        (ASSIGN_MEDIATOR, 'Assign a mediator'),
        (ESCALATE_TO_ARBITRATION, 'Escalate to arbitration'),
        (ESCALATE, 'Escalate for staff attention'),
    )


def pick_panel_member(group_name, caseload, exclude_ids=()):
    """Least-loaded active member of a dispute panel group, counting their open cases."""
    return (
        User.objects.filter(groups__name=group_name, is_active=True)
        .exclude(pk__in=[pk for pk in exclude_ids if pk])
        .annotate(open_cases=Count(caseload, filter=~Q(**{f'{caseload}__status__in': Dispute.CLOSED_STATUSES})))
        .order_by('open_cases', 'id')
        .first()
    )


class DisputeService:
    """
    Dispute lifecycle: PENDING_REVIEW -> IN_MEDIATION -> IN_ARBITRATION -> RESOLVED,
    with ESCALATED reachable from any open status. The raiser may withdraw
    before arbitration, which closes the dispute as WITHDRAWN. Locks are taken in the order
    project, milestone, dispute, escrow.
    """

    def __init__(self, release_engine=None, reviewer=None, moderator=None, notifier=None, risk_gate=None):
        self.release_engine = release_engine or PaymentReleaseEngine()
        self.reviewer = reviewer or get_dispute_reviewer()
        self.moderator = moderator or get_content_moderator()
        self.notifier = notifier or get_notifier()
        self.risk_gate = risk_gate or RiskGate()

    def _lock(self, dispute_id):
        try:
            project_id, milestone_id = Dispute.objects.values_list('project_id', 'milestone_id').get(pk=dispute_id)
        except Dispute.DoesNotExist:
            raise NotFound("Dispute not found.")
        project = lock_project(project_id)
        milestone = lock_milestone(project, milestone_id)
        dispute = Dispute.objects.locked().get(pk=dispute_id)
        dispute.project = project
        dispute.milestone = milestone
        return project, milestone, dispute

    def _evidence_items(self, evidence, actor):
        items = []
        now = timezone.now().isoformat()
        for item in evidence or []:
            if isinstance(item, str):
                item = {'description': item}
            items.append({
                'description': item.get('description', ''),
                'url': item.get('url', ''),
                'submitted_by': actor.id,
                'submitted_at': now,
            })
        return items

    def _restore_project_status(self, project):
        if project.status == 'disputed' and not Dispute.objects.open().filter(project=project).exists():
            project.status = 'active'
            project.save(update_fields=['status', 'updated_at'])

    def open_dispute(self, *, actor, project_id, milestone_id, reason, evidence=None):
        reason = (reason or '').strip()
        if not reason:
            raise ValidationError({'reason': "A dispute needs a reason."})

        with transaction.atomic():
            project = lock_project(project_id)
            milestone = lock_milestone(project, milestone_id)
            if not project.is_participant(actor):
                raise Forbidden("Only the project's client or freelancer can open a dispute.")
            if milestone.status == Milestone.Status.DISPUTED or Dispute.objects.open().filter(milestone=milestone).exists():
                raise InvalidState(f"Milestone {milestone.id} is already under dispute.")
            require_status(milestone, *Milestone.DISPUTABLE_STATUSES)

            items = self._evidence_items(evidence, actor)
            ensure_acceptable(
                self.moderator,
                {'reason': reason, 'evidence': ' '.join(item['description'] for item in items)},
                {'kind': 'dispute', 'project_id': project.id, 'user_id': actor.id},
            )

            assessment = self.risk_gate.assess_dispute(actor, milestone, reason)
            flagged = self.risk_gate.is_flagged(assessment)

            dispute = Dispute.objects.create(
                project=project,
                milestone=milestone,
                raised_by=actor,
                reason=reason,
                amount_in_dispute=unpaid_amount(milestone),
                evidence=items,
                milestone_status_before=milestone.status,
                risk_score=assessment.risk_score,
                risk_level=assessment.risk_level,
                risk_factors=assessment.risk_factors,
                requires_secondary_review=flagged,
            )
            milestone.status = Milestone.Status.DISPUTED
            milestone.save(update_fields=['status', 'updated_at'])
            if project.status == 'active':
                project.status = 'disputed'
                project.save(update_fields=['status', 'updated_at'])

            record_activity(
                project, 'DISPUTE_OPENED', actor=actor,
                dispute_id=dispute.id, milestone_id=milestone.id, risk=assessment.as_dict(),
            )
            if flagged:
                record_activity(
                    project, 'FRAUD_RISK_FLAGGED', actor=actor,
                    dispute_id=dispute.id, subject='dispute-filing', risk=assessment.as_dict(),
                )
            notify_on_commit(self.notifier, project.id, 'dispute-opened', {
                'dispute_id': dispute.id, 'milestone_id': milestone.id,
            })

        logger.info(f"Dispute {dispute.id} opened on milestone {milestone.id} by {actor.email}")

        if settings.DISPUTE_AUTO_REVIEW_ON_OPEN:
            dispute = self.run_automated_review(dispute_id=dispute.id)
        return dispute

    def run_automated_review(self, *, dispute_id, actor=None):
        """
        Run the reviewer on a PENDING_REVIEW dispute. A confident result on a
        dispute not flagged for secondary review resolves it with the
        recommended split; anything else goes to a mediator, or to ESCALATED
        when no mediator is available.
        """
        failed = None
        with transaction.atomic():
            project, milestone, dispute = self._lock(dispute_id)
            if actor is not None and not actor.is_staff:
                raise Forbidden("Only staff can trigger an automated review.")
            if dispute.status != Dispute.Status.PENDING_REVIEW:
                raise InvalidState(f"Dispute {dispute.id} is {dispute.status}, not awaiting review.")

            try:
                result = self.reviewer.analyze(dispute)
            except ReviewError as e:
                logger.warning(f"Automated review of dispute {dispute.id} failed: {str(e)}")
                result = None

            handoff_note = "Automated review was unavailable."
            if result is not None:
                dispute.review_confidence = result.confidence_score
                dispute.review_key_issues = result.key_issues
                dispute.review_recommendation = result.recommended_resolution
                dispute.review_reasoning = result.reasoning
                dispute.reviewed_at = timezone.now()
                dispute.save(update_fields=[
                    'review_confidence', 'review_key_issues', 'review_recommendation',
                    'review_reasoning', 'reviewed_at', 'updated_at',
                ])
                record_activity(
                    project, 'DISPUTE_REVIEWED', actor=actor, dispute_id=dispute.id,
                    confidence=result.confidence_score, recommendation=result.recommended_resolution,
                )
                handoff_note = f"Automated review confidence {result.confidence_score} is below the threshold."

                if dispute.requires_secondary_review:
                    handoff_note = "Flagged for secondary review by the fraud gate."
                elif result.confidence_score >= settings.DISPUTE_AUTO_RESOLVE_CONFIDENCE:
                    recommended = result.recommended_resolution or {}
                    escrow = lock_escrow(project.id)
                    try:
                        resolution, failed = self._settle(
                            project, milestone, dispute, escrow,
                            amount_to_freelancer=recommended.get('amount_to_freelancer', 0),
                            amount_to_client=recommended.get('amount_to_client', 0),
                            reason=f"Automated review: {result.reasoning}",
                            decided_by=None,
                        )
                    except (ConservationViolation, PayoutAccountMissing, InvalidState) as e:
                        logger.warning(f"Automated resolution of dispute {dispute.id} not possible: {e.detail}")
                        resolution = None
                        handoff_note = f"Automated resolution not possible: {e.detail}"
                    if resolution is not None:
                        return dispute
                    if failed is not None:
                        handoff_note = f"Automated settlement failed: {failed.failure_reason}"

            self._hand_to_mediation(project, dispute, handoff_note)

        return dispute

    def _hand_to_mediation(self, project, dispute, note, actor=None, mediator=None):
        mediator = mediator or pick_panel_member(
            settings.MEDIATORS_GROUP, 'mediated_disputes',
            exclude_ids=(project.client_id, project.freelancer_id),
        )
        if mediator is None:
            dispute.status = Dispute.Status.ESCALATED
            dispute.escalation_reason = f"No mediator available. {note}".strip()
            dispute.save(update_fields=['status', 'escalation_reason', 'updated_at'])
            record_activity(project, 'DISPUTE_ESCALATED', actor=actor, dispute_id=dispute.id, note=dispute.escalation_reason)
            logger.warning(f"Dispute {dispute.id} escalated: no mediator available")
        else:
            dispute.status = Dispute.Status.IN_MEDIATION
            dispute.resolution_phase = Dispute.Phase.MEDIATION
            dispute.mediator = mediator
            dispute.save(update_fields=['status', 'resolution_phase', 'mediator', 'updated_at'])
            record_activity(
                project, 'DISPUTE_IN_MEDIATION', actor=actor,
                dispute_id=dispute.id, mediator_id=mediator.id, note=note,
            )
            logger.info(f"Dispute {dispute.id} assigned to mediator {mediator.email}")

        notify_on_commit(self.notifier, project.id, 'dispute-updated', {
            'dispute_id': dispute.id, 'status': dispute.status,
        })

    def advance_dispute(self, *, actor, dispute_id, action, assignee=None, note=''):
        if action == DisputeAction.AUTO_REVIEW:
            return self.run_automated_review(dispute_id=dispute_id, actor=actor)

        with transaction.atomic():
            project, milestone, dispute = self._lock(dispute_id)

            if action == DisputeAction.ASSIGN_MEDIATOR:
                if not actor.is_staff:
                    raise Forbidden("Only staff can assign a mediator.")
                if dispute.status not in (Dispute.Status.PENDING_REVIEW, Dispute.Status.IN_MEDIATION, Dispute.Status.ESCALATED):
                    raise InvalidState(f"Cannot assign a mediator to a dispute that is {dispute.status}.")
                if assignee is not None and not assignee.in_group(settings.MEDIATORS_GROUP):
                    raise ValidationError({'assignee': "The assignee is not a mediator."})
                if assignee is None and pick_panel_member(
                        settings.MEDIATORS_GROUP, 'mediated_disputes',
                        exclude_ids=(project.client_id, project.freelancer_id)) is None:
                    raise InvalidState("No mediator is available.")
                self._hand_to_mediation(project, dispute, note, actor=actor, mediator=assignee)

            elif action == DisputeAction.ESCALATE_TO_ARBITRATION:
                if dispute.status == Dispute.Status.IN_MEDIATION:
                    if not (actor.is_staff or actor.id == dispute.mediator_id):
                        raise Forbidden("Only the assigned mediator or staff can escalate to arbitration.")
                elif dispute.status == Dispute.Status.ESCALATED:
                    if not actor.is_staff:
                        raise Forbidden("Only staff can send an escalated dispute to arbitration.")
                else:
                    raise InvalidState(f"Cannot escalate a dispute that is {dispute.status} to arbitration.")

                if assignee is not None and not assignee.in_group(settings.ARBITRATORS_GROUP):
                    raise ValidationError({'assignee': "The assignee is not an arbitrator."})
                arbitrator = assignee or pick_panel_member(
                    settings.ARBITRATORS_GROUP, 'arbitrated_disputes',
                    exclude_ids=(project.client_id, project.freelancer_id, dispute.mediator_id),
                )
                if arbitrator is None:
                    raise InvalidState("No arbitrator is available.")

                dispute.status = Dispute.Status.IN_ARBITRATION
                dispute.resolution_phase = Dispute.Phase.ARBITRATION
                dispute.arbitrator = arbitrator
                dispute.save(update_fields=['status', 'resolution_phase', 'arbitrator', 'updated_at'])
                record_activity(
                    project, 'DISPUTE_IN_ARBITRATION', actor=actor,
                    dispute_id=dispute.id, arbitrator_id=arbitrator.id, note=note,
                )

            elif action == DisputeAction.ESCALATE:
                if dispute.status not in (Dispute.Status.PENDING_REVIEW, Dispute.Status.IN_MEDIATION, Dispute.Status.IN_ARBITRATION):
                    raise InvalidState(f"Cannot escalate a dispute that is {dispute.status}.")
                if not (actor.is_staff or dispute.is_panel_member(actor)):
                    raise Forbidden("Only the assigned mediator, arbitrator or staff can escalate this dispute.")

                dispute.status = Dispute.Status.ESCALATED
                dispute.escalation_reason = note
                dispute.save(update_fields=['status', 'escalation_reason', 'updated_at'])
                record_activity(project, 'DISPUTE_ESCALATED', actor=actor, dispute_id=dispute.id, note=note)

            else:
                raise ValidationError({'action': f"Unknown dispute action '{action}'."})

            if action != DisputeAction.ASSIGN_MEDIATOR:
                notify_on_commit(self.notifier, project.id, 'dispute-updated', {
                    'dispute_id': dispute.id, 'status': dispute.status,
                })

        logger.info(f"Dispute {dispute.id} advanced with '{action}' to {dispute.status}")
        return dispute

    def _settle(self, project, milestone, dispute, escrow, *, amount_to_freelancer, amount_to_client, reason, decided_by):
        """
        Pay out the split and record the resolution. Returns ``(resolution, None)``
        on success or ``(None, failed_transaction)`` when a provider leg failed,
        in which case the dispute stays open for a retry.
        """
        results = self.release_engine.settle_dispute(
            project=project, escrow=escrow, milestone=milestone, dispute=dispute,
            amount_to_freelancer=amount_to_freelancer, amount_to_client=amount_to_client,
            actor=decided_by,
        )
        failed = next((record for record in results if record.status == Transaction.Status.FAILED), None)
        if failed is not None:
            notify_on_commit(self.notifier, project.id, 'payment-failed', {
                'dispute_id': dispute.id, 'transaction_id': failed.id,
            })
            return None, failed

        resolution = DisputeResolution.objects.create(
            dispute=dispute,
            decision=DisputeResolution.decision_for(amount_to_freelancer, amount_to_client),
            amount_to_freelancer=amount_to_freelancer,
            amount_to_client=amount_to_client,
            reason=reason,
            decided_by=decided_by,
        )

        now = timezone.now()
        dispute.status = Dispute.Status.RESOLVED
        dispute.resolved_at = now
        dispute.save(update_fields=['status', 'resolved_at', 'updated_at'])

        if amount_to_freelancer == dispute.amount_in_dispute:
            milestone.status = Milestone.Status.APPROVED
            milestone.approved_at = now
        else:
            milestone.status = Milestone.Status.REVISION_REQUESTED
            milestone.revision_history = list(milestone.revision_history) + [{
                'requested_at': now.isoformat(),
                'requested_by': getattr(decided_by, 'id', None),
                'notes': f"Dispute {dispute.id} resolved: {resolution.decision}",
            }]
        milestone.save(update_fields=['status', 'approved_at', 'revision_history', 'updated_at'])

        self._restore_project_status(project)
        record_activity(
            project, 'DISPUTE_RESOLVED', actor=decided_by,
            dispute_id=dispute.id, milestone_id=milestone.id, decision=resolution.decision,
            amount_to_freelancer=amount_to_freelancer, amount_to_client=amount_to_client,
            automated=decided_by is None,
        )
        notify_on_commit(self.notifier, project.id, 'dispute-resolved', {
            'dispute_id': dispute.id,
            'decision': resolution.decision,
            'amount_to_freelancer': amount_to_freelancer,
            'amount_to_client': amount_to_client,
        })
        complete_project_if_done(project, self.notifier, actor=decided_by)
        logger.info(f"Dispute {dispute.id} resolved: {resolution.decision}")
        return resolution, None

    def resolve_dispute(self, *, actor, dispute_id, amount_to_freelancer: int, amount_to_client: int, reason=''):
        failed = None
        with transaction.atomic():
            project, milestone, dispute = self._lock(dispute_id)
            if dispute.status == Dispute.Status.IN_MEDIATION:
                if actor.id != dispute.mediator_id:
                    raise Forbidden("Only the assigned mediator can resolve this dispute.")
            elif dispute.status == Dispute.Status.IN_ARBITRATION:
                if actor.id != dispute.arbitrator_id:
                    raise Forbidden("Only the assigned arbitrator can resolve this dispute.")
            else:
                raise InvalidState(f"A dispute that is {dispute.status} cannot be resolved.")

            escrow = lock_escrow(project.id)
            resolution, failed = self._settle(
                project, milestone, dispute, escrow,
                amount_to_freelancer=amount_to_freelancer,
                amount_to_client=amount_to_client,
                reason=reason,
                decided_by=actor,
            )

        if failed is not None:
            raise ProviderFailure(
                f"Settlement of dispute {dispute.id} failed: {failed.failure_reason}",
                transaction=failed,
            )
        return dispute

    def withdraw_dispute(self, *, actor, dispute_id):
        """
        Close an open dispute at its raiser's request and put the milestone
        back in the status it had when the dispute was filed. The dispute and
        its messages are kept as WITHDRAWN.
        """
        with transaction.atomic():
            project, milestone, dispute = self._lock(dispute_id)
            if actor.id != dispute.raised_by_id:
                raise Forbidden("Only the user who raised the dispute can withdraw it.")
            if dispute.status not in Dispute.WITHDRAWABLE_STATUSES:
                raise InvalidState(f"A dispute that is {dispute.status} can no longer be withdrawn.")
            if dispute.transactions.exists():
                raise InvalidState("This dispute already has settlement payments and cannot be withdrawn.")

            milestone.status = dispute.milestone_status_before
            milestone.save(update_fields=['status', 'updated_at'])
            dispute.status = Dispute.Status.WITHDRAWN
            dispute.withdrawn_at = timezone.now()
            dispute.save(update_fields=['status', 'withdrawn_at', 'updated_at'])
            self._restore_project_status(project)

            record_activity(
                project, 'DISPUTE_WITHDRAWN', actor=actor,
                dispute_id=dispute.id, milestone_id=milestone.id, milestone_status=milestone.status,
            )
            notify_on_commit(self.notifier, project.id, 'dispute-withdrawn', {
                'dispute_id': dispute.id, 'milestone_id': milestone.id,
            })

        logger.info(f"Dispute {dispute.id} withdrawn; milestone {milestone.id} back to {milestone.status}")
        return milestone

    def add_message(self, *, actor, dispute_id, message):
        try:
            dispute = Dispute.objects.select_related('project').get(pk=dispute_id)
        except Dispute.DoesNotExist:
            raise NotFound("Dispute not found.")
        if not (dispute.project.is_participant(actor) or dispute.is_panel_member(actor) or actor.is_staff):
            raise Forbidden("You are not a party to this dispute.")
        if dispute.status in Dispute.CLOSED_STATUSES:
            raise InvalidState(f"This dispute is {dispute.status.lower()} and closed to new messages.")
        ensure_acceptable(self.moderator, {'message': message},
                          {'kind': 'dispute-message', 'dispute_id': dispute.id, 'user_id': actor.id})

        return DisputeMessage.objects.create(dispute=dispute, sender=actor, message=message)

    def review_pending_disputes(self):
        """Run the automated review on every dispute still awaiting it."""
        outcomes = []
        pending = Dispute.objects.filter(status=Dispute.Status.PENDING_REVIEW).values_list('id', flat=True)
        for dispute_id in list(pending):
            try:
                dispute = self.run_automated_review(dispute_id=dispute_id)
            except EscrowError as e:
                logger.error(f"Automated review of dispute {dispute_id} failed: {str(e.detail)}")
                outcomes.append((dispute_id, e.default_code))
                continue
            outcomes.append((dispute_id, dispute.status))
        return outcomes
