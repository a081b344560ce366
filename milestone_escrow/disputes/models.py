from django.db import models
from django.db.models import Q
from django.core.serializers.json import DjangoJSONEncoder
from auditlog.registry import auditlog

from projects.models import Milestone, Project
from accounts.models import CustomUser


class DisputeQuerySet(models.QuerySet):
    def locked(self):
        return self.select_for_update()

    def open(self):
        return self.exclude(status__in=Dispute.CLOSED_STATUSES)


class Dispute(models.Model):
    class Status(models.TextChoices):
        PENDING_REVIEW = 'PENDING_REVIEW', 'Pending review'
        IN_MEDIATION = 'IN_MEDIATION', 'In mediation'
        IN_ARBITRATION = 'IN_ARBITRATION', 'In arbitration'
        ESCALATED = 'ESCALATED', 'Escalated'
        RESOLVED = 'RESOLVED', 'Resolved'
        WITHDRAWN = 'WITHDRAWN', 'Withdrawn'

    class Phase(models.TextChoices):
        AUTO_REVIEW = 'AUTO_REVIEW', 'Automated review'
        MEDIATION = 'MEDIATION', 'Mediation'
        ARBITRATION = 'ARBITRATION', 'Arbitration'

    WITHDRAWABLE_STATUSES = (Status.PENDING_REVIEW, Status.IN_MEDIATION)
    CLOSED_STATUSES = (Status.RESOLVED, Status.WITHDRAWN)

    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name='disputes')
    milestone = models.ForeignKey(Milestone, on_delete=models.PROTECT, related_name='disputes')
    raised_by = models.ForeignKey(CustomUser, on_delete=models.PROTECT, related_name='disputes')

    reason = models.TextField()
    amount_in_dispute = models.PositiveBigIntegerField(
        help_text="Part of the milestone amount not yet paid to the freelancer when the dispute was filed"
    )
    evidence = models.JSONField(default=list, blank=True, encoder=DjangoJSONEncoder)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING_REVIEW)
    resolution_phase = models.CharField(max_length=20, choices=Phase.choices, default=Phase.AUTO_REVIEW)
    milestone_status_before = models.CharField(max_length=20, choices=Milestone.Status.choices)

    mediator = models.ForeignKey(CustomUser, on_delete=models.SET_NULL, null=True, blank=True, related_name='mediated_disputes')
    arbitrator = models.ForeignKey(CustomUser, on_delete=models.SET_NULL, null=True, blank=True, related_name='arbitrated_disputes')
    escalation_reason = models.TextField(blank=True)

    review_confidence = models.PositiveSmallIntegerField(null=True, blank=True)
    review_key_issues = models.JSONField(default=list, blank=True)
    review_recommendation = models.JSONField(null=True, blank=True)
    review_reasoning = models.TextField(blank=True)
    reviewed_at = models.DateTimeField(null=True, blank=True)

    risk_score = models.PositiveIntegerField(default=0)
    risk_level = models.CharField(max_length=10, default='LOW')
    risk_factors = models.JSONField(default=list, blank=True)
    requires_secondary_review = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    resolved_at = models.DateTimeField(null=True, blank=True)
    withdrawn_at = models.DateTimeField(null=True, blank=True)

    objects = DisputeQuerySet.as_manager()

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['milestone'],
                condition=~Q(status__in=['RESOLVED', 'WITHDRAWN']),
                name='one_open_dispute_per_milestone',
            ),
        ]

    def __str__(self):
        return f"Dispute on {self.milestone.title} by {self.raised_by} [{self.status}]"

    def is_panel_member(self, user):
        return user is not None and user.pk in (self.mediator_id, self.arbitrator_id)


class DisputeResolution(models.Model):
    """
    Final outcome of a dispute. Exists only once the dispute is RESOLVED and
    is never modified afterwards. ``decided_by`` is empty for an automated
    resolution.
    """
    class Decision(models.TextChoices):
        RELEASE_TO_FREELANCER = 'RELEASE_TO_FREELANCER', 'Release to freelancer'
        REFUND_TO_CLIENT = 'REFUND_TO_CLIENT', 'Refund to client'
        SPLIT = 'SPLIT', 'Split'

    dispute = models.OneToOneField(Dispute, on_delete=models.PROTECT, related_name='resolution')
    decision = models.CharField(max_length=30, choices=Decision.choices)
    amount_to_freelancer = models.PositiveBigIntegerField()
    amount_to_client = models.PositiveBigIntegerField()
    reason = models.TextField(blank=True)
    decided_by = models.ForeignKey(CustomUser, on_delete=models.PROTECT, null=True, blank=True, related_name='dispute_decisions')
    decided_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.decision} for dispute {self.dispute_id}"

    @classmethod
    def decision_for(cls, amount_to_freelancer, amount_to_client):
        if amount_to_client == 0:
            return cls.Decision.RELEASE_TO_FREELANCER
        if amount_to_freelancer == 0:
            return cls.Decision.REFUND_TO_CLIENT
        return cls.Decision.SPLIT

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValueError("Dispute resolutions are immutable once recorded.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Dispute resolutions are immutable once recorded.")


class DisputeMessage(models.Model):
    dispute = models.ForeignKey('Dispute', on_delete=models.CASCADE, related_name='messages')
    sender = models.ForeignKey(CustomUser, on_delete=models.CASCADE)
    message = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at', 'id']


auditlog.register(Dispute, exclude_fields=['updated_at'])
auditlog.register(DisputeResolution)
