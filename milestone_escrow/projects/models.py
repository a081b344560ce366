from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.db.models import Q
from auditlog.registry import auditlog

User = settings.AUTH_USER_MODEL


class ProjectQuerySet(models.QuerySet):
    def locked(self):
        return self.select_for_update()


class Project(models.Model):
    STATUS_CHOICES = (
            ('pending', 'Pending'),
            ('active', 'Active'),
            ('disputed', 'Disputed'),
            ('completed', 'Completed'),
            ('cancelled', 'Cancelled'),
        )

    client = models.ForeignKey(User, related_name='client_projects', on_delete=models.PROTECT)
    freelancer = models.ForeignKey(User, related_name='freelancer_projects', on_delete=models.PROTECT, null=True, blank=True)
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    budget = models.PositiveBigIntegerField(help_text="Budget in minor currency units")
    currency = models.CharField(max_length=3, default='USD')
    fee_rate = models.DecimalField(max_digits=5, decimal_places=4, null=True, blank=True,
                                   help_text="Overrides PLATFORM_FEE_RATE when set")
    auto_approve_days = models.PositiveSmallIntegerField(null=True, blank=True,
                                                         help_text="Overrides DEFAULT_AUTO_APPROVE_DAYS when set")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    objects = ProjectQuerySet.as_manager()

    class Meta:
        constraints = [
            models.CheckConstraint(condition=Q(budget__gt=0), name='project_budget_positive'),
        ]

    def __str__(self):
        return f"{self.title} ({self.client} -> {self.freelancer})"

    @property
    def effective_fee_rate(self):
        if self.fee_rate is not None:
            return Decimal(str(self.fee_rate))
        return Decimal(str(settings.PLATFORM_FEE_RATE))

    @property
    def auto_approve_period(self):
        days = self.auto_approve_days
        if days is None:
            days = settings.DEFAULT_AUTO_APPROVE_DAYS
        return timedelta(days=days)

    def is_participant(self, user):
        return user is not None and user.pk in (self.client_id, self.freelancer_id)


class MilestoneQuerySet(models.QuerySet):
    def locked(self):
        return self.select_for_update()

    def awaiting_review(self):
        return self.filter(status=Milestone.Status.SUBMITTED)


class Milestone(models.Model):
    class Status(models.TextChoices):
        PENDING = 'PENDING', 'Pending'
        IN_PROGRESS = 'IN_PROGRESS', 'In progress'
        SUBMITTED = 'SUBMITTED', 'Submitted'
        REVISION_REQUESTED = 'REVISION_REQUESTED', 'Revision requested'
        APPROVED = 'APPROVED', 'Approved'
        DISPUTED = 'DISPUTED', 'Disputed'

    DISPUTABLE_STATUSES = (Status.SUBMITTED, Status.IN_PROGRESS, Status.REVISION_REQUESTED)

    project = models.ForeignKey(Project, on_delete=models.PROTECT, related_name="milestones")
    position = models.PositiveIntegerField(default=0)
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    amount = models.PositiveBigIntegerField(help_text="Amount in minor currency units")
    currency = models.CharField(max_length=3, default='USD')
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    deadline = models.DateTimeField(null=True, blank=True)
    acceptance_criteria = models.TextField(blank=True)
    deliverables = models.JSONField(default=list, blank=True)
    submission_notes = models.TextField(blank=True)
    revision_history = models.JSONField(default=list, blank=True, encoder=DjangoJSONEncoder)

    started_at = models.DateTimeField(null=True, blank=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    auto_approval_warned_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = MilestoneQuerySet.as_manager()

    class Meta:
        ordering = ['position', 'id']
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=0), name='milestone_amount_positive'),
        ]

    def __str__(self):
        return f"{self.title} [{self.status}] ({self.amount} {self.currency})"

    @property
    def auto_approve_at(self):
        if self.submitted_at is None:
            return None
        return self.submitted_at + self.project.auto_approve_period


class ActivityLogEntry(models.Model):
    """
    Append-only project activity log. Entries are never updated or deleted;
    an entry with no actor was written by the system (timers, automated review).
    """
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name='activity_log')
    action = models.CharField(max_length=64)
    actor = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    metadata = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['timestamp', 'id']
        verbose_name_plural = 'activity log entries'

    def __str__(self):
        return f"{self.action} by {self.actor or 'system'} on project {self.project_id}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValueError("Activity log entries are append-only.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Activity log entries are append-only.")


auditlog.register(Project, include_fields=['status', 'freelancer', 'fee_rate', 'auto_approve_days'])
auditlog.register(Milestone, exclude_fields=['updated_at'])
