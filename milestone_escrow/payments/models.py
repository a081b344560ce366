from django.db import models
from django.db.models import Q
from django.contrib.auth import get_user_model
from django.utils import timezone
from auditlog.registry import auditlog

from projects.models import Milestone, Project
from milestone_escrow.exceptions import InvalidState

User = get_user_model()


class Transaction(models.Model):
    """
    One attempted money movement. Created PENDING and moved exactly once to
    COMPLETED or FAILED, after which the row never changes.
    """
    class Type(models.TextChoices):
        DEPOSIT = 'DEPOSIT', 'Deposit'
        MILESTONE_RELEASE = 'MILESTONE_RELEASE', 'Milestone release'
        REFUND = 'REFUND', 'Refund'
        DISPUTE_REFUND = 'DISPUTE_REFUND', 'Dispute refund'
        DISPUTE_PAYMENT = 'DISPUTE_PAYMENT', 'Dispute payment'
        ADMIN_ADJUSTMENT = 'ADMIN_ADJUSTMENT', 'Admin adjustment'

    class Status(models.TextChoices):
        PENDING = 'PENDING', 'Pending'
        COMPLETED = 'COMPLETED', 'Completed'
        FAILED = 'FAILED', 'Failed'
        REFUNDED = 'REFUNDED', 'Refunded'

    project = models.ForeignKey(Project, on_delete=models.PROTECT, related_name='transactions')
    milestone = models.ForeignKey(Milestone, on_delete=models.PROTECT, null=True, blank=True, related_name='transactions')
    dispute = models.ForeignKey('disputes.Dispute', on_delete=models.PROTECT, null=True, blank=True, related_name='transactions')
    type = models.CharField(max_length=20, choices=Type.choices)
    amount = models.PositiveBigIntegerField(help_text="Amount moved, in minor currency units")
    platform_fee = models.PositiveBigIntegerField(default=0)
    currency = models.CharField(max_length=3, default='USD')
    from_user = models.ForeignKey(User, on_delete=models.PROTECT, null=True, blank=True, related_name='outgoing_transactions')
    to_user = models.ForeignKey(User, on_delete=models.PROTECT, null=True, blank=True, related_name='incoming_transactions')
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    provider = models.CharField(max_length=50, blank=True)  # e.g., 'stripe', 'chapa'
    provider_transaction_id = models.CharField(max_length=255, blank=True)
    failure_reason = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['created_at', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['milestone'],
                condition=Q(type='MILESTONE_RELEASE', status='COMPLETED'),
                name='one_completed_release_per_milestone',
            ),
            models.UniqueConstraint(
                fields=['dispute', 'type'],
                condition=Q(status='COMPLETED', dispute__isnull=False),
                name='one_completed_leg_per_dispute',
            ),
        ]

    def __str__(self):
        return f"{self.type} of {self.amount} {self.currency} for {self.project} [{self.status}]"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_status = instance.status
        return instance

    def save(self, *args, **kwargs):
        loaded_status = getattr(self, '_loaded_status', None)
        if loaded_status is not None and loaded_status != self.Status.PENDING:
            raise InvalidState(f"Transaction {self.pk} is {loaded_status} and can no longer change.")
        super().save(*args, **kwargs)
        self._loaded_status = self.status

    def mark_completed(self, provider_transaction_id=''):
        if self.status != self.Status.PENDING:
            raise InvalidState(f"Transaction {self.pk} is already {self.status}.")
        self.status = self.Status.COMPLETED
        self.provider_transaction_id = provider_transaction_id or ''
        self.completed_at = timezone.now()
        self.save(update_fields=['status', 'provider_transaction_id', 'completed_at'])

    def mark_failed(self, reason):
        if self.status != self.Status.PENDING:
            raise InvalidState(f"Transaction {self.pk} is already {self.status}.")
        self.status = self.Status.FAILED
        self.failure_reason = reason
        self.save(update_fields=['status', 'failure_reason'])


class PayoutMethod(models.Model):
    """
    Where a user receives money. ``account_reference`` is what the provider
    transfers to (a Stripe Connect ``acct_...`` id, or a bank account number
    for Chapa with the bank details in ``details``).
    """
    PROVIDER_CHOICES = (
        ('stripe', 'Stripe'),
        ('chapa', 'Chapa'),
    )

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='payout_methods')
    provider = models.CharField(max_length=20, choices=PROVIDER_CHOICES)
    account_reference = models.CharField(max_length=255)
    details = models.JSONField(default=dict, blank=True)

    is_default = models.BooleanField(default=False)
    is_verified = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Payout Method"
        verbose_name_plural = "Payout Methods"

    def __str__(self):
        return f"{self.user.email} - {self.provider} ({self.account_reference})"


auditlog.register(Transaction)
auditlog.register(PayoutMethod, exclude_fields=['details', 'updated_at'])
