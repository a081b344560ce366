from django.db import models
from django.db.models import F, Q
from auditlog.registry import auditlog

from projects.models import Project


class EscrowQuerySet(models.QuerySet):
    def locked(self):
        return self.select_for_update()


class Escrow(models.Model):
    """Per-project ledger row. ``total_held == total_released + remaining`` at all times."""

    project = models.OneToOneField(Project, on_delete=models.CASCADE, related_name='escrow')
    total_held = models.PositiveBigIntegerField(default=0)
    total_released = models.PositiveBigIntegerField(default=0)
    remaining = models.PositiveBigIntegerField(default=0)
    currency = models.CharField(max_length=3, default='USD')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = EscrowQuerySet.as_manager()

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=Q(total_held=F('total_released') + F('remaining')),
                name='escrow_balance_conserved',
            ),
        ]

    def __str__(self):
        return f"Escrow for {self.project.title} ({self.remaining}/{self.total_held} {self.currency})"

    @property
    def status(self):
        if self.total_held == 0:
            return 'pending_funding'
        if self.remaining == 0:
            return 'released'
        if self.total_released > 0:
            return 'partially_released'
        return 'funded'

    @property
    def is_balanced(self):
        return self.total_held == self.total_released + self.remaining


auditlog.register(Escrow, exclude_fields=['updated_at'])
