from django.db import transaction
from django.db.models import Sum
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from .models import Escrow
from payments.models import Transaction
from projects.activity import record_activity
from projects.models import Project
from milestone_escrow.exceptions import Forbidden, InvalidState, NotFound
import logging

logger = logging.getLogger(__name__)


class EscrowLedger:
    """
    Arithmetic on a single escrow row. Callers hold the row lock
    (``Escrow.objects.locked()``) inside the surrounding atomic block.
    """

    def deposit(self, escrow: Escrow, amount: int) -> Escrow:
        if amount <= 0:
            raise InvalidState("Deposit amount must be positive.")
        escrow.total_held += amount
        escrow.remaining += amount
        escrow.save(update_fields=['total_held', 'remaining', 'updated_at'])
        logger.info(f"Escrow {escrow.id} credited {amount}; remaining {escrow.remaining}")
        return escrow

    def release(self, escrow: Escrow, amount: int) -> Escrow:
        if amount <= 0:
            raise InvalidState("Release amount must be positive.")
        if amount > escrow.remaining:
            raise InvalidState(
                f"Escrow balance {escrow.remaining} is below the requested release of {amount}."
            )
        escrow.remaining -= amount
        escrow.total_released += amount
        escrow.save(update_fields=['remaining', 'total_released', 'updated_at'])
        logger.info(f"Escrow {escrow.id} debited {amount}; remaining {escrow.remaining}")
        return escrow


def refunded_to_client(project) -> int:
    return Transaction.objects.filter(
        project=project,
        type__in=(Transaction.Type.DISPUTE_REFUND, Transaction.Type.REFUND),
        status=Transaction.Status.COMPLETED,
    ).aggregate(total=Sum('amount'))['total'] or 0


def lock_escrow(project_id) -> Escrow:
    try:
        return Escrow.objects.locked().get(project_id=project_id)
    except Escrow.DoesNotExist:
        raise NotFound("Escrow not found for this project.")


class EscrowService:
    def __init__(self, ledger=None):
        self.ledger = ledger or EscrowLedger()

    def fund_project(self, *, user, project_id, amount: int, provider_reference=''):
        """
        Credit a deposit to the project's escrow and record it as a DEPOSIT transaction.
        Money held for the project, less what was refunded to the client, may
        never exceed the budget, so a refunded share can be deposited again
        for rework.
        """
        if amount <= 0:
            raise ValidationError({'amount': "Deposit amount must be positive."})
        with transaction.atomic():
            try:
                project = Project.objects.locked().get(pk=project_id)
            except Project.DoesNotExist:
                raise NotFound("Project not found.")

            if user.id != project.client_id:
                raise Forbidden("Only the project client can fund the escrow.")
            if project.status in ('completed', 'cancelled'):
                raise InvalidState(f"Cannot fund a {project.status} project.")

            escrow = lock_escrow(project.id)
            committed = escrow.total_held - refunded_to_client(project)
            if committed + amount > project.budget:
                raise InvalidState(
                    f"Funding of {amount} would exceed the project budget of {project.budget} "
                    f"({committed} already committed)."
                )

            self.ledger.deposit(escrow, amount)
            deposit = Transaction.objects.create(
                project=project,
                type=Transaction.Type.DEPOSIT,
                amount=amount,
                currency=project.currency,
                from_user=user,
                status=Transaction.Status.COMPLETED,
                completed_at=timezone.now(),
                provider_transaction_id=provider_reference,
                provider='escrow',
            )

            record_activity(
                project, 'ESCROW_FUNDED', actor=user,
                amount=amount, transaction_id=deposit.id, remaining=escrow.remaining,
            )

        return escrow
