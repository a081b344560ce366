from decimal import Decimal, ROUND_DOWN
from django.conf import settings
from django.db.models import Sum
from .providers import ProviderError, get_payment_provider
from .models import PayoutMethod, Transaction
from escrow.services import EscrowLedger
from projects.activity import record_activity
from milestone_escrow.exceptions import ConservationViolation, InvalidState, PayoutAccountMissing
import logging

logger = logging.getLogger(__name__)


def compute_fee(amount: int, fee_rate) -> tuple:
    """
    Split ``amount`` into ``(fee, net)``. The fee is rounded down to a whole
    minor unit so ``fee + net == amount`` exactly.
    """
    rate = Decimal(str(fee_rate))
    if rate < 0 or rate > 1:
        raise ValueError(f"Fee rate must be between 0 and 1, got {rate}")
    fee = int((Decimal(amount) * rate).to_integral_value(rounding=ROUND_DOWN))
    return fee, amount - fee


def unpaid_amount(milestone) -> int:
    """
    The part of a milestone's amount the freelancer has not received yet.
    A dispute settled with a split pays the freelancer's share up front, so
    reworking and approving that milestone only owes the rest.
    """
    paid = Transaction.objects.filter(
        milestone=milestone,
        type=Transaction.Type.DISPUTE_PAYMENT,
        status=Transaction.Status.COMPLETED,
    ).aggregate(total=Sum('amount'))['total'] or 0
    return max(milestone.amount - paid, 0)


class PaymentReleaseEngine:
    """
    Moves money out of escrow. Every method runs inside the caller's atomic
    block with the project, milestone and escrow rows already locked.

    A provider failure never raises from here: the Transaction is marked
    FAILED and returned so the caller can commit that record and then report
    the failure. The escrow ledger only changes after a successful transfer.
    """

    def __init__(self, provider=None, ledger=None):
        self._provider = provider
        self.ledger = ledger or EscrowLedger()

    @property
    def provider(self):
        if self._provider is None:
            self._provider = get_payment_provider(settings.PAYMENT_PROVIDER)
        return self._provider

    @property
    def provider_name(self):
        return getattr(self.provider, 'name', None) or settings.PAYMENT_PROVIDER

    def get_payout_account(self, user):
        """
        The user's preferred active payout method for the configured provider.
        """
        if user is None:
            return None
        return PayoutMethod.objects.filter(
            user=user,
            provider=self.provider_name,
            is_active=True,
        ).order_by('-is_default', '-created_at').first()

    def _require_payout_account(self, user):
        account = self.get_payout_account(user)
        if account is None:
            raise PayoutAccountMissing(
                f"{getattr(user, 'email', 'The payee')} has no active {self.provider_name} payout account."
            )
        return account

    def _transfer(self, record: Transaction, account: PayoutMethod, metadata: dict) -> Transaction:
        reference = f"escrow-{record.type.lower()}-{record.id}"
        if record.amount == 0:
            record.mark_completed(reference)
            return record
        try:
            receipt = self.provider.transfer(
                account.account_reference,
                record.amount,
                currency=record.currency,
                reference=reference,
                details=account.details,
                metadata=metadata,
            )
        except ProviderError as e:
            logger.error(f"Transfer for transaction {record.id} failed: {str(e)}")
            record.mark_failed(str(e))
            return record

        if receipt.amount_transferred != record.amount:
            reason = (
                f"Provider reported {receipt.amount_transferred} transferred "
                f"instead of {record.amount} (provider id {receipt.provider_transaction_id})"
            )
            logger.error(f"Transfer for transaction {record.id} mismatched: {reason}")
            record.mark_failed(reason)
            return record

        record.mark_completed(receipt.provider_transaction_id)
        return record

    def release_milestone(self, *, project, escrow, milestone, actor=None) -> Transaction:
        """
        Pay the unpaid part of the milestone amount, less the platform fee, to
        the freelancer. For a milestone never disputed that is the full amount.

        Returns the Transaction, COMPLETED or FAILED. Raises before any
        record is written when the escrow is short or the freelancer has no
        payout account.
        """
        due = unpaid_amount(milestone)
        if due > escrow.remaining:
            raise InvalidState(
                f"Escrow balance {escrow.remaining} is below the {due} still owed for milestone {milestone.id}."
            )
        account = self._require_payout_account(project.freelancer)
        fee, net = compute_fee(due, project.effective_fee_rate)

        record = Transaction.objects.create(
            project=project,
            milestone=milestone,
            type=Transaction.Type.MILESTONE_RELEASE,
            amount=net,
            platform_fee=fee,
            currency=milestone.currency,
            to_user=project.freelancer,
            provider=self.provider_name,
        )
        self._transfer(record, account, {
            'project_id': str(project.id),
            'milestone_id': str(milestone.id),
        })

        if record.status == Transaction.Status.FAILED:
            record_activity(
                project, 'PAYMENT_RELEASE_FAILED', actor=actor,
                milestone_id=milestone.id, transaction_id=record.id,
                amount=due, reason=record.failure_reason,
            )
            return record

        self.ledger.release(escrow, due)
        record_activity(
            project, 'PAYMENT_RELEASED', actor=actor,
            milestone_id=milestone.id, transaction_id=record.id,
            amount=due, platform_fee=fee, net_amount=net,
            provider_transaction_id=record.provider_transaction_id,
        )
        logger.info(f"Released {net} (+{fee} fee) for milestone {milestone.id} of project {project.id}")
        return record

    def settle_dispute(self, *, project, escrow, milestone, dispute,
                       amount_to_freelancer: int, amount_to_client: int, actor=None) -> list:
        """
        Pay out a dispute split. The freelancer leg is a DISPUTE_PAYMENT with
        no platform fee; the client leg is a DISPUTE_REFUND. Legs already
        COMPLETED for this dispute are not paid again, so a retry after a
        partial failure only pays the missing leg.

        Returns the transactions for this dispute's legs. Stops at the first
        failed leg and returns it last.
        """
        if amount_to_freelancer < 0 or amount_to_client < 0:
            raise ConservationViolation("Settlement amounts cannot be negative.")
        if amount_to_freelancer + amount_to_client != dispute.amount_in_dispute:
            raise ConservationViolation(
                f"Settlement of {amount_to_freelancer} + {amount_to_client} does not equal "
                f"the disputed amount {dispute.amount_in_dispute}."
            )

        legs = [
            (Transaction.Type.DISPUTE_PAYMENT, project.freelancer, amount_to_freelancer),
            (Transaction.Type.DISPUTE_REFUND, project.client, amount_to_client),
        ]
        completed = {
            record.type: record
            for record in Transaction.objects.filter(dispute=dispute, status=Transaction.Status.COMPLETED)
        }

        pending = []
        for leg_type, payee, amount in legs:
            if leg_type in completed:
                if completed[leg_type].amount != amount:
                    raise InvalidState(
                        f"The {leg_type} leg of dispute {dispute.id} was already paid "
                        f"with {completed[leg_type].amount}."
                    )
                continue
            if amount > 0:
                pending.append((leg_type, payee, amount))

        accounts = [self._require_payout_account(payee) for _, payee, _ in pending]

        outstanding = sum(amount for _, _, amount in pending)
        if outstanding > escrow.remaining:
            raise InvalidState(
                f"Escrow balance {escrow.remaining} is below the outstanding settlement of {outstanding}."
            )

        results = list(completed.values())
        for (leg_type, payee, amount), account in zip(pending, accounts):
            record = Transaction.objects.create(
                project=project,
                milestone=milestone,
                dispute=dispute,
                type=leg_type,
                amount=amount,
                currency=milestone.currency,
                to_user=payee,
                provider=self.provider_name,
            )
            self._transfer(record, account, {
                'project_id': str(project.id),
                'dispute_id': str(dispute.id),
            })
            results.append(record)

            if record.status == Transaction.Status.FAILED:
                record_activity(
                    project, 'DISPUTE_SETTLEMENT_FAILED', actor=actor,
                    dispute_id=dispute.id, transaction_id=record.id,
                    leg=leg_type, amount=amount, reason=record.failure_reason,
                )
                return results

            self.ledger.release(escrow, amount)
            record_activity(
                project, 'DISPUTE_SETTLEMENT_PAID', actor=actor,
                dispute_id=dispute.id, transaction_id=record.id, leg=leg_type, amount=amount,
            )

        logger.info(
            f"Dispute {dispute.id} settled: {amount_to_freelancer} to freelancer, {amount_to_client} to client"
        )
        return results
