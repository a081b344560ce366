import stripe
import logging
from .base import BasePaymentProvider, ProviderError, TransferReceipt
from django.conf import settings

logger = logging.getLogger(__name__)


class StripeProvider(BasePaymentProvider):
    """
    Stripe Connect transfers to payee accounts (``acct_...``).
    """
    name = 'stripe'

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        stripe.api_key = settings.STRIPE_SECRET_KEY
        self.default_currency = getattr(settings, 'STRIPE_CURRENCY', 'usd')

    def transfer(self, destination_account_ref, amount_minor_units, **kwargs):
        """
        Create a Stripe Transfer to a connected account.

        Args:
            destination_account_ref: Stripe Connect account ID
            amount_minor_units: Amount in the smallest currency unit
            **kwargs: ``currency`` of the amount (falls back to STRIPE_CURRENCY),
                ``reference`` (used as idempotency key) and ``metadata``

        Returns:
            TransferReceipt
        """
        reference = kwargs.get('reference')
        currency = (kwargs.get('currency') or self.default_currency).lower()
        try:
            transfer = stripe.Transfer.create(
                amount=amount_minor_units,
                currency=currency,
                destination=destination_account_ref,
                transfer_group=reference,
                metadata=kwargs.get('metadata') or {},
                idempotency_key=reference,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe transfer to {destination_account_ref} failed: {str(e)}")
            raise ProviderError(f"Stripe transfer failed: {getattr(e, 'user_message', None) or str(e)}") from e

        logger.info(f"Stripe transfer {transfer.id} created: {amount_minor_units} {currency} to {destination_account_ref}")
        return TransferReceipt(
            provider_transaction_id=transfer.id,
            amount_transferred=transfer.amount,
        )
