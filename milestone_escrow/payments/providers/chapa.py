import requests
import logging
from .base import BasePaymentProvider, ProviderError, TransferReceipt, to_major_units
from django.conf import settings

logger = logging.getLogger(__name__)


class ChapaProvider(BasePaymentProvider):
    name = 'chapa'
    supported_currencies = ('ETB', 'USD')

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.secret_key = settings.CHAPA_SECRET_KEY
        self.base_url = settings.CHAPA_BASE_URL
        self.timeout = settings.PAYMENT_PROVIDER_TIMEOUT

    def transfer(self, destination_account_ref, amount_minor_units, **kwargs):
        """
        Transfer funds to a bank account via Chapa.

        Args:
            destination_account_ref: Recipient's account number
            amount_minor_units: Amount in minor units; Chapa expects major units
            **kwargs: ``currency`` (ETB or USD, default ETB), ``details`` with
                account_name and bank_code, and ``reference``

        Returns:
            TransferReceipt
        """
        details = kwargs.get('details') or {}
        reference = kwargs.get('reference')
        currency = (kwargs.get('currency') or 'ETB').upper()
        if not self.supports_currency(currency):
            raise ProviderError(f"Chapa does not pay out in {currency}")
        if not details.get('account_name') or not details.get('bank_code'):
            raise ProviderError("Chapa payout method is missing account_name or bank_code")

        amount = to_major_units(amount_minor_units, currency)
        payload = {
            "account_name": details['account_name'],
            "account_number": destination_account_ref,
            "amount": str(amount),
            "currency": currency,
            "reference": reference,
            "bank_code": int(details['bank_code']),
        }
        headers = {
            'Authorization': f'Bearer {self.secret_key}',
            'Content-Type': 'application/json'
        }

        logger.info(f"Initiating Chapa transfer: {amount} {currency} to {details['account_name']} ({destination_account_ref})")

        try:
            response = requests.post(f"{self.base_url}/transfers", json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Chapa transfer API request failed: {str(e)}")
            raise ProviderError(f"Chapa transfer request failed: {str(e)}") from e
        except ValueError as e:
            logger.error(f"Chapa transfer returned an unreadable response: {str(e)}")
            raise ProviderError("Chapa transfer returned an unreadable response") from e

        if data.get('status') != 'success':
            raise ProviderError(f"Chapa rejected the transfer: {data.get('message', 'unknown error')}")

        transfer_id = (data.get('data') or {}).get('transfer_id') or reference
        logger.info(f"Chapa transfer initiated successfully. Reference: {reference}")
        return TransferReceipt(
            provider_transaction_id=str(transfer_id),
            amount_transferred=amount_minor_units,
        )
