from abc import ABC, abstractmethod
from decimal import Decimal

# ISO 4217 exponents that differ from the usual two decimal places.
CURRENCY_EXPONENTS = {
    'BIF': 0, 'CLP': 0, 'JPY': 0, 'KRW': 0, 'PYG': 0, 'RWF': 0,
    'UGX': 0, 'VND': 0, 'XAF': 0, 'XOF': 0,
    'BHD': 3, 'JOD': 3, 'KWD': 3, 'OMR': 3, 'TND': 3,
}


def currency_exponent(currency: str) -> int:
    return CURRENCY_EXPONENTS.get((currency or '').upper(), 2)


def to_major_units(amount_minor_units: int, currency: str) -> Decimal:
    """Convert an integer minor-unit amount into a Decimal in the currency's major unit."""
    exponent = currency_exponent(currency)
    return (Decimal(amount_minor_units) / (10 ** exponent)).quantize(Decimal(1).scaleb(-exponent))


class ProviderError(Exception):
    """Raised by a provider when a transfer could not be completed."""


class TransferReceipt:
    """Container for a completed provider transfer"""
    def __init__(self, provider_transaction_id: str, amount_transferred: int):
        self.provider_transaction_id = provider_transaction_id
        self.amount_transferred = amount_transferred

    def __repr__(self):
        return (
            f"TransferReceipt(provider_transaction_id={self.provider_transaction_id!r}, "
            f"amount_transferred={self.amount_transferred})"
        )


class BasePaymentProvider(ABC):
    """
    Abstract base class for all payment providers.
    Defines the common interface that all payment providers must implement.
    """
    name = None
    # None means every currency the platform accepts.
    supported_currencies = None

    @classmethod
    def supports_currency(cls, currency: str) -> bool:
        return cls.supported_currencies is None or (currency or '').upper() in cls.supported_currencies

    def __init__(self, **kwargs):
        """Initialize the payment provider with configuration."""
        self.config = kwargs

    @abstractmethod
    def transfer(self, destination_account_ref: str, amount_minor_units: int, **kwargs) -> TransferReceipt:
        """
        Move money to a payee's account.

        Args:
            destination_account_ref: Provider-side account reference of the payee
            amount_minor_units: Amount to transfer, in minor currency units
            **kwargs: ``currency`` (ISO code of the amount) and provider specific
                extras (reference, details, metadata)

        Returns:
            TransferReceipt for the completed transfer

        Raises:
            ProviderError: the provider rejected or could not process the transfer
        """
        pass
