from .base import BasePaymentProvider, ProviderError, TransferReceipt
from .chapa import ChapaProvider
from .stripe import StripeProvider

PROVIDERS = {
    'chapa': ChapaProvider,
    'stripe': StripeProvider,
}


def get_provider_class(provider_name: str):
    if provider_name not in PROVIDERS:
        raise ValueError(f"Unknown payment provider: {provider_name}")
    return PROVIDERS[provider_name]


def get_payment_provider(provider_name: str, **kwargs) -> BasePaymentProvider:
    """
    Factory function to get payment provider instances.

    Args:
        provider_name: Name of the payment provider
        **kwargs: Additional configuration

    Returns:
        BasePaymentProvider: Payment provider instance
    """
    return get_provider_class(provider_name)(**kwargs)
