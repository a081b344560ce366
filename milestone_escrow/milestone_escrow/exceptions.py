"""
Error taxonomy shared by the escrow, milestone and dispute services.

Every member carries a stable ``default_code`` which the exception handler
exposes as the ``error`` tag of the response body, so callers can tell
exactly which rule rejected the request.
"""
from rest_framework import status
from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.http import Http404
from rest_framework.exceptions import APIException, PermissionDenied
from rest_framework.views import exception_handler


class EscrowError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'The request could not be processed.'
    default_code = 'escrow_error'


class NotFound(EscrowError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'The referenced resource does not exist.'
    default_code = 'not_found'


class Forbidden(EscrowError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'You are not allowed to perform this action.'
    default_code = 'forbidden'


class InvalidState(EscrowError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'This transition is not allowed from the current status.'
    default_code = 'invalid_state'


class ContentRejected(EscrowError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = 'The submitted content was rejected by moderation.'
    default_code = 'content_rejected'

    def __init__(self, detail=None, reasons=None):
        super().__init__(detail)
        self.reasons = list(reasons or [])


class PayoutAccountMissing(EscrowError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The payee has no payout account.'
    default_code = 'payout_account_missing'


class ConservationViolation(EscrowError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = 'The amounts do not add up.'
    default_code = 'conservation_violation'


class ProviderFailure(EscrowError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'The payment provider could not complete the transfer.'
    default_code = 'provider_failure'

    def __init__(self, detail=None, transaction=None):
        super().__init__(detail)
        self.transaction = transaction


def tagged_exception_handler(exc, context):
    response = exception_handler(exc, context)
    if response is None:
        return None

    if isinstance(exc, EscrowError):
        response.data = {
            'error': exc.default_code,
            'detail': exc.detail,
        }
        if isinstance(exc, ContentRejected) and exc.reasons:
            response.data['reasons'] = exc.reasons
        if isinstance(exc, ProviderFailure) and exc.transaction is not None:
            response.data['transaction_id'] = exc.transaction.pk
    elif isinstance(exc, Http404):
        response.data['error'] = NotFound.default_code
    elif isinstance(exc, (PermissionDenied, DjangoPermissionDenied)):
        response.data['error'] = Forbidden.default_code
    elif isinstance(response.data, dict):
        response.data.setdefault('error', getattr(exc, 'default_code', 'error'))
    return response
