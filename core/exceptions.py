"""
Error taxonomy for the settlement core.

Every error is a DRF ``APIException`` so views can let them propagate and the
framework renders the status code. Malformed input, missing entities and
permission failures reuse DRF's own ``ValidationError``, ``NotFound`` and
``PermissionDenied``.
"""

from rest_framework import status
from rest_framework.exceptions import APIException, NotFound, PermissionDenied, ValidationError

__all__ = [
    'AlreadyInvoiced',
    'AlreadySettled',
    'ConcurrentModification',
    'EarningAlreadyPaid',
    'InvalidTransition',
    'InvoiceAlreadySettled',
    'NotFound',
    'PermissionDenied',
    'ValidationError',
]


class InvalidTransition(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Invalid status transition.'
    default_code = 'invalid_transition'

    def __init__(self, source, target, detail=None):
        self.source = source
        self.target = target
        if detail is None:
            detail = f"Cannot transition from {source} to {target}"
        super().__init__(detail)


class AlreadyInvoiced(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'An invoice already exists for this campaign and period.'
    default_code = 'already_invoiced'


class AlreadySettled(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Earnings for this partner and period have already been settled.'
    default_code = 'already_settled'


class EarningAlreadyPaid(AlreadySettled):
    default_detail = 'This earning has already been paid.'
    default_code = 'earning_already_paid'


class InvoiceAlreadySettled(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Invoice is already paid; issue a refund or credit instead.'
    default_code = 'invoice_already_settled'


class ConcurrentModification(APIException):
    """Lost an optimistic race; safe to retry against the fresh state."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The record was modified concurrently. Retry the request.'
    default_code = 'concurrent_modification'
