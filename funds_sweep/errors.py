"""
Sweep Errors

Failure taxonomy for the sweep pipeline. Every error carries a stable
``kind`` used by callers and by the HTTP layer to pick a status code.
"""

from decimal import Decimal
from typing import Dict, List, Optional


class SweepError(Exception):
    """Base class for all sweep failures"""

    kind = "sweep_error"
    http_status = 500

    def __init__(self, message: str, balance: Optional[Decimal] = None):
        super().__init__(message)
        self.message = message
        self.balance = balance

    def to_dict(self) -> Dict:
        data = {
            'success': False,
            'error': self.kind,
            'message': self.message,
        }
        if self.balance is not None:
            data['balance'] = str(self.balance)
        return data


class EndpointUnreachable(SweepError):
    """No endpoint candidate answered the liveness probe"""

    kind = "endpoint_unreachable"
    http_status = 503

    def __init__(self, message: str, attempts: Optional[List] = None):
        super().__init__(message)
        self.attempts = attempts or []

    def to_dict(self) -> Dict:
        data = super().to_dict()
        data['attempts'] = [attempt.to_dict() for attempt in self.attempts]
        return data


class SignerNotConfigured(SweepError):
    kind = "signer_not_configured"
    http_status = 503


class InsufficientBalanceForFees(SweepError):
    kind = "insufficient_balance_for_fees"
    http_status = 400


class InsufficientBalanceAfterReserve(SweepError):
    kind = "insufficient_balance_after_reserve"
    http_status = 400


class InvalidDestination(SweepError):
    kind = "invalid_destination"
    http_status = 400


class BalanceQueryFailure(SweepError):
    kind = "balance_query_failed"
    http_status = 502


class SubmissionFailure(SweepError):
    kind = "submission_failed"
    http_status = 502


class ConfirmationFailure(SweepError):
    kind = "confirmation_failed"
    http_status = 502


class TransferPending(SweepError):
    kind = "transfer_pending"
    http_status = 409
