"""
Funds Sweep Orchestrator

Moves native currency from a funded signing key to a destination address
while keeping a fee reserve behind.

Components:
- endpoint_selector: Ordered RPC endpoint failover with liveness probes
- session: Lazy, idempotent session bootstrap (endpoint + signer)
- transfer_engine: Balance read, reserve clamp, submit and confirm
- network_client: web3.py adapter for reads, signing and receipts
- sweep_config: YAML + environment configuration
- api: FastAPI routes (transfer, balance, status, health)

Pipeline:
1. Balance Read - Point-in-time balance of the signer
2. Reserve Check - Fail if balance is below the fee reserve
3. Amount Clamp - min(requested, balance - reserve)
4. Submit - Sign locally and broadcast
5. Confirm - Wait for one confirmation
"""

from .errors import (
    SweepError,
    EndpointUnreachable,
    SignerNotConfigured,
    InsufficientBalanceForFees,
    InsufficientBalanceAfterReserve,
    InvalidDestination,
    BalanceQueryFailure,
    SubmissionFailure,
    ConfirmationFailure,
    TransferPending,
)
from .endpoint_selector import (
    EndpointProbe,
    EndpointSelection,
    select_endpoint,
)
from .session import (
    Session,
    SessionManager,
)
from .transfer_engine import (
    SweepTransferEngine,
    TransferRequest,
    TransferResult,
    BalanceReport,
    compute_transfer_amount,
    graceful_shutdown,
)
from .sweep_config import (
    SweepConfig,
    load_config,
)

__all__ = [
    # Main engine
    'SweepTransferEngine',
    'TransferRequest',
    'TransferResult',
    'BalanceReport',
    'compute_transfer_amount',
    'graceful_shutdown',

    # Endpoint selection
    'EndpointProbe',
    'EndpointSelection',
    'select_endpoint',

    # Session
    'Session',
    'SessionManager',

    # Configuration
    'SweepConfig',
    'load_config',

    # Errors
    'SweepError',
    'EndpointUnreachable',
    'SignerNotConfigured',
    'InsufficientBalanceForFees',
    'InsufficientBalanceAfterReserve',
    'InvalidDestination',
    'BalanceQueryFailure',
    'SubmissionFailure',
    'ConfirmationFailure',
    'TransferPending',
]

__version__ = '1.0.0'
__description__ = 'Endpoint-failover funds sweep with fee reserve'
