"""
Sweep Transfer Engine

Moves native currency out of the signer account while keeping a fee
reserve behind:
1. Balance read
2. Reserve check
3. Amount clamp (min of requested and balance - reserve)
4. Submit
5. Wait for one confirmation

Steps 1-5 run under a per-signer lock so only one transfer pipeline is in
flight per account. A transfer whose confirmation wait ran out is
remembered, and the signer stays blocked until that transaction is mined.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Deque, Dict, List, Optional

from loguru import logger
from web3 import Web3

from .errors import (
    BalanceQueryFailure,
    ConfirmationFailure,
    InsufficientBalanceAfterReserve,
    InsufficientBalanceForFees,
    InvalidDestination,
    SubmissionFailure,
    SweepError,
    TransferPending,
)
from .session import Session, SessionManager


MAX_WEI = 2 ** 256 - 1


def to_wei(amount_eth: Decimal) -> int:
    return int(Web3.to_wei(amount_eth, 'ether'))


def from_wei(amount_wei: int) -> Decimal:
    return Decimal(Web3.from_wei(amount_wei, 'ether'))


def parse_amount(raw, default: Decimal) -> Decimal:
    """
    Parse a requested ETH amount

    Absent, unparsable, non-finite, non-positive or sub-wei values fall
    back to default. Amounts above the largest representable wei value are
    capped there, so the clamp still sends balance - reserve.
    """
    if raw is None or isinstance(raw, bool):
        return default
    try:
        amount = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        logger.debug(f"Unparsable amount {raw!r}, using default {default}")
        return default
    if not amount.is_finite() or amount <= 0:
        logger.debug(f"Rejected amount {raw!r}, using default {default}")
        return default
    max_amount = from_wei(MAX_WEI)
    if amount > max_amount:
        logger.debug(f"Amount {raw!r} is above {max_amount}, capping")
        return max_amount
    if to_wei(amount) <= 0:
        logger.debug(f"Amount {raw!r} is below 1 wei, using default {default}")
        return default
    return amount


def normalize_destination(address: Optional[str]) -> str:
    """Validate an EVM address and return its checksummed form"""
    if not address:
        raise InvalidDestination("No destination address given and no default destination configured")
    address = str(address).strip()
    if not Web3.is_address(address):
        raise InvalidDestination(f"Invalid destination address: {address}")
    return Web3.to_checksum_address(address)


def compute_transfer_amount(balance_wei: int, requested_wei: int, reserve_wei: int) -> int:
    """
    Largest amount that can be sent while leaving reserve_wei behind

    Raises:
        InsufficientBalanceForFees: balance below the reserve
        InsufficientBalanceAfterReserve: nothing left to send after the reserve
    """
    if balance_wei < reserve_wei:
        balance = from_wei(balance_wei)
        raise InsufficientBalanceForFees(
            f"Insufficient balance for fees: balance {balance} ETH is below the "
            f"{from_wei(reserve_wei)} ETH fee reserve",
            balance=balance
        )

    amount_wei = min(requested_wei, balance_wei - reserve_wei)
    if amount_wei <= 0:
        balance = from_wei(balance_wei)
        raise InsufficientBalanceAfterReserve(
            f"Insufficient balance after reserve: balance {balance} ETH leaves nothing "
            f"to send after the {from_wei(reserve_wei)} ETH fee reserve",
            balance=balance
        )

    return amount_wei


@dataclass
class TransferRequest:
    """Transfer request"""
    requested_amount: Decimal
    destination: str
    requested_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class TransferResult:
    """Transfer result"""
    success: bool
    requested_amount: Decimal
    destination_address: Optional[str]
    sender_address: Optional[str] = None
    transaction_hash: Optional[str] = None
    amount_sent: Decimal = Decimal(0)
    confirming_block: Optional[int] = None
    fee_paid: Optional[Decimal] = None
    endpoint: Optional[str] = None
    balance: Optional[Decimal] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    total_time_seconds: float = 0.0
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Decimal):
                data[key] = str(value)
        if self.completed_at:
            data['completed_at'] = self.completed_at.isoformat()
        return data


@dataclass
class BalanceReport:
    """Point-in-time balance of the signer account"""
    address: str
    balance_wei: int
    endpoint: str

    @property
    def balance(self) -> Decimal:
        return from_wei(self.balance_wei)

    def to_dict(self) -> Dict:
        return {
            'address': self.address,
            'balance': str(self.balance),
            'balance_wei': str(self.balance_wei),
            'endpoint': self.endpoint,
        }


class SweepTransferEngine:
    """
    Balance-reserve-and-transfer orchestrator

    Safety Features:
    1. Fee reserve kept behind on every transfer
    2. Destination validated and checksummed before any write
    3. Per-signer serialization of read, clamp, submit and confirm
    4. Bounded submission and confirmation waits
    5. Typed failures with a stable kind
    """

    DEFAULT_AMOUNT_ETH = Decimal('0.01')
    FEE_RESERVE_ETH = Decimal('0.002')

    SUBMIT_TIMEOUT_SECONDS = 60.0
    CONFIRMATION_TIMEOUT_SECONDS = 180.0
    REQUIRED_CONFIRMATIONS = 1

    MAX_HISTORY = 50

    def __init__(
        self,
        session_manager: SessionManager,
        fee_reserve_eth: Optional[Decimal] = None,
        default_amount_eth: Optional[Decimal] = None,
        default_destination: Optional[str] = None,
        submit_timeout: Optional[float] = None,
        confirmation_timeout: Optional[float] = None
    ):
        """
        Initialize transfer engine

        Args:
            session_manager: Owner of the bound session
            fee_reserve_eth: Balance kept behind for fees
            default_amount_eth: Amount used when a request gives none
            default_destination: Destination used when a request gives none
            submit_timeout: Max seconds for signing + broadcast
            confirmation_timeout: Max seconds to wait for the receipt
        """
        self.session_manager = session_manager
        self.fee_reserve_eth = self.FEE_RESERVE_ETH if fee_reserve_eth is None else Decimal(fee_reserve_eth)
        self.default_amount_eth = self.DEFAULT_AMOUNT_ETH if default_amount_eth is None else Decimal(default_amount_eth)
        self.default_destination = default_destination
        self.submit_timeout = submit_timeout or self.SUBMIT_TIMEOUT_SECONDS
        self.confirmation_timeout = confirmation_timeout or self.CONFIRMATION_TIMEOUT_SECONDS

        self.fee_reserve_wei = to_wei(self.fee_reserve_eth)

        # signer address -> lock held for the whole pipeline
        self._signer_locks: Dict[str, asyncio.Lock] = {}
        # signer address -> hash of a submitted transfer not yet seen mined
        self._unconfirmed: Dict[str, str] = {}
        self.transfer_history: Deque[TransferResult] = deque(maxlen=self.MAX_HISTORY)

        logger.info("Sweep Transfer Engine initialized")
        logger.info(f"  Fee reserve: {self.fee_reserve_eth} ETH")
        logger.info(f"  Default amount: {self.default_amount_eth} ETH")
        logger.info(f"  Default destination: {default_destination or 'none'}")
        logger.info(f"  Timeouts: submit {self.submit_timeout}s, confirmation {self.confirmation_timeout}s")

    def build_request(self, amount=None, destination: Optional[str] = None) -> TransferRequest:
        """Apply defaults to raw caller input"""
        return TransferRequest(
            requested_amount=parse_amount(amount, self.default_amount_eth),
            destination=destination or self.default_destination
        )

    def _lock_for(self, address: str) -> asyncio.Lock:
        lock = self._signer_locks.get(address)
        if lock is None:
            lock = self._signer_locks[address] = asyncio.Lock()
        return lock

    def is_busy(self, address: Optional[str]) -> bool:
        lock = self._signer_locks.get(address) if address else None
        return bool(lock and lock.locked())

    async def _read_balance(self, session: Session, address: str) -> int:
        try:
            return await session.connection.get_balance(address)
        except Exception as e:
            raise BalanceQueryFailure(f"Balance query failed via {session.endpoint}: {e}")

    async def get_balance(self) -> BalanceReport:
        """
        Read-only balance query of the signer account

        Raises:
            EndpointUnreachable, SignerNotConfigured, BalanceQueryFailure
        """
        session = await self.session_manager.ensure_session()
        signer = session.require_signer()
        balance_wei = await self._read_balance(session, signer.address)
        return BalanceReport(address=signer.address, balance_wei=balance_wei, endpoint=session.endpoint)

    async def _submit(self, session: Session, signer, destination: str, amount_wei: int) -> str:
        try:
            return await asyncio.wait_for(
                session.connection.send_value(signer, destination, amount_wei),
                timeout=self.submit_timeout
            )
        except asyncio.TimeoutError:
            raise SubmissionFailure(f"Transfer submission timed out after {self.submit_timeout}s")
        except Exception as e:
            raise SubmissionFailure(f"Transfer submission failed: {e}")

    async def _confirm(self, session: Session, address: str, tx_hash: str):
        try:
            receipt = await asyncio.wait_for(
                session.connection.wait_for_confirmations(
                    tx_hash,
                    confirmations=self.REQUIRED_CONFIRMATIONS,
                    timeout=self.confirmation_timeout
                ),
                timeout=self.confirmation_timeout
            )
        except asyncio.TimeoutError:
            self._unconfirmed[address] = tx_hash
            raise ConfirmationFailure(
                f"No confirmation for {tx_hash} after {self.confirmation_timeout}s (may still be mined)"
            )
        except Exception as e:
            self._unconfirmed[address] = tx_hash
            raise ConfirmationFailure(f"Error waiting for confirmation of {tx_hash}: {e}")

        if not receipt.succeeded:
            raise ConfirmationFailure(f"Transfer {tx_hash} reverted in block {receipt.block_number}")

        return receipt

    async def _check_unconfirmed(self, session: Session, address: str) -> None:
        """Refuse to start while an earlier transfer of address is unmined"""
        tx_hash = self._unconfirmed.get(address)
        if tx_hash is None:
            return

        try:
            receipt = await asyncio.wait_for(
                session.connection.get_receipt(tx_hash),
                timeout=self.session_manager.probe_timeout
            )
        except Exception as e:
            raise TransferPending(f"Could not check earlier transfer {tx_hash}: {str(e) or type(e).__name__}")

        if receipt is None:
            raise TransferPending(f"Earlier transfer {tx_hash} is not confirmed yet")

        logger.info(f"✓ Earlier transfer {tx_hash} mined in block {receipt.block_number}")
        del self._unconfirmed[address]

    async def _run_pipeline(self, session: Session, request: TransferRequest, result: TransferResult) -> None:
        signer = session.require_signer()
        result.sender_address = signer.address
        result.endpoint = session.endpoint

        await self._check_unconfirmed(session, signer.address)

        # Step 1: Balance read
        balance_wei = await self._read_balance(session, signer.address)
        result.balance = from_wei(balance_wei)
        logger.info(f"  Balance: {result.balance} ETH")

        # Step 2 + 3: Reserve check and clamp
        amount_wei = compute_transfer_amount(
            balance_wei,
            to_wei(request.requested_amount),
            self.fee_reserve_wei
        )
        amount_eth = from_wei(amount_wei)
        if amount_wei < to_wei(request.requested_amount):
            logger.info(f"  Clamped {request.requested_amount} ETH -> {amount_eth} ETH (reserve {self.fee_reserve_eth} ETH)")

        # Step 4: Submit
        logger.info(f"Submitting {amount_eth} ETH to {result.destination_address}...")
        tx_hash = await self._submit(session, signer, result.destination_address, amount_wei)
        result.transaction_hash = tx_hash
        logger.info(f"✓ Transfer submitted: {tx_hash}")

        # Step 5: Confirm
        logger.info("Waiting for confirmation...")
        receipt = await self._confirm(session, signer.address, tx_hash)
        logger.info(f"✓ Transfer confirmed in block {receipt.block_number}")

        result.amount_sent = amount_eth
        result.confirming_block = receipt.block_number
        result.fee_paid = from_wei(receipt.fee_paid_wei)
        result.success = True

    async def transfer(self, request: TransferRequest) -> TransferResult:
        """
        Execute one sweep transfer

        Failures are returned as a TransferResult with success=False and
        error_kind set; nothing is retried.

        Args:
            request: Transfer request

        Returns:
            TransferResult
        """
        started = asyncio.get_running_loop().time()
        result = TransferResult(
            success=False,
            requested_amount=request.requested_amount,
            destination_address=request.destination
        )

        logger.info("Starting transfer")
        logger.info(f"  Requested: {request.requested_amount} ETH")
        logger.info(f"  To: {request.destination}")

        try:
            result.destination_address = normalize_destination(request.destination)

            session = await self.session_manager.ensure_session()
            signer = session.require_signer()

            async with self._lock_for(signer.address):
                await self._run_pipeline(session, request, result)

            logger.info(f"✅ Transfer completed: {result.amount_sent} ETH in block {result.confirming_block}")

        except SweepError as e:
            result.success = False
            result.error_kind = e.kind
            result.error_message = e.message
            if e.balance is not None:
                result.balance = e.balance
            logger.error(f"❌ Transfer failed [{e.kind}]: {e.message}")

        result.total_time_seconds = round(asyncio.get_running_loop().time() - started, 3)
        result.completed_at = datetime.now(timezone.utc)
        self.transfer_history.append(result)

        return result

    def recent_results(self, limit: int = 10) -> List[Dict]:
        return [r.to_dict() for r in list(self.transfer_history)[-limit:]]

    async def get_status(self) -> Dict:
        """Liveness summary of the bound session, without bootstrapping"""
        session = self.session_manager.session
        status = {
            'connected': session is not None,
            'endpoint': session.endpoint if session else None,
            'address': self.session_manager.signer_address,
            'signer_configured': self.session_manager.signer_address is not None,
            'busy': self.is_busy(self.session_manager.signer_address),
            'unconfirmed_transaction': self._unconfirmed.get(self.session_manager.signer_address),
            'fee_reserve': str(self.fee_reserve_eth),
            'default_amount': str(self.default_amount_eth),
            'default_destination': self.default_destination,
            'last_probe': [a.to_dict() for a in self.session_manager.last_attempts],
            'recent_transfers': self.recent_results(),
        }

        if session is not None:
            try:
                status['block_number'] = await asyncio.wait_for(
                    session.connection.block_number(),
                    timeout=self.session_manager.probe_timeout
                )
                status['chain_id'] = await asyncio.wait_for(
                    session.connection.chain_id(),
                    timeout=self.session_manager.probe_timeout
                )
                status['healthy'] = True
            except Exception as e:
                logger.warning(f"Status probe of {session.endpoint} failed: {e}")
                status['healthy'] = False
                status['error'] = str(e)[:200] or type(e).__name__
        else:
            status['healthy'] = False

        return status

    async def close(self):
        await self.session_manager.close()


async def graceful_shutdown(engine: SweepTransferEngine, timeout: float = 15.0):
    """
    Close the engine's session, waiting for an in-flight transfer

    Args:
        engine: SweepTransferEngine instance to shutdown
        timeout: Maximum time to wait (seconds)
    """
    logger.info("Starting graceful shutdown...")
    address = engine.session_manager.signer_address

    async def _drain_and_close():
        if address and engine.is_busy(address):
            logger.info("Waiting for in-flight transfer to finish...")
            async with engine._lock_for(address):
                await engine.close()
        else:
            await engine.close()

    try:
        await asyncio.wait_for(_drain_and_close(), timeout=timeout)
        logger.info("✓ Graceful shutdown complete")
    except asyncio.TimeoutError:
        logger.warning(f"Shutdown timeout after {timeout}s, closing session anyway")
        await engine.close()
