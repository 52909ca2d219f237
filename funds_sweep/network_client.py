"""
Network Client

Thin async adapter over web3.py. The rest of the package only talks to
the chain through Web3Connection, so tests can swap in a fake connection.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from aiohttp import ClientTimeout
from eth_account import Account
from eth_account.signers.local import LocalAccount
from loguru import logger
from web3 import AsyncWeb3
from web3.exceptions import TransactionNotFound


NATIVE_TRANSFER_GAS = 21000
RECEIPT_POLL_SECONDS = 2.0


@dataclass
class TransferReceipt:
    """Mined transfer receipt"""
    transaction_hash: str
    block_number: int
    gas_used: int
    fee_paid_wei: int
    status: int

    @property
    def succeeded(self) -> bool:
        return self.status == 1


def load_signer(private_key: Optional[str]) -> Optional[LocalAccount]:
    """
    Derive the signing identity from a hex private key (None if absent)

    Raises:
        ValueError: private_key is not a 32-byte hex key. The message
            never contains the key itself.
    """
    if not private_key:
        return None
    try:
        return Account.from_key(str(private_key).strip())
    except Exception as e:
        raise ValueError(
            f"PRIVATE_KEY is not a valid 32-byte hex private key ({type(e).__name__})"
        ) from None


class Web3Connection:
    """
    One connected RPC endpoint

    Operations:
    - block_number: liveness probe
    - get_balance: native balance in wei, pending spends included
    - send_value: sign locally and broadcast a native transfer
    - wait_for_confirmations: block until the transfer is mined
    - get_receipt: non-blocking receipt lookup
    """

    def __init__(self, endpoint: str, request_timeout: float = 30.0):
        self.endpoint = endpoint
        provider = AsyncWeb3.AsyncHTTPProvider(
            endpoint,
            request_kwargs={'timeout': ClientTimeout(total=request_timeout)}
        )
        self.web3 = AsyncWeb3(provider)
        self._chain_id: Optional[int] = None

    async def block_number(self) -> int:
        return await self.web3.eth.block_number

    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = await self.web3.eth.chain_id
        return self._chain_id

    async def get_balance(self, address: str, block_identifier: str = 'pending') -> int:
        return await self.web3.eth.get_balance(address, block_identifier)

    async def send_value(self, account: LocalAccount, destination: str, value_wei: int) -> str:
        """
        Sign and broadcast a native transfer

        Args:
            account: Local signing account
            destination: Checksummed destination address
            value_wei: Amount to send in wei

        Returns:
            Transaction hash (0x-prefixed hex)
        """
        eth = self.web3.eth
        nonce = await eth.get_transaction_count(account.address, 'pending')
        gas_price = await eth.gas_price
        chain_id = await self.chain_id()

        tx = {
            'from': account.address,
            'to': destination,
            'value': value_wei,
            'nonce': nonce,
            'gasPrice': gas_price,
            'chainId': chain_id,
        }

        try:
            tx['gas'] = await eth.estimate_gas(tx)
        except Exception as e:
            logger.debug(f"Gas estimation failed on {self.endpoint}, using {NATIVE_TRANSFER_GAS}: {e}")
            tx['gas'] = NATIVE_TRANSFER_GAS

        signed = account.sign_transaction(tx)
        tx_hash = await eth.send_raw_transaction(signed.raw_transaction)

        logger.debug(f"Broadcast nonce={nonce} gas={tx['gas']} gasPrice={gas_price} via {self.endpoint}")
        return self.web3.to_hex(tx_hash)

    async def wait_for_confirmations(
        self,
        tx_hash: str,
        confirmations: int = 1,
        timeout: float = 180.0
    ) -> TransferReceipt:
        """
        Wait until tx_hash has the requested number of confirmations

        The inclusion block counts as the first confirmation.
        """
        receipt = await self.web3.eth.wait_for_transaction_receipt(
            tx_hash,
            timeout=timeout,
            poll_latency=RECEIPT_POLL_SECONDS
        )
        block_number = receipt['blockNumber']

        while confirmations > 1:
            head = await self.block_number()
            if head - block_number + 1 >= confirmations:
                break
            await asyncio.sleep(RECEIPT_POLL_SECONDS)

        return self._to_receipt(tx_hash, receipt)

    async def get_receipt(self, tx_hash: str) -> Optional[TransferReceipt]:
        """Receipt of tx_hash, or None while it is not mined"""
        try:
            receipt = await self.web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        return self._to_receipt(tx_hash, receipt)

    @staticmethod
    def _to_receipt(tx_hash: str, receipt) -> TransferReceipt:
        gas_used = receipt['gasUsed']
        gas_price = receipt.get('effectiveGasPrice') or 0

        return TransferReceipt(
            transaction_hash=tx_hash,
            block_number=receipt['blockNumber'],
            gas_used=gas_used,
            fee_paid_wei=gas_used * gas_price,
            status=receipt.get('status', 1)
        )

    async def close(self):
        """Release the provider's HTTP session"""
        provider = self.web3.provider
        if hasattr(provider, 'disconnect'):
            await provider.disconnect()


class Web3NetworkClient:
    """Factory for Web3Connection handles"""

    def __init__(self, request_timeout: float = 30.0):
        self.request_timeout = request_timeout

    def connect(self, endpoint: str) -> Web3Connection:
        return Web3Connection(endpoint, request_timeout=self.request_timeout)
