"""Shared test fixtures for the funds_sweep test suite.

FakeConnection stands in for network_client.Web3Connection so tests run
without an RPC endpoint.
"""

import asyncio
from decimal import Decimal
from typing import Dict, List, Optional

import pytest
from eth_account import Account

from funds_sweep.network_client import TransferReceipt
from funds_sweep.session import SessionManager
from funds_sweep.transfer_engine import SweepTransferEngine, to_wei


TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
DESTINATION = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
GAS_PRICE_WEI = 10 ** 9


def eth(value: str) -> int:
    return to_wei(Decimal(value))


class FakeConnection:
    """In-memory chain endpoint"""

    def __init__(
        self,
        endpoint: str,
        balance_wei: int = 0,
        healthy: bool = True,
        probe_delay: float = 0.0,
        block: int = 100,
        send_error: Optional[Exception] = None,
        confirm_error: Optional[Exception] = None,
        confirm_delay: float = 0.0,
        receipt_status: int = 1,
        spend_on_mine: bool = False,
        events: Optional[List] = None,
    ):
        self.endpoint = endpoint
        self.balance_wei = balance_wei
        self.healthy = healthy
        self.probe_delay = probe_delay
        self.block = block
        self.send_error = send_error
        self.confirm_error = confirm_error
        self.confirm_delay = confirm_delay
        self.receipt_status = receipt_status
        # balance only drops once a transfer is mined, like a node without mempool view
        self.spend_on_mine = spend_on_mine
        self.events = events if events is not None else []
        self.sent: List[Dict] = []
        self.unmined: Dict[str, int] = {}
        self.receipts: Dict[str, TransferReceipt] = {}
        self.closed = False

    async def block_number(self) -> int:
        if self.probe_delay:
            await asyncio.sleep(self.probe_delay)
        if not self.healthy:
            raise ConnectionError(f"connection refused by {self.endpoint}")
        return self.block

    async def chain_id(self) -> int:
        return 1

    async def get_balance(self, address: str) -> int:
        self.events.append(("balance", address))
        return self.balance_wei

    async def send_value(self, account, destination: str, value_wei: int) -> str:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append({"from": account.address, "to": destination, "value": value_wei})
        tx_hash = "0x%064x" % len(self.sent)
        self.events.append(("submit", tx_hash))
        if self.spend_on_mine:
            self.unmined[tx_hash] = value_wei
        else:
            self.balance_wei -= value_wei
        return tx_hash

    def mine(self, tx_hash: str) -> TransferReceipt:
        if tx_hash in self.receipts:
            return self.receipts[tx_hash]
        self.balance_wei -= self.unmined.pop(tx_hash, 0)
        self.block += 1
        receipt = self.receipts[tx_hash] = TransferReceipt(
            transaction_hash=tx_hash,
            block_number=self.block,
            gas_used=21000,
            fee_paid_wei=21000 * GAS_PRICE_WEI,
            status=self.receipt_status,
        )
        return receipt

    async def get_receipt(self, tx_hash: str) -> Optional[TransferReceipt]:
        self.events.append(("receipt", tx_hash))
        return self.receipts.get(tx_hash)

    async def wait_for_confirmations(self, tx_hash: str, confirmations: int = 1, timeout: float = 180.0):
        if self.confirm_delay:
            await asyncio.sleep(self.confirm_delay)
        if self.confirm_error is not None:
            raise self.confirm_error
        self.events.append(("confirm", tx_hash))
        return self.mine(tx_hash)

    async def close(self):
        self.closed = True


class FakeNetworkClient:
    """connect() hands out pre-built FakeConnections and records contacts"""

    def __init__(self, connections: Dict[str, FakeConnection]):
        self.connections = connections
        self.contacted: List[str] = []

    def connect(self, endpoint: str) -> FakeConnection:
        self.contacted.append(endpoint)
        return self.connections[endpoint]


@pytest.fixture
def signer():
    return Account.from_key(TEST_PRIVATE_KEY)


@pytest.fixture
def make_engine():
    """Build an engine over a single fake endpoint"""

    def _make(balance: str = "1.0", private_key: Optional[str] = TEST_PRIVATE_KEY, **conn_kwargs):
        connection = FakeConnection("http://node-a", balance_wei=eth(balance), **conn_kwargs)
        client = FakeNetworkClient({"http://node-a": connection})
        manager = SessionManager(["http://node-a"], private_key=private_key, network_client=client)
        engine = SweepTransferEngine(
            manager,
            fee_reserve_eth=Decimal("0.002"),
            default_amount_eth=Decimal("0.01"),
            default_destination=DESTINATION,
            submit_timeout=1.0,
            confirmation_timeout=1.0,
        )
        return engine, connection, client

    return _make
