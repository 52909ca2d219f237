"""
Session Bootstrap

Owns the single live Session (bound endpoint + optional signer).
Bootstrap is lazy, idempotent and serialized.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from eth_account.signers.local import LocalAccount
from loguru import logger

from .endpoint_selector import (
    DEFAULT_PROBE_TIMEOUT_SECONDS,
    EndpointProbe,
    select_endpoint,
)
from .errors import EndpointUnreachable, SignerNotConfigured
from .network_client import Web3NetworkClient, load_signer


@dataclass
class Session:
    """Bound connection plus signing identity"""
    endpoint: str
    connection: object
    signer: Optional[LocalAccount] = None
    bound_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def address(self) -> Optional[str]:
        return self.signer.address if self.signer else None

    @property
    def can_sign(self) -> bool:
        return self.signer is not None

    def require_signer(self) -> LocalAccount:
        if self.signer is None:
            raise SignerNotConfigured("Signer not configured: set PRIVATE_KEY to enable transfers")
        return self.signer


class SessionManager:
    """
    Lazily bootstrap and hold the live Session

    Features:
    - Ordered endpoint failover (one pass per bootstrap)
    - Reuse of the bound session unless forced
    - Read-only session when no private key is configured
    """

    def __init__(
        self,
        endpoints: Sequence[str],
        private_key: Optional[str] = None,
        network_client=None,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT_SECONDS
    ):
        """
        Initialize session manager

        Args:
            endpoints: RPC endpoints in priority order
            private_key: Hex private key (None for a read-only session)
            network_client: Object with connect(endpoint); defaults to web3
            probe_timeout: Liveness probe timeout per endpoint in seconds
        """
        self.endpoints = tuple(endpoints)
        self.network_client = network_client or Web3NetworkClient()
        self.probe_timeout = probe_timeout
        self._signer = load_signer(private_key)

        self._session: Optional[Session] = None
        self._bootstrap_lock = asyncio.Lock()
        self.last_attempts: List[EndpointProbe] = []

        logger.info(f"Session manager initialized with {len(self.endpoints)} endpoints "
                    f"(probe timeout {probe_timeout}s, signer {'set' if self._signer else 'absent'})")

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def signer_address(self) -> Optional[str]:
        return self._signer.address if self._signer else None

    async def ensure_session(self, force: bool = False) -> Session:
        """
        Return the bound session, bootstrapping it if needed

        Args:
            force: Drop the current session and run a new selection pass

        Raises:
            EndpointUnreachable: if no candidate answered the probe
        """
        async with self._bootstrap_lock:
            if self._session is not None and not force:
                return self._session

            if self._session is not None:
                logger.info(f"Rebinding session (was {self._session.endpoint})")
                await self._release()

            selection = await select_endpoint(
                self.endpoints,
                self.network_client.connect,
                timeout=self.probe_timeout
            )
            self.last_attempts = selection.attempts

            if not selection.ok:
                raise EndpointUnreachable(selection.error_message, attempts=selection.attempts)

            self._session = Session(
                endpoint=selection.endpoint,
                connection=selection.connection,
                signer=self._signer
            )

            if self._signer:
                logger.info(f"✓ Session bound: {self._signer.address[:10]}... via {selection.endpoint}")
            else:
                logger.warning(f"⚠ Session bound read-only via {selection.endpoint} (no signer configured)")

            return self._session

    async def _release(self):
        session, self._session = self._session, None
        if session is None:
            return
        try:
            await session.connection.close()
        except Exception as e:
            logger.debug(f"Error closing connection to {session.endpoint}: {e}")

    async def close(self):
        """Tear down the session"""
        async with self._bootstrap_lock:
            await self._release()
        logger.debug("✓ Session closed")
