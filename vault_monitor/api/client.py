"""
Chain client for the Vault Monitor.
Read-only access to the RPC endpoint: block height, event logs and view calls,
with retries on transport failures and errors mapped to the monitor's taxonomy.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Tuple

import aiohttp
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type
from web3 import AsyncWeb3
from web3.providers import AsyncHTTPProvider
from web3.exceptions import (
    ABIEventNotFound,
    ABIFunctionNotFound,
    BadFunctionCallOutput,
    ContractLogicError,
    MismatchedABI,
    ProviderConnectionError,
    Web3RPCError,
    Web3TypeError,
    Web3ValidationError,
    Web3ValueError,
)

from ..config import Config
from ..exceptions import ClientError, TransientChainError
from .abis import CONTRACT_ABIS
from .models import ChainEvent

# Configure logging
logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    ConnectionError,
    ProviderConnectionError,
    Web3RPCError,
)

CLIENT_ERRORS = (
    BadFunctionCallOutput,
    ABIFunctionNotFound,
    ABIEventNotFound,
    MismatchedABI,
    Web3ValidationError,
    Web3ValueError,
    Web3TypeError,
)


def iter_block_ranges(start: int, end: int, chunk_size: int) -> Iterable[Tuple[int, int]]:
    """Iterate over block ranges in chunks."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    cur = start
    while cur <= end:
        yield cur, min(end, cur + chunk_size - 1)
        cur += chunk_size


def _to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else f"0x{text}"


class ChainClient:
    """
    Thin async wrapper over a web3 connection.

    Contracts are addressed by kind ("factory", "amm", "market", "hub", "erc20")
    plus address, so callers never deal with ABIs or contract handles.
    """

    def __init__(self, w3: AsyncWeb3, log_chunk_size: int = Config.LOG_CHUNK_SIZE):
        self.w3 = w3
        self.log_chunk_size = log_chunk_size
        self._contracts: Dict[Tuple[str, str], Any] = {}

    @classmethod
    def from_url(cls, rpc_url: str, timeout: int = Config.RPC_TIMEOUT, **kwargs) -> "ChainClient":
        """Create a client backed by an HTTP JSON-RPC endpoint."""
        provider = AsyncHTTPProvider(
            rpc_url,
            request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)},
        )
        logger.info(f"ChainClient initialized for {rpc_url}")
        return cls(AsyncWeb3(provider), **kwargs)

    def _contract(self, kind: str, address: str):
        """Get (and cache) a contract handle."""
        if kind not in CONTRACT_ABIS:
            raise ClientError(f"Unknown contract kind: {kind}")
        try:
            checksum = AsyncWeb3.to_checksum_address(address)
        except (ValueError, TypeError) as e:
            raise ClientError(f"Invalid {kind} address {address!r}: {e}") from e

        key = (kind, checksum)
        if key not in self._contracts:
            self._contracts[key] = self.w3.eth.contract(address=checksum, abi=CONTRACT_ABIS[kind])
        return self._contracts[key]

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(TransientChainError),
        reraise=True
    )
    async def _request(self, description: str, request: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run one RPC request with retries.

        Args:
            description: Human readable description, used in logs and errors
            request: Zero-argument callable returning a fresh awaitable per attempt

        Returns:
            The request result

        Raises:
            TransientChainError: Transport failure, after retries
            ClientError: The request cannot succeed as issued
        """
        start_time = time.time()
        try:
            result = await request()
        except ContractLogicError as e:
            raise ClientError(f"{description} reverted: {e}") from e
        except TRANSIENT_ERRORS as e:
            logger.warning(f"{description} failed: {e!r}")
            raise TransientChainError(f"{description} failed: {e}") from e
        except CLIENT_ERRORS as e:
            raise ClientError(f"{description} could not be resolved: {e}") from e

        logger.debug(f"{description} completed in {time.time() - start_time:.2f}s")
        return result

    async def current_height(self) -> int:
        """Latest block number."""
        return int(await self._request("eth_blockNumber", lambda: self.w3.eth.block_number))

    async def get_events(
        self,
        kind: str,
        address: str,
        event: str,
        from_block: int,
        to_block: int,
    ) -> List[ChainEvent]:
        """
        Fetch decoded logs for one event of one contract.

        Large ranges are split into chunks of `log_chunk_size` blocks.

        Args:
            kind: Contract kind
            address: Contract address
            event: Event name
            from_block: First block (inclusive)
            to_block: Last block (inclusive)

        Returns:
            Events in ascending (block, log index) order
        """
        if from_block > to_block:
            return []

        contract = self._contract(kind, address)
        try:
            contract_event = getattr(contract.events, event)
        except (AttributeError, ABIEventNotFound) as e:
            raise ClientError(f"Event {event} not in {kind} ABI") from e

        events: List[ChainEvent] = []
        for start, end in iter_block_ranges(from_block, to_block, self.log_chunk_size):
            entries = await self._request(
                f"{event} logs {start}-{end} on {address}",
                lambda start=start, end=end: contract_event.get_logs(from_block=start, to_block=end),
            )
            for entry in entries:
                events.append(ChainEvent(
                    blockNumber=int(entry["blockNumber"]),
                    transactionHash=_to_hex(entry.get("transactionHash", "")),
                    logIndex=int(entry.get("logIndex", 0)),
                    args=dict(entry["args"]),
                ))

        events.sort(key=lambda e: (e.blockNumber, e.logIndex))
        if events:
            logger.debug(f"Found {len(events)} {event} events on {address} in {from_block}-{to_block}")
        return events

    async def call(self, kind: str, address: str, method: str, *args: Any) -> Any:
        """Call a view function and return its decoded result."""
        contract = self._contract(kind, address)
        try:
            function = getattr(contract.functions, method)
        except (AttributeError, ABIFunctionNotFound) as e:
            raise ClientError(f"Function {method} not in {kind} ABI") from e

        return await self._request(
            f"{method}() on {address}",
            lambda: function(*args).call(),
        )
