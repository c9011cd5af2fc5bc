"""
Pytest fixtures for Vault Monitor tests. The chain is an in-memory fake; the
state file lives in a temporary directory.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

import pytest

from vault_monitor.api.models import ChainEvent, Transition
from vault_monitor.exceptions import ClientError, TransientChainError
from vault_monitor.state_manager import SnapshotStore

FACTORY = "0x3205e972714B52512c837AE6f5FCFDeB07f0f23C"
HUB = "0x1080808080f145b14228443212e62447C112ADaD"
WAD = 10 ** 18
DAY = 86400
NOW = 1_700_000_000


def make_address(n: int) -> str:
    return "0x" + f"{n:040x}"


class FakeChain:
    """Scriptable stand-in for the chain client."""

    def __init__(self, height: int = 1000):
        self.height = height
        self.vaults: Dict[str, dict] = {}
        self.latest_time: Dict[str, int] = {}
        self.token_ids: Dict[str, int] = {}
        self.tokens: Dict[int, dict] = {}
        self.cash: Dict[str, int] = {}
        self.creation_events: List[ChainEvent] = []
        self.cap_events: Dict[str, List[ChainEvent]] = {}
        self.failing: set = set()
        self.failing_logs: set = set()
        self.fail_height = False
        self.factory_log_failures = 0
        self.calls: List[tuple] = []
        self.log_queries: List[tuple] = []
        # Seconds each log query or call stays in flight; None answers immediately
        self.latency: Optional[float] = None
        self.in_flight = 0
        self.peak_in_flight = 0
        self.vaults_in_flight: Dict[str, int] = {}
        self.peak_vaults_in_flight = 0

    def add_vault(
        self,
        address: str,
        cap: int,
        supply: int,
        maturity: int = NOW + 30 * DAY,
        latest_time: int = NOW,
        block: Optional[int] = None,
        name: str = "Boros AMM - BTC",
        symbol: str = "LP-BTC",
        token_symbol: Optional[str] = "USDT",
        cash: int = 0,
    ) -> None:
        """Deploy a vault; emits a creation event at `block` (default: current height)."""
        market = make_address(0xAA0000 + len(self.vaults))
        self_acc = "0x" + f"{len(self.vaults) + 1:052x}"
        self.vaults[address.lower()] = {
            "name": name,
            "symbol": symbol,
            "cap": cap,
            "supply": supply,
            "maturity": maturity,
            "market": market,
            "self_acc": self_acc,
        }
        self.latest_time[market.lower()] = latest_time
        if token_symbol is not None:
            token_id = len(self.tokens) + 1
            self.tokens[token_id] = {
                "address": make_address(0xBB0000 + token_id),
                "symbol": token_symbol,
                "decimals": 6,
            }
            self.token_ids[market.lower()] = token_id
        else:
            self.token_ids[market.lower()] = 0
        self.cash[self_acc] = cash
        self.creation_events.append(ChainEvent(
            blockNumber=self.height if block is None else block,
            transactionHash="0x" + "ab" * 32,
            logIndex=len(self.creation_events),
            args={"amm": address, "isPositive": True},
        ))

    def raise_cap(self, address: str, new_cap: int, block: int) -> None:
        self.vaults[address.lower()]["cap"] = new_cap
        self.cap_events.setdefault(address.lower(), []).append(ChainEvent(
            blockNumber=block,
            transactionHash="0x" + "cd" * 32,
            logIndex=0,
            args={"newTotalSupplyCap": new_cap},
        ))

    def set_supply(self, address: str, supply: int) -> None:
        self.vaults[address.lower()]["supply"] = supply

    def market_of(self, address: str) -> str:
        return self.vaults[address.lower()]["market"]

    def expire(self, address: str) -> None:
        vault = self.vaults[address.lower()]
        self.latest_time[vault["market"].lower()] = vault["maturity"]

    async def current_height(self) -> int:
        if self.fail_height:
            raise TransientChainError("eth_blockNumber failed")
        return self.height

    @asynccontextmanager
    async def _request(self, kind: str, address: str):
        """Track how many requests, and how many distinct vaults, are outstanding at once."""
        vault = address.lower() if kind == "amm" else None
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        if vault is not None:
            self.vaults_in_flight[vault] = self.vaults_in_flight.get(vault, 0) + 1
            self.peak_vaults_in_flight = max(self.peak_vaults_in_flight, len(self.vaults_in_flight))
        try:
            if self.latency is not None:
                await asyncio.sleep(self.latency)
            yield
        finally:
            self.in_flight -= 1
            if vault is not None:
                self.vaults_in_flight[vault] -= 1
                if not self.vaults_in_flight[vault]:
                    del self.vaults_in_flight[vault]

    def reset_concurrency(self) -> None:
        self.peak_in_flight = 0
        self.peak_vaults_in_flight = 0

    async def get_events(self, kind: str, address: str, event: str, from_block: int, to_block: int):
        async with self._request(kind, address):
            return self._get_events(kind, address, event, from_block, to_block)

    def _get_events(self, kind: str, address: str, event: str, from_block: int, to_block: int):
        self.log_queries.append((kind, address.lower(), event, from_block, to_block))
        if kind == "factory":
            if self.factory_log_failures:
                self.factory_log_failures -= 1
                raise TransientChainError("factory logs failed")
            source = self.creation_events
        else:
            if address.lower() in self.failing_logs:
                raise TransientChainError(f"logs failed for {address}")
            source = self.cap_events.get(address.lower(), [])
        return [e for e in source if from_block <= e.blockNumber <= to_block]

    async def call(self, kind: str, address: str, method: str, *args):
        async with self._request(kind, address):
            return self._call(kind, address, method, *args)

    def _call(self, kind: str, address: str, method: str, *args):
        self.calls.append((kind, address.lower(), method))
        if address.lower() in self.failing:
            raise TransientChainError(f"{method}() on {address} failed")

        if kind == "amm":
            vault = self.vaults[address.lower()]
            return {
                "name": vault["name"],
                "symbol": vault["symbol"],
                "totalSupplyCap": vault["cap"],
                "totalSupply": vault["supply"],
                "MATURITY": vault["maturity"],
                "MARKET": vault["market"],
                "SELF_ACC": bytes.fromhex(vault["self_acc"][2:]),
            }[method]
        if kind == "market":
            if method == "getLatestFTime":
                return self.latest_time[address.lower()]
            if method == "descriptor":
                return (False, self.token_ids.get(address.lower(), 0), 1, 0, 1, 0, 0)
        if kind == "hub":
            if method == "tokenIdToAddress":
                token = self.tokens.get(args[0])
                return token["address"] if token else "0x" + "0" * 40
            if method == "accCash":
                return self.cash.get("0x" + args[0].hex(), 0)
        if kind == "erc20":
            token = next(t for t in self.tokens.values() if t["address"].lower() == address.lower())
            return token[method]
        raise ClientError(f"Unexpected call {kind}.{method}")


class RecordingSink:
    """Notification sink that remembers what it was given."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.transitions: List[Transition] = []
        self.startup_messages = 0

    async def deliver(self, transition: Transition) -> bool:
        self.transitions.append(transition)
        return self.succeed

    async def send_startup_message(self) -> bool:
        self.startup_messages += 1
        return self.succeed

    @property
    def kinds(self) -> List[str]:
        return [t.kind.value for t in self.transitions]


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def store(tmp_path):
    return SnapshotStore(tmp_path / "state" / "vault-state.json")
