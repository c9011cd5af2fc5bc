"""
Tests for the chain client, using a fake web3 object.
"""

import asyncio
from types import SimpleNamespace

import aiohttp
import pytest
from tenacity import wait_none
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError

from conftest import FACTORY, make_address
from vault_monitor.api.client import ChainClient, iter_block_ranges
from vault_monitor.exceptions import ClientError, TransientChainError


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(ChainClient._request.retry, "wait", wait_none())


class FakeEvent:
    def __init__(self, logs):
        self.logs = logs
        self.queries = []

    async def get_logs(self, from_block, to_block):
        self.queries.append((from_block, to_block))
        # Deliberately unordered within a chunk
        return [log for log in reversed(self.logs) if from_block <= log["blockNumber"] <= to_block]


class FakeFunction:
    """Contract function whose call() replays a list of outcomes."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.args = []
        self.attempts = 0

    def __call__(self, *args):
        self.args.append(args)
        return self

    async def call(self):
        self.attempts += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeEth:
    def __init__(self, contract, height=0):
        self._contract = contract
        self.height = height
        self.addresses = []

    def contract(self, address, abi):
        self.addresses.append(address)
        return self._contract

    async def _block_number(self):
        return self.height

    @property
    def block_number(self):
        return self._block_number()


def make_client(events=None, functions=None, height=0, chunk=10):
    contract = SimpleNamespace(
        events=SimpleNamespace(**(events or {})),
        functions=SimpleNamespace(**(functions or {})),
    )
    w3 = SimpleNamespace(eth=FakeEth(contract, height))
    return ChainClient(w3, log_chunk_size=chunk), w3


def log(block, index, **args):
    return {
        "blockNumber": block,
        "logIndex": index,
        "transactionHash": bytes([block % 256]) * 32,
        "args": args,
    }


def test_iter_block_ranges():
    assert list(iter_block_ranges(1, 10, 4)) == [(1, 4), (5, 8), (9, 10)]
    assert list(iter_block_ranges(5, 5, 100)) == [(5, 5)]
    assert list(iter_block_ranges(6, 5, 100)) == []
    with pytest.raises(ValueError):
        list(iter_block_ranges(1, 10, 0))


def test_current_height():
    client, _ = make_client(height=1234)
    assert asyncio.run(client.current_height()) == 1234


def test_get_events_chunks_and_sorts():
    event = FakeEvent([log(3, 1, newCap=1), log(3, 0, newCap=2), log(17, 0, newCap=3), log(25, 2, newCap=4)])
    client, _ = make_client(events={"TotalSupplyCapUpdated": event})

    found = asyncio.run(client.get_events("amm", make_address(1), "TotalSupplyCapUpdated", 1, 25))

    assert event.queries == [(1, 10), (11, 20), (21, 25)]
    assert [(e.blockNumber, e.logIndex) for e in found] == [(3, 0), (3, 1), (17, 0), (25, 2)]
    assert found[0].args == {"newCap": 2}
    assert found[0].transactionHash == "0x" + "03" * 32


def test_get_events_empty_range_makes_no_request():
    event = FakeEvent([])
    client, _ = make_client(events={"AMMCreated": event})

    assert asyncio.run(client.get_events("factory", FACTORY, "AMMCreated", 10, 9)) == []
    assert event.queries == []


def test_unknown_event_is_client_error():
    client, _ = make_client()
    with pytest.raises(ClientError):
        asyncio.run(client.get_events("factory", FACTORY, "Missing", 1, 2))


def test_invalid_address_is_client_error():
    client, _ = make_client(functions={"totalSupply": FakeFunction(1)})
    with pytest.raises(ClientError):
        asyncio.run(client.call("amm", "not-an-address", "totalSupply"))


def test_unknown_contract_kind_is_client_error():
    client, _ = make_client()
    with pytest.raises(ClientError):
        asyncio.run(client.call("vault", make_address(1), "totalSupply"))


def test_call_passes_arguments_and_caches_contract():
    function = FakeFunction("0x00000000000000000000000000000000000000aa")
    client, w3 = make_client(functions={"tokenIdToAddress": function})

    async def scenario():
        await client.call("hub", make_address(9), "tokenIdToAddress", 3)
        return await client.call("hub", make_address(9), "tokenIdToAddress", 4)

    assert asyncio.run(scenario()) == "0x00000000000000000000000000000000000000aa"
    assert function.args == [(3,), (4,)]
    assert len(w3.eth.addresses) == 1


def test_revert_is_client_error_without_retry():
    function = FakeFunction(ContractLogicError("execution reverted"))
    client, _ = make_client(functions={"totalSupply": function})

    with pytest.raises(ClientError):
        asyncio.run(client.call("amm", make_address(1), "totalSupply"))
    assert function.attempts == 1


def test_transient_failure_is_retried():
    function = FakeFunction(aiohttp.ClientConnectionError("reset"), asyncio.TimeoutError(), 42)
    client, _ = make_client(functions={"totalSupply": function})

    assert asyncio.run(client.call("amm", make_address(1), "totalSupply")) == 42
    assert function.attempts == 3


def test_persistent_transient_failure_surfaces():
    function = FakeFunction(aiohttp.ClientConnectionError("down"))
    client, _ = make_client(functions={"totalSupply": function})

    with pytest.raises(TransientChainError):
        asyncio.run(client.call("amm", make_address(1), "totalSupply"))
    assert function.attempts == 3


def test_from_url_builds_async_provider():
    client = ChainClient.from_url("http://localhost:8545", timeout=5, log_chunk_size=500)
    assert client.log_chunk_size == 500
    assert isinstance(client.w3, AsyncWeb3)


