"""
Tests for the Stacks swap contract reader.

The node RPC is replaced with httpx.MockTransport; results are built as
Clarity hex the way a node returns them.
"""

import json
from typing import Dict, List, Tuple

import httpx
import pytest

from conftest import STX, USDCX, VEX
from velumx.chain import clarity
from velumx.chain.source import InMemoryLiquiditySource
from velumx.chain.stacks import StacksLiquiditySource, contract_identifier
from velumx.exceptions import PoolNotFoundError, UpstreamError
from velumx.services.container import ServiceContainer, create_source
from velumx.utils.config import Settings


BURN_ADDRESS = "SP000000000000000000002Q6VF78"
CONTRACT = "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM"
HOLDER = clarity.encode_address(22, bytes(range(20)))


def uint(value: int) -> bytes:
    return clarity.serialize_uint(value)


def ok(payload: bytes) -> bytes:
    return bytes([clarity.RESPONSE_OK]) + payload


def err(payload: bytes) -> bytes:
    return bytes([clarity.RESPONSE_ERR]) + payload


def some(payload: bytes) -> bytes:
    return bytes([clarity.SOME]) + payload


NONE = bytes([clarity.NONE])


def tuple_value(**fields: bytes) -> bytes:
    out = bytes([clarity.TUPLE]) + len(fields).to_bytes(4, "big")
    for name, value in fields.items():
        key = name.replace("_", "-").encode("ascii")
        out += bytes([len(key)]) + key + value
    return out


def reserves_tuple(reserve_a: int, reserve_b: int, total_supply: int) -> bytes:
    return tuple_value(reserve_a=uint(reserve_a), reserve_b=uint(reserve_b), total_supply=uint(total_supply))


def principal_hex(principal: str) -> str:
    return clarity.to_hex(clarity.serialize_principal(principal))


class FakeNode:
    """
    Answers read-only calls from a table keyed by (function, principal args).

    Unknown calls return `none`, like a contract map lookup that misses.
    """

    def __init__(self):
        self.results: Dict[Tuple[str, Tuple[str, ...]], bytes] = {}
        self.calls: List[httpx.Request] = []
        self.status = 200
        self.okay = True

    def answer(self, function: str, principals: List[str], result: bytes):
        self.results[(function, tuple(principal_hex(p) for p in principals))] = result

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.status != 200:
            return httpx.Response(self.status, text="node error")
        if not self.okay:
            return httpx.Response(200, json={"okay": False, "cause": "Unchecked(NoSuchContract)"})

        function = request.url.path.rsplit("/", 1)[-1]
        body = json.loads(request.content)
        result = self.results.get((function, tuple(body["arguments"])), NONE)
        return httpx.Response(200, json={"okay": True, "result": clarity.to_hex(result)})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def node() -> FakeNode:
    return FakeNode()


@pytest.fixture
def stacks_settings() -> Settings:
    return Settings(_env_file=None, STACKS_RPC_URL="http://node.test", DATABASE_URL=None)


@pytest.fixture
def stacks(stacks_settings, node) -> StacksLiquiditySource:
    return StacksLiquiditySource(stacks_settings, client=httpx.AsyncClient(transport=node.transport()))


# =============================================================================
# CLARITY CODEC
# =============================================================================

class TestClarityCodec:
    """Test address handling and value decoding."""

    def test_decode_burn_address(self):
        assert clarity.decode_address(BURN_ADDRESS) == (22, b"\x00" * 20)

    def test_address_survives_encoding(self):
        for address in (BURN_ADDRESS, HOLDER, CONTRACT):
            version, hash160 = clarity.decode_address(address)
            assert clarity.encode_address(version, hash160) == address

    def test_checksum_mismatch_rejected(self):
        tampered = BURN_ADDRESS[:-1] + ("9" if BURN_ADDRESS[-1] != "9" else "8")
        with pytest.raises(ValueError):
            clarity.decode_address(tampered)

    @pytest.mark.parametrize("address", ["", "XP000000000000000000002Q6VF78", "SPU0000"])
    def test_malformed_address_rejected(self, address):
        with pytest.raises(ValueError):
            clarity.decode_address(address)

    def test_standard_principal_layout(self):
        encoded = clarity.serialize_principal(BURN_ADDRESS)
        assert encoded == bytes([clarity.STANDARD_PRINCIPAL, 22]) + b"\x00" * 20

    def test_contract_principal_layout(self):
        encoded = clarity.serialize_principal(f"{BURN_ADDRESS}.pool-v1")

        assert encoded[0] == clarity.CONTRACT_PRINCIPAL
        assert encoded[22] == len("pool-v1")
        assert encoded[23:] == b"pool-v1"
        assert clarity.deserialize(encoded) == f"{BURN_ADDRESS}.pool-v1"

    def test_decode_reserves_response(self):
        value = clarity.deserialize(ok(reserves_tuple(10, 20, 30)))

        assert value == clarity.ClarityResponse(
            ok=True, value={"reserve-a": 10, "reserve-b": 20, "total-supply": 30},
        )

    def test_decode_optionals_and_scalars(self):
        assert clarity.deserialize(NONE) is None
        assert clarity.deserialize(some(uint(2 ** 100))) == 2 ** 100
        assert clarity.deserialize(bytes([clarity.TRUE])) is True
        signed = bytes([clarity.INT]) + (-5).to_bytes(16, "big", signed=True)
        assert clarity.deserialize(signed) == -5
        text = bytes([clarity.STRING_ASCII]) + (2).to_bytes(4, "big") + b"ok"
        assert clarity.deserialize(text) == "ok"

    @pytest.mark.parametrize("data", [
        b"\x01\x00",                   # truncated uint
        bytes([0x7F]),                 # unknown prefix
        uint(1) + b"\x00",             # trailing bytes
    ])
    def test_malformed_value_rejected(self, data):
        with pytest.raises(ValueError):
            clarity.deserialize(data)


# =============================================================================
# READ-ONLY CALLS
# =============================================================================

class TestStacksLiquiditySource:
    """Test reserve and balance reads against a mocked node."""

    def test_contract_identifier(self, stacks_settings):
        assert contract_identifier(stacks_settings) == (CONTRACT, "swap-contract")

        bare = Settings(_env_file=None, STACKS_SWAP_CONTRACT_ADDRESS=CONTRACT, STACKS_SWAP_CONTRACT_NAME="swap-v2")
        assert contract_identifier(bare) == (CONTRACT, "swap-v2")

    @pytest.mark.asyncio
    async def test_reserves_request(self, stacks, node):
        node.answer("get-pool-reserves", [STX.address, USDCX.address], ok(reserves_tuple(10, 25, 15)))

        reserves = await stacks.get_pool_reserves(STX.address, USDCX.address)

        assert (reserves.reserve_a, reserves.reserve_b, reserves.total_supply) == (10, 25, 15)
        request = node.calls[0]
        assert request.method == "POST"
        assert request.url.host == "node.test"
        assert request.url.path == f"/v2/contracts/call-read/{CONTRACT}/swap-contract/get-pool-reserves"
        body = json.loads(request.content)
        assert body["sender"] == CONTRACT
        assert body["arguments"] == [principal_hex(STX.address), principal_hex(USDCX.address)]

    @pytest.mark.asyncio
    async def test_reversed_pair_is_sorted_and_reoriented(self, stacks, node):
        node.answer("get-pool-reserves", [STX.address, USDCX.address], ok(reserves_tuple(10, 25, 15)))

        reserves = await stacks.get_pool_reserves(USDCX.address, STX.address)

        assert (reserves.reserve_a, reserves.reserve_b) == (25, 10)

    @pytest.mark.asyncio
    async def test_optional_tuple_accepted(self, stacks, node):
        node.answer("get-pool-reserves", [STX.address, VEX.address], some(reserves_tuple(1, 2, 3)))
        assert (await stacks.get_pool_reserves(STX.address, VEX.address)).total_supply == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("result", [NONE, err(uint(404)), ok(NONE)])
    async def test_missing_pool(self, stacks, node, result):
        node.answer("get-pool-reserves", [STX.address, VEX.address], result)
        with pytest.raises(PoolNotFoundError):
            await stacks.get_pool_reserves(STX.address, VEX.address)

    @pytest.mark.asyncio
    async def test_unexpected_tuple_is_upstream_error(self, stacks, node):
        node.answer("get-pool-reserves", [STX.address, VEX.address], ok(tuple_value(reserve_a=uint(1))))
        with pytest.raises(UpstreamError):
            await stacks.get_pool_reserves(STX.address, VEX.address)

    @pytest.mark.asyncio
    async def test_node_failures_are_upstream_errors(self, stacks, node):
        node.status = 500
        with pytest.raises(UpstreamError) as exc_info:
            await stacks.get_pool_reserves(STX.address, USDCX.address)
        assert exc_info.value.source == "stacks"

        node.status = 200
        node.okay = False
        with pytest.raises(UpstreamError):
            await stacks.get_lp_balance(HOLDER, STX.address, USDCX.address)

    @pytest.mark.asyncio
    async def test_unreachable_node(self, stacks_settings):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        source = StacksLiquiditySource(
            stacks_settings, client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)),
        )
        with pytest.raises(UpstreamError):
            await source.get_pool_reserves(STX.address, USDCX.address)

    @pytest.mark.asyncio
    async def test_lp_balance(self, stacks, node):
        node.answer("get-lp-balance", [STX.address, USDCX.address, HOLDER], ok(uint(150)))

        assert await stacks.get_lp_balance(HOLDER, USDCX.address, STX.address) == 150
        body = json.loads(node.calls[0].content)
        assert body["arguments"][2] == principal_hex(HOLDER)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("result", [NONE, err(uint(1)), ok(NONE)])
    async def test_no_lp_balance_reads_zero(self, stacks, node, result):
        node.answer("get-lp-balance", [STX.address, USDCX.address, HOLDER], result)
        assert await stacks.get_lp_balance(HOLDER, STX.address, USDCX.address) == 0

    @pytest.mark.asyncio
    async def test_invalid_principal_rejected_before_request(self, stacks, node):
        with pytest.raises(ValueError):
            await stacks.get_lp_balance("not-an-address", STX.address, USDCX.address)
        assert node.calls == []


# =============================================================================
# WIRING
# =============================================================================

class TestSourceSelection:
    """Test that the configured source backs the services."""

    def test_default_reads_the_chain(self):
        settings = Settings(_env_file=None)
        assert isinstance(create_source(settings), StacksLiquiditySource)

    def test_memory_source_on_request(self):
        settings = Settings(_env_file=None, LIQUIDITY_SOURCE="memory")
        assert isinstance(create_source(settings), InMemoryLiquiditySource)

    @pytest.mark.asyncio
    async def test_discovery_over_the_node(self, settings, cache_config, store, repository, oracle, node):
        """Only pairs the contract knows become pools."""
        node.answer("get-pool-reserves", [STX.address, USDCX.address], ok(reserves_tuple(
            1_000_000_000_000, 2_500_000_000_000, 1_500_000_000_000,
        )))
        source = StacksLiquiditySource(settings, client=httpx.AsyncClient(transport=node.transport()))
        services = ServiceContainer(settings, cache_config, store, source, repository, oracle)

        pools = await services.discovery.get_all_pools()

        assert [p.id for p in pools] == ["STX-USDCx"]
        assert pools[0].reserve_b == 2_500_000_000_000
        analytics = await services.analytics.get_pool_analytics("STX-USDCx")
        assert analytics.tvl == pytest.approx(5_000_000)
