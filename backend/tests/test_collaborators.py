from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest

from arena.core.config import Settings
from arena.errors import UpstreamError
from arena.services.arbitrage import ArbitrageTradingClient
from arena.services.mirror import Web3MirrorResolver
from arena.services.ownership import Web3OwnershipVerifier

from conftest import ALICE, BOB, MIRROR_KEY

RPC = "http://localhost:8545"
CONTRACT = "0x" + "11" * 20


def _settings(**overrides) -> Settings:
    params = dict(web3_rpc_url=RPC, arbitrage_service_url=None)
    params.update(overrides)
    return Settings(**params)


# ----------------------------------------------------------------------
# Ownership


def test_owner_matches_on_chain_record():
    web3 = MagicMock()
    owner_of = web3.eth.contract.return_value.functions.ownerOf
    owner_of.return_value.call.return_value = ALICE
    verifier = Web3OwnershipVerifier(settings=_settings(warrior_contract_address=CONTRACT), web3=web3)

    assert verifier.verify(7, ALICE.upper().replace("0X", "0x"))
    assert not verifier.verify(7, BOB)
    owner_of.assert_called_with(7)


def test_ownership_call_failure_is_upstream():
    web3 = MagicMock()
    web3.eth.contract.return_value.functions.ownerOf.return_value.call.side_effect = ValueError("execution reverted")
    verifier = Web3OwnershipVerifier(settings=_settings(warrior_contract_address=CONTRACT), web3=web3)

    with pytest.raises(UpstreamError, match="ownerOf"):
        verifier.verify(7, ALICE)


def test_ownership_requires_configuration():
    verifier = Web3OwnershipVerifier(settings=_settings(warrior_contract_address=None), web3=MagicMock())

    with pytest.raises(UpstreamError):
        verifier.verify(7, ALICE)


# ----------------------------------------------------------------------
# Mirror settlement


def _mirror_web3(status: int) -> MagicMock:
    web3 = MagicMock()
    web3.eth.account.from_key.return_value = MagicMock(address=BOB)
    web3.eth.get_transaction_count.return_value = 3
    web3.eth.gas_price = 10
    web3.eth.wait_for_transaction_receipt.return_value = SimpleNamespace(
        status=status, transactionHash=b"\x12" * 32
    )
    return web3


def _mirror_settings() -> Settings:
    return _settings(mirror_contract_address=CONTRACT, mirror_signer_key="0x" + "01" * 32)


def test_mirror_settlement_sends_signed_transaction():
    web3 = _mirror_web3(status=1)
    resolver = Web3MirrorResolver(settings=_mirror_settings(), web3=web3)

    settlement = resolver.resolve(MIRROR_KEY, True)

    assert settlement.tx_hash == "0x" + "12" * 32
    resolve_call = web3.eth.contract.return_value.functions.resolveMirrorMarket
    resolve_call.assert_called_once_with(bytes.fromhex("ab" * 32), True)
    tx = resolve_call.return_value.build_transaction.call_args.args[0]
    assert tx == {"from": BOB, "nonce": 3, "gasPrice": 10}
    web3.eth.send_raw_transaction.assert_called_once()


def test_reverted_mirror_settlement_is_upstream():
    resolver = Web3MirrorResolver(settings=_mirror_settings(), web3=_mirror_web3(status=0))

    with pytest.raises(UpstreamError, match="reverted"):
        resolver.resolve(MIRROR_KEY, False)


def test_mirror_settlement_requires_signer():
    resolver = Web3MirrorResolver(settings=_settings(mirror_contract_address=CONTRACT), web3=MagicMock())

    with pytest.raises(UpstreamError, match="not configured"):
        resolver.resolve(MIRROR_KEY, True)


# ----------------------------------------------------------------------
# Arbitrage trading


def test_arbitrage_client_posts_trade_and_cancel():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/trades":
            return httpx.Response(200, json={"success": True, "tradeId": "t-1", "expectedProfit": 4.2})
        return httpx.Response(200, json={"success": True})

    client = ArbitrageTradingClient(
        settings=_settings(arbitrage_service_url="https://arb.test"),
        transport=httpx.MockTransport(handler),
    )
    try:
        trade = client.execute_arbitrage(ALICE, "opp-1", 10**20)
        client.cancel_trade("t-1")
    finally:
        client.close()

    assert trade.success
    assert trade.trade_id == "t-1"
    assert trade.expected_profit == 4.2
    assert json.loads(requests[0].content) == {
        "userId": ALICE,
        "opportunityId": "opp-1",
        "amount": "100000000000000000000",
    }
    assert requests[1].url.path == "/trades/t-1/cancel"


def test_arbitrage_http_failure_is_upstream():
    client = ArbitrageTradingClient(
        settings=_settings(arbitrage_service_url="https://arb.test"),
        transport=httpx.MockTransport(lambda request: httpx.Response(500, json={"error": "down"})),
    )

    with pytest.raises(UpstreamError):
        client.execute_arbitrage(ALICE, "opp-1", 100)


def test_unconfigured_arbitrage_client_is_upstream():
    client = ArbitrageTradingClient(settings=_settings(arbitrage_service_url=None))

    with pytest.raises(UpstreamError):
        client.execute_arbitrage(ALICE, "opp-1", 100)
