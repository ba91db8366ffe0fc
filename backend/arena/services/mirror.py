"""Settle on-chain mirror markets once their external market resolves."""

from __future__ import annotations

from typing import Protocol

from loguru import logger
from web3 import Web3

from arena.core.config import Settings, settings as default_settings
from arena.domain import MirrorResolution
from arena.errors import UpstreamError

MIRROR_RESOLVE_ABI = [
    {
        "inputs": [
            {"internalType": "bytes32", "name": "mirrorKey", "type": "bytes32"},
            {"internalType": "bool", "name": "outcome", "type": "bool"},
        ],
        "name": "resolveMirrorMarket",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    }
]


class MirrorResolver(Protocol):
    def resolve(self, mirror_key: str, outcome: bool) -> MirrorResolution:
        """Submit the settlement; may raise."""


class Web3MirrorResolver:
    """Signs and sends ``resolveMirrorMarket(bytes32,bool)`` and waits for the receipt."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        web3: Web3 | None = None,
        receipt_timeout: float = 60,
    ) -> None:
        self._settings = settings or default_settings
        self._web3 = web3
        self._receipt_timeout = receipt_timeout

    def _connect(self):
        cfg = self._settings
        if not (cfg.web3_rpc_url and cfg.mirror_contract_address and cfg.mirror_signer_key):
            raise UpstreamError("Mirror settlement is not configured")
        if self._web3 is None:
            self._web3 = Web3(
                Web3.HTTPProvider(
                    cfg.web3_rpc_url, request_kwargs={"timeout": cfg.web3_timeout_seconds}
                )
            )
        contract = self._web3.eth.contract(
            address=Web3.to_checksum_address(cfg.mirror_contract_address),
            abi=MIRROR_RESOLVE_ABI,
        )
        account = self._web3.eth.account.from_key(cfg.mirror_signer_key)
        return self._web3, contract, account

    def resolve(self, mirror_key: str, outcome: bool) -> MirrorResolution:
        w3, contract, account = self._connect()
        tx = contract.functions.resolveMirrorMarket(Web3.to_bytes(hexstr=mirror_key), outcome).build_transaction(
            {
                "from": account.address,
                "nonce": w3.eth.get_transaction_count(account.address),
                "gasPrice": w3.eth.gas_price,
            }
        )
        signed = account.sign_transaction(tx)
        tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._receipt_timeout)
        if receipt.status != 1:
            raise UpstreamError(f"Mirror settlement reverted for {mirror_key}")

        tx_hex = Web3.to_hex(receipt.transactionHash)
        logger.info("Mirror market {} settled outcome={} tx={}", mirror_key, outcome, tx_hex)
        return MirrorResolution(tx_hash=tx_hex)
