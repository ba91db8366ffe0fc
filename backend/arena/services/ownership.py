"""Warrior NFT ownership checks against the ERC-721 contract."""

from __future__ import annotations

from typing import Protocol

from loguru import logger
from web3 import Web3

from arena.core.config import Settings, settings as default_settings
from arena.errors import UpstreamError

ERC721_OWNER_OF_ABI = [
    {
        "inputs": [{"internalType": "uint256", "name": "tokenId", "type": "uint256"}],
        "name": "ownerOf",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    }
]


class OwnershipVerifier(Protocol):
    def verify(self, warrior_id: int, owner: str) -> bool:
        """Return whether ``owner`` holds ``warrior_id``; raise UpstreamError when unsure."""


class Web3OwnershipVerifier:
    def __init__(self, *, settings: Settings | None = None, web3: Web3 | None = None) -> None:
        self._settings = settings or default_settings
        self._web3 = web3
        self._contract = None

    def _warrior_contract(self):
        if self._contract is not None:
            return self._contract
        if not self._settings.web3_rpc_url or not self._settings.warrior_contract_address:
            raise UpstreamError("Warrior ownership checks are not configured")
        if self._web3 is None:
            self._web3 = Web3(
                Web3.HTTPProvider(
                    self._settings.web3_rpc_url,
                    request_kwargs={"timeout": self._settings.web3_timeout_seconds},
                )
            )
        self._contract = self._web3.eth.contract(
            address=Web3.to_checksum_address(self._settings.warrior_contract_address),
            abi=ERC721_OWNER_OF_ABI,
        )
        return self._contract

    def verify(self, warrior_id: int, owner: str) -> bool:
        contract = self._warrior_contract()
        try:
            on_chain_owner = contract.functions.ownerOf(warrior_id).call()
        except Exception as exc:
            raise UpstreamError(f"ownerOf({warrior_id}) failed: {exc}") from exc

        matches = Web3.to_checksum_address(on_chain_owner) == Web3.to_checksum_address(owner)
        if not matches:
            logger.warning(
                "Warrior {} is owned by {} on-chain, not {}", warrior_id, on_chain_owner, owner
            )
        return matches
