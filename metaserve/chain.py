"""
metaserve/chain.py - Read-only chain access via web3.py

Selects the target chain for a verification and wraps the three RPC reads
the verifier needs: bytecode lookup, EIP-1271 isValidSignature(), and a
deployless eth_call for ERC-6492 predeploy signatures.

Production is Base mainnet; Base Sepolia is the test chain.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from .addresses import to_checksum

logger = logging.getLogger(__name__)

# EIP-1271 ABI: the single view function smart-contract wallets expose.
EIP1271_ABI = [
    {
        "type": "function",
        "name": "isValidSignature",
        "inputs": [
            {"name": "_hash", "type": "bytes32"},
            {"name": "_signature", "type": "bytes"},
        ],
        "outputs": [{"name": "", "type": "bytes4"}],
        "stateMutability": "view",
    },
]

# bytes4(keccak256("isValidSignature(bytes32,bytes)"))
EIP1271_MAGIC = "0x1626ba7e"

BASE_MAINNET = 8453
BASE_SEPOLIA = 84532


@dataclass(frozen=True)
class ChainInfo:
    """A supported network and its public RPC endpoint."""

    chain_id: int
    name: str
    rpc_url: str


CHAINS = {
    BASE_MAINNET: ChainInfo(BASE_MAINNET, "base", "https://mainnet.base.org"),
    BASE_SEPOLIA: ChainInfo(BASE_SEPOLIA, "base-sepolia", "https://sepolia.base.org"),
}

DEFAULT_CHAIN_ID = BASE_MAINNET


def pick_chain(chain_id: int | None = None) -> ChainInfo:
    """Map a requested chain id to a supported chain. Unknown ids get mainnet."""
    if chain_id in CHAINS:
        return CHAINS[chain_id]
    return CHAINS[DEFAULT_CHAIN_ID]


class ChainClient(Protocol):
    """The RPC surface the signature verifier depends on."""

    async def get_code(self, address: str) -> bytes: ...

    async def is_valid_signature(
        self, address: str, message_hash: bytes, signature: bytes
    ) -> bytes: ...

    async def call(self, data: bytes) -> bytes: ...

    async def close(self) -> None: ...


class Web3ChainClient:
    """ChainClient backed by AsyncWeb3 over HTTP."""

    def __init__(self, chain: ChainInfo, rpc_url: str):
        self.chain = chain
        self.rpc_url = rpc_url
        self.w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))

    async def get_code(self, address: str) -> bytes:
        code = await self.w3.eth.get_code(to_checksum(address))
        return bytes(code)

    async def is_valid_signature(
        self, address: str, message_hash: bytes, signature: bytes
    ) -> bytes:
        contract = self.w3.eth.contract(address=to_checksum(address), abi=EIP1271_ABI)
        result = await contract.functions.isValidSignature(message_hash, signature).call()
        return bytes(result)

    async def call(self, data: bytes) -> bytes:
        """eth_call with no target: executes data as creation code."""
        result = await self.w3.eth.call({"data": Web3.to_hex(data)})
        return bytes(result)

    async def close(self) -> None:
        await self.w3.provider.disconnect()


def connect(chain: ChainInfo, rpc_url: str) -> Web3ChainClient:
    """Default chain client factory."""
    logger.debug(f"Connecting to {chain.name} ({chain.chain_id}) via {rpc_url}")
    return Web3ChainClient(chain, rpc_url)


def has_code(code: bytes | None) -> bool:
    """True if eth_getCode returned deployed bytecode."""
    return bool(code)
