"""
metaserve/signatures.py - Universal wallet signature verification

Proves that an address authorized a message without knowing up front what
kind of account it is:

  - plain key-pair accounts (EIP-191 personal_sign recovery)
  - deployed smart-contract wallets (EIP-1271 isValidSignature)
  - not-yet-deployed smart-contract wallets (ERC-6492 wrapped signatures)

Verification runs a fixed list of strategies and stops at the first that
accepts. A failed verification is an ordinary outcome, so verify() never
raises: RPC errors and timeouts inside a strategy count as "no match".
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Protocol

from eth_abi import decode, encode
from eth_account import Account
from eth_account.messages import defunct_hash_message, encode_defunct
from hexbytes import HexBytes

from .addresses import canonicalize, to_checksum
from .chain import (
    DEFAULT_CHAIN_ID,
    EIP1271_MAGIC,
    ChainClient,
    ChainInfo,
    connect,
    has_code,
    pick_chain,
)
from .errors import InvalidAddress
from .messages import normalize_line_endings

logger = logging.getLogger(__name__)

# ERC-6492: wrapped signatures end with 32 bytes of 0x6492 repeated.
ERC6492_MAGIC_SUFFIX = bytes.fromhex("6492" * 16)

DEFAULT_TIMEOUT_SECONDS = 10.0


# ============================================================================
# Helpers
# ============================================================================


def looks_like_erc6492(signature: str) -> bool:
    """Cheap hex-suffix check, used only to make failure logs more useful."""
    if not isinstance(signature, str) or not signature.startswith("0x"):
        return False
    hex_part = signature[2:].lower()
    if len(hex_part) < 8:
        return False
    return hex_part.endswith("64926492")


def hash_message(message: str) -> bytes:
    """EIP-191 personal message hash of the normalized message."""
    return bytes(defunct_hash_message(text=normalize_line_endings(message)))


def recover_signer(message: str, signature: bytes) -> str | None:
    """Recover the lower-cased signer of an EIP-191 message, or None."""
    try:
        signable = encode_defunct(text=normalize_line_endings(message))
        return Account.recover_message(signable, signature=signature).lower()
    except Exception as e:
        logger.debug(f"ecrecover failed: {e}")
        return None


@dataclass
class Erc6492Signature:
    """The parts of an ERC-6492 wrapped signature."""

    factory: str
    factory_calldata: bytes
    inner: bytes


def unwrap_erc6492(signature: bytes) -> Erc6492Signature | None:
    """Split an ERC-6492 signature. Returns None if it isn't wrapped."""
    if len(signature) <= len(ERC6492_MAGIC_SUFFIX):
        return None
    if not signature.endswith(ERC6492_MAGIC_SUFFIX):
        return None
    try:
        factory, calldata, inner = decode(
            ["address", "bytes", "bytes"],
            signature[: -len(ERC6492_MAGIC_SUFFIX)],
        )
    except Exception as e:
        logger.debug(f"ERC-6492 suffix present but payload did not decode: {e}")
        return None
    return Erc6492Signature(factory=factory.lower(), factory_calldata=calldata, inner=inner)


async def erc1271_accepts(
    chain: ChainClient, address: str, message_hash: bytes, signature: bytes
) -> bool:
    """Call isValidSignature() and compare against the EIP-1271 magic value."""
    result = await chain.is_valid_signature(address, message_hash, signature)
    return "0x" + bytes(result).hex().lower() == EIP1271_MAGIC


# ============================================================================
# Strategies
# ============================================================================


class VerificationStrategy(Protocol):
    """One tier of the verification protocol."""

    name: str

    async def attempt(
        self, chain: ChainClient, address: str, message: str, signature: bytes
    ) -> bool: ...


class UniversalCheck:
    """EOA recovery, EIP-1271 and ERC-6492 in one pass.

    validator_bytecode is the creation code of an ERC-6492 universal
    validator. Without it, predeploy signatures for undeployed wallets
    cannot be checked and this tier rejects them.
    """

    name = "universal"

    def __init__(self, validator_bytecode: bytes | None = None):
        self._validator_bytecode = validator_bytecode

    async def attempt(
        self, chain: ChainClient, address: str, message: str, signature: bytes
    ) -> bool:
        wrapped = unwrap_erc6492(signature)
        message_hash = hash_message(message)

        if wrapped is None and recover_signer(message, signature) == address:
            return True

        code = await chain.get_code(address)
        if has_code(code):
            inner = wrapped.inner if wrapped else signature
            return await erc1271_accepts(chain, address, message_hash, inner)

        if wrapped is None:
            return False

        if not self._validator_bytecode:
            logger.info(
                f"Predeploy signature for undeployed {address} "
                "but no universal validator bytecode configured"
            )
            return False

        args = encode(
            ["address", "bytes32", "bytes"],
            [to_checksum(address), message_hash, signature],
        )
        result = await chain.call(self._validator_bytecode + args)
        return int.from_bytes(result or b"\x00", "big") == 1


class EoaRetry:
    """Re-run the universal check once for addresses with no bytecode.

    The first pass can fail on a flaky RPC even for a valid EOA signature.
    """

    name = "eoa-retry"

    def __init__(self, primary: VerificationStrategy):
        self._primary = primary

    async def attempt(
        self, chain: ChainClient, address: str, message: str, signature: bytes
    ) -> bool:
        code = await chain.get_code(address)
        if has_code(code):
            return False
        return await self._primary.attempt(chain, address, message, signature)


class ManualErc1271:
    """Raw isValidSignature() call against a deployed wallet.

    Some wallets answer the raw interface correctly even when the universal
    pass misdetects them.
    """

    name = "manual-1271"

    async def attempt(
        self, chain: ChainClient, address: str, message: str, signature: bytes
    ) -> bool:
        code = await chain.get_code(address)
        if not has_code(code):
            return False
        return await erc1271_accepts(chain, address, hash_message(message), signature)


def default_strategies(validator_bytecode: bytes | None = None) -> list[VerificationStrategy]:
    """The three tiers in priority order."""
    universal = UniversalCheck(validator_bytecode)
    return [universal, EoaRetry(universal), ManualErc1271()]


# ============================================================================
# Verifier
# ============================================================================

ChainFactory = Callable[[ChainInfo, str], ChainClient]


class SignatureVerifier:
    """Runs the verification tiers against a chain selected per call.

    Args:
        chain_factory: Builds a ChainClient for (chain, rpc_url).
        strategies: Tiers in priority order (default: default_strategies()).
        rpc_urls: Per-chain RPC overrides, keyed by chain id.
        default_rpc_url: RPC used for any chain without a per-chain override.
        default_chain_id: Chain used when a request names none.
        timeout: Seconds allowed for each tier.
    """

    def __init__(
        self,
        chain_factory: ChainFactory = connect,
        strategies: list[VerificationStrategy] | None = None,
        rpc_urls: dict[int, str] | None = None,
        default_rpc_url: str | None = None,
        default_chain_id: int = DEFAULT_CHAIN_ID,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self._chain_factory = chain_factory
        self._strategies = strategies if strategies is not None else default_strategies()
        self._rpc_urls = dict(rpc_urls or {})
        self._default_rpc_url = default_rpc_url
        self._default_chain_id = default_chain_id
        self._timeout = timeout

    def resolve_rpc_url(self, chain: ChainInfo, rpc_url: str | None = None) -> str:
        """Explicit argument, then per-chain config, then global config, then public."""
        return (
            rpc_url
            or self._rpc_urls.get(chain.chain_id)
            or self._default_rpc_url
            or chain.rpc_url
        )

    async def verify(
        self,
        address: str,
        message: str,
        signature: str,
        chain_id: int | None = None,
        rpc_url: str | None = None,
    ) -> bool:
        """True if address authorized message. Never raises."""
        try:
            signer = canonicalize(address)
            sig_bytes = bytes(HexBytes(signature))
        except (InvalidAddress, ValueError, TypeError) as e:
            logger.warning(f"Rejecting malformed verification input: {e}")
            return False

        msg = normalize_line_endings(message or "")
        chain = pick_chain(chain_id if chain_id is not None else self._default_chain_id)

        try:
            client = self._chain_factory(chain, self.resolve_rpc_url(chain, rpc_url))
        except Exception as e:
            logger.warning(f"Could not build chain client for {chain.name}: {e}")
            return False

        try:
            for position, strategy in enumerate(self._strategies):
                if await self._attempt(strategy, client, signer, msg, sig_bytes, signature, position):
                    logger.debug(f"Signature for {signer} accepted by {strategy.name}")
                    return True
            logger.warning(f"Signature verification failed for {signer} on {chain.name}")
            return False
        finally:
            try:
                await client.close()
            except Exception as e:
                logger.debug(f"Chain client close failed: {e}")

    async def _attempt(
        self,
        strategy: VerificationStrategy,
        client: ChainClient,
        signer: str,
        message: str,
        sig_bytes: bytes,
        raw_signature: str,
        position: int,
    ) -> bool:
        try:
            ok = await asyncio.wait_for(
                strategy.attempt(client, signer, message, sig_bytes),
                timeout=self._timeout,
            )
        except Exception as e:
            logger.debug(f"{strategy.name} errored for {signer}: {e!r}")
            ok = False

        if not ok and position == 0 and looks_like_erc6492(raw_signature):
            logger.warning(
                f"ERC-6492 signature from {signer} failed the universal check; "
                "check the validator bytecode and RPC node support"
            )
        return ok
