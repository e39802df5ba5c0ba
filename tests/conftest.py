"""Shared fixtures: deterministic accounts, an in-process chain, store runner."""

import asyncio

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from metaserve.chain import EIP1271_MAGIC
from metaserve.signatures import SignatureVerifier
from metaserve.store import TournamentDB

# Fixed test keys for deterministic signatures
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe512961708279f3a3e6d8b4f8e2c7e1"
OTHER_PRIVATE_KEY = "0x6c875bfb4f247fcbcd37fd56f564fca0cfaf6458cd5e8878e9ef32ecdc1fb3f4"
CONTRACT = "0x1234567890AbcdEF1234567890aBcdef12345678"
MAGIC = bytes.fromhex(EIP1271_MAGIC[2:])


def sign(account, message: str) -> str:
    """EIP-191 personal_sign, 0x-prefixed hex."""
    signed = Account.sign_message(encode_defunct(text=message), private_key=account.key)
    return "0x" + bytes(signed.signature).hex()


class FakeChain:
    """In-process ChainClient.

    code maps lower-cased address -> bytecode. erc1271 is called as
    erc1271(address, message_hash, signature) and returns the 4-byte answer
    or raises. call_result is returned from deployless calls.
    """

    def __init__(self, code=None, erc1271=None, call_result=b""):
        self.code = {k.lower(): v for k, v in (code or {}).items()}
        self.erc1271 = erc1271
        self.call_result = call_result
        self.calls = []
        self.closed = False

    async def get_code(self, address):
        self.calls.append(("get_code", address))
        return self.code.get(address.lower(), b"")

    async def is_valid_signature(self, address, message_hash, signature):
        self.calls.append(("isValidSignature", address, message_hash, signature))
        if self.erc1271 is None:
            raise RuntimeError("execution reverted")
        return self.erc1271(address, message_hash, signature)

    async def call(self, data):
        self.calls.append(("call", data))
        return self.call_result

    async def close(self):
        self.closed = True

    def count(self, name):
        return sum(1 for c in self.calls if c[0] == name)


def make_verifier(chain: FakeChain | None = None, **kwargs) -> SignatureVerifier:
    chain = chain or FakeChain()
    return SignatureVerifier(chain_factory=lambda info, url: chain, **kwargs)


def run_with_db(scenario):
    """Run scenario(db) against a fresh in-memory store on its own event loop."""

    async def go():
        db = await TournamentDB.open(":memory:")
        try:
            return await scenario(db)
        finally:
            await db.close()

    return asyncio.run(go())


@pytest.fixture
def account():
    return Account.from_key(TEST_PRIVATE_KEY)


@pytest.fixture
def other_account():
    return Account.from_key(OTHER_PRIVATE_KEY)


@pytest.fixture
def fake_chain():
    return FakeChain()
