"""
metaserve/ownership.py - Current NFT owner lookup via a GraphQL indexer

Optional secondary gate for registration and the source of final-owner
snapshots at finish. With no endpoint configured the oracle is inert:
callers check `configured` and skip the ownership check entirely.

The indexer keys tokens as "{contract}-{tokenId}" with a lower-cased
contract address.
"""

import logging

import httpx

from .addresses import canonicalize
from .errors import InvalidAddress

logger = logging.getLogger(__name__)

CURRENT_OWNER_QUERY = """
query CurrentOwner($id: ID!) {
  token(id: $id) {
    id
    owner {
      id
    }
  }
}
"""

DEFAULT_TIMEOUT_SECONDS = 10.0


def token_key(contract_address: str, token_id: str) -> str:
    """Composite indexer id for a token."""
    return f"{canonicalize(contract_address)}-{token_id}"


class OwnershipOracle:
    """Reads the current owner of an NFT from the indexer.

    Args:
        endpoint: GraphQL URL. None or "" leaves the oracle unconfigured.
        timeout: Seconds allowed for each lookup.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        endpoint: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.endpoint = endpoint or None
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return self.endpoint is not None

    async def current_owner(self, contract_address: str, token_id: str) -> str | None:
        """Lower-cased owner address, or None if it can't be determined."""
        if not self.configured:
            return None

        try:
            key = token_key(contract_address, str(token_id))
        except InvalidAddress as e:
            logger.warning(f"Ownership lookup skipped: {e}")
            return None

        payload = {"query": CURRENT_OWNER_QUERY, "variables": {"id": key}}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.endpoint, json=payload)
                resp.raise_for_status()
                body = resp.json()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.error(f"Ownership oracle error for {key}: {e}")
            return None

        if not isinstance(body, dict):
            logger.error(f"Ownership oracle returned a non-object body for {key}")
            return None

        if body.get("errors"):
            logger.error(f"Ownership oracle returned errors for {key}: {body['errors']}")
            return None

        data = body.get("data")
        token = data.get("token") if isinstance(data, dict) else None
        owner_ref = token.get("owner") if isinstance(token, dict) else None
        owner = owner_ref.get("id") if isinstance(owner_ref, dict) else None
        if not owner:
            logger.debug(f"No owner indexed for {key}")
            return None
        if not isinstance(owner, str):
            logger.warning(f"Indexer returned a malformed owner for {key}: {owner!r}")
            return None

        try:
            return canonicalize(owner)
        except InvalidAddress:
            logger.warning(f"Indexer returned a malformed owner for {key}: {owner!r}")
            return None
