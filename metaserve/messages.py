"""
metaserve/messages.py - The message a wallet signs to register a card

The default message binds tournament, contract, token and timestamp so a
signature cannot be replayed against a different card or tournament.
"""

from .addresses import canonicalize

REGISTRATION_HEADER = "MetaServe Tournament Registration"


def build_registration_message(
    tournament_id: str,
    contract_address: str,
    token_id: str,
    timestamp: int,
) -> str:
    """Build the canonical registration message.

    Example:
        MetaServe Tournament Registration
        Tournament: clx0abc
        Card: 0xabc...def#42
        Timestamp: 1717000000
    """
    return (
        f"{REGISTRATION_HEADER}\n"
        f"Tournament: {tournament_id}\n"
        f"Card: {canonicalize(contract_address)}#{token_id}\n"
        f"Timestamp: {timestamp}"
    )


def normalize_line_endings(message: str) -> str:
    """Collapse \\r\\n and bare \\r to \\n. Apply before hashing."""
    return message.replace("\r\n", "\n").replace("\r", "\n")
