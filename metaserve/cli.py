#!/usr/bin/env python3
"""
metaserve/cli.py - Command line interface for MetaServe tournaments

Usage:
    metaserve serve [--port PORT] [--db PATH] [--config PATH]
    metaserve message <tournament_id> <contract> <token_id> [--timestamp TS]
    metaserve verify <address> <signature> (--message TEXT | --message-file PATH) [--chain-id ID]
"""

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path

from .config import build_verifier, load_config
from .errors import InvalidAddress
from .messages import build_registration_message

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def cmd_serve(args):
    """Start the tournament API server."""
    try:
        import uvicorn
    except ImportError:
        logger.error("Serving requires extra dependencies: pip install metaserve[server]")
        return 1

    from tournament_api.server import app

    config = load_config(Path(args.config) if args.config else None)
    if args.db:
        config.database_path = args.db
    if args.port:
        config.port = args.port

    app.state.config = config
    logger.info(f"Starting tournament server on port {config.port} (db: {config.database_path})")
    uvicorn.run(app, host=args.host, port=config.port, log_level="info")
    return 0


def cmd_message(args):
    """Print the registration message a wallet should sign."""
    timestamp = args.timestamp if args.timestamp is not None else int(time.time())
    try:
        message = build_registration_message(
            args.tournament_id, args.contract, args.token_id, timestamp
        )
    except InvalidAddress as e:
        logger.error(str(e))
        return 1
    print(message)
    return 0


def cmd_verify(args):
    """Check a signature against the configured chain."""
    if args.message_file:
        message = Path(args.message_file).read_text()
    else:
        message = args.message

    config = load_config(Path(args.config) if args.config else None)
    verifier = build_verifier(config)
    ok = asyncio.run(
        verifier.verify(args.address, message, args.signature, chain_id=args.chain_id)
    )
    if ok:
        logger.info(f"Signature valid for {args.address}")
        return 0
    logger.error(f"Signature NOT valid for {args.address}")
    return 1


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="MetaServe - NFT-gated tournament backend",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the tournament API server")
    serve_parser.add_argument("--port", type=int, default=None, help="Port (default: config or 4000)")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    serve_parser.add_argument("--db", default=None, help="SQLite database path (default: config)")
    serve_parser.add_argument("--config", default=None, help="Config file (default: metaserve.toml)")
    serve_parser.set_defaults(func=cmd_serve)

    # message command
    message_parser = subparsers.add_parser("message", help="Print a registration message to sign")
    message_parser.add_argument("tournament_id", help="Tournament id")
    message_parser.add_argument("contract", help="NFT contract address")
    message_parser.add_argument("token_id", help="NFT token id")
    message_parser.add_argument("--timestamp", type=int, default=None, help="Unix seconds (default: now)")
    message_parser.set_defaults(func=cmd_message)

    # verify command
    verify_parser = subparsers.add_parser("verify", help="Verify a wallet signature")
    verify_parser.add_argument("address", help="Claimed signer address")
    verify_parser.add_argument("signature", help="0x-prefixed signature")
    source = verify_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--message", help="Signed message text")
    source.add_argument("--message-file", help="File holding the signed message")
    verify_parser.add_argument("--chain-id", type=int, default=None, help="Chain id (default: config)")
    verify_parser.add_argument("--config", default=None, help="Config file (default: metaserve.toml)")
    verify_parser.set_defaults(func=cmd_verify)

    args = parser.parse_args(argv)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
