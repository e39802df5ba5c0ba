"""
metaserve/config.py - Server configuration

Reads a TOML file, then applies environment overrides. The file lives at
$METASERVE_CONFIG, falling back to ./metaserve.toml.

Example:
    database_path = "metaserve.db"
    port = 4000

    [chain]
    default_chain_id = 8453
    rpc_url = "https://mainnet.base.org"
    timeout_seconds = 10
    universal_validator_bytecode = "0x60806040..."

    [chain.rpc_urls]
    84532 = "https://sepolia.base.org"

    [oracle]
    endpoint = "https://api.goldsky.com/api/public/.../gn"
    timeout_seconds = 10

Environment overrides (highest precedence):
    DATABASE_PATH, PORT, RPC_URL, CHAIN_ID, GOLDSKY_ENDPOINT,
    UNIVERSAL_VALIDATOR_BYTECODE
"""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from hexbytes import HexBytes

from .chain import DEFAULT_CHAIN_ID
from .ownership import OwnershipOracle
from .signatures import DEFAULT_TIMEOUT_SECONDS, SignatureVerifier, default_strategies

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "METASERVE_CONFIG"
DEFAULT_CONFIG_PATH = Path("metaserve.toml")
DEFAULT_DATABASE_PATH = "metaserve.db"
DEFAULT_PORT = 4000


# ============================================================================
# Data Types
# ============================================================================


@dataclass
class ChainConfig:
    """RPC settings for signature verification."""

    default_chain_id: int = DEFAULT_CHAIN_ID
    rpc_url: str | None = None  # Global override; per-chain urls win over it
    rpc_urls: dict[int, str] = field(default_factory=dict)
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    universal_validator_bytecode: str | None = None  # ERC-6492 predeploy checks


@dataclass
class OracleConfig:
    """Ownership indexer. No endpoint disables ownership checks."""

    endpoint: str | None = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS


@dataclass
class MetaserveConfig:
    """Top-level configuration."""

    database_path: str = DEFAULT_DATABASE_PATH
    port: int = DEFAULT_PORT
    chain: ChainConfig = field(default_factory=ChainConfig)
    oracle: OracleConfig = field(default_factory=OracleConfig)


# ============================================================================
# Parsing
# ============================================================================


def _config_path(path: Path | None, environ: Mapping[str, str]) -> Path:
    if path is not None:
        return Path(path)
    if environ.get(CONFIG_ENV_VAR):
        return Path(environ[CONFIG_ENV_VAR]).expanduser()
    return DEFAULT_CONFIG_PATH


def _parse_chain(data: dict) -> ChainConfig:
    rpc_urls = {}
    for key, url in (data.get("rpc_urls") or {}).items():
        try:
            rpc_urls[int(key)] = url
        except ValueError:
            logger.warning(f"Ignoring rpc_urls entry with non-numeric chain id: {key!r}")
    return ChainConfig(
        default_chain_id=int(data.get("default_chain_id", DEFAULT_CHAIN_ID)),
        rpc_url=data.get("rpc_url"),
        rpc_urls=rpc_urls,
        timeout_seconds=float(data.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
        universal_validator_bytecode=data.get("universal_validator_bytecode"),
    )


def _parse_oracle(data: dict) -> OracleConfig:
    return OracleConfig(
        endpoint=data.get("endpoint"),
        timeout_seconds=float(data.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
    )


def _read_file(config_path: Path) -> MetaserveConfig:
    if not config_path.exists():
        return MetaserveConfig()

    try:
        with open(config_path, "rb") as f:
            raw = tomllib.load(f)
        return MetaserveConfig(
            database_path=raw.get("database_path", DEFAULT_DATABASE_PATH),
            port=int(raw.get("port", DEFAULT_PORT)),
            chain=_parse_chain(raw.get("chain", {})),
            oracle=_parse_oracle(raw.get("oracle", {})),
        )
    except Exception as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return MetaserveConfig()


def _apply_env(cfg: MetaserveConfig, environ: Mapping[str, str]) -> MetaserveConfig:
    if environ.get("DATABASE_PATH"):
        cfg.database_path = environ["DATABASE_PATH"]
    if environ.get("PORT"):
        try:
            cfg.port = int(environ["PORT"])
        except ValueError:
            logger.warning(f"Ignoring non-numeric PORT={environ['PORT']!r}")
    if environ.get("RPC_URL"):
        cfg.chain.rpc_url = environ["RPC_URL"]
    if environ.get("CHAIN_ID"):
        try:
            cfg.chain.default_chain_id = int(environ["CHAIN_ID"])
        except ValueError:
            logger.warning(f"Ignoring non-numeric CHAIN_ID={environ['CHAIN_ID']!r}")
    if environ.get("GOLDSKY_ENDPOINT"):
        cfg.oracle.endpoint = environ["GOLDSKY_ENDPOINT"]
    if environ.get("UNIVERSAL_VALIDATOR_BYTECODE"):
        cfg.chain.universal_validator_bytecode = environ["UNIVERSAL_VALIDATOR_BYTECODE"]
    return cfg


def load_config(
    path: Path | None = None, environ: Mapping[str, str] | None = None
) -> MetaserveConfig:
    """
    Build the effective configuration.

    Args:
        path: Config file (default: $METASERVE_CONFIG or ./metaserve.toml)
        environ: Environment mapping (default: os.environ)

    Returns:
        MetaserveConfig. Missing file or bad TOML falls back to defaults
        before environment overrides are applied.
    """
    environ = os.environ if environ is None else environ
    cfg = _read_file(_config_path(path, environ))
    return _apply_env(cfg, environ)


# ============================================================================
# Builders
# ============================================================================


def validator_bytecode(cfg: MetaserveConfig) -> bytes | None:
    """Decoded universal validator creation code, or None if unset or not hex."""
    raw = cfg.chain.universal_validator_bytecode
    if not raw:
        return None
    try:
        return bytes(HexBytes(raw))
    except ValueError:
        logger.warning("UNIVERSAL_VALIDATOR_BYTECODE is not valid hex; predeploy checks disabled")
        return None


def build_verifier(cfg: MetaserveConfig) -> SignatureVerifier:
    return SignatureVerifier(
        strategies=default_strategies(validator_bytecode(cfg)),
        rpc_urls=cfg.chain.rpc_urls,
        default_rpc_url=cfg.chain.rpc_url,
        default_chain_id=cfg.chain.default_chain_id,
        timeout=cfg.chain.timeout_seconds,
    )


def build_oracle(cfg: MetaserveConfig) -> OwnershipOracle:
    return OwnershipOracle(endpoint=cfg.oracle.endpoint, timeout=cfg.oracle.timeout_seconds)
