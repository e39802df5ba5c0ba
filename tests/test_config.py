"""Tests for metaserve.config: TOML file plus environment overrides."""

import textwrap
from pathlib import Path

import pytest

from metaserve.chain import BASE_MAINNET, BASE_SEPOLIA, CHAINS
from metaserve.config import (
    DEFAULT_DATABASE_PATH,
    DEFAULT_PORT,
    MetaserveConfig,
    build_oracle,
    build_verifier,
    load_config,
    validator_bytecode,
)


@pytest.fixture
def config_dir(tmp_path):
    """Temporary directory for config files."""
    return tmp_path


def _write_config(config_dir: Path, content: str) -> Path:
    """Write a metaserve.toml and return the path."""
    config_path = config_dir / "metaserve.toml"
    config_path.write_text(textwrap.dedent(content))
    return config_path


class TestLoadConfig:
    def test_missing_file_returns_defaults(self, config_dir):
        cfg = load_config(config_dir / "nonexistent.toml", environ={})
        assert isinstance(cfg, MetaserveConfig)
        assert cfg.database_path == DEFAULT_DATABASE_PATH
        assert cfg.port == DEFAULT_PORT
        assert cfg.chain.default_chain_id == BASE_MAINNET
        assert cfg.chain.rpc_url is None
        assert cfg.oracle.endpoint is None

    def test_full_config(self, config_dir):
        path = _write_config(config_dir, """\
            database_path = "/var/lib/metaserve.db"
            port = 8080

            [chain]
            default_chain_id = 84532
            rpc_url = "https://rpc.example"
            timeout_seconds = 3

            [chain.rpc_urls]
            84532 = "https://sepolia.example"

            [oracle]
            endpoint = "https://indexer.example"
            timeout_seconds = 2.5
        """)
        cfg = load_config(path, environ={})
        assert cfg.database_path == "/var/lib/metaserve.db"
        assert cfg.port == 8080
        assert cfg.chain.default_chain_id == BASE_SEPOLIA
        assert cfg.chain.rpc_url == "https://rpc.example"
        assert cfg.chain.rpc_urls == {BASE_SEPOLIA: "https://sepolia.example"}
        assert cfg.chain.timeout_seconds == 3.0
        assert cfg.oracle.endpoint == "https://indexer.example"
        assert cfg.oracle.timeout_seconds == 2.5

    def test_bad_toml_returns_defaults(self, config_dir):
        path = _write_config(config_dir, "this is not [valid toml")
        cfg = load_config(path, environ={})
        assert cfg.database_path == DEFAULT_DATABASE_PATH

    def test_config_path_from_env(self, config_dir):
        path = _write_config(config_dir, 'port = 9001\n')
        cfg = load_config(environ={"METASERVE_CONFIG": str(path)})
        assert cfg.port == 9001

    def test_env_overrides_file(self, config_dir):
        path = _write_config(config_dir, """\
            database_path = "file.db"
            port = 8080

            [chain]
            rpc_url = "https://file.example"

            [oracle]
            endpoint = "https://file-indexer.example"
        """)
        cfg = load_config(path, environ={
            "DATABASE_PATH": "env.db",
            "PORT": "9000",
            "RPC_URL": "https://env.example",
            "CHAIN_ID": "84532",
            "GOLDSKY_ENDPOINT": "https://env-indexer.example",
            "UNIVERSAL_VALIDATOR_BYTECODE": "0xdeadbeef",
        })
        assert cfg.database_path == "env.db"
        assert cfg.port == 9000
        assert cfg.chain.rpc_url == "https://env.example"
        assert cfg.chain.default_chain_id == BASE_SEPOLIA
        assert cfg.oracle.endpoint == "https://env-indexer.example"
        assert cfg.chain.universal_validator_bytecode == "0xdeadbeef"

    def test_bad_env_numbers_ignored(self, config_dir):
        cfg = load_config(config_dir / "none.toml", environ={"PORT": "http", "CHAIN_ID": "base"})
        assert cfg.port == DEFAULT_PORT
        assert cfg.chain.default_chain_id == BASE_MAINNET

    def test_empty_env_values_ignored(self, config_dir):
        cfg = load_config(config_dir / "none.toml", environ={"DATABASE_PATH": ""})
        assert cfg.database_path == DEFAULT_DATABASE_PATH


class TestBuilders:
    def test_validator_bytecode(self):
        cfg = MetaserveConfig()
        assert validator_bytecode(cfg) is None
        cfg.chain.universal_validator_bytecode = "0xdeadbeef"
        assert validator_bytecode(cfg) == b"\xde\xad\xbe\xef"
        cfg.chain.universal_validator_bytecode = "0xnothex"
        assert validator_bytecode(cfg) is None

    def test_verifier_rpc_resolution(self):
        cfg = MetaserveConfig()
        cfg.chain.rpc_url = "https://global.example"
        cfg.chain.rpc_urls = {BASE_SEPOLIA: "https://sepolia.example"}
        verifier = build_verifier(cfg)
        assert verifier.resolve_rpc_url(CHAINS[BASE_SEPOLIA]) == "https://sepolia.example"
        assert verifier.resolve_rpc_url(CHAINS[BASE_MAINNET]) == "https://global.example"

    def test_verifier_public_fallback(self):
        verifier = build_verifier(MetaserveConfig())
        assert verifier.resolve_rpc_url(CHAINS[BASE_MAINNET]) == "https://mainnet.base.org"

    def test_oracle(self):
        assert not build_oracle(MetaserveConfig()).configured
        cfg = MetaserveConfig()
        cfg.oracle.endpoint = "https://indexer.example"
        assert build_oracle(cfg).configured
