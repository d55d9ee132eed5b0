import os
from pathlib import Path
from typing import Optional

# Base directory for local state
BASE_DIR = Path(__file__).resolve().parent

# Local ledger host / snapshots
LEDGER_FILE_ENV = "CUSTODY_LEDGER_FILE"
DEFAULT_LEDGER_FILE = BASE_DIR / "ledger.yaml"
PROPOSAL_SNAPSHOT_ENV = "CUSTODY_PROPOSAL_SNAPSHOT"
LOCK_DIR = BASE_DIR / "locks"

# Network / contract settings consumed by the bridge
CONTRACT_ID_ENV = "ASSET_CONTRACT_ID"
SOURCE_ACCOUNT_ENV = "DEPLOYER_ID"
RPC_URL_ENV = "RPC_URL"
NETWORK_PASSPHRASE_ENV = "NETWORK_PASSPHRASE"
DEFAULT_RPC_URL = "https://soroban-testnet.stellar.org"
DEFAULT_NETWORK_PASSPHRASE = "Test SDF Network ; September 2015"

# External transaction toolchain
SOROBAN_CLI_ENV = "SOROBAN_CLI"
DEFAULT_SOROBAN_CLI = "stellar"

# Ledger storage lease (ledgers)
INSTANCE_TTL_THRESHOLD = 5000
INSTANCE_TTL_EXTEND_TO = 5000

# Off-chain approval quorum (independent of per-account required_signatures)
APPROVAL_QUORUM = 2

# HTTP server / auth / audit
PORT_ENV = "PORT"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000
API_TOKEN_ENV = "CUSTODY_API_TOKEN"
AUDIT_LOG_ENV = "CUSTODY_AUDIT_LOG"
LOG_LEVEL_ENV = "CUSTODY_LOG_LEVEL"


def ledger_file() -> Path:
    raw = os.environ.get(LEDGER_FILE_ENV)
    return Path(raw) if raw else DEFAULT_LEDGER_FILE


def proposal_snapshot_file() -> Optional[Path]:
    raw = os.environ.get(PROPOSAL_SNAPSHOT_ENV)
    return Path(raw) if raw else None


def audit_log_file() -> Optional[Path]:
    raw = os.environ.get(AUDIT_LOG_ENV)
    return Path(raw) if raw else None


def rpc_url() -> str:
    return os.environ.get(RPC_URL_ENV) or DEFAULT_RPC_URL


def soroban_cli() -> str:
    return os.environ.get(SOROBAN_CLI_ENV) or DEFAULT_SOROBAN_CLI
