"""Adapters for the external transaction toolchain (stellar CLI)."""

from .stellar_cli import (  # noqa: F401
    contract_invoke_args,
    format_cli_value,
    run_cli,
    tx_send_args,
)
