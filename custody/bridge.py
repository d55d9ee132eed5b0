"""Translate ledger calls into invocations of the external transaction toolchain."""

import logging
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, Tuple

from . import config
from .adapters import stellar_cli
from .errors import CollaboratorError, ConfigurationError

logger = logging.getLogger(__name__)

Runner = Callable[[Sequence[str]], Awaitable[Tuple[str, str]]]


@dataclass(frozen=True)
class NetworkConfig:
    contract_id: str
    source_account: str
    rpc_url: str = config.DEFAULT_RPC_URL
    network_passphrase: str = config.DEFAULT_NETWORK_PASSPHRASE

    @classmethod
    def from_env(cls) -> "NetworkConfig":
        contract_id = os.environ.get(config.CONTRACT_ID_ENV, "").strip()
        source = os.environ.get(config.SOURCE_ACCOUNT_ENV, "").strip()
        if not contract_id or not source:
            raise ConfigurationError(
                f"{config.CONTRACT_ID_ENV} or {config.SOURCE_ACCOUNT_ENV} not set"
            )
        return cls(
            contract_id=contract_id,
            source_account=source,
            rpc_url=config.rpc_url(),
            network_passphrase=os.environ.get(config.NETWORK_PASSPHRASE_ENV)
            or config.DEFAULT_NETWORK_PASSPHRASE,
        )


class TransactionBridge:
    """Stateless translation layer; ``runner`` is the external collaborator."""

    def __init__(self, runner: Optional[Runner] = None):
        self.runner: Runner = runner or stellar_cli.run_cli

    async def build_invocation(
        self,
        contract_id: str,
        source_account: str,
        rpc_url: str,
        network_passphrase: str,
        function: str,
        params: Mapping[str, Any],
    ) -> str:
        args = stellar_cli.contract_invoke_args(
            contract_id, source_account, rpc_url, network_passphrase, function, params
        )
        logger.info("Building XDR for fn %s", function)
        logger.debug("CLI args: %s", args)
        stdout, _ = await self.runner(args)
        xdr = stdout.strip()
        if not xdr:
            raise CollaboratorError("CLI produced no transaction envelope", stdout=stdout)
        return xdr

    async def build_for(self, network: NetworkConfig, function: str, params: Mapping[str, Any]) -> str:
        return await self.build_invocation(
            network.contract_id,
            network.source_account,
            network.rpc_url,
            network.network_passphrase,
            function,
            params,
        )

    async def submit_signed(self, rpc_url: str, signed_xdr: str) -> str:
        logger.info("Submitting signed transaction to %s", rpc_url)
        stdout, _ = await self.runner(stellar_cli.tx_send_args(rpc_url, signed_xdr.strip()))
        return stdout.strip()
