import asyncio
import json
import logging
from typing import Any, List, Mapping, Sequence, Tuple

from .. import config
from ..errors import CollaboratorError

logger = logging.getLogger(__name__)


async def run_cli(args: Sequence[str]) -> Tuple[str, str]:
    """Run the transaction CLI and return (stdout, stderr)."""
    cmd = [config.soroban_cli()] + list(args)
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise CollaboratorError(
            "failed to spawn CLI process (ensure stellar CLI is installed and "
            f"{config.SOROBAN_CLI_ENV} points to it): {exc}"
        ) from exc

    raw_out, raw_err = await proc.communicate()
    stdout = raw_out.decode("utf-8", errors="replace")
    stderr = raw_err.decode("utf-8", errors="replace")

    if proc.returncode != 0:
        raise CollaboratorError(
            f"CLI returned non-zero exit code.\nstdout:\n{stdout}\nstderr:\n{stderr}",
            stdout=stdout,
            stderr=stderr,
        )
    if stderr.strip():
        logger.warning("CLI stderr: %s", stderr.strip())
    return stdout, stderr


def format_cli_value(value: Any) -> str:
    # strings go through bare, everything else as its JSON literal
    if isinstance(value, str):
        return value
    return json.dumps(value)


def contract_invoke_args(
    contract_id: str,
    source_account: str,
    rpc_url: str,
    network_passphrase: str,
    function: str,
    params: Mapping[str, Any],
) -> List[str]:
    args = [
        "contract",
        "invoke",
        "--id",
        contract_id,
        "--source-account",
        source_account,
        "--rpc-url",
        rpc_url,
        "--network-passphrase",
        network_passphrase,
        "--send=no",
        "--build-only",
        "--",
        function,
    ]
    for key, value in params.items():
        args.append(f"--{key}")
        args.append(format_cli_value(value))
    return args


def tx_send_args(rpc_url: str, signed_xdr: str) -> List[str]:
    return ["tx", "send", "--rpc-url", rpc_url, "--xdr", signed_xdr]
