import argparse
import asyncio
import json
import logging
import os
from typing import Any, Dict, List, Optional

from . import config
from .audit import read_events, record_event
from .bridge import NetworkConfig, TransactionBridge
from .errors import CustodyError, ValidationError
from .ledger import InvocationResult, open_ledger


def _parse_params(raw: List[str]) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    for item in raw:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValidationError(f"Invalid --param '{item}', expected key=value")
        params[key] = value
    return params


def _print_result(function: str, result: InvocationResult) -> None:
    if not result.ok:
        raise SystemExit(f"{function} aborted ({result.error_kind}): {result.error}")
    print(json.dumps(result.to_dict()["value"], indent=2))


def _invoke(function: str, params: Dict[str, Any], authorized_by: List[str]) -> None:
    with open_ledger() as host:
        result = host.invoke(function, params, authorized_by)
    owner = params.get("owner", "")
    record_event(
        "ledger",
        "",
        owner,
        {"function": function, "ok": result.ok, "error": result.error},
    )
    _print_result(function, result)


def handle_create_account(args: argparse.Namespace) -> None:
    _invoke(
        "create_custody_account",
        {
            "owner": args.owner,
            "required_signatures": args.required_signatures,
            "insurance": args.insured,
        },
        args.auth,
    )


def handle_deposit(args: argparse.Namespace) -> None:
    _invoke("deposit_assets", {"owner": args.owner, "amount": args.amount}, args.auth)


def handle_withdraw(args: argparse.Namespace) -> None:
    _invoke(
        "withdraw_assets",
        {"owner": args.owner, "amount": args.amount, "signatures_count": args.signatures_count},
        args.auth,
    )


def handle_view(args: argparse.Namespace) -> None:
    with open_ledger() as host:
        account = host.view_account(args.owner)
    print(json.dumps(account.to_dict(), indent=2))


def handle_total(_: argparse.Namespace) -> None:
    with open_ledger() as host:
        print(host.total_accounts())


def handle_build_tx(args: argparse.Namespace) -> None:
    try:
        params = _parse_params(args.param)
        xdr = asyncio.run(TransactionBridge().build_for(NetworkConfig.from_env(), args.function, params))
    except CustodyError as exc:
        raise SystemExit(str(exc))
    print(xdr)


def handle_submit_tx(args: argparse.Namespace) -> None:
    try:
        tx_hash = asyncio.run(TransactionBridge().submit_signed(config.rpc_url(), args.signed_xdr))
    except CustodyError as exc:
        raise SystemExit(str(exc))
    print(tx_hash)


def handle_audit(args: argparse.Namespace) -> None:
    events = read_events(limit=args.limit)
    if not events:
        print("No audit events.")
        return
    for ev in events:
        print(
            f"{ev.get('timestamp')} {ev.get('event')} proposal={ev.get('proposal_id')} "
            f"actor={ev.get('actor')} data={ev.get('data')}"
        )


def handle_serve(args: argparse.Namespace) -> None:
    import uvicorn

    port = args.port or int(os.environ.get(config.PORT_ENV, config.DEFAULT_PORT))
    uvicorn.run("custody.api:app", host=args.host, port=port)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Multi-party asset custody CLI")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=config.DEFAULT_HOST)
    serve.add_argument("--port", type=int, help=f"Port (default: ${config.PORT_ENV} or {config.DEFAULT_PORT})")
    serve.set_defaults(func=handle_serve)

    def ledger_command(name: str, help_text: str) -> argparse.ArgumentParser:
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--owner", required=True, help="Custody account owner identity")
        cmd.add_argument(
            "--auth",
            action="append",
            default=[],
            help="Identity that authorized this invocation (repeatable)",
        )
        return cmd

    create = ledger_command("create-account", "Create a custody account in the local ledger")
    create.add_argument("--required-signatures", type=int, required=True)
    create.add_argument("--insured", action="store_true", help="Mark the account as insured")
    create.set_defaults(func=handle_create_account)

    deposit = ledger_command("deposit", "Deposit into a custody account")
    deposit.add_argument("--amount", type=int, required=True)
    deposit.set_defaults(func=handle_deposit)

    withdraw = ledger_command("withdraw", "Withdraw from a custody account")
    withdraw.add_argument("--amount", type=int, required=True)
    withdraw.add_argument("--signatures-count", type=int, required=True)
    withdraw.set_defaults(func=handle_withdraw)

    view = sub.add_parser("view", help="Show a custody account")
    view.add_argument("--owner", required=True)
    view.set_defaults(func=handle_view)

    total = sub.add_parser("total", help="Show the number of custody accounts created")
    total.set_defaults(func=handle_total)

    build = sub.add_parser("build-tx", help="Build an unsigned contract invocation")
    build.add_argument("function", help="Contract function name")
    build.add_argument("--param", action="append", default=[], help="Argument as key=value (repeatable)")
    build.set_defaults(func=handle_build_tx)

    submit = sub.add_parser("submit-tx", help="Broadcast a signed transaction envelope")
    submit.add_argument("signed_xdr")
    submit.set_defaults(func=handle_submit_tx)

    audit_cmd = sub.add_parser("audit", help="Show recent audit events")
    audit_cmd.add_argument("--limit", type=int, default=50, help="Number of events to show")
    audit_cmd.set_defaults(func=handle_audit)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    logging.basicConfig(
        level=os.environ.get(config.LOG_LEVEL_ENV, "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
