"""Custody ledger: per-owner accounts guarded by ownership, activity and
signature-threshold invariants.

``CustodyLedger`` checks every invariant before it touches storage.
``LedgerHost`` plays the execution host: each named entry point runs against
a copy of storage that is committed only when the entry point returns, so an
error raised anywhere leaves no observable change.

The ledger trusts the ``signatures_count`` handed to ``withdraw_assets``; it
never sees who signed. Signer verification happens (or not) upstream.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, Mapping, Optional, Tuple

from . import config
from .auth import require_auth
from .errors import CustodyError, NotFoundError, StateError, ThresholdError, ValidationError
from .utils import dump_yaml, file_lock, load_yaml

logger = logging.getLogger(__name__)

MIN_REQUIRED_SIGNATURES = 2

# contract value ranges: balances and amounts are i128, counts are u32
I128_MIN = -(2**127)
I128_MAX = 2**127 - 1
U32_MAX = 2**32 - 1


@dataclass
class CustodyAccount:
    owner: str
    balance: int = 0
    required_signatures: int = 0
    is_insured: bool = False
    is_active: bool = False

    @classmethod
    def sentinel(cls, owner: str) -> "CustodyAccount":
        """Zero-valued record returned for owners without an account."""
        return cls(owner=owner)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "balance": self.balance,
            "required_signatures": self.required_signatures,
            "is_insured": self.is_insured,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CustodyAccount":
        return cls(
            owner=data["owner"],
            balance=int(data.get("balance", 0)),
            required_signatures=int(data.get("required_signatures", 0)),
            is_insured=bool(data.get("is_insured", False)),
            is_active=bool(data.get("is_active", False)),
        )


@dataclass
class LedgerStorage:
    """Storage region owned exclusively by the ledger."""

    accounts: Dict[str, CustodyAccount] = field(default_factory=dict)
    total_accounts: int = 0
    sequence: int = 0
    live_until: int = 0

    def extend_ttl(self, threshold: int, extend_to: int) -> None:
        if self.live_until - self.sequence < threshold:
            self.live_until = self.sequence + extend_to

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_accounts": self.total_accounts,
            "sequence": self.sequence,
            "live_until": self.live_until,
            "accounts": [account.to_dict() for account in self.accounts.values()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerStorage":
        accounts = [CustodyAccount.from_dict(item) for item in data.get("accounts", [])]
        return cls(
            accounts={account.owner: account for account in accounts},
            total_accounts=int(data.get("total_accounts", 0)),
            sequence=int(data.get("sequence", 0)),
            live_until=int(data.get("live_until", 0)),
        )


class CustodyLedger:
    def __init__(self, storage: Optional[LedgerStorage] = None, authorized: Iterable[str] = ()):
        self.storage = storage if storage is not None else LedgerStorage()
        self.authorized = frozenset(authorized)

    def _extend_lease(self) -> None:
        self.storage.extend_ttl(config.INSTANCE_TTL_THRESHOLD, config.INSTANCE_TTL_EXTEND_TO)

    def _active_account(self, owner: str) -> CustodyAccount:
        account = self.storage.accounts.get(owner)
        if account is None:
            raise NotFoundError(f"Custody account not found for {owner}")
        if not account.is_active:
            raise StateError(f"Custody account for {owner} is not active")
        return account

    def create_account(self, owner: str, required_signatures: int, insured: bool) -> bool:
        require_auth(owner, self.authorized)

        if owner in self.storage.accounts:
            logger.warning("Custody account already exists for %s", owner)
            return False

        if required_signatures < MIN_REQUIRED_SIGNATURES:
            raise ThresholdError(
                f"Multi-sig requires at least {MIN_REQUIRED_SIGNATURES} signatures (got {required_signatures})"
            )

        self.storage.accounts[owner] = CustodyAccount(
            owner=owner,
            balance=0,
            required_signatures=required_signatures,
            is_insured=insured,
            is_active=True,
        )
        self.storage.total_accounts += 1
        self._extend_lease()

        logger.info("Custody account created for %s (required_signatures=%d)", owner, required_signatures)
        return True

    def deposit_assets(self, owner: str, amount: int) -> bool:
        require_auth(owner, self.authorized)

        if amount <= 0:
            raise ValidationError("Deposit amount must be positive")

        account = self._active_account(owner)
        if account.balance + amount > I128_MAX:
            raise ValidationError("Deposit would overflow the account balance")
        account.balance += amount
        self._extend_lease()

        logger.info("Deposit of %d for %s. New balance: %d", amount, owner, account.balance)
        return True

    def withdraw_assets(self, owner: str, amount: int, signatures_count: int) -> bool:
        require_auth(owner, self.authorized)

        if amount <= 0:
            raise ValidationError("Withdrawal amount must be positive")

        account = self._active_account(owner)

        if signatures_count < account.required_signatures:
            raise ThresholdError(
                f"Insufficient signatures. Required: {account.required_signatures}, "
                f"Provided: {signatures_count}"
            )

        if account.balance < amount:
            raise ValidationError("Insufficient balance for withdrawal")

        account.balance -= amount
        self._extend_lease()

        logger.info("Withdrawal of %d for %s. Remaining: %d", amount, owner, account.balance)
        return True

    def view_account(self, owner: str) -> CustodyAccount:
        account = self.storage.accounts.get(owner)
        if account is None:
            return CustodyAccount.sentinel(owner)
        return copy.copy(account)

    def total_accounts(self) -> int:
        return self.storage.total_accounts


def _identity(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} must be a non-empty identity string")
    return value.strip()


def _integer(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            raise ValidationError(f"{name} must be an integer, got {value!r}") from None
    raise ValidationError(f"{name} must be an integer, got {value!r}")


def _bounded(low: int, high: int, type_name: str) -> Callable[[str, Any], int]:
    def coerce(name: str, value: Any) -> int:
        number = _integer(name, value)
        if not low <= number <= high:
            raise ValidationError(f"{name} is out of {type_name} range: {number}")
        return number

    return coerce


_i128 = _bounded(I128_MIN, I128_MAX, "i128")
_u32 = _bounded(0, U32_MAX, "u32")


def _boolean(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
        return value.strip().lower() == "true"
    raise ValidationError(f"{name} must be a boolean, got {value!r}")


ArgSpec = Tuple[Tuple[str, Callable[[str, Any], Any]], ...]

# entry point name -> (CustodyLedger method, ordered argument coercions)
ENTRY_POINTS: Dict[str, Tuple[str, ArgSpec]] = {
    "create_custody_account": (
        "create_account",
        (("owner", _identity), ("required_signatures", _u32), ("insurance", _boolean)),
    ),
    "deposit_assets": ("deposit_assets", (("owner", _identity), ("amount", _i128))),
    "withdraw_assets": (
        "withdraw_assets",
        (("owner", _identity), ("amount", _i128), ("signatures_count", _u32)),
    ),
    "view_custody_account": ("view_account", (("owner", _identity),)),
    "total_accounts": ("total_accounts", ()),
}


@dataclass
class InvocationResult:
    ok: bool
    value: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        value = self.value.to_dict() if isinstance(self.value, CustodyAccount) else self.value
        return {"ok": self.ok, "value": value, "error": self.error, "error_kind": self.error_kind}


class LedgerHost:
    """Runs ledger entry points one at a time with all-or-nothing commits."""

    def __init__(self, storage: Optional[LedgerStorage] = None):
        self.storage = storage if storage is not None else LedgerStorage()
        self._lock = threading.Lock()

    def invoke(
        self,
        function: str,
        params: Optional[Mapping[str, Any]] = None,
        authorized_by: Iterable[str] = (),
    ) -> InvocationResult:
        params = params or {}
        with self._lock:
            working = copy.deepcopy(self.storage)
            working.sequence += 1
            ledger = CustodyLedger(working, authorized_by)
            try:
                value = self._dispatch(ledger, function, params)
            except CustodyError as exc:
                logger.warning("Invocation of %s aborted (%s): %s", function, exc.kind, exc)
                return InvocationResult(ok=False, error=str(exc), error_kind=exc.kind)
            self.storage = working
        return InvocationResult(ok=True, value=value)

    @staticmethod
    def _dispatch(ledger: CustodyLedger, function: str, params: Mapping[str, Any]) -> Any:
        if function not in ENTRY_POINTS:
            raise ValidationError(f"Unknown entry point: {function}")
        method_name, arg_spec = ENTRY_POINTS[function]
        args = []
        for name, coerce in arg_spec:
            if name not in params:
                raise ValidationError(f"Missing argument '{name}' for {function}")
            args.append(coerce(name, params[name]))
        return getattr(ledger, method_name)(*args)

    def create_account(
        self, owner: str, required_signatures: int, insured: bool, authorized_by: Iterable[str] = ()
    ) -> InvocationResult:
        return self.invoke(
            "create_custody_account",
            {"owner": owner, "required_signatures": required_signatures, "insurance": insured},
            authorized_by,
        )

    def deposit_assets(self, owner: str, amount: int, authorized_by: Iterable[str] = ()) -> InvocationResult:
        return self.invoke("deposit_assets", {"owner": owner, "amount": amount}, authorized_by)

    def withdraw_assets(
        self, owner: str, amount: int, signatures_count: int, authorized_by: Iterable[str] = ()
    ) -> InvocationResult:
        return self.invoke(
            "withdraw_assets",
            {"owner": owner, "amount": amount, "signatures_count": signatures_count},
            authorized_by,
        )

    def view_account(self, owner: str) -> CustodyAccount:
        return CustodyLedger(self.storage).view_account(owner)

    def total_accounts(self) -> int:
        return self.storage.total_accounts


def load_ledger(path: Path) -> LedgerHost:
    return LedgerHost(LedgerStorage.from_dict(load_yaml(path)))


def save_ledger(host: LedgerHost, path: Path) -> None:
    dump_yaml(host.storage.to_dict(), path)


@contextmanager
def open_ledger(path: Optional[Path] = None) -> Iterator[LedgerHost]:
    """Load the file-backed ledger, yield its host and write it back on success."""
    ledger_path = path or config.ledger_file()
    with file_lock(config.LOCK_DIR / "ledger.lock"):
        host = load_ledger(ledger_path)
        yield host
        save_ledger(host, ledger_path)
