import os
from typing import Iterable, Optional, Set

from . import config
from .errors import AuthorizationError


def require_auth(identity: str, authorized: Iterable[str]) -> None:
    """Raise unless ``identity`` is among the identities that authorized the call.

    This stands in for the execution host's authorization entries; it checks
    presence only and performs no signature verification.
    """
    if not identity or identity not in set(authorized):
        raise AuthorizationError(f"Authorization required from {identity or '<empty>'}")


def load_api_tokens() -> Set[str]:
    token = os.environ.get(config.API_TOKEN_ENV)
    return {token.strip()} if token and token.strip() else set()


def check_api_token(provided: Optional[str]) -> bool:
    tokens = load_api_tokens()
    if not tokens:
        return True
    return bool(provided) and provided in tokens
