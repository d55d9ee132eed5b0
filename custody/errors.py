"""Error taxonomy shared by the ledger, the proposal workflow and the bridge."""

from typing import Optional


class CustodyError(Exception):
    kind = "custody_error"


class ValidationError(CustodyError):
    kind = "validation"


class NotFoundError(CustodyError):
    kind = "not_found"


class AuthorizationError(CustodyError):
    kind = "authorization"


class ThresholdError(CustodyError):
    kind = "threshold"


class StateError(CustodyError):
    kind = "state"


class ConfigurationError(CustodyError):
    kind = "configuration"


class CollaboratorError(CustodyError):
    """Failure of the external transaction toolchain.

    ``stdout`` and ``stderr`` hold the raw process output so callers can
    surface it unchanged.
    """

    kind = "collaborator"

    def __init__(self, message: str, stdout: Optional[str] = None, stderr: Optional[str] = None):
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr
