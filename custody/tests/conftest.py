import pytest

from custody import config
from custody.bridge import NetworkConfig, TransactionBridge
from custody.lifecycle import ProposalLifecycle

NETWORK = NetworkConfig(contract_id="CCUSTODY", source_account="GDEPLOYER")


class FakeRunner:
    """Stands in for the stellar CLI; records every argument list."""

    def __init__(self, stdout: str = "AAAAunsignedxdr\n"):
        self.calls = []
        self.stdout = stdout
        self.error = None

    async def __call__(self, args):
        self.calls.append(list(args))
        if self.error is not None:
            raise self.error
        return self.stdout, ""


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    for name in (
        config.AUDIT_LOG_ENV,
        config.API_TOKEN_ENV,
        config.PROPOSAL_SNAPSHOT_ENV,
        config.CONTRACT_ID_ENV,
        config.SOURCE_ACCOUNT_ENV,
        config.RPC_URL_ENV,
        config.NETWORK_PASSPHRASE_ENV,
        config.SOROBAN_CLI_ENV,
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv(config.LEDGER_FILE_ENV, str(tmp_path / "ledger.yaml"))
    monkeypatch.setattr(config, "LOCK_DIR", tmp_path / "locks")


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def lifecycle(fake_runner):
    return ProposalLifecycle(bridge=TransactionBridge(fake_runner), network=NETWORK)
