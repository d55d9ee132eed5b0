import json

import pytest

from custody import config
from custody.cli import main


def test_create_deposit_withdraw_view(capsys):
    main(["create-account", "--owner", "O", "--required-signatures", "2", "--auth", "O"])
    main(["deposit", "--owner", "O", "--amount", "100", "--auth", "O"])
    main(["withdraw", "--owner", "O", "--amount", "40", "--signatures-count", "2", "--auth", "O"])
    capsys.readouterr()

    main(["view", "--owner", "O"])
    account = json.loads(capsys.readouterr().out)
    assert account["balance"] == 60
    assert account["required_signatures"] == 2

    main(["total"])
    assert capsys.readouterr().out.strip() == "1"


def test_ledger_abort_exits_with_reason():
    with pytest.raises(SystemExit) as excinfo:
        main(["create-account", "--owner", "O", "--required-signatures", "1", "--auth", "O"])
    assert "threshold" in str(excinfo.value)


def test_missing_authorization_exits():
    with pytest.raises(SystemExit) as excinfo:
        main(["create-account", "--owner", "O", "--required-signatures", "2"])
    assert "authorization" in str(excinfo.value)


def test_build_tx_requires_network_configuration():
    with pytest.raises(SystemExit) as excinfo:
        main(["build-tx", "total_accounts"])
    assert config.CONTRACT_ID_ENV in str(excinfo.value)


def test_audit_reads_recorded_events(monkeypatch, tmp_path, capsys):
    monkeypatch.setenv(config.AUDIT_LOG_ENV, str(tmp_path / "audit.log"))
    main(["create-account", "--owner", "O", "--required-signatures", "2", "--auth", "O"])
    capsys.readouterr()

    main(["audit", "--limit", "5"])

    out = capsys.readouterr().out
    assert "create_custody_account" in out
