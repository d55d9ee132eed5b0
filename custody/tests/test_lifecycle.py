import asyncio

import pytest

from custody.errors import NotFoundError, StateError
from custody.ledger import LedgerHost
from custody.lifecycle import WithdrawalRequest
from custody.state import ProposalStatus


def run(coro):
    return asyncio.run(coro)


def test_submit_then_list_includes_pending_proposal_once(lifecycle):
    async def scenario():
        pid = await lifecycle.submit("A", "O", "XLM", "40")
        return pid, await lifecycle.list()

    pid, proposals = run(scenario())

    matching = [p for p in proposals if p.id == pid]
    assert len(matching) == 1
    assert matching[0].status == ProposalStatus.PENDING
    assert matching[0].signatures == []


def test_list_preserves_insertion_order_and_returns_copies(lifecycle):
    async def scenario():
        ids = [await lifecycle.submit("A", f"O{i}", "XLM", str(i)) for i in range(3)]
        listed = await lifecycle.list()
        listed[0].signatures.append("tampered")
        return ids, listed, await lifecycle.list()

    ids, listed, again = run(scenario())
    assert [p.id for p in listed] == ids
    assert again[0].signatures == []


def test_same_signature_twice_is_deduplicated(lifecycle):
    async def scenario():
        pid = await lifecycle.submit("A", "O", "XLM", "40")
        await lifecycle.approve(pid, "K1", "s1")
        return await lifecycle.approve(pid, "K2", "s1")

    proposal = run(scenario())
    assert proposal.signatures == ["s1"]
    assert proposal.status == ProposalStatus.PENDING


def test_two_distinct_signatures_reach_quorum(lifecycle):
    async def scenario():
        pid = await lifecycle.submit("A", "O", "XLM", "40")
        first = await lifecycle.approve(pid, "K1", "s1")
        second = await lifecycle.approve(pid, "K1", "s2")
        return first, second

    first, second = run(scenario())
    assert first.status == ProposalStatus.PENDING
    assert second.status == ProposalStatus.READY_TO_SUBMIT
    assert second.signatures == ["s1", "s2"]


def test_unknown_proposal_is_absent_or_not_found(lifecycle):
    assert run(lifecycle.approve("missing", "K1", "s1")) is None
    with pytest.raises(NotFoundError):
        run(lifecycle.execute("missing"))


def test_execute_pending_proposal_is_state_error(lifecycle, fake_runner):
    async def scenario():
        pid = await lifecycle.submit("A", "O", "XLM", "40")
        await lifecycle.approve(pid, "K1", "s1")
        await lifecycle.execute(pid)

    with pytest.raises(StateError):
        run(scenario())
    assert fake_runner.calls == []


def test_custody_scenario_end_to_end(lifecycle, fake_runner):
    host = LedgerHost()
    assert host.create_account("O", 2, False, authorized_by=["O"]).ok
    assert host.deposit_assets("O", 100, authorized_by=["O"]).ok

    async def scenario():
        pid = await lifecycle.submit("A", "O", "XLM", "40")
        after_first = await lifecycle.approve(pid, "K1", "s1")
        after_second = await lifecycle.approve(pid, "K2", "s2")
        request = await lifecycle.prepare_withdrawal(pid)
        xdr = await lifecycle.execute(pid)
        return after_first, after_second, request, xdr

    after_first, after_second, request, xdr = run(scenario())

    assert after_first.status == ProposalStatus.PENDING
    assert after_second.status == ProposalStatus.READY_TO_SUBMIT
    assert request == WithdrawalRequest(owner="O", amount="40", signatures_count=2)
    assert xdr == "AAAAunsignedxdr"

    args = fake_runner.calls[-1]
    tail = args[args.index("--") + 1:]
    assert tail == ["withdraw_assets", "--owner", "O", "--amount", "40", "--signatures_count", "2"]

    result = host.invoke("withdraw_assets", request.to_params(), authorized_by=["O"])
    assert result.ok
    assert host.view_account("O").balance == 60


def test_ledger_rechecks_its_own_threshold(lifecycle):
    host = LedgerHost()
    host.create_account("O", 3, False, authorized_by=["O"])
    host.deposit_assets("O", 100, authorized_by=["O"])

    async def scenario():
        pid = await lifecycle.submit("A", "O", "XLM", "40")
        await lifecycle.approve(pid, "K1", "s1")
        await lifecycle.approve(pid, "K2", "s2")
        return await lifecycle.prepare_withdrawal(pid)

    request = run(scenario())
    result = host.invoke("withdraw_assets", request.to_params(), authorized_by=["O"])

    assert result.error_kind == "threshold"
    assert host.view_account("O").balance == 100


def test_retried_execute_reuses_built_envelope(lifecycle, fake_runner):
    async def scenario():
        pid = await lifecycle.submit("A", "O", "XLM", "40")
        await lifecycle.approve(pid, "K1", "s1")
        await lifecycle.approve(pid, "K2", "s2")
        first = await lifecycle.execute(pid)
        second = await lifecycle.execute(pid)
        await lifecycle.approve(pid, "K3", "s3")
        third = await lifecycle.execute(pid)
        return first, second, third

    first, second, third = run(scenario())
    assert first == second == third
    assert len(fake_runner.calls) == 2
    assert fake_runner.calls[-1][-1] == "3"


def test_submission_and_completion_close_the_proposal(lifecycle):
    async def scenario():
        pid = await lifecycle.submit("A", "O", "XLM", "40")
        await lifecycle.approve(pid, "K1", "s1")
        await lifecycle.approve(pid, "K2", "s2")
        await lifecycle.execute(pid)
        submitted = await lifecycle.record_submission(pid, "abc123")
        with pytest.raises(StateError):
            await lifecycle.execute(pid)
        completed = await lifecycle.complete(pid)
        return submitted, completed

    submitted, completed = run(scenario())
    assert submitted.status == ProposalStatus.SUBMITTED
    assert submitted.submission["tx_hash"] == "abc123"
    assert completed.status == ProposalStatus.COMPLETED


def test_complete_requires_submitted(lifecycle):
    async def scenario():
        pid = await lifecycle.submit("A", "O", "XLM", "40")
        await lifecycle.complete(pid)

    with pytest.raises(StateError):
        run(scenario())


def test_concurrent_approvals_are_all_recorded(lifecycle):
    async def scenario():
        pid = await lifecycle.submit("A", "O", "XLM", "40")
        await asyncio.gather(*(lifecycle.approve(pid, f"K{i}", f"s{i}") for i in range(10)))
        return (await lifecycle.list())[0]

    proposal = run(scenario())
    assert sorted(proposal.signatures) == sorted(f"s{i}" for i in range(10))
    assert proposal.status == ProposalStatus.READY_TO_SUBMIT


def test_snapshot_round_trip(lifecycle, tmp_path):
    from custody.storage import ProposalStore

    path = tmp_path / "proposals.yaml"

    async def scenario():
        pid = await lifecycle.submit("A", "O", "XLM", "40")
        await lifecycle.approve(pid, "K1", "s1")
        await lifecycle.store.save_snapshot(path)
        restored = ProposalStore()
        await restored.load_snapshot(path)
        return pid, await restored.list()

    pid, proposals = run(scenario())
    assert [(p.id, p.signatures, p.status) for p in proposals] == [(pid, ["s1"], ProposalStatus.PENDING)]


def test_concurrent_execute_builds_one_envelope():
    from custody.bridge import NetworkConfig, TransactionBridge
    from custody.lifecycle import ProposalLifecycle

    calls = []

    async def slow_runner(args):
        calls.append(list(args))
        await asyncio.sleep(0.05)
        return f"AAAAenvelope{len(calls)}\n", ""

    network = NetworkConfig(contract_id="CCUSTODY", source_account="GDEPLOYER")
    lifecycle = ProposalLifecycle(bridge=TransactionBridge(slow_runner), network=network)

    async def scenario():
        pid = await lifecycle.submit("A", "O", "XLM", "40")
        await lifecycle.approve(pid, "K1", "s1")
        await lifecycle.approve(pid, "K2", "s2")
        first, second = await asyncio.gather(lifecycle.execute(pid), lifecycle.execute(pid))
        stored = (await lifecycle.list())[0]
        return first, second, stored

    first, second, stored = run(scenario())
    assert len(calls) == 1
    assert first == second == "AAAAenvelope1"
    assert stored.execution["xdr"] == "AAAAenvelope1"


def test_failed_build_is_shared_and_then_retryable(fake_runner, lifecycle):
    from custody.errors import CollaboratorError

    fake_runner.error = CollaboratorError("CLI returned non-zero exit code.", stderr="boom")

    async def scenario():
        pid = await lifecycle.submit("A", "O", "XLM", "40")
        await lifecycle.approve(pid, "K1", "s1")
        await lifecycle.approve(pid, "K2", "s2")
        outcomes = await asyncio.gather(lifecycle.execute(pid), lifecycle.execute(pid), return_exceptions=True)
        fake_runner.error = None
        return outcomes, await lifecycle.execute(pid)

    outcomes, xdr = run(scenario())
    assert all(isinstance(outcome, CollaboratorError) for outcome in outcomes)
    assert xdr == "AAAAunsignedxdr"


def test_submission_requires_built_envelope(lifecycle):
    async def scenario():
        pid = await lifecycle.submit("A", "O", "XLM", "40")
        await lifecycle.approve(pid, "K1", "s1")
        await lifecycle.approve(pid, "K2", "s2")
        with pytest.raises(StateError):
            await lifecycle.record_submission(pid, "abc123")
        return (await lifecycle.list())[0]

    proposal = run(scenario())
    assert proposal.status == ProposalStatus.READY_TO_SUBMIT
    assert proposal.submission == {}
