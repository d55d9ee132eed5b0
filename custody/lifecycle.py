"""Proposal workflow: collect signatures until quorum, then hand the withdrawal
to the bridge.

The quorum here is the fixed ``config.APPROVAL_QUORUM``. It is deliberately
not tied to an account's ``required_signatures``; the ledger re-checks its own
threshold when the withdrawal is invoked.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from . import config
from .audit import record_event
from .bridge import NetworkConfig, TransactionBridge
from .errors import NotFoundError, StateError
from .state import ProposalStatus
from .storage import Proposal, ProposalStore
from .utils import utc_now

logger = logging.getLogger(__name__)

WITHDRAW_FUNCTION = "withdraw_assets"


@dataclass(frozen=True)
class WithdrawalRequest:
    owner: str
    amount: str
    signatures_count: int

    def to_params(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "amount": self.amount,
            "signatures_count": self.signatures_count,
        }


def generate_id() -> str:
    return str(uuid4())


class ProposalLifecycle:
    def __init__(
        self,
        store: Optional[ProposalStore] = None,
        bridge: Optional[TransactionBridge] = None,
        network: Optional[NetworkConfig] = None,
    ):
        self.store = store or ProposalStore()
        self.bridge = bridge or TransactionBridge()
        self._network = network
        # (proposal id, signatures count) -> envelope build in progress
        self._inflight: Dict[Tuple[str, int], "asyncio.Future[str]"] = {}

    def network(self) -> NetworkConfig:
        """Explicit network settings, else the environment."""
        return self._network or NetworkConfig.from_env()

    async def submit(
        self,
        proposer: str,
        destination: str,
        asset_code: str,
        amount: str,
        xdr_unsigned: Optional[str] = None,
    ) -> str:
        proposal = Proposal(
            id=generate_id(),
            proposer=proposer,
            destination=destination,
            asset_code=asset_code,
            amount=amount,
            xdr_unsigned=xdr_unsigned,
        )
        await self.store.add(proposal)
        logger.info("New proposal %s", proposal.id)
        record_event(
            "propose",
            proposal.id,
            proposer,
            {"destination": destination, "asset_code": asset_code, "amount": amount},
        )
        return proposal.id

    async def list(self) -> List[Proposal]:
        return await self.store.list()

    async def approve(self, proposal_id: str, signer_key: str, signature: str) -> Optional[Proposal]:
        """Add ``signature`` to the proposal; None when the id is unknown.

        Deduplication is by signature value only, so one signer sending two
        different signature strings counts twice.
        """
        added = []

        def apply(proposal: Proposal) -> None:
            added.append(proposal.add_signature(signature))
            if (
                proposal.status == ProposalStatus.PENDING
                and len(proposal.signatures) >= config.APPROVAL_QUORUM
            ):
                proposal.update_status(ProposalStatus.READY_TO_SUBMIT)

        updated = await self.store.update(proposal_id, apply)
        if updated is None:
            logger.warning("Signature for unknown proposal %s", proposal_id)
            return None

        logger.info("Proposal %s signed by %s", proposal_id, signer_key)
        record_event(
            "sign",
            proposal_id,
            signer_key,
            {
                "added": added[0],
                "signatures": len(updated.signatures),
                "status": updated.status.value,
            },
        )
        return updated

    async def _ready_proposal(self, proposal_id: str) -> Proposal:
        proposal = await self.store.get(proposal_id)
        if proposal is None:
            raise NotFoundError("proposal not found")
        if proposal.status != ProposalStatus.READY_TO_SUBMIT:
            raise StateError("proposal not ready to submit")
        return proposal

    @staticmethod
    def _withdrawal_for(proposal: Proposal) -> WithdrawalRequest:
        # owner is the custody account whose funds move
        return WithdrawalRequest(
            owner=proposal.destination,
            amount=proposal.amount,
            signatures_count=len(proposal.signatures),
        )

    async def prepare_withdrawal(self, proposal_id: str) -> WithdrawalRequest:
        return self._withdrawal_for(await self._ready_proposal(proposal_id))

    async def execute(self, proposal_id: str) -> str:
        """Build the unsigned withdrawal envelope for a ready proposal.

        The proposal id is the idempotency key: while the proposal stays
        ready with the same signature count, a retry returns the envelope
        built the first time. Concurrent calls for the same key share a single
        build. Status is not advanced here; signing and broadcasting happen
        outside, reported back via ``record_submission``.
        """
        proposal = await self._ready_proposal(proposal_id)
        request = self._withdrawal_for(proposal)

        if proposal.execution.get("signatures_count") == request.signatures_count:
            logger.info("Reusing built envelope for proposal %s", proposal_id)
            return proposal.execution["xdr"]

        # no await between this lookup and the registration below
        key = (proposal_id, request.signatures_count)
        pending = self._inflight.get(key)
        if pending is not None:
            logger.info("Waiting on in-flight build for proposal %s", proposal_id)
            return await asyncio.shield(pending)

        future: "asyncio.Future[str]" = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            xdr = await self._build_and_remember(proposal_id, request)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # retrieved here so an unawaited future does not log it again
            future.exception()
            raise
        else:
            future.set_result(xdr)
        finally:
            self._inflight.pop(key, None)
        return xdr

    async def _build_and_remember(self, proposal_id: str, request: WithdrawalRequest) -> str:
        network = self.network()
        built = await self.bridge.build_for(network, WITHDRAW_FUNCTION, request.to_params())

        def remember(proposal: Proposal) -> None:
            # first envelope built for this signature count wins
            if proposal.execution.get("signatures_count") == request.signatures_count:
                return
            proposal.execution = {
                "xdr": built,
                "signatures_count": request.signatures_count,
                "built_at": utc_now(),
            }

        updated = await self.store.update(proposal_id, remember)
        record_event("execute", proposal_id, "system", request.to_params())
        if updated is not None and updated.execution.get("signatures_count") == request.signatures_count:
            return updated.execution["xdr"]
        return built

    async def record_submission(self, proposal_id: str, tx_hash: str) -> Proposal:
        """Mark a ready proposal as submitted once its transaction was broadcast.

        Only proposals whose withdrawal envelope was built by ``execute`` can
        be marked. The broadcast envelope itself is not compared against it.
        """

        def apply(proposal: Proposal) -> None:
            if proposal.status != ProposalStatus.READY_TO_SUBMIT:
                raise StateError(f"proposal is {proposal.status.value}, expected ready_to_submit")
            if not proposal.execution.get("xdr"):
                raise StateError("no withdrawal envelope was built for this proposal")
            proposal.update_status(ProposalStatus.SUBMITTED)
            proposal.submission = {"tx_hash": tx_hash, "submitted_at": utc_now()}

        updated = await self.store.update(proposal_id, apply)
        if updated is None:
            raise NotFoundError("proposal not found")
        record_event("submit", proposal_id, "system", {"tx_hash": tx_hash})
        return updated

    async def complete(self, proposal_id: str) -> Proposal:
        def apply(proposal: Proposal) -> None:
            if proposal.status != ProposalStatus.SUBMITTED:
                raise StateError(f"proposal is {proposal.status.value}, expected submitted")
            proposal.update_status(ProposalStatus.COMPLETED)

        updated = await self.store.update(proposal_id, apply)
        if updated is None:
            raise NotFoundError("proposal not found")
        record_event("complete", proposal_id, "system", {})
        return updated
