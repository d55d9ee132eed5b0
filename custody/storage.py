import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .state import ProposalStatus, parse_status, transition
from .utils import ReadWriteLock, dump_yaml, load_yaml, utc_now

logger = logging.getLogger(__name__)


@dataclass
class Proposal:
    id: str
    proposer: str
    destination: str
    asset_code: str
    amount: str
    xdr_unsigned: Optional[str] = None
    signatures: List[str] = field(default_factory=list)
    status: ProposalStatus = ProposalStatus.PENDING
    execution: Dict[str, Any] = field(default_factory=dict)
    submission: Dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "proposer": self.proposer,
            "destination": self.destination,
            "asset_code": self.asset_code,
            "amount": self.amount,
            "xdr_unsigned": self.xdr_unsigned,
            "signatures": list(self.signatures),
            "status": self.status.value,
            "execution": dict(self.execution),
            "submission": dict(self.submission),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Proposal":
        return cls(
            id=data["id"],
            proposer=data["proposer"],
            destination=data["destination"],
            asset_code=data.get("asset_code", ""),
            amount=str(data.get("amount", "")),
            xdr_unsigned=data.get("xdr_unsigned"),
            signatures=list(data.get("signatures", [])),
            status=parse_status(data.get("status", "pending")),
            execution=data.get("execution") or {},
            submission=data.get("submission") or {},
            created_at=data.get("created_at", utc_now()),
            updated_at=data.get("updated_at", utc_now()),
        )

    def add_signature(self, signature: str) -> bool:
        """Append ``signature`` unless the exact value is already present."""
        if signature in self.signatures:
            return False
        self.signatures.append(signature)
        self.updated_at = utc_now()
        return True

    def update_status(self, target: ProposalStatus) -> None:
        self.status = transition(self.status, target)
        self.updated_at = utc_now()


class ProposalStore:
    """In-memory registry of proposals.

    Readers get deep copies; the stored records are only touched while the
    write lock is held, and the lock is never held across an await on anything
    but the lock itself.
    """

    def __init__(self) -> None:
        self._proposals: List[Proposal] = []
        self._lock = ReadWriteLock()

    def _find(self, proposal_id: str) -> Optional[Proposal]:
        for proposal in self._proposals:
            if proposal.id == proposal_id:
                return proposal
        return None

    async def add(self, proposal: Proposal) -> None:
        async with self._lock.write():
            self._proposals.append(copy.deepcopy(proposal))

    async def list(self) -> List[Proposal]:
        async with self._lock.read():
            return copy.deepcopy(self._proposals)

    async def get(self, proposal_id: str) -> Optional[Proposal]:
        async with self._lock.read():
            found = self._find(proposal_id)
            return copy.deepcopy(found) if found is not None else None

    async def update(self, proposal_id: str, mutate: Callable[[Proposal], None]) -> Optional[Proposal]:
        """Apply ``mutate`` to the stored proposal under the write lock.

        Returns a copy of the updated proposal, or None for an unknown id.
        Exceptions raised by ``mutate`` propagate; ``mutate`` must check before
        it changes anything.
        """
        async with self._lock.write():
            found = self._find(proposal_id)
            if found is None:
                return None
            mutate(found)
            return copy.deepcopy(found)

    async def save_snapshot(self, path: Path) -> None:
        proposals = await self.list()
        dump_yaml({"proposals": [p.to_dict() for p in proposals]}, path)
        logger.info("Saved %d proposals to %s", len(proposals), path)

    async def load_snapshot(self, path: Path) -> int:
        data = load_yaml(path)
        loaded = [Proposal.from_dict(item) for item in data.get("proposals", [])]
        async with self._lock.write():
            known = {p.id for p in self._proposals}
            self._proposals.extend(p for p in loaded if p.id not in known)
        logger.info("Loaded %d proposals from %s", len(loaded), path)
        return len(loaded)
