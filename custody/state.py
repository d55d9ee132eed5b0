from enum import Enum
from typing import Dict, List


class ProposalStatus(str, Enum):
    PENDING = "pending"
    READY_TO_SUBMIT = "ready_to_submit"
    SUBMITTED = "submitted"
    COMPLETED = "completed"


# submitted/completed are only reached through record_submission/complete
ALLOWED_TRANSITIONS: Dict[ProposalStatus, List[ProposalStatus]] = {
    ProposalStatus.PENDING: [ProposalStatus.READY_TO_SUBMIT],
    ProposalStatus.READY_TO_SUBMIT: [ProposalStatus.SUBMITTED],
    ProposalStatus.SUBMITTED: [ProposalStatus.COMPLETED],
    ProposalStatus.COMPLETED: [],
}


def can_transition(current: ProposalStatus, target: ProposalStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, [])


def transition(current: ProposalStatus, target: ProposalStatus) -> ProposalStatus:
    if not can_transition(current, target):
        raise ValueError(f"Illegal transition: {current.value} -> {target.value}")
    return target


def parse_status(raw: str) -> ProposalStatus:
    try:
        return ProposalStatus(raw)
    except ValueError as exc:
        raise ValueError(f"Unknown proposal status: {raw}") from exc
