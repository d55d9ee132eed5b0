"""FastAPI surface for the proposal workflow and the transaction bridge."""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from . import config
from .auth import check_api_token
from .errors import CustodyError
from .lifecycle import ProposalLifecycle

logger = logging.getLogger(__name__)

_lifecycle = ProposalLifecycle()


def get_lifecycle() -> ProposalLifecycle:
    return _lifecycle


def require_token(x_api_token: Optional[str] = Header(None)) -> Optional[str]:
    if not check_api_token(x_api_token):
        raise HTTPException(status_code=401, detail="Invalid or missing API token")
    return x_api_token


class ProposeIn(BaseModel):
    proposer: str
    destination: str
    asset_code: str
    amount: str
    xdr_unsigned: Optional[str] = None


class SignIn(BaseModel):
    key: str
    signature: str


class BuildTxIn(BaseModel):
    function: str
    params: Dict[str, Any] = {}


class SubmitTxIn(BaseModel):
    signed_xdr: str
    proposal_id: Optional[str] = None


def _failure(exc: CustodyError, **fields: Any) -> Dict[str, Any]:
    logger.warning("%s error: %s", exc.kind, exc)
    return {"ok": False, **fields, "error": str(exc)}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # honour dependency overrides so the snapshot follows the served store
    lifecycle = app.dependency_overrides.get(get_lifecycle, get_lifecycle)()
    path = config.proposal_snapshot_file()
    if path is not None and path.exists():
        await lifecycle.store.load_snapshot(path)
    yield
    if path is not None:
        await lifecycle.store.save_snapshot(path)


app = FastAPI(title="Asset Custody API", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.get("/", response_class=PlainTextResponse)
def root():
    return "Asset Custody Backend"


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/propose")
async def propose(
    body: ProposeIn,
    _: Optional[str] = Depends(require_token),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
):
    proposal_id = await lifecycle.submit(
        proposer=body.proposer,
        destination=body.destination,
        asset_code=body.asset_code,
        amount=body.amount,
        xdr_unsigned=body.xdr_unsigned,
    )
    return {"id": proposal_id}


@app.get("/proposals")
async def get_proposals(
    _: Optional[str] = Depends(require_token),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
):
    return [p.to_dict() for p in await lifecycle.list()]


@app.post("/proposals/{proposal_id}/sign")
async def sign_proposal(
    proposal_id: str,
    body: SignIn,
    _: Optional[str] = Depends(require_token),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
):
    proposal = await lifecycle.approve(proposal_id, body.key, body.signature)
    return proposal.to_dict() if proposal is not None else None


@app.post("/proposals/{proposal_id}/complete")
async def complete_proposal(
    proposal_id: str,
    _: Optional[str] = Depends(require_token),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
):
    try:
        proposal = await lifecycle.complete(proposal_id)
    except CustodyError as exc:
        return _failure(exc, proposal=None)
    return {"ok": True, "proposal": proposal.to_dict(), "error": None}


@app.post("/build_tx")
async def build_tx(
    body: BuildTxIn,
    _: Optional[str] = Depends(require_token),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
):
    try:
        xdr = await lifecycle.bridge.build_for(lifecycle.network(), body.function, body.params)
    except CustodyError as exc:
        return _failure(exc, xdr=None)
    return {"ok": True, "xdr": xdr, "error": None}


@app.post("/submit_tx")
async def submit_tx(
    body: SubmitTxIn,
    _: Optional[str] = Depends(require_token),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
):
    try:
        tx_hash = await lifecycle.bridge.submit_signed(config.rpc_url(), body.signed_xdr)
    except CustodyError as exc:
        return _failure(exc, tx_hash=None)

    if body.proposal_id:
        try:
            await lifecycle.record_submission(body.proposal_id, tx_hash)
        except CustodyError as exc:
            # the transaction is already broadcast; report the bookkeeping miss
            logger.warning("Submitted %s but could not update proposal: %s", tx_hash, exc)
            return {"ok": True, "tx_hash": tx_hash, "error": str(exc)}
    return {"ok": True, "tx_hash": tx_hash, "error": None}


@app.post("/withdraw_execute/{proposal_id}")
async def execute_withdraw(
    proposal_id: str,
    _: Optional[str] = Depends(require_token),
    lifecycle: ProposalLifecycle = Depends(get_lifecycle),
):
    try:
        xdr = await lifecycle.execute(proposal_id)
    except CustodyError as exc:
        return _failure(exc, xdr=None)
    return {"ok": True, "xdr": xdr, "error": None}
