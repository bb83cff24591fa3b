"""
HTTP endpoints for verifying tokens and linking social accounts to wallets.
Pattern: validate -> run pipeline -> record link (non-fatal) -> return outcome.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, Generator

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

import config
from db import get_db, get_links, get_session_factory, record_link
from oauth import VerificationResult, verify_token
from pipeline import BatchOutcome, ClaimPipeline, LinkOutcome

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["social-link"])


class VerifyRequest(BaseModel):
    platform: str
    token: str


class LinkRequest(BaseModel):
    wallet_address: str
    platform: str
    token: str


class BatchLinkRequest(BaseModel):
    wallet_address: str
    tokens: Dict[str, str]


def get_pipeline(request: Request) -> ClaimPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(503, "Claim pipeline not configured")
    return pipeline


def get_links_db() -> Generator[Session, None, None]:
    if not config.DATABASE_URL:
        raise HTTPException(503, "Link records need DATABASE_URL")
    yield from get_db()


def _record(outcome: LinkOutcome):
    db = get_session_factory()()
    try:
        record_link(
            db,
            outcome.wallet_address,
            outcome.platform,
            outcome.user_id,
            outcome.username,
            outcome.tx_hash,
        )
    finally:
        db.close()


async def _record_if_enabled(outcome: LinkOutcome):
    if not (config.DATABASE_URL and outcome.success and outcome.user_id):
        return
    try:
        await asyncio.to_thread(_record, outcome)
    except Exception as e:
        logger.warning("Recording link failed (non-fatal): %s", e)


@router.post("/verify")
async def verify(body: VerifyRequest) -> VerificationResult:
    return await verify_token(
        body.platform, body.token, client_id=config.TWITCH_CLIENT_ID or None
    )


@router.post("/link")
async def link(body: LinkRequest, pipeline: ClaimPipeline = Depends(get_pipeline)) -> LinkOutcome:
    outcome = await pipeline.link(body.wallet_address, body.platform, body.token)
    if outcome.error_kind == "InputError":
        raise HTTPException(400, outcome.error)
    await _record_if_enabled(outcome)
    return outcome


@router.post("/link/batch")
async def link_batch(
    body: BatchLinkRequest, pipeline: ClaimPipeline = Depends(get_pipeline)
) -> BatchOutcome:
    batch = await pipeline.link_all(body.wallet_address, body.tokens)
    if batch.error_kind == "InputError":
        raise HTTPException(400, batch.error)
    for outcome in batch.results.values():
        await _record_if_enabled(outcome)
    return batch


@router.get("/links/{wallet_address}")
def links(wallet_address: str, db: Session = Depends(get_links_db)):
    return get_links(db, wallet_address)


@router.get("/bot")
async def bot(request: Request, pipeline: ClaimPipeline = Depends(get_pipeline)):
    signer = pipeline.graph.signer
    try:
        balance = await signer.balance()
    except Exception as e:
        logger.exception("Failed to read bot balance")
        raise HTTPException(502, f"Failed to read bot balance: {e}")
    network = getattr(request.app.state, "network", None)
    return {
        "address": signer.address,
        "balance_wei": str(balance),
        "network": network.name if network else None,
        "explorer_url": network.explorer_address_url(signer.address) if network else None,
        "route": pipeline.graph.route_name,
    }
