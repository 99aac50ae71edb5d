"""
REST API for fleet-wide queries: raw broadcast, consensus ask, voting
and code generation.

A request may carry a client-chosen `broadcast_id`; while it runs,
`POST /api/queries/{broadcast_id}/cancel` aborts its in-flight sessions.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import contextmanager
from typing import Iterator, List, Optional

from fastapi import APIRouter, Depends, HTTPException

from oblivion.context import AppContext, get_context
from oblivion.errors import InsufficientResponses
from oblivion.models.schemas import (
    AskRequest,
    AskResult,
    BroadcastRequest,
    CodeGenerationRequest,
    CodeGenerationResult,
    QueryResult,
    VoteRequest,
    VoteResult,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@contextmanager
def _tracked(ctx: AppContext, broadcast_id: Optional[str]) -> Iterator[asyncio.Event]:
    """Register a cancel event under the broadcast id for the duration of the request."""
    broadcast_id = broadcast_id or str(uuid.uuid4())
    if broadcast_id in ctx.broadcasts:
        raise HTTPException(status_code=409, detail=f"Broadcast {broadcast_id} is already running")
    event = asyncio.Event()
    ctx.broadcasts[broadcast_id] = event
    try:
        yield event
    finally:
        ctx.broadcasts.pop(broadcast_id, None)


def _require_sessions(ctx: AppContext) -> None:
    if len(ctx.fleet) == 0:
        raise HTTPException(status_code=400, detail="No active sessions. Add a session first.")


@router.post("/broadcast", response_model=List[QueryResult])
async def broadcast(body: BroadcastRequest, ctx: AppContext = Depends(get_context)):
    """Send the prompt to every active session; one result per session, in fleet order."""
    with _tracked(ctx, body.broadcast_id) as cancel:
        return await ctx.aggregator.broadcast(body.prompt, body.options, cancel_event=cancel)


@router.post("/ask", response_model=AskResult)
async def ask(body: AskRequest, ctx: AppContext = Depends(get_context)):
    """Broadcast, then compute a consensus over the successful answers."""
    _require_sessions(ctx)
    with _tracked(ctx, body.broadcast_id) as cancel:
        return await ctx.orchestrator.ask(
            body.prompt, body.options, synthesize=body.synthesize, cancel_event=cancel
        )


@router.post("/vote", response_model=VoteResult)
async def vote(body: VoteRequest, ctx: AppContext = Depends(get_context)):
    _require_sessions(ctx)
    try:
        return await ctx.orchestrator.vote(body.prompt, body.criteria, body.options)
    except InsufficientResponses as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/code", response_model=CodeGenerationResult)
async def generate_code(body: CodeGenerationRequest, ctx: AppContext = Depends(get_context)):
    _require_sessions(ctx)
    try:
        return await ctx.orchestrator.generate_code(body.description, body.language)
    except InsufficientResponses as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/{broadcast_id}/cancel")
async def cancel_broadcast(broadcast_id: str, ctx: AppContext = Depends(get_context)):
    event = ctx.broadcasts.get(broadcast_id)
    if event is None:
        raise HTTPException(status_code=404, detail=f"Broadcast {broadcast_id} is not running")
    event.set()
    logger.info(f"Cancellation requested for broadcast {broadcast_id}")
    return {"broadcast_id": broadcast_id, "cancelled": True}


@router.get("/usage")
async def usage(ctx: AppContext = Depends(get_context)):
    return ctx.usage.to_dict()
