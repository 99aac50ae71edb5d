"""
REST API for the provider catalog and the active session fleet.
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from oblivion.context import AppContext, get_context
from oblivion.errors import (
    CapacityExceeded,
    CredentialNotFound,
    DuplicateSession,
    NotFound,
    UnknownProvider,
)
from oblivion.models.schemas import (
    AddSessionRequest,
    ConversationEntry,
    Provider,
    SessionInfo,
)

logger = logging.getLogger(__name__)
router = APIRouter()


# ──────────────────────────────────────────────
# Provider catalog
# ──────────────────────────────────────────────

@router.get("/providers", response_model=List[Provider])
async def list_providers(ctx: AppContext = Depends(get_context)):
    return ctx.registry.list_providers()


@router.get("/providers/{provider_id}", response_model=Provider)
async def get_provider(provider_id: str, ctx: AppContext = Depends(get_context)):
    try:
        return ctx.registry.get(provider_id)
    except UnknownProvider as e:
        raise HTTPException(status_code=404, detail=str(e))


# ──────────────────────────────────────────────
# Sessions
# ──────────────────────────────────────────────

@router.get("/fleet/sessions", response_model=List[SessionInfo])
async def list_sessions(ctx: AppContext = Depends(get_context)):
    return [s.info() for s in ctx.fleet.list_active()]


@router.post("/fleet/sessions", response_model=SessionInfo, status_code=201)
async def add_session(body: AddSessionRequest, ctx: AppContext = Depends(get_context)):
    """
    Activate a session.

    The key is either given in plaintext (kept in memory for this session
    only) or unlocked from the credential store with `passphrase` on every
    call. Keyless providers need neither.
    """
    credential = body.api_key
    if credential is None and body.passphrase is not None:
        if not ctx.credentials.has(body.provider_id):
            raise HTTPException(status_code=404, detail=str(CredentialNotFound(body.provider_id)))
        passphrase = body.passphrase
        credential = ctx.credentials.secret_source(body.provider_id, lambda: passphrase)

    try:
        session = ctx.fleet.add_session(body.provider_id, body.model_name, credential)
    except UnknownProvider as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (CapacityExceeded, DuplicateSession) as e:
        raise HTTPException(status_code=409, detail=str(e))
    return session.info()


@router.delete("/fleet/sessions/{session_id}", status_code=204)
async def remove_session(session_id: str, ctx: AppContext = Depends(get_context)):
    try:
        ctx.fleet.remove_session(session_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/fleet/sessions/{session_id}/conversation", response_model=List[ConversationEntry])
async def get_conversation(session_id: str, ctx: AppContext = Depends(get_context)):
    try:
        return ctx.fleet.conversation(session_id).entries()
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/fleet/sessions/{session_id}/conversation", status_code=204)
async def clear_conversation(session_id: str, ctx: AppContext = Depends(get_context)):
    try:
        ctx.fleet.clear_conversation(session_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
