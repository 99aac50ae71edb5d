"""
REST API for the encrypted credential store.

Keys and passphrases go in; only metadata ever comes out.
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from oblivion.context import AppContext, get_context
from oblivion.errors import CredentialNotFound, DecryptionError, UnknownProvider
from oblivion.models.schemas import (
    CredentialSummary,
    SaveCredentialRequest,
    VerifyCredentialRequest,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def _summary(ctx: AppContext, provider_id: str) -> CredentialSummary:
    blob = ctx.credentials.blob(provider_id)
    return CredentialSummary(
        provider_id=blob.provider_id,
        kdf_iterations=blob.kdf_iterations,
        created_at=blob.created_at,
    )


@router.get("", response_model=List[CredentialSummary])
async def list_credentials(ctx: AppContext = Depends(get_context)):
    return [_summary(ctx, pid) for pid in ctx.credentials.list_providers()]


@router.post("", response_model=CredentialSummary, status_code=201)
async def save_credential(body: SaveCredentialRequest, ctx: AppContext = Depends(get_context)):
    try:
        ctx.registry.get(body.provider_id)
    except UnknownProvider as e:
        raise HTTPException(status_code=404, detail=str(e))
    ctx.credentials.save(body.provider_id, body.secret, body.passphrase)
    return _summary(ctx, body.provider_id)


@router.delete("/{provider_id}", status_code=204)
async def delete_credential(provider_id: str, ctx: AppContext = Depends(get_context)):
    try:
        ctx.credentials.delete(provider_id)
    except CredentialNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{provider_id}/verify")
async def verify_credential(
    provider_id: str,
    body: VerifyCredentialRequest,
    ctx: AppContext = Depends(get_context),
):
    """Check that the passphrase unlocks the stored key, without returning it."""
    try:
        ctx.credentials.load(provider_id, body.passphrase)
    except CredentialNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DecryptionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return {"provider_id": provider_id, "valid": True}
