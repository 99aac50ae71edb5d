"""
REST API for command and code execution through the configured sandbox.
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from oblivion.context import AppContext, get_context
from oblivion.errors import SandboxError, UnsafeCommand, UnsupportedLanguage
from oblivion.models.schemas import CommandHistoryEntry, ExecutionRequest, ExecutionResult

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=ExecutionResult)
async def execute(body: ExecutionRequest, ctx: AppContext = Depends(get_context)):
    try:
        return await ctx.sandbox.execute(body)
    except (UnsafeCommand, UnsupportedLanguage) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SandboxError as e:
        logger.error(f"Sandbox failure: {e}")
        raise HTTPException(status_code=502, detail=str(e))


@router.get("/history", response_model=List[CommandHistoryEntry])
async def history(ctx: AppContext = Depends(get_context)):
    return ctx.sandbox.history()
