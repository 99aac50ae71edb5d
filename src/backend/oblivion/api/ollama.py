"""
REST API for the local Ollama server's model inventory.
"""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from oblivion.context import AppContext, get_context
from oblivion.errors import OllamaError
from oblivion.models.schemas import OllamaModel, OllamaStatus, PullModelRequest, PullProgress

logger = logging.getLogger(__name__)
router = APIRouter()


def _http_error(e: OllamaError) -> HTTPException:
    if e.status_code == 404:
        return HTTPException(status_code=404, detail=e.message)
    logger.error(f"Ollama failure: {e}")
    return HTTPException(status_code=502, detail=str(e))


@router.get("/status", response_model=OllamaStatus)
async def status(ctx: AppContext = Depends(get_context)):
    return await ctx.ollama.status()


@router.get("/models", response_model=List[OllamaModel])
async def list_models(ctx: AppContext = Depends(get_context)):
    try:
        return await ctx.ollama.list_models()
    except OllamaError as e:
        raise _http_error(e)


@router.get("/best")
async def best_model(purpose: str = "code", ctx: AppContext = Depends(get_context)):
    try:
        return {"purpose": purpose, "model": await ctx.ollama.best_model(purpose)}
    except OllamaError as e:
        raise _http_error(e)


@router.post("/models/pull", response_model=PullProgress)
async def pull_model(body: PullModelRequest, ctx: AppContext = Depends(get_context)):
    try:
        return await ctx.ollama.pull(body.name)
    except OllamaError as e:
        raise _http_error(e)


@router.get("/models/{name:path}")
async def show_model(name: str, ctx: AppContext = Depends(get_context)):
    try:
        return await ctx.ollama.show(name)
    except OllamaError as e:
        raise _http_error(e)


@router.delete("/models/{name:path}", status_code=204)
async def delete_model(name: str, ctx: AppContext = Depends(get_context)):
    try:
        await ctx.ollama.delete(name)
    except OllamaError as e:
        raise _http_error(e)
