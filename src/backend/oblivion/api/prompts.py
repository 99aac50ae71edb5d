"""
REST API for the prompt library: saved prompts, the active prompt and templates.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.responses import Response

from oblivion.context import AppContext, get_context
from oblivion.errors import InvalidPromptImport, PromptNotFound, TemplateNotFound
from oblivion.models.schemas import (
    CompletePromptRequest,
    FilledTemplate,
    FillTemplateRequest,
    PromptRecord,
    PromptStats,
    PromptTemplate,
    SavePromptRequest,
)

logger = logging.getLogger(__name__)
router = APIRouter()


# ──────────────────────────────────────────────
# Library
# ──────────────────────────────────────────────

@router.get("", response_model=List[PromptRecord])
async def list_prompts(
    category: Optional[str] = None,
    q: Optional[str] = None,
    ctx: AppContext = Depends(get_context),
):
    if q:
        return [r for r in ctx.prompts.search(q) if not category or r.category == category]
    return ctx.prompts.list(category)


@router.post("", response_model=PromptRecord, status_code=201)
async def save_prompt(body: SavePromptRequest, ctx: AppContext = Depends(get_context)):
    return ctx.prompts.add(body.prompt_id, body.name, body.prompt, body.category, body.is_system)


@router.get("/stats", response_model=PromptStats)
async def prompt_stats(ctx: AppContext = Depends(get_context)):
    return ctx.prompts.stats()


@router.get("/export")
async def export_prompts(ctx: AppContext = Depends(get_context)):
    return Response(content=ctx.prompts.export_prompts(), media_type="application/json")


@router.post("/import")
async def import_prompts(payload: dict = Body(...), ctx: AppContext = Depends(get_context)):
    try:
        return {"imported": ctx.prompts.import_prompts(payload)}
    except InvalidPromptImport as e:
        raise HTTPException(status_code=400, detail=str(e))


# ──────────────────────────────────────────────
# Active prompt
# ──────────────────────────────────────────────

@router.get("/active", response_model=Optional[PromptRecord])
async def get_active(ctx: AppContext = Depends(get_context)):
    return ctx.prompts.active()


@router.delete("/active", status_code=204)
async def clear_active(ctx: AppContext = Depends(get_context)):
    ctx.prompts.clear_active()


@router.post("/complete")
async def complete_prompt(body: CompletePromptRequest, ctx: AppContext = Depends(get_context)):
    """The active system prompt and the message rendered as one string."""
    return {"prompt": ctx.prompts.build_complete_prompt(body.message, body.include_disclaimer)}


# ──────────────────────────────────────────────
# Templates
# ──────────────────────────────────────────────

@router.get("/templates", response_model=List[PromptTemplate])
async def list_templates(ctx: AppContext = Depends(get_context)):
    return ctx.prompts.templates()


@router.post("/templates/{template_id}/fill", response_model=FilledTemplate)
async def fill_template(template_id: str, body: FillTemplateRequest, ctx: AppContext = Depends(get_context)):
    try:
        filled = ctx.prompts.fill_template(template_id, body.variables)
    except TemplateNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    if body.save_as:
        ctx.prompts.add(body.save_as, filled.name, filled.prompt, filled.category)
    return filled


@router.get("/generated/security")
async def security_prompt(level: str = "basic", ctx: AppContext = Depends(get_context)):
    return {"prompt": ctx.prompts.security_prompt(level)}


@router.get("/generated/code")
async def code_prompt(
    language: str = "auto", complexity: str = "intermediate", ctx: AppContext = Depends(get_context)
):
    return {"prompt": ctx.prompts.code_prompt(language, complexity)}


# ──────────────────────────────────────────────
# Single prompt
# ──────────────────────────────────────────────

@router.get("/{prompt_id}", response_model=PromptRecord)
async def get_prompt(prompt_id: str, ctx: AppContext = Depends(get_context)):
    try:
        return ctx.prompts.get(prompt_id)
    except PromptNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/{prompt_id}", status_code=204)
async def delete_prompt(prompt_id: str, ctx: AppContext = Depends(get_context)):
    try:
        ctx.prompts.delete(prompt_id)
    except PromptNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{prompt_id}/activate", response_model=PromptRecord)
async def activate_prompt(prompt_id: str, ctx: AppContext = Depends(get_context)):
    try:
        return ctx.prompts.set_active(prompt_id)
    except PromptNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
