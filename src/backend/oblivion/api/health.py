"""Health check endpoints."""
import logging

from fastapi import APIRouter, Depends

from oblivion.context import AppContext, get_context

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health_check(ctx: AppContext = Depends(get_context)):
    return {
        "status": "ok",
        "service": ctx.settings.app_name,
        "active_sessions": len(ctx.fleet),
    }


@router.get("/api/health/config")
async def config_check(ctx: AppContext = Depends(get_context)):
    """Diagnostic endpoint: shows how the backend is configured (no secrets)."""
    cfg = ctx.settings
    active = ctx.prompts.active()
    return {
        "max_active_sessions": cfg.max_active_sessions,
        "query_timeout_seconds": cfg.query_timeout_seconds,
        "provider_max_retries": cfg.provider_max_retries,
        "synthesizer": f"{cfg.synthesizer_provider}/{cfg.synthesizer_model}" if cfg.synthesizer_provider else None,
        "synthesizer_api_key_set": bool(cfg.synthesizer_api_key),
        "credential_store_path": cfg.credential_store_path or None,
        "stored_credentials": len(ctx.credentials.list_providers()),
        "active_prompt": active.prompt_id if active else None,
        "ollama_host": cfg.ollama_host,
        "sandbox_mode": cfg.sandbox_mode,
        "bridge_token_set": bool(cfg.bridge_token),
    }
