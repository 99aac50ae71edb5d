"""
Oblivion Fleet — FastAPI Backend
"""
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from oblivion.api import credentials, execution, fleet, health, ollama, prompts, queries, ws
from oblivion.context import AppContext

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


def _mask(val: str) -> str:
    if not val:
        return "(empty)"
    if len(val) <= 8:
        return "***"
    return val[:4] + "..." + val[-4:]


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """Build the API around an AppContext (a default one is built when none is given)."""
    context = context or AppContext.build()
    settings = context.settings

    app = FastAPI(
        title=settings.app_name,
        description="Query several AI providers at once and derive a consensus answer",
        version="0.1.0",
    )
    app.state.context = context

    # CORS for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    app.include_router(health.router, tags=["health"])
    app.include_router(ollama.router, prefix="/api/providers/ollama", tags=["ollama"])
    app.include_router(fleet.router, prefix="/api", tags=["fleet"])
    app.include_router(queries.router, prefix="/api/queries", tags=["queries"])
    app.include_router(credentials.router, prefix="/api/credentials", tags=["credentials"])
    app.include_router(prompts.router, prefix="/api/prompts", tags=["prompts"])
    app.include_router(execution.router, prefix="/api/execute", tags=["execution"])
    app.include_router(ws.router, prefix="/ws", tags=["websocket"])

    @app.on_event("startup")
    async def startup():
        """Log the effective configuration (secrets masked)."""
        logger.info("=== Oblivion Fleet Backend Starting ===")
        logger.info(f"  max_active_sessions : {settings.max_active_sessions}")
        logger.info(f"  query_timeout       : {settings.query_timeout_seconds}s")
        logger.info(f"  provider_retries    : {settings.provider_max_retries}")
        logger.info(f"  providers           : {len(context.registry.list_providers())}")
        logger.info(f"  synthesizer         : {settings.synthesizer_provider or '(heuristic)'} {settings.synthesizer_model}")
        logger.info(f"  synthesizer_api_key : {_mask(settings.synthesizer_api_key)}")
        logger.info(f"  credential_store    : {settings.credential_store_path or '(memory)'}")
        logger.info(f"  prompt_store        : {settings.prompt_store_path or '(memory)'}")
        logger.info(f"  ollama_host         : {settings.ollama_host}")
        logger.info(f"  sandbox_mode        : {settings.sandbox_mode}")
        logger.info(f"  bridge_url          : {settings.bridge_url}")
        logger.info(f"  bridge_token        : {_mask(settings.bridge_token)}")
        logger.info(f"  cors_origins        : {settings.cors_origins}")

        if settings.sandbox_mode == "bridge" and not settings.bridge_token:
            logger.warning("BRIDGE_TOKEN is empty -- the execution bridge may reject requests!")

    @app.on_event("shutdown")
    async def shutdown():
        await context.aclose()

    return app
