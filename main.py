import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from support_chat.config import Settings
from support_chat.context import ChatContext, build_context
from support_chat.employee_router import router as employee_router
from support_chat.router import router as support_router

logger = logging.getLogger(__name__)


def create_app(context: Optional[ChatContext] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI app.

    With no context the lifespan builds one from settings and disposes it
    on shutdown; a given context is used as-is (tests).
    """
    if settings is None:
        settings = context.settings if context is not None else Settings()

    logging.basicConfig(
        level=getattr(logging, str(settings.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    # =========================================================================
    # LIFESPAN
    # =========================================================================

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info(f"🚀 STARTING {settings.app_name}")
        logger.info("=" * 60)

        owned = False
        if getattr(app.state, "chat_context", None) is None:
            logger.info("📦 Initializing database...")
            app.state.chat_context = build_context(settings)
            owned = True
            logger.info("   ✅ Database ready")

        logger.info(f"✅ {settings.app_name} ready - version {settings.app_version}")
        logger.info(f"   Host: {settings.host}:{settings.port}  Prefix: {settings.api_prefix}")

        yield

        logger.info(f"🛑 SHUTTING DOWN {settings.app_name}")
        if owned:
            app.state.chat_context.dispose()
            app.state.chat_context = None
        logger.info("✅ Shutdown complete")

    # =========================================================================
    # CREATE APP
    # =========================================================================

    app = FastAPI(
        title=settings.app_name,
        description="""
        Customer support chat: bot first line, human escalation, employee console.

        ## Features
        - 🤖 Bot Responder (chat-bot function)
        - 🙋 Escalation to employees
        - 🧑‍💼 Employee console listing
        - 🔄 Realtime change feed (WebSocket)
        """,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.chat_context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=settings.cors_allow_headers,
    )

    app.include_router(support_router, prefix=settings.api_prefix)
    app.include_router(employee_router, prefix=settings.api_prefix)

    # =========================================================================
    # HEALTH CHECK & INFO ENDPOINTS
    # =========================================================================

    @app.get("/", tags=["Health"])
    async def root():
        """Root endpoint - API info"""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "status": "running",
            "timestamp": datetime.now().isoformat(),
        }

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint"""
        chat_context: Optional[ChatContext] = app.state.chat_context
        realtime = chat_context.realtime.get_status() if chat_context is not None else None
        return {
            "status": "healthy" if chat_context is not None else "starting",
            "timestamp": datetime.now().isoformat(),
            "components": {
                "database": "connected" if chat_context is not None else "unavailable",
                "realtime": realtime,
                "subscriptions": chat_context.notifier.subscription_count if chat_context is not None else 0,
            },
        }

    return app


app = create_app()


# =============================================================================
# RUN APPLICATION
# =============================================================================

if __name__ == "__main__":
    _settings = Settings()
    uvicorn.run(
        "main:app",
        host=_settings.host,
        port=_settings.port,
        reload=_settings.debug,
        log_level="info"
    )
