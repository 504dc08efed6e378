"""
IntelliForm service

Conversational form filling with AI sub-conversations, plus AI problem
extraction, ranking and resolution over the collected submissions.
"""
import traceback
from contextlib import asynccontextmanager
from datetime import datetime
from http import HTTPStatus

import fastapi_cdn_host
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from intelliform.api.ai_router import ai_router
from intelliform.api.form_router import form_router
from intelliform.api.public_router import public_router
from intelliform.api.submission_router import submission_router
from intelliform.business.ai_service import AIService
from intelliform.business.llm_client import LLMClient
from intelliform.database.database_config import DatabaseConfig, init_database
from intelliform.model.errors import IntelliFormError, ValidationError
from intelliform.utils.logger_config import LoggerConfig, get_logger
from intelliform.utils.settings import AppSettings

SERVICE_NAME = "IntelliForm"
SERVICE_VERSION = "1.0.0"

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    db_config: DatabaseConfig = app.state.db_config
    logger.info(f"🚀 Starting {SERVICE_NAME}...")
    logger.info(f"📊 Database type: {db_config.dialect_name}")

    try:
        init_database(db_config)
        logger.info("✅ Database initialized")
    except Exception as e:
        LoggerConfig.log_exception(logger, "Database initialization failed", e)
        raise

    yield

    # Shutdown
    db_config.dispose()
    logger.info(f"🛑 {SERVICE_NAME} stopped")


def _redacted_headers(request: Request) -> dict:
    headers_to_log = {}
    for key, value in request.headers.items():
        if key.lower() in ['authorization', 'cookie', 'x-api-key']:
            headers_to_log[key] = "[REDACTED]"
        else:
            headers_to_log[key] = value
    return headers_to_log


def create_app(settings: AppSettings = None, ai_service: AIService = None,
               db_config: DatabaseConfig = None) -> FastAPI:
    """Build the FastAPI application.

    Collaborators default to ones built from ``settings`` (read from the
    environment when omitted); tests pass their own.
    """
    settings = settings or AppSettings.from_env()
    LoggerConfig.setup(
        log_level=settings.log_level,
        log_dir=settings.log_dir,
        log_to_file=settings.log_to_file
    )

    app = FastAPI(
        title=f"{SERVICE_NAME} API",
        description="""
        ## IntelliForm

        - 📝 **Forms**: build forms with conditional fields and validation rules
        - 💬 **Conversations**: respondents answer one field at a time; AI-enabled
          fields open a short assistant chat that is summarized into the answer
        - 🔍 **Problem extraction**: the AI lists the problems each submission reports
        - 📊 **Problem groups**: recurring problems are grouped and ranked across submissions
        - ✅ **Resolution**: resolve a problem per submission or for a whole group
        """,
        version=SERVICE_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    fastapi_cdn_host.patch_docs(app)

    app.state.settings = settings
    app.state.db_config = db_config or DatabaseConfig(settings.database_url)
    app.state.ai_service = ai_service or AIService(LLMClient(settings.ai))

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(form_router)
    app.include_router(submission_router)
    app.include_router(public_router)
    app.include_router(ai_router)

    @app.exception_handler(IntelliFormError)
    async def intelliform_exception_handler(request: Request, exc: IntelliFormError):
        """Domain errors carry their own HTTP status"""
        if exc.status_code >= 500:
            logger.error(f"❌ {request.method} {request.url.path} failed: {type(exc).__name__}: {exc.message}")
        else:
            logger.info(f"↩️ {request.method} {request.url.path} rejected: {type(exc).__name__}: {exc.message}")

        content = {
            "error": HTTPStatus(exc.status_code).phrase,
            "message": exc.message,
            "type": type(exc).__name__
        }
        if isinstance(exc, ValidationError) and exc.field_id:
            content["field_id"] = exc.field_id
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler with comprehensive logging"""
        logger.error("=" * 50)
        logger.error("🚨 UNHANDLED EXCEPTION OCCURRED")
        logger.error(f"Request URL: {request.url}")
        logger.error(f"Request method: {request.method}")
        logger.error(f"Exception type: {type(exc).__name__}")
        logger.error(f"Exception message: {str(exc)}")
        logger.error("Full traceback:")
        logger.error(traceback.format_exc())
        logger.error(f"Request headers: {_redacted_headers(request)}")
        logger.error("=" * 50)

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": str(exc),
                "type": type(exc).__name__,
                "timestamp": datetime.utcnow().isoformat()
            }
        )

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "database": app.state.db_config.dialect_name
        }

    @app.get("/")
    async def root():
        """Root endpoint with system information"""
        return {
            "message": f"Welcome to {SERVICE_NAME}",
            "description": "Conversational forms with AI problem insights",
            "features": [
                "Form builder with conditional fields",
                "Conversational form filling",
                "AI sub-conversations summarized into answers",
                "AI problem extraction per submission",
                "LangGraph problem ranking across submissions",
                "Per-submission and group problem resolution"
            ],
            "docs": "/docs",
            "health": "/health",
            "database": app.state.db_config.dialect_name
        }

    return app
