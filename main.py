from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
import os
import sys
import logging
from services.container import build_services
from services.database import Database
from services.webhook_dispatcher import log_webhook_status
from middleware.webhook_auth import is_webhook_auth_configured
from routers import transcripts, webhooks, imports, exports

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Validate required environment variables
REQUIRED_ENV_VARS = ["DATABASE_URL", "OPENAI_API_KEY"]

def validate_environment():
    """Validate that all required environment variables are set."""
    missing = [var for var in REQUIRED_ENV_VARS if not os.getenv(var)]
    if missing:
        logger.error(f"Missing required environment variables: {missing}")
        sys.exit(1)
    logger.info("Environment validation passed")

def log_integration_status():
    """Log which optional integrations are configured."""
    log_webhook_status()

    if not is_webhook_auth_configured():
        logger.warning("INBOUND_WEBHOOK_SECRET not set: /webhooks/transcript accepts unauthenticated calls")

    if not (os.getenv("ENCRYPTION_KEY") or os.getenv("SESSION_SECRET")):
        logger.warning("ENCRYPTION_KEY not set: export destinations cannot be configured")


@asynccontextmanager
async def lifespan(app: FastAPI):
    validate_environment()
    log_integration_status()

    db = Database()
    if os.getenv("AUTO_CREATE_TABLES", "false").lower() == "true":
        await db.create_all()

    app.state.services = build_services(db)
    logger.info("Application startup complete")

    yield

    await app.state.services.shutdown()
    logger.info("Application shutdown complete")


app = FastAPI(title="Transcript Insights API", lifespan=lifespan)

# Include routers
app.include_router(transcripts.router)
app.include_router(webhooks.router)
app.include_router(imports.router)
app.include_router(exports.router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed input is a client error: 400 with the field-level details."""
    logger.warning(f"Request validation failed: path={request.url.path}, errors={len(exc.errors())}")
    return JSONResponse(
        status_code=400,
        content={"detail": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


@app.get("/health")
async def health_check():
    """Liveness probe."""
    return {"status": "ok"}
