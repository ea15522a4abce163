"""
Atendos AI — FastAPI Application
=================================
HTTP surface of the automated response decision engine.

Endpoints:
  GET  /health              — liveness probe
  POST /ai-response         — run the decision engine on one message
  GET  /webhooks/whatsapp   — WhatsApp Cloud API verification handshake
  POST /webhooks/whatsapp   — inbound WhatsApp messages and status updates

Startup:
  1. Connect to PostgreSQL (asyncpg pool) when DATABASE_URL is set

The decision engine is built on first use from EngineConfig.from_env(),
so a missing OPENAI_API_KEY surfaces as a ConfigurationError (HTTP 500)
on the AI endpoints instead of preventing the health probe from serving.

Shutdown:
  1. Close PostgreSQL pool

Run:
  uvicorn api.main:app --host 0.0.0.0 --port 8000

Environment:
  DATABASE_URL          — PostgreSQL connection string (WhatsApp webhook)
  CORS_ORIGINS          — Comma-separated allowed origins
  AI_RESPONSE_API_TOKEN — Bearer token required on /ai-response (optional)
  LOG_LEVEL             — Logging level (default: INFO)
  plus the agent.config and channels.whatsapp_handler variables
"""

from __future__ import annotations

import hmac
import json
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

import asyncpg
from fastapi import FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from agent.config import EngineConfig
from agent.engine import DecisionEngine, validate_message
from agent.errors import ConfigurationError, DecisionEngineError, GenerationFailure, InvalidInput
from agent.models import DecisionResult
from channels import whatsapp_handler
from workers.message_processor import MessageProcessor

logger = logging.getLogger("api")
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)

# ── Configuration ────────────────────────────────────────────────────────

DATABASE_URL = os.environ.get("DATABASE_URL", "")
CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")
AI_RESPONSE_API_TOKEN = os.environ.get("AI_RESPONSE_API_TOKEN", "")


# ── Lifespan ────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown."""
    logger.info("Starting Atendos AI decision API...")

    app.state.db_pool = None
    if DATABASE_URL:
        try:
            app.state.db_pool = await asyncpg.create_pool(
                DATABASE_URL,
                min_size=2,
                max_size=10,
                command_timeout=30,
            )
            logger.info("PostgreSQL pool connected")
        except Exception as e:
            logger.error(f"Failed to connect to PostgreSQL: {e}")
            raise
    else:
        logger.warning("DATABASE_URL not set — WhatsApp webhook processing disabled")

    logger.info("API startup complete")
    yield

    logger.info("Shutting down API...")
    pool = app.state.db_pool
    if pool:
        await pool.close()
        logger.info("PostgreSQL pool closed")


# ── App ──────────────────────────────────────────────────────────────────

app = FastAPI(
    title="Atendos AI",
    description="Automated response decision engine for WhatsApp, Instagram and web chat",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_engine(request: Request) -> DecisionEngine:
    """The app-wide decision engine, built on first use."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        engine = DecisionEngine(EngineConfig.from_env())
        request.app.state.engine = engine
    return engine


# ── Error Mapping ────────────────────────────────────────────────────────

_ERROR_STATUS = {
    InvalidInput: 400,
    GenerationFailure: 502,
    ConfigurationError: 500,
}


@app.exception_handler(DecisionEngineError)
async def decision_engine_error_handler(request: Request, exc: DecisionEngineError):
    status_code = _ERROR_STATUS.get(type(exc), 500)
    if status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "message": str(exc)},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Body that is not a JSON object → InvalidInput, same shape as engine errors."""
    errors = exc.errors()
    detail = errors[0].get("msg", "invalid request body") if errors else "invalid request body"
    return JSONResponse(
        status_code=400,
        content={"error": InvalidInput.__name__, "message": f"Malformed request: {detail}"},
    )


# ── Request / Response Models ────────────────────────────────────────────


class AIResponseRequest(BaseModel):
    """Payload sent by the web chat and channel integrations.

    Fields stay untyped; DecisionEngine.decide() validates them and raises
    InvalidInput (HTTP 400) on wrong types.
    """

    model_config = ConfigDict(populate_by_name=True)

    customer_message: Any = Field(default=None, alias="customerMessage")
    training_data: Any = Field(default=None, alias="trainingData")
    conversation_history: Any = Field(default=None, alias="conversationHistory")


# ── Health Check ─────────────────────────────────────────────────────────


@app.get("/health", tags=["health"])
async def health_check():
    """Lightweight liveness probe."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


# ── Decision Endpoint ────────────────────────────────────────────────────


@app.post("/ai-response", tags=["ai"])
async def ai_response(payload: AIResponseRequest, request: Request):
    """Generate a reply and the escalation decision for one customer message.

    Returns the DecisionResult as JSON (content, confidence, shouldEscalate,
    category, escalationReasons).
    """
    if AI_RESPONSE_API_TOKEN:
        auth = request.headers.get("Authorization", "")
        token = auth[len("Bearer "):] if auth.startswith("Bearer ") else ""
        if not token or not hmac.compare_digest(token, AI_RESPONSE_API_TOKEN):
            return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    message = validate_message(payload.customer_message)
    engine = get_engine(request)
    result: DecisionResult = await engine.decide(
        message,
        payload.training_data,
        payload.conversation_history,
    )
    return result.model_dump(by_alias=True)


# ── WhatsApp Webhook ─────────────────────────────────────────────────────


@app.get("/webhooks/whatsapp", tags=["webhooks"])
async def whatsapp_verify(
    hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
):
    """Meta subscription handshake: echo hub.challenge when the token matches."""
    challenge = whatsapp_handler.verify_webhook(hub_mode, hub_verify_token, hub_challenge)
    if challenge is None:
        return PlainTextResponse("Forbidden", status_code=403)
    return PlainTextResponse(challenge)


@app.post("/webhooks/whatsapp", tags=["webhooks"])
async def whatsapp_webhook(request: Request):
    """Receive WhatsApp Cloud API notifications.

    Every inbound text message goes through the decision engine; status
    updates are recorded on the stored messages. Always answers "OK" once
    the payload is accepted so Meta does not redeliver it.
    """
    body = await request.body()
    signature = request.headers.get("X-Hub-Signature-256")
    if not whatsapp_handler.validate_signature(body, signature):
        logger.warning("Invalid WhatsApp webhook signature")
        return PlainTextResponse("Forbidden", status_code=403)

    try:
        payload = json.loads(body or b"{}")
    except json.JSONDecodeError:
        return PlainTextResponse("Invalid JSON", status_code=400)
    if not isinstance(payload, dict):
        return PlainTextResponse("Invalid JSON", status_code=400)

    pool = getattr(request.app.state, "db_pool", None)
    if pool is None:
        return PlainTextResponse("Database not configured", status_code=503)

    messages = whatsapp_handler.extract_messages(payload)
    # Status-only payloads never touch the engine
    engine = get_engine(request) if messages else None
    processor = MessageProcessor(pool, engine)

    for message in messages:
        try:
            await processor.handle_message(message)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(
                f"Error processing WhatsApp message {message.get('channel_message_id')}: {e}",
                exc_info=True,
            )

    for status in whatsapp_handler.extract_statuses(payload):
        try:
            await processor.handle_status(status)
        except Exception as e:
            logger.error(f"Error processing WhatsApp status {status.get('channel_message_id')}: {e}")

    return Response("OK", media_type="text/plain")
