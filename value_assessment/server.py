"""FastAPI service for value assessments, breakdowns, and chat-driven sessions."""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Deque

from fastapi import Body, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from value_assessment.breakdown import build_breakdown, format_line_items
from value_assessment.chat import GREETING_MESSAGE, profile_to_flat, run_chat_turn, translate_flat_update
from value_assessment.demo_data import DEMO_PROFILE_PAYLOADS, get_demo_profile
from value_assessment.engine import compute_assessment
from value_assessment.funnel import FUNNEL_CONFIGS, FunnelConfig, get_funnel_config
from value_assessment.llm import ChatMessage
from value_assessment.models import InputProfile, apply_profile_update


class JsonLogFormatter(logging.Formatter):
    """JSON log formatter for structured service logs."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
        }
        if hasattr(record, "extra") and isinstance(record.extra, dict):
            payload.update(record.extra)
        return json.dumps(payload, default=str)


logger = logging.getLogger("value_assessment")
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())
    logger.addHandler(handler)
logger.setLevel(logging.INFO)


class ErrorResponse(BaseModel):
    detail: str


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, description="User message for the data-collection assistant.")


class SessionResponse(BaseModel):
    session_id: str
    profile: dict[str, Any]
    collected_data: dict[str, Any]
    messages: list[dict[str, str]]
    is_complete: bool


class SessionUpdateResponse(SessionResponse):
    applied_fields: list[str]
    rejected_fields: list[str]


class ChatResponse(BaseModel):
    session_id: str
    message: str
    profile: dict[str, Any]
    collected_data: dict[str, Any]
    is_complete: bool
    applied_fields: list[str]
    rejected_fields: list[str]
    error: str | None


@dataclass
class AssessmentSession:
    """In-memory chat session; `profile` is always the last valid profile."""

    session_id: str
    profile: InputProfile = field(default_factory=InputProfile)
    messages: list[ChatMessage] = field(default_factory=list)
    is_complete: bool = False


REQUEST_HISTORY: defaultdict[str, Deque[float]] = defaultdict(deque)
RATE_LIMIT_REQUESTS = 60
RATE_LIMIT_WINDOW_SECONDS = 60

SESSIONS: dict[str, AssessmentSession] = {}

app = FastAPI(title="Fraud Value Assessment API")


@app.middleware("http")
async def rate_limit_and_timing(request: Request, call_next):
    start = time.perf_counter()
    client_ip = request.client.host if request.client else "unknown"
    now = time.time()

    history = REQUEST_HISTORY[client_ip]
    while history and now - history[0] > RATE_LIMIT_WINDOW_SECONDS:
        history.popleft()
    if len(history) >= RATE_LIMIT_REQUESTS:
        return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})
    history.append(now)

    response = await call_next(request)
    elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
    response.headers["X-Process-Time-Ms"] = str(elapsed_ms)
    logger.info(
        f"request_completed {request.method} {request.url.path}",
        extra={"extra": {"path": request.url.path, "method": request.method, "status_code": response.status_code, "elapsed_ms": elapsed_ms}},
    )
    return response


@app.exception_handler(Exception)
async def handle_unexpected_exception(request: Request, exc: Exception):
    logger.error(
        f"unhandled_exception: {exc}",
        extra={"extra": {"path": request.url.path, "method": request.method}},
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.on_event("startup")
def startup_log_configuration() -> None:
    logger.info(
        "service_started",
        extra={
            "extra": {
                "funnel_configs": sorted(FUNNEL_CONFIGS),
                "demo_profiles": sorted(DEMO_PROFILE_PAYLOADS),
                "chat_enabled": bool(os.getenv("OPENROUTER_API_KEY", "").strip()),
            }
        },
    )


def _resolve_config(name: str) -> FunnelConfig:
    try:
        return get_funnel_config(name)
    except KeyError as exc:
        raise HTTPException(status_code=422, detail=f"Unknown funnel config: {name}") from exc


def _get_session(session_id: str) -> AssessmentSession:
    session = SESSIONS.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _session_payload(session: AssessmentSession) -> dict[str, Any]:
    return {
        "session_id": session.session_id,
        "profile": session.profile.model_dump(),
        "collected_data": profile_to_flat(session.profile),
        "messages": [dict(message) for message in session.messages],
        "is_complete": session.is_complete,
    }


EXAMPLE_PROFILE: dict[str, Any] = {
    "regions": {
        "AMER": {
            "annual_gmv_attempts": 75000000,
            "fraud_check_timing": "pre-auth",
            "pre_auth_fraud_approval_rate_percent": 95,
            "issuing_bank_decline_rate_percent": 7,
            "three_ds_challenge_rate_percent": 10,
            "three_ds_abandonment_rate_percent": 5,
            "manual_review_rate_percent": 3,
        }
    },
    "chargebacks": {"fraud_chargeback_rate_percent": 0.8, "fraud_chargeback_aov": 158},
}


@app.get("/health", tags=["System"])
def health() -> dict:
    """Healthcheck endpoint."""
    return {"status": "ok"}


@app.get("/defaults", tags=["Assessment"])
def read_defaults() -> dict:
    """Default input profile, including vendor KPI assumptions."""
    return InputProfile().model_dump()


@app.post("/assess", tags=["Assessment"], responses={422: {"model": ErrorResponse}})
def assess(
    profile: InputProfile = Body(..., example=EXAMPLE_PROFILE),
    funnel_config: str = Query("current", description="Funnel formula version to apply."),
) -> dict:
    """Compute GMV uplift, chargeback savings, and totals for a profile."""
    return dict(compute_assessment(profile, _resolve_config(funnel_config)))


@app.post(
    "/breakdown/{driver}",
    tags=["Assessment"],
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
def breakdown(
    driver: str,
    profile: InputProfile = Body(..., example=EXAMPLE_PROFILE),
    funnel_config: str = Query("current"),
) -> dict:
    """Formatted line items explaining one value driver."""
    result = compute_assessment(profile, _resolve_config(funnel_config))
    try:
        items = build_breakdown(result, driver)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown value driver: {driver}") from exc
    return {"driver": driver, "line_items": format_line_items(items)}


@app.get("/demo/{name}", tags=["Demo"], responses={404: {"model": ErrorResponse}})
def demo_assessment(name: str) -> dict:
    try:
        profile = get_demo_profile(name)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Demo profile not found") from exc
    return {"name": name, "profile": profile.model_dump(), "assessment": compute_assessment(profile)}


@app.post("/sessions", response_model=SessionResponse, status_code=201, tags=["Sessions"])
def create_session() -> SessionResponse:
    """Start a data-collection session with the default profile."""
    session = AssessmentSession(session_id=uuid.uuid4().hex)
    session.messages.append({"role": "assistant", "content": GREETING_MESSAGE})
    SESSIONS[session.session_id] = session
    logger.info("session_created", extra={"extra": {"session_id": session.session_id}})
    return SessionResponse(**_session_payload(session))


@app.get("/sessions/{session_id}", response_model=SessionResponse, tags=["Sessions"], responses={404: {"model": ErrorResponse}})
def read_session(session_id: str) -> SessionResponse:
    return SessionResponse(**_session_payload(_get_session(session_id)))


@app.patch(
    "/sessions/{session_id}",
    response_model=SessionUpdateResponse,
    tags=["Sessions"],
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
def update_session(
    session_id: str,
    update: dict[str, Any] = Body(..., example={"amerAnnualGMV": 75000000, "vendorKPIs": {"fraudApprovalRate": 98.5}}),
) -> SessionUpdateResponse:
    """Merge a flat-key update into the session profile.

    Unknown keys and unusable values are dropped and reported; the stored
    profile is replaced only when the merged result validates.
    """
    session = _get_session(session_id)
    nested, applied, rejected = translate_flat_update(update)
    try:
        session.profile = apply_profile_update(session.profile, nested)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return SessionUpdateResponse(**_session_payload(session), applied_fields=applied, rejected_fields=rejected)


@app.get("/sessions/{session_id}/assessment", tags=["Sessions"], responses={404: {"model": ErrorResponse}})
def session_assessment(session_id: str, funnel_config: str = Query("current")) -> dict:
    session = _get_session(session_id)
    return dict(compute_assessment(session.profile, _resolve_config(funnel_config)))


@app.post(
    "/sessions/{session_id}/chat",
    response_model=ChatResponse,
    tags=["Sessions"],
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
def chat(session_id: str, payload: ChatRequest) -> ChatResponse:
    """Send one user message to the assistant and merge its data update."""
    session = _get_session(session_id)
    turn = run_chat_turn(session.profile, session.messages, payload.message)

    if turn["error"] is None:
        session.profile = turn["profile"]
        session.is_complete = session.is_complete or turn["is_complete"]
        session.messages.append({"role": "user", "content": payload.message})
        session.messages.append({"role": "assistant", "content": turn["message"]})

    return ChatResponse(
        session_id=session.session_id,
        message=turn["message"],
        profile=session.profile.model_dump(),
        collected_data=profile_to_flat(session.profile),
        is_complete=session.is_complete,
        applied_fields=turn["applied_fields"],
        rejected_fields=turn["rejected_fields"],
        error=turn["error"],
    )
