"""
FastAPI Backend for the Socratic Code Tutor

Thin HTTP layer over the turn pipeline:
- POST /chat                        process one tutoring turn
- POST /sessions/{session_id}/end   finalize and remove a session
- POST /sessions/new-doubt          end the current session and open a new one
- POST /summary                     summarize a conversation history
- GET  /metrics                     Prometheus metrics
- GET  /health, GET /               liveness
"""

from fastapi import FastAPI, HTTPException, Body, Depends, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Optional, List, Dict, Any
from datetime import timedelta
import os
import sys
import time
import asyncio
import logging

# Add the socratic_code_tutor package to Python path (when not pip-installed)
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)
package_src = os.path.join(project_root, 'socratic_code_tutor', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

# Setup enhanced logging with pretty formatting
from lib.logger import setup_logging, get_logger

setup_logging(level=logging.INFO, use_colors=True)

logger = get_logger("backend.main")

from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from lib.supabase_client import get_supabase_client
from socratic_code_tutor.config import TutorSettings
from socratic_code_tutor.errors import InputError, PermanentProviderError, SessionNotFoundError
from socratic_code_tutor.generation import GenerationOrchestrator
from socratic_code_tutor.llm_service import OpenAIQuestionService
from socratic_code_tutor.persistence import create_session_recorder
from socratic_code_tutor.schemas import (
    HistoryItem,
    NewDoubtRequest,
    NewDoubtResult,
    SessionSummary,
    TurnResponse,
)
from socratic_code_tutor.session_store import SessionStore
from socratic_code_tutor.turn_pipeline import TurnPipeline

IDLE_SWEEP_INTERVAL_SECONDS = 60

# Singletons, built lazily so importing this module needs no credentials
_settings: Optional[TutorSettings] = None
_pipeline: Optional[TurnPipeline] = None
_sweep_task: Optional[asyncio.Task] = None


def get_settings() -> TutorSettings:
    global _settings
    if _settings is None:
        _settings = TutorSettings.from_env()
        logging.getLogger().setLevel(_settings.log_level)
    return _settings


def build_pipeline(settings: TutorSettings) -> TurnPipeline:
    """Wire the production pipeline from settings."""
    service = OpenAIQuestionService(api_key=settings.openai_api_key, model=settings.openai_model)
    orchestrator = GenerationOrchestrator(
        service,
        max_attempts=settings.generation_max_attempts,
        classify_max_attempts=settings.classify_max_attempts,
        backoff_base_seconds=settings.backoff_base_seconds,
    )
    idle_ttl = timedelta(minutes=settings.session_idle_ttl_minutes) if settings.session_idle_ttl_minutes else None
    recorder = create_session_recorder(get_supabase_client(settings))
    return TurnPipeline(
        SessionStore(idle_ttl=idle_ttl),
        orchestrator,
        recorder=recorder,
        summary_interval=settings.summary_interval,
    )


def get_pipeline() -> TurnPipeline:
    """Get or create the process-wide TurnPipeline."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline(get_settings())
    return _pipeline


app = FastAPI(
    title="Socratic Code Tutor API",
    description="Question-only programming tutor with misconception tracking",
    version="0.1.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== Pydantic Models ====================

class SummaryRequest(BaseModel):
    history: List[HistoryItem] = []


class SummaryResponse(BaseModel):
    summary: Optional[str]


# ==================== Error Mapping ====================

@app.exception_handler(InputError)
async def input_error_handler(request, exc: InputError):
    status = 404 if isinstance(exc, SessionNotFoundError) else 400
    logger.warning("Rejected request", data={"path": request.url.path, "error": str(exc), "field": exc.field})
    return JSONResponse(status_code=status, content={"error": str(exc), "field": exc.field})


@app.exception_handler(PermanentProviderError)
async def provider_error_handler(request, exc: PermanentProviderError):
    logger.error("Question service failed", error=exc, data={"path": request.url.path, "operation": exc.operation})
    return JSONResponse(
        status_code=502,
        content={"error": "The tutoring model is unavailable right now. Please try again.", "operation": exc.operation},
    )


# ==================== Endpoints ====================

@app.get("/")
async def root():
    return {"status": "ok", "message": "Socratic Code Tutor running"}


@app.get("/health")
async def health():
    pipeline = _pipeline
    return {
        "status": "healthy",
        "active_sessions": pipeline.store.active_count if pipeline else 0,
        "pending_writes": pipeline.pending_writes if pipeline else 0,
    }


@app.get("/metrics")
async def get_metrics() -> Response:
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)


@app.post("/chat", response_model=TurnResponse)
async def chat(payload: Dict[str, Any] = Body(...), pipeline: TurnPipeline = Depends(get_pipeline)):
    start = time.time()
    logger.request("POST", "/chat", session_id=payload.get("session_id"))
    try:
        result = await pipeline.process_turn(payload)
    except (InputError, PermanentProviderError):
        raise
    except Exception as e:
        logger.error("Error in chat", error=e, data={"session_id": payload.get("session_id")})
        raise HTTPException(status_code=500, detail="Internal Server Error")

    logger.response(200, "/chat", duration=time.time() - start, data={
        "session_id": result.session_id,
        "intent": result.intent,
        "targeted": result.targeted_misconception,
        "resolved": result.resolution_events,
    })
    return result


@app.post("/sessions/new-doubt", response_model=NewDoubtResult)
async def new_doubt(body: NewDoubtRequest, pipeline: TurnPipeline = Depends(get_pipeline)):
    result = await pipeline.new_doubt(body.current_session_id, body.user_id)
    logger.success("New doubt session opened", data={
        "previous_session_id": result.previous_session_id,
        "session_id": result.session_id,
    })
    return result


@app.post("/sessions/{session_id}/end", response_model=SessionSummary)
async def end_session(session_id: str, pipeline: TurnPipeline = Depends(get_pipeline)):
    summary = await pipeline.end_session(session_id)
    logger.success("Session ended", data=summary.model_dump(mode="json"))
    return summary


@app.post("/summary", response_model=SummaryResponse)
async def summarize(body: SummaryRequest, pipeline: TurnPipeline = Depends(get_pipeline)):
    history = [{"role": item.role, "text": item.text} for item in body.history]
    if not history:
        raise InputError("Invalid request: history: must not be empty", field="history")
    reply = await pipeline.orchestrator.summarize(history)
    return SummaryResponse(summary=reply.text if reply else None)


@app.on_event("startup")
async def startup_event():
    global _sweep_task
    pipeline = get_pipeline()
    logger.subsection("Tutor pipeline ready", {
        "recorder": type(pipeline.recorder).__name__,
        "summary_interval": pipeline.summary_interval,
        "idle_ttl": str(pipeline.store.idle_ttl) if pipeline.store.idle_ttl else "disabled",
    })
    if pipeline.store.idle_ttl is not None:
        _sweep_task = asyncio.create_task(pipeline.sweep_idle_sessions(IDLE_SWEEP_INTERVAL_SECONDS))
        logger.success("Idle session sweep started", data={"ttl": str(pipeline.store.idle_ttl)})


@app.on_event("shutdown")
async def shutdown_event():
    global _sweep_task
    if _sweep_task:
        _sweep_task.cancel()
        try:
            await _sweep_task
        except asyncio.CancelledError:
            pass
        _sweep_task = None
    if _pipeline:
        await _pipeline.drain()
    logger.info("🛑 Server stopped.")


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    logger.section("SERVER STARTUP", {"port": port})
    uvicorn.run(app, host="0.0.0.0", port=port)
