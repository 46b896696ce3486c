"""
callshield/api/sessions.py
===========================
HTTP API — CallShield live sessions

Responsibility:
    - POST /api/v1/sessions                 → start a per-call session
    - POST /api/v1/sessions/{id}/chunks     → analyse one uploaded audio
                                              window (+ optional transcript)
    - GET  /api/v1/sessions/{id}            → stats, speakers, context
    - POST /api/v1/sessions/{id}/stop       → CallSummary; session removed
    - POST /api/v1/analyze-call             → whole recording, chunked
                                              through a fresh session

Error mapping:
    404 unknown session | 409 session not active |
    422 invalid audio   | 500 normalization failure |
    503 session limit reached

Each session owns its own FraudAnalysisPipeline. Chunks of one session
are serialized with a per-session lock; analysis runs in a worker thread
(asyncio.to_thread) so the event loop is never blocked.
Sessions that are never stopped expire after 30 min without requests.

This module does NOT:
    - Transcribe audio (transcripts are supplied by the client)
    - Persist sessions or summaries
"""

import asyncio
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from callshield.audio.chunker import split_into_chunks
from callshield.audio.normalizer import (
    AudioNormalizationError,
    AudioValidationError,
    normalize_audio,
)
from callshield.config import PipelineConfig
from callshield.pipeline import FraudAnalysisPipeline, PipelineNotActiveError

logger = logging.getLogger("callshield.api.sessions")

DEFAULT_MAX_SESSIONS: int = 1000
DEFAULT_MAX_IDLE_SECONDS: float = 1800.0


# ---------------------------------------------------------------------------
# Session registry
# ---------------------------------------------------------------------------


@dataclass
class Session:
    session_id: str
    pipeline: FraudAnalysisPipeline
    lock: threading.Lock = field(default_factory=threading.Lock)
    last_used: float = 0.0


class SessionLimitError(Exception):
    """Raised when the registry already holds max_sessions live sessions."""


class SessionRegistry:
    """
    In-memory map of live sessions, keyed by opaque id.

    Sessions idle for longer than max_idle_seconds are dropped the next
    time a session is created; at most max_sessions are live at once.
    """

    def __init__(
        self,
        config_factory: Callable[[], PipelineConfig] = PipelineConfig.from_env,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        max_idle_seconds: float = DEFAULT_MAX_IDLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_sessions < 1:
            raise ValueError(f"max_sessions must be >= 1, got {max_sessions}")
        if max_idle_seconds <= 0:
            raise ValueError(f"max_idle_seconds must be > 0, got {max_idle_seconds}")
        self._config_factory = config_factory
        self._max_sessions = max_sessions
        self._max_idle = max_idle_seconds
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._guard = threading.Lock()

    def create(self) -> Session:
        pipeline = FraudAnalysisPipeline(self._config_factory())
        pipeline.start()
        session = Session(session_id=uuid.uuid4().hex, pipeline=pipeline, last_used=self._clock())
        with self._guard:
            self._expire_idle()
            if len(self._sessions) >= self._max_sessions:
                raise SessionLimitError(f"Session limit reached ({self._max_sessions} live sessions).")
            self._sessions[session.session_id] = session
        logger.info("Session %s created", session.session_id)
        return session

    def get(self, session_id: str) -> Session:
        with self._guard:
            session = self._sessions.get(session_id)
            if session is not None:
                session.last_used = self._clock()
        if session is None:
            raise HTTPException(status_code=404, detail=f"Unknown session '{session_id}'.")
        return session

    def remove(self, session_id: str) -> Session:
        with self._guard:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Unknown session '{session_id}'.")
        logger.info("Session %s removed", session_id)
        return session

    def _expire_idle(self) -> None:
        # Caller holds self._guard
        cutoff = self._clock() - self._max_idle
        expired = [sid for sid, s in self._sessions.items() if s.last_used < cutoff]
        for session_id in expired:
            del self._sessions[session_id]
            logger.warning("Session %s expired after %.0f s idle", session_id, self._max_idle)

    def new_config(self) -> PipelineConfig:
        return self._config_factory()

    def __len__(self) -> int:
        with self._guard:
            return len(self._sessions)


# ---------------------------------------------------------------------------
# Worker-thread helpers
# ---------------------------------------------------------------------------


def _analyze_chunk(session: Session, audio_bytes: bytes, filename: str, transcript: str | None) -> dict[str, Any]:
    pipeline = session.pipeline
    samples = normalize_audio(audio_bytes, filename, sample_rate=pipeline.config.sample_rate)
    with session.lock:
        return pipeline.process_chunk(samples, transcript).to_dict()


def _stop_session(session: Session) -> dict[str, Any]:
    with session.lock:
        session.pipeline.stop()
        return session.pipeline.summarize().to_dict()


def _session_snapshot(session: Session) -> dict[str, Any]:
    pipeline = session.pipeline
    with session.lock:
        return {
            "session_id": session.session_id,
            "is_running": pipeline.is_running,
            "stats": pipeline.get_stats().to_dict(),
            "speakers": [s.to_dict() for s in pipeline.get_speakers()],
            "conversation_state": pipeline.get_conversation_state().to_dict(),
            "emotional_trend": pipeline.get_emotional_trend().value,
        }


def _analyze_recording(config: PipelineConfig, audio_bytes: bytes, filename: str) -> dict[str, Any]:
    samples = normalize_audio(audio_bytes, filename, sample_rate=config.sample_rate)

    pipeline = FraudAnalysisPipeline(config)
    pipeline.start()
    timeline: list[dict[str, Any]] = []
    for chunk in split_into_chunks(samples, config.sample_rate, config.chunk_duration):
        result = pipeline.process_chunk(chunk.samples)
        timeline.append(
            {
                "chunk_id": result.chunk_id,
                "start_time": chunk.start_time,
                "duration": chunk.duration,
                "fraud_probability": result.fraud_probability,
                "risk_level": result.risk_level.value,
                "fraud_indicators": result.fraud_indicators,
            }
        )
    pipeline.stop()

    return {"summary": pipeline.summarize().to_dict(), "timeline": timeline}


async def _read_upload(audio_file: UploadFile) -> bytes:
    if audio_file is None or not audio_file.filename:
        raise HTTPException(status_code=400, detail="Audio file is required.")
    try:
        audio_bytes = await audio_file.read()
    except Exception as exc:
        raise HTTPException(status_code=400, detail="Failed to read uploaded file.") from exc
    logger.info("Audio file received: %s (%.2f KB)", audio_file.filename, len(audio_bytes) / 1024)
    return audio_bytes


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def create_app(registry: SessionRegistry | None = None) -> FastAPI:
    app = FastAPI(
        title="CallShield",
        description="Live fraud & harassment risk scoring for voice calls.",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.sessions = registry if registry is not None else SessionRegistry()

    @app.post("/api/v1/sessions", status_code=201)
    async def create_session():
        try:
            session = app.state.sessions.create()
        except SessionLimitError as exc:
            logger.warning("%s", exc)
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except ValueError as exc:
            logger.error("Invalid pipeline configuration: %s", exc)
            raise HTTPException(status_code=500, detail=f"Invalid configuration: {exc}") from exc
        return {
            "session_id": session.session_id,
            "config": session.pipeline.config.to_dict(),
        }

    @app.post("/api/v1/sessions/{session_id}/chunks")
    async def submit_chunk(
        session_id: str,
        audio_file: UploadFile = File(...),
        transcript: str | None = Form(None),
    ):
        session = app.state.sessions.get(session_id)
        audio_bytes = await _read_upload(audio_file)

        try:
            result = await asyncio.to_thread(
                _analyze_chunk, session, audio_bytes, audio_file.filename, transcript,
            )
        except AudioValidationError as exc:
            logger.warning("Rejected audio for session %s: %s", session_id, exc)
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        except AudioNormalizationError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        except PipelineNotActiveError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

        return JSONResponse(status_code=200, content=result)

    @app.get("/api/v1/sessions/{session_id}")
    async def get_session(session_id: str):
        session = app.state.sessions.get(session_id)
        return await asyncio.to_thread(_session_snapshot, session)

    @app.post("/api/v1/sessions/{session_id}/stop")
    async def stop_session(session_id: str):
        session = app.state.sessions.remove(session_id)
        summary = await asyncio.to_thread(_stop_session, session)
        return JSONResponse(status_code=200, content=summary)

    @app.post("/api/v1/analyze-call")
    async def analyze_call(audio_file: UploadFile = File(...)):
        audio_bytes = await _read_upload(audio_file)
        try:
            config = app.state.sessions.new_config()
            output = await asyncio.to_thread(
                _analyze_recording, config, audio_bytes, audio_file.filename,
            )
        except AudioValidationError as exc:
            logger.warning("Rejected recording %s: %s", audio_file.filename, exc)
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        except AudioNormalizationError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        except ValueError as exc:
            logger.error("Invalid pipeline configuration: %s", exc)
            raise HTTPException(status_code=500, detail=f"Invalid configuration: {exc}") from exc

        logger.info(
            "Recording analysed: %d chunks, peak risk %s",
            output["summary"]["chunks_processed"],
            output["summary"]["peak_risk_level"],
        )
        return JSONResponse(status_code=200, content=output)

    return app


app = create_app()
