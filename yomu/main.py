"""FastAPI server exposing capture, tap lookup, segmentation fix and flashcards."""

from __future__ import annotations

import base64
import binascii
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import requests
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import Settings
from .errors import (
    BusyError,
    ConfigurationError,
    DuplicateNoteError,
    InvalidStateError,
    MalformedResponseError,
    NoTextDetectedError,
    TransientServiceError,
    YomuError,
)
from .logging_config import configure_logging
from .session import Session

logger = logging.getLogger(__name__)

_ERROR_STATUS = [
    (ConfigurationError, 400),
    (NoTextDetectedError, 422),
    (BusyError, 409),
    (InvalidStateError, 409),
    (DuplicateNoteError, 409),
    (MalformedResponseError, 502),
    (TransientServiceError, 502),
]


class CaptureRequest(BaseModel):
    image_url: Optional[str] = None
    image_b64: Optional[str] = None

    def load_bytes(self) -> bytes:
        if self.image_b64:
            try:
                _, data = self.image_b64.split(",", 1)
            except ValueError:
                data = self.image_b64
            try:
                return base64.b64decode(data, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise HTTPException(status_code=400, detail="image_b64 is not valid base64") from exc
        if self.image_url:
            logger.info("Fetching image from %s", self.image_url)
            try:
                response = requests.get(self.image_url, timeout=20)
            except requests.RequestException as exc:
                raise HTTPException(status_code=502, detail="Failed to fetch image URL") from exc
            if not response.ok:
                raise HTTPException(status_code=502, detail="Failed to fetch image URL")
            return response.content
        raise HTTPException(status_code=400, detail="Provide image_url or image_b64")


class IndexRequest(BaseModel):
    index: int = Field(..., ge=0)


class CardRequest(BaseModel):
    word: Optional[str] = None


def _status_for(exc: YomuError) -> int:
    for error_type, status in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


def _session(request: Request) -> Session:
    session: Session | None = getattr(request.app.state, "session", None)
    if session is None:
        raise HTTPException(status_code=503, detail="Session not initialised")
    return session


def create_app(session: Session | None = None, *, start_session: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.session is None:
            app.state.session = Session.from_settings(Settings.from_env())
        if start_session:
            app.state.session.start()
        yield
        if start_session:
            app.state.session.stop()

    app = FastAPI(title="Yomu API", version="0.1.0", lifespan=lifespan)
    app.state.session = session

    @app.exception_handler(YomuError)
    async def _yomu_error(request: Request, exc: YomuError) -> JSONResponse:
        status = _status_for(exc)
        if status >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status, content={"detail": str(exc), "error": type(exc).__name__})

    @app.post("/capture")
    def capture(req: CaptureRequest, request: Request) -> Dict[str, Any]:
        session = _session(request)
        try:
            summary = session.capture(req.load_bytes())
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        summary["targets"] = session.tap_targets()
        return summary

    @app.get("/targets")
    def targets(request: Request) -> Dict[str, Any]:
        session = _session(request)
        return {
            "layout": session.layout,
            "enhanced": session.enhanced,
            "targets": session.tap_targets(),
        }

    @app.post("/tap")
    def tap(req: IndexRequest, request: Request) -> Dict[str, Any]:
        return dict(_session(request).tap(req.index))

    @app.post("/enhance")
    def enhance(request: Request) -> Dict[str, Any]:
        session = _session(request)
        outcome: Dict[str, Any] = dict(session.enhance())
        outcome["targets"] = session.tap_targets()
        return outcome

    @app.post("/select")
    def select(req: IndexRequest, request: Request) -> Dict[str, Any]:
        return _session(request).select_candidate(req.index)

    @app.post("/close")
    def close(request: Request) -> Dict[str, str]:
        _session(request).close_lookup()
        return {"status": "closed"}

    @app.post("/cards/queue")
    def queue_card(req: CardRequest, request: Request) -> Dict[str, Any]:
        return _session(request).queue_card(req.word)

    @app.post("/cards/add")
    def add_card(req: CardRequest, request: Request) -> Dict[str, Any]:
        return _session(request).add_card(req.word)

    @app.post("/queue/flush")
    def flush_queue(request: Request) -> Dict[str, Any]:
        return _session(request).flush_queue()

    @app.get("/queue")
    def queue(request: Request) -> Dict[str, List[Dict[str, Any]]]:
        return {"items": _session(request).queue_items()}

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    return app


app: FastAPI = create_app()


def run() -> None:
    import uvicorn

    configure_logging()
    uvicorn.run(
        "yomu.main:app",
        host=os.getenv("YOMU_HOST", "127.0.0.1"),
        port=int(os.getenv("YOMU_PORT", "8000")),
        log_config=None,
    )


__all__ = ["app", "create_app", "run"]
