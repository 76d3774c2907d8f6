from __future__ import annotations

import logging
import threading
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Body, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, StrictStr
from pydantic import ValidationError as PydanticValidationError

from chat.core.errors import ValidationError
from chat.core.transcript import INVALID_MESSAGE, INVALID_SESSION_ID, TranscriptManager
from chat.gateway import build_transcript_manager
from config.settings import Settings, get_settings


logger = logging.getLogger("studybuddy")


class ChatRequest(BaseModel):
    session_id: StrictStr = Field(..., alias="sessionId", min_length=1, description="Caller-chosen session key")
    message: StrictStr = Field(..., min_length=1, description="User's latest message")


def _request_error_reason(exc: PydanticValidationError) -> str:
    fields = {err["loc"][0] for err in exc.errors() if err.get("loc")}
    if "message" in fields and "sessionId" not in fields:
        return INVALID_MESSAGE
    return INVALID_SESSION_ID


def _error(reason: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": reason}, status_code=status_code)


def create_app(
    manager: Optional[TranscriptManager] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level, format="[%(asctime)s] %(levelname)s - %(message)s")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if app.state.manager is not None:
            logger.info("Closing chat collaborators")
            app.state.manager.close()

    app = FastAPI(title="Edge Study Buddy", version="1.0.0", lifespan=lifespan)
    app.state.manager = manager
    app.state.manager_lock = threading.Lock()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    def get_manager(request: Request) -> TranscriptManager:
        state = request.app.state
        # Collaborators are built on first use so importing the app needs no credentials.
        with state.manager_lock:
            if state.manager is None:
                state.manager = build_transcript_manager(settings)
        return state.manager

    @app.exception_handler(RequestValidationError)
    def invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("Rejected unreadable request body on %s", request.url.path)
        return _error("Invalid JSON body", 400)

    @app.post("/api/chat")
    def chat(request: Request, payload: Any = Body(None)) -> JSONResponse:
        try:
            req = ChatRequest.model_validate(payload)
        except PydanticValidationError as exc:
            return _error(_request_error_reason(exc), 400)

        logger.info("Incoming chat: session=%s message_len=%s", req.session_id, len(req.message))
        try:
            manager = get_manager(request)
            result = manager.handle_turn(req.session_id, req.message)
        except ValidationError as exc:
            return _error(exc.reason, 400)
        except Exception:
            logger.exception("Chat processing failed for session=%s", req.session_id)
            return _error("Internal error", 500)

        logger.info(
            "Replied: session=%s reply_chars=%s history_turns=%s",
            req.session_id,
            len(result.reply),
            len(result.history),
        )
        body: Dict[str, Any] = result.model_dump(mode="json")
        return JSONResponse(body, status_code=200)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run("app.main:app", host=settings.host, port=settings.port)
