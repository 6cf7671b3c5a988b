"""FastAPI routes: chat streaming, health and session inspection."""

from __future__ import annotations

import hmac
import time
from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError as BodyValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.background import BackgroundTask

from taskpilot.config import Config, get_config, get_default_data_dir
from taskpilot.config.secrets import AUTH_TOKEN_VAR, fetch_secret
from taskpilot.errors import USER_MESSAGES, ErrorKind, TaskpilotError
from taskpilot.logging import get_logger
from taskpilot.services.local import LocalWorkspaceService
from taskpilot.session.coordinator import ChatRequest, SessionCoordinator
from taskpilot.session.storage import SESSION_ID_RE, FileConversationStore

log = get_logger("server")


class ChatBody(BaseModel):
    """POST /chat request body."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    session_id: str | None = Field(default=None, alias="sessionId")
    request_id: str | None = Field(default=None, alias="requestId")
    messages: list[dict[str, Any]] = Field(default_factory=list)
    latest_user_message: str | None = Field(default=None, alias="latestUserMessage")
    history_version: int | None = Field(default=None, alias="historyVersion")

    def to_request(self) -> ChatRequest:
        return ChatRequest(
            request_id=self.request_id or "",
            session_id=self.session_id or None,
            messages=self.messages,
            latest_user_message=self.latest_user_message,
            history_version=self.history_version,
        )


def build_coordinator(config: Config) -> SessionCoordinator:
    """Coordinator over the file store and a local workspace in the data dir."""
    data_dir = Path(config.session.data_dir or get_default_data_dir()).expanduser()
    store = FileConversationStore(data_dir, default_mode=config.session.default_mode)
    service = LocalWorkspaceService(data_dir / "workspace.yaml")
    return SessionCoordinator(config, store, service=service)


async def require_auth(authorization: str | None = Header(default=None)) -> None:
    """Bearer token check, active only when an auth token is configured."""
    token = fetch_secret(AUTH_TOKEN_VAR)
    if not token:
        return
    expected = f"Bearer {token}"
    if authorization is None or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="unauthorized")


def get_coordinator(request: Request) -> SessionCoordinator:
    return request.app.state.coordinator


def create_app(
    config: Config | None = None,
    *,
    coordinator: SessionCoordinator | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    if coordinator is None:
        coordinator = build_coordinator(config or get_config())

    app = FastAPI(
        title="taskpilot",
        description="Conversational task and calendar assistant backend",
        version="0.1.0",
    )
    app.state.coordinator = coordinator
    app.state.started_at = time.time()

    _register_error_handlers(app)
    _register_routes(app)
    return app


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(TaskpilotError)
    async def taskpilot_error(request: Request, exc: TaskpilotError) -> JSONResponse:
        log.info("Request refused (%s): %s", exc.kind.value, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(BodyValidationError)
    async def body_error(request: Request, exc: BodyValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "error": ErrorKind.VALIDATION.value,
                "message": USER_MESSAGES[ErrorKind.VALIDATION],
                "retryable": False,
            },
        )

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        log.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": ErrorKind.INTERNAL.value,
                "message": USER_MESSAGES[ErrorKind.INTERNAL],
                "retryable": False,
            },
        )


def _register_routes(app: FastAPI) -> None:
    """Register all API routes."""

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        coordinator = get_coordinator(request)
        return {
            "status": "ok",
            "model": coordinator.config.llm.model,
            "uptime": time.time() - request.app.state.started_at,
        }

    @app.post("/chat", dependencies=[Depends(require_auth)])
    async def chat(body: ChatBody, request: Request) -> StreamingResponse:
        """Stream one assistant turn as server-sent events."""
        turn = await get_coordinator(request).open(body.to_request())
        return StreamingResponse(
            turn.stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Session-Id": turn.session_id},
            background=BackgroundTask(turn.close),
        )

    @app.get("/sessions/{session_id}", dependencies=[Depends(require_auth)])
    async def session_state(session_id: str, request: Request) -> dict[str, Any]:
        """Current mode, history version and lock of a session."""
        if not SESSION_ID_RE.fullmatch(session_id):
            raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
        coordinator = get_coordinator(request)
        session = await coordinator.store.get_session(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Session {session_id} not found")

        lock = None
        if session.lock is not None:
            lock = {
                "requestId": session.lock.request_id,
                "expiresAt": session.lock.expires_at,
                "expired": session.lock.is_expired(time.time()),
            }
        return {
            "sessionId": session.session_id,
            "mode": session.mode,
            "version": session.version,
            "messageCount": len(session.messages),
            "lock": lock,
            "updatedAt": session.updated_at.isoformat(),
        }
