"""
HTTP surfaces for the entry tools.

- REST:     /api/entries, /api/tools/store, /api/tools/sum
- Sessions: GET /sse (event stream), POST /messages?sessionId=...
- Chat:     POST /api/chat
"""
from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager
from functools import partial
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sse_starlette.sse import EventSourceResponse

from entrybook.chat import ChatModel, ChatOrchestrator, GroqChatModel, build_turns
from entrybook.config import Settings, load_settings
from entrybook.errors import EntrybookError, UnknownSession, UpstreamFailure, ValidationError
from entrybook.protocol import build_tool_server
from entrybook.sessions import SessionManager, ToolSession
from entrybook.store import EntryStore
from entrybook.tools.bridge import LocalToolTarget, invoke

logger = logging.getLogger(__name__)

MESSAGES_PATH = "/messages"
SSE_KEEPALIVE_SECONDS = 15


async def session_events(session: ToolSession, sessions: SessionManager) -> AsyncIterator[Dict[str, str]]:
    """
    Render one session as server-sent events.

    The first event tells the peer where to post its messages; every server
    reply follows as a ``message`` event. The session is released when the
    stream ends for any reason.
    """
    try:
        yield {"event": "endpoint", "data": f"{MESSAGES_PATH}?sessionId={session.session_id}"}
        while True:
            outgoing = await session.next_message()
            if outgoing is None:
                return
            yield {
                "event": "message",
                "data": outgoing.message.model_dump_json(by_alias=True, exclude_none=True),
            }
    finally:
        sessions.release(session.session_id)


def _authorized(request: Request, token: Optional[str]) -> bool:
    """Check the shared secret from a bearer header or ``?token=``; no secret means open."""
    if not token:
        return True
    header = request.headers.get("authorization", "")
    supplied = header[7:].strip() if header.lower().startswith("bearer ") else ""
    if not supplied:
        supplied = request.query_params.get("token", "")
    return hmac.compare_digest(supplied.encode(), token.encode())


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        raise ValidationError("request body must be valid JSON") from exc


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[EntryStore] = None,
    model: Optional[ChatModel] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Parameters
    ----------
    settings : Optional[Settings]
        Runtime settings; loaded from the environment when omitted.
    store : Optional[EntryStore]
        Injected store for tests; built from ``settings.db_path`` otherwise.
    model : Optional[ChatModel]
        Injected chat model; a `GroqChatModel` is built on first use otherwise.
    """
    settings = settings or load_settings()
    store = store or EntryStore(settings.db_path)
    local_target = LocalToolTarget(store)
    sessions = SessionManager(build_tool_server(local_target))

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        sessions.close_all()

    app = FastAPI(title="entrybook", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.sessions = sessions
    app.state.chat_model = model
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _chat_model() -> ChatModel:
        if app.state.chat_model is None:
            try:
                app.state.chat_model = GroqChatModel(settings.groq_model, base_url=settings.groq_base_url)
            except RuntimeError as exc:
                raise UpstreamFailure(f"Chat model is not configured: {exc}", status_code=503) from exc
        return app.state.chat_model

    @app.exception_handler(EntrybookError)
    async def _entrybook_error(request: Request, exc: EntrybookError) -> JSONResponse:
        status = 400
        if isinstance(exc, UpstreamFailure):
            status = exc.status_code
        return JSONResponse({"error": exc.kind, "detail": exc.detail}, status_code=status)

    # ------------------------------------------------------------------ REST
    @app.get("/api/entries")
    async def list_entries(page: Optional[str] = None, pageSize: Optional[str] = None) -> Dict[str, Any]:
        return await run_in_threadpool(store.list_page, page or 1, pageSize or 10)

    @app.post("/api/tools/store")
    async def store_entry(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            body = {}
        result = await invoke(local_target, "store", body if isinstance(body, dict) else {})
        if result.is_error:
            return JSONResponse({"error": result.text}, status_code=400)
        return JSONResponse(result.data)

    @app.get("/api/tools/sum")
    async def sum_entries(request: Request) -> JSONResponse:
        params = request.query_params
        result = await invoke(local_target, "sum", {"from": params.get("from"), "to": params.get("to")})
        if result.is_error:
            return JSONResponse({"error": result.text}, status_code=400)
        return JSONResponse({"total": result.data})

    @app.get("/healthz")
    async def healthz() -> Dict[str, Any]:
        return {"status": "ok", "sessions": len(sessions)}

    # ------------------------------------------------------- tool sessions
    @app.get("/sse")
    async def connect(request: Request) -> Response:
        if not _authorized(request, settings.auth_token):
            logger.warning("Rejected tool-session connect from %s: bad token", request.client)
            return JSONResponse({"error": "unauthorized"}, status_code=401)
        session = sessions.accept()
        return EventSourceResponse(
            session_events(session, sessions),
            data_sender_callable=partial(sessions.serve, session),
            ping=SSE_KEEPALIVE_SECONDS,
        )

    @app.post(MESSAGES_PATH)
    async def post_message(request: Request) -> Response:
        session_id = request.query_params.get("sessionId")
        if not session_id:
            return JSONResponse({"error": "Bad session id"}, status_code=400)
        try:
            message = await _read_json(request)
            await sessions.dispatch(session_id, message)
        except UnknownSession:
            return JSONResponse({"error": "No transport for sessionId"}, status_code=400)
        except ValidationError as exc:
            return JSONResponse({"error": exc.detail}, status_code=400)
        return Response("Accepted", status_code=202)

    # ------------------------------------------------------------------ chat
    @app.post("/api/chat")
    async def chat(request: Request) -> Dict[str, Any]:
        turns = build_turns(await _read_json(request))
        orchestrator = ChatOrchestrator(
            _chat_model(),
            sessions,
            max_rounds=settings.max_tool_rounds,
            model_timeout=settings.model_timeout,
            tool_timeout=settings.tool_timeout,
        )
        reply = await orchestrator.run(turns)
        logger.info(
            "Chat finished after %d round(s) with %d tool call(s) (exhausted=%s)",
            reply.rounds,
            len(reply.tool_logs),
            reply.exhausted,
        )
        return reply.to_dict()

    return app
