"""FastAPI application factory for the lead-intake chat service."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from intake.conversation import Message
from .config import Settings, get_settings
from .lead_export import LeadRecord, export_lead
from .schemas import MessageRead, SessionRead, UtteranceCreate
from .session import ChatSession, ResponsePending, SessionClosed, SessionStore

logger = logging.getLogger("intake.api")

_background_tasks: set[asyncio.Task[None]] = set()


def _schedule_background_coroutine(
    coro_func: Callable[..., Awaitable[Any]],
    *args: Any,
    description: str,
    **kwargs: Any,
) -> None:
    async def runner() -> None:
        try:
            await coro_func(*args, **kwargs)
        except Exception:
            logger.exception("Background task '%s' failed", description)

    try:
        task = asyncio.create_task(runner())
    except RuntimeError:
        logger.error("Unable to schedule '%s': no running event loop", description)
        return
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


def _message_event(message: Message) -> Dict[str, str]:
    return {"event": "message", "data": MessageRead.from_message(message).model_dump_json()}


async def sse_event_stream(
    queue: asyncio.Queue[Optional[Message]],
    *,
    heartbeat_interval: float = 20.0,
) -> AsyncGenerator[Dict[str, str], None]:
    """
    SSE generator for one session:
      - emits {"event":"ping","data":"{}"} every heartbeat_interval
      - emits {"event":"message"} for each message put on the queue
      - emits {"event":"done"} once the session is torn down (None on the queue)
      - cancels any pending queue get on exit
    """
    queue_task: asyncio.Task[Optional[Message]] | None = None
    try:
        while True:
            if queue_task is None:
                queue_task = asyncio.create_task(queue.get())

            try:
                message = await asyncio.wait_for(asyncio.shield(queue_task), timeout=heartbeat_interval)
            except asyncio.TimeoutError:
                yield {"event": "ping", "data": "{}"}
                continue

            queue_task = None
            if message is None:
                yield {"event": "done", "data": "{}"}
                break

            yield _message_event(message)
    finally:
        if queue_task is not None:
            queue_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await queue_task


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    engine = settings.build_engine()

    webhook_url = str(settings.lead_webhook_url) if settings.lead_webhook_url else None

    def on_complete(session: ChatSession) -> None:
        _schedule_background_coroutine(
            export_lead,
            LeadRecord.from_state(session.id, session.state),
            webhook_url=webhook_url,
            token=settings.lead_webhook_token,
            description="lead export",
        )

    store = SessionStore(
        lambda: ChatSession(engine, delay=settings.response_delay_seconds, on_complete=on_complete),
        ttl=settings.session_ttl_seconds,
    )

    app = FastAPI(title="Lead Intake Chat API", version="0.1.0", docs_url="/docs")
    app.state.store = store
    app.state.settings = settings
    app.state.engine = engine
    app.state.sweeper = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_store(request: Request) -> SessionStore:
        return request.app.state.store

    def get_session(session_id: str, store: SessionStore = Depends(get_store)) -> ChatSession:
        try:
            session = store.get(session_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        session.touch()
        return session

    @app.get("/health", summary="Simple health check")
    async def health() -> dict[str, object]:
        return {
            "status": "ok",
            "environment": app.state.settings.environment,
            "sessions": len(app.state.store),
        }

    @app.post(
        "/sessions",
        response_model=SessionRead,
        status_code=status.HTTP_201_CREATED,
        summary="Open a new chat session",
    )
    async def create_session(store: SessionStore = Depends(get_store)) -> SessionRead:
        await store.evict_idle()
        session = store.create()
        logger.info("Session %s created", session.id)
        return SessionRead.from_session(session)

    @app.get("/sessions/{session_id}", response_model=SessionRead, summary="Current state of a session")
    async def read_session(session: ChatSession = Depends(get_session)) -> SessionRead:
        return SessionRead.from_session(session)

    @app.post(
        "/sessions/{session_id}/activate",
        response_model=SessionRead,
        summary="Signal that the chat became visible",
    )
    async def activate_session(session: ChatSession = Depends(get_session)) -> SessionRead:
        try:
            session.activate()
        except SessionClosed as exc:
            raise HTTPException(status_code=410, detail=str(exc)) from exc
        return SessionRead.from_session(session)

    @app.post(
        "/sessions/{session_id}/messages",
        response_model=SessionRead,
        status_code=status.HTTP_202_ACCEPTED,
        summary="Submit a visitor message",
    )
    async def submit_message(
        payload: UtteranceCreate,
        wait: bool = False,
        session: ChatSession = Depends(get_session),
    ) -> SessionRead:
        try:
            session.submit(payload.text)
        except ResponsePending as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except SessionClosed as exc:
            raise HTTPException(status_code=410, detail=str(exc)) from exc
        if wait:
            await session.wait_idle()
        return SessionRead.from_session(session)

    @app.get("/sessions/{session_id}/events", summary="Stream session messages as Server-Sent Events")
    async def session_events(session: ChatSession = Depends(get_session)):
        history = list(session.messages)
        queue = session.subscribe()

        async def stream() -> AsyncGenerator[Dict[str, str], None]:
            try:
                for message in history:
                    yield _message_event(message)
                async for event in sse_event_stream(
                    queue, heartbeat_interval=app.state.settings.sse_heartbeat_seconds
                ):
                    yield event
            finally:
                session.unsubscribe(queue)

        return EventSourceResponse(stream())

    @app.delete(
        "/sessions/{session_id}",
        status_code=status.HTTP_204_NO_CONTENT,
        summary="Tear down a session, discarding any pending reply",
    )
    async def delete_session(session_id: str, store: SessionStore = Depends(get_store)) -> Response:
        try:
            session = store.pop(session_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        await session.close()
        logger.info("Session %s closed", session_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.exception_handler(HTTPException)
    async def http_exc_handler(_: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(_: Request, exc: Exception):
        logger.exception("Unhandled error")
        return JSONResponse(status_code=500, content={"detail": f"Internal error: {exc}"})

    @app.on_event("startup")
    async def _startup_log() -> None:
        office = engine.office_hours
        logger.info(
            "Startup: env=%s script=%s questions=%d office=%s %s %02d-%02d delay=%.2fs lead_webhook=%s",
            settings.environment,
            engine.script.name,
            len(engine.script),
            office.timezone,
            sorted(office.weekdays),
            office.open_hour,
            office.close_hour,
            settings.response_delay_seconds,
            "yes" if webhook_url else "no",
        )

    async def _sweep_idle_sessions() -> None:
        interval = min(settings.session_ttl_seconds, 60.0)
        while True:
            await asyncio.sleep(interval)
            try:
                await app.state.store.evict_idle()
            except Exception:
                logger.exception("Idle session sweep failed")

    @app.on_event("startup")
    async def _start_sweeper() -> None:
        app.state.sweeper = asyncio.create_task(_sweep_idle_sessions())

    @app.on_event("shutdown")
    async def _close_sessions() -> None:
        sweeper = app.state.sweeper
        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
        await app.state.store.close_all()

    return app
