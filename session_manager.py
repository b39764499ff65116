"""
Session lifecycle for the multi-client HTTP transport.

Each remote client gets its own protocol handler (one streamable-HTTP
transport plus one protocol server), keyed by a server-generated session id:

    PENDING  handler built and running, initialization in flight, not visible
    ACTIVE   published in the table, accepting requests and push streams
    CLOSED   handler released, entry removed (terminal)

A session is published only after its handler has answered the initialize
request successfully, so no other request can observe a half-initialized
session. Entries are removed on explicit termination and, through the
handler's close callback, whenever the handler shuts down on its own.
"""

from __future__ import annotations

import json
import threading
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import anyio
from anyio.abc import TaskGroup, TaskStatus
from mcp.server.lowlevel import Server
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER, StreamableHTTPServerTransport
from starlette.types import Message, Receive, Scope, Send

from errors import SessionError, TransportError
from observability import build_log_context, log_event

__all__ = [
    "MCP_SESSION_ID_HEADER",
    "Session",
    "SessionHandler",
    "SessionManager",
    "SessionState",
    "is_initialize_request",
]

SESSION_CTX = build_log_context(component="session_manager")

NO_VALID_SESSION = "Bad request: no valid session"
INVALID_SESSION_ID = "Invalid or missing session ID"


class SessionState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CLOSED = "closed"


def is_initialize_request(payload: Any) -> bool:
    """True for an `initialize` message, or a batch containing one."""
    if isinstance(payload, list):
        return any(isinstance(m, dict) and m.get("method") == "initialize" for m in payload)
    return isinstance(payload, dict) and payload.get("method") == "initialize"


def _decode_body(body: bytes) -> Any:
    if not body:
        return None
    try:
        return json.loads(body)
    except ValueError:
        return None


class SessionHandler:
    """
    Protocol handler for one session: a StreamableHTTPServerTransport bound to
    `session_id`, driven by its own protocol server instance.

    `serve()` runs for the lifetime of the session inside the manager's task
    group; when it returns (terminate, disconnect, crash) `on_close` fires.
    """

    def __init__(self, session_id: str, server: Server, *, json_response: bool = False) -> None:
        self.session_id = session_id
        self._server = server
        self._transport = StreamableHTTPServerTransport(
            mcp_session_id=session_id,
            is_json_response_enabled=json_response,
        )
        self.on_close: Optional[Callable[[str], None]] = None

    @property
    def closed(self) -> bool:
        return self._transport.is_terminated

    async def serve(self, *, task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED) -> None:
        try:
            async with self._transport.connect() as (read_stream, write_stream):
                task_status.started()
                await self._server.run(
                    read_stream,
                    write_stream,
                    self._server.create_initialization_options(),
                    stateless=False,
                )
        except Exception as e:
            log_event(
                "session_handler_crashed",
                ctx=SESSION_CTX,
                data={"session_id": self.session_id, "error": repr(e)},
                level="error",
            )
        finally:
            if self.on_close is not None:
                self.on_close(self.session_id)

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self._transport.handle_request(scope, receive, send)

    async def close(self) -> None:
        await self._transport.terminate()


@dataclass
class Session:
    session_id: str
    handler: Any
    created_at: float = field(default_factory=time.time)
    state: SessionState = SessionState.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {"session_id": self.session_id, "created_at": self.created_at, "state": self.state.value}


class SessionManager:
    """
    Owns the session-id -> Session table for the HTTP transport.

    `handler_factory(session_id)` must return an object with the
    SessionHandler surface: `serve(task_status=...)`, `handle_request(scope,
    receive, send)`, `close()` and a writable `on_close` attribute.

    Usage (inside the ASGI lifespan):

        async with manager.run():
            ...serve requests...
    """

    def __init__(
        self,
        handler_factory: Callable[[str], Any],
        *,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self._handler_factory = handler_factory
        self._new_session_id = id_factory or (lambda: uuid.uuid4().hex)
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}
        # Sessions whose initialize request is still in flight.
        self._pending: Dict[str, Session] = {}
        self._task_group: Optional[TaskGroup] = None

    # ------------------------------------------------------------------ lifecycle

    @asynccontextmanager
    async def run(self) -> AsyncIterator["SessionManager"]:
        if self._task_group is not None:
            raise TransportError("SessionManager is already running")
        async with anyio.create_task_group() as tg:
            self._task_group = tg
            log_event("session_manager_started", ctx=SESSION_CTX)
            try:
                yield self
            finally:
                with anyio.CancelScope(shield=True):
                    await self.close_all()
                tg.cancel_scope.cancel()
                self._task_group = None
                log_event("session_manager_stopped", ctx=SESSION_CTX)

    @property
    def running(self) -> bool:
        return self._task_group is not None

    # ------------------------------------------------------------------ table

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def get(self, session_id: Optional[str]) -> Session:
        """Look up an active session; missing or unknown ids are a client error."""
        if not session_id:
            raise SessionError(INVALID_SESSION_ID)
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None or session.state is not SessionState.ACTIVE:
            raise SessionError(INVALID_SESSION_ID, {"session_id": session_id})
        return session

    def _publish(self, session: Session) -> bool:
        """Move a PENDING session into the table; False if it closed meanwhile."""
        with self._lock:
            if session.state is not SessionState.PENDING:
                return False
            self._sessions[session.session_id] = session
            session.state = SessionState.ACTIVE
            count = len(self._sessions)
        log_event(
            "session_created",
            ctx=SESSION_CTX,
            data={"session_id": session.session_id, "active_sessions": count},
        )
        return True

    def _forget(self, session_id: str, *, reason: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.pop(session_id, None)
            count = len(self._sessions)
        if session is None:
            return None
        session.state = SessionState.CLOSED
        log_event(
            "session_closed",
            ctx=SESSION_CTX,
            data={"session_id": session_id, "reason": reason, "active_sessions": count},
        )
        return session

    def _on_handler_closed(self, session_id: str) -> None:
        with self._lock:
            pending = self._pending.get(session_id)
            if pending is not None:
                # Still initializing: mark it so it is never published.
                pending.state = SessionState.CLOSED
        self._forget(session_id, reason="handler_closed")

    # ------------------------------------------------------------------ operations

    def resolve(self, session_id: Optional[str], body: bytes) -> Optional[Session]:
        """
        Classify a POST.

        Returns the live session for a continuation, None for a fresh
        initialization, and raises SessionError for everything else.
        """
        if session_id:
            with self._lock:
                session = self._sessions.get(session_id)
            if session is None or session.state is not SessionState.ACTIVE:
                log_event("session_rejected", ctx=SESSION_CTX, data={"session_id": session_id, "reason": "unknown"})
                raise SessionError(NO_VALID_SESSION, {"session_id": session_id})
            return session
        if is_initialize_request(_decode_body(body)):
            return None
        log_event("session_rejected", ctx=SESSION_CTX, data={"reason": "missing_session_id"})
        raise SessionError(NO_VALID_SESSION)

    async def handle_message(self, session: Optional[Session], scope: Scope, receive: Receive, send: Send) -> None:
        if session is not None:
            await session.handler.handle_request(scope, receive, send)
            return
        await self._initialize(scope, receive, send)

    async def open_stream(self, session: Session, scope: Scope, receive: Receive, send: Send) -> None:
        await session.handler.handle_request(scope, receive, send)

    async def terminate(self, session_id: Optional[str]) -> None:
        """
        Close a session at the client's request.

        The entry is removed even when the handler fails to close cleanly.
        """
        session = self.get(session_id)
        try:
            await session.handler.close()
        except Exception as e:
            log_event(
                "session_close_failed",
                ctx=SESSION_CTX,
                data={"session_id": session.session_id, "error": repr(e)},
                level="warning",
            )
        finally:
            self._forget(session.session_id, reason="terminated")

    async def close_all(self) -> None:
        for session_id in self.session_ids():
            try:
                await self.terminate(session_id)
            except SessionError:
                # Already gone (handler closed itself meanwhile).
                continue

    # ------------------------------------------------------------------ creation

    async def _initialize(self, scope: Scope, receive: Receive, send: Send) -> None:
        tg = self._task_group
        if tg is None:
            raise TransportError("SessionManager is not running")

        session_id = self._new_session_id()
        handler = self._handler_factory(session_id)
        session = Session(session_id=session_id, handler=handler)
        handler.on_close = self._on_handler_closed
        with self._lock:
            self._pending[session_id] = session

        status: Dict[str, int] = {}

        async def send_tracking_status(message: Message) -> None:
            if message["type"] == "http.response.start":
                status["code"] = int(message["status"])
            await send(message)

        try:
            await tg.start(handler.serve)
            try:
                await handler.handle_request(scope, receive, send_tracking_status)
            except BaseException:
                await self._discard(session, reason="initialize_raised")
                raise

            code = status.get("code", 0)
            if not (200 <= code < 300 and getattr(handler, "session_id", None) == session_id):
                await self._discard(session, reason=f"initialize_status_{code}")
            elif getattr(handler, "closed", False) or not self._publish(session):
                await self._discard(session, reason="closed_during_initialize")
        finally:
            with self._lock:
                self._pending.pop(session_id, None)

    async def _discard(self, session: Session, *, reason: str) -> None:
        session.state = SessionState.CLOSED
        log_event(
            "session_initialize_failed",
            ctx=SESSION_CTX,
            data={"session_id": session.session_id, "reason": reason},
            level="warning",
        )
        with anyio.CancelScope(shield=True):
            try:
                await session.handler.close()
            except Exception as e:
                log_event(
                    "session_close_failed",
                    ctx=SESSION_CTX,
                    data={"session_id": session.session_id, "error": repr(e)},
                    level="warning",
                )
