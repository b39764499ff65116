import secrets
from contextlib import asynccontextmanager
from functools import partial
from typing import Awaitable, Callable, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.datastructures import MutableHeaders
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.core.settings import Settings, settings
from errors import AppError, AuthenticationError, RateLimitExceeded
from observability import build_log_context, configure_logging, log_event
from rate_limiter import FixedWindowRateLimiter
from server import SERVER_NAME, SERVER_VERSION, create_orats_server
from session_manager import MCP_SESSION_ID_HEADER, SessionHandler, SessionManager

API_CTX = build_log_context(transport="http")

MCP_PATH = "/mcp"

ProtocolCall = Callable[[Scope, Receive, Send], Awaitable[None]]


def _replay_body(body: bytes, receive: Receive) -> Receive:
    """
    The route has already consumed the request body; hand it to the transport
    again, then fall through to the real channel (for disconnects).
    """
    delivered = False

    async def replay() -> Message:
        nonlocal delivered
        if not delivered:
            delivered = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


class ProtocolResponse(Response):
    """
    Lets a protocol handler write the raw ASGI response (JSON or event stream).

    Failures before anything was sent become a generic 500; after that the
    error is only logged.
    """

    def __init__(self, call: ProtocolCall, body: Optional[bytes] = None) -> None:
        super().__init__()
        self._call = call
        self._body = body

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        started = False

        async def send_tracking(message: Message) -> None:
            nonlocal started
            if message["type"] == "http.response.start":
                started = True
            await send(message)

        if self._body is not None:
            receive = _replay_body(self._body, receive)
        try:
            await self._call(scope, receive, send_tracking)
        except Exception as e:
            log_event(
                "protocol_request_failed",
                ctx=API_CTX,
                data={"method": scope.get("method"), "error": repr(e), "response_started": started},
                level="error",
            )
            if not started:
                await JSONResponse({"error": "Internal server error"}, status_code=500)(scope, receive, send)


class RateLimitMiddleware:
    """
    Per-client fixed-window limit applied ahead of routing (and so ahead of auth).

    Emits the standard `RateLimit-*` headers; legacy `X-RateLimit-*` headers
    are not sent.
    """

    def __init__(self, app: ASGIApp, *, limiter: FixedWindowRateLimiter, limit: int, window_seconds: int) -> None:
        self.app = app
        self.limiter = limiter
        self.limit = limit
        self.window_seconds = window_seconds

    def _policy_headers(self, remaining: int, reset: int) -> dict:
        return {
            "RateLimit-Policy": f"{self.limit};w={self.window_seconds}",
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(remaining),
            "RateLimit-Reset": str(reset),
        }

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        client = scope.get("client")
        key = client[0] if client else "unknown"
        try:
            decision = self.limiter.check(key, limit=self.limit, window_seconds=self.window_seconds)
        except RateLimitExceeded as e:
            log_event("rate_limited", ctx=API_CTX, data={"client": key, "path": scope.get("path")}, level="warning")
            headers = self._policy_headers(0, e.retry_after)
            headers["Retry-After"] = str(e.retry_after)
            response = JSONResponse(
                {"error": "Too many requests, please try again later."},
                status_code=e.status_code,
                headers=headers,
            )
            await response(scope, receive, send)
            return

        extra = self._policy_headers(decision.remaining, decision.reset_seconds)

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in extra.items():
                    headers[name] = value
            await send(message)

        await self.app(scope, receive, send_with_headers)


def create_app(
    app_settings: Optional[Settings] = None,
    session_manager: Optional[SessionManager] = None,
    rate_limiter: Optional[FixedWindowRateLimiter] = None,
) -> FastAPI:
    cfg = app_settings if app_settings is not None else settings

    # SessionManager defines __len__, so an empty one is falsy.
    if session_manager is None:
        session_manager = SessionManager(
            lambda session_id: SessionHandler(session_id, create_orats_server(), json_response=cfg.MCP_JSON_RESPONSE)
        )
    manager = session_manager

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        if not cfg.auth_enabled:
            log_event(
                "auth_disabled",
                ctx=API_CTX,
                data={"message": "AUTH_TOKEN not set, server is unauthenticated"},
                level="warning",
            )
        async with manager.run():
            yield

    app = FastAPI(title="ORATS MCP Server", version=SERVER_VERSION, lifespan=lifespan)
    app.state.session_manager = manager

    if cfg.RATE_LIMIT_ENABLED:
        app.add_middleware(
            RateLimitMiddleware,
            limiter=rate_limiter if rate_limiter is not None else FixedWindowRateLimiter(),
            limit=cfg.RATE_LIMIT_MAX_REQUESTS,
            window_seconds=cfg.RATE_LIMIT_WINDOW_SEC,
        )

    # Added last so it wraps the rate limiter.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if cfg.cors_allow_all else sorted(cfg.CORS_ORIGINS),
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[MCP_SESSION_ID_HEADER],
    )

    @app.exception_handler(AppError)
    async def app_error_handler(_request: Request, exc: AppError) -> JSONResponse:
        return JSONResponse({"error": exc.message}, status_code=getattr(exc, "status_code", 500))

    def require_auth(request: Request) -> None:
        if not cfg.AUTH_TOKEN:
            return
        header = request.headers.get("authorization") or ""
        expected = f"Bearer {cfg.AUTH_TOKEN}"
        if not secrets.compare_digest(header.encode(), expected.encode()):
            log_event("auth_rejected", ctx=API_CTX, data={"path": request.url.path}, level="warning")
            raise AuthenticationError()

    # Health check (no auth required)
    @app.get("/health")
    async def health_check():
        return {"status": "ok", "server": SERVER_NAME, "version": SERVER_VERSION}

    @app.post(MCP_PATH, dependencies=[Depends(require_auth)])
    async def mcp_message(request: Request):
        """
        JSON-RPC message or batch: continue a session, or initialize a new one.
        """
        body = await request.body()
        session = manager.resolve(request.headers.get(MCP_SESSION_ID_HEADER), body)
        return ProtocolResponse(partial(manager.handle_message, session), body)

    @app.get(MCP_PATH, dependencies=[Depends(require_auth)])
    async def mcp_stream(request: Request):
        """
        Server-to-client event stream for an existing session.
        """
        session = manager.get(request.headers.get(MCP_SESSION_ID_HEADER))
        return ProtocolResponse(partial(manager.open_stream, session))

    @app.delete(MCP_PATH, dependencies=[Depends(require_auth)])
    async def mcp_close(request: Request):
        await manager.terminate(request.headers.get(MCP_SESSION_ID_HEADER))
        return {"status": "session closed"}

    return app


app = create_app()


def main() -> None:
    import uvicorn

    configure_logging(settings.LOG_LEVEL)
    host, port = settings.HOST, settings.PORT
    log_event(
        "api_server_started",
        ctx=API_CTX,
        data={
            "listen": f"http://{host}:{port}",
            "health": f"http://{host}:{port}/health",
            "mcp_endpoint": f"http://{host}:{port}{MCP_PATH}",
        },
    )
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
