from fastapi import FastAPI, Depends, HTTPException, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Any, Dict, Optional

import asyncio
import json
import logging
import time
import uuid

from . import models
from .config import AppConfig
from .errors import AuthFailure, InsufficientQuestions, ProfileWriteFailure
from .hub import GameHub, PlayerContext
from .identity import Identity, IdentityProvider
from .leaderboard import LeaderboardViewModel
from .logging_utils import setup_logging, get_logger, request_id_ctx
from .questions import QUESTION_BANK
from .store import ProfileStore, default_nickname
from .timer import AsyncioScheduler, Scheduler

logger = get_logger("chosung.api")

PLAYER_COOKIE = "player_token"
# commands a websocket client may send; tick/timeout stay server-side
_WS_COMMANDS = ("start", "submit", "input", "leaderboard", "home")


# Rate limiting - store last request times per IP
_RATE_LIMIT_STORE: dict = {}

def check_rate_limit(request: Request, max_requests: int = 30, window_seconds: int = 60) -> bool:
    """
    Simple in-memory rate limiting. Returns True if request is allowed, False if rate limited.
    """
    client_ip = request.client.host if request.client else "unknown"
    current_time = time.time()
    cutoff_time = current_time - window_seconds
    _RATE_LIMIT_STORE[client_ip] = [
        req_time for req_time in _RATE_LIMIT_STORE.get(client_ip, [])
        if req_time > cutoff_time
    ]
    if len(_RATE_LIMIT_STORE[client_ip]) >= max_requests:
        return False
    _RATE_LIMIT_STORE[client_ip].append(current_time)
    return True

def rate_limit_dependency(max_requests: int = 30, window_seconds: int = 60):
    """Create a dependency function that raises HTTP 429 if rate limited"""
    def dependency(request: Request):
        if not check_rate_limit(request, max_requests, window_seconds):
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. Maximum {max_requests} requests per {window_seconds} seconds."
            )
    return dependency


def _prepare_message(e: dict):
    """Serialize event to JSON."""
    try:
        return json.dumps(e, ensure_ascii=False)
    except Exception:
        return None


async def _send_to_websocket(ws: WebSocket, msg, ev) -> bool:
    """Send one event. Return False if the socket is gone."""
    try:
        if msg is not None:
            await ws.send_text(msg)
        else:
            await ws.send_json(ev)
        return True
    except Exception as send_exc:
        logger.debug("ws_send_error", extra={"error": str(send_exc)})
        return False


class AuthRequest(BaseModel):
    token: Optional[str] = Field(None, max_length=200)


class AnswerRequest(BaseModel):
    answer: str = Field(..., min_length=1, max_length=64)

    @field_validator('answer')
    @classmethod
    def validate_answer(cls, v):
        v = v.strip()
        if len(v) == 0:
            raise ValueError('Answer cannot be empty')
        return v


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_ctx.set(rid)
        start = time.time()
        response = None
        try:
            response = await call_next(request)
            return response
        except Exception:
            logger.exception(
                "request_error",
                extra={"path": str(request.url), "method": request.method},
            )
            raise
        finally:
            logger.info(
                "request",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": getattr(response, "status_code", 500),
                    "duration_ms": int((time.time() - start) * 1000),
                    "client": request.client.host if request.client else "-",
                },
            )
            if response is not None:
                response.headers["X-Request-ID"] = rid
            request_id_ctx.reset(token)


def create_app(
    config: Optional[AppConfig] = None,
    store: Optional[ProfileStore] = None,
    scheduler: Optional[Scheduler] = None,
    rng=None,
) -> FastAPI:
    """Build the API. Raises ConfigMissing when no configuration is available."""
    config = config or AppConfig.from_env()
    setup_logging(logging.INFO)
    if config.game.round_size > len(QUESTION_BANK):
        raise InsufficientQuestions(config.game.round_size, len(QUESTION_BANK))

    store = store or ProfileStore.from_url(config.database_url, config.app_id)
    identities = IdentityProvider(config.session_secret)
    # websocket -> {"user_id": str}
    connections: Dict[WebSocket, Dict[str, Any]] = {}

    async def send_event(user_id: str, event: dict) -> None:
        msg = _prepare_message(event)
        dead = []
        for ws, meta in list(connections.items()):
            if meta.get("user_id") != user_id:
                continue
            if not await _send_to_websocket(ws, msg, event):
                dead.append(ws)
        for d in dead:
            connections.pop(d, None)

    def notify(user_id: str, event: dict) -> None:
        if not any(meta.get("user_id") == user_id for meta in connections.values()):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("notify_without_loop", extra={"user_id": user_id, "event": event.get("type")})
            return
        loop.create_task(send_event(user_id, event))

    hub = GameHub(config, store, scheduler or AsyncioScheduler(), notify=notify, rng=rng)

    app = FastAPI(title="Chosung Challenge")
    app.state.config = config
    app.state.store = store
    app.state.hub = hub
    app.state.identities = identities
    app.state.ws_connections = connections
    app.add_middleware(RequestLoggingMiddleware)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning("validation_error", extra={"method": request.method, "path": request.url.path, "errors": str(exc.errors())})
        return JSONResponse(
            status_code=422,
            content={"detail": jsonable_encoder(exc.errors()), "message": "Input validation failed"},
        )

    @app.on_event("shutdown")
    def on_shutdown():
        hub.close()

    def _load_profile(uid: str) -> models.PlayerProfile:
        try:
            return store.ensure_profile(uid)
        except (ProfileWriteFailure, SQLAlchemyError) as exc:
            # play on with an unsaved profile; the high score just won't persist
            logger.warning("profile_load_failed", extra={"user_id": uid, "error": str(exc)})
            return models.PlayerProfile(
                path=store.path_for(uid),
                namespace=store.namespace,
                user_id=uid,
                nickname=default_nickname(uid),
                high_score=0,
            )

    def _connected_users():
        return {meta.get("user_id") for meta in connections.values()}

    async def _context_for(identity: Identity) -> PlayerContext:
        ctx = hub.get(identity.id)
        if ctx is not None:
            return ctx
        hub.sweep(config.player_idle_ttl, keep=_connected_users())
        profile = await run_in_threadpool(_load_profile, identity.id)
        # attach returns the existing context if another request won the race
        return hub.attach(identity, profile)

    def current_identity(request: Request) -> Identity:
        return identities.resolve(request.cookies.get(PLAYER_COOKIE))

    async def require_player(identity: Identity = Depends(current_identity)) -> PlayerContext:
        if not identity.is_ready:
            raise HTTPException(status_code=403, detail="authentication not ready")
        return await _context_for(identity)

    @app.get("/health", include_in_schema=False)
    def health():
        return JSONResponse({"status": "ok"})

    @app.post("/api/auth")
    async def auth(
        body: AuthRequest,
        request: Request,
        response: Response,
        _: None = Depends(rate_limit_dependency(max_requests=10, window_seconds=60)),
    ):
        identity = current_identity(request)
        if not identity.is_ready:
            if body.token:
                try:
                    identity = identities.sign_in_with_token(body.token)
                except AuthFailure as exc:
                    logger.info("auth_failed", extra={"error": str(exc)})
                    raise HTTPException(status_code=401, detail="invalid token")
            else:
                identity = identities.sign_in_anonymously()
        ctx = await _context_for(identity)
        response.set_cookie(
            PLAYER_COOKIE,
            identities.sign_token(identity.id),
            httponly=True,
            secure=config.cookie_secure,
            samesite="lax",
        )
        return {
            "user_id": identity.id,
            "nickname": ctx.nickname,
            "high_score": ctx.machine.high_score,
            "ready": True,
        }

    @app.get("/api/me")
    async def me(identity: Identity = Depends(current_identity)):
        """Start screen data: best score, nickname and whether play is possible."""
        payload: Dict[str, Any] = {
            "ready": identity.is_ready,
            "round_size": config.game.round_size,
            "nickname": None,
            "high_score": 0,
        }
        if identity.is_ready:
            ctx = await _context_for(identity)
            payload.update(user_id=identity.id, nickname=ctx.nickname, high_score=ctx.machine.high_score)
        return payload

    @app.post("/api/game/start")
    async def start_game(ctx: PlayerContext = Depends(require_player)):
        if not ctx.machine.start():
            raise HTTPException(status_code=409, detail=f"cannot start from {ctx.machine.phase.value}")
        return ctx.machine.snapshot()

    @app.get("/api/game")
    async def game_state(ctx: PlayerContext = Depends(require_player)):
        return ctx.machine.snapshot()

    @app.post("/api/game/answer")
    async def submit_answer(
        body: AnswerRequest,
        ctx: PlayerContext = Depends(require_player),
        _: None = Depends(rate_limit_dependency(max_requests=120, window_seconds=60)),
    ):
        accepted = ctx.machine.submit_answer(body.answer)
        return {"accepted": accepted, **ctx.machine.snapshot()}

    @app.post("/api/game/leaderboard")
    async def view_leaderboard(ctx: PlayerContext = Depends(require_player)):
        accepted = ctx.machine.show_leaderboard()
        return {"accepted": accepted, **ctx.machine.snapshot()}

    @app.post("/api/game/home")
    async def go_home(ctx: PlayerContext = Depends(require_player)):
        accepted = ctx.machine.return_to_idle()
        return {"accepted": accepted, **ctx.machine.snapshot()}

    @app.get("/api/leaderboard")
    async def leaderboard(identity: Identity = Depends(current_identity)):
        if identity.is_ready:
            return (await _context_for(identity)).leaderboard.snapshot()
        # spectators get a one-off read instead of a subscription
        vm = LeaderboardViewModel(None, config.leaderboard_limit)
        try:
            vm.apply_snapshot(store.top_profiles(config.leaderboard_limit))
        except SQLAlchemyError as exc:
            vm.on_error(exc)
        return vm.snapshot()

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket):
        await ws.accept()
        identity = identities.resolve(ws.cookies.get(PLAYER_COOKIE))
        if not identity.is_ready:
            await ws.send_json({"type": "error", "detail": "authentication not ready"})
            await ws.close(code=4401)
            return
        ctx = await _context_for(identity)
        connections[ws] = {"user_id": identity.id}
        try:
            await ws.send_json({"type": "session", "state": ctx.machine.snapshot()})
            await ws.send_json({"type": "leaderboard", **ctx.leaderboard.snapshot()})
            while True:
                raw = await ws.receive_text()
                try:
                    msg = json.loads(raw)
                except ValueError:
                    await ws.send_json({"type": "error", "detail": "invalid json"})
                    continue
                kind = msg.get("type") if isinstance(msg, dict) else None
                if kind not in _WS_COMMANDS:
                    await ws.send_json({"type": "error", "detail": f"unknown command: {kind}"})
                    continue
                if kind == "submit":
                    answer = msg.get("answer")
                    accepted = ctx.machine.handle("submit", raw=None if answer is None else str(answer)[:64])
                elif kind == "input":
                    accepted = ctx.machine.handle("input", text=str(msg.get("text") or ""))
                else:
                    accepted = ctx.machine.handle(kind)
                if not accepted:
                    await ws.send_json({"type": "rejected", "command": kind, "phase": ctx.machine.phase.value})
        except WebSocketDisconnect:
            pass
        finally:
            connections.pop(ws, None)
            if identity.id not in _connected_users():
                hub.release(identity.id)

    return app
