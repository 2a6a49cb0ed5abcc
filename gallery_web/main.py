"""
Gallery Web: FastAPI application.
Session-gated pages, the OAuth2 callback that issues sessions, logout, and the
signed interactions webhook. Collaborators (settings, KV store, HTTP client,
permission oracle, uploader) are built once in the lifespan unless injected.
"""
import asyncio
import logging
import os
from contextlib import asynccontextmanager, suppress

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from gallery_web import background, roundtrip, sessions, signature
from gallery_web.audit import (
    EVENT_INTERACTION_OK,
    EVENT_INTERACTION_REJECTED,
    EVENT_LOGIN_FAIL,
    EVENT_LOGIN_OK,
    EVENT_LOGOUT,
    OUTCOME_FAIL,
    get_client_ip,
    get_db,
    init_db,
    log_audit,
    query_audit_logs,
)
from gallery_web.auth import authenticate, require_session
from gallery_web.config import Settings
from gallery_web.errors import (
    CodeExchangeFailed,
    GalleryError,
    InvalidState,
    LoginRequired,
    gallery_error_handler,
    login_required_handler,
)
from gallery_web.interactions import (
    UPLOAD_COMMAND_NAME,
    Uploader,
    dispatch,
    make_upload_command,
    register_commands,
)
from gallery_web.kv_store import KVStore, MemoryStore, RedisStore, open_store, sweep_periodically
from gallery_web.oauth_client import OAuthClient
from gallery_web.permissions import DiscordPermissionOracle, PermissionOracle

logger = logging.getLogger(__name__)

USER_AGENT = "gallery-web/0.1.0"


def new_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.http_timeout, headers={"User-Agent": USER_AGENT})


def _wire(app: FastAPI) -> None:
    """Derive the OAuth client, oracle and command registry from whatever is on app.state."""
    state = app.state
    if getattr(state, "oauth", None) is None:
        state.oauth = OAuthClient(state.settings, state.http)
    if getattr(state, "oracle", None) is None:
        state.oracle = DiscordPermissionOracle(state.settings, state.http)
    commands = {}
    if getattr(state, "uploader", None) is not None:
        commands[UPLOAD_COMMAND_NAME] = make_upload_command(state.uploader, state.settings.root_url)
    state.commands = commands


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Load settings, open and check the store, open the HTTP client, register commands and
    create audit tables. On shutdown, wait for detached tasks and close what was opened here.
    """
    state = app.state
    owned = []
    if getattr(state, "settings", None) is None:
        state.settings = Settings.from_env()
    if getattr(state, "store", None) is None:
        state.store = open_store(state.settings.redis_url)
        owned.append(state.store)
    if getattr(state, "http", None) is None:
        state.http = new_http_client(state.settings)
        owned.append(state.http)
    _wire(app)
    if isinstance(state.store, RedisStore):
        await state.store.ping()
    if state.uploader is not None:
        if state.settings.application_id is None:
            logger.warning("No bot credentials configured; %r is not registered", UPLOAD_COMMAND_NAME)
        else:
            await register_commands(state.http, state.settings)
    sweeper = None
    if isinstance(state.store, MemoryStore):
        sweeper = asyncio.create_task(sweep_periodically(state.store), name="memory-store-sweep")
    init_db()
    yield
    if sweeper is not None:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
    await background.drain()
    for resource in owned:
        await resource.aclose()


def create_app(
    settings: Settings | None = None,
    store: KVStore | None = None,
    http: httpx.AsyncClient | None = None,
    oracle: PermissionOracle | None = None,
    uploader: Uploader | None = None,
) -> FastAPI:
    app = FastAPI(title="Gallery Web", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.http = http
    app.state.oauth = None
    app.state.oracle = oracle
    app.state.uploader = uploader
    if settings is not None and store is not None and http is not None:
        _wire(app)

    app.add_exception_handler(GalleryError, gallery_error_handler)
    app.add_exception_handler(LoginRequired, login_required_handler)

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "ok", "service": "gallery_web"}

    @app.get("/", response_class=HTMLResponse)
    async def index(token: str = Depends(require_session)):
        """Landing page for logged-in users."""
        return HTMLResponse(
            """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Gallery</title></head>
<body>
  <h1>Gallery</h1>
  <p>You are logged in. Open a gallery link shared by the bot to view uploads.</p>
  <form method="post" action="/logout"><button type="submit">Log out</button></form>
</body>
</html>"""
        )

    @app.get("/oauth2/callback")
    async def oauth2_callback(
        request: Request,
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
        db: Session = Depends(get_db),
    ):
        """Provider redirect target: redeem state, exchange code, authorize, issue session."""
        ip = get_client_ip(request)
        store = request.app.state.store
        try:
            if not state:
                raise InvalidState("missing state parameter")
            if error or not code:
                # burn the roundtrip so the state cannot be reused
                await roundtrip.complete(store, state)
                raise CodeExchangeFailed(f"provider error: {error}" if error else "missing code parameter")
            token, redirect = await authenticate(
                store, request.app.state.oauth, request.app.state.oracle, code, state
            )
        except GalleryError as e:
            await run_in_threadpool(
                log_audit, db, EVENT_LOGIN_FAIL, ip=ip, outcome=OUTCOME_FAIL, detail=type(e).__name__
            )
            raise

        await run_in_threadpool(log_audit, db, EVENT_LOGIN_OK, ip=ip)
        response = RedirectResponse(url=redirect, status_code=302)
        sessions.set_session_cookie(response, token)
        return response

    @app.post("/logout")
    async def logout(request: Request, db: Session = Depends(get_db)):
        """Delete the session record and clear the cookie."""
        token = request.cookies.get(sessions.COOKIE_NAME)
        if token:
            await sessions.revoke(request.app.state.store, token)
            await run_in_threadpool(log_audit, db, EVENT_LOGOUT, ip=get_client_ip(request))
        response = RedirectResponse(url="/", status_code=303)
        sessions.clear_session_cookie(response)
        return response

    @app.post("/interactions")
    async def interactions(request: Request, db: Session = Depends(get_db)):
        """Signed webhook from the chat platform. No session involved."""
        settings = request.app.state.settings
        body = await request.body()
        try:
            interaction = signature.verify(
                request.headers.get(signature.SIGNATURE_HEADER),
                request.headers.get(signature.TIMESTAMP_HEADER),
                body,
                settings.public_key,
            )
        except GalleryError as e:
            await run_in_threadpool(
                log_audit,
                db,
                EVENT_INTERACTION_REJECTED,
                ip=get_client_ip(request),
                outcome=OUTCOME_FAIL,
                detail=type(e).__name__,
            )
            raise

        await run_in_threadpool(
            log_audit, db, EVENT_INTERACTION_OK, ip=get_client_ip(request), detail=str(interaction.type)
        )
        payload = await dispatch(interaction, settings, request.app.state.commands)
        return JSONResponse(payload)

    @app.get("/audit")
    def list_audit_logs(
        limit: int = 100,
        event_type: str | None = None,
        outcome: str | None = None,
        token: str = Depends(require_session),
        db: Session = Depends(get_db),
    ):
        """Recent security events, most recent first. No tokens or secrets."""
        return query_audit_logs(db, limit=limit, event_type=event_type, outcome=outcome)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "gallery_web.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8080")),
    )
