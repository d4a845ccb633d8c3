# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request, Response
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field

from civicboard.auth.passwords import PasswordHasher
from civicboard.auth.session import (
    InMemorySessionStore,
    SessionCookie,
    SessionManager,
    SessionStore,
    SessionSweeper,
)
from civicboard.auth.tokens import TokenService
from civicboard.auth.users import (
    Identity,
    IdentityStore,
    InMemoryIdentityStore,
    NewIdentity,
    YamlIdentityStore,
    authenticate,
)
from civicboard.config import Settings
from civicboard.errors import (
    AuthError,
    EmailTaken,
    IdentityConflict,
    StoreUnavailable,
    TokenFailure,
    UsernameTaken,
    error_response,
    internal_error_response,
    register_error_handlers,
)
from civicboard.permissions import (
    IdentityResolver,
    RouteGate,
    current_identity_optional,
    ensure_authenticated,
    require_auth,
    resolved_identity,
)

logger = logging.getLogger(__name__)

API_PREFIX = "/api"


@dataclass
class AuthServices:
    settings: Settings
    hasher: PasswordHasher
    identities: IdentityStore
    sessions: SessionManager
    cookie: SessionCookie
    tokens: TokenService
    resolver: IdentityResolver
    gate: RouteGate
    sweeper: SessionSweeper


def build_services(
    settings: Settings,
    identities: Optional[IdentityStore] = None,
    session_store: Optional[SessionStore] = None,
) -> AuthServices:
    if identities is None:
        if settings.users_path is not None:
            identities = YamlIdentityStore(settings.users_path)
        else:
            identities = InMemoryIdentityStore()
    sessions = SessionManager(
        session_store if session_store is not None else InMemorySessionStore(),
        identities,
        max_age=settings.session_max_age,
    )
    cookie = SessionCookie(settings.session_secret, max_age=settings.session_max_age)
    tokens = TokenService(settings.token_secret, max_age=settings.token_max_age)
    return AuthServices(
        settings=settings,
        hasher=PasswordHasher(settings.hash_params),
        identities=identities,
        sessions=sessions,
        cookie=cookie,
        tokens=tokens,
        resolver=IdentityResolver(sessions, cookie, tokens, identities),
        gate=RouteGate(settings.protected_prefixes),
        sweeper=SessionSweeper(sessions, settings.sweep_interval),
    )


def _auth(request: Request) -> AuthServices:
    return request.app.state.auth


# ------------------ Request bodies ------------------


class RegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(min_length=3, max_length=64)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=254)
    password: str = Field(min_length=8, max_length=1024)
    full_name: Optional[str] = Field(default=None, alias="fullName", max_length=200)


class LoginRequest(BaseModel):
    username: str = Field(min_length=3)
    password: str = Field(min_length=8)


# ------------------ Routes ------------------

router = APIRouter(prefix=API_PREFIX)


async def _start_session(request: Request, response: Response, ident: Identity) -> None:
    auth = _auth(request)
    settings = auth.settings
    previous = auth.cookie.loads(request.cookies.get(settings.cookie_name))
    if previous:
        await auth.sessions.destroy(previous)
    session = await auth.sessions.create(ident.id)
    response.set_cookie(settings.cookie_name, auth.cookie.dumps(session.session_id), **settings.cookie_settings())


@router.post("/register", status_code=201)
async def register(body: RegisterRequest, request: Request, response: Response):
    auth = _auth(request)

    # Advisory pre-checks; the store enforces uniqueness on create.
    if await auth.identities.get_by_username(body.username):
        raise UsernameTaken()
    if await auth.identities.get_by_email(body.email):
        raise EmailTaken()

    password_hash = await run_in_threadpool(auth.hasher.hash, body.password)
    try:
        ident = await auth.identities.create(
            NewIdentity(
                username=body.username,
                email=body.email,
                password_hash=password_hash,
                full_name=body.full_name,
            )
        )
    except IdentityConflict as exc:
        raise UsernameTaken() if exc.field == "username" else EmailTaken()

    logger.info("Registered identity %s", ident.id)
    await _start_session(request, response, ident)
    return ident.public()


@router.post("/login")
async def login(body: LoginRequest, request: Request, response: Response):
    auth = _auth(request)
    ident = await authenticate(auth.identities, auth.hasher, body.username, body.password)
    await _start_session(request, response, ident)
    token = auth.tokens.issue(ident.id)
    logger.info("Login for identity %s", ident.id)
    return {"user": ident.public(), "token": token}


@router.post("/logout")
async def logout(request: Request, response: Response):
    auth = _auth(request)
    settings = auth.settings
    session_id = auth.cookie.loads(request.cookies.get(settings.cookie_name))
    if session_id:
        await auth.sessions.destroy(session_id)
    ident = current_identity_optional(request)
    if ident is not None:
        logger.info("Logout for identity %s", ident.id)
    response.delete_cookie(
        settings.cookie_name,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
    )
    return {"status": "ok"}


@router.get("/user")
def current_user(ident: Identity = Depends(require_auth)):
    return ident.public()


@router.get("/protected/me")
def protected_me(request: Request):
    resolved = ensure_authenticated(resolved_identity(request))
    return {"user": resolved.identity.public(), "source": resolved.source}


# ------------------ App ------------------


def create_app(
    settings: Optional[Settings] = None,
    identities: Optional[IdentityStore] = None,
    session_store: Optional[SessionStore] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    services = build_services(settings, identities=identities, session_store=session_store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services.sweeper.start()
        try:
            yield
        finally:
            await services.sweeper.stop()

    app = FastAPI(title="civicboard", lifespan=lifespan)
    app.state.auth = services
    register_error_handlers(app)

    @app.middleware("http")
    async def _identity_middleware(request: Request, call_next):
        path = request.url.path
        try:
            resolved = await services.resolver.resolve(
                request.cookies.get(settings.cookie_name),
                request.headers.get("authorization"),
            )
            if services.gate.is_protected(path):
                services.gate.check(resolved)
        except TokenFailure as exc:
            logger.warning("Rejected %s bearer token on %s", exc.kind.value, path)
            return error_response(exc)
        except StoreUnavailable:
            logger.exception("Identity resolution failed on %s", path)
            return internal_error_response()
        except AuthError as exc:
            return error_response(exc)
        except Exception:
            logger.exception("Identity resolution failed on %s", path)
            return internal_error_response()

        # Attached only once fully resolved.
        request.state.identity = resolved
        return await call_next(request)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(router)
    return app


app = create_app()
