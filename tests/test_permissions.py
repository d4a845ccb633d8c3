import asyncio

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from civicboard.auth.session import InMemorySessionStore, SessionCookie, SessionManager
from civicboard.auth.tokens import TokenService
from civicboard.errors import (
    AuthenticationFailure,
    AuthenticationRequired,
    TokenFailure,
    TokenFailureKind,
    register_error_handlers,
)
from civicboard.permissions import (
    ANONYMOUS,
    Authenticated,
    IdentityResolver,
    RouteGate,
    bearer_token,
    current_identity_optional,
    require_role,
)


@pytest.fixture()
def parts(identities):
    sessions = SessionManager(InMemorySessionStore(), identities)
    cookie = SessionCookie("session-secret")
    tokens = TokenService("token-secret")
    resolver = IdentityResolver(sessions, cookie, tokens, identities)
    return sessions, cookie, tokens, resolver


@pytest.mark.parametrize(
    "header,expected",
    [
        (None, None),
        ("", None),
        ("Basic dXNlcjpwdw==", None),
        ("Bearer abc", "abc"),
        ("bearer   abc ", "abc"),
        ("Bearer", ""),
        ("Bearer ", ""),
    ],
)
def test_bearer_token_parsing(header, expected):
    assert bearer_token(header) == expected


def test_no_credentials_is_anonymous(parts):
    *_, resolver = parts
    assert asyncio.run(resolver.resolve(None, None)) is ANONYMOUS


def test_session_wins_over_bad_token(parts, make_identity):
    sessions, cookie, _, resolver = parts

    async def scenario():
        alice = await make_identity()
        session = await sessions.create(alice.id)
        resolved = await resolver.resolve(cookie.dumps(session.session_id), "Bearer garbage")
        assert resolved == Authenticated(identity=alice, source="session")

    asyncio.run(scenario())


def test_token_used_when_no_session(parts, make_identity):
    _, _, tokens, resolver = parts

    async def scenario():
        alice = await make_identity()
        resolved = await resolver.resolve(None, f"Bearer {tokens.issue(alice.id)}")
        assert isinstance(resolved, Authenticated)
        assert resolved.source == "token"
        assert resolved.identity.id == alice.id

    asyncio.run(scenario())


def test_stale_session_falls_through_to_token(parts, make_identity):
    sessions, cookie, tokens, resolver = parts

    async def scenario():
        alice = await make_identity()
        session = await sessions.create(alice.id)
        await sessions.destroy(session.session_id)
        resolved = await resolver.resolve(cookie.dumps(session.session_id), f"Bearer {tokens.issue(alice.id)}")
        assert resolved.source == "token"

    asyncio.run(scenario())


def test_stale_session_without_token_is_anonymous(parts):
    _, cookie, _, resolver = parts
    assert asyncio.run(resolver.resolve(cookie.dumps("gone"), None)) is ANONYMOUS


@pytest.mark.parametrize("header", ["Bearer garbage", "Bearer "])
def test_offered_bad_token_is_hard_failure(parts, header):
    *_, resolver = parts
    with pytest.raises(TokenFailure) as ei:
        asyncio.run(resolver.resolve(None, header))
    assert ei.value.kind is TokenFailureKind.MALFORMED


def test_token_for_deleted_identity_is_rejected(parts, identities, make_identity):
    _, _, tokens, resolver = parts

    async def scenario():
        alice = await make_identity()
        token = tokens.issue(alice.id)
        await identities.delete(alice.id)
        with pytest.raises(AuthenticationFailure):
            await resolver.resolve(None, f"Bearer {token}")

    asyncio.run(scenario())


@pytest.mark.parametrize(
    "path,protected",
    [
        ("/api/protected", True),
        ("/api/protected/", True),
        ("/api/protected/me", True),
        ("/api/protected/a/b", True),
        ("/api/protectedness", False),
        ("/api/user", False),
        ("/", False),
    ],
)
def test_route_gate_prefix_matching(path, protected):
    assert RouteGate(["/api/protected/"]).is_protected(path) is protected


def test_route_gate_check(make_identity):
    gate = RouteGate(["/api/protected"])
    with pytest.raises(AuthenticationRequired):
        gate.check(ANONYMOUS)
    alice = asyncio.run(make_identity())
    resolved = Authenticated(identity=alice, source="token")
    assert gate.check(resolved) is resolved


def test_require_role_orders_roles(make_identity):
    users = {
        "u": asyncio.run(make_identity("plain", role="user")),
        "m": asyncio.run(make_identity("mod", role="moderator")),
        "a": asyncio.run(make_identity("boss", role="admin")),
    }

    app = FastAPI()
    register_error_handlers(app)

    @app.middleware("http")
    async def _fake_identity(request: Request, call_next):
        who = request.headers.get("x-who")
        request.state.identity = Authenticated(users[who], "session") if who else ANONYMOUS
        return await call_next(request)

    @app.get("/moderation")
    def moderation(ident=Depends(require_role("moderator"))):
        return {"username": ident.username}

    client = TestClient(app)
    assert client.get("/moderation").status_code == 401
    assert client.get("/moderation", headers={"x-who": "u"}).status_code == 403
    assert client.get("/moderation", headers={"x-who": "m"}).json() == {"username": "mod"}
    assert client.get("/moderation", headers={"x-who": "a"}).status_code == 200


def test_current_identity_optional(make_identity):
    alice = asyncio.run(make_identity())

    app = FastAPI()

    @app.middleware("http")
    async def _fake_identity(request: Request, call_next):
        who = request.headers.get("x-who")
        request.state.identity = Authenticated(alice, "token") if who else ANONYMOUS
        return await call_next(request)

    @app.get("/whoami")
    def whoami(request: Request):
        ident = current_identity_optional(request)
        return {"username": ident.username if ident else None}

    client = TestClient(app)
    assert client.get("/whoami").json() == {"username": None}
    assert client.get("/whoami", headers={"x-who": "1"}).json() == {"username": "alice"}


def test_current_identity_optional_without_middleware():
    app = FastAPI()

    @app.get("/whoami")
    def whoami(request: Request):
        return {"anonymous": current_identity_optional(request) is None}

    assert TestClient(app).get("/whoami").json() == {"anonymous": True}
