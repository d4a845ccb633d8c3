# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Per-request identity resolution and route protection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple, Union

from fastapi import Request

from civicboard.auth.session import SessionCookie, SessionManager
from civicboard.auth.tokens import TokenService
from civicboard.auth.users import Identity, IdentityStore
from civicboard.errors import AuthenticationFailure, AuthenticationRequired, Forbidden

logger = logging.getLogger(__name__)

ROLE_ORDER = {"user": 0, "moderator": 1, "admin": 2}

SOURCE_SESSION = "session"
SOURCE_TOKEN = "token"


def _rank(role: str) -> int:
    return ROLE_ORDER.get((role or "user").strip().lower(), 0)


@dataclass(frozen=True)
class Anonymous:
    authenticated = False


@dataclass(frozen=True)
class Authenticated:
    identity: Identity
    source: str
    authenticated = True


ResolvedIdentity = Union[Anonymous, Authenticated]

ANONYMOUS = Anonymous()


def ensure_authenticated(resolved: ResolvedIdentity) -> Authenticated:
    if not isinstance(resolved, Authenticated):
        raise AuthenticationRequired()
    return resolved


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the credential from an ``Authorization`` header.

    Returns None when no bearer token is offered (no header, or another
    scheme), and "" when the Bearer scheme is used with nothing after it.
    """
    if not authorization:
        return None
    scheme, _, credential = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return credential.strip()


class IdentityResolver:
    """Determine who is calling: session first, then bearer token.

    A missing or stale session is silent. A bearer token that is offered but
    does not verify raises ``TokenFailure``; one that verifies for an identity
    that no longer exists raises ``AuthenticationFailure``.
    """

    def __init__(self, sessions: SessionManager, cookie: SessionCookie, tokens: TokenService, identities: IdentityStore):
        self.sessions = sessions
        self.cookie = cookie
        self.tokens = tokens
        self.identities = identities

    async def resolve(self, cookie_value: Optional[str], authorization: Optional[str]) -> ResolvedIdentity:
        session_id = self.cookie.loads(cookie_value)
        if session_id:
            ident = await self.sessions.resolve(session_id)
            if ident is not None:
                return Authenticated(identity=ident, source=SOURCE_SESSION)

        token = bearer_token(authorization)
        if token is None:
            return ANONYMOUS

        identity_id = self.tokens.verify(token)
        ident = await self.identities.get_by_id(identity_id)
        if ident is None:
            logger.warning("Bearer token for missing identity %s", identity_id)
            raise AuthenticationFailure("Account no longer exists")
        return Authenticated(identity=ident, source=SOURCE_TOKEN)


class RouteGate:
    """Rejects anonymous callers on a set of protected path prefixes."""

    def __init__(self, prefixes: Iterable[str]):
        self.prefixes: Tuple[str, ...] = tuple(p.rstrip("/") for p in prefixes if p)

    def is_protected(self, path: str) -> bool:
        for prefix in self.prefixes:
            if path == prefix or path.startswith(prefix + "/"):
                return True
        return False

    def check(self, resolved: ResolvedIdentity) -> Authenticated:
        return ensure_authenticated(resolved)


def resolved_identity(request: Request) -> ResolvedIdentity:
    return getattr(request.state, "identity", ANONYMOUS)


def current_identity_optional(request: Request) -> Optional[Identity]:
    resolved = resolved_identity(request)
    return resolved.identity if isinstance(resolved, Authenticated) else None


def require_auth(request: Request) -> Identity:
    """Per-route equivalent of the namespace gate."""
    return ensure_authenticated(resolved_identity(request)).identity


def require_role(min_role: str):
    def _dep(request: Request) -> Identity:
        ident = require_auth(request)
        if _rank(ident.role) < _rank(min_role):
            raise Forbidden()
        return ident

    return _dep
