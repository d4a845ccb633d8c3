# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Server-side sessions.

The store keeps ``Session`` records keyed by an opaque id; the browser only
ever holds that id, signed with the session secret (itsdangerous).
"""

from __future__ import annotations

import abc
import asyncio
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from itsdangerous import BadData, URLSafeTimedSerializer

from civicboard.auth.users import Identity, IdentityStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_SECONDS = 7 * 24 * 60 * 60

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Session:
    session_id: str
    identity_id: int
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class SessionStore(abc.ABC):
    @abc.abstractmethod
    async def put(self, session: Session) -> None: ...

    @abc.abstractmethod
    async def get(self, session_id: str) -> Optional[Session]: ...

    @abc.abstractmethod
    async def delete(self, session_id: str) -> None:
        """Remove a session; absent ids are not an error."""

    @abc.abstractmethod
    async def sweep_expired(self, now: datetime) -> int:
        """Remove expired sessions and return how many were removed."""


class InMemorySessionStore(SessionStore):
    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def put(self, session: Session) -> None:
        self._sessions[session.session_id] = session

    async def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    async def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    async def sweep_expired(self, now: datetime) -> int:
        # Snapshot first: puts and deletes may interleave with the sweep.
        expired = [sid for sid, s in list(self._sessions.items()) if s.is_expired(now)]
        for sid in expired:
            self._sessions.pop(sid, None)
        return len(expired)


class SessionManager:
    def __init__(
        self,
        store: SessionStore,
        identities: IdentityStore,
        max_age: int = DEFAULT_MAX_AGE_SECONDS,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.identities = identities
        self.max_age = max_age
        self.clock = clock

    async def create(self, identity_id: int) -> Session:
        now = self.clock()
        session = Session(
            session_id=secrets.token_urlsafe(32),
            identity_id=identity_id,
            created_at=now,
            expires_at=now + timedelta(seconds=self.max_age),
        )
        await self.store.put(session)
        logger.info("Session created for identity %s", identity_id)
        return session

    async def resolve(self, session_id: str) -> Optional[Identity]:
        """Return the live identity behind a session id, or None.

        Expired sessions and sessions whose identity no longer exists are
        removed on the way out.
        """
        if not session_id:
            return None
        session = await self.store.get(session_id)
        if session is None:
            return None
        if session.is_expired(self.clock()):
            await self.store.delete(session_id)
            return None
        ident = await self.identities.get_by_id(session.identity_id)
        if ident is None:
            logger.info("Dropping session for missing identity %s", session.identity_id)
            await self.store.delete(session_id)
            return None
        return ident

    async def destroy(self, session_id: str) -> None:
        if session_id:
            await self.store.delete(session_id)

    async def sweep(self) -> int:
        return await self.store.sweep_expired(self.clock())


class SessionCookie:
    """Signs and reads the session id carried in the cookie."""

    def __init__(self, secret: str, max_age: int = DEFAULT_MAX_AGE_SECONDS, salt: str = "civicboard.session.v1"):
        self.max_age = max_age
        self._serializer = URLSafeTimedSerializer(secret_key=secret, salt=salt)

    def dumps(self, session_id: str) -> str:
        return self._serializer.dumps({"sid": session_id})

    def loads(self, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        try:
            data = self._serializer.loads(value, max_age=self.max_age)
        except BadData:
            return None
        sid = data.get("sid") if isinstance(data, dict) else None
        if not isinstance(sid, str) or not sid:
            return None
        return sid


class SessionSweeper:
    """Periodically prunes expired sessions in the background."""

    def __init__(self, manager: SessionManager, interval: float):
        self.manager = manager
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                removed = await self.manager.sweep()
            except Exception:
                logger.exception("Session sweep failed")
                continue
            if removed:
                logger.info("Session sweep removed %d expired session(s)", removed)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
