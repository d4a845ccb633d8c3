# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import abc
import asyncio
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from civicboard.auth.passwords import PasswordHasher
from civicboard.errors import AuthenticationFailure, IdentityConflict, StoreUnavailable

ROLES = ("user", "moderator", "admin")


@dataclass(frozen=True)
class Identity:
    id: int
    username: str
    email: str
    password_hash: str
    role: str = "user"
    full_name: Optional[str] = None
    verified: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def public(self) -> dict:
        """Externally visible fields; the password hash is never included."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "full_name": self.full_name,
            "verified": self.verified,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class NewIdentity:
    username: str
    email: str
    password_hash: str
    full_name: Optional[str] = None
    role: str = "user"


class IdentityStore(abc.ABC):
    """Lookup and creation of user records.

    ``create`` must enforce username/email uniqueness itself and raise
    ``IdentityConflict``; callers' pre-checks are advisory only.
    """

    @abc.abstractmethod
    async def get_by_id(self, identity_id: int) -> Optional[Identity]: ...

    @abc.abstractmethod
    async def get_by_username(self, username: str) -> Optional[Identity]: ...

    @abc.abstractmethod
    async def get_by_email(self, email: str) -> Optional[Identity]: ...

    @abc.abstractmethod
    async def create(self, new: NewIdentity) -> Identity: ...


def _email_key(email: str) -> str:
    return (email or "").strip().lower()


class _IdentityTable:
    """Indexed rows shared by the in-memory and YAML stores. Not thread-safe."""

    def __init__(self, rows: Optional[List[Identity]] = None):
        self.by_id: Dict[int, Identity] = {}
        for row in rows or []:
            self.by_id[row.id] = row

    def find_username(self, username: str) -> Optional[Identity]:
        u = (username or "").strip()
        if not u:
            return None
        return next((i for i in self.by_id.values() if i.username == u), None)

    def find_email(self, email: str) -> Optional[Identity]:
        e = _email_key(email)
        if not e:
            return None
        return next((i for i in self.by_id.values() if _email_key(i.email) == e), None)

    def insert(self, new: NewIdentity) -> Identity:
        if new.role not in ROLES:
            raise ValueError(f"Unknown role: {new.role}")
        if self.find_username(new.username):
            raise IdentityConflict("username")
        if self.find_email(new.email):
            raise IdentityConflict("email")
        ident = Identity(
            id=max(self.by_id, default=0) + 1,
            username=new.username.strip(),
            email=new.email.strip(),
            password_hash=new.password_hash,
            role=new.role,
            full_name=new.full_name,
        )
        self.by_id[ident.id] = ident
        return ident

    def delete(self, identity_id: int) -> None:
        self.by_id.pop(identity_id, None)


class InMemoryIdentityStore(IdentityStore):
    def __init__(self):
        self._table = _IdentityTable()

    async def get_by_id(self, identity_id: int) -> Optional[Identity]:
        return self._table.by_id.get(identity_id)

    async def get_by_username(self, username: str) -> Optional[Identity]:
        return self._table.find_username(username)

    async def get_by_email(self, email: str) -> Optional[Identity]:
        return self._table.find_email(email)

    async def create(self, new: NewIdentity) -> Identity:
        return self._table.insert(new)

    async def delete(self, identity_id: int) -> None:
        self._table.delete(identity_id)


def _row_from_yaml(uid, data: dict) -> Optional[Identity]:
    try:
        ident_id = int(uid)
    except (TypeError, ValueError):
        return None
    username = str(data.get("username") or "").strip()
    if not username:
        return None
    created = data.get("created_at")
    if isinstance(created, str):
        created = datetime.fromisoformat(created)
    if not isinstance(created, datetime):
        created = datetime.now(timezone.utc)
    role = str(data.get("role") or "user").strip().lower()
    return Identity(
        id=ident_id,
        username=username,
        email=str(data.get("email") or "").strip(),
        password_hash=str(data.get("password_hash") or "").strip(),
        role=role if role in ROLES else "user",
        full_name=data.get("full_name"),
        verified=bool(data.get("verified", False)),
        created_at=created,
    )


class YamlIdentityStore(IdentityStore):
    """Identity records persisted to a ``users.yml`` file.

    File layout::

        version: 1
        users:
          1:
            username: alice
            email: alice@example.org
            password_hash: <hash>.<salt>
            role: user

    The file is re-read when its mtime changes. All file I/O runs in a worker
    thread; the lock is only held inside that thread.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._mtime = 0.0
        self._table = _IdentityTable()

    def _load_locked(self) -> _IdentityTable:
        if not self.path.exists():
            self._mtime = 0.0
            self._table = _IdentityTable()
            return self._table
        mtime = self.path.stat().st_mtime
        if mtime == self._mtime:
            return self._table
        raw = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
        users = (raw.get("users") or {}) if isinstance(raw, dict) else {}
        rows = []
        for uid, data in users.items():
            if not isinstance(data, dict):
                continue
            row = _row_from_yaml(uid, data)
            if row is not None:
                rows.append(row)
        self._mtime = mtime
        self._table = _IdentityTable(rows)
        return self._table

    def _write_locked(self, table: _IdentityTable) -> None:
        users = {}
        for ident in sorted(table.by_id.values(), key=lambda i: i.id):
            row = asdict(ident)
            row.pop("id")
            row["created_at"] = ident.created_at.isoformat()
            users[ident.id] = row
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(yaml.safe_dump({"version": 1, "users": users}, sort_keys=False, allow_unicode=True), encoding="utf-8")
        tmp.replace(self.path)
        self._mtime = self.path.stat().st_mtime

    def _read(self, fn):
        with self._lock:
            return fn(self._load_locked())

    def _create_sync(self, new: NewIdentity) -> Identity:
        with self._lock:
            table = self._load_locked()
            ident = table.insert(new)
            try:
                self._write_locked(table)
            except OSError:
                self._mtime = 0.0
                raise
            return ident

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except (OSError, yaml.YAMLError) as exc:
            raise StoreUnavailable() from exc

    async def get_by_id(self, identity_id: int) -> Optional[Identity]:
        return await self._run(self._read, lambda t: t.by_id.get(identity_id))

    async def get_by_username(self, username: str) -> Optional[Identity]:
        return await self._run(self._read, lambda t: t.find_username(username))

    async def get_by_email(self, email: str) -> Optional[Identity]:
        return await self._run(self._read, lambda t: t.find_email(email))

    async def create(self, new: NewIdentity) -> Identity:
        return await self._run(self._create_sync, new)


async def authenticate(store: IdentityStore, hasher: PasswordHasher, username: str, password: str) -> Identity:
    """Check a username/password pair.

    Unknown users and wrong passwords raise the same ``AuthenticationFailure``.
    """
    ident = await store.get_by_username(username)
    if ident is None:
        await asyncio.to_thread(hasher.verify_dummy, password)
        raise AuthenticationFailure()
    if not await asyncio.to_thread(hasher.verify, password, ident.password_hash):
        raise AuthenticationFailure()
    return ident

