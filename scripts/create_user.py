#!/usr/bin/env python3
from __future__ import annotations

import asyncio
import os
from getpass import getpass
from pathlib import Path

from civicboard.auth.passwords import PasswordHasher
from civicboard.auth.users import ROLES, NewIdentity, YamlIdentityStore
from civicboard.config import hash_params_from_env
from civicboard.errors import IdentityConflict

USERS_PATH = Path(os.getenv("CIVIC_USERS_PATH", "data/users.yml")).resolve()


def main() -> None:
    username = input("Username: ").strip()
    email = input("Email: ").strip()
    full_name = input("Full name (optional): ").strip() or None
    role = (input(f"Role [{'/'.join(ROLES)}]: ").strip().lower() or "user")
    if role not in ROLES:
        raise SystemExit(f"Unknown role: {role}")

    pw1 = getpass("Password: ")
    pw2 = getpass("Repeat password: ")
    if pw1 != pw2:
        raise SystemExit("Passwords do not match")
    if len(pw1) < 8:
        raise SystemExit("Password must be at least 8 characters")

    hasher = PasswordHasher(hash_params_from_env())
    store = YamlIdentityStore(USERS_PATH)
    new = NewIdentity(
        username=username,
        email=email,
        password_hash=hasher.hash(pw1),
        full_name=full_name,
        role=role,
    )
    try:
        ident = asyncio.run(store.create(new))
    except IdentityConflict as exc:
        raise SystemExit(f"{exc.field} already in use")

    print(f"OK -> {USERS_PATH} (id={ident.id})")


if __name__ == "__main__":
    main()
