# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Password hashing in the ``<hash>.<salt>`` hex format.

Hashes are derived with Argon2id. Cost parameters are fixed process-wide:
a stored value does not carry them, so changing them invalidates existing
hashes.
"""

from __future__ import annotations

import hmac
import secrets
from dataclasses import dataclass

from argon2.low_level import Type, hash_secret_raw

MIN_SALT_BYTES = 16
SEPARATOR = "."


@dataclass(frozen=True)
class HashParams:
    time_cost: int = 2
    memory_cost: int = 19456  # KiB
    parallelism: int = 1
    hash_len: int = 64
    salt_len: int = 16

    def __post_init__(self):
        if self.salt_len < MIN_SALT_BYTES:
            raise ValueError(f"salt_len must be >= {MIN_SALT_BYTES}, got {self.salt_len}")


class PasswordHasher:
    def __init__(self, params: HashParams = HashParams()):
        self.params = params

    def _derive(self, password: str, salt: bytes) -> bytes:
        p = self.params
        return hash_secret_raw(
            secret=password.encode("utf-8"),
            salt=salt,
            time_cost=p.time_cost,
            memory_cost=p.memory_cost,
            parallelism=p.parallelism,
            hash_len=p.hash_len,
            type=Type.ID,
        )

    def hash(self, password: str) -> str:
        if not password:
            raise ValueError("Empty password")
        salt = secrets.token_bytes(self.params.salt_len)
        return f"{self._derive(password, salt).hex()}{SEPARATOR}{salt.hex()}"

    def verify(self, password: str, stored: str) -> bool:
        if not password or not stored:
            return False
        hashed_hex, sep, salt_hex = stored.partition(SEPARATOR)
        if not sep:
            return False
        try:
            expected = bytes.fromhex(hashed_hex)
            salt = bytes.fromhex(salt_hex)
        except ValueError:
            return False
        if len(salt) < MIN_SALT_BYTES or len(expected) != self.params.hash_len:
            return False
        return hmac.compare_digest(self._derive(password, salt), expected)

    def verify_dummy(self, password: str) -> bool:
        """Spend one derivation for a user that does not exist; always False."""
        self._derive(password or "", secrets.token_bytes(self.params.salt_len))
        return False


_DEFAULT_HASHER = PasswordHasher()


def hash_password(plain: str) -> str:
    return _DEFAULT_HASHER.hash(plain)


def verify_password(hash_value: str, plain: str) -> bool:
    return _DEFAULT_HASHER.verify(plain, hash_value)
