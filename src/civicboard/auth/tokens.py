# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Stateless bearer tokens.

A token is the claim set ``{"id", "iat", "exp"}`` signed with the token
secret. There is no server-side registry: a token stays valid until ``exp``,
logout does not revoke it.
"""

from __future__ import annotations

import time
from typing import Callable

from itsdangerous import BadData, URLSafeSerializer

from civicboard.errors import TokenFailure, TokenFailureKind

DEFAULT_MAX_AGE_SECONDS = 7 * 24 * 60 * 60


class TokenService:
    def __init__(
        self,
        secret: str,
        max_age: int = DEFAULT_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.time,
        salt: str = "civicboard.token.v1",
    ):
        if not secret:
            raise ValueError("Token secret must not be empty")
        self.max_age = max_age
        self.clock = clock
        self._serializer = URLSafeSerializer(secret_key=secret, salt=salt)

    def issue(self, identity_id: int) -> str:
        iat = int(self.clock())
        return self._serializer.dumps({"id": identity_id, "iat": iat, "exp": iat + self.max_age})

    def verify(self, token: str) -> int:
        """Return the identity id carried by ``token``.

        Raises ``TokenFailure`` (MALFORMED or EXPIRED). The signature is
        checked before any claim is read.
        """
        if not token:
            raise TokenFailure(TokenFailureKind.MALFORMED)
        try:
            claims = self._serializer.loads(token)
        except BadData:
            raise TokenFailure(TokenFailureKind.MALFORMED)

        if not isinstance(claims, dict):
            raise TokenFailure(TokenFailureKind.MALFORMED)
        ident = claims.get("id")
        exp = claims.get("exp")
        # bool is an int subclass; it is not a valid id.
        if not isinstance(ident, int) or isinstance(ident, bool):
            raise TokenFailure(TokenFailureKind.MALFORMED)
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            raise TokenFailure(TokenFailureKind.MALFORMED)
        if self.clock() >= exp:
            raise TokenFailure(TokenFailureKind.EXPIRED)
        return ident
