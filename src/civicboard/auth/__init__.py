# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Authentication building blocks.

This package provides:
- Password hashing/verification (argon2id, ``<hash>.<salt>`` format)
- Identity stores (in-memory, or users.yml) and credential checks
- Server-side sessions behind signed cookies (itsdangerous)
- Signed bearer tokens (itsdangerous)
"""
