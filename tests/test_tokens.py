import pytest
from itsdangerous import URLSafeSerializer

from civicboard.auth.tokens import TokenService
from civicboard.errors import TokenFailure, TokenFailureKind

SECRET = "token-secret"


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_issue_then_verify_returns_identity_id():
    svc = TokenService(SECRET)
    assert svc.verify(svc.issue(42)) == 42


def test_expired_token_reports_expired():
    clock = FakeClock()
    svc = TokenService(SECRET, max_age=60, clock=clock)
    token = svc.issue(7)
    clock.now += 61
    with pytest.raises(TokenFailure) as ei:
        svc.verify(token)
    assert ei.value.kind is TokenFailureKind.EXPIRED


def test_token_valid_until_expiry():
    clock = FakeClock()
    svc = TokenService(SECRET, max_age=60, clock=clock)
    token = svc.issue(7)
    clock.now += 59
    assert svc.verify(token) == 7


def test_token_from_another_key_is_malformed():
    forged = TokenService("other-secret").issue(1)
    with pytest.raises(TokenFailure) as ei:
        TokenService(SECRET).verify(forged)
    assert ei.value.kind is TokenFailureKind.MALFORMED


def test_swapped_payload_is_malformed():
    svc = TokenService(SECRET)
    payload_admin, _ = svc.issue(1).rsplit(".", 1)
    _, sig_user = svc.issue(2).rsplit(".", 1)
    with pytest.raises(TokenFailure) as ei:
        svc.verify(f"{payload_admin}.{sig_user}")
    assert ei.value.kind is TokenFailureKind.MALFORMED


@pytest.mark.parametrize("token", ["", "garbage", "a.b.c", "ünïcode"])
def test_garbage_is_malformed(token):
    with pytest.raises(TokenFailure) as ei:
        TokenService(SECRET).verify(token)
    assert ei.value.kind is TokenFailureKind.MALFORMED


@pytest.mark.parametrize(
    "claims",
    [
        {"iat": 0, "exp": 4_000_000_000},
        {"id": "1", "iat": 0, "exp": 4_000_000_000},
        {"id": True, "iat": 0, "exp": 4_000_000_000},
        {"id": 1, "iat": 0},
        [1, 2, 3],
    ],
)
def test_signed_but_incomplete_claims_are_malformed(claims):
    # Same secret and salt as the service, so the signature is valid.
    token = URLSafeSerializer(SECRET, salt="civicboard.token.v1").dumps(claims)
    with pytest.raises(TokenFailure) as ei:
        TokenService(SECRET).verify(token)
    assert ei.value.kind is TokenFailureKind.MALFORMED


def test_empty_secret_rejected():
    with pytest.raises(ValueError):
        TokenService("")
