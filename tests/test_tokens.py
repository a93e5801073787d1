import base64
import json
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt
from pydantic import ValidationError

from errors import ExpiredToken, InvalidSignature, MalformedToken
from models import Role
from settings import Settings
from tokens import TokenService

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
TTL = timedelta(hours=24)


def service_at(moment: datetime, secret: str = "unit-secret") -> TokenService:
    return TokenService(secret=secret, ttl=TTL, clock=lambda: moment)


@pytest.mark.parametrize("role", list(Role))
def test_issue_then_verify_returns_same_principal(role):
    token = service_at(T0).issue(42, "someone@example.com", role)

    principal = service_at(T0 + timedelta(hours=1)).verify(token)

    assert principal.id == 42
    assert principal.email == "someone@example.com"
    assert principal.role is role


def test_token_valid_until_just_before_expiry():
    token = service_at(T0).issue(1, "a@example.com", Role.CREATIVE)
    assert service_at(T0 + TTL - timedelta(seconds=1)).verify(token).id == 1


@pytest.mark.parametrize("elapsed", [TTL, TTL + timedelta(seconds=1), timedelta(days=30)])
def test_expired_token_is_rejected(elapsed):
    token = service_at(T0).issue(1, "a@example.com", Role.EMPLOYER)
    with pytest.raises(ExpiredToken):
        service_at(T0 + elapsed).verify(token)


def test_wrong_secret_is_invalid_signature():
    token = service_at(T0, secret="one").issue(1, "a@example.com", Role.JOB_SEEKER)
    with pytest.raises(InvalidSignature):
        service_at(T0, secret="two").verify(token)


def test_signature_checked_before_expiry():
    token = service_at(T0, secret="one").issue(1, "a@example.com", Role.JOB_SEEKER)
    with pytest.raises(InvalidSignature):
        service_at(T0 + timedelta(days=30), secret="two").verify(token)


def test_tampered_claims_fail_signature():
    token = service_at(T0).issue(7, "a@example.com", Role.JOB_SEEKER)
    header, payload, signature = token.split(".")
    claims = json.loads(base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4)))
    claims["role"] = Role.ADMIN.value
    forged = base64.urlsafe_b64encode(json.dumps(claims).encode()).rstrip(b"=").decode()

    with pytest.raises(InvalidSignature):
        service_at(T0).verify(f"{header}.{forged}.{signature}")


@pytest.mark.parametrize("token", ["", "not-a-token", "a.b.c", "Bearer abc"])
def test_garbage_is_malformed(token):
    with pytest.raises(MalformedToken):
        service_at(T0).verify(token)


@pytest.mark.parametrize(
    "claims",
    [
        {"sub": "1", "email": "a@example.com", "iat": 0, "exp": 9999999999},  # no role
        {"sub": "1", "email": "a@example.com", "role": "superuser", "iat": 0, "exp": 9999999999},
        {"sub": "abc", "email": "a@example.com", "role": "admin", "iat": 0, "exp": 9999999999},
    ],
)
def test_unexpected_claim_shape_is_malformed(claims):
    token = jwt.encode(claims, "unit-secret", algorithm="HS256")
    with pytest.raises(MalformedToken):
        service_at(T0).verify(token)


def test_signed_token_with_numeric_subject_is_malformed():
    # correctly signed, but "sub" must be a string
    claims = {"sub": 1, "email": "a@example.com", "role": "admin", "iat": 0, "exp": 9999999999}
    token = jwt.encode(claims, "unit-secret", algorithm="HS256")
    with pytest.raises(MalformedToken):
        service_at(T0).verify(token)


def test_verify_does_not_need_a_database():
    # A bare service with no session anywhere still verifies
    service = TokenService(secret="standalone")
    principal = service.verify(service.issue(5, "x@example.com", Role.ADMIN))
    assert principal.is_admin


@pytest.mark.parametrize("hours", [24, 72, 168])
def test_expiry_window_accepts_one_to_seven_days(hours):
    assert Settings(jwt_expire_hours=hours).jwt_expire_hours == hours


@pytest.mark.parametrize("hours", [1, 23, 169])
def test_expiry_window_rejects_out_of_range(hours):
    with pytest.raises(ValidationError):
        Settings(jwt_expire_hours=hours)
