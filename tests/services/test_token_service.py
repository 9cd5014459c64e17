from __future__ import annotations

import time

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from access_engine.services import token_service


def test_round_trip_claims() -> None:
    token = token_service.create_access_token(sub="8c1f", roles=["admin"])
    claims = token_service.decode_access_token(token)
    assert claims["sub"] == "8c1f"
    assert claims["roles"] == ["admin"]
    assert claims["aud"] == token_service.AUDIENCE


def test_default_role_is_user() -> None:
    claims = token_service.decode_access_token(token_service.create_access_token(sub="x"))
    assert claims["roles"] == ["user"]


def test_expired_token_rejected() -> None:
    token = token_service.create_access_token(sub="x", ttl_minutes=-1)
    with pytest.raises(jwt.ExpiredSignatureError):
        token_service.decode_access_token(token)


def test_wrong_audience_rejected() -> None:
    claims = jwt.decode(
        token_service.create_access_token(sub="x"),
        options={"verify_signature": False},
    )
    claims["aud"] = "some-other-service"
    forged = jwt.encode(claims, token_service._private_key, algorithm="ES256")
    with pytest.raises(jwt.InvalidAudienceError):
        token_service.decode_access_token(forged)


def test_hs256_token_rejected() -> None:
    forged = jwt.encode(
        {"sub": "x", "exp": 9999999999, "iat": 0, "jti": "j"}, "secret", algorithm="HS256"
    )
    with pytest.raises(jwt.InvalidTokenError):
        token_service.decode_access_token(forged)


def _pem(public_key) -> str:
    return public_key.public_bytes(
        serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode()


def _identity_service_token(private_key) -> str:
    now = int(time.time())
    return jwt.encode(
        {
            "sub": "7d2e",
            "iss": token_service.ISSUER,
            "aud": token_service.AUDIENCE,
            "exp": now + 300,
            "iat": now,
            "jti": "j-1",
            "roles": ["user"],
        },
        private_key,
        algorithm="ES256",
    )


def test_configured_key_verifies_identity_service_tokens(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    identity_key = ec.generate_private_key(ec.SECP256R1())
    loaded = token_service.load_public_key(_pem(identity_key.public_key()))
    monkeypatch.setattr(token_service, "_public_key", loaded)

    claims = token_service.decode_access_token(_identity_service_token(identity_key))
    assert claims["sub"] == "7d2e"


def test_ephemeral_key_rejects_foreign_tokens() -> None:
    stranger = ec.generate_private_key(ec.SECP256R1())
    with pytest.raises(jwt.InvalidSignatureError):
        token_service.decode_access_token(_identity_service_token(stranger))


def test_public_key_loads_from_file(tmp_path) -> None:
    key = ec.generate_private_key(ec.SECP256R1()).public_key()
    path = tmp_path / "identity.pem"
    path.write_text(_pem(key))
    assert token_service.load_public_key(str(path)).public_numbers() == key.public_numbers()


def test_public_key_must_be_p256() -> None:
    key = ec.generate_private_key(ec.SECP384R1()).public_key()
    with pytest.raises(ValueError, match="P-256"):
        token_service.load_public_key(_pem(key))


def test_minting_needs_local_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(token_service, "_private_key", None)
    with pytest.raises(RuntimeError):
        token_service.create_access_token(sub="x")
