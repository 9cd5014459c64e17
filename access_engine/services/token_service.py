"""JWT access token validation (ES256).

Tokens are issued by the identity service; this process only verifies
them, against the public key in ``JWT_PUBLIC_KEY``.  Without one (dev and
test only) a key pair is generated on import so tests can mint tokens
with create_access_token.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path

import jwt
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import load_pem_public_key

from access_engine.core.config import SETTINGS


def load_public_key(source: str) -> ec.EllipticCurvePublicKey:
    """Load a P-256 verification key from PEM text or a PEM file path."""
    if source.lstrip().startswith("-----BEGIN"):
        pem = source.encode()
    else:
        pem = Path(source).read_bytes()
    key = load_pem_public_key(pem)
    if not isinstance(key, ec.EllipticCurvePublicKey) or not isinstance(
        key.curve, ec.SECP256R1
    ):
        raise ValueError("JWT_PUBLIC_KEY must be an EC (P-256) public key")
    return key


_private_key: ec.EllipticCurvePrivateKey | None
if SETTINGS.jwt_public_key is not None:
    _private_key = None
    _public_key = load_public_key(SETTINGS.jwt_public_key)
else:
    _private_key = ec.generate_private_key(ec.SECP256R1())
    _public_key = _private_key.public_key()

ALGORITHM = "ES256"
ISSUER = "auth-service"
AUDIENCE = "course-access-engine"
ACCESS_TOKEN_TTL_MIN = 15


def create_access_token(
    *,
    sub: str,
    roles: list[str] | None = None,
    ttl_minutes: int = ACCESS_TOKEN_TTL_MIN,
) -> str:
    """Build and sign an access token (sub, iss, aud, exp, iat, jti, roles).

    Only possible with the ephemeral dev/test key pair.
    """
    if _private_key is None:
        raise RuntimeError("No signing key: tokens come from the identity service")
    now = datetime.now(UTC)
    payload = {
        "sub": sub,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "exp": now + timedelta(minutes=ttl_minutes),
        "iat": now,
        "jti": str(uuid.uuid4()),
        "roles": roles or ["user"],
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and claims, return the payload.

    The algorithm is pinned to ES256 (no alg:none, no alg switching).

    Raises jwt.ExpiredSignatureError, jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=AUDIENCE,
        options={"require": ["sub", "exp", "iat", "jti"]},
    )
