import base64
import hashlib
import hmac
from datetime import datetime, timedelta
from typing import Any

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from jose import ExpiredSignatureError, JWTError, jwt

from app.core.config import get_settings
from app.core.exceptions import UnauthorizedError

GATE_COOKIE_NAME = "gate"


# Passwords

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str | None) -> bool:
    if not password or not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# JWT

def create_access_token(user_id: str, email: str, role: str, ttl_seconds: int | None = None) -> str:
    """Sign a bearer token carrying {id, email, role}."""
    settings = get_settings()
    ttl = ttl_seconds if ttl_seconds is not None else settings.user_token_ttl_seconds
    payload = {
        "id": user_id,
        "email": email,
        "role": role,
        "exp": datetime.utcnow() + timedelta(seconds=ttl),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError as e:
        raise UnauthorizedError("Token expired") from e
    except JWTError as e:
        raise UnauthorizedError("Invalid token") from e
    if not payload.get("id"):
        raise UnauthorizedError("Invalid token")
    return payload


def bearer_token(authorization: str | None) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthorizedError("Token not provided")
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise UnauthorizedError("Token not provided")
    return token


# Webhooks

def compute_webhook_signature(payload: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(payload: bytes, signature: str | None, secret: str) -> bool:
    """HMAC-SHA256 over the raw body, base64-encoded, compared in constant time."""
    if not signature:
        return False
    expected = compute_webhook_signature(payload, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("utf-8"))


def tokens_match(received: str | None, expected: str) -> bool:
    if not received or not expected:
        return False
    return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))


# Gate cookie

def get_gate_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.jwt_secret,
        salt="gate-cookie",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_gate_cookie(client_ip: str) -> str:
    return get_gate_serializer().dumps({"verified": True, "ip": client_ip})


def load_gate_cookie(cookie_value: str) -> dict[str, Any] | None:
    settings = get_settings()
    try:
        return get_gate_serializer().loads(cookie_value, max_age=settings.gate_cookie_max_age)
    except (BadSignature, SignatureExpired):
        return None
