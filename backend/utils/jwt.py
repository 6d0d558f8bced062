from datetime import datetime, timedelta

from jose import jwt

from config.env import JWT_SECRET, JWT_ALGORITHM, ACCESS_TOKEN_DAYS

# Tokens are issued by the auth service; this side only needs to read them.
# create_access_token exists for that service's contract and for tests.


def _require_jwt_secret() -> str:
    secret = (JWT_SECRET or "").strip()
    if not secret:
        raise RuntimeError("JWT_SECRET is not configured")
    return secret


def create_access_token(user_id, role: str | None = None) -> str:
    payload = {
        "sub": str(user_id),
        "exp": datetime.utcnow() + timedelta(days=ACCESS_TOKEN_DAYS),
        "iat": datetime.utcnow(),
    }
    if role:
        payload["role"] = role
    return jwt.encode(payload, _require_jwt_secret(), algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    return jwt.decode(token, _require_jwt_secret(), algorithms=[JWT_ALGORITHM])
