"""Signed session tokens that scope feed requests to a user."""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from config import settings


SESSION_TOKEN_TYPE = "feed_session"


def create_session_token(user_id: str) -> str:
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(hours=max(int(settings.JWT_EXPIRATION_HOURS), 1))
    claims = {"sub": user_id, "type": SESSION_TOKEN_TYPE, "exp": int(expires_at.timestamp())}
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_session_token(token: str) -> str:
    """Return the token's user id; any defect raises ValueError."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid or expired session token.") from exc

    subject = str(payload.get("sub", "")).strip()
    if payload.get("type") != SESSION_TOKEN_TYPE or not subject:
        raise ValueError("Invalid session token.")
    return subject
