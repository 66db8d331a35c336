"""JWT handling for tokens issued by the identity provider.

The service never sees passwords; it only trusts the ``sub`` claim of a
token signed with the shared secret.
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from spot_handoff.app.config import get_settings


def create_access_token(user_id: str, expires_minutes: int = 60) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    payload = {"sub": user_id, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict | None:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
