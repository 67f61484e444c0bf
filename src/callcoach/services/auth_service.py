"""JWT decoding. Users sign in elsewhere; this service only reads tokens."""

from jose import JWTError, jwt

from callcoach.app.config import get_settings

settings = get_settings()


def decode_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
