from typing import Any, Dict

import jwt

from chatcore.config import Settings


class InvalidTokenError(Exception):
    pass


def decode_access_token(token: str, settings: Settings) -> Dict[str, Any]:
    """Verify a bearer token issued by the identity service and return its claims."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError as exc:
        raise InvalidTokenError(str(exc)) from exc
    if not payload.get("sub"):
        raise InvalidTokenError("token has no subject")
    return payload
