from typing import List, Optional

import jwt

from apiflow.common.errors import DispatchError, ErrorCode
from apiflow.common.logger import get_logger

from .models import CallerIdentity

logger = get_logger(__name__)

_CALLER_CLAIMS = ("sub", "user_id", "uid")


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extracts the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class SessionTokenVerifier:
    """Verifies signed session JWTs issued by the account service."""

    def __init__(self, secret: Optional[str], algorithms: Optional[List[str]] = None, leeway: int = 30):
        self._secret = secret
        self._algorithms = algorithms or ["HS256"]
        self._leeway = leeway

    def verify(self, token: Optional[str]) -> CallerIdentity:
        """Returns the caller identity carried by ``token``.

        Raises:
            DispatchError: UNAUTHENTICATED if the token is missing, malformed,
                expired, badly signed or names no caller.
        """
        if not token:
            raise DispatchError(ErrorCode.UNAUTHENTICATED, "Authentication required")
        if not self._secret:
            logger.error("Session token secret is not configured; rejecting session token")
            raise DispatchError(ErrorCode.UNAUTHENTICATED, "Session authentication is not configured")
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=self._algorithms,
                leeway=self._leeway,
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise DispatchError(ErrorCode.UNAUTHENTICATED, "Session expired")
        except jwt.InvalidTokenError as e:
            logger.debug(f"Rejected session token: {e}")
            raise DispatchError(ErrorCode.UNAUTHENTICATED, "Invalid session token")

        caller_id = next((str(claims[c]) for c in _CALLER_CLAIMS if claims.get(c)), None)
        if caller_id is None:
            raise DispatchError(ErrorCode.UNAUTHENTICATED, "Session token names no user")
        return CallerIdentity(caller_id=caller_id, email=claims.get("email"))
