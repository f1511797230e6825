"""
Auth - Bearer token verification

File: support_chat/auth.py

Tokens are HS256 JWTs whose `sub` claim is the user id.
"""

import time
from typing import Optional

import jwt

from .errors import Unauthorized


def extract_bearer(authorization: Optional[str]) -> str:
    """Get token from an Authorization header value"""
    if not authorization:
        raise Unauthorized("No authorization header")
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Unauthorized")
    return token.strip()


class TokenVerifier:
    def __init__(self, secret: str, audience: Optional[str] = "authenticated",
                 algorithms: tuple = ("HS256",)):
        self.secret = secret
        self.audience = audience
        self.algorithms = list(algorithms)

    def verify(self, token: Optional[str]) -> str:
        """Return user id of a valid token; Unauthorized otherwise"""
        if not token:
            raise Unauthorized("No authorization header")
        if not self.secret:
            raise Unauthorized("Token verification not configured")

        options = {"require": ["sub", "exp"]}
        if self.audience is None:
            options["verify_aud"] = False
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=self.algorithms,
                audience=self.audience,
                options=options,
            )
        except jwt.PyJWTError as e:
            raise Unauthorized("Unauthorized") from e

        user_id = claims.get("sub")
        if not user_id:
            raise Unauthorized("Unauthorized")
        return str(user_id)

    def issue(self, user_id: str, expires_in: int = 3600) -> str:
        """Sign a token (dev tooling and tests)"""
        now = int(time.time())
        payload = {"sub": user_id, "iat": now, "exp": now + expires_in}
        if self.audience:
            payload["aud"] = self.audience
        return jwt.encode(payload, self.secret, algorithm=self.algorithms[0])
