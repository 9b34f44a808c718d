"""
OAuth for the IFTTT service connection.

The demo has exactly one user, so authorization is automatic. This module
handles:
- One-time authorization codes (10 minutes)
- JWT access tokens handed to IFTTT (1 day)
- JWT refresh tokens (30 days)
"""

import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from jose import JWTError, jwt
from pydantic import BaseModel

ALGORITHM = "HS256"

DEMO_USER_ID = "haunted-demo-user"
DEMO_USER_NAME = "Haunted House Demo"

# Token expiration times
ACCESS_TOKEN_EXPIRE_DAYS = 1
REFRESH_TOKEN_EXPIRE_DAYS = 30
AUTH_CODE_EXPIRE_SECONDS = 600

ACCESS_TOKEN_TYPE = "ifttt_access"
REFRESH_TOKEN_TYPE = "ifttt_refresh"


class TokenData(BaseModel):
    """Decoded token data."""

    subject_id: str
    token_type: str
    expires_at: datetime
    issued_at: datetime


class TokenIssuer:
    """Signs and verifies the service's own OAuth tokens."""

    def __init__(self, secret_key: str):
        self.secret_key = secret_key

    def _encode(self, subject_id: str, token_type: str, expires_delta: timedelta) -> str:
        now = datetime.now(timezone.utc)
        to_encode = {
            "sub": subject_id,
            "type": token_type,
            "exp": now + expires_delta,
            "iat": now,
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(to_encode, self.secret_key, algorithm=ALGORITHM)

    def create_access_token(
        self,
        subject_id: str = DEMO_USER_ID,
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        if expires_delta is None:
            expires_delta = timedelta(days=ACCESS_TOKEN_EXPIRE_DAYS)
        return self._encode(subject_id, ACCESS_TOKEN_TYPE, expires_delta)

    def create_refresh_token(
        self,
        subject_id: str = DEMO_USER_ID,
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        if expires_delta is None:
            expires_delta = timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS)
        return self._encode(subject_id, REFRESH_TOKEN_TYPE, expires_delta)

    def decode_token(self, token: str) -> Optional[TokenData]:
        """
        Decode and validate a JWT token.

        Returns:
            TokenData if valid, None if invalid or expired
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[ALGORITHM])

            return TokenData(
                subject_id=payload.get("sub", ""),
                token_type=payload.get("type", ""),
                expires_at=datetime.fromtimestamp(payload.get("exp", 0), tz=timezone.utc),
                issued_at=datetime.fromtimestamp(payload.get("iat", 0), tz=timezone.utc),
            )
        except JWTError:
            return None

    def verify_token(self, token: str, expected_type: str) -> Optional[TokenData]:
        """Verify a token and check its type."""
        token_data = self.decode_token(token)

        if token_data is None or token_data.token_type != expected_type:
            return None

        if token_data.expires_at < datetime.now(timezone.utc):
            return None

        return token_data


def get_token_expiry_seconds(token_type: str) -> int:
    """Get the expiration time in seconds for a token type."""
    if token_type == REFRESH_TOKEN_TYPE:
        return REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60
    return ACCESS_TOKEN_EXPIRE_DAYS * 24 * 60 * 60


@dataclass
class AuthorizationCode:
    code: str
    client_id: Optional[str]
    redirect_uri: Optional[str]
    user_id: str
    expires_at: float


class AuthorizationCodeStore:
    """In-memory one-time authorization codes."""

    def __init__(self, ttl: int = AUTH_CODE_EXPIRE_SECONDS):
        self.ttl = ttl
        self._codes: Dict[str, AuthorizationCode] = {}

    def issue(
        self,
        client_id: Optional[str],
        redirect_uri: Optional[str],
        user_id: str = DEMO_USER_ID,
    ) -> str:
        self._purge()
        code = secrets.token_urlsafe(24)
        self._codes[code] = AuthorizationCode(
            code=code,
            client_id=client_id,
            redirect_uri=redirect_uri,
            user_id=user_id,
            expires_at=time.time() + self.ttl,
        )
        return code

    def consume(self, code: str) -> Optional[AuthorizationCode]:
        """Redeem a code. A code can be redeemed once; expired codes never."""
        entry = self._codes.pop(code, None)
        if entry is None or entry.expires_at < time.time():
            return None
        return entry

    def _purge(self) -> None:
        now = time.time()
        for code in [c for c, e in self._codes.items() if e.expires_at < now]:
            del self._codes[code]
