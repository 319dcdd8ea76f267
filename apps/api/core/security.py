"""
Security utilities for authentication and authorization.

Provides:
- JWT validation for sessions issued by the auth service
- Shared-secret verification for the generation worker callback

SECURITY REQUIREMENTS:
- SECRET_KEY must be set via environment variable
- SECRET_KEY must be cryptographically secure (32+ characters)
- WEBHOOK_SECRET must differ from SECRET_KEY and per environment
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict
import hmac
from jose import JWTError, jwt
from core.config import settings

# JWT settings - SECRET_KEY is required by config.py, will fail at startup if not set
SECRET_KEY = settings.SECRET_KEY

if len(SECRET_KEY) < 32:
    raise ValueError(
        "SECRET_KEY must be at least 32 characters. "
        "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 30 * 24 * 60  # 30 days

WEBHOOK_SECRET_HEADER = "X-Webhook-Secret"


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict]:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


class SharedSecretVerifier:
    """
    Compares a presented secret against the server-held value.

    Byte-for-byte, constant time. A verifier with no configured secret
    rejects everything.
    """

    def __init__(self, expected: Optional[str]):
        self._expected = expected.encode("utf-8") if expected else None

    @property
    def configured(self) -> bool:
        return self._expected is not None

    def verify(self, presented: Optional[str]) -> bool:
        if self._expected is None or not presented:
            return False
        return hmac.compare_digest(presented.encode("utf-8"), self._expected)


def get_webhook_verifier() -> SharedSecretVerifier:
    """FastAPI dependency; override in tests or alternate deployments."""
    return SharedSecretVerifier(settings.WEBHOOK_SECRET)
