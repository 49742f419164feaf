"""
Identity provider boundary.

Sign-in, registration and email delivery live with the external identity
provider. This service only sees its results: a signed bearer token naming
the subject and whether the email is verified, and a reload() call that asks
the provider for the current verification flag.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

from config import settings
from errors import ERROR_MESSAGES, AuthError


@dataclass
class Identity:
    id: str
    email: str = ""
    email_verified: bool = False
    name: Optional[str] = None


class IdentityProvider(ABC):
    @abstractmethod
    def reload(self, identity: Identity) -> bool:
        """Return the provider's current email-verified flag for ``identity``."""


def create_token(identity: Identity, expire_minutes: int = 1440) -> str:
    exp = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    payload = {
        "sub": identity.id,
        "email": identity.email,
        "email_verified": identity.email_verified,
        "name": identity.name,
        "exp": exp,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_alg)


def decode_token(token: str) -> Identity:
    try:
        data = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_alg])
    except ExpiredSignatureError:
        raise AuthError(ERROR_MESSAGES["token-expired"], code="token-expired", logout=True)
    except JWTError:
        raise AuthError("Invalid session token", code="invalid-token")

    subject = data.get("sub")
    if not subject:
        raise AuthError("Invalid session token", code="invalid-token")
    return Identity(
        id=str(subject),
        email=data.get("email") or "",
        email_verified=bool(data.get("email_verified")),
        name=data.get("name"),
    )


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise AuthError(ERROR_MESSAGES["unauthenticated"])
    return authorization.split(" ", 1)[1].strip()
