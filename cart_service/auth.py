# cart_service/auth.py
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from cart_service.config import ALGORITHM, SECRET_KEY
from cart_service.errors import Unauthenticated

ACCESS_TOKEN_EXPIRE_MINUTES = 30

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


def create_access_token(data: dict, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    """Create a JWT with an expiry, in the format the auth service issues."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> str:
    """Return the shopper identity carried in the token's ``id`` claim."""
    if not token:
        raise Unauthenticated("Not authenticated")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token has expired")
    except jwt.InvalidTokenError:
        raise Unauthenticated("Invalid token")

    identity = payload.get("id")
    if identity is None or identity == "":
        raise Unauthenticated("Invalid token")
    return str(identity)


async def get_identity(request: Request, token: Optional[str] = Depends(oauth2_scheme)) -> str:
    # Browsers send the cookie set at login, API clients the bearer header
    return verify_token(token or request.cookies.get("access_token"))
