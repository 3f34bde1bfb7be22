from fastapi import Depends, Header, HTTPException
from jose import jwt, ExpiredSignatureError, JWTError

from billing.config import Settings, get_settings

ALGO = "HS256"


def current_user(
    authorization: str = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid or missing token")

    token = authorization.split(" ", 1)[1].strip()
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[ALGO])
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or missing token")

    try:
        claims["user_id"] = int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    return claims


def require_admin(claims: dict = Depends(current_user)) -> dict:
    if not claims.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin only")
    return claims
