"""JWT session tokens and request dependencies."""

import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from gamerit.config import settings
from gamerit.database import get_db
from gamerit.models.player import Player

security = HTTPBearer()


def create_access_token(data: dict) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return payload
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )


def get_current_player(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> Player:
    payload = decode_token(credentials.credentials)
    player_id = payload.get("sub")
    if not player_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    player = db.query(Player).filter(Player.id == player_id).first()
    if not player:
        raise HTTPException(status_code=401, detail="Player not found")
    return player


def require_admin(current_player: Player = Depends(get_current_player)) -> Player:
    admins = {name.lower() for name in settings.split(settings.ADMIN_USERNAMES)}
    if current_player.reddit_username.lower() not in admins:
        raise HTTPException(status_code=403, detail="Admin access required")
    return current_player


def require_internal_key(x_internal_key: Optional[str] = Header(default=None)) -> None:
    """Guards endpoints called by the OAuth callback, not by browsers."""
    if not x_internal_key or not hmac.compare_digest(x_internal_key, settings.INTERNAL_API_KEY):
        raise HTTPException(status_code=401, detail="Invalid internal API key")
