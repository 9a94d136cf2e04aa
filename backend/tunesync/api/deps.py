from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from tunesync.core import security
from tunesync.core.config import settings
from tunesync.models.user import Identity
from tunesync.services.room_store import RoomStore, get_room_store

reusable_oauth2 = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_V1_STR}/auth/guest"
)


def identity_from_token(token: str) -> Identity:
    try:
        payload = security.decode_access_token(token)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Could not validate credentials",
        )
    uid = payload.get("sub")
    if not uid:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Could not validate credentials",
        )
    return Identity(
        uid=uid,
        display_name=payload.get("name") or "Guest",
        is_anonymous=bool(payload.get("anon", False)),
    )


async def get_current_user(token: str = Depends(reusable_oauth2)) -> Identity:
    return identity_from_token(token)


async def get_store() -> RoomStore:
    return await get_room_store()
