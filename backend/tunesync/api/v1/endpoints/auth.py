import random
import uuid
from typing import Any
from fastapi import APIRouter, Depends

from tunesync.api import deps
from tunesync.core import security
from tunesync.models.user import Identity
from tunesync.schemas.user import GuestLogin, Token

router = APIRouter()


@router.post("/guest", response_model=Token)
async def guest_login(payload: GuestLogin) -> Any:
    """
    Issue a token for an anonymous guest.
    """
    uid = uuid.uuid4().hex
    display_name = (payload.display_name or "").strip() or f"Guest {random.randint(0, 999)}"
    return Token(
        access_token=security.create_access_token(uid, display_name, is_anonymous=True),
        uid=uid,
        display_name=display_name,
    )


@router.get("/me", response_model=Identity)
async def read_me(current_user: Identity = Depends(deps.get_current_user)) -> Any:
    return current_user
