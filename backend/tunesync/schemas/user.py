from typing import Optional
from pydantic import BaseModel, Field


class GuestLogin(BaseModel):
    display_name: Optional[str] = Field(default=None, max_length=40, alias="displayName")

    model_config = {"populate_by_name": True}


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    uid: str
    display_name: str
