from typing import Optional

from pydantic import BaseModel


class Token(BaseModel):
    access_token: str
    token_type: str


class TokenData(BaseModel):
    # JWT "sub" claim: the user's email
    email: Optional[str] = None
