from pydantic import BaseModel, EmailStr
from typing import Optional
from datetime import datetime
from enum import Enum

class Role(str, Enum):
    ADMIN = "admin"
    SELLER = "seller"
    USER = "user"

class UserCreate(BaseModel):
    display_name: str
    email: EmailStr
    password: str
    seller_handle: Optional[str] = None

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class UserResponse(BaseModel):
    id: str
    display_name: Optional[str] = None
    email: str
    role: Role
    seller_handle: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: datetime

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse
