"""
Pydantic schemas for user-related responses.
"""
from datetime import datetime
from typing import List
from pydantic import BaseModel, EmailStr


class UserResponse(BaseModel):
    """The authenticated user's own profile."""
    id: str
    email: EmailStr
    name: str
    is_active: bool
    is_admin: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    
    model_config = {"from_attributes": True}


class UserPublic(BaseModel):
    id: str
    name: str
    
    model_config = {"from_attributes": True}


class UserAccess(BaseModel):
    """Effective permission names for one user. Admins pass every route guard regardless."""
    user_id: str
    is_admin: bool
    permissions: List[str] = []
