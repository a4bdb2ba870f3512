"""
Pydantic schemas for permission management.

Request and response models for permissions, roles, their links and
permission checks.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator


def _check_permission_name(v: str) -> str:
    if not v.replace('_', '').replace('.', '').replace(':', '').replace('-', '').isalnum():
        raise ValueError(
            'Permission name must contain only alphanumeric characters, underscores, hyphens, dots, and colons'
        )
    return v


def _check_role_name(v: str) -> str:
    if not v.replace('_', '').replace('-', '').isalnum():
        raise ValueError('Role name must contain only alphanumeric characters, underscores, and hyphens')
    return v


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionBase(BaseModel):
    """Base permission schema."""
    name: str = Field(..., min_length=1, max_length=100, description="Unique permission name")
    description: Optional[str] = Field(None, max_length=1000, description="Permission description")
    resource_type: str = Field(..., min_length=1, max_length=100, description="Resource class (e.g., 'DOCUMENT')")
    action: str = Field(..., min_length=1, max_length=50, description="Action (e.g., 'READ')")


class PermissionCreate(PermissionBase):
    """Schema for creating a new permission."""
    
    @field_validator('name')
    @classmethod
    def name_format(cls, v: str) -> str:
        return _check_permission_name(v)


class PermissionUpdate(BaseModel):
    """Schema for a partial permission update. Omitted fields are left as they are."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    resource_type: Optional[str] = Field(None, min_length=1, max_length=100)
    action: Optional[str] = Field(None, min_length=1, max_length=50)
    
    @field_validator('name')
    @classmethod
    def name_format(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _check_permission_name(v)
    
    @model_validator(mode='after')
    def required_fields_not_null(self) -> "PermissionUpdate":
        for key in ('name', 'resource_type', 'action'):
            if key in self.model_fields_set and getattr(self, key) is None:
                raise ValueError(f'{key} cannot be null')
        return self


class PermissionResponse(PermissionBase):
    """Schema for permission response."""
    id: str
    created_at: datetime
    updated_at: datetime
    
    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Role Schemas
# ============================================================================

class RoleBase(BaseModel):
    """Base role schema."""
    name: str = Field(..., min_length=1, max_length=50, description="Unique role name")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")


class RoleCreate(RoleBase):
    """Schema for creating a new role."""
    
    @field_validator('name')
    @classmethod
    def name_format(cls, v: str) -> str:
        return _check_role_name(v)


class RoleUpdate(BaseModel):
    """Schema for a partial role update."""
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=1000)
    
    @field_validator('name')
    @classmethod
    def name_format(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            raise ValueError('name cannot be null')
        return _check_role_name(v)


class RoleResponse(RoleBase):
    """Schema for role response."""
    id: str
    created_at: datetime
    updated_at: datetime
    
    model_config = ConfigDict(from_attributes=True)


class RoleWithPermissions(RoleResponse):
    """Schema for role with permissions."""
    permissions: List[PermissionResponse] = []
    
    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Assignment Schemas
# ============================================================================

class AssignPermissionToRole(BaseModel):
    """Schema for assigning a permission to a role."""
    permission_id: str = Field(..., description="Permission ID")


class AssignRoleToUser(BaseModel):
    """Schema for assigning a role to a user."""
    role_id: str = Field(..., description="Role ID")


class AssignmentResponse(BaseModel):
    message: str


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """
    Check a user's access either by permission id or by (resource_type, action).

    `user_id` defaults to the caller.
    """
    user_id: Optional[str] = Field(None, description="User to check (defaults to the caller)")
    permission_id: Optional[str] = Field(None, description="Permission ID")
    resource_type: Optional[str] = Field(None, description="Resource type")
    action: Optional[str] = Field(None, description="Action")
    
    @model_validator(mode='after')
    def one_form_only(self) -> "PermissionCheckRequest":
        by_action = self.resource_type is not None or self.action is not None
        if self.permission_id is not None and by_action:
            raise ValueError('Provide either permission_id or resource_type and action, not both')
        if self.permission_id is None and (self.resource_type is None or self.action is None):
            raise ValueError('Provide permission_id, or both resource_type and action')
        return self


class PermissionCheckResult(BaseModel):
    """Outcome of a point permission query."""
    granted: bool
    reason: Optional[str] = None


# ============================================================================
# User Permissions Response
# ============================================================================

class UserPermissionsResponse(BaseModel):
    """A user's roles and the deduplicated union of their permissions."""
    user_id: str
    roles: List[RoleWithPermissions] = []
    permissions: List[PermissionResponse] = []
