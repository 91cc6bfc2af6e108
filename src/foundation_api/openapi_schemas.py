"""
OpenAPI-compatible Pydantic schemas shared across routers: authentication,
the user account shape, generic responses and the tag map for Swagger.
"""

from typing import Any, List, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, EmailStr, Field, constr, field_validator

# ----------------------------------------
# PUBLIC_INTERFACE
class Token(BaseModel):
    """
    Access token response schema.
    """
    access_token: str = Field(..., description="JWT Access token")
    token_type: str = Field("bearer", description="The token type, always 'bearer'.")

# ----------------------------------------
# PUBLIC_INTERFACE
class TokenPayload(BaseModel):
    """
    JWT token payload/basic claims schema.
    """
    sub: str = Field(..., description="The subject identifier (the user ID).")
    exp: int = Field(..., description="Expiration timestamp (unix epoch).")
    roles: List[str] = Field(default_factory=list, description="Roles assigned to the user.")

# ==== User & Authentication Schemas ====

# ----------------------------------------
# PUBLIC_INTERFACE
class UserBase(BaseModel):
    email: EmailStr = Field(..., description="User email address")
    first_name: constr(strip_whitespace=True, min_length=2, max_length=50) = Field(..., description="First name")
    last_name: constr(strip_whitespace=True, min_length=2, max_length=50) = Field(..., description="Last name")
    phone: Optional[str] = Field(None, description="Phone number")

# ----------------------------------------
# PUBLIC_INTERFACE
class UserCreate(UserBase):
    """
    Signup request. New accounts always start with the member role.
    """
    password: constr(min_length=8) = Field(..., description="User password (min. 8 chars)")

# ----------------------------------------
# PUBLIC_INTERFACE
class UserOut(BaseModel):
    """
    Output User schema. Never carries the password hash.
    """
    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="User identifier")
    email: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    is_active: bool = Field(..., description="Active user")
    roles: List[str] = Field(default_factory=list, description="Assigned roles")
    created_at: Optional[datetime] = None

    @field_validator("roles", mode="before")
    @classmethod
    def role_names(cls, value):
        return [getattr(r, "name", r) for r in value or []]

# ----------------------------------------
# PUBLIC_INTERFACE
class UserBrief(BaseModel):
    """
    Minimal user reference embedded in other resources.
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    email: Optional[str] = None

# ==== Misc / Common ====

# ----------------------------------------
# PUBLIC_INTERFACE
class APIResponse(BaseModel):
    """
    Standard API response wrapper.
    """
    success: bool = Field(..., description="Request was successful")
    message: Optional[str] = Field(None, description="A human-readable message")
    data: Optional[Any] = Field(None, description="Payload")

# ----------------------------------------
# PUBLIC_INTERFACE
class ErrorResponse(BaseModel):
    """
    Error response wrapper.
    """
    detail: str = Field(..., description="Error details")
    code: Optional[str] = Field(None, description="Machine-readable error code")

# ---- Endpoint Contracts: Tag Mapping (for OpenAPI tags) ----
openapi_tags = [
    {"name": "Authentication", "description": "Signup, login and the current user."},
    {"name": "Users", "description": "Administration of user accounts and roles."},
    {"name": "Events", "description": "Event listing, creation and registration."},
    {"name": "Donations", "description": "Donations, M-PESA initiation and tax receipts."},
    {"name": "Gallery", "description": "Photo gallery entries."},
    {"name": "Membership", "description": "Membership applications, payments, approval and renewal."},
    {"name": "Reports", "description": "CSV exports of donations and memberships."},
    {"name": "Misc", "description": "Health check."},
]
