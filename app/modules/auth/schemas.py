from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List
from uuid import UUID


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class AuthContext(BaseModel):
    """Contexto resuelto por request: (user_id, tenant_id, rol, permisos)"""
    user_id: UUID
    tenant_id: UUID
    user_role: Optional[str] = None
    permissions: List[str] = []


class MeOut(BaseModel):
    user_id: UUID
    tenant_id: UUID
    email: str
    name: Optional[str] = None
    user_role: Optional[str] = None
    dynamic_role: Optional[str] = None
    permissions: List[str] = []
