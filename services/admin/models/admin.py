"""Modelos Pydantic para administración y autenticación"""
from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List
from datetime import datetime


# ==================== AUTH ====================

class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    message: str = "Login successful"
    token: str
    user: "UserResponse"


# ==================== USERS ====================

class UserResponse(BaseModel):
    """Respuesta con información de usuario"""
    id: str
    email: str
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    phone: Optional[str] = None
    role: str
    isActive: bool = True
    createdAt: Optional[datetime] = None


class UsersListResponse(BaseModel):
    users: List[UserResponse]


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    phone: Optional[str] = None
    role: str = "scanner"


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    isActive: Optional[bool] = None


class UserMessageResponse(BaseModel):
    message: str
    user: Optional[UserResponse] = None


class PasswordResetResponse(BaseModel):
    message: str
    temporaryPassword: str


# ==================== DASHBOARD ====================

class DashboardStatsResponse(BaseModel):
    """Totales globales del dashboard"""
    totalEvents: int
    activeEvents: int
    totalGuests: int
    checkedInGuests: int
    totalScans: int
    checkInRate: float


LoginResponse.model_rebuild()
