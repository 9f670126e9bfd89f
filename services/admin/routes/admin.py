"""Rutas de administración: usuarios y dashboard"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict

from shared.database.session import get_db
from shared.database.models import User
from shared.auth.dependencies import get_current_admin
from services.admin.models.admin import (
    UserResponse,
    UsersListResponse,
    UserCreate,
    UserUpdate,
    UserMessageResponse,
    PasswordResetResponse,
    DashboardStatsResponse,
)
from services.admin.services.user_management_service import UserManagementService
from services.event_management.services.report_service import ReportService


router = APIRouter()


def to_user_response(user: User) -> UserResponse:
    return UserResponse(
        id=str(user.id),
        email=user.email,
        firstName=user.first_name,
        lastName=user.last_name,
        phone=user.phone,
        role=user.role,
        isActive=bool(user.is_active),
        createdAt=user.created_at,
    )


@router.get("/users", response_model=UsersListResponse)
async def get_users(
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    """
    Listar usuarios (administradores y scanners)

    Requiere: admin role
    Compatible con: UsersScreen
    """
    service = UserManagementService()
    users = await service.get_users(db)
    return UsersListResponse(users=[to_user_response(u) for u in users])


@router.post("/users/adduser", response_model=UserMessageResponse, status_code=status.HTTP_201_CREATED)
async def add_user(
    data: UserCreate,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    """
    Crear usuario

    Requiere: admin role
    Compatible con: AddUserScreen
    """
    service = UserManagementService()
    try:
        user = await service.create_user(
            db=db,
            email=data.email,
            password=data.password,
            first_name=data.firstName,
            last_name=data.lastName,
            phone=data.phone,
            role=data.role
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return UserMessageResponse(message="User created successfully", user=to_user_response(user))


@router.put("/users/update/{user_id}", response_model=UserMessageResponse)
@router.put("/users/{user_id}", response_model=UserMessageResponse)
async def update_user(
    user_id: str,
    data: UserUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    service = UserManagementService()
    try:
        user = await service.update_user(
            db=db,
            user_id=user_id,
            data=data.model_dump(exclude_unset=True),
            current_user_id=current_user.get("user_id")
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Usuario no encontrado")

    return UserMessageResponse(message="User updated successfully", user=to_user_response(user))


@router.delete("/users/delete/{user_id}", response_model=UserMessageResponse)
async def delete_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    """
    Eliminar usuario

    Requiere: admin role
    """
    service = UserManagementService()
    try:
        success = await service.delete_user(db, user_id, current_user.get("user_id"))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if not success:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Usuario no encontrado")

    return UserMessageResponse(message="User deleted successfully")


@router.post("/users/reset-password/{user_id}", response_model=PasswordResetResponse)
async def reset_user_password(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    """
    Reemplazar la contraseña por una temporal

    No hay envío de correo: la clave se devuelve una sola vez al admin para
    que la entregue al operador.

    Compatible con: EditUserScreen
    """
    service = UserManagementService()
    temporary_password = await service.reset_password(db, user_id)
    if temporary_password is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Usuario no encontrado")

    return PasswordResetResponse(
        message="Password reset successfully",
        temporaryPassword=temporary_password
    )

@router.get("/dashboard", response_model=DashboardStatsResponse)
async def get_dashboard_stats(
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_admin)
):
    """
    Totales de eventos, invitados y check-ins

    Compatible con: DashboardScreen
    """
    stats = await ReportService.get_dashboard_stats(db)
    return DashboardStatsResponse(**stats)
