"""Ruta de login de operadores"""
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from shared.database.session import get_db
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.admin.models.admin import LoginRequest, LoginResponse
from services.admin.routes.admin import to_user_response
from services.admin.services.user_management_service import UserManagementService


router = APIRouter()


@router.post("/login", response_model=LoginResponse)
@limiter.limit(RATE_LIMITS["login"])
async def login(
    request: Request,
    credentials: LoginRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Login con email y contraseña

    Compatible con: LoginScreen ({message, token, user})
    """
    service = UserManagementService()
    result = await service.authenticate(db, credentials.email, credentials.password)

    if result is None:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"message": "Invalid email or password"}
        )

    return LoginResponse(token=result["token"], user=to_user_response(result["user"]))
