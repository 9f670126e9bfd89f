"""Servicio para gestión de usuarios (administradores y scanners) y login"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import Dict, List, Optional
import logging
import secrets

from app.core.security import hash_password, verify_password
from shared.auth.jwt_handler import create_access_token
from shared.database.models import User
from services.scan_validation.services.ledger import parse_uuid

logger = logging.getLogger(__name__)

VALID_ROLES = ["admin", "scanner"]

# Campos editables (clave del request -> columna)
USER_FIELDS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "phone": "phone",
    "isActive": "is_active",
}


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class UserManagementService:
    """Servicio para operaciones con usuarios"""

    async def get_users(self, db: AsyncSession) -> List[User]:
        stmt = select(User).order_by(User.created_at.desc())
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def get_user_by_id(self, db: AsyncSession, user_id: str) -> Optional[User]:
        user_uuid = parse_uuid(user_id)
        if user_uuid is None:
            return None
        result = await db.execute(select(User).where(User.id == user_uuid))
        return result.scalar_one_or_none()

    async def get_user_by_email(self, db: AsyncSession, email: str) -> Optional[User]:
        stmt = select(User).where(func.lower(User.email) == _normalize_email(email))
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def create_user(
        self,
        db: AsyncSession,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
        role: str = "scanner"
    ) -> User:
        """
        Crear usuario con contraseña hasheada

        Raises:
            ValueError: si el rol es inválido o el email ya existe
        """
        if role not in VALID_ROLES:
            raise ValueError(f"Rol inválido. Debe ser uno de: {', '.join(VALID_ROLES)}")

        if await self.get_user_by_email(db, email):
            raise ValueError(f"El email {email} ya está registrado")

        user = User(
            email=_normalize_email(email),
            password_hash=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            role=role,
            is_active=True,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)

        logger.info(f"Usuario creado: {user.id} ({user.email}, rol={user.role})")
        return user

    async def update_user(
        self,
        db: AsyncSession,
        user_id: str,
        data: Dict,
        current_user_id: str
    ) -> Optional[User]:
        """
        Actualizar datos del usuario

        Raises:
            ValueError: rol inválido, email duplicado o auto-degradación
        """
        user = await self.get_user_by_id(db, user_id)
        if not user:
            return None

        role = data.get("role")
        if role is not None:
            if role not in VALID_ROLES:
                raise ValueError(f"Rol inválido. Debe ser uno de: {', '.join(VALID_ROLES)}")
            if str(user.id) == str(current_user_id) and role != user.role:
                raise ValueError("No puedes cambiar tu propio rol")
            user.role = role

        email = data.get("email")
        if email and _normalize_email(email) != user.email:
            existing = await self.get_user_by_email(db, email)
            if existing and existing.id != user.id:
                raise ValueError(f"El email {email} ya está registrado")
            user.email = _normalize_email(email)

        if data.get("password"):
            user.password_hash = hash_password(data["password"])

        for key, column in USER_FIELDS.items():
            if data.get(key) is not None:
                setattr(user, column, data[key])

        await db.commit()
        await db.refresh(user)
        logger.info(f"Usuario actualizado: {user.id}")
        return user

    async def delete_user(self, db: AsyncSession, user_id: str, current_user_id: str) -> bool:
        """
        Eliminar usuario; sus escaneos históricos quedan sin operador

        Raises:
            ValueError: si intenta eliminarse a sí mismo
        """
        user = await self.get_user_by_id(db, user_id)
        if not user:
            return False
        if str(user.id) == str(current_user_id):
            raise ValueError("No puedes eliminar tu propio usuario")

        await db.delete(user)
        await db.commit()
        logger.info(f"Usuario eliminado: {user_id}")
        return True

    async def reset_password(self, db: AsyncSession, user_id: str) -> Optional[str]:
        """
        Asignar una contraseña temporal al usuario

        Returns:
            La contraseña temporal en claro o None si el usuario no existe
        """
        user = await self.get_user_by_id(db, user_id)
        if not user:
            return None

        temporary_password = secrets.token_urlsafe(9)
        user.password_hash = hash_password(temporary_password)
        await db.commit()
        logger.info(f"Contraseña restablecida para usuario {user.id}")
        return temporary_password

    async def authenticate(self, db: AsyncSession, email: str, password: str) -> Optional[Dict]:
        """
        Verificar credenciales y emitir el token de acceso

        Returns:
            {"token": str, "user": User} o None si las credenciales no son válidas
        """
        user = await self.get_user_by_email(db, email)
        if not user or not user.is_active or not verify_password(password, user.password_hash):
            logger.info(f"Login fallido para {email}")
            return None

        token = create_access_token({
            "sub": str(user.id),
            "email": user.email,
            "role": user.role,
        })
        logger.info(f"Login exitoso: {user.id} (rol={user.role})")
        return {"token": token, "user": user}
