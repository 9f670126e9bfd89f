"""Dependencies de autenticación para FastAPI"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional, Dict
from uuid import UUID
from shared.auth.jwt_handler import verify_token
from shared.database.connection import get_db
from shared.database.models import User


ADMIN_ROLE = 'admin'
SCANNER_ROLES = ['scanner', 'admin']

security = HTTPBearer(auto_error=False)


def _principal_from_payload(payload: Dict) -> Optional[Dict]:
    user_id = payload.get('sub') or payload.get('user_id')
    if not user_id:
        return None
    return {
        'user_id': user_id,
        'email': payload.get('email'),
        'role': payload.get('role', 'scanner')
    }


async def _active_user(db: AsyncSession, user_id) -> Optional[User]:
    try:
        user_uuid = UUID(str(user_id))
    except ValueError:
        return None
    result = await db.execute(select(User).where(User.id == user_uuid))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        return None
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Dict:
    '''Obtener usuario actual desde token JWT'''
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Falta el token de autenticación',
            headers={'WWW-Authenticate': 'Bearer'},
        )

    payload = await verify_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Token inválido o expirado',
            headers={'WWW-Authenticate': 'Bearer'},
        )

    principal = _principal_from_payload(payload)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Token inválido: falta user_id',
        )

    # Usuarios eliminados o desactivados invalidan sus tokens vigentes
    user = await _active_user(db, principal['user_id'])
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Usuario inexistente o inactivo',
            headers={'WWW-Authenticate': 'Bearer'},
        )
    principal['email'] = user.email
    principal['role'] = user.role
    return principal


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[Dict]:
    '''Obtener usuario si está autenticado, None si no (el validador decide el rechazo)'''
    if credentials is None:
        return None

    payload = await verify_token(credentials.credentials)
    if payload is None:
        return None
    return _principal_from_payload(payload)


async def get_current_admin(
    current_user: Dict = Depends(get_current_user)
) -> Dict:
    '''Verificar que el usuario sea admin'''
    if current_user.get('role') != ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Se requieren permisos de administrador'
        )
    return current_user


async def get_current_scanner(
    current_user: Dict = Depends(get_current_user)
) -> Dict:
    '''Verificar que el usuario sea scanner o admin'''
    role = current_user.get('role')
    if role not in SCANNER_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Se requieren permisos de scanner'
        )
    return current_user
