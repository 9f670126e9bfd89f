# tests/conftest.py
"""
Fixtures comunes: SQLite temporal por test, datos semilla y cliente ASGI.

Redis y el rate limiting quedan deshabilitados; las variables se fijan antes
de importar la app porque Settings se instancia al importar.
"""
import os

os.environ["APP_ENV"] = "test"
os.environ["CACHE_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["RATE_LIMIT_STORAGE_URL"] = "memory://"
os.environ["DB_CREATE_TABLES"] = "false"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["QR_BASE_URL"] = "https://checkin.test/scan"

from datetime import date
from typing import Dict, Optional

import pytest
from httpx import AsyncClient, ASGITransport

from app.core.security import hash_password
from shared.auth.jwt_handler import create_access_token
from shared.database import connection
from shared.database.models import Event, Guest, ScanPermission, User
from shared.utils.qr_generator import generate_qr_token


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def database(tmp_path):
    """Engine sobre un archivo SQLite nuevo, con tablas creadas"""
    await connection.init_db(f"sqlite:///{tmp_path / 'checkin.db'}")
    await connection.create_tables()
    yield connection
    await connection.close_db()


@pytest.fixture
async def session(database):
    async with database.async_session_maker() as s:
        yield s


class Seed:
    """Helpers para poblar la base de datos de prueba"""

    def __init__(self, session):
        self.session = session

    async def user(self, role: str = "scanner", email: Optional[str] = None, password: str = "secret123") -> User:
        user = User(
            email=email or f"{role}-{generate_qr_token()[:8].lower()}@example.com",
            password_hash=hash_password(password),
            first_name=role.title(),
            last_name="Tester",
            role=role,
            is_active=True,
        )
        self.session.add(user)
        await self.session.commit()
        return user

    async def event(self, name: str = "Gala", **kwargs) -> Event:
        event = Event(
            name=name,
            event_date=kwargs.pop("event_date", date(2026, 12, 31)),
            location=kwargs.pop("location", "Salón principal"),
            **kwargs
        )
        self.session.add(event)
        await self.session.commit()
        return event

    async def guest(self, event: Event, type: str = "single", first_name: str = "Ana", **kwargs) -> Guest:
        guest = Guest(
            event_id=event.id,
            first_name=first_name,
            last_name=kwargs.pop("last_name", "Pérez"),
            phone=kwargs.pop("phone", "+56911111111"),
            type=type,
            consumed_scans=kwargs.pop("consumed_scans", 0),
            qr_token=kwargs.pop("qr_token", generate_qr_token()),
            **kwargs
        )
        self.session.add(guest)
        await self.session.commit()
        return guest

    async def permission(self, event: Event, user: User) -> ScanPermission:
        permission = ScanPermission(event_id=event.id, user_id=user.id)
        self.session.add(permission)
        await self.session.commit()
        return permission


@pytest.fixture
async def seed(session):
    return Seed(session)


def principal(user: User) -> Dict:
    """Principal tal como lo entrega get_current_user"""
    return {"user_id": str(user.id), "email": user.email, "role": user.role}


def auth_headers(user: User) -> Dict[str, str]:
    token = create_access_token({"sub": str(user.id), "email": user.email, "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def as_principal():
    return principal


@pytest.fixture
def headers_for():
    return auth_headers


@pytest.fixture
async def client(database):
    from main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
