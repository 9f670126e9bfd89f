"""API Gateway principal - Punto de entrada de la aplicación"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.exception_handlers import request_validation_exception_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from redis.exceptions import RedisError
import logging
from contextlib import asynccontextmanager

from app.core.config import settings
from shared.database import connection
from shared.database.connection import init_db, close_db, create_tables
from shared.cache.redis_client import init_redis, close_redis, get_redis
from shared.utils.rate_limiter import limiter, rate_limit_exceeded_handler
from services.scan_validation.services.errors import ScanValidationError, MalformedPayload

# Configurar logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle events de la aplicación"""
    # Startup
    logger.info("Iniciando aplicación...")
    await init_db()
    if settings.DB_CREATE_TABLES:
        await create_tables()
    await init_redis()
    logger.info("Aplicación iniciada")
    yield
    # Shutdown
    logger.info("Cerrando aplicación...")
    await close_db()
    await close_redis()
    logger.info("Aplicación cerrada")


# Crear aplicación FastAPI
app = FastAPI(
    title="Guest Check-in API",
    description="Backend para gestión de eventos, invitados y validación de QR en puerta",
    version="1.0.0",
    lifespan=lifespan
)

# En desarrollo, permitir todos los orígenes para facilitar testing
if settings.APP_ENV == "development":
    logger.info("Modo desarrollo: CORS configurado para permitir todos los orígenes")
    allow_origins = ["*"]
    allow_credentials = False  # No se puede usar credentials con allow_origins=["*"]
else:
    allow_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
    allow_credentials = True
    logger.info(f"CORS origins configurados: {allow_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=allow_credentials,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    max_age=3600,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


@app.exception_handler(ScanValidationError)
async def scan_validation_error_handler(request: Request, exc: ScanValidationError):
    """Rechazos del validador con forma {success: false, message, code}"""
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """El scanner espera el mismo sobre de error también para cuerpos inválidos"""
    if not request.url.path.endswith("/validate-scan"):
        return await request_validation_exception_handler(request, exc)

    fields = [str(err["loc"][-1]) for err in exc.errors() if err.get("loc")]
    message = "Datos de escaneo inválidos"
    if fields:
        message = f"{message}: {', '.join(fields)}"
    error = MalformedPayload(message)
    return JSONResponse(status_code=error.status_code, content=error.to_response())


# Incluir routers de cada servicio
from services.scan_validation.routes.validation import router as validation_router
from services.event_management.routes.events import router as events_router, catalog_router
from services.admin.routes.admin import router as admin_router
from services.admin.routes.auth import router as auth_router
from services.invitations.routes.invitations import router as invitations_router

app.include_router(validation_router, prefix="/api/events", tags=["scan-validation"])
app.include_router(events_router, prefix="/api/events", tags=["events"])
app.include_router(catalog_router, prefix="/api", tags=["events"])
app.include_router(auth_router, prefix="/api", tags=["auth"])
app.include_router(admin_router, prefix="/api", tags=["admin"])
app.include_router(invitations_router, prefix="/api/invitations", tags=["invitations"])


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "ok", "service": "guest-checkin-api"}


@app.get("/ready")
async def ready():
    """Ready check endpoint - verifica conexiones"""
    if connection.async_session_maker is None:
        return JSONResponse(status_code=503, content={"status": "not ready", "error": "database not initialized"})

    try:
        async with connection.async_session_maker() as session:
            await session.execute(text("SELECT 1"))

        redis = await get_redis()
        redis_status = "disabled"
        if redis is not None:
            await redis.ping()
            redis_status = "connected"

        return {"status": "ready", "database": "connected", "redis": redis_status}
    except (SQLAlchemyError, RedisError, OSError) as e:
        logger.error(f"Ready check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "not ready", "error": str(e)})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.APP_DEBUG
    )
