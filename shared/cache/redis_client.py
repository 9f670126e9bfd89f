"""Cliente Redis para cache de reportes"""
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError
import json
from typing import Optional, Any
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None
redis_pool: Optional[ConnectionPool] = None


async def init_redis():
    """Inicializar conexión a Redis con pool de conexiones"""
    global redis_client, redis_pool

    if not settings.CACHE_ENABLED:
        logger.info("Cache deshabilitado (CACHE_ENABLED=false), Redis no se inicializa")
        return

    # Crear pool de conexiones
    redis_pool = ConnectionPool.from_url(
        settings.REDIS_URL,
        password=settings.REDIS_PASSWORD,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_keepalive=True,
        retry_on_timeout=True,
        health_check_interval=30,  # Health check cada 30s
    )

    redis_client = redis.Redis(connection_pool=redis_pool)

    # Test connection
    try:
        await redis_client.ping()
        logger.info(f"Redis conectado exitosamente (pool max_connections={settings.REDIS_MAX_CONNECTIONS})")
    except RedisError as e:
        logger.error(f"Error conectando a Redis: {e}")


async def get_redis() -> Optional[redis.Redis]:
    """Obtener cliente Redis (None si el cache está deshabilitado)"""
    if redis_client is None:
        await init_redis()
    return redis_client


async def close_redis():
    """Cerrar conexión a Redis y pool"""
    global redis_client, redis_pool
    if redis_client:
        await redis_client.aclose()
        redis_client = None
    if redis_pool:
        await redis_pool.disconnect()
        redis_pool = None
    logger.info("Redis desconectado")


async def cache_get(key: str) -> Optional[Any]:
    """Obtener valor del cache"""
    redis_conn = await get_redis()
    if redis_conn is None:
        return None
    try:
        value = await redis_conn.get(key)
    except RedisError as e:
        logger.warning(f"Cache no disponible leyendo {key}: {e}")
        return None
    if value:
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return None


async def cache_set(key: str, value: Any, expire: int = 3600):
    """Guardar valor en cache"""
    redis_conn = await get_redis()
    if redis_conn is None:
        return
    if isinstance(value, (dict, list)):
        value = json.dumps(value, default=str)
    try:
        await redis_conn.setex(key, expire, value)
    except RedisError as e:
        logger.warning(f"Cache no disponible guardando {key}: {e}")


async def cache_delete(key: str):
    """Eliminar del cache"""
    redis_conn = await get_redis()
    if redis_conn is None:
        return
    try:
        await redis_conn.delete(key)
    except RedisError as e:
        logger.warning(f"Cache no disponible eliminando {key}: {e}")
