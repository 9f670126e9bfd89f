"""
Configuración de Celery para tareas asíncronas (envío de invitaciones)
"""
from celery import Celery
from kombu import Queue, Exchange
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

# Crear aplicación Celery
celery_app = Celery(
    "guest_checkin",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "services.invitations.tasks.invitation_tasks",
    ]
)

default_exchange = Exchange("default", type="direct")

celery_app.conf.task_queues = (
    # Cola default para invitaciones individuales
    Queue("default", default_exchange, routing_key="default"),
    # Cola de baja prioridad para envíos masivos por evento
    Queue("low_priority", default_exchange, routing_key="low"),
)

celery_app.conf.task_routes = {
    "send_event_invitations": {"queue": "low_priority"},
}

celery_app.conf.update(
    # Serialización
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    task_track_started=True,
    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,

    # Solo 1 tarea por worker a la vez
    worker_prefetch_multiplier=1,

    broker_pool_limit=settings.CELERY_REDIS_MAX_CONNECTIONS,
    redis_max_connections=settings.CELERY_REDIS_MAX_CONNECTIONS,
    broker_connection_retry_on_startup=True,

    # ACK late: confirmar tarea solo cuando termina
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,

    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",

    task_annotations={
        "send_event_invitations": {"rate_limit": "10/m"},
    },
)

logger.info(
    "Celery configurado - Broker: %s",
    settings.REDIS_URL.split("@")[-1] if "@" in settings.REDIS_URL else settings.REDIS_URL,
)
