"""Tareas asíncronas para preparar invitaciones de eventos"""
import asyncio
import logging

from shared.cache.celery_app import celery_app

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper para ejecutar coroutines en contexto síncrono de Celery"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _dispatch(event_id: str, message: str, channel: str):
    from shared.database import connection
    from services.invitations.services.invitation_service import InvitationService

    await connection.init_db()
    try:
        async with connection.async_session_maker() as db:
            return await InvitationService.dispatch_invitations(db, event_id, message, channel)
    finally:
        await connection.close_db()


@celery_app.task(
    name="send_event_invitations",
    bind=True,
    autoretry_for=(OSError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 2},
)
def send_event_invitations_task(self, event_id: str, message: str, channel: str):
    """
    Tarea Celery que genera las invitaciones de todos los invitados de un evento

    Reintenta solo ante errores de conexión; un evento inexistente no se reintenta.
    """
    logger.info(f"[CELERY] Preparando invitaciones del evento {event_id} por {channel}")
    try:
        result = run_async(_dispatch(event_id, message, channel))
    except ValueError as e:
        logger.error(f"[CELERY] Invitaciones no generadas para {event_id}: {e}")
        return {"eventId": event_id, "error": str(e)}

    logger.info(f"[CELERY] Invitaciones del evento {event_id}: {result}")
    return result
