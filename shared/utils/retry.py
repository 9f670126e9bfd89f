"""Utilidades para retry con backoff exponencial"""
import asyncio
import inspect
import logging
from typing import Callable, Any, Type, Tuple

logger = logging.getLogger(__name__)


async def retry_with_backoff(
    func: Callable,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,)
) -> Any:
    """
    Ejecutar función con retry y backoff exponencial

    Args:
        func: Función sin argumentos a ejecutar (async, sync o que retorne un awaitable)
        max_retries: Número máximo de reintentos (intentos totales = max_retries + 1)
        initial_delay: Delay inicial en segundos
        max_delay: Delay máximo en segundos
        exponential_base: Base para cálculo exponencial
        exceptions: Excepciones que deben trigger retry

    Returns:
        Resultado de la función. La última excepción se propaga si se agotan los reintentos.
    """
    delay = initial_delay

    for attempt in range(max_retries + 1):
        try:
            result = func()
            # Acepta funciones async y lambdas que devuelven una coroutine
            if inspect.isawaitable(result):
                result = await result
            return result
        except exceptions as e:
            if attempt == max_retries:
                raise
            logger.warning(
                f"Retry {attempt + 1}/{max_retries} tras {type(e).__name__}: {e}. "
                f"Próximo intento en {delay:.2f}s"
            )
            await asyncio.sleep(delay)
            delay = min(delay * exponential_base, max_delay)
