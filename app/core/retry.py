"""Module de retry avec backoff exponentiel pour opérations asynchrones.

Utilisé pour rejouer les transactions courtes (vente, réception de commande)
lorsque PostgreSQL les annule pour une cause transitoire : deadlock,
échec de sérialisation ou connexion perdue.
"""

import logging
from collections.abc import Callable
from typing import Any, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATE PostgreSQL : serialization_failure, deadlock_detected
TRANSIENT_SQLSTATES = {"40001", "40P01"}


def is_transient_db_error(exc: BaseException) -> bool:
    """
    Indique si une erreur base de données peut être rejouée sans risque.

    Args:
        exc: Exception levée par SQLAlchemy

    Returns:
        True pour un deadlock, un échec de sérialisation ou une connexion invalidée
    """
    if not isinstance(exc, DBAPIError):
        return False
    if exc.connection_invalidated:
        return True
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    if sqlstate in TRANSIENT_SQLSTATES:
        return True
    return isinstance(exc, OperationalError) and sqlstate is None


def async_retry_with_backoff(
    max_attempts: int = 3,
    min_wait_seconds: int = 1,
    max_wait_seconds: int = 10,
    exceptions: tuple[type[Exception], ...] = (Exception,),
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Décorateur pour retry automatique avec backoff exponentiel (async).

    Args:
        max_attempts: Nombre maximum de tentatives (défaut: 3)
        min_wait_seconds: Attente minimale entre tentatives en secondes (défaut: 1)
        max_wait_seconds: Attente maximale entre tentatives en secondes (défaut: 10)
        exceptions: Tuple des exceptions qui déclenchent un retry

    Returns:
        Décorateur de fonction

    Example:
        ```python
        @async_retry_with_backoff(max_attempts=3, exceptions=(ConnectionError,))
        async def ping_redis():
            await redis_client.ping()
        ```
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        return retry(
            retry=retry_if_exception_type(exceptions),
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(
                min=min_wait_seconds,
                max=max_wait_seconds,
            ),
            before_sleep=_log_retry_attempt,
            reraise=True,
        )(func)

    return decorator


def _log_retry_attempt(retry_state: Any) -> None:
    """
    Logger les tentatives de retry pour observabilité.

    Args:
        retry_state: État de la tentative de retry
    """
    exception = retry_state.outcome.exception()
    logger.warning(
        f"Retry attempt {retry_state.attempt_number} after {retry_state.seconds_since_start:.2f}s "
        f"for {retry_state.fn.__name__} - Exception: {exception}"
    )


async def retry_async_operation(
    operation: Callable[..., Any],
    *args: Any,
    max_attempts: int = 3,
    min_wait_seconds: float = 0.1,
    max_wait_seconds: float = 2,
    should_retry: Callable[[BaseException], bool] = is_transient_db_error,
    **kwargs: Any,
) -> Any:
    """
    Exécute une opération async avec retry et backoff exponentiel.

    Args:
        operation: Fonction async à exécuter (doit ouvrir sa propre transaction)
        *args: Arguments positionnels pour operation
        max_attempts: Nombre maximum de tentatives
        min_wait_seconds: Attente minimale entre tentatives (secondes)
        max_wait_seconds: Attente maximale entre tentatives (secondes)
        should_retry: Prédicat décidant si l'exception est transitoire
        **kwargs: Arguments keyword pour operation

    Returns:
        Résultat de l'opération

    Raises:
        Exception: La dernière exception si toutes les tentatives échouent,
            ou immédiatement si elle n'est pas transitoire

    Example:
        ```python
        sale = await retry_async_operation(_persist_sale, db, ctx, data, max_attempts=3)
        ```
    """
    attempt = 0

    async for attempt_state in AsyncRetrying(
        retry=retry_if_exception(should_retry),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(min=min_wait_seconds, max=max_wait_seconds),
        reraise=True,
    ):
        with attempt_state:
            attempt += 1
            if attempt > 1:
                logger.info(f"Retry attempt {attempt}/{max_attempts} for {operation.__name__}")

            return await operation(*args, **kwargs)

    # Jamais atteint (reraise=True) mais requis pour la vérification de type
    raise RetryError("Max retries exceeded")
