import functools
import logging
import time

from nutripal.core import config
from nutripal.core.errors import CollaboratorError

logger = logging.getLogger(__name__)


def with_retry(service: str, max_attempts: int = None, base_delay: float = None,
               retry_on: tuple = (Exception,)):
    """
    Retry a collaborator call with exponential backoff.

    Args:
        service: Name used in logs and in the raised CollaboratorError
        max_attempts: Total attempts (default: config.RETRY_MAX_ATTEMPTS)
        base_delay: Seconds before the first retry, doubled each attempt
        retry_on: Exception types that trigger a retry; anything else propagates

    Raises:
        CollaboratorError: once every attempt has failed
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            # config is read per call, not at decoration
            attempts = max_attempts if max_attempts is not None else config.RETRY_MAX_ATTEMPTS
            delay = base_delay if base_delay is not None else config.RETRY_BASE_DELAY
            for attempt in range(attempts):
                try:
                    return func(*args, **kwargs)
                except CollaboratorError:
                    raise
                except retry_on as e:
                    if attempt < attempts - 1:
                        wait = delay * (2 ** attempt)
                        logger.warning(
                            f"⚠️ {service}.{func.__name__} failed (attempt {attempt + 1}/{attempts}): {e}. "
                            f"Retrying in {wait:.1f}s"
                        )
                        time.sleep(wait)
                    else:
                        logger.error(f"❌ {service}.{func.__name__} failed after {attempts} attempts: {e}")
                        raise CollaboratorError(service, str(e)) from e
        return wrapper
    return decorator
