import functools
import logging

from pymongo.errors import DuplicateKeyError, PyMongoError

from chatcore.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


def translate_store_errors(func):
    """Surface driver failures as ``StoreUnavailableError``.

    Duplicate keys pass through untouched; callers that expect them handle them.
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except DuplicateKeyError:
            raise
        except PyMongoError as exc:
            logger.error("Store operation %s failed: %s", func.__qualname__, exc)
            raise StoreUnavailableError("Message store is unavailable") from exc

    return wrapper
