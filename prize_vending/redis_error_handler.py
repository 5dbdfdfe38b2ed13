"""
Error handling for maintenance operations backed by Redis.

Wraps async facade methods so that storage failures come back as a
standard ``{"success": False, "message": ...}`` response instead of an
exception.
"""

from functools import wraps
from typing import Any, Callable, TypeVar

from prize_vending.core.exceptions import RedisConnectionError, VendingSystemError
from prize_vending.loggers import logger


F = TypeVar("F", bound=Callable[..., Any])


def redis_error_handler(success_message: str) -> Callable[[F], F]:
    """
    Decorator for handling Redis errors and providing unified responses.

    Args:
        success_message: The message to return on successful operation.

    Returns:
        Decorated function with error handling.

    Example:
        @redis_error_handler("Slot counters reset")
        async def reset_slots(self):
            return await self._allocator.reset_all()
    """
    def decorator(func: F) -> F:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> dict[str, Any]:
            try:
                result = await func(*args, **kwargs)
            except RedisConnectionError as e:
                logger.error(f"Redis connection error: {e}")
                return {"success": False, "message": f"Redis connection error: {e}"}
            except VendingSystemError as e:
                logger.error(f"{func.__name__} failed: {e}")
                return {"success": False, "message": e.message, "data": e.to_dict()}

            response: dict[str, Any] = {"success": True, "message": success_message}
            if result is not None:
                response["data"] = result
            return response
        return wrapper  # type: ignore
    return decorator
