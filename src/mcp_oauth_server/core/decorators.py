"""Decorators for the MCP OAuth server."""

import functools
import time
import traceback
import uuid
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from .exceptions import MCPToolError, OAuthError
from .logging import logger, request_id_ctx

P = ParamSpec("P")
R = TypeVar("R")


def track_request(
    tool_name: str,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Decorator for OAuth MCP tools: request id, timing and error translation.

    An ``OAuthError`` raised by the tool is a client mistake, not a server
    failure. It is logged as a warning and re-raised as ``MCPToolError`` carrying
    the RFC 6749 error code and description, so the MCP client sees e.g.
    ``invalid_grant: PKCE verification failed``. Any other exception is logged
    with its traceback and propagates unchanged.

    Argument values are never logged, since most tools receive code verifiers,
    tokens or passwords.

    Args:
        tool_name: Name of the tool being tracked

    Returns:
        Decorated function with request tracking
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            context_token = request_id_ctx.set(uuid.uuid4().hex[:8])
            started = time.perf_counter()

            logger.info("Starting %s request", tool_name)
            logger.debug("Argument names: %s", sorted(kwargs))

            try:
                result = await func(*args, **kwargs)
            except OAuthError as e:
                logger.warning(
                    "Rejected %s after %.2fs: %s",
                    tool_name,
                    time.perf_counter() - started,
                    e,
                )
                raise MCPToolError(f"{e.error}: {e.description}") from e
            except Exception as e:
                logger.error(
                    "Failed %s after %.2fs: %s",
                    tool_name,
                    time.perf_counter() - started,
                    e,
                )
                logger.debug("Traceback: %s", traceback.format_exc())
                raise
            else:
                logger.info(
                    "Completed %s in %.2fs", tool_name, time.perf_counter() - started
                )
            finally:
                request_id_ctx.reset(context_token)

            return result

        return wrapper

    return decorator
