"""
Method routing and registration for the dashboard RPC server.

This module provides:
- MethodRegistry: maps method names to async handler functions
- rpc_method: a decorator for registering handlers on a registry
- Handler dispatch with error wrapping
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from bizdash.errors import DashboardError, InternalError, NotFoundError

if TYPE_CHECKING:
    from bizdash.context import RequestContext

MethodHandler = Callable[["RequestContext", dict[str, Any]], Awaitable[Any]]


class MethodRegistry:
    """
    Registry for mapping RPC method names to handler functions.

    Example:
        >>> registry = MethodRegistry()
        >>> registry.register("healthcheck", handle_healthcheck)
        >>> result = await registry.invoke("healthcheck", ctx, {})
    """

    def __init__(self) -> None:
        self._handlers: dict[str, MethodHandler] = {}

    def register(self, name: str, handler: MethodHandler) -> None:
        """
        Register a handler under the given method name.

        Raises:
            ValueError: If a handler is already registered for the name.
        """
        if name in self._handlers:
            raise ValueError(f"Method '{name}' is already registered")
        self._handlers[name] = handler

    def get_handler(self, name: str) -> MethodHandler | None:
        """Return the handler for a method, or None if not found."""
        return self._handlers.get(name)

    def list_methods(self) -> list[str]:
        """List registered method names in registration order."""
        return list(self._handlers)

    async def invoke(
        self,
        name: str,
        ctx: RequestContext,
        params: dict[str, Any],
    ) -> Any:
        """
        Invoke a handler by method name.

        DashboardErrors raised by the handler propagate unchanged; any other
        exception is wrapped in InternalError.

        Raises:
            NotFoundError: If the method is not registered.
            DashboardError: If the handler fails.
        """
        handler = self.get_handler(name)
        if handler is None:
            raise NotFoundError(
                f"Method '{name}' is not registered",
                details={"method": name},
            )

        try:
            return await handler(ctx, params)
        except DashboardError:
            raise
        except Exception as e:
            raise InternalError(
                f"Internal error in method '{name}': {e!s}",
                details={"method": name, "exception_type": type(e).__name__},
            ) from e

    def __contains__(self, name: str) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


def rpc_method(
    name: str,
    registry: MethodRegistry,
) -> Callable[[MethodHandler], MethodHandler]:
    """
    Decorator for registering a function as an RPC method handler.

    Example:
        >>> @rpc_method("healthcheck", registry)
        ... async def handle_healthcheck(ctx: RequestContext, params: dict) -> dict:
        ...     return {"status": "ok"}
    """

    def decorator(handler: MethodHandler) -> MethodHandler:
        registry.register(name, handler)
        return handler

    return decorator
