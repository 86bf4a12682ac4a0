"""
JSON-RPC server for the dashboard service.

DashboardServer reads newline-delimited JSON-RPC 2.0 requests from stdin,
dispatches them through a MethodRegistry and writes responses to stdout.
"""

from __future__ import annotations

import asyncio
import sys
from typing import TextIO

from bizdash.config import AppConfig
from bizdash.context import RequestContext
from bizdash.errors import DashboardError
from bizdash.handlers import register_dashboard_handlers
from bizdash.logging import get_logger
from bizdash.protocol import (
    JSONRPCError,
    create_internal_error,
    create_method_not_found_error,
    dashboard_error_to_jsonrpc_error,
    format_error_response,
    format_success_response,
    parse_request,
)
from bizdash.routing import MethodRegistry
from bizdash.service import DashboardService
from bizdash.sources import create_sync_source
from bizdash.storage import MetricsStore, create_store

logger = get_logger(__name__)


def _log_dashboard_error(method: str | None, error: DashboardError) -> None:
    extra = {"method": method, "error_code": error.error_code, "error": error.message}
    if error.error_code == "invalid_argument":
        logger.warning("Request rejected", extra=extra)
    else:
        logger.error("Request failed", extra=extra)


async def process_request(
    request_json: str,
    registry: MethodRegistry,
) -> str | None:
    """
    Process a single JSON-RPC request and return the response.

    Args:
        request_json: Raw JSON string containing the request.
        registry: MethodRegistry with registered handlers.

    Returns:
        JSON string containing the response, or None for notifications.
    """
    request_id: str | int | None = None
    method: str | None = None

    try:
        request = parse_request(request_json)
        request_id = request.id
        method = request.method
        ctx = RequestContext.from_request(request)

        if request.is_notification:
            # Notifications run but never produce a response
            try:
                await registry.invoke(request.method, ctx, request.params)
            except Exception as e:
                logger.warning(
                    "Error processing notification",
                    extra={"method": request.method, "error": str(e)},
                )
            return None

        if request.method not in registry:
            raise create_method_not_found_error(request.method)

        result = await registry.invoke(request.method, ctx, request.params)
        return format_success_response(request_id, result).to_json()

    except JSONRPCError as e:
        return format_error_response(request_id, e).to_json()

    except DashboardError as e:
        _log_dashboard_error(method, e)
        if e.__cause__ is not None and e.error_code == "internal":
            logger.error(
                "Unhandled exception in handler",
                exc_info=e.__cause__,
                extra={"method": method},
            )
        jsonrpc_error = dashboard_error_to_jsonrpc_error(e)
        return format_error_response(request_id, jsonrpc_error).to_json()

    except Exception as e:
        logger.exception(
            "Unexpected error processing request",
            extra={"request_id": request_id, "error": str(e)},
        )
        jsonrpc_error = create_internal_error(
            message=f"Internal server error: {type(e).__name__}",
            details={"exception": str(e)},
        )
        return format_error_response(request_id, jsonrpc_error).to_json()


class DashboardServer:
    """
    Dashboard server that communicates via JSON-RPC 2.0 over stdio.

    Attributes:
        registry: MethodRegistry with registered handlers.
        name: Service name reported in lifecycle logs.
        store: Store initialized on startup and closed on shutdown.
        running: Whether the server is currently running.
    """

    def __init__(
        self,
        registry: MethodRegistry,
        store: MetricsStore | None = None,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
        name: str = "bizdash",
    ) -> None:
        self.registry = registry
        self.name = name
        self.store = store
        self._stdin = stdin if stdin is not None else sys.stdin
        self._stdout = stdout if stdout is not None else sys.stdout
        self.running = False

    async def handle_request(self, request_json: str) -> str | None:
        """Handle a single JSON-RPC request."""
        return await process_request(request_json, self.registry)

    async def run(self) -> None:
        """
        Run the server until stdin is closed or stop() is called.

        Each line read from stdin is treated as one JSON-RPC request.
        """
        if self.store is not None:
            await self.store.initialize()

        self.running = True
        logger.info(
            "Dashboard server starting",
            extra={"server": self.name, "methods": self.registry.list_methods()},
        )

        try:
            loop = asyncio.get_running_loop()
            reader = asyncio.StreamReader()
            protocol = asyncio.StreamReaderProtocol(reader)
            await loop.connect_read_pipe(lambda: protocol, self._stdin)

            while self.running:
                try:
                    line = await reader.readline()
                    if not line:
                        break

                    try:
                        request_json = line.decode("utf-8").strip()
                    except UnicodeDecodeError as e:
                        logger.warning(
                            "Invalid UTF-8 encoding in request",
                            extra={"error": str(e)},
                        )
                        error = create_internal_error(
                            "Invalid request encoding: UTF-8 required"
                        )
                        self._write_response(format_error_response(None, error).to_json())
                        continue

                    if not request_json:
                        continue

                    response = await self.handle_request(request_json)
                    if response:
                        self._write_response(response)

                except Exception as e:
                    logger.exception("Error in server loop", extra={"error": str(e)})
                    error = create_internal_error(str(e))
                    self._write_response(format_error_response(None, error).to_json())

        finally:
            self.running = False
            if self.store is not None:
                await self.store.close()
            logger.info("Dashboard server stopped", extra={"server": self.name})

    def stop(self) -> None:
        """Stop the server gracefully."""
        self.running = False

    def _write_response(self, response_json: str) -> None:
        self._stdout.write(response_json + "\n")
        self._stdout.flush()


def create_server(config: AppConfig | None = None) -> DashboardServer:
    """
    Wire store, sync source, service and handlers into a server.

    Args:
        config: Application config; defaults are used when omitted.

    Returns:
        Configured DashboardServer instance.
    """
    config = config or AppConfig()
    store = create_store(config.storage)
    source = create_sync_source(config.sync)
    service = DashboardService.from_config(config, store, source)
    registry = register_dashboard_handlers(MethodRegistry(), service)
    return DashboardServer(registry=registry, store=store, name=config.server.name)
