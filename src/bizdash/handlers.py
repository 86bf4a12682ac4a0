"""
RPC method handlers for the dashboard.

Methods:
- healthcheck: service status and current timestamp
- fetchExternalData: snapshots from the sync source, not persisted
- syncDashboardData: pull from the sync source and persist
- getDashboardData: filtered list of records
- getDashboardSummary: aggregate report over all records
- createDashboardData: manual record creation

Handlers translate between wire dictionaries and the service; all
validation lives in bizdash.models.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from bizdash.logging import get_logger
from bizdash.routing import MethodRegistry, rpc_method

if TYPE_CHECKING:
    from bizdash.context import RequestContext
    from bizdash.service import DashboardService

logger = get_logger(__name__)

DASHBOARD_METHODS = (
    "healthcheck",
    "fetchExternalData",
    "syncDashboardData",
    "getDashboardData",
    "getDashboardSummary",
    "createDashboardData",
)


def register_dashboard_handlers(
    registry: MethodRegistry,
    service: DashboardService,
) -> MethodRegistry:
    """
    Register every dashboard method on ``registry``, bound to ``service``.

    Args:
        registry: Registry to populate.
        service: Service the handlers delegate to.

    Returns:
        The same registry, for chaining.
    """

    @rpc_method("healthcheck", registry)
    async def handle_healthcheck(
        _ctx: RequestContext, _params: dict[str, Any]
    ) -> dict[str, Any]:
        return await service.healthcheck()

    @rpc_method("fetchExternalData", registry)
    async def handle_fetch_external_data(
        _ctx: RequestContext, _params: dict[str, Any]
    ) -> list[dict[str, Any]]:
        snapshots = await service.fetch_external()
        return [s.to_dict() for s in snapshots]

    @rpc_method("syncDashboardData", registry)
    async def handle_sync_dashboard_data(
        ctx: RequestContext, _params: dict[str, Any]
    ) -> list[dict[str, Any]]:
        records = await service.sync()
        logger.info(
            "Sync requested",
            extra={"request_id": ctx.request_id, "persisted": len(records)},
        )
        return [r.to_dict() for r in records]

    @rpc_method("getDashboardData", registry)
    async def handle_get_dashboard_data(
        _ctx: RequestContext, params: dict[str, Any]
    ) -> list[dict[str, Any]]:
        # An empty params object means "no filter"
        records = await service.list(params or None)
        return [r.to_dict() for r in records]

    @rpc_method("getDashboardSummary", registry)
    async def handle_get_dashboard_summary(
        _ctx: RequestContext, _params: dict[str, Any]
    ) -> dict[str, Any]:
        report = await service.summary()
        return report.to_dict()

    @rpc_method("createDashboardData", registry)
    async def handle_create_dashboard_data(
        _ctx: RequestContext, params: dict[str, Any]
    ) -> dict[str, Any]:
        record = await service.create(params)
        return record.to_dict()

    return registry
