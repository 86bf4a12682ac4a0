"""
Request context for dashboard RPC calls.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from bizdash.protocol import JSONRPCRequest


@dataclass
class RequestContext:
    """
    Encapsulates the context of a single RPC call.

    Attributes:
        method: Invoked method name (e.g., "getDashboardData").
        request_id: Request identifier from the JSON-RPC request.
        timestamp: When the request was received (UTC).
        metadata: Additional context attached by the transport.
    """

    method: str
    request_id: str | int | None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for logging."""
        return {
            "method": self.method,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_request(
        cls,
        request: JSONRPCRequest,
        metadata: dict[str, Any] | None = None,
    ) -> RequestContext:
        """Create a RequestContext from a parsed JSON-RPC request."""
        return cls(
            method=request.method,
            request_id=request.id,
            timestamp=datetime.now(UTC),
            metadata=metadata or {},
        )
