"""
JSON-RPC 2.0 framing for the dashboard service.

Requests arrive one per line. Dashboard methods take named parameters only,
so ``params`` must be an object, ``null`` or absent.

Error codes:
- -32700 / -32600 / -32601 / -32603: standard JSON-RPC protocol errors
- -32602: invalid params, also used for every ValidationError
- -32003 / -32004 / -32006 / -32099: DashboardError categories
- -32000: any DashboardError code without its own mapping
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from bizdash.errors import DashboardError

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

ERROR_CODE_MAP: dict[str, int] = {
    "invalid_argument": INVALID_PARAMS,
    "not_found": -32003,
    "storage_failure": -32004,
    "unavailable": -32006,
    "internal": -32099,
}

DEFAULT_SERVER_ERROR = -32000

JSONRPC_VERSION = "2.0"


class JSONRPCError(Exception):
    """
    Error object of a JSON-RPC response; raised inside the server and
    serialized into the ``error`` member.
    """

    def __init__(
        self,
        code: int,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error

    def __repr__(self) -> str:
        return f"JSONRPCError(code={self.code}, message={self.message!r}, data={self.data!r})"


@dataclass
class JSONRPCRequest:
    """A validated request; ``params`` is always a dict."""

    jsonrpc: str
    id: str | int | None
    method: str
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def is_notification(self) -> bool:
        """True when the request carries no id and expects no response."""
        return self.id is None


@dataclass
class JSONRPCResponse:
    """A response carrying either ``result`` or ``error``."""

    jsonrpc: str
    id: str | int | None
    result: Any | None = None
    error: JSONRPCError | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.is_error:
            body["error"] = self.error.to_dict()
        else:
            body["result"] = self.result
        return body

    def to_json(self) -> str:
        """Serialize on a single line."""
        return json.dumps(self.to_dict(), separators=(",", ":"))


def _invalid_request(reason: str) -> JSONRPCError:
    return JSONRPCError(code=INVALID_REQUEST, message=f"Invalid Request: {reason}")


def parse_request(request_json: str) -> JSONRPCRequest:
    """
    Decode and validate one request line.

    Args:
        request_json: Raw request text.

    Returns:
        The parsed request.

    Raises:
        JSONRPCError: PARSE_ERROR for malformed JSON, INVALID_REQUEST for a
            structurally wrong envelope, INVALID_PARAMS for positional params.

    Example:
        >>> parse_request('{"jsonrpc":"2.0","id":1,"method":"getDashboardSummary"}').method
        'getDashboardSummary'
    """
    try:
        data = json.loads(request_json)
    except json.JSONDecodeError as e:
        raise JSONRPCError(
            code=PARSE_ERROR,
            message=f"Parse error: {e.msg} at position {e.pos}",
        ) from e

    if not isinstance(data, dict):
        raise _invalid_request("expected a JSON object")

    version = data.get("jsonrpc")
    if version != JSONRPC_VERSION:
        raise _invalid_request(
            "missing 'jsonrpc' member"
            if version is None
            else f"unsupported jsonrpc version {version!r}"
        )

    method = data.get("method")
    if not isinstance(method, str) or not method:
        raise _invalid_request("'method' must be a non-empty string")

    request_id = data.get("id")
    if request_id is not None and (
        isinstance(request_id, bool) or not isinstance(request_id, (str, int, float))
    ):
        raise _invalid_request("'id' must be a string, number or null")

    params = data.get("params")
    if params is None:
        params = {}
    elif not isinstance(params, dict):
        raise JSONRPCError(
            code=INVALID_PARAMS,
            message="Invalid params: named parameters required",
            data={
                "error_code": "invalid_argument",
                "message": "Positional params are not supported",
                "details": {"fields": {"params": "must be an object"}},
            },
        )

    return JSONRPCRequest(
        jsonrpc=JSONRPC_VERSION,
        id=request_id,
        method=method,
        params=params,
    )


def format_success_response(request_id: str | int | None, result: Any) -> JSONRPCResponse:
    return JSONRPCResponse(jsonrpc=JSONRPC_VERSION, id=request_id, result=result)


def format_error_response(
    request_id: str | int | None, error: JSONRPCError
) -> JSONRPCResponse:
    """Build an error response; ``request_id`` is None when the id is unknown."""
    return JSONRPCResponse(jsonrpc=JSONRPC_VERSION, id=request_id, error=error)


def dashboard_error_to_jsonrpc_error(error: DashboardError) -> JSONRPCError:
    """
    Map a DashboardError onto the wire.

    The JSON-RPC code comes from ERROR_CODE_MAP; ``data`` carries the full
    ``error.to_dict()`` so clients see ``error_code`` and any violated fields.

    Example:
        >>> from bizdash.errors import ValidationError
        >>> err = ValidationError("Invalid filter: limit", fields={"limit": "too big"})
        >>> dashboard_error_to_jsonrpc_error(err).code
        -32602
    """
    return JSONRPCError(
        code=ERROR_CODE_MAP.get(error.error_code, DEFAULT_SERVER_ERROR),
        message=error.message,
        data=error.to_dict(),
    )


def create_method_not_found_error(method: str) -> JSONRPCError:
    return JSONRPCError(
        code=METHOD_NOT_FOUND,
        message=f"Method not found: {method}",
        data={
            "error_code": "not_found",
            "message": f"Method '{method}' is not registered",
            "details": {"method": method},
        },
    )


def create_internal_error(
    message: str, details: dict[str, Any] | None = None
) -> JSONRPCError:
    """Wrap an unexpected failure as a JSON-RPC internal error."""
    return JSONRPCError(
        code=INTERNAL_ERROR,
        message=message,
        data={"error_code": "internal", "message": message, "details": details or {}},
    )
