"""Response envelopes shared by operations and the HTTP surface."""
from typing import Any, Optional

import orjson
from aiohttp import web

from .exceptions import BrokerError


def _dumps(obj: Any) -> str:
    return orjson.dumps(obj).decode("utf-8")


def success(data: Any, message: str = "OK") -> dict[str, Any]:
    return {"success": True, "message": message, "data": data}


def failure(error: BrokerError) -> dict[str, Any]:
    return {"success": False, "error": error.to_dict()}


def json_response(
    payload: Any, status: int = 200, headers: Optional[dict] = None,
) -> web.Response:
    return web.json_response(payload, status=status, headers=headers, dumps=_dumps)


def error_response(error: BrokerError, headers: Optional[dict] = None) -> web.Response:
    return json_response(failure(error), status=error.status, headers=headers)
