"""
adapters.py - hosting runtime adapters for OAuthBroker.

Each adapter only translates shapes; all behaviour lives in oauth_broker.py.

  create_app(broker)          ASGI (Starlette) app for uvicorn / container hosts
  make_event_handler(broker)  handler(event, context) for API-gateway style
                              serverless functions (Tencent SCF, AWS Lambda v1/v2)
"""

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any
from urllib.parse import parse_qsl

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from oauth_broker import BrokerRequest, BrokerResponse, OAuthBroker

logger = logging.getLogger("cms-oauth")


# ---------------------------------------------------------------------------
# ASGI
# ---------------------------------------------------------------------------

def _first_values(pairs: Iterable[tuple[str, str]]) -> dict[str, str]:
    """Collapse repeated query parameters, keeping the first occurrence."""
    query: dict[str, str] = {}
    for key, value in pairs:
        query.setdefault(key, value)
    return query


def _from_starlette(request: Request) -> BrokerRequest:
    return BrokerRequest(
        method=request.method,
        path=request.url.path,
        query=_first_values(request.query_params.multi_items()),
        headers={k.lower(): v for k, v in request.headers.items()},
    )


def _to_starlette(response: BrokerResponse) -> Response:
    headers = dict(response.headers)
    media_type = headers.pop("content-type", None)
    return Response(
        content=response.body,
        status_code=response.status,
        headers=headers,
        media_type=media_type,
    )


def create_app(broker: OAuthBroker) -> Starlette:
    """Starlette app that sends every path and method to the broker."""

    async def _dispatch(request: Request) -> Response:
        result = await broker.handle(_from_starlette(request))
        logger.info("http: %s %s -> %d", request.method, request.url.path, result.status)
        return _to_starlette(result)

    return Starlette(routes=[
        Route("/{path:path}", _dispatch,
              methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]),
    ])


# ---------------------------------------------------------------------------
# Serverless events
# ---------------------------------------------------------------------------

def _event_method(event: Mapping[str, Any]) -> str:
    ctx = event.get("requestContext") or {}
    method = (
        event.get("httpMethod")
        or (ctx.get("http") or {}).get("method")
        or ctx.get("httpMethod")
        or "GET"
    )
    return str(method).upper()


def _event_path(event: Mapping[str, Any]) -> str:
    ctx = event.get("requestContext") or {}
    return str(
        event.get("path")
        or event.get("rawPath")
        or (ctx.get("http") or {}).get("path")
        or "/"
    )


def _event_query(event: Mapping[str, Any]) -> dict[str, str]:
    params = event.get("queryStringParameters")
    if params:
        return {str(k): "" if v is None else str(v) for k, v in params.items()}
    raw = event.get("rawQueryString")
    if raw:
        return _first_values(parse_qsl(raw, keep_blank_values=True))
    return {}


def event_to_request(event: Mapping[str, Any]) -> BrokerRequest:
    headers = event.get("headers") or {}
    return BrokerRequest(
        method=_event_method(event),
        path=_event_path(event),
        query=_event_query(event),
        headers={str(k).lower(): str(v) for k, v in headers.items()},
    )


def response_to_event(response: BrokerResponse) -> dict[str, Any]:
    return {
        "statusCode": response.status,
        "headers": dict(response.headers),
        "body": response.body,
        "isBase64Encoded": False,
    }


def make_event_handler(broker: OAuthBroker) -> Callable[[Mapping[str, Any], Any], dict[str, Any]]:
    """Synchronous ``handler(event, context)`` wrapping the async broker."""

    def handler(event: Mapping[str, Any], context: Any = None) -> dict[str, Any]:
        request = event_to_request(event or {})
        result = asyncio.run(broker.handle(request))
        logger.info("event: %s %s -> %d", request.method, request.path, result.status)
        return response_to_event(result)

    return handler
