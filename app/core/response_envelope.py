from __future__ import annotations

import json
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from app.core.errors import build_envelope

_SUCCESS_CODES = {200: ("ok", "OK"), 201: ("created", "Created"), 202: ("accepted", "Accepted")}


def _is_enveloped(payload: Any) -> bool:
    return isinstance(payload, dict) and "code" in payload and "message" in payload and (
        "data" in payload or "details" in payload
    )


def _rebuild(response: Response, status_code: int, content: dict) -> JSONResponse:
    new_response = JSONResponse(status_code=status_code, content=content)
    for key, value in response.headers.items():
        if key.lower() in {"content-length", "content-type"}:
            continue
        new_response.headers[key] = value
    return new_response


class ResponseEnvelopeMiddleware(BaseHTTPMiddleware):
    """Wrap successful JSON bodies as ``{code, message, data, details}``."""

    async def dispatch(self, request, call_next) -> Response:
        response = await call_next(request)
        if response.status_code < 200 or response.status_code >= 300:
            return response

        code, message = _SUCCESS_CODES.get(response.status_code, ("ok", "OK"))
        if response.status_code == 204:
            return _rebuild(response, 200, build_envelope(code, message))
        if response.headers.get("content-type", "").split(";")[0] != "application/json":
            return response

        body = b"".join([chunk async for chunk in response.body_iterator])
        try:
            payload = json.loads(body) if body else None
        except ValueError:
            return Response(
                content=body,
                status_code=response.status_code,
                headers=dict(response.headers),
                media_type=response.media_type,
            )
        if _is_enveloped(payload):
            return _rebuild(response, response.status_code, payload)
        return _rebuild(response, response.status_code, build_envelope(code, message, payload))


def register_response_envelope(app) -> None:
    app.add_middleware(ResponseEnvelopeMiddleware)
