from __future__ import annotations

import json
import logging
import urllib.parse
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .constants import NOT_CONNECTED, WEBHOOK_SECRET_HEADER
from .exceptions import BridgeError, NotConnectedError, ValidationError
from .session import MediaContent, MediaKind, OutboundContent, TextContent
from .supervisor import ConnectionState

if TYPE_CHECKING:
    from .bridge import Bridge

logger = logging.getLogger(__name__)

_PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": f"Content-Type, {WEBHOOK_SECRET_HEADER}",
}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _read_json(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ValidationError("Invalid JSON") from e
    if not isinstance(data, dict):
        raise ValidationError("Expected a JSON object")
    return data


def _media_content(url: str, media_type: str, caption: str) -> MediaContent:
    if media_type in ("image", "video"):
        kind: MediaKind = "image" if media_type == "image" else "video"
        return MediaContent(kind=kind, url=url, caption=caption)
    # Anything else goes out as a generic document.
    path = urllib.parse.urlsplit(url).path
    filename = urllib.parse.unquote(path.rsplit("/", 1)[-1]) or "document"
    return MediaContent(
        kind="document",
        url=url,
        caption=caption,
        filename=filename,
        mimetype="application/octet-stream",
    )


def _outbound_content(data: dict[str, Any]) -> OutboundContent:
    media_url = data.get("media_url")
    if media_url:
        return _media_content(
            str(media_url), str(data.get("media_type") or "document"), str(data.get("caption") or "")
        )
    text = data.get("text") or data.get("message") or ""
    if not text:
        raise ValidationError("Missing 'text' field")
    return TextContent(text=str(text))


def create_app(bridge: Bridge, *, manage_lifespan: bool = True) -> FastAPI:
    """
    Build the HTTP control surface for `bridge`.

    With `manage_lifespan`, server startup starts the bridge and server
    shutdown stops it.
    """

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if manage_lifespan:
            await bridge.start()
        try:
            yield
        finally:
            if manage_lifespan:
                await bridge.shutdown()

    app = FastAPI(
        title="wabridge",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    supervisor = bridge.supervisor

    @app.middleware("http")
    async def _cors(request: Request, call_next):  # type: ignore[no-untyped-def]
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=_PREFLIGHT_HEADERS)
        resp = await call_next(request)
        resp.headers["Access-Control-Allow-Origin"] = "*"
        return resp

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # Unknown paths and known paths with the wrong method look the same.
        if exc.status_code in (404, 405):
            return _error(404, "Not found")
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(ValidationError)
    async def _validation_error(_request: Request, exc: ValidationError) -> JSONResponse:
        return _error(400, str(exc))

    @app.get("/status")
    async def status() -> dict[str, Any]:
        info = supervisor.info
        return {
            "status": info.state.value,
            "phone": info.connected_identity,
            "has_qr": info.state is ConnectionState.PAIRING_READY and bool(info.pairing_payload),
            "error": info.last_error,
        }

    @app.get("/qr")
    async def qr() -> dict[str, Any]:
        info = supervisor.info
        if info.state is ConnectionState.PAIRING_READY and info.pairing_payload:
            return {"available": True, "qr_data_url": info.pairing_payload}
        return {"available": False, "qr_data_url": ""}

    @app.post("/send")
    async def send(request: Request) -> Any:
        data = await _read_json(request)
        to = data.get("to")
        if not to:
            return _error(400, "Missing 'to' field")
        content = _outbound_content(data)
        try:
            message_id = await supervisor.send(str(to), content)
        except BridgeError as e:
            logger.warning("send to %s failed: %s", to, e)
            return _error(500, str(e))
        return {"messageId": message_id}

    @app.post("/resolve-numbers")
    async def resolve_numbers(request: Request) -> Any:
        data = await _read_json(request)
        phones = data.get("phones") or []
        if not isinstance(phones, list) or not phones:
            return _error(400, "Missing 'phones' array")
        if not supervisor.connected:
            return _error(503, NOT_CONNECTED)
        try:
            resolved = await supervisor.resolve_numbers([str(p) for p in phones])
        except NotConnectedError as e:
            return _error(503, str(e))
        return {"resolved": resolved, "total_mappings": len(bridge.identities)}

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"ok": True, "uptime": bridge.uptime()}

    return app
