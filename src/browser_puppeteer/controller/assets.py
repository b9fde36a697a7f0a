"""Plain HTTP GET serving of the agent bundle on the WebSocket port."""

from __future__ import annotations

import logging
import mimetypes
from http import HTTPStatus
from pathlib import Path
from urllib.parse import unquote, urlsplit

from websockets.asyncio.server import ServerConnection
from websockets.datastructures import Headers
from websockets.http11 import Request, Response

logger = logging.getLogger(__name__)


def resolve_asset(root: Path | None, request_path: str) -> Path | None:
    """Map a request path onto a file under *root*, or None.

    Paths escaping *root* resolve to None.  ``/`` maps to ``index.html``.
    """
    if root is None:
        return None
    relative = unquote(urlsplit(request_path).path).lstrip("/") or "index.html"
    candidate = (root / relative).resolve()
    if not candidate.is_relative_to(root) or not candidate.is_file():
        return None
    return candidate


def is_websocket_upgrade(request: Request) -> bool:
    return request.headers.get("Upgrade", "").lower() == "websocket"


def static_asset_handler(assets_dir: Path | None):
    """Build a ``process_request`` hook answering non-upgrade requests from *assets_dir*."""
    root = assets_dir.resolve() if assets_dir is not None else None

    def process_request(connection: ServerConnection, request: Request) -> Response | None:
        if is_websocket_upgrade(request):
            return None

        path = resolve_asset(root, request.path)
        if path is None:
            logger.debug("404 %s", request.path)
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")

        body = path.read_bytes()
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        headers = Headers(
            [
                ("Content-Type", content_type),
                ("Content-Length", str(len(body))),
                ("Connection", "close"),
            ]
        )
        logger.debug("200 %s (%d bytes)", request.path, len(body))
        return Response(HTTPStatus.OK.value, HTTPStatus.OK.phrase, headers, body)

    return process_request
