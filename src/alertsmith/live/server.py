"""Live preview server.

- ``GET /api/alerts``: current AlertSet as JSON
- ``WS /live``: ``load``/``update``/``failure`` event stream; a new viewer
  first receives ``update`` with the current AlertSet
- ``GET /{path}``: the bundled preview page, ``index.html`` for unknown paths
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import FastAPI, WebSocket
from fastapi.responses import Response

from alertsmith.alerts import CurrentAlerts
from alertsmith.live.sessions import UPDATE, ViewerHub
from alertsmith.sources import read_source

logger = logging.getLogger(__name__)

RESOURCES_DIR = Path(__file__).parent / "resources"
INDEX = "/index.html"


def load_resources(directory: Path = RESOURCES_DIR) -> dict[str, bytes]:
    """Read the preview bundle, keyed by request path (``/<filename>``)."""
    resources: dict[str, bytes] = {}
    for path in sorted(directory.iterdir()):
        if path.is_file():
            resources[f"/{path.name}"] = read_source(path).encode("utf-8")
    if INDEX not in resources:
        logger.warning(f"No index.html in {directory}")
    return resources


def create_app(
    current: CurrentAlerts,
    hub: ViewerHub,
    resources: dict[str, bytes] | None = None,
) -> FastAPI:
    """Create the live preview application."""
    bundle = load_resources() if resources is None else resources

    app = FastAPI(title="alertsmith live preview", docs_url=None, redoc_url=None)
    app.state.current = current
    app.state.hub = hub

    @app.get("/api/alerts")
    async def get_alerts() -> dict[str, Any]:
        return current.get().to_payload()

    @app.websocket("/live")
    async def live(websocket: WebSocket) -> None:
        await websocket.accept()
        client = websocket.client
        address = f"{client.host}:{client.port}" if client else "unknown"
        session = hub.register(address)
        session.send(UPDATE, current.get().to_payload())
        sender = asyncio.create_task(session.deliver(websocket.send_text))
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        finally:
            hub.unregister(session)
            await sender

    @app.get("/{path:path}")
    async def resource(path: str) -> Response:
        key = f"/{path}"
        if key not in bundle:
            key = INDEX
        content = bundle.get(key, b"")
        media_type, _ = mimetypes.guess_type(key)
        return Response(content=content, media_type=media_type or "text/html")

    return app


async def serve(app: FastAPI, host: str, port: int) -> None:
    """Serve the app with uvicorn until it is told to exit."""
    config = uvicorn.Config(app, host=host, port=port, log_level="warning")
    server = uvicorn.Server(config)
    logger.info(f"Live preview listening on http://{host}:{port}/")
    await server.serve()
