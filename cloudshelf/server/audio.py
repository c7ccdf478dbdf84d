"""
Local HTTP server that streams library files to players by absolute path.

Cloud-only files are never read on the request path: the server answers
``202`` with ``X-Download-Status: downloading`` and starts the download in the
background, so the player can retry once the file has landed.
"""

import logging
import os
from urllib.parse import unquote

from aiohttp import web

from cloudshelf.core.service import CloudCacheService

log = logging.getLogger(__name__)

SERVICE_KEY = web.AppKey("service", CloudCacheService)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Range",
    "Access-Control-Expose-Headers": (
        "Content-Range, Accept-Ranges, Content-Length, Content-Type, X-Download-Status"
    ),
}


def _requested_path(request: web.Request) -> str:
    # Clients percent-encode the whole absolute path into one segment; decode once
    return unquote(request.rel_url.raw_path[1:])


async def handle_options(request: web.Request) -> web.Response:
    return web.Response(status=204, headers=CORS_HEADERS)


async def handle_get(request: web.Request) -> web.StreamResponse:
    service = request.app[SERVICE_KEY]
    file_path = _requested_path(request)
    if not file_path:
        return web.Response(status=400, text="Missing file path", headers=CORS_HEADERS)
    if not os.path.isabs(file_path):
        file_path = os.sep + file_path

    if not await service.prepare_stream(file_path):
        log.debug(f"Pending download for '{os.path.basename(file_path)}'")
        return web.Response(
            status=202, headers={**CORS_HEADERS, "X-Download-Status": "downloading"}
        )

    if not os.path.isfile(file_path):
        return web.Response(status=404, text="File not found", headers=CORS_HEADERS)

    return web.FileResponse(file_path, headers=CORS_HEADERS)


def create_audio_app(service: CloudCacheService) -> web.Application:
    """Builds the aiohttp application serving files through the cache gate."""
    app = web.Application()
    app[SERVICE_KEY] = service
    app.router.add_route("OPTIONS", "/{path:.*}", handle_options)
    app.router.add_get("/{path:.*}", handle_get)
    return app


async def start_audio_server(
    service: CloudCacheService, host: str = "127.0.0.1", port: int = 0
) -> tuple[web.AppRunner, int]:
    """Starts the server and returns its runner and the bound port."""
    runner = web.AppRunner(create_audio_app(service), access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    bound_port = runner.addresses[0][1] if runner.addresses else port
    log.info(f"Audio server listening on http://{host}:{bound_port}")
    return runner, bound_port
