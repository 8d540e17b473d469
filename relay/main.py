"""
Multi-tenant Twilio media-stream relay (Gemini Live backend).

Point a Twilio <Stream> at:
    wss://<host>/stream?client=<tenant>

Each accepted connection becomes one CallSession with its own Gemini Live
socket, authenticated with the tenant's API key. A missing `client`
parameter falls back to DEFAULT_TENANT; an unknown tenant, or one without an
API key, is closed immediately with 1008.

GET /health answers 200 on the same port for load balancer checks.
"""

from __future__ import annotations

import asyncio
import functools
from http import HTTPStatus
from typing import Callable, Optional
from urllib.parse import parse_qs, urlparse

import structlog
from websockets.asyncio.server import ServerConnection, serve
from websockets.http11 import Request, Response

from relay.config import Config
from relay.gemini_live import GeminiLiveSession
from relay.logging_config import setup_logging
from relay.session import CallSession
from relay.tenants import TenantNotFound, TenantRegistry, load_registry

logger = structlog.get_logger(__name__)

TENANT_QUERY_PARAM = "client"


def tenant_from_path(path: str, default_tenant: str) -> tuple[str, str, bool]:
    """Return (base_path, tenant, used_default) for a request path with query string."""
    parsed_url = urlparse(path or "")
    query_params = parse_qs(parsed_url.query)
    tenant = (query_params.get(TENANT_QUERY_PARAM) or [""])[0].strip()
    if not tenant:
        return parsed_url.path, default_tenant, True
    return parsed_url.path, tenant, False


async def handle_client(
    client_ws: ServerConnection,
    registry: TenantRegistry,
    cfg: Config,
    ai_factory: Callable[[str], GeminiLiveSession] = GeminiLiveSession,
) -> None:
    path = client_ws.request.path if client_ws.request else ""
    base_path, tenant_key, used_default = tenant_from_path(path, cfg.DEFAULT_TENANT)

    if base_path != cfg.WS_PATH:
        logger.warning("Rejecting connection: invalid path", path=base_path, expected=cfg.WS_PATH)
        await client_ws.close(code=1008, reason="Invalid path")
        return

    if used_default:
        logger.info("No client parameter, using default tenant", tenant=tenant_key)

    try:
        tenant = registry.resolve(tenant_key)
    except TenantNotFound as e:
        logger.warning("Rejecting connection", tenant=tenant_key, reason=e.reason)
        await client_ws.close(code=1008, reason=e.reason)
        return

    logger.info("Client identified", tenant=tenant.key, name=tenant.name)
    session = CallSession(tenant, client_ws, cfg, ai_factory=ai_factory)
    await session.run()


def health_check(cfg: Config):
    def process_request(connection: ServerConnection, request: Request) -> Optional[Response]:
        if urlparse(request.path).path == cfg.HEALTH_PATH:
            return connection.respond(HTTPStatus.OK, "OK\n")
        return None

    return process_request


async def main() -> None:
    cfg = Config()
    Config.validate(cfg)
    setup_logging("DEBUG" if cfg.DEBUG else cfg.LOG_LEVEL, cfg.LOG_FORMAT)
    cfg.log_config()

    registry = load_registry(cfg.TENANTS_FILE)
    handler = functools.partial(handle_client, registry=registry, cfg=cfg)

    async with serve(handler, cfg.HOST, cfg.PORT, process_request=health_check(cfg)):
        logger.info("Relay listening", url=f"ws://{cfg.HOST}:{cfg.PORT}{cfg.WS_PATH}")
        await asyncio.Future()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Relay stopped")


if __name__ == "__main__":
    run()
