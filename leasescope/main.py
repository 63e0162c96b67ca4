"""Main entry point: bootstraps the reload coordinator, query service, and API server."""

from __future__ import annotations

import logging

from leasescope.config import Settings, get_settings
from leasescope.core.probe import LivenessProbe, PingProbe
from leasescope.core.query import QueryService, SnapshotSource
from leasescope.core.reload import ReloadCoordinator
from leasescope.core.vendor import (
    MacLookupVendorResolver,
    ManufVendorResolver,
    VendorResolver,
    fetch_manuf,
)
from leasescope.core.watcher import FileWatcher

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


async def build_vendor_resolver(settings: Settings) -> VendorResolver | None:
    """Pick the vendor source: a manuf file when one is configured, otherwise mac-vendor-lookup."""
    if not settings.enrich:
        return None
    path = settings.resolved_vendor_db_path
    if path is not None:
        if settings.vendor_db_url:
            try:
                path = await fetch_manuf(settings.vendor_db_url, path, settings.vendor_cache_days)
            except Exception as exc:
                logger.warning("Could not fetch vendor database: %s", exc)
        if path.exists():
            return ManufVendorResolver.from_file(path)
        logger.warning("Vendor database %s not found; falling back to mac-vendor-lookup", path)
    resolver = MacLookupVendorResolver()
    try:
        await resolver.load()
    except Exception as exc:
        logger.warning("Could not load mac-vendor-lookup table; vendors will be unknown: %s", exc)
    return resolver


def build_probe(settings: Settings) -> LivenessProbe | None:
    if settings.enrich and settings.probe_enabled:
        return PingProbe(wait=settings.probe_timeout)
    return None


async def build_query_service(source: SnapshotSource, settings: Settings) -> QueryService:
    return QueryService(
        source,
        vendor_resolver=await build_vendor_resolver(settings),
        probe=build_probe(settings),
        vendor_timeout=settings.vendor_timeout,
        probe_timeout=settings.probe_timeout,
        max_concurrency=settings.max_concurrent_enrichment,
    )


def build_coordinator(settings: Settings) -> ReloadCoordinator:
    return ReloadCoordinator(
        settings.resolved_hosts_path,
        settings.resolved_leases_path,
        watcher=FileWatcher(poll_interval=settings.watch_poll_interval),
        debounce=settings.debounce,
        retry_initial=settings.watch_retry_initial,
        retry_max=settings.watch_retry_max,
        retry_attempts=settings.watch_retry_attempts,
    )


async def run_server(
    host: str | None = None,
    port: int | None = None,
    **overrides: object,
) -> None:
    """Start watching the source files and serve the API until interrupted."""
    import uvicorn

    from leasescope.api.server import create_app

    settings = get_settings(api_host=host, api_port=port, **overrides)
    configure_logging(settings.log_level)

    coordinator = build_coordinator(settings)
    query = await build_query_service(coordinator, settings)

    # a failed first rebuild still serves; queries answer 503 until one succeeds
    await coordinator.start()
    app = create_app(query, coordinator)

    config = uvicorn.Config(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
    server = uvicorn.Server(config)
    try:
        await server.serve()
    finally:
        await coordinator.stop()
